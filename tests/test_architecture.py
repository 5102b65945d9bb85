import shutil

import pytest

from dhlib.architecture_support import (
    DpkgArchitectureBuildProcessValuesTable,
    faked_arch_table,
)

from tutil import mocked_arch_table

needs_dpkg_architecture = pytest.mark.skipif(
    shutil.which("dpkg-architecture") is None,
    reason="dpkg-architecture is not available",
)


# Ensure our mocks seem to be working reasonably
@needs_dpkg_architecture
def test_faked_arch_table():
    amd64_native_table = faked_arch_table("amd64")
    amd64_cross_table = faked_arch_table("amd64", build_arch="i386")
    amd64_cross_target_table = faked_arch_table("amd64", target_arch="arm64")

    for var_stem in ["ARCH", "MULTIARCH"]:
        host_var = f"DEB_HOST_{var_stem}"
        build_var = f"DEB_BUILD_{var_stem}"
        target_var = f"DEB_TARGET_{var_stem}"

        assert amd64_native_table[host_var] == amd64_native_table[build_var]
        assert amd64_native_table[host_var] == amd64_native_table[target_var]

        # HOST_ARCH differ in a cross build, but the rest remain the same
        assert amd64_cross_table[host_var] == amd64_native_table[host_var]
        assert amd64_cross_table[build_var] != amd64_native_table[build_var]

        # TARGET_ARCH differ in a cross-compiler build, but the rest remain the same
        assert amd64_cross_target_table[host_var] == amd64_native_table[host_var]
        assert amd64_cross_target_table[target_var] != amd64_native_table[target_var]

    assert not amd64_native_table.is_cross_compiling
    assert amd64_cross_table.is_cross_compiling
    assert not amd64_cross_target_table.is_cross_compiling


def test_mocked_arch_table():
    table = mocked_arch_table("amd64", build_arch="i386")
    assert table.current_host_arch == "amd64"
    assert table.current_host_multiarch == "x86_64-linux-gnu"
    assert table["DEB_BUILD_ARCH"] == "i386"
    assert table.is_cross_compiling
    assert "DEB_HOST_ARCH_OS" in table
    assert "DEB_HOST_NOT_A_VAR" not in table
    assert table.get("DEB_HOST_NOT_A_VAR") is None
    assert not mocked_arch_table("amd64").is_cross_compiling


def test_environment_overrides():
    environ = {"DEB_HOST_ARCH": "arm64"}
    table = DpkgArchitectureBuildProcessValuesTable(environ=environ)
    # Answered from the environment without running dpkg-architecture
    assert table.current_host_arch == "arm64"


def test_empty_environment_value_is_ignored(capsys):
    environ = {"DEB_HOST_ARCH": "", "DEB_BUILD_ARCH": "amd64"}
    table = DpkgArchitectureBuildProcessValuesTable(environ=environ)
    table._has_run_dpkg_architecture = True
    with pytest.raises(KeyError):
        table["DEB_HOST_ARCH"]
    assert "DEB_HOST_ARCH" not in environ
    assert "ENV[DEB_HOST_ARCH] is set to the empty string" in capsys.readouterr().err
    assert table["DEB_BUILD_ARCH"] == "amd64"
