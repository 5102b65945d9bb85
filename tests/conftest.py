import os
import textwrap
from typing import Callable, Dict, Optional

import pytest
from debian.debian_support import DpkgArchTable

from dhlib._deb_options_profiles import DebBuildOptionsAndProfiles
from dhlib.architecture_support import DpkgArchitectureBuildProcessValuesTable
from dhlib.context import DhContext, DhOptions

from tutil import dpkg_arch_query_table, mocked_arch_table

# Disable dpkg's translation layer.  It is very slow and disabling it makes it easier to debug
# test-failure reports from systems with translations active.
os.environ["DPKG_NLS"] = "0"


@pytest.fixture()
def amd64_dpkg_architecture_variables() -> DpkgArchitectureBuildProcessValuesTable:
    return mocked_arch_table("amd64")


@pytest.fixture(scope="session")
def dpkg_arch_query() -> DpkgArchTable:
    return dpkg_arch_query_table()


@pytest.fixture()
def environ() -> Dict[str, str]:
    return {"DH_INTERNAL_TESTSUITE_SILENT_WARNINGS": "1"}


@pytest.fixture()
def write_debian_file(tmp_path) -> Callable[..., str]:
    def _write(name: str, content: str, *, mode: Optional[int] = None) -> str:
        path = tmp_path / "debian" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content))
        if mode is not None:
            path.chmod(mode)
        return str(path)

    return _write


@pytest.fixture()
def make_context(
    tmp_path,
    environ,
    amd64_dpkg_architecture_variables,
    dpkg_arch_query,
) -> Callable[..., DhContext]:
    def _make(
        *,
        options: Optional[DhOptions] = None,
        dpkg_architecture_variables: Optional[
            DpkgArchitectureBuildProcessValuesTable
        ] = None,
    ) -> DhContext:
        if dpkg_architecture_variables is None:
            dpkg_architecture_variables = amd64_dpkg_architecture_variables
        return DhContext(
            str(tmp_path),
            environ=environ,
            dpkg_architecture_variables=dpkg_architecture_variables,
            dpkg_arch_query_table=dpkg_arch_query,
            deb_options_and_profiles=DebBuildOptionsAndProfiles(environ=environ),
            options=options,
            tool_name="dh_test",
            tool_version="1.0",
        )

    return _make


SIMPLE_CONTROL = """\
    Source: foo
    Section: devel
    Build-Depends: debhelper-compat (= 13)

    Package: foo
    Architecture: any

    Package: foo-data
    Architecture: all

    Package: foo-doc
    Architecture: all
    Section: doc
"""


@pytest.fixture()
def simple_source(write_debian_file) -> None:
    write_debian_file("control", SIMPLE_CONTROL)
