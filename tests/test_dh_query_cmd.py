from typing import List

import pytest

from dhlib.commands.dh_query_cmd.__main__ import parse_args
from dhlib.commands.dh_query_cmd.context import CommandArg, ROOT_COMMAND
from dhlib.exceptions import DhSubstitutionError

from tutil import mocked_arch_table


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch) -> None:
    for var in (
        "DH_COMPAT",
        "DH_OPTIONS",
        "DH_NO_ACT",
        "DEB_BUILD_OPTIONS",
        "DEB_BUILD_PROFILES",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("DH_INTERNAL_TESTSUITE_SILENT_WARNINGS", "1")
    monkeypatch.setattr(
        "dhlib.context.dpkg_architecture_table",
        lambda: mocked_arch_table("amd64"),
    )


def run_cmd(tmp_path, *argv: str) -> None:
    parsed_args = parse_args(["-C", str(tmp_path), *argv])
    ROOT_COMMAND(CommandArg(parsed_args))


def _stdout_lines(capsys) -> List[str]:
    return capsys.readouterr().out.splitlines()


@pytest.mark.parametrize(
    "kind_args,expected",
    [
        ([], ["foo", "foo-data", "foo-doc"]),
        (["--kind", "arch"], ["foo"]),
        (["--kind", "indep"], ["foo-data", "foo-doc"]),
        (["--kind", "all"], ["foo", "foo-data", "foo-doc"]),
    ],
)
def test_packages(tmp_path, simple_source, capsys, kind_args, expected) -> None:
    run_cmd(tmp_path, "packages", *kind_args)
    assert _stdout_lines(capsys) == expected


def test_compat(tmp_path, simple_source, capsys) -> None:
    run_cmd(tmp_path, "compat")
    assert _stdout_lines(capsys) == [
        "13 (declared: 13 via Build-Depends: debhelper-compat (= 13))"
    ]


@pytest.mark.parametrize("level,exit_code", [(12, 1), (13, 0), (14, 0)])
def test_compat_check(tmp_path, simple_source, level: int, exit_code: int) -> None:
    with pytest.raises(SystemExit) as e_info:
        run_cmd(tmp_path, "compat", "--check-at-most", str(level))
    assert e_info.value.code == exit_code


def test_pkgfile(tmp_path, simple_source, write_debian_file, capsys) -> None:
    write_debian_file("foo.links", "")
    write_debian_file("foo.bar.links", "")
    run_cmd(tmp_path, "pkgfile", "foo", "links")
    run_cmd(tmp_path, "pkgfile", "foo", "links", "--name", "bar")
    assert _stdout_lines(capsys) == ["debian/foo.links", "debian/foo.bar.links"]

    with pytest.raises(SystemExit) as e_info:
        run_cmd(tmp_path, "pkgfile", "foo-data", "links")
    assert e_info.value.code == 1
    assert _stdout_lines(capsys) == []


def test_pkgfile_unknown_package(tmp_path, simple_source, capsys) -> None:
    with pytest.raises(SystemExit) as e_info:
        run_cmd(tmp_path, "pkgfile", "nope", "links")
    assert e_info.value.code == 1
    assert "Requested unknown package nope via PACKAGE" in capsys.readouterr().err


def test_expand(tmp_path, capsys) -> None:
    run_cmd(tmp_path, "expand", "usr/lib/${DEB_HOST_MULTIARCH}${Space}${Dollar}")
    assert _stdout_lines(capsys) == ["usr/lib/x86_64-linux-gnu $"]

    with pytest.raises(DhSubstitutionError) as e_info:
        run_cmd(tmp_path, "expand", "${nope}", "--location", "debian/foo.install")
    assert e_info.value.location == "debian/foo.install"


def test_substvars(tmp_path, simple_source) -> None:
    substvars = tmp_path / "debian" / "foo.substvars"
    run_cmd(tmp_path, "addsubstvar", "foo", "misc:Depends", "zlib1g")
    run_cmd(
        tmp_path,
        "addsubstvar",
        "foo",
        "misc:Depends",
        "adduser",
        "--version-constraint",
        ">= 3.11",
    )
    run_cmd(tmp_path, "addsubstvar", "foo", "misc:Recommends", "foo-doc")
    assert substvars.read_text() == (
        "misc:Depends=adduser (>= 3.11), zlib1g\nmisc:Recommends=foo-doc\n"
    )

    run_cmd(tmp_path, "addsubstvar", "foo", "misc:Depends", "zlib1g", "--remove")
    run_cmd(tmp_path, "delsubstvar", "foo", "misc:Recommends")
    assert substvars.read_text() == "misc:Depends=adduser (>= 3.11)\n"


def test_substvars_no_act(tmp_path, simple_source) -> None:
    run_cmd(tmp_path, "--no-act", "addsubstvar", "foo", "misc:Depends", "zlib1g")
    assert not (tmp_path / "debian" / "foo.substvars").exists()


def test_missing_command(tmp_path, capsys) -> None:
    with pytest.raises(SystemExit):
        parse_args(["-C", str(tmp_path)])
    assert "the following arguments are required: COMMAND" in capsys.readouterr().err
