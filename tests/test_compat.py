from typing import Dict, Optional

import pytest

from dhlib._deb_options_profiles import DebBuildOptionsAndProfiles
from dhlib.compat import CompatInfo, CompatLevelResolver

from tutil import parse_control

NO_COMPAT_CONTROL = """\
    Source: foo

    Package: foo
    Architecture: any
"""


def _control(source_fields: str = "") -> str:
    return f"Source: foo\n{source_fields}\nPackage: foo\nArchitecture: any\n"


def make_resolver(
    tmp_path,
    control: str = NO_COMPAT_CONTROL,
    *,
    compat_file: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
    highest_stable_compat_level: Optional[int] = None,
) -> CompatLevelResolver:
    if compat_file is not None:
        (tmp_path / "compat").write_text(compat_file)
    if environ is None:
        environ = {}
    return CompatLevelResolver(
        str(tmp_path),
        lambda: parse_control(control),
        environ=environ,
        deb_options_and_profiles=DebBuildOptionsAndProfiles(environ=environ),
        highest_stable_compat_level=highest_stable_compat_level,
    )


def test_compat_from_build_depends(tmp_path) -> None:
    resolver = make_resolver(
        tmp_path, _control("Build-Depends: debhelper-compat (= 13)\n")
    )
    assert not resolver.is_resolved
    assert not resolver.compat(12)
    assert resolver.is_resolved
    assert resolver.compat(13)
    assert resolver.compat(14)
    assert resolver.compat_info() == CompatInfo(
        13, 13, "Build-Depends: debhelper-compat (= 13)"
    )


def test_compat_from_x_dh_compat(tmp_path) -> None:
    resolver = make_resolver(tmp_path, _control("X-DH-Compat: 14\n"))
    assert resolver.compat_info() == CompatInfo(14, 14, "X-DH-Compat: 14")
    assert resolver.compat(14)
    assert not resolver.compat(13)


def test_compat_from_compat_file(tmp_path, capsys) -> None:
    resolver = make_resolver(tmp_path, compat_file="12\n")
    assert resolver.compat(12)
    assert not resolver.compat(11)
    assert resolver.compat_info().declared_source == "debian/compat"
    assert "deprecated" not in capsys.readouterr().err


def test_compat_file_deprecated_from_13(tmp_path, capsys) -> None:
    resolver = make_resolver(tmp_path, compat_file="13\n")
    assert resolver.compat(13)
    assert (
        "Use of debian/compat is deprecated and will be removed in debhelper (>= 14~)."
        in capsys.readouterr().err
    )


def test_compat_file_and_control(tmp_path, capsys) -> None:
    resolver = make_resolver(
        tmp_path,
        _control("Build-Depends: debhelper-compat (= 13)\n"),
        compat_file="13\n",
    )
    with pytest.raises(SystemExit):
        resolver.compat(13)
    err = capsys.readouterr().err
    assert "Please specify the debhelper compat level exactly once." in err
    assert ' * debian/control requests compat 13 via "debhelper-compat (= 13)"' in err
    assert "debhelper compat level specified both in debian/compat and in debian/control" in err


@pytest.mark.parametrize(
    "content,message",
    [
        ("", "debian/compat must contain a positive number (found an empty first line)"),
        ("thirteen\n", 'debian/compat must contain a positive number (found: "thirteen")'),
        ("15\n", "Sorry, debian/compat is no longer a supported source for the debhelper compat level."),
    ],
)
def test_invalid_compat_file(tmp_path, capsys, content: str, message: str) -> None:
    resolver = make_resolver(tmp_path, compat_file=content)
    with pytest.raises(SystemExit):
        resolver.compat(13)
    assert message in capsys.readouterr().err


def test_compat_file_rejected_once_14_is_stable(tmp_path, capsys) -> None:
    resolver = make_resolver(tmp_path, compat_file="12\n", highest_stable_compat_level=14)
    with pytest.raises(SystemExit):
        resolver.compat(13)
    assert "debian/compat is no longer a supported source" in capsys.readouterr().err


def test_no_compat_level(tmp_path, capsys) -> None:
    resolver = make_resolver(tmp_path)
    with pytest.raises(SystemExit):
        resolver.compat(13)
    assert "Please specify the compatibility level in debian/control." in (
        capsys.readouterr().err
    )
    # Without warnings, the level silently defaults to 1
    assert make_resolver(tmp_path).compat(1, nowarn=True)


def test_dh_compat_override(tmp_path) -> None:
    resolver = make_resolver(
        tmp_path,
        _control("X-DH-Compat: 14\n"),
        environ={"DH_COMPAT": "11"},
    )
    info = resolver.compat_info()
    assert info.level == 11
    assert info.declared_level == 14
    assert resolver.compat(11)


def test_dh_compat_empty_is_ignored(tmp_path) -> None:
    resolver = make_resolver(
        tmp_path,
        _control("X-DH-Compat: 14\n"),
        environ={"DH_COMPAT": ""},
    )
    assert resolver.compat_info().level == 14


def test_dh_compat_invalid(tmp_path, capsys) -> None:
    resolver = make_resolver(
        tmp_path,
        _control("X-DH-Compat: 14\n"),
        environ={"DH_COMPAT": "eleven"},
    )
    with pytest.raises(SystemExit):
        resolver.compat(13)
    assert "The environment variable DH_COMPAT must be a positive integer" in (
        capsys.readouterr().err
    )


def test_deprecated_level_warns_once(tmp_path, capsys) -> None:
    resolver = make_resolver(tmp_path, compat_file="9\n")
    assert resolver.compat(9)
    assert not resolver.compat(8)
    err = capsys.readouterr().err
    assert err.count("Compatibility levels before 10 are deprecated (level 9 in use)") == 1


def test_deprecated_level_warning_silenced(tmp_path, capsys) -> None:
    resolver = make_resolver(
        tmp_path,
        compat_file="9\n",
        environ={"DH_INTERNAL_TESTSUITE_SILENT_WARNINGS": "1"},
    )
    assert resolver.compat(9)
    assert "deprecated" not in capsys.readouterr().err


def test_unsupported_levels(tmp_path, capsys) -> None:
    resolver = make_resolver(tmp_path, compat_file="5\n")
    with pytest.raises(SystemExit):
        resolver.compat(9)
    assert "Compatibility levels before 7 are no longer supported (level 5 requested)" in (
        capsys.readouterr().err
    )

    (tmp_path / "compat").unlink()
    resolver = make_resolver(tmp_path, _control("X-DH-Compat: 16\n"))
    with pytest.raises(SystemExit):
        resolver.compat(9)
    assert "Sorry, but 15 is the highest compatibility level supported by this debhelper." in (
        capsys.readouterr().err
    )
    # The checks are skipped with nowarn
    assert not resolver.compat(9, nowarn=True)


def test_reset(tmp_path) -> None:
    resolver = make_resolver(tmp_path, compat_file="12\n")
    assert resolver.compat_info().level == 12
    resolver.reset()
    assert not resolver.is_resolved
    (tmp_path / "compat").write_text("11\n")
    assert resolver.compat_info().level == 11


def test_deprecated_functionality(tmp_path, capsys) -> None:
    resolver = make_resolver(
        tmp_path, _control("Build-Depends: debhelper-compat (= 13)\n")
    )
    resolver.deprecated_functionality("The foo feature is deprecated", 14)
    err = capsys.readouterr().err
    assert "The foo feature is deprecated" in err
    assert "This feature will be removed in compat 14." in err

    with pytest.raises(SystemExit):
        resolver.deprecated_functionality(
            "The bar feature is deprecated",
            13,
            "The bar feature has been removed",
        )
    err = capsys.readouterr().err
    assert "The bar feature has been removed" in err
    assert "This feature was removed in compat 13." in err
