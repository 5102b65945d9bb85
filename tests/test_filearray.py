import os

import pytest

from dhlib.context import DhOptions
from dhlib.exceptions import DhSubstitutionError
from dhlib.filearray import (
    filearray,
    filedoublearray,
    glob_expand,
    glob_expand_error_handler_reject_nomagic_warn_discard,
    glob_expand_error_handler_silently_ignore,
    glob_expand_error_handler_warn_and_discard,
)

from conftest import SIMPLE_CONTROL

DIRS_FILE = """\
    usr/lib/${DEB_HOST_MULTIARCH}
    # A comment

      usr/share/foo   usr/share/bar
"""


@pytest.fixture()
def source_files(tmp_path) -> str:
    src = tmp_path / "src"
    src.mkdir()
    for name in ("a.txt", "b.txt", "c.md", "weird[1].txt"):
        (src / name).write_text("")
    return str(src)


def test_filearray(make_context, simple_source, write_debian_file) -> None:
    write_debian_file("foo.dirs", DIRS_FILE)
    context = make_context()
    assert filedoublearray(context, "debian/foo.dirs") == [
        ["usr/lib/x86_64-linux-gnu"],
        ["usr/share/foo", "usr/share/bar"],
    ]
    assert filearray(context, "debian/foo.dirs") == [
        "usr/lib/x86_64-linux-gnu",
        "usr/share/foo",
        "usr/share/bar",
    ]


def test_filearray_no_expansion_before_compat_13(make_context, write_debian_file) -> None:
    write_debian_file("control", SIMPLE_CONTROL.replace("(= 13)", "(= 12)"))
    write_debian_file("foo.dirs", DIRS_FILE)
    assert filearray(make_context(), "debian/foo.dirs")[0] == "usr/lib/${DEB_HOST_MULTIARCH}"


def test_filearray_unknown_variable(make_context, simple_source, write_debian_file) -> None:
    write_debian_file("foo.dirs", "usr/share/foo\nusr/lib/${NOT_A_VARIABLE}\n")
    with pytest.raises(DhSubstitutionError) as e_info:
        filearray(make_context(), "debian/foo.dirs")
    assert e_info.value.location == "debian/foo.dirs (line 2)"


def test_filearray_glob_dirs(
    make_context, simple_source, write_debian_file, source_files, capsys
) -> None:
    write_debian_file("foo.install", "*.txt missing.txt\n")
    context = make_context()
    assert filearray(
        context,
        "debian/foo.install",
        [source_files],
        glob_expand_error_handler_warn_and_discard,
    ) == [
        os.path.join(source_files, "a.txt"),
        os.path.join(source_files, "b.txt"),
        os.path.join(source_files, "weird[1].txt"),
    ]
    assert 'Cannot find (any matches for) "missing.txt"' in capsys.readouterr().err

    with pytest.raises(SystemExit):
        filearray(context, "debian/foo.install", [source_files])
    assert 'Cannot find (any matches for) "missing.txt"' in capsys.readouterr().err


def test_filearray_legacy_globdir(
    make_context, simple_source, write_debian_file, source_files
) -> None:
    write_debian_file("foo.docs", "*.md\nnothing*\n")
    assert filearray(make_context(), "debian/foo.docs", "src") == ["c.md"]


def test_filedoublearray_legacy_globdir_keeps_literal_words(
    make_context, simple_source, write_debian_file, source_files
) -> None:
    write_debian_file("foo.install", "usr/bin/not-yet-there c.md\nnothing*\n")
    assert filedoublearray(make_context(), "debian/foo.install", "src") == [
        ["usr/bin/not-yet-there", "c.md"],
        [],
    ]


def test_glob_expand(source_files, capsys) -> None:
    other = os.path.join(os.path.dirname(source_files), "other")
    os.mkdir(other)
    open(os.path.join(other, "a.txt"), "w").close()

    # The first directory with a match wins
    assert glob_expand([other, source_files], None, "*.txt", "c.md") == [
        os.path.join(other, "a.txt"),
        os.path.join(source_files, "c.md"),
    ]
    # Literal names that look like globs
    assert glob_expand([source_files], None, "weird[1].txt") == [
        os.path.join(source_files, "weird[1].txt")
    ]
    assert (
        glob_expand([source_files], glob_expand_error_handler_silently_ignore, "nope")
        == []
    )

    handler = glob_expand_error_handler_reject_nomagic_warn_discard
    assert glob_expand([source_files], handler, "*.rst") == []
    assert 'Cannot find (any matches for) "*.rst"' in capsys.readouterr().err
    with pytest.raises(SystemExit):
        glob_expand([source_files], handler, "README")


def test_executable_config(make_context, simple_source, write_debian_file) -> None:
    write_debian_file(
        "foo.dirs",
        """\
        #!/bin/sh
        echo "usr/share/$DH_CONFIG_ACT_ON_PACKAGES"
        echo "# not a comment"
        echo ""
        """,
        mode=0o755,
    )
    context = make_context(options=DhOptions(do_packages=["foo", "foo-data"]))
    assert filedoublearray(context, "debian/foo.dirs") == [
        ["usr/share/foo,foo-data"],
        ["#", "not", "a", "comment"],
    ]


@pytest.mark.parametrize(
    "script,message",
    [
        ("#!/bin/sh\nexit 3\n", "(executable config) returned exit code 3"),
        (
            "#!/bin/sh\necho '  '\n",
            "Executable config file debian/foo.dirs produced a non-empty whitespace-only line",
        ),
    ],
)
def test_executable_config_errors(
    make_context, simple_source, write_debian_file, capsys, script: str, message: str
) -> None:
    write_debian_file("foo.dirs", script, mode=0o755)
    with pytest.raises(SystemExit):
        filearray(make_context(), "debian/foo.dirs")
    assert message in capsys.readouterr().err


def test_filearray_non_utf8_content(make_context, simple_source, tmp_path) -> None:
    debian_dir = tmp_path / "debian"
    (debian_dir / "foo.dirs").write_bytes(b"usr/share/Ren\xe9\rx\n")
    words = filedoublearray(make_context(), "debian/foo.dirs")
    # Undecodable bytes survive as surrogates and map back to the same bytes
    assert words == [["usr/share/Ren\udce9", "x"]]
    assert os.fsencode(words[0][0]) == b"usr/share/Ren\xe9"
