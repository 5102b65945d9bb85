import pytest

from dhlib.context import DhOptions


@pytest.fixture()
def substvars(make_context, simple_source):
    return make_context().substvars


def _read(tmp_path, package: str = "foo") -> str:
    return (tmp_path / "debian" / f"{package}.substvars").read_text()


def test_addsubstvar(substvars, tmp_path) -> None:
    assert substvars.addsubstvar("foo", "misc:Depends", "zlib1g")
    assert _read(tmp_path) == "misc:Depends=zlib1g\n"

    assert substvars.addsubstvar("foo", "misc:Depends", "adduser", "= 1.0")
    assert _read(tmp_path) == "misc:Depends=adduser (= 1.0), zlib1g\n"

    # Adding an existing item does not change the file
    assert not substvars.addsubstvar("foo", "misc:Depends", "zlib1g")
    assert _read(tmp_path) == "misc:Depends=adduser (= 1.0), zlib1g\n"

    assert substvars.addsubstvar("foo", "misc:Recommends", "bar")
    assert _read(tmp_path) == (
        "misc:Depends=adduser (= 1.0), zlib1g\n" "misc:Recommends=bar\n"
    )


def test_addsubstvar_keeps_other_lines(substvars, write_debian_file, tmp_path) -> None:
    write_debian_file(
        "foo.substvars",
        """\
        misc:Pre-Depends?=init-system-helpers
        shlibs:Depends=libc6 (>= 2.34)
        """,
    )
    assert substvars.addsubstvar("foo", "misc:Pre-Depends", "dpkg")
    assert _read(tmp_path) == (
        "misc:Pre-Depends?=dpkg, init-system-helpers\n"
        "shlibs:Depends=libc6 (>= 2.34)\n"
    )


def test_addsubstvar_remove(substvars, write_debian_file, tmp_path) -> None:
    write_debian_file("foo.substvars", "misc:Depends=adduser, zlib1g\nmisc:Suggests=foo-doc\n")
    assert not substvars.addsubstvar("foo", "misc:Depends", "not-there", remove=True)
    assert substvars.addsubstvar("foo", "misc:Depends", "adduser", remove=True)
    assert _read(tmp_path) == "misc:Depends=zlib1g\nmisc:Suggests=foo-doc\n"
    assert substvars.addsubstvar("foo", "misc:Suggests", "foo-doc", remove=True)
    assert _read(tmp_path) == "misc:Depends=zlib1g\n"
    # Removing from an absent variable does not add it
    assert not substvars.addsubstvar("foo", "misc:Recommends", "bar", remove=True)


def test_addsubstvar_errors(substvars, capsys) -> None:
    with pytest.raises(SystemExit):
        substvars.addsubstvar("foo", "misc:Depends")
    assert "Bug in helper: Must provide a value for addsubstvar" in capsys.readouterr().err

    with pytest.raises(SystemExit):
        substvars.addsubstvar("foo", "misc:Depends", "foo\nbar")
    err = capsys.readouterr().err
    assert "Unescaped newlines in the value of a substvars" in err
    assert (
        "Bug in helper: The substvar must not contain a raw newline character (misc:Depends=foo\\nbar)"
        in err
    )


def test_delsubstvar(substvars, write_debian_file, tmp_path) -> None:
    write_debian_file(
        "foo.substvars",
        """\
        misc:Depends=zlib1g
        misc:Depends-Extra=bar
        misc:Recommends?=foo
        """,
    )
    assert substvars.delsubstvar("foo", "misc:Depends")
    assert _read(tmp_path) == "misc:Depends-Extra=bar\nmisc:Recommends?=foo\n"
    assert substvars.delsubstvar("foo", "misc:Recommends")
    assert _read(tmp_path) == "misc:Depends-Extra=bar\n"
    assert not substvars.delsubstvar("foo", "misc:Recommends")
    assert not substvars.delsubstvar("foo-data", "misc:Depends")


def test_no_act(make_context, simple_source, tmp_path) -> None:
    substvars = make_context(options=DhOptions(no_act=True)).substvars
    assert substvars.addsubstvar("foo", "misc:Depends", "zlib1g")
    assert not (tmp_path / "debian" / "foo.substvars").exists()
    substvars.ensure_substvars_are_present("debian/foo.substvars", "misc:Depends")
    assert not (tmp_path / "debian" / "foo.substvars").exists()


def test_ensure_substvars_are_present(substvars, write_debian_file, tmp_path) -> None:
    substvars.ensure_substvars_are_present(
        "debian/foo-data.substvars", "misc:Depends", "misc:Pre-Depends"
    )
    assert _read(tmp_path, "foo-data") == "misc:Depends=\nmisc:Pre-Depends=\n"

    write_debian_file("foo.substvars", "misc:Depends=zlib1g\n")
    substvars.ensure_substvars_are_present(
        "debian/foo.substvars", "misc:Depends", "misc:Pre-Depends", "misc:Depends"
    )
    assert _read(tmp_path) == "misc:Depends=zlib1g\nmisc:Pre-Depends=\n"
    substvars.ensure_substvars_are_present("debian/foo.substvars", "misc:Depends")
    assert _read(tmp_path) == "misc:Depends=zlib1g\nmisc:Pre-Depends=\n"


def test_addsubstvar_only_splits_on_newlines(substvars, tmp_path) -> None:
    path = tmp_path / "debian" / "foo.substvars"
    path.write_bytes(b"misc:Description=line one\rstill one\x0c\nmisc:Depends=a\n")
    assert substvars.addsubstvar("foo", "misc:Depends", "b")
    assert path.read_bytes() == (
        b"misc:Description=line one\rstill one\x0c\nmisc:Depends=a, b\n"
    )


def test_substvars_non_utf8_content(substvars, tmp_path) -> None:
    path = tmp_path / "debian" / "foo.substvars"
    path.write_bytes(b"misc:Author=Ren\xe9\n")
    assert substvars.addsubstvar("foo", "misc:Depends", "zlib1g")
    assert path.read_bytes() == b"misc:Author=Ren\xe9\nmisc:Depends=zlib1g\n"

    assert substvars.delsubstvar("foo", "misc:Depends")
    substvars.ensure_substvars_are_present("debian/foo.substvars", "misc:Pre-Depends")
    assert path.read_bytes() == b"misc:Author=Ren\xe9\nmisc:Pre-Depends=\n"
