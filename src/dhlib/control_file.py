"""Parser for debian/control

The file is processed in two passes over the same stream.  The first pass
reads the source stanza (the name of the source package, the build
dependencies and the compat level declarations).  The second pass reads the
binary package stanzas.
"""

import dataclasses
import re
from enum import IntEnum
from typing import Dict, List, Mapping, Optional, Sequence

from debian.deb822 import Deb822, PkgRelation
from debian.debian_support import DpkgArchTable

from dhlib._deb_options_profiles import DebBuildOptionsAndProfiles
from dhlib.architecture_support import (
    DpkgArchitectureBuildProcessValuesTable,
    dpkg_architecture_table,
)
from dhlib.compat import MAX_COMPAT_LEVEL
from dhlib.packages import BinaryPackage, SourcePackage
from dhlib.util import (
    DEB822_FIELD_REGEX,
    DEFAULT_PACKAGE_TYPE,
    PKGNAME_REGEX,
    PKGVERSION_REGEX,
    _error,
    _warn,
    active_profiles_match,
)


_FIELD_LINE_RE = re.compile(
    r"^(" + DEB822_FIELD_REGEX.pattern + r"):\s*(.*)$",
    re.VERBOSE | re.ASCII,
)
_VALID_PKG_RE = re.compile(r"^" + PKGNAME_REGEX.pattern + r"$", re.ASCII)
_SOURCE_STANZA_COMMENT_RE = re.compile(r"^\s*#")
_BINARY_STANZA_COMMENT_RE = re.compile(r"^#")
_CONTINUATION_PREFIX_RE = re.compile(r"^\s[.]?")
_PACKAGE_TYPE_FIELD_RE = re.compile(r"^(?:x[bc]*-)?package-type$")
_BUILD_DEPENDS_FIELD_RE = re.compile(r"^build-depends(?:-arch|-indep)?$")
_DIGITS_RE = re.compile(r"^\d+$", re.ASCII)
_RELATION_SPLIT_RE = re.compile(r"\s*,\s*")
_TRAILING_COMMA_RE = re.compile(r"\s*(?:,\s*)?$")
_DH_COMPAT_RELATION_RE = re.compile(
    r"^debhelper-compat\s*[(]\s*=\s*("
    + PKGVERSION_REGEX.pattern
    + r")\s*[)]$",
    re.VERBOSE | re.ASCII,
)
_DH_COMPAT_GUESS_RE = re.compile(r"^(\d+)\D.*$")
_DH_COMPAT_ANY_RE = re.compile(r"^debhelper-compat\s*(?:\S.*)?$")
_DH_SEQUENCE_RELATION_RE = re.compile(
    r"^dh-sequence-("
    + PKGNAME_REGEX.pattern
    + r")\s*(?:[(]\s*(?:[<>]?=|<<|>>)\s*(?:"
    + PKGVERSION_REGEX.pattern
    + r")\s*[)])?(\s*[^|]+[]>]\s*)?$",
    re.VERBOSE | re.ASCII,
)
_FIELD_TO_ADDON_TYPE = {
    "build-depends": "both",
    "build-depends-arch": "arch",
    "build-depends-indep": "indep",
}


class LineKind(IntEnum):
    FIELD = 1
    CONTINUATION = 2
    BLANK = 3
    COMMENT = 4


class StanzaState(IntEnum):
    BEFORE_FIRST_STANZA = 1
    IN_STANZA = 2
    STANZA_BOUNDARY = 3


@dataclasses.dataclass(slots=True, frozen=True)
class ControlLine:
    kind: LineKind
    line_no: int
    # For FIELD lines: the value after the colon.  For CONTINUATION lines:
    # the line without its leading space (and the optional ".")
    value: str
    field_name: Optional[str] = None


@dataclasses.dataclass(slots=True)
class StanzaField:
    name: str
    line_no: int
    value_lines: List[str]

    @property
    def first_value(self) -> str:
        return self.value_lines[0]

    @property
    def value(self) -> str:
        return " ".join(self.value_lines)


@dataclasses.dataclass(slots=True)
class Stanza:
    # Keyed by the lower-cased field name
    fields: Dict[str, StanzaField]
    # The line number of the blank line (or last line) that ended the stanza
    end_line_no: int


@dataclasses.dataclass(slots=True, frozen=True)
class DeclaredCompatInfo:
    from_build_depends: Optional[int]
    from_x_dh_compat: Optional[int]


@dataclasses.dataclass(slots=True, frozen=True)
class ParsedControlFile:
    source_package: SourcePackage
    binary_packages: Mapping[str, BinaryPackage]
    declared_compat: DeclaredCompatInfo
    # dh sequence add-on -> "both", "arch" or "indep"
    dh_sequences: Mapping[str, str]


def classify_line(line: str, line_no: int, comment_re: re.Pattern[str]) -> ControlLine:
    """Classify a single line of debian/control

    >>> classify_line("Package: foo", 3, _BINARY_STANZA_COMMENT_RE).kind.name
    'FIELD'
    >>> classify_line(" .", 4, _BINARY_STANZA_COMMENT_RE).value
    ''
    >>> classify_line("   ", 5, _BINARY_STANZA_COMMENT_RE).kind.name
    'BLANK'
    """
    line = line.rstrip()
    if comment_re.match(line):
        return ControlLine(LineKind.COMMENT, line_no, line)
    if line == "":
        return ControlLine(LineKind.BLANK, line_no, line)
    if line[0].isspace():
        return ControlLine(
            LineKind.CONTINUATION, line_no, _CONTINUATION_PREFIX_RE.sub("", line, 1)
        )
    m = _FIELD_LINE_RE.match(line)
    if m is None:
        _error(f"Parse error in debian/control, line {line_no}, read: {line}")
    return ControlLine(LineKind.FIELD, line_no, m.group(2), field_name=m.group(1))


class StanzaReader:
    """Reads stanzas from the lines of debian/control

    The reader remembers its position, so the binary stanzas can be read
    after the source stanza has been consumed.
    """

    __slots__ = ("_lines", "_pos")

    def __init__(self, lines: Sequence[str]) -> None:
        self._lines = lines
        self._pos = 0

    def read_stanza(
        self,
        comment_re: re.Pattern[str],
        continuation_error: str,
    ) -> Optional[Stanza]:
        """Read the next stanza

        :param comment_re: Pattern for comment lines, which are skipped
        :param continuation_error: Error message for a continuation line
          that is not inside a stanza.  The placeholder "{line_no}" is
          replaced by the line number.
        :return: The stanza or None if there are no more stanzas
        """
        lines = self._lines
        fields: Dict[str, StanzaField] = {}
        last_field: Optional[StanzaField] = None
        state = StanzaState.BEFORE_FIRST_STANZA
        while self._pos < len(lines):
            line_no = self._pos + 1
            control_line = classify_line(lines[self._pos], line_no, comment_re)
            self._pos += 1
            kind = control_line.kind

            if kind == LineKind.COMMENT:
                continue

            if kind == LineKind.CONTINUATION:
                if state == StanzaState.BEFORE_FIRST_STANZA or last_field is None:
                    _error(continuation_error.format(line_no=line_no))
                last_field.value_lines.append(control_line.value)
            elif kind == LineKind.BLANK:
                if state == StanzaState.BEFORE_FIRST_STANZA:
                    continue
                state = StanzaState.STANZA_BOUNDARY
            else:
                field_name = control_line.field_name
                assert field_name is not None
                key = field_name.lower()
                existing = fields.get(key)
                if existing is not None:
                    _error(
                        f"{key}-field appears twice in the same stanza of debian/control. "
                        f"First time on line {existing.line_no}, second time: {line_no}"
                    )
                last_field = StanzaField(field_name, line_no, [control_line.value])
                fields[key] = last_field
                state = StanzaState.IN_STANZA

            if state == StanzaState.STANZA_BOUNDARY:
                return Stanza(fields, line_no)
        if state == StanzaState.IN_STANZA:
            # The input ended (possibly in a run of comments) inside a stanza
            return Stanza(fields, len(lines))
        return None


def _strip_spaces(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    return v.strip()


class ControlFileParser:
    def __init__(
        self,
        deb_options_and_profiles: Optional[DebBuildOptionsAndProfiles] = None,
        dpkg_architecture_variables: Optional[
            DpkgArchitectureBuildProcessValuesTable
        ] = None,
        dpkg_arch_query_table: Optional[DpkgArchTable] = None,
    ) -> None:
        if deb_options_and_profiles is None:
            deb_options_and_profiles = DebBuildOptionsAndProfiles.instance()
        if dpkg_architecture_variables is None:
            dpkg_architecture_variables = dpkg_architecture_table()
        if dpkg_arch_query_table is None:
            dpkg_arch_query_table = DpkgArchTable.load_arch_table()
        self.deb_options_and_profiles = deb_options_and_profiles
        self.dpkg_architecture_variables = dpkg_architecture_variables
        self.dpkg_arch_query_table = dpkg_arch_query_table

    def parse(self, path: str = "debian/control") -> ParsedControlFile:
        try:
            with open(path, encoding="utf-8", errors="surrogateescape") as fd:
                lines = fd.read().split("\n")
        except FileNotFoundError:
            _error(
                f'"{path}" not found. Are you sure you are in the correct directory?'
            )
        except OSError as e:
            _error(f"cannot read {path}: {e.strerror}")
        if lines and lines[-1] == "":
            # Trailing newline of the last line
            lines.pop()
        return self.parse_lines(lines)

    def parse_lines(self, lines: Sequence[str]) -> ParsedControlFile:
        reader = StanzaReader(lines)
        source_stanza = reader.read_stanza(
            _SOURCE_STANZA_COMMENT_RE,
            "Continuation line seen before first stanza in debian/control (line {line_no})",
        )
        source_package, compat_from_dctrl, bd_fields = self._parse_source_stanza(
            source_stanza
        )
        compat_from_bd, dh_sequences = self._parse_build_depends(bd_fields)
        if compat_from_bd is not None and compat_from_dctrl is not None:
            _error(
                "The X-DH-Compat field cannot be used together with a Build-Dependency on debhelper-compat."
                " Please remove one of the two."
            )

        binary_packages: Dict[str, BinaryPackage] = {}
        while True:
            stanza = reader.read_stanza(
                _BINARY_STANZA_COMMENT_RE,
                "Continuation line seen outside stanza in debian/control (line {line_no})",
            )
            if stanza is None:
                break
            pkg = self._parse_binary_stanza(
                stanza,
                source_package,
                binary_packages,
                is_main_package=not binary_packages,
            )
            binary_packages[pkg.name] = pkg

        return ParsedControlFile(
            source_package,
            binary_packages,
            DeclaredCompatInfo(compat_from_bd, compat_from_dctrl),
            dh_sequences,
        )

    def _parse_source_stanza(
        self,
        stanza: Optional[Stanza],
    ) -> "tuple[SourcePackage, Optional[int], Dict[str, str]]":
        source_fields = Deb822()
        compat_from_dctrl: Optional[int] = None
        bd_fields: Dict[str, str] = {}
        if stanza is not None:
            for key, field in stanza.fields.items():
                if key == "source":
                    source_name = field.first_value
                    if not _VALID_PKG_RE.match(source_name):
                        _error(
                            "Source-field must be a valid package name, "
                            f'got: "{source_name}", should match "{_VALID_PKG_RE.pattern}"'
                        )
                    source_fields[field.name] = source_name
                    continue
                if key == "section":
                    source_fields[field.name] = field.first_value
                    continue
                if key == "x-dh-compat":
                    if len(field.value_lines) > 1:
                        _error("X-DH-Compat should not need to span multiple lines")
                    if not _DIGITS_RE.match(field.first_value):
                        _error("The X-DH-Compat field must contain a single integer")
                    compat_from_dctrl = int(field.first_value)
                elif _BUILD_DEPENDS_FIELD_RE.match(key):
                    bd_fields[key] = field.value
                source_fields[field.name] = field.value
        if "Source" not in source_fields:
            _error("could not find Source: line in control file.")
        return SourcePackage(source_fields), compat_from_dctrl, bd_fields

    def _parse_build_depends(
        self,
        bd_fields: Mapping[str, str],
    ) -> "tuple[Optional[int], Dict[str, str]]":
        dh_compat_bd: Optional[str] = None
        final_level: Optional[int] = None
        dh_sequences: Dict[str, str] = {}
        for field in sorted(bd_fields):
            value = bd_fields[field].lstrip()
            value = _TRAILING_COMMA_RE.sub("", value, 1)
            for dep in _RELATION_SPLIT_RE.split(value):
                m = _DH_COMPAT_RELATION_RE.match(dep)
                if m:
                    version = m.group(1)
                    guess = _DH_COMPAT_GUESS_RE.match(version)
                    if guess:
                        _warn(
                            "Please use the compat level as the exact version rather than the full version."
                        )
                        _warn(f"  Perhaps you meant: debhelper-compat (= {guess.group(1)})")
                        if field != "build-depends":
                            _warn(
                                f" * Also, please move the declaration to Build-Depends (it was found in {field})"
                            )
                        _error(f"Invalid compat level {version}, derived from relation: {dep}")
                    if dh_compat_bd is not None:
                        _error(
                            f"Duplicate debhelper-compat build-dependency: {dh_compat_bd} vs. {dep}"
                        )
                    if field != "build-depends":
                        _error(
                            f"The debhelper-compat build-dependency must be in the Build-Depends field (not {field})"
                        )
                    final_level = int(version)
                    dh_compat_bd = dep
                elif _DH_COMPAT_ANY_RE.match(dep):
                    clevel = MAX_COMPAT_LEVEL
                    _warn(f"Found invalid debhelper-compat relation: {dep}")
                    _warn(
                        f" * Please format the relation as (example): debhelper-compat (= {clevel})"
                    )
                    _warn(
                        " * Note that alternatives, architecture restrictions, build-profiles etc. are not supported."
                    )
                    if field != "build-depends":
                        _warn(
                            f" * Also, please move the declaration to Build-Depends (it was found in {field})"
                        )
                    _warn(
                        " * If this is not possible, then please remove the debhelper-compat relation and insert the"
                    )
                    _warn(
                        f'   compat level into the file debian/compat.  (E.g. "echo {clevel} > debian/compat")'
                    )
                    _error(f"Could not parse desired debhelper compat level from relation: {dep}")

                m = _DH_SEQUENCE_RELATION_RE.match(dep)
                if m:
                    sequence = m.group(1)
                    has_restrictions = bool(m.group(2))
                    if sequence in dh_sequences:
                        _error(
                            f"Saw {dep} multiple times (last time in {field}).  However dh only support that build-"
                            "dependency at most once across all Build-Depends(-Arch|-Indep) fields"
                        )
                    if has_restrictions and not self._relation_applies(dep):
                        continue
                    dh_sequences[sequence] = _FIELD_TO_ADDON_TYPE[field]
        return final_level, dh_sequences

    def _relation_applies(self, dep: str) -> bool:
        """Whether the architecture and build-profile restrictions of `dep` apply"""
        relations = PkgRelation.parse_relations(dep)
        host_arch = self.dpkg_architecture_variables.current_host_arch
        active_profiles = self.deb_options_and_profiles.deb_build_profiles
        for alternatives in relations:
            for rel in alternatives:
                arch_restrictions = rel.get("arch")
                if arch_restrictions:
                    positive = [r.arch for r in arch_restrictions if r.enabled]
                    negative = [r.arch for r in arch_restrictions if not r.enabled]
                    table = self.dpkg_arch_query_table
                    if any(table.matches_architecture(host_arch, a) for a in negative):
                        return False
                    if positive and not any(
                        table.matches_architecture(host_arch, a) for a in positive
                    ):
                        return False
                profile_restrictions = rel.get("restrictions")
                if profile_restrictions:
                    if not any(
                        all(
                            (term.profile in active_profiles) == term.enabled
                            for term in group
                        )
                        for group in profile_restrictions
                    ):
                        return False
        return True

    def _parse_binary_stanza(
        self,
        stanza: Stanza,
        source_package: SourcePackage,
        seen: Mapping[str, BinaryPackage],
        *,
        is_main_package: bool,
    ) -> BinaryPackage:
        package_type_field: Optional[StanzaField] = None
        field_values = Deb822()
        for key, field in stanza.fields.items():
            if _PACKAGE_TYPE_FIELD_RE.match(key):
                # Normalize variants into the main "Package-Type" field
                if package_type_field is not None:
                    package_field = stanza.fields.get("package")
                    help_text = '(issue seen prior "Package"-field)'
                    if package_field is not None and package_field.line_no < field.line_no:
                        help_text = f"for package {package_field.value.strip()}"
                    line_no = max(field.line_no, package_type_field.line_no)
                    _error(
                        f"Multiple definitions of (X-)Package-Type in line {line_no} {help_text}"
                    )
                package_type_field = field
                field_values["Package-Type"] = field.value
                continue
            field_values[field.name] = field.value

        package = (_strip_spaces(field_values.get("Package")) or "")
        arch = _strip_spaces(field_values.get("Architecture")) or ""
        cross_type = _strip_spaces(field_values.get("X-DH-Build-For-Type")) or "host"

        if package == "":
            _error(
                f'Binary paragraph ending on line {stanza.end_line_no} is missing mandatory "Package"-field'
            )
        if package in seen:
            _error(f"debian/control has a duplicate entry for {package}")
        if not _VALID_PKG_RE.match(package):
            _error(
                "Package-field must be a valid package name, "
                f'got: "{package}", should match "{_VALID_PKG_RE.pattern}"'
            )
        if cross_type not in ("host", "target"):
            _error(f'Unknown value of X-DH-Build-For-Type "{cross_type}" for package {package}')

        field_values["Package"] = package
        field_values["Package-Type"] = (
            _strip_spaces(field_values.get("Package-Type")) or DEFAULT_PACKAGE_TYPE
        )
        field_values["Architecture"] = arch
        field_values["Multi-Arch"] = _strip_spaces(field_values.get("Multi-Arch")) or ""
        section = _strip_spaces(field_values.get("Section"))
        if section is None:
            section = source_package.section or ""
        field_values["Section"] = section
        field_values["X-DH-Build-For-Type"] = cross_type
        field_values["X-Time64-Compat"] = (
            _strip_spaces(field_values.get("X-Time64-Compat")) or ""
        )

        included_in_build_profile = True
        build_profiles = (field_values.get("Build-Profiles") or "").strip()
        if build_profiles:
            try:
                included_in_build_profile = active_profiles_match(
                    build_profiles,
                    self.deb_options_and_profiles.deb_build_profiles,
                )
            except ValueError as e:
                _error(f"Invalid Build-Profiles field for {package}: {e.args[0]}")

        return BinaryPackage(
            field_values,
            self.dpkg_architecture_variables,
            self.dpkg_arch_query_table,
            is_main_package=is_main_package,
            included_in_build_profile=included_in_build_profile,
        )
