import dataclasses
import os
import re
from typing import Callable, Mapping, Optional, TYPE_CHECKING

from dhlib._deb_options_profiles import DebBuildOptionsAndProfiles
from dhlib.util import _error, _warn

if TYPE_CHECKING:
    from dhlib.control_file import ParsedControlFile


MIN_COMPAT_LEVEL = 7
# Lowest compat level that does *not* cause deprecation warnings
LOWEST_NON_DEPRECATED_COMPAT_LEVEL = 10
# Lowest compat level that can be declared via "debhelper-compat (= N)"
LOWEST_VIRTUAL_DEBHELPER_COMPAT_LEVEL = 9
MAX_COMPAT_LEVEL = 15
# Compat levels below this are scheduled for removal (used with
# DEB_BUILD_OPTIONS=dherroron=obsolete-compat-levels)
MIN_COMPAT_LEVEL_NOT_SCHEDULED_FOR_REMOVAL = MIN_COMPAT_LEVEL
# Set once the compat level under development has been declared stable
HIGHEST_STABLE_COMPAT_LEVEL: Optional[int] = None

_DIGITS_RE = re.compile(r"^\d+$", re.ASCII)


@dataclasses.dataclass(slots=True, frozen=True)
class CompatInfo:
    level: int
    declared_level: int
    declared_source: Optional[str]


class CompatLevelResolver:
    """Resolves the compat level of the package being built

    The level is loaded on first use and then never changes (except via
    `reset()`).  `compat(N)` answers whether the active level is at most N.
    """

    __slots__ = (
        "_debian_dir",
        "_control_file_loader",
        "_environ",
        "_deb_options_and_profiles",
        "_highest_stable_compat_level",
        "_warned_compat",
        "_level",
        "_declared_level",
        "_declared_source",
    )

    def __init__(
        self,
        debian_dir: str,
        control_file_loader: Callable[[], "ParsedControlFile"],
        *,
        environ: Optional[Mapping[str, str]] = None,
        deb_options_and_profiles: Optional[DebBuildOptionsAndProfiles] = None,
        highest_stable_compat_level: Optional[int] = HIGHEST_STABLE_COMPAT_LEVEL,
    ) -> None:
        self._debian_dir = debian_dir
        self._control_file_loader = control_file_loader
        self._environ = environ if environ is not None else os.environ
        self._deb_options_and_profiles = (
            deb_options_and_profiles
            if deb_options_and_profiles is not None
            else DebBuildOptionsAndProfiles(environ=self._environ)
        )
        self._highest_stable_compat_level = highest_stable_compat_level
        self._warned_compat = bool(
            self._environ.get("DH_INTERNAL_TESTSUITE_SILENT_WARNINGS")
        )
        self._level: Optional[int] = None
        self._declared_level: int = 1
        self._declared_source: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self._level is not None

    def reset(self) -> None:
        """Forget the resolved level (mostly useful for testing)"""
        self._level = None
        self._declared_level = 1
        self._declared_source = None

    def _load_compat_info(self, nowarn: bool) -> int:
        declared = self._control_file_loader().declared_compat
        compat_from_bd = declared.from_build_depends
        compat_from_dctrl = declared.from_x_dh_compat
        compat_file = os.path.join(self._debian_dir, "compat")

        c = 1
        if os.path.exists(compat_file):
            try:
                with open(
                    compat_file, encoding="utf-8", errors="surrogateescape"
                ) as fd:
                    first_line = fd.readline()
            except OSError as e:
                _error(f"{compat_file}: {e.strerror}")
            if first_line == "":
                _error(
                    "debian/compat must contain a positive number (found an empty first line)"
                )
            new_compat = first_line.strip()
            if not _DIGITS_RE.match(new_compat):
                _error(
                    f'debian/compat must contain a positive number (found: "{new_compat}")'
                )
            if compat_from_bd is not None or compat_from_dctrl is not None:
                _warn("Please specify the debhelper compat level exactly once.")
                _warn(f" * debian/compat requests compat {new_compat}.")
                if compat_from_bd is not None:
                    _warn(
                        f' * debian/control requests compat {compat_from_bd} via "debhelper-compat (= {compat_from_bd})"'
                    )
                if compat_from_dctrl is not None:
                    _warn(
                        f' * debian/control requests compat {compat_from_dctrl} via "X-DH-Compat: {compat_from_dctrl}"'
                    )
                _warn()
                if compat_from_bd is not None:
                    _warn(
                        "Hint: If you just added a build-dependency on debhelper-compat, then please remember to remove debian/compat"
                    )
                if compat_from_dctrl is not None:
                    _warn(
                        "Hint: If you just added a X-DH-Compat field, then please remember to remove debian/compat"
                    )
                _warn()
                _error(
                    "debhelper compat level specified both in debian/compat and in debian/control"
                )
            c = int(new_compat)
            if c >= 15 or (self._highest_stable_compat_level or 0) > 13:
                _error(
                    "Sorry, debian/compat is no longer a supported source for the debhelper compat level."
                    " Please add a Build-Depends on `debhelper-compat (= C)` or add `X-DH-Compat: C` to the"
                    " source stanza of d/control and remove debian/compat."
                )
            if c >= 13 and not nowarn:
                _warn(
                    "Use of debian/compat is deprecated and will be removed in debhelper (>= 14~)."
                )
            self._declared_source = "debian/compat"
        elif compat_from_bd is not None:
            c = compat_from_bd
            self._declared_source = f"Build-Depends: debhelper-compat (= {c})"
        elif compat_from_dctrl is not None:
            c = compat_from_dctrl
            self._declared_source = f"X-DH-Compat: {c}"
        elif not nowarn:
            _error(
                "Please specify the compatibility level in debian/control. Such as, via Build-Depends: debhelper-compat (= X)"
            )

        self._declared_level = c

        override = self._environ.get("DH_COMPAT")
        if override is not None and override != "":
            if not _DIGITS_RE.match(override):
                _error("The environment variable DH_COMPAT must be a positive integer")
            c = int(override)
        self._level = c
        return c

    def compat_info(self) -> CompatInfo:
        """Resolve (without warnings) and return the compat level and its origin"""
        level = self._level
        if level is None:
            level = self._load_compat_info(True)
        return CompatInfo(level, self._declared_level, self._declared_source)

    def compat(self, num: int, *, nowarn: bool = False) -> bool:
        """Whether the active compat level is less than or equal to `num`

        Unless `nowarn` is set, this also validates that the level is within
        the supported range and warns (once) about deprecated levels.
        """
        c = self._level
        if c is None:
            c = self._load_compat_info(nowarn)

        if not nowarn:
            if c < MIN_COMPAT_LEVEL:
                _error(
                    f"Compatibility levels before {MIN_COMPAT_LEVEL} are no longer supported (level {c} requested)"
                )

            if (
                self._deb_options_and_profiles.dherroron == "obsolete-compat-levels"
                and c < MIN_COMPAT_LEVEL_NOT_SCHEDULED_FOR_REMOVAL
            ):
                v = MIN_COMPAT_LEVEL_NOT_SCHEDULED_FOR_REMOVAL
                _error(
                    f"Compatibility levels before {v} are scheduled for removal and DH_COMPAT_ERROR_ON_PENDING_REMOVAL"
                    f" was set (level {c} requested)"
                )

            if c < LOWEST_NON_DEPRECATED_COMPAT_LEVEL and not self._warned_compat:
                _warn(
                    f"Compatibility levels before {LOWEST_NON_DEPRECATED_COMPAT_LEVEL} are deprecated (level {c} in use)"
                )
                self._warned_compat = True

            if c > MAX_COMPAT_LEVEL:
                _error(
                    f"Sorry, but {MAX_COMPAT_LEVEL} is the highest compatibility level supported by this debhelper."
                )

        return c <= num

    def deprecated_functionality(
        self,
        warning_msg: str,
        compat_removal: Optional[int] = None,
        removal_msg: Optional[str] = None,
    ) -> None:
        """Warn about deprecated functionality or reject it if it has been removed"""
        if compat_removal is not None and not self.compat(compat_removal - 1):
            _warn(removal_msg if removal_msg is not None else warning_msg)
            _error(f"This feature was removed in compat {compat_removal}.")
        _warn(warning_msg)
        if compat_removal is not None:
            _warn(f"This feature will be removed in compat {compat_removal}.")
