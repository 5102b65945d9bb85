import os
from functools import lru_cache

from typing import FrozenSet, Optional, Mapping, Dict

from dhlib.util import _warn


def _parse_deb_build_options(value: str) -> Mapping[str, Optional[str]]:
    res: Dict[str, Optional[str]] = {}
    for kvish in value.split():
        if "=" in kvish:
            key, value = kvish.split("=", 1)
            res[key] = value
        else:
            res[kvish] = None
    return res


class DebBuildOptionsAndProfiles:
    """Accessor to DEB_BUILD_OPTIONS and DEB_BUILD_PROFILES

    >>> env = DebBuildOptionsAndProfiles(environ={'DEB_BUILD_PROFILES': 'noudeb nojava'})
    >>> sorted(env.deb_build_profiles)
    ['nojava', 'noudeb']
    """

    def __init__(self, *, environ: Optional[Mapping[str, str]] = None) -> None:
        """Provide a view of the options

        :param environ: Alternative to os.environ. Mostly useful for testing purposes
        """
        if environ is None:
            environ = os.environ
        self._deb_build_profiles = frozenset(
            x for x in environ.get("DEB_BUILD_PROFILES", "").split()
        )
        self._deb_build_options = _parse_deb_build_options(
            environ.get("DEB_BUILD_OPTIONS", "")
        )

    @staticmethod
    @lru_cache(1)
    def instance() -> "DebBuildOptionsAndProfiles":
        return DebBuildOptionsAndProfiles()

    @property
    def deb_build_profiles(self) -> FrozenSet[str]:
        """A set-like view of all build profiles active during the build

        >>> env = DebBuildOptionsAndProfiles(environ={'DEB_BUILD_PROFILES': 'nocheck'})
        >>> 'nocheck' in env.deb_build_profiles
        True
        >>> 'nodoc' in env.deb_build_profiles
        False
        """
        return self._deb_build_profiles

    @property
    def deb_build_options(self) -> Mapping[str, Optional[str]]:
        """A dict-like view of all build options active during the build

        Options without a value map to None.

        >>> env = DebBuildOptionsAndProfiles(environ={'DEB_BUILD_OPTIONS': 'terse parallel=4'})
        >>> env.deb_build_options['terse'] is None
        True
        >>> env.deb_build_options['parallel']
        '4'
        >>> 'nocheck' in env.deb_build_options
        False
        """
        return self._deb_build_options

    @property
    def is_terse(self) -> bool:
        return "terse" in self._deb_build_options

    @property
    def dherroron(self) -> Optional[str]:
        """The value of the "dherroron" build option (if any)

        Unknown values trigger a warning but are still returned.

        >>> env = DebBuildOptionsAndProfiles(environ={'DEB_BUILD_OPTIONS': 'dherroron=obsolete-compat-levels'})
        >>> env.dherroron
        'obsolete-compat-levels'
        >>> DebBuildOptionsAndProfiles(environ={}).dherroron is None
        True
        """
        value = self._deb_build_options.get("dherroron")
        if value is not None and value != "obsolete-compat-levels":
            _warn(
                f'Unknown value "{value}" as parameter for "dherroron" seen in DEB_BUILD_OPTIONS'
            )
        return value
