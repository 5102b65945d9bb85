import os
import re
from typing import Mapping, NoReturn, Optional

from dhlib.architecture_support import (
    dpkg_architecture_table,
    DpkgArchitectureBuildProcessValuesTable,
)
from dhlib.exceptions import DhSubstitutionError


SUBST_VAR_RE = re.compile(
    r"""
    [$][{]
    (
        [A-Za-z0-9]
        [-_:0-9A-Za-z]*
    )
    [}]
""",
    re.VERBOSE,
)
_ARCH_VAR_RE = re.compile(r"^DEB_(?:BUILD|HOST|TARGET)_")

# Stand-in for a literal "$" in inserted values until the expansion is complete
_ESCAPED_DOLLAR = "${}"

EXPANSION_COUNT_LIMIT = 50
SAME_POSITION_RECURSION_LIMIT = 20
EXPANSION_MIN_SUPPORTED_SIZE_LIMIT = 4096
# How much the input may grow relative to its original size (but
# EXPANSION_MIN_SUPPORTED_SIZE_LIMIT overrules this for small inputs)
EXPANSION_DYNAMIC_EXPANSION_FACTOR_LIMIT = 3

BUILT_IN_SUBSTITUTIONS: Mapping[str, str] = {
    "Space": " ",
    "Dollar": "$",
    "Newline": "\n",
    "Tab": "\t",
}


class VariableExpander:
    """Expands ${...} variables in config file content

    >>> from dhlib.architecture_support import DpkgArchitectureBuildProcessValuesTable
    >>> table = DpkgArchitectureBuildProcessValuesTable(mocked_answers={"DEB_HOST_ARCH": "amd64"})
    >>> expander = VariableExpander(table, {"HOME": "/root"})
    >>> expander.expand("usr/lib/${DEB_HOST_ARCH}${Space}${env:HOME}", "doctest")
    'usr/lib/amd64 /root'
    >>> expander.expand("${Dollar}{Space}", "doctest")
    '${Space}'
    """

    __slots__ = ("_dpkg_arch_table", "_env", "_static_variables")

    def __init__(
        self,
        dpkg_arch_table: Optional[DpkgArchitectureBuildProcessValuesTable] = None,
        environ: Optional[Mapping[str, str]] = None,
        static_variables: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._dpkg_arch_table = (
            dpkg_arch_table
            if dpkg_arch_table is not None
            else dpkg_architecture_table()
        )
        self._env = environ if environ is not None else os.environ
        self._static_variables = (
            dict(static_variables) if static_variables is not None else {}
        )

    def with_extra_substitutions(self, **extra_substitutions: str) -> "VariableExpander":
        if not extra_substitutions:
            return self
        static_variables = dict(self._static_variables)
        static_variables.update(extra_substitutions)
        return VariableExpander(
            self._dpkg_arch_table,
            self._env,
            static_variables=static_variables,
        )

    def _error(self, msg: str, location: str) -> NoReturn:
        raise DhSubstitutionError(msg, location)

    def _replacement(self, key: str, location: str) -> str:
        value = BUILT_IN_SUBSTITUTIONS.get(key)
        if value is not None:
            return value.replace("$", _ESCAPED_DOLLAR)
        static_value = self._static_variables.get(key)
        if static_value is not None:
            # Static values are macros and get re-scanned
            return static_value
        if _ARCH_VAR_RE.match(key):
            arch_value = self._dpkg_arch_table.get(key)
            if arch_value is None:
                self._error(
                    f'Cannot expand "${{{key}}}" in {location} as it is not a known dpkg-architecture value',
                    location,
                )
            return arch_value.replace("$", _ESCAPED_DOLLAR)
        if key.startswith("env:") and len(key) > 4:
            env_var = key[4:]
            env_value = self._env.get(env_var)
            if env_value is None:
                self._error(
                    f'Cannot expand "${{{key}}}" in {location} as the ENV variable "{env_var}" is unset',
                    location,
                )
            return env_value.replace("$", _ESCAPED_DOLLAR)
        self._error(f'Cannot resolve variable "${{{key}}}" in {location}', location)

    def expand(self, text: str, location: str) -> str:
        """Expand all variables in `text`

        :param text: The text to expand
        :param location: Human readable description of where the text came
          from.  It is used in error messages.
        :return: The expanded text
        :raises DhSubstitutionError: If a variable cannot be resolved or the
          expansion exceeds one of the safety limits.
        """
        if "$" not in text:
            return text
        pos = -1
        subst_count = 0
        expansion_count = 0
        current_size = len(text)
        expansion_size_limit = max(
            EXPANSION_MIN_SUPPORTED_SIZE_LIMIT,
            EXPANSION_DYNAMIC_EXPANSION_FACTOR_LIMIT * current_size,
        )
        while True:
            m = SUBST_VAR_RE.search(text)
            if m is None:
                break
            key = m.group(1)
            start, end = m.span()
            if start == pos:
                subst_count += 1
                if subst_count >= SAME_POSITION_RECURSION_LIMIT:
                    self._error(
                        f"Error substituting in {location} (at position {pos}); recursion limit while expanding ${{{key}}}",
                        location,
                    )
            else:
                subst_count = 0
                pos = start
                expansion_count += 1
                if expansion_count >= EXPANSION_COUNT_LIMIT:
                    self._error(
                        f"Error substituting in {location}; substitution limit of {expansion_count} reached",
                        location,
                    )
            value = self._replacement(key, location)
            current_size += len(value) - len(key) - 3
            if current_size > expansion_size_limit:
                self._error(
                    f"Refusing to expand ${{{key}}} in {location} - the original input seems to grow beyond reasonable limits!",
                    location,
                )
            text = text[:start] + value + text[end:]
        return text.replace(_ESCAPED_DOLLAR, "$")
