import dataclasses
import glob
import os
import stat
from typing import Dict, Iterable, List, Optional, Set, TYPE_CHECKING

from dhlib.util import _error, _warn

if TYPE_CHECKING:
    from dhlib.context import DhContext


@dataclasses.dataclass(slots=True, frozen=True)
class ConfigFileLookupOptions:
    """How `pkgfile` should search for a config file

    :param named: Whether the --name qualifier applies to the file
      (debian/<pkg>.<name>.<kind>)
    :param support_architecture_restriction: Whether architecture and OS
      suffixed variants are considered (debian/<pkg>.<kind>.<arch>)
    :param nameless_variant_handling: Whether the prefix-less variant
      (debian/<kind>) is considered.  When None, it is considered for the
      main package only.
    """

    named: bool = False
    support_architecture_restriction: bool = False
    nameless_variant_handling: Optional[bool] = None


DEFAULT_LOOKUP_OPTIONS = ConfigFileLookupOptions()


def _is_regular_file(path: str) -> bool:
    try:
        st = os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return False
    return stat.S_ISREG(st.st_mode)


def pkgext(package: str) -> str:
    """The prefix of files in debian/ for the given package"""
    return f"{package}."


def pkgfilename(context: "DhContext", package: str) -> str:
    """The name to install files by (the package name unless --name was given)"""
    name = context.options.name
    if name is not None:
        return name
    return package


class ConfigFileResolver:
    """Finds packager provided config files (such as debian/<pkg>.links)

    The candidates are tried in order and the first regular file wins:

        debian/<pkg>.<name>.<kind>.<arch>
        debian/<pkg>.<name>.<kind>.<os>
        debian/<pkg>.<name>.<kind>
        debian/<name>.<kind>

    The ".<name>" segment is only present for named lookups with --name and the
    architecture variants only with support_architecture_restriction.  The
    last (prefix-less) form is deprecated.
    """

    __slots__ = ("_context", "_check_expensive", "_warned")

    def __init__(self, context: "DhContext") -> None:
        self._context = context
        self._check_expensive: Dict[str, bool] = {}
        self._warned: Set[str] = set()

    def clear_cache(self) -> None:
        """Forget which config file kinds have architecture variants"""
        self._check_expensive.clear()

    def _exists(self, candidate: str) -> bool:
        return _is_regular_file(os.path.join(self._context.source_root, candidate))

    def _has_suffixed_variants(self, kind: str) -> bool:
        check_expensive = self._check_expensive.get(kind)
        if check_expensive is None:
            pattern = os.path.join(
                self._context.source_root,
                "debian",
                f"*.{glob.escape(kind)}.*",
            )
            check_expensive = any(
                not p.endswith(".debhelper") for p in glob.iglob(pattern)
            )
            self._check_expensive[kind] = check_expensive
        return check_expensive

    def _arch_candidates(self, package: str, filename: str) -> List[str]:
        context = self._context
        cross_type = context.packages.package_cross_type(package).upper()
        arch_table = context.dpkg_architecture_variables
        return [
            f"debian/{package}.{filename}.{arch_table[f'DEB_{cross_type}_ARCH']}",
            f"debian/{package}.{filename}.{arch_table[f'DEB_{cross_type}_ARCH_OS']}",
        ]

    def _deprecated_nameless_file(
        self, nameless_variant: str, filename: str, *, named: bool
    ) -> None:
        context = self._context
        if named:
            warning = "The use of prefix-less debhelper config files with --name is deprecated."
            error = "Named prefix-less debhelper config files is not supported in compat 15 and later"
            final_warning = "Named prefix-less debhelper config files will trigger an error in compat 15 or later"
        else:
            warning = "The use of prefix-less debhelper config files is deprecated."
            error = "Prefix-less debhelper config files is not supported in compat 15 and later"
            final_warning = "Prefix-less debhelper config files will trigger an error in compat 15 or later"
        if not context.compat(14):
            _warn(warning)
            _warn(
                f'Please rename "{nameless_variant}" to "debian/{context.main_package}.{filename}"'
            )
            _error(error)
        if nameless_variant in self._warned:
            return
        self._warned.add(nameless_variant)
        _warn(warning)
        _warn(
            f'Please rename "{nameless_variant}" to "debian/{context.main_package}.{filename}"'
        )
        _warn(final_warning)

    def pkgfile(
        self,
        package: str,
        kind: str,
        options: ConfigFileLookupOptions = DEFAULT_LOOKUP_OPTIONS,
    ) -> str:
        """Find the config file of the given kind for a package

        :param package: The binary package
        :param kind: The logical file kind such as "links" or "postinst"
        :param options: Lookup options
        :return: The path (relative to the source root) or "" if there is
          no such file
        """
        context = self._context
        named = options.named
        support_architecture_restriction = options.support_architecture_restriction
        if context.compat(13):
            # Before compat 14, these were unconditionally on.
            named = True
            support_architecture_restriction = True

        check_expensive = self._has_suffixed_variants(kind)
        name = context.options.name
        filename = kind
        if name is not None and named:
            filename = f"{name}.{kind}"

        candidates = []
        if check_expensive and support_architecture_restriction:
            candidates.extend(self._arch_candidates(package, filename))
        candidates.append(f"debian/{package}.{filename}")

        nameless_variant = f"debian/{filename}"
        nameless_variant_handling = options.nameless_variant_handling
        if name is not None and not context.compat(13) and self._exists(nameless_variant):
            self._deprecated_nameless_file(nameless_variant, filename, named=True)
        if nameless_variant_handling or (
            nameless_variant_handling is None and package == context.main_package
        ):
            candidates.append(nameless_variant)
            if (
                len(context.packages.getpackages()) > 1
                and not nameless_variant_handling
                and not context.compat(13)
                and self._exists(nameless_variant)
            ):
                self._deprecated_nameless_file(nameless_variant, filename, named=False)

        for candidate in candidates:
            if self._exists(candidate):
                return candidate
        return ""

    def pkgfile_bulk(
        self,
        packages: Iterable[str],
        kind: str,
        options: ConfigFileLookupOptions = DEFAULT_LOOKUP_OPTIONS,
    ) -> str:
        """Whether any variant of the config file exists for any of the packages

        This is a fast check for deciding whether a tool can be skipped.  It
        is not useful for finding the most precise file.

        :param options: Only `named` is used.  The --name qualifier is only
          applied when it is set.
        :return: The first matching path or "" if there is none
        """
        context = self._context
        check_expensive = self._has_suffixed_variants(kind)
        filename = kind
        if context.options.name is not None and options.named:
            filename = f"{context.options.name}.{kind}"
        candidates = [f"debian/{filename}"]
        for package in packages:
            candidates.append(f"debian/{package}.{filename}")
            if check_expensive:
                candidates.extend(self._arch_candidates(package, filename))
        for candidate in candidates:
            if self._exists(candidate):
                return candidate
        return ""
