from typing import (
    Dict,
    List,
    Mapping,
    Optional,
    TYPE_CHECKING,
)

from debian.debian_support import DpkgArchTable

from .architecture_support import (
    DpkgArchitectureBuildProcessValuesTable,
    dpkg_architecture_table,
)
from .util import DEFAULT_PACKAGE_TYPE, UDEB_PACKAGE_TYPE, _error, _warn

if TYPE_CHECKING:
    from .control_file import ParsedControlFile


PACKAGE_SET_KINDS = frozenset({"arch", "indep", "both"})


def _check_binary_arch(
    arch_table: DpkgArchTable,
    binary_arch: str,
    declared_arch: str,
) -> bool:
    if binary_arch == "all":
        return True
    arch_wildcards = declared_arch.split()
    for arch_wildcard in arch_wildcards:
        if arch_table.matches_architecture(binary_arch, arch_wildcard):
            return True
    return False


class BinaryPackage:
    __slots__ = [
        "_package_fields",
        "_dpkg_architecture_variables",
        "_dpkg_arch_query",
        "_is_main_package",
        "_included_in_build_profile",
    ]

    def __init__(
        self,
        fields: Mapping[str, str],
        dpkg_architecture_variables: DpkgArchitectureBuildProcessValuesTable,
        dpkg_arch_query: DpkgArchTable,
        *,
        is_main_package: bool = False,
        included_in_build_profile: bool = True,
    ) -> None:
        self._package_fields = fields
        self._dpkg_architecture_variables = dpkg_architecture_variables
        self._dpkg_arch_query = dpkg_arch_query
        self._is_main_package = is_main_package
        self._included_in_build_profile = included_in_build_profile

    def __repr__(self) -> str:
        return f"<BinaryPackage {self.name} ({self.declared_architecture})>"

    @property
    def name(self) -> str:
        return self.fields["Package"]

    @property
    def archive_section(self) -> str:
        value = self.fields.get("Section")
        if not value:
            return "unknown"
        return value

    @property
    def archive_component(self) -> str:
        component = ""
        section = self.archive_section
        if "/" in section:
            component = section.rsplit("/", 1)[0]
            # The "main" component is always shortened to ""
            if component == "main":
                component = ""
        return component

    @property
    def is_essential(self) -> bool:
        return self._package_fields.get("Essential") == "yes"

    @property
    def is_udeb(self) -> bool:
        return self.package_type == UDEB_PACKAGE_TYPE

    @property
    def fields(self) -> Mapping[str, str]:
        return self._package_fields

    @property
    def build_profiles(self) -> Optional[str]:
        """The raw Build-Profiles field (if present)"""
        return self._package_fields.get("Build-Profiles")

    @property
    def included_in_build_profile(self) -> bool:
        """Whether the Build-Profiles restriction (if any) is satisfied"""
        return self._included_in_build_profile

    @property
    def multi_arch(self) -> str:
        v = self._package_fields.get("Multi-Arch")
        if not v:
            return "no"
        return v

    @property
    def cross_type(self) -> str:
        v = self._package_fields.get("X-DH-Build-For-Type")
        if v is None:
            return "host"
        return v

    @property
    def t64_compat_name(self) -> str:
        return self._package_fields.get("X-Time64-Compat", "")

    @property
    def resolved_architecture(self) -> str:
        arch = self.declared_architecture
        if arch == "all":
            return arch
        if self.cross_type == "target":
            return self._dpkg_architecture_variables["DEB_TARGET_ARCH"]
        return self._dpkg_architecture_variables.current_host_arch

    @property
    def declared_arch_matches_output_arch(self) -> bool:
        if self.declared_architecture == "any":
            return True
        return _check_binary_arch(
            self._dpkg_arch_query,
            self.resolved_architecture,
            self.declared_architecture,
        )

    def package_deb_architecture_variable(self, variable_suffix: str) -> str:
        if self.cross_type == "target":
            return self._dpkg_architecture_variables[f"DEB_TARGET_{variable_suffix}"]
        return self._dpkg_architecture_variables[f"DEB_HOST_{variable_suffix}"]

    @property
    def deb_multiarch(self) -> str:
        return self.package_deb_architecture_variable("MULTIARCH")

    @property
    def package_type(self) -> str:
        """Short for Package-Type (with proper default if absent)"""
        v = self.fields.get("Package-Type")
        if not v:
            return DEFAULT_PACKAGE_TYPE
        return v

    @property
    def is_main_package(self) -> bool:
        return self._is_main_package

    def cross_command(self, command: str) -> str:
        arch_table = self._dpkg_architecture_variables
        if self.cross_type == "target":
            target_gnu_type = arch_table["DEB_TARGET_GNU_TYPE"]
            if arch_table["DEB_HOST_GNU_TYPE"] != target_gnu_type:
                return f"{target_gnu_type}-{command}"
        if arch_table.is_cross_compiling:
            return f"{arch_table['DEB_HOST_GNU_TYPE']}-{command}"
        return command

    @property
    def declared_architecture(self) -> str:
        return self.fields["Architecture"]

    @property
    def is_arch_all(self) -> bool:
        return self.declared_architecture == "all"


class SourcePackage:
    __slots__ = ("_package_fields",)

    def __init__(self, fields: Mapping[str, str]) -> None:
        self._package_fields = fields

    @property
    def fields(self) -> Mapping[str, str]:
        return self._package_fields

    @property
    def name(self) -> str:
        return self._package_fields["Source"]

    @property
    def section(self) -> Optional[str]:
        return self._package_fields.get("Section")


class PackageTable:
    """The binary packages of debian/control grouped into package sets

    * "arch": Architecture-dependent packages built for the host (or, for
      X-DH-Build-For-Type: target, the target) architecture.
    * "indep": Architecture: all packages.
    * "both": arch and indep in control file order.
    * None: every package listed in debian/control (regardless of
      Build-Profiles and architecture restrictions).
    """

    __slots__ = (
        "_parsed_control_file",
        "_dpkg_architecture_variables",
        "_packages_by_type",
    )

    def __init__(
        self,
        parsed_control_file: "ParsedControlFile",
        dpkg_architecture_variables: Optional[
            DpkgArchitectureBuildProcessValuesTable
        ] = None,
    ) -> None:
        if dpkg_architecture_variables is None:
            dpkg_architecture_variables = dpkg_architecture_table()
        self._parsed_control_file = parsed_control_file
        self._dpkg_architecture_variables = dpkg_architecture_variables
        self._packages_by_type = self._compute_package_sets()

    def _compute_package_sets(self) -> Dict[Optional[str], List[str]]:
        by_type: Dict[Optional[str], List[str]] = {
            None: [],
            "arch": [],
            "indep": [],
            "both": [],
        }
        for name, pkg in self._parsed_control_file.binary_packages.items():
            by_type[None].append(name)
            if not pkg.included_in_build_profile:
                continue
            if pkg.is_arch_all:
                by_type["indep"].append(name)
                by_type["both"].append(name)
            elif pkg.declared_arch_matches_output_arch:
                by_type["arch"].append(name)
                by_type["both"].append(name)
        return by_type

    @property
    def parsed_control_file(self) -> "ParsedControlFile":
        return self._parsed_control_file

    def getpackages(self, kind: Optional[str] = None) -> List[str]:
        """Names of the packages in the given package set

        :param kind: One of "arch", "indep", "both" or None (all packages
          listed in debian/control)
        """
        if kind is not None and kind not in PACKAGE_SET_KINDS:
            _error(
                'getpackages: First argument must be one of "arch", "indep", or "both"'
            )
        return list(self._packages_by_type[kind])

    def sourcepackage(self) -> str:
        return self._parsed_control_file.source_package.name

    def package(self, name: str) -> BinaryPackage:
        return self._parsed_control_file.binary_packages[name]

    def is_known_package(self, name: str) -> bool:
        return name in self._parsed_control_file.binary_packages

    def assert_opt_is_known_package(self, name: str, method: str) -> None:
        if not self.is_known_package(name):
            known = " ".join(self.getpackages())
            _error(
                f"Requested unknown package {name} via {method}, expected one of: {known}"
            )

    def _lookup(self, name: str) -> Optional[BinaryPackage]:
        pkg = self._parsed_control_file.binary_packages.get(name)
        if pkg is None:
            _warn(f"package {name} is not in control info")
        return pkg

    def package_binary_arch(self, name: str) -> str:
        """The architecture going into the resulting .deb (host arch or "all")"""
        pkg = self._lookup(name)
        if pkg is None:
            return self._dpkg_architecture_variables.current_host_arch
        return pkg.resolved_architecture

    def package_declared_arch(self, name: str) -> str:
        pkg = self._lookup(name)
        if pkg is None:
            return self._dpkg_architecture_variables.current_host_arch
        return pkg.declared_architecture

    def package_is_arch_all(self, name: str) -> bool:
        pkg = self._lookup(name)
        if pkg is None:
            return False
        return pkg.is_arch_all

    def package_multiarch(self, name: str) -> str:
        pkg = self._lookup(name)
        if pkg is None:
            # The only sane default
            return "no"
        return pkg.multi_arch

    def package_is_essential(self, name: str) -> bool:
        pkg = self._lookup(name)
        if pkg is None:
            return False
        return pkg.is_essential

    def package_field(
        self, name: str, field: str, default_value: Optional[str] = None
    ) -> Optional[str]:
        pkg = self._lookup(name)
        if pkg is None:
            return default_value
        return pkg.fields.get(field, default_value)

    def package_section(self, name: str) -> str:
        pkg = self._lookup(name)
        if pkg is None:
            return "unknown"
        return pkg.archive_section

    def package_cross_type(self, name: str) -> str:
        pkg = self._lookup(name)
        if pkg is None:
            return "host"
        return pkg.cross_type

    def package_type(self, name: str) -> str:
        pkg = self._lookup(name)
        if pkg is None:
            return DEFAULT_PACKAGE_TYPE
        return pkg.package_type

    def t64_compat_name(self, name: str) -> str:
        pkg = self._lookup(name)
        if pkg is None:
            return ""
        return pkg.t64_compat_name

    def is_udeb(self, name: str) -> bool:
        return self.package_type(name) == UDEB_PACKAGE_TYPE

    def compute_doc_main_package(
        self,
        doc_package: str,
        *,
        compat_le_10: bool,
        override: Optional[str] = None,
    ) -> Optional[str]:
        """Guess which package a -doc package hosts documentation for

        :param doc_package: The package that will hold the documentation
        :param compat_le_10: Whether the compat level is 10 or lower (which
          disables the auto-detection)
        :param override: Explicitly chosen package (--doc-main-package)
        :return: The package name or None if it cannot be determined
        """
        if override:
            return override
        if compat_le_10:
            return doc_package
        if not doc_package.endswith("-doc"):
            return doc_package
        target_package = doc_package[:-4]
        if self.is_known_package(target_package):
            return target_package
        if doc_package.startswith("lib") and len(doc_package) > 3:
            # "libFOO-doc" can host docs for "libFOO-dev"
            lib_dev = f"{target_package}-dev"
            if self.is_known_package(lib_dev):
                return lib_dev
        return None
