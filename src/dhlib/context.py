import dataclasses
import os
import shlex
from typing import List, Mapping, MutableMapping, Optional, Sequence

from debian.debian_support import DpkgArchTable

from dhlib import DEFAULT_DATA_DIRS
from dhlib._deb_options_profiles import DebBuildOptionsAndProfiles
from dhlib.architecture_support import (
    DpkgArchitectureBuildProcessValuesTable,
    dpkg_architecture_table,
)
from dhlib.autoscript import AutoscriptEngine
from dhlib.compat import CompatLevelResolver
from dhlib.control_file import ControlFileParser, ParsedControlFile
from dhlib.packages import PackageTable
from dhlib.pkgfile import (
    ConfigFileLookupOptions,
    ConfigFileResolver,
    DEFAULT_LOOKUP_OPTIONS,
)
from dhlib.substitution import VariableExpander
from dhlib.substvars import SubstvarsEngine
from dhlib.util import ColorizedArgumentParser, _error, _warn, program_name
from dhlib.version import __version__


@dataclasses.dataclass(slots=True)
class DhOptions:
    do_packages: List[str] = dataclasses.field(default_factory=list)
    excluded_packages: List[str] = dataclasses.field(default_factory=list)
    main_package: Optional[str] = None
    name: Optional[str] = None
    tmpdir: Optional[str] = None
    verbose: bool = False
    quiet: bool = False
    no_act: bool = False
    exclude: List[str] = dataclasses.field(default_factory=list)
    doc_main_package: Optional[str] = None


class DhContext:
    """State of a single tool invocation

    The collaborators (the parsed debian/control, the compat level, etc.) are
    created on first use and then reused for the lifetime of the context.
    """

    def __init__(
        self,
        source_root: str = ".",
        *,
        environ: Optional[MutableMapping[str, str]] = None,
        dpkg_architecture_variables: Optional[
            DpkgArchitectureBuildProcessValuesTable
        ] = None,
        dpkg_arch_query_table: Optional[DpkgArchTable] = None,
        deb_options_and_profiles: Optional[DebBuildOptionsAndProfiles] = None,
        options: Optional[DhOptions] = None,
        tool_name: Optional[str] = None,
        tool_version: Optional[str] = None,
    ) -> None:
        self.source_root = source_root
        self.environ: MutableMapping[str, str] = (
            environ if environ is not None else os.environ
        )
        self.options = options if options is not None else DhOptions()
        self.tool_name = tool_name if tool_name is not None else program_name()
        self.tool_version = (
            tool_version if tool_version is not None else str(__version__)
        )
        self._dpkg_architecture_variables = dpkg_architecture_variables
        self._dpkg_arch_query_table = dpkg_arch_query_table
        self._deb_options_and_profiles = deb_options_and_profiles
        self._control_file: Optional[ParsedControlFile] = None
        self._packages: Optional[PackageTable] = None
        self._compat_resolver: Optional[CompatLevelResolver] = None
        self._expander: Optional[VariableExpander] = None
        self._config_files: Optional[ConfigFileResolver] = None
        self._autoscripts: Optional[AutoscriptEngine] = None
        self._substvars: Optional[SubstvarsEngine] = None

    @property
    def debian_dir(self) -> str:
        return os.path.join(self.source_root, "debian")

    @property
    def data_dirs(self) -> Sequence[str]:
        """Directories searched for data files (such as autoscripts)"""
        extra = self.environ.get("DH_DATAFILES")
        if extra is None:
            return DEFAULT_DATA_DIRS
        return tuple(d for d in extra.split(":") if d) + DEFAULT_DATA_DIRS

    @property
    def dpkg_architecture_variables(self) -> DpkgArchitectureBuildProcessValuesTable:
        table = self._dpkg_architecture_variables
        if table is None:
            if self.environ is os.environ:
                table = dpkg_architecture_table()
            else:
                table = DpkgArchitectureBuildProcessValuesTable(environ=self.environ)
            self._dpkg_architecture_variables = table
        return table

    @property
    def dpkg_arch_query_table(self) -> DpkgArchTable:
        table = self._dpkg_arch_query_table
        if table is None:
            table = DpkgArchTable.load_arch_table()
            self._dpkg_arch_query_table = table
        return table

    @property
    def deb_options_and_profiles(self) -> DebBuildOptionsAndProfiles:
        instance = self._deb_options_and_profiles
        if instance is None:
            instance = DebBuildOptionsAndProfiles(environ=self.environ)
            self._deb_options_and_profiles = instance
        return instance

    @property
    def control_file(self) -> ParsedControlFile:
        parsed = self._control_file
        if parsed is None:
            parser = ControlFileParser(
                self.deb_options_and_profiles,
                self.dpkg_architecture_variables,
                self.dpkg_arch_query_table,
            )
            parsed = parser.parse(os.path.join(self.debian_dir, "control"))
            self._control_file = parsed
        return parsed

    @property
    def packages(self) -> PackageTable:
        table = self._packages
        if table is None:
            table = PackageTable(self.control_file, self.dpkg_architecture_variables)
            self._packages = table
        return table

    @property
    def compat_resolver(self) -> CompatLevelResolver:
        resolver = self._compat_resolver
        if resolver is None:
            resolver = CompatLevelResolver(
                self.debian_dir,
                lambda: self.control_file,
                environ=self.environ,
                deb_options_and_profiles=self.deb_options_and_profiles,
            )
            self._compat_resolver = resolver
        return resolver

    @property
    def expander(self) -> VariableExpander:
        expander = self._expander
        if expander is None:
            expander = VariableExpander(self.dpkg_architecture_variables, self.environ)
            self._expander = expander
        return expander

    @property
    def config_files(self) -> ConfigFileResolver:
        resolver = self._config_files
        if resolver is None:
            resolver = ConfigFileResolver(self)
            self._config_files = resolver
        return resolver

    @property
    def autoscripts(self) -> AutoscriptEngine:
        engine = self._autoscripts
        if engine is None:
            engine = AutoscriptEngine(self)
            self._autoscripts = engine
        return engine

    @property
    def substvars(self) -> SubstvarsEngine:
        engine = self._substvars
        if engine is None:
            engine = SubstvarsEngine(self)
            self._substvars = engine
        return engine

    def compat(self, level: int, *, nowarn: bool = False) -> bool:
        return self.compat_resolver.compat(level, nowarn=nowarn)

    def getpackages(self, kind: Optional[str] = None) -> List[str]:
        return self.packages.getpackages(kind)

    def pkgfile(
        self,
        package: str,
        kind: str,
        options: ConfigFileLookupOptions = DEFAULT_LOOKUP_OPTIONS,
    ) -> str:
        return self.config_files.pkgfile(package, kind, options)

    @property
    def main_package(self) -> Optional[str]:
        """The package that gets the prefix-less config files

        This is the first package in debian/control unless --mainpackage was
        used.  None if debian/control lists no binary packages.
        """
        if self.options.main_package is not None:
            return self.options.main_package
        packages = self.getpackages()
        if not packages:
            return None
        return packages[0]

    def tmpdir(self, package: str) -> str:
        """The staging directory of the package (relative to the source root)"""
        if self.options.tmpdir:
            return self.options.tmpdir
        return f"debian/{package}"

    def compute_doc_main_package(self, doc_package: str) -> Optional[str]:
        return self.packages.compute_doc_main_package(
            doc_package,
            compat_le_10=self.compat(10),
            override=self.options.doc_main_package,
        )

    def excludefile(self, filename: str) -> bool:
        """Whether -X (or DH_ALWAYS_EXCLUDE) says the file should be excluded"""
        return any(x in filename for x in self.options.exclude)

    def verbose_print(self, message: str) -> None:
        if self.options.verbose:
            print(f"\t{message}")

    def nonquiet_print(self, message: Optional[str] = None) -> None:
        if not self.options.quiet:
            if message is not None:
                print(f"\t{message}")
            else:
                print()


def _option_parser() -> ColorizedArgumentParser:
    parser = ColorizedArgumentParser(prog=program_name(), allow_abbrev=False)
    parser.add_argument(
        "-a",
        "--arch",
        "-s",
        "--same-arch",
        dest="select_arch",
        action="store_true",
        default=False,
        help="Act on all architecture dependent packages",
    )
    parser.add_argument(
        "-i",
        "--indep",
        dest="select_indep",
        action="store_true",
        default=False,
        help="Act on all architecture independent packages",
    )
    parser.add_argument(
        "-p",
        "--package",
        dest="packages",
        action="append",
        default=[],
        help="Act on the given package (can be repeated)",
    )
    parser.add_argument(
        "-N",
        "--no-package",
        dest="excluded_packages",
        action="append",
        default=[],
        help="Do not act on the given package (can be repeated)",
    )
    parser.add_argument("--name", dest="name", default=None)
    parser.add_argument("--mainpackage", dest="main_package", default=None)
    parser.add_argument("--doc-main-package", dest="doc_main_package", default=None)
    parser.add_argument("-P", "--tmpdir", dest="tmpdir", default=None)
    parser.add_argument(
        "-v", "--verbose", dest="verbose", action="store_true", default=False
    )
    parser.add_argument("--no-act", dest="no_act", action="store_true", default=False)
    parser.add_argument(
        "-X",
        "--exclude",
        dest="exclude",
        action="append",
        default=[],
        help="Exclude files containing the given text (can be repeated)",
    )
    return parser


def _is_set(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "") != ""


def init(
    argv: Sequence[str],
    *,
    source_root: str = ".",
    environ: Optional[MutableMapping[str, str]] = None,
    dpkg_architecture_variables: Optional[
        DpkgArchitectureBuildProcessValuesTable
    ] = None,
    dpkg_arch_query_table: Optional[DpkgArchTable] = None,
    tool_name: Optional[str] = None,
    tool_version: Optional[str] = None,
) -> DhContext:
    """Parse the common command line options and create the invocation context

    :param argv: The command line arguments (without the program name)
    """
    if environ is None:
        environ = os.environ
    args = list(argv)
    dh_options = environ.get("DH_OPTIONS", "")
    if dh_options:
        args.extend(shlex.split(dh_options))
    parsed_args = _option_parser().parse_args(args)

    options = DhOptions(
        excluded_packages=list(parsed_args.excluded_packages),
        main_package=parsed_args.main_package,
        name=parsed_args.name,
        tmpdir=parsed_args.tmpdir,
        verbose=parsed_args.verbose,
        no_act=parsed_args.no_act,
        exclude=list(parsed_args.exclude),
        doc_main_package=parsed_args.doc_main_package,
    )
    context = DhContext(
        source_root,
        environ=environ,
        dpkg_architecture_variables=dpkg_architecture_variables,
        dpkg_arch_query_table=dpkg_arch_query_table,
        options=options,
        tool_name=tool_name,
        tool_version=tool_version,
    )

    if _is_set(environ, "DH_ALWAYS_EXCLUDE"):
        options.exclude.extend(x for x in environ["DH_ALWAYS_EXCLUDE"].split(":") if x)

    if _is_set(environ, "DH_VERBOSE"):
        options.verbose = True
    elif _is_set(environ, "DH_QUIET") or context.deb_options_and_profiles.is_terse:
        options.quiet = True

    if _is_set(environ, "DH_NO_ACT"):
        options.no_act = True

    packages = context.packages
    for name in parsed_args.excluded_packages:
        packages.assert_opt_is_known_package(name, "-N/--no-package")
    if options.main_package is not None:
        packages.assert_opt_is_known_package(options.main_package, "--mainpackage")

    selected: List[str] = []
    if parsed_args.select_arch:
        selected.extend(packages.getpackages("arch"))
    if parsed_args.select_indep:
        selected.extend(packages.getpackages("indep"))
    for name in parsed_args.packages:
        packages.assert_opt_is_known_package(name, "-p/--package")
        selected.append(name)
    excluded = set(options.excluded_packages)
    do_packages = [p for p in dict.fromkeys(selected) if p not in excluded]

    if not do_packages:
        if (parsed_args.select_arch or parsed_args.select_indep) and not parsed_args.packages:
            _warn(
                "You asked that all arch in(dep) packages be built, but there are none of that type."
            )
            raise SystemExit(0)
        if not selected:
            do_packages = [
                p for p in packages.getpackages("both") if p not in excluded
            ]
    options.do_packages = do_packages

    if options.tmpdir and len(do_packages) > 1:
        _error(
            f"-P was specified, but multiple packages would be acted on ({','.join(do_packages)})."
        )
    return context
