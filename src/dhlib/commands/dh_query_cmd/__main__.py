#!/usr/bin/python3 -B
import argparse
import sys
import textwrap
from typing import List, Optional, Sequence

from dhlib.commands.dh_query_cmd.context import (
    CommandArg,
    CommandContext,
    ROOT_COMMAND,
    add_arg,
)
from dhlib.exceptions import DhRuntimeError
from dhlib.pkgfile import ConfigFileLookupOptions
from dhlib.util import (
    ColorizedArgumentParser,
    _error,
    _info,
    program_name,
    setup_logging,
)
from dhlib.version import __version__

_PACKAGE_SET_CHOICES = {
    "all": None,
    "arch": "arch",
    "indep": "indep",
    "both": "both",
}


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-C",
        "--directory",
        dest="source_root",
        action="store",
        default=".",
        help="The root of the unpacked source package (default: %(default)s)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        dest="verbose",
        action="store_true",
        default=False,
        help="Print the commands that modify files",
    )
    parser.add_argument(
        "--no-act",
        dest="no_act",
        action="store_true",
        default=False,
        help="Do not modify any files",
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    description = textwrap.dedent(
        """\
    The `dh-query` program answers questions about a Debian source package the
    same way the debhelper tools see it (package sets, compat level, config
    files, variable expansion) and manipulates its substvars files.
    """
    )

    parser: argparse.ArgumentParser = ColorizedArgumentParser(
        description=description,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        prog=program_name(),
    )

    parser.add_argument("--version", action="version", version=str(__version__))

    _add_common_args(parser)
    ROOT_COMMAND.configure(parser)
    return parser.parse_args(argv)


@ROOT_COMMAND.register_subcommand(
    "packages",
    help_description="List the binary packages acted on by default",
    argparser=add_arg(
        "--kind",
        dest="kind",
        choices=sorted(_PACKAGE_SET_CHOICES),
        default="both",
        help="The package set to list (default: %(default)s)",
    ),
)
def _packages(context: CommandContext) -> None:
    kind = _PACKAGE_SET_CHOICES[context.parsed_args.kind]
    for package in context.dh_context.getpackages(kind):
        print(package)


@ROOT_COMMAND.register_subcommand(
    "compat",
    help_description="Show the active compat level",
    argparser=add_arg(
        "--check-at-most",
        dest="check_level",
        type=int,
        default=None,
        help="Exit with status 0 if the compat level is at most the given level and 1 otherwise",
    ),
)
def _compat(context: CommandContext) -> None:
    dh_context = context.dh_context
    check_level = context.parsed_args.check_level
    if check_level is not None:
        sys.exit(0 if dh_context.compat(check_level) else 1)
    info = dh_context.compat_resolver.compat_info()
    if info.declared_source is not None:
        print(f"{info.level} (declared: {info.declared_level} via {info.declared_source})")
    else:
        print(info.level)


@ROOT_COMMAND.register_subcommand(
    "pkgfile",
    help_description="Show the config file that would be used for a package",
    argparser=[
        add_arg("package", metavar="PACKAGE"),
        add_arg("kind", metavar="KIND", help='The file type such as "install"'),
        add_arg(
            "--name",
            dest="name",
            default=None,
            help="Look up debian/PACKAGE.NAME.KIND (like --name for debhelper tools)",
        ),
        add_arg(
            "--arch-restriction",
            dest="arch_restriction",
            action="store_true",
            default=False,
            help="Consider architecture (or OS) specific variants of the file",
        ),
    ],
)
def _pkgfile(context: CommandContext) -> None:
    parsed_args = context.parsed_args
    dh_context = context.dh_context
    dh_context.packages.assert_opt_is_known_package(parsed_args.package, "PACKAGE")
    options = ConfigFileLookupOptions(
        named=parsed_args.name is not None,
        support_architecture_restriction=parsed_args.arch_restriction,
    )
    path = dh_context.pkgfile(parsed_args.package, parsed_args.kind, options)
    if not path:
        sys.exit(1)
    print(path)


@ROOT_COMMAND.register_subcommand(
    "expand",
    help_description="Expand ${...} variables like in debhelper config files",
    argparser=[
        add_arg("text", metavar="TEXT"),
        add_arg(
            "--location",
            dest="location",
            default="command line",
            help="Where the text comes from (used in error messages)",
        ),
    ],
)
def _expand(context: CommandContext) -> None:
    parsed_args = context.parsed_args
    print(context.dh_context.expander.expand(parsed_args.text, parsed_args.location))


@ROOT_COMMAND.register_subcommand(
    "addsubstvar",
    help_description="Add (or remove) a dependency in a substvar of a package",
    argparser=[
        add_arg("package", metavar="PACKAGE"),
        add_arg("variable", metavar="VARIABLE", help='Such as "misc:Depends"'),
        add_arg("dependency", metavar="DEPENDENCY", nargs="?", default=None),
        add_arg(
            "--version-constraint",
            dest="version_constraint",
            default=None,
            help='Version relation for the dependency such as ">= 1.0"',
        ),
        add_arg(
            "--remove",
            dest="remove",
            action="store_true",
            default=False,
            help="Remove the dependency instead of adding it",
        ),
    ],
)
def _addsubstvar(context: CommandContext) -> None:
    parsed_args = context.parsed_args
    dh_context = context.dh_context
    dh_context.packages.assert_opt_is_known_package(parsed_args.package, "PACKAGE")
    changed = dh_context.substvars.addsubstvar(
        parsed_args.package,
        parsed_args.variable,
        parsed_args.dependency,
        version_constraint=parsed_args.version_constraint,
        remove=parsed_args.remove,
    )
    if not changed:
        _info(f"{parsed_args.variable} of {parsed_args.package} was already up to date")


@ROOT_COMMAND.register_subcommand(
    "delsubstvar",
    help_description="Remove a substvar from the substvars file of a package",
    argparser=[
        add_arg("package", metavar="PACKAGE"),
        add_arg("variable", metavar="VARIABLE"),
    ],
)
def _delsubstvar(context: CommandContext) -> None:
    parsed_args = context.parsed_args
    dh_context = context.dh_context
    dh_context.packages.assert_opt_is_known_package(parsed_args.package, "PACKAGE")
    if not dh_context.substvars.delsubstvar(parsed_args.package, parsed_args.variable):
        _info(f"{parsed_args.variable} of {parsed_args.package} was not set")


def main(argv: Optional[List[str]] = None) -> None:
    setup_logging(reconfigure_logging=True)
    parsed_args = parse_args(argv)
    try:
        ROOT_COMMAND(CommandArg(parsed_args))
    except DhRuntimeError as e:
        _error(e.message)


if __name__ == "__main__":
    main()
