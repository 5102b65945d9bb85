import argparse
import dataclasses
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from dhlib.context import DhContext, DhOptions
from dhlib.util import _error


CommandHandler = Callable[["CommandContext"], None]
ArgparserConfigurator = Callable[[argparse.ArgumentParser], None]


def add_arg(*name_or_flags: str, **kwargs) -> ArgparserConfigurator:
    def _configurator(argparser: argparse.ArgumentParser) -> None:
        argparser.add_argument(*name_or_flags, **kwargs)

    return _configurator


@dataclasses.dataclass(slots=True, frozen=True)
class CommandArg:
    parsed_args: argparse.Namespace


class CommandContext:
    """What a subcommand handler gets: the parsed arguments and a lazy DhContext"""

    def __init__(self, parsed_args: argparse.Namespace) -> None:
        self.parsed_args = parsed_args
        self._dh_context: Optional[DhContext] = None

    @property
    def dh_context(self) -> DhContext:
        context = self._dh_context
        if context is None:
            parsed_args = self.parsed_args
            options = DhOptions(
                name=getattr(parsed_args, "name", None),
                verbose=parsed_args.verbose,
                no_act=parsed_args.no_act,
            )
            context = DhContext(
                parsed_args.source_root,
                options=options,
                tool_name="dh-query",
            )
            self._dh_context = context
        return context


@dataclasses.dataclass(slots=True, frozen=True)
class Subcommand:
    name: str
    handler: CommandHandler
    help_description: Optional[str] = None
    configurators: Tuple[ArgparserConfigurator, ...] = ()


class DispatcherCommand:
    """Routes the parsed command line to the handler of the chosen subcommand"""

    __slots__ = ("_subcommands", "_dest", "_metavar", "_argparser")

    def __init__(self, dest: str, *, metavar: str = "command") -> None:
        self._subcommands: Dict[str, Subcommand] = {}
        self._dest = dest
        self._metavar = metavar
        self._argparser: Optional[argparse.ArgumentParser] = None

    def register_subcommand(
        self,
        name: str,
        *,
        help_description: Optional[str] = None,
        argparser: Union[
            ArgparserConfigurator, Sequence[ArgparserConfigurator]
        ] = (),
    ) -> Callable[[CommandHandler], CommandHandler]:
        configurators = (argparser,) if callable(argparser) else tuple(argparser)

        def _annotation_impl(func: CommandHandler) -> CommandHandler:
            if name in self._subcommands:
                raise ValueError(f"Internal error: Multiple handlers for {name}")
            self._subcommands[name] = Subcommand(
                name, func, help_description, configurators
            )
            return func

        return _annotation_impl

    def configure(self, argparser: argparse.ArgumentParser) -> None:
        self._argparser = argparser
        subparser = argparser.add_subparsers(
            dest=self._dest,
            required=True,
            metavar=self._metavar,
        )
        for subcommand in self._subcommands.values():
            parser = subparser.add_parser(
                subcommand.name,
                help=subcommand.help_description,
                allow_abbrev=False,
            )
            for configurator in subcommand.configurators:
                configurator(parser)

    def __call__(self, command_arg: CommandArg) -> None:
        argparser = self._argparser
        assert argparser is not None
        v = getattr(command_arg.parsed_args, self._dest, None)
        if v is None:
            _error("Missing command", prog=argparser.prog)
        subcommand = self._subcommands[v]
        subcommand.handler(CommandContext(command_arg.parsed_args))


ROOT_COMMAND = DispatcherCommand("command", metavar="COMMAND")
