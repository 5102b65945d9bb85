import glob
import os
import subprocess
from typing import Callable, List, NoReturn, Optional, Sequence, TYPE_CHECKING, Union

from dhlib.util import _error, _warn, escape_shell

if TYPE_CHECKING:
    from dhlib.context import DhContext


GlobErrorHandler = Callable[[str, Sequence[str]], None]


def _glob_expand_error_default_msg(pattern: str, dirs: Sequence[str]) -> str:
    dir_list = ", ".join(escape_shell(d) for d in dirs)
    return f'Cannot find (any matches for) "{pattern}" (tried in {dir_list})'


def glob_expand_error_handler_reject(pattern: str, dirs: Sequence[str]) -> None:
    _error(_glob_expand_error_default_msg(pattern, dirs))


def glob_expand_error_handler_warn_and_discard(
    pattern: str, dirs: Sequence[str]
) -> None:
    _warn(_glob_expand_error_default_msg(pattern, dirs))


def glob_expand_error_handler_reject_nomagic_warn_discard(
    pattern: str, dirs: Sequence[str]
) -> None:
    """Reject patterns without glob characters; warn about the rest

    Emulates the old glob mechanism that permitted globs to expand to nothing
    with only a warning.
    """
    if not glob.has_magic(pattern):
        glob_expand_error_handler_reject(pattern, dirs)
    else:
        glob_expand_error_handler_warn_and_discard(pattern, dirs)


def glob_expand_error_handler_silently_ignore(
    pattern: str, dirs: Sequence[str]
) -> None:
    pass


def glob_expand(
    dirs: Sequence[str],
    error_handler: Optional[GlobErrorHandler],
    *patterns: str,
) -> List[str]:
    """Expand each pattern in the first directory of `dirs` where it matches

    The matches are returned with their directory prefix.  Patterns that
    match nothing in any directory are passed to `error_handler` (which
    defaults to rejecting them).
    """
    result = []
    for pattern in patterns:
        matches: List[str] = []
        for d in dirs:
            full_pattern = os.path.join(d, pattern)
            matches = sorted(glob.glob(full_pattern))
            if matches:
                break
            # Literal file names that happen to look like globs
            if os.path.lexists(full_pattern):
                matches = [full_pattern]
                break
        if not matches:
            if error_handler is None:
                error_handler = glob_expand_error_handler_reject
            error_handler(pattern, dirs)
        result.extend(matches)
    return result


def _looks_executable(path: str) -> bool:
    with open(path, "rb") as fd:
        prefix = fd.read(4)
    return prefix.startswith(b"#!") or prefix == b"\x7fELF"


def _executable_config_file_failed(path: str, returncode: int) -> NoReturn:
    if not _looks_executable(path):
        _warn(f"{path} is marked executable but does not appear to an executable config.")
        _warn()
        _warn(f"If {path} is intended to be an executable config file, please ensure it can")
        _warn(f'be run as a stand-alone script/program (e.g. "./{path}")')
        _warn(
            f'Otherwise, please remove the executable bit from the file (e.g. chmod -x "{path}")'
        )
        _warn()
        _warn(
            'Please see "Executable debhelper config files" in debhelper(7) for more information.'
        )
        _warn()
    if returncode < 0:
        _error(f"{path} (executable config) died with signal {-returncode}")
    _error(f"{path} (executable config) returned exit code {returncode}")


def _read_config_lines(
    context: "DhContext", path: str, is_executable: bool
) -> List[str]:
    if not is_executable:
        try:
            with open(path, encoding="utf-8", errors="surrogateescape", newline="") as fd:
                return fd.read().split("\n")
        except OSError as e:
            _error(f"cannot read {path}: {e.strerror}")
    env = dict(context.environ)
    env["DH_CONFIG_ACT_ON_PACKAGES"] = ",".join(context.options.do_packages)
    try:
        proc = subprocess.run(
            [os.path.abspath(path)],
            env=env,
            stdout=subprocess.PIPE,
            cwd=context.source_root,
        )
    except OSError as e:
        _error(f"cannot run {path}: {e.strerror}")
    if proc.returncode != 0:
        _executable_config_file_failed(path, proc.returncode)
    return proc.stdout.decode("utf-8", errors="surrogateescape").split("\n")


def filedoublearray(
    context: "DhContext",
    path: str,
    globdir: Union[str, Sequence[str], None] = None,
    error_handler: Optional[GlobErrorHandler] = None,
) -> List[List[str]]:
    """Read a config file into a list of lines each split into words

    Comments and empty lines are ignored.  From compat 9, executable config
    files are run and their output is used instead.  From compat 13, each word
    is subject to variable expansion.

    :param context: The invocation context
    :param path: The config file (relative to the source root)
    :param globdir: If a sequence of directories, each word is glob expanded
      via glob_expand.  If a single directory, each word is glob expanded
      relative to it.  Globs matching nothing are silently discarded while
      words without glob characters are kept as-is.
    :param error_handler: Passed to glob_expand
    """
    full_path = os.path.join(context.source_root, path)
    is_executable = not context.compat(8) and os.access(full_path, os.X_OK)
    expand_patterns = not context.compat(12)
    source = f"output of ./{path}" if is_executable else path
    expander = context.expander

    result = []
    for line_no, line in enumerate(
        _read_config_lines(context, full_path, is_executable), start=1
    ):
        if is_executable:
            if line != "" and line.isspace():
                _error(
                    f"Executable config file {path} produced a non-empty whitespace-only line"
                )
        else:
            line = line.strip()
            if line.startswith("#"):
                continue
        if line == "":
            continue
        source_ref = f"{source} (line {line_no})"
        words = line.split()
        if globdir is not None and not is_executable:
            if isinstance(globdir, str):
                # Legacy call - silently discards globs that match nothing.
                # Words without glob characters are kept as-is.
                full_globdir = os.path.join(context.source_root, globdir)
                words_out = []
                for pattern in words:
                    full_pattern = os.path.join(full_globdir, pattern)
                    if glob.has_magic(pattern):
                        matches = sorted(glob.glob(full_pattern))
                    else:
                        matches = [full_pattern]
                    for match in matches:
                        match = os.path.relpath(match, full_globdir)
                        if expand_patterns:
                            match = expander.expand(match, source_ref)
                        words_out.append(match)
                words = words_out
            else:
                if expand_patterns:
                    words = [expander.expand(w, source_ref) for w in words]
                words = glob_expand(globdir, error_handler, *words)
        elif expand_patterns:
            words = [expander.expand(w, source_ref) for w in words]
        result.append(words)
    return result


def filearray(
    context: "DhContext",
    path: str,
    globdir: Union[str, Sequence[str], None] = None,
    error_handler: Optional[GlobErrorHandler] = None,
) -> List[str]:
    """Like filedoublearray but with all the words in a single list"""
    return [
        word
        for line in filedoublearray(context, path, globdir, error_handler)
        for word in line
    ]
