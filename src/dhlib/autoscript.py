import os
import re
from typing import Callable, Dict, List, Mapping, Optional, Union, TYPE_CHECKING

from dhlib.pkgfile import ConfigFileLookupOptions, pkgext
from dhlib.util import (
    MAINTSCRIPT_TOKEN_NAME_PATTERN,
    MAINTSCRIPT_TOKEN_NAME_REGEX,
    _error,
    _warn,
    ensure_dir,
    escape_shell,
    rename_path,
)

if TYPE_CHECKING:
    from dhlib.context import DhContext


STD_CONTROL_SCRIPTS = frozenset(
    {
        "preinst",
        "prerm",
        "postinst",
        "postrm",
    }
)
UDEB_CONTROL_SCRIPTS = frozenset(
    {
        "postinst",
        "menutest",
        "isinstallable",
    }
)
ALL_CONTROL_SCRIPTS = STD_CONTROL_SCRIPTS | UDEB_CONTROL_SCRIPTS | {"config"}
# Scripts run when removing a package; snippets are added in reverse order
REMOVAL_SCRIPTS = frozenset({"prerm", "postrm"})
KNOWN_SNIPPET_ORDERS = frozenset({"service"})
VALID_TRIGGER_TYPES = frozenset(
    {
        "interest",
        "interest-await",
        "interest-noawait",
        "activate",
        "activate-await",
        "activate-noawait",
    }
)

_TOKEN_RE = re.compile(f"#({MAINTSCRIPT_TOKEN_NAME_PATTERN})#")
_ARCH_VAR_RE = re.compile(r"^DEB_(?:BUILD|HOST|TARGET)_")
_ENV_TOKEN_RE = re.compile(r"^ENV[.](\S+)$")

SubstitutionValue = Union[str, Callable[[str], Optional[str]]]
Substitution = Union[Mapping[str, str], Callable[[str], str], None]


def _read_text(path: str) -> str:
    try:
        with open(
            path, encoding="utf-8", errors="surrogateescape", newline=""
        ) as fd:
            return fd.read()
    except OSError as e:
        _error(f"open({path}) failed: {e.strerror}")


def _split_lines(text: str) -> List[str]:
    """Split on "\\n" only (keeping the line endings)

    >>> _split_lines("a\\rb\\nc")
    ['a\\rb\\n', 'c']
    """
    *lines, last = text.split("\n")
    result = [f"{line}\n" for line in lines]
    if last:
        result.append(last)
    return result


def _write_text(path: str, content: str, *, mode: Optional[int] = None) -> None:
    """Write `content` to a temporary file and rename it into place"""
    tmp_path = f"{path}.new"
    try:
        with open(
            tmp_path, "w", encoding="utf-8", errors="surrogateescape", newline=""
        ) as fd:
            fd.write(content)
        if mode is not None:
            os.chmod(tmp_path, mode)
    except OSError as e:
        _error(f"open({tmp_path}) failed: {e.strerror}")
    rename_path(tmp_path, path)


def _concat_script_files(files: List[str]) -> str:
    return "".join(_read_text(f) for f in files)


def substitute_tokens(line: str, substitution: Mapping[str, str]) -> str:
    """Replace the #TOKEN#s of `substitution` in `line`

    >>> substitute_tokens("echo #PACKAGE# #PACKAGE_NAME#", {"PACKAGE": "foo", "PACKAGE_NAME": "bar"})
    'echo foo bar'
    >>> substitute_tokens("echo #UNKNOWN#", {"PACKAGE": "foo"})
    'echo #UNKNOWN#'
    """
    if not substitution:
        return line
    # Longer keys sort first among keys sharing a prefix
    keys = sorted(substitution, reverse=True)
    regex = re.compile("#(" + "|".join(re.escape(k) for k in keys) + ")#")
    return regex.sub(lambda m: substitution[m.group(1)], line)


class AutoscriptEngine:
    """Adds shell snippets to the generated maintainer scripts of packages"""

    __slots__ = ("_context",)

    def __init__(self, context: "DhContext") -> None:
        self._context = context

    def _path(self, path: str) -> str:
        return os.path.join(self._context.source_root, path)

    def generated_file(self, package: str, name: str, mkdirs: bool = True) -> str:
        """Path to a generated file for the package (relative to the source root)

        The package can be "_source" for files relevant to the source package.
        """
        directory = f"debian/.debhelper/generated/{package}"
        if mkdirs and not self._context.options.no_act:
            ensure_dir(self._path(directory))
        return f"{directory}/{name}"

    def autoscript_search_dirs(self) -> List[str]:
        context = self._context
        dirs = [os.path.join(d, "autoscripts") for d in context.data_dirs]
        autoscript_dir = context.environ.get("DH_AUTOSCRIPTDIR")
        if autoscript_dir is not None:
            dirs.insert(0, autoscript_dir)
        return dirs

    def find_autoscript(self, snippet_name: str) -> str:
        for directory in self.autoscript_search_dirs():
            path = os.path.join(directory, snippet_name)
            if os.path.exists(path):
                return path
        search_path = ":".join(self.autoscript_search_dirs())
        _error(f"Could not find autoscript {snippet_name} (search path: {search_path})")

    def _snippet_content(self, infile: str, substitution: Substitution) -> str:
        lines = _split_lines(_read_text(infile))
        if substitution is None:
            return "".join(lines)
        if callable(substitution):
            return "".join(substitution(line) for line in lines)
        for key in substitution:
            if not MAINTSCRIPT_TOKEN_NAME_REGEX.fullmatch(key):
                _error(
                    f'Internal error - invalid token name "{key}" (must match {MAINTSCRIPT_TOKEN_NAME_PATTERN})'
                )
        return "".join(substitute_tokens(line, substitution) for line in lines)

    def autoscript(
        self,
        package: str,
        script: str,
        snippet_name: str,
        substitution: Substitution = None,
        *,
        snippet_order: Optional[str] = None,
    ) -> None:
        """Add a snippet to a generated maintainer script

        Snippets for prerm and postrm are prepended, so they are undone in
        the reverse order they were added.  All other snippets are appended.

        :param package: The binary package
        :param script: The maintainer script (such as "postinst")
        :param snippet_name: Name of the autoscript template
        :param substitution: A mapping from #TOKEN# names to their value, a
          function applied to each line or None (used verbatim)
        :param snippet_order: If "service", the snippet goes into a separate
          file that is merged after the regular snippets
        """
        context = self._context
        outfile = f"debian/{pkgext(package)}{script}.debhelper"
        if snippet_order is not None:
            if snippet_order not in KNOWN_SNIPPET_ORDERS:
                _error(
                    f'Internal error - snippet order set to unknown value: "{snippet_order}"'
                )
            outfile = self.generated_file(package, f"{script}.{snippet_order}")

        infile = self.find_autoscript(snippet_name)
        full_outfile = self._path(outfile)
        marker = f"# Automatically added by {context.tool_name}/{context.tool_version}\n"
        prepend = script in REMOVAL_SCRIPTS and os.path.exists(full_outfile)
        if prepend:
            context.verbose_print(
                f'[META] Prepend autosnippet "{snippet_name}" to {script} [{outfile}.new]'
            )
        else:
            context.verbose_print(
                f'[META] Append autosnippet "{snippet_name}" to {script} [{outfile}]'
            )
        if context.options.no_act:
            return

        snippet = "".join(
            (
                marker,
                self._snippet_content(infile, substitution),
                "# End automatically added section\n",
            )
        )
        existing = _read_text(full_outfile) if os.path.exists(full_outfile) else ""
        if prepend:
            content = snippet + existing
        else:
            content = existing + snippet
        _write_text(full_outfile, content)

    def autotrigger(self, package: str, trigger_type: str, target: str) -> None:
        """Add a trigger to the package (replacing an identical existing one)"""
        context = self._context
        if trigger_type not in VALID_TRIGGER_TYPES:
            raise ValueError(f"Invalid/unknown trigger {trigger_type}")
        if context.options.no_act:
            return
        triggers_file = self._path(self.generated_file(package, "triggers"))
        existing_trigger = re.compile(
            r"\A" + re.escape(trigger_type) + r"\s+" + re.escape(target) + r"(?:\s|\Z)"
        )
        lines = []
        if os.path.isfile(triggers_file):
            lines = [
                line
                for line in _split_lines(_read_text(triggers_file))
                if not existing_trigger.match(line)
            ]
        lines.append(f"# Triggers added by {context.tool_name}/{context.tool_version}\n")
        lines.append(f"{trigger_type} {target}\n")
        _write_text(triggers_file, "".join(lines))

    def _substitution_generator(
        self, variables: Mapping[str, SubstitutionValue]
    ) -> Callable[[str], Optional[str]]:
        context = self._context
        cache: Dict[str, Optional[str]] = {}

        def _lookup(key: str) -> Optional[str]:
            if key in cache:
                return cache[key]
            value = variables.get(key)
            if value is None:
                if _ARCH_VAR_RE.match(key):
                    result = context.dpkg_architecture_variables.get(key)
                else:
                    m = _ENV_TOKEN_RE.match(key)
                    result = context.environ.get(m.group(1), "") if m else None
            elif callable(value):
                result = value(key)
            elif value.startswith("@"):
                result = _concat_script_files([self._path(value[1:])])
            else:
                result = value
            cache[key] = result
            return result

        return _lookup

    def debhelper_script_per_package_subst(
        self, package: str, provided: Mapping[str, SubstitutionValue]
    ) -> Dict[str, SubstitutionValue]:
        """Token values for the maintainer scripts of a package

        Adds PACKAGE and unfolds "pkg.<package>.<token>" keys into "<token>".
        """
        variables = dict(provided)
        variables.setdefault("PACKAGE", package)
        prefix = f"pkg.{package}."
        for var, value in provided.items():
            if not MAINTSCRIPT_TOKEN_NAME_REGEX.fullmatch(var):
                _warn(
                    f"User defined token {var} does not match {MAINTSCRIPT_TOKEN_NAME_PATTERN}"
                )
                _error(
                    f"Invalid provided token {var}: It cannot be substituted as it does not follow the token name rules"
                )
            if var.startswith(prefix) and len(var) > len(prefix):
                variables[var[len(prefix) :]] = value
        return variables

    def debhelper_script_subst(
        self,
        package: str,
        script: str,
        extra_vars: Optional[Mapping[str, SubstitutionValue]] = None,
    ) -> None:
        """Install the maintainer script of a package with #TOKEN#s expanded

        #DEBHELPER# expands to the generated snippets.  When the packager
        provides no script, one is created from the generated snippets (if
        there are any).
        """
        context = self._context
        tmp = context.tmpdir(package)
        script_file = context.config_files.pkgfile(
            package,
            script,
            ConfigFileLookupOptions(named=False, support_architecture_restriction=False),
        )
        variables: Dict[str, SubstitutionValue] = dict(extra_vars) if extra_vars else {}
        service_script = self.generated_file(package, f"{script}.service", mkdirs=False)
        generated_scripts = [
            p
            for p in (f"debian/{pkgext(package)}{script}.debhelper", service_script)
            if os.path.isfile(self._path(p))
        ]
        if script in REMOVAL_SCRIPTS:
            generated_scripts.reverse()
        if "DEBHELPER" not in variables:
            variables["DEBHELPER"] = lambda _: _concat_script_files(
                [self._path(p) for p in generated_scripts]
            )
        lookup = self._substitution_generator(variables)
        outfile = f"{tmp}/DEBIAN/{script}"
        full_outfile = self._path(outfile)

        if script_file != "":
            context.verbose_print(f"cp -f {escape_shell(script_file)} {outfile}")
            context.verbose_print(f'[META] Replace #TOKEN#s in "{outfile}"')
            if context.options.no_act:
                return

            def _replace(m: "re.Match[str]") -> str:
                value = lookup(m.group(1))
                return value if value is not None else m.group(0)

            content = _TOKEN_RE.sub(_replace, _read_text(self._path(script_file)))
        elif generated_scripts:
            context.verbose_print(f"printf '#!/bin/sh\\nset -e\\n' > {outfile}")
            context.verbose_print(f"cat {' '.join(generated_scripts)} >> {outfile}")
            if context.options.no_act:
                return
            content = "#!/bin/sh\nset -e\n" + _concat_script_files(
                [self._path(p) for p in generated_scripts]
            )
        else:
            return
        ensure_dir(os.path.dirname(full_outfile))
        _write_text(full_outfile, content, mode=0o755)
