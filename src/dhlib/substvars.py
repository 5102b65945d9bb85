import os
import re
from typing import Callable, Dict, Iterable, List, Optional, TYPE_CHECKING

from dhlib.pkgfile import pkgext
from dhlib.util import _error, _warn, rename_path

if TYPE_CHECKING:
    from dhlib.context import DhContext


# Returns the new line, the line unchanged or None to delete it
LineUpdate = Callable[[str], Optional[str]]
LineInsert = Callable[[], Iterable[str]]


def _substvar_line_re(var: str) -> "re.Pattern[str]":
    return re.compile(r"^" + re.escape(var) + r"([?]?=)(.*)", re.DOTALL)


def _split_items(value: str) -> Dict[str, bool]:
    """Parse the value of a substvar line into its (ordered) items

    >>> list(_split_items("foo, bar (>= 1.0)"))
    ['foo', 'bar (>= 1.0)']
    >>> list(_split_items(""))
    []
    """
    return {item: True for item in value.split(", ") if item != ""}


class SubstvarsEngine:
    """Maintains the debian/<pkg>.substvars files"""

    __slots__ = ("_context",)

    def __init__(self, context: "DhContext") -> None:
        self._context = context

    def _path(self, path: str) -> str:
        return os.path.join(self._context.source_root, path)

    def update_substvars_file(
        self,
        path: str,
        update: LineUpdate,
        insert: Optional[LineInsert] = None,
    ) -> bool:
        """Rewrite a substvars file line by line

        The file is only written if its content changes.

        :param path: The substvars file (relative to the source root)
        :param update: Called for each existing line
        :param insert: Called after all lines have been seen.  Its lines are
          appended to the file.
        :return: True if the file was (or, in no-act mode, would have been)
          rewritten
        """
        full_path = self._path(path)
        lines: List[str] = []
        changed = False
        if os.path.isfile(full_path):
            try:
                with open(
                    full_path, encoding="utf-8", errors="surrogateescape", newline=""
                ) as fd:
                    existing = fd.read().split("\n")
                if existing[-1] == "":
                    existing.pop()
            except OSError as e:
                _error(f"open({path}): {e.strerror}")
            for line in existing:
                updated = update(line)
                if updated is None or updated != line:
                    changed = True
                if updated is not None:
                    lines.append(updated)
        if insert is not None:
            inserted = list(insert())
            if inserted:
                lines.extend(inserted)
                changed = True
        if changed and not self._context.options.no_act:
            tmp_path = f"{full_path}.new"
            try:
                with open(
                    tmp_path, "w", encoding="utf-8", errors="surrogateescape", newline=""
                ) as fd:
                    fd.writelines(f"{line}\n" for line in lines)
            except OSError as e:
                _error(f'open({path}.new, "w"): {e.strerror}')
            rename_path(tmp_path, full_path)
        return changed

    def substvars_file(self, package: str) -> str:
        return f"debian/{pkgext(package)}substvars"

    def delsubstvar(self, package: str, var: str) -> bool:
        """Remove the line of `var` from the substvars file of the package"""
        line_re = _substvar_line_re(var)
        return self.update_substvars_file(
            self.substvars_file(package),
            lambda line: None if line_re.match(line) else line,
        )

    def addsubstvar(
        self,
        package: str,
        var: str,
        dep: Optional[str] = None,
        version_constraint: Optional[str] = None,
        remove: bool = False,
    ) -> bool:
        """Add (or with `remove`, remove) a dependency to a substvar

        The items of a substvar are kept sorted and deduplicated.  Adding an
        item that is already present (or removing one that is absent) leaves
        the file untouched.

        :param package: The binary package owning the substvars file
        :param var: The substvar such as "misc:Depends"
        :param dep: The dependency (package name)
        :param version_constraint: Optional version relation ("= 1.0")
        :param remove: Remove the item instead of adding it
        :return: Whether the substvars file was changed
        """
        if dep is None and not remove:
            _error(
                "Bug in helper: Must provide a value for addsubstvar (or set the remove flag, but then use"
                " delsubstvar instead)"
            )
        item = dep
        if item is not None and version_constraint:
            item = f"{item} ({version_constraint})"
        if item is not None and "\n" in item:
            escaped = item.replace("\n", "\\n")
            _warn(
                "Unescaped newlines in the value of a substvars can cause broken substvars files (see #1025714)."
            )
            _warn('Hint: If you really need a newline character, provide it as "${Newline}".')
            _error(
                f"Bug in helper: The substvar must not contain a raw newline character ({var}={escaped})"
            )

        line_re = _substvar_line_re(var)
        present = False

        def _update(line: str) -> Optional[str]:
            nonlocal present
            m = line_re.match(line)
            if not m:
                return line
            assignment_type, value = m.groups()
            items = _split_items(value)
            present = True
            if remove:
                if item not in items:
                    # Unchanged; we can avoid rewriting the file.
                    return line
                del items[item]
                if not items:
                    return None
                return var + assignment_type + ", ".join(sorted(items))
            assert item is not None
            if item in items:
                # Unchanged; we can avoid rewriting the file.
                return line
            items[item] = True
            return var + assignment_type + ", ".join(sorted(items))

        def _insert() -> List[str]:
            if present or remove:
                return []
            return [f"{var}={item}"]

        return self.update_substvars_file(
            self.substvars_file(package), _update, _insert
        )

    def ensure_substvars_are_present(self, path: str, *substvars: str) -> None:
        """Append empty definitions for the substvars not defined in `path`"""
        context = self._context
        if context.options.no_act:
            return
        full_path = self._path(path)
        defined = set()
        try:
            with open(
                full_path, encoding="utf-8", errors="surrogateescape", newline=""
            ) as fd:
                for line in fd.read().split("\n"):
                    k = line.split("=", 1)[0]
                    if k:
                        defined.add(k)
        except FileNotFoundError:
            pass
        except OSError as e:
            _error(f"open({path}) failed: {e.strerror}")
        missing = [v for v in dict.fromkeys(substvars) if v not in defined]
        if not missing and os.path.exists(full_path):
            return
        try:
            with open(
                full_path, "a", encoding="utf-8", errors="surrogateescape"
            ) as fd:
                for var in missing:
                    context.verbose_print(f"echo {var}= >> {path}")
                    fd.write(f"{var}=\n")
        except OSError as e:
            _error(f"open({path}) failed: {e.strerror}")
