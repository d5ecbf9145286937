"""Cheap structural checks run before the transpiler."""

import re

from lessonforge.core.errors import StaticSyntaxError
from lessonforge.ui.loader import ALLOWED_IMPORTS, RUNTIME_MODULES, STDLIB_MODULES

_IMPORT_RE = re.compile(
    r"^\s*(?:from\s+(?P<module>\.*[\w.]*)\s+import\b|import[ \t]+(?P<names>[\w.][\w. \t,]*))",
    re.MULTILINE,
)

DELIMITERS = (
    ("braces", "{", "}"),
    ("parentheses", "(", ")"),
    ("brackets", "[", "]"),
)


def count_delimiters(source: str) -> dict[str, int]:
    """Count delimiter characters outside string literals and comments."""
    counts = {ch: 0 for _, opening, closing in DELIMITERS for ch in (opening, closing)}
    i = 0
    n = len(source)

    while i < n:
        ch = source[i]

        if ch == "#":
            end = source.find("\n", i)
            i = n if end == -1 else end
            continue

        if ch in ("'", '"'):
            quote = source[i : i + 3] if source[i : i + 3] in ("'''", '"""') else ch
            i += len(quote)
            while i < n:
                # Backslash escapes the next character, raw strings included
                if source[i] == "\\":
                    i += 2
                    continue
                if source.startswith(quote, i):
                    i += len(quote)
                    break
                if len(quote) == 1 and source[i] == "\n":
                    # Unterminated single-line string; the compiler reports it
                    break
                i += 1
            continue

        if ch in counts:
            counts[ch] += 1
        i += 1

    return counts


def check_delimiters(source: str) -> None:
    counts = count_delimiters(source)
    for kind, opening, closing in DELIMITERS:
        if counts[opening] != counts[closing]:
            raise StaticSyntaxError(
                f"mismatched {kind}: {counts[opening]} '{opening}' "
                f"vs {counts[closing]} '{closing}'"
            )


def check_entry(source: str, entry_name: str) -> None:
    if not re.search(rf"^def {re.escape(entry_name)}\(", source, re.MULTILINE):
        raise StaticSyntaxError(f"missing entry construct: def {entry_name}(")


def imported_modules(source: str) -> list[str]:
    """Module names named by import statements, in order of appearance."""
    modules = []
    for match in _IMPORT_RE.finditer(source):
        if match.group("module") is not None:
            modules.append(match.group("module"))
            continue
        for part in match.group("names").split(","):
            words = part.split()
            if words:
                modules.append(words[0])
    return modules


def check_imports(source: str) -> None:
    for name in imported_modules(source):
        if name in RUNTIME_MODULES or name.split(".")[0] in ALLOWED_IMPORTS:
            continue
        raise StaticSyntaxError(
            f"disallowed import: {name} (only {', '.join(STDLIB_MODULES)} may be imported)"
        )


def validate_source(source: str, entry_name: str = "LessonComponent") -> None:
    """Raise StaticSyntaxError if the source is structurally broken."""
    check_delimiters(source)
    check_entry(source, entry_name)
    check_imports(source)
