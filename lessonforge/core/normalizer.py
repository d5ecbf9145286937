"""Isolate the lesson component from raw model output."""

import re

from lessonforge.core.errors import NormalizationError

DEFAULT_ENTRY_NAME = "LessonComponent"

_REASONING_RE = re.compile(
    r"<(thinking|reasoning)>.*?</\1>", re.DOTALL | re.IGNORECASE
)
_FENCE_LINE_RE = re.compile(r"^\s*```[\w+-]*\s*$")


def _entry_re(entry_name: str) -> re.Pattern:
    # Decorators stacked directly above the declaration belong to it
    return re.compile(
        rf"^(?:@[^\n]*\n)*def\s+{re.escape(entry_name)}\b", re.MULTILINE
    )


def _export_res(entry_name: str) -> list[re.Pattern]:
    name = re.escape(entry_name)
    return [
        re.compile(rf"^__all__\s*=.*\b{name}\b.*$"),
        re.compile(rf"^default\s*=\s*{name}\s*;?\s*$"),
        re.compile(rf"^export\s+default\s+{name}\s*;?\s*$"),
        re.compile(rf"^export\s*\{{\s*{name}\s*\}}\s*;?\s*$"),
    ]


def strip_reasoning(text: str) -> str:
    """Remove <thinking>/<reasoning> sections the model may prepend."""
    return _REASONING_RE.sub("", text)


def strip_fences(text: str) -> str:
    """Drop markdown code-fence lines regardless of the declared language."""
    return "\n".join(
        line for line in text.splitlines() if not _FENCE_LINE_RE.match(line)
    )


def _cut_trailing_prose(text: str) -> str:
    """Cut everything from the first fence line after the entry declaration."""
    lines = text.splitlines()
    for i, line in enumerate(lines):
        if i > 0 and _FENCE_LINE_RE.match(line):
            return "\n".join(lines[:i])
    return text


def strip_exports(text: str, entry_name: str = DEFAULT_ENTRY_NAME) -> str:
    """Remove trailing export statements and a trailing __main__ block."""
    lines = text.rstrip().splitlines()

    for i, line in enumerate(lines):
        if re.match(r"^if\s+__name__\s*==\s*['\"]__main__['\"]\s*:", line):
            lines = lines[:i]
            break

    patterns = _export_res(entry_name)
    while lines:
        last = lines[-1].strip()
        if not last or any(p.match(last) for p in patterns):
            lines.pop()
            continue
        break
    return "\n".join(lines)


def normalize_source(raw: str, entry_name: str = DEFAULT_ENTRY_NAME) -> str:
    """Turn raw model text into the bare component source.

    Raises:
        NormalizationError: If no entry-construct declaration is present.
    """
    text = strip_reasoning(raw or "")

    match = _entry_re(entry_name).search(text)
    if not match:
        raise NormalizationError(f"model did not generate {entry_name}")

    text = text[match.start():]
    text = _cut_trailing_prose(text)
    text = strip_fences(text)
    text = strip_exports(text, entry_name)

    if not _entry_re(entry_name).search(text):
        raise NormalizationError(f"model did not generate {entry_name}")

    return text.strip() + "\n"
