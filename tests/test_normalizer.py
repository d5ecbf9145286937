import pytest

from lessonforge.core.errors import NormalizationError
from lessonforge.core.normalizer import (
    normalize_source,
    strip_exports,
    strip_fences,
    strip_reasoning,
)

BODY = 'def LessonComponent():\n    return html.div("Levers")'


class TestNormalizeSource:
    def test_plain_source_passes_through(self):
        assert normalize_source(BODY) == BODY + "\n"

    def test_strips_fences_and_surrounding_prose(self):
        raw = (
            "Here is your lesson component:\n\n"
            "```python\n"
            f"{BODY}\n"
            "```\n\n"
            "This component explains levers with a heading."
        )
        assert normalize_source(raw) == BODY + "\n"

    def test_fence_language_is_irrelevant(self):
        raw = f"```tsx\n{BODY}\n```"
        assert normalize_source(raw) == BODY + "\n"

    def test_removes_reasoning_section(self):
        raw = (
            "<thinking>I should define def LessonComponent(): carefully</thinking>\n"
            f"{BODY}\n"
        )
        result = normalize_source(raw)
        assert "thinking" not in result
        assert result.startswith("def LessonComponent():")

    def test_keeps_decorators_on_entry(self):
        raw = f"Sure!\n@component\n{BODY}\n"
        assert normalize_source(raw).startswith("@component\ndef LessonComponent")

    def test_helpers_before_entry_are_discarded(self):
        raw = "def helper():\n    return 1\n\n" + BODY
        assert normalize_source(raw) == BODY + "\n"

    def test_strips_trailing_exports(self):
        raw = BODY + "\n\n__all__ = ['LessonComponent']\ndefault = LessonComponent\n"
        assert normalize_source(raw) == BODY + "\n"

    def test_strips_js_style_export(self):
        raw = BODY + "\n\nexport default LessonComponent;\n"
        assert normalize_source(raw) == BODY + "\n"

    def test_strips_main_block(self):
        raw = BODY + '\n\nif __name__ == "__main__":\n    print(render_to_html(LessonComponent))\n'
        assert normalize_source(raw) == BODY + "\n"

    def test_missing_entry_raises(self):
        with pytest.raises(NormalizationError, match="model did not generate LessonComponent"):
            normalize_source("I cannot write that lesson, sorry.")

    def test_empty_output_raises(self):
        with pytest.raises(NormalizationError):
            normalize_source("")

    def test_custom_entry_name(self):
        raw = "def Lesson():\n    return 1\n"
        assert normalize_source(raw, entry_name="Lesson") == raw
        with pytest.raises(NormalizationError, match="model did not generate Lesson"):
            normalize_source(BODY, entry_name="Lesson")

    def test_error_carries_stage(self):
        with pytest.raises(NormalizationError) as exc_info:
            normalize_source("nothing here")
        assert exc_info.value.stage == "normalize"


class TestHelpers:
    def test_strip_fences_keeps_code(self):
        assert strip_fences("```py\nx = 1\n```") == "x = 1"

    def test_strip_reasoning_case_insensitive(self):
        assert strip_reasoning("<REASONING>plan</REASONING>code") == "code"

    def test_strip_exports_leaves_unrelated_tail(self):
        text = BODY + "\nvalue = 3\n"
        assert strip_exports(text).endswith("value = 3")
