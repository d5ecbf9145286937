from lessonforge.prompts import outline
from lessonforge.prompts.lesson import (
    build_error_feedback_prompt,
    build_first_attempt_prompt,
    build_retry_prompt,
)
from lessonforge.prompts.system import SYSTEM_PROMPT, build_system_prompt
from lessonforge.ui.registry import CAPABILITIES


class TestSystemPrompt:
    def test_lists_every_capability(self):
        for name in CAPABILITIES:
            assert f"{name}(" in SYSTEM_PROMPT

    def test_entry_name(self):
        assert '"Lesson"' in build_system_prompt("Lesson")

    def test_style_contract(self):
        assert "STRICT DARK THEME" in SYSTEM_PROMPT
        assert "do NOT import them" in SYSTEM_PROMPT


class TestLessonPrompts:
    def test_first_attempt(self):
        prompt = build_first_attempt_prompt("Intro to Levers", "explain mechanical advantage")
        assert "Title: Intro to Levers" in prompt
        assert "Objective: explain mechanical advantage" in prompt
        assert 'starting with "def LessonComponent():"' in prompt

    def test_retry_includes_previous_error(self):
        prompt = build_retry_prompt("Levers", "explain", "mismatched braces: 3 '{' vs 2 '}'")
        assert "mismatched braces: 3 '{' vs 2 '}'" in prompt
        assert "Title: Levers" in prompt

    def test_error_feedback(self):
        prompt = build_error_feedback_prompt("boom", "def LessonComponent(:", entry_name="Lesson")
        assert "Error: boom" in prompt
        assert "Broken Code:\ndef LessonComponent(:" in prompt
        assert "Keep the same function name (Lesson)" in prompt
        assert 'html.div({"class": "..."}, child)' in prompt

    def test_error_feedback_without_source(self):
        assert "(no code was produced)" in build_error_feedback_prompt("boom", "")


class TestOutlinePrompt:
    def test_user_prompt(self):
        prompt = outline.build_user_prompt("Levers and pulleys")
        assert '"Levers and pulleys"' in prompt
        assert '{"lesson": {"title"' in prompt
