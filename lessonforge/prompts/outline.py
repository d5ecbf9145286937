"""Outline decomposition prompt: one free-text outline becomes one lesson plan."""

SYSTEM_PROMPT = """\
You are a curriculum designer. You turn a course outline into a single lesson plan
and answer with JSON only.
"""


def build_user_prompt(outline: str) -> str:
    """Build user prompt for outline decomposition.

    Args:
        outline: Free-text outline provided by the user.

    Returns:
        User prompt string.
    """
    return f"""\
Create a lesson breakdown for the following outline:

"{outline}"

Generate exactly 1 lesson that covers this topic comprehensively.
The lesson should have a clear title and a specific learning objective.

### OUTPUT FORMAT (JSON):
{{"lesson": {{"title": "40-50 character title based on the outline", "objective": "Learning objective of the lesson"}}}}

- Never return an array.
- Never return more than one lesson.
- The lesson must be fully self-contained.
"""
