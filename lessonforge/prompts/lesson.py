"""Lesson component prompt templates: first attempt, manual retry and error feedback."""

ENTRY_NAME = "LessonComponent"


def build_first_attempt_prompt(title: str, objective: str, entry_name: str = ENTRY_NAME) -> str:
    """Build the user prompt for the first attempt of a fresh run.

    Args:
        title: Lesson title.
        objective: Learning objective the component must teach.
        entry_name: Required name of the top-level function.

    Returns:
        User prompt string.
    """
    return f"""\
Generate a complete, self-contained lesson component for the following lesson:
Title: {title}
Objective: {objective}

Now generate an engaging, interactive lesson component for: {objective}

Return ONLY the function code, starting with "def {entry_name}():" and ending with its
final return statement.
"""


def build_retry_prompt(
    title: str, objective: str, previous_error: str, entry_name: str = ENTRY_NAME
) -> str:
    """First attempt of a manual retry: the earlier run's failure is shown up front."""
    return f"""\
Generate a complete, self-contained lesson component for the following lesson:
Title: {title}
Objective: {objective}

A previous generation of this lesson failed with:

    {previous_error}

Avoid that mistake this time. Double-check that every bracket is closed and that
only the available components and runtime names are used.

Return ONLY the function code, starting with "def {entry_name}():" and ending with its
final return statement.
"""


def build_error_feedback_prompt(
    last_error: str, broken_source: str, entry_name: str = ENTRY_NAME
) -> str:
    """Build the self-correction prompt for attempt k > 1 of a run.

    Args:
        last_error: Message of the previous attempt's failure, verbatim.
        broken_source: The previous attempt's normalized source (may be empty).
        entry_name: Required name of the top-level function.

    Returns:
        User prompt string.
    """
    return f"""\
The following lesson component failed to compile or render:

Error: {last_error}

Broken Code:
{broken_source or "(no code was produced)"}

Fix it and output a **working corrected version** of the same component.

Common fixes:
- Close every bracket, parenthesis and brace
- Use MathFormula for LaTeX, the math module for arithmetic
- Pass props as a dict first argument: html.div({{"class": "..."}}, child)
- Initialize state with use_state before using it
- Dark backgrounds need light text; SVG text uses fill "#9ca3af"

Rules:
- Keep the same function name ({entry_name})
- Return only the function code
- It must compile and render without error
- Keep ALL interactive controls working (buttons, inputs, Reset)
"""
