"""Lesson lifecycle: creation from an outline, trigger events, manual retry and reporting."""

import json
import logging
import re
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from lessonforge.config import Settings
from lessonforge.core.generator import GenerationReport, ModelCall, generate_lesson
from lessonforge.core.store import ArtifactStore
from lessonforge.models.lesson import Lesson, LessonStatus
from lessonforge.models.schemas import GenerateLessonEvent, LessonPlan
from lessonforge.prompts import outline as outline_prompt
from lessonforge.services.claude_service import call_claude

logger = logging.getLogger(__name__)

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def event_for_lesson(lesson: Lesson) -> GenerateLessonEvent:
    """Fresh trigger event for a lesson (no retry context)."""
    return GenerateLessonEvent(
        lesson_id=lesson.id,
        title=lesson.title,
        objective=lesson.objective,
        course_id=lesson.course_id,
    )


def request_retry(session: Session, lesson_id: str) -> GenerateLessonEvent:
    """Reset a failed lesson to pending and build its retry event.

    The reset is a single conditional UPDATE, so two concurrent retry
    requests cannot both succeed.

    Raises:
        ValueError: If the lesson does not exist or is not failed.
    """
    lesson = session.get(Lesson, lesson_id)
    if lesson is None:
        raise ValueError(f"Lesson not found: {lesson_id}")
    previous_error = lesson.error

    result = session.execute(
        update(Lesson)
        .where(Lesson.id == lesson_id, Lesson.status == LessonStatus.FAILED)
        .values(status=LessonStatus.PENDING, error=None, compiled_artifact_url=None)
    )
    if result.rowcount != 1:
        session.rollback()
        session.refresh(lesson)
        raise ValueError(
            f"Lesson {lesson_id} is not in a failed state "
            f"(status='{lesson.status.value}')"
        )
    session.commit()
    session.refresh(lesson)

    logger.info("Retry requested for lesson %s (previous error: %s)", lesson_id, previous_error)
    return _retry_event(lesson, previous_error)


def preview_retry(session: Session, lesson_id: str) -> GenerateLessonEvent:
    """Build the retry event of a failed lesson without resetting it.

    Raises:
        ValueError: If the lesson does not exist or is not failed.
    """
    lesson = session.get(Lesson, lesson_id)
    if lesson is None:
        raise ValueError(f"Lesson not found: {lesson_id}")
    if lesson.status != LessonStatus.FAILED:
        raise ValueError(
            f"Lesson {lesson_id} is not in a failed state "
            f"(status='{lesson.status.value}')"
        )
    return _retry_event(lesson, lesson.error)


def _retry_event(lesson: Lesson, previous_error: str | None) -> GenerateLessonEvent:
    return GenerateLessonEvent(
        lesson_id=lesson.id,
        title=lesson.title,
        objective=lesson.objective,
        course_id=lesson.course_id,
        previous_error=previous_error,
        is_retry=True,
    )


def parse_lesson_plan(text: str) -> LessonPlan:
    """Parse the outline model's JSON answer into a LessonPlan.

    Accepts either ``{"lesson": {...}}`` or the bare object, optionally fenced.

    Raises:
        ValueError: If no valid plan can be read.
    """
    fenced = _JSON_FENCE_RE.search(text)
    body = fenced.group(1) if fenced else text
    start, end = body.find("{"), body.rfind("}")
    if start == -1 or end <= start:
        raise ValueError(f"No JSON object in lesson plan response: {text[:200]!r}")
    try:
        data = json.loads(body[start:end + 1])
        if isinstance(data, dict) and isinstance(data.get("lesson"), dict):
            data = data["lesson"]
        return LessonPlan.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Invalid lesson plan: {e}") from e


def create_lesson_from_outline(
    session: Session,
    outline: str,
    settings: Settings,
    model_call: ModelCall | None = None,
    course_id: str | None = None,
) -> tuple[Lesson, GenerateLessonEvent]:
    """Decompose an outline into one pending lesson and its trigger event.

    Raises:
        ValueError: On an empty outline or an unusable model answer.
    """
    outline = (outline or "").strip()
    if not outline:
        raise ValueError("Missing lesson outline")

    model_call = model_call or call_claude
    response = model_call(outline_prompt.SYSTEM_PROMPT, outline_prompt.build_user_prompt(outline), settings)
    plan = parse_lesson_plan(response.text)

    lesson = Lesson(
        title=plan.title,
        objective=plan.objective,
        course_id=course_id,
        status=LessonStatus.PENDING,
    )
    session.add(lesson)
    session.commit()
    logger.info("Created lesson %s '%s' from outline", lesson.id, lesson.title)
    return lesson, event_for_lesson(lesson)


def run_lesson(
    session: Session,
    lesson_id: str,
    settings: Settings,
    store: ArtifactStore | None = None,
    model_call: ModelCall | None = None,
) -> GenerationReport:
    """Trigger a fresh generation run for an existing lesson."""
    lesson = session.get(Lesson, lesson_id)
    if lesson is None:
        raise ValueError(f"Lesson not found: {lesson_id}")
    return generate_lesson(session, event_for_lesson(lesson), settings, store, model_call)


def retry_lesson(
    session: Session,
    lesson_id: str,
    settings: Settings,
    store: ArtifactStore | None = None,
    model_call: ModelCall | None = None,
) -> GenerationReport:
    """Manual retry: reset the failed lesson and run again with its prior error.

    A dry run leaves the lesson failed and only writes the retry prompt payload.
    """
    if settings.dry_run:
        event = preview_retry(session, lesson_id)
    else:
        event = request_retry(session, lesson_id)
    return generate_lesson(session, event, settings, store, model_call)


def write_report(report: GenerationReport, reports_dir: str) -> str:
    """Write a GenerationReport as JSON to reports_dir/{lesson_id}/.

    Returns:
        Path to the written report file.
    """
    report_dir = Path(reports_dir) / report.lesson_id
    report_dir.mkdir(parents=True, exist_ok=True)

    timestamp = report.started_at.strftime("%Y%m%d_%H%M%S")
    path = report_dir / f"report_{timestamp}_{report.run_token[:8]}.json"

    data = {
        "lesson_id": report.lesson_id,
        "title": report.title,
        "run_token": report.run_token,
        "started_at": report.started_at.isoformat(),
        "completed_at": report.completed_at.isoformat() if report.completed_at else None,
        "status": report.status,
        "success": report.success,
        "superseded": report.superseded,
        "dry_run": report.dry_run,
        "error": report.error,
        "artifact_url": report.artifact_url,
        "total_cost_usd": report.total_cost_usd,
        "attempts": [
            {
                "index": a.index,
                "variant": a.variant.value,
                "stage": a.stage,
                "error": a.error,
                "prompt_hash": a.prompt_hash,
                "input_tokens": a.input_tokens,
                "output_tokens": a.output_tokens,
                "cost_usd": a.cost_usd,
            }
            for a in report.attempts
        ],
    }

    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    logger.info("Report written: %s", path)
    return str(path)


def latest_report(reports_dir: str, lesson_id: str) -> Path | None:
    report_dir = Path(reports_dir) / lesson_id
    reports = sorted(report_dir.glob("report_*.json")) if report_dir.is_dir() else []
    return reports[-1] if reports else None
