"""Lesson generation orchestrator: model call -> normalize -> validate -> transpile -> store.

One run makes up to ``settings.max_attempts`` strictly sequential attempts.
Each failed attempt's error (and its broken source) becomes the correction
context of the next prompt. The lesson row is moved to ``processing`` on a
best-effort basis and ends ``completed`` or ``failed``.
"""

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from anthropic import APIError
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lessonforge.config import Settings
from lessonforge.core.errors import NormalizationError, PipelineError
from lessonforge.core.normalizer import normalize_source
from lessonforge.core.store import ArtifactStore, get_store
from lessonforge.core.transpiler import transpile
from lessonforge.core.validator import validate_source
from lessonforge.models.lesson import Lesson, LessonStatus
from lessonforge.models.schemas import GenerateLessonEvent
from lessonforge.prompts.lesson import (
    build_error_feedback_prompt,
    build_first_attempt_prompt,
    build_retry_prompt,
)
from lessonforge.prompts.system import build_system_prompt
from lessonforge.services.claude_service import (
    LESSON_TOOLS,
    ClaudeResponse,
    call_claude,
    compute_prompt_hash,
    write_dry_run,
)

logger = logging.getLogger(__name__)

EMPTY_OUTPUT_ERROR = "model did not return the expected entry construct"

ModelCall = Callable[[str, str, Settings], ClaudeResponse]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PromptVariant(str, enum.Enum):
    FIRST_ATTEMPT = "first_attempt"
    RETRY_WITH_CONTEXT = "retry_with_context"
    ERROR_FEEDBACK = "error_feedback"


@dataclass
class GenerationAttempt:
    """One model call and what the pipeline made of it. Never persisted."""

    index: int
    variant: PromptVariant
    raw_output: str = ""
    source: str = ""
    error: str | None = None
    stage: str | None = None
    address: str | None = None
    prompt_hash: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


@dataclass
class RunContext:
    """Everything one run carries from attempt to attempt."""

    lesson_id: str
    title: str
    objective: str
    course_id: str | None = None
    previous_error: str | None = None
    is_retry: bool = False
    run_token: str = field(default_factory=lambda: uuid.uuid4().hex)
    entry_name: str = "LessonComponent"
    attempt: int = 0
    last_error: str | None = None
    last_source: str = ""
    claimed: bool = False
    attempts: list[GenerationAttempt] = field(default_factory=list)

    @classmethod
    def from_event(cls, event: GenerateLessonEvent, entry_name: str = "LessonComponent") -> "RunContext":
        return cls(
            lesson_id=event.lesson_id,
            title=event.title,
            objective=event.objective,
            course_id=event.course_id,
            previous_error=event.previous_error,
            is_retry=event.is_retry,
            entry_name=entry_name,
        )


@dataclass
class GenerationReport:
    """Summary of one generation run."""

    lesson_id: str
    title: str
    run_token: str
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    status: str = LessonStatus.PROCESSING.value
    success: bool = False
    error: str | None = None
    artifact_url: str | None = None
    superseded: bool = False
    dry_run: bool = False
    attempts: list[GenerationAttempt] = field(default_factory=list)

    @property
    def total_cost_usd(self) -> float:
        return round(sum(a.cost_usd for a in self.attempts), 6)


def select_prompt(ctx: RunContext) -> tuple[PromptVariant, str, str]:
    """Pick the prompt for the current attempt. Pure.

    Returns:
        (variant, system prompt, user prompt)
    """
    system = build_system_prompt(ctx.entry_name)
    if ctx.attempt > 1:
        user = build_error_feedback_prompt(ctx.last_error or "", ctx.last_source, ctx.entry_name)
        return PromptVariant.ERROR_FEEDBACK, system, user
    if ctx.is_retry and ctx.previous_error:
        user = build_retry_prompt(ctx.title, ctx.objective, ctx.previous_error, ctx.entry_name)
        return PromptVariant.RETRY_WITH_CONTEXT, system, user
    user = build_first_attempt_prompt(ctx.title, ctx.objective, ctx.entry_name)
    return PromptVariant.FIRST_ATTEMPT, system, user


def default_model_call(system_prompt: str, user_message: str, settings: Settings) -> ClaudeResponse:
    return call_claude(system_prompt, user_message, settings, tools=LESSON_TOOLS)


def generate_lesson(
    session: Session,
    event: GenerateLessonEvent,
    settings: Settings,
    store: ArtifactStore | None = None,
    model_call: ModelCall | None = None,
) -> GenerationReport:
    """Run the generate-compile-store loop for one lesson.

    A dry run writes the first attempt's prompt payload and returns without
    calling any model, injected or default, and without touching the lesson.

    Returns:
        GenerationReport describing every attempt and the final status.

    Raises:
        ValueError: If the lesson does not exist or ``max_attempts`` is below 1.
        SQLAlchemyError: If the final status write fails.
    """
    if settings.max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {settings.max_attempts}")
    if session.get(Lesson, event.lesson_id) is None:
        raise ValueError(f"Lesson not found: {event.lesson_id}")

    store = store or get_store(settings)
    model_call = model_call or default_model_call
    ctx = RunContext.from_event(event, entry_name=settings.entry_name)
    report = GenerationReport(lesson_id=ctx.lesson_id, title=ctx.title, run_token=ctx.run_token)

    if settings.dry_run:
        ctx.attempt = 1
        _, system, user = select_prompt(ctx)
        write_dry_run(
            system, user, settings,
            Path(settings.reports_dir) / ctx.lesson_id / "dry_run_attempt1.json",
            settings.claude_model,
        )
        report.dry_run = True
        report.status = session.get(Lesson, ctx.lesson_id).status.value
        report.completed_at = _utcnow()
        return report

    ctx.claimed = _mark_processing(session, ctx)
    logger.info(
        "Generating lesson %s '%s' (run %s, retry=%s)",
        ctx.lesson_id, ctx.title, ctx.run_token[:8], ctx.is_retry,
    )

    address = None
    try:
        for index in range(1, settings.max_attempts + 1):
            ctx.attempt = index
            attempt = _run_attempt(ctx, settings, store, model_call)
            ctx.attempts.append(attempt)
            if attempt.error is None:
                address = attempt.address
                break
            ctx.last_error = attempt.error
            ctx.last_source = attempt.source or attempt.raw_output.strip()
    except Exception as e:
        # Unexpected failure outside the attempt contract: record it, then re-raise
        report.attempts = ctx.attempts
        try:
            _finalize(session, ctx, report, error=f"{type(e).__name__}: {e}")
        except SQLAlchemyError as db_error:
            session.rollback()
            logger.error(
                "Could not record failure of lesson %s: %s", ctx.lesson_id, db_error
            )
        raise

    report.attempts = ctx.attempts
    if address:
        _finalize(session, ctx, report, address=address)
    else:
        _finalize(session, ctx, report, error=ctx.last_error or EMPTY_OUTPUT_ERROR)
    return report


def _run_attempt(
    ctx: RunContext,
    settings: Settings,
    store: ArtifactStore,
    model_call: ModelCall,
) -> GenerationAttempt:
    variant, system, user = select_prompt(ctx)
    attempt = GenerationAttempt(
        index=ctx.attempt,
        variant=variant,
        prompt_hash=compute_prompt_hash(system, user, settings.claude_model, settings.claude_temperature),
    )
    logger.info(
        "Attempt %d/%d for lesson %s (%s)",
        ctx.attempt, settings.max_attempts, ctx.lesson_id, variant.value,
    )

    try:
        response = model_call(system, user, settings)
        attempt.raw_output = response.text or ""
        attempt.input_tokens = response.input_tokens
        attempt.output_tokens = response.output_tokens
        attempt.cost_usd = response.cost_usd

        if not attempt.raw_output.strip():
            raise NormalizationError(EMPTY_OUTPUT_ERROR)
        attempt.source = normalize_source(attempt.raw_output, ctx.entry_name)
        validate_source(attempt.source, ctx.entry_name)
        compiled = transpile(attempt.source, filename=f"{ctx.lesson_id}.py")
        attempt.address = store.put(ctx.lesson_id, compiled)
    except PipelineError as e:
        attempt.error = e.message
        attempt.stage = e.stage
    except APIError as e:
        attempt.error = f"Model call failed: {e}"
        attempt.stage = "model"

    if attempt.error:
        logger.warning(
            "Attempt %d for lesson %s failed at %s: %s",
            attempt.index, ctx.lesson_id, attempt.stage, attempt.error,
        )
    return attempt


def _mark_processing(session: Session, ctx: RunContext) -> bool:
    """Best-effort status write; returns whether this run now owns the lesson."""
    try:
        session.execute(
            update(Lesson)
            .where(Lesson.id == ctx.lesson_id)
            .values(
                status=LessonStatus.PROCESSING,
                run_token=ctx.run_token,
                error=None,
                compiled_artifact_url=None,
                completed_at=None,
            )
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.warning("Could not mark lesson %s processing: %s", ctx.lesson_id, e)
        return False
    return True


def _finalize(
    session: Session,
    ctx: RunContext,
    report: GenerationReport,
    address: str | None = None,
    error: str | None = None,
) -> None:
    """Write the terminal status, unless a newer run has taken the lesson over."""
    if address:
        values = {
            "status": LessonStatus.COMPLETED,
            "compiled_artifact_url": address,
            "error": None,
            "completed_at": _utcnow(),
        }
    else:
        values = {
            "status": LessonStatus.FAILED,
            "compiled_artifact_url": None,
            "error": error,
            "completed_at": None,
        }
    values["attempt_count"] = len(ctx.attempts)

    stmt = update(Lesson).where(Lesson.id == ctx.lesson_id)
    if ctx.claimed:
        stmt = stmt.where(Lesson.run_token == ctx.run_token)
    result = session.execute(stmt.values(**values))
    session.commit()

    report.completed_at = _utcnow()
    report.artifact_url = address
    report.error = error
    if result.rowcount != 1:
        report.superseded = True
        logger.warning(
            "Run %s for lesson %s was superseded; final status not written",
            ctx.run_token[:8], ctx.lesson_id,
        )
        return

    report.status = values["status"].value
    report.success = address is not None
    if report.success:
        logger.info("Lesson %s completed: %s", ctx.lesson_id, address)
    else:
        logger.warning(
            "Lesson %s failed after %d attempts: %s",
            ctx.lesson_id, len(ctx.attempts), error,
        )
