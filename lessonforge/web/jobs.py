"""Background job manager: the event runner for lesson generation.

Uses a single-thread ThreadPoolExecutor so runs queue up and execute
one at a time, which keeps SQLite to a single writer. Each job executes
exactly one orchestrator run for one trigger event. Jobs are stored
in-memory; on process restart they are lost, but the lesson row is
always the source of truth.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from flask import Flask

from lessonforge.models.schemas import GenerateLessonEvent

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    job_id: str
    lesson_id: str
    action: str  # generate|retry
    state: str = "queued"  # queued|running|success|error
    stage: str = ""
    message: str = ""
    dry_run: bool = False
    event: GenerateLessonEvent | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    result: dict | None = None

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "lesson_id": self.lesson_id,
            "action": self.action,
            "state": self.state,
            "stage": self.stage,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "result": self.result,
        }


class JobManager:

    def __init__(self, logs_dir: str):
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="lessonforge-job",
        )
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._logs_dir = logs_dir
        Path(logs_dir).mkdir(parents=True, exist_ok=True)
        (Path(logs_dir) / "lessons").mkdir(exist_ok=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(
        self,
        action: str,
        lesson_id: str,
        app: Flask,
        event: GenerateLessonEvent | None = None,
        dry_run: bool = False,
    ) -> Job:
        job_id = uuid.uuid4().hex[:12]
        job = Job(
            job_id=job_id,
            lesson_id=lesson_id,
            action=action,
            dry_run=dry_run,
            event=event,
        )
        with self._lock:
            self._jobs[job_id] = job
        self._executor.submit(self._execute, job, app)
        logger.info("Job %s submitted: %s %s", job_id, action, lesson_id)
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def active_for_lesson(self, lesson_id: str) -> Job | None:
        with self._lock:
            for job in self._jobs.values():
                if job.lesson_id == lesson_id and job.state in ("queued", "running"):
                    return job
        return None

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def log_path(self, lesson_id: str) -> Path:
        return Path(self._logs_dir) / "lessons" / f"{lesson_id}.log"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _update(self, job: Job, **kwargs) -> None:
        with self._lock:
            for key, value in kwargs.items():
                setattr(job, key, value)
            job.updated_at = _utcnow()

    def _log(self, job: Job, msg: str) -> None:
        ts = _utcnow().strftime("%Y-%m-%d %H:%M:%S")
        line = f"{ts} [{job.action}] {msg}\n"
        log_path = self.log_path(job.lesson_id)
        try:
            with open(log_path, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError:
            logger.warning("Failed to write lesson log: %s", log_path)

    # ------------------------------------------------------------------
    # Executor entry point
    # ------------------------------------------------------------------

    def _execute(self, job: Job, app: Flask) -> None:
        with app.app_context():
            session_factory = app.config["session_factory"]
            settings = app.config["settings"]
            session = session_factory()

            self._update(job, state="running", stage="starting")
            self._log(job, f"Starting {job.action} for {job.lesson_id}")

            try:
                if job.action in ("generate", "retry"):
                    self._do_generate(job, session, settings, app)
                else:
                    raise ValueError(f"Unknown action: {job.action}")

                self._log(job, "Job completed successfully")
                outcome = {"state": "success", "stage": "done"}

            except Exception as e:
                logger.exception("Job %s failed", job.job_id)
                self._log(job, f"ERROR: {e}")
                outcome = {"state": "error", "message": str(e)}
            finally:
                session.close()

            # Outcome is published only once the session is closed
            self._update(job, **outcome)

    # ------------------------------------------------------------------
    # Action runners: update stage/result but never set state
    # ------------------------------------------------------------------

    def _do_generate(self, job, session, settings, app):
        from lessonforge.core.generator import generate_lesson
        from lessonforge.core.pipeline import event_for_lesson, write_report
        from lessonforge.models.lesson import Lesson

        event = job.event
        if event is None:
            lesson = session.get(Lesson, job.lesson_id)
            if lesson is None:
                raise ValueError(f"Lesson not found: {job.lesson_id}")
            event = event_for_lesson(lesson)

        self._update(job, stage="generating")
        if event.is_retry:
            self._log(job, f"Retrying with previous error: {event.previous_error}")
        else:
            self._log(job, f"Generating '{event.title}'")

        original_dry_run = settings.dry_run
        settings.dry_run = job.dry_run or original_dry_run
        try:
            report = generate_lesson(
                session, event, settings,
                store=app.config.get("store"),
                model_call=app.config.get("model_call"),
            )
        finally:
            settings.dry_run = original_dry_run
        write_report(report, settings.reports_dir)

        for attempt in report.attempts:
            outcome = f"failed at {attempt.stage}: {attempt.error}" if attempt.error else "ok"
            self._log(job, f"Attempt {attempt.index} ({attempt.variant.value}): {outcome}")

        if report.dry_run:
            self._update(job, result={"success": True, "dry_run": True})
            self._log(job, "Dry run: prompt payload written, no status change")
        elif report.superseded:
            self._update(job, result={"success": False, "superseded": True})
            self._log(job, "Run superseded by a newer run; final status not written")
        elif report.success:
            self._update(job, result={
                "success": True,
                "artifact_url": report.artifact_url,
                "attempts": len(report.attempts),
                "cost_usd": report.total_cost_usd,
            })
            self._log(job, f"Lesson completed: {report.artifact_url}")
        else:
            raise RuntimeError(report.error or "Generation failed")
