import json
import logging
import sys
from pathlib import Path

import click

from lessonforge.config import get_settings
from lessonforge.db import get_session_factory, init_db
from lessonforge.models.lesson import Lesson, LessonStatus

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """lessonforge - interactive lesson generation pipeline"""
    ctx.ensure_object(dict)
    settings = get_settings()
    ctx.obj["settings"] = settings
    init_db(settings.database_url)
    ctx.obj["session_factory"] = get_session_factory(settings.database_url)


@cli.command(name="init-db")
@click.pass_context
def init_db_cmd(ctx: click.Context) -> None:
    """Initialize the database (create tables)."""
    click.echo("Database initialized successfully.")


@cli.command()
@click.option("--outline", required=True, help="Free-text course outline.")
@click.option("--course-id", default=None, help="Course the lesson belongs to.")
@click.option("--generate/--no-generate", "run_now", default=True, help="Generate the component right away.")
@click.pass_context
def create(ctx: click.Context, outline: str, course_id: str | None, run_now: bool) -> None:
    """Turn an outline into a lesson (and generate it)."""
    from lessonforge.core.generator import generate_lesson
    from lessonforge.core.pipeline import create_lesson_from_outline, write_report

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        try:
            lesson, event = create_lesson_from_outline(session, outline, settings, course_id=course_id)
        except ValueError as e:
            click.echo(f"[FAIL] {e}", err=True)
            sys.exit(1)
        click.echo(f"[OK] Created {lesson.id}: {lesson.title}")
        click.echo(f"     Objective: {lesson.objective}")
        if not run_now:
            return

        report = generate_lesson(session, event, settings)
        write_report(report, settings.reports_dir)
        _echo_report(lesson.id, report)
        if not report.success and not report.dry_run:
            sys.exit(1)
    finally:
        session.close()


@cli.command()
@click.option("--title", required=True, help="Lesson title.")
@click.option("--objective", required=True, help="Learning objective.")
@click.option("--course-id", default=None, help="Course the lesson belongs to.")
@click.pass_context
def add(ctx: click.Context, title: str, objective: str, course_id: str | None) -> None:
    """Add a pending lesson without calling the model."""
    session = ctx.obj["session_factory"]()
    try:
        lesson = Lesson(title=title, objective=objective, course_id=course_id, status=LessonStatus.PENDING)
        session.add(lesson)
        session.commit()
        click.echo(f"[OK] Added {lesson.id}: {lesson.title}")
    finally:
        session.close()


def _echo_report(lesson_id, report) -> None:
    for attempt in report.attempts:
        outcome = f"{attempt.stage}: {attempt.error}" if attempt.error else "ok"
        click.echo(f"     attempt {attempt.index} [{attempt.variant.value}] {outcome}")
    if report.dry_run:
        click.echo(f"[DRY RUN] {lesson_id}: prompt payload written, status unchanged")
    elif report.superseded:
        click.echo(f"[SKIP] {lesson_id}: superseded by a newer run", err=True)
    elif report.success:
        click.echo(f"[OK] {lesson_id} -> {report.artifact_url} (${report.total_cost_usd:.4f})")
    else:
        click.echo(f"[FAIL] {lesson_id}: {report.error}", err=True)


@cli.command()
@click.option(
    "--lesson-id", "lesson_ids", multiple=True, required=True,
    help="Lesson ID(s) to generate (repeatable).",
)
@click.option("--dry-run", is_flag=True, default=False, help="Write the prompt payload instead of calling the API.")
@click.pass_context
def generate(ctx: click.Context, lesson_ids: tuple[str, ...], dry_run: bool) -> None:
    """Generate lesson components for the given lessons."""
    from lessonforge.core.pipeline import run_lesson, write_report

    settings = ctx.obj["settings"]
    if dry_run:
        settings.dry_run = True
    session = ctx.obj["session_factory"]()
    try:
        has_failure = False
        for lid in lesson_ids:
            try:
                report = run_lesson(session, lid, settings)
            except ValueError as e:
                click.echo(f"[FAIL] {lid}: {e}", err=True)
                has_failure = True
                continue
            write_report(report, settings.reports_dir)
            _echo_report(lid, report)
            if not (report.success or report.dry_run):
                has_failure = True

        if has_failure:
            sys.exit(1)
    finally:
        session.close()


@cli.command()
@click.option(
    "--lesson-id", "lesson_ids", multiple=True, required=True,
    help="Lesson ID(s) to retry (repeatable).",
)
@click.option("--dry-run", is_flag=True, default=False, help="Write the retry prompt payload; the lesson stays failed.")
@click.pass_context
def retry(ctx: click.Context, lesson_ids: tuple[str, ...], dry_run: bool) -> None:
    """Retry failed lessons, feeding their last error into the first prompt."""
    from lessonforge.core.pipeline import retry_lesson, write_report

    settings = ctx.obj["settings"]
    if dry_run:
        settings.dry_run = True
    session = ctx.obj["session_factory"]()
    try:
        has_failure = False
        for lid in lesson_ids:
            try:
                report = retry_lesson(session, lid, settings)
            except ValueError as e:
                click.echo(f"[FAIL] {lid}: {e}", err=True)
                has_failure = True
                continue
            write_report(report, settings.reports_dir)
            _echo_report(lid, report)
            if not (report.success or report.dry_run):
                has_failure = True

        if has_failure:
            sys.exit(1)
    finally:
        session.close()


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show lesson counts by status + last 10 lessons."""
    session = ctx.obj["session_factory"]()
    try:
        from sqlalchemy import func

        rows = (
            session.query(Lesson.status, func.count())
            .group_by(Lesson.status)
            .all()
        )
        total = sum(c for _, c in rows)
        click.echo(f"=== Lessons: {total} ===")
        for s, c in rows:
            click.echo(f"  {s.value:<12} {c}")

        click.echo("")
        click.echo("--- Last 10 lessons ---")
        recent = (
            session.query(Lesson)
            .order_by(Lesson.created_at.desc())
            .limit(10)
            .all()
        )
        if not recent:
            click.echo("  (none)")
        for lesson in recent:
            err = f"  !! {lesson.error[:40]}" if lesson.error else ""
            click.echo(f"  [{lesson.status.value:<10}] {lesson.id}  {lesson.title[:50]}{err}")
    finally:
        session.close()


@cli.command()
@click.option("--lesson-id", "lesson_id", required=True, help="Lesson to show.")
@click.pass_context
def show(ctx: click.Context, lesson_id: str) -> None:
    """Show one lesson record as JSON."""
    from lessonforge.models.schemas import LessonView

    session = ctx.obj["session_factory"]()
    try:
        lesson = session.get(Lesson, lesson_id)
        if lesson is None:
            click.echo(f"[FAIL] Lesson not found: {lesson_id}", err=True)
            sys.exit(1)
        click.echo(LessonView.from_lesson(lesson).model_dump_json(indent=2))
    finally:
        session.close()


@cli.command()
@click.option("--lesson-id", "lesson_id", required=True, help="Lesson to render.")
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write the HTML here instead of stdout.")
@click.option("--local", is_flag=True, default=False, help="Read the artifact from the local store instead of HTTP.")
@click.pass_context
def render(ctx: click.Context, lesson_id: str, output: Path | None, local: bool) -> None:
    """Load a completed lesson's artifact and render it to HTML."""
    from lessonforge.core.errors import LoaderError
    from lessonforge.core.store import get_store
    from lessonforge.ui.loader import LessonLoader, make_store_fetcher

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        lesson = session.get(Lesson, lesson_id)
        if lesson is None or lesson.status != LessonStatus.COMPLETED:
            state = lesson.status.value if lesson else "missing"
            click.echo(f"[FAIL] {lesson_id}: lesson is {state}", err=True)
            sys.exit(1)
        address = lesson.compiled_artifact_url
    finally:
        session.close()

    loader = LessonLoader(
        fetch=make_store_fetcher(get_store(settings)) if local else None,
        timeout=settings.loader_timeout_seconds,
        entry_name=settings.entry_name,
    )
    try:
        html = loader.load(address).render()
    except LoaderError as e:
        click.echo(f"[FAIL] {lesson_id}: {e}", err=True)
        sys.exit(1)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(html, encoding="utf-8")
        click.echo(f"[OK] {lesson_id} -> {output}")
    else:
        click.echo(html)


@cli.command()
@click.option("--lesson-id", "lesson_id", type=str, required=True, help="Lesson to show report for.")
@click.pass_context
def report(ctx: click.Context, lesson_id: str) -> None:
    """Show the latest generation report for a lesson."""
    from lessonforge.core.pipeline import latest_report

    settings = ctx.obj["settings"]
    latest = latest_report(settings.reports_dir, lesson_id)
    if latest is None:
        click.echo(f"No reports found for {lesson_id}")
        return

    data = json.loads(latest.read_text())

    click.echo(f"=== Report: {lesson_id} ===")
    click.echo(f"  Title:     {data['title']}")
    click.echo(f"  Status:    {data['status'].upper()}")
    click.echo(f"  Started:   {data['started_at']}")
    click.echo(f"  Completed: {data['completed_at']}")
    click.echo(f"  Cost:      ${data['total_cost_usd']:.4f}")
    if data.get("artifact_url"):
        click.echo(f"  Artifact:  {data['artifact_url']}")
    if data.get("error"):
        click.echo(f"  Error:     {data['error']}")

    click.echo("  Attempts:")
    for attempt in data.get("attempts", []):
        line = f"    {attempt['index']:<3} {attempt['variant']:<20}"
        if attempt.get("error"):
            line += f"  {attempt['stage']}: {attempt['error']}"
        else:
            line += "  ok"
        click.echo(line)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", type=int, default=5000, help="Port.")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Run the web app (API, artifacts and lesson viewer)."""
    from lessonforge.web.app import create_app

    app = create_app(ctx.obj["settings"])
    app.run(host=host, port=port)
