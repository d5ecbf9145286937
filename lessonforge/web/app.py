"""Flask app: lesson API, artifact serving and the lesson viewer page."""

import logging
from datetime import datetime, timezone

from flask import Flask, Response, jsonify, render_template_string, request, url_for
from markupsafe import Markup

from lessonforge import __version__
from lessonforge.config import Settings, get_settings
from lessonforge.core.errors import LoaderError, RenderError, StoreError
from lessonforge.core.store import ARTIFACT_CONTENT_TYPE, get_store
from lessonforge.db import get_session_factory
from lessonforge.models.lesson import Lesson, LessonStatus
from lessonforge.models.schemas import LessonView
from lessonforge.ui.loader import LessonLoader, make_store_fetcher
from lessonforge.web.jobs import JobManager
from lessonforge.web.viewer import UnknownHandler, ViewerSessions

logger = logging.getLogger(__name__)

IMMUTABLE_CACHE = "public, max-age=31536000, immutable"

LESSON_PAGE = """\
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{{ title }} - lessonforge</title>
  <script src="https://cdn.tailwindcss.com"></script>
  <link rel="stylesheet" href="https://cdn.jsdelivr.net/npm/katex@0.16/dist/katex.min.css">
  <script defer src="https://cdn.jsdelivr.net/npm/katex@0.16/dist/katex.min.js"></script>
  <script defer src="https://cdn.jsdelivr.net/npm/katex@0.16/dist/contrib/auto-render.min.js"
          onload="renderMathInElement(document.body)"></script>
  <script type="module">
    import mermaid from "https://cdn.jsdelivr.net/npm/mermaid@11/dist/mermaid.esm.min.mjs";
    mermaid.initialize({ startOnLoad: true, theme: "dark" });
    window.mermaid = mermaid;
  </script>
</head>
<body class="bg-[#0a0a0a] text-white">
{% if error %}
  <div class="max-w-2xl mx-auto p-8">
    <h1 class="text-2xl font-bold mb-4">{{ title }}</h1>
    <div class="lesson-error p-4 rounded bg-red-500/10 border border-red-500 text-red-100">{{ error }}</div>
  </div>
{% else %}
  <div id="lesson-event-error" hidden
       class="fixed top-4 right-4 max-w-md p-4 rounded bg-red-500/10 border border-red-500 text-red-100"></div>
  <div id="lesson-root" data-events-url="{{ events_url }}" data-session="{{ session_id }}">{{ content }}</div>
  <script>
{{ viewer_script }}
  </script>
{% endif %}
</body>
</html>
"""

# Posts data-on-* events back to the server and swaps in the re-rendered HTML
VIEWER_SCRIPT = Markup("""\
(function () {
  const root = document.getElementById("lesson-root");
  const errorBox = document.getElementById("lesson-event-error");

  function showError(message) {
    errorBox.textContent = message;
    errorBox.hidden = false;
  }

  function typeset() {
    if (window.renderMathInElement) window.renderMathInElement(root);
    if (window.mermaid) window.mermaid.run({ nodes: root.querySelectorAll(".mermaid") });
  }

  function replace(html) {
    const active = document.activeElement;
    const name = active && root.contains(active) ? active.getAttribute("name") : null;
    const caret = name && active.selectionStart !== undefined ? active.selectionStart : null;
    root.innerHTML = html;
    typeset();
    if (!name) return;
    const next = root.querySelector(`[name="${CSS.escape(name)}"]`);
    if (!next) return;
    next.focus();
    if (caret !== null && next.setSelectionRange) {
      try { next.setSelectionRange(caret, caret); } catch (e) { /* not a text input */ }
    }
  }

  async function send(handler, value) {
    const body = { session: root.dataset.session, handler: handler };
    if (value !== undefined) body.value = value;
    const resp = await fetch(root.dataset.eventsUrl, {
      method: "POST",
      headers: { "Content-Type": "application/json" },
      body: JSON.stringify(body),
    });
    const data = await resp.json();
    if (!resp.ok) {
      showError(data.error || `Event failed (HTTP ${resp.status})`);
      return;
    }
    errorBox.hidden = true;
    replace(data.html);
  }

  // One event in flight at a time; the server renders them in order
  let queue = Promise.resolve();

  for (const type of ["click", "input", "change"]) {
    root.addEventListener(type, (event) => {
      const target = event.target.closest(`[data-on-${type}]`);
      if (!target || !root.contains(target)) return;
      let value;
      if (type !== "click") {
        value = target.type === "checkbox" ? String(target.checked) : target.value;
      }
      const handler = target.getAttribute(`data-on-${type}`);
      queue = queue
        .then(() => send(handler, value))
        .catch((err) => showError(String(err)));
    });
  }
})();
""")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_app(settings: Settings | None = None) -> Flask:
    settings = settings or get_settings()
    app = Flask(__name__)
    app.config["settings"] = settings
    app.config["session_factory"] = get_session_factory(settings.database_url)
    app.config["store"] = get_store(settings)
    app.config["model_call"] = None
    app.config["job_manager"] = JobManager(settings.logs_dir)
    app.config["viewers"] = ViewerSessions(settings.viewer_max_sessions)

    def _session():
        return app.config["session_factory"]()

    def _jobs() -> JobManager:
        return app.config["job_manager"]

    def _submit(action, lesson_id, event=None, dry_run=False):
        active = _jobs().active_for_lesson(lesson_id)
        if active:
            return jsonify({
                "error": f"Job {active.job_id} already active for {lesson_id}",
                "job_id": active.job_id,
            }), 409
        job = _jobs().submit(action, lesson_id, app, event=event, dry_run=dry_run)
        return jsonify(job.to_dict()), 202

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok", "time": _utcnow().isoformat(), "version": __version__})

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    @app.post("/api/lessons")
    def create_lesson():
        from lessonforge.core.pipeline import create_lesson_from_outline

        body = request.get_json(silent=True) or {}
        outline = str(body.get("outline") or "").strip()
        if not outline:
            return jsonify({"error": "Missing lesson outline"}), 400

        session = _session()
        try:
            lesson, event = create_lesson_from_outline(
                session, outline, settings,
                model_call=app.config["model_call"],
                course_id=body.get("course_id"),
            )
            view = LessonView.from_lesson(lesson).model_dump(mode="json")
        except ValueError as e:
            return jsonify({"error": str(e)}), 422
        finally:
            session.close()

        job = _jobs().submit("generate", view["id"], app, event=event)
        return jsonify({"lesson": view, "job_id": job.job_id, "state": job.state}), 202

    @app.get("/api/lessons/<lesson_id>")
    def get_lesson(lesson_id):
        session = _session()
        try:
            lesson = session.get(Lesson, lesson_id)
            if lesson is None:
                return jsonify({"error": f"Lesson not found: {lesson_id}"}), 404
            return jsonify(LessonView.from_lesson(lesson).model_dump(mode="json"))
        finally:
            session.close()

    @app.post("/api/lessons/<lesson_id>/generate")
    def generate(lesson_id):
        body = request.get_json(silent=True) or {}
        session = _session()
        try:
            if session.get(Lesson, lesson_id) is None:
                return jsonify({"error": f"Lesson not found: {lesson_id}"}), 404
        finally:
            session.close()
        return _submit("generate", lesson_id, dry_run=bool(body.get("dry_run", False)))

    @app.post("/api/lessons/retry")
    def retry():
        from lessonforge.core.pipeline import request_retry

        body = request.get_json(silent=True) or {}
        lesson_id = body.get("lessonId") or body.get("lesson_id")
        if not lesson_id:
            return jsonify({"error": "Missing lessonId"}), 400
        if _jobs().active_for_lesson(lesson_id):
            return jsonify({"error": f"A job is already active for {lesson_id}"}), 409

        session = _session()
        try:
            if session.get(Lesson, lesson_id) is None:
                return jsonify({"error": "Lesson not found"}), 404
            try:
                event = request_retry(session, lesson_id)
            except ValueError as e:
                return jsonify({"error": str(e)}), 409
        finally:
            session.close()

        job = _jobs().submit("retry", lesson_id, app, event=event)
        return jsonify({
            "success": True,
            "message": "Lesson retry triggered",
            "job_id": job.job_id,
        }), 202

    @app.get("/api/lessons/<lesson_id>/log")
    def lesson_log(lesson_id):
        path = _jobs().log_path(lesson_id)
        if not path.exists():
            return jsonify({"lines": []})
        lines = path.read_text(encoding="utf-8").splitlines()
        tail = request.args.get("tail", type=int)
        return jsonify({"lines": lines[-tail:] if tail else lines})

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def _artifact_response(lesson_id):
        try:
            text = app.config["store"].get(lesson_id)
        except StoreError as e:
            return jsonify({"error": str(e)}), 404
        resp = Response(text, content_type=ARTIFACT_CONTENT_TYPE)
        resp.headers["Cache-Control"] = IMMUTABLE_CACHE
        return resp

    @app.get("/api/lessons/<lesson_id>/artifact")
    def lesson_artifact(lesson_id):
        session = _session()
        try:
            lesson = session.get(Lesson, lesson_id)
            if lesson is None or lesson.status != LessonStatus.COMPLETED:
                return jsonify({"error": "Lesson artifact not available"}), 404
        finally:
            session.close()
        return _artifact_response(lesson_id)

    @app.get("/artifacts/<lesson_id>.py")
    def artifact_file(lesson_id):
        return _artifact_response(lesson_id)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    @app.get("/api/jobs/<job_id>")
    def get_job(job_id):
        job = _jobs().get(job_id)
        if job is None:
            return jsonify({"error": "Job not found"}), 404
        data = job.to_dict()
        session = _session()
        try:
            lesson = session.get(Lesson, job.lesson_id)
            data["lesson_status"] = lesson.status.value if lesson else None
        finally:
            session.close()
        return jsonify(data)

    # ------------------------------------------------------------------
    # Viewer
    # ------------------------------------------------------------------

    @app.get("/lessons/<lesson_id>")
    def lesson_page(lesson_id):
        session = _session()
        try:
            lesson = session.get(Lesson, lesson_id)
            if lesson is None:
                return render_template_string(LESSON_PAGE, title="Not found", error="Lesson not found"), 404
            title, status = lesson.title, lesson.status
            address, last_error = lesson.compiled_artifact_url, lesson.error
        finally:
            session.close()

        if status == LessonStatus.FAILED:
            return render_template_string(LESSON_PAGE, title=title, error=f"Generation failed: {last_error}")
        if status != LessonStatus.COMPLETED or not address:
            return render_template_string(LESSON_PAGE, title=title, error=f"Lesson is {status.value}")

        loader = LessonLoader(
            fetch=make_store_fetcher(app.config["store"]),
            timeout=settings.loader_timeout_seconds,
            entry_name=settings.entry_name,
        )
        try:
            viewer, content = app.config["viewers"].open(lesson_id, loader.load(address))
        except LoaderError as e:
            logger.warning("Could not display lesson %s: %s", lesson_id, e)
            return render_template_string(LESSON_PAGE, title=title, error=str(e))
        return render_template_string(
            LESSON_PAGE,
            title=title,
            error=None,
            content=Markup(content),
            session_id=viewer.session_id,
            events_url=url_for("lesson_events", lesson_id=lesson_id),
            viewer_script=VIEWER_SCRIPT,
        )

    @app.post("/lessons/<lesson_id>/events")
    def lesson_events(lesson_id):
        body = request.get_json(silent=True) or {}
        session_id = body.get("session")
        handler_id = body.get("handler")
        if not session_id or not handler_id:
            return jsonify({"error": "Missing session or handler"}), 400

        viewer = app.config["viewers"].get(session_id, lesson_id)
        if viewer is None:
            return jsonify({"error": "Viewer session expired; reload the page"}), 404

        args = (str(body["value"]),) if "value" in body else ()
        try:
            content = viewer.dispatch(str(handler_id), *args)
        except UnknownHandler:
            return jsonify({"error": f"Unknown handler: {handler_id}"}), 400
        except RenderError as e:
            logger.warning("Event %s failed for lesson %s: %s", handler_id, lesson_id, e)
            return jsonify({"error": str(e)}), 422
        return jsonify({"html": content})

    return app

