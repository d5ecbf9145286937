"""Live viewer sessions for the lesson page.

Each page load opens a session holding the loaded component and its
Renderer, so hook state survives the events the page posts back. Sessions
live in memory only, bounded by ``max_sessions`` and evicted least recently
used first; an evicted or restarted session is answered with "reload".
"""

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone

from lessonforge.core.errors import RenderError
from lessonforge.ui.loader import LoadedLesson
from lessonforge.ui.runtime import Renderer

logger = logging.getLogger(__name__)

# Effects may set state; re-render at most this many times per request
MAX_EFFECT_PASSES = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UnknownHandler(LookupError):
    """The posted handler id was not bound by the last render."""


@dataclass
class ViewerSession:
    session_id: str
    lesson_id: str
    lesson: LoadedLesson
    renderer: Renderer
    created_at: datetime = field(default_factory=_utcnow)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def render(self) -> str:
        html = self.lesson.render(self.renderer)
        for _ in range(MAX_EFFECT_PASSES):
            try:
                ran = self.renderer.flush_effects()
            except Exception as e:
                raise RenderError(f"{type(e).__name__}: {e}") from e
            if not ran or not self.renderer.dirty:
                break
            html = self.lesson.render(self.renderer)
        return html

    def dispatch(self, handler_id: str, *args) -> str:
        """Run one event handler and return the re-rendered HTML.

        Raises:
            UnknownHandler: If the last render bound no such handler.
            RenderError: If the handler or the re-render raises.
        """
        with self.lock:
            if handler_id not in self.renderer.handlers:
                raise UnknownHandler(handler_id)
            try:
                self.renderer.dispatch(handler_id, *args)
            except Exception as e:
                raise RenderError(f"{type(e).__name__}: {e}") from e
            return self.render()


class ViewerSessions:

    def __init__(self, max_sessions: int = 256):
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, ViewerSession] = OrderedDict()
        self._lock = threading.Lock()

    def open(self, lesson_id: str, lesson: LoadedLesson) -> tuple[ViewerSession, str]:
        """Render a freshly loaded lesson and keep it for later events.

        Raises:
            RenderError: If the first render fails; nothing is kept then.
        """
        viewer = ViewerSession(
            session_id=uuid.uuid4().hex,
            lesson_id=lesson_id,
            lesson=lesson,
            renderer=lesson.renderer(),
        )
        with viewer.lock:
            html = viewer.render()

        with self._lock:
            self._sessions[viewer.session_id] = viewer
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug("Evicted viewer session %s", evicted)
        logger.info("Opened viewer session %s for lesson %s", viewer.session_id[:8], lesson_id)
        return viewer, html

    def get(self, session_id: str, lesson_id: str) -> ViewerSession | None:
        with self._lock:
            viewer = self._sessions.get(session_id)
            if viewer is None or viewer.lesson_id != lesson_id:
                return None
            self._sessions.move_to_end(session_id)
            return viewer

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
