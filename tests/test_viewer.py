import pytest

from lessonforge.core.errors import RenderError
from lessonforge.ui.loader import LoadedLesson
from lessonforge.ui.runtime import html, use_effect, use_state
from lessonforge.web.viewer import UnknownHandler, ViewerSessions


def _lesson(component) -> LoadedLesson:
    return LoadedLesson(address="mem://lesson", component=component, module_text="")


def Counter():
    count, set_count = use_state(0)
    return html.div(
        html.button({"on_click": lambda *_: set_count(count + 1)}, "Push"),
        html.p(f"Pushes: {count}"),
    )


def Echo():
    text, set_text = use_state("")
    return html.div(html.input({"on_input": set_text}), html.p(f"Echo: {text}"))


class TestViewerSession:
    def test_open_renders_and_keeps_session(self):
        viewers = ViewerSessions()
        viewer, content = viewers.open("lsn1", _lesson(Counter))

        assert "Pushes: 0" in content
        assert 'data-on-click="h0"' in content
        assert viewers.get(viewer.session_id, "lsn1") is viewer
        assert len(viewers) == 1

    def test_state_survives_events(self):
        viewer, _ = ViewerSessions().open("lsn1", _lesson(Counter))
        viewer.dispatch("h0")
        assert "Pushes: 2" in viewer.dispatch("h0")

    def test_input_value_is_passed(self):
        viewer, _ = ViewerSessions().open("lsn1", _lesson(Echo))
        assert "Echo: hello" in viewer.dispatch("h0", "hello")

    def test_effects_settle_before_returning(self):
        def Loaded():
            ready, set_ready = use_state(False)
            use_effect(lambda: set_ready(True), [])
            return html.p("ready" if ready else "loading")

        _, content = ViewerSessions().open("lsn1", _lesson(Loaded))
        assert content == "<p>ready</p>"

    def test_unknown_handler(self):
        viewer, _ = ViewerSessions().open("lsn1", _lesson(Counter))
        with pytest.raises(UnknownHandler):
            viewer.dispatch("h9")

    def test_handler_error(self):
        def Broken():
            return html.button({"on_click": lambda *_: 1 / 0}, "Break")

        viewer, _ = ViewerSessions().open("lsn1", _lesson(Broken))
        with pytest.raises(RenderError, match="ZeroDivisionError"):
            viewer.dispatch("h0")

    def test_failed_first_render_is_not_kept(self):
        def Broken():
            raise ValueError("bad lesson")

        viewers = ViewerSessions()
        with pytest.raises(RenderError, match="ValueError: bad lesson"):
            viewers.open("lsn1", _lesson(Broken))
        assert len(viewers) == 0


class TestViewerSessions:
    def test_session_is_bound_to_its_lesson(self):
        viewers = ViewerSessions()
        viewer, _ = viewers.open("lsn1", _lesson(Counter))
        assert viewers.get(viewer.session_id, "lsn2") is None
        assert viewers.get("nope", "lsn1") is None

    def test_least_recently_used_is_evicted(self):
        viewers = ViewerSessions(max_sessions=2)
        first, _ = viewers.open("lsn1", _lesson(Counter))
        second, _ = viewers.open("lsn1", _lesson(Counter))
        viewers.get(first.session_id, "lsn1")
        third, _ = viewers.open("lsn1", _lesson(Counter))

        assert len(viewers) == 2
        assert viewers.get(second.session_id, "lsn1") is None
        assert viewers.get(first.session_id, "lsn1") is first
        assert viewers.get(third.session_id, "lsn1") is third
