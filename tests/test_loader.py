import sys
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from lessonforge.core.errors import FetchError, LoadError, RenderError
from lessonforge.core.generator import generate_lesson
from lessonforge.core.transpiler import transpile
from lessonforge.models.lesson import LessonStatus
from lessonforge.models.schemas import GenerateLessonEvent
from lessonforge.ui import registry
from lessonforge.ui.loader import (
    RUNTIME,
    FetchedArtifact,
    LessonLoader,
    build_wrapper,
    fetch_artifact,
    make_store_fetcher,
)


def _loader_for(text: str, **kwargs) -> LessonLoader:
    """Loader whose fetch always returns ``text``."""
    return LessonLoader(lambda url, timeout: FetchedArtifact(text, "text/x-python"), **kwargs)


# ── Load from the artifact store ─────────────────────────────────


class TestLoadFromStore:
    def test_load_and_render(self, store, valid_source):
        address = store.put("lesson1", transpile(valid_source))
        loaded = LessonLoader(make_store_fetcher(store)).load(address)

        assert loaded.address == address
        out = loaded.render()
        assert "Intro to Levers" in out
        assert "Pushes: 0" in out

    def test_state_survives_rerender(self, store, valid_source):
        address = store.put("lesson1", transpile(valid_source))
        loaded = LessonLoader(make_store_fetcher(store)).load(address)

        renderer = loaded.renderer()
        loaded.render(renderer)
        assert renderer.dispatch("h0") is True
        assert "Pushes: 1" in loaded.render(renderer)

    def test_module_is_not_registered(self, store, valid_source):
        address = store.put("lesson1", transpile(valid_source))
        LessonLoader(make_store_fetcher(store)).load(address)
        assert not any(name.startswith("lesson_artifact_") for name in sys.modules)

    def test_missing_artifact_is_404(self, store):
        loader = LessonLoader(make_store_fetcher(store))
        with pytest.raises(FetchError, match="HTTP 404"):
            loader.load(store.address_for("nothere"))

    def test_foreign_address(self, store):
        loader = LessonLoader(make_store_fetcher(store))
        with pytest.raises(FetchError, match="not served by this store"):
            loader.load("http://elsewhere/artifacts/x.py")


# ── Generated lessons render after loading ───────────────────────


class TestGeneratedLessonsRender:
    def _generate_and_render(self, db_session, settings, store, lesson, scripted_model, output):
        event = GenerateLessonEvent(lesson_id=lesson.id, title=lesson.title, objective=lesson.objective)
        report = generate_lesson(db_session, event, settings, store, scripted_model([output]))
        assert report.success is True
        db_session.refresh(lesson)
        assert lesson.status == LessonStatus.COMPLETED
        return LessonLoader(make_store_fetcher(store)).load(lesson.compiled_artifact_url).render()

    def test_top_level_stdlib_import(self, db_session, settings, store, pending_lesson,
                                     scripted_model):
        output = "import math\n\ndef LessonComponent():\n    return html.p(math.floor(2.7))\n"
        html = self._generate_and_render(db_session, settings, store, pending_lesson,
                                         scripted_model, output)
        assert html == "<p>2</p>"

    def test_runtime_alias_imported_inside_component(self, db_session, settings, store,
                                                     pending_lesson, scripted_model):
        output = (
            "def LessonComponent():\n"
            "    import react as R\n"
            "    n, _ = R.useState(2)\n"
            "    return html.p(n)\n"
        )
        html = self._generate_and_render(db_session, settings, store, pending_lesson,
                                         scripted_model, output)
        assert html == "<p>2</p>"

    def test_stdlib_import_inside_component(self, db_session, settings, store, pending_lesson,
                                            scripted_model):
        output = (
            "```python\n"
            "from statistics import mean\n"
            "def LessonComponent():\n"
            "    from statistics import median\n"
            "    return html.p(median([1, 5, 9]))\n"
            "```\n"
        )
        html = self._generate_and_render(db_session, settings, store, pending_lesson,
                                         scripted_model, output)
        assert html == "<p>5</p>"


# ── Wrapper and imports ──────────────────────────────────────────


class TestWrapper:
    def test_prelude_names(self):
        wrapper, names = build_wrapper("def LessonComponent():\n    return 1\n")
        assert {"use_state", "html", "useState", "Card", "Quiz", "Math", "math", "random"} <= names
        assert "default = LessonComponent" in wrapper

    def test_runtime_imports_are_rewritten(self):
        source = (
            "from lessonforge.ui.runtime import use_state, html\n"
            "import react\n"
            "from react import useState as us\n"
            "\n"
            "def LessonComponent():\n"
            "    n, _ = us(2)\n"
            "    return html.p(n)\n"
        )
        assert _loader_for(source).load("mem://a").render() == "<p>2</p>"

    def test_stdlib_modules_are_prebound(self):
        source = "def LessonComponent():\n    return html.p(math.floor(2.7), statistics.mean([1, 3]))\n"
        assert _loader_for(source).load("mem://a").render() == "<p>22</p>"

    def test_aliased_runtime_import_inside_component(self):
        source = (
            "def LessonComponent():\n"
            "    import react as R\n"
            "    n, _ = R.useState(2)\n"
            "    return html.p(n)\n"
        )
        assert _loader_for(source).load("mem://a").render() == "<p>2</p>"

    def test_bare_runtime_import_inside_component(self):
        source = (
            "def LessonComponent():\n"
            "    import react\n"
            "    n, _ = react.use_state(3)\n"
            "    return html.p(n)\n"
        )
        assert _loader_for(source).load("mem://a").render() == "<p>3</p>"

    def test_allowed_stdlib_import(self):
        source = "import math\n\ndef LessonComponent():\n    return html.p(math.floor(2.7))\n"
        assert _loader_for(source).load("mem://a").render() == "<p>2</p>"

    def test_disallowed_import(self):
        source = "import os\n\ndef LessonComponent():\n    return html.p(os.getcwd())\n"
        with pytest.raises(LoadError, match="Failed to load lesson module: ImportError"):
            _loader_for(source).load("mem://a")

    def test_camel_case_hooks(self):
        source = (
            "def LessonComponent():\n"
            "    n, set_n = useState(5)\n"
            "    return createElement('p', None, n)\n"
        )
        assert _loader_for(source).load("mem://a").render() == "<p>5</p>"

    def test_print_is_silenced(self, capsys):
        source = "def LessonComponent():\n    print('debug')\n    return html.p('ok')\n"
        assert _loader_for(source).load("mem://a").render() == "<p>ok</p>"
        assert capsys.readouterr().out == ""

    def test_artifact_cannot_rebind_registry(self):
        source = "Card = None\n\ndef LessonComponent():\n    return html.p('x')\n"
        _loader_for(source).load("mem://a")
        assert registry.CAPABILITIES["Card"] is registry.Card

    def test_runtime_namespace_is_read_only(self):
        with pytest.raises(AttributeError):
            RUNTIME.use_state = None


# ── Load failures ────────────────────────────────────────────────


class TestLoadErrors:
    def test_default_export_is_used(self):
        source = "def Lesson():\n    return html.p('x')\n\ndefault = Lesson\n"
        assert _loader_for(source).load("mem://a").render() == "<p>x</p>"

    def test_custom_entry_name(self):
        source = "def Lesson():\n    return html.p('y')\n"
        assert _loader_for(source, entry_name="Lesson").load("mem://a").render() == "<p>y</p>"

    def test_no_component_lists_defined_names(self):
        source = "def Helper():\n    return 1\n\nvalue = 3\n"
        with pytest.raises(LoadError) as exc_info:
            _loader_for(source).load("mem://a")
        assert str(exc_info.value) == "No component found in module exports: Helper, value"

    def test_non_callable_entry(self):
        with pytest.raises(LoadError, match="No component found"):
            _loader_for("LessonComponent = 3\n").load("mem://a")

    def test_invalid_python(self):
        with pytest.raises(LoadError, match="not valid Python"):
            _loader_for("def LessonComponent(:\n").load("mem://a")

    def test_error_during_execution(self):
        with pytest.raises(LoadError, match="ValueError: boom"):
            _loader_for("raise ValueError('boom')\n").load("mem://a")

    def test_name_error_surfaces_at_render(self):
        source = "def LessonComponent():\n    return html.p(open('secrets').read())\n"
        loaded = _loader_for(source).load("mem://a")
        with pytest.raises(RenderError, match="NameError: name 'open' is not defined"):
            loaded.render()

    def test_render_error_is_load_error(self):
        assert issubclass(RenderError, LoadError)


# ── HTTP fetch ───────────────────────────────────────────────────


def _response(body: bytes, content_type: str = "text/x-python", status: int = 200):
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.status = status
    resp.headers.get_content_type.return_value = content_type
    resp.headers.get_content_charset.return_value = "utf-8"
    resp.read.return_value = body
    return resp


class TestFetchArtifact:
    URL = "http://testserver/artifacts/abc.py"

    @patch("lessonforge.ui.loader.urllib.request.urlopen")
    def test_success(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"x = 1\n")
        fetched = fetch_artifact(self.URL, timeout=3)
        assert fetched.text == "x = 1\n"
        assert mock_urlopen.call_args.kwargs["timeout"] == 3

    @patch("lessonforge.ui.loader.urllib.request.urlopen")
    def test_http_error(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.HTTPError(self.URL, 404, "Not Found", None, None)
        with pytest.raises(FetchError, match=f"Network error: HTTP 404 fetching {self.URL}"):
            fetch_artifact(self.URL)

    @patch("lessonforge.ui.loader.urllib.request.urlopen")
    def test_timeout(self, mock_urlopen):
        mock_urlopen.side_effect = TimeoutError()
        with pytest.raises(FetchError, match="timed out"):
            fetch_artifact(self.URL)

    @patch("lessonforge.ui.loader.urllib.request.urlopen")
    def test_connection_refused(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError("connection refused")
        with pytest.raises(FetchError, match="connection refused"):
            fetch_artifact(self.URL)

    @patch("lessonforge.ui.loader.urllib.request.urlopen")
    def test_unexpected_content_type(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"<html></html>", content_type="text/html")
        with pytest.raises(FetchError, match="Unexpected content type 'text/html'"):
            fetch_artifact(self.URL)

    def test_rejects_non_http_address(self):
        with pytest.raises(FetchError, match="Unsupported artifact address"):
            fetch_artifact("file:///etc/passwd")
