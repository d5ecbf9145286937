import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lessonforge.config import Settings
from lessonforge.core.store import LocalArtifactStore
from lessonforge.db import Base
from lessonforge.models.lesson import Lesson, LessonStatus
from lessonforge.services.claude_service import ClaudeResponse

VALID_LESSON = '''\
def LessonComponent():
    count, set_count = use_state(0)
    return html.div(
        {"class": "min-h-screen bg-[#0a0a0a] text-white"},
        Card(
            html.h1({"class": "text-3xl font-bold text-white"}, "Intro to Levers"),
            html.p({"class": "text-gray-300"}, f"Pushes: {count}"),
            html.button({"on_click": lambda *_: set_count(count + 1)}, "Push"),
        ),
    )
'''


@pytest.fixture
def db_engine():
    """In-memory SQLite engine for tests."""
    import lessonforge.models.lesson  # noqa: F401

    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Database session for tests."""
    factory = sessionmaker(bind=db_engine)
    session = factory()
    yield session
    session.close()


@pytest.fixture
def settings(tmp_path):
    """Settings with temp directories and no API access."""
    return Settings(
        anthropic_api_key="sk-ant-test",
        database_url="sqlite:///:memory:",
        artifacts_dir=str(tmp_path / "artifacts"),
        artifact_base_url="http://testserver",
        reports_dir=str(tmp_path / "reports"),
        logs_dir=str(tmp_path / "logs"),
        max_attempts=2,
        dry_run=False,
    )


@pytest.fixture
def store(settings):
    return LocalArtifactStore(settings.artifacts_dir, settings.artifact_root_url)


@pytest.fixture
def pending_lesson(db_session):
    lesson = Lesson(
        title="Intro to Levers",
        objective="explain mechanical advantage",
        status=LessonStatus.PENDING,
    )
    db_session.add(lesson)
    db_session.commit()
    return lesson


@pytest.fixture
def valid_source():
    return VALID_LESSON


def make_response(text: str) -> ClaudeResponse:
    return ClaudeResponse(
        text=text,
        input_tokens=1200,
        output_tokens=800,
        cost_usd=0.0156,
        model="claude-sonnet-4-20250514",
    )


class ScriptedModel:
    """Deterministic stand-in for the model: returns scripted outputs in order."""

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.calls = []

    def __call__(self, system_prompt, user_message, settings):
        self.calls.append((system_prompt, user_message))
        index = min(len(self.calls), len(self.outputs)) - 1
        output = self.outputs[index]
        if isinstance(output, Exception):
            raise output
        return make_response(output)


@pytest.fixture
def scripted_model():
    """Factory: scripted_model(["first output", "second output"])."""
    return ScriptedModel
