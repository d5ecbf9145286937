from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from lessonforge.models.lesson import Lesson, LessonStatus
from lessonforge.models.schemas import GenerateLessonEvent, LessonPlan, LessonView


class TestLessonORM:
    def test_create_lesson(self, db_session):
        lesson = Lesson(title="Intro to Levers", objective="explain mechanical advantage")
        db_session.add(lesson)
        db_session.commit()

        result = db_session.query(Lesson).first()
        assert result is not None
        assert len(result.id) == 32
        assert result.status == LessonStatus.PENDING
        assert result.attempt_count == 0
        assert result.error is None
        assert result.compiled_artifact_url is None
        assert result.created_at is not None

    def test_ids_are_unique(self, db_session):
        a = Lesson(title="a", objective="o")
        b = Lesson(title="b", objective="o")
        db_session.add_all([a, b])
        db_session.commit()
        assert a.id != b.id

    def test_status_transitions(self, db_session, pending_lesson):
        pending_lesson.status = LessonStatus.PROCESSING
        db_session.commit()
        pending_lesson.status = LessonStatus.COMPLETED
        pending_lesson.compiled_artifact_url = "http://testserver/artifacts/x.py"
        pending_lesson.completed_at = datetime.now(timezone.utc)
        db_session.commit()

        result = db_session.query(Lesson).filter_by(id=pending_lesson.id).first()
        assert result.status == LessonStatus.COMPLETED
        assert result.completed_at is not None

    def test_filter_by_course(self, db_session):
        db_session.add_all([
            Lesson(title="a", objective="o", course_id="physics-101"),
            Lesson(title="b", objective="o", course_id="physics-101"),
            Lesson(title="c", objective="o", course_id="math-201"),
        ])
        db_session.commit()
        assert db_session.query(Lesson).filter_by(course_id="physics-101").count() == 2

    def test_repr(self, pending_lesson):
        assert "Intro to Levers" in repr(pending_lesson)
        assert "pending" in repr(pending_lesson)

    def test_status_values(self):
        assert [s.value for s in LessonStatus] == ["pending", "processing", "completed", "failed"]


class TestSchemas:
    def test_event_defaults(self):
        event = GenerateLessonEvent(lesson_id="abc", title="t", objective="o")
        assert event.is_retry is False
        assert event.previous_error is None
        assert event.course_id is None

    def test_event_roundtrip_json(self):
        event = GenerateLessonEvent(
            lesson_id="abc", title="t", objective="o", previous_error="boom", is_retry=True
        )
        assert GenerateLessonEvent.model_validate_json(event.model_dump_json()) == event

    def test_lesson_plan_requires_fields(self):
        with pytest.raises(ValidationError):
            LessonPlan(title="", objective="o")
        with pytest.raises(ValidationError):
            LessonPlan(title="t")

    def test_lesson_view(self, pending_lesson):
        view = LessonView.from_lesson(pending_lesson)
        assert view.id == pending_lesson.id
        assert view.status == "pending"
        data = view.model_dump(mode="json")
        assert data["title"] == "Intro to Levers"
        assert data["completed_at"] is None
