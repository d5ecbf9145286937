from datetime import datetime

from pydantic import BaseModel, Field


class GenerateLessonEvent(BaseModel):
    """Trigger event that starts one generation run for a lesson."""

    lesson_id: str
    title: str
    objective: str
    course_id: str | None = None
    previous_error: str | None = None
    is_retry: bool = False


class LessonPlan(BaseModel):
    """Structured output of the outline decomposition call."""

    title: str = Field(min_length=1, max_length=200)
    objective: str = Field(min_length=1)


class LessonView(BaseModel):
    """Public view of a lesson record."""

    id: str
    title: str
    objective: str
    course_id: str | None = None
    status: str
    error: str | None = None
    compiled_artifact_url: str | None = None
    attempt_count: int = 0
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_lesson(cls, lesson) -> "LessonView":
        return cls(
            id=lesson.id,
            title=lesson.title,
            objective=lesson.objective,
            course_id=lesson.course_id,
            status=lesson.status.value,
            error=lesson.error,
            compiled_artifact_url=lesson.compiled_artifact_url,
            attempt_count=lesson.attempt_count,
            created_at=lesson.created_at,
            completed_at=lesson.completed_at,
        )
