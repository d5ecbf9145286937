from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    anthropic_api_key: str = ""

    # Database
    database_url: str = "sqlite:///data/lessonforge.db"

    # Content Generation
    claude_model: str = "claude-sonnet-4-20250514"
    claude_max_tokens: int = 10000
    claude_temperature: float = 0.6
    claude_max_steps: int = 4  # tool-use round trips per model call
    diagram_model: str = "claude-3-5-haiku-20241022"
    max_retries: int = 3  # SDK transport retries
    max_attempts: int = Field(default=2, ge=1)  # generation attempts per run
    dry_run: bool = False

    # Artifact
    entry_name: str = "LessonComponent"
    artifacts_dir: str = "data/artifacts"
    artifact_base_url: str = "http://localhost:5000"
    loader_timeout_seconds: float = 10.0
    viewer_max_sessions: int = 256  # live lesson pages kept in memory

    # Output
    reports_dir: str = "data/reports"
    logs_dir: str = "data/logs"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def artifact_root_url(self) -> str:
        return f"{self.artifact_base_url.rstrip('/')}/artifacts"


def get_settings() -> Settings:
    return Settings()
