"""Artifact storage: one compiled module per lesson, overwritten on each success."""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from lessonforge.core.errors import ArtifactNotFound, StoreError

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".py"
ARTIFACT_CONTENT_TYPE = "text/x-python; charset=utf-8"

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ArtifactStore(Protocol):
    def put(self, lesson_id: str, compiled_text: str) -> str: ...

    def get(self, lesson_id: str) -> str: ...

    def address_for(self, lesson_id: str) -> str: ...

    def lesson_id_for(self, address: str) -> str | None: ...


def artifact_key(lesson_id: str) -> str:
    """Storage key for a lesson's artifact, e.g. 'abc123.py'."""
    if not _SAFE_ID_RE.match(lesson_id or ""):
        raise StoreError(f"Invalid lesson id for artifact key: {lesson_id!r}")
    return f"{lesson_id}{ARTIFACT_SUFFIX}"


class LocalArtifactStore:
    """Filesystem-backed store; artifacts are served by the web app under /artifacts/."""

    def __init__(self, root_dir: str, base_url: str):
        self.root = Path(root_dir)
        self.base_url = base_url.rstrip("/")

    def address_for(self, lesson_id: str) -> str:
        return f"{self.base_url}/{artifact_key(lesson_id)}"

    def lesson_id_for(self, address: str) -> str | None:
        """Reverse of address_for; None if the address is not in this store."""
        prefix = f"{self.base_url}/"
        if not address.startswith(prefix) or not address.endswith(ARTIFACT_SUFFIX):
            return None
        lesson_id = address[len(prefix):-len(ARTIFACT_SUFFIX)]
        return lesson_id if _SAFE_ID_RE.match(lesson_id) else None

    def put(self, lesson_id: str, compiled_text: str) -> str:
        """Write (or overwrite) the artifact and return its public address.

        Raises:
            StoreError: On an invalid id or any filesystem failure.
        """
        key = artifact_key(lesson_id)
        path = self.root / key
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(compiled_text)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreError(f"Upload error: {e}") from e

        address = self.address_for(lesson_id)
        logger.info("Stored artifact %s (%d chars) -> %s", key, len(compiled_text), address)
        return address

    def get(self, lesson_id: str) -> str:
        path = self.root / artifact_key(lesson_id)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ArtifactNotFound(f"Artifact not found: {path.name}") from e
        except OSError as e:
            raise StoreError(f"Read error: {e}") from e


def get_store(settings) -> LocalArtifactStore:
    return LocalArtifactStore(settings.artifacts_dir, settings.artifact_root_url)
