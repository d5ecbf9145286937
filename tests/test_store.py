from pathlib import Path
from unittest.mock import patch

import pytest

from lessonforge.core.errors import ArtifactNotFound, StoreError
from lessonforge.core.store import LocalArtifactStore, artifact_key, get_store


class TestArtifactKey:
    def test_key_uses_lesson_id(self):
        assert artifact_key("abc123") == "abc123.py"

    @pytest.mark.parametrize("bad", ["", "../etc/passwd", "a/b", "x" * 65, "id with space"])
    def test_rejects_unsafe_ids(self, bad):
        with pytest.raises(StoreError):
            artifact_key(bad)


class TestLocalArtifactStore:
    def test_put_returns_public_address(self, store):
        address = store.put("lesson1", "# artifact\n")
        assert address == "http://testserver/artifacts/lesson1.py"

    def test_put_then_get(self, store):
        store.put("lesson1", "x = 1\n")
        assert store.get("lesson1") == "x = 1\n"

    def test_put_overwrites(self, store):
        first = store.put("lesson1", "x = 1\n")
        second = store.put("lesson1", "x = 2\n")
        assert first == second
        assert store.get("lesson1") == "x = 2\n"
        files = [p.name for p in Path(store.root).iterdir()]
        assert files == ["lesson1.py"]

    def test_get_missing_raises_not_found(self, store):
        with pytest.raises(ArtifactNotFound):
            store.get("missing")

    def test_not_found_is_store_error(self):
        assert issubclass(ArtifactNotFound, StoreError)

    def test_os_error_becomes_store_error(self, store):
        with patch("lessonforge.core.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StoreError, match="Upload error: disk full"):
                store.put("lesson1", "x = 1\n")
        assert list(Path(store.root).iterdir()) == []

    def test_lesson_id_for_reverses_address(self, store):
        assert store.lesson_id_for(store.address_for("abc")) == "abc"

    def test_lesson_id_for_foreign_address(self, store):
        assert store.lesson_id_for("http://elsewhere/artifacts/abc.py") is None
        assert store.lesson_id_for("http://testserver/artifacts/abc.js") is None

    def test_base_url_trailing_slash(self, tmp_path):
        s = LocalArtifactStore(str(tmp_path), "http://host/artifacts/")
        assert s.address_for("a") == "http://host/artifacts/a.py"

    def test_get_store_from_settings(self, settings):
        s = get_store(settings)
        assert s.address_for("a") == "http://testserver/artifacts/a.py"
        assert str(s.root) == settings.artifacts_dir
