"""Tests for ModelStore."""

from pathlib import Path

import pytest

from purrscribe.errors import ErrorCode, ModelNotFound
from purrscribe.model_store import MODELS_DIR_ENV, ModelStore, default_models_dir


@pytest.fixture
def models_dir(tmp_path):
    (tmp_path / "ggml-small.bin").write_bytes(b"\0")
    (tmp_path / "v3_ctc.ckpt").write_bytes(b"\0")
    (tmp_path / "large-v3").mkdir()
    return tmp_path


class TestModelStore:
    """Test model resolution."""

    def test_default_dir_from_env(self, monkeypatch, tmp_path):
        """Test the models directory can be set through the environment."""
        monkeypatch.setenv(MODELS_DIR_ENV, str(tmp_path))
        assert default_models_dir() == tmp_path
        assert ModelStore().models_dir == tmp_path

    def test_default_dir_without_env(self, monkeypatch):
        """Test the fallback cache directory."""
        monkeypatch.delenv(MODELS_DIR_ENV, raising=False)
        assert default_models_dir() == Path.home() / ".cache" / "purrscribe" / "models"

    def test_resolve_identifiers(self, models_dir):
        """Test identifiers map to single files, checkpoints and directories."""
        store = ModelStore(models_dir)

        assert store.resolve("small") == models_dir / "ggml-small.bin"
        assert store.resolve("v3_ctc") == models_dir / "v3_ctc.ckpt"
        assert store.resolve("large-v3") == models_dir / "large-v3"

    def test_resolve_existing_path(self, models_dir, tmp_path):
        """Test an existing path is returned unchanged."""
        weights = tmp_path / "elsewhere.bin"
        weights.write_bytes(b"\0")

        assert ModelStore(models_dir).resolve(weights) == weights

    def test_known_but_missing(self, models_dir):
        """Test a known identifier that is not installed."""
        with pytest.raises(ModelNotFound, match="not installed") as exc_info:
            ModelStore(models_dir).resolve("medium")
        assert exc_info.value.code is ErrorCode.MODEL_NOT_FOUND

    def test_unknown_identifier(self, models_dir):
        """Test an identifier nobody knows about."""
        with pytest.raises(ModelNotFound, match="unknown model identifier"):
            ModelStore(models_dir).resolve("enormous-v9")

    def test_list_models(self, models_dir):
        """Test installed models are listed with their family."""
        models = ModelStore(models_dir).list_models()

        assert [(m.identifier, m.family) for m in models] == [
            ("small", "faster_whisper"),
            ("large-v3", "faster_whisper"),
            ("v3_ctc", "gigaam"),
        ]

    def test_default_model_by_preference(self, models_dir):
        """Test the preferred installed model is chosen first."""
        assert ModelStore(models_dir).find_default_model() == models_dir / "ggml-small.bin"

    def test_default_model_any_installed(self, tmp_path):
        """Test a non-preferred model is used when nothing preferred exists."""
        (tmp_path / "v3_ctc.ckpt").write_bytes(b"\0")
        assert ModelStore(tmp_path).find_default_model() == tmp_path / "v3_ctc.ckpt"

    def test_no_models(self, tmp_path):
        """Test an empty store raises ModelNotFound."""
        with pytest.raises(ModelNotFound, match="No model found"):
            ModelStore(tmp_path).find_default_model()
