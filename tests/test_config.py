"""
Tests for configuration management.
"""
import os
import pytest


class TestPathsConfig:
    """Tests for PathsConfig auto-detection."""

    def test_ffmpeg_path_detection(self):
        """FFmpeg path should be detected or fallback to 'ffmpeg'."""
        from longvideo.config import PathsConfig

        ffmpeg_path = PathsConfig._find_ffmpeg()
        assert ffmpeg_path
        assert ffmpeg_path == "ffmpeg" or os.path.exists(ffmpeg_path)

    def test_custom_data_dir_from_env(self, temp_dir, monkeypatch):
        """DATA_DIR env var should override default and create the media dir."""
        monkeypatch.setenv("DATA_DIR", str(temp_dir))
        monkeypatch.delenv("MEDIA_DIR", raising=False)

        from longvideo.config import PathsConfig

        config = PathsConfig.detect()
        assert config.data_dir == temp_dir
        assert config.media_dir == temp_dir / "media"
        assert config.media_dir.exists()


class TestApiKeys:
    """Tests for upstream key collection."""

    def test_comma_separated_keys(self, monkeypatch):
        monkeypatch.setenv("VECTORENGINE_API_KEYS", "sk-a, sk-b,,sk-c")

        from longvideo.config import _read_api_keys

        assert _read_api_keys() == ["sk-a", "sk-b", "sk-c"]

    def test_numbered_keys_are_appended_without_duplicates(self, monkeypatch):
        monkeypatch.setenv("VECTORENGINE_API_KEYS", "sk-a")
        monkeypatch.setenv("VECTORENGINE_API_KEY_1", "sk-a")
        monkeypatch.setenv("VECTORENGINE_API_KEY_2", "sk-d")

        from longvideo.config import _read_api_keys

        assert _read_api_keys() == ["sk-a", "sk-d"]

    def test_placeholder_keys_are_ignored(self, monkeypatch):
        """Placeholder keys starting with PASTE_ should not count as configured."""
        monkeypatch.setenv("VECTORENGINE_API_KEYS", "PASTE_YOUR_KEY_HERE")

        from longvideo.config import _read_api_keys, CredentialsConfig

        assert _read_api_keys() == []
        creds = CredentialsConfig(openrouter_api_key="PASTE_OPENROUTER_KEY", openai_api_key="sk-real")
        assert creds.has_pool is False
        assert creds.has_openrouter is False
        assert creds.has_openai is True
        assert creds.has_backup_llm is True


class TestAppConfig:
    """Tests for AppConfig."""

    def test_defaults(self, monkeypatch):
        for name in ("SEGMENT_DURATION", "BATCH_SIZE", "CREDENTIAL_GROUPS", "RETRY_MAX_RETRIES"):
            monkeypatch.delenv(name, raising=False)

        from longvideo.config import load_config

        config = load_config()
        assert config.batch.segment_duration == 8
        assert config.batch.batch_size == 6
        assert config.batch.credential_groups == 3
        assert config.retry.max_retries == 5
        assert config.retry.base_delay == 3.0
        assert config.retry.max_delay == 30.0
        assert config.storage_backend == "memory"

    def test_invalid_numbers_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("BATCH_SIZE", "six")
        monkeypatch.setenv("RETRY_BASE_DELAY", "fast")

        from longvideo.config import load_config

        config = load_config()
        assert config.batch.batch_size == 6
        assert config.retry.base_delay == 3.0

    def test_non_positive_batch_size_rejected(self, monkeypatch):
        monkeypatch.setenv("BATCH_SIZE", "0")

        from longvideo.config import load_config

        with pytest.raises(ValueError):
            load_config()

    def test_validate_never_exposes_keys(self, monkeypatch):
        monkeypatch.setenv("VECTORENGINE_API_KEYS", "sk-secret-1,sk-secret-2")

        from longvideo.config import load_config

        status = load_config().validate()
        assert status["credentials"]["pool_size"] == 2
        assert status["ready_for_generation"] is True
        assert "sk-secret-1" not in str(status)

    def test_validate_reports_backup_llm(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "or-real-key")
        monkeypatch.setenv("OPENAI_API_KEY", "PASTE_OPENAI_KEY")

        from longvideo.config import load_config

        status = load_config().validate()
        assert status["credentials"]["backup_llm_configured"] is True
        assert status["credentials"]["openai_configured"] is False
