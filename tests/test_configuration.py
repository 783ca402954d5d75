"""
Tests for configuration loading.
"""

from pathlib import Path

import pytest
from omegaconf.errors import ConfigKeyError

from manuscript_formatter_backend.configuration import get_default_config_container, load_settings


class TestLoadSettings:
    def test_defaults(self, monkeypatch):
        for name in ("STORAGE_BACKEND", "JOB_WORKERS", "PLAYWRIGHT_NO_SANDBOX", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        settings = load_settings()
        assert settings.storage_backend == "local"
        assert settings.max_workers == 2
        assert settings.keep_completed == 100
        assert settings.keep_failed == 100
        assert settings.max_wait_seconds == 30.0
        assert settings.max_waiters == 32
        assert settings.pdf_no_sandbox is False
        assert settings.log_level == "INFO"
        assert settings.output_dir == settings.files_dir / "out"

    def test_environment_interpolation(self, monkeypatch):
        monkeypatch.setenv("JOB_WORKERS", "3")
        monkeypatch.setenv("PLAYWRIGHT_NO_SANDBOX", "true")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("BASE_PUBLIC_URL", "https://api.example.org/")
        settings = load_settings()
        assert settings.max_workers == 3
        assert settings.pdf_no_sandbox is True
        assert settings.log_level == "DEBUG"
        assert settings.base_public_url == "https://api.example.org"

    def test_overrides(self, tmp_path):
        settings = load_settings({
            "storage": {"files_dir": str(tmp_path)},
            "jobs": {"keep_completed": 5, "max_workers": 0},
        })
        assert settings.files_dir == Path(tmp_path)
        assert settings.keep_completed == 5
        assert settings.max_workers == 1

    def test_unknown_keys_are_rejected(self):
        with pytest.raises(ConfigKeyError):
            load_settings({"jobs": {"max_retries": 3}})


def test_default_container_is_unresolved():
    container = get_default_config_container()
    assert container["jobs"]["keep_completed"] == 100
    assert container["storage"]["files_dir"].startswith("${oc.env:")
