"""Settings tests."""

import pytest
import structlog
from pydantic import ValidationError

from hibiscus.core.config import Settings, configure_logging
from hibiscus.models.job import JobKind


def test_reads_aliased_environment_variables(monkeypatch):
    monkeypatch.setenv("HIBISCUS_API_KEY", "key-a, key-b ,")
    monkeypatch.setenv("MAX_CONCURRENT_JOBS", "3")
    monkeypatch.setenv("VIDEO_TIMEOUT_SECONDS", "120")

    settings = Settings(_env_file=None)

    assert settings.credentials_list == ["key-a", "key-b"]
    assert settings.max_concurrent_jobs == 3
    assert settings.video_timeout_seconds == 120.0


def test_defaults(monkeypatch):
    for name in ("HIBISCUS_API_KEY", "MAX_RETRIES", "JOB_SAFETY_RETRIES", "RECENT_ITEMS_LIMIT"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.credentials_list == []
    assert settings.max_retries == 3
    assert settings.max_safety_retries == 50
    assert settings.job_safety_retries == 30
    assert settings.recent_items_limit == 5


def test_invalid_filename_format_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, filename_format="random")


def test_cors_origins_list():
    settings = Settings(_env_file=None, cors_origins="http://a.test, http://b.test")

    assert settings.cors_origins_list == ["http://a.test", "http://b.test"]


def test_generation_defaults_per_kind():
    settings = Settings(_env_file=None, default_image_model="turbo", default_width=768)

    image = settings.generation_defaults(JobKind.IMG2IMG)
    video = settings.generation_defaults(JobKind.VIDEO)

    assert image["model"] == "turbo"
    assert image["width"] == 768
    assert image["seed"] == -1
    assert video["model"] == "veo"
    assert "width" not in video


@pytest.fixture
def reset_structlog():
    yield
    structlog.reset_defaults()


def test_configure_logging_filters_below_log_level(capsys, reset_structlog):
    configure_logging(Settings(_env_file=None, app_env="test", log_level="DEBUG"))
    structlog.get_logger("verbose").debug("config.debug_shown")

    configure_logging(Settings(_env_file=None, app_env="test", log_level="INFO"))
    quiet = structlog.get_logger("quiet")
    quiet.debug("config.debug_hidden")
    quiet.info("config.info_shown")

    out = capsys.readouterr().out
    assert "config.debug_shown" in out
    assert "config.debug_hidden" not in out
    assert "config.info_shown" in out
