import logging

import pytest

from donorsignal.config import LOG_FORMAT, Settings, configure_logging, get_settings


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults(settings):
    assert settings.monitoring_interval_seconds == 3600.0
    assert settings.retraining_age_days == 90
    assert settings.critical_age_days == 180
    assert settings.min_confidence == 0.10
    assert settings.max_confidence == 0.95
    assert settings.completeness_warning_threshold == 0.8


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DONORSIGNAL_MONITORING_INTERVAL_SECONDS", "60")
    monkeypatch.setenv("DONORSIGNAL_MAX_CONFIDENCE", "0.9")
    settings = Settings(_env_file=None)
    assert settings.monitoring_interval_seconds == 60.0
    assert settings.max_confidence == 0.9


def test_get_settings_is_cached(monkeypatch):
    first = get_settings()
    monkeypatch.setenv("DONORSIGNAL_LOG_LEVEL", "DEBUG")
    assert get_settings() is first

    get_settings.cache_clear()
    assert get_settings().log_level == "DEBUG"


def test_configure_logging(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("debug")
    monkeypatch.setenv("DONORSIGNAL_LOG_LEVEL", "warning")
    configure_logging()

    assert calls == [
        {"level": "DEBUG", "format": LOG_FORMAT},
        {"level": "WARNING", "format": LOG_FORMAT},
    ]
