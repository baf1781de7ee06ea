import logging

from serviceforge.config import DEFAULT_REQUEST_TIMEOUT, Settings, load_settings


def test_cors_origins_are_split_and_trimmed(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test ,")

    settings = load_settings()

    assert settings.cors_origins == ("http://a.test", "http://b.test")
    assert settings.origins() == ["http://a.test", "http://b.test"]


def test_defaults_allow_any_origin():
    assert Settings().cors_origins == ("*",)


def test_invalid_timeout_and_level_fall_back(monkeypatch):
    monkeypatch.setenv("SERVICEFORGE_REQUEST_TIMEOUT", "soon")
    monkeypatch.setenv("SERVICEFORGE_LOG_LEVEL", "chatty")
    monkeypatch.setenv("SERVICEFORGE_BACKEND_URL", "http://backend.test/")

    settings = load_settings()

    assert settings.request_timeout == DEFAULT_REQUEST_TIMEOUT
    assert settings.log_level == logging.INFO
    assert settings.backend_url == "http://backend.test"
