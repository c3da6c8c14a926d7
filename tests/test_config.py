"""
Configuration validation tests.
"""

import pytest
from pydantic import ValidationError

from progressgate.config import Environment, FeedBackend, Settings


def _settings(**overrides):
    values = {"allow_insecure_dev": True}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_defaults():
    s = _settings()

    assert s.pollution_marker == "debug topic"
    assert s.terminal_markers == ["research_done", "ready"]
    assert s.janitor_interval_seconds == 30
    assert s.cache_max_age_seconds == 7 * 24 * 3600
    assert s.feed_backend == FeedBackend.LOCAL


def test_privileged_url_defaults_to_primary():
    s = _settings(database_url="sqlite+aiosqlite:///:memory:")
    assert s.effective_privileged_database_url == "sqlite+aiosqlite:///:memory:"


def test_rejects_unsupported_database_url():
    with pytest.raises(ValidationError):
        _settings(database_url="mysql://localhost/db")


def test_terminal_markers_from_csv_are_lowercased():
    s = _settings(terminal_markers="Research_Done, READY ,finished")
    assert s.terminal_markers == ["research_done", "ready", "finished"]


def test_terminal_markers_from_json():
    s = _settings(terminal_markers='["done"]')
    assert s.terminal_markers == ["done"]


def test_empty_pollution_marker_rejected():
    with pytest.raises(ValidationError):
        _settings(pollution_marker="   ")


@pytest.mark.parametrize("field", ["janitor_interval_seconds", "fetch_timeout_seconds"])
def test_non_positive_intervals_rejected(field):
    with pytest.raises(ValidationError):
        _settings(**{field: 0})


def test_invalid_port_rejected():
    with pytest.raises(ValidationError):
        _settings(port=70000)


def test_api_key_required_in_production():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, env=Environment.PRODUCTION, allow_insecure_dev=False, api_key=None)


def test_api_key_required_without_insecure_dev():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, allow_insecure_dev=False, api_key=None)


def test_cors_is_explicit_allowlist():
    s = _settings()
    assert s.cors_allowed_origins != ["*"]
    assert "X-Owner-ID" in s.cors_allowed_headers
