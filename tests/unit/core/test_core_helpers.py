# tests/unit/core/test_core_helpers.py
import pytest
from datetime import datetime, timedelta, timezone

from backupwiz.core.config import Settings, clear_settings_cache, get_settings
from backupwiz.core.exceptions import SyncError, TunnelUnavailableError, handle_error
from backupwiz.core.utils import coerce_datetime, ensure_utc, values_differ


"""
1. Error normalisation
"""

def test_handle_error_keeps_sync_errors():
    error = TunnelUnavailableError("refused", details={"host": "pbx"})
    assert handle_error(error) is error
    assert error.code == "TUNNEL_UNAVAILABLE"
    assert str(error) == "refused"


def test_handle_error_wraps_unexpected_exceptions():
    wrapped = handle_error(KeyError("x"))
    assert isinstance(wrapped, SyncError)
    assert wrapped.code == "UNKNOWN_ERROR"
    assert wrapped.details == {"type": "KeyError"}


"""
2. Timestamps
"""

def test_ensure_utc_attaches_and_converts():
    naive = datetime(2025, 3, 1, 9, 0)
    assert ensure_utc(naive).tzinfo == timezone.utc
    plus_two = datetime(2025, 3, 1, 11, 0, tzinfo=timezone(timedelta(hours=2)))
    assert ensure_utc(plus_two) == datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert ensure_utc(None) is None


@pytest.mark.parametrize(
    "value",
    [
        datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc),
        "2025-03-01T09:00:00Z",
        "2025-03-01T09:00:00+00:00",
        1740819600,
    ],
)
def test_coerce_datetime_accepts_source_formats(value):
    assert coerce_datetime(value) == datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_coerce_datetime_rejects_unknown_types():
    assert coerce_datetime("") is None
    with pytest.raises(TypeError):
        coerce_datetime(object())


def test_values_differ_ignores_naive_vs_aware():
    aware = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert not values_differ(aware.replace(tzinfo=None), aware)
    assert values_differ(aware, aware + timedelta(seconds=1))
    assert values_differ("a", "b")


"""
3. Settings
"""

def test_notification_emails_accepts_comma_separated_text():
    settings = Settings(NOTIFICATION_EMAILS=" a@example.com, ,b@example.com")
    assert settings.NOTIFICATION_EMAILS == ["a@example.com", "b@example.com"]


def test_async_database_url_switches_driver():
    settings = Settings(DATABASE_URL="postgresql://u:p@db/backupwiz")
    assert settings.async_database_url == "postgresql+asyncpg://u:p@db/backupwiz"


def test_settings_cache_reloads_environment(monkeypatch):
    clear_settings_cache()
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("SYNC_BATCH_SIZE", "25")
    clear_settings_cache()
    try:
        assert get_settings() is not first
        assert get_settings().SYNC_BATCH_SIZE == 25
    finally:
        monkeypatch.undo()
        clear_settings_cache()
