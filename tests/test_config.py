import pytest

from bidhouse.config import Settings, get_settings


def test_defaults(monkeypatch):
    for name in ("DB_PATH", "PORT", "BID_RETRIES", "GRACE_HOURS", "PAGE_SIZE", "NOTIFY_ASYNC"):
        monkeypatch.delenv("BIDHOUSE_" + name, raising=False)
    s = Settings.from_env()
    assert s.db_path == "auctions.db"
    assert (s.bid_retries, s.grace_hours, s.page_size) == (5, 24, 9)
    assert s.notify_async is True


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("BIDHOUSE_DB_PATH", "/tmp/market.db")
    monkeypatch.setenv("BIDHOUSE_PORT", "6000")
    monkeypatch.setenv("BIDHOUSE_PAGE_SIZE", "20")
    monkeypatch.setenv("BIDHOUSE_NOTIFY_ASYNC", "off")
    monkeypatch.setenv("BIDHOUSE_LOG_LEVEL", "debug")
    monkeypatch.setenv("BIDHOUSE_LOG_FORMAT", "JSON")
    s = Settings.from_env()
    assert s.db_path == "/tmp/market.db"
    assert s.port == 6000 and s.page_size == 20
    assert s.notify_async is False
    assert (s.log_level, s.log_format) == ("DEBUG", "json")


def test_empty_value_keeps_default(monkeypatch):
    monkeypatch.setenv("BIDHOUSE_BID_RETRIES", "")
    assert Settings.from_env().bid_retries == 5


def test_bad_integer(monkeypatch):
    monkeypatch.setenv("BIDHOUSE_GRACE_HOURS", "a day")
    with pytest.raises(ValueError, match="BIDHOUSE_GRACE_HOURS"):
        Settings.from_env()


def test_get_settings_is_cached(monkeypatch):
    get_settings.cache_clear()
    monkeypatch.setenv("BIDHOUSE_PORT", "7001")
    first = get_settings()
    monkeypatch.setenv("BIDHOUSE_PORT", "7002")
    assert get_settings() is first and first.port == 7001
    get_settings.cache_clear()
