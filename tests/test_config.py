"""Settings parsing and validation tests."""

import pytest
from pydantic import ValidationError

from shortlink.config import Settings, parse_api_keys


def test_parse_api_keys() -> None:
    assert parse_api_keys("key1:ci, key2:dashboard") == {"key1": "ci", "key2": "dashboard"}


@pytest.mark.parametrize("raw", ["", "no-separator", ","])
def test_parse_api_keys_skips_malformed_pairs(raw: str) -> None:
    assert parse_api_keys(raw) == {}


def test_api_keys_property() -> None:
    assert Settings(API_KEYS="abc:ops").api_keys == {"abc": "ops"}


def test_pipeline_and_limiter_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RATE_LIMIT_BURST", raising=False)
    monkeypatch.delenv("RATE_LIMIT_RPS", raising=False)

    settings = Settings(_env_file=None)

    assert settings.CLICK_WORKER_COUNT == 3
    assert settings.CLICK_QUEUE_CAPACITY == 1000
    assert settings.CLICK_MAX_RETRIES == 3
    assert settings.CLICK_RETRY_BACKOFF_SECONDS == 0.1
    assert settings.RATE_LIMIT_RPS == 10.0
    assert settings.RATE_LIMIT_BURST == 20
    assert settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS == 60.0


@pytest.mark.parametrize(
    "field",
    ["CLICK_WORKER_COUNT", "CLICK_QUEUE_CAPACITY", "CLICK_MAX_RETRIES", "RATE_LIMIT_RPS", "RATE_LIMIT_BURST"],
)
def test_non_positive_values_are_rejected(field: str) -> None:
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


def test_database_pool_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.DB_POOL_SIZE + settings.DB_MAX_OVERFLOW == 25
    assert settings.DB_POOL_RECYCLE_SECONDS == 3600
