import pytest
from pydantic import ValidationError

from cellrate.app.core.config import Settings


def test_defaults(monkeypatch) -> None:
    for name in ("RATE_LIMIT_RATE", "RATE_LIMIT_BURST", "RATE_LIMIT_PREFIX", "RATE_LIMIT_BACKEND"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)
    assert settings.rate_limit_prefix == "rl:"
    assert settings.rate_limit_backend == "redis"
    assert (settings.rate_limit_rate, settings.rate_limit_burst) == (1, 1)
    assert settings.rate_limit_period_seconds == 1.0
    assert settings.rate_limit_timeout is None


def test_overrides_from_env(monkeypatch) -> None:
    monkeypatch.setenv(
        "RATE_LIMIT_OVERRIDES",
        '{"vip": {"rate": 100, "burst": 50, "period": 60}, "bot": "1/m"}',
    )

    settings = Settings(_env_file=None)
    assert settings.rate_limit_overrides == {
        "vip": {"rate": 100, "burst": 50, "period": 60},
        "bot": "1/m",
    }


@pytest.mark.parametrize("raw", ["", "{}", "  "])
def test_empty_overrides(monkeypatch, raw: str) -> None:
    monkeypatch.setenv("RATE_LIMIT_OVERRIDES", raw)

    settings = Settings(_env_file=None)
    assert settings.rate_limit_overrides == {}


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"a": 5}', '"10/s"'])
def test_malformed_overrides_rejected(monkeypatch, raw: str) -> None:
    monkeypatch.setenv("RATE_LIMIT_OVERRIDES", raw)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("RATE_LIMIT_RATE", "0"),
        ("RATE_LIMIT_BURST", "-1"),
        ("RATE_LIMIT_PERIOD_SECONDS", "0"),
        ("RATE_LIMIT_PERIOD_SECONDS", "nan"),
        ("RATE_LIMIT_PERIOD_SECONDS", "inf"),
        ("RATE_LIMIT_PERIOD_SECONDS", "0.0000001"),
        ("RATE_LIMIT_TIMEOUT", "nan"),
        ("REDIS_SOCKET_TIMEOUT", "inf"),
        ("RATE_LIMIT_TIMEOUT", "0"),
        ("RATE_LIMIT_BACKEND", "memcached"),
        ("LOG_FORMAT", "xml"),
    ],
)
def test_invalid_values_rejected(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_backend_is_normalized(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_BACKEND", " Memory ")

    settings = Settings(_env_file=None)
    assert settings.rate_limit_backend == "memory"


def test_smallest_period_accepted(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_PERIOD_SECONDS", "0.000001")

    settings = Settings(_env_file=None)
    assert settings.rate_limit_period_seconds == 1e-6


def test_forwarded_for_untrusted_by_default(monkeypatch) -> None:
    monkeypatch.delenv("RATE_LIMIT_TRUST_FORWARDED_FOR", raising=False)

    assert Settings(_env_file=None).rate_limit_trust_forwarded_for is False

    monkeypatch.setenv("RATE_LIMIT_TRUST_FORWARDED_FOR", "true")
    assert Settings(_env_file=None).rate_limit_trust_forwarded_for is True
