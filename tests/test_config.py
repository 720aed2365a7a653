from __future__ import annotations

from loyalty.core.config import Settings


def test_settings_defaults(monkeypatch) -> None:
    for name in ("DATABASE_URL", "REDIS_URL", "PURCHASE_CENTS_PER_POINT", "CACHE_DEFAULT_TTL_SECONDS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.purchase_cents_per_point == 4
    assert settings.redis_url == ""
    assert settings.cache_default_ttl_seconds == 300
    assert settings.database_url.startswith("postgresql+asyncpg://")


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("PURCHASE_CENTS_PER_POINT", "10")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/3")

    settings = Settings(_env_file=None)

    assert settings.purchase_cents_per_point == 10
    assert settings.redis_url == "redis://localhost:6379/3"
