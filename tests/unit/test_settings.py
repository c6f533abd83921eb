from __future__ import annotations

from energy_api.services.shared_store import MemorySharedStore, RedisSharedStore, build_shared_store
from energy_api.settings import Settings, load_settings


def test_defaults() -> None:
    settings = Settings()

    assert settings.upstream_base_url == "https://api.energidataservice.dk/dataset"
    assert settings.retry_max_attempts == 3
    assert settings.local_cache_max_entries == 100
    assert settings.coalesce_grace_period == 0.1
    assert settings.cors_origins == ["*"]


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.dk, https://b.dk")
    monkeypatch.setenv("CACHE_DEBUG", "true")

    settings = load_settings()

    assert settings.retry_max_attempts == 5
    assert settings.cors_origins == ["https://a.dk", "https://b.dk"]
    assert settings.cache_debug is True


def test_shared_store_selection() -> None:
    assert isinstance(build_shared_store(Settings()), MemorySharedStore)

    store = build_shared_store(Settings(SHARED_CACHE_URL="redis://localhost:6379/0"))
    assert isinstance(store, RedisSharedStore)
