from __future__ import annotations

from typing import Iterable

import pytest

from datastore.factory import build_default_store
from datastore.memory_store import InMemoryReadingStore
from datastore.supabase_store import SupabaseReadingStore
from services.dashboard import build_default_service
from settings import get_settings
from storage.artifacts import build_default_artifact_store


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


CACHES = (
    get_settings,
    build_default_store,
    build_default_artifact_store,
    build_default_service,
)


@pytest.fixture(autouse=True)
def clean_caches() -> Iterable[None]:
    _clear_caches(CACHES)
    yield
    _clear_caches(CACHES)


def test_environment_overrides_apply(monkeypatch, tmp_path) -> None:
    store_path = tmp_path / "readings.json"
    artifact_root = tmp_path / "artifacts"

    monkeypatch.setenv("DEVICE_ID", "garage-pi")
    monkeypatch.setenv("READING_STORE_BACKEND", "memory")
    monkeypatch.setenv("READINGS_TABLE", "custom_readings")
    monkeypatch.setenv("READING_STORE_PERSISTENCE_PATH", str(store_path))
    monkeypatch.setenv("ARTIFACT_ROOT_PATH", str(artifact_root))
    monkeypatch.setenv("UPLOAD_INTERVAL_SEC", "15")
    monkeypatch.setenv("OFFLINE_MULTIPLIER", "3")
    monkeypatch.setenv("DISPLAY_TIME_ZONE", "Europe/Berlin")
    monkeypatch.setenv("DEFAULT_SAMPLE_INTERVAL_SEC", "300")
    monkeypatch.setenv("AUTO_REPORT", "yes")
    monkeypatch.setenv("WEATHER_LATITUDE", "52.52")
    monkeypatch.setenv("WEATHER_LONGITUDE", "13.41")

    store = build_default_store()
    artifacts = build_default_artifact_store()
    service = build_default_service()

    assert isinstance(store, InMemoryReadingStore)
    assert store.name == "custom_readings"
    assert store.persistence_path == store_path
    assert artifacts.root_path == artifact_root
    assert service.store is store
    assert service.artifacts is artifacts
    assert service.device_id == "garage-pi"
    assert service.upload_interval_sec == 15
    assert service.offline_after_sec == 45
    assert service.time_zone == "Europe/Berlin"
    assert service.default_sample_interval_sec == 300
    assert service.auto_report is True
    assert service.emailer is None
    assert service.weather is not None


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("UPLOAD_INTERVAL_SEC", "-5")
    monkeypatch.setenv("POLL_LIMIT", "lots")
    monkeypatch.setenv("READING_STORE_BACKEND", "mongo")
    monkeypatch.setenv("AUTO_REPORT", "maybe")
    monkeypatch.setenv("WEATHER_LATITUDE", "north")
    monkeypatch.setenv("LOG_LEVEL", " debug ")

    settings = get_settings()

    assert settings.upload_interval_sec == 10
    assert settings.offline_after_sec == 40
    assert settings.poll_limit == 100
    assert settings.store_backend == "memory"
    assert settings.auto_report is False
    assert settings.weather_latitude is None
    assert settings.log_level == "DEBUG"


def test_supabase_backend_requires_credentials(monkeypatch) -> None:
    monkeypatch.setenv("READING_STORE_BACKEND", "supabase")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)

    with pytest.raises(RuntimeError, match="SUPABASE_URL"):
        build_default_store()


def test_supabase_backend_is_selected(monkeypatch) -> None:
    monkeypatch.setenv("READING_STORE_BACKEND", "supabase")
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.test")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("READINGS_TABLE", "temperature_readings")

    store = build_default_store()

    assert isinstance(store, SupabaseReadingStore)
    assert store.table == "temperature_readings"


def test_email_endpoint_enables_emailer(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("READING_STORE_PERSISTENCE_PATH", str(tmp_path / "readings.json"))
    monkeypatch.setenv("ARTIFACT_ROOT_PATH", str(tmp_path / "artifacts"))
    monkeypatch.setenv("REPORT_EMAIL_ENDPOINT", "https://mail.example.test/send-report")
    monkeypatch.setenv("EMAIL_WARN_BYTES", "2048")

    service = build_default_service()

    assert service.emailer is not None
    assert service.emailer.endpoint == "https://mail.example.test/send-report"
    assert service.emailer.warn_bytes == 2048
