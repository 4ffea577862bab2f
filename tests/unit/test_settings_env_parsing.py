from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from capx.config.settings import CacheSettings, get_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # Keep a developer's .env out of these tests.
    monkeypatch.chdir(tmp_path)
    for name in (
        "CAPX_API_BASE_URL",
        "CAPX_API_TOKEN",
        "CAPX_TOKEN",
        "CAPX_LANGUAGE",
        "CAPX_SNAPSHOT_DIR",
        "CAPX_TRANSLATION_BATCH_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.unit
def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAPX_API_BASE_URL", "https://capx-backend.toolforge.org/")
    settings = CacheSettings.model_validate({})

    assert settings.api_base_url == "https://capx-backend.toolforge.org"
    assert settings.language == "en"
    assert settings.fallback_language == "en"
    assert settings.translation_batch_size == 20
    assert settings.translation_batch_attempts == 2
    assert settings.snapshot_dir is None
    assert settings.snapshot_key == "capx-unified-cache"


@pytest.mark.unit
def test_token_alias_support(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAPX_API_BASE_URL", "https://example.org")
    monkeypatch.setenv("CAPX_TOKEN", "token-from-alias")
    settings = CacheSettings.model_validate({})
    assert settings.api_token == "token-from-alias"


@pytest.mark.unit
def test_language_is_normalized(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAPX_API_BASE_URL", "https://example.org")
    monkeypatch.setenv("CAPX_LANGUAGE", " PT-BR ")
    settings = CacheSettings.model_validate({})
    assert settings.language == "pt-br"


@pytest.mark.unit
def test_snapshot_dir_is_expanded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CAPX_API_BASE_URL", "https://example.org")
    monkeypatch.setenv("CAPX_SNAPSHOT_DIR", str(tmp_path / "snapshots"))
    settings = CacheSettings.model_validate({})
    assert settings.snapshot_dir == tmp_path / "snapshots"


@pytest.mark.unit
def test_missing_base_url_raises() -> None:
    with pytest.raises(ValidationError):
        CacheSettings.model_validate({})


@pytest.mark.unit
def test_non_http_base_url_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAPX_API_BASE_URL", "ftp://example.org")
    with pytest.raises(ValidationError):
        CacheSettings.model_validate({})


@pytest.mark.unit
def test_batch_size_must_be_positive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAPX_API_BASE_URL", "https://example.org")
    monkeypatch.setenv("CAPX_TRANSLATION_BATCH_SIZE", "0")
    with pytest.raises(ValidationError):
        CacheSettings.model_validate({})


@pytest.mark.unit
def test_get_settings_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAPX_API_BASE_URL", "https://example.org")
    assert get_settings() is get_settings()
