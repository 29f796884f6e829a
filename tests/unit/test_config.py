import pytest

from boat_rag.config import Settings, validate_settings
from boat_rag.errors import ConfigurationError


def test_defaults_are_valid(settings: Settings) -> None:
    assert validate_settings(settings) is settings
    assert settings.context_max_chars == 6000
    assert settings.cache_ttl_minutes == 180


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOAT_RAG_WEB_SEARCH_ENABLED", "false")
    monkeypatch.setenv("SERPAPI_API_KEY", "serp-key")

    settings = Settings(_env_file=None)

    assert settings.web_search_enabled is False
    assert settings.serpapi_key == "serp-key"


def test_invalid_settings_fail_fast() -> None:
    settings = Settings(
        _env_file=None,
        embedding_model=" ",
        private_namespace="world",
        chunk_max_chars=300,
        chunk_overlap=300,
    )

    with pytest.raises(ConfigurationError) as excinfo:
        validate_settings(settings)

    assert len(excinfo.value.problems) == 3
