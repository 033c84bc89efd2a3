import logging

import pytest

from agegraph.config import (
    AppSettings,
    ConfigError,
    LoggingSettings,
    configure_logging,
    get_settings,
)


def test_defaults() -> None:
    settings = AppSettings()

    assert settings.storage.graph_schema == "graph"
    assert settings.storage.vertex_prefix == "v_"
    assert settings.storage.edge_prefix == "e_"
    assert settings.loader.batch_size == 1000
    assert str(settings.database.url).startswith("postgresql+psycopg://")


def test_env_overrides_nested_sections(monkeypatch) -> None:
    monkeypatch.setenv("AGEGRAPH_LOADER__BATCH_SIZE", "50")
    monkeypatch.setenv("AGEGRAPH_STORAGE__GRAPH_SCHEMA", "social")

    settings = get_settings()

    assert settings.loader.batch_size == 50
    assert settings.storage.graph_schema == "social"


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()


def test_overrides_take_precedence(monkeypatch) -> None:
    monkeypatch.setenv("AGEGRAPH_LOADER__BATCH_SIZE", "50")

    settings = AppSettings(loader={"batch_size": 7})

    assert settings.loader.batch_size == 7


def test_colliding_schemas_rejected() -> None:
    settings = AppSettings(storage={"graph_schema": "g", "backup_schema": "g"})

    with pytest.raises(ConfigError):
        settings.validate_storage()


def test_colliding_prefixes_rejected() -> None:
    settings = AppSettings(storage={"vertex_prefix": "t_", "edge_prefix": "t_"})

    with pytest.raises(ConfigError):
        settings.validate_storage()


def test_get_settings_validates_storage(monkeypatch) -> None:
    monkeypatch.setenv("AGEGRAPH_STORAGE__BACKUP_SCHEMA", "graph")

    with pytest.raises(ConfigError):
        get_settings()


def test_invalid_batch_size_rejected() -> None:
    with pytest.raises(ValueError):
        AppSettings(loader={"batch_size": 0})


def test_configure_logging_sets_level() -> None:
    logger = logging.getLogger("agegraph")
    previous_level, previous_handlers = logger.level, list(logger.handlers)
    try:
        configure_logging(LoggingSettings(level="DEBUG"))
        assert logger.level == logging.DEBUG
        assert logger.handlers
    finally:
        logger.setLevel(previous_level)
        logger.handlers[:] = previous_handlers
