import logging

import pytest
from pydantic import ValidationError

from nomad_mcp_pack.core.config import Settings
from nomad_mcp_pack.core.logging import setup_logging
from nomad_mcp_pack.services.pack_generator import OutputType


def load_settings(**overrides):
    return Settings(_env_file=None, **overrides)


def test_defaults():
    settings = load_settings()

    assert settings.REGISTRY_URL == "https://registry.modelcontextprotocol.io"
    assert settings.WATCH_POLL_INTERVAL == 300
    assert settings.WATCH_MAX_CONCURRENT == 5
    assert settings.WATCH_FILTER_SERVER_NAMES == []
    assert settings.WATCH_FILTER_PACKAGE_TYPES == ["npm", "pypi", "oci", "nuget"]
    assert settings.WATCH_FILTER_TRANSPORT_TYPES == ["stdio", "http", "sse"]
    assert settings.OUTPUT_TYPE == OutputType.PACKDIR


def test_reads_prefixed_environment(monkeypatch):
    monkeypatch.setenv("NOMAD_MCP_PACK_REGISTRY_URL", "http://localhost:8080")
    monkeypatch.setenv("NOMAD_MCP_PACK_WATCH_POLL_INTERVAL", "60")
    monkeypatch.setenv("NOMAD_MCP_PACK_WATCH_FILTER_SERVER_NAMES", "acme/widget, ai.exa/exa,acme/widget")
    monkeypatch.setenv("NOMAD_MCP_PACK_WATCH_FILTER_PACKAGE_TYPES", " NPM ,oci")
    monkeypatch.setenv("NOMAD_MCP_PACK_WATCH_FILTER_TRANSPORT_TYPES", "http")
    monkeypatch.setenv("NOMAD_MCP_PACK_OUTPUT_TYPE", "Archive")
    monkeypatch.setenv("NOMAD_MCP_PACK_LOG_LEVEL", "WARN")

    settings = load_settings()

    assert settings.REGISTRY_URL == "http://localhost:8080"
    assert settings.WATCH_POLL_INTERVAL == 60
    assert settings.WATCH_FILTER_SERVER_NAMES == ["acme/widget", "ai.exa/exa"]
    assert settings.WATCH_FILTER_PACKAGE_TYPES == ["npm", "oci"]
    assert settings.WATCH_FILTER_TRANSPORT_TYPES == ["http"]
    assert settings.OUTPUT_TYPE == OutputType.ARCHIVE
    assert settings.LOG_LEVEL == "warning"


@pytest.mark.parametrize("field, value", [
    ("WATCH_FILTER_PACKAGE_TYPES", "npm,cargo"),
    ("WATCH_FILTER_TRANSPORT_TYPES", "websocket"),
    ("WATCH_FILTER_SERVER_NAMES", "not-a-server-name"),
    ("OUTPUT_TYPE", "tarball"),
    ("LOG_LEVEL", "verbose"),
])
def test_rejects_invalid_values(field, value):
    with pytest.raises(ValidationError):
        load_settings(**{field: value})


def test_builds_component_configs(tmp_path):
    settings = load_settings(
        WATCH_POLL_INTERVAL=45,
        WATCH_STATE_FILE=str(tmp_path / "state.json"),
        WATCH_MAX_CONCURRENT=3,
        WATCH_FILTER_SERVER_NAMES="acme/widget",
        WATCH_FILTER_TRANSPORT_TYPES="http",
        ALLOW_DEPRECATED=True,
        OUTPUT_DIR=str(tmp_path),
        DRY_RUN=True,
        FORCE_OVERWRITE=True,
    )

    config = settings.watcher_config()
    assert config.poll_interval == 45
    assert config.max_concurrent == 3
    assert config.allow_deprecated
    assert config.name_filter.matches("acme/widget")
    assert not config.name_filter.matches("acme/other")
    assert config.transport_filter.matches("streamable-http")
    assert not config.transport_filter.matches("stdio")

    options = settings.generate_options()
    assert options.output_dir == str(tmp_path)
    assert options.dry_run
    assert options.force_overwrite


class TestSetupLogging:

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        httpx_level = logging.getLogger("httpx").level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)
        logging.getLogger("httpx").setLevel(httpx_level)

    def test_configures_root_and_quiets_http_libraries(self):
        setup_logging("info")

        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING

        setup_logging("debug")
        assert logging.getLogger("httpx").level == logging.DEBUG

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            setup_logging("loud")
