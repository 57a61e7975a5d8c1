import pytest

from nomad_mcp_pack.core.errors import InvalidServerNameError
from nomad_mcp_pack.utils.server_names import parse_server_name
from nomad_mcp_pack.utils.transport import (
    map_from_registry_transport_type,
    map_to_registry_transport_type,
    normalize_and_deduplicate,
)


class TestParseServerName:

    def test_valid_names(self):
        test_cases = [
            ("acme/widget", ("acme", "widget")),
            ("io.github.datastax/astra-db-mcp", ("io.github.datastax", "astra-db-mcp")),
            ("  ai.exa/exa  ", ("ai.exa", "exa")),
        ]

        for full_name, expected in test_cases:
            assert parse_server_name(full_name) == expected, f"Failed for name: {full_name}"

    @pytest.mark.parametrize(
        "full_name",
        ["", "   ", "no-slash", "a/b/c", "/widget", "acme/", " / ", "acme/widget@1", "acme:x/widget"],
    )
    def test_invalid_names(self, full_name):
        with pytest.raises(InvalidServerNameError):
            parse_server_name(full_name)

    def test_invalid_name_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_server_name("nope")


class TestTransportMapping:

    def test_to_registry(self):
        assert map_to_registry_transport_type("http") == "streamable-http"
        assert map_to_registry_transport_type("HTTP") == "streamable-http"
        assert map_to_registry_transport_type("stdio") == "stdio"
        assert map_to_registry_transport_type("sse") == "sse"
        assert map_to_registry_transport_type("websocket") == "websocket"

    def test_from_registry(self):
        assert map_from_registry_transport_type("streamable-http") == "http"
        assert map_from_registry_transport_type("stdio") == "stdio"
        assert map_from_registry_transport_type("sse") == "sse"
        assert map_from_registry_transport_type("grpc") == "grpc"


def test_normalize_and_deduplicate():
    assert normalize_and_deduplicate([" NPM", "oci", "npm", "", "  ", "Oci", "pypi"]) == ["npm", "oci", "pypi"]
    assert normalize_and_deduplicate([]) == []
