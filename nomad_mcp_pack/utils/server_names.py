"""
Server name parsing.

Registry server names have the form ``namespace/name``, for example
``io.github.datastax/astra-db-mcp``.
"""
from typing import Tuple

from nomad_mcp_pack.core.errors import InvalidServerNameError

# Separators used by state keys
_RESERVED_CHARS = ("@", ":")


def parse_server_name(full_name: str) -> Tuple[str, str]:
    """
    Split a server name into namespace and name.

    Args:
        full_name: Server name such as 'io.github.example/server'.

    Returns:
        Tuple of (namespace, name).

    Raises:
        InvalidServerNameError: If the name is empty, lacks exactly one '/',
            has a blank part, or contains '@' or ':'.
    """
    full_name = (full_name or "").strip()
    if not full_name:
        raise InvalidServerNameError("server name cannot be empty")

    parts = full_name.split("/")
    if len(parts) != 2:
        raise InvalidServerNameError(
            f"invalid server name format {full_name!r}: expected exactly one '/' "
            "separator, like 'io.github.example/server'"
        )

    namespace, name = parts[0].strip(), parts[1].strip()
    if not namespace or not name:
        raise InvalidServerNameError(
            f"invalid server name format {full_name!r}: namespace and name parts cannot be empty"
        )

    if any(c in full_name for c in _RESERVED_CHARS):
        raise InvalidServerNameError(
            f"invalid server name format {full_name!r}: '@' and ':' are not allowed"
        )

    return namespace, name
