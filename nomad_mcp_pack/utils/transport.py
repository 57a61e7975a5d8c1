"""
Transport type naming helpers.

The registry and users name transports differently: the registry publishes
``streamable-http`` where users (and generated packs) say ``http``. Filters
are written in user-facing names, so registry values are mapped before
comparison.
"""
from typing import Iterable, List

_TO_REGISTRY = {
    "stdio": "stdio",
    "http": "streamable-http",
    "sse": "sse",
}

_FROM_REGISTRY = {
    "stdio": "stdio",
    "streamable-http": "http",
    "sse": "sse",
}


def map_to_registry_transport_type(user_transport_type: str) -> str:
    """Map a user-facing transport name to the registry's name. Unknown names pass through."""
    return _TO_REGISTRY.get(user_transport_type.lower(), user_transport_type)


def map_from_registry_transport_type(registry_transport_type: str) -> str:
    """Map a registry transport name to the user-facing name. Unknown names pass through."""
    return _FROM_REGISTRY.get(registry_transport_type.lower(), registry_transport_type)


def normalize_and_deduplicate(values: Iterable[str]) -> List[str]:
    """
    Trim, lowercase and deduplicate values, keeping first-seen order.

    Examples:
        >>> normalize_and_deduplicate([" NPM", "oci", "npm", ""])
        ['npm', 'oci']
    """
    result: List[str] = []
    seen = set()
    for value in values:
        normalized = value.strip().lower()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result
