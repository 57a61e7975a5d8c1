from nomad_mcp_pack.schemas.registry import (
    ListServersOptions,
    Package,
    ServerListResponse,
    ServerRecord,
    ServerStatus,
    Transport,
)
from nomad_mcp_pack.schemas.watch import (
    CycleSummary,
    GenerationTask,
    PackageTypeFilter,
    ServerNameFilter,
    ServerState,
    TransportTypeFilter,
    WatcherConfig,
    WatchState,
    state_key,
)

__all__ = [
    "ListServersOptions", "Package", "ServerListResponse", "ServerRecord", "ServerStatus", "Transport",
    "CycleSummary", "GenerationTask", "PackageTypeFilter", "ServerNameFilter", "ServerState",
    "TransportTypeFilter", "WatcherConfig", "WatchState", "state_key",
]
