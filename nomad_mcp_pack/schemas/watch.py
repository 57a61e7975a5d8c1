from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from nomad_mcp_pack.schemas.registry import Package, ServerRecord
from nomad_mcp_pack.utils.timestamps import ensure_utc, format_rfc3339
from nomad_mcp_pack.utils.transport import map_from_registry_transport_type


def state_key(namespace: str, name: str, version: str, package_type: str, transport_type: str) -> str:
    """
    Composite key for one generated (server, version, package, transport) tuple.

    Format: ``<namespace>/<name>@<version>:<package_type>:<transport_type>``.
    Distinct tuples map to distinct keys as long as namespace and name hold
    none of ``/@:`` (enforced by ``parse_server_name``) and the package and
    transport types hold no ':'. Versions may contain anything.
    """
    return f"{namespace}/{name}@{version}:{package_type}:{transport_type}"


class ServerState(BaseModel):
    """One successfully generated tuple, as persisted in the state file."""
    namespace: str
    name: str
    version: str
    package_type: str
    transport_type: str
    updated_at: datetime
    generated_at: datetime
    checksum: str = ""  # reserved for content-based staleness checks

    @field_validator("updated_at", "generated_at")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_serializer("updated_at", "generated_at")
    def serialize_timestamp(self, v: datetime) -> str:
        return format_rfc3339(v)

    @property
    def key(self) -> str:
        return state_key(self.namespace, self.name, self.version, self.package_type, self.transport_type)


class WatchState(BaseModel):
    """Top-level state document: last poll time plus every generated tuple by key."""
    last_poll: Optional[datetime] = None
    servers: Dict[str, ServerState] = Field(default_factory=dict)

    @field_validator("last_poll")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @field_validator("servers", mode="before")
    @classmethod
    def default_servers(cls, v):
        return v if v is not None else {}

    @field_serializer("last_poll")
    def serialize_last_poll(self, v: Optional[datetime]) -> Optional[str]:
        return format_rfc3339(v) if v is not None else None


# Filters

class ServerNameFilter(BaseModel):
    """Exact 'namespace/name' match. An empty filter matches every server."""
    model_config = ConfigDict(frozen=True)

    names: FrozenSet[str] = frozenset()

    @classmethod
    def of(cls, names: Iterable[str]) -> "ServerNameFilter":
        return cls(names=frozenset(n.strip() for n in names if n and n.strip()))

    def matches(self, server_name: str) -> bool:
        if not self.names:
            return True
        return server_name in self.names


class PackageTypeFilter(BaseModel):
    """Case-insensitive package type match. An empty filter matches every type."""
    model_config = ConfigDict(frozen=True)

    types: FrozenSet[str] = frozenset()

    @field_validator("types", mode="before")
    @classmethod
    def lowercase(cls, v):
        return frozenset(t.strip().lower() for t in v if t and t.strip())

    @classmethod
    def of(cls, types: Iterable[str]) -> "PackageTypeFilter":
        return cls(types=frozenset(types))

    def matches(self, package_type: str) -> bool:
        if not self.types:
            return True
        return package_type.lower() in self.types


class TransportTypeFilter(BaseModel):
    """
    Transport match in user-facing names.

    Registry values are mapped first, so a filter of {"http"} accepts packages
    whose registry transport is "streamable-http". An empty filter matches
    every transport.
    """
    model_config = ConfigDict(frozen=True)

    types: FrozenSet[str] = frozenset()

    @field_validator("types", mode="before")
    @classmethod
    def lowercase(cls, v):
        return frozenset(t.strip().lower() for t in v if t and t.strip())

    @classmethod
    def of(cls, types: Iterable[str]) -> "TransportTypeFilter":
        return cls(types=frozenset(types))

    def matches(self, registry_transport_type: str) -> bool:
        if not self.types:
            return True
        return map_from_registry_transport_type(registry_transport_type).lower() in self.types


class GenerationTask(BaseModel):
    """A (server, package) pair selected for generation during one poll cycle."""
    model_config = ConfigDict(frozen=True)

    server: ServerRecord
    package: Package
    namespace: str
    name: str

    @property
    def transport_type(self) -> str:
        return self.package.transport.type

    @property
    def key(self) -> str:
        return state_key(
            self.namespace, self.name, self.server.version,
            self.package.registry_type, self.transport_type,
        )


class WatcherConfig(BaseModel):
    """
    Watcher settings. Validation happens in the Watcher constructor so that
    every violation is reported the same way.
    """
    poll_interval: int = 300
    state_file_path: str = "./watch.json"
    max_concurrent: int = 5
    allow_deprecated: bool = False
    name_filter: ServerNameFilter = Field(default_factory=ServerNameFilter)
    package_filter: PackageTypeFilter = Field(default_factory=PackageTypeFilter)
    transport_filter: TransportTypeFilter = Field(default_factory=TransportTypeFilter)


class CycleSummary(BaseModel):
    """Outcome counts for one poll cycle."""
    started_at: datetime
    fetched: int = 0
    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    benign_failures: int = 0
    critical_failures: int = 0
    duration_seconds: float = 0.0

    @property
    def failed(self) -> int:
        return self.benign_failures + self.critical_failures
