from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from nomad_mcp_pack.utils.timestamps import ensure_utc, format_rfc3339

# Key under "_meta" where the official registry publishes status and timestamps
OFFICIAL_META_KEY = "io.modelcontextprotocol.registry/official"

MAX_PAGE_LIMIT = 100


class ServerStatus(str, Enum):
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    DELETED = "deleted"


class Transport(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str = ""  # registry-side naming, e.g. "stdio", "streamable-http", "sse"
    url: Optional[str] = None


class Package(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    registry_type: str = Field(..., alias="registryType")  # e.g. "npm", "pypi", "oci", "nuget"
    identifier: str = ""
    version: str = ""
    transport: Transport = Field(default_factory=Transport)

    @field_validator("transport", mode="before")
    @classmethod
    def default_transport(cls, v: Any) -> Any:
        return v if v is not None else {}


class ServerRecord(BaseModel):
    """
    A single registry entry as returned by /v0/servers.

    Accepts both the flat record shape and the official registry envelope:

        {
          "server": {"name": "ai.exa/exa", "version": "3.1.3", "packages": [...]},
          "_meta": {
            "io.modelcontextprotocol.registry/official": {
              "status": "active", "updatedAt": "2025-09-01T12:00:00Z"
            }
          }
        }

    Values published under ``_meta`` only fill in fields the record itself
    does not carry.
    """
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str  # "namespace/name"
    version: str = ""
    status: str = ServerStatus.ACTIVE.value
    description: str = ""
    packages: List[Package] = Field(default_factory=list)
    updated_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    @model_validator(mode="before")
    @classmethod
    def unwrap_envelope(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        inner: Dict[str, Any] = dict(data["server"]) if isinstance(data.get("server"), dict) else dict(data)
        meta = data.get("_meta") or inner.get("_meta") or {}
        official = meta.get(OFFICIAL_META_KEY) or {}

        if not inner.get("status") and official.get("status"):
            inner["status"] = official["status"]
        if not inner.get("updated_at") and not inner.get("updatedAt") and official.get("updatedAt"):
            inner["updatedAt"] = official["updatedAt"]
        return inner

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> str:
        if not v:
            return ServerStatus.ACTIVE.value
        return str(v).strip().lower()

    @field_validator("packages", mode="before")
    @classmethod
    def default_packages(cls, v: Any) -> Any:
        return v if v is not None else []

    @field_validator("version", "description", mode="before")
    @classmethod
    def default_text(cls, v: Any) -> Any:
        return v if v is not None else ""

    @field_validator("updated_at")
    @classmethod
    def normalize_updated_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def is_active(self) -> bool:
        return self.status == ServerStatus.ACTIVE.value


class ServerListMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    count: int = 0
    next_cursor: Optional[str] = Field(
        None, validation_alias=AliasChoices("next_cursor", "nextCursor")
    )


class ServerListResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    servers: List[ServerRecord] = Field(default_factory=list)
    metadata: ServerListMetadata = Field(default_factory=ServerListMetadata)

    @field_validator("servers", "metadata", mode="before")
    @classmethod
    def default_missing(cls, v: Any, info: ValidationInfo) -> Any:
        if v is not None:
            return v
        return [] if info.field_name == "servers" else {}


class ListServersOptions(BaseModel):
    """Query parameters for GET /v0/servers."""
    cursor: Optional[str] = None
    limit: Optional[int] = None
    updated_since: Optional[datetime] = None
    search: Optional[str] = None
    version: Optional[str] = None

    def to_query_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.cursor:
            params["cursor"] = self.cursor
        if self.limit is not None and self.limit > 0:
            params["limit"] = str(min(self.limit, MAX_PAGE_LIMIT))
        if self.updated_since is not None:
            # Second precision rounds down, which keeps the window inclusive
            params["updated_since"] = format_rfc3339(self.updated_since, timespec="seconds")
        if self.search:
            params["search"] = self.search
        if self.version:
            params["version"] = self.version
        return params
