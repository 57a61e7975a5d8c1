from typing import Annotated, Any, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from nomad_mcp_pack.schemas.watch import (
    PackageTypeFilter,
    ServerNameFilter,
    TransportTypeFilter,
    WatcherConfig,
)
from nomad_mcp_pack.services.pack_generator import GenerateOptions, OutputType
from nomad_mcp_pack.utils.server_names import parse_server_name
from nomad_mcp_pack.utils.transport import normalize_and_deduplicate

VALID_PACKAGE_TYPES = ["npm", "pypi", "oci", "nuget"]
VALID_TRANSPORT_TYPES = ["stdio", "http", "sse"]
VALID_LOG_LEVELS = ["debug", "info", "warning", "error"]


def _split_list(v: Any) -> Any:
    """Accept comma-separated strings from the environment as lists."""
    if v is None:
        return []
    if isinstance(v, str):
        return v.split(",")
    return v


class Settings(BaseSettings):
    """
    Watcher settings managed by Pydantic.
    Reads NOMAD_MCP_PACK_* environment variables and a .env file.
    """
    # Registry client
    REGISTRY_URL: str = "https://registry.modelcontextprotocol.io"
    REGISTRY_TIMEOUT: float = 30.0
    REGISTRY_MAX_RETRIES: int = 3
    # Base backoff delay in seconds; attempt N waits N times this
    REGISTRY_RETRY_DELAY: float = 1.0

    LOG_LEVEL: str = "info"

    # Pack generation
    OUTPUT_DIR: str = "./packs"
    OUTPUT_TYPE: OutputType = OutputType.PACKDIR
    DRY_RUN: bool = False
    FORCE_OVERWRITE: bool = False
    ALLOW_DEPRECATED: bool = False

    # Watch mode
    WATCH_POLL_INTERVAL: int = 300
    WATCH_STATE_FILE: str = "./watch.json"
    WATCH_MAX_CONCURRENT: int = 5
    # Comma-separated in the environment, e.g. "npm,oci"
    WATCH_FILTER_SERVER_NAMES: Annotated[List[str], NoDecode] = []
    WATCH_FILTER_PACKAGE_TYPES: Annotated[List[str], NoDecode] = list(VALID_PACKAGE_TYPES)
    WATCH_FILTER_TRANSPORT_TYPES: Annotated[List[str], NoDecode] = list(VALID_TRANSPORT_TYPES)

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        level = str(v).strip().lower()
        if level == "warn":
            level = "warning"
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"invalid log level {v!r}; must be one of {VALID_LOG_LEVELS}")
        return level

    @field_validator("OUTPUT_TYPE", mode="before")
    @classmethod
    def normalize_output_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("WATCH_FILTER_SERVER_NAMES", mode="before")
    @classmethod
    def validate_server_names(cls, v: Any) -> List[str]:
        names: List[str] = []
        for name in _split_list(v):
            name = name.strip()
            if not name or name in names:
                continue
            parse_server_name(name)  # raises InvalidServerNameError, a ValueError
            names.append(name)
        return names

    @field_validator("WATCH_FILTER_PACKAGE_TYPES", mode="before")
    @classmethod
    def validate_package_types(cls, v: Any) -> List[str]:
        types = normalize_and_deduplicate(_split_list(v))
        for package_type in types:
            if package_type not in VALID_PACKAGE_TYPES:
                raise ValueError(
                    f"invalid package type {package_type!r}; must be one of {VALID_PACKAGE_TYPES}"
                )
        return types

    @field_validator("WATCH_FILTER_TRANSPORT_TYPES", mode="before")
    @classmethod
    def validate_transport_types(cls, v: Any) -> List[str]:
        types = normalize_and_deduplicate(_split_list(v))
        for transport_type in types:
            if transport_type not in VALID_TRANSPORT_TYPES:
                raise ValueError(
                    f"invalid transport type {transport_type!r}; must be one of {VALID_TRANSPORT_TYPES}"
                )
        return types

    def watcher_config(self) -> WatcherConfig:
        return WatcherConfig(
            poll_interval=self.WATCH_POLL_INTERVAL,
            state_file_path=self.WATCH_STATE_FILE,
            max_concurrent=self.WATCH_MAX_CONCURRENT,
            allow_deprecated=self.ALLOW_DEPRECATED,
            name_filter=ServerNameFilter.of(self.WATCH_FILTER_SERVER_NAMES),
            package_filter=PackageTypeFilter.of(self.WATCH_FILTER_PACKAGE_TYPES),
            transport_filter=TransportTypeFilter.of(self.WATCH_FILTER_TRANSPORT_TYPES),
        )

    def generate_options(self) -> GenerateOptions:
        return GenerateOptions(
            output_dir=self.OUTPUT_DIR,
            output_type=self.OUTPUT_TYPE,
            dry_run=self.DRY_RUN,
            force_overwrite=self.FORCE_OVERWRITE,
        )

    # Pydantic Configuration
    model_config = SettingsConfigDict(
        env_prefix="NOMAD_MCP_PACK_",  # NOMAD_MCP_PACK_REGISTRY_URL, ...
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )
