"""
Boundary between the watcher and whatever renders Nomad packs.

The watcher only needs a ``generate`` coroutine and a way to tell "this pack
already exists" apart from real failures. Rendering templates to disk is the
renderer's business; ``DryRunPackGenerator`` is the stand-in used when no
renderer is plugged in.
"""
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from nomad_mcp_pack.core.errors import NomadMcpPackError
from nomad_mcp_pack.schemas.registry import Package, ServerRecord
from nomad_mcp_pack.utils.context import WatchContext

logger = logging.getLogger(__name__)

_UNSAFE_PACK_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class OutputType(str, Enum):
    PACKDIR = "packdir"
    ARCHIVE = "archive"


class GenerateOptions(BaseModel):
    output_dir: str = "./packs"
    output_type: OutputType = OutputType.PACKDIR
    dry_run: bool = False
    force_overwrite: bool = False


class PackExistsError(NomadMcpPackError):
    """The target pack is already on disk and overwriting was not requested."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"pack already exists: {path}")


class PackDirectoryExistsError(PackExistsError):
    pass


class PackArchiveExistsError(PackExistsError):
    pass


class PackGenerator(Protocol):
    async def generate(
        self,
        ctx: WatchContext,
        server: ServerRecord,
        package: Package,
        transport_type: str,
        options: GenerateOptions,
    ) -> None:
        """
        Render one pack. Must be safe to call concurrently for distinct
        (server, package) pairs, and must raise a PackExistsError subclass
        when the target exists and ``options.force_overwrite`` is off.
        """
        ...


def sanitize_pack_name(name: str) -> str:
    """
    Examples:
        >>> sanitize_pack_name("io.github.datastax/astra-db-mcp")
        'io-github-datastax-astra-db-mcp'
    """
    return _UNSAFE_PACK_CHARS.sub("", name.replace("/", "-").replace(".", "-"))


def compute_pack_name(server_name: str, version: str, package_type: str, transport_type: str) -> str:
    return f"{sanitize_pack_name(server_name)}-{version.replace('.', '-')}-{package_type}-{transport_type}"


def pack_path(options: GenerateOptions, pack_name: str) -> Path:
    if options.output_type == OutputType.ARCHIVE:
        return Path(options.output_dir) / f"{pack_name}.zip"
    return Path(options.output_dir) / pack_name


class DryRunPackGenerator:
    """Reports where each pack would be written without touching the filesystem."""

    async def generate(
        self,
        ctx: WatchContext,
        server: ServerRecord,
        package: Package,
        transport_type: str,
        options: GenerateOptions,
    ) -> None:
        ctx.raise_if_done()

        pack_name = compute_pack_name(server.name, server.version, package.registry_type, transport_type)
        target = pack_path(options, pack_name)

        if target.exists() and not options.force_overwrite:
            if options.output_type == OutputType.ARCHIVE:
                raise PackArchiveExistsError(target)
            raise PackDirectoryExistsError(target)

        kind = "archive" if options.output_type == OutputType.ARCHIVE else "directory"
        logger.info(f"Would create pack {kind}: {target}")
