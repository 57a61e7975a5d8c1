import logging
from typing import Iterable, List

from nomad_mcp_pack.core.errors import InvalidServerNameError
from nomad_mcp_pack.schemas.registry import ServerRecord
from nomad_mcp_pack.schemas.watch import (
    GenerationTask,
    PackageTypeFilter,
    ServerNameFilter,
    TransportTypeFilter,
)
from nomad_mcp_pack.services.state_store import StateStore
from nomad_mcp_pack.utils.server_names import parse_server_name

logger = logging.getLogger(__name__)


def filter_servers(
    records: Iterable[ServerRecord],
    name_filter: ServerNameFilter,
    package_filter: PackageTypeFilter,
    transport_filter: TransportTypeFilter,
    state_store: StateStore,
    force_overwrite: bool,
    *,
    allow_deprecated: bool = True,
) -> List[GenerationTask]:
    """
    Turn fetched registry records into the generation tasks for this cycle.

    A record is skipped when its name is malformed, the name filter rejects it,
    it has no packages (remote-only servers), or it is not active and
    deprecated servers are not allowed. Each remaining package becomes a task
    if it passes the package and transport filters and either
    ``force_overwrite`` is set or the state store says it needs generation.

    Tasks come out in record order, then package order.
    """
    tasks: List[GenerationTask] = []

    for server in records:
        try:
            namespace, name = parse_server_name(server.name)
        except InvalidServerNameError as e:
            logger.warning(f"Skipping server with invalid name: {e}")
            continue

        if not name_filter.matches(server.name):
            continue

        if not server.packages:
            logger.debug(f"Skipping {server.name}@{server.version}: no packages (remote-only)")
            continue

        if not allow_deprecated and not server.is_active:
            logger.debug(f"Skipping {server.name}@{server.version}: status is {server.status}")
            continue

        for package in server.packages:
            package_type = package.registry_type
            transport_type = package.transport.type

            if not package_filter.matches(package_type):
                continue
            if not transport_filter.matches(transport_type):
                continue

            if force_overwrite or state_store.needs_generation(
                namespace, name, server.version, package_type, transport_type, server.updated_at
            ):
                tasks.append(
                    GenerationTask(server=server, package=package, namespace=namespace, name=name)
                )

    return tasks
