import asyncio
import logging
import time
from datetime import datetime
from typing import List, Optional

from nomad_mcp_pack.core.errors import (
    GracefulShutdown,
    InvalidWatchConfigError,
    PackGenerationErrors,
    RegistryError,
    RegistryFetchError,
    WatchDeadlineExceeded,
)
from nomad_mcp_pack.schemas.registry import MAX_PAGE_LIMIT, ListServersOptions, ServerRecord
from nomad_mcp_pack.schemas.watch import CycleSummary, GenerationTask, ServerState, WatcherConfig
from nomad_mcp_pack.services.filter_pipeline import filter_servers
from nomad_mcp_pack.services.pack_generator import GenerateOptions, PackExistsError, PackGenerator
from nomad_mcp_pack.services.registry_service import RegistryClient
from nomad_mcp_pack.services.state_store import StateStore
from nomad_mcp_pack.utils.context import WatchContext
from nomad_mcp_pack.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL_SECONDS = 30

# Task outcome marker for tasks that never started because the context finished
_SKIPPED = object()


class Watcher:
    """
    Polls the registry and generates packs for new or changed servers.

    Each poll cycle fetches records, filters them against the configured
    filters and the state store, runs the resulting generation tasks with at
    most ``max_concurrent`` in flight, then persists state. Cycles never
    overlap.
    """

    def __init__(
        self,
        client: RegistryClient,
        config: WatcherConfig,
        generator: PackGenerator,
        generate_options: GenerateOptions,
        state_store: Optional[StateStore] = None,
    ):
        self._validate_config(config)

        self.client = client
        self.config = config
        self.generator = generator
        self.generate_options = generate_options
        self.state_store = (
            state_store if state_store is not None else StateStore.load(config.state_file_path)
        )

    @staticmethod
    def _validate_config(config: WatcherConfig) -> None:
        if config.poll_interval < MIN_POLL_INTERVAL_SECONDS:
            raise InvalidWatchConfigError(
                f"poll interval must be at least {MIN_POLL_INTERVAL_SECONDS} seconds, "
                f"got {config.poll_interval}"
            )
        if config.max_concurrent < 1:
            raise InvalidWatchConfigError(
                f"max concurrent must be at least 1, got {config.max_concurrent}"
            )
        if not config.state_file_path or not config.state_file_path.strip():
            raise InvalidWatchConfigError("state file path is required")

    async def run(self, ctx: WatchContext) -> None:
        """
        Poll once immediately, then every ``poll_interval`` seconds until
        ``ctx`` finishes.

        A failed cycle is logged and the loop carries on.

        Raises:
            GracefulShutdown: When ``ctx`` was cancelled.
            WatchDeadlineExceeded: When ``ctx`` passed its deadline.
        """
        logger.info(
            f"Starting watch mode (poll interval {self.config.poll_interval}s, "
            f"state file {self.config.state_file_path}, "
            f"max concurrent {self.config.max_concurrent}, "
            f"server names {sorted(self.config.name_filter.names) or 'all'}, "
            f"package types {sorted(self.config.package_filter.types) or 'all'}, "
            f"transport types {sorted(self.config.transport_filter.types) or 'all'})"
        )

        await self._poll_and_log(ctx)
        while not await ctx.sleep(self.config.poll_interval):
            await self._poll_and_log(ctx)

        logger.info("Watch mode stopped")
        ctx.raise_if_done()

    async def _poll_and_log(self, ctx: WatchContext) -> None:
        try:
            await self.poll(ctx)
        except (GracefulShutdown, WatchDeadlineExceeded):
            logger.debug("Poll cycle interrupted by shutdown")
        except PackGenerationErrors as e:
            for err in e.critical_errors:
                logger.error(f"Pack generation failed: {err}")
            logger.error(f"Poll cycle failed: {e}")
        except Exception as e:
            logger.error(f"Poll cycle failed: {e}")

    async def poll(self, ctx: WatchContext) -> CycleSummary:
        """
        Run one reconciliation cycle.

        Raises:
            RegistryFetchError: If fetching servers failed. The last poll time
                is not advanced.
            StateSaveError: If the state file could not be written.
            PackGenerationErrors: After state has been saved, if any task
                failed with something other than a pack-exists conflict.
        """
        started_at = utc_now()
        started = time.monotonic()
        summary = CycleSummary(started_at=started_at)
        last_poll = self.state_store.get_last_poll()

        logger.info(f"Starting poll cycle (last poll: {last_poll or 'never'})")

        try:
            servers = await self._fetch_servers(ctx, last_poll)
        except RegistryError as e:
            raise RegistryFetchError(f"failed to fetch servers: {e}") from e

        summary.fetched = len(servers)
        logger.info(f"Fetched {len(servers)} servers from registry")

        tasks = filter_servers(
            servers,
            self.config.name_filter,
            self.config.package_filter,
            self.config.transport_filter,
            self.state_store,
            self.generate_options.force_overwrite,
            allow_deprecated=self.config.allow_deprecated,
        )

        critical_errors: List[Exception] = []
        if tasks:
            logger.info(f"{len(tasks)} packs need generation")
            critical_errors = await self._generate_packs(ctx, tasks, summary)
        else:
            logger.info("No packs need generation")

        # Advanced even when tasks failed
        self.state_store.update_last_poll(started_at)
        self.state_store.save(self.config.state_file_path)

        summary.duration_seconds = time.monotonic() - started
        logger.info(
            f"Poll cycle completed in {summary.duration_seconds:.1f}s "
            f"({summary.succeeded} succeeded, {summary.failed} failed, {summary.skipped} skipped)"
        )

        if critical_errors:
            raise PackGenerationErrors(summary, critical_errors)
        if summary.benign_failures:
            logger.warning(
                f"Pack generation completed with {summary.benign_failures} noncritical errors"
            )
        return summary

    async def _fetch_servers(
        self, ctx: WatchContext, updated_since: Optional[datetime]
    ) -> List[ServerRecord]:
        options = ListServersOptions(limit=MAX_PAGE_LIMIT, updated_since=updated_since)

        if not self.config.name_filter.names:
            return await self.client.list_all_servers(options, ctx=ctx)

        servers: List[ServerRecord] = []
        seen = set()
        for name in sorted(self.config.name_filter.names):
            logger.debug(f"Fetching servers by name {name}")
            found = await self.client.list_all_servers(
                options.model_copy(update={"search": name}), ctx=ctx
            )
            for server in found:
                server_key = f"{server.name}@{server.version}"
                if server_key in seen:
                    continue
                seen.add(server_key)
                servers.append(server)

        logger.debug(f"Fetch by name completed: {len(servers)} servers")
        return servers

    async def _generate_packs(
        self, ctx: WatchContext, tasks: List[GenerationTask], summary: CycleSummary
    ) -> List[Exception]:
        """Run every task under the semaphore, then tally the outcomes into ``summary``."""
        semaphore = asyncio.Semaphore(self.config.max_concurrent)
        outcomes = await asyncio.gather(
            *(self._run_task(ctx, semaphore, task) for task in tasks)
        )

        critical_errors: List[Exception] = []
        for task, outcome in zip(tasks, outcomes):
            if outcome is _SKIPPED:
                summary.skipped += 1
                continue

            summary.attempted += 1
            if outcome is None:
                summary.succeeded += 1
            elif isinstance(outcome, PackExistsError):
                summary.benign_failures += 1
                logger.warning(f"Pack for {task.key} already exists, skipping: {outcome}")
            else:
                summary.critical_failures += 1
                critical_errors.append(outcome)
                logger.error(f"Failed to generate pack for {task.key}: {outcome}")

        return critical_errors

    async def _run_task(
        self, ctx: WatchContext, semaphore: asyncio.Semaphore, task: GenerationTask
    ) -> object:
        """Returns None on success, the raised exception on failure, or _SKIPPED."""
        async with semaphore:
            if ctx.done():
                return _SKIPPED

            logger.info(
                f"Generating pack for {task.server.name}@{task.server.version} "
                f"({task.package.registry_type}/{task.transport_type})"
            )
            try:
                await self.generator.generate(
                    ctx, task.server, task.package, task.transport_type, self.generate_options
                )
            except Exception as e:
                if isinstance(e, (GracefulShutdown, WatchDeadlineExceeded)) and ctx.done():
                    return _SKIPPED
                return e

            now = utc_now()
            self.state_store.set_server(
                ServerState(
                    namespace=task.namespace,
                    name=task.name,
                    version=task.server.version,
                    package_type=task.package.registry_type,
                    transport_type=task.transport_type,
                    updated_at=now,
                    generated_at=now,
                )
            )
            logger.info(f"Pack generated successfully for {task.key}")
            return None
