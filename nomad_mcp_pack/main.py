import asyncio
import logging
import signal
import sys
from typing import Optional

from nomad_mcp_pack.core.config import Settings
from nomad_mcp_pack.core.errors import GracefulShutdown, InvalidWatchConfigError, NomadMcpPackError
from nomad_mcp_pack.core.logging import setup_logging
from nomad_mcp_pack.services.pack_generator import DryRunPackGenerator, PackGenerator
from nomad_mcp_pack.services.registry_service import RegistryClient
from nomad_mcp_pack.services.watcher import Watcher
from nomad_mcp_pack.utils.context import WatchContext

logger = logging.getLogger(__name__)


async def run_watch(
    settings: Settings,
    generator: Optional[PackGenerator] = None,
    ctx: Optional[WatchContext] = None,
) -> None:
    """
    Run the watcher until SIGINT/SIGTERM (or ``ctx``) stops it.

    A graceful shutdown returns normally; a deadline or any other error
    propagates.

    Without a ``generator`` the dry-run stand-in is used, which requires
    ``DRY_RUN``.

    Raises:
        InvalidWatchConfigError: If no generator is given and ``DRY_RUN`` is off.
    """
    if generator is None:
        if not settings.DRY_RUN:
            raise InvalidWatchConfigError(
                "no pack renderer is configured; set NOMAD_MCP_PACK_DRY_RUN=true to run in dry-run mode"
            )
        generator = DryRunPackGenerator()

    ctx = ctx or WatchContext()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, ctx.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform/loop; KeyboardInterrupt still applies
            logger.debug(f"Could not install handler for {sig.name}")

    try:
        async with RegistryClient(
            settings.REGISTRY_URL,
            timeout=settings.REGISTRY_TIMEOUT,
            max_retries=settings.REGISTRY_MAX_RETRIES,
            retry_delay=settings.REGISTRY_RETRY_DELAY,
        ) as client:
            watcher = Watcher(
                client,
                settings.watcher_config(),
                generator,
                settings.generate_options(),
            )
            try:
                await watcher.run(ctx)
            except GracefulShutdown:
                logger.info("Shutting down")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main() -> int:
    """Process entry point. Returns the exit code."""
    try:
        settings = Settings()
    except ValueError as e:
        # pydantic's ValidationError is a ValueError
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(settings.LOG_LEVEL)

    try:
        asyncio.run(run_watch(settings))
    except NomadMcpPackError as e:
        logger.error(f"Watch mode failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
