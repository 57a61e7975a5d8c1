"""
Exception types for the registry watcher.

Errors are classified by type, never by message text:
- RegistryRequestError: the registry rejected the request (4xx), never retried
- RegistryUnavailableError: transient failures outlasted the retry budget
- PackGenerationErrors: a poll cycle finished with critical generation failures
- GracefulShutdown: the watcher was stopped on purpose
"""
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from nomad_mcp_pack.schemas.watch import CycleSummary


class NomadMcpPackError(Exception):
    """Base exception for nomad-mcp-pack."""
    pass


# Registry

class RegistryError(NomadMcpPackError):
    """Base class for failures talking to the MCP registry."""
    pass


class RegistryRequestError(RegistryError):
    """
    The registry answered with a 4xx status.

    These indicate a problem with the request itself and are surfaced
    immediately without retrying. The response body is kept for diagnostics.
    """

    def __init__(self, status_code: int, body: str, url: str = ""):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"registry request failed with status {status_code}: {body}")


class ServerNotFoundError(RegistryRequestError):
    """The requested server does not exist in the registry."""

    def __init__(self, server_id: str, body: str = "", url: str = ""):
        self.server_id = server_id
        super().__init__(404, body, url)
        self.args = (f"server not found: {server_id}",)


class RegistryUnavailableError(RegistryError):
    """A request kept failing with 5xx or transport errors until retries ran out."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None,
                 status_code: Optional[int] = None):
        self.attempts = attempts
        self.last_error = last_error
        self.status_code = status_code
        reason = f"status {status_code}" if status_code is not None else repr(last_error)
        super().__init__(f"registry request failed after {attempts} attempts: {reason}")


class RegistryResponseError(RegistryError):
    """The registry returned a body that could not be decoded."""
    pass


class NoActiveVersionError(RegistryError):
    """No active record with a parseable semantic version exists for a server name."""

    def __init__(self, server_name: str, reason: str):
        self.server_name = server_name
        super().__init__(f"{reason}: {server_name}")


class InvalidServerNameError(NomadMcpPackError, ValueError):
    """A server name is not in 'namespace/name' form."""
    pass


# State

class StateError(NomadMcpPackError):
    """Base class for state file failures."""
    pass


class StateLoadError(StateError):
    """The state file exists but could not be read or parsed."""
    pass


class StateSaveError(StateError):
    """The state could not be written; the previously committed file is untouched."""
    pass


# Watch

class WatchError(NomadMcpPackError):
    """Base class for watcher failures."""
    pass


class InvalidWatchConfigError(WatchError, ValueError):
    """Watcher configuration failed validation at construction time."""
    pass


class RegistryFetchError(WatchError):
    """Fetching servers failed, so the poll cycle was aborted."""
    pass


class PackGenerationErrors(WatchError):
    """
    A poll cycle completed, but some pack generations failed critically.

    Raised only after every task in the cycle has finished and the state has
    been persisted. Benign conflicts (pack already exists) are counted in the
    summary but are not part of ``critical_errors``.
    """

    def __init__(self, summary: "CycleSummary", critical_errors: List[BaseException]):
        self.summary = summary
        self.critical_errors = list(critical_errors)
        super().__init__(
            f"pack generation completed with {len(self.critical_errors)} critical errors "
            f"({summary.succeeded} succeeded, {summary.benign_failures} already existed)"
        )


class GracefulShutdown(NomadMcpPackError):
    """The watcher's context was cancelled explicitly."""

    def __init__(self, message: str = "graceful shutdown"):
        super().__init__(message)


class WatchDeadlineExceeded(NomadMcpPackError, TimeoutError):
    """The watcher's context deadline passed."""

    def __init__(self, message: str = "watch deadline exceeded"):
        super().__init__(message)
