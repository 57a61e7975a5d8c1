import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import ValidationError

from nomad_mcp_pack.core.errors import StateLoadError, StateSaveError
from nomad_mcp_pack.schemas.watch import ServerState, WatchState, state_key
from nomad_mcp_pack.utils.timestamps import ensure_utc, utc_now

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class StateStore:
    """
    Thread-safe owner of the watcher's WatchState.

    Every read and write of the underlying state goes through one lock, so the
    store can be shared by concurrently running generation tasks (including
    tasks that hop onto worker threads).
    """

    def __init__(self, state: Optional[WatchState] = None):
        self._state = state if state is not None else WatchState()
        self._lock = threading.Lock()

    @staticmethod
    def key(namespace: str, name: str, version: str, package_type: str, transport_type: str) -> str:
        return state_key(namespace, name, version, package_type, transport_type)

    @classmethod
    def load(cls, path: PathLike) -> "StateStore":
        """
        Load state from disk.

        A missing file yields an empty store. A file that exists but cannot be
        read or does not match the state schema raises StateLoadError.
        """
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"State file {path} does not exist, starting with empty state")
            return cls()
        except OSError as e:
            raise StateLoadError(f"failed to read state file {path}: {e}") from e

        try:
            state = WatchState.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise StateLoadError(f"failed to parse state file {path}: {e}") from e

        logger.debug(
            f"State loaded from {path}: {len(state.servers)} servers, last poll {state.last_poll}"
        )
        return cls(state)

    def save(self, path: PathLike) -> None:
        """
        Persist state atomically.

        The document is written to a temporary file in the target's directory,
        flushed to disk, then renamed over the target. If anything fails the
        temporary file is removed and the previously committed file is left
        untouched.

        Raises:
            StateSaveError: If the state could not be written or renamed.
        """
        path = Path(path)
        with self._lock:
            payload = self._state.model_dump_json(indent=2)
            count = len(self._state.servers)

        directory = path.parent
        tmp_name: Optional[str] = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
                tmp_file.write(payload)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StateSaveError(f"failed to save state file {path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass

        logger.debug(f"State saved to {path} ({count} servers)")

    def get_server(self, key: str) -> Optional[ServerState]:
        with self._lock:
            return self._state.servers.get(key)

    def set_server(self, server: ServerState) -> None:
        """Insert or replace the entry stored under the state's own key."""
        key = server.key
        with self._lock:
            self._state.servers[key] = server
            size = len(self._state.servers)
        logger.debug(f"State updated for {key} (state size {size})")

    def servers(self) -> Dict[str, ServerState]:
        """Snapshot of all entries."""
        with self._lock:
            return dict(self._state.servers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._state.servers)

    def needs_generation(
        self,
        namespace: str,
        name: str,
        version: str,
        package_type: str,
        transport_type: str,
        updated_at: Optional[datetime],
    ) -> bool:
        """
        Decide whether a tuple must be (re)generated.

        True if the tuple was never generated, or if ``updated_at`` is strictly
        later than its last successful generation. ``updated_at=None`` means
        the registry offered no evidence of a change.
        """
        key = self.key(namespace, name, version, package_type, transport_type)
        with self._lock:
            existing = self._state.servers.get(key)

        if existing is None:
            logger.debug(f"State check: {key} needs generation (not in state)")
            return True

        if updated_at is None:
            return False

        needs_regen = ensure_utc(updated_at) > existing.generated_at
        logger.debug(
            f"State check: {key} in state, needs regeneration={needs_regen} "
            f"(updated_at {updated_at}, generated_at {existing.generated_at})"
        )
        return needs_regen

    def update_last_poll(self, ts: datetime) -> None:
        with self._lock:
            self._state.last_poll = ensure_utc(ts)

    def get_last_poll(self) -> Optional[datetime]:
        with self._lock:
            return self._state.last_poll

    def cleanup_old_servers(self, max_age: timedelta) -> int:
        """
        Drop entries whose ``updated_at`` is older than ``max_age``.

        Returns:
            Number of entries removed.
        """
        cutoff = utc_now() - max_age
        with self._lock:
            stale = [key for key, server in self._state.servers.items() if server.updated_at < cutoff]
            for key in stale:
                del self._state.servers[key]

        if stale:
            logger.info(f"Removed {len(stale)} stale entries from state")
        return len(stale)
