import logging
from datetime import datetime
from typing import List, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
import semver
from pydantic import BaseModel, ValidationError

from nomad_mcp_pack.core.errors import (
    NoActiveVersionError,
    RegistryError,
    RegistryRequestError,
    RegistryResponseError,
    RegistryUnavailableError,
    ServerNotFoundError,
)
from nomad_mcp_pack.schemas.registry import (
    MAX_PAGE_LIMIT,
    ListServersOptions,
    ServerListResponse,
    ServerRecord,
)
from nomad_mcp_pack.utils.context import WatchContext

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://registry.modelcontextprotocol.io"
DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 1.0

SERVERS_PATH = "/v0/servers"

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_semver(value: str) -> Optional[semver.Version]:
    """
    Parse a registry version string leniently.

    Accepts a leading 'v' and missing minor/patch parts ("v1.2" -> 1.2.0).

    Returns:
        The parsed version, or None if the string is not a semantic version.
    """
    value = (value or "").strip()
    if value[:1] in ("v", "V"):
        value = value[1:]
    if not value:
        return None
    try:
        return semver.Version.parse(value, optional_minor_and_patch=True)
    except ValueError:
        return None


class RegistryClient:
    """
    Async client for the MCP registry API.

    Features:
    - Linear backoff retries (attempt x retry_delay) on 5xx and transport errors
    - 4xx responses surfaced immediately with the response body
    - Cursor pagination helpers
    - Latest-active-version resolution by semantic version
    - Every call can be abandoned early through a WatchContext
    """

    def __init__(
        self,
        base_url: str = DEFAULT_REGISTRY_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url or not base_url.strip():
            raise ValueError("registry base URL is required")
        try:
            parsed = httpx.URL(base_url.strip())
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid registry base URL {base_url!r}: {e}") from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise ValueError(f"invalid registry base URL {base_url!r}: expected an http(s) URL")
        if max_retries < 1:
            raise ValueError(f"max retries must be at least 1, got {max_retries}")

        self.base_url = base_url.strip().rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _get(self, path: str, params: Optional[dict], ctx: WatchContext) -> httpx.Response:
        """
        GET with retries. Returns any response below 500; the caller decides
        what a 4xx means.
        """
        last_error: Optional[BaseException] = None
        last_status: Optional[int] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await ctx.run(self._client.get(path, params=params))
            except httpx.TransportError as e:
                last_error, last_status = e, None
                logger.warning(
                    f"Registry request {path} failed: {e!r} (attempt {attempt}/{self.max_retries})"
                )
            except httpx.RequestError as e:
                raise RegistryError(f"registry request {path} failed: {e}") from e
            else:
                if response.status_code < 500:
                    return response
                last_error, last_status = None, response.status_code
                logger.warning(
                    f"Registry returned HTTP {response.status_code} for {path} "
                    f"(attempt {attempt}/{self.max_retries})"
                )

            if attempt < self.max_retries:
                delay = self.retry_delay * attempt
                logger.debug(f"Retrying {path} in {delay} seconds...")
                if await ctx.sleep(delay):
                    ctx.raise_if_done()

        raise RegistryUnavailableError(self.max_retries, last_error, last_status)

    @staticmethod
    def _decode(response: httpx.Response, model: Type[ModelT]) -> ModelT:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise RegistryResponseError(
                f"failed to decode registry response from {response.request.url}: {e}"
            ) from e

    async def list_servers(
        self, options: Optional[ListServersOptions] = None, *, ctx: Optional[WatchContext] = None
    ) -> ServerListResponse:
        """
        Fetch one page of servers.

        Raises:
            RegistryRequestError: On a 4xx response (never retried).
            RegistryUnavailableError: When 5xx/transport errors exhaust retries.
            RegistryResponseError: When the body is not a valid server list.
        """
        ctx = ctx or WatchContext()
        params = (options or ListServersOptions()).to_query_params()

        response = await self._get(SERVERS_PATH, params, ctx)
        if response.status_code != 200:
            raise RegistryRequestError(response.status_code, response.text, str(response.request.url))

        return self._decode(response, ServerListResponse)

    async def list_all_servers(
        self, options: Optional[ListServersOptions] = None, *, ctx: Optional[WatchContext] = None
    ) -> List[ServerRecord]:
        """Follow next_cursor until the listing is exhausted."""
        ctx = ctx or WatchContext()
        page_options = (options or ListServersOptions()).model_copy()
        if page_options.limit is None:
            page_options.limit = MAX_PAGE_LIMIT

        servers: List[ServerRecord] = []
        seen_cursors = set()
        while True:
            page = await self.list_servers(page_options, ctx=ctx)
            servers.extend(page.servers)

            cursor = page.metadata.next_cursor
            if not cursor:
                break
            if cursor in seen_cursors:
                logger.warning(f"Registry repeated cursor {cursor!r}; stopping pagination")
                break
            seen_cursors.add(cursor)
            page_options = page_options.model_copy(update={"cursor": cursor})

        logger.debug(f"Listed {len(servers)} servers across {len(seen_cursors) + 1} pages")
        return servers

    async def get_server(self, server_id: str, *, ctx: Optional[WatchContext] = None) -> ServerRecord:
        """
        Fetch a single server by ID.

        Raises:
            ServerNotFoundError: If the registry answers 404.
        """
        if not server_id:
            raise ValueError("server ID is required")
        ctx = ctx or WatchContext()

        path = f"{SERVERS_PATH}/{quote(server_id, safe='')}"
        response = await self._get(path, None, ctx)
        if response.status_code == 404:
            raise ServerNotFoundError(server_id, response.text, str(response.request.url))
        if response.status_code != 200:
            raise RegistryRequestError(response.status_code, response.text, str(response.request.url))

        return self._decode(response, ServerRecord)

    async def get_latest_active_server(
        self, server_name: str, *, ctx: Optional[WatchContext] = None
    ) -> ServerRecord:
        """
        Resolve the highest semantic version among a server's active records.

        Records that are not active never win, whatever their version. Versions
        that do not parse as semver are skipped.

        Raises:
            NoActiveVersionError: If no active record exists, or none has a
                parseable version.
        """
        if not server_name:
            raise ValueError("server name is required")

        records = await self.list_all_servers(
            ListServersOptions(search=server_name, limit=MAX_PAGE_LIMIT), ctx=ctx
        )
        active = [r for r in records if r.name == server_name and r.is_active]
        if not active:
            raise NoActiveVersionError(server_name, "no active servers found with name")

        latest: Optional[ServerRecord] = None
        latest_version: Optional[semver.Version] = None
        for record in active:
            version = parse_semver(record.version)
            if version is None:
                logger.debug(f"Skipping {record.name}@{record.version}: not a semantic version")
                continue
            if latest_version is None or version > latest_version:
                latest, latest_version = record, version

        if latest is None:
            raise NoActiveVersionError(
                server_name, "no valid semantic version found for active servers with name"
            )
        return latest

    async def search_servers(
        self,
        search_term: str,
        options: Optional[ListServersOptions] = None,
        *,
        ctx: Optional[WatchContext] = None,
    ) -> ServerListResponse:
        if not search_term:
            raise ValueError("search term is required")
        search_options = (options or ListServersOptions()).model_copy(update={"search": search_term})
        return await self.list_servers(search_options, ctx=ctx)

    async def get_latest_servers(
        self, options: Optional[ListServersOptions] = None, *, ctx: Optional[WatchContext] = None
    ) -> ServerListResponse:
        latest_options = (options or ListServersOptions()).model_copy(update={"version": "latest"})
        return await self.list_servers(latest_options, ctx=ctx)

    async def get_updated_servers(
        self,
        updated_since: datetime,
        options: Optional[ListServersOptions] = None,
        *,
        ctx: Optional[WatchContext] = None,
    ) -> ServerListResponse:
        if updated_since is None:
            raise ValueError("updated_since timestamp is required")
        updated_options = (options or ListServersOptions()).model_copy(
            update={"updated_since": updated_since}
        )
        return await self.list_servers(updated_options, ctx=ctx)

    async def get_server_by_name_and_version(
        self, server_name: str, version: str, *, ctx: Optional[WatchContext] = None
    ) -> ServerRecord:
        """
        Find an exact name@version record. ``version="latest"`` uses the
        registry's own latest filter, since it cannot filter by other versions.
        """
        if not server_name:
            raise ValueError("server name is required")
        if not version:
            raise ValueError("version is required")

        is_latest = version.lower() == "latest"
        options = ListServersOptions(
            search=server_name,
            limit=MAX_PAGE_LIMIT,
            version="latest" if is_latest else None,
        )
        for record in await self.list_all_servers(options, ctx=ctx):
            if record.name == server_name and (is_latest or record.version == version):
                return record

        raise ServerNotFoundError(f"{server_name}@{version}")
