import asyncio
import os
import sys

# Add current directory to path so we can import nomad_mcp_pack
sys.path.append(os.getcwd())

from nomad_mcp_pack.core.errors import RegistryError
from nomad_mcp_pack.schemas.registry import ListServersOptions
from nomad_mcp_pack.services.registry_service import DEFAULT_REGISTRY_URL, RegistryClient


async def main(base_url: str):
    async with RegistryClient(base_url) as client:
        print(f"Fetching first page from {base_url}...")
        try:
            page = await client.list_servers(ListServersOptions(limit=10))
            print(f"Servers on first page: {len(page.servers)} (next cursor: {page.metadata.next_cursor})")
            if page.servers:
                first = page.servers[0]
                print(f"First server: {first.name}@{first.version} [{first.status}]")

            print("\nSearching for 'exa'...")
            results = await client.search_servers("exa", ListServersOptions(limit=10))
            for r in results.servers:
                packages = ", ".join(f"{p.registry_type}/{p.transport.type}" for p in r.packages) or "remote-only"
                print(f" - {r.name}@{r.version}: {packages}")

            print("\nResolving latest active version of 'ai.exa/exa'...")
            latest = await client.get_latest_active_server("ai.exa/exa")
            print(f"Latest active: {latest.name}@{latest.version} (updated {latest.updated_at})")

        except RegistryError as e:
            print(f"ERROR: {e}")
            return 1
    return 0


if __name__ == "__main__":
    url = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_REGISTRY_URL
    sys.exit(asyncio.run(main(url)))
