import asyncio
import sys

from fastmcp import Client


async def main(query: str) -> None:
    # Launch the server over stdio and run a search-only dry run
    transport_config = {
        "mcpServers": {
            "pubmed_nbib": {
                "command": sys.executable,
                "args": ["-m", "pubmed_nbib.mcp_server"],
            }
        }
    }
    async with Client(transport_config, name="pubmed_nbib") as client:
        search = await client.call_tool("search_pubmed_ids", {"query": query, "retmax": 5})
        print("Search result:")
        print(search)
        print()

        dry_run = await client.call_tool("download_nbib", {"query": query, "dry_run": True})
        print("Dry run result:")
        print(dry_run)


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else '"atrial fibrillation"[ti]'))
