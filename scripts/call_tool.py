from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Any, Dict

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client


MCP_URL = os.getenv("MCP_URL", "http://127.0.0.1:9000/mcp")


async def main() -> None:
    if len(sys.argv) < 2:
        print("Usage: python scripts/call_tool.py <tool_name> ['<json-args>']")
        print("       python scripts/call_tool.py --list")
        raise SystemExit(1)

    headers: Dict[str, str] = {}
    token = os.getenv("MCP_SERVER_TOKEN", "").strip()
    if token:
        headers["Authorization"] = f"Bearer {token}"

    params: Dict[str, Any] = {}
    if len(sys.argv) > 2:
        try:
            params = json.loads(sys.argv[2])
        except json.JSONDecodeError as exc:
            print("Failed to parse JSON arguments")
            print(repr(exc))
            raise SystemExit(1)

    async with streamablehttp_client(MCP_URL, headers=headers) as (read_stream, write_stream, _):
        async with ClientSession(read_stream, write_stream) as session:
            await session.initialize()
            if sys.argv[1] == "--list":
                tools = await session.list_tools()
                print(f"Found {len(tools.tools)} tools:")
                for tool in tools.tools:
                    print(f" - {tool.name}")
                return

            result = await session.call_tool(sys.argv[1], params)
            print("Tool call result (isError=%s):" % result.isError)
            for block in result.content:
                print(getattr(block, "text", block))


if __name__ == "__main__":
    asyncio.run(main())
