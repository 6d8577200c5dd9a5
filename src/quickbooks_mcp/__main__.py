"""Entry point for running the QuickBooks MCP server.

Run with: python -m quickbooks_mcp            (stdio transport)
      or: python -m quickbooks_mcp --http     (JSON-RPC over HTTP)
Authorize once with: python -m quickbooks_mcp.auth
"""

import argparse
import asyncio

from quickbooks_mcp.server import configure_logging, run_http, run_stdio


def main() -> None:
    """Run the MCP server with the selected transport."""
    parser = argparse.ArgumentParser(prog="quickbooks-mcp")
    parser.add_argument("--http", action="store_true", help="serve JSON-RPC over HTTP")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=3000)
    args = parser.parse_args()

    configure_logging()

    if args.http:
        run_http(host=args.host, port=args.port)
    else:
        asyncio.run(run_stdio())


if __name__ == "__main__":
    main()
