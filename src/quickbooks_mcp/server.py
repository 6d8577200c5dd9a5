"""MCP server wiring for QuickBooks Online.

This module builds the operation registry (every entity family's tools and
the prompt templates) and exposes it over two transports:
- stdio, using the low-level ``mcp`` Server (for MCP clients such as Claude Desktop)
- HTTP, a Starlette app accepting JSON-RPC POSTs (for web integrations)

Tools, per entity family (Customer, Invoice, Estimate, Bill, Vendor, Employee,
JournalEntry, BillPayment, Purchase, Account, Item):
- create_<entity>: Create a record
- get_<entity> / read_<entity>: Fetch a record by ID
- update_<entity>: Update a record (Id and SyncToken required)
- delete_<entity>: Delete a record (customers and vendors are deactivated)
- search_<entities>: Search with criteria, sorting and paging
"""

import logging
import os
from typing import Any

import mcp.server.stdio
import mcp.types as types
import uvicorn
from mcp.server.lowlevel import Server
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from quickbooks_mcp import __version__
from quickbooks_mcp.auth import TokenManager
from quickbooks_mcp.config import ENV_LOG_LEVEL
from quickbooks_mcp.exceptions import UnknownOperationError
from quickbooks_mcp.operations import ClientFactory, build_operations
from quickbooks_mcp.registry import SERVER_NAME, OperationRegistry

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Send logs to stderr (stdout carries the MCP protocol).

    Level comes from QUICKBOOKS_LOG_LEVEL (default INFO). Called by the
    process entry points only, so importing the package leaves the host
    application's logging alone.
    """
    logging.basicConfig(
        level=os.getenv(ENV_LOG_LEVEL, "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


class ToolFailure(Exception):
    """Raised inside the MCP call_tool handler to mark an error result."""


def build_registry(
    token_manager: TokenManager | None = None,
    client_factory: ClientFactory | None = None,
    **settings: Any,
) -> OperationRegistry:
    """Build the registry of all tools and prompts.

    Args:
        token_manager: Token manager to use. Created from ``settings`` (see
            ``resolve_credentials``) with environment fallbacks if omitted.
        client_factory: Builds the scoped API client per call.

    Returns:
        OperationRegistry.

    Raises:
        ConfigurationError: If client credentials are missing.
    """
    if token_manager is None:
        token_manager = TokenManager.from_settings(**settings)
    registry = OperationRegistry(build_operations(token_manager, client_factory))
    logger.info(f"Registered {len(registry)} QuickBooks tools")
    return registry


def create_mcp_server(registry: OperationRegistry) -> Server:
    """Expose a registry through the low-level MCP server.

    Args:
        registry: Tools and prompts to serve.

    Returns:
        Configured ``mcp`` Server.
    """
    server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def handle_list_tools() -> list[types.Tool]:
        """Return all registered tools with their schemas."""
        return [
            types.Tool(
                name=tool["name"],
                description=tool["description"],
                inputSchema=tool["inputSchema"],
            )
            for tool in registry.list_operations()
        ]

    @server.call_tool()
    async def handle_call_tool(
        name: str, arguments: dict[str, Any] | None
    ) -> list[types.TextContent]:
        """Run a tool; error results are raised so the client sees isError."""
        try:
            result = await registry.call_operation(name, arguments or {})
        except UnknownOperationError as e:
            raise ValueError(e.message) from e
        if result.is_error:
            raise ToolFailure("\n".join(result.content))
        return [types.TextContent(type="text", text=text) for text in result.content]

    @server.list_prompts()
    async def handle_list_prompts() -> list[types.Prompt]:
        return [
            types.Prompt(
                name=prompt["name"],
                description=prompt["description"],
                arguments=[types.PromptArgument(**arg) for arg in prompt["arguments"]],
            )
            for prompt in registry.list_prompts()
        ]

    @server.get_prompt()
    async def handle_get_prompt(
        name: str, arguments: dict[str, str] | None
    ) -> types.GetPromptResult:
        try:
            rendered = registry.get_prompt(name, arguments)
        except UnknownOperationError as e:
            raise ValueError(e.message) from e
        return types.GetPromptResult(
            description=rendered["description"],
            messages=[
                types.PromptMessage(
                    role=message["role"],
                    content=types.TextContent(type="text", text=message["content"]["text"]),
                )
                for message in rendered["messages"]
            ],
        )

    return server


async def run_stdio(registry: OperationRegistry | None = None) -> None:
    """Run the MCP server with stdio transport."""
    registry = registry or build_registry()
    server = create_mcp_server(registry)

    logger.info("Starting QuickBooks MCP server (stdio)")
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def create_http_app(registry: OperationRegistry) -> Starlette:
    """Create an HTTP app that accepts JSON-RPC requests on POST /.

    Other methods get 405 Method Not Allowed.
    """

    async def handle(request: Request) -> Response:
        body = await request.body()
        response = await registry.handle_json(body.decode("utf-8", errors="replace"))
        if response is None:
            return Response(status_code=202)
        return Response(response, media_type="application/json")

    return Starlette(routes=[Route("/", handle, methods=["POST"])])


def run_http(host: str = "0.0.0.0", port: int = 3000, registry: OperationRegistry | None = None) -> None:
    """Serve JSON-RPC over HTTP with uvicorn."""
    app = create_http_app(registry or build_registry())
    logger.info(f"Starting QuickBooks MCP server on http://{host}:{port}")
    logger.info(
        f"Try: curl -X POST http://localhost:{port} -H 'Content-Type: application/json' "
        """-d '{"jsonrpc":"2.0","id":1,"method":"tools/list"}'"""
    )
    uvicorn.run(app, host=host, port=port)
