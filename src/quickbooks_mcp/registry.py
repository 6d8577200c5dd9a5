"""Operation registry and JSON-RPC dispatcher.

The registry is the protocol-facing catalog of every tool and prompt. It can
be called directly (list_operations / call_operation) or through JSON-RPC 2.0
envelopes (handle_request / handle_json) as remote MCP clients send them.
"""

import json
import logging
from collections.abc import Iterable
from typing import Any

from quickbooks_mcp import __version__
from quickbooks_mcp.exceptions import UnknownOperationError
from quickbooks_mcp.models import OperationResult
from quickbooks_mcp.operations import Operation
from quickbooks_mcp.prompts import PROMPTS, Prompt, get_prompt

logger = logging.getLogger(__name__)

SERVER_NAME = "quickbooks_online_mcp_server"
PROTOCOL_VERSION = "2025-06-18"

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class JsonRpcError(Exception):
    """An error to return in a JSON-RPC error envelope."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class OperationRegistry:
    """Catalog of tools and prompts with by-name dispatch."""

    def __init__(
        self,
        operations: Iterable[Operation] = (),
        prompts: Iterable[Prompt] = PROMPTS,
    ) -> None:
        """Initialize the registry.

        Args:
            operations: Tools to register.
            prompts: Prompt templates to offer.
        """
        self._operations: dict[str, Operation] = {}
        self._prompts = list(prompts)
        for operation in operations:
            self.register(operation)

    def register(self, operation: Operation) -> None:
        """Add a tool to the catalog.

        Raises:
            ValueError: If a tool with the same name is registered.
        """
        if operation.name in self._operations:
            raise ValueError(f"Duplicate tool name: {operation.name}")
        self._operations[operation.name] = operation

    def __contains__(self, name: str) -> bool:
        return name in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    def list_operations(self) -> list[dict[str, Any]]:
        """Return every tool with its description and input schema."""
        return [op.to_dict() for op in self._operations.values()]

    def get(self, name: str) -> Operation:
        """Look up a tool by name.

        Raises:
            UnknownOperationError: If no tool has this name.
        """
        try:
            return self._operations[name]
        except KeyError:
            raise UnknownOperationError("tool", name) from None

    async def call_operation(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> OperationResult:
        """Run a tool by name.

        Args:
            name: Tool name (e.g. "search_customers").
            arguments: Tool arguments.

        Returns:
            The tool's structured result; failures are error results.

        Raises:
            UnknownOperationError: If no tool has this name.
        """
        operation = self.get(name)
        logger.info(f"Calling tool {name}")
        return await operation.handler(arguments or {})

    def list_prompts(self) -> list[dict[str, Any]]:
        """Return every prompt template."""
        return [p.to_dict() for p in self._prompts]

    def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Render a prompt template by name."""
        return get_prompt(name, arguments)

    async def handle_json(self, body: str) -> str | None:
        """Handle a JSON-RPC request body and return the response body.

        Returns:
            JSON response text, or None for notifications.
        """
        try:
            request = json.loads(body)
        except (TypeError, ValueError) as e:
            return json.dumps(_error_envelope(None, PARSE_ERROR, f"Parse error: {e}"))

        if isinstance(request, list):
            if not request:
                return json.dumps(_error_envelope(None, INVALID_REQUEST, "Empty batch"))
            responses = [await self.handle_request(item) for item in request]
            responses = [r for r in responses if r is not None]
            return json.dumps(responses) if responses else None

        response = await self.handle_request(request)
        return json.dumps(response) if response is not None else None

    async def handle_request(self, request: Any) -> dict[str, Any] | None:
        """Handle one decoded JSON-RPC request.

        Args:
            request: Envelope ``{jsonrpc, id, method, params}``.

        Returns:
            Response envelope with ``result`` or ``error``, or None if the
            request is a notification.
        """
        if (
            not isinstance(request, dict)
            or request.get("jsonrpc") != "2.0"
            or not isinstance(request.get("method"), str)
        ):
            request_id = request.get("id") if isinstance(request, dict) else None
            return _error_envelope(request_id, INVALID_REQUEST, "Invalid Request")

        is_notification = "id" not in request
        request_id = request.get("id")
        method = request["method"]
        params = request.get("params") or {}

        try:
            if not isinstance(params, dict):
                raise JsonRpcError(INVALID_PARAMS, "params must be an object")
            result = await self._dispatch(method, params)
        except JsonRpcError as e:
            if is_notification:
                return None
            return _error_envelope(request_id, e.code, e.message)
        except Exception as e:
            logger.exception(f"Internal error handling {method}")
            if is_notification:
                return None
            return _error_envelope(request_id, INTERNAL_ERROR, f"Internal error: {e}")

        if is_notification:
            return None
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    async def _dispatch(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
                "capabilities": {"tools": {}, "prompts": {}},
                "serverInfo": {"name": SERVER_NAME, "version": __version__},
            }
        if method == "ping" or method.startswith("notifications/"):
            return {}
        if method == "tools/list":
            return {"tools": self.list_operations()}
        if method == "tools/call":
            name, arguments = _name_and_arguments(params)
            try:
                result = await self.call_operation(name, arguments)
            except UnknownOperationError as e:
                raise JsonRpcError(INVALID_PARAMS, e.message) from e
            return result.to_dict()
        if method == "prompts/list":
            return {"prompts": self.list_prompts()}
        if method == "prompts/get":
            name, arguments = _name_and_arguments(params)
            try:
                return self.get_prompt(name, arguments)
            except UnknownOperationError as e:
                raise JsonRpcError(INVALID_PARAMS, e.message) from e
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")


def _name_and_arguments(params: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    name = params.get("name")
    if not isinstance(name, str) or not name:
        raise JsonRpcError(INVALID_PARAMS, "Missing required parameter: name")
    arguments = params.get("arguments") or {}
    if not isinstance(arguments, dict):
        raise JsonRpcError(INVALID_PARAMS, "arguments must be an object")
    return name, arguments


def _error_envelope(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
