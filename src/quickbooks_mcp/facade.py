"""In-process convenience API over the operation registry.

QuickBooksMCP builds JSON-RPC requests, dispatches them through the registry
and unwraps the tool content into plain Python data:

    qb = QuickBooksMCP(client_id="...", client_secret="...")
    customers = await qb.search_customers(
        criteria=[{"field": "Active", "value": True}], limit=10, asc="DisplayName"
    )
"""

import json
import uuid
from typing import Any

from quickbooks_mcp.registry import OperationRegistry
from quickbooks_mcp.server import build_registry


class QuickBooksMCPError(Exception):
    """Raised when a request through the facade fails.

    Args:
        message: Error message.
        code: JSON-RPC error code, or the QuickBooks fault code of a failed tool.
        details: Structured error of a failed tool (action, retry_after, ...).
    """

    def __init__(self, message: str, code: Any = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class QuickBooksMCP:
    """Direct Python access to the QuickBooks tools."""

    def __init__(self, registry: OperationRegistry | None = None, **settings: Any) -> None:
        """Initialize the facade.

        Args:
            registry: Registry to dispatch to. Built from ``settings``
                (client_id, client_secret, refresh_token, realm_id,
                environment, redirect_uri) if omitted.
        """
        self.registry = registry or build_registry(**settings)

    async def handle_request(self, body: str) -> str | None:
        """Handle a raw JSON-RPC request body (e.g. from a web framework)."""
        return await self.registry.handle_json(body)

    async def list_tools(self) -> list[dict[str, Any]]:
        response = await self._rpc("tools/list")
        return response["result"]["tools"]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Call a tool and return its parsed content.

        Raises:
            QuickBooksMCPError: If the request or the tool fails.
        """
        response = await self._rpc("tools/call", {"name": name, "arguments": arguments or {}})
        result = response["result"]
        if result.get("isError"):
            error = result.get("structuredContent", {}).get("error", {})
            texts = [block.get("text", "") for block in result.get("content", [])]
            raise QuickBooksMCPError(
                error.get("message") or "\n".join(texts), error.get("code"), details=error
            )
        return parse_tool_content(result.get("content"))

    async def list_prompts(self) -> list[dict[str, Any]]:
        response = await self._rpc("prompts/list")
        return response["result"]["prompts"]

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        response = await self._rpc("prompts/get", {"name": name, "arguments": arguments or {}})
        return response["result"]["messages"]

    async def _rpc(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        request = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or {},
        }
        response = await self.registry.handle_request(request)
        if response.get("error"):
            raise QuickBooksMCPError(response["error"]["message"], response["error"]["code"])
        return response

    # QuickBooks-specific convenience methods

    async def _search(
        self, tool: str, criteria: list[dict[str, Any]] | None, **options: Any
    ) -> list[dict[str, Any]]:
        arguments = {"criteria": criteria or []}
        arguments.update({k: v for k, v in options.items() if v is not None})
        result = await self.call_tool(tool, arguments)
        # Always a list: one match parses to a dict, none to the count label
        if isinstance(result, dict):
            return [result]
        if isinstance(result, list):
            return [r for r in result if isinstance(r, dict)]
        return []

    async def search_customers(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_customers", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def get_customer(self, id: str) -> Any:
        return await self.call_tool("get_customer", {"id": id})

    async def create_customer(self, customer: dict[str, Any]) -> Any:
        return await self.call_tool("create_customer", {"customer": customer})

    async def update_customer(self, customer: dict[str, Any]) -> Any:
        return await self.call_tool("update_customer", {"customer": customer})

    async def delete_customer(self, id: str) -> Any:
        return await self.call_tool("delete_customer", {"id": id})

    async def search_invoices(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_invoices", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def read_invoice(self, id: str) -> Any:
        return await self.call_tool("read_invoice", {"id": id})

    async def create_invoice(self, invoice: dict[str, Any]) -> Any:
        return await self.call_tool("create_invoice", {"invoice": invoice})

    async def update_invoice(self, invoice: dict[str, Any]) -> Any:
        return await self.call_tool("update_invoice", {"invoice": invoice})

    async def search_estimates(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_estimates", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def get_estimate(self, id: str) -> Any:
        return await self.call_tool("get_estimate", {"id": id})

    async def create_estimate(self, estimate: dict[str, Any]) -> Any:
        return await self.call_tool("create_estimate", {"estimate": estimate})

    async def update_estimate(self, estimate: dict[str, Any]) -> Any:
        return await self.call_tool("update_estimate", {"estimate": estimate})

    async def delete_estimate(self, id: str) -> Any:
        return await self.call_tool("delete_estimate", {"id": id})

    async def search_bills(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_bills", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def get_bill(self, id: str) -> Any:
        return await self.call_tool("get_bill", {"id": id})

    async def create_bill(self, bill: dict[str, Any]) -> Any:
        return await self.call_tool("create_bill", {"bill": bill})

    async def update_bill(self, bill: dict[str, Any]) -> Any:
        return await self.call_tool("update_bill", {"bill": bill})

    async def delete_bill(self, id: str) -> Any:
        return await self.call_tool("delete_bill", {"id": id})

    async def search_vendors(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_vendors", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def get_vendor(self, id: str) -> Any:
        return await self.call_tool("get_vendor", {"id": id})

    async def create_vendor(self, vendor: dict[str, Any]) -> Any:
        return await self.call_tool("create_vendor", {"vendor": vendor})

    async def update_vendor(self, vendor: dict[str, Any]) -> Any:
        return await self.call_tool("update_vendor", {"vendor": vendor})

    async def delete_vendor(self, id: str) -> Any:
        return await self.call_tool("delete_vendor", {"id": id})

    async def search_employees(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_employees", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def get_employee(self, id: str) -> Any:
        return await self.call_tool("get_employee", {"id": id})

    async def create_employee(self, employee: dict[str, Any]) -> Any:
        return await self.call_tool("create_employee", {"employee": employee})

    async def update_employee(self, employee: dict[str, Any]) -> Any:
        return await self.call_tool("update_employee", {"employee": employee})

    async def search_journal_entries(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_journal_entries", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def get_journal_entry(self, id: str) -> Any:
        return await self.call_tool("get_journal_entry", {"id": id})

    async def create_journal_entry(self, journal_entry: dict[str, Any]) -> Any:
        return await self.call_tool("create_journal_entry", {"journal_entry": journal_entry})

    async def update_journal_entry(self, journal_entry: dict[str, Any]) -> Any:
        return await self.call_tool("update_journal_entry", {"journal_entry": journal_entry})

    async def delete_journal_entry(self, id: str) -> Any:
        return await self.call_tool("delete_journal_entry", {"id": id})

    async def search_bill_payments(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_bill_payments", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def get_bill_payment(self, id: str) -> Any:
        return await self.call_tool("get_bill_payment", {"id": id})

    async def create_bill_payment(self, bill_payment: dict[str, Any]) -> Any:
        return await self.call_tool("create_bill_payment", {"bill_payment": bill_payment})

    async def update_bill_payment(self, bill_payment: dict[str, Any]) -> Any:
        return await self.call_tool("update_bill_payment", {"bill_payment": bill_payment})

    async def delete_bill_payment(self, id: str) -> Any:
        return await self.call_tool("delete_bill_payment", {"id": id})

    async def search_purchases(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_purchases", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def get_purchase(self, id: str) -> Any:
        return await self.call_tool("get_purchase", {"id": id})

    async def create_purchase(self, purchase: dict[str, Any]) -> Any:
        return await self.call_tool("create_purchase", {"purchase": purchase})

    async def update_purchase(self, purchase: dict[str, Any]) -> Any:
        return await self.call_tool("update_purchase", {"purchase": purchase})

    async def delete_purchase(self, id: str) -> Any:
        return await self.call_tool("delete_purchase", {"id": id})

    async def search_accounts(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_accounts", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def create_account(self, account: dict[str, Any]) -> Any:
        return await self.call_tool("create_account", {"account": account})

    async def update_account(self, account: dict[str, Any]) -> Any:
        return await self.call_tool("update_account", {"account": account})

    async def search_items(
        self,
        criteria: list[dict[str, Any]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        asc: str | None = None,
        desc: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self._search(
            "search_items", criteria, limit=limit, offset=offset, asc=asc, desc=desc
        )

    async def read_item(self, id: str) -> Any:
        return await self.call_tool("read_item", {"id": id})

    async def create_item(self, item: dict[str, Any]) -> Any:
        return await self.call_tool("create_item", {"item": item})

    async def update_item(self, item: dict[str, Any]) -> Any:
        return await self.call_tool("update_item", {"item": item})


def parse_tool_content(content: list[dict[str, Any]] | None) -> Any:
    """Extract data from MCP tool content blocks.

    Text blocks holding JSON are returned as data and label blocks such as
    "Customer found:" are dropped; a single record is returned on its own,
    several as a list. Content without JSON is returned as text.
    """
    if not content:
        return None

    records = []
    texts = []
    for block in content:
        text = block.get("text")
        if text is None:
            continue
        try:
            records.append(json.loads(text))
        except ValueError:
            texts.append(text)

    if records:
        return records[0] if len(records) == 1 else records
    return texts[0] if len(texts) == 1 else texts
