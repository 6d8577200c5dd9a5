"""Entity operation families for the QuickBooks MCP server.

Every entity family (Customer, Invoice, ...) exposes up to five tools:
create, get (or read), update, delete and search. The families differ only
in names, which operations they support, whether delete deactivates the
record instead of removing it, and whether updates are sparse, so the tools
are generated from the ENTITY_FAMILIES table below.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from quickbooks_mcp.auth import TokenManager
from quickbooks_mcp.client import QuickBooksClient
from quickbooks_mcp.exceptions import QuickBooksError
from quickbooks_mcp.models import OperationResult
from quickbooks_mcp.query import OPERATORS, compile_search

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[OperationResult]]
ClientFactory = Callable[[str, str, str], QuickBooksClient]

ALL_OPERATIONS = ("create", "get", "update", "delete", "search")

VERBS = {
    "create": "creating",
    "get": "fetching",
    "update": "updating",
    "delete": "deleting",
    "search": "searching",
}


@dataclass(frozen=True)
class Operation:
    """A registered tool: its catalog entry plus the coroutine that runs it."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Handler

    def to_dict(self) -> dict[str, Any]:
        """Convert to an MCP ``tools/list`` entry."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass(frozen=True)
class EntityFamily:
    """Definition of one entity family's tools.

    Args:
        entity: QuickBooks entity name (e.g. "JournalEntry").
        label: Human-readable singular name (e.g. "Journal entry").
        plural: Human-readable plural name (e.g. "journal entries").
        operations: Supported operations, a subset of ALL_OPERATIONS.
        read_verb: Tool prefix of the get operation ("get" or "read").
        deactivate_on_delete: Delete by setting Active to false.
        sparse_update: Send updates as sparse updates.
    """

    entity: str
    label: str
    plural: str
    operations: tuple[str, ...] = ALL_OPERATIONS
    read_verb: str = "get"
    deactivate_on_delete: bool = False
    sparse_update: bool = False

    @property
    def argument(self) -> str:
        """Name of the payload argument (e.g. "journal_entry")."""
        return self.label.lower().replace(" ", "_")

    @property
    def article(self) -> str:
        return "an" if self.label[0].lower() in "aeiou" else "a"

    def tool_name(self, operation: str) -> str:
        """Tool name for an operation (e.g. "search_journal_entries")."""
        if operation == "search":
            return "search_" + self.plural.replace(" ", "_")
        if operation == "get":
            return f"{self.read_verb}_{self.argument}"
        return f"{operation}_{self.argument}"


ENTITY_FAMILIES: tuple[EntityFamily, ...] = (
    EntityFamily("Customer", "Customer", "customers", deactivate_on_delete=True),
    EntityFamily(
        "Invoice", "Invoice", "invoices",
        operations=("create", "get", "update", "search"),
        read_verb="read",
        sparse_update=True,
    ),
    EntityFamily("Estimate", "Estimate", "estimates"),
    EntityFamily("Bill", "Bill", "bills"),
    EntityFamily("Vendor", "Vendor", "vendors", deactivate_on_delete=True),
    EntityFamily(
        "Employee", "Employee", "employees",
        operations=("create", "get", "update", "search"),
        sparse_update=True,
    ),
    EntityFamily("JournalEntry", "Journal entry", "journal entries", sparse_update=True),
    EntityFamily("BillPayment", "Bill payment", "bill payments", sparse_update=True),
    EntityFamily("Purchase", "Purchase", "purchases"),
    EntityFamily(
        "Account", "Account", "accounts",
        operations=("create", "update", "search"),
        sparse_update=True,
    ),
    EntityFamily(
        "Item", "Item", "items",
        operations=("create", "get", "update", "search"),
        read_verb="read",
        sparse_update=True,
    ),
)

SEARCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "criteria": {
            "type": "array",
            "description": "Filters to apply",
            "items": {
                "type": "object",
                "properties": {
                    "field": {"type": "string"},
                    "value": {"type": ["string", "boolean", "number", "array", "null"]},
                    "operator": {"type": "string", "enum": list(OPERATORS)},
                },
                "required": ["field"],
            },
        },
        "limit": {"type": "number", "description": "Maximum number of results"},
        "offset": {"type": "number", "description": "Number of results to skip"},
        "asc": {"type": "string", "description": "Field to sort ascending by"},
        "desc": {"type": "string", "description": "Field to sort descending by"},
    },
}


class InvalidArguments(ValueError):
    """Tool arguments are missing a required value."""


def default_client_factory(access_token: str, realm_id: str, environment: str) -> QuickBooksClient:
    return QuickBooksClient(access_token, realm_id, environment)


class EntityOperations:
    """The generated tools of one entity family."""

    def __init__(
        self,
        family: EntityFamily,
        token_manager: TokenManager,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize the family's operations.

        Args:
            family: Entity family definition.
            token_manager: Source of bearer tokens.
            client_factory: Builds a scoped client from (token, realm, environment).
        """
        self.family = family
        self.token_manager = token_manager
        self.client_factory = client_factory or default_client_factory

    def operations(self) -> list[Operation]:
        """Build the Operation catalog entries for the supported operations."""
        return [self._build(op) for op in ALL_OPERATIONS if op in self.family.operations]

    def _build(self, operation: str) -> Operation:
        family = self.family
        label = family.label.lower()
        arg = family.argument

        def object_schema(description: str) -> dict[str, Any]:
            return {
                "type": "object",
                "properties": {arg: {"type": "object", "description": description}},
                "required": [arg],
            }

        id_schema = {
            "type": "object",
            "properties": {"id": {"type": "string", "description": f"{family.label} ID"}},
            "required": ["id"],
        }

        if operation == "create":
            description = f"Create {family.article} {label} in QuickBooks Online."
            schema = object_schema(f"{family.label} data to create")
            method = self.create
        elif operation == "get":
            description = f"Get {family.article} {label} by ID from QuickBooks Online."
            schema = id_schema
            method = self.get
        elif operation == "update":
            description = f"Update {family.article} {label} in QuickBooks Online."
            schema = object_schema(
                f"{family.label} data to update (must include Id and SyncToken)"
            )
            method = self.update
        elif operation == "delete":
            if family.deactivate_on_delete:
                description = f"Delete (deactivate) {family.article} {label} in QuickBooks Online."
            else:
                description = f"Delete {family.article} {label} in QuickBooks Online."
            schema = {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": f"{family.label} ID"},
                    "sync_token": {
                        "type": "string",
                        "description": "SyncToken to delete; defaults to the current one",
                    },
                },
                "required": ["id"],
            }
            method = self.delete
        else:
            description = (
                f"Search {family.plural} in QuickBooks Online that match given criteria."
            )
            schema = SEARCH_SCHEMA
            method = self.search

        return Operation(
            name=family.tool_name(operation),
            description=description,
            input_schema=schema,
            handler=self._guarded(operation, method),
        )

    def _guarded(self, operation: str, method: Handler) -> Handler:
        """Wrap a handler so every failure becomes an error result."""
        family = self.family
        subject = family.plural if operation == "search" else family.label.lower()
        prefix = f"Error {VERBS[operation]} {subject}: "

        async def handler(arguments: dict[str, Any]) -> OperationResult:
            try:
                return await method(arguments or {})
            except QuickBooksError as e:
                logger.error(f"{prefix}{e}")
                details = e.to_dict()
                details.pop("error")
                return OperationResult.failure(prefix + str(e), **details)
            except Exception as e:
                logger.error(f"{prefix}{e}")
                return OperationResult.failure(prefix + str(e))

        return handler

    async def _client(self) -> QuickBooksClient:
        """Build a client with a freshly validated token."""
        token = await self.token_manager.ensure_token()
        credentials = self.token_manager.credentials
        return self.client_factory(token, credentials.realm_id, credentials.environment)

    def _payload(self, arguments: dict[str, Any]) -> dict[str, Any]:
        payload = arguments.get(self.family.argument)
        if not isinstance(payload, dict):
            raise InvalidArguments(f"'{self.family.argument}' must be an object")
        return payload

    @staticmethod
    def _id(arguments: dict[str, Any]) -> str:
        entity_id = arguments.get("id")
        if entity_id is None or entity_id == "":
            raise InvalidArguments("'id' is required")
        return str(entity_id)

    async def create(self, arguments: dict[str, Any]) -> OperationResult:
        payload = self._payload(arguments)
        async with await self._client() as client:
            record = await client.create(self.family.entity, payload)
        return OperationResult.records(f"{self.family.label} created:", [record])

    async def get(self, arguments: dict[str, Any]) -> OperationResult:
        entity_id = self._id(arguments)
        async with await self._client() as client:
            record = await client.read(self.family.entity, entity_id)
        return OperationResult.records(f"{self.family.label} found:", [record])

    async def update(self, arguments: dict[str, Any]) -> OperationResult:
        payload = self._payload(arguments)
        missing = [key for key in ("Id", "SyncToken") if payload.get(key) in (None, "")]
        if missing:
            raise InvalidArguments(f"{' and '.join(missing)} required for update")
        async with await self._client() as client:
            record = await client.update(
                self.family.entity, payload, sparse=self.family.sparse_update
            )
        return OperationResult.records(f"{self.family.label} updated:", [record])

    async def delete(self, arguments: dict[str, Any]) -> OperationResult:
        """Delete a record, or deactivate it for customers and vendors."""
        entity_id = self._id(arguments)
        entity = self.family.entity
        async with await self._client() as client:
            current = await client.read(entity, entity_id)
            if self.family.deactivate_on_delete:
                record = dict(current)
                record["Active"] = False
                if arguments.get("sync_token"):
                    record["SyncToken"] = str(arguments["sync_token"])
                result = await client.update(entity, record)
                label = f"{self.family.label} deleted (deactivated):"
            else:
                sync_token = arguments.get("sync_token") or current.get("SyncToken")
                if sync_token is None:
                    raise InvalidArguments("SyncToken of the record is unknown")
                result = await client.delete(entity, entity_id, sync_token)
                label = f"{self.family.label} deleted:"
        return OperationResult.records(label, [result])

    async def search(self, arguments: dict[str, Any]) -> OperationResult:
        compiled = compile_search(arguments, self.family.entity)
        logger.debug(f"Running query: {compiled.query_text} {compiled.pagination}")
        async with await self._client() as client:
            records = await client.query(self.family.entity, compiled)
        return OperationResult.records(f"Found {len(records)} {self.family.plural}:", records)


def build_operations(
    token_manager: TokenManager,
    client_factory: ClientFactory | None = None,
    families: tuple[EntityFamily, ...] = ENTITY_FAMILIES,
) -> list[Operation]:
    """Generate the tools of every entity family.

    Args:
        token_manager: Source of bearer tokens.
        client_factory: Builds a scoped client per call.
        families: Families to generate tools for.

    Returns:
        List of Operation objects in family order.
    """
    operations: list[Operation] = []
    for family in families:
        operations.extend(EntityOperations(family, token_manager, client_factory).operations())
    return operations
