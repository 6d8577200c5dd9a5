"""Tests for the generated entity operations."""

import json

import httpx
import pytest

from conftest import FakeTokenManager
from quickbooks_mcp.exceptions import AuthorizationError
from quickbooks_mcp.operations import ENTITY_FAMILIES, build_operations


def operations_by_name(token_manager, backend):
    return {op.name: op for op in build_operations(token_manager, backend.client_factory())}


class TestToolCatalog:
    """Test cases for the generated tool names and schemas."""

    def test_tool_count(self, token_manager, backend):
        assert len(operations_by_name(token_manager, backend)) == 50

    def test_family_specific_names(self, token_manager, backend):
        names = set(operations_by_name(token_manager, backend))
        assert {
            "create_customer", "get_customer", "update_customer", "delete_customer",
            "search_customers", "read_invoice", "read_item", "search_journal_entries",
            "delete_bill_payment", "create_account", "search_accounts",
        } <= names

    def test_unsupported_operations_absent(self, token_manager, backend):
        names = set(operations_by_name(token_manager, backend))
        assert "delete_invoice" not in names
        assert "delete_employee" not in names
        assert "get_account" not in names
        assert "delete_item" not in names

    def test_schemas(self, token_manager, backend):
        ops = operations_by_name(token_manager, backend)
        assert ops["create_journal_entry"].input_schema["required"] == ["journal_entry"]
        assert ops["get_vendor"].input_schema["required"] == ["id"]
        assert "criteria" in ops["search_bills"].input_schema["properties"]

    def test_families_unique(self):
        entities = [family.entity for family in ENTITY_FAMILIES]
        assert len(entities) == len(set(entities)) == 11


class TestCustomerOperations:
    """Test cases for customer tools against a fake backend."""

    @pytest.mark.asyncio
    async def test_create(self, token_manager, backend):
        backend.route("POST /customer", lambda request: httpx.Response(
            200, json={"Customer": {"Id": "1", **json.loads(request.content)}}
        ))
        ops = operations_by_name(token_manager, backend)

        result = await ops["create_customer"].handler({"customer": {"DisplayName": "Acme"}})

        assert not result.is_error
        assert result.content[0] == "Customer created:"
        assert json.loads(result.content[1]) == {"Id": "1", "DisplayName": "Acme"}

    @pytest.mark.asyncio
    async def test_delete_deactivates(self, token_manager, backend):
        """Deleting a customer reads it once, then updates it once as inactive."""
        backend.route("GET /customer/123", {
            "Customer": {"Id": "123", "SyncToken": "2", "DisplayName": "Acme", "Active": True},
        })
        backend.route("POST /customer", lambda request: httpx.Response(
            200, json={"Customer": json.loads(request.content)}
        ))
        ops = operations_by_name(token_manager, backend)

        result = await ops["delete_customer"].handler({"id": "123"})

        assert not result.is_error
        assert result.content[0] == "Customer deleted (deactivated):"
        assert [r.method for r in backend.requests] == ["GET", "POST"]
        assert "operation" not in backend.requests[1].url.params
        body = backend.bodies()[0]
        assert body["Active"] is False
        assert body["Id"] == "123"
        assert body["SyncToken"] == "2"

    @pytest.mark.asyncio
    async def test_get_failure_is_error_result(self, token_manager, backend):
        """Backend errors become error results with an operation prefix."""
        ops = operations_by_name(token_manager, backend)

        result = await ops["get_customer"].handler({"id": "invalid_id"})

        assert result.is_error
        assert result.content[0].startswith("Error fetching customer: ")
        assert result.error["code"] == "610"

    @pytest.mark.asyncio
    async def test_token_failure_is_error_result(self, backend):
        token_manager = FakeTokenManager(error=AuthorizationError("Authorization timeout or cancelled"))
        ops = operations_by_name(token_manager, backend)

        result = await ops["get_customer"].handler({"id": "1"})

        assert result.is_error
        assert result.content == ["Error fetching customer: Authorization timeout or cancelled"]
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_missing_id(self, token_manager, backend):
        ops = operations_by_name(token_manager, backend)

        result = await ops["get_customer"].handler({})

        assert result.is_error
        assert "'id' is required" in result.content[0]
        assert token_manager.calls == 0

    @pytest.mark.asyncio
    async def test_search(self, token_manager, backend):
        backend.route("GET /query", {
            "QueryResponse": {"Customer": [{"Id": "1"}, {"Id": "2"}]},
        })
        ops = operations_by_name(token_manager, backend)

        result = await ops["search_customers"].handler({
            "criteria": [{"field": "DisplayName", "value": "Acme%", "operator": "LIKE"}],
            "limit": 10,
            "offset": 10,
        })

        assert result.content[0] == "Found 2 customers:"
        assert len(result.content) == 3
        assert backend.requests[0].url.params["query"] == (
            "SELECT * FROM Customer WHERE DisplayName LIKE 'Acme%' STARTPOSITION 11 MAXRESULTS 10"
        )

    @pytest.mark.asyncio
    async def test_search_both_sorts_rejected(self, token_manager, backend):
        ops = operations_by_name(token_manager, backend)

        result = await ops["search_customers"].handler({"asc": "DisplayName", "desc": "Id"})

        assert result.is_error
        assert result.content[0].startswith("Error searching customers: ")
        assert result.error["code"] == "invalid_query"
        assert backend.requests == []


class TestUpdateAndDelete:
    """Test cases for updates and hard deletes."""

    @pytest.mark.asyncio
    async def test_update_requires_sync_token(self, token_manager, backend):
        ops = operations_by_name(token_manager, backend)

        result = await ops["update_bill"].handler({"bill": {"Id": "1"}})

        assert result.is_error
        assert result.content[0] == "Error updating bill: SyncToken required for update"
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_sparse_update(self, token_manager, backend):
        backend.route("POST /invoice", {"Invoice": {"Id": "1", "SyncToken": "3"}})
        ops = operations_by_name(token_manager, backend)

        result = await ops["update_invoice"].handler({"invoice": {"Id": "1", "SyncToken": "2"}})

        assert result.content[0] == "Invoice updated:"
        assert backend.bodies() == [{"Id": "1", "SyncToken": "2", "sparse": True}]

    @pytest.mark.asyncio
    async def test_full_update(self, token_manager, backend):
        backend.route("POST /estimate", {"Estimate": {"Id": "1", "SyncToken": "1"}})
        ops = operations_by_name(token_manager, backend)

        await ops["update_estimate"].handler({"estimate": {"Id": "1", "SyncToken": "0"}})

        assert "sparse" not in backend.bodies()[0]

    @pytest.mark.asyncio
    async def test_hard_delete_uses_current_sync_token(self, token_manager, backend):
        backend.route("GET /estimate/9", {"Estimate": {"Id": "9", "SyncToken": "4"}})
        backend.route("POST /estimate", {"Estimate": {"Id": "9", "status": "Deleted"}})
        ops = operations_by_name(token_manager, backend)

        result = await ops["delete_estimate"].handler({"id": "9"})

        assert result.content[0] == "Estimate deleted:"
        assert backend.requests[1].url.params["operation"] == "delete"
        assert backend.bodies() == [{"Id": "9", "SyncToken": "4"}]

    @pytest.mark.asyncio
    async def test_labels_for_multi_word_entities(self, token_manager, backend):
        backend.route("GET /billpayment/3", {"BillPayment": {"Id": "3"}})
        ops = operations_by_name(token_manager, backend)

        result = await ops["get_bill_payment"].handler({"id": "3"})

        assert result.content[0] == "Bill payment found:"


class TestStructuredErrors:
    """Test cases for the structured error of failed tools."""

    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after(self, token_manager, backend):
        backend.route("GET /customer/1", lambda request: httpx.Response(429, headers={"Retry-After": "30"}))
        ops = operations_by_name(token_manager, backend)

        result = await ops["get_customer"].handler({"id": "1"})

        assert result.error == {
            "message": "Error fetching customer: Rate limit exceeded",
            "code": "rate_limited",
            "action": "Please wait 30 seconds before retrying",
            "retry_after": 30,
            "status_code": 429,
        }

    @pytest.mark.asyncio
    async def test_fault_detail_and_action(self, token_manager, backend):
        backend.route("POST /customer", lambda request: httpx.Response(400, json={"Fault": {"Error": [{
            "Message": "Duplicate Name Exists Error",
            "Detail": "The name supplied already exists.",
            "code": "6240",
        }]}}))
        ops = operations_by_name(token_manager, backend)

        result = await ops["create_customer"].handler({"customer": {"DisplayName": "Acme"}})

        assert result.error["code"] == "6240"
        assert result.error["status_code"] == 400
        assert result.error["detail"] == "The name supplied already exists."

    @pytest.mark.asyncio
    async def test_authorization_action(self, backend):
        token_manager = FakeTokenManager(error=AuthorizationError("Authorization timeout or cancelled"))
        ops = operations_by_name(token_manager, backend)

        result = await ops["search_bills"].handler({})

        assert result.error["code"] == "authorization_error"
        assert "quickbooks_mcp.auth" in result.error["action"]
        assert result.to_dict()["structuredContent"]["error"] == result.error

    @pytest.mark.asyncio
    async def test_invalid_arguments_have_no_code(self, token_manager, backend):
        ops = operations_by_name(token_manager, backend)

        result = await ops["create_bill"].handler({"bill": "not an object"})

        assert result.error == {
            "message": "Error creating bill: 'bill' must be an object",
            "code": None,
        }
