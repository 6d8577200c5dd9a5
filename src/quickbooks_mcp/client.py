"""QuickBooks Online API client.

This module provides the QuickBooksClient class for making authenticated
requests to the QuickBooks Online accounting REST API. A client is scoped
to one realm and one bearer token; callers create a new one per operation
so a token is never reused past its validity check.
"""

import logging
from typing import Any

import httpx

from quickbooks_mcp.exceptions import (
    AuthenticationError,
    BackendError,
    NetworkError,
    NotFoundError,
    RateLimitError,
)
from quickbooks_mcp.models import CompiledQuery

logger = logging.getLogger(__name__)

API_URLS = {
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
    "production": "https://quickbooks.api.intuit.com",
}

MINOR_VERSION = "75"


def get_base_url(environment: str = "sandbox") -> str:
    """Get the API base URL for an environment.

    Args:
        environment: 'sandbox' or 'production'.

    Returns:
        Base URL for the environment.

    Raises:
        ValueError: If environment is not supported.
    """
    if environment not in API_URLS:
        raise ValueError(f"Unsupported environment: {environment}. Use 'sandbox' or 'production'.")
    return API_URLS[environment]


def paginate_query(compiled: CompiledQuery) -> str:
    """Append STARTPOSITION/MAXRESULTS for the compiled pagination options.

    Args:
        compiled: Compiled query with optional page size and page number.

    Returns:
        Query text ready to send.
    """
    query = compiled.query_text
    if compiled.page_size is None and compiled.page_number is None:
        return query
    per_page = compiled.page_size or 20
    page = compiled.page_number or 1
    start = (page - 1) * per_page + 1
    return f"{query} STARTPOSITION {start} MAXRESULTS {per_page}"


class QuickBooksClient:
    """Async HTTP client for one QuickBooks company.

    This client handles:
    - Bearer token authentication
    - Entity create, read, update, delete and query calls
    - Translating API faults into BackendError subclasses
    - Request timeout (30 seconds)

    It never retries; each method makes exactly one request.
    """

    TIMEOUT = 30.0  # seconds

    def __init__(
        self,
        access_token: str,
        realm_id: str,
        environment: str = "sandbox",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the QuickBooks client.

        Args:
            access_token: Valid bearer token.
            realm_id: QuickBooks company ID.
            environment: 'sandbox' or 'production'.
            transport: Optional httpx transport (used by tests).
        """
        self.realm_id = realm_id
        self.base_url = f"{get_base_url(environment)}/v3/company/{realm_id}"
        self._http_client = httpx.AsyncClient(
            timeout=self.TIMEOUT,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )

    async def __aenter__(self) -> "QuickBooksClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make one authenticated request.

        Args:
            method: HTTP method (GET, POST).
            path: Path below the company URL (e.g. "/customer/1").
            params: Extra query parameters.
            json: JSON body.

        Returns:
            Decoded JSON response.

        Raises:
            BackendError: On API errors.
            NetworkError: On connection errors.
        """
        query = {"minorversion": MINOR_VERSION}
        if params:
            query.update(params)

        try:
            response = await self._http_client.request(
                method, f"{self.base_url}{path}", params=query, json=json
            )
        except httpx.TimeoutException as e:
            raise NetworkError("Request timed out", e) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network connection failed: {e}", e) from e

        if response.status_code >= 400:
            raise _error_from_response(response)

        data = response.json()
        fault = data.get("Fault")
        if fault:
            raise _error_from_fault(fault, response.status_code)
        return data

    async def create(self, entity: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a record.

        Args:
            entity: Entity name (e.g. "Customer").
            payload: Record attributes.

        Returns:
            The created record as returned by QuickBooks.
        """
        data = await self._request("POST", f"/{entity.lower()}", json=payload)
        return data.get(entity, data)

    async def read(self, entity: str, entity_id: str) -> dict[str, Any]:
        """Fetch one record by ID."""
        data = await self._request("GET", f"/{entity.lower()}/{entity_id}")
        return data.get(entity, data)

    async def update(
        self, entity: str, payload: dict[str, Any], sparse: bool = False
    ) -> dict[str, Any]:
        """Update a record.

        Args:
            entity: Entity name.
            payload: Record attributes including Id and SyncToken.
            sparse: Only update the attributes present in the payload.

        Returns:
            The updated record.
        """
        body = dict(payload)
        if sparse:
            body["sparse"] = True
        data = await self._request("POST", f"/{entity.lower()}", json=body)
        return data.get(entity, data)

    async def delete(self, entity: str, entity_id: str, sync_token: str) -> dict[str, Any]:
        """Permanently delete a record.

        Args:
            entity: Entity name.
            entity_id: Record ID.
            sync_token: Current SyncToken of the record.

        Returns:
            The delete confirmation (Id and status).
        """
        data = await self._request(
            "POST",
            f"/{entity.lower()}",
            params={"operation": "delete"},
            json={"Id": str(entity_id), "SyncToken": str(sync_token)},
        )
        return data.get(entity, data)

    async def query(self, entity: str, compiled: CompiledQuery) -> list[dict[str, Any]]:
        """Run a query statement.

        Args:
            entity: Entity name the statement selects from.
            compiled: Compiled query and pagination options.

        Returns:
            Matching records (empty list when none match).
        """
        data = await self._request("GET", "/query", params={"query": paginate_query(compiled)})
        return data.get("QueryResponse", {}).get(entity, [])


def _error_from_fault(fault: dict[str, Any], status_code: int) -> BackendError:
    errors = fault.get("Error") or [{}]
    first = errors[0]
    message = first.get("Message") or fault.get("type") or f"API error: {status_code}"
    code = first.get("code")
    detail = first.get("Detail")
    if status_code == 404:
        error = NotFoundError(message, code=code)
        error.detail = detail
        return error
    return BackendError(message, status_code=status_code, code=code, detail=detail)


def _error_from_response(response: httpx.Response) -> Exception:
    status = response.status_code
    if status == 401:
        return AuthenticationError()
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        return RateLimitError(retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None)

    try:
        data = response.json()
    except ValueError:
        data = {}

    fault = data.get("Fault") if isinstance(data, dict) else None
    if fault:
        return _error_from_fault(fault, status)
    if status == 404:
        return NotFoundError()
    return BackendError(f"API error: {status}", status_code=status)
