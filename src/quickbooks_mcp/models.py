"""Data models for the QuickBooks MCP server.

This module contains dataclasses representing the state used throughout the
application: credentials and tokens, the interactive authorization session,
search specifications with their compiled queries, and operation results.
"""

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

DEFAULT_TOKEN_LIFETIME = 3600

# Seconds before expiry at which a token is already treated as expired
EXPIRY_BUFFER = 30

ENVIRONMENTS = ("sandbox", "production")


@dataclass
class CredentialSet:
    """OAuth2 credentials for one QuickBooks company (realm).

    Args:
        client_id: Intuit app client ID.
        client_secret: Intuit app client secret.
        refresh_token: Long-lived refresh token (100 day lifetime), if known.
        realm_id: QuickBooks company ID the tokens grant access to.
        environment: 'sandbox' or 'production'.
        redirect_uri: OAuth2 callback URL registered with the Intuit app.
    """

    client_id: str
    client_secret: str
    refresh_token: str | None = None
    realm_id: str | None = None
    environment: str = "sandbox"
    redirect_uri: str = "http://localhost:8000/callback"

    @property
    def has_grant(self) -> bool:
        """Whether both halves of the (refresh_token, realm_id) pair are set."""
        return bool(self.refresh_token) and bool(self.realm_id)

    def clear_grant(self) -> None:
        """Forget the refresh token and realm, forcing a new authorization."""
        self.refresh_token = None
        self.realm_id = None


@dataclass
class AccessToken:
    """Short-lived bearer token cached by the token manager.

    Never persisted; recomputed whenever absent or expired.
    """

    bearer_value: str
    expires_at: datetime

    @classmethod
    def issued_now(cls, bearer_value: str, expires_in: int | None) -> "AccessToken":
        """Create a token expiring ``expires_in`` seconds from now.

        Args:
            bearer_value: The access token string.
            expires_in: Lifetime reported by the token endpoint, or None.

        Returns:
            AccessToken with ``expires_at`` computed from the current time.
        """
        lifetime = int(expires_in) if expires_in else DEFAULT_TOKEN_LIFETIME
        return cls(bearer_value, datetime.now() + timedelta(seconds=lifetime))

    def is_expired(self, now: datetime | None = None, buffer_seconds: int = EXPIRY_BUFFER) -> bool:
        """Check whether the token is expired or expires within ``buffer_seconds``."""
        return (now or datetime.now()) + timedelta(seconds=buffer_seconds) >= self.expires_at


@dataclass
class TokenGrant:
    """Decoded response of the Intuit token endpoint.

    Args:
        access_token: New bearer token.
        refresh_token: Refresh token (Intuit may rotate it on refresh).
        expires_in: Seconds until the access token expires.
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenGrant":
        """Create TokenGrant from a token endpoint JSON body."""
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
        )


@dataclass
class AuthorizationSession:
    """Transient state of one interactive authorization flow.

    The callback handler thread fills in the code and realm, then waits on
    ``completed`` until the event loop has exchanged the code and recorded
    the outcome in ``error``.
    """

    listener_port: int
    state: str
    pending: bool = True
    obtained_code: str | None = None
    obtained_realm_id: str | None = None
    error: str | None = None
    received: threading.Event = field(default_factory=threading.Event)
    completed: threading.Event = field(default_factory=threading.Event)

    def deliver(
        self,
        code: str | None,
        realm_id: str | None,
        state: str | None,
        error: str | None = None,
    ) -> None:
        """Record the parameters received on the callback."""
        if error:
            self.error = f"Authorization denied: {error}"
        elif not code or not realm_id:
            self.error = "Callback is missing the authorization code or realmId"
        elif state != self.state:
            self.error = "State mismatch - possible CSRF attack"
        else:
            self.obtained_code = code
            self.obtained_realm_id = realm_id
        self.received.set()

    def finish(self, error: str | None = None) -> None:
        """Mark the flow as resolved, unblocking the callback handler."""
        if error:
            self.error = error
        self.pending = False
        self.completed.set()


@dataclass
class SearchCriterion:
    """One filter condition of a search.

    Args:
        field: Entity field name (e.g. "DisplayName").
        value: Value to compare against.
        operator: One of =, <, >, <=, >=, LIKE, IN.
    """

    field: str
    value: Any
    operator: str = "="


@dataclass
class SearchSpecification:
    """Structured filter, sort and pagination request for one entity."""

    criteria: list[SearchCriterion] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    sort_ascending_field: str | None = None
    sort_descending_field: str | None = None

    @classmethod
    def from_arguments(cls, arguments: Any) -> "SearchSpecification":
        """Build a specification from tool arguments.

        Accepts the search tool shape ``{criteria, limit, offset, asc, desc}``,
        a ``filters`` alias for ``criteria``, a flat mapping of equality
        filters, or a bare list of criteria in which the field names ``asc``,
        ``desc``, ``limit`` and ``offset`` carry sort and paging settings.
        Entries without a field are skipped.

        Args:
            arguments: Mapping or list received from the caller.

        Returns:
            SearchSpecification instance.
        """
        if isinstance(arguments, list):
            return cls._from_list(arguments)
        if not isinstance(arguments, dict):
            return cls()

        spec = cls(
            limit=arguments.get("limit"),
            offset=arguments.get("offset"),
            sort_ascending_field=arguments.get("asc"),
            sort_descending_field=arguments.get("desc"),
        )
        entries = arguments.get("criteria") or arguments.get("filters")
        if entries:
            spec.criteria = [c for c in map(_criterion_from, entries) if c]
        elif "criteria" not in arguments and "filters" not in arguments:
            reserved = {"criteria", "filters", "asc", "desc", "limit", "offset"}
            spec.criteria = [
                SearchCriterion(str(key), value)
                for key, value in arguments.items()
                if key not in reserved
            ]
        return spec

    @classmethod
    def _from_list(cls, entries: list[Any]) -> "SearchSpecification":
        spec = cls()
        for entry in entries:
            criterion = _criterion_from(entry)
            if criterion is None:
                continue
            key = criterion.field.lower()
            if key == "asc":
                spec.sort_ascending_field = criterion.value
            elif key == "desc":
                spec.sort_descending_field = criterion.value
            elif key == "limit":
                spec.limit = criterion.value
            elif key == "offset":
                spec.offset = criterion.value
            else:
                spec.criteria.append(criterion)
        return spec


def _criterion_from(entry: Any) -> SearchCriterion | None:
    if not isinstance(entry, dict):
        return None
    name = entry.get("field")
    if not name:
        return None
    return SearchCriterion(str(name), entry.get("value"), entry.get("operator") or "=")


@dataclass
class CompiledQuery:
    """Query text plus pagination options passed alongside it.

    Args:
        query_text: QuickBooks query, e.g. "SELECT * FROM Customer WHERE ...".
        page_size: Records per page, if limited.
        page_number: 1-based page number, if an offset was given.
    """

    query_text: str
    page_size: int | None = None
    page_number: int | None = None

    @property
    def pagination(self) -> dict[str, int]:
        """Pagination options, omitting unset values."""
        result = {}
        if self.page_size is not None:
            result["page_size"] = self.page_size
        if self.page_number is not None:
            result["page_number"] = self.page_number
        return result


@dataclass
class OperationResult:
    """Structured output of one tool call.

    Args:
        content: Text blocks returned to the caller.
        is_error: Whether the call failed.
        error: Message and code of the failure, for error results.
    """

    content: list[str]
    is_error: bool = False
    error: dict[str, Any] | None = None

    @classmethod
    def records(cls, label: str, records: list[dict[str, Any]]) -> "OperationResult":
        """Build a success result: a label block then one JSON block per record."""
        blocks = [label]
        blocks.extend(json.dumps(r, indent=2, default=str) for r in records)
        return cls(blocks)

    @classmethod
    def failure(cls, message: str, code: str | None = None, **details: Any) -> "OperationResult":
        """Build an error result carrying a single message block.

        Extra ``details`` (e.g. ``action``, ``retry_after``) are added to the
        structured error next to the message and code.
        """
        error = {"message": message, "code": code}
        error.update(details)
        return cls([message], is_error=True, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to an MCP ``tools/call`` result."""
        result: dict[str, Any] = {
            "content": [{"type": "text", "text": text} for text in self.content],
            "isError": self.is_error,
        }
        if self.error is not None:
            result["structuredContent"] = {"error": self.error}
        return result
