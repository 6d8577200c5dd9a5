"""Prompt templates offered through prompts/list and prompts/get."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from quickbooks_mcp.exceptions import UnknownOperationError


@dataclass(frozen=True)
class Prompt:
    """A named prompt template.

    Args:
        name: Prompt name.
        description: What the prompt helps with.
        render: Builds the prompt text from its arguments.
        arguments: Argument descriptors ({name, description, required}).
    """

    name: str
    description: str
    render: Callable[..., str]
    arguments: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to an MCP ``prompts/list`` entry."""
        return {
            "name": self.name,
            "description": self.description,
            "arguments": self.arguments,
        }


def _search_records(entity: str = "Customer") -> str:
    return f"""Search for {entity} records in QuickBooks Online.

Use the matching search tool (e.g. search_customers for Customer) with:
- criteria: a list of {{"field", "value", "operator"}} filters, combined with AND
- operator: one of =, <, >, <=, >=, LIKE, IN (defaults to =)
- limit / offset: page size and number of records to skip
- asc or desc: a single field to sort by (not both)

Example: find active {entity} records whose name starts with "Acme":
criteria=[{{"field": "Active", "value": true}},
          {{"field": "DisplayName", "value": "Acme%", "operator": "LIKE"}}]
"""


def _query_reference() -> str:
    return """## QuickBooks Query Reference

Search tools compile their arguments into a query such as:
SELECT * FROM Customer WHERE Active = true ORDERBY DisplayName ASC

**Values:**
- strings are quoted, quotes inside them are escaped
- booleans are true / false, numbers are unquoted, null is NULL
- a list value with IN becomes ('a', 'b')

**Paging:** limit sets the page size; offset is rounded down to a whole page
(offset 30 with limit 20 returns the second page).

**Updates** must include Id and the current SyncToken; fetch the record first
to read it. Customers and vendors are deactivated, not deleted.
"""


PROMPTS: tuple[Prompt, ...] = (
    Prompt(
        name="search-records",
        description="Search for records of a QuickBooks entity",
        render=_search_records,
        arguments=[{
            "name": "entity",
            "description": "Entity name, e.g. Customer or Invoice",
            "required": False,
        }],
    ),
    Prompt(
        name="query-reference",
        description="Quick reference for search criteria, paging and updates",
        render=_query_reference,
    ),
)


def get_prompt(name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
    """Render a prompt by name.

    Args:
        name: Prompt name.
        arguments: Prompt arguments.

    Returns:
        MCP ``prompts/get`` result with description and messages.

    Raises:
        UnknownOperationError: If no prompt has this name.
    """
    for prompt in PROMPTS:
        if prompt.name == name:
            accepted = {a["name"] for a in prompt.arguments}
            kwargs = {k: v for k, v in (arguments or {}).items() if k in accepted and v}
            return {
                "description": prompt.description,
                "messages": [{
                    "role": "user",
                    "content": {"type": "text", "text": prompt.render(**kwargs)},
                }],
            }
    raise UnknownOperationError("prompt", name)
