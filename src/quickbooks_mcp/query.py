"""Translate search specifications into QuickBooks query statements.

The QuickBooks Online query language is SQL-like:
``SELECT * FROM Customer WHERE Active = true ORDERBY DisplayName ASC``.
Pagination is not embedded in the statement here; it is returned separately
and applied by the API client.
"""

import logging
from typing import Any

from quickbooks_mcp.exceptions import QueryCompilationError
from quickbooks_mcp.models import CompiledQuery, SearchCriterion, SearchSpecification

logger = logging.getLogger(__name__)

# Default page size used by the API client when no limit is given
DEFAULT_PAGE_SIZE = 20

OPERATORS = ("=", "<", ">", "<=", ">=", "LIKE", "IN")


def escape_string(value: str) -> str:
    """Escape a string for use inside a single-quoted query literal.

    Args:
        value: Raw string value.

    Returns:
        The value with backslashes and single quotes backslash-escaped,
        e.g. ``O'Brien`` becomes ``O\\'Brien``.
    """
    return value.replace("\\", "\\\\").replace("'", "\\'")


def format_value(value: Any) -> str:
    """Render a criterion value as a query literal.

    Strings are quoted and escaped, booleans become ``true``/``false``,
    numbers are unquoted, None becomes ``NULL`` and sequences become a
    parenthesised list for ``IN``. Anything else is quoted as a string.
    """
    if isinstance(value, str):
        return f"'{escape_string(value)}'"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "NULL"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple, set)):
        return "(" + ", ".join(format_value(v) for v in value) + ")"
    return f"'{escape_string(str(value))}'"


def build_condition(criterion: SearchCriterion) -> str:
    """Render one ``<field> <operator> <value>`` condition."""
    operator = (criterion.operator or "=").strip().upper()
    if operator not in OPERATORS:
        logger.debug(f"Passing through unsupported operator: {operator}")
    return f"{criterion.field} {operator} {format_value(criterion.value)}"


def _as_count(name: str, value: Any) -> int | None:
    if value is None:
        return None
    # bool is an int subclass; fractional floats are not counts
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise QueryCompilationError(f"{name} must be an integer, got {value!r}")
    try:
        count = int(value)
    except (TypeError, ValueError) as e:
        raise QueryCompilationError(f"{name} must be an integer, got {value!r}") from e
    if count < 0:
        raise QueryCompilationError(f"{name} must not be negative, got {count}")
    return count


def compile_query(spec: SearchSpecification, entity_name: str) -> CompiledQuery:
    """Compile a search specification for one entity.

    Args:
        spec: Filters, sort and pagination to apply.
        entity_name: QuickBooks entity name (e.g. "Customer").

    Returns:
        CompiledQuery with the statement and pagination options.

    Raises:
        QueryCompilationError: If both sort directions are requested, or
            limit/offset are negative or not integers.

    Example:
        >>> spec = SearchSpecification(
        ...     criteria=[SearchCriterion("Active", True)],
        ...     limit=50,
        ...     sort_ascending_field="DisplayName",
        ... )
        >>> compile_query(spec, "Customer").query_text
        'SELECT * FROM Customer WHERE Active = true ORDERBY DisplayName ASC'
    """
    if spec.sort_ascending_field and spec.sort_descending_field:
        raise QueryCompilationError(
            "Specify either asc or desc, not both: only one sort key is supported"
        )

    parts = [f"SELECT * FROM {entity_name}"]

    conditions = [build_condition(c) for c in spec.criteria if c.field]
    if conditions:
        parts.append("WHERE " + " AND ".join(conditions))

    if spec.sort_ascending_field:
        parts.append(f"ORDERBY {spec.sort_ascending_field} ASC")
    elif spec.sort_descending_field:
        parts.append(f"ORDERBY {spec.sort_descending_field} DESC")

    limit = _as_count("limit", spec.limit)
    offset = _as_count("offset", spec.offset)

    page_number = None
    if offset is not None:
        # Rounds down when offset is not a multiple of the page size
        page_number = offset // (limit or DEFAULT_PAGE_SIZE) + 1

    return CompiledQuery(" ".join(parts), page_size=limit, page_number=page_number)


def compile_search(arguments: Any, entity_name: str) -> CompiledQuery:
    """Compile raw search tool arguments for one entity."""
    return compile_query(SearchSpecification.from_arguments(arguments), entity_name)
