"""Tests for search criteria compilation."""

import pytest

from quickbooks_mcp.exceptions import QueryCompilationError
from quickbooks_mcp.models import SearchCriterion, SearchSpecification
from quickbooks_mcp.query import compile_query, compile_search, escape_string, format_value


class TestFormatValue:
    """Test cases for query literal rendering."""

    def test_strings_quoted(self):
        """Strings should be single-quoted."""
        assert format_value("Acme") == "'Acme'"

    def test_single_quotes_escaped(self):
        """Embedded single quotes must not terminate the literal."""
        assert format_value("O'Brien") == "'O\\'Brien'"
        assert escape_string("it's Bob's") == "it\\'s Bob\\'s"

    def test_backslashes_escaped(self):
        assert escape_string("a\\b") == "a\\\\b"

    def test_booleans_lowercase(self):
        """Booleans render as true/false, not 1/0."""
        assert format_value(True) == "true"
        assert format_value(False) == "false"

    def test_numbers_unquoted(self):
        assert format_value(42) == "42"
        assert format_value(12.5) == "12.5"

    def test_none_is_null(self):
        assert format_value(None) == "NULL"

    def test_list_for_in(self):
        """Lists render as a parenthesised list."""
        assert format_value(["1", "2"]) == "('1', '2')"


class TestCompileQuery:
    """Test cases for compile_query."""

    def test_empty_criteria_selects_everything(self):
        """No criteria compiles to a bare SELECT without WHERE."""
        compiled = compile_query(SearchSpecification(), "Customer")
        assert compiled.query_text == "SELECT * FROM Customer"
        assert compiled.pagination == {}

    def test_active_customers_sorted_with_limit(self):
        """Equality filter, ascending sort and page size."""
        spec = SearchSpecification.from_arguments({
            "criteria": [{"field": "Active", "value": True, "operator": "="}],
            "limit": 50,
            "asc": "DisplayName",
        })
        compiled = compile_query(spec, "Customer")
        assert compiled.query_text == (
            "SELECT * FROM Customer WHERE Active = true ORDERBY DisplayName ASC"
        )
        assert compiled.pagination == {"page_size": 50}

    def test_like_filter(self):
        spec = SearchSpecification.from_arguments({
            "criteria": [{"field": "DisplayName", "value": "Acme%", "operator": "LIKE"}],
        })
        compiled = compile_query(spec, "Customer")
        assert compiled.query_text == "SELECT * FROM Customer WHERE DisplayName LIKE 'Acme%'"

    def test_conditions_joined_with_and(self):
        spec = SearchSpecification(criteria=[
            SearchCriterion("Active", True),
            SearchCriterion("Balance", 100, ">"),
        ])
        compiled = compile_query(spec, "Invoice")
        assert compiled.query_text == "SELECT * FROM Invoice WHERE Active = true AND Balance > 100"

    def test_operator_defaults_to_equals(self):
        spec = SearchSpecification.from_arguments({"criteria": [{"field": "Id", "value": "5"}]})
        assert compile_query(spec, "Bill").query_text == "SELECT * FROM Bill WHERE Id = '5'"

    def test_operator_case_normalised(self):
        spec = SearchSpecification(criteria=[SearchCriterion("Name", "A%", "like")])
        assert compile_query(spec, "Item").query_text == "SELECT * FROM Item WHERE Name LIKE 'A%'"

    def test_in_operator(self):
        spec = SearchSpecification(criteria=[SearchCriterion("Id", ["1", "2"], "IN")])
        assert compile_query(spec, "Vendor").query_text == (
            "SELECT * FROM Vendor WHERE Id IN ('1', '2')"
        )

    def test_descending_sort(self):
        spec = SearchSpecification(sort_descending_field="TxnDate")
        assert compile_query(spec, "Bill").query_text == "SELECT * FROM Bill ORDERBY TxnDate DESC"

    def test_both_sort_directions_rejected(self):
        """asc and desc together cannot form one ORDERBY clause."""
        spec = SearchSpecification(sort_ascending_field="A", sort_descending_field="B")
        with pytest.raises(QueryCompilationError, match="either asc or desc"):
            compile_query(spec, "Customer")

    def test_entries_without_field_skipped(self):
        """Malformed criteria entries are skipped, not fatal."""
        compiled = compile_search(
            {"criteria": [{"value": "x"}, "junk", {"field": "Active", "value": False}]},
            "Customer",
        )
        assert compiled.query_text == "SELECT * FROM Customer WHERE Active = false"


class TestPagination:
    """Test cases for offset to page number conversion."""

    @pytest.mark.parametrize("offset,page", [(0, 1), (10, 2), (20, 3), (90, 10)])
    def test_offset_multiple_of_limit(self, offset, page):
        """Offsets that are multiples of the limit map to whole pages."""
        compiled = compile_search({"limit": 10, "offset": offset}, "Customer")
        assert compiled.pagination == {"page_size": 10, "page_number": page}

    def test_offset_rounds_down(self):
        """Offsets between pages round down to the containing page."""
        compiled = compile_search({"limit": 20, "offset": 30}, "Customer")
        assert compiled.page_number == 2

    def test_offset_without_limit_uses_default_page_size(self):
        compiled = compile_search({"offset": 40}, "Customer")
        assert compiled.pagination == {"page_number": 3}

    def test_negative_offset_rejected(self):
        with pytest.raises(QueryCompilationError, match="offset must not be negative"):
            compile_search({"offset": -1}, "Customer")

    def test_non_integer_limit_rejected(self):
        with pytest.raises(QueryCompilationError, match="limit must be an integer"):
            compile_search({"limit": "many"}, "Customer")

    @pytest.mark.parametrize("value", [True, 10.7])
    def test_bool_and_fractional_limit_rejected(self, value):
        """Values int() would silently coerce are not accepted as counts."""
        with pytest.raises(QueryCompilationError, match="limit must be an integer"):
            compile_search({"limit": value}, "Customer")

    def test_whole_float_accepted(self):
        """JSON clients may send 10.0 for 10."""
        assert compile_search({"limit": 10.0, "offset": 20.0}, "Customer").pagination == {
            "page_size": 10, "page_number": 3,
        }


class TestArgumentForms:
    """Test cases for the accepted search argument shapes."""

    def test_flat_mapping_is_equality_filters(self):
        compiled = compile_search({"DisplayName": "Acme", "Active": True}, "Customer")
        assert compiled.query_text == (
            "SELECT * FROM Customer WHERE DisplayName = 'Acme' AND Active = true"
        )

    def test_list_with_special_fields(self):
        """Special field names in a criteria list set sort and paging."""
        compiled = compile_search(
            [
                {"field": "Active", "value": True},
                {"field": "desc", "value": "MetaData.LastUpdatedTime"},
                {"field": "limit", "value": 5},
                {"field": "offset", "value": 10},
            ],
            "Customer",
        )
        assert compiled.query_text == (
            "SELECT * FROM Customer WHERE Active = true ORDERBY MetaData.LastUpdatedTime DESC"
        )
        assert compiled.pagination == {"page_size": 5, "page_number": 3}

    def test_filters_alias(self):
        compiled = compile_search({"filters": [{"field": "Active", "value": True}]}, "Vendor")
        assert compiled.query_text == "SELECT * FROM Vendor WHERE Active = true"

    def test_empty_criteria_list_with_options(self):
        """An empty criteria list is not treated as a flat mapping."""
        compiled = compile_search({"criteria": [], "asc": "Name"}, "Item")
        assert compiled.query_text == "SELECT * FROM Item ORDERBY Name ASC"
