"""QuickBooks Online MCP Server.

A Model Context Protocol server exposing QuickBooks Online customers,
invoices, estimates, bills, vendors, employees, journal entries, bill
payments, purchases, accounts and items as create/get/update/delete/search
tools, with OAuth2 token management.
"""

__version__ = "1.0.0"

from quickbooks_mcp.auth import TokenManager
from quickbooks_mcp.facade import QuickBooksMCP, QuickBooksMCPError

__all__ = ["QuickBooksMCP", "QuickBooksMCPError", "TokenManager", "__version__"]
