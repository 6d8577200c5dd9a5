"""Tests for credential resolution."""

import pytest

from quickbooks_mcp.config import resolve_credentials
from quickbooks_mcp.exceptions import ConfigurationError


class TestResolveCredentials:
    """Test cases for resolve_credentials."""

    def test_secret_missing_without_fallback(self):
        """client_id alone is not enough when nothing else is configured."""
        with pytest.raises(ConfigurationError, match="client_secret"):
            resolve_credentials(client_id="abc", environ={})

    def test_explicit_values_win(self):
        credentials = resolve_credentials(
            client_id="explicit",
            client_secret="secret",
            environ={"QUICKBOOKS_CLIENT_ID": "fallback"},
        )
        assert credentials.client_id == "explicit"

    def test_fallback_values(self):
        credentials = resolve_credentials(environ={
            "QUICKBOOKS_CLIENT_ID": "abc",
            "QUICKBOOKS_CLIENT_SECRET": "xyz",
            "QUICKBOOKS_REFRESH_TOKEN": "refresh",
            "QUICKBOOKS_REALM_ID": "123",
            "QUICKBOOKS_ENVIRONMENT": "Production",
        })
        assert credentials.client_secret == "xyz"
        assert credentials.has_grant
        assert credentials.environment == "production"

    def test_defaults(self):
        credentials = resolve_credentials(client_id="abc", client_secret="xyz", environ={})
        assert credentials.environment == "sandbox"
        assert credentials.redirect_uri == "http://localhost:8000/callback"
        assert not credentials.has_grant

    def test_unknown_environment_rejected(self):
        with pytest.raises(ConfigurationError, match="Unsupported environment"):
            resolve_credentials(client_id="abc", client_secret="xyz", environment="staging", environ={})

    def test_half_grant_ignored(self):
        """A refresh token without a realm ID is not a usable grant."""
        credentials = resolve_credentials(
            client_id="abc", client_secret="xyz", refresh_token="refresh", environ={}
        )
        assert credentials.refresh_token is None
        assert credentials.realm_id is None
