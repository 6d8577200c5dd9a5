"""Configuration resolution for QuickBooks credentials.

Every setting is resolved once, at construction: an explicit argument wins,
then the fallback environment (process environment plus ``.env``), then a
default where one exists. Missing client credentials fail immediately.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from dotenv import load_dotenv

from quickbooks_mcp.exceptions import ConfigurationError
from quickbooks_mcp.models import ENVIRONMENTS, CredentialSet

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_URI = "http://localhost:8000/callback"
DEFAULT_ENVIRONMENT = "sandbox"

ENV_CLIENT_ID = "QUICKBOOKS_CLIENT_ID"
ENV_CLIENT_SECRET = "QUICKBOOKS_CLIENT_SECRET"
ENV_REFRESH_TOKEN = "QUICKBOOKS_REFRESH_TOKEN"
ENV_REALM_ID = "QUICKBOOKS_REALM_ID"
ENV_ENVIRONMENT = "QUICKBOOKS_ENVIRONMENT"
ENV_REDIRECT_URI = "QUICKBOOKS_REDIRECT_URI"
ENV_FILE = "QUICKBOOKS_ENV_FILE"
ENV_TOKEN_STORE = "QUICKBOOKS_TOKEN_STORE"
ENV_LOG_LEVEL = "QUICKBOOKS_LOG_LEVEL"


def default_environ() -> Mapping[str, str]:
    """Load ``.env`` into the process environment and return it."""
    load_dotenv(env_file_path())
    return os.environ


def env_file_path(environ: Mapping[str, str] | None = None) -> Path:
    """Path of the ``KEY=value`` file tokens are persisted to.

    Args:
        environ: Mapping to read ``QUICKBOOKS_ENV_FILE`` from.

    Returns:
        Configured path, or ``.env`` in the working directory.
    """
    if environ is None:
        environ = os.environ
    return Path(environ.get(ENV_FILE) or ".env")


def resolve_credentials(
    client_id: str | None = None,
    client_secret: str | None = None,
    refresh_token: str | None = None,
    realm_id: str | None = None,
    environment: str | None = None,
    redirect_uri: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> CredentialSet:
    """Resolve a credential set from explicit values and fallback settings.

    Args:
        client_id: Intuit client ID (or QUICKBOOKS_CLIENT_ID).
        client_secret: Intuit client secret (or QUICKBOOKS_CLIENT_SECRET).
        refresh_token: Refresh token (or QUICKBOOKS_REFRESH_TOKEN).
        realm_id: Company ID (or QUICKBOOKS_REALM_ID).
        environment: 'sandbox' or 'production' (or QUICKBOOKS_ENVIRONMENT).
        redirect_uri: OAuth2 callback URL (or QUICKBOOKS_REDIRECT_URI).
        environ: Fallback settings. Defaults to the process environment with
            ``.env`` loaded; pass an empty mapping to disable fallbacks.

    Returns:
        CredentialSet.

    Raises:
        ConfigurationError: If client ID or secret is missing, or the
            environment name is not recognised.
    """
    if environ is None:
        environ = default_environ()

    client_id = client_id or environ.get(ENV_CLIENT_ID)
    client_secret = client_secret or environ.get(ENV_CLIENT_SECRET)
    if not client_id or not client_secret:
        raise ConfigurationError(
            "client_id and client_secret must be provided or set in environment "
            f"variables ({ENV_CLIENT_ID}, {ENV_CLIENT_SECRET})"
        )

    environment = (environment or environ.get(ENV_ENVIRONMENT) or DEFAULT_ENVIRONMENT).lower()
    if environment not in ENVIRONMENTS:
        raise ConfigurationError(
            f"Unsupported environment: {environment}. Use 'sandbox' or 'production'.",
            action=f"Set {ENV_ENVIRONMENT} to 'sandbox' or 'production'",
        )

    credentials = CredentialSet(
        client_id=client_id,
        client_secret=client_secret,
        refresh_token=refresh_token or environ.get(ENV_REFRESH_TOKEN) or None,
        realm_id=realm_id or environ.get(ENV_REALM_ID) or None,
        environment=environment,
        redirect_uri=redirect_uri or environ.get(ENV_REDIRECT_URI) or DEFAULT_REDIRECT_URI,
    )
    if not credentials.has_grant and (credentials.refresh_token or credentials.realm_id):
        logger.warning("Only one of refresh token and realm ID is configured; ignoring it")
        credentials.clear_grant()
    return credentials
