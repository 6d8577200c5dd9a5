"""OAuth2 authentication for the QuickBooks Online API.

This module handles the OAuth2 authorization code flow (with a short-lived
local callback listener), refresh-before-use of access tokens, and
persistence of the long-lived refresh token and realm ID.

The pieces are composed by TokenManager:
- TokenExchanger: the network calls to the Intuit token endpoint
- TokenStore: where a newly obtained refresh token and realm ID are saved
- CallbackListener: the local HTTP server receiving the authorization code
"""

import asyncio
import html
import ipaddress
import json
import logging
import os
import secrets
import ssl
import tempfile
import threading
import webbrowser
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from dotenv import dotenv_values

from quickbooks_mcp.config import (
    ENV_CLIENT_ID,
    ENV_FILE,
    ENV_REALM_ID,
    ENV_REFRESH_TOKEN,
    ENV_TOKEN_STORE,
    env_file_path,
    resolve_credentials,
)
from quickbooks_mcp.exceptions import (
    AuthorizationError,
    ConfigurationError,
    QuickBooksError,
    TokenRefreshError,
)
from quickbooks_mcp.models import AccessToken, AuthorizationSession, CredentialSet, TokenGrant

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
ACCOUNTING_SCOPE = "com.intuit.quickbooks.accounting"

STATE_DIR = Path.home() / ".quickbooks_mcp"


class TokenStore(ABC):
    """Abstract base class for refresh token persistence."""

    @abstractmethod
    async def load(self) -> tuple[str | None, str | None]:
        """Load the stored (refresh_token, realm_id) pair.

        Returns:
            Tuple of refresh token and realm ID, either may be None.
        """

    @abstractmethod
    async def save(self, refresh_token: str, realm_id: str) -> None:
        """Persist the refresh token and realm ID.

        Args:
            refresh_token: Refresh token to save.
            realm_id: Realm ID to save.
        """


def update_env_lines(lines: list[str], name: str, value: str) -> list[str]:
    """Set ``name=value`` in a list of ``KEY=value`` lines.

    Replaces the first line starting with ``name=`` in place, otherwise
    appends a new line. Other lines are left untouched.
    """
    entry = f"{name}={value}"
    for index, line in enumerate(lines):
        if line.startswith(f"{name}="):
            lines[index] = entry
            return lines
    lines.append(entry)
    return lines


class EnvFileTokenStore(TokenStore):
    """Token storage in a flat ``KEY=value`` file such as ``.env``.

    A file that names a QUICKBOOKS_CLIENT_ID belongs to that app: stores for
    another client ID neither read its tokens nor overwrite them.
    """

    # Shared by every store in the process so writers never interleave
    _write_lock = threading.Lock()

    def __init__(self, path: Path | None = None, client_id: str | None = None) -> None:
        """Initialize env file storage.

        Args:
            path: File to update. Defaults to QUICKBOOKS_ENV_FILE or ./.env
            client_id: Client ID of the tenant the tokens belong to.
        """
        self.path = Path(path) if path is not None else env_file_path()
        self.client_id = client_id

    def _owned_by_other(self, values: Mapping[str, str | None]) -> bool:
        owner = values.get(ENV_CLIENT_ID)
        return bool(self.client_id and owner and owner != self.client_id)

    async def load(self) -> tuple[str | None, str | None]:
        """Read the refresh token and realm ID from the file."""
        if not self.path.exists():
            return None, None
        values = dotenv_values(self.path)
        if self._owned_by_other(values):
            logger.debug(f"{self.path} holds tokens of another client ID, not loading them")
            return None, None
        return values.get(ENV_REFRESH_TOKEN) or None, values.get(ENV_REALM_ID) or None

    async def save(self, refresh_token: str, realm_id: str) -> None:
        """Update the refresh token and realm ID lines of the file."""
        await asyncio.to_thread(self._write, refresh_token, realm_id)

    def _write(self, refresh_token: str, realm_id: str) -> None:
        with self._write_lock:
            lines: list[str] = []
            if self.path.exists():
                if self._owned_by_other(dotenv_values(self.path)):
                    logger.warning(f"{self.path} belongs to another client ID, tokens not saved")
                    return
                lines = self.path.read_text().splitlines()

            update_env_lines(lines, ENV_REFRESH_TOKEN, refresh_token)
            update_env_lines(lines, ENV_REALM_ID, realm_id)

            directory = self.path.parent
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".env.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as handle:
                    handle.write("\n".join(lines) + "\n")
                if self.path.exists():
                    os.chmod(tmp_name, self.path.stat().st_mode & 0o777)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        logger.debug(f"Tokens saved to {self.path}")


class KeyringTokenStore(TokenStore):
    """Token storage using the system keyring (macOS Keychain, etc.)."""

    SERVICE_NAME = "quickbooks-mcp"
    DEFAULT_ACCOUNT = "oauth_tokens"

    def __init__(self, account_name: str | None = None) -> None:
        """Initialize keyring storage.

        Args:
            account_name: Keyring entry name. Pass the tenant's client ID so
                each tenant keeps its own entry.
        """
        self.account_name = account_name or self.DEFAULT_ACCOUNT

    async def load(self) -> tuple[str | None, str | None]:
        """Load the refresh token and realm ID from the keyring."""
        import keyring

        data = keyring.get_password(self.SERVICE_NAME, self.account_name)
        if data is None:
            return None, None
        stored = json.loads(data)
        return stored.get("refresh_token"), stored.get("realm_id")

    async def save(self, refresh_token: str, realm_id: str) -> None:
        """Save the refresh token and realm ID to the keyring."""
        import keyring

        data = json.dumps({"refresh_token": refresh_token, "realm_id": realm_id})
        keyring.set_password(self.SERVICE_NAME, self.account_name, data)
        logger.debug("Tokens saved to keyring")


class NullTokenStore(TokenStore):
    """Keeps nothing; tokens live only for the current process."""

    async def load(self) -> tuple[str | None, str | None]:
        return None, None

    async def save(self, refresh_token: str, realm_id: str) -> None:
        logger.debug("Token persistence disabled, not saving tokens")


def get_storage(
    environ: Mapping[str, str] | None = None,
    client_id: str | None = None,
) -> TokenStore:
    """Get the token storage backend selected by QUICKBOOKS_TOKEN_STORE.

    Args:
        environ: Settings mapping. Defaults to the process environment.
        client_id: Tenant the store is for; keyring entries and env files
            are scoped to it.

    Returns:
        TokenStore instance ('env' file by default, 'keyring' or 'none').
    """
    if environ is None:
        environ = os.environ
    kind = (environ.get(ENV_TOKEN_STORE) or "env").lower()
    if kind == "keyring":
        return KeyringTokenStore(client_id)
    if kind == "none":
        return NullTokenStore()
    return EnvFileTokenStore(env_file_path(environ), client_id)


CERT_LIFETIME = timedelta(days=90)


def _cert_is_current(cert_path: Path, key_path: Path) -> bool:
    if not (cert_path.exists() and key_path.exists()):
        return False
    try:
        cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
    except ValueError:
        logger.info(f"Unreadable certificate at {cert_path}, issuing a new one")
        return False
    # Renew a day early so a running flow never sees it expire
    return cert.not_valid_after_utc - timedelta(days=1) > datetime.now(timezone.utc)


def issue_localhost_cert(cert_path: Path, key_path: Path) -> None:
    """Write a self-signed certificate for localhost and 127.0.0.1.

    Uses an EC P-256 key; the key file is readable by the owner only.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    issued = datetime.now(timezone.utc)
    alt_names = x509.SubjectAlternativeName([
        x509.DNSName("localhost"),
        x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
    ])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(issued - timedelta(minutes=5))
        .not_valid_after(issued + CERT_LIFETIME)
        .add_extension(alt_names, critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    key_path.chmod(0o600)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    logger.info(f"Issued localhost certificate {cert_path}")


def get_or_create_ssl_cert(storage_dir: Path | None = None) -> tuple[Path, Path]:
    """Return the localhost certificate, issuing one if missing or expiring.

    Used when the redirect URI is an ``https://localhost`` URL.

    Args:
        storage_dir: Directory holding ``localhost.crt`` and ``localhost.key``.
            Defaults to ~/.quickbooks_mcp

    Returns:
        Tuple of (cert_path, key_path).
    """
    storage_dir = storage_dir or STATE_DIR
    storage_dir.mkdir(parents=True, exist_ok=True)
    cert_path = storage_dir / "localhost.crt"
    key_path = storage_dir / "localhost.key"
    if not _cert_is_current(cert_path, key_path):
        issue_localhost_cert(cert_path, key_path)
    return cert_path, key_path


class TokenExchanger:
    """Calls the Intuit token endpoint for one app registration."""

    TIMEOUT = 30.0  # seconds

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        token_url: str = TOKEN_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the token exchanger.

        Args:
            client_id: Intuit client ID.
            client_secret: Intuit client secret.
            redirect_uri: Redirect URI used to obtain authorization codes.
            token_url: Token endpoint URL.
            transport: Optional httpx transport (used by tests).
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_url = token_url
        self.transport = transport

    async def _post(self, data: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.TIMEOUT, transport=self.transport) as client:
            return await client.post(
                self.token_url,
                data=data,
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
            )

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the OAuth2 callback.

        Returns:
            TokenGrant with access and refresh tokens.

        Raises:
            AuthorizationError: If the exchange fails.
        """
        try:
            response = await self._post({
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            })
        except httpx.RequestError as e:
            raise AuthorizationError(f"Token exchange failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Token exchange failed: {response.status_code}")
            raise AuthorizationError(
                f"Failed to exchange authorization code for tokens "
                f"({response.status_code}: {_oauth_error(response)})"
            )
        return TokenGrant.from_dict(response.json())

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Args:
            refresh_token: Current refresh token.

        Returns:
            TokenGrant with the new access token.

        Raises:
            TokenRefreshError: Non-retryable if the backend rejected the
                refresh token, retryable on network or server failures.
        """
        try:
            response = await self._post({
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            })
        except httpx.RequestError as e:
            raise TokenRefreshError(
                f"Network error while refreshing token: {e}", retryable=True, original_error=e
            ) from e

        if response.status_code in (400, 401):
            logger.error(f"Token refresh rejected: {response.status_code}")
            raise TokenRefreshError(
                f"Refresh token rejected by QuickBooks: {_oauth_error(response)}",
                retryable=False,
            )
        if response.status_code != 200:
            logger.error(f"Token refresh failed: {response.status_code}")
            raise TokenRefreshError(
                f"Token endpoint returned {response.status_code}", retryable=True
            )
        return TokenGrant.from_dict(response.json())


def _oauth_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or "no details"
    return data.get("error_description") or data.get("error") or "no details"


SUCCESS_PAGE = "Successfully connected to QuickBooks! You can close this window now."
ERROR_PAGE = "Error connecting to QuickBooks. Please check the console for more details."


class CallbackHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the OAuth2 callback."""

    server: "CallbackServer"

    # Upper bound on how long the browser waits for the token exchange
    EXCHANGE_WAIT = 60.0

    def log_message(self, format: str, *args: Any) -> None:
        """Route HTTP server logging to the module logger."""
        logger.debug("Callback listener: " + format, *args)

    def do_GET(self) -> None:
        """Handle GET request from the OAuth2 callback."""
        parsed = urlparse(self.path)
        session = self.server.session

        if parsed.path != self.server.callback_path or not session.pending:
            self._send(404, "text/plain", b"Not Found")
            return

        params = parse_qs(parsed.query)

        def first(name: str) -> str | None:
            return params.get(name, [None])[0]

        session.deliver(
            code=first("code"),
            realm_id=first("realmId"),
            state=first("state"),
            error=first("error"),
        )

        if not session.completed.wait(timeout=self.EXCHANGE_WAIT):
            self._send_page(500, ERROR_PAGE, success=False)
            return

        if session.error:
            self._send_page(500, ERROR_PAGE, success=False)
        else:
            self._send_page(200, SUCCESS_PAGE, success=True)

    def _send(self, status: int, content_type: str, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_page(self, status: int, message: str, success: bool) -> None:
        """Send HTML response to browser."""
        color = "#2E8B57" if success else "#d32f2f"
        background = "#f5f5f5" if success else "#fff0f0"
        page = f"""<!DOCTYPE html>
<html>
<head><title>QuickBooks Authorization</title></head>
<body style="font-family: Arial, sans-serif; text-align: center; padding-top: 50px; background-color: {background};">
    <h2 style="color: {color};">{html.escape(message)}</h2>
</body>
</html>
"""
        self._send(status, "text/html; charset=utf-8", page.encode())


class CallbackServer(HTTPServer):
    """HTTPServer carrying the authorization session it serves."""

    def __init__(self, address: tuple[str, int], session: AuthorizationSession, callback_path: str) -> None:
        self.session = session
        self.callback_path = callback_path
        super().__init__(address, CallbackHandler)


class CallbackListener:
    """Short-lived local HTTP listener for the OAuth2 redirect.

    Binds on construction so that a busy port fails fast, then serves from
    a daemon thread between ``start()`` and ``shutdown()``.
    """

    def __init__(
        self,
        session: AuthorizationSession,
        host: str = "localhost",
        port: int = 8000,
        path: str = "/callback",
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        """Bind the listener.

        Raises:
            OSError: If the port cannot be bound.
        """
        self.server = CallbackServer((host, port), session, path)
        if ssl_context is not None:
            self.server.socket = ssl_context.wrap_socket(self.server.socket, server_side=True)
        self._thread: threading.Thread | None = None
        self._closed = False

    @property
    def port(self) -> int:
        return self.server.server_address[1]

    @classmethod
    def for_redirect(
        cls,
        session: AuthorizationSession,
        redirect_uri: str,
        cert_dir: Path | None = None,
    ) -> "CallbackListener":
        """Create a listener matching the host, port and path of a redirect URI.

        An ``https://localhost`` redirect is served over TLS with the
        certificate from ``get_or_create_ssl_cert(cert_dir)``.
        """
        parsed = urlparse(redirect_uri)
        host = parsed.hostname or "localhost"
        if host not in ("localhost", "127.0.0.1"):
            # External redirect (e.g. a tunnel) forwarding to a local port
            host = "localhost"
        port = parsed.port or session.listener_port

        ssl_context = None
        if parsed.scheme == "https" and parsed.hostname in ("localhost", "127.0.0.1"):
            cert_path, key_path = get_or_create_ssl_cert(cert_dir)
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            ssl_context.load_cert_chain(certfile=cert_path, keyfile=key_path)
        return cls(session, host, port, parsed.path or "/callback", ssl_context)

    def start(self) -> None:
        """Serve requests from a daemon thread."""
        self._thread = threading.Thread(
            target=self.server.serve_forever,
            kwargs={"poll_interval": 0.2},
            name="quickbooks-oauth-callback",
            daemon=True,
        )
        self._thread.start()

    def shutdown(self) -> None:
        """Stop serving and release the port."""
        if self._closed:
            return
        self._closed = True
        if self._thread is not None:
            self.server.shutdown()
            self._thread.join(timeout=5)
        self.server.server_close()


ListenerFactory = Callable[[AuthorizationSession, str], CallbackListener]


class TokenManager:
    """Guarantees callers a valid bearer token.

    States: unauthenticated (no refresh token or realm) triggers the
    interactive flow; an expired or missing access token triggers a
    refresh; otherwise the cached token is served without network calls.
    """

    AUTH_TIMEOUT = 300.0  # seconds to wait for the user to consent
    POLL_INTERVAL = 0.5
    SHUTDOWN_GRACE = 1.0  # lets the success page finish rendering

    def __init__(
        self,
        credentials: CredentialSet,
        store: TokenStore | None = None,
        exchanger: TokenExchanger | None = None,
        listener_factory: ListenerFactory | None = None,
        open_browser: Callable[[str], Any] | None = None,
        auth_timeout: float | None = None,
    ) -> None:
        """Initialize the token manager.

        Args:
            credentials: Credential set for one QuickBooks company.
            store: Where new refresh tokens are persisted.
            exchanger: Token endpoint client.
            listener_factory: Creates the callback listener for a session.
            open_browser: Callable opening a URL in the user's browser.
            auth_timeout: Seconds to wait for the interactive flow.

        Raises:
            ConfigurationError: If client ID or secret is missing.
        """
        if not credentials.client_id or not credentials.client_secret:
            raise ConfigurationError("TokenManager requires a client_id and client_secret")

        self._credentials = credentials
        self.store = store if store is not None else NullTokenStore()
        self.exchanger = exchanger or TokenExchanger(
            credentials.client_id, credentials.client_secret, credentials.redirect_uri
        )
        self.listener_factory = listener_factory or CallbackListener.for_redirect
        self.open_browser = open_browser or webbrowser.open
        self.auth_timeout = auth_timeout if auth_timeout is not None else self.AUTH_TIMEOUT

        self._access_token: AccessToken | None = None
        self._session: AuthorizationSession | None = None
        self._restored = credentials.has_grant
        self._lock = asyncio.Lock()
        self._flow_generation = 0
        self._last_flow_error: AuthorizationError | None = None

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "TokenManager":
        """Create a manager from explicit values with environment fallbacks.

        Keyword arguments are those of ``resolve_credentials``; the token
        store is chosen by ``get_storage`` and scoped to the client ID.
        An explicit ``environ`` that selects neither QUICKBOOKS_TOKEN_STORE
        nor QUICKBOOKS_ENV_FILE gets a NullTokenStore, so a tenant
        configured without fallbacks never reads or writes ``./.env``.
        """
        credentials = resolve_credentials(**kwargs)
        environ = kwargs.get("environ")
        if environ is not None and not (environ.get(ENV_TOKEN_STORE) or environ.get(ENV_FILE)):
            store: TokenStore = NullTokenStore()
        else:
            store = get_storage(environ, credentials.client_id)
        return cls(credentials, store=store)

    @property
    def credentials(self) -> CredentialSet:
        return self._credentials

    @property
    def realm_id(self) -> str | None:
        return self._credentials.realm_id

    @property
    def is_authenticated(self) -> bool:
        """Whether a grant exists and the cached access token is valid."""
        return (
            self._credentials.has_grant
            and self._access_token is not None
            and not self._access_token.is_expired()
        )

    @property
    def is_authorizing(self) -> bool:
        """Whether an interactive flow is currently running."""
        return self._session is not None

    def authorization_url(self, state: str) -> str:
        """Build the Intuit consent URL.

        Args:
            state: Anti-forgery state token echoed back on the callback.

        Returns:
            Authorization URL to open in a browser.
        """
        params = {
            "client_id": self._credentials.client_id,
            "redirect_uri": self._credentials.redirect_uri,
            "response_type": "code",
            "scope": ACCOUNTING_SCOPE,
            "state": state,
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def ensure_token(self) -> str:
        """Return a valid bearer token, refreshing or authorizing as needed.

        Returns:
            Access token string.

        Raises:
            AuthorizationError: If the interactive flow fails or times out.
            TokenRefreshError: If the refresh token exchange fails.
        """
        generation = self._flow_generation
        joined_flow = self._session is not None
        async with self._lock:
            if not self._credentials.has_grant and not self._restored:
                await self._restore()

            if not self._credentials.has_grant:
                waited = joined_flow or self._flow_generation != generation
                if waited and self._last_flow_error:
                    # A flow failed while this caller was waiting on it
                    raise AuthorizationError(self._last_flow_error.message)
                await self._authorize()

            if self._access_token is None or self._access_token.is_expired():
                await self._refresh()

            return self._access_token.bearer_value

    async def authorize(self) -> None:
        """Run the interactive flow now, replacing any existing grant.

        Raises:
            AuthorizationError: If the flow fails or times out.
        """
        async with self._lock:
            self._restored = True
            await self._authorize()

    async def _restore(self) -> None:
        self._restored = True
        try:
            refresh_token, realm_id = await self.store.load()
        except Exception as e:
            logger.warning(f"Could not load stored QuickBooks tokens: {e}")
            return
        if refresh_token and realm_id:
            logger.info("Loaded stored QuickBooks refresh token")
            self._credentials.refresh_token = refresh_token
            self._credentials.realm_id = realm_id

    async def _refresh(self) -> None:
        logger.info("Access token missing or expired, refreshing...")
        try:
            grant = await self.exchanger.refresh(self._credentials.refresh_token)
        except TokenRefreshError as e:
            if not e.retryable:
                logger.warning("Refresh token rejected, authorization required on next call")
                self._credentials.clear_grant()
                self._access_token = None
            raise

        self._access_token = AccessToken.issued_now(grant.access_token, grant.expires_in)
        if grant.refresh_token and grant.refresh_token != self._credentials.refresh_token:
            self._credentials.refresh_token = grant.refresh_token
            await self._persist()

    async def _authorize(self) -> None:
        self._flow_generation += 1
        redirect_uri = self._credentials.redirect_uri
        session = AuthorizationSession(
            listener_port=urlparse(redirect_uri).port or 8000,
            state=secrets.token_urlsafe(32),
        )

        try:
            listener = self.listener_factory(session, redirect_uri)
        except OSError as e:
            error = AuthorizationError(
                f"Cannot listen on port {session.listener_port} for the OAuth callback: {e}"
            )
            self._last_flow_error = error
            raise error from e

        self._session = session
        listener.start()
        try:
            grant = await self._run_flow(session)
        except Exception as e:
            if isinstance(e, AuthorizationError):
                error = e
            elif isinstance(e, QuickBooksError):
                error = AuthorizationError(e.message)
            else:
                error = AuthorizationError(f"Authorization failed: {e}")
            logger.error(f"Error during QuickBooks authorization: {error.message}")
            self._credentials.clear_grant()
            self._access_token = None
            self._last_flow_error = error
            session.finish(error.message)
            await asyncio.to_thread(listener.shutdown)
            if error is e:
                raise
            raise error from e
        except asyncio.CancelledError:
            session.finish("Authorization cancelled")
            listener.shutdown()
            raise
        finally:
            self._session = None

        self._credentials.refresh_token = grant.refresh_token
        self._credentials.realm_id = session.obtained_realm_id
        self._access_token = AccessToken.issued_now(grant.access_token, grant.expires_in)
        self._last_flow_error = None
        session.finish()

        timer = threading.Timer(self.SHUTDOWN_GRACE, listener.shutdown)
        timer.daemon = True
        timer.start()

        logger.info(f"Connected to QuickBooks company {session.obtained_realm_id}")
        await self._persist()

    async def _run_flow(self, session: AuthorizationSession) -> TokenGrant:
        url = self.authorization_url(session.state)
        # Logged at warning level so it reaches stderr for manual completion
        logger.warning(f"Authorize QuickBooks access by visiting: {url}")
        try:
            self.open_browser(url)
        except Exception as e:
            logger.warning(f"Could not open browser ({e}); visit the URL above")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.auth_timeout
        while not session.received.is_set():
            if loop.time() >= deadline:
                raise AuthorizationError("Authorization timeout or cancelled")
            await asyncio.sleep(self.POLL_INTERVAL)

        if session.error:
            raise AuthorizationError(session.error)

        grant = await self.exchanger.exchange_code(session.obtained_code)
        if not grant.refresh_token:
            raise AuthorizationError("Token response did not include a refresh token")
        return grant

    async def _persist(self) -> None:
        refresh_token = self._credentials.refresh_token
        realm_id = self._credentials.realm_id
        if not refresh_token or not realm_id:
            return
        try:
            await self.store.save(refresh_token, realm_id)
        except Exception as e:
            logger.error(f"Failed to persist QuickBooks tokens: {e}")


async def run_auth_flow() -> TokenManager:
    """Run the interactive OAuth2 authorization flow once.

    This function:
    1. Resolves client credentials from the environment / .env
    2. Starts a local listener for the callback
    3. Opens the browser to the Intuit consent page
    4. Waits for the user to authorize
    5. Exchanges the authorization code for tokens
    6. Stores the refresh token and realm ID

    Returns:
        The authenticated TokenManager.

    Raises:
        ConfigurationError: If client credentials are missing.
        AuthorizationError: If authorization fails.
    """
    manager = TokenManager.from_settings()

    print("\nOpening browser for QuickBooks authorization...")
    print("If the browser doesn't open, use the URL logged below.\n")
    await manager.authorize()

    print("\nAuthorization successful!")
    print(f"Realm ID: {manager.realm_id}")
    print("Tokens have been stored.")
    return manager


def main() -> None:
    """CLI entry point for authorization."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(message)s")
    try:
        asyncio.run(run_auth_flow())
    except KeyboardInterrupt:
        print("\nAuthorization cancelled.")
    except QuickBooksError as e:
        print(f"\nError: {e.message}")
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
