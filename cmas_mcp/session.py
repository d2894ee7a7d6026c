"""Admin Service sessions.

A :class:`Session` binds a site server, its site code, the credential and TLS
policy to one :class:`~cmas_mcp.api_client.AdminServiceClient`. Operations
receive the session explicitly. :class:`SessionManager` keeps the active
session for callers (such as the MCP server) that work with one site at a
time.

Example:
    >>> manager = SessionManager()
    >>> session = await manager.connect("sccm.example.com", Credential(
    ...     username="CONTOSO\\\\admin", password="secret"))
    >>> session.site_code
    'PS1'
"""

from __future__ import annotations

from typing import Any

import httpx
from httpx_ntlm import HttpNtlmAuth
from pydantic import BaseModel, SecretStr

from .api_client import AdminServiceClient
from .config import AdminServiceConfig, ServerConfig
from .exceptions import ApiError, ConnectionError, NotConnectedError
from .logging_config import LoggerAdapter, get_logger
from .odata import values

logger = get_logger(__name__)

SITE_IDENTITY_PATH = "wmi/SMS_ProviderLocation"


class Credential(BaseModel):
    """Windows credential for NTLM authentication.

    Attributes:
        username: User name, optionally ``DOMAIN\\user`` or ``user@domain``.
        password: Password.
        domain: Domain, prepended to a bare username.
    """

    username: str
    password: SecretStr
    domain: str | None = None

    @property
    def qualified_username(self) -> str:
        if self.domain and "\\" not in self.username and "@" not in self.username:
            return f"{self.domain}\\{self.username}"
        return self.username

    def auth(self) -> httpx.Auth:
        return HttpNtlmAuth(self.qualified_username, self.password.get_secret_value())

    @classmethod
    def from_config(cls, config: AdminServiceConfig) -> "Credential | None":
        if not config.username or config.password is None:
            return None
        return cls(
            username=config.username,
            password=config.password,
            domain=config.domain,
        )


class Session:
    """An established connection to one site server.

    Attributes:
        site_server_host: SMS Provider host.
        site_code: Three-character site code reported by the provider.
        credential: Credential used for requests, or None.
        skip_certificate_check: Whether TLS verification is disabled.
        client: Gateway bound to this session.
    """

    def __init__(
        self,
        site_server_host: str,
        site_code: str,
        client: AdminServiceClient,
        credential: Credential | None = None,
        skip_certificate_check: bool = False,
    ) -> None:
        self.site_server_host = site_server_host
        self.site_code = site_code
        self.client = client
        self.credential = credential
        self.skip_certificate_check = skip_certificate_check
        self.logger = LoggerAdapter(
            logger, {"host": site_server_host, "site_code": site_code}
        )

    async def invoke(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Shortcut for ``self.client.invoke``."""
        return await self.client.invoke(method, path, params=params, body=body)

    async def close(self) -> None:
        await self.client.close()

    def describe(self) -> dict[str, Any]:
        """Session summary safe to show to users (no secrets)."""
        return {
            "site_server_host": self.site_server_host,
            "site_code": self.site_code,
            "username": self.credential.qualified_username if self.credential else None,
            "skip_certificate_check": self.skip_certificate_check,
        }

    def __repr__(self) -> str:
        return f"Session(host={self.site_server_host!r}, site_code={self.site_code!r})"


async def open_session(
    host: str,
    credential: Credential | None = None,
    skip_certificate_check: bool = False,
    server_config: ServerConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Session:
    """Connect to ``host`` and return a new session.

    Reads ``SMS_ProviderLocation`` to learn the site code; this doubles as
    the credential check.

    Raises:
        ConnectionError: If the host is unreachable, rejects the credential,
            or reports no site code. The underlying error is kept as
            ``cause``.
    """
    server_config = server_config or ServerConfig()
    client = AdminServiceClient(
        host=host,
        auth=credential.auth() if credential else None,
        skip_certificate_check=skip_certificate_check,
        timeout=server_config.request_timeout / 1000,
        max_retries=server_config.max_retries,
        retry_delay=server_config.retry_delay / 1000,
        transport=transport,
    )

    try:
        response = await client.invoke("GET", SITE_IDENTITY_PATH)
    except ApiError as e:
        await client.close()
        raise ConnectionError(host, e) from e
    except ConnectionError:
        await client.close()
        raise

    site_code = _local_site_code(values(response))
    if not site_code:
        await client.close()
        raise ConnectionError(
            host, ValueError("SMS Provider did not report a site code")
        )

    session = Session(
        site_server_host=host,
        site_code=site_code,
        client=client,
        credential=credential,
        skip_certificate_check=skip_certificate_check,
    )
    session.logger.info("Connected to Admin Service")
    return session


def _local_site_code(locations: list[dict[str, Any]]) -> str | None:
    for location in locations:
        if location.get("ProviderForLocalSite") and location.get("SiteCode"):
            return location["SiteCode"]
    for location in locations:
        if location.get("SiteCode"):
            return location["SiteCode"]
    return None


class SessionManager:
    """Holds the single active session.

    Connecting replaces (and closes) any previous session; disconnecting
    only clears local state.
    """

    def __init__(
        self,
        server_config: ServerConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server_config = server_config or ServerConfig()
        self._transport = transport
        self._session: Session | None = None

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    async def connect(
        self,
        host: str,
        credential: Credential | None = None,
        skip_certificate_check: bool = False,
    ) -> Session:
        """Open a session to ``host`` and make it the active one.

        Raises:
            ConnectionError: On transport or authentication failure. The
                previous session, if any, stays active in that case.
        """
        session = await open_session(
            host,
            credential=credential,
            skip_certificate_check=skip_certificate_check,
            server_config=self.server_config,
            transport=self._transport,
        )
        previous, self._session = self._session, session
        if previous is not None:
            await previous.close()
        return session

    def current(self) -> Session:
        """Return the active session.

        Raises:
            NotConnectedError: If no session is active.
        """
        if self._session is None:
            raise NotConnectedError()
        return self._session

    async def disconnect(self) -> None:
        if self._session is None:
            return
        session, self._session = self._session, None
        await session.close()
        session.logger.info("Disconnected from Admin Service")
