"""Configuration Manager Admin Service API client.

This module provides the async HTTP gateway every operation goes through.
It attaches authentication and TLS policy, issues one request against the
Admin Service root, and turns non-success statuses into typed errors.

Example:
    >>> async with AdminServiceClient(host="sccm.example.com") as client:
    ...     sites = await client.invoke("GET", "wmi/SMS_ProviderLocation")
    ...     print(sites["value"][0]["SiteCode"])

Note:
    Admin Service URL structure:
    - WMI route: /AdminService/wmi/{ClassName}
    - Keyed instance: /AdminService/wmi/{ClassName}('{key}')
    - Versioned route: /AdminService/v1.0/{Entity}

    Examples:
      - wmi/SMS_Collection?$filter=Name eq 'All Systems'
      - wmi/SMS_Collection('SMS00001')
      - wmi/SMS_Collection('PS100012')/AdminService.AddMembershipRule
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from .exceptions import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    ConnectionError,
)
from .logging_config import LoggerAdapter, get_logger

logger = get_logger(__name__)

ADMIN_SERVICE_ROOT = "AdminService"


class AdminServiceClient:
    """Admin Service gateway.

    The underlying ``httpx.AsyncClient`` is created lazily and reused for
    the lifetime of the client. Only GET requests are retried, and only on
    transport failures.

    Attributes:
        host: Site server / SMS Provider host.
        base_url: Admin Service root URL.
    """

    def __init__(
        self,
        host: str,
        auth: httpx.Auth | None = None,
        skip_certificate_check: bool = False,
        timeout: float = 30,
        max_retries: int = 0,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Admin Service client.

        Args:
            host: Site server host (e.g., "sccm.example.com").
            auth: httpx authentication flow, or None for anonymous requests.
            skip_certificate_check: Disable TLS certificate verification.
            timeout: Request timeout in seconds.
            max_retries: Retry attempts for GET requests on transport errors.
            retry_delay: Base delay in seconds for exponential backoff.
            transport: Optional custom transport (used by tests).

        Raises:
            ValueError: If host is empty.
        """
        if not host:
            raise ValueError("host is required")

        self.host = host
        self.auth = auth
        self.skip_certificate_check = skip_certificate_check
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport

        self.base_url = f"https://{host}/{ADMIN_SERVICE_ROOT}/"

        self._logger = LoggerAdapter(logger, {"host": host})

        # HTTP client (created lazily)
        self.client: httpx.AsyncClient | None = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=self.auth,
                verify=not self.skip_certificate_check,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self.client

    async def invoke(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Issue one request against the Admin Service.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE).
            path: Path relative to the Admin Service root
                (e.g., "wmi/SMS_Collection").
            params: Query parameters (e.g., ``{"$filter": "..."}``).
            body: JSON body for POST/PATCH requests.

        Returns:
            Parsed JSON response, or None for empty responses.

        Raises:
            AuthenticationError: If the credential is rejected (401).
            AuthorizationError: If permissions are insufficient (403).
            ApiError: For any other non-success status.
            ConnectionError: If the host cannot be reached.
        """
        method = method.upper()
        if method not in ("GET", "POST", "PATCH", "PUT", "DELETE"):
            raise ValueError(f"Unsupported HTTP method: {method}")

        client = self._ensure_client()
        path = path.lstrip("/")

        self._logger.debug(
            f"Executing {method} {path}",
            extra={"params": params, "has_body": body is not None},
        )

        retries = self.max_retries if method == "GET" else 0

        for attempt in range(retries + 1):
            try:
                response = await client.request(
                    method, path, params=params, json=body
                )
            except httpx.TransportError as e:
                if attempt < retries:
                    wait_time = (2**attempt) * self.retry_delay
                    self._logger.warning(
                        f"Request failed, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{retries})",
                        extra={"error": str(e)},
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise ConnectionError(self.host, e) from e
            return self._parse_response(response, path)

        # Unreachable: the last attempt either returns or raises.
        raise ConnectionError(self.host)

    def _parse_response(self, response: httpx.Response, path: str = "") -> Any:
        """Parse and validate an Admin Service response.

        Raises:
            AuthenticationError: If authentication failed (401).
            AuthorizationError: If authorization failed (403).
            ApiError: For other error statuses.
        """
        if response.status_code == 401:
            raise AuthenticationError(
                "Authentication failed - check the supplied credential",
                status_code=401,
                response_body=response.text,
            )

        if response.status_code == 403:
            raise AuthorizationError(
                "Access denied - insufficient permissions for this operation",
                status_code=403,
                response_body=response.text,
            )

        if response.status_code >= 400:
            raise ApiError(
                message=_error_message(response),
                status_code=response.status_code,
                response_body=response.text,
            )

        if response.status_code == 204 or not response.content:
            return None

        try:
            data = response.json()
        except ValueError:
            self._logger.warning(
                "Response is not JSON",
                extra={
                    "path": path,
                    "content_type": response.headers.get("content-type"),
                },
            )
            return {"raw_response": response.text}

        self._logger.debug(
            "Request successful",
            extra={"status_code": response.status_code},
        )
        return data

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self.client:
            await self.client.aclose()
            self.client = None
            self._logger.debug("HTTP client closed")

    async def __aenter__(self) -> "AdminServiceClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def _error_message(response: httpx.Response) -> str:
    """Extract the server's error message from an OData error body."""
    try:
        error_body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(error_body, dict):
        error = error_body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if error_body.get("Message"):
            return str(error_body["Message"])
        if error_body.get("message"):
            return str(error_body["message"])
    return str(error_body)
