"""Exception hierarchy for the CMAS MCP Server.

Every error raised by the library derives from :class:`CMASError` so callers
can catch the whole family at once. Message formats are kept stable because
automation built on top of this package branches on them.

Hierarchy::

    CMASError
    ├── ConfigurationError
    │   └── EnvironmentVariableError
    ├── ConnectionError
    │   └── NotConnectedError
    ├── ApiError
    │   ├── AuthenticationError
    │   └── AuthorizationError
    ├── NotFoundError
    ├── AmbiguousResourceError
    ├── AlreadyExistsError
    ├── InvalidArgumentError
    │   └── ConfirmationRequiredError
    └── ProtectedResourceError
"""

from __future__ import annotations

from typing import Any


class CMASError(Exception):
    """Base exception for all CMAS errors.

    Attributes:
        message: Human-readable error message.
        details: Optional structured context for logging and tool output.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for tool responses."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(CMASError):
    """Raised when configuration is missing or invalid."""


class EnvironmentVariableError(ConfigurationError):
    """Raised when a required environment variable is missing."""

    def __init__(self, variable: str, message: str | None = None) -> None:
        self.variable = variable
        super().__init__(
            message or f"Required environment variable '{variable}' is not set",
            {"variable": variable},
        )


class ConnectionError(CMASError):  # noqa: A001
    """Raised when the Admin Service cannot be reached."""

    def __init__(self, host: str | None, cause: Exception | None = None) -> None:
        self.host = host
        self.cause = cause
        message = f"Failed to connect to Admin Service at {host}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, {"host": host})


class NotConnectedError(ConnectionError):
    """Raised when an operation runs without an active session."""

    def __init__(self) -> None:
        CMASError.__init__(
            self, "Not connected to an Admin Service; call connect first"
        )
        self.host = None
        self.cause = None


class ApiError(CMASError):
    """Raised when the Admin Service answers with a non-success status.

    Attributes:
        status_code: HTTP status code.
        response_body: Raw response body, when available.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, {"status_code": status_code})

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[HTTP {self.status_code}] {self.message}"
        return self.message


class AuthenticationError(ApiError):
    """Raised when the Admin Service rejects the credential (401)."""


class AuthorizationError(ApiError):
    """Raised when the credential lacks permission (403)."""


class NotFoundError(CMASError):
    """Raised when a named resource cannot be found."""

    def __init__(self, kind: str, identifier: Any) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(
            f"{kind} '{identifier}' not found",
            {"kind": kind, "identifier": str(identifier)},
        )


class AmbiguousResourceError(CMASError):
    """Raised when a name that must identify one resource matches several."""

    def __init__(self, kind: str, name: str, matches: list[Any]) -> None:
        self.kind = kind
        self.name = name
        self.matches = matches
        super().__init__(
            f"{kind} name '{name}' is ambiguous: {len(matches)} matches",
            {"kind": kind, "name": name, "matches": [str(m) for m in matches]},
        )


class AlreadyExistsError(CMASError):
    """Raised when creating a resource whose name is already taken."""

    def __init__(self, kind: str, identifier: Any) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(
            f"{kind} '{identifier}' already exists",
            {"kind": kind, "identifier": str(identifier)},
        )


class InvalidArgumentError(CMASError):
    """Raised for missing, conflicting, or malformed arguments."""


class ConfirmationRequiredError(InvalidArgumentError):
    """Raised when a high-impact operation is attempted without force."""

    def __init__(self, action: str, target: str) -> None:
        self.action = action
        self.target = target
        super().__init__(
            f"Operation '{action}' on '{target}' requires confirmation; pass force=True",
            {"action": action, "target": target},
        )


class ProtectedResourceError(CMASError):
    """Raised when mutating one of the built-in collections."""

    def __init__(self, collection_id: str) -> None:
        self.collection_id = collection_id
        super().__init__(
            f"Collection '{collection_id}' is a protected built-in collection",
            {"collection_id": collection_id},
        )


class ToolExecutionError(CMASError):
    """Raised from the MCP call handler for a failed tool call.

    The message is the tool's error text (``"<ErrorClass>: <message>"``),
    which the MCP runtime returns as an error result.
    """
