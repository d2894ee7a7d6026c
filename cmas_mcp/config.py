"""Configuration loader for CMAS MCP Server.

This module provides configuration management using Pydantic models
for validation and environment variable loading.

Example:
    >>> from cmas_mcp.config import load_config
    >>> config = load_config()
    >>> print(config.server.port)
    3000

Environment Variables:
    CMAS_HOST: Default SMS Provider / site server host (optional).
    CMAS_USERNAME: Default username for NTLM authentication (optional).
    CMAS_PASSWORD: Default password (optional).
    CMAS_DOMAIN: Windows domain of the user (optional).
    CMAS_SKIP_CERTIFICATE_CHECK: Skip TLS verification (default: false).
    HTTP_SERVER_PORT: HTTP server port (default: 3000).
    LOG_LEVEL: Logging level (default: INFO).
    ALLOWED_HTTP_METHODS: Methods whose tools are exposed
        (default: GET,POST,PATCH,DELETE).
    MAX_RETRIES: Transport retries for GET requests (default: 0).
"""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator

from .exceptions import ConfigurationError
from .logging_config import get_logger

logger = get_logger(__name__)

_TRUE_VALUES = ("1", "true", "yes")


class AdminServiceConfig(BaseModel):
    """Admin Service connection configuration.

    Attributes:
        host: SMS Provider host (optional, can be supplied to ``connect``).
        username: Username for NTLM authentication (optional).
        password: Password for NTLM authentication (optional).
        domain: Windows domain of the user (optional).
        skip_certificate_check: Disable TLS certificate verification.
    """

    host: str | None = Field(
        default=None,
        description="SMS Provider host (optional, provided to connect)",
    )
    username: str | None = Field(
        default=None,
        description="Username (optional)",
    )
    password: SecretStr | None = Field(
        default=None,
        description="Password (optional)",
    )
    domain: str | None = Field(
        default=None,
        description="Windows domain (optional)",
    )
    skip_certificate_check: bool = Field(
        default=False,
        description="Skip TLS certificate verification",
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str | None) -> str | None:
        """Reject hosts given as URLs; only the bare host name is expected.

        Raises:
            ValueError: If the host contains a scheme or path.
        """
        if v is not None and ("://" in v or "/" in v):
            raise ValueError(f"host must be a bare host name, got: {v}")
        return v or None

    model_config = {"extra": "ignore"}


class ServerConfig(BaseModel):
    """Server configuration.

    Attributes:
        port: HTTP server port.
        log_level: Logging level.
        log_json: Use JSON format for logs.
        log_file: Optional log file path.
        allowed_http_methods: HTTP methods whose tools are exposed.
        max_retries: Transport retries for idempotent GET requests.
        retry_delay: Base retry delay in milliseconds.
        request_timeout: Request timeout in milliseconds.
    """

    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="HTTP server port",
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON format for logs",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path",
    )
    allowed_http_methods: list[str] = Field(
        default=["GET", "POST", "PATCH", "DELETE"],
        description="HTTP methods whose tools are exposed",
    )
    max_retries: int = Field(
        default=0,
        ge=0,
        le=10,
        description="Maximum retry attempts for GET requests",
    )
    retry_delay: int = Field(
        default=1000,
        ge=100,
        le=30000,
        description="Retry delay in milliseconds",
    )
    request_timeout: int = Field(
        default=30000,
        ge=1000,
        le=300000,
        description="Request timeout in milliseconds",
    )

    @field_validator("allowed_http_methods")
    @classmethod
    def validate_methods(cls, v: list[str]) -> list[str]:
        """Normalize method names and reject unknown ones."""
        methods = [m.strip().upper() for m in v if m.strip()]
        unknown = set(methods) - {"GET", "POST", "PATCH", "DELETE"}
        if unknown:
            raise ValueError(f"Unsupported HTTP methods: {sorted(unknown)}")
        return methods

    model_config = {"extra": "ignore"}


class Config(BaseModel):
    """Main configuration container.

    Attributes:
        admin_service: Admin Service connection settings.
        server: Server settings.
    """

    admin_service: AdminServiceConfig = Field(default_factory=AdminServiceConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    model_config = {"extra": "ignore"}


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


def load_config(env_file: str | None = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env_file: Optional path to .env file.

    Returns:
        Validated Config object.

    Raises:
        ConfigurationError: If a value is invalid.
    """
    # Load .env file if exists
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    logger.debug("Loading configuration from environment")

    try:
        password = os.getenv("CMAS_PASSWORD")
        admin_service_config = AdminServiceConfig(
            host=os.getenv("CMAS_HOST"),
            username=os.getenv("CMAS_USERNAME"),
            password=SecretStr(password) if password else None,
            domain=os.getenv("CMAS_DOMAIN"),
            skip_certificate_check=_env_flag("CMAS_SKIP_CERTIFICATE_CHECK"),
        )

        allowed_methods_str = os.getenv("ALLOWED_HTTP_METHODS", "GET,POST,PATCH,DELETE")

        server_config = ServerConfig(
            port=int(os.getenv("HTTP_SERVER_PORT", "3000")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_flag("LOG_JSON"),
            log_file=os.getenv("LOG_FILE"),
            allowed_http_methods=allowed_methods_str.split(","),
            max_retries=int(os.getenv("MAX_RETRIES", "0")),
            retry_delay=int(os.getenv("RETRY_DELAY", "1000")),
            request_timeout=int(os.getenv("REQUEST_TIMEOUT", "30000")),
        )

        config = Config(
            admin_service=admin_service_config,
            server=server_config,
        )

        logger.info(
            "Configuration loaded successfully",
            extra={
                "host": config.admin_service.host,
                "allowed_methods": config.server.allowed_http_methods,
            },
        )

        return config

    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
