"""MCP server for the Configuration Manager Admin Service.

Registers the tools from :mod:`cmas_mcp.tools` with an MCP low-level
server and runs them against the active Admin Service session.

Example:
    Running over stdio::

        $ python -m cmas_mcp
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, TextContent, Tool
from pydantic import BaseModel, SecretStr

from .config import Config, load_config
from .exceptions import CMASError, InvalidArgumentError, ToolExecutionError
from .logging_config import get_logger, setup_logging
from .session import Credential, SessionManager
from .tools import ToolGenerator

logger = get_logger(__name__)

SERVER_NAME = "cmas-mcp-server"


def to_jsonable(value: Any) -> Any:
    """Convert operation results (models, lists, None) to plain JSON data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    return value


def _error_result(error: Exception) -> CallToolResult:
    text = f"{type(error).__name__}: {error}"
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=True)


class CMASMCPServer:
    """MCP server exposing collection, device, variable and script tools.

    Attributes:
        config: Loaded configuration.
        sessions: Holder of the active Admin Service session.
        server: The underlying MCP server.
        tools: Tool dictionaries built at :meth:`initialize`.
    """

    def __init__(
        self,
        config: Config,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.sessions = SessionManager(config.server, transport=transport)
        self.server = Server(SERVER_NAME)
        self.tools: list[dict[str, Any]] = []
        self._tools_by_name: dict[str, dict[str, Any]] = {}
        self._register_handlers()

    async def initialize(self) -> None:
        generator = ToolGenerator(self.config.server.allowed_http_methods)
        self.tools = generator.generate_tools()
        self._tools_by_name = {t["name"]: t for t in self.tools}
        logger.info("MCP server initialized", extra={"tool_count": len(self.tools)})

    def _register_handlers(self) -> None:
        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            return [
                Tool(
                    name=t["name"],
                    description=t["description"],
                    inputSchema=t["inputSchema"],
                )
                for t in self.tools
            ]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
            result = await self._execute_tool(name, arguments or {})
            text = [c for c in result.content if isinstance(c, TextContent)]
            if result.isError:
                # the runtime turns a raised exception into an isError result
                raise ToolExecutionError("\n".join(c.text for c in text))
            return text

    async def _execute_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Run one tool and wrap its result or error as a CallToolResult."""
        tool = self._tools_by_name.get(name)
        if tool is None:
            return _error_result(InvalidArgumentError(f"Unknown tool: {name}"))

        logger.info("Executing tool", extra={"tool": name})
        try:
            if name == "connect":
                result = await self._connect(arguments)
            elif name == "disconnect":
                await self.sessions.disconnect()
                result = {"connected": False}
            else:
                session = await self._session()
                result = await tool["_handler"](session, arguments)
        except CMASError as e:
            logger.warning("Tool failed", extra={"tool": name, "error": str(e)})
            return _error_result(e)
        except (ValueError, TypeError) as e:
            # argument values the schema lets through but the operation rejects
            logger.warning("Tool arguments rejected", extra={"tool": name, "error": str(e)})
            return _error_result(InvalidArgumentError(f"Invalid arguments for {name}: {e}"))

        text = json.dumps(to_jsonable(result), indent=2, default=str)
        return CallToolResult(content=[TextContent(type="text", text=text)], isError=False)

    async def _connect(self, arguments: dict[str, Any]) -> dict[str, Any]:
        defaults = self.config.admin_service
        host = arguments.get("host") or defaults.host
        if not host:
            raise InvalidArgumentError("No host given and CMAS_HOST is not set")

        credential = Credential.from_config(defaults)
        if arguments.get("username"):
            credential = Credential(
                username=arguments["username"],
                password=SecretStr(arguments.get("password") or ""),
                domain=arguments.get("domain") or defaults.domain,
            )
        skip = arguments.get("skip_certificate_check")
        session = await self.sessions.connect(
            host,
            credential=credential,
            skip_certificate_check=defaults.skip_certificate_check if skip is None else bool(skip),
        )
        return {"connected": True, **session.describe()}

    async def _session(self):
        """The active session, connecting to CMAS_HOST on first use."""
        if not self.sessions.is_connected and self.config.admin_service.host:
            await self._connect({})
        return self.sessions.current()

    async def close(self) -> None:
        await self.sessions.disconnect()


async def run_stdio() -> None:
    config = load_config()
    setup_logging(
        log_level=config.server.log_level,
        json_format=config.server.log_json,
        log_file=config.server.log_file,
    )
    mcp_server = CMASMCPServer(config)
    await mcp_server.initialize()
    try:
        async with stdio_server() as (read_stream, write_stream):
            await mcp_server.server.run(
                read_stream,
                write_stream,
                mcp_server.server.create_initialization_options(),
            )
    finally:
        await mcp_server.close()


def main() -> None:
    """Console entry point (stdio transport)."""
    asyncio.run(run_stdio())
