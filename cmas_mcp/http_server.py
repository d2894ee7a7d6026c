"""HTTP/SSE front end for the Admin Service MCP server.

Serves the MCP SSE transport for web clients and a plain JSON ``/call``
endpoint for scripted callers.

This is a pure ASGI application rather than Starlette routes, because
MCP's SSE transport writes responses directly through ASGI.

Example:
    Running with uvicorn::

        $ uvicorn cmas_mcp.http_server:app --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import uvicorn
from mcp.server import NotificationOptions
from mcp.server.models import InitializationOptions
from mcp.server.sse import SseServerTransport

from . import __version__
from .config import Config, load_config
from .logging_config import get_logger, setup_logging
from .server import SERVER_NAME, CMASMCPServer

logger = get_logger(__name__)

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Awaitable[dict[str, Any]]]
Send = Callable[[dict[str, Any]], Awaitable[None]]

CORS_HEADERS = [
    (b"access-control-allow-origin", b"*"),
    (b"access-control-allow-methods", b"GET, POST, OPTIONS"),
    (b"access-control-allow-headers", b"*"),
]


class CORSMiddleware:
    """Adds permissive CORS headers and answers preflight requests."""

    def __init__(self, app: Callable) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            await send(
                {
                    "type": "http.response.start",
                    "status": 204,
                    "headers": CORS_HEADERS + [(b"access-control-max-age", b"86400")],
                }
            )
            await send({"type": "http.response.body", "body": b""})
            return

        async def send_with_cors(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.extend(CORS_HEADERS + [(b"access-control-expose-headers", b"*")])
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_with_cors)


class MCPHttpServer:
    """ASGI application routing the health, tool listing, SSE and call endpoints.

    Args:
        config: Configuration to use; loaded from the environment when None.
        transport: Optional httpx transport for Admin Service requests.
    """

    def __init__(
        self,
        config: Config | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.mcp_server: CMASMCPServer | None = None
        self.sse_transport: SseServerTransport | None = None
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return

        if self.config is None:
            self.config = load_config()
            setup_logging(
                log_level=self.config.server.log_level,
                json_format=self.config.server.log_json,
                log_file=self.config.server.log_file,
            )

        logger.info("Initializing CMAS MCP HTTP server")
        self.mcp_server = CMASMCPServer(self.config, transport=self.transport)
        await self.mcp_server.initialize()
        self.sse_transport = SseServerTransport("/messages")
        self._initialized = True

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return
        if scope["type"] != "http":
            return

        if not self._initialized:
            await self.initialize()

        route = (scope["path"], scope["method"])
        if route == ("/health", "GET"):
            await self._handle_health(send)
        elif route == ("/tools", "GET"):
            await self._handle_tools(send)
        elif route == ("/sse", "GET"):
            await self._handle_sse(scope, receive, send)
        elif route == ("/messages", "POST"):
            await self.sse_transport.handle_post_message(scope, receive, send)
        elif route == ("/call", "POST"):
            await self._handle_call(receive, send)
        else:
            await self._send_json(send, {"error": "Not found"}, status=404)

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    await self.initialize()
                except Exception as e:
                    logger.error("Startup failed", extra={"error": str(e)})
                    await send({"type": "lifespan.startup.failed", "message": str(e)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                logger.info("Shutting down CMAS MCP HTTP server")
                if self.mcp_server is not None:
                    await self.mcp_server.close()
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _handle_health(self, send: Send) -> None:
        sessions = self.mcp_server.sessions if self.mcp_server else None
        connected = bool(sessions and sessions.is_connected)
        await self._send_json(
            send,
            {
                "status": "healthy",
                "server": SERVER_NAME,
                "version": __version__,
                "initialized": self._initialized,
                "connected": connected,
                "site_code": sessions.current().site_code if connected else None,
                "tool_count": len(self.mcp_server.tools) if self.mcp_server else 0,
            },
        )

    async def _handle_tools(self, send: Send) -> None:
        tools = [
            {
                "name": tool["name"],
                "description": tool["description"],
                "method": tool["_method"],
                "inputSchema": tool["inputSchema"],
            }
            for tool in self.mcp_server.tools
        ]
        await self._send_json(send, {"tools": tools, "count": len(tools)})

    async def _handle_sse(self, scope: Scope, receive: Receive, send: Send) -> None:
        async with self.sse_transport.connect_sse(scope, receive, send) as streams:
            await self.mcp_server.server.run(
                streams[0],
                streams[1],
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=self.mcp_server.server.get_capabilities(
                        NotificationOptions(), {}
                    ),
                ),
            )

    async def _handle_call(self, receive: Receive, send: Send) -> None:
        """Run one tool from a ``{"tool": ..., "arguments": {...}}`` body."""
        body = b""
        while True:
            message = await receive()
            body += message.get("body", b"")
            if not message.get("more_body", False):
                break

        try:
            data = json.loads(body.decode() or "{}")
        except json.JSONDecodeError:
            await self._send_json(send, {"error": "Invalid JSON"}, status=400)
            return

        tool_name = data.get("tool")
        if not tool_name:
            await self._send_json(send, {"error": "Missing 'tool' parameter"}, status=400)
            return

        result = await self.mcp_server._execute_tool(tool_name, data.get("arguments") or {})
        await self._send_json(
            send,
            {
                "success": not result.isError,
                "content": [
                    {"type": c.type, "text": c.text}
                    for c in result.content
                    if hasattr(c, "text")
                ],
            },
        )

    async def _send_json(self, send: Send, data: dict[str, Any], status: int = 200) -> None:
        body = json.dumps(data).encode()
        await send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode()),
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})


_server = MCPHttpServer()
app = CORSMiddleware(_server)


def main() -> None:
    """Console entry point (HTTP/SSE transport)."""
    config = load_config()
    setup_logging(
        log_level=config.server.log_level,
        json_format=config.server.log_json,
        log_file=config.server.log_file,
    )
    _server.config = config
    uvicorn.run(app, host="0.0.0.0", port=config.server.port, log_config=None)
