"""Configuration Manager Admin Service MCP Server.

This package manages Microsoft Configuration Manager resources through the
site's Admin Service REST endpoint and exposes the operations as Model
Context Protocol (MCP) tools over stdio or HTTP/SSE.

Features:
    - Collections, membership rules, devices, variables and Run Scripts
    - Name, wildcard, id or object references for every resource
    - What-if and force controls on mutating tools
    - Tools filtered by HTTP method (``ALLOWED_HTTP_METHODS``)
    - NTLM authentication

Example:
    Using as a library::

        from cmas_mcp.models import reference
        from cmas_mcp.operations import get_collection
        from cmas_mcp.session import Credential, SessionManager

        sessions = SessionManager()
        session = await sessions.connect("sccm.example.com", Credential(...))
        collections = await get_collection(session, reference(name="All*"))

Attributes:
    __version__: Package version following semantic versioning.
"""

__version__ = "1.0.0"

from .api_client import AdminServiceClient
from .config import load_config
from .session import Credential, Session, SessionManager

__all__ = [
    "__version__",
    "AdminServiceClient",
    "Credential",
    "Session",
    "SessionManager",
    "load_config",
]
