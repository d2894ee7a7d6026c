"""Run the MCP server over stdio: ``python -m cmas_mcp``."""

from .server import main

if __name__ == "__main__":
    main()
