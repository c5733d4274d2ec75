"""MCP server for dot-sync.

Creates a FastMCP server, builds the application from the environment and
registers all tools.

Run with:
    uv run dot-sync-mcp
    # or
    python -m dot_sync.server
"""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from dot_sync.app import Application
from dot_sync.config import settings
from dot_sync.tools.sync_tools import register_sync_tools

mcp = FastMCP(
    "dot-sync",
    instructions=(
        "Dot-Sync MCP server for keeping configuration files (dotfiles) in "
        "sync with a cloud storage backend. Use these tools to list tracked "
        "files, check drift, push or pull files and resolve conflicts. "
        "Files that contain credentials are never uploaded."
    ),
)


def _initialize() -> Application:
    """Build the application and register all tools."""
    app = Application(settings)
    register_sync_tools(mcp, app)
    return app


def main() -> None:
    """Entry point for the MCP server."""
    _initialize()
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
