"""MCP server entry point exposing Flowstack workflow tools."""

from __future__ import annotations

from flowstack.server import main, mcp

__all__ = ["mcp"]


if __name__ == "__main__":
    main()
