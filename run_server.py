#!/usr/bin/env python3
"""Startup script for the Imagen 3 MCP Server.

This script starts the MCP server using stdio transport, which is the
standard way to connect MCP servers to AI assistants like Claude Desktop,
VS Code with GitHub Copilot, or other MCP-compatible clients.

Usage:
    GEMINI_API_KEY=... python run_server.py
"""
import sys
from pathlib import Path

# Add the repository root to path so imports work without installing
repo_dir = Path(__file__).resolve().parent
if str(repo_dir) not in sys.path:
    sys.path.insert(0, str(repo_dir))

from imagen3_mcp.server import main  # pylint: disable=wrong-import-position

if __name__ == "__main__":
    main()
