#!/usr/bin/env python3
"""Startup script for the SiliconFlow Image MCP Server.

This script starts the MCP server using stdio transport, which is the
standard way to connect MCP servers to AI assistants like Claude Desktop
or other MCP-compatible clients.

Usage:
    SILICONFLOW_API_KEY=... python run_server.py

Or, without network access:
    SILICONFLOW_MOCK=true python run_server.py
"""
import sys
from pathlib import Path

# Add the project directory to path so imports work correctly
project_dir = Path(__file__).resolve().parent
if str(project_dir) not in sys.path:
    sys.path.insert(0, str(project_dir))

from siliconflow_image_mcp.server import main  # pylint: disable=wrong-import-position

if __name__ == "__main__":
    main()
