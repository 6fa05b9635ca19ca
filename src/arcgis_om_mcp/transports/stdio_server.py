# ArcGIS OM Approval MCP Server
# File: transports/stdio_server.py
# Version: v1

"""STDIO entrypoint for the ArcGIS OM Approval MCP server.

This is the script behind the ``arcgis-om-mcp`` console command.

It:

- configures logging on stderr (stdout carries the MCP protocol),
- creates a FastMCP server,
- registers the work-order approval tools, and
- runs the built-in stdio transport.
"""

from __future__ import annotations

import logging
import os
import sys

from mcp.server.fastmcp import FastMCP

from ..tools import tasks


def _configure_logging() -> None:
    level_name = (os.getenv("OM_LOG_LEVEL") or "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    """Synchronous entrypoint for console_scripts."""
    _configure_logging()

    mcp = FastMCP("arcgis-om-mcp")
    tasks.register_tools(mcp)

    # Let FastMCP handle stdio + event loop setup.
    mcp.run()


if __name__ == "__main__":
    main()
