# ArcGIS OM Approval MCP Server
# File: tools/__init__.py
# Version: v1

"""MCP tools for the work-order approval flows."""

from __future__ import annotations

from . import tasks

__all__ = ["tasks"]
