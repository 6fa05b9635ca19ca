# ArcGIS OM Approval MCP Server
# File: tests/test_sanity.py
# Version: v1

"""Basic sanity tests for the package wiring."""

import arcgis_om_mcp
from arcgis_om_mcp.auth import ArcGisTokenClient
from arcgis_om_mcp.client import ArcGisClient
from arcgis_om_mcp.config import OmApprovalConfig
from arcgis_om_mcp.sap import SapClient


def test_version_is_string() -> None:
    assert isinstance(arcgis_om_mcp.__version__, str)


def test_clients_build_from_env() -> None:
    config = OmApprovalConfig.from_env()
    tokens = ArcGisTokenClient(config=config)
    client = ArcGisClient(config=config, tokens=tokens)
    sap = SapClient(config=config)

    assert client.tokens is tokens
    assert sap.config is config
