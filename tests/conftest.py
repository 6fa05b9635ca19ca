# ArcGIS OM Approval MCP Server
# File: tests/conftest.py
# Version: v1

from __future__ import annotations

import os

import pytest

from arcgis_om_mcp.config import OmApprovalConfig
from arcgis_om_mcp.tools import tasks

_ENV_PREFIXES = ("ARCGIS_", "SAP_", "OM_")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Start every test without OM/ArcGIS/SAP env vars or cached task state."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    tasks.reset_state()
    yield
    tasks.reset_state()


@pytest.fixture
def om_config() -> OmApprovalConfig:
    return OmApprovalConfig(
        layer0_url="https://gis.example.com/arcgis/rest/services/OM/FeatureServer/0",
        layer1_url="https://gis.example.com/arcgis/rest/services/OM/FeatureServer/1",
        token_url="https://www.arcgis.com/sharing/rest/generateToken",
        username="om_user",
        password="om_secret",
        sap_api_url="https://sap.example.com/confirmations",
        sap_user="sap_user",
        sap_password="sap_secret",
    )


class StaticTokens:
    """Token client stand-in that counts how often a token was requested."""

    def __init__(self, value: str = "T") -> None:
        self.value = value
        self.calls = 0

    async def get_token(self) -> str:
        self.calls += 1
        return self.value


@pytest.fixture
def tokens() -> StaticTokens:
    return StaticTokens()
