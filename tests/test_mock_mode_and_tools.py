# ArcGIS OM Approval MCP Server
# File: tests/test_mock_mode_and_tools.py
# Version: v1

from __future__ import annotations

import pytest

from arcgis_om_mcp.tools import tasks


class DummyServer:
    def __init__(self) -> None:
        self.names = []

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.names.append(kwargs.get("name"))
            return fn

        return decorator


@pytest.fixture
def mock_env(monkeypatch):
    monkeypatch.setenv("OM_MOCK_MODE", "1")
    monkeypatch.setenv("ARCGIS_LAYER0", "https://mock/FeatureServer/0")
    monkeypatch.setenv("ARCGIS_LAYER1", "https://mock/FeatureServer/1")


@pytest.mark.asyncio
async def test_mock_mode_listing(mock_env):
    out = await tasks.list_work_orders()
    assert out["count"] == 2

    one = await tasks.get_work_order("8262539")
    assert one["count"] == 1
    assert one["work_orders"][0]["organizac"] == "PTNOR"

    activities = await tasks.list_activities(1)
    assert [a["objectid"] for a in activities["activities"]] == [11, 12]

    attachments = await tasks.list_attachments([11])
    assert attachments["attachments"][0] == {
        "object_id": 11,
        "url": "https://mock/FeatureServer/1/11/attachments/1?token=MOCK_TOKEN",
        "keyword": "antes",
    }


@pytest.mark.asyncio
async def test_mock_mode_approval_records_sap_confirmation(mock_env):
    result = await tasks.approve_work_order(1)

    assert result["ok"] is True
    arcgis = tasks._make_client()
    sap = tasks._make_sap_client()
    assert arcgis.edits == [{"objectid": 1, "aceptar": 1, "estado": 2}]
    assert sap.sent[0]["AUFNR"] == "8262538"
    assert sap.sent[0]["ARBPL"] == "PTENG"
    assert sap.sent[0]["ISDD"] == "20250101"
    assert sap.sent[0]["ISDZ"] == "100000"


@pytest.mark.asyncio
async def test_mock_mode_activity_edit(mock_env):
    result = await tasks.reject_activity(12, "2")

    assert result["ok"] is True
    activity = tasks._make_client().activities[1][1]
    assert activity["g1vala2"] == 2


@pytest.mark.asyncio
async def test_diagnostics_mock_mode(mock_env):
    result = await tasks.diagnostics()

    assert result["ok"] is True
    assert result["mock_mode"] is True
    assert {c["name"] for c in result["checks"]} == {"client_init", "token", "layer0_metadata"}
    assert result["config"]["arcgis"]["password_configured"] is False


@pytest.mark.asyncio
async def test_diagnostics_reports_missing_credentials(monkeypatch):
    monkeypatch.setenv("ARCGIS_LAYER0", "https://gis.example.com/OM/FeatureServer/0")

    result = await tasks.diagnostics()

    assert result["ok"] is False
    token_check = next(c for c in result["checks"] if c["name"] == "token")
    assert token_check["ok"] is False
    assert "ARCGIS_URL_TOKEN" in token_check["error"]


def test_register_tools_exposes_all_flows():
    server = DummyServer()
    tasks.register_tools(server)

    assert set(server.names) == {
        "om_list_work_orders",
        "om_get_work_order",
        "om_list_activities",
        "om_list_attachments",
        "om_get_field_aliases",
        "om_approve_work_order",
        "om_reject_work_order",
        "om_approve_activity",
        "om_reject_activity",
        "om_diagnostics",
    }


def test_register_tools_rejects_non_server():
    with pytest.raises(ValueError):
        tasks.register_tools(object())
