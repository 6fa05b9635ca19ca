# ArcGIS OM Approval MCP Server
# File: tests/test_sap.py
# Version: v1

"""Tests for the SAP work confirmation client."""

from __future__ import annotations

import base64
import json
from datetime import datetime, timezone

import httpx
import pytest

from arcgis_om_mcp.errors import ValidationError
from arcgis_om_mcp.sap import SUCCESS_MESSAGE, SapClient, epoch_millis_to_datetime

TODAY = datetime(2025, 3, 4, 9, 30, 0)


def _sap(om_config, handler) -> SapClient:
    return SapClient(config=om_config, today=lambda: TODAY, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_notify_sap_sends_confirmation(om_config):
    seen: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "ok"})

    result = await _sap(om_config, handler).notify_sap("8262538", "PTENG", "0", 3_723_000)

    assert result.success is True
    assert result.message == SUCCESS_MESSAGE

    request = seen[0]
    assert request.method == "GET"
    assert str(request.url) == om_config.sap_api_url
    expected_auth = base64.b64encode(b"sap_user:sap_secret").decode("ascii")
    assert request.headers["Authorization"] == f"Basic {expected_auth}"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {
        "VORNR": "0010",
        "AUFNR": "8262538",
        "BUDAT": "20250304",
        "ARBPL": "PTENG",
        "ISDD": "19700101",
        "ISDZ": "000000",
        "IEDD": "19700101",
        "IEDZ": "010203",
        "GRUND": "TRFI",
        "PLANT": "0060",
    }


@pytest.mark.asyncio
async def test_empty_order_id_is_failure_without_request(om_config):
    seen: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    result = await _sap(om_config, handler).notify_sap("  ", "PTENG", 0, 0)

    assert result.success is False
    assert "must not be empty" in result.message
    assert seen == []


@pytest.mark.asyncio
async def test_invalid_timestamp_is_failure(om_config):
    result = await _sap(om_config, lambda r: httpx.Response(200)).notify_sap("1", "PTENG", "abc", 0)

    assert result.success is False
    assert result.message.startswith("Invalid SAP request")


@pytest.mark.asyncio
async def test_http_error_is_failure_with_status(om_config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="order locked")

    result = await _sap(om_config, handler).notify_sap("1", "PTENG", 0, 0)

    assert result.success is False
    assert "HTTP 500" in result.message
    assert "order locked" in result.message


@pytest.mark.asyncio
async def test_transport_error_is_failure(om_config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("name resolution failed", request=request)

    result = await _sap(om_config, handler).notify_sap("1", "PTENG", 0, 0)

    assert result.success is False
    assert "name resolution failed" in result.message


@pytest.mark.asyncio
async def test_missing_endpoint_is_failure(om_config):
    om_config.sap_api_url = None
    result = await _sap(om_config, lambda r: httpx.Response(200)).notify_sap("1", "PTENG", 0, 0)

    assert result.success is False
    assert "SAP_API_URL" in result.message


def test_epoch_millis_conversion():
    assert epoch_millis_to_datetime(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert epoch_millis_to_datetime("1735725600000") == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert epoch_millis_to_datetime(1735725600000.0) == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", [None, "", "12.5", 12.5, True, "1e3"])
def test_epoch_millis_rejects_non_integers(value):
    with pytest.raises(ValidationError):
        epoch_millis_to_datetime(value)
