# ArcGIS OM Approval MCP Server
# File: tools/tasks.py
# Version: v1
#
# NOTE: This module is the single place where we define the work-order
# approval flows that are exposed as MCP tools.  The MCP transports simply
# call `register_tools(server)` to wire these up.

from __future__ import annotations

import hashlib
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from ..auth import ArcGisTokenClient
from ..cache import TTLCache
from ..client import ArcGisClient
from ..config import OmApprovalConfig
from ..errors import OmApprovalError, ValidationError
from ..models import ActivityKey, AttachmentDescriptor, FeatureRow, SapNotificationResult
from ..sap import SapClient

logger = logging.getLogger(__name__)

# Columns shown for a work order (layer 0).
WORK_ORDER_FIELDS: List[str] = [
    "objectid",
    "uniquerowid",
    "globalid",
    "actividad",
    "tipo_trabaj",
    "created_date",
    "om_text",
    "instalac",
    "responsable",
    "jefe_faen",
    "organizac",
    "zona_name",
    "equipo",
    "jefe_act",
]

# Columns needed to build the SAP confirmation of an approved work order.
SAP_FIELDS: List[str] = [
    "objectid",
    "orde_m_id",
    "organizac",
    "start_time_field",
    "end_time_field",
]

_OM_RE = re.compile(r"^[A-Za-z0-9_-]+$")


# ---------------------------------------------------------------------------
# Internal helpers (shared token cache, alias cache, mock clients)
# ---------------------------------------------------------------------------


_TOKENS: ArcGisTokenClient | None = None
_TOKENS_SIGNATURE: tuple | None = None

_CACHE: TTLCache | None = None
_CACHE_SIGNATURE: tuple[int, int] | None = None


def _get_token_client(cfg: OmApprovalConfig) -> ArcGisTokenClient:
    """Return the process-wide token client, re-created if credentials change."""
    global _TOKENS, _TOKENS_SIGNATURE

    password_digest = hashlib.sha256((cfg.password or "").encode("utf-8")).hexdigest()
    signature = (
        cfg.token_url,
        cfg.username,
        password_digest,
        cfg.referer,
        cfg.token_expiration_minutes,
    )
    if _TOKENS is None or _TOKENS_SIGNATURE != signature:
        _TOKENS = ArcGisTokenClient(config=cfg)
        _TOKENS_SIGNATURE = signature
    return _TOKENS


def _get_cache(cfg: OmApprovalConfig) -> TTLCache:
    """Lazily create (or re-create) the global alias cache based on config."""
    global _CACHE, _CACHE_SIGNATURE

    signature = (int(cfg.cache_ttl_seconds), int(cfg.cache_max_entries))
    if _CACHE is None or _CACHE_SIGNATURE != signature:
        _CACHE = TTLCache(ttl_seconds=signature[0], max_entries=signature[1])
        _CACHE_SIGNATURE = signature
    return _CACHE


def _require(value: Optional[str], env_name: str) -> str:
    if not value:
        raise OmApprovalError(f"{env_name} is not set. Please configure it before calling this tool.")
    return value


def _as_text(value: Any) -> str:
    """Render a row value for SAP: integral floats lose their '.0'."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _om_where(om: str) -> str:
    om = str(om).strip()
    if not _OM_RE.match(om):
        raise ValidationError(f"Invalid work order number {om!r}.")
    return f"orde_m_id={om}" if om.isdigit() else f"orde_m_id='{om}'"


def _attachment_to_dict(item: AttachmentDescriptor) -> Dict[str, Any]:
    return {"object_id": item.object_id, "url": item.url, "keyword": item.keyword}


class _MockTokens:
    async def get_token(self) -> str:
        return "MOCK_TOKEN"


@dataclass
class MockArcGisClient:
    """Small in-memory stand-in for ArcGisClient.

    Activated when OM_MOCK_MODE is truthy so the tools work without an
    ArcGIS organisation. Edits are applied to the in-memory rows.
    """

    tokens: _MockTokens = field(default_factory=_MockTokens)
    work_orders: List[Dict[str, Any]] = field(default_factory=list)
    activities: Dict[int, List[Dict[str, Any]]] = field(default_factory=dict)
    attachments: Dict[int, List[Dict[str, Any]]] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)
    edits: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.work_orders:
            self.work_orders = [
                {
                    "objectid": 1,
                    "orde_m_id": 8262538,
                    "om_text": "Mantenimiento preventivo paño J1",
                    "organizac": "PTENG",
                    "instalac": "S/E Alto Jahuel",
                    "responsable": "mock.user",
                    "start_time_field": 1735725600000,
                    "end_time_field": 1735740000000,
                    "aceptar": 0,
                    "estado": 1,
                },
                {
                    "objectid": 2,
                    "orde_m_id": 8262539,
                    "om_text": "Inspección termográfica",
                    "organizac": "PTNOR",
                    "instalac": "S/E Polpaico",
                    "responsable": "mock.user",
                    "start_time_field": 1735812000000,
                    "end_time_field": 1735826400000,
                    "aceptar": 0,
                    "estado": 1,
                },
            ]
        if not self.activities:
            self.activities = {
                1: [
                    {"objectid": 11, "parentglobalid": "{MOCK-1}", "g1act1": "Limpieza", "g1vala1": 0},
                    {"objectid": 12, "parentglobalid": "{MOCK-1}", "g1act2": "Reapriete", "g1vala2": 0},
                ],
                2: [],
            }
        if not self.attachments:
            self.attachments = {11: [{"id": 1, "keywords": "antes"}, {"id": 2, "keywords": "despues"}]}
        if not self.aliases:
            self.aliases = {
                "objectid": "OBJECTID",
                "orde_m_id": "Orden de mantenimiento",
                "om_text": "Descripción",
                "organizac": "Puesto de trabajo",
            }

    def _find(self, object_id: int) -> Optional[Dict[str, Any]]:
        for row in self.work_orders:
            if row["objectid"] == object_id:
                return row
        for rows in self.activities.values():
            for row in rows:
                if row["objectid"] == object_id:
                    return row
        return None

    async def query_features(self, layer_url: str, fields: Iterable[str], where: str) -> List[FeatureRow]:
        match = re.match(r"^\s*(\w+)\s*=\s*'?([^']*)'?\s*$", where or "")
        out: List[FeatureRow] = []
        for row in self.work_orders:
            if match and match.group(1) != "1" and str(row.get(match.group(1))) != match.group(2):
                continue
            out.append(
                {
                    f: float(row[f]) if isinstance(row[f], int) else row[f]
                    for f in fields
                    if f in row
                }
            )
        return out

    async def query_related(self, layer_url: str, parent_object_id: Any, relationship_id: Any) -> List[FeatureRow]:
        return [dict(r) for r in self.activities.get(int(parent_object_id), [])]

    async def list_attachments(self, feature_server_url: str, parent_object_ids: Iterable[int]) -> List[AttachmentDescriptor]:
        base = feature_server_url.rstrip("/")
        out: List[AttachmentDescriptor] = []
        for oid in parent_object_ids:
            for info in self.attachments.get(int(oid), []):
                out.append(
                    AttachmentDescriptor(
                        object_id=int(oid),
                        url=f"{base}/{oid}/attachments/{info['id']}?token=MOCK_TOKEN",
                        keyword=info["keywords"],
                        raw=info,
                    )
                )
        return out

    async def get_field_aliases(self, layer_url: str) -> Dict[str, str]:
        return dict(self.aliases)

    async def apply_update(self, layer_url: str, attributes: Dict[str, Any]) -> bool:
        row = self._find(int(attributes["objectid"]))
        if row is None:
            return False
        row.update(attributes)
        self.edits.append(dict(attributes))
        return True

    async def approve_work_order(self, layer_url: str, object_id: int) -> bool:
        return await self.apply_update(layer_url, {"objectid": object_id, "aceptar": 1, "estado": 2})

    async def reject_work_order(self, layer_url: str, object_id: int, note: str) -> bool:
        return await self.apply_update(
            layer_url, {"objectid": object_id, "aceptar": 2, "estado": 2, "obs_activ": note}
        )

    async def approve_activity(self, layer_url: str, object_id: int, activity_key: Any) -> bool:
        key = ActivityKey(str(activity_key))
        return await self.apply_update(layer_url, {"objectid": object_id, key.flag_field: 1})

    async def reject_activity(self, layer_url: str, object_id: int, activity_key: Any) -> bool:
        key = ActivityKey(str(activity_key))
        return await self.apply_update(layer_url, {"objectid": object_id, key.flag_field: 2})


@dataclass
class MockSapClient(SapClient):
    """SapClient that validates and records confirmations instead of sending them."""

    sent: List[Dict[str, str]] = field(default_factory=list)

    async def notify_sap(self, order_id, organization, start_epoch_millis, end_epoch_millis) -> SapNotificationResult:
        try:
            payload = self._prepare(order_id, organization, start_epoch_millis, end_epoch_millis)
        except ValidationError as exc:
            return SapNotificationResult(success=False, message=f"Invalid SAP request: {exc}")
        self.sent.append(payload)
        return SapNotificationResult(success=True, message="SAP confirmation recorded (mock mode).")


_MOCK_ARCGIS: MockArcGisClient | None = None
_MOCK_SAP: MockSapClient | None = None


def _mock_mode(cfg: OmApprovalConfig) -> bool:
    return bool(cfg.mock_mode)


def _make_client(cfg: Optional[OmApprovalConfig] = None) -> ArcGisClient:
    """Create an ArcGisClient from environment variables.

    In OM_MOCK_MODE a shared in-memory mock is returned instead.

    Note: Callers should prefer invoking this with *no arguments* so tests can
    replace it with a no-arg lambda.
    """
    global _MOCK_ARCGIS
    cfg = cfg or OmApprovalConfig.from_env()

    if _mock_mode(cfg):
        if _MOCK_ARCGIS is None:
            _MOCK_ARCGIS = MockArcGisClient()
        return _MOCK_ARCGIS  # type: ignore[return-value]

    return ArcGisClient(config=cfg, tokens=_get_token_client(cfg))


def _make_sap_client(cfg: Optional[OmApprovalConfig] = None) -> SapClient:
    """Create a SapClient from environment variables (mock in OM_MOCK_MODE)."""
    global _MOCK_SAP
    cfg = cfg or OmApprovalConfig.from_env()

    if _mock_mode(cfg):
        if _MOCK_SAP is None:
            _MOCK_SAP = MockSapClient(config=cfg)
        return _MOCK_SAP

    return SapClient(config=cfg)


def reset_state() -> None:
    """Drop cached tokens, aliases and mock data (used by tests)."""
    global _TOKENS, _TOKENS_SIGNATURE, _CACHE, _CACHE_SIGNATURE, _MOCK_ARCGIS, _MOCK_SAP
    _TOKENS = None
    _TOKENS_SIGNATURE = None
    _CACHE = None
    _CACHE_SIGNATURE = None
    _MOCK_ARCGIS = None
    _MOCK_SAP = None


# ---------------------------------------------------------------------------
# Core async tasks (library-style)
# ---------------------------------------------------------------------------


async def list_work_orders(where: str = "1=1") -> Dict[str, Any]:
    cfg = OmApprovalConfig.from_env()
    layer = _require(cfg.layer0_url, "ARCGIS_LAYER0")

    client = _make_client()
    rows = await client.query_features(layer, WORK_ORDER_FIELDS, where)
    return {"work_orders": rows, "count": len(rows)}


async def get_work_order(om: str) -> Dict[str, Any]:
    cfg = OmApprovalConfig.from_env()
    layer = _require(cfg.layer0_url, "ARCGIS_LAYER0")
    where = _om_where(om)

    client = _make_client()
    rows = await client.query_features(layer, WORK_ORDER_FIELDS, where)
    return {"om": str(om).strip(), "work_orders": rows, "count": len(rows)}


async def list_activities(object_id: int, relationship_id: Optional[str] = None) -> Dict[str, Any]:
    cfg = OmApprovalConfig.from_env()
    layer = _require(cfg.layer0_url, "ARCGIS_LAYER0")
    rel = relationship_id or cfg.relationship_id

    client = _make_client()
    rows = await client.query_related(layer, int(object_id), rel)
    return {"object_id": int(object_id), "relationship_id": str(rel), "activities": rows, "count": len(rows)}


async def list_attachments(object_ids: Iterable[int]) -> Dict[str, Any]:
    cfg = OmApprovalConfig.from_env()
    layer = _require(cfg.layer1_url, "ARCGIS_LAYER1")
    ids = [int(i) for i in object_ids]

    client = _make_client()
    items = await client.list_attachments(layer, ids)
    return {"object_ids": ids, "attachments": [_attachment_to_dict(a) for a in items]}


async def get_field_aliases(layer: str = "layer0") -> Dict[str, Any]:
    cfg = OmApprovalConfig.from_env()
    if layer == "layer0":
        url = _require(cfg.layer0_url, "ARCGIS_LAYER0")
    elif layer == "layer1":
        url = _require(cfg.layer1_url, "ARCGIS_LAYER1")
    else:
        raise ValidationError(f"Unknown layer {layer!r}; expected 'layer0' or 'layer1'.")

    cache = _get_cache(cfg)
    cache_key = ("field_aliases", url, cfg.mock_mode)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    client = _make_client()
    aliases = await client.get_field_aliases(url)

    out = {"layer": layer, "aliases": aliases}
    cache.set(cache_key, out)
    return out


async def approve_work_order(object_id: int) -> Dict[str, Any]:
    """Approve a work order in ArcGIS, then send the SAP confirmation.

    The two steps are not atomic: if SAP fails the ArcGIS edit stays applied
    and the result reports ``gis_applied=True`` with ``ok=False``.
    """
    cfg = OmApprovalConfig.from_env()
    layer = _require(cfg.layer0_url, "ARCGIS_LAYER0")
    oid = int(object_id)

    client = _make_client()
    rows = await client.query_features(layer, SAP_FIELDS, f"objectid={oid}")
    if not rows:
        return {
            "ok": False,
            "mensaje": f"Work order with objectid {oid} was not found.",
            "gis_applied": False,
            "sap": None,
        }
    row = rows[0]

    applied = await client.approve_work_order(layer, oid)
    if not applied:
        return {
            "ok": False,
            "mensaje": "The work order could not be approved in ArcGIS.",
            "gis_applied": False,
            "sap": None,
        }

    order_id = _as_text(row.get("orde_m_id"))
    logger.info("Work order %s (objectid %s) approved in ArcGIS.", order_id, oid)

    sap = _make_sap_client()
    result = await sap.notify_sap(
        order_id,
        _as_text(row.get("organizac")),
        row.get("start_time_field"),
        row.get("end_time_field"),
    )
    if not result.success:
        logger.warning(
            "Work order %s is approved in ArcGIS but the SAP confirmation failed: %s",
            order_id,
            result.message,
        )
        return {"ok": False, "mensaje": result.message, "gis_applied": True, "sap": asdict(result)}

    return {
        "ok": True,
        "mensaje": f"Work order {order_id} approved. {result.message}",
        "gis_applied": True,
        "sap": asdict(result),
    }


async def reject_work_order(object_id: int, note: str) -> Dict[str, Any]:
    cfg = OmApprovalConfig.from_env()
    layer = _require(cfg.layer0_url, "ARCGIS_LAYER0")

    if not note or not note.strip():
        return {"ok": False, "mensaje": "A rejection note is required."}

    client = _make_client()
    applied = await client.reject_work_order(layer, int(object_id), note.strip())
    if not applied:
        return {"ok": False, "mensaje": "The work order could not be rejected in ArcGIS."}
    return {"ok": True, "mensaje": "Work order rejected."}


async def _edit_activity(object_id: int, key: str, approve: bool) -> Dict[str, Any]:
    cfg = OmApprovalConfig.from_env()
    layer = _require(cfg.layer1_url, "ARCGIS_LAYER1")

    try:
        activity_key = ActivityKey(key)
    except ValidationError as exc:
        return {"ok": False, "mensaje": str(exc)}

    client = _make_client()
    if approve:
        applied = await client.approve_activity(layer, int(object_id), activity_key)
    else:
        applied = await client.reject_activity(layer, int(object_id), activity_key)

    verb = "approved" if approve else "rejected"
    if not applied:
        return {"ok": False, "mensaje": f"The activity could not be {verb} in ArcGIS."}
    return {"ok": True, "mensaje": f"Activity {activity_key} {verb}."}


async def approve_activity(object_id: int, key: str) -> Dict[str, Any]:
    return await _edit_activity(object_id, key, approve=True)


async def reject_activity(object_id: int, key: str) -> Dict[str, Any]:
    return await _edit_activity(object_id, key, approve=False)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def _host(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return urlparse(url).hostname or url


def _collect_config_info() -> Dict[str, Any]:
    """Redacted snapshot of the configuration (no secrets)."""
    cfg = OmApprovalConfig.from_env()
    return {
        "mock_mode": bool(cfg.mock_mode),
        "verify_tls": bool(cfg.verify_tls),
        "arcgis": {
            "layer0_configured": bool(cfg.layer0_url),
            "layer1_configured": bool(cfg.layer1_url),
            "host": _host(cfg.layer0_url),
            "token_url_configured": bool(cfg.token_url),
            "username_configured": bool(cfg.username),
            "password_configured": bool(cfg.password),
            "relationship_id": cfg.relationship_id,
            "token_expiration_minutes": cfg.token_expiration_minutes,
        },
        "sap": {
            "api_configured": bool(cfg.sap_api_url),
            "host": _host(cfg.sap_api_url),
            "user_configured": bool(cfg.sap_user),
            "password_configured": bool(cfg.sap_password),
        },
    }


async def diagnostics() -> Dict[str, Any]:
    started = time.time()
    cfg = OmApprovalConfig.from_env()
    config_info = _collect_config_info()
    cache = _get_cache(cfg)

    checks: List[Dict[str, Any]] = []

    async def _check(name: str, coro_factory) -> None:
        t0 = time.time()
        try:
            detail = await coro_factory()
            check = {"name": name, "ok": True, "error": None}
            if detail is not None:
                check.update(detail)
        except Exception as exc:  # noqa: BLE001
            check = {"name": name, "ok": False, "error": str(exc)}
        check["elapsed_ms"] = int((time.time() - t0) * 1000)
        checks.append(check)

    client: Any = None

    async def _init() -> None:
        nonlocal client
        client = _make_client()

    async def _token() -> Dict[str, Any]:
        value = await client.tokens.get_token()
        return {"token_length": len(value)}

    async def _aliases() -> Dict[str, Any]:
        aliases = await client.get_field_aliases(_require(cfg.layer0_url, "ARCGIS_LAYER0"))
        return {"field_count": len(aliases)}

    await _check("client_init", _init)
    if client is not None:
        await _check("token", _token)
        await _check("layer0_metadata", _aliases)

    return {
        "ok": all(c["ok"] for c in checks),
        "mock_mode": config_info["mock_mode"],
        "config": config_info,
        "checks": checks,
        "meta": {"elapsed_ms": int((time.time() - started) * 1000), "cache": cache.stats()},
    }


# ---------------------------------------------------------------------------
# MCP tool registration
# ---------------------------------------------------------------------------


def register_tools(server: Any) -> None:
    """Register MCP tools on an MCP Server-like instance."""
    if server is None or not hasattr(server, "tool"):
        raise ValueError(
            "register_tools(server) expects an MCP Server-like object that exposes a .tool() decorator."
        )

    @server.tool(name="om_list_work_orders", description="List maintenance work orders (layer 0) matching an ArcGIS where clause.")
    async def mcp_list_work_orders(where: str = "1=1") -> Dict[str, Any]:
        return await list_work_orders(where=where)

    @server.tool(name="om_get_work_order", description="Get a maintenance work order by its OM number.")
    async def mcp_get_work_order(om: str) -> Dict[str, Any]:
        return await get_work_order(om=om)

    @server.tool(name="om_list_activities", description="List the activities related to a work order.")
    async def mcp_list_activities(object_id: int, relationship_id: Optional[str] = None) -> Dict[str, Any]:
        return await list_activities(object_id=object_id, relationship_id=relationship_id)

    @server.tool(
        name="om_list_attachments",
        description="List photo attachments of activity records, with token-authenticated download URLs.",
    )
    async def mcp_list_attachments(object_ids: List[int]) -> Dict[str, Any]:
        return await list_attachments(object_ids=object_ids)

    @server.tool(name="om_get_field_aliases", description="Get display aliases of the fields of 'layer0' or 'layer1'.")
    async def mcp_get_field_aliases(layer: str = "layer0") -> Dict[str, Any]:
        return await get_field_aliases(layer=layer)

    @server.tool(
        name="om_approve_work_order",
        description="Approve a work order in ArcGIS and send the work confirmation to SAP.",
    )
    async def mcp_approve_work_order(object_id: int) -> Dict[str, Any]:
        return await approve_work_order(object_id=object_id)

    @server.tool(name="om_reject_work_order", description="Reject a work order in ArcGIS with a note.")
    async def mcp_reject_work_order(object_id: int, note: str) -> Dict[str, Any]:
        return await reject_work_order(object_id=object_id, note=note)

    @server.tool(name="om_approve_activity", description="Approve one activity of a work order.")
    async def mcp_approve_activity(object_id: int, key: str) -> Dict[str, Any]:
        return await approve_activity(object_id=object_id, key=key)

    @server.tool(name="om_reject_activity", description="Reject one activity of a work order.")
    async def mcp_reject_activity(object_id: int, key: str) -> Dict[str, Any]:
        return await reject_activity(object_id=object_id, key=key)

    @server.tool(name="om_diagnostics", description="Check configuration, ArcGIS token and layer metadata access.")
    async def mcp_diagnostics() -> Dict[str, Any]:
        return await diagnostics()
