# ArcGIS OM Approval MCP Server
# File: client.py
# Version: v1
"""High-level client for the ArcGIS Feature Service REST API.

Implements:

- query_features() via <layer>/query
- query_related() via <layer>/queryRelatedRecords
- list_attachments() via <layer>/queryAttachments
- get_field_aliases() via the layer metadata document
- approve/reject of work orders and activities via <layer>/applyEdits
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import httpx
from httpx import HTTPStatusError, RequestError

from .auth import ArcGisTokenClient
from .config import OmApprovalConfig
from .errors import QueryError, TransportFailure
from .models import (
    ActivityKey,
    AttachmentDescriptor,
    EditResult,
    FeatureRow,
    FieldValue,
    RelatedRecordGroup,
)

logger = logging.getLogger(__name__)

ACCEPT = 1
REJECT = 2
STATE_SEND_TO_SAP = 2

# applyEdits reports {"success": true} per update; spacing varies by server.
_SUCCESS_MARKER = re.compile(r'"success"\s*:\s*true')


def is_edit_success(body: str) -> bool:
    """Return True if an applyEdits response body carries the success marker."""
    return bool(_SUCCESS_MARKER.search(body or ""))


def _ci_get(mapping: Mapping[str, Any], key: str) -> Any:
    """Case-insensitive dict lookup (exact match first)."""
    if key in mapping:
        return mapping[key]
    lowered = key.lower()
    for k, v in mapping.items():
        if isinstance(k, str) and k.lower() == lowered:
            return v
    return None


def _ci_has(mapping: Mapping[str, Any], key: str) -> bool:
    if key in mapping:
        return True
    lowered = key.lower()
    return any(isinstance(k, str) and k.lower() == lowered for k in mapping)


def _feature_value(value: Any) -> FieldValue:
    """Normalise a /query attribute: every number becomes a float."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


def _related_value(value: Any) -> FieldValue:
    """Normalise a related-record attribute, keeping int/float/bool apart."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return json.dumps(value, separators=(",", ":"))


@dataclass
class ArcGisClient:
    """Wrapper around the feature layers that hold work orders and activities."""

    config: OmApprovalConfig
    tokens: ArcGisTokenClient
    transport: Optional[httpx.AsyncBaseTransport] = None

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=float(self.config.http_timeout_seconds),
            verify=self.config.verify_tls,
            transport=self.transport,
        )

    async def _get_json(self, url: str, params: Dict[str, Any], what: str) -> Any:
        """GET a JSON document, raising QueryError on any failure."""
        async with self._http() as http_client:
            try:
                response = await http_client.get(url, params=params)
            except RequestError as exc:
                raise QueryError(f"Error calling ArcGIS at '{url}' ({what}): {exc}") from exc

        try:
            response.raise_for_status()
        except HTTPStatusError as exc:
            status = response.status_code
            body_preview = response.text[:500]
            raise QueryError(
                f"Failed to {what} from '{url}' (HTTP {status}). "
                f"Response snippet: {body_preview}"
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise QueryError(f"Response to {what} from '{url}' is not valid JSON.") from exc

        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            err = data["error"]
            raise QueryError(
                f"ArcGIS rejected the request to {what} at '{url}': "
                f"{err.get('code')} {err.get('message') or ''}".strip()
            )

        return data

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query_features(
        self,
        layer_url: str,
        fields: Sequence[str],
        where: str,
    ) -> List[FeatureRow]:
        """Return the requested attributes of every feature matching ``where``.

        Only requested fields are copied; a field missing from a feature is
        omitted from its row. Numbers are returned as floats.
        """
        token = await self.tokens.get_token()
        url = f"{layer_url.rstrip('/')}/query"
        params = {
            "where": where,
            "outFields": ",".join(fields),
            "returnGeometry": "false",
            "f": "json",
            "token": token,
        }

        data = await self._get_json(url, params, "query features")
        raw_features = _ci_get(data, "features") if isinstance(data, dict) else None

        rows: List[FeatureRow] = []
        for feature in raw_features or []:
            if not isinstance(feature, dict):
                continue
            attributes = _ci_get(feature, "attributes")
            if not isinstance(attributes, dict):
                attributes = {}

            row: FeatureRow = {}
            for name in fields:
                if _ci_has(attributes, name):
                    row[name] = _feature_value(_ci_get(attributes, name))
            rows.append(row)

        return rows

    async def query_related_groups(
        self,
        layer_url: str,
        parent_object_id: Union[int, str],
        relationship_id: Union[int, str],
    ) -> List[RelatedRecordGroup]:
        token = await self.tokens.get_token()
        url = f"{layer_url.rstrip('/')}/queryRelatedRecords"
        params = {
            "objectIds": str(parent_object_id),
            "relationshipId": str(relationship_id),
            "outFields": "*",
            "f": "json",
            "token": token,
        }

        data = await self._get_json(url, params, "query related records")
        raw_groups = _ci_get(data, "relatedRecordGroups") if isinstance(data, dict) else None

        groups: List[RelatedRecordGroup] = []
        for raw_group in raw_groups or []:
            if not isinstance(raw_group, dict):
                continue
            group = RelatedRecordGroup(object_id=_ci_get(raw_group, "objectId"))
            for record in _ci_get(raw_group, "relatedRecords") or []:
                attributes = _ci_get(record, "attributes") if isinstance(record, dict) else None
                if not isinstance(attributes, dict):
                    attributes = {}
                group.records.append(
                    {str(k): _related_value(v) for k, v in attributes.items()}
                )
            groups.append(group)

        return groups

    async def query_related(
        self,
        layer_url: str,
        parent_object_id: Union[int, str],
        relationship_id: Union[int, str],
    ) -> List[FeatureRow]:
        """Return every related child record of a parent, across all groups."""
        groups = await self.query_related_groups(layer_url, parent_object_id, relationship_id)
        return [record for group in groups for record in group.records]

    async def get_field_aliases(self, layer_url: str) -> Dict[str, str]:
        """Map each field name of a layer to its display alias."""
        token = await self.tokens.get_token()
        url = layer_url.rstrip("/")
        data = await self._get_json(url, {"f": "json", "token": token}, "read layer metadata")

        if not isinstance(data, dict):
            raise QueryError(
                f"Unexpected layer metadata from '{url}': "
                f"expected JSON object, got {type(data).__name__}."
            )

        fields = data.get("fields")
        if fields is None:
            return {}

        aliases: Dict[str, str] = {}
        try:
            for item in fields:
                name = str(item["name"])
                alias = item.get("alias")
                # Fields published without an alias display under their name.
                aliases[name] = name if alias is None or alias == "" else str(alias)
        except (TypeError, KeyError, AttributeError) as exc:
            raise QueryError(f"Malformed 'fields' list in layer metadata from '{url}'.") from exc

        return aliases

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def list_attachments(
        self,
        feature_server_url: str,
        parent_object_ids: Iterable[int],
    ) -> List[AttachmentDescriptor]:
        """List attachments of each parent record, one request per id.

        The token is read once so that every returned URL embeds the same one.
        """
        token = await self.tokens.get_token()
        base_url = feature_server_url.rstrip("/")
        url = f"{base_url}/queryAttachments"

        result: List[AttachmentDescriptor] = []
        for object_id in parent_object_ids:
            params = {"objectIds": str(object_id), "f": "json", "token": token}
            data = await self._get_json(url, params, f"query attachments of {object_id}")
            groups = _ci_get(data, "attachmentGroups") if isinstance(data, dict) else None

            for group in groups or []:
                infos = _ci_get(group, "attachmentInfos") if isinstance(group, dict) else None
                for info in infos or []:
                    attachment_id = info.get("id") if isinstance(info, dict) else None
                    if attachment_id is None:
                        raise QueryError(
                            f"Attachment entry without 'id' for object {object_id} at '{url}'."
                        )
                    keywords = info.get("keywords")
                    result.append(
                        AttachmentDescriptor(
                            object_id=int(object_id),
                            url=f"{base_url}/{object_id}/attachments/{attachment_id}?token={token}",
                            keyword="" if keywords is None else str(keywords),
                            raw=info,
                        )
                    )

        return result

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    async def apply_update(self, layer_url: str, attributes: Dict[str, Any]) -> EditResult:
        """Submit a single attribute update; True only if the server confirmed it."""
        token = await self.tokens.get_token()
        url = f"{layer_url.rstrip('/')}/applyEdits"
        updates = json.dumps([{"attributes": attributes}], separators=(",", ":"))
        form = {"updates": updates, "token": token, "f": "json"}

        async with self._http() as http_client:
            try:
                response = await http_client.post(url, data=form)
            except RequestError as exc:
                raise TransportFailure(f"Error calling ArcGIS applyEdits at '{url}': {exc}") from exc

        body = response.text or ""
        ok = response.is_success and is_edit_success(body)
        if not ok:
            logger.warning(
                "applyEdits on '%s' was not confirmed (HTTP %s): %s",
                url,
                response.status_code,
                body[:500],
            )
        return ok

    async def approve_work_order(self, layer_url: str, object_id: int) -> EditResult:
        return await self.apply_update(
            layer_url,
            {"objectid": object_id, "aceptar": ACCEPT, "estado": STATE_SEND_TO_SAP},
        )

    async def reject_work_order(self, layer_url: str, object_id: int, note: str) -> EditResult:
        return await self.apply_update(
            layer_url,
            {
                "objectid": object_id,
                "aceptar": REJECT,
                "estado": STATE_SEND_TO_SAP,
                "obs_activ": note,
            },
        )

    async def approve_activity(
        self,
        layer_url: str,
        object_id: int,
        activity_key: Union[ActivityKey, str],
    ) -> EditResult:
        key = activity_key if isinstance(activity_key, ActivityKey) else ActivityKey(activity_key)
        return await self.apply_update(layer_url, {"objectid": object_id, key.flag_field: ACCEPT})

    async def reject_activity(
        self,
        layer_url: str,
        object_id: int,
        activity_key: Union[ActivityKey, str],
    ) -> EditResult:
        key = activity_key if isinstance(activity_key, ActivityKey) else ActivityKey(activity_key)
        return await self.apply_update(layer_url, {"objectid": object_id, key.flag_field: REJECT})
