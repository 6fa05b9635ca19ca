# ArcGIS OM Approval MCP Server
# File: sap.py
# Version: v1

"""Client for the SAP work-confirmation endpoint.

``notify_sap`` never raises: every failure becomes a
``SapNotificationResult(success=False, ...)`` so callers can combine it
with the outcome of the preceding ArcGIS edit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

import httpx

from .config import OmApprovalConfig
from .errors import ValidationError
from .models import SapNotificationResult

logger = logging.getLogger(__name__)

OPERATION_CODE = "0010"  # VORNR
REASON_CODE = "TRFI"  # GRUND
PLANT_CODE = "0060"  # PLANT

SUCCESS_MESSAGE = "SAP confirmation sent successfully."


def epoch_millis_to_datetime(value: Union[str, int, float, None]) -> datetime:
    """Convert Unix epoch milliseconds to a UTC datetime.

    Floats are accepted only when integral (ArcGIS query rows carry dates as
    floats).
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{value!r} is not a valid epoch-milliseconds timestamp.")

    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{value!r} is not a valid epoch-milliseconds timestamp.")
        millis = int(value)
    else:
        try:
            millis = int(str(value).strip())
        except ValueError as exc:
            raise ValidationError(
                f"{value!r} is not a valid epoch-milliseconds timestamp."
            ) from exc

    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise ValidationError(f"Timestamp {millis} is out of range.") from exc


def build_confirmation(
    order_id: str,
    organization: str,
    start: datetime,
    end: datetime,
    today: datetime,
) -> Dict[str, str]:
    """Build the fixed-shape confirmation body expected by SAP."""
    return {
        "VORNR": OPERATION_CODE,
        "AUFNR": order_id,
        "BUDAT": today.strftime("%Y%m%d"),
        "ARBPL": organization,
        "ISDD": start.strftime("%Y%m%d"),
        "ISDZ": start.strftime("%H%M%S"),
        "IEDD": end.strftime("%Y%m%d"),
        "IEDZ": end.strftime("%H%M%S"),
        "GRUND": REASON_CODE,
        "PLANT": PLANT_CODE,
    }


@dataclass
class SapClient:
    """Send work confirmations for approved work orders to SAP."""

    config: OmApprovalConfig
    today: Callable[[], datetime] = datetime.now
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def notify_sap(
        self,
        order_id: Optional[str],
        organization: Optional[str],
        start_epoch_millis: Union[str, int, float, None],
        end_epoch_millis: Union[str, int, float, None],
    ) -> SapNotificationResult:
        try:
            payload = self._prepare(order_id, organization, start_epoch_millis, end_epoch_millis)
        except ValidationError as exc:
            logger.warning("SAP confirmation for order %r not sent: %s", order_id, exc)
            return SapNotificationResult(success=False, message=f"Invalid SAP request: {exc}")

        url = self.config.sap_api_url
        if not url:
            return SapNotificationResult(
                success=False,
                message="SAP_API_URL is not set; cannot send the SAP confirmation.",
            )

        try:
            async with httpx.AsyncClient(
                timeout=float(self.config.http_timeout_seconds),
                verify=self.config.verify_tls,
                transport=self.transport,
            ) as http_client:
                # SAP expects a GET that carries a JSON body.
                response = await http_client.request(
                    "GET",
                    url,
                    json=payload,
                    auth=(self.config.sap_user or "", self.config.sap_password or ""),
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            body_preview = exc.response.text[:500]
            logger.warning("SAP confirmation for order %s failed (HTTP %s).", order_id, status)
            return SapNotificationResult(
                success=False,
                message=f"Error sending to SAP (HTTP {status}): {body_preview}",
            )
        except httpx.HTTPError as exc:
            logger.warning("SAP confirmation for order %s failed: %s", order_id, exc)
            return SapNotificationResult(success=False, message=f"Error sending to SAP: {exc}")
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error sending SAP confirmation for order %s", order_id)
            return SapNotificationResult(success=False, message=f"Unexpected error: {exc}")

        logger.debug("SAP response for order %s: %s", order_id, response.text[:500])
        return SapNotificationResult(success=True, message=SUCCESS_MESSAGE)

    def _prepare(
        self,
        order_id: Optional[str],
        organization: Optional[str],
        start_epoch_millis: Any,
        end_epoch_millis: Any,
    ) -> Dict[str, str]:
        order = str(order_id).strip() if order_id is not None else ""
        org = str(organization).strip() if organization is not None else ""
        if not order or not org:
            raise ValidationError("Order id and organization must not be empty.")

        start = epoch_millis_to_datetime(start_epoch_millis)
        end = epoch_millis_to_datetime(end_epoch_millis)
        return build_confirmation(order, org, start, end, self.today())
