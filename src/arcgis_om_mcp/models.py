# ArcGIS OM Approval MCP Server
# File: models.py
# Version: v1

"""Domain models used by the ArcGIS OM Approval MCP server."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .errors import ValidationError


# Scalar kinds carried by feature and related-record rows.
FieldValue = Union[str, int, float, bool, None]
FeatureRow = Dict[str, FieldValue]

# applyEdits outcome: True only when the server confirmed the update.
EditResult = bool

_ACTIVITY_KEY_RE = re.compile(r"^[A-Za-z0-9_]+$")

# Per-activity acceptance flags live in fields named g1vala<key>.
ACTIVITY_FLAG_PREFIX = "g1vala"


@dataclass(frozen=True)
class Token:
    """An ArcGIS token and the epoch second after which it must not be reused."""

    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class ActivityKey:
    """Identifier of an activity slot inside a work order."""

    value: str

    def __post_init__(self) -> None:
        raw = str(self.value).strip() if self.value is not None else ""
        if not _ACTIVITY_KEY_RE.match(raw):
            raise ValidationError(
                f"Invalid activity key {self.value!r}: expected letters, digits or '_'."
            )
        object.__setattr__(self, "value", raw)

    @property
    def flag_field(self) -> str:
        return f"{ACTIVITY_FLAG_PREFIX}{self.value}"

    def __str__(self) -> str:
        return self.value


@dataclass
class RelatedRecordGroup:
    """Child rows related to a single parent feature."""

    object_id: int
    records: List[FeatureRow] = field(default_factory=list)


@dataclass
class AttachmentDescriptor:
    """A downloadable attachment of a related record.

    The URL embeds the token it was built with and stops working when that
    token expires.
    """

    object_id: int
    url: str
    keyword: str = ""

    # Raw attachmentInfos entry, for debugging / advanced use.
    raw: Optional[Dict[str, Any]] = None


@dataclass
class SapNotificationResult:
    """Outcome of a SAP work confirmation call."""

    success: bool
    message: str
