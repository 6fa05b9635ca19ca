# ArcGIS OM Approval MCP Server
# File: config.py
# Version: v1

"""Configuration loading for the ArcGIS OM Approval MCP Server."""

from __future__ import annotations

from dataclasses import dataclass
import os


DEFAULT_REFERER = "https://sigtranselec.maps.arcgis.com"


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int_env(
    name: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Parse an int environment variable with clamping and safe fallback."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = int(default)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = int(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


def _parse_str_env(name: str) -> str | None:
    """Return a stripped env value, treating blank strings as unset."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


@dataclass
class OmApprovalConfig:
    """Endpoints and credentials for the ArcGIS layers and the SAP API.

    ``layer0_url`` is the work-order layer, ``layer1_url`` the activity table
    that also carries the photo attachments.
    """

    layer0_url: str | None
    layer1_url: str | None
    token_url: str | None
    username: str | None
    password: str | None

    sap_api_url: str | None
    sap_user: str | None
    sap_password: str | None

    mock_mode: bool = False
    referer: str = DEFAULT_REFERER
    token_expiration_minutes: int = 60
    relationship_id: str = "7"

    verify_tls: bool = True
    http_timeout_seconds: int = 30

    # field-alias caching
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 32

    @classmethod
    def from_env(cls) -> "OmApprovalConfig":
        """Create configuration from environment variables."""
        token_expiration_minutes = _parse_int_env(
            "ARCGIS_TOKEN_EXPIRATION_MINUTES", default=60, min_value=10, max_value=20160
        )
        http_timeout_seconds = _parse_int_env(
            "OM_HTTP_TIMEOUT_SECONDS", default=30, min_value=1, max_value=600
        )
        cache_ttl_seconds = _parse_int_env(
            "OM_CACHE_TTL_SECONDS", default=300, min_value=0, max_value=86400
        )
        cache_max_entries = _parse_int_env(
            "OM_CACHE_MAX_ENTRIES", default=32, min_value=0, max_value=10000
        )

        return cls(
            layer0_url=_parse_str_env("ARCGIS_LAYER0"),
            layer1_url=_parse_str_env("ARCGIS_LAYER1"),
            token_url=_parse_str_env("ARCGIS_URL_TOKEN"),
            username=_parse_str_env("ARCGIS_USERNAME"),
            password=os.getenv("ARCGIS_PASSWORD"),
            sap_api_url=_parse_str_env("SAP_API_URL"),
            sap_user=_parse_str_env("SAP_USER"),
            sap_password=os.getenv("SAP_PASSWORD"),
            mock_mode=_parse_bool_env("OM_MOCK_MODE", default=False),
            referer=_parse_str_env("ARCGIS_REFERER") or DEFAULT_REFERER,
            token_expiration_minutes=token_expiration_minutes,
            relationship_id=_parse_str_env("ARCGIS_RELATIONSHIP_ID") or "7",
            verify_tls=_parse_bool_env("OM_VERIFY_TLS", default=True),
            http_timeout_seconds=http_timeout_seconds,
            cache_ttl_seconds=cache_ttl_seconds,
            cache_max_entries=cache_max_entries,
        )
