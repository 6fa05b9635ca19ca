# ArcGIS OM Approval MCP Server
# File: errors.py
# Version: v1

"""Exception types raised by the ArcGIS and SAP clients.

Edit rejections are not exceptions: the edit methods return ``False``.
"""

from __future__ import annotations


class OmApprovalError(RuntimeError):
    """Base class for every error raised by this package."""


class AuthError(OmApprovalError):
    """The ArcGIS token endpoint could not be reached or returned no token."""


class QueryError(OmApprovalError):
    """A query or metadata call failed or returned an unusable body."""


class TransportFailure(OmApprovalError):
    """An applyEdits request failed before a response arrived (connection, TLS, timeout).

    Read calls report the same condition as ``QueryError`` and the token
    endpoint as ``AuthError``, so each caller sees one exception per operation.
    """


class ValidationError(OmApprovalError, ValueError):
    """Caller input was rejected before any request was sent."""
