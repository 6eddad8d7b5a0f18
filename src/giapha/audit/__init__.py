"""Append-only audit trail of effected actions."""
from __future__ import annotations

from giapha.audit.log import AuditAction, AuditEntry, AuditLog

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditLog",
]
