"""Audit trail of book status changes."""

from .logger import AuditLogger, describe_transition

__all__ = ["AuditLogger", "describe_transition"]
