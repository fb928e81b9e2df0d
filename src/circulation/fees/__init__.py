"""Overdue fee calculator."""

from .calculator import DEFAULT_POLICY, FeePolicy, compute_overdue_fee, overdue_days

__all__ = [
    "DEFAULT_POLICY",
    "FeePolicy",
    "compute_overdue_fee",
    "overdue_days",
]
