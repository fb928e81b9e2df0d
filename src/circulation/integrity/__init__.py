"""Consistency checks for the circulation store."""

from .checker import IntegrityChecker, IntegrityIssue, IntegrityReport, IssueSeverity

__all__ = ["IntegrityChecker", "IntegrityIssue", "IntegrityReport", "IssueSeverity"]
