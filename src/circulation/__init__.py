"""Library circulation engine.

Tracks which books are on loan and to whom, keeps book availability,
loan records and the audit trail consistent, computes overdue fees and
produces circulation reports.
"""

__version__ = "0.1.0"
