"""Audit trail of book status transitions."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..db.models import AuditEntry
from ..db.schemas import BookStatus
from ..db.sqlite import Database

logger = logging.getLogger(__name__)


def describe_transition(old: BookStatus, new: BookStatus) -> str:
    """Human-readable description of a status change."""
    return f"Status changed from {old.value} to {new.value}"


class AuditLogger:
    """Appends one audit entry per real book status change."""

    def __init__(
        self,
        db: Database,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the audit logger.

        Args:
            db: Database instance
            clock: Timestamp source (default: current UTC time)
        """
        self.db = db
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def record_transition(
        self,
        book_id: int,
        old: BookStatus,
        new: BookStatus,
        session: Optional[Session] = None,
    ) -> Optional[AuditEntry]:
        """Record a status transition.

        Writes nothing when old and new are the same, so a rewrite of the
        current status leaves no trace.

        Args:
            book_id: Book whose status was written
            old: Status before the write
            new: Status after the write
            session: Session of the transaction that made the change

        Returns:
            The appended entry, or None for a no-op write
        """
        if old == new:
            return None

        entry = self.db.append_audit_entry(
            book_id, describe_transition(old, new), self.clock(), session=session
        )
        logger.debug("Audit: book %s %s -> %s", book_id, old.value, new.value)
        return entry

    def trail(self, book_id: int, session: Optional[Session] = None) -> list[AuditEntry]:
        """Audit entries for a book, oldest first."""
        return self.db.list_audit_entries(book_id=book_id, session=session)
