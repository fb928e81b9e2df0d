"""Data integrity checking.

Verifies that each book's cached status agrees with its loan records.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sqlalchemy import func, select

from ..db.models import Book, Loan, utc_now
from ..db.schemas import BookStatus
from ..db.sqlite import Database, get_db


class IssueSeverity(str, Enum):
    """Severity level for integrity issues."""

    WARNING = "warning"
    ERROR = "error"


@dataclass
class IntegrityIssue:
    """An integrity issue found during checking."""

    severity: IssueSeverity
    category: str
    message: str
    book_id: Optional[int] = None
    book_title: Optional[str] = None

    def __str__(self) -> str:
        """String representation."""
        prefix = f"[{self.severity.value.upper()}]"
        book_info = f" (Book: {self.book_title})" if self.book_title else ""
        return f"{prefix} {self.category}: {self.message}{book_info}"


@dataclass
class IntegrityReport:
    """Report from integrity check."""

    checked_at: str
    book_count: int = 0
    open_loan_count: int = 0
    issues: list[IntegrityIssue] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.issues

    def get_issues_by_category(self, category: str) -> list[IntegrityIssue]:
        """Get issues of a specific category."""
        return [i for i in self.issues if i.category == category]


class IntegrityChecker:
    """Checks that book status and open loans agree."""

    def __init__(self, db: Optional[Database] = None):
        """Initialize integrity checker.

        Args:
            db: Database instance
        """
        self.db = db or get_db()

    def check_all(self) -> IntegrityReport:
        """Run all integrity checks.

        Returns:
            IntegrityReport with all issues found
        """
        report = IntegrityReport(checked_at=utc_now())

        with self.db.get_session() as session:
            open_by_book = Counter(
                book_id
                for (book_id,) in session.execute(
                    select(Loan.book_id).where(Loan.date_returned.is_(None))
                ).all()
            )
            books = list(session.execute(select(Book).order_by(Book.id)).scalars().all())

            report.book_count = len(books)
            report.open_loan_count = sum(open_by_book.values())

            for book in books:
                report.issues.extend(self._check_book(book, open_by_book[book.id]))

            report.issues.extend(self._check_orphaned_loans(session))

        return report

    def _check_book(self, book: Book, open_loans: int) -> list[IntegrityIssue]:
        issues = []

        if open_loans > 1:
            issues.append(
                IntegrityIssue(
                    severity=IssueSeverity.ERROR,
                    category="multiple_open_loans",
                    message=f"{open_loans} open loans for one copy",
                    book_id=book.id,
                    book_title=book.title,
                )
            )

        if book.status == BookStatus.BORROWED.value and open_loans == 0:
            issues.append(
                IntegrityIssue(
                    severity=IssueSeverity.ERROR,
                    category="status_mismatch",
                    message="Marked borrowed but has no open loan",
                    book_id=book.id,
                    book_title=book.title,
                )
            )
        elif book.status == BookStatus.AVAILABLE.value and open_loans > 0:
            issues.append(
                IntegrityIssue(
                    severity=IssueSeverity.ERROR,
                    category="status_mismatch",
                    message="Marked available but has an open loan",
                    book_id=book.id,
                    book_title=book.title,
                )
            )

        return issues

    def _check_orphaned_loans(self, session) -> list[IntegrityIssue]:
        """Loans pointing at books that no longer exist."""
        stmt = (
            select(Loan.book_id, func.count(Loan.id))
            .outerjoin(Book, Book.id == Loan.book_id)
            .where(Book.id.is_(None))
            .group_by(Loan.book_id)
        )
        return [
            IntegrityIssue(
                severity=IssueSeverity.WARNING,
                category="orphaned_loans",
                message=f"{count} loan(s) reference missing book {book_id}",
                book_id=book_id,
            )
            for book_id, count in session.execute(stmt).all()
        ]
