"""Manager for read-only circulation reports.

Reports never write. Each one reads inside a single session, so it sees a
consistent view of the store without holding the write lock.
"""

import logging
from collections import Counter, defaultdict
from datetime import date
from typing import Callable, Optional

from sqlalchemy import func, select

from ..config import get_config
from ..db.models import Book, Borrower, Loan
from ..db.sqlite import Database, get_db
from ..errors import NotFoundError, ValidationError
from ..fees import FeePolicy, compute_overdue_fee
from .ranking import age_group, dense_rank
from .schemas import (
    ActiveBorrower,
    AuthorRank,
    BorrowerLoan,
    BorrowingFrequency,
    GenreCount,
    GenrePreference,
    OverdueBorrowerDetail,
    OverdueLoan,
    PeriodLoan,
)

logger = logging.getLogger(__name__)


class ReportManager:
    """Generates borrower activity, popularity and overdue reports."""

    def __init__(
        self,
        db: Optional[Database] = None,
        fee_policy: Optional[FeePolicy] = None,
        overdue_threshold_days: Optional[int] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        """Initialize the report manager.

        Args:
            db: Database instance
            fee_policy: Rates used to price overdue loans (default: from configuration)
            overdue_threshold_days: Default threshold for overdue analysis
            clock: Source of today's date
        """
        self.db = db or get_db()

        if fee_policy is None or overdue_threshold_days is None:
            config = get_config()
            fee_policy = fee_policy or FeePolicy.from_config(config)
            if overdue_threshold_days is None:
                overdue_threshold_days = config.overdue_threshold_days

        self.fee_policy = fee_policy
        self.overdue_threshold_days = overdue_threshold_days
        self.clock = clock or date.today

    # ========================================================================
    # Borrower Activity
    # ========================================================================

    def loans_for_borrower(self, borrower_id: int) -> list[BorrowerLoan]:
        """All loans a borrower has taken, in checkout order.

        Raises:
            NotFoundError: If the borrower does not exist
        """
        with self.db.get_session() as session:
            if not session.get(Borrower, borrower_id):
                raise NotFoundError("Borrower", borrower_id)

            stmt = (
                select(Loan, Book.title, Book.author)
                .join(Book, Book.id == Loan.book_id)
                .where(Loan.borrower_id == borrower_id)
                .order_by(Loan.id)
            )
            return [
                BorrowerLoan(
                    loan_id=loan.id,
                    book_id=loan.book_id,
                    title=title,
                    author=author,
                    date_borrowed=loan.borrowed_on,
                    due_date=loan.due_on,
                    date_returned=loan.returned_on,
                )
                for loan, title, author in session.execute(stmt).all()
            ]

    def active_borrowers(self, min_open_loans: int = 1) -> list[ActiveBorrower]:
        """Borrowers holding at least min_open_loans open loans.

        Raises:
            ValidationError: If min_open_loans is less than 1
        """
        if min_open_loans < 1:
            raise ValidationError("min_open_loans must be at least 1")

        open_count = func.count(Loan.id)
        stmt = (
            select(Borrower, open_count)
            .join(Loan, Loan.borrower_id == Borrower.id)
            .where(Loan.date_returned.is_(None))
            .group_by(Borrower.id)
            .having(open_count >= min_open_loans)
            .order_by(Borrower.id)
        )

        with self.db.get_session() as session:
            return [
                ActiveBorrower(
                    borrower_id=borrower.id,
                    first_name=borrower.first_name,
                    last_name=borrower.last_name,
                    email=borrower.email,
                    open_loans=count,
                )
                for borrower, count in session.execute(stmt).all()
            ]

    def borrowing_frequency(self) -> list[BorrowingFrequency]:
        """Loans ever taken per borrower, most active first.

        Borrowers who never borrowed are not listed.
        """
        total = func.count(Loan.id).over(partition_by=Loan.borrower_id)
        stmt = (
            select(Borrower.id, Borrower.first_name, Borrower.last_name, total)
            .join(Loan, Loan.borrower_id == Borrower.id)
            .distinct()
        )

        with self.db.get_session() as session:
            rows = session.execute(stmt).all()

        report = [
            BorrowingFrequency(
                borrower_id=borrower_id,
                first_name=first_name,
                last_name=last_name,
                total_loans=count,
            )
            for borrower_id, first_name, last_name, count in rows
        ]
        report.sort(key=lambda r: (-r.total_loans, r.last_name, r.first_name, r.borrower_id))
        return report

    def loans_between(self, start: date, end: date) -> list[PeriodLoan]:
        """Loans checked out between start and end, inclusive.

        Raises:
            ValidationError: If start is after end
        """
        if start > end:
            raise ValidationError(f"Start date {start} is after end date {end}")

        stmt = (
            select(Loan, Book.title, Borrower.first_name, Borrower.last_name)
            .join(Book, Book.id == Loan.book_id)
            .join(Borrower, Borrower.id == Loan.borrower_id)
            .where(
                Loan.date_borrowed >= start.isoformat(),
                Loan.date_borrowed <= end.isoformat(),
            )
            .order_by(Loan.date_borrowed, Loan.id)
        )

        with self.db.get_session() as session:
            return [
                PeriodLoan(
                    loan_id=loan.id,
                    title=title,
                    borrower_name=f"{first} {last}",
                    date_borrowed=loan.borrowed_on,
                    due_date=loan.due_on,
                    date_returned=loan.returned_on,
                )
                for loan, title, first, last in session.execute(stmt).all()
            ]

    # ========================================================================
    # Popularity
    # ========================================================================

    def popular_genres(self, month: int, year: Optional[int] = None) -> list[GenreCount]:
        """Loans per genre for books borrowed in a given month.

        Args:
            month: Month of the borrow date (1-12)
            year: Restrict to this year (default: the month in any year)

        Returns:
            Genres by descending loan count, ties by genre name

        Raises:
            ValidationError: If month is not 1-12
        """
        if not 1 <= month <= 12:
            raise ValidationError(f"Month must be 1-12, got {month}")

        stmt = (
            select(Book.genre, func.count(Loan.id))
            .join(Loan, Loan.book_id == Book.id)
            .where(
                Book.genre.is_not(None),
                func.substr(Loan.date_borrowed, 6, 2) == f"{month:02d}",
            )
            .group_by(Book.genre)
        )
        if year is not None:
            stmt = stmt.where(func.substr(Loan.date_borrowed, 1, 4) == f"{year:04d}")

        with self.db.get_session() as session:
            rows = session.execute(stmt).all()

        report = [GenreCount(genre=genre, loan_count=count) for genre, count in rows]
        report.sort(key=lambda r: (-r.loan_count, r.genre))
        return report

    def author_popularity(self) -> list[AuthorRank]:
        """Loans per author with dense rank. Tied authors share a rank."""
        stmt = (
            select(Book.author, func.count(Loan.id))
            .join(Loan, Loan.book_id == Book.id)
            .group_by(Book.author)
        )

        with self.db.get_session() as session:
            rows = session.execute(stmt).all()

        ranked = dense_rank(rows, score=lambda r: r[1], tie_break=lambda r: r[0])
        return [
            AuthorRank(author=author, loan_count=count, rank=rank)
            for rank, (author, count) in ranked
        ]

    def genre_preference_by_age_group(
        self, as_of: Optional[date] = None
    ) -> list[GenrePreference]:
        """Most borrowed genre per age decade, counting returned loans only.

        Ages are computed on as_of (default: today). Borrowers without a
        birth date and books without a genre are left out. Genres tied for
        first place in a group each get a row.
        """
        as_of = as_of or self.clock()

        stmt = (
            select(Borrower, Book.genre)
            .join(Loan, Loan.borrower_id == Borrower.id)
            .join(Book, Book.id == Loan.book_id)
            .where(
                Loan.date_returned.is_not(None),
                Book.genre.is_not(None),
                Borrower.date_of_birth.is_not(None),
            )
        )

        counts: dict[int, Counter] = defaultdict(Counter)
        with self.db.get_session() as session:
            for borrower, genre in session.execute(stmt).all():
                age = borrower.age_on(as_of)
                if age is None or age < 0:
                    continue
                counts[age_group(age)][genre] += 1

        report = []
        for group in sorted(counts):
            ranked = dense_rank(
                counts[group].items(), score=lambda g: g[1], tie_break=lambda g: g[0]
            )
            report.extend(
                GenrePreference(age_group=group, genre=genre, loan_count=count, rank=rank)
                for rank, (genre, count) in ranked
                if rank == 1
            )
        return report

    # ========================================================================
    # Overdue
    # ========================================================================

    def _open_overdue(self, session, as_of: date):
        stmt = (
            select(Loan, Book.title, Borrower)
            .join(Book, Book.id == Loan.book_id)
            .join(Borrower, Borrower.id == Loan.borrower_id)
            .where(Loan.date_returned.is_(None), Loan.due_date < as_of.isoformat())
        )
        return session.execute(stmt).all()

    def overdue_analysis(
        self,
        threshold_days: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> list[OverdueLoan]:
        """Open loans more than threshold_days overdue, most overdue first.

        Args:
            threshold_days: Minimum overdue days, exclusive (default: configured, 30)
            as_of: Date to measure lateness on (default: today)

        Raises:
            ValidationError: If threshold_days is negative
        """
        if threshold_days is None:
            threshold_days = self.overdue_threshold_days
        if threshold_days < 0:
            raise ValidationError("threshold_days must not be negative")
        as_of = as_of or self.clock()

        report = []
        with self.db.get_session() as session:
            for loan, title, borrower in self._open_overdue(session, as_of):
                days = loan.days_overdue(as_of)
                if days <= threshold_days:
                    continue
                report.append(
                    OverdueLoan(
                        loan_id=loan.id,
                        book_id=loan.book_id,
                        title=title,
                        borrower_id=borrower.id,
                        borrower_name=borrower.full_name,
                        due_date=loan.due_on,
                        days_overdue=days,
                        fee=compute_overdue_fee(loan.due_on, as_of, self.fee_policy),
                    )
                )

        report.sort(key=lambda r: (-r.days_overdue, r.loan_id))
        logger.debug("Overdue analysis on %s: %d loans", as_of, len(report))
        return report

    def overdue_borrowers_detail(
        self, as_of: Optional[date] = None
    ) -> list[OverdueBorrowerDetail]:
        """Every overdue loan with its borrower's overdue count.

        Ordered by borrower last name, first name, then most overdue first.
        """
        as_of = as_of or self.clock()

        with self.db.get_session() as session:
            rows = [
                (borrower, loan, title)
                for loan, title, borrower in self._open_overdue(session, as_of)
            ]
            per_borrower = Counter(borrower.id for borrower, _, _ in rows)

            rows.sort(
                key=lambda r: (
                    r[0].last_name,
                    r[0].first_name,
                    r[0].id,
                    -r[1].days_overdue(as_of),
                    r[1].id,
                )
            )
            return [
                OverdueBorrowerDetail(
                    borrower_id=borrower.id,
                    borrower_name=borrower.full_name,
                    overdue_count=per_borrower[borrower.id],
                    loan_id=loan.id,
                    title=title,
                    due_date=loan.due_on,
                    days_overdue=loan.days_overdue(as_of),
                )
                for borrower, loan, title in rows
            ]
