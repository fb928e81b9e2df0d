"""Circulation manager: the single mutation path for loans and book status."""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from ..audit import AuditLogger
from ..config import get_config
from ..db.models import AuditEntry, Book, Borrower, Loan
from ..db.schemas import BookCreate, BookStatus, BorrowerCreate
from ..db.sqlite import Database, get_db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..fees import FeePolicy, compute_overdue_fee, overdue_days

logger = logging.getLogger(__name__)


@dataclass
class ReturnResult:
    """Outcome of returning a loan."""

    loan: Loan
    fee: Decimal
    days_overdue: int


class CirculationManager:
    """Manages checkouts, returns and registrations.

    Each mutation runs as one transaction under the database write lock, so
    the open-loan check, the loan write, the book status write and the audit
    entry commit or roll back together.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        audit: Optional[AuditLogger] = None,
        fee_policy: Optional[FeePolicy] = None,
        loan_period_days: Optional[int] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        """Initialize circulation manager.

        Args:
            db: Database instance
            audit: Audit logger (default: one writing to db)
            fee_policy: Overdue fee rates (default: from configuration)
            loan_period_days: Days until due when checkout gets no due date
            clock: Source of today's date
        """
        self.db = db or get_db()
        self.audit = audit or AuditLogger(self.db)

        if fee_policy is None or loan_period_days is None:
            config = get_config()
            fee_policy = fee_policy or FeePolicy.from_config(config)
            if loan_period_days is None:
                loan_period_days = config.loan_period_days

        self.fee_policy = fee_policy
        self.loan_period_days = loan_period_days
        self.clock = clock or date.today

    # -------------------------------------------------------------------------
    # Catalog and Membership
    # -------------------------------------------------------------------------

    def add_book(self, data: BookCreate) -> Book:
        """Acquire a new book. It starts out available.

        Raises:
            ConflictError: If another book already has this ISBN
        """
        try:
            with self.db.write_session() as session:
                if data.isbn and self.db.get_book_by_isbn(data.isbn, session=session):
                    raise ConflictError(f"ISBN already catalogued: {data.isbn}")

                book = self.db.insert_book(data, session=session)
                session.commit()
                session.refresh(book)
                session.expunge(book)
        except IntegrityError:
            raise ConflictError(f"ISBN already catalogued: {data.isbn}") from None

        logger.info("Added book %s: %s", book.id, book.title)
        return book

    def add_borrower(self, data: BorrowerCreate) -> Borrower:
        """Register a borrower.

        Raises:
            ConflictError: If the email is already registered
        """
        try:
            with self.db.write_session() as session:
                if self.db.find_borrower_by_email(data.email, session=session):
                    logger.warning("Rejected duplicate borrower email %s", data.email)
                    raise ConflictError(f"Email already registered: {data.email}")

                borrower = self.db.insert_borrower(data, session=session)
                session.commit()
                session.refresh(borrower)
                session.expunge(borrower)
        except IntegrityError:
            raise ConflictError(f"Email already registered: {data.email}") from None

        logger.info("Registered borrower %s <%s>", borrower.id, borrower.email)
        return borrower

    def get_book(self, book_id: int) -> Book:
        """Get a book by ID or raise NotFoundError."""
        book = self.db.get_book(book_id)
        if not book:
            raise NotFoundError("Book", book_id)
        return book

    def get_borrower(self, borrower_id: int) -> Borrower:
        """Get a borrower by ID or raise NotFoundError."""
        borrower = self.db.get_borrower(borrower_id)
        if not borrower:
            raise NotFoundError("Borrower", borrower_id)
        return borrower

    def get_loan(self, loan_id: int) -> Loan:
        """Get a loan by ID or raise NotFoundError."""
        loan = self.db.get_loan(loan_id)
        if not loan:
            raise NotFoundError("Loan", loan_id)
        return loan

    # -------------------------------------------------------------------------
    # Checkout and Return
    # -------------------------------------------------------------------------

    def checkout(
        self,
        book_id: int,
        borrower_id: int,
        due_date: Optional[date] = None,
        checkout_date: Optional[date] = None,
    ) -> Loan:
        """Lend a book to a borrower.

        Args:
            book_id: Book to lend
            borrower_id: Borrower taking it
            due_date: Date it is due back (default: checkout date plus loan period)
            checkout_date: Date of checkout (default: today)

        Returns:
            The new open loan

        Raises:
            NotFoundError: If the book or borrower does not exist
            ConflictError: If the book is already on loan
            ValidationError: If the due date is before the checkout date
        """
        checkout_date = checkout_date or self.clock()
        due_date = due_date or checkout_date + timedelta(days=self.loan_period_days)
        if due_date < checkout_date:
            raise ValidationError(
                f"Due date {due_date} is before checkout date {checkout_date}"
            )

        try:
            with self.db.write_session() as session:
                book = self.db.get_book_for_update(book_id, session)
                if not book:
                    raise NotFoundError("Book", book_id)
                if not self.db.get_borrower(borrower_id, session=session):
                    raise NotFoundError("Borrower", borrower_id)

                open_loan = self.db.find_open_loan_for_book(book_id, session=session)
                if not book.is_available or open_loan:
                    logger.warning("Rejected checkout of book %s: already on loan", book_id)
                    raise ConflictError(f"Book {book_id} is already on loan")

                loan = self.db.insert_loan(
                    book_id,
                    borrower_id,
                    due_date,
                    date_borrowed=checkout_date,
                    session=session,
                )
                self._set_status(book_id, BookStatus.BORROWED, session)

                session.commit()
                session.refresh(loan)
                session.expunge(loan)
        except IntegrityError:
            # Open-loan index caught a checkout the lock did not serialize
            logger.warning("Rejected checkout of book %s: open loan exists", book_id)
            raise ConflictError(f"Book {book_id} is already on loan") from None

        logger.info(
            "Checked out book %s to borrower %s, due %s", book_id, borrower_id, due_date
        )
        return loan

    def return_loan(self, loan_id: int, return_date: Optional[date] = None) -> ReturnResult:
        """Close a loan and assess its overdue fee.

        Args:
            loan_id: Loan to close
            return_date: Date the book came back (default: today)

        Returns:
            ReturnResult with the closed loan and the fee owed

        Raises:
            NotFoundError: If the loan does not exist
            ConflictError: If the loan was already returned
            ValidationError: If the return date is before the borrow date
        """
        return_date = return_date or self.clock()

        with self.db.write_session() as session:
            loan = self.db.get_loan(loan_id, session=session)
            if not loan:
                raise NotFoundError("Loan", loan_id)
            if not loan.is_open:
                logger.warning("Rejected return of loan %s: already returned", loan_id)
                raise ConflictError(
                    f"Loan {loan_id} was already returned on {loan.date_returned}"
                )
            if return_date < loan.borrowed_on:
                raise ValidationError(
                    f"Return date {return_date} is before borrow date {loan.date_borrowed}"
                )

            self.db.close_loan(loan_id, return_date, session=session)
            self._set_status(loan.book_id, BookStatus.AVAILABLE, session)

            session.commit()
            session.refresh(loan)
            session.expunge(loan)

        fee = compute_overdue_fee(loan.due_on, return_date, self.fee_policy)
        late = overdue_days(loan.due_on, return_date)
        logger.info("Returned loan %s (%d days late, fee %s)", loan_id, late, fee)
        return ReturnResult(loan=loan, fee=fee, days_overdue=late)

    def assess_fee(self, loan_id: int, as_of: Optional[date] = None) -> Decimal:
        """Fee owed on a loan.

        Open loans are assessed on as_of (default: today); returned loans on
        their return date.
        """
        loan = self.get_loan(loan_id)
        assessed_on = loan.returned_on or as_of or self.clock()
        return compute_overdue_fee(loan.due_on, assessed_on, self.fee_policy)

    def audit_trail(self, book_id: int) -> list[AuditEntry]:
        """Status history of a book, oldest first."""
        self.get_book(book_id)
        return self.audit.trail(book_id)

    def _set_status(self, book_id: int, status: BookStatus, session) -> None:
        previous = self.db.update_book_status(book_id, status, session=session)
        self.audit.record_transition(book_id, previous, status, session=session)
