"""SQLite database operations.

Handles database connection, session management, and the CRUD primitives
the circulation services compose. Every primitive accepts an optional
session so several of them can run inside one transaction; without one
they open their own session and return detached rows.
"""

import logging
import os
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import DEFAULT_DB_PATH
from ..errors import ConflictError, NotFoundError
from .models import AuditEntry, Base, Book, Borrower, Loan
from .schemas import BookCreate, BookStatus, BorrowerCreate

logger = logging.getLogger(__name__)


class Database:
    """Database connection and operations manager."""

    def __init__(self, db_path: Optional[str] = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses
                     CIRCULATION_DB_PATH env var or default location.
        """
        if db_path is None:
            db_path = os.environ.get("CIRCULATION_DB_PATH", str(DEFAULT_DB_PATH))

        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"

        if not self._is_memory:
            self._ensure_directory()

        # For in-memory databases, use StaticPool to reuse the same connection
        # This ensures all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

        # Serializes check-and-mutate sections across threads
        self.write_lock = threading.RLock()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def write_session(self) -> Generator[Session, None, None]:
        """Session held under the write lock for an atomic check-and-mutate."""
        with self.write_lock:
            with self.get_session() as session:
                yield session

    def _run(self, fn, session: Optional[Session]):
        """Run fn in the given session, or in a fresh one returning detached rows."""
        if session:
            return fn(session)
        with self.get_session() as s:
            result = fn(s)
            if isinstance(result, list):
                for row in result:
                    s.expunge(row)
            elif result is not None:
                s.expunge(result)
            return result

    # ========================================================================
    # Book Operations
    # ========================================================================

    def insert_book(self, book: BookCreate, session: Optional[Session] = None) -> Book:
        """Create a new book record, initially available."""

        def _create(s: Session) -> Book:
            db_book = Book(
                title=book.title,
                author=book.author,
                isbn=book.isbn,
                published_date=(
                    book.published_date.isoformat() if book.published_date else None
                ),
                genre=book.genre,
                shelf_location=book.shelf_location,
                status=BookStatus.AVAILABLE.value,
            )
            s.add(db_book)
            s.flush()
            return db_book

        return self._run(_create, session)

    def get_book(self, book_id: int, session: Optional[Session] = None) -> Optional[Book]:
        """Get a book by ID."""
        return self._run(lambda s: s.get(Book, book_id), session)

    def get_book_for_update(self, book_id: int, session: Session) -> Optional[Book]:
        """Get a book by ID, row-locking it where the backend supports it."""
        stmt = select(Book).where(Book.id == book_id).with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def get_book_by_isbn(
        self, isbn: str, session: Optional[Session] = None
    ) -> Optional[Book]:
        """Get a book by ISBN."""

        def _get(s: Session) -> Optional[Book]:
            stmt = select(Book).where(Book.isbn == isbn)
            return s.execute(stmt).scalar_one_or_none()

        return self._run(_get, session)

    def update_book_status(
        self, book_id: int, status: BookStatus, session: Optional[Session] = None
    ) -> BookStatus:
        """Write a book's status and return the status it had before.

        Raises:
            NotFoundError: If the book does not exist
        """

        def _update(s: Session) -> BookStatus:
            book = s.get(Book, book_id)
            if not book:
                raise NotFoundError("Book", book_id)
            previous = BookStatus(book.status)
            book.status = status.value
            s.flush()
            return previous

        if session:
            return _update(session)
        with self.get_session() as s:
            return _update(s)

    def list_books(
        self, status: Optional[BookStatus] = None, session: Optional[Session] = None
    ) -> list[Book]:
        """Get all books, optionally filtered by status, in acquisition order."""

        def _get(s: Session) -> list[Book]:
            stmt = select(Book).order_by(Book.id)
            if status:
                stmt = stmt.where(Book.status == status.value)
            return list(s.execute(stmt).scalars().all())

        return self._run(_get, session)

    # ========================================================================
    # Borrower Operations
    # ========================================================================

    def insert_borrower(
        self, borrower: BorrowerCreate, session: Optional[Session] = None
    ) -> Borrower:
        """Create a new borrower record."""

        def _create(s: Session) -> Borrower:
            db_borrower = Borrower(
                first_name=borrower.first_name,
                last_name=borrower.last_name,
                email=borrower.email,
                date_of_birth=(
                    borrower.date_of_birth.isoformat() if borrower.date_of_birth else None
                ),
                membership_date=(borrower.membership_date or date.today()).isoformat(),
            )
            s.add(db_borrower)
            s.flush()
            return db_borrower

        return self._run(_create, session)

    def get_borrower(
        self, borrower_id: int, session: Optional[Session] = None
    ) -> Optional[Borrower]:
        """Get a borrower by ID."""
        return self._run(lambda s: s.get(Borrower, borrower_id), session)

    def find_borrower_by_email(
        self, email: str, session: Optional[Session] = None
    ) -> Optional[Borrower]:
        """Get a borrower by email, case-insensitively."""

        def _get(s: Session) -> Optional[Borrower]:
            stmt = select(Borrower).where(Borrower.email == email.strip().lower())
            return s.execute(stmt).scalar_one_or_none()

        return self._run(_get, session)

    def list_borrowers(self, session: Optional[Session] = None) -> list[Borrower]:
        """Get all borrowers in registration order."""

        def _get(s: Session) -> list[Borrower]:
            return list(s.execute(select(Borrower).order_by(Borrower.id)).scalars().all())

        return self._run(_get, session)

    # ========================================================================
    # Loan Operations
    # ========================================================================

    def insert_loan(
        self,
        book_id: int,
        borrower_id: int,
        due_date: date,
        date_borrowed: Optional[date] = None,
        session: Optional[Session] = None,
    ) -> Loan:
        """Create an open loan."""

        def _create(s: Session) -> Loan:
            loan = Loan(
                book_id=book_id,
                borrower_id=borrower_id,
                date_borrowed=(date_borrowed or date.today()).isoformat(),
                due_date=due_date.isoformat(),
            )
            s.add(loan)
            s.flush()
            return loan

        return self._run(_create, session)

    def get_loan(self, loan_id: int, session: Optional[Session] = None) -> Optional[Loan]:
        """Get a loan by ID."""
        return self._run(lambda s: s.get(Loan, loan_id), session)

    def find_open_loan_for_book(
        self, book_id: int, session: Optional[Session] = None
    ) -> Optional[Loan]:
        """Get the open loan for a book, if any."""

        def _get(s: Session) -> Optional[Loan]:
            stmt = select(Loan).where(Loan.book_id == book_id, Loan.date_returned.is_(None))
            return s.execute(stmt).scalars().first()

        return self._run(_get, session)

    def close_loan(
        self, loan_id: int, return_date: date, session: Optional[Session] = None
    ) -> Loan:
        """Set the return date of an open loan.

        The write only matches an open loan, so a connection holding a stale
        read cannot close the same loan twice.

        Raises:
            NotFoundError: If the loan does not exist
            ConflictError: If the loan is already closed
        """

        def _close(s: Session) -> Loan:
            stmt = (
                update(Loan)
                .where(Loan.id == loan_id, Loan.date_returned.is_(None))
                .values(date_returned=return_date.isoformat())
                .execution_options(synchronize_session=False)
            )
            if s.execute(stmt).rowcount == 0:
                if s.get(Loan, loan_id) is None:
                    raise NotFoundError("Loan", loan_id)
                raise ConflictError(f"Loan {loan_id} is already returned")
            return s.get(Loan, loan_id, populate_existing=True)

        return self._run(_close, session)

    def list_loans(
        self,
        borrower_id: Optional[int] = None,
        book_id: Optional[int] = None,
        open_only: bool = False,
        session: Optional[Session] = None,
    ) -> list[Loan]:
        """List loans with optional filters, in checkout order."""

        def _get(s: Session) -> list[Loan]:
            stmt = select(Loan).order_by(Loan.id)
            if borrower_id is not None:
                stmt = stmt.where(Loan.borrower_id == borrower_id)
            if book_id is not None:
                stmt = stmt.where(Loan.book_id == book_id)
            if open_only:
                stmt = stmt.where(Loan.date_returned.is_(None))
            return list(s.execute(stmt).scalars().all())

        return self._run(_get, session)

    # ========================================================================
    # Audit Operations
    # ========================================================================

    def append_audit_entry(
        self,
        book_id: int,
        description: str,
        timestamp: datetime,
        session: Optional[Session] = None,
    ) -> AuditEntry:
        """Append one entry to the audit trail."""

        def _append(s: Session) -> AuditEntry:
            entry = AuditEntry(
                book_id=book_id,
                description=description,
                changed_at=timestamp.isoformat(),
            )
            s.add(entry)
            s.flush()
            return entry

        return self._run(_append, session)

    def list_audit_entries(
        self, book_id: Optional[int] = None, session: Optional[Session] = None
    ) -> list[AuditEntry]:
        """List audit entries in the order they were written."""

        def _get(s: Session) -> list[AuditEntry]:
            stmt = select(AuditEntry).order_by(AuditEntry.id)
            if book_id is not None:
                stmt = stmt.where(AuditEntry.book_id == book_id)
            return list(s.execute(stmt).scalars().all())

        return self._run(_get, session)


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        _db = Database(db_path)
        _db.create_tables()
        logger.debug("Opened circulation database at %s", _db.db_path)
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    _db = None
