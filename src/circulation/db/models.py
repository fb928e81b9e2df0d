"""SQLAlchemy ORM models for the circulation store.

Tables:
- books: One row per physical copy, with a cached availability status
- borrowers: Registered library members
- loans: Checkout history, open while date_returned is NULL
- audit_entries: Append-only log of book status transitions
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .schemas import BookStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> str:
    """Current UTC timestamp as an ISO string."""
    return datetime.now(timezone.utc).isoformat()


def today() -> str:
    """Today's date as an ISO string."""
    return date.today().isoformat()


class Book(Base):
    """Book model - a single lendable copy."""

    __tablename__ = "books"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    author: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    isbn: Mapped[Optional[str]] = mapped_column(String(17), unique=True)
    published_date: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date
    genre: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    shelf_location: Mapped[Optional[str]] = mapped_column(String(50))

    # Derived from loan state; written only by the circulation service
    status: Mapped[str] = mapped_column(
        String(20), default=BookStatus.AVAILABLE.value, nullable=False, index=True
    )

    created_at: Mapped[str] = mapped_column(String(32), default=utc_now)

    loans: Mapped[list["Loan"]] = relationship("Loan", back_populates="book")
    audit_entries: Mapped[list["AuditEntry"]] = relationship(
        "AuditEntry", back_populates="book", order_by="AuditEntry.id"
    )

    def __repr__(self) -> str:
        return f"<Book(id={self.id}, title='{self.title}', status={self.status})>"

    @property
    def is_available(self) -> bool:
        return self.status == BookStatus.AVAILABLE.value


class Borrower(Base):
    """Borrower model - a registered library member."""

    __tablename__ = "borrowers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    date_of_birth: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date
    membership_date: Mapped[str] = mapped_column(String(10), default=today)

    loans: Mapped[list["Loan"]] = relationship("Loan", back_populates="borrower")

    def __repr__(self) -> str:
        return f"<Borrower(id={self.id}, email='{self.email}')>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def age_on(self, as_of: date) -> Optional[int]:
        """Age in whole years on the given date, None if birth date unknown."""
        if not self.date_of_birth:
            return None
        born = date.fromisoformat(self.date_of_birth)
        had_birthday = (as_of.month, as_of.day) >= (born.month, born.day)
        return as_of.year - born.year - (0 if had_birthday else 1)


class Loan(Base):
    """Loan model - one checkout of one book by one borrower."""

    __tablename__ = "loans"
    __table_args__ = (
        # At most one open loan per book
        Index(
            "uq_loans_open_book",
            "book_id",
            unique=True,
            sqlite_where=text("date_returned IS NULL"),
            postgresql_where=text("date_returned IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    book_id: Mapped[int] = mapped_column(ForeignKey("books.id"), nullable=False, index=True)
    borrower_id: Mapped[int] = mapped_column(
        ForeignKey("borrowers.id"), nullable=False, index=True
    )

    # Dates
    date_borrowed: Mapped[str] = mapped_column(String(10), default=today)  # ISO date
    due_date: Mapped[str] = mapped_column(String(10), nullable=False)  # ISO date
    date_returned: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date

    book: Mapped["Book"] = relationship("Book", back_populates="loans")
    borrower: Mapped["Borrower"] = relationship("Borrower", back_populates="loans")

    def __repr__(self) -> str:
        return (
            f"<Loan(id={self.id}, book_id={self.book_id}, "
            f"borrower_id={self.borrower_id}, open={self.is_open})>"
        )

    @property
    def is_open(self) -> bool:
        """Check if the book is still out."""
        return self.date_returned is None

    @property
    def borrowed_on(self) -> date:
        return date.fromisoformat(self.date_borrowed)

    @property
    def due_on(self) -> date:
        return date.fromisoformat(self.due_date)

    @property
    def returned_on(self) -> Optional[date]:
        return date.fromisoformat(self.date_returned) if self.date_returned else None

    def days_overdue(self, as_of: date) -> int:
        """Days past the due date on as_of (0 if not overdue)."""
        return max(0, (as_of - self.due_on).days)

    def is_overdue(self, as_of: date) -> bool:
        """Open and due strictly before as_of."""
        return self.is_open and self.due_on < as_of


class AuditEntry(Base):
    """Audit trail entry - one book status transition."""

    __tablename__ = "audit_entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    book_id: Mapped[int] = mapped_column(ForeignKey("books.id"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    changed_at: Mapped[str] = mapped_column(String(32), default=utc_now)

    book: Mapped["Book"] = relationship("Book", back_populates="audit_entries")

    def __repr__(self) -> str:
        return f"<AuditEntry(id={self.id}, book_id={self.book_id}, '{self.description}')>"
