"""Database module for the circulation store."""

from .models import AuditEntry, Book, Borrower, Loan
from .schemas import BookCreate, BookStatus, BorrowerCreate, parse_input
from .sqlite import Database, get_db, reset_db

__all__ = [
    "AuditEntry",
    "Book",
    "Borrower",
    "Loan",
    "BookCreate",
    "BookStatus",
    "BorrowerCreate",
    "parse_input",
    "Database",
    "get_db",
    "reset_db",
]
