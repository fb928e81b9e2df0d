"""Pydantic schemas for circulation reports."""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


# ============================================================================
# Borrower Activity
# ============================================================================


class BorrowerLoan(BaseModel):
    """A loan in a borrower's history, with the book it was for."""

    loan_id: int
    book_id: int
    title: str
    author: str
    date_borrowed: date
    due_date: date
    date_returned: Optional[date] = None


class ActiveBorrower(BaseModel):
    """A borrower with currently open loans."""

    borrower_id: int
    first_name: str
    last_name: str
    email: str
    open_loans: int


class BorrowingFrequency(BaseModel):
    """Number of loans a borrower has ever taken."""

    borrower_id: int
    first_name: str
    last_name: str
    total_loans: int


class PeriodLoan(BaseModel):
    """A loan taken within a reporting period."""

    loan_id: int
    title: str
    borrower_name: str
    date_borrowed: date
    due_date: date
    date_returned: Optional[date] = None


# ============================================================================
# Popularity
# ============================================================================


class GenreCount(BaseModel):
    """Loans of one genre."""

    genre: str
    loan_count: int


class AuthorRank(BaseModel):
    """An author's loan count and dense rank (1 = most borrowed)."""

    author: str
    loan_count: int
    rank: int = Field(ge=1)


class GenrePreference(BaseModel):
    """Top genre for an age group. Tied genres each get a row."""

    age_group: int  # lower bound of the decade, e.g. 20 for ages 20-29
    genre: str
    loan_count: int
    rank: int = 1


# ============================================================================
# Overdue
# ============================================================================


class OverdueLoan(BaseModel):
    """An open loan past its due date."""

    loan_id: int
    book_id: int
    title: str
    borrower_id: int
    borrower_name: str
    due_date: date
    days_overdue: int
    fee: Decimal


class OverdueBorrowerDetail(BaseModel):
    """One overdue loan, alongside its borrower's total overdue count."""

    borrower_id: int
    borrower_name: str
    overdue_count: int
    loan_id: int
    title: str
    due_date: date
    days_overdue: int
