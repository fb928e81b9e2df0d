"""Circulation reports."""

from .manager import ReportManager
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

__all__ = [
    "ReportManager",
    "age_group",
    "dense_rank",
    "ActiveBorrower",
    "AuthorRank",
    "BorrowerLoan",
    "BorrowingFrequency",
    "GenreCount",
    "GenrePreference",
    "OverdueBorrowerDetail",
    "OverdueLoan",
    "PeriodLoan",
]
