"""Pytest configuration and shared fixtures.

This module provides fixtures for testing the circulation engine,
including in-memory and file-backed databases and a seeded catalog.
"""

import os
from datetime import date
from pathlib import Path
from typing import Generator

import pytest

from circulation.config import reset_config
from circulation.db.models import Book, Borrower
from circulation.db.schemas import BookCreate, BorrowerCreate
from circulation.db.sqlite import Database, reset_db
from circulation.fees import FeePolicy
from circulation.lending import CirculationManager
from circulation.reports import ReportManager

# Fixed "today" so date-sensitive results are stable
TODAY = date(2024, 3, 1)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def db() -> Database:
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    database.create_tables()
    return database


@pytest.fixture(scope="function")
def file_db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a file-backed database, needed for multi-threaded tests."""
    reset_db()
    reset_config()

    db_path = tmp_path / "library.db"
    os.environ["CIRCULATION_DB_PATH"] = str(db_path)

    database = Database(str(db_path))
    database.create_tables()
    yield database

    database.engine.dispose()
    reset_db()
    reset_config()
    os.environ.pop("CIRCULATION_DB_PATH", None)


# ============================================================================
# Service Fixtures
# ============================================================================


def make_manager(database: Database) -> CirculationManager:
    """Circulation manager with default fees, a 14 day loan period and a fixed clock."""
    return CirculationManager(
        database,
        fee_policy=FeePolicy(),
        loan_period_days=14,
        clock=lambda: TODAY,
    )


@pytest.fixture
def manager(db: Database) -> CirculationManager:
    """Create a CirculationManager with test database."""
    return make_manager(db)


@pytest.fixture
def reports(db: Database) -> ReportManager:
    """Create a ReportManager with test database."""
    return ReportManager(
        db,
        fee_policy=FeePolicy(),
        overdue_threshold_days=30,
        clock=lambda: TODAY,
    )


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_books(manager: CirculationManager) -> list[Book]:
    """Create five books across three genres."""
    books_data = [
        BookCreate(title="Dune", author="Frank Herbert", genre="Science Fiction",
                   isbn="9780441172719", shelf_location="SF-HER"),
        BookCreate(title="Emma", author="Jane Austen", genre="Romance"),
        BookCreate(title="Persuasion", author="Jane Austen", genre="Romance"),
        BookCreate(title="Neuromancer", author="William Gibson", genre="Science Fiction"),
        BookCreate(title="The Hobbit", author="J.R.R. Tolkien", genre="Fantasy",
                   published_date=date(1937, 9, 21)),
    ]
    return [manager.add_book(data) for data in books_data]


@pytest.fixture
def sample_borrowers(manager: CirculationManager) -> list[Borrower]:
    """Create three borrowers: two in their thirties, one in their twenties."""
    borrowers_data = [
        BorrowerCreate(first_name="John", last_name="Doe", email="john@x.com",
                       date_of_birth=date(1990, 5, 10)),
        BorrowerCreate(first_name="Jane", last_name="Roe", email="jane@x.com",
                       date_of_birth=date(1985, 2, 20)),
        BorrowerCreate(first_name="Alex", last_name="Smith", email="alex@x.com",
                       date_of_birth=date(2001, 7, 1)),
    ]
    return [manager.add_borrower(data) for data in borrowers_data]
