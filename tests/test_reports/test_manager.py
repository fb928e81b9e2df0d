"""Tests for ReportManager."""

from datetime import date
from decimal import Decimal

import pytest

from circulation.db.schemas import BookCreate
from circulation.errors import NotFoundError, ValidationError


@pytest.fixture
def history(manager, sample_books, sample_borrowers):
    """A small circulation history, assessed on 2024-03-01.

    Loans, in id order:
        1. John  Dune         Jan 05 - due Jan 19, returned Jan 18
        2. Jane  Emma         Jan 10 - due Jan 24, returned Jan 30
        3. Alex  Neuromancer  Jan 12 - due Jan 26, returned Jan 20
        4. John  Persuasion   Feb 01 - due Feb 15, open (15 days overdue)
        5. Alex  The Hobbit   Jan 15 - due Jan 20, open (41 days overdue)
        6. Jane  Dune         Feb 10 - due Mar 10, open (not overdue)
    """
    dune, emma, persuasion, neuromancer, hobbit = sample_books
    john, jane, alex = sample_borrowers

    loans = []

    def lend(book, borrower, borrowed, due):
        loans.append(manager.checkout(book.id, borrower.id, due_date=due, checkout_date=borrowed))
        return loans[-1]

    first = lend(dune, john, date(2024, 1, 5), date(2024, 1, 19))
    second = lend(emma, jane, date(2024, 1, 10), date(2024, 1, 24))
    third = lend(neuromancer, alex, date(2024, 1, 12), date(2024, 1, 26))
    manager.return_loan(first.id, return_date=date(2024, 1, 18))
    manager.return_loan(second.id, return_date=date(2024, 1, 30))
    manager.return_loan(third.id, return_date=date(2024, 1, 20))
    lend(persuasion, john, date(2024, 2, 1), date(2024, 2, 15))
    lend(hobbit, alex, date(2024, 1, 15), date(2024, 1, 20))
    lend(dune, jane, date(2024, 2, 10), date(2024, 3, 10))
    return loans


class TestLoansForBorrower:
    """Tests for a borrower's loan history."""

    def test_lists_open_and_closed_loans(self, reports, history, sample_borrowers):
        """All of a borrower's loans appear with book details."""
        john = sample_borrowers[0]
        rows = reports.loans_for_borrower(john.id)

        assert [r.title for r in rows] == ["Dune", "Persuasion"]
        assert rows[0].author == "Frank Herbert"
        assert rows[0].date_returned == date(2024, 1, 18)
        assert rows[1].date_returned is None
        assert rows[1].due_date == date(2024, 2, 15)

    def test_borrower_without_loans(self, reports, sample_borrowers):
        """A borrower with no history gets an empty list."""
        assert reports.loans_for_borrower(sample_borrowers[0].id) == []

    def test_unknown_borrower(self, reports):
        """A missing borrower is NotFoundError."""
        with pytest.raises(NotFoundError):
            reports.loans_for_borrower(404)


class TestActiveBorrowers:
    """Tests for borrowers with open loans."""

    def test_all_with_one_open_loan(self, reports, history, sample_borrowers):
        """Everyone holding a book is listed with their open count."""
        rows = reports.active_borrowers(1)

        assert [r.borrower_id for r in rows] == [b.id for b in sample_borrowers]
        assert all(r.open_loans == 1 for r in rows)

    def test_threshold_filters(self, reports, history):
        """Nobody holds two books at once."""
        assert reports.active_borrowers(2) == []

    def test_returned_loans_do_not_count(self, manager, reports, sample_books, sample_borrowers):
        """A borrower drops off the list once their book is returned."""
        john = sample_borrowers[0]
        loan = manager.checkout(sample_books[0].id, john.id, due_date=date(2024, 3, 15))
        assert [r.borrower_id for r in reports.active_borrowers(1)] == [john.id]

        manager.return_loan(loan.id)
        assert reports.active_borrowers(1) == []

    def test_invalid_minimum(self, reports):
        """The minimum must be at least one."""
        with pytest.raises(ValidationError):
            reports.active_borrowers(0)


class TestBorrowingFrequency:
    """Tests for loan counts per borrower."""

    def test_counts_open_and_closed(self, reports, history):
        """Every borrower has two loans; ties ordered by last name."""
        rows = reports.borrowing_frequency()

        assert [(r.last_name, r.total_loans) for r in rows] == [
            ("Doe", 2),
            ("Roe", 2),
            ("Smith", 2),
        ]

    def test_most_active_first(self, manager, reports, history, sample_borrowers):
        """A borrower with more loans sorts first."""
        alex = sample_borrowers[2]
        extra = manager.add_book(BookCreate(title="Foundation", author="Isaac Asimov"))
        manager.checkout(extra.id, alex.id, checkout_date=date(2024, 2, 20),
                         due_date=date(2024, 3, 5))

        rows = reports.borrowing_frequency()
        assert rows[0].borrower_id == alex.id
        assert rows[0].total_loans == 3

    def test_borrowers_without_loans_excluded(self, reports, sample_borrowers):
        """Only borrowers with loans appear."""
        assert reports.borrowing_frequency() == []


class TestLoansBetween:
    """Tests for loans in a date range."""

    def test_inclusive_range(self, reports, history):
        """Both ends of the range are included, sorted by borrow date."""
        rows = reports.loans_between(date(2024, 1, 10), date(2024, 1, 15))

        assert [r.title for r in rows] == ["Emma", "Neuromancer", "The Hobbit"]
        assert rows[0].borrower_name == "Jane Roe"

    def test_start_after_end(self, reports):
        """A reversed range is a validation error."""
        with pytest.raises(ValidationError):
            reports.loans_between(date(2024, 2, 1), date(2024, 1, 1))


class TestPopularGenres:
    """Tests for genre counts by borrow month."""

    def test_january(self, reports, history):
        """Counts descend; ties are alphabetical."""
        rows = reports.popular_genres(1)

        assert [(r.genre, r.loan_count) for r in rows] == [
            ("Science Fiction", 2),
            ("Fantasy", 1),
            ("Romance", 1),
        ]

    def test_february(self, reports, history):
        """Only loans borrowed in the month are counted."""
        rows = reports.popular_genres(2)
        assert [(r.genre, r.loan_count) for r in rows] == [
            ("Romance", 1),
            ("Science Fiction", 1),
        ]

    def test_year_filter(self, reports, history):
        """Restricting to another year finds nothing."""
        assert reports.popular_genres(1, year=2023) == []
        assert len(reports.popular_genres(1, year=2024)) == 3

    def test_books_without_genre_ignored(self, manager, reports, sample_borrowers):
        """Loans of genreless books are not counted."""
        book = manager.add_book(BookCreate(title="Untitled", author="Anon"))
        manager.checkout(book.id, sample_borrowers[0].id, checkout_date=date(2024, 1, 3),
                         due_date=date(2024, 1, 17))
        assert reports.popular_genres(1) == []

    @pytest.mark.parametrize("month", [0, 13])
    def test_invalid_month(self, reports, month):
        """Months outside 1-12 are rejected."""
        with pytest.raises(ValidationError):
            reports.popular_genres(month)


class TestAuthorPopularity:
    """Tests for author dense ranking."""

    def test_dense_rank_with_ties(self, reports, history):
        """Tied authors share a rank and the next rank follows without a gap."""
        rows = reports.author_popularity()

        assert [(r.rank, r.author, r.loan_count) for r in rows] == [
            (1, "Frank Herbert", 2),
            (1, "Jane Austen", 2),
            (2, "J.R.R. Tolkien", 1),
            (2, "William Gibson", 1),
        ]

    def test_no_loans(self, reports, sample_books):
        """Authors with no loans are not ranked."""
        assert reports.author_popularity() == []


class TestGenrePreferenceByAgeGroup:
    """Tests for the top genre per age decade."""

    def test_closed_loans_only(self, reports, history):
        """Open loans do not influence the ranking; ties give several rows."""
        rows = reports.genre_preference_by_age_group(as_of=date(2024, 3, 1))

        # John's open Romance loan would make Romance the sole winner for the 30s
        assert [(r.age_group, r.genre, r.loan_count) for r in rows] == [
            (20, "Science Fiction", 1),
            (30, "Romance", 1),
            (30, "Science Fiction", 1),
        ]
        assert all(r.rank == 1 for r in rows)

    def test_returning_the_open_loan_changes_the_winner(self, manager, reports, history):
        """Once John returns Persuasion, Romance leads the 30s alone."""
        manager.return_loan(history[3].id, return_date=date(2024, 3, 1))

        rows = reports.genre_preference_by_age_group(as_of=date(2024, 3, 1))
        thirties = [r for r in rows if r.age_group == 30]
        assert [(r.genre, r.loan_count) for r in thirties] == [("Romance", 2)]

    def test_age_computed_on_as_of(self, reports, history):
        """Ages move with the reporting date."""
        # On 2031-08-01 Alex is 30 and John 41
        rows = reports.genre_preference_by_age_group(as_of=date(2031, 8, 1))
        groups = {(r.age_group, r.genre) for r in rows}
        assert (30, "Science Fiction") in groups
        assert (40, "Science Fiction") in groups

    def test_borrowers_without_birth_date_skipped(self, manager, reports, sample_books):
        """Borrowers of unknown age are left out."""
        from circulation.db.schemas import BorrowerCreate

        anon = manager.add_borrower(
            BorrowerCreate(first_name="No", last_name="Birthday", email="nb@x.com")
        )
        loan = manager.checkout(sample_books[0].id, anon.id)
        manager.return_loan(loan.id)

        assert reports.genre_preference_by_age_group() == []


class TestOverdueAnalysis:
    """Tests for overdue loans beyond a threshold."""

    def test_default_threshold(self, reports, history):
        """Only loans more than 30 days overdue are listed, with their fee."""
        rows = reports.overdue_analysis(as_of=date(2024, 3, 1))

        assert len(rows) == 1
        assert rows[0].title == "The Hobbit"
        assert rows[0].borrower_name == "Alex Smith"
        assert rows[0].days_overdue == 41
        assert rows[0].fee == Decimal("52.00")

    def test_zero_threshold_sorted_by_days(self, reports, history):
        """All overdue loans, most overdue first."""
        rows = reports.overdue_analysis(threshold_days=0)

        assert [(r.title, r.days_overdue) for r in rows] == [
            ("The Hobbit", 41),
            ("Persuasion", 15),
        ]
        assert rows[1].fee == Decimal("15.00")

    def test_threshold_is_exclusive(self, reports, history):
        """A loan exactly at the threshold is not listed."""
        rows = reports.overdue_analysis(threshold_days=15)
        assert [r.title for r in rows] == ["The Hobbit"]

    def test_returned_loans_never_overdue(self, reports, history):
        """Late but returned loans are not reported."""
        titles = {r.title for r in reports.overdue_analysis(threshold_days=0)}
        assert "Emma" not in titles

    def test_negative_threshold(self, reports):
        """A negative threshold is rejected."""
        with pytest.raises(ValidationError):
            reports.overdue_analysis(threshold_days=-1)


class TestOverdueBorrowersDetail:
    """Tests for overdue loans grouped by borrower."""

    def test_one_row_per_overdue_loan(self, reports, history):
        """Rows are ordered by borrower last name."""
        rows = reports.overdue_borrowers_detail()

        assert [(r.borrower_name, r.title, r.overdue_count) for r in rows] == [
            ("John Doe", "Persuasion", 1),
            ("Alex Smith", "The Hobbit", 1),
        ]

    def test_count_and_order_within_borrower(
        self, manager, reports, history, sample_borrowers
    ):
        """A borrower's loans share the count and run most overdue first."""
        john = sample_borrowers[0]
        extra = manager.add_book(BookCreate(title="Foundation", author="Isaac Asimov"))
        manager.checkout(extra.id, john.id, checkout_date=date(2024, 1, 25),
                         due_date=date(2024, 2, 5))

        rows = reports.overdue_borrowers_detail()

        assert [(r.borrower_name, r.title, r.days_overdue, r.overdue_count) for r in rows] == [
            ("John Doe", "Foundation", 25, 2),
            ("John Doe", "Persuasion", 15, 2),
            ("Alex Smith", "The Hobbit", 41, 1),
        ]

    def test_nothing_overdue(self, reports, history):
        """Before any due date passes the report is empty."""
        assert reports.overdue_borrowers_detail(as_of=date(2024, 1, 16)) == []
