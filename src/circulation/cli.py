"""Command-line interface for the circulation engine.

Built with Typer for commands and Rich for output. Commands only parse
arguments and render results; all rules live in the core services.
"""

import logging
from datetime import date
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import LOG_LEVELS, get_config
from .db import BookCreate, BorrowerCreate, get_db, parse_input
from .errors import CirculationError
from .integrity import IntegrityChecker
from .lending import CirculationManager
from .reports import ReportManager

# Create the main app
app = typer.Typer(
    name="circulation",
    help="Manage library loans, returns and circulation reports.",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


@app.callback()
def setup(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level"),
) -> None:
    """Configure logging before any command runs."""
    configured = get_config().log_level
    level = configured if configured in LOG_LEVELS else "WARNING"
    if verbose:
        level = "INFO"
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    if configured not in LOG_LEVELS:
        logging.getLogger(__name__).warning(
            "Unknown CIRCULATION_LOG_LEVEL %r, using WARNING", configured
        )


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def parse_date(value: Optional[str], name: str) -> Optional[date]:
    """Parse an optional YYYY-MM-DD option, exiting on bad input."""
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        print_error(f"Invalid {name}: {value}. Use YYYY-MM-DD")
        raise typer.Exit(1)


def fail(error: CirculationError) -> NoReturn:
    """Print a circulation error and exit with status 1."""
    print_error(str(error))
    raise typer.Exit(1)


# ============================================================================
# Catalog and Membership
# ============================================================================


@app.command()
def init() -> None:
    """Create the database tables."""
    db = get_db()
    print_success(f"Database ready at {db.db_path}")


@app.command("add-book")
def add_book(
    title: str = typer.Option(..., "--title", "-t", help="Book title"),
    author: str = typer.Option(..., "--author", "-a", help="Author"),
    isbn: Optional[str] = typer.Option(None, "--isbn", help="ISBN"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Genre"),
    shelf: Optional[str] = typer.Option(None, "--shelf", help="Shelf location"),
    published: Optional[str] = typer.Option(None, "--published", help="Publication date (YYYY-MM-DD)"),
) -> None:
    """Add a newly acquired book."""
    manager = CirculationManager(get_db())
    try:
        data = parse_input(
            BookCreate,
            title=title,
            author=author,
            isbn=isbn,
            genre=genre,
            shelf_location=shelf,
            published_date=parse_date(published, "publication date"),
        )
        book = manager.add_book(data)
    except CirculationError as e:
        fail(e)
    print_success(f"Added book #{book.id}: {book.title}")


@app.command("add-borrower")
def add_borrower(
    first: str = typer.Option(..., "--first", help="First name"),
    last: str = typer.Option(..., "--last", help="Last name"),
    email: str = typer.Option(..., "--email", "-e", help="Email address"),
    born: Optional[str] = typer.Option(None, "--born", help="Date of birth (YYYY-MM-DD)"),
) -> None:
    """Register a borrower."""
    manager = CirculationManager(get_db())
    try:
        data = parse_input(
            BorrowerCreate,
            first_name=first,
            last_name=last,
            email=email,
            date_of_birth=parse_date(born, "birth date"),
        )
        borrower = manager.add_borrower(data)
    except CirculationError as e:
        fail(e)
    print_success(f"Registered borrower #{borrower.id}: {borrower.full_name}")


# ============================================================================
# Checkout and Return
# ============================================================================


@app.command()
def checkout(
    book_id: int = typer.Argument(..., help="Book ID"),
    borrower_id: int = typer.Argument(..., help="Borrower ID"),
    due: Optional[str] = typer.Option(None, "--due", "-d", help="Due date (YYYY-MM-DD)"),
) -> None:
    """Lend a book to a borrower."""
    manager = CirculationManager(get_db())
    try:
        loan = manager.checkout(book_id, borrower_id, due_date=parse_date(due, "due date"))
    except CirculationError as e:
        fail(e)
    print_success(f"Loan #{loan.id}: book #{book_id} due {loan.due_date}")


@app.command("return")
def return_book(
    loan_id: int = typer.Argument(..., help="Loan ID"),
    on: Optional[str] = typer.Option(None, "--on", help="Return date (YYYY-MM-DD)"),
) -> None:
    """Return a loaned book and show any overdue fee."""
    manager = CirculationManager(get_db())
    try:
        result = manager.return_loan(loan_id, return_date=parse_date(on, "return date"))
    except CirculationError as e:
        fail(e)
    print_success(f"Loan #{loan_id} returned")
    if result.fee:
        console.print(
            f"[yellow]Overdue by {result.days_overdue} days, fee: {result.fee}[/yellow]"
        )


@app.command()
def fee(
    loan_id: int = typer.Argument(..., help="Loan ID"),
    as_of: Optional[str] = typer.Option(None, "--as-of", help="Assess on (YYYY-MM-DD)"),
) -> None:
    """Show the overdue fee owed on a loan."""
    manager = CirculationManager(get_db())
    try:
        amount = manager.assess_fee(loan_id, as_of=parse_date(as_of, "date"))
    except CirculationError as e:
        fail(e)
    console.print(f"Fee for loan #{loan_id}: {amount}")


@app.command()
def audit(book_id: int = typer.Argument(..., help="Book ID")) -> None:
    """Show a book's status history."""
    manager = CirculationManager(get_db())
    try:
        entries = manager.audit_trail(book_id)
    except CirculationError as e:
        fail(e)

    if not entries:
        console.print("[dim]No status changes recorded.[/dim]")
        return

    table = Table(title=f"Audit trail - book #{book_id}", header_style="bold magenta")
    table.add_column("When", style="dim")
    table.add_column("Change", style="cyan")
    for entry in entries:
        table.add_row(entry.changed_at[:19], entry.description)
    console.print(table)


# ============================================================================
# Reports
# ============================================================================


@app.command()
def loans(borrower_id: int = typer.Argument(..., help="Borrower ID")) -> None:
    """List every loan a borrower has taken."""
    reports = ReportManager(get_db())
    try:
        rows = reports.loans_for_borrower(borrower_id)
    except CirculationError as e:
        fail(e)

    if not rows:
        console.print("[dim]No loans found.[/dim]")
        return

    table = Table(title=f"Loans - borrower #{borrower_id}", header_style="bold magenta")
    table.add_column("Loan", justify="right")
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("Borrowed")
    table.add_column("Due")
    table.add_column("Returned")
    for row in rows:
        table.add_row(
            str(row.loan_id),
            row.title,
            row.author,
            str(row.date_borrowed),
            str(row.due_date),
            str(row.date_returned) if row.date_returned else "-",
        )
    console.print(table)


@app.command()
def active(
    min_loans: int = typer.Option(1, "--min", "-m", help="Minimum open loans"),
) -> None:
    """List borrowers with open loans."""
    reports = ReportManager(get_db())
    try:
        rows = reports.active_borrowers(min_loans)
    except CirculationError as e:
        fail(e)

    if not rows:
        console.print("[dim]No active borrowers.[/dim]")
        return

    table = Table(title="Active borrowers", header_style="bold magenta")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Email", style="dim")
    table.add_column("Open loans", justify="right")
    for row in rows:
        table.add_row(
            str(row.borrower_id),
            f"{row.first_name} {row.last_name}",
            row.email,
            str(row.open_loans),
        )
    console.print(table)


@app.command()
def overdue(
    threshold: Optional[int] = typer.Option(None, "--threshold", "-t", help="Days overdue to exceed"),
    detail: bool = typer.Option(False, "--by-borrower", "-b", help="Group by borrower"),
) -> None:
    """List overdue loans."""
    reports = ReportManager(get_db())
    try:
        if detail:
            detail_rows = reports.overdue_borrowers_detail()
        else:
            rows = reports.overdue_analysis(threshold_days=threshold)
    except CirculationError as e:
        fail(e)

    if detail:
        if not detail_rows:
            console.print("[dim]No overdue loans.[/dim]")
            return
        table = Table(title="Overdue by borrower", header_style="bold magenta")
        table.add_column("Borrower", style="cyan")
        table.add_column("Overdue", justify="right")
        table.add_column("Title", max_width=40)
        table.add_column("Due")
        table.add_column("Days", justify="right", style="red")
        for d in detail_rows:
            table.add_row(
                d.borrower_name, str(d.overdue_count), d.title, str(d.due_date), str(d.days_overdue)
            )
        console.print(table)
        return

    if not rows:
        console.print("[dim]No overdue loans.[/dim]")
        return

    table = Table(title="Overdue loans", header_style="bold magenta")
    table.add_column("Loan", justify="right")
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Borrower", style="green")
    table.add_column("Due")
    table.add_column("Days", justify="right", style="red")
    table.add_column("Fee", justify="right")
    for row in rows:
        table.add_row(
            str(row.loan_id),
            row.title,
            row.borrower_name,
            str(row.due_date),
            str(row.days_overdue),
            str(row.fee),
        )
    console.print(table)


@app.command()
def genres(
    month: int = typer.Argument(..., help="Month (1-12)"),
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Restrict to a year"),
) -> None:
    """Show genre popularity for a borrow month."""
    try:
        counts = ReportManager(get_db()).popular_genres(month, year=year)
    except CirculationError as e:
        fail(e)

    if not counts:
        console.print("[dim]No loans in that month.[/dim]")
        return

    table = Table(title=f"Popular genres - month {month}", header_style="bold magenta")
    table.add_column("Genre", style="cyan")
    table.add_column("Loans", justify="right")
    for c in counts:
        table.add_row(c.genre, str(c.loan_count))
    console.print(table)


@app.command()
def preferences() -> None:
    """Show the most borrowed genre per age group (returned loans only)."""
    rows = ReportManager(get_db()).genre_preference_by_age_group()

    if not rows:
        console.print("[dim]No returned loans recorded.[/dim]")
        return

    table = Table(title="Top genre by age group", header_style="bold magenta")
    table.add_column("Age group", justify="right")
    table.add_column("Genre", style="cyan")
    table.add_column("Loans", justify="right")
    for row in rows:
        table.add_row(f"{row.age_group}-{row.age_group + 9}", row.genre, str(row.loan_count))
    console.print(table)


@app.command()
def frequency() -> None:
    """Rank borrowers by number of loans ever taken."""
    rows = ReportManager(get_db()).borrowing_frequency()

    if not rows:
        console.print("[dim]No loans recorded.[/dim]")
        return

    table = Table(title="Borrowing frequency", header_style="bold magenta")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Loans", justify="right")
    for row in rows:
        table.add_row(str(row.borrower_id), f"{row.first_name} {row.last_name}", str(row.total_loans))
    console.print(table)


@app.command()
def authors() -> None:
    """Rank authors by number of loans."""
    rows = ReportManager(get_db()).author_popularity()

    if not rows:
        console.print("[dim]No loans recorded.[/dim]")
        return

    table = Table(title="Author popularity", header_style="bold magenta")
    table.add_column("Rank", justify="right")
    table.add_column("Author", style="green")
    table.add_column("Loans", justify="right")
    for row in rows:
        table.add_row(str(row.rank), row.author, str(row.loan_count))
    console.print(table)


@app.command()
def check() -> None:
    """Verify book status agrees with loan records."""
    report = IntegrityChecker(get_db()).check_all()

    if report.passed:
        print_success(
            f"{report.book_count} books, {report.open_loan_count} open loans, no issues"
        )
        return

    for issue in report.issues:
        console.print(f"[red]{issue}[/red]")
    raise typer.Exit(1)


# ============================================================================
# Version Command
# ============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"circulation version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
