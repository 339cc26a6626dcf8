import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

from library import Library
from users import UserDirectory
from utils.ui_helpers import set_output_mode, print_list_result, print_stats_result
from config import settings

APP_NAME = "Library CLI"

console = Console()

app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (e.g. output mode)."""
    if output:
        set_output_mode(output)


@app.command("list")
def cli_list():
    """List every book with its lending status."""
    print_list_result(Library().list_books())


@app.command("add")
def cli_add(title: str, author: str, year: int):
    """Add a book to the catalog."""
    try:
        book = Library().add_book(title, author, year)
    except ValueError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Successfully added: {book.title} by {book.author} (ID {book.id})")


@app.command("remove")
def cli_remove(book_id: int):
    """Remove a book by ID."""
    if Library().remove_book(book_id):
        print(f"Book {book_id} has been removed.")
    else:
        print(f"Book {book_id} not found.")


@app.command("find")
def cli_find(book_id: int):
    """Show the details of a single book."""
    book = Library().find_book(book_id)
    if book is None:
        print(f"Book {book_id} not found.")
        return
    print("Book Found")
    print(f"Title: {book.title}")
    print(f"Author: {book.author}")
    print(f"Year: {book.year}")
    if book.borrowed:
        borrower = UserDirectory().resolve_identity(book.borrower_id)
        print(f"Borrowed by: {borrower.name if borrower else book.borrower_id}")
    else:
        print("Status: available")


@app.command("stats")
def cli_stats():
    """Show catalog statistics."""
    print_stats_result(Library().get_statistics())


@app.command("create-user")
def cli_create_user(name: str, email: str, password: str = typer.Option(..., prompt=True, hide_input=True)):
    """Register a user account."""
    try:
        user = UserDirectory().register(name, email, password)
    except ValueError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Created user {user.id}: {user.name} <{user.email}>")


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    url = f"http://{host}:{port}/"
    print(f"Starting API on {url}")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/]")


if __name__ == "__main__":
    app()
