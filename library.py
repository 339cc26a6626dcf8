import logging
import sqlite3
from typing import List, Optional, Dict, Any

import database
from book import Book
from database import get_db_connection, initialize_database
from lending import NotFound, ReadError, WriteError
from utils.validators import TextValidator, YearValidator

logger = logging.getLogger(__name__)

BOOK_COLUMNS = "id, title, author, year, borrowed, borrower_id, created_at"


class Library:
    """Manages the book catalog and its persistence."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        # Callers (and tests) may point the module-level helpers in database.py
        # at a different file before the schema is created.
        if db_file:
            database.DATABASE_FILE = db_file
        initialize_database()

    # ------------------------- Catalog operations ------------------------- #
    def add_book(self, title: str, author: str, year: int) -> Book:
        """Add a new, available book. Titles are unique."""
        title, author, year = self._validate(title, author, year)
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "INSERT INTO books (title, author, year) VALUES (?, ?, ?)",
                (title, author, year),
            )
            conn.commit()
            book_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Book titled '{title}' already exists.") from e
        finally:
            conn.close()
        logger.info(f"Added book {book_id}: {title}")
        return self.find_book(book_id)

    def remove_book(self, book_id: int) -> bool:
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
            removed = cursor.rowcount > 0
        finally:
            conn.close()
        if removed:
            logger.info(f"Removed book {book_id}")
        return removed

    def list_books(self) -> List[Book]:
        """List every book, freshly read on each call."""
        try:
            conn = get_db_connection()
            try:
                rows = conn.execute(f"SELECT {BOOK_COLUMNS} FROM books ORDER BY title").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.exception("Listing books failed")
            raise ReadError("Could not load the catalog, please try again.") from e
        return [Book.from_dict(dict(row)) for row in rows]

    def find_book(self, book_id: int) -> Optional[Book]:
        conn = get_db_connection()
        try:
            row = conn.execute(f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
            return Book.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def update_book(self, book_id: int, *, title: Optional[str] = None, author: Optional[str] = None,
                    year: Optional[int] = None) -> Optional[Book]:
        """Update catalog details; fields left as None keep their value.

        Borrow state is never touched here.
        """
        book = self.find_book(book_id)
        if not book:
            return None

        new_title, new_author, new_year = self._validate(
            title if title is not None else book.title,
            author if author is not None else book.author,
            year if year is not None else book.year,
        )
        conn = get_db_connection()
        try:
            conn.execute(
                "UPDATE books SET title = ?, author = ?, year = ? WHERE id = ?",
                (new_title, new_author, new_year, book_id),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Book titled '{new_title}' already exists.") from e
        finally:
            conn.close()
        return self.find_book(book_id)

    def get_statistics(self) -> Dict[str, Any]:
        conn = get_db_connection()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS total, COALESCE(SUM(borrowed), 0) AS borrowed FROM books"
            ).fetchone()
        finally:
            conn.close()
        total, borrowed = row["total"], row["borrowed"]
        return {"total_books": total, "borrowed_books": borrowed, "available_books": total - borrowed}

    # ------------------------- Lending store ------------------------- #
    def load_book(self, book_id: int) -> Book:
        try:
            book = self.find_book(book_id)
        except sqlite3.Error as e:
            logger.exception(f"Loading book {book_id} failed")
            raise ReadError(book_id=book_id) from e
        if book is None:
            raise NotFound(book_id=book_id)
        return book

    def save_book(self, book: Book, expected: Book) -> Optional[Book]:
        """Write the borrow state of ``book`` if the row still matches ``expected``.

        Returns None when another writer changed the row first.
        """
        try:
            conn = get_db_connection()
            try:
                cursor = conn.execute(
                    """
                    UPDATE books SET borrowed = ?, borrower_id = ?
                    WHERE id = ? AND borrowed = ? AND borrower_id IS ?
                    """,
                    (int(book.borrowed), book.borrower_id,
                     book.id, int(expected.borrowed), expected.borrower_id),
                )
                conn.commit()
                if cursor.rowcount == 0:
                    return None
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.exception(f"Saving book {book.id} failed")
            raise WriteError(book_id=book.id) from e
        return self.load_book(book.id)

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _validate(title, author, year):
        if not TextValidator.validate_title(title):
            raise ValueError("Title is required.")
        if not TextValidator.validate_author(author):
            raise ValueError("Author is required.")
        if not YearValidator.is_valid_year(year):
            raise ValueError(f"Invalid publication year: {year}")
        return TextValidator.sanitize_text(title).strip(), TextValidator.sanitize_text(author).strip(), int(year)
