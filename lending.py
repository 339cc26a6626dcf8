"""Borrow/return state machine for the shared catalog.

A book is either *available* (``borrowed`` false, no borrower) or *borrowed*
by exactly one user. The transition functions here are pure: they take the
record as loaded and return the new record value, leaving persistence to
:class:`LendingService`, which talks to an injectable book store.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol

from book import Book

logger = logging.getLogger(__name__)


# ------------------------- Errors ------------------------- #
class LendingError(Exception):
    """Base class for every rejected catalog or lending operation."""

    code = "lending_error"
    status_code = 400
    default_message = "Operation rejected."

    def __init__(self, message: Optional[str] = None, book_id: Optional[int] = None) -> None:
        self.book_id = book_id
        super().__init__(message or self.default_message)


class Unauthenticated(LendingError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Sign in to continue."


class NotFound(LendingError):
    code = "not_found"
    status_code = 404
    default_message = "Book not found."


class AlreadyBorrowed(LendingError):
    code = "already_borrowed"
    default_message = "Book already borrowed."


class NotBorrowed(LendingError):
    code = "not_borrowed"
    default_message = "Book is not borrowed."


class NotYourBook(LendingError):
    code = "not_your_book"
    default_message = "You cannot return this book."


class ReadError(LendingError):
    """The store could not load the record. May be transient."""

    code = "read_error"
    status_code = 503
    default_message = "Could not load the book, please try again."


class WriteError(LendingError):
    """The store could not persist the update. May be transient."""

    code = "write_error"
    status_code = 503
    default_message = "Could not save the book, please try again."


# ------------------------- Authorization gate ------------------------- #
def admit(caller: Optional[int]) -> int:
    """Return the caller when present, otherwise raise ``Unauthenticated``."""
    if caller is None:
        raise Unauthenticated()
    return caller


# ------------------------- Transitions ------------------------- #
def apply_borrow(book: Book, caller: int) -> Book:
    # A repeat borrow by the current holder is rejected like any other.
    if book.borrowed:
        raise AlreadyBorrowed(book_id=book.id)
    return book.copy(borrowed=True, borrower_id=caller)


def apply_return(book: Book, caller: int) -> Book:
    if not book.borrowed:
        raise NotBorrowed(book_id=book.id)
    if book.borrower_id != caller:
        raise NotYourBook(book_id=book.id)
    return book.copy(borrowed=False, borrower_id=None)


# ------------------------- Executor ------------------------- #
class BookStore(Protocol):
    def list_books(self) -> List[Book]: ...

    def load_book(self, book_id: int) -> Book: ...

    def save_book(self, book: Book, expected: Book) -> Optional[Book]: ...


class LendingService:
    """Runs gate -> load -> decide -> write for each lending request.

    The store is synchronous; its calls run in a worker thread so that load
    and save are the only points where a request yields to the event loop.
    """

    def __init__(self, store: BookStore) -> None:
        self.store = store

    async def list_catalog(self, caller: Optional[int]) -> List[Book]:
        admit(caller)
        return await asyncio.to_thread(self.store.list_books)

    async def borrow(self, book_id: int, caller: Optional[int]) -> Book:
        return await self._apply(book_id, caller, apply_borrow, "borrow")

    async def return_book(self, book_id: int, caller: Optional[int]) -> Book:
        return await self._apply(book_id, caller, apply_return, "return")

    async def _apply(self, book_id, caller, transition, action: str) -> Book:
        caller = admit(caller)
        current = await asyncio.to_thread(self.store.load_book, book_id)
        try:
            updated = transition(current, caller)
        except LendingError as e:
            logger.warning(f"{action} rejected: book={book_id} user={caller} reason={e.code}")
            raise

        saved = await asyncio.to_thread(self.store.save_book, updated, current)
        if saved is None:
            # Someone else wrote the record after we loaded it. Decide again
            # against what is stored now so the caller sees the real reason.
            fresh = await asyncio.to_thread(self.store.load_book, book_id)
            try:
                transition(fresh, caller)
            except LendingError as e:
                logger.warning(f"{action} lost a race: book={book_id} user={caller} reason={e.code}")
                raise
            raise WriteError("Book changed while saving, please try again.", book_id=book_id)

        logger.info(f"{action} ok: book={book_id} user={caller}")
        return saved
