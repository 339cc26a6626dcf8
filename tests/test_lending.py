import asyncio
import threading

import pytest

from book import Book
from lending import (
    AlreadyBorrowed,
    LendingService,
    NotBorrowed,
    NotFound,
    NotYourBook,
    Unauthenticated,
    WriteError,
    admit,
    apply_borrow,
    apply_return,
)

ALICE = 1
BOB = 2


class InMemoryStore:
    """Book store kept in a dict; counts loads and writes."""

    def __init__(self, *books):
        self.books = {b.id: b.copy() for b in books}
        self.loads = 0
        self.writes = 0
        self._lock = threading.Lock()

    def list_books(self):
        return sorted((b.copy() for b in self.books.values()), key=lambda b: b.title)

    def load_book(self, book_id):
        self.loads += 1
        if book_id not in self.books:
            raise NotFound(book_id=book_id)
        return self.books[book_id].copy()

    def save_book(self, book, expected):
        # single-record writes are atomic
        with self._lock:
            current = self.books.get(book.id)
            if current is None or (current.borrowed, current.borrower_id) != (expected.borrowed, expected.borrower_id):
                return None
            self.writes += 1
            self.books[book.id] = book.copy()
            return book.copy()


def dune(**changes):
    return Book("Dune", "Frank Herbert", 1965, id=1).copy(**changes)


def run(coro):
    return asyncio.run(coro)


# ------------------------- Gate ------------------------- #
def test_admit_passes_caller_through():
    assert admit(ALICE) == ALICE


def test_admit_rejects_missing_caller():
    with pytest.raises(Unauthenticated):
        admit(None)


# ------------------------- Pure transitions ------------------------- #
def test_new_book_is_available():
    book = dune()
    assert book.borrowed is False
    assert book.borrower_id is None
    assert book.is_consistent


def test_borrow_available_book():
    book = dune()
    borrowed = apply_borrow(book, ALICE)
    assert borrowed.borrowed is True
    assert borrowed.borrower_id == ALICE
    assert borrowed.is_consistent
    # input record is not modified
    assert book.borrowed is False


@pytest.mark.parametrize("caller", [ALICE, BOB])
def test_borrow_borrowed_book_fails_for_anyone(caller):
    with pytest.raises(AlreadyBorrowed):
        apply_borrow(dune(borrowed=True, borrower_id=ALICE), caller)


def test_return_by_borrower():
    returned = apply_return(dune(borrowed=True, borrower_id=ALICE), ALICE)
    assert returned.borrowed is False
    assert returned.borrower_id is None
    assert returned.is_consistent


def test_return_by_other_user_fails():
    with pytest.raises(NotYourBook):
        apply_return(dune(borrowed=True, borrower_id=ALICE), BOB)


def test_return_available_book_fails():
    with pytest.raises(NotBorrowed):
        apply_return(dune(), ALICE)


def test_borrower_compared_by_value():
    book = dune(borrowed=True, borrower_id=int("1001"))
    assert apply_return(book, 1001).borrowed is False


def test_machine_cycles():
    book = dune()
    for caller in (ALICE, BOB, ALICE):
        book = apply_borrow(book, caller)
        book = apply_return(book, caller)
    assert book == dune()


# ------------------------- Service ------------------------- #
def test_service_borrow_persists_once():
    store = InMemoryStore(dune())
    book = run(LendingService(store).borrow(1, ALICE))
    assert book.borrower_id == ALICE
    assert store.books[1].borrowed is True
    assert store.writes == 1


@pytest.mark.parametrize("op", ["borrow", "return_book"])
def test_unauthenticated_rejected_before_load(op):
    store = InMemoryStore(dune())
    service = LendingService(store)
    with pytest.raises(Unauthenticated):
        run(getattr(service, op)(1, None))
    assert store.loads == 0
    assert store.writes == 0


def test_list_catalog_requires_caller():
    store = InMemoryStore(dune())
    with pytest.raises(Unauthenticated):
        run(LendingService(store).list_catalog(None))
    assert [b.title for b in run(LendingService(store).list_catalog(ALICE))] == ["Dune"]


def test_unknown_book_not_found():
    store = InMemoryStore(dune())
    with pytest.raises(NotFound):
        run(LendingService(store).borrow(42, ALICE))
    with pytest.raises(NotFound):
        run(LendingService(store).return_book(42, ALICE))
    assert store.writes == 0


def test_rejections_do_not_write():
    store = InMemoryStore(dune(borrowed=True, borrower_id=ALICE))
    service = LendingService(store)
    with pytest.raises(AlreadyBorrowed):
        run(service.borrow(1, ALICE))
    with pytest.raises(NotYourBook):
        run(service.return_book(1, BOB))
    assert store.writes == 0
    assert store.books[1] == dune(borrowed=True, borrower_id=ALICE)


def test_dune_scenario():
    store = InMemoryStore(dune())
    service = LendingService(store)

    book = run(service.borrow(1, ALICE))
    assert (book.borrowed, book.borrower_id) == (True, ALICE)

    with pytest.raises(AlreadyBorrowed):
        run(service.borrow(1, BOB))
    assert (store.books[1].borrowed, store.books[1].borrower_id) == (True, ALICE)

    with pytest.raises(NotYourBook):
        run(service.return_book(1, BOB))

    book = run(service.return_book(1, ALICE))
    assert (book.borrowed, book.borrower_id) == (False, None)
    assert store.writes == 2
    assert all(b.is_consistent for b in store.books.values())


# ------------------------- Races ------------------------- #
class InterleavingStore(InMemoryStore):
    """Lets another user borrow the book between our load and our save."""

    def __init__(self, *books, interloper=BOB):
        super().__init__(*books)
        self.interloper = interloper
        self.fired = False

    def save_book(self, book, expected):
        if not self.fired:
            self.fired = True
            self.books[book.id] = self.books[book.id].copy(borrowed=True, borrower_id=self.interloper)
        return super().save_book(book, expected)


def test_concurrent_borrow_loser_sees_already_borrowed():
    store = InterleavingStore(dune())
    with pytest.raises(AlreadyBorrowed):
        run(LendingService(store).borrow(1, ALICE))
    # the first borrower is kept
    assert store.books[1].borrower_id == BOB
    assert store.writes == 0


def test_concurrent_borrows_on_one_book_have_single_winner():
    store = InMemoryStore(dune())
    service = LendingService(store)

    async def both():
        return await asyncio.gather(
            service.borrow(1, ALICE), service.borrow(1, BOB), return_exceptions=True
        )

    results = run(both())
    winners = [r for r in results if isinstance(r, Book)]
    losers = [r for r in results if isinstance(r, AlreadyBorrowed)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert store.books[1].borrower_id == winners[0].borrower_id
    assert store.writes == 1


class StaleWriteStore(InMemoryStore):
    def save_book(self, book, expected):
        return None


def test_stale_write_that_still_looks_legal_is_write_error():
    store = StaleWriteStore(dune())
    with pytest.raises(WriteError):
        run(LendingService(store).borrow(1, ALICE))


def test_write_error_surfaces_to_caller():
    class BrokenStore(InMemoryStore):
        def save_book(self, book, expected):
            raise WriteError(book_id=book.id)

    with pytest.raises(WriteError) as exc:
        run(LendingService(BrokenStore(dune())).borrow(1, ALICE))
    assert exc.value.status_code == 503
    assert exc.value.code == "write_error"


def test_concurrent_borrows_against_sqlite(lib):
    book = lib.add_book("Dune", "Frank Herbert", 1965)
    service = LendingService(lib)

    async def both():
        return await asyncio.gather(
            service.borrow(book.id, ALICE), service.borrow(book.id, BOB), return_exceptions=True
        )

    results = run(both())
    winners = [r for r in results if isinstance(r, Book)]
    losers = [r for r in results if isinstance(r, AlreadyBorrowed)]
    assert len(winners) == 1
    assert len(losers) == 1
    stored = lib.load_book(book.id)
    assert stored.borrower_id == winners[0].borrower_id
    assert stored.is_consistent
