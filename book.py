from __future__ import annotations


class Book:
    """Represents a single book in the shared catalog."""

    def __init__(self, title: str, author: str, year: int, id: int | None = None,
                 borrowed: bool = False, borrower_id: int | None = None,
                 created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.year = int(year)
        self.borrowed = bool(borrowed)
        self.borrower_id = borrower_id
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.year})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    @property
    def is_consistent(self) -> bool:
        """A borrower is recorded if and only if the book is borrowed."""
        return self.borrowed == (self.borrower_id is not None)

    def copy(self, **changes) -> "Book":
        data = self.to_dict()
        data.update(changes)
        return Book.from_dict(data)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "year": self.year,
            "borrowed": self.borrowed,
            "borrower_id": self.borrower_id,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # SQLite hands booleans back as 0/1
        return Book(
            title=data["title"],
            author=data["author"],
            year=data["year"],
            id=data.get("id"),
            borrowed=bool(data.get("borrowed", False)),
            borrower_id=data.get("borrower_id"),
            created_at=data.get("created_at"),
        )
