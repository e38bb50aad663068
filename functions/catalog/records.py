"""
Record store for the `books` collection: Postgres (via SQLAlchemy) and an
in-memory implementation for development and tests.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Optional, Protocol, Union

from sqlalchemy import Column, Integer, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from catalog.changefeed import ChangeEvent, ChangeFeed, ChangeOperation
from catalog.errors import TransportError, ValidationError

logger = logging.getLogger(__name__)

BOOKS_TABLE = "books"
BOOK_FIELDS = ("id", "name", "author", "introduction", "count")

BookId = Union[str, int]


@dataclass
class Book:
    name: str
    author: str
    introduction: str = ""
    count: int = 0
    id: Optional[BookId] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "author": self.author,
            "introduction": self.introduction,
            "count": self.count,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Book":
        """
        Build a Book from a plain mapping. Only the canonical field names are
        accepted; anything else (e.g. a misspelt `intraduction`) is rejected.
        """
        unknown = sorted(set(payload) - set(BOOK_FIELDS))
        if unknown:
            raise ValidationError(f"unknown book field(s): {', '.join(unknown)}")
        missing = [name for name in ("name", "author") if name not in payload]
        if missing:
            raise ValidationError(f"missing book field(s): {', '.join(missing)}")
        book = cls(
            name=payload["name"],
            author=payload["author"],
            introduction=payload.get("introduction") or "",
            count=payload.get("count", 0),
            id=payload.get("id"),
        )
        book.validate()
        return book

    def validate(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("name must be non-empty text")
        if not isinstance(self.author, str) or not self.author.strip():
            raise ValidationError("author must be non-empty text")
        if not isinstance(self.introduction, str):
            raise ValidationError("introduction must be text")
        if (
            isinstance(self.count, bool)
            or not isinstance(self.count, int)
            or self.count < 0
        ):
            raise ValidationError("count must be a non-negative integer")


class RecordStore(Protocol):
    """Defines the CRUD operations the controllers need from the record store."""

    def create(self, book: Book) -> Book:
        ...

    def list(self) -> list[Book]:
        ...

    def get(self, book_id: BookId) -> Optional[Book]:
        ...

    def update(self, book: Book) -> Book:
        ...

    def delete(self, book_id: BookId) -> None:
        ...


def coerce_id(book_id: BookId) -> Optional[int]:
    """Store ids are integers; anything that cannot be one matches no record."""
    if isinstance(book_id, bool):
        return None
    if isinstance(book_id, float) and not book_id.is_integer():
        return None
    try:
        return int(book_id)
    except (TypeError, ValueError):
        return None


def _check_new(book: Book) -> None:
    try:
        if book.id is not None:
            raise ValidationError("id is assigned by the store on create")
        book.validate()
    except ValidationError as exc:
        logger.warning("Rejected new book %r: %s", book.name, exc)
        raise


def _check_existing(book: Book) -> None:
    try:
        if book.id is None:
            raise ValidationError("id is required for update")
        book.validate()
    except ValidationError as exc:
        logger.warning("Rejected update of book %s: %s", book.id, exc)
        raise


class _ChangeNotifier:
    """Publishes change events for the mutations a store performs."""

    feed: Optional[ChangeFeed] = None
    table: str = BOOKS_TABLE

    def _notify(self, operation: ChangeOperation, record_id: Optional[BookId]) -> None:
        if self.feed is None:
            return
        try:
            self.feed.publish(
                ChangeEvent(operation=operation, table=self.table, record_id=record_id)
            )
        except TransportError:
            # The write is committed; subscribers catch up on their next refresh.
            logger.exception(
                "Failed to publish %s for %s %s", operation.value, self.table, record_id
            )


class InMemoryRecordStore(_ChangeNotifier):
    """Simple in-memory record store for development and tests."""

    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed
        self.rows: dict[int, Book] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def create(self, book: Book) -> Book:
        _check_new(book)
        with self._lock:
            stored = replace(book, id=self._next_id)
            self._next_id += 1
            self.rows[stored.id] = stored
        self._notify(ChangeOperation.INSERT, stored.id)
        return replace(stored)

    def list(self) -> list[Book]:
        with self._lock:
            return [replace(self.rows[key]) for key in sorted(self.rows)]

    def get(self, book_id: BookId) -> Optional[Book]:
        key = coerce_id(book_id)
        with self._lock:
            stored = self.rows.get(key)
            return replace(stored) if stored else None

    def update(self, book: Book) -> Book:
        _check_existing(book)
        key = coerce_id(book.id)
        with self._lock:
            if key not in self.rows:
                logger.info("Update of unknown book %s ignored", book.id)
                return book
            self.rows[key] = replace(book, id=key)
        self._notify(ChangeOperation.UPDATE, key)
        return book

    def delete(self, book_id: BookId) -> None:
        key = coerce_id(book_id)
        with self._lock:
            removed = self.rows.pop(key, None)
        if removed is not None:
            self._notify(ChangeOperation.DELETE, key)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.rows.clear()
            self._next_id = 1


class SqlRecordStore(_ChangeNotifier):
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., the
    platform's Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str, feed: Optional[ChangeFeed] = None):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlRecordStore")
        self.feed = feed
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @staticmethod
    def _to_book(row: "BookRow") -> Book:
        return Book(
            id=row.id,
            name=row.name,
            author=row.author,
            introduction=row.introduction or "",
            count=row.count,
        )

    def create(self, book: Book) -> Book:
        _check_new(book)
        try:
            with self.Session() as session:
                row = BookRow(
                    name=book.name,
                    author=book.author,
                    introduction=book.introduction,
                    count=book.count,
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                created = self._to_book(row)
        except SQLAlchemyError as exc:
            logger.exception("Failed to create book %r", book.name)
            raise TransportError("create book failed") from exc
        self._notify(ChangeOperation.INSERT, created.id)
        return created

    def list(self) -> list[Book]:
        try:
            with self.Session() as session:
                rows = session.execute(
                    select(BookRow).order_by(BookRow.id.asc())
                ).scalars()
                return [self._to_book(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.exception("Failed to list books")
            raise TransportError("list books failed") from exc

    def get(self, book_id: BookId) -> Optional[Book]:
        key = coerce_id(book_id)
        if key is None:
            return None
        try:
            with self.Session() as session:
                row = session.get(BookRow, key)
                return self._to_book(row) if row else None
        except SQLAlchemyError as exc:
            logger.exception("Failed to get book %s", book_id)
            raise TransportError("get book failed") from exc

    def update(self, book: Book) -> Book:
        _check_existing(book)
        key = coerce_id(book.id)
        if key is None:
            return book
        try:
            with self.Session() as session:
                row = session.get(BookRow, key)
                if not row:
                    logger.info("Update of unknown book %s ignored", book.id)
                    return book
                row.name = book.name
                row.author = book.author
                row.introduction = book.introduction
                row.count = book.count
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to update book %s", book.id)
            raise TransportError("update book failed") from exc
        self._notify(ChangeOperation.UPDATE, key)
        return book

    def delete(self, book_id: BookId) -> None:
        key = coerce_id(book_id)
        if key is None:
            return
        try:
            with self.Session() as session:
                row = session.get(BookRow, key)
                if not row:
                    return
                session.delete(row)
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to delete book %s", book_id)
            raise TransportError("delete book failed") from exc
        self._notify(ChangeOperation.DELETE, key)


Base = declarative_base()


class BookRow(Base):
    __tablename__ = BOOKS_TABLE

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    author = Column(String, nullable=False)
    introduction = Column(Text, nullable=False, default="")
    count = Column(Integer, nullable=False, default=0)
