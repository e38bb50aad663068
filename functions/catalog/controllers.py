"""
Per-view controllers binding the stores and the change feed to view state.

Controllers never raise store errors to their callers: a failed operation
leaves the previous view state intact and sets a transient error message
that clears itself after a short delay.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional
from uuid import uuid4

from catalog.blobs import BlobStore
from catalog.changefeed import ChangeEvent, ChangeFeed, ChangeScope, Subscription
from catalog.errors import CatalogError, NotFoundError
from catalog.records import BOOKS_TABLE, Book, BookId, RecordStore

logger = logging.getLogger(__name__)

ERROR_MESSAGE_TTL = 3.0  # seconds
COPIED_FLAG_TTL = 2.0  # seconds

TimerFactory = Callable[..., threading.Timer]


def parse_count(value) -> int:
    """Form input for `count`; anything that is not an integer counts as 0."""
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


@dataclass
class BookForm:
    name: str = ""
    author: str = ""
    introduction: str = ""
    count: str = ""

    @classmethod
    def from_book(cls, book: Book) -> "BookForm":
        return cls(
            name=book.name,
            author=book.author,
            introduction=book.introduction,
            count=str(book.count),
        )

    def to_book(self, book_id: Optional[BookId] = None) -> Book:
        return Book(
            id=book_id,
            name=self.name,
            author=self.author,
            introduction=self.introduction,
            count=parse_count(self.count),
        )


class _TransientState:
    """Error/success messages and flags that reset themselves on a timer."""

    def __init__(self, error_ttl: float, timer_factory: TimerFactory):
        self.error: Optional[str] = None
        self.success: Optional[str] = None
        self.error_ttl = error_ttl
        self._timer_factory = timer_factory
        self._timers: list[threading.Timer] = []
        self._error_token = 0
        self._lock = threading.RLock()

    def _schedule(self, delay: float, fn: Callable, *args) -> None:
        timer = self._timer_factory(delay, fn, args=args)
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def _flash_error(self, message: str, exc: Exception) -> None:
        logger.warning("%s: %s", message, exc)
        with self._lock:
            self._error_token += 1
            token = self._error_token
            self.error = message
        self._schedule(self.error_ttl, self._clear_error, token)

    def _clear_error(self, token: int) -> None:
        with self._lock:
            # A newer error owns the message now.
            if token == self._error_token:
                self.error = None

    def clear_messages(self) -> None:
        with self._lock:
            self._error_token += 1
            self.error = None
            self.success = None

    def cancel_timers(self) -> None:
        with self._lock:
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()


class BooksController(_TransientState):
    """
    Holds the book list for one view and keeps it in sync with the store.

    On mount the list is loaded and a change-feed subscription is opened
    whose callback re-fetches the whole list. Mutations re-fetch right away
    as well; the echoed change event triggers a second, redundant refresh
    which converges to the same state.
    """

    def __init__(
        self,
        records: RecordStore,
        feed: ChangeFeed,
        scope: Optional[ChangeScope] = None,
        error_ttl: float = ERROR_MESSAGE_TTL,
        timer_factory: TimerFactory = threading.Timer,
    ):
        super().__init__(error_ttl, timer_factory)
        self.records = records
        self.feed = feed
        self.scope = scope or ChangeScope(table=BOOKS_TABLE)
        self.books: list[Book] = []
        self.loading = True
        self.show_form = False
        self.editing: Optional[Book] = None
        self.form = BookForm()
        self._subscription: Optional[Subscription] = None

    @property
    def mounted(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def mount(self) -> None:
        if self.mounted:
            return
        self.refresh()
        try:
            self._subscription = self.feed.subscribe(self.scope, self._on_change)
        except CatalogError as exc:
            self._flash_error("Failed to subscribe to book changes", exc)

    def unmount(self) -> None:
        subscription, self._subscription = self._subscription, None
        try:
            if subscription is not None:
                subscription.unsubscribe()
        finally:
            self.cancel_timers()

    def __enter__(self) -> "BooksController":
        self.mount()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unmount()

    def _on_change(self, event: ChangeEvent) -> None:
        logger.debug(
            "Change on %s (%s %s), refreshing",
            event.table,
            event.operation.value,
            event.record_id,
        )
        self.refresh()

    def refresh(self) -> bool:
        """Re-fetch the full list and replace the view state. Safe to repeat."""
        try:
            books = self.records.list()
        except CatalogError as exc:
            self._flash_error("Failed to load books", exc)
            return False
        finally:
            self.loading = False
        with self._lock:
            self.books = books
        return True

    def create(self, book: Book) -> Optional[Book]:
        try:
            created = self.records.create(book)
        except CatalogError as exc:
            self._flash_error("Failed to save book", exc)
            return None
        self.refresh()
        return created

    def update(self, book: Book) -> Optional[Book]:
        try:
            updated = self.records.update(book)
        except CatalogError as exc:
            self._flash_error("Failed to save book", exc)
            return None
        self.refresh()
        return updated

    def delete(self, book_id: BookId) -> bool:
        try:
            self.records.delete(book_id)
        except CatalogError as exc:
            self._flash_error("Failed to delete book", exc)
            return False
        self.refresh()
        return True

    def open_form(self) -> None:
        with self._lock:
            self.show_form = True

    def begin_edit(self, book: Book) -> None:
        with self._lock:
            self.editing = replace(book)
            self.form = BookForm.from_book(book)
            self.show_form = True

    def reset_form(self) -> None:
        with self._lock:
            self.form = BookForm()
            self.editing = None
            self.show_form = False

    def submit(self) -> bool:
        """Create or update from the form, depending on whether an edit is open."""
        editing = self.editing
        if editing is not None:
            saved = self.update(self.form.to_book(editing.id))
        else:
            saved = self.create(self.form.to_book())
        if saved is None:
            return False
        self.reset_form()
        return True


@dataclass
class SelectedFile:
    name: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class UploadedFile:
    id: str
    name: str
    path: str
    url: str
    copied: bool = False


class UploadController(_TransientState):
    """Uploads one selected file at a time and lists what was uploaded this session."""

    def __init__(
        self,
        blobs: BlobStore,
        error_ttl: float = ERROR_MESSAGE_TTL,
        copied_ttl: float = COPIED_FLAG_TTL,
        timer_factory: TimerFactory = threading.Timer,
    ):
        super().__init__(error_ttl, timer_factory)
        self.blobs = blobs
        self.copied_ttl = copied_ttl
        self.selected: Optional[SelectedFile] = None
        self.files: list[UploadedFile] = []
        self.uploading = False

    def select(
        self, name: str, content: bytes, content_type: Optional[str] = None
    ) -> None:
        with self._lock:
            self.selected = SelectedFile(name, content, content_type)
        self.clear_messages()

    def upload(self) -> Optional[UploadedFile]:
        selected = self.selected
        if selected is None:
            with self._lock:
                self.error = "Please select a file"
            return None

        self.clear_messages()
        self.uploading = True
        try:
            path = self.blobs.upload(
                selected.content, selected.name, selected.content_type
            )
            url = self.blobs.resolve_public_url(path)
        except CatalogError as exc:
            self._flash_error("Upload failed, please retry", exc)
            return None
        finally:
            self.uploading = False

        uploaded = UploadedFile(id=uuid4().hex, name=selected.name, path=path, url=url)
        with self._lock:
            self.files.append(uploaded)
            self.selected = None
            self.success = f"File {selected.name} uploaded"
        return uploaded

    def _find(self, file_id: str) -> Optional[UploadedFile]:
        for uploaded in self.files:
            if uploaded.id == file_id:
                return uploaded
        return None

    def mark_copied(self, file_id: str) -> Optional[str]:
        """Flag a file's URL as copied; the flag drops after `copied_ttl`. Returns the URL."""
        with self._lock:
            uploaded = self._find(file_id)
            if uploaded is None:
                return None
            uploaded.copied = True
        self._schedule(self.copied_ttl, self._clear_copied, file_id)
        return uploaded.url

    def _clear_copied(self, file_id: str) -> None:
        with self._lock:
            uploaded = self._find(file_id)
            if uploaded is not None:
                uploaded.copied = False

    def download(self, file_id: str) -> Optional[bytes]:
        uploaded = self._find(file_id)
        if uploaded is None:
            self._flash_error("Download failed", NotFoundError(file_id))
            return None
        try:
            return self.blobs.download(uploaded.path)
        except CatalogError as exc:
            self._flash_error("Download failed", exc)
            return None
