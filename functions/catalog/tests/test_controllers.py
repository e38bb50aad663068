import unittest
from unittest.mock import MagicMock

from catalog.blobs import InMemoryBlobStore
from catalog.changefeed import ChangeEvent, ChangeOperation, InMemoryChangeFeed
from catalog.controllers import BooksController, UploadController, parse_count
from catalog.errors import TransportError
from catalog.records import Book, InMemoryRecordStore


class FakeTimer:
    """Stands in for threading.Timer; tests fire it by hand."""

    created = []

    def __init__(self, interval, function, args=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def is_alive(self):
        return self.started and not self.cancelled

    def fire(self):
        if not self.cancelled:
            self.function(*self.args)


class BooksControllerTests(unittest.TestCase):
    def setUp(self):
        FakeTimer.created = []
        self.feed = InMemoryChangeFeed()
        self.records = InMemoryRecordStore(feed=self.feed)
        self.controller = BooksController(
            self.records, self.feed, timer_factory=FakeTimer
        )

    def tearDown(self):
        self.controller.unmount()

    def test_mount_loads_and_subscribes(self):
        self.records.create(Book(name="Dune", author="Herbert", count=3))
        self.assertTrue(self.controller.loading)

        self.controller.mount()

        self.assertFalse(self.controller.loading)
        self.assertTrue(self.controller.mounted)
        self.assertEqual([b.name for b in self.controller.books], ["Dune"])
        self.assertEqual(len(self.feed.subscriptions), 1)

    def test_mount_twice_keeps_one_subscription(self):
        self.controller.mount()
        self.controller.mount()
        self.assertEqual(len(self.feed.subscriptions), 1)

    def test_unmount_releases_subscription(self):
        self.controller.mount()
        self.controller.unmount()
        self.assertFalse(self.controller.mounted)
        self.assertEqual(self.feed.subscriptions, [])
        self.controller.unmount()

    def test_context_manager_releases_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.controller:
                self.assertTrue(self.controller.mounted)
                raise RuntimeError("view crashed")
        self.assertEqual(self.feed.subscriptions, [])

    def test_external_delete_refreshes_view(self):
        book = self.records.create(Book(name="Dune", author="Herbert"))
        self.controller.mount()
        self.assertEqual(len(self.controller.books), 1)

        # A second, independent caller sharing the same backend.
        other = InMemoryRecordStore(feed=self.feed)
        other.rows = self.records.rows
        other.delete(book.id)

        self.assertEqual(self.controller.books, [])

    def test_refresh_is_idempotent_for_repeated_events(self):
        self.records.create(Book(name="Dune", author="Herbert"))
        self.controller.mount()
        event = ChangeEvent(operation=ChangeOperation.INSERT, table="books")
        for _ in range(3):
            self.feed.publish(event)
        self.assertEqual(len(self.controller.books), 1)

    def test_mutations_refresh_view(self):
        self.controller.mount()
        created = self.controller.create(Book(name="Dune", author="Herbert", count=3))
        self.assertEqual([b.count for b in self.controller.books], [3])

        created.count = 5
        self.controller.update(created)
        self.assertEqual([b.count for b in self.controller.books], [5])

        self.assertTrue(self.controller.delete(created.id))
        self.assertEqual(self.controller.books, [])

    def test_failure_keeps_previous_state_and_flashes_error(self):
        self.records.create(Book(name="Dune", author="Herbert"))
        self.controller.mount()
        before = list(self.controller.books)

        self.controller.records = MagicMock()
        self.controller.records.list.side_effect = TransportError("down")
        self.controller.records.delete.side_effect = TransportError("down")

        self.assertFalse(self.controller.delete(1))
        self.assertEqual(self.controller.books, before)
        self.assertEqual(self.controller.error, "Failed to delete book")

        self.assertFalse(self.controller.refresh())
        self.assertEqual(self.controller.books, before)

        # Only the most recent error timer clears the message.
        first, second = FakeTimer.created[-2:]
        self.assertEqual(second.interval, 3.0)
        first.fire()
        self.assertEqual(self.controller.error, "Failed to load books")
        second.fire()
        self.assertIsNone(self.controller.error)

    def test_validation_error_is_surfaced_not_raised(self):
        self.controller.mount()
        self.assertIsNone(self.controller.create(Book(name="", author="Herbert")))
        self.assertEqual(self.controller.error, "Failed to save book")
        self.assertEqual(self.controller.books, [])

    def test_initial_load_failure_still_clears_loading(self):
        records = MagicMock()
        records.list.side_effect = TransportError("down")
        controller = BooksController(records, self.feed, timer_factory=FakeTimer)
        controller.mount()
        self.assertFalse(controller.loading)
        self.assertEqual(controller.books, [])
        self.assertEqual(controller.error, "Failed to load books")
        controller.unmount()

    def test_submit_creates_then_edits(self):
        self.controller.mount()
        self.controller.open_form()
        self.controller.form.name = "Dune"
        self.controller.form.author = "Herbert"
        self.controller.form.count = "abc"
        self.assertTrue(self.controller.submit())
        self.assertFalse(self.controller.show_form)
        book = self.controller.books[0]
        self.assertEqual(book.count, 0)

        self.controller.begin_edit(book)
        self.assertEqual(self.controller.form.count, "0")
        self.controller.form.count = "7"
        self.assertTrue(self.controller.submit())
        self.assertIsNone(self.controller.editing)
        self.assertEqual(len(self.controller.books), 1)
        self.assertEqual(self.controller.books[0].count, 7)
        self.assertEqual(self.controller.books[0].id, book.id)

    def test_submit_failure_keeps_form(self):
        self.controller.mount()
        self.controller.open_form()
        self.controller.form.author = "Herbert"
        self.assertFalse(self.controller.submit())
        self.assertTrue(self.controller.show_form)
        self.assertEqual(self.controller.form.author, "Herbert")


class ParseCountTests(unittest.TestCase):
    def test_parse_count(self):
        self.assertEqual(parse_count("5"), 5)
        self.assertEqual(parse_count(" 12 "), 12)
        self.assertEqual(parse_count(""), 0)
        self.assertEqual(parse_count("x"), 0)
        self.assertEqual(parse_count(None), 0)


class UploadControllerTests(unittest.TestCase):
    def setUp(self):
        FakeTimer.created = []
        self.blobs = InMemoryBlobStore()
        self.controller = UploadController(self.blobs, timer_factory=FakeTimer)

    def test_upload_without_selection(self):
        self.assertIsNone(self.controller.upload())
        self.assertEqual(self.controller.error, "Please select a file")

    def test_upload_adds_file_with_public_url(self):
        self.controller.select("a.txt", b"hello", "text/plain")
        uploaded = self.controller.upload()

        self.assertIsNotNone(uploaded)
        self.assertEqual(uploaded.path, "public/a.txt")
        self.assertIn("a.txt", uploaded.url)
        self.assertIsNone(self.controller.selected)
        self.assertFalse(self.controller.uploading)
        self.assertEqual(self.controller.success, "File a.txt uploaded")
        self.assertEqual(self.controller.files, [uploaded])
        self.assertEqual(self.controller.download(uploaded.id), b"hello")

    def test_upload_failure_sets_transient_error(self):
        self.controller.blobs = MagicMock()
        self.controller.blobs.upload.side_effect = TransportError("down")
        self.controller.select("a.txt", b"hello")

        self.assertIsNone(self.controller.upload())
        self.assertEqual(self.controller.error, "Upload failed, please retry")
        self.assertEqual(self.controller.files, [])
        self.assertFalse(self.controller.uploading)

        FakeTimer.created[-1].fire()
        self.assertIsNone(self.controller.error)

    def test_select_clears_messages(self):
        self.controller.upload()
        self.controller.select("a.txt", b"hello")
        self.assertIsNone(self.controller.error)
        self.assertEqual(self.controller.selected.size, 5)

    def test_mark_copied_resets_after_delay(self):
        self.controller.select("a.txt", b"hello")
        uploaded = self.controller.upload()

        url = self.controller.mark_copied(uploaded.id)
        self.assertEqual(url, uploaded.url)
        self.assertTrue(uploaded.copied)

        timer = FakeTimer.created[-1]
        self.assertEqual(timer.interval, 2.0)
        timer.fire()
        self.assertFalse(uploaded.copied)

    def test_mark_copied_unknown_file(self):
        self.assertIsNone(self.controller.mark_copied("nope"))

    def test_download_unknown_file(self):
        self.assertIsNone(self.controller.download("nope"))
        self.assertEqual(self.controller.error, "Download failed")


if __name__ == "__main__":
    unittest.main()
