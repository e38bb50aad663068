"""
Watch the books collection and log the list whenever it changes.
"""

from __future__ import annotations

import argparse
import logging
import time

from catalog.config import get_settings
from catalog.dependencies import build_backend

logger = logging.getLogger(__name__)


def log_books(books) -> None:
    logger.info("%d book(s)", len(books))
    for book in books:
        logger.info("  [%s] %s by %s (count=%d)", book.id, book.name, book.author, book.count)


def main() -> int:
    parser = argparse.ArgumentParser(description="Log the book list on every change")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Print the current list and exit",
    )
    parser.add_argument(
        "--poll-seconds",
        type=float,
        default=1.0,
        help="Seconds between checks for a new list",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    backend = build_backend(get_settings())
    with backend.books_controller() as controller:
        if controller.error:
            logger.error(controller.error)
            return 1
        log_books(controller.books)
        if args.once:
            return 0

        seen = controller.books
        try:
            while True:
                time.sleep(args.poll_seconds)
                if controller.books is not seen:
                    seen = controller.books
                    log_books(seen)
        except KeyboardInterrupt:
            logger.info("Stopping")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
