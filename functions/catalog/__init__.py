"""
Book catalog service package.

This package provides a FastAPI application and the data-access layer
behind it: a record store for books, a blob store for uploaded files,
a change feed for realtime refresh, and the controllers that bind them
to view state.
"""
