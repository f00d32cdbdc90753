"""Database connection pool, table constants, and migrations."""

from sharpedge.db.pool import close_pool, get_pool

__all__ = ["get_pool", "close_pool"]
