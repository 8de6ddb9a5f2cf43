"""PostgreSQL access for Cloudwarden."""

from cloudwarden.db.connection import close_pool, get_connection, get_pool

__all__ = ["close_pool", "get_connection", "get_pool"]
