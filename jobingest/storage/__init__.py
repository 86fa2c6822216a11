from .base import JobStore
from .memory import InMemoryStore


def get_store(db_url=None) -> JobStore:
    """Postgres store when a database URL is configured, in-memory otherwise"""
    if db_url:
        from .postgres import PostgresStore
        return PostgresStore(db_url)
    return InMemoryStore()


__all__ = ['JobStore', 'InMemoryStore', 'get_store']
