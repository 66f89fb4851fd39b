"""
Metadata Store Package
"""
from ..config import StoreConfig
from .base import UNSET, MetadataStore
from .memory import InMemoryMetadataStore
from .sqlite_store import SqliteMetadataStore


def create_store(config: StoreConfig) -> MetadataStore:
    """SQLite store at the configured path (":memory:" for a throwaway store)"""
    return SqliteMetadataStore(config.sqlite_path)


__all__ = [
    "UNSET",
    "MetadataStore",
    "InMemoryMetadataStore",
    "SqliteMetadataStore",
    "create_store",
]
