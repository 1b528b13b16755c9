import pytest
import sqlite3
from video_dedupe.database.schema import init_schema
from video_dedupe.database.ops import DBOperations
from video_dedupe.database.groups import GroupStore
from video_dedupe.models import MediaFile

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    # Frame hashing reads the cache from worker threads
    c = sqlite3.connect(":memory:", check_same_thread=False)
    c.execute("PRAGMA foreign_keys=ON;")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def db_ops(conn):
    """Returns a DBOperations instance attached to the in-memory DB."""
    return DBOperations(conn)

@pytest.fixture
def group_store(conn):
    return GroupStore(conn)

@pytest.fixture
def make_media():
    """Factory for MediaFile records with sensible defaults."""
    def _make(path, duration=10.0, width=1920, height=1080, size=1000, file_id=None, **kwargs):
        return MediaFile(
            id=file_id,
            path=str(path),
            size_bytes=size,
            modified_at="2024-01-01T00:00:00+00:00",
            scanned_at="2024-01-02T00:00:00+00:00",
            duration_sec=duration,
            width=width,
            height=height,
            **kwargs,
        )
    return _make
