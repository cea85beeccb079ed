"""
carelog/storage/blob_store.py
Opaque persistence boundary: get / set a text blob under a key.

The archive store only ever reads and writes one fixed key holding the
whole serialized collection. Implementations:
  MemoryBlobStore   — tests and throwaway runs
  JsonFileBlobStore — one <key>.json file per key, atomic replace
  SqliteBlobStore   — key/value table in a local SQLite database
"""

import logging
import os
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class BlobStore(ABC):

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored blob, or None if the key was never written."""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Replace the blob under key. Must be all-or-nothing."""
        ...


class MemoryBlobStore(BlobStore):

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileBlobStore(BlobStore):

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding='utf-8')

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.directory), suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


class SqliteBlobStore(BlobStore):

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS blob_store (
                    key        TEXT PRIMARY KEY,
                    value      TEXT NOT NULL,
                    updated_at TEXT
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT value FROM blob_store WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO blob_store (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Blob write failed for key {key}: {e}")
            raise
        finally:
            conn.close()


def open_blob_store(backend: str, path: Path) -> BlobStore:
    """Factory used by config-driven entry points."""
    backend = (backend or 'sqlite').lower()
    if backend == 'sqlite':
        return SqliteBlobStore(Path(path))
    if backend == 'json':
        return JsonFileBlobStore(Path(path))
    if backend == 'memory':
        return MemoryBlobStore()
    raise ValueError(f"Unknown store backend: {backend}")
