"""
SCRATCH ELITE — Save Store Abstraction Layer

The engine treats persistence as an opaque key/value blob store:
    load(key) -> dict | None
    save(key, data) -> bool

Three interchangeable backends, selected by SCRATCH_SAVE_BACKEND:
  sqlite  — single `saves` table in a WAL-mode SQLite file (default)
  json    — one pretty-printed JSON file per key under SAVE_DIR
  memory  — process-local dict (tests, dry runs)

Failures never propagate: a failed save is logged and the in-memory state
stays authoritative; a failed load returns None so the caller boots fresh.

Usage:
    from config.database import get_store
    store = get_store()                # backend from StorageConfig
    store.save("scratch-elite-save-v1", state_dict)
    data = store.load("scratch-elite-save-v1")
"""

import copy
import json
import logging
import os
import sqlite3
import time
from pathlib import Path

logger = logging.getLogger("scratch.db")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS saves (
    key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    updated_at REAL NOT NULL
);
"""


class SaveStore:
    """Base interface. Subclasses implement _read/_write and may raise freely."""

    backend = "base"

    def load(self, key: str):
        try:
            raw = self._read(key)
        except (OSError, sqlite3.Error) as e:
            logger.warning(f"[{self.backend}] load({key!r}) failed: {e}")
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"[{self.backend}] save {key!r} is not valid JSON: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"[{self.backend}] save {key!r} is not a JSON object — ignoring")
            return None
        return data

    def save(self, key: str, data: dict) -> bool:
        try:
            raw = json.dumps(data, separators=(",", ":"))
        except (ValueError, TypeError) as e:
            logger.warning(f"[{self.backend}] save({key!r}) not serializable: {e}")
            return False
        try:
            self._write(key, raw)
        except (OSError, sqlite3.Error) as e:
            logger.warning(f"[{self.backend}] save({key!r}) failed: {e}")
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            self._delete(key)
        except (OSError, sqlite3.Error) as e:
            logger.warning(f"[{self.backend}] delete({key!r}) failed: {e}")
            return False
        return True

    def _read(self, key):
        raise NotImplementedError

    def _write(self, key, raw):
        raise NotImplementedError

    def _delete(self, key):
        raise NotImplementedError


# ═══════════════════════════════════════════════════════════════
# SQLite
# ═══════════════════════════════════════════════════════════════

class SqliteSaveStore(SaveStore):
    backend = "sqlite"

    def __init__(self, db_path):
        self.db_path = str(db_path)
        self._initialized = False

    def _open(self):
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        if not self._initialized:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
            self._initialized = True
        return conn

    def _read(self, key):
        conn = self._open()
        try:
            row = conn.execute("SELECT payload FROM saves WHERE key = ?", [key]).fetchone()
        finally:
            conn.close()
        return row[0] if row else None

    def _write(self, key, raw):
        conn = self._open()
        try:
            conn.execute(
                "INSERT INTO saves (key, payload, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET payload = excluded.payload, "
                "updated_at = excluded.updated_at",
                [key, raw, time.time()],
            )
            conn.commit()
        finally:
            conn.close()

    def _delete(self, key):
        conn = self._open()
        try:
            conn.execute("DELETE FROM saves WHERE key = ?", [key])
            conn.commit()
        finally:
            conn.close()

    def keys(self) -> list:
        try:
            conn = self._open()
            try:
                return [r[0] for r in conn.execute("SELECT key FROM saves ORDER BY key")]
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning(f"[sqlite] keys() failed: {e}")
            return []


# ═══════════════════════════════════════════════════════════════
# JSON files
# ═══════════════════════════════════════════════════════════════

class JsonFileSaveStore(SaveStore):
    backend = "json"

    def __init__(self, save_dir):
        self.save_dir = Path(save_dir)

    def _path(self, key):
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.save_dir / f"{safe}.json"

    def _read(self, key):
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write(self, key, raw):
        self.save_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(json.loads(raw), indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def _delete(self, key):
        path = self._path(key)
        if path.exists():
            path.unlink()


# ═══════════════════════════════════════════════════════════════
# Memory
# ═══════════════════════════════════════════════════════════════

class MemorySaveStore(SaveStore):
    backend = "memory"

    def __init__(self):
        self._blobs = {}
        self.writes = 0

    def _read(self, key):
        return self._blobs.get(key)

    def _write(self, key, raw):
        self._blobs[key] = raw
        self.writes += 1

    def _delete(self, key):
        self._blobs.pop(key, None)

    def snapshot(self, key):
        """Decoded copy of what is stored under key (test helper)."""
        data = self.load(key)
        return copy.deepcopy(data) if data is not None else None


def get_store(backend: str = None) -> SaveStore:
    """Build the configured store. Unknown backends fall back to memory."""
    from config.settings import StorageConfig

    backend = (backend or StorageConfig.BACKEND).lower()
    if backend == "sqlite":
        return SqliteSaveStore(StorageConfig.DB_PATH)
    if backend == "json":
        return JsonFileSaveStore(StorageConfig.SAVE_DIR)
    if backend != "memory":
        logger.warning(f"Unknown save backend {backend!r} — using in-memory store")
    return MemorySaveStore()
