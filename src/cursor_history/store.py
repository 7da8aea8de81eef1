"""Read-only access to Cursor's state.vscdb key-value stores.

Every state.vscdb is a SQLite file with two (key, value) tables:
``ItemTable`` holds per-workspace editor state, including the legacy chat
records, and ``cursorDiskKV`` in the global store holds the flat
``kind:id[:subId]`` records. Nothing here ever writes.
"""

import json
import logging
import sqlite3
import urllib.parse
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from .core import WorkspaceEntry
from .errors import RootUnavailable, StorageUnavailable

logger = logging.getLogger(__name__)

DB_FILENAME = "state.vscdb"
ITEM_TABLE = "ItemTable"
DISK_KV_TABLE = "cursorDiskKV"

# SQLite's default SQLITE_MAX_VARIABLE_NUMBER is 999 on older builds.
_KEY_BATCH = 500


class KeyValueStore(ABC):
    """Accessor over one (key, value) table."""

    @abstractmethod
    def scan_by_prefix(self, prefix: str) -> list[tuple[str, str]]:
        """Return every (key, value) whose key starts with ``prefix``, ordered by key."""
        ...

    @abstractmethod
    def get_by_keys(self, keys: Iterable[str]) -> list[tuple[str, str]]:
        """Return the (key, value) pairs for the keys that exist."""
        ...

    def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None."""
        rows = self.get_by_keys([key])
        return rows[0][1] if rows else None


class SqliteStore(KeyValueStore):
    """A read-only handle on one table of a state.vscdb file.

    Use as a context manager so the connection is closed on every exit path::

        with SqliteStore(path, DISK_KV_TABLE) as store:
            rows = store.scan_by_prefix("bubbleId:")
    """

    def __init__(self, db_path: Path, table: str = DISK_KV_TABLE):
        if table not in (ITEM_TABLE, DISK_KV_TABLE):
            raise ValueError(f"Unknown table: {table}")
        self.db_path = Path(db_path)
        self.table = table
        self._conn: sqlite3.Connection | None = None

    def open(self) -> "SqliteStore":
        if not self.db_path.is_file():
            raise StorageUnavailable(self.db_path, "file not found")
        try:
            self._conn = sqlite3.connect(self.db_path.resolve().as_uri() + "?mode=ro", uri=True)
            # Fails fast on a corrupt file or a store without this table.
            self._conn.execute(f"SELECT 1 FROM {self.table} LIMIT 1").fetchall()
        except sqlite3.Error as e:
            self.close()
            raise StorageUnavailable(self.db_path, str(e)) from e
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "SqliteStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _execute(self, sql: str, params: tuple) -> list[tuple]:
        if self._conn is None:
            raise StorageUnavailable(self.db_path, "store is not open")
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageUnavailable(self.db_path, str(e)) from e

    def scan_by_prefix(self, prefix: str) -> list[tuple[str, str]]:
        pattern = _escape_like(prefix) + "%"
        rows = self._execute(
            f"SELECT key, value FROM {self.table} WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (pattern,),
        )
        # LIKE is case-insensitive for ASCII; record kinds are not.
        return [
            (key, _as_text(value))
            for key, value in rows
            if isinstance(key, str) and key.startswith(prefix) and value is not None
        ]

    def get_by_keys(self, keys: Iterable[str]) -> list[tuple[str, str]]:
        wanted = list(dict.fromkeys(keys))
        found: dict[str, str] = {}
        for start in range(0, len(wanted), _KEY_BATCH):
            batch = wanted[start:start + _KEY_BATCH]
            placeholders = ",".join("?" for _ in batch)
            rows = self._execute(
                f"SELECT key, value FROM {self.table} WHERE key IN ({placeholders})",
                tuple(batch),
            )
            for key, value in rows:
                if value is not None:
                    found[key] = _as_text(value)
        return [(key, found[key]) for key in wanted if key in found]


def discover_workspaces(root: Path) -> list[WorkspaceEntry]:
    """Return every workspace directory under ``root`` that holds a store.

    Raises RootUnavailable if ``root`` itself is missing.
    """
    root = Path(root)
    if not root.is_dir():
        raise RootUnavailable(root)

    entries = []
    for ws_dir in sorted(root.iterdir(), key=lambda p: p.name):
        if not ws_dir.is_dir():
            continue
        db_path = ws_dir / DB_FILENAME
        if not db_path.is_file():
            logger.debug("Skipping %s: no %s found", ws_dir.name, DB_FILENAME)
            continue
        try:
            mtime = db_path.stat().st_mtime
        except OSError as e:
            logger.warning("Cannot stat %s: %s", db_path, e)
            continue
        entries.append(WorkspaceEntry(
            id=ws_dir.name,
            db_path=db_path,
            last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
            folder=read_workspace_folder(ws_dir),
        ))
    return entries


def read_workspace_folder(ws_dir: Path) -> str | None:
    """Extract the project folder from workspace.json, if present."""
    ws_json = ws_dir / "workspace.json"
    if not ws_json.exists():
        return None
    try:
        data = json.loads(ws_json.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read workspace.json in %s: %s", ws_dir, e)
        return None
    if not isinstance(data, dict):
        return None
    folder_uri = data.get("folder")
    if not isinstance(folder_uri, str) or not folder_uri:
        return None
    if folder_uri.startswith("file://"):
        return urllib.parse.unquote(folder_uri[7:])
    return folder_uri


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_text(value) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)
