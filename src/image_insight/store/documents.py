from __future__ import annotations

import copy
import itertools
import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..logging import get_logger


LOG = get_logger("document-store")

Document = Dict[str, Any]
SnapshotCallback = Callable[[Optional[Document]], None]
ErrorCallback = Callable[[Exception], None]


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
  path        TEXT PRIMARY KEY,
  data        TEXT NOT NULL,           -- JSON object
  version     INTEGER NOT NULL DEFAULT 1,
  updated_at  TEXT DEFAULT (datetime('now'))
);
"""


@dataclass
class _Listener:
    listener_id: int
    path: str
    callback: SnapshotCallback
    on_error: Optional[ErrorCallback]
    last_version: int = 0


class DocumentStore:
    """Whole-document key/value store with live subscriptions.

    Subclasses implement ``_read`` (returns ``(data, version)``) and
    ``_write``; listener bookkeeping and notification live here. A
    subscription emits the current snapshot right away, then once per change.
    A missing document is emitted as ``None``.
    """

    def __init__(self) -> None:
        self._listeners: Dict[int, _Listener] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # ---------- storage primitives ----------
    def _read(self, path: str) -> tuple[Optional[Document], int]:
        raise NotImplementedError

    def _write(self, path: str, data: Document) -> int:
        raise NotImplementedError

    # ---------- public API ----------
    def get(self, path: str) -> Optional[Document]:
        data, _ = self._read(path)
        return data

    def set(self, path: str, data: Document) -> None:
        """Overwrite the whole document at ``path`` and notify subscribers."""
        if not isinstance(data, dict):
            raise TypeError("document data must be a dict")
        snapshot = json.loads(json.dumps(data))
        with self._lock:
            version = self._write(path, snapshot)
            LOG.debug(f"Wrote document {path} (version {version})")
            targets = [l for l in self._listeners.values() if l.path == path]
        for listener in targets:
            self._emit(listener, copy.deepcopy(snapshot), version)

    def subscribe(
        self,
        path: str,
        callback: SnapshotCallback,
        *,
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        with self._lock:
            listener = _Listener(next(self._ids), path, callback, on_error)
            self._listeners[listener.listener_id] = listener
        LOG.debug(f"Listener {listener.listener_id} subscribed to {path}")
        try:
            data, version = self._read(path)
        except Exception as exc:
            self._fail(listener, exc)
        else:
            self._emit(listener, data, version)

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(listener.listener_id, None)
            LOG.debug(f"Listener {listener.listener_id} unsubscribed from {path}")

        return unsubscribe

    def poll(self) -> int:
        """Emit snapshots for documents changed outside this process.

        Returns the number of listeners notified.
        """
        with self._lock:
            listeners = list(self._listeners.values())
        notified = 0
        for listener in listeners:
            try:
                data, version = self._read(listener.path)
            except Exception as exc:
                self._fail(listener, exc)
                continue
            if version > listener.last_version:
                self._emit(listener, data, version)
                notified += 1
        return notified

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    # ---------- notification ----------
    def _emit(self, listener: _Listener, data: Optional[Document], version: int) -> None:
        with self._lock:
            if version and version <= listener.last_version:
                return
            listener.last_version = version
        try:
            listener.callback(data)
        except Exception as exc:
            self._fail(listener, exc)

    def _fail(self, listener: _Listener, exc: Exception) -> None:
        LOG.error(f"Error delivering snapshot for {listener.path}: {exc}")
        if listener.on_error is not None:
            listener.on_error(exc)


class MemoryDocumentStore(DocumentStore):
    """Process-local store; documents vanish with the process."""

    def __init__(self) -> None:
        super().__init__()
        self._docs: Dict[str, tuple[Document, int]] = {}

    def _read(self, path: str) -> tuple[Optional[Document], int]:
        with self._lock:
            entry = self._docs.get(path)
        if entry is None:
            return None, 0
        data, version = entry
        return copy.deepcopy(data), version

    def _write(self, path: str, data: Document) -> int:
        with self._lock:
            _, version = self._docs.get(path, (None, 0))
            version += 1
            self._docs[path] = (copy.deepcopy(data), version)
            return version


class SqliteDocumentStore(DocumentStore):
    """SQLite-backed store shared between processes via ``poll``."""

    def __init__(self, db_path: str) -> None:
        super().__init__()
        folder = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(folder, exist_ok=True)
        self.db_path = os.path.abspath(db_path)
        LOG.info(f"Document store path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.DatabaseError as exc:
                LOG.debug(f"WAL mode unavailable: {exc}")
            conn.executescript(SCHEMA_SQL)
            conn.commit()

    def _read(self, path: str) -> tuple[Optional[Document], int]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT data, version FROM documents WHERE path = ?", (path,)
            ).fetchone()
        if row is None:
            return None, 0
        return json.loads(row["data"]), int(row["version"])

    def _write(self, path: str, data: Document) -> int:
        payload = json.dumps(data, ensure_ascii=False)
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO documents(path, data, version) VALUES (?, ?, 1)
                ON CONFLICT(path) DO UPDATE SET
                  data = excluded.data,
                  version = documents.version + 1,
                  updated_at = datetime('now')
                """,
                (path, payload),
            )
            row = conn.execute("SELECT version FROM documents WHERE path = ?", (path,)).fetchone()
            conn.commit()
        return int(row["version"])

    def paths(self) -> List[str]:
        with self.connect() as conn:
            return [r["path"] for r in conn.execute("SELECT path FROM documents ORDER BY path")]


class DocumentWatcher:
    """Daemon thread that calls ``store.poll()`` every ``poll_interval_sec``."""

    def __init__(self, store: DocumentStore, *, poll_interval_sec: float = 2.0) -> None:
        self.store = store
        self.poll_interval_sec = float(poll_interval_sec)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="document-watcher", daemon=True)
        self._thread.start()
        LOG.info(f"Watching document store every {self.poll_interval_sec:.1f}s")

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval_sec + 1)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.poll_interval_sec):
            try:
                self.store.poll()
            except sqlite3.Error as exc:
                LOG.warning(f"Document poll failed: {exc}")
