"""
SQLite-backed manifest of indexed files.

Tracks, per file, the content hash it was published with (for change
detection), the memory ID the store assigned (so a changed file's previous
document can be retired), and the resolvable symbols it defines (so later
runs can resolve references into files they do not re-parse).
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    path          TEXT    UNIQUE NOT NULL,
    hash          TEXT    NOT NULL,
    language      TEXT    NOT NULL DEFAULT '',
    last_modified TEXT    DEFAULT NULL,
    indexed_at    REAL    NOT NULL DEFAULT 0.0,
    memory_id     TEXT    DEFAULT NULL
);

CREATE TABLE IF NOT EXISTS symbols (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id  INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
    node_id  TEXT    NOT NULL,
    label    TEXT    NOT NULL,
    name     TEXT    NOT NULL,
    line     INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_symbols_name ON symbols(label, name);
CREATE INDEX IF NOT EXISTS idx_symbols_file ON symbols(file_id);
CREATE INDEX IF NOT EXISTS idx_files_path   ON files(path);
"""


@dataclass
class FileRecord:
    """Stored metadata for a single published file."""
    path: str
    hash: str
    language: str
    last_modified: Optional[str]
    indexed_at: float
    memory_id: Optional[str] = None


@dataclass
class SymbolRecord:
    """A resolvable definition recorded for a file."""
    node_id: str
    label: str      # "Function" | "Class" | "Variable"
    name: str
    line: int = 0


class Manifest:
    """
    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Will be created if absent.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self._init_db()

    @property
    def db_path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self):
        """Yield a connected SQLite connection with WAL mode for concurrency."""
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_file(self, path: str) -> Optional[FileRecord]:
        """Return the stored record for *path*, or None if never published."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT path, hash, language, last_modified, indexed_at, memory_id "
                "FROM files WHERE path = ?",
                (path,),
            ).fetchone()
        if row is None:
            return None
        return FileRecord(
            path=row["path"],
            hash=row["hash"],
            language=row["language"],
            last_modified=row["last_modified"],
            indexed_at=row["indexed_at"],
            memory_id=row["memory_id"],
        )

    def is_file_changed(self, path: str, current_hash: str) -> bool:
        """
        Return True if *path* is new or its stored hash differs from
        *current_hash*.
        """
        record = self.get_file(path)
        if record is None:
            return True
        return record.hash != current_hash

    def upsert_file(
        self,
        path: str,
        hash_: str,
        language: str,
        last_modified: Optional[str],
        symbols: list[SymbolRecord],
        memory_id: Optional[str] = None,
    ) -> None:
        """
        Insert or update the entry for *path*, replacing its symbols.

        Parameters
        ----------
        path:
            File path relative to the project root (unique key).
        hash_:
            SHA-256 of the published contents.
        language:
            Extractor language.
        last_modified:
            ISO-8601 mtime, if known.
        symbols:
            Resolvable definitions in the file.
        memory_id:
            ID the store assigned to the published document.
        """
        now = time.time()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO files (path, hash, language, last_modified, indexed_at, memory_id)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    hash          = excluded.hash,
                    language      = excluded.language,
                    last_modified = excluded.last_modified,
                    indexed_at    = excluded.indexed_at,
                    memory_id     = excluded.memory_id
                """,
                (path, hash_, language, last_modified, now, memory_id),
            )
            file_id = conn.execute(
                "SELECT id FROM files WHERE path = ?", (path,)
            ).fetchone()["id"]
            conn.execute("DELETE FROM symbols WHERE file_id = ?", (file_id,))
            conn.executemany(
                "INSERT INTO symbols (file_id, node_id, label, name, line) "
                "VALUES (?, ?, ?, ?, ?)",
                [(file_id, s.node_id, s.label, s.name, s.line) for s in symbols],
            )

    def remove_file(self, path: str) -> None:
        """Remove *path* and its symbols; a no-op for unknown paths."""
        with self._connect() as conn:
            conn.execute("DELETE FROM files WHERE path = ?", (path,))

    def get_all_indexed_paths(self) -> list[str]:
        """Return the paths of every file currently in the manifest."""
        with self._connect() as conn:
            rows = conn.execute("SELECT path FROM files ORDER BY path").fetchall()
        return [r["path"] for r in rows]

    def get_symbols_for_file(self, path: str) -> list[SymbolRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT s.node_id, s.label, s.name, s.line "
                "FROM symbols s JOIN files f ON s.file_id = f.id "
                "WHERE f.path = ? ORDER BY s.id",
                (path,),
            ).fetchall()
        return [
            SymbolRecord(node_id=r["node_id"], label=r["label"], name=r["name"], line=r["line"])
            for r in rows
        ]

    def iter_symbols(self) -> Iterator[dict]:
        """
        Yield every recorded symbol as a dict with keys path, node_id,
        label, name and line.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT f.path, s.node_id, s.label, s.name, s.line "
                "FROM symbols s JOIN files f ON s.file_id = f.id "
                "ORDER BY f.path, s.id"
            ).fetchall()
        for r in rows:
            yield {
                "path": r["path"],
                "node_id": r["node_id"],
                "label": r["label"],
                "name": r["name"],
                "line": r["line"],
            }

    def stats(self) -> dict:
        """
        Return aggregate statistics about the manifest.

        Returns
        -------
        dict
            Keys: file_count, symbol_count, languages (dict[str, int]).
        """
        with self._connect() as conn:
            file_count = conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]
            symbol_count = conn.execute("SELECT COUNT(*) FROM symbols").fetchone()[0]
            lang_rows = conn.execute(
                "SELECT language, COUNT(*) AS cnt FROM files GROUP BY language"
            ).fetchall()
        languages = {r["language"]: r["cnt"] for r in lang_rows}
        return {
            "file_count": file_count,
            "symbol_count": symbol_count,
            "languages": languages,
        }

    def clear(self) -> None:
        """Delete all data from the manifest (files + symbols)."""
        with self._connect() as conn:
            conn.execute("DELETE FROM symbols")
            conn.execute("DELETE FROM files")
