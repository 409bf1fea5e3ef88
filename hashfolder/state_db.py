from __future__ import annotations

import os
import sqlite3
from pathlib import Path

import aiosqlite

from hashfolder.errors import IndexCorrupt, IndexVersionMismatch, NoHashesAvailable
from hashfolder.models import DuplicateGroup, EntryType, FileRecord, HashRecord


DB_VERSION = "hashfolder-v0"

SCHEMA_SQL = f"""
CREATE TABLE files (
    path TEXT PRIMARY KEY NOT NULL,
    type TEXT NOT NULL,
    mode INTEGER NOT NULL,
    size INTEGER NOT NULL,
    ctime_ns INTEGER NOT NULL,
    mtime_ns INTEGER NOT NULL,
    last_check_time INTEGER NOT NULL
);
CREATE TABLE file_hashes (
    path TEXT NOT NULL,
    algorithm TEXT NOT NULL,
    hash BLOB NOT NULL,
    PRIMARY KEY (path, algorithm),
    FOREIGN KEY (path) REFERENCES files (path) ON DELETE CASCADE
);
CREATE INDEX file_hashes_hash ON file_hashes (hash);
CREATE TABLE version (hashfolder_version TEXT PRIMARY KEY);
INSERT INTO version (hashfolder_version) VALUES ('{DB_VERSION}');
"""

FILE_COLUMNS = "files.path, type, mode, size, ctime_ns, mtime_ns, last_check_time"


def stored_path(path: str) -> str:
    """Map a filesystem path to the text kept in the index.

    Bytes that are not valid UTF-8 (surrogate-escaped by ``os.scandir``) are
    stored as ``\\xNN`` escapes.
    """
    return os.fsencode(path).decode("utf-8", "backslashreplace")


def _file_from_row(row: aiosqlite.Row) -> FileRecord:
    return FileRecord(
        path=str(row["path"]),
        type=EntryType(row["type"]),
        mode=int(row["mode"]),
        size=int(row["size"]),
        ctime_ns=int(row["ctime_ns"]),
        mtime_ns=int(row["mtime_ns"]),
        last_check_time=int(row["last_check_time"]),
    )


def _hash_from_row(row: aiosqlite.Row) -> HashRecord:
    return HashRecord(
        path=str(row["path"]),
        algorithm=str(row["algorithm"]),
        digest=bytes(row["hash"]),
    )


class HashIndex:
    """Files and their digests, stored in SQLite.

    Every statement is committed on its own. The aiosqlite worker thread
    runs them one at a time, so concurrent visits can share one instance.
    """

    def __init__(self, db: aiosqlite.Connection, path: Path, *, readonly: bool = False) -> None:
        self._db = db
        self.path = path
        self.readonly = readonly

    async def __aenter__(self) -> HashIndex:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._db.close()

    async def get_file(self, path: str) -> FileRecord | None:
        cursor = await self._db.execute(
            f"SELECT {FILE_COLUMNS} FROM files WHERE path = ?", (stored_path(path),)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return None if row is None else _file_from_row(row)

    async def get_file_hash(self, path: str, algorithm: str) -> HashRecord | None:
        cursor = await self._db.execute(
            "SELECT path, algorithm, hash FROM file_hashes WHERE path = ? AND algorithm = ?",
            (stored_path(path), algorithm),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return None if row is None else _hash_from_row(row)

    async def get_file_hashes(self, path: str) -> list[HashRecord]:
        cursor = await self._db.execute(
            "SELECT path, algorithm, hash FROM file_hashes WHERE path = ? ORDER BY algorithm",
            (stored_path(path),),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_hash_from_row(row) for row in rows]

    async def upsert_file(self, record: FileRecord) -> None:
        await self._db.execute(
            """
            INSERT INTO files (path, type, mode, size, ctime_ns, mtime_ns, last_check_time)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (path) DO UPDATE SET
                type = excluded.type,
                mode = excluded.mode,
                size = excluded.size,
                ctime_ns = excluded.ctime_ns,
                mtime_ns = excluded.mtime_ns,
                last_check_time = excluded.last_check_time
            """,
            (
                stored_path(record.path),
                record.type.value,
                record.mode,
                record.size,
                record.ctime_ns,
                record.mtime_ns,
                record.last_check_time,
            ),
        )

    async def upsert_file_hash(self, record: HashRecord) -> None:
        await self._db.execute(
            """
            INSERT INTO file_hashes (path, algorithm, hash) VALUES (?, ?, ?)
            ON CONFLICT (path, algorithm) DO UPDATE SET hash = excluded.hash
            """,
            (stored_path(record.path), record.algorithm, record.digest),
        )

    async def delete_file_hashes(self, path: str) -> None:
        await self._db.execute("DELETE FROM file_hashes WHERE path = ?", (stored_path(path),))

    async def remove_old_entries(self, last_check_time: int) -> int:
        """Delete every file not seen by the walk stamped ``last_check_time``."""
        cursor = await self._db.execute(
            "DELETE FROM files WHERE last_check_time <> ?", (last_check_time,)
        )
        deleted = cursor.rowcount
        await cursor.close()
        return deleted

    async def available_algorithms(self) -> list[str]:
        return [record.algorithm for record in await self.get_file_hashes(".")]

    async def require_algorithm(self, algorithm: str | None = None) -> str:
        available = await self.available_algorithms()
        if not available:
            raise NoHashesAvailable(
                f"No hashes in '{self.path}'. Run `hashfolder update` first."
            )
        if algorithm is None:
            return available[0]
        if algorithm not in available:
            raise NoHashesAvailable(
                f"No {algorithm} hashes in '{self.path}'. Available: {', '.join(available)}"
            )
        return algorithm

    async def list_duplicates(self, algorithm: str) -> list[DuplicateGroup]:
        cursor = await self._db.execute(
            """
            SELECT type, hash, size, COUNT(*) AS count
            FROM files INNER JOIN file_hashes ON files.path = file_hashes.path
            WHERE file_hashes.algorithm = ?
            GROUP BY hash, size, type
            HAVING count > 1
            ORDER BY type, count, size, hash
            """,
            (algorithm,),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [
            DuplicateGroup(
                type=EntryType(row["type"]),
                digest=bytes(row["hash"]),
                size=int(row["size"]),
                count=int(row["count"]),
            )
            for row in rows
        ]

    async def list_by_digest(self, digest: bytes, algorithm: str | None = None) -> list[FileRecord]:
        if algorithm is None:
            cursor = await self._db.execute(
                f"""
                SELECT DISTINCT {FILE_COLUMNS}
                FROM files INNER JOIN file_hashes ON files.path = file_hashes.path
                WHERE file_hashes.hash = ?
                ORDER BY files.path
                """,
                (digest,),
            )
        else:
            cursor = await self._db.execute(
                f"""
                SELECT {FILE_COLUMNS}
                FROM files INNER JOIN file_hashes ON files.path = file_hashes.path
                WHERE file_hashes.hash = ? AND file_hashes.algorithm = ?
                ORDER BY files.path
                """,
                (digest, algorithm),
            )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_file_from_row(row) for row in rows]


async def open_index(db_path: Path, *, readonly: bool = False) -> HashIndex:
    """Open an existing index (checking its version) or create a new one."""
    db_path = Path(db_path)
    exists = db_path.exists()
    if readonly and not exists:
        raise FileNotFoundError(f"Index file not found: {db_path}")

    if readonly:
        db = await aiosqlite.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
    else:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(db_path, isolation_level=None)
    db.row_factory = aiosqlite.Row

    try:
        await _prepare(db, db_path, exists=exists, readonly=readonly)
    except BaseException:
        await db.close()
        raise
    return HashIndex(db, db_path, readonly=readonly)


async def _prepare(db: aiosqlite.Connection, db_path: Path, *, exists: bool, readonly: bool) -> None:
    if exists:
        try:
            cursor = await db.execute("SELECT hashfolder_version FROM version")
            row = await cursor.fetchone()
            await cursor.close()
        except sqlite3.DatabaseError as exc:
            raise IndexCorrupt(db_path) from exc
        found = None if row is None else str(row[0])
        if found != DB_VERSION:
            raise IndexVersionMismatch(db_path, DB_VERSION, found)
    else:
        await db.executescript(SCHEMA_SQL)

    if not readonly:
        await db.execute("PRAGMA journal_mode = WAL")
    await db.execute("PRAGMA foreign_keys = ON")
