"""
State Store

Single SQLite database (WAL mode) holding:
- albums: every classified album and its current status
- tracks: the files that belong to each album
- move_history: one audit record per relocation attempt or outcome
- move_events: append-only log of every move status transition
- enrichment_cache: cached enrichment lookups, including misses

Writers use BEGIN IMMEDIATE transactions; lock contention is retried with
exponential backoff and reported as StoreContention once the attempts run out.
"""

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from .constants import (
    DEFAULT_STATE_DB,
    STORE_BASE_DELAY,
    STORE_BUSY_TIMEOUT,
    STORE_MAX_ATTEMPTS,
    STORE_MAX_DELAY,
)
from .exceptions import DuplicateConflict, OrganizerError, StoreContention
from .models import (
    ACTIVE_MOVE_STATUSES,
    ALLOWED_MOVE_TRANSITIONS,
    Album,
    AlbumStatus,
    MoveRecord,
    MoveStatus,
    TrackFile,
)
from ..utils.decorators import retry

T = TypeVar('T')

_LOCK_MESSAGES = ('database is locked', 'database table is locked', 'database is busy')

# Albums that block other albums from taking the same identity
_CLAIMED_STATUSES = (AlbumStatus.CLASSIFIED.value, AlbumStatus.MOVED.value)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS albums (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_path TEXT NOT NULL,
        canonical_path TEXT,
        artist TEXT NOT NULL,
        artist_key TEXT NOT NULL,
        title TEXT NOT NULL,
        title_key TEXT NOT NULL,
        year INTEGER,
        label TEXT,
        catalog_number TEXT,
        quality TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        status TEXT NOT NULL,
        confidence INTEGER,
        dry_run INTEGER NOT NULL DEFAULT 0,
        run_id TEXT,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_albums_identity ON albums(artist_key, title_key)",
    "CREATE INDEX IF NOT EXISTS idx_albums_hash ON albums(content_hash)",
    "CREATE INDEX IF NOT EXISTS idx_albums_source ON albums(source_path)",
    "CREATE INDEX IF NOT EXISTS idx_albums_status ON albums(status)",
    """
    CREATE TABLE IF NOT EXISTS tracks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        album_id INTEGER NOT NULL REFERENCES albums(id) ON DELETE CASCADE,
        relative_path TEXT NOT NULL,
        format TEXT NOT NULL,
        size INTEGER NOT NULL,
        checksum TEXT NOT NULL,
        is_audio INTEGER NOT NULL DEFAULT 1,
        UNIQUE(album_id, relative_path)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS move_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        album_id INTEGER REFERENCES albums(id),
        source_path TEXT NOT NULL,
        destination_path TEXT,
        status TEXT NOT NULL,
        checksum_summary TEXT,
        detail TEXT,
        outcome TEXT,
        reverses_move_id INTEGER REFERENCES move_history(id),
        dry_run INTEGER NOT NULL DEFAULT 0,
        run_id TEXT,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    # One live or committed move per source path; undo records are exempt
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_move_source_live
    ON move_history(source_path)
    WHERE dry_run = 0 AND reverses_move_id IS NULL AND status IN ('Pending', 'Verifying', 'Committed')
    """,
    "CREATE INDEX IF NOT EXISTS idx_move_status ON move_history(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_move_destination ON move_history(destination_path)",
    """
    CREATE TABLE IF NOT EXISTS move_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        move_id INTEGER NOT NULL REFERENCES move_history(id),
        status TEXT NOT NULL,
        detail TEXT,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS enrichment_cache (
        cache_key TEXT PRIMARY KEY,
        matched INTEGER NOT NULL,
        label TEXT,
        catalog_number TEXT,
        confidence REAL,
        release_id TEXT,
        year INTEGER,
        fetched_at REAL NOT NULL
    )
    """,
    # Last outcome per album directory, for incremental runs
    """
    CREATE TABLE IF NOT EXISTS processed_directories (
        directory_path TEXT PRIMARY KEY,
        last_modified REAL NOT NULL,
        directory_hash TEXT NOT NULL,
        status TEXT NOT NULL,
        run_id TEXT,
        processed_at REAL NOT NULL
    )
    """,
]


class StateTransitionError(OrganizerError):
    """Move status change not allowed by the state machine"""
    pass


def _is_lock_error(error: Exception) -> bool:
    message = str(error).lower()
    return any(text in message for text in _LOCK_MESSAGES)


def _row_to_move(row: sqlite3.Row) -> MoveRecord:
    return MoveRecord(
        id=row['id'],
        album_id=row['album_id'],
        source_path=row['source_path'],
        destination_path=row['destination_path'],
        status=MoveStatus(row['status']),
        checksum_summary=row['checksum_summary'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
        detail=row['detail'],
        dry_run=bool(row['dry_run']),
        run_id=row['run_id'],
        reverses_move_id=row['reverses_move_id'],
        outcome=row['outcome'],
    )


class StoreTransaction:
    """Operations available inside one store transaction"""

    def __init__(self, conn: sqlite3.Connection, run_id: Optional[str] = None):
        self.conn = conn
        self.run_id = run_id

    # ===== ALBUMS =====

    def upsert_album(self, album: Album, dry_run: bool = False) -> int:
        """Insert the album or refresh its latest unmoved row for the same source"""
        now = time.time()
        decision = album.decision
        values = (
            album.canonical_path, decision.artist, album.artist_key, decision.title,
            album.title_key, decision.year, decision.label, decision.catalog_number,
            decision.quality.value, album.content_hash, album.status.value,
            decision.confidence, int(dry_run), self.run_id,
        )

        row = self.conn.execute("""
            SELECT id FROM albums
            WHERE source_path = ? AND status != ? AND dry_run = ?
            ORDER BY id DESC LIMIT 1
        """, (album.source_path, AlbumStatus.MOVED.value, int(dry_run))).fetchone()

        if row:
            album_id = row['id']
            self.conn.execute("""
                UPDATE albums SET
                    canonical_path = ?, artist = ?, artist_key = ?, title = ?, title_key = ?,
                    year = ?, label = ?, catalog_number = ?, quality = ?, content_hash = ?,
                    status = ?, confidence = ?, dry_run = ?, run_id = ?, updated_at = ?
                WHERE id = ?
            """, values + (now, album_id))
        else:
            cursor = self.conn.execute("""
                INSERT INTO albums
                (source_path, canonical_path, artist, artist_key, title, title_key, year,
                 label, catalog_number, quality, content_hash, status, confidence,
                 dry_run, run_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (album.source_path,) + values + (now, now))
            album_id = cursor.lastrowid

        self.replace_tracks(album_id, album.tracks)
        album.id = album_id
        return album_id

    def replace_tracks(self, album_id: int, tracks: List[TrackFile]) -> None:
        self.conn.execute("DELETE FROM tracks WHERE album_id = ?", (album_id,))
        self.conn.executemany("""
            INSERT INTO tracks (album_id, relative_path, format, size, checksum, is_audio)
            VALUES (?, ?, ?, ?, ?, ?)
        """, [
            (album_id, t.relative_path, t.format, t.size, t.checksum, int(t.is_audio))
            for t in tracks
        ])

    def set_album_status(self, album_id: int, status: AlbumStatus,
                         canonical_path: Optional[str] = None) -> None:
        if canonical_path is not None:
            self.conn.execute(
                "UPDATE albums SET status = ?, canonical_path = ?, updated_at = ? WHERE id = ?",
                (status.value, canonical_path, time.time(), album_id)
            )
        else:
            self.conn.execute(
                "UPDATE albums SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, time.time(), album_id)
            )

    def find_duplicate_candidates(self, album: Album) -> List[sqlite3.Row]:
        """Claimed or moved albums sharing the content hash or (artist, title)"""
        return self.conn.execute(f"""
            SELECT * FROM albums
            WHERE id != ?
              AND (content_hash = ? OR (artist_key = ? AND title_key = ?))
              AND status IN ({','.join('?' * len(_CLAIMED_STATUSES))})
              AND (dry_run = 0 OR run_id = ?)
            ORDER BY id
        """, (album.id or -1, album.content_hash, album.artist_key, album.title_key,
              *_CLAIMED_STATUSES, self.run_id)).fetchall()

    def artist_folder(self, artist_key: str) -> Optional[str]:
        """Spelling used by the first claimed album of this artist"""
        row = self.conn.execute(f"""
            SELECT artist FROM albums
            WHERE artist_key = ?
              AND status IN ({','.join('?' * len(_CLAIMED_STATUSES))})
              AND (dry_run = 0 OR run_id = ?)
            ORDER BY id LIMIT 1
        """, (artist_key, *_CLAIMED_STATUSES, self.run_id)).fetchone()
        return row['artist'] if row else None

    def destination_claimed(self, destination_path: str) -> bool:
        row = self.conn.execute("""
            SELECT 1 FROM move_history
            WHERE destination_path = ?
              AND status IN ('Pending', 'Verifying', 'Committed')
              AND (dry_run = 0 OR run_id = ?)
            LIMIT 1
        """, (destination_path, self.run_id)).fetchone()
        return row is not None

    def get_tracks(self, album_id: int) -> List[TrackFile]:
        rows = self.conn.execute("""
            SELECT relative_path, format, size, checksum, is_audio
            FROM tracks WHERE album_id = ? ORDER BY relative_path
        """, (album_id,)).fetchall()
        return [
            TrackFile(relative_path=r['relative_path'], format=r['format'], size=r['size'],
                      checksum=r['checksum'], is_audio=bool(r['is_audio']))
            for r in rows
        ]

    # ===== MOVES =====

    def open_move(self, album_id: int, source_path: str, destination_path: str,
                  dry_run: bool = False, detail: Optional[str] = None,
                  reverses_move_id: Optional[int] = None) -> int:
        """Create a Pending move; refuses a second live move for the same source"""
        now = time.time()
        try:
            cursor = self.conn.execute("""
                INSERT INTO move_history
                (album_id, source_path, destination_path, status, detail, reverses_move_id,
                 dry_run, run_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (album_id, source_path, destination_path, MoveStatus.PENDING.value, detail,
                  reverses_move_id, int(dry_run), self.run_id, now, now))
        except sqlite3.IntegrityError as e:
            raise DuplicateConflict(source_path, "SourceAlreadyProcessed") from e

        move_id = cursor.lastrowid
        self._append_event(move_id, MoveStatus.PENDING, detail, now)
        return move_id

    def record_outcome(self, album_id: Optional[int], source_path: str,
                       destination_path: Optional[str], detail: str,
                       outcome: AlbumStatus = AlbumStatus.FAILED,
                       dry_run: bool = False) -> int:
        """
        Audit entry for an album that was not relocated.

        The row is a Failed move; outcome tells review and duplicate
        decisions apart from real failures.
        """
        now = time.time()
        cursor = self.conn.execute("""
            INSERT INTO move_history
            (album_id, source_path, destination_path, status, detail, outcome, dry_run, run_id,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (album_id, source_path, destination_path, MoveStatus.FAILED.value, detail,
              outcome.value, int(dry_run), self.run_id, now, now))
        move_id = cursor.lastrowid
        self._append_event(move_id, MoveStatus.FAILED, detail, now)
        return move_id

    def transition_move(self, move_id: int, status: MoveStatus,
                        checksum_summary: Optional[str] = None,
                        detail: Optional[str] = None) -> MoveRecord:
        """Advance a move along the state machine"""
        move = self.get_move(move_id)
        if move is None:
            raise StateTransitionError(f"Move #{move_id} does not exist")
        if status not in ALLOWED_MOVE_TRANSITIONS[move.status]:
            raise StateTransitionError(
                f"Move #{move_id} cannot go from {move.status.value} to {status.value}"
            )

        now = time.time()
        self.conn.execute("""
            UPDATE move_history SET
                status = ?,
                checksum_summary = COALESCE(?, checksum_summary),
                detail = COALESCE(?, detail),
                updated_at = ?
            WHERE id = ?
        """, (status.value, checksum_summary, detail, now, move_id))
        self._append_event(move_id, status, detail, now)

        move.status = status
        move.updated_at = now
        if checksum_summary is not None:
            move.checksum_summary = checksum_summary
        if detail is not None:
            move.detail = detail
        return move

    def get_move(self, move_id: int) -> Optional[MoveRecord]:
        row = self.conn.execute("SELECT * FROM move_history WHERE id = ?", (move_id,)).fetchone()
        return _row_to_move(row) if row else None

    def _append_event(self, move_id: int, status: MoveStatus, detail: Optional[str],
                      created_at: float) -> None:
        self.conn.execute("""
            INSERT INTO move_events (move_id, status, detail, created_at)
            VALUES (?, ?, ?, ?)
        """, (move_id, status.value, detail, created_at))

    # ===== ENRICHMENT CACHE =====

    def get_cached_lookup(self, cache_key: str) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM enrichment_cache WHERE cache_key = ?", (cache_key,)
        ).fetchone()

    def put_cached_lookup(self, cache_key: str, matched: bool, label: Optional[str] = None,
                          catalog_number: Optional[str] = None, confidence: float = 0.0,
                          release_id: Optional[str] = None, year: Optional[int] = None) -> None:
        self.conn.execute("""
            INSERT OR REPLACE INTO enrichment_cache
            (cache_key, matched, label, catalog_number, confidence, release_id, year, fetched_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (cache_key, int(matched), label, catalog_number, confidence, release_id, year,
              time.time()))

    # ===== PROCESSED DIRECTORIES =====

    def record_directory(self, directory_path: str, last_modified: float, directory_hash: str,
                         status: AlbumStatus) -> None:
        """Remember the outcome and fingerprint of a directory left in the source tree"""
        self.conn.execute("""
            INSERT OR REPLACE INTO processed_directories
            (directory_path, last_modified, directory_hash, status, run_id, processed_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (directory_path, last_modified, directory_hash, status.value, self.run_id,
              time.time()))

    def forget_directory(self, directory_path: str) -> None:
        self.conn.execute(
            "DELETE FROM processed_directories WHERE directory_path = ?", (directory_path,)
        )

    def get_processed_directory(self, directory_path: str) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM processed_directories WHERE directory_path = ?", (directory_path,)
        ).fetchone()


class StateStore:
    """
    Durable store shared by all workers.

    Every worker opens its own connection per transaction, so the store also
    arbitrates between separate processes using the same database file.
    """

    def __init__(self, db_path: str = DEFAULT_STATE_DB,
                 max_attempts: int = STORE_MAX_ATTEMPTS,
                 base_delay: float = STORE_BASE_DELAY,
                 max_delay: float = STORE_MAX_DELAY,
                 busy_timeout: float = STORE_BUSY_TIMEOUT):
        self.db_path = Path(db_path)
        self.logger = logging.getLogger(__name__)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.busy_timeout = busy_timeout

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        self.logger.info(f"StateStore initialized: {self.db_path}")

    def _init_database(self) -> None:
        """Create schema; failures here are fatal for the run"""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("BEGIN IMMEDIATE")
            try:
                for statement in SCHEMA:
                    conn.execute(statement)
                self._migrate(conn)
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Bring databases created by older releases up to the current schema"""
        columns = {row['name'] for row in conn.execute("PRAGMA table_info(move_history)")}
        if 'outcome' not in columns:
            self.logger.info("Adding outcome column to move_history")
            conn.execute("ALTER TABLE move_history ADD COLUMN outcome TEXT")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get database connection in autocommit mode; transactions are explicit"""
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout,
                               isolation_level=None)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, run_id: Optional[str] = None) -> Iterator[StoreTransaction]:
        """Single write transaction (BEGIN IMMEDIATE), no retry"""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield StoreTransaction(conn, run_id)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def run_in_transaction(self, operation: Callable[[StoreTransaction], T],
                           run_id: Optional[str] = None) -> T:
        """
        Run operation inside a write transaction, retrying on lock contention.

        The whole operation is re-run on each attempt, so it must only touch
        the store. Raises StoreContention once all attempts are used.
        """
        @retry(
            max_attempts=self.max_attempts,
            delay=self.base_delay,
            backoff=2.0,
            max_delay=self.max_delay,
            exceptions=(sqlite3.OperationalError,),
            should_retry=_is_lock_error,
            on_exhausted=lambda error, attempts: StoreContention(
                f"State store {self.db_path} busy after {attempts} attempts: {error}"
            ),
        )
        def attempt() -> T:
            with self.transaction(run_id) as txn:
                return operation(txn)

        return attempt()

    @contextmanager
    def reader(self) -> Iterator[StoreTransaction]:
        """Read-only access; WAL readers never wait for writers"""
        with self._get_connection() as conn:
            yield StoreTransaction(conn)

    # ===== QUERIES =====

    def get_move(self, move_id: int) -> Optional[MoveRecord]:
        with self.reader() as txn:
            return txn.get_move(move_id)

    def get_album(self, album_id: int) -> Optional[Dict[str, Any]]:
        with self.reader() as txn:
            row = txn.conn.execute("SELECT * FROM albums WHERE id = ?", (album_id,)).fetchone()
            return dict(row) if row else None

    def get_tracks(self, album_id: int) -> List[TrackFile]:
        with self.reader() as txn:
            return txn.get_tracks(album_id)

    def active_moves(self) -> List[MoveRecord]:
        """Non dry-run moves left in Pending or Verifying"""
        with self.reader() as txn:
            rows = txn.conn.execute(f"""
                SELECT * FROM move_history
                WHERE dry_run = 0 AND status IN ({','.join('?' * len(ACTIVE_MOVE_STATUSES))})
                ORDER BY id
            """, tuple(status.value for status in ACTIVE_MOVE_STATUSES)).fetchall()
            return [_row_to_move(row) for row in rows]

    def move_history(self, limit: int = 50, run_id: Optional[str] = None,
                     moves_only: bool = False) -> List[MoveRecord]:
        """Newest audit rows first; moves_only drops review, duplicate and failure outcomes"""
        conditions, params = [], []
        if run_id:
            conditions.append("run_id = ?")
            params.append(run_id)
        if moves_only:
            conditions.append("outcome IS NULL")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        with self.reader() as txn:
            rows = txn.conn.execute(
                f"SELECT * FROM move_history {where} ORDER BY id DESC LIMIT ?", (*params, limit)
            ).fetchall()
            return [_row_to_move(row) for row in rows]

    def move_events(self, move_id: int) -> List[Dict[str, Any]]:
        with self.reader() as txn:
            rows = txn.conn.execute("""
                SELECT status, detail, created_at FROM move_events
                WHERE move_id = ? ORDER BY id
            """, (move_id,)).fetchall()
            return [dict(row) for row in rows]

    def processed_directory(self, directory_path: str) -> Optional[Dict[str, Any]]:
        """Last recorded outcome of a directory, or None if it was never processed"""
        with self.reader() as txn:
            row = txn.get_processed_directory(directory_path)
            return dict(row) if row else None

    def albums_by_status(self, *statuses: AlbumStatus) -> List[Dict[str, Any]]:
        with self.reader() as txn:
            rows = txn.conn.execute(f"""
                SELECT * FROM albums
                WHERE dry_run = 0 AND status IN ({','.join('?' * len(statuses))})
                ORDER BY source_path, id
            """, tuple(status.value for status in statuses)).fetchall()
            return [dict(row) for row in rows]

    def get_statistics(self) -> Dict[str, Any]:
        """Counts of albums and moves by status"""
        with self.reader() as txn:
            albums = txn.conn.execute("""
                SELECT status, COUNT(*) AS count FROM albums WHERE dry_run = 0 GROUP BY status
            """).fetchall()
            moves = txn.conn.execute("""
                SELECT status, COUNT(*) AS count FROM move_history WHERE dry_run = 0 GROUP BY status
            """).fetchall()
            return {
                'albums': {row['status']: row['count'] for row in albums},
                'moves': {row['status']: row['count'] for row in moves},
            }


def checksum_summary(tracks: List[TrackFile], digest: str) -> str:
    """Compact JSON summary stored with a move"""
    return json.dumps({
        'algorithm': 'sha256',
        'files': len(tracks),
        'bytes': sum(track.size for track in tracks),
        'digest': digest,
    }, sort_keys=True)
