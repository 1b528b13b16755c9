import sqlite3
import logging
from datetime import datetime, UTC
from typing import Optional, List

from .. import config
from ..exceptions import DatabaseError
from ..models import MediaFile, ScanRoot, Decision, normalize_path, path_key

_MEDIA_COLUMNS = """
    id, path, size_bytes, modified_at, scanned_at,
    duration_sec, width, height, fps, video_codec, container
"""

def to_signed64(value: int) -> int:
    """SQLite INTEGER is signed; fold an unsigned 64-bit hash into range."""
    return value - (1 << 64) if value >= (1 << 63) else value

def from_signed64(value: int) -> int:
    return value + (1 << 64) if value < 0 else value

def _row_to_media_file(row) -> MediaFile:
    fid, path, size_bytes, modified_at, scanned_at, dur, w, h, fps, codec, container = row
    return MediaFile(
        id=fid, path=path, size_bytes=size_bytes,
        modified_at=modified_at, scanned_at=scanned_at,
        duration_sec=dur, width=w, height=h, fps=fps,
        video_codec=codec, container=container,
    )

class DBOperations:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # --- Scan Roots ---

    def add_scan_root(self, path, recurse: bool = True, exclude_tokens: Optional[str] = None) -> int:
        """
        Registers a directory to index. Adding an already known root (compared
        case-insensitively) returns the existing id unchanged.
        """
        stored = normalize_path(path)
        key = path_key(path)
        now_iso = datetime.now(UTC).isoformat()
        with self.conn:
            self.conn.execute("""
                INSERT OR IGNORE INTO scan_roots (path, path_key, enabled, recurse, exclude_tokens, added_at)
                VALUES (?, ?, 1, ?, ?, ?)
            """, (stored, key, int(recurse), exclude_tokens or None, now_iso))
        cur = self.conn.cursor()
        cur.execute("SELECT id FROM scan_roots WHERE path_key = ?", (key,))
        return cur.fetchone()[0]

    def list_scan_roots(self) -> List[ScanRoot]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT id, path, enabled, recurse, exclude_tokens, added_at
            FROM scan_roots ORDER BY id
        """)
        return [
            ScanRoot(id=r[0], path=r[1], enabled=bool(r[2]), recurse=bool(r[3]),
                     exclude_tokens=r[4], added_at=r[5])
            for r in cur.fetchall()
        ]

    def list_enabled_scan_roots(self) -> List[ScanRoot]:
        return [r for r in self.list_scan_roots() if r.enabled]

    def toggle_scan_root(self, root_id: int) -> bool:
        """Flips the enabled flag. Returns False if no such root exists."""
        with self.conn:
            cur = self.conn.execute(
                "UPDATE scan_roots SET enabled = CASE WHEN enabled = 1 THEN 0 ELSE 1 END WHERE id = ?",
                (root_id,),
            )
        return cur.rowcount > 0

    def update_scan_root(self, root_id: int,
                         recurse: Optional[bool] = None,
                         exclude_tokens: Optional[str] = None) -> bool:
        """Edits recursion and/or exclude tokens. An empty token string clears them."""
        sets, params = [], []
        if recurse is not None:
            sets.append("recurse = ?")
            params.append(int(recurse))
        if exclude_tokens is not None:
            sets.append("exclude_tokens = ?")
            params.append(exclude_tokens or None)
        if not sets:
            return False
        params.append(root_id)
        with self.conn:
            cur = self.conn.execute(f"UPDATE scan_roots SET {', '.join(sets)} WHERE id = ?", params)
        return cur.rowcount > 0

    # --- Media Catalog ---

    def upsert_media_file(self, rec: MediaFile) -> int:
        """
        Inserts or updates a catalog entry keyed by normalized path.
        Every attribute is overwritten, so absent probe values replace stale
        ones with NULL rather than keeping them.
        """
        path = normalize_path(rec.path)
        with self.conn:
            self.conn.execute("""
                INSERT INTO media_files (
                    path, size_bytes, modified_at, scanned_at,
                    duration_sec, width, height, fps, video_codec, container
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    size_bytes = excluded.size_bytes,
                    modified_at = excluded.modified_at,
                    scanned_at = excluded.scanned_at,
                    duration_sec = excluded.duration_sec,
                    width = excluded.width,
                    height = excluded.height,
                    fps = excluded.fps,
                    video_codec = excluded.video_codec,
                    container = excluded.container
            """, (
                path, rec.size_bytes, rec.modified_at, rec.scanned_at,
                rec.duration_sec, rec.width, rec.height, rec.fps,
                rec.video_codec, rec.container,
            ))
        cur = self.conn.cursor()
        cur.execute("SELECT id FROM media_files WHERE path = ?", (path,))
        row = cur.fetchone()
        if row is None:
            raise DatabaseError(f"Upsert of {path} did not produce a row.")
        rec.id = row[0]
        rec.path = path
        return rec.id

    def list_media_files(self, limit: Optional[int] = None) -> List[MediaFile]:
        """All catalog entries, newest first."""
        cur = self.conn.cursor()
        sql = f"SELECT {_MEDIA_COLUMNS} FROM media_files ORDER BY id DESC"
        if limit is not None:
            cur.execute(sql + " LIMIT ?", (limit,))
        else:
            cur.execute(sql)
        return [_row_to_media_file(r) for r in cur.fetchall()]

    def list_complete_media_files(self) -> List[MediaFile]:
        """Entries with known duration, width and height (eligible for bucketing)."""
        cur = self.conn.cursor()
        cur.execute(f"""
            SELECT {_MEDIA_COLUMNS} FROM media_files
            WHERE duration_sec IS NOT NULL AND width IS NOT NULL AND height IS NOT NULL
            ORDER BY id
        """)
        return [_row_to_media_file(r) for r in cur.fetchall()]

    def get_media_file(self, file_id: int) -> Optional[MediaFile]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {_MEDIA_COLUMNS} FROM media_files WHERE id = ?", (file_id,))
        row = cur.fetchone()
        return _row_to_media_file(row) if row else None

    def count_media_files(self) -> int:
        cur = self.conn.cursor()
        cur.execute("SELECT COUNT(*) FROM media_files")
        return cur.fetchone()[0]

    # --- Frame Hashes ---

    def get_frame_hash(self, file_id: int, position_pct: int) -> Optional[int]:
        cur = self.conn.cursor()
        cur.execute(
            "SELECT hash64 FROM frame_hashes WHERE media_file_id = ? AND position_pct = ?",
            (file_id, position_pct),
        )
        row = cur.fetchone()
        return from_signed64(row[0]) if row else None

    def put_frame_hash(self, file_id: int, position_pct: int, value: int):
        with self.conn:
            self.conn.execute("""
                INSERT OR REPLACE INTO frame_hashes (media_file_id, position_pct, hash64)
                VALUES (?, ?, ?)
            """, (file_id, position_pct, to_signed64(value)))

    # --- Review Decisions ---

    def upsert_decision(self, file_id: int, decision: str, note: Optional[str] = None):
        if decision not in config.DECISIONS:
            raise ValueError(f"Unknown decision '{decision}' (expected one of {config.DECISIONS})")
        now_iso = datetime.now(UTC).isoformat()
        with self.conn:
            self.conn.execute("""
                INSERT INTO review_decisions (media_file_id, decision, note, decided_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(media_file_id) DO UPDATE SET
                    decision = excluded.decision,
                    note = excluded.note,
                    decided_at = excluded.decided_at
            """, (file_id, decision, note, now_iso))
        logging.debug(f"Decision for file {file_id}: {decision}")

    def get_decision(self, file_id: int) -> Optional[Decision]:
        cur = self.conn.cursor()
        cur.execute(
            "SELECT media_file_id, decision, note, decided_at FROM review_decisions WHERE media_file_id = ?",
            (file_id,),
        )
        row = cur.fetchone()
        return Decision(*row) if row else None
