"""
Persistence for verified duplicate groups.

A rebuild is clear-then-reinsert. Inserting the same clusters twice without
clearing produces independent groups; nothing here dedupes across runs.
"""
import sqlite3
import logging
from datetime import datetime, UTC
from typing import List, Iterable, Optional

from ..exceptions import DatabaseError
from ..models import DuplicateGroup, GroupMember, VerifiedGroup
from .ops import _MEDIA_COLUMNS, _row_to_media_file

class GroupStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def clear_all(self) -> int:
        """Deletes every group and membership. Returns the number of groups removed."""
        with self.conn:
            self.conn.execute("DELETE FROM duplicate_members")
            cur = self.conn.execute("DELETE FROM duplicate_groups")
        logging.info(f"Cleared {cur.rowcount} duplicate groups.")
        return cur.rowcount

    def insert_group(self, group: VerifiedGroup) -> int:
        now_iso = datetime.now(UTC).isoformat()
        with self.conn:
            cur = self.conn.execute("""
                INSERT INTO duplicate_groups (algorithm, frames, tolerance_sec, max_avg_dist, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (group.algorithm, group.frames_label, group.tolerance_sec, group.max_avg_dist, now_iso))
        if cur.lastrowid is None:
            raise DatabaseError("Database INSERT failed to return a row ID.")
        return cur.lastrowid

    def insert_members(self, group_id: int, members: Iterable[GroupMember]):
        with self.conn:
            self.conn.executemany("""
                INSERT OR REPLACE INTO duplicate_members (group_id, media_file_id, avg_dist, rank)
                VALUES (?, ?, ?, ?)
            """, [(group_id, m.file.id, m.avg_dist, rank) for rank, m in enumerate(members)])

    def save(self, group: VerifiedGroup) -> int:
        """Inserts a verified group together with its ranked members."""
        group_id = self.insert_group(group)
        self.insert_members(group_id, group.members)
        return group_id

    def list_groups_with_members(self, limit: int = 50) -> List[DuplicateGroup]:
        """Newest groups first; members ordered most-similar-first."""
        cur = self.conn.cursor()
        cur.execute("""
            SELECT id, algorithm, frames, tolerance_sec, max_avg_dist, created_at
            FROM duplicate_groups
            ORDER BY id DESC
            LIMIT ?
        """, (limit,))
        groups = [DuplicateGroup(*row) for row in cur.fetchall()]
        for g in groups:
            g.members = self._load_members(g.id)
        return groups

    def get_group(self, group_id: int) -> Optional[DuplicateGroup]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT id, algorithm, frames, tolerance_sec, max_avg_dist, created_at
            FROM duplicate_groups WHERE id = ?
        """, (group_id,))
        row = cur.fetchone()
        if row is None:
            return None
        group = DuplicateGroup(*row)
        group.members = self._load_members(group.id)
        return group

    def _load_members(self, group_id: int) -> List[GroupMember]:
        columns = ", ".join(f"f.{c.strip()}" for c in _MEDIA_COLUMNS.split(","))
        cur = self.conn.cursor()
        cur.execute(f"""
            SELECT m.avg_dist, {columns}
            FROM duplicate_members m
            JOIN media_files f ON f.id = m.media_file_id
            WHERE m.group_id = ?
            ORDER BY m.rank ASC, m.avg_dist ASC
        """, (group_id,))
        return [
            GroupMember(file=_row_to_media_file(r[1:]), avg_dist=r[0])
            for r in cur.fetchall()
        ]

    def count_groups(self) -> int:
        cur = self.conn.cursor()
        cur.execute("SELECT COUNT(*) FROM duplicate_groups")
        return cur.fetchone()[0]
