"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Scan Roots (user managed, never deleted by the pipeline)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS scan_roots (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            path            TEXT NOT NULL,
            path_key        TEXT NOT NULL UNIQUE,   -- case-folded for comparison
            enabled         INTEGER NOT NULL DEFAULT 1,
            recurse         INTEGER NOT NULL DEFAULT 1,
            exclude_tokens  TEXT,                   -- ';'-separated substrings
            added_at        TEXT NOT NULL
        );
        """)

        # 3. Media Catalog
        # Probe attributes are NULL when unknown; never 0.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS media_files (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            path            TEXT NOT NULL UNIQUE,
            size_bytes      INTEGER NOT NULL,
            modified_at     TEXT NOT NULL,
            scanned_at      TEXT NOT NULL,
            duration_sec    REAL,
            width           INTEGER,
            height          INTEGER,
            fps             REAL,
            video_codec     TEXT,
            container       TEXT
        );
        """)

        # 4. Frame Hash Cache (write-once per file/position)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS frame_hashes (
            media_file_id   INTEGER NOT NULL,
            position_pct    INTEGER NOT NULL,
            hash64          INTEGER NOT NULL,       -- signed storage of an unsigned 64-bit value
            PRIMARY KEY (media_file_id, position_pct),
            FOREIGN KEY(media_file_id) REFERENCES media_files(id) ON DELETE CASCADE
        );
        """)

        # 5. Verified Groups
        conn.execute("""
        CREATE TABLE IF NOT EXISTS duplicate_groups (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            algorithm       TEXT NOT NULL,
            frames          TEXT NOT NULL,          -- e.g. '20,50,80'
            tolerance_sec   REAL NOT NULL,
            max_avg_dist    REAL NOT NULL,
            created_at      TEXT NOT NULL
        );
        """)

        conn.execute("""
        CREATE TABLE IF NOT EXISTS duplicate_members (
            group_id        INTEGER NOT NULL,
            media_file_id   INTEGER NOT NULL,
            avg_dist        REAL NOT NULL,          -- distance to the group's reference file
            rank            INTEGER NOT NULL,       -- 0 = reference, then most-similar-first
            PRIMARY KEY (group_id, media_file_id),
            FOREIGN KEY(group_id) REFERENCES duplicate_groups(id) ON DELETE CASCADE,
            FOREIGN KEY(media_file_id) REFERENCES media_files(id) ON DELETE CASCADE
        );
        """)

        # 6. Review Decisions (owned by the keep/quarantine layer)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS review_decisions (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            media_file_id   INTEGER NOT NULL UNIQUE,
            decision        TEXT NOT NULL,          -- keep/quarantine/skip
            note            TEXT,
            decided_at      TEXT NOT NULL,
            FOREIGN KEY(media_file_id) REFERENCES media_files(id) ON DELETE CASCADE
        );
        """)

        # 7. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_media_files_bucket ON media_files(width, height, duration_sec);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_duplicate_members_group ON duplicate_members(group_id);")

    logging.debug("Database schema initialized.")
