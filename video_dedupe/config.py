"""
Configuration constants for the video deduplicator.
"""
import os

# --- File Type Definitions ---
VIDEO_EXTS = {
    '.mp4', '.m4v', '.mov', '.mkv', '.avi', '.wmv', '.webm',
    '.mpg', '.mpeg', '.mts', '.m2ts', '.ts', '.3gp', '.flv',
}

# --- Probing ---
# Durations outside (MIN_PROBE_DURATION_SEC, MAX_PROBE_DURATION_SEC] are
# treated as broken probe output and stored as absent.
MIN_PROBE_DURATION_SEC = 0.1
MAX_PROBE_DURATION_SEC = 48 * 3600
PROBE_TIMEOUT_SEC = 60
FRAME_TIMEOUT_SEC = 60

FFPROBE_BIN = "ffprobe"
FFMPEG_BIN = "ffmpeg"

# --- Concurrency ---
# Every unit of work spawns an external process and hits the disk.
MAX_WORKERS_CAP = 4

def default_worker_count() -> int:
    """Half the CPUs, at least 1, at most MAX_WORKERS_CAP."""
    cpus = os.cpu_count() or 2
    return max(1, min(cpus // 2, MAX_WORKERS_CAP))

# --- Matching Defaults (overridable from the CLI) ---
ALGORITHM = "dhash"
DEFAULT_TOLERANCE_SEC = 0.25
DEFAULT_MIN_ITEMS = 2
DEFAULT_SAMPLE_POSITIONS = (20, 50, 80)
DEFAULT_MAX_AVG_DIST = 10.0
DEFAULT_REFERENCE_POLICY = "lowest_id"

# Files this short are not worth sampling.
MIN_VIABLE_DURATION_SEC = 1.0
# Keep seeks away from the very first and last frame.
SEEK_MARGIN_SEC = 0.1

# dHash grid: HASH_WIDTH x HASH_HEIGHT grayscale pixels -> 64 bits
HASH_WIDTH = 9
HASH_HEIGHT = 8

# --- Storage ---
DEFAULT_DB_NAME = "video_dedupe.db"
DEFAULT_GROUP_LIST_LIMIT = 50
DECISIONS = ('keep', 'quarantine', 'skip')
