import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from . import config


def normalize_path(path) -> str:
    """Absolute form stored in the catalog (case-folded only where the OS is)."""
    return os.path.normcase(str(Path(path).expanduser().resolve()))


def path_key(path) -> str:
    """Case-insensitive comparison key for scan roots."""
    return normalize_path(path).casefold()


def split_exclude_tokens(exclude_text: Optional[str]) -> List[str]:
    """
    Splits a ';'-separated exclude string into lower-cased tokens.
    Glob stars around a token are ignored ('*sample*' == 'sample').
    """
    if not exclude_text:
        return []
    tokens = []
    for raw in exclude_text.split(';'):
        token = raw.strip().strip('*').strip()
        if token:
            tokens.append(token.casefold())
    return tokens


@dataclass
class ScanRoot:
    """A directory to index."""
    id: int
    path: str
    enabled: bool = True
    recurse: bool = True
    exclude_tokens: Optional[str] = None
    added_at: Optional[str] = None

    def is_excluded(self, candidate: Path) -> bool:
        text = str(candidate).casefold()
        return any(tok in text for tok in split_exclude_tokens(self.exclude_tokens))


@dataclass
class ProbeResult:
    duration_sec: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    video_codec: Optional[str] = None
    container: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return self.duration_sec is not None or (self.width is not None and self.height is not None)


@dataclass
class MediaFile:
    """
    One catalog entry per unique file path.
    Probe attributes stay None when probing failed or has not run yet.
    """
    path: str
    size_bytes: int
    modified_at: str
    scanned_at: str
    duration_sec: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    video_codec: Optional[str] = None
    container: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return (
            self.duration_sec is not None
            and self.width is not None
            and self.height is not None
        )

    @property
    def pixels(self) -> int:
        return (self.width or 0) * (self.height or 0)

    def with_probe(self, probe: ProbeResult) -> "MediaFile":
        self.duration_sec = probe.duration_sec
        self.width = probe.width
        self.height = probe.height
        self.fps = probe.fps
        self.video_codec = probe.video_codec
        self.container = probe.container
        return self


@dataclass
class ScanProgress:
    """Snapshot handed to the progress sink after every processed file."""
    discovered: int = 0
    processed: int = 0
    probed_ok: int = 0
    probed_fail: int = 0
    skipped: int = 0
    current_path: Optional[str] = None
    cancelled: bool = False


@dataclass
class MatchSettings:
    """Tunables supplied by the CLI for candidate building and verification."""
    tolerance_sec: float = config.DEFAULT_TOLERANCE_SEC
    min_items: int = config.DEFAULT_MIN_ITEMS
    sample_positions: Tuple[int, ...] = config.DEFAULT_SAMPLE_POSITIONS
    max_avg_dist: float = config.DEFAULT_MAX_AVG_DIST
    clear_existing: bool = True
    reference_policy: str = config.DEFAULT_REFERENCE_POLICY


@dataclass
class GroupMember:
    file: MediaFile
    avg_dist: float


@dataclass
class VerifiedGroup:
    """
    Output of verifying one cluster, not yet persisted.
    Members are ranked most-similar-first; members[0] is the reference.
    """
    algorithm: str
    sample_positions: Tuple[int, ...]
    tolerance_sec: float
    max_avg_dist: float
    members: List[GroupMember] = field(default_factory=list)

    @property
    def frames_label(self) -> str:
        return ",".join(str(p) for p in sorted(self.sample_positions))


@dataclass
class DuplicateGroup:
    """A persisted group as read back from the store."""
    id: int
    algorithm: str
    frames: str
    tolerance_sec: float
    max_avg_dist: float
    created_at: str
    members: List[GroupMember] = field(default_factory=list)

    @property
    def sample_positions(self) -> Tuple[int, ...]:
        return tuple(int(p) for p in self.frames.split(',') if p.strip())


@dataclass
class Decision:
    file_id: int
    decision: str       # keep/quarantine/skip
    note: Optional[str] = None
    decided_at: Optional[str] = None
