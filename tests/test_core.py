import threading
import pytest
from pathlib import Path

from video_dedupe.core import VideoDedupeApp
from video_dedupe.database.db import DBManager
from video_dedupe.database.ops import DBOperations
from video_dedupe.exceptions import NoCandidatesError
from video_dedupe.models import MatchSettings, ProbeResult

# name -> (duration, width, height, frame hash, size)
LIBRARY = {
    "movie.mp4": (600.0, 1920, 1080, 0, 500),
    "movie_copy.mkv": (600.04, 1920, 1080, 0b11, 300),
    "movie_reencode.mp4": (600.02, 1920, 1080, 0b1, 200),
    "other.mp4": (600.01, 1920, 1080, (1 << 40) - 1, 400),
    "clip.mp4": (30.0, 1280, 720, 0, 100),
    "lonely.mp4": (75.0, 640, 480, 0, 100),
}

class LibraryProbe:
    def probe(self, path: Path) -> ProbeResult:
        dur, w, h, _, _ = LIBRARY[path.name]
        return ProbeResult(duration_sec=dur, width=w, height=h, fps=25.0, video_codec="h264", container="mp4")

class NameExtractor:
    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    def extract_frame(self, path: Path, timestamp_sec: float) -> bytes:
        with self._lock:
            self.calls += 1
        return path.name.encode()

class NameHasher:
    def compute_hash(self, data: bytes) -> int:
        return LIBRARY[data.decode()][3]

@pytest.fixture
def app(tmp_path):
    videos = tmp_path / "videos"
    videos.mkdir()
    for name in LIBRARY:
        (videos / name).write_bytes(b"x" * LIBRARY[name][4])

    db_path = tmp_path / "catalog.db"
    with DBManager(db_path) as conn:
        DBOperations(conn).add_scan_root(videos)

    extractor = NameExtractor()
    application = VideoDedupeApp(db_path, probe=LibraryProbe(), extractor=extractor,
                                 hasher=NameHasher(), max_workers=2)
    application.test_extractor = extractor
    return application

def test_verify_before_scan_fails(app):
    with pytest.raises(NoCandidatesError):
        app.verify(MatchSettings(), show_progress=False)

def test_candidates_from_metadata_only(app):
    app.scan()
    clusters = app.candidates(MatchSettings(tolerance_sec=0.25, min_items=2))

    assert len(clusters) == 1
    assert sorted(Path(f.path).name for f in clusters[0]) == [
        "movie.mp4", "movie_copy.mkv", "movie_reencode.mp4", "other.mp4",
    ]
    assert app.test_extractor.calls == 0

def test_full_pipeline(app):
    result = app.scan()
    assert result.probed_ok == len(LIBRARY)

    # The biggest file is the reference, independent of catalog ids
    summary = app.verify(MatchSettings(reference_policy="largest"), show_progress=False)
    assert summary.clusters == 1
    assert summary.groups == 1
    assert summary.members == 3
    assert summary.frames_computed == 4 * 3
    assert not summary.cancelled

    (group,) = app.list_groups()
    assert [Path(m.file.path).name for m in group.members] == [
        "movie.mp4", "movie_reencode.mp4", "movie_copy.mkv",
    ]
    assert [m.avg_dist for m in group.members] == [0.0, 1.0, 2.0]
    assert group.frames == "20,50,80"

def test_rerun_clears_unless_asked_not_to(app):
    app.scan()
    settings = MatchSettings(reference_policy="largest")
    app.verify(settings, show_progress=False)
    first_calls = app.test_extractor.calls

    app.verify(settings, show_progress=False)
    assert len(app.list_groups()) == 1
    # Every hash came from the catalog the second time
    assert app.test_extractor.calls == first_calls

    app.verify(MatchSettings(reference_policy="largest", clear_existing=False), show_progress=False)
    assert len(app.list_groups()) == 2
