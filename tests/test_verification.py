import threading
import time
import pytest
from pathlib import Path

from video_dedupe.exceptions import FrameExtractionError, InvalidImageError
from video_dedupe.matching.verification import (
    FrameHashCache, Verifier, average_distance, sample_timestamp,
)

class FakeExtractor:
    """Returns '<name>|<ts>' instead of PNG bytes; fails for listed names or (name, ts)."""
    def __init__(self, fail=()):
        self.calls = []
        self.fail = set(fail)
        self._lock = threading.Lock()

    def extract_frame(self, path: Path, timestamp_sec: float) -> bytes:
        with self._lock:
            self.calls.append((path.name, timestamp_sec))
        if path.name in self.fail or (path.name, timestamp_sec) in self.fail:
            raise FrameExtractionError("ffmpeg failed")
        return f"{path.name}|{timestamp_sec}".encode()

class TableHasher:
    """Looks the hash up by file name; values may be callables of the timestamp."""
    def __init__(self, table, invalid=()):
        self.table = table
        self.invalid = set(invalid)

    def compute_hash(self, data: bytes) -> int:
        name, ts = data.decode().split("|")
        if name in self.invalid:
            raise InvalidImageError("cannot decode")
        value = self.table[name]
        return value(float(ts)) if callable(value) else value

@pytest.fixture
def catalog(db_ops, make_media, tmp_path):
    """Creates real files and catalog rows; returns a name -> MediaFile factory."""
    def _add(name, duration=10.0, create=True, **kwargs):
        path = tmp_path / name
        if create:
            path.write_bytes(b"video")
        rec = make_media(path, duration=duration, **kwargs)
        db_ops.upsert_media_file(rec)
        return rec
    return _add

def _verifier(db_ops, extractor, hasher, **kwargs):
    cache = FrameHashCache(db_ops)
    return Verifier(cache, extractor, hasher=hasher, max_workers=2, **kwargs), cache

def test_distance_above_threshold_excludes_file(db_ops, catalog):
    a = catalog("a.mp4")
    b = catalog("b.mp4")
    hasher = TableHasher({"a.mp4": 0, "b.mp4": (1 << 11) - 1})
    verifier, _ = _verifier(db_ops, FakeExtractor(), hasher)

    assert verifier.verify([a, b], [50], max_avg_dist=10, min_items=2) is None

    group = verifier.verify([a, b], [50], max_avg_dist=11, min_items=2)
    assert group is not None
    assert [m.avg_dist for m in group.members] == [0.0, 11.0]

def test_missing_file_breaks_cluster_below_minimum(db_ops, catalog):
    a = catalog("a.mp4")
    gone = catalog("gone.mp4", create=False)
    extractor = FakeExtractor()
    verifier, _ = _verifier(db_ops, extractor, TableHasher({"a.mp4": 0, "gone.mp4": 0}))

    assert verifier.verify([a, gone], [20, 50, 80], max_avg_dist=10, min_items=2) is None
    assert all(name != "gone.mp4" for name, _ in extractor.calls)

def test_short_or_unknown_duration_is_rejected(db_ops, catalog):
    a = catalog("a.mp4")
    short = catalog("short.mp4", duration=1.0)
    extractor = FakeExtractor()
    verifier, _ = _verifier(db_ops, extractor, TableHasher({"a.mp4": 0, "short.mp4": 0}))

    assert verifier.verify([a, short], [50], max_avg_dist=10, min_items=2) is None
    short.duration_sec = None
    assert verifier.verify([a, short], [50], max_avg_dist=10, min_items=2) is None
    assert all(name != "short.mp4" for name, _ in extractor.calls)

def test_group_descriptor_and_ranking(db_ops, catalog):
    files = [catalog(f"{n}.mp4") for n in ("a", "b", "c", "d")]
    hasher = TableHasher({"a.mp4": 0, "b.mp4": 0b111, "c.mp4": 0b1, "d.mp4": 0})
    verifier, _ = _verifier(db_ops, FakeExtractor(), hasher)

    group = verifier.verify(files, [80, 20, 50, 50], max_avg_dist=5, min_items=2, tol_seconds=0.4)

    assert group.algorithm == "dhash"
    assert group.sample_positions == (20, 50, 80)
    assert group.frames_label == "20,50,80"
    assert group.tolerance_sec == 0.4
    assert group.max_avg_dist == 5
    # Reference (lowest id) first, then ascending distance, ties by id
    assert [Path(m.file.path).name for m in group.members] == ["a.mp4", "d.mp4", "c.mp4", "b.mp4"]
    assert [m.avg_dist for m in group.members] == [0.0, 0.0, 1.0, 3.0]
    assert all(m.avg_dist <= 5 for m in group.members)

def test_reference_policy_largest(db_ops, catalog):
    small = catalog("small.mp4", size=10)
    big = catalog("big.mp4", size=5000)
    hasher = TableHasher({"small.mp4": 0b11, "big.mp4": 0})
    verifier, _ = _verifier(db_ops, FakeExtractor(), hasher, reference_policy="largest")

    group = verifier.verify([small, big], [50], max_avg_dist=10, min_items=2)
    assert Path(group.members[0].file.path).name == "big.mp4"
    assert group.members[1].avg_dist == 2.0

def test_unknown_reference_policy_is_rejected(db_ops):
    with pytest.raises(ValueError):
        Verifier(FrameHashCache(db_ops), FakeExtractor(), reference_policy="random")

def test_failed_sample_only_drops_that_position(db_ops, catalog):
    a = catalog("a.mp4")
    b = catalog("b.mp4")
    # b's 80% frame fails; its 20% and 50% still count.
    extractor = FakeExtractor(fail={("b.mp4", 8.0)})
    hasher = TableHasher({"a.mp4": 0, "b.mp4": lambda ts: 0b1 if ts == 2.0 else 0})
    verifier, _ = _verifier(db_ops, extractor, hasher)

    group = verifier.verify([a, b], [20, 50, 80], max_avg_dist=10, min_items=2)
    assert group.members[1].avg_dist == pytest.approx(0.5)
    assert db_ops.get_frame_hash(b.id, 80) is None
    assert db_ops.get_frame_hash(b.id, 20) == 1

def test_file_without_any_frames_is_dropped(db_ops, catalog):
    a, b, c = catalog("a.mp4"), catalog("b.mp4"), catalog("c.mp4")
    extractor = FakeExtractor(fail={"c.mp4"})
    verifier, _ = _verifier(db_ops, extractor, TableHasher({"a.mp4": 0, "b.mp4": 0, "c.mp4": 0}))

    group = verifier.verify([a, b, c], [20, 50], max_avg_dist=10, min_items=2)
    assert [Path(m.file.path).name for m in group.members] == ["a.mp4", "b.mp4"]

def test_undecodable_frame_is_treated_as_unusable(db_ops, catalog):
    a, b = catalog("a.mp4"), catalog("b.mp4")
    hasher = TableHasher({"a.mp4": 0, "b.mp4": 0}, invalid={"b.mp4"})
    verifier, _ = _verifier(db_ops, FakeExtractor(), hasher)

    assert verifier.verify([a, b], [50], max_avg_dist=10, min_items=2) is None

def test_no_shared_positions_is_ineligible(db_ops, catalog):
    a, b = catalog("a.mp4"), catalog("b.mp4")
    extractor = FakeExtractor(fail={("a.mp4", 8.0), ("b.mp4", 2.0)})
    verifier, _ = _verifier(db_ops, extractor, TableHasher({"a.mp4": 0, "b.mp4": 0}))

    assert verifier.verify([a, b], [20, 80], max_avg_dist=64, min_items=2) is None

def test_cached_hash_never_reextracts(db_ops, catalog):
    a, b = catalog("a.mp4"), catalog("b.mp4")
    extractor = FakeExtractor()
    verifier, cache = _verifier(db_ops, extractor, TableHasher({"a.mp4": 0, "b.mp4": 0}))

    verifier.verify([a, b], [20, 50, 80], max_avg_dist=10, min_items=2)
    assert len(extractor.calls) == 6
    assert cache.computed == 6

    verifier.verify([a, b], [20, 50, 80], max_avg_dist=10, min_items=2)
    assert len(extractor.calls) == 6

    # A fresh cache reads the persisted rows instead of extracting again
    fresh, fresh_cache = _verifier(db_ops, extractor, TableHasher({}))
    assert fresh.verify([a, b], [20, 50, 80], max_avg_dist=10, min_items=2) is not None
    assert len(extractor.calls) == 6
    assert fresh_cache.computed == 0

def test_extraction_uses_clamped_timestamps(db_ops, catalog):
    a, b = catalog("a.mp4", duration=10.0), catalog("b.mp4", duration=10.0)
    extractor = FakeExtractor()
    verifier, _ = _verifier(db_ops, extractor, TableHasher({"a.mp4": 0, "b.mp4": 0}))

    verifier.verify([a, b], [1, 50, 99], max_avg_dist=10, min_items=2)
    assert sorted({ts for _, ts in extractor.calls}) == [pytest.approx(0.1), 5.0, pytest.approx(9.9)]

def test_cancelled_verification_emits_nothing(db_ops, catalog):
    a, b = catalog("a.mp4"), catalog("b.mp4")
    cancel = threading.Event()
    cancel.set()
    extractor = FakeExtractor()
    verifier, _ = _verifier(db_ops, extractor, TableHasher({"a.mp4": 0, "b.mp4": 0}), cancel_event=cancel)

    assert verifier.verify([a, b], [50], max_avg_dist=10, min_items=2) is None
    assert extractor.calls == []

@pytest.mark.parametrize("duration,pos,expected", [
    (10.0, 50, 5.0),
    (10.0, 1, 0.1),
    (10.0, 99, 9.9),
    (1.5, 99, 1.4),
    (0.15, 50, 0.1),
])
def test_sample_timestamp_clamps(duration, pos, expected):
    assert sample_timestamp(duration, pos) == pytest.approx(expected)

def test_average_distance_uses_shared_positions_only():
    assert average_distance({20: 0, 50: 0}, {50: 0b11, 80: 0xFF}) == 2.0
    assert average_distance({20: 0}, {80: 0}) == float("inf")

def test_cache_computes_each_key_once_under_contention(db_ops, catalog):
    a = catalog("a.mp4")
    cache = FrameHashCache(db_ops)
    calls = []
    start = threading.Barrier(8)

    def compute():
        calls.append(1)
        time.sleep(0.05)
        return 42

    results = []
    def worker():
        start.wait()
        results.append(cache.get_or_compute(a.id, 50, compute))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results == [42] * 8
    assert len(calls) == 1
    assert db_ops.get_frame_hash(a.id, 50) == 42

def test_cache_does_not_store_failures(db_ops, catalog):
    a = catalog("a.mp4")
    cache = FrameHashCache(db_ops)

    def boom():
        raise FrameExtractionError("nope")

    with pytest.raises(FrameExtractionError):
        cache.get_or_compute(a.id, 50, boom)
    assert cache.get(a.id, 50) is None
    assert cache.get_or_compute(a.id, 50, lambda: 7) == 7
