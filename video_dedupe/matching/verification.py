import math
import logging
import threading
from pathlib import Path
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .. import config
from ..database.ops import DBOperations
from ..exceptions import FrameExtractionError, InvalidImageError
from ..models import GroupMember, MediaFile, VerifiedGroup
from .dhash import FrameHasher, hamming_distance

CacheKey = Tuple[int, int]


class FrameHashCache:
    """
    Read-through, write-once store of frame hashes keyed by (file id, position).

    Backed by the catalog so hashes survive between runs. Concurrent callers
    asking for the same key wait on that key's lock only; the first one
    computes, the rest read its result. Entries are never invalidated.
    """

    def __init__(self, db_ops: DBOperations, db_lock: Optional[threading.Lock] = None):
        self.db = db_ops
        self._db_lock = db_lock or threading.Lock()
        self._values: Dict[CacheKey, int] = {}
        self._key_locks: Dict[CacheKey, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self.computed = 0

    def _lock_for(self, key: CacheKey) -> threading.Lock:
        with self._registry_lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def get(self, file_id: int, position_pct: int) -> Optional[int]:
        key = (file_id, position_pct)
        if key in self._values:
            return self._values[key]
        with self._db_lock:
            value = self.db.get_frame_hash(file_id, position_pct)
        if value is not None:
            self._values[key] = value
        return value

    def get_or_compute(self, file_id: int, position_pct: int, compute: Callable[[], int]) -> int:
        """
        Returns the cached hash, computing and persisting it on a miss.
        Exceptions from compute propagate and leave the key uncached.
        """
        value = self.get(file_id, position_pct)
        if value is not None:
            return value

        key = (file_id, position_pct)
        with self._lock_for(key):
            value = self.get(file_id, position_pct)
            if value is not None:
                return value

            value = compute()
            with self._db_lock:
                self.db.put_frame_hash(file_id, position_pct, value)
                self.computed += 1
            self._values[key] = value
            return value


def sample_timestamp(duration_sec: float, position_pct: int) -> float:
    """Timestamp for a percentage position, kept SEEK_MARGIN_SEC away from both ends."""
    ts = duration_sec * (position_pct / 100.0)
    margin = config.SEEK_MARGIN_SEC
    upper = max(margin, duration_sec - margin)
    return min(max(ts, margin), upper)


def average_distance(reference: Dict[int, int], other: Dict[int, int]) -> float:
    """Mean Hamming distance over shared positions; inf when none are shared."""
    shared = reference.keys() & other.keys()
    if not shared:
        return math.inf
    return sum(hamming_distance(reference[p], other[p]) for p in shared) / len(shared)


# Which surviving file the others are measured against.
REFERENCE_POLICIES: Dict[str, Callable[[List[MediaFile]], MediaFile]] = {
    'lowest_id': lambda files: min(files, key=lambda f: f.id),
    'cluster_order': lambda files: files[0],
    'largest': lambda files: max(files, key=lambda f: (f.pixels, f.size_bytes, -f.id)),
}


class Verifier:
    """
    Confirms a duration cluster by comparing sampled frame fingerprints.

    Frame extraction runs on a bounded thread pool, one job per
    (file, position); results go through the shared FrameHashCache.
    """

    def __init__(self,
                 cache: FrameHashCache,
                 extractor,
                 hasher: Optional[FrameHasher] = None,
                 max_workers: Optional[int] = None,
                 reference_policy: str = config.DEFAULT_REFERENCE_POLICY,
                 cancel_event: Optional[threading.Event] = None):
        if reference_policy not in REFERENCE_POLICIES:
            raise ValueError(
                f"Unknown reference policy '{reference_policy}' "
                f"(expected one of {sorted(REFERENCE_POLICIES)})"
            )
        self.cache = cache
        self.extractor = extractor
        self.hasher = hasher or FrameHasher()
        self.max_workers = max_workers or config.default_worker_count()
        self.reference_policy = reference_policy
        self.cancel_event = cancel_event or threading.Event()

    def verify(self,
               cluster: Sequence[MediaFile],
               sample_positions: Sequence[int],
               max_avg_dist: float,
               min_items: int,
               tol_seconds: float = config.DEFAULT_TOLERANCE_SEC) -> Optional[VerifiedGroup]:
        """
        Returns the ranked group for a cluster, or None when fewer than
        min_items files survive sampling and the distance threshold.
        """
        positions = tuple(sorted(set(sample_positions)))
        eligible = [f for f in cluster if self._is_sampleable(f)]
        if len(eligible) < min_items:
            return None

        hashes = self._collect_hashes(eligible, positions)
        if self.cancel_event.is_set():
            return None

        survivors = [f for f in eligible if hashes.get(f.id)]
        for f in eligible:
            if not hashes.get(f.id):
                logging.warning(f"No usable frames, dropping from cluster: {f.path}")
        if len(survivors) < min_items:
            return None

        reference = REFERENCE_POLICIES[self.reference_policy](survivors)
        ref_hashes = hashes[reference.id]

        members: List[GroupMember] = []
        for f in survivors:
            dist = 0.0 if f is reference else average_distance(ref_hashes, hashes[f.id])
            if dist <= max_avg_dist:
                members.append(GroupMember(file=f, avg_dist=dist))
            else:
                logging.debug(f"Rejected {f.path}: avg distance {dist:.1f} > {max_avg_dist}")

        if len(members) < min_items:
            return None

        members.sort(key=lambda m: (m.avg_dist, m.file is not reference, m.file.id))
        return VerifiedGroup(
            algorithm=config.ALGORITHM,
            sample_positions=positions,
            tolerance_sec=tol_seconds,
            max_avg_dist=max_avg_dist,
            members=members,
        )

    def _is_sampleable(self, f: MediaFile) -> bool:
        if f.id is None:
            return False
        if f.duration_sec is None or f.duration_sec <= config.MIN_VIABLE_DURATION_SEC:
            logging.info(f"Skip hashes (no/short duration): {f.path}")
            return False
        if not f.path or not Path(f.path).is_file():
            logging.info(f"Skip hashes (missing file): {f.path}")
            return False
        return True

    def _collect_hashes(self, files: List[MediaFile], positions: Tuple[int, ...]) -> Dict[int, Dict[int, int]]:
        hashes: Dict[int, Dict[int, int]] = {f.id: {} for f in files}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_key = {}
            for f in files:
                for pos in positions:
                    future = executor.submit(self._sample, f, pos)
                    future_to_key[future] = (f.id, pos)

            for future in as_completed(future_to_key):
                if self.cancel_event.is_set():
                    executor.shutdown(wait=True, cancel_futures=True)
                    break
                value = future.result()
                if value is not None:
                    file_id, pos = future_to_key[future]
                    hashes[file_id][pos] = value

        return hashes

    def _sample(self, f: MediaFile, pos: int) -> Optional[int]:
        """Hash for one sample position, or None if the sample is unusable."""
        if self.cancel_event.is_set():
            return None
        try:
            return self.cache.get_or_compute(f.id, pos, lambda: self._compute(f, pos))
        except (FrameExtractionError, InvalidImageError) as e:
            logging.warning(f"Skip frame {pos}%: {f.path} :: {e}")
            return None

    def _compute(self, f: MediaFile, pos: int) -> int:
        ts = sample_timestamp(f.duration_sec, pos)
        png = self.extractor.extract_frame(Path(f.path), ts)
        return self.hasher.compute_hash(png)
