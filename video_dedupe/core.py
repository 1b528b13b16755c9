import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from .database.db import DBManager
from .database.ops import DBOperations
from .database.groups import GroupStore
from .exceptions import NoCandidatesError
from .matching.clustering import build_clusters
from .matching.dhash import FrameHasher
from .matching.verification import FrameHashCache, Verifier
from .metadata.frames import FrameExtractor
from .metadata.probe import MetadataProbe
from .models import DuplicateGroup, MatchSettings, MediaFile
from .scanning.orchestrator import ScanOrchestrator, ProgressSink
from .scanning.filesystem import DiskScanner


@dataclass
class VerifySummary:
    clusters: int = 0
    groups: int = 0
    members: int = 0
    frames_computed: int = 0
    cancelled: bool = False


class VideoDedupeApp:
    def __init__(self,
                 db_path: Path,
                 probe: Optional[MetadataProbe] = None,
                 extractor: Optional[FrameExtractor] = None,
                 hasher: Optional[FrameHasher] = None,
                 max_workers: Optional[int] = None):
        self.db_manager = DBManager(db_path)
        self.probe = probe or MetadataProbe()
        self.extractor = extractor or FrameExtractor()
        self.hasher = hasher or FrameHasher()
        self.max_workers = max_workers

    def scan(self,
             progress: Optional[ProgressSink] = None,
             cancel_event: Optional[threading.Event] = None):
        """Discovers and probes files under every enabled scan root."""
        with self.db_manager as conn:
            db_ops = DBOperations(conn)
            orchestrator = ScanOrchestrator(
                db_ops, probe=self.probe, scanner=DiskScanner(), max_workers=self.max_workers,
            )
            return orchestrator.run(progress=progress, cancel_event=cancel_event)

    def candidates(self, settings: MatchSettings) -> List[List[MediaFile]]:
        """Tentative clusters from catalog metadata alone (no frames sampled)."""
        with self.db_manager as conn:
            files = self._complete_files(DBOperations(conn))
        return build_clusters(files, settings.tolerance_sec, settings.min_items)

    def verify(self,
               settings: MatchSettings,
               cancel_event: Optional[threading.Event] = None,
               show_progress: bool = True) -> VerifySummary:
        """
        Executes the duplicate detection pipeline.
        1. Bucket & Refine (catalog metadata only)
        2. Sample frames & Hash (cached per file/position)
        3. Compare against the reference & Rank
        4. Persist verified groups
        """
        cancel_event = cancel_event or threading.Event()
        summary = VerifySummary()

        with self.db_manager as conn:
            db_ops = DBOperations(conn)
            store = GroupStore(conn)

            files = self._complete_files(db_ops)
            clusters = build_clusters(files, settings.tolerance_sec, settings.min_items)
            summary.clusters = len(clusters)
            logging.info(f"{len(files)} eligible files -> {len(clusters)} candidate clusters")

            if settings.clear_existing:
                store.clear_all()

            cache = FrameHashCache(db_ops, self.db_manager.write_lock)
            verifier = Verifier(
                cache,
                self.extractor,
                hasher=self.hasher,
                max_workers=self.max_workers,
                reference_policy=settings.reference_policy,
                cancel_event=cancel_event,
            )

            for cluster in tqdm(clusters, desc="Verifying", unit="cluster", disable=not show_progress):
                if cancel_event.is_set():
                    summary.cancelled = True
                    break

                group = verifier.verify(
                    cluster,
                    settings.sample_positions,
                    settings.max_avg_dist,
                    settings.min_items,
                    tol_seconds=settings.tolerance_sec,
                )
                if group is None:
                    continue

                with self.db_manager.write_lock:
                    store.save(group)
                summary.groups += 1
                summary.members += len(group.members)

            if cancel_event.is_set():
                summary.cancelled = True
            summary.frames_computed = cache.computed

        logging.info(
            f"Verification done. Clusters={summary.clusters} Groups={summary.groups} "
            f"Members={summary.members} FramesHashed={summary.frames_computed}"
        )
        return summary

    def list_groups(self, limit: int = 50) -> List[DuplicateGroup]:
        with self.db_manager as conn:
            return GroupStore(conn).list_groups_with_members(limit)

    def _complete_files(self, db_ops: DBOperations) -> List[MediaFile]:
        files = db_ops.list_complete_media_files()
        if not files:
            raise NoCandidatesError("No files with complete metadata. Run a scan first.")
        return files
