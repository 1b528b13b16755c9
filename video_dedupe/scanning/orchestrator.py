import logging
import threading
from dataclasses import replace
from datetime import datetime, UTC
from pathlib import Path
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional, Tuple

from .. import config
from ..database.ops import DBOperations
from ..exceptions import NoEnabledRootsError, ProbeError
from ..metadata.probe import MetadataProbe
from ..models import MediaFile, ScanProgress, normalize_path
from .filesystem import DiskScanner

ProgressSink = Callable[[ScanProgress], None]

class ScanOrchestrator:
    """
    Discovers files under the enabled scan roots and catalogs their metadata.

    Probes run on a small thread pool. The calling thread is the only one
    that touches the database and the progress sink: it consumes finished
    probes, upserts them, and reports after every file.
    """

    def __init__(self,
                 db_ops: DBOperations,
                 probe: Optional[MetadataProbe] = None,
                 scanner: Optional[DiskScanner] = None,
                 max_workers: Optional[int] = None):
        self.db = db_ops
        self.probe = probe or MetadataProbe()
        self.scanner = scanner or DiskScanner()
        self.max_workers = max_workers or config.default_worker_count()

    def run(self,
            progress: Optional[ProgressSink] = None,
            cancel_event: Optional[threading.Event] = None) -> ScanProgress:
        cancel_event = cancel_event or threading.Event()

        roots = self.db.list_enabled_scan_roots()
        if not roots:
            raise NoEnabledRootsError("No enabled scan roots. Add one with roots-add or toggle one on.")

        files = self.scanner.discover(roots, cancel_event)
        state = ScanProgress(discovered=len(files))
        self._report(progress, state)

        if cancel_event.is_set():
            state.cancelled = True
            return state

        logging.info(f"Probing {len(files)} files with {self.max_workers} workers")

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_path = {executor.submit(self._probe_one, path): path for path in files}

            for future in as_completed(future_to_path):
                if cancel_event.is_set():
                    # In-flight probes finish; queued ones never start.
                    executor.shutdown(wait=True, cancel_futures=True)
                    state.cancelled = True
                    break

                path = future_to_path[future]
                state.processed += 1
                state.current_path = str(path)
                try:
                    record, probed = future.result()
                except OSError as e:
                    # Vanished or unreadable between discovery and stat
                    logging.warning(f"Skip: {path} :: {e}")
                    state.skipped += 1
                    self._report(progress, state)
                    continue

                self.db.upsert_media_file(record)
                if probed:
                    state.probed_ok += 1
                else:
                    state.probed_fail += 1
                self._report(progress, state)

        state.current_path = None
        self._report(progress, state)

        if state.cancelled:
            logging.warning(f"Scan cancelled after {state.processed}/{state.discovered} files.")
        else:
            logging.info(
                f"Scan complete. Processed={state.processed} OK={state.probed_ok} "
                f"Failed={state.probed_fail} Skipped={state.skipped}"
            )
        return state

    def _probe_one(self, path: Path) -> Tuple[MediaFile, bool]:
        """Runs on a worker thread. Returns the record and whether probing succeeded."""
        st = path.stat()
        record = MediaFile(
            path=normalize_path(path),
            size_bytes=st.st_size,
            modified_at=datetime.fromtimestamp(st.st_mtime, UTC).isoformat(),
            scanned_at=datetime.now(UTC).isoformat(),
        )
        try:
            record.with_probe(self.probe.probe(path))
            return record, True
        except ProbeError as e:
            logging.warning(f"Probe failed: {path} :: {e}")
            return record, False

    @staticmethod
    def _report(progress: Optional[ProgressSink], state: ScanProgress):
        if progress is not None:
            progress(replace(state))
