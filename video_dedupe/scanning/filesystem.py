import os
import logging
import threading
from pathlib import Path
from typing import Iterator, Iterable, List, Optional, Set

from .. import config
from ..models import ScanRoot, normalize_path

class DiskScanner:
    def __init__(self, extensions: Optional[Set[str]] = None):
        self.extensions = extensions or config.VIDEO_EXTS

    def discover(self, roots: Iterable[ScanRoot], cancel_event: Optional[threading.Event] = None) -> List[Path]:
        """
        Collects candidate video files under every given root.

        Honors each root's recursion flag and exclude tokens. Missing roots
        are logged and skipped. A file reachable from two overlapping roots
        is returned once.
        """
        cancel_event = cancel_event or threading.Event()
        seen: Set[str] = set()
        found: List[Path] = []

        for root in roots:
            if cancel_event.is_set():
                break
            root_path = Path(root.path)
            if not root_path.is_dir():
                logging.warning(f"Missing root: {root.path}")
                continue

            logging.info(f"Discovering files in {root_path} (recurse={root.recurse})")
            for path in self._iter_files(root_path, root.recurse):
                if cancel_event.is_set():
                    break
                if path.suffix.lower() not in self.extensions:
                    continue
                if root.is_excluded(path):
                    logging.debug(f"Excluded: {path}")
                    continue
                key = normalize_path(path)
                if key in seen:
                    continue
                seen.add(key)
                found.append(path)

        logging.info(f"Discovered {len(found)} candidate files.")
        return found

    def _iter_files(self, root: Path, recurse: bool = True) -> Iterator[Path]:
        """Depth-first walker using os.scandir for speed."""
        stack = [root]
        while stack:
            current = stack.pop()

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except (OSError, PermissionError):
                logging.warning(f"Permission denied: {current}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            files = []
            for e in entries:
                if e.is_dir(follow_symlinks=False):
                    dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    files.append(Path(e.path))

            # Push dirs to stack (reversed so we process A before Z)
            if recurse:
                for d in reversed(dirs):
                    stack.append(d)

            for f in files:
                yield f
