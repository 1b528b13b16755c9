import shutil
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..database.ops import DBOperations
from ..exceptions import QuarantineError
from ..models import MediaFile

class QuarantineMover:
    """
    Moves rejected copies into a quarantine directory and records the
    decision in the catalog. Files are never deleted.
    """

    def __init__(self, db_ops: DBOperations, quarantine_root: Path):
        self.db = db_ops
        self.quarantine_root = quarantine_root

    def target_for(self, src: Path) -> Path:
        """Destination path; a name clash gets a timestamp suffix."""
        target = self.quarantine_root / src.name
        if target.exists():
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            target = self.quarantine_root / f"{src.stem}_{stamp}{src.suffix}"
        return target

    def quarantine(self, media: MediaFile, dry_run: bool = False) -> Optional[Path]:
        src = Path(media.path)
        if not src.is_file():
            raise QuarantineError(f"File not found: {src}")

        dest = self.target_for(src)

        if dry_run:
            logging.info(f"[DRY RUN] Move {src} -> {dest}")
            return None

        try:
            self.quarantine_root.mkdir(parents=True, exist_ok=True)
            shutil.move(str(src), str(dest))
        except OSError as e:
            raise QuarantineError(f"Failed to move {src} -> {dest}: {e}") from e

        self.db.upsert_decision(media.id, "quarantine", note=f"moved to: {dest}")
        logging.info(f"Moved to quarantine: {dest}")
        return dest

    def keep(self, media: MediaFile):
        self.db.upsert_decision(media.id, "keep", note=media.path)
        logging.info(f"Marked KEEP: {media.path}")
