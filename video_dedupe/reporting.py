import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .database.groups import GroupStore
from .database.ops import DBOperations
from .models import DuplicateGroup, GroupMember


def _modified_or_min(member: GroupMember) -> datetime:
    try:
        return datetime.fromisoformat(member.file.modified_at).replace(tzinfo=None)
    except (TypeError, ValueError):
        return datetime.min


def pick_best_member(group: DuplicateGroup) -> Optional[GroupMember]:
    """
    Suggests which copy to keep: most pixels, then largest file, then most
    recently modified. This is independent of the similarity ranking.
    """
    if not group.members:
        return None
    return max(
        group.members,
        key=lambda m: (m.file.pixels, m.file.size_bytes, _modified_or_min(m)),
    )


class ReportGenerator:
    def __init__(self, db_ops: DBOperations, store: GroupStore):
        self.db = db_ops
        self.store = store

    def generate_group_report(self, output_csv: Path, limit: int = 10000) -> int:
        """
        Writes one row per group member. Returns the number of groups written.
        """
        groups = self.store.list_groups_with_members(limit)
        logging.info(f"Generating report for {len(groups)} groups -> {output_csv}")

        headers = [
            "Group",
            "Rank",
            "Avg Distance",
            "Suggested",
            "Decision",
            "Path",
            "Exists",
            "Duration (s)",
            "Resolution",
            "Size (MiB)",
            "Codec",
            "Frames",
        ]

        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(headers)

            for group in groups:
                best = pick_best_member(group)
                for rank, member in enumerate(group.members):
                    mf = member.file
                    decision = self.db.get_decision(mf.id)
                    writer.writerow([
                        group.id,
                        rank,
                        f"{member.avg_dist:.1f}",
                        "keep" if member is best else "quarantine",
                        decision.decision if decision else "",
                        mf.path,
                        "yes" if Path(mf.path).exists() else "no",
                        f"{mf.duration_sec:.2f}" if mf.duration_sec is not None else "",
                        f"{mf.width}x{mf.height}" if mf.width and mf.height else "",
                        f"{mf.size_bytes / 1024 / 1024:.1f}",
                        mf.video_codec or "",
                        group.frames,
                    ])

        return len(groups)


def format_group(group: DuplicateGroup) -> List[str]:
    """Plain-text lines for console listing."""
    best = pick_best_member(group)
    lines = [
        f"Group {group.id}  items={len(group.members)}  algo={group.algorithm}  "
        f"frames={group.frames}  tol={group.tolerance_sec}  maxAvgDist={group.max_avg_dist}"
    ]
    for member in group.members:
        mf = member.file
        marker = "*" if member is best else " "
        dur = f"{mf.duration_sec:.2f}s" if mf.duration_sec is not None else "?"
        lines.append(f" {marker} [{mf.id}] avgDist={member.avg_dist:5.1f}  {mf.path}")
        lines.append(
            f"      dur={dur}  {mf.width}x{mf.height}  "
            f"size={mf.size_bytes // 1024 // 1024} MiB  codec={mf.video_codec or '?'}"
        )
    return lines
