import argparse
import logging
import signal
import sqlite3
import sys
import threading
from pathlib import Path
from typing import Optional, Tuple

from tqdm import tqdm

from . import config
from .core import VideoDedupeApp
from .database.db import DBManager
from .database.groups import GroupStore
from .database.ops import DBOperations
from .exceptions import PreconditionError, QuarantineError
from .matching.verification import REFERENCE_POLICIES
from .metadata.frames import FrameExtractor
from .metadata.probe import MetadataProbe
from .models import MatchSettings, ScanProgress
from .organization.quarantine import QuarantineMover
from .reporting import ReportGenerator, format_group, pick_best_member

def setup_logging(verbose: bool, log_file: Optional[Path] = None):
    """Sets up logging to the console and optionally to a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )

    # Silence chatty libraries
    logging.getLogger("PIL").setLevel(logging.WARNING)

def parse_frames(text: str) -> Tuple[int, ...]:
    """'20,50,80' -> (20, 50, 80). Keeps 1..99, drops duplicates and junk."""
    positions = set()
    for part in text.split(','):
        part = part.strip()
        if part.isdigit() and 0 < int(part) < 100:
            positions.add(int(part))
    if not positions:
        raise argparse.ArgumentTypeError(f"No valid positions (1-99) in '{text}'")
    return tuple(sorted(positions))

def _add_match_args(p: argparse.ArgumentParser):
    p.add_argument("--tol", type=float, default=config.DEFAULT_TOLERANCE_SEC,
                   help="Duration tolerance in seconds (default: %(default)s)")
    p.add_argument("--min", type=int, default=config.DEFAULT_MIN_ITEMS, dest="min_items",
                   help="Minimum files per group (default: %(default)s)")

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Video Dedupe: find near-duplicate videos by metadata and frame hashes")

    p.add_argument("--db", type=Path, default=Path(config.DEFAULT_DB_NAME),
                   help="SQLite catalog path (default: %(default)s)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--log-file", type=Path, default=None, help="Also write the log to this file")
    p.add_argument("--ffprobe", default=config.FFPROBE_BIN, help="ffprobe executable")
    p.add_argument("--ffmpeg", default=config.FFMPEG_BIN, help="ffmpeg executable")
    p.add_argument("--workers", type=int, default=None,
                   help=f"Parallel external processes (default: {config.default_worker_count()})")

    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("roots-add", help="Register a directory to scan")
    s.add_argument("path", type=Path)
    s.add_argument("--no-recurse", action="store_true", help="Only scan the top-level directory")
    s.add_argument("--exclude", default=None, help="';'-separated substrings; matching paths are skipped")

    sub.add_parser("roots-list", help="List scan roots")

    s = sub.add_parser("roots-toggle", help="Enable/disable a scan root")
    s.add_argument("id", type=int)

    s = sub.add_parser("roots-edit", help="Change recursion or exclude tokens of a scan root")
    s.add_argument("id", type=int)
    s.add_argument("--recurse", dest="recurse", action="store_true", default=None)
    s.add_argument("--no-recurse", dest="recurse", action="store_false")
    s.add_argument("--exclude", default=None, help="New exclude tokens ('' clears them)")

    sub.add_parser("scan", help="Discover and probe files under enabled roots")

    s = sub.add_parser("files-list", help="Show recently cataloged files")
    s.add_argument("--limit", type=int, default=50)

    s = sub.add_parser("candidates", help="List duration/resolution clusters without sampling frames")
    _add_match_args(s)

    s = sub.add_parser("verify", help="Verify clusters with frame hashes and store duplicate groups")
    _add_match_args(s)
    s.add_argument("--maxdist", type=float, default=config.DEFAULT_MAX_AVG_DIST,
                   help="Maximum average Hamming distance, 0-64 (default: %(default)s)")
    s.add_argument("--frames", type=parse_frames, default=config.DEFAULT_SAMPLE_POSITIONS,
                   help="Sample positions in percent, e.g. 20,50,80")
    s.add_argument("--no-clear", action="store_true", help="Keep groups from previous runs")
    s.add_argument("--reference", choices=sorted(REFERENCE_POLICIES), default=config.DEFAULT_REFERENCE_POLICY,
                   help="How the reference file of a cluster is chosen (default: %(default)s)")

    s = sub.add_parser("groups", help="Show stored duplicate groups")
    s.add_argument("--limit", type=int, default=config.DEFAULT_GROUP_LIST_LIMIT)

    s = sub.add_parser("report", help="Write stored groups to a CSV file")
    s.add_argument("output", type=Path)

    s = sub.add_parser("keep", help="Mark a file as keep")
    s.add_argument("file_id", type=int)

    s = sub.add_parser("keep-best", help="Mark the suggested best member of a group as keep")
    s.add_argument("group_id", type=int)

    s = sub.add_parser("quarantine", help="Move a file into the quarantine directory")
    s.add_argument("file_id", type=int)
    s.add_argument("--to", type=Path, required=True, dest="quarantine_root")
    s.add_argument("--dry-run", action="store_true", help="Simulate without moving")

    return p.parse_args(argv)

def _install_cancel_handler(cancel_event: threading.Event):
    """First Ctrl-C asks the pipeline to stop; a second one aborts."""
    def handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logging.warning("Cancellation requested, finishing in-flight work...")
        cancel_event.set()
    signal.signal(signal.SIGINT, handler)

def _scan_progress_bar():
    bar = tqdm(total=0, desc="Scanning", unit="file")

    def sink(p: ScanProgress):
        if bar.total != p.discovered:
            bar.total = p.discovered
            bar.refresh()
        bar.n = p.processed
        bar.set_postfix(ok=p.probed_ok, fail=p.probed_fail, skip=p.skipped)
        if p.current_path is None and p.processed:
            bar.close()
    return sink

def _run_roots_command(args, db_ops: DBOperations):
    if args.command == "roots-add":
        root_id = db_ops.add_scan_root(args.path, recurse=not args.no_recurse, exclude_tokens=args.exclude)
        print(f"Added root id={root_id} path={args.path}")
    elif args.command == "roots-list":
        for r in db_ops.list_scan_roots():
            flags = f"{'on ' if r.enabled else 'off'} {'rec' if r.recurse else 'top'}"
            print(f"{r.id}\t{flags}\t{r.path}\t{r.exclude_tokens or ''}")
    elif args.command == "roots-toggle":
        if not db_ops.toggle_scan_root(args.id):
            raise PreconditionError(f"No scan root with id={args.id}")
        print(f"Toggled root id={args.id}")
    elif args.command == "roots-edit":
        if not db_ops.update_scan_root(args.id, recurse=args.recurse, exclude_tokens=args.exclude):
            raise PreconditionError(f"Nothing changed for root id={args.id}")
        print(f"Updated root id={args.id}")

def _run_decision_command(args, conn: sqlite3.Connection):
    db_ops = DBOperations(conn)
    if args.command == "keep":
        media = db_ops.get_media_file(args.file_id)
        if media is None:
            raise PreconditionError(f"No file with id={args.file_id}")
        db_ops.upsert_decision(media.id, "keep", note=media.path)
        print(f"Marked KEEP: {media.path}")
    elif args.command == "keep-best":
        group = GroupStore(conn).get_group(args.group_id)
        if group is None or not group.members:
            raise PreconditionError(f"No group with id={args.group_id}")
        best = pick_best_member(group)
        db_ops.upsert_decision(best.file.id, "keep", note=best.file.path)
        print(f"Best marked KEEP: {best.file.path}")
        for m in group.members:
            if m is not best:
                print(f"  suggest quarantine: [{m.file.id}] {m.file.path}")
    elif args.command == "quarantine":
        media = db_ops.get_media_file(args.file_id)
        if media is None:
            raise PreconditionError(f"No file with id={args.file_id}")
        mover = QuarantineMover(db_ops, args.quarantine_root)
        dest = mover.quarantine(media, dry_run=args.dry_run)
        if dest:
            print(f"Moved to quarantine: {dest}")

def run(args) -> int:
    cancel_event = threading.Event()

    if args.command.startswith("roots-"):
        with DBManager(args.db) as conn:
            _run_roots_command(args, DBOperations(conn))
        return 0

    if args.command in ("keep", "keep-best", "quarantine"):
        with DBManager(args.db) as conn:
            _run_decision_command(args, conn)
        return 0

    if args.command == "files-list":
        with DBManager(args.db) as conn:
            for f in DBOperations(conn).list_media_files(limit=args.limit):
                dur = f"{f.duration_sec:.2f}" if f.duration_sec is not None else "-"
                res = f"{f.width}x{f.height}" if f.width and f.height else "-"
                print(f"{f.id}\t{f.size_bytes}\t{dur}\t{res}\t{f.modified_at}\t{f.path}")
        return 0

    if args.command == "report":
        with DBManager(args.db) as conn:
            count = ReportGenerator(DBOperations(conn), GroupStore(conn)).generate_group_report(args.output)
        print(f"Wrote {count} groups to {args.output}")
        return 0

    app = VideoDedupeApp(
        args.db,
        probe=MetadataProbe(ffprobe_bin=args.ffprobe),
        extractor=FrameExtractor(ffmpeg_bin=args.ffmpeg),
        max_workers=args.workers,
    )

    if args.command == "groups":
        groups = app.list_groups(limit=args.limit)
        for g in groups:
            print("\n".join(format_group(g)))
            print()
        print(f"{len(groups)} groups.")
        return 0

    if args.command == "candidates":
        settings = MatchSettings(tolerance_sec=args.tol, min_items=args.min_items)
        clusters = app.candidates(settings)
        for no, cluster in enumerate(clusters, start=1):
            avg_dur = sum(f.duration_sec for f in cluster) / len(cluster)
            print(f"\nGroup {no}  {cluster[0].width}x{cluster[0].height}  ~{avg_dur:.2f}s  items={len(cluster)}")
            for f in sorted(cluster, key=lambda x: x.size_bytes, reverse=True):
                print(f"  - {f.path}")
                print(f"    dur={f.duration_sec:.2f}s  size={f.size_bytes // 1024 // 1024} MiB  codec={f.video_codec or '?'}")
        if not clusters:
            print(f"No candidates found. Try a larger tolerance: --tol={args.tol * 2}")
        return 0

    _install_cancel_handler(cancel_event)

    if args.command == "scan":
        result = app.scan(progress=_scan_progress_bar(), cancel_event=cancel_event)
        print(
            f"Done. Discovered={result.discovered} Processed={result.processed} "
            f"ProbedOK={result.probed_ok} ProbeFailed={result.probed_fail} Skipped={result.skipped}"
            + (" (cancelled)" if result.cancelled else "")
        )
        return 130 if result.cancelled else 0

    if args.command == "verify":
        settings = MatchSettings(
            tolerance_sec=args.tol,
            min_items=args.min_items,
            sample_positions=args.frames,
            max_avg_dist=args.maxdist,
            clear_existing=not args.no_clear,
            reference_policy=args.reference,
        )
        summary = app.verify(settings, cancel_event=cancel_event)
        print(
            f"Done. Clusters={summary.clusters} Groups={summary.groups} Members={summary.members} "
            f"FramesHashed={summary.frames_computed}" + (" (cancelled)" if summary.cancelled else "")
        )
        if summary.groups == 0 and not summary.cancelled:
            print("No verified duplicates found. Try --tol=0.5 or --maxdist=12 or --frames=50")
        return 130 if summary.cancelled else 0

    raise ValueError(f"Unknown command: {args.command}")

def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        sys.exit(run(args))
    except PreconditionError as e:
        logging.error(str(e))
        sys.exit(1)
    except QuarantineError as e:
        logging.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(130)
    except Exception:
        logging.exception("Fatal error.")
        sys.exit(1)

if __name__ == "__main__":
    main()
