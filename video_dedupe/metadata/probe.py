import logging
import subprocess
import json
from pathlib import Path
from typing import Optional, Any, Dict

from .. import config
from ..exceptions import ProbeError
from ..models import ProbeResult

# Type hint 'Any' prevents Pylance from complaining about "None" having no attribute "parse"
MediaInfo: Any = None
try:
    from pymediainfo import MediaInfo
except ImportError:
    MediaInfo = None


def sane_duration(value) -> Optional[float]:
    """Seconds as float, or None for missing, non-positive or implausibly long values."""
    if value in (None, ""):
        return None
    try:
        d = float(value)
    except (TypeError, ValueError):
        return None
    if config.MIN_PROBE_DURATION_SEC < d <= config.MAX_PROBE_DURATION_SEC:
        return d
    return None


def parse_frame_rate(value) -> Optional[float]:
    """Accepts '30000/1001', '25' or a number."""
    if value in (None, ""):
        return None
    text = str(value).strip()
    try:
        if '/' in text:
            num, den = text.split('/', 1)
            den_f = float(den)
            if den_f == 0:
                return None
            return float(num) / den_f
        return float(text)
    except ValueError:
        return None


def _to_int(value) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class MetadataProbe:
    """
    Reads duration, resolution, frame rate, codec and container of a video.

    Strategies:
      - 'pymediainfo' (fast, in-process wrapper around libmediainfo).
      - 'ffprobe' JSON output (robust fallback, requires system install).
    """

    def __init__(self, ffprobe_bin: str = config.FFPROBE_BIN, timeout: float = config.PROBE_TIMEOUT_SEC):
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout

    def probe(self, path: Path) -> ProbeResult:
        """
        Returns probe attributes for path.
        Raises ProbeError if neither strategy yields duration or resolution.
        """
        # Strategy 1: MediaInfo
        partial = ProbeResult()
        if MediaInfo is not None:
            try:
                partial = self._probe_mediainfo(path)
                if partial.duration_sec is not None and partial.width is not None:
                    return partial
            except Exception as e:
                logging.debug(f"MediaInfo failed for {path}: {e}")

        # Strategy 2: ffprobe
        try:
            result = self._probe_ffprobe(path)
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            if partial.has_data:
                return partial
            raise ProbeError(f"ffprobe failed for {path}: {e}") from e

        if not result.has_data:
            raise ProbeError(f"No usable video metadata in {path}")
        return result

    # --- Internal Extraction Helpers ---

    def _probe_mediainfo(self, path: Path) -> ProbeResult:
        mi = MediaInfo.parse(str(path))
        result = ProbeResult()

        for track in mi.tracks:
            if track.track_type == "General":
                # MediaInfo duration is in milliseconds
                ms = getattr(track, "duration", None)
                if ms:
                    result.duration_sec = sane_duration(float(ms) / 1000.0)
                result.container = getattr(track, "format", None)
            elif track.track_type == "Video" and result.width is None:
                # First video stream only
                result.width = _to_int(getattr(track, "width", None))
                result.height = _to_int(getattr(track, "height", None))
                result.fps = parse_frame_rate(getattr(track, "frame_rate", None))
                result.video_codec = getattr(track, "format", None)
                if result.duration_sec is None and getattr(track, "duration", None):
                    result.duration_sec = sane_duration(float(track.duration) / 1000.0)
        return result

    def _probe_ffprobe(self, path: Path) -> ProbeResult:
        cmd = [
            self.ffprobe_bin, "-v", "error", "-print_format", "json",
            "-show_format", "-show_streams", str(path),
        ]
        proc = subprocess.run(
            cmd, capture_output=True, text=True, timeout=self.timeout, check=False,
        )
        if proc.returncode != 0:
            raise subprocess.SubprocessError(f"exit {proc.returncode}: {proc.stderr.strip()}")
        if not proc.stdout.strip():
            raise ValueError("ffprobe returned empty output")

        return self.parse_ffprobe_json(json.loads(proc.stdout))

    @staticmethod
    def parse_ffprobe_json(data: Dict[str, Any]) -> ProbeResult:
        result = ProbeResult()
        fmt = data.get("format") or {}
        result.container = fmt.get("format_name")
        result.duration_sec = sane_duration(fmt.get("duration"))

        for stream in data.get("streams") or []:
            if stream.get("codec_type") != "video":
                continue
            result.width = _to_int(stream.get("width"))
            result.height = _to_int(stream.get("height"))
            result.video_codec = stream.get("codec_name")
            result.fps = parse_frame_rate(stream.get("r_frame_rate"))
            # Stream duration fills in when the container has none
            if result.duration_sec is None:
                result.duration_sec = sane_duration(stream.get("duration"))
            break

        return result
