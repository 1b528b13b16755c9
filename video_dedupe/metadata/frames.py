import logging
import subprocess
from pathlib import Path
from typing import List

from .. import config
from ..exceptions import FrameExtractionError


class FrameExtractor:
    """
    Grabs a single decoded frame as PNG bytes through the 'ffmpeg' binary.

    The fast path seeks on the input side (keyframe based). If that yields
    nothing, one retry seeks on the output side, which decodes up to the
    timestamp and tolerates broken indexes.
    """

    def __init__(self, ffmpeg_bin: str = config.FFMPEG_BIN, timeout: float = config.FRAME_TIMEOUT_SEC):
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout = timeout

    def extract_frame(self, path: Path, timestamp_sec: float) -> bytes:
        ts = f"{timestamp_sec:.3f}"
        try:
            return self._run(self._fast_seek_cmd(path, ts))
        except FrameExtractionError as e:
            logging.debug(f"Fast seek failed for {path} @ {ts}s, retrying accurate seek: {e}")
        return self._run(self._accurate_seek_cmd(path, ts))

    def _fast_seek_cmd(self, path: Path, ts: str) -> List[str]:
        return [
            self.ffmpeg_bin, "-v", "error", "-ss", ts, "-i", str(path),
            "-frames:v", "1", "-f", "image2pipe", "-vcodec", "png", "-",
        ]

    def _accurate_seek_cmd(self, path: Path, ts: str) -> List[str]:
        return [
            self.ffmpeg_bin, "-v", "error", "-i", str(path), "-ss", ts,
            "-frames:v", "1", "-f", "image2pipe", "-vcodec", "png", "-",
        ]

    def _run(self, cmd: List[str]) -> bytes:
        try:
            proc = subprocess.run(cmd, capture_output=True, timeout=self.timeout, check=False)
        except (OSError, subprocess.SubprocessError) as e:
            raise FrameExtractionError(f"{cmd[0]} could not run: {e}") from e

        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            raise FrameExtractionError(f"{cmd[0]} failed ({proc.returncode}): {stderr}")
        if not proc.stdout:
            raise FrameExtractionError(f"{cmd[0]} produced no output for {cmd}")
        return proc.stdout
