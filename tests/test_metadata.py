import json
import subprocess
import pytest
from pathlib import Path

import video_dedupe.metadata.probe as probe_module
from video_dedupe.exceptions import FrameExtractionError, ProbeError
from video_dedupe.metadata.frames import FrameExtractor
from video_dedupe.metadata.probe import MetadataProbe, parse_frame_rate, sane_duration

# Mock MediaInfo class structure
class MockTrack:
    def __init__(self, track_type, **kwargs):
        self.track_type = track_type
        for k, v in kwargs.items():
            setattr(self, k, v)

class MockMediaInfo:
    tracks_for_test = []

    def __init__(self, tracks):
        self.tracks = tracks

    @classmethod
    def parse(cls, path):
        return cls(cls.tracks_for_test)

FFPROBE_OUTPUT = {
    "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "duration": "62.250000"},
    "streams": [
        {"codec_type": "audio", "codec_name": "aac"},
        {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080,
         "r_frame_rate": "30000/1001", "duration": "62.200000"},
        {"codec_type": "video", "codec_name": "mjpeg", "width": 320, "height": 240},
    ],
}

class FakeCompleted:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

def test_mediainfo_probe(monkeypatch):
    MockMediaInfo.tracks_for_test = [
        MockTrack("General", duration=5000, format="MPEG-4"),
        MockTrack("Video", width=1280, height=720, frame_rate="25.000", format="AVC"),
    ]
    monkeypatch.setattr(probe_module, "MediaInfo", MockMediaInfo)

    result = MetadataProbe().probe(Path("clip.mp4"))

    assert result.duration_sec == 5.0
    assert result.width == 1280
    assert result.height == 720
    assert result.fps == 25.0
    assert result.video_codec == "AVC"
    assert result.container == "MPEG-4"

def test_falls_back_to_ffprobe(monkeypatch):
    MockMediaInfo.tracks_for_test = [MockTrack("General", duration=None)]
    monkeypatch.setattr(probe_module, "MediaInfo", MockMediaInfo)
    captured = {}

    def fake_run(cmd, **kwargs):
        captured["cmd"] = cmd
        return FakeCompleted(stdout=json.dumps(FFPROBE_OUTPUT))

    monkeypatch.setattr(probe_module.subprocess, "run", fake_run)

    result = MetadataProbe(ffprobe_bin="/opt/ffprobe").probe(Path("clip.mp4"))

    assert captured["cmd"][0] == "/opt/ffprobe"
    assert "-show_streams" in captured["cmd"]
    assert result.duration_sec == 62.25
    assert (result.width, result.height) == (1920, 1080)
    assert result.fps == pytest.approx(29.97, abs=0.01)
    assert result.video_codec == "h264"
    assert result.container.startswith("mov")

def test_ffprobe_failure_raises_probe_error(monkeypatch):
    monkeypatch.setattr(probe_module, "MediaInfo", None)
    monkeypatch.setattr(probe_module.subprocess, "run",
                        lambda cmd, **kw: FakeCompleted(returncode=1, stderr="moov atom not found"))

    with pytest.raises(ProbeError):
        MetadataProbe().probe(Path("broken.mp4"))

def test_missing_ffprobe_binary_raises_probe_error(monkeypatch):
    monkeypatch.setattr(probe_module, "MediaInfo", None)

    def fake_run(cmd, **kw):
        raise FileNotFoundError("ffprobe")

    monkeypatch.setattr(probe_module.subprocess, "run", fake_run)
    with pytest.raises(ProbeError):
        MetadataProbe().probe(Path("clip.mp4"))

def test_partial_mediainfo_kept_when_ffprobe_unavailable(monkeypatch):
    MockMediaInfo.tracks_for_test = [MockTrack("General", duration=None),
                                     MockTrack("Video", width=640, height=360)]
    monkeypatch.setattr(probe_module, "MediaInfo", MockMediaInfo)

    def fake_run(cmd, **kw):
        raise subprocess.TimeoutExpired(cmd, 1)

    monkeypatch.setattr(probe_module.subprocess, "run", fake_run)
    result = MetadataProbe().probe(Path("clip.mp4"))
    assert result.duration_sec is None
    assert (result.width, result.height) == (640, 360)

def test_ffprobe_stream_duration_fills_missing_format_duration():
    data = {"format": {"format_name": "matroska,webm"},
            "streams": [{"codec_type": "video", "width": 10, "height": 10, "duration": "3.5"}]}
    assert MetadataProbe.parse_ffprobe_json(data).duration_sec == 3.5

@pytest.mark.parametrize("raw,expected", [
    ("12.5", 12.5),
    (12, 12.0),
    ("0", None),
    ("-4", None),
    ("0.05", None),
    (str(48 * 3600 + 1), None),
    ("N/A", None),
    (None, None),
])
def test_sane_duration(raw, expected):
    assert sane_duration(raw) == expected

@pytest.mark.parametrize("raw,expected", [
    ("30000/1001", 30000 / 1001),
    ("25/1", 25.0),
    ("24", 24.0),
    ("0/0", None),
    ("abc", None),
    (None, None),
])
def test_parse_frame_rate(raw, expected):
    assert parse_frame_rate(raw) == expected

def test_frame_extractor_fast_seek(monkeypatch):
    import video_dedupe.metadata.frames as frames_module
    calls = []

    def fake_run(cmd, **kw):
        calls.append(cmd)
        return FakeCompleted(stdout=b"\x89PNG...")

    monkeypatch.setattr(frames_module.subprocess, "run", fake_run)
    data = FrameExtractor(ffmpeg_bin="ffmpeg").extract_frame(Path("/v/a.mp4"), 2.5)

    assert data == b"\x89PNG..."
    assert len(calls) == 1
    cmd = calls[0]
    assert cmd.index("-ss") < cmd.index("-i")
    assert cmd[cmd.index("-ss") + 1] == "2.500"

def test_frame_extractor_retries_accurate_seek(monkeypatch):
    import video_dedupe.metadata.frames as frames_module
    calls = []

    def fake_run(cmd, **kw):
        calls.append(cmd)
        if len(calls) == 1:
            return FakeCompleted(stdout=b"")
        return FakeCompleted(stdout=b"png")

    monkeypatch.setattr(frames_module.subprocess, "run", fake_run)
    assert FrameExtractor().extract_frame(Path("/v/a.mp4"), 1.0) == b"png"
    assert calls[1].index("-i") < calls[1].index("-ss")

def test_frame_extractor_raises_after_both_attempts(monkeypatch):
    import video_dedupe.metadata.frames as frames_module
    monkeypatch.setattr(frames_module.subprocess, "run",
                        lambda cmd, **kw: FakeCompleted(returncode=1, stderr=b"Invalid data"))
    with pytest.raises(FrameExtractionError):
        FrameExtractor().extract_frame(Path("/v/a.mp4"), 1.0)
