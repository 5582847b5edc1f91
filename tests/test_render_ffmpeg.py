import shutil
import subprocess
from pathlib import Path

import pytest

from capsule_engine.concat import Concatenator
from capsule_engine.media import MediaFetcher, detect_orientation, duration_of, ffmpeg_bin, probe
from capsule_engine.schemas import AUDIO, TEXT, VIDEO, CapsuleInfo, MediaPart, Message
from capsule_engine.segments import SegmentRenderer
from capsule_engine.slides import SlideRenderer
from capsule_engine.transcoder import FfmpegTranscoder


pytestmark = pytest.mark.skipif(shutil.which("ffprobe") is None, reason="ffprobe not installed")


def _run(cmd: list[str]) -> None:
    proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    if proc.returncode != 0:
        raise RuntimeError(proc.stderr.decode("utf-8", errors="ignore")[-2000:])


def _gen_test_video(path: str, duration: float, size: str) -> None:
    _run([
        ffmpeg_bin(), "-y", "-nostdin", "-hide_banner", "-loglevel", "error",
        "-f", "lavfi", "-i", f"testsrc=size={size}:rate=30",
        "-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}",
        "-t", f"{duration:.3f}", "-c:v", "libx264", "-pix_fmt", "yuv420p",
        "-c:a", "aac", "-ar", "48000", "-ac", "2", path,
    ])


def _gen_test_audio(path: str, duration: float) -> None:
    _run([
        ffmpeg_bin(), "-y", "-nostdin", "-hide_banner", "-loglevel", "error",
        "-f", "lavfi", "-i", f"sine=frequency=220:duration={duration}",
        "-c:a", "aac", "-ar", "48000", "-ac", "2", path,
    ])


def _video_size(path: str):
    for st in probe(path).get("streams") or []:
        if st.get("codec_type") == "video":
            return st["width"], st["height"]
    return None


def test_capsule_segments_concatenate_without_losing_time(tmp_path, background_image):
    try:
        _gen_test_video(str(tmp_path / "wide.mp4"), 3.0, "1280x720")
        _gen_test_video(str(tmp_path / "tall.mp4"), 2.0, "720x1280")
        _gen_test_audio(str(tmp_path / "voice.m4a"), 3.0)
    except (OSError, RuntimeError) as e:
        pytest.skip(f"ffmpeg unavailable: {e}")

    scratch = str(tmp_path / "scratch")
    Path(scratch).mkdir()
    fetcher = MediaFetcher()
    slides = SlideRenderer(background_image, fetcher)
    transcoder = FfmpegTranscoder()
    renderer = SegmentRenderer(transcoder)
    capsule = CapsuleInfo(id="C1", name="Dana")

    def msg(name):
        return Message(id=name, capsule_id="C1", contributor_name=name)

    wide = fetcher.fetch(str(tmp_path / "wide.mp4"), scratch)
    tall = fetcher.fetch(str(tmp_path / "tall.mp4"), scratch)
    parts = [
        MediaPart(kind=TEXT, message=msg("Ann"), caption="Thanks for everything"),
        MediaPart(kind=AUDIO, message=msg("Ben"), caption="Audio Tribute",
                  media_path=fetcher.fetch(str(tmp_path / "voice.m4a"), scratch)),
        MediaPart(kind=VIDEO, message=msg("Cal"), caption="Video Content", media_path=wide,
                  dimensions=detect_orientation(wide)),
        MediaPart(kind=VIDEO, message=msg("Dee"), caption="Video Content", media_path=tall,
                  dimensions=detect_orientation(tall)),
    ]
    assert parts[3].is_vertical and not parts[2].is_vertical

    segments = [renderer.render_still(slides.render_title_slide(capsule, scratch), 0, scratch, kind="title")]
    for part in parts:
        slide = slides.render_slide(part.caption, part.message.contributor_name, capsule, part.kind, scratch)
        segments.append(renderer.render_segment(part, slide, len(segments), scratch))

    for seg in segments:
        assert _video_size(seg.path) == (1920, 1080)

    final = Concatenator(transcoder).concatenate([s.path for s in segments], scratch, "C1")

    total = sum(duration_of(s.path) for s in segments)
    assert total == pytest.approx(5 + 5 + 3 + 3 + 2, abs=1.0)
    assert duration_of(final) == pytest.approx(total, abs=0.5)
