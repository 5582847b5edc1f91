import logging
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple, Type

from .errors import CapsuleError, ConcatError, RenderError
from .media import ffmpeg_bin


logger = logging.getLogger(__name__)

WIDTH = 1920
HEIGHT = 1080
FPS = 30
SILENCE = "anullsrc=channel_layout=stereo:sample_rate=48000"

# Every segment is encoded with these so the final join can be a stream copy
ENCODE_ARGS = [
    "-c:v", "libx264", "-preset", "veryfast", "-crf", "20",
    "-pix_fmt", "yuv420p", "-r", str(FPS),
    "-c:a", "aac", "-b:a", "192k", "-ar", "48000", "-ac", "2",
    "-movflags", "+faststart",
]

CANVAS_VF = f"scale={WIDTH}:{HEIGHT},setsar=1,fps={FPS},format=yuv420p"

Box = Tuple[int, int, int, int]  # x, y, width, height


class MediaTranscoder(ABC):
    @abstractmethod
    def loop_image_to_video(self, image: str, out: str, duration: Optional[float] = None,
                            audio: Optional[str] = None) -> str:
        """Still image as video; silent for `duration`, or as long as `audio`."""

    @abstractmethod
    def scale_and_overlay(self, background: str, video: str, out: str, box: Box,
                          source_audio: bool = True) -> str:
        """Fit `video` into `box` over the full-canvas `background` image."""

    @abstractmethod
    def concat_stream_copy(self, list_path: str, out: str) -> str:
        ...


def _run_ffmpeg(cmd: List[str], error_cls: Type[CapsuleError] = RenderError) -> None:
    """Run ffmpeg and raise with stderr tail on failure for better diagnostics."""
    try:
        proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as e:
        raise error_cls(f"Could not start {cmd[0]}: {e}") from e
    if proc.returncode != 0:
        stderr_tail = proc.stderr.decode("utf-8", errors="ignore")[-2000:]
        logger.error("ffmpeg failed (code %s): %s", proc.returncode, stderr_tail)
        raise error_cls(f"ffmpeg failed (code {proc.returncode}):\n{stderr_tail}")


class FfmpegTranscoder(MediaTranscoder):
    def __init__(self, ffmpeg: Optional[str] = None):
        self.ffmpeg = ffmpeg_bin(ffmpeg)

    def _base(self) -> List[str]:
        return [self.ffmpeg, "-y", "-nostdin", "-hide_banner", "-loglevel", "error"]

    def loop_image_to_video(self, image: str, out: str, duration: Optional[float] = None,
                            audio: Optional[str] = None) -> str:
        if audio is None and duration is None:
            raise ValueError("either duration or audio is required")
        cmd = self._base() + ["-loop", "1", "-framerate", str(FPS), "-i", image]
        if audio:
            # the image loops forever, so the audio track decides the length
            cmd += ["-i", audio, "-vf", CANVAS_VF, "-map", "0:v:0", "-map", "1:a:0", "-shortest"]
        else:
            cmd += [
                "-f", "lavfi", "-i", SILENCE,
                "-vf", CANVAS_VF, "-map", "0:v:0", "-map", "1:a:0",
                "-t", f"{duration:.3f}",
            ]
        _run_ffmpeg(cmd + ENCODE_ARGS + [out])
        return out

    def scale_and_overlay(self, background: str, video: str, out: str, box: Box,
                          source_audio: bool = True) -> str:
        x, y, bw, bh = box
        fc = ";".join([
            f"[1:v]scale={WIDTH}:{HEIGHT},setsar=1[bg]",
            f"[0:v]scale={bw}:{bh}:force_original_aspect_ratio=decrease,"
            "scale=trunc(iw/2)*2:trunc(ih/2)*2,setsar=1[fg]",
            f"[bg][fg]overlay=x={x}+({bw}-w)/2:y={y}+({bh}-h)/2:shortest=1,"
            f"fps={FPS},format=yuv420p[out]",
        ])
        cmd = self._base() + ["-i", video, "-loop", "1", "-framerate", str(FPS), "-i", background]
        if source_audio:
            amap = "0:a:0"
        else:
            cmd += ["-f", "lavfi", "-i", SILENCE]
            amap = "2:a:0"
        cmd += ["-filter_complex", fc, "-map", "[out]", "-map", amap, "-shortest"]
        _run_ffmpeg(cmd + ENCODE_ARGS + [out])
        return out

    def concat_stream_copy(self, list_path: str, out: str) -> str:
        # Concat without re-encode; codecs/params already match
        cmd = self._base() + [
            "-f", "concat", "-safe", "0",
            "-i", list_path,
            "-c", "copy",
            "-movflags", "+faststart",
            out,
        ]
        _run_ffmpeg(cmd, error_cls=ConcatError)
        return out
