import logging
from pathlib import Path
from typing import Optional

from .errors import RenderError
from .media import has_audio_stream
from .schemas import AUDIO, TEXT, VIDEO, MediaPart, RenderedSegment
from .transcoder import FfmpegTranscoder, MediaTranscoder


logger = logging.getLogger(__name__)

TEXT_DURATION_SEC = 5.0

# x, y, width, height on the 1920x1080 canvas
VERTICAL_BOX = (960, 0, 960, 1080)      # right half
HORIZONTAL_BOX = (288, 250, 1344, 756)  # 70% width, centred, lower area


def segment_path(scratch_dir: str, index: int) -> str:
    return str(Path(scratch_dir) / f"segment_{index}.mp4")


class SegmentRenderer:
    def __init__(self, transcoder: Optional[MediaTranscoder] = None, ffprobe: Optional[str] = None):
        self.transcoder = transcoder or FfmpegTranscoder()
        self.ffprobe = ffprobe

    def render_still(self, slide: str, index: int, scratch_dir: str, kind: str = TEXT) -> RenderedSegment:
        """Slide held for the fixed text duration (title, text, unavailable)."""
        out = segment_path(scratch_dir, index)
        self.transcoder.loop_image_to_video(slide, out, duration=TEXT_DURATION_SEC)
        return RenderedSegment(index=index, path=out, kind=kind)

    def render_segment(self, part: MediaPart, slide: str, index: int, scratch_dir: str) -> RenderedSegment:
        if part.kind == TEXT:
            return self.render_still(slide, index, scratch_dir, TEXT)

        if not part.media_path:
            raise RenderError(f"{part.kind} part for message {part.message.id} has no media")

        out = segment_path(scratch_dir, index)
        if part.kind == AUDIO:
            self.transcoder.loop_image_to_video(slide, out, audio=part.media_path)
        elif part.kind == VIDEO:
            box = VERTICAL_BOX if part.is_vertical else HORIZONTAL_BOX
            self._overlay_video(slide, part.media_path, out, box)
        else:
            raise RenderError(f"Unknown part kind: {part.kind}")
        return RenderedSegment(index=index, path=out, kind=part.kind)

    def _overlay_video(self, slide: str, video: str, out: str, box) -> None:
        audio = has_audio_stream(video, ffprobe=self.ffprobe)
        if audio is False:
            self.transcoder.scale_and_overlay(slide, video, out, box, source_audio=False)
            return
        try:
            self.transcoder.scale_and_overlay(slide, video, out, box, source_audio=True)
        except RenderError:
            if audio:
                raise
            # ffprobe could not tell; retry assuming the source is silent
            logger.warning("Overlay with source audio failed for %s, retrying with silence", video)
            self.transcoder.scale_and_overlay(slide, video, out, box, source_audio=False)
