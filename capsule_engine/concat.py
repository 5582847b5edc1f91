import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .errors import ConcatError
from .media import probe
from .transcoder import FfmpegTranscoder, MediaTranscoder


logger = logging.getLogger(__name__)

_STREAM_KEYS = ("codec_type", "codec_name", "width", "height", "pix_fmt", "sample_rate", "channels")


def quote_concat_path(path: str) -> str:
    """Quote a path for an ffconcat `file` directive."""
    return "'" + path.replace("'", "'\\''") + "'"


def write_concat_list(paths: Sequence[str], list_path: str) -> str:
    with open(list_path, "w", encoding="utf-8") as f:
        f.write("ffconcat version 1.0\n")
        for p in paths:
            f.write(f"file {quote_concat_path(Path(p).resolve().as_posix())}\n")
    return list_path


def stream_signature(path: str, ffprobe: Optional[str] = None) -> Optional[Tuple]:
    info = probe(path, ffprobe=ffprobe)
    streams = info.get("streams")
    if not streams:
        return None
    sig = [tuple(st.get(k) for k in _STREAM_KEYS) for st in streams]
    return tuple(sorted(sig, key=lambda s: str(s[0])))


class Concatenator:
    def __init__(self, transcoder: Optional[MediaTranscoder] = None, ffprobe: Optional[str] = None,
                 verify_streams: bool = True):
        self.transcoder = transcoder or FfmpegTranscoder()
        self.ffprobe = ffprobe
        self.verify_streams = verify_streams

    def _check_inputs(self, segments: Sequence[str]) -> None:
        if not segments:
            raise ConcatError("Nothing to concatenate")
        for p in segments:
            if not os.path.isfile(p) or os.path.getsize(p) == 0:
                raise ConcatError(f"Segment missing or empty: {p}")

        if not self.verify_streams:
            return
        reference = None
        for p in segments:
            sig = stream_signature(p, ffprobe=self.ffprobe)
            if sig is None:
                logger.warning("Could not probe %s, skipping codec parameter check", p)
                return
            if reference is None:
                reference = sig
            elif sig != reference:
                raise ConcatError(f"Codec parameters of {p} differ from {segments[0]}: {sig} != {reference}")

    def concatenate(self, segments: List[str], scratch_dir: str, capsule_id: str) -> str:
        """Join segments in exactly the given order by stream copy."""
        self._check_inputs(segments)
        list_path = write_concat_list(segments, str(Path(scratch_dir) / "concat.txt"))
        out = str(Path(scratch_dir) / f"capsule_{capsule_id}.mp4")
        self.transcoder.concat_stream_copy(list_path, out)
        logger.info("Concatenated %d segments into %s", len(segments), out)
        return out
