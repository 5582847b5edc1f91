import json
import logging
import os
import shutil
import subprocess
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import imageio_ffmpeg
import requests

from .errors import FetchError
from .schemas import Dimensions
from .utils import ensure_dir, safe_unlink


logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = Dimensions(width=1920, height=1080, is_vertical=False)


def ffmpeg_bin(override: Optional[str] = None) -> str:
    exe = override or os.environ.get("FFMPEG_BIN")
    if exe:
        return exe
    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError:
        return "ffmpeg"


def ffprobe_bin(override: Optional[str] = None) -> str:
    # imageio-ffmpeg only bundles ffmpeg, so ffprobe comes from PATH
    return override or os.environ.get("FFPROBE_BIN") or "ffprobe"


def probe(path: str, ffprobe: Optional[str] = None) -> Dict[str, Any]:
    """
    Use ffprobe to read stream and format metadata. If ffprobe is unavailable
    or the file is unreadable, return an empty dict.
    """
    cmd = [
        ffprobe_bin(ffprobe),
        "-v", "error",
        "-show_streams",
        "-show_entries", "format=duration",
        "-of", "json",
        path,
    ]
    try:
        out = subprocess.check_output(cmd, stderr=subprocess.STDOUT)
        return json.loads(out.decode("utf-8"))
    except (OSError, subprocess.CalledProcessError, ValueError) as e:
        logger.debug("ffprobe failed for %s: %s", path, e)
        return {}


def _rotation_degrees(stream: Dict[str, Any]) -> int:
    tags = stream.get("tags") or {}
    if "rotate" in tags:
        try:
            return int(str(tags.get("rotate")).strip() or 0)
        except ValueError:
            return 0
    for sd in stream.get("side_data_list") or []:
        if isinstance(sd, dict) and sd.get("rotation") is not None:
            try:
                return int(sd["rotation"])
            except (TypeError, ValueError):
                return 0
    return 0


def detect_orientation(path: str, ffprobe: Optional[str] = None) -> Dimensions:
    """
    Classify the first video/image stream as vertical or horizontal.
    Orientation is a layout hint only: any failure yields 1920x1080 horizontal.
    """
    info = probe(path, ffprobe=ffprobe)
    for st in info.get("streams") or []:
        width, height = st.get("width"), st.get("height")
        if not width or not height:
            continue
        width, height = int(width), int(height)
        # ffmpeg auto-rotates on decode, so lay out by display orientation
        if _rotation_degrees(st) % 180 == 90:
            width, height = height, width
        return Dimensions(width=width, height=height, is_vertical=height > width)

    logger.warning("Could not detect dimensions of %s, assuming horizontal", path)
    return Dimensions(
        width=DEFAULT_DIMENSIONS.width,
        height=DEFAULT_DIMENSIONS.height,
        is_vertical=DEFAULT_DIMENSIONS.is_vertical,
    )


def has_audio_stream(path: str, ffprobe: Optional[str] = None) -> Optional[bool]:
    """True/False when ffprobe could tell, None when it could not."""
    info = probe(path, ffprobe=ffprobe)
    streams = info.get("streams")
    if streams is None:
        return None
    return any(st.get("codec_type") == "audio" for st in streams)


def duration_of(path: str, ffprobe: Optional[str] = None) -> Optional[float]:
    info = probe(path, ffprobe=ffprobe)
    try:
        return float((info.get("format") or {}).get("duration"))
    except (TypeError, ValueError):
        return None


class MediaFetcher:
    """Streams remote media into uniquely named scratch files."""

    def __init__(self, scratch_dir: Optional[str] = None, timeout: float = 60.0,
                 session: Optional[requests.Session] = None):
        self.scratch_dir = scratch_dir
        self.timeout = timeout
        self.session = session or requests.Session()

    def _target(self, url: str, dest_dir: str) -> Path:
        suffix = Path(urlparse(url).path).suffix
        return Path(dest_dir) / f"in_{uuid.uuid4().hex}{suffix}"

    def fetch(self, url: str, dest_dir: Optional[str] = None) -> str:
        """
        Download http(s) URLs, copy local paths. The caller owns the returned file.
        """
        dest_dir = dest_dir or self.scratch_dir or tempfile.gettempdir()
        ensure_dir(dest_dir)
        local = self._target(url, dest_dir)

        if url.startswith("http://") or url.startswith("https://"):
            try:
                with self.session.get(url, stream=True, timeout=self.timeout) as r:
                    r.raise_for_status()
                    with open(local, "wb") as f:
                        for chunk in r.iter_content(chunk_size=8192):
                            if chunk:
                                f.write(chunk)
            except (requests.RequestException, OSError) as e:
                safe_unlink(local)
                raise FetchError(f"Download of {url} failed: {e}") from e
            logger.debug("Fetched %s -> %s", url, local)
            return str(local)

        if os.path.isfile(url):
            try:
                shutil.copyfile(url, local)
            except OSError as e:
                safe_unlink(local)
                raise FetchError(f"Copy of {url} failed: {e}") from e
            return str(local)
        raise FetchError(f"Media not found: {url}")
