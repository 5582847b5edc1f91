import logging
import os
import textwrap
import uuid
from pathlib import Path
from typing import Optional

from .compositor import ImageCompositor, PillowCompositor
from .errors import AssetMissing
from .media import MediaFetcher
from .schemas import TEXT, UNAVAILABLE_CAPTION, CapsuleInfo
from .utils import ensure_dir, safe_unlink


logger = logging.getLogger(__name__)

CANVAS = (1920, 1080)

BODY_FONT = 64
NAME_FONT = 48
CAPSULE_FONT = 48
TITLE_FONT = 72
ADMIN_FONT = 32

BODY_WRAP_CHARS = 48
BODY_MAX_LINES = 6
BODY_MIN_FONT = 40
ELLIPSIS = "..."

# body block grows upwards from just above the contributor name; its top
# must stay clear of the 300x300 capsule image in the corner
BODY_OFFSET = (150, 356)
NAME_OFFSET = (150, 424)
BODY_TOP = 370


class SlideRenderer:
    """
    Builds the 1920x1080 still behind every segment. The canvas is always laid
    out horizontally, whatever the orientation of the contributor's media.
    """

    def __init__(self, background_image: str, fetcher: MediaFetcher,
                 compositor: Optional[ImageCompositor] = None):
        self.background_image = background_image
        self.fetcher = fetcher
        self.compositor = compositor or PillowCompositor()

    def _background(self):
        if not os.path.isfile(self.background_image):
            raise AssetMissing(
                f"Background image not found: {self.background_image}. "
                "Add the branded background before starting the worker."
            )
        return self.compositor.render_background(self.background_image, CANVAS)

    def _slide_path(self, dest_dir: str, prefix: str) -> str:
        ensure_dir(dest_dir)
        return str(Path(dest_dir) / f"{prefix}_{uuid.uuid4().hex}.png")

    def _overlay_remote(self, canvas, url: str, size, gravity: str, offset, dest_dir: str) -> None:
        # downloaded branding is only needed for this one composite
        local = None
        try:
            local = self.fetcher.fetch(url, dest_dir)
            self.compositor.overlay_image(canvas, local, size, gravity, offset)
        finally:
            safe_unlink(local)

    def _apply_admin_branding(self, slide_path: str, capsule: Optional[CapsuleInfo], dest_dir: str) -> None:
        """Second pass over the saved slide: admin name bottom-left, logo bottom-right."""
        admin = capsule.admin if capsule else None
        if not admin or not (admin.name or admin.logo_image):
            return
        canvas = self.compositor.open(slide_path)
        self.compositor.overlay_text(canvas, self.compositor.escape(admin.name), "southwest", (50, 50), ADMIN_FONT)
        if admin.logo_image:
            self._overlay_remote(canvas, admin.logo_image, (150, 150), "southeast", (50, 50), dest_dir)
        self.compositor.save(canvas, slide_path)

    def _fit_body(self, canvas, text: str):
        """Wrap the message, truncate it to BODY_MAX_LINES and pick the largest font that fits."""
        if not text:
            return "", BODY_FONT
        lines = []
        for paragraph in text.split("\n"):
            lines.extend(textwrap.wrap(paragraph, BODY_WRAP_CHARS) or [""])
        if len(lines) > BODY_MAX_LINES:
            lines = lines[:BODY_MAX_LINES]
            lines[-1] = lines[-1][:BODY_WRAP_CHARS - len(ELLIPSIS)].rstrip() + ELLIPSIS
            logger.debug("Message truncated to %d lines", BODY_MAX_LINES)
        body = "\n".join(lines).strip("\n")

        for size in range(BODY_FONT, BODY_MIN_FONT - 1, -4):
            if self.compositor.text_bbox(canvas, body, "west_bottom", BODY_OFFSET, size)[1] >= BODY_TOP:
                return body, size
        return body, BODY_MIN_FONT

    def render_slide(self, text: Optional[str], contributor_name: Optional[str],
                     capsule: Optional[CapsuleInfo], kind: str = TEXT, dest_dir: str = ".") -> str:
        canvas = self._background()
        esc = self.compositor.escape
        body, body_font = self._fit_body(canvas, esc(text))

        self.compositor.overlay_text(canvas, body, "west_bottom", BODY_OFFSET, body_font)
        self.compositor.overlay_text(canvas, esc(contributor_name), "west", NAME_OFFSET, NAME_FONT)
        if capsule:
            self.compositor.overlay_text(canvas, esc(capsule.name), "north", (0, 50), CAPSULE_FONT)
            if capsule.image:
                self._overlay_remote(canvas, capsule.image, (300, 300), "northwest", (50, 50), dest_dir)

        out = self.compositor.save(canvas, self._slide_path(dest_dir, f"slide_{kind}"))
        self._apply_admin_branding(out, capsule, dest_dir)
        return out

    def render_title_slide(self, capsule: CapsuleInfo, dest_dir: str = ".") -> str:
        canvas = self._background()
        name = self.compositor.escape(capsule.name)
        if capsule.image:
            self.compositor.overlay_text(canvas, name, "center", (0, -100), TITLE_FONT)
            self._overlay_remote(canvas, capsule.image, (400, 400), "center", (0, 200), dest_dir)
        else:
            self.compositor.overlay_text(canvas, name, "center", (0, 0), TITLE_FONT)

        out = self.compositor.save(canvas, self._slide_path(dest_dir, "title"))
        self._apply_admin_branding(out, capsule, dest_dir)
        return out

    def render_unavailable_slide(self, contributor_name: Optional[str], capsule: Optional[CapsuleInfo],
                                 dest_dir: str = ".") -> str:
        return self.render_slide(UNAVAILABLE_CAPTION, contributor_name, capsule, "unavailable", dest_dir)
