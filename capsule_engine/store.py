import logging
from typing import List

import httpx

from .errors import NotFound, PublishError, StoreError
from .schemas import AdminInfo, CapsuleInfo, Message
from .supabase import SupabaseClient, SupabaseError


logger = logging.getLogger(__name__)

MESSAGE_COLUMNS = (
    "id,capsule_id,content_text,content_audio_url,content_video_url,"
    "contributor_name,submitted_at,hidden"
)


class ContentStore:
    """Read side of the capsule tables plus the single publish write."""

    def __init__(self, client: SupabaseClient):
        self.client = client

    def fetch_messages(self, capsule_id: str) -> List[Message]:
        """Visible messages of a capsule, oldest submission first."""
        try:
            rows = self.client.select("messages", {
                "select": MESSAGE_COLUMNS,
                "capsule_id": f"eq.{capsule_id}",
                "hidden": "eq.false",
                "order": "submitted_at.asc",
            })
        except (httpx.HTTPError, SupabaseError) as e:
            raise StoreError(f"Could not load messages for capsule {capsule_id}: {e}") from e

        messages = [Message.from_row(r) for r in rows]
        messages = [m for m in messages if not m.hidden]
        # stable, so equal timestamps keep the store's order
        messages.sort(key=lambda m: m.submitted_at)
        if not messages:
            raise NotFound(f"No messages for capsule {capsule_id}")
        return messages

    def fetch_capsule_info(self, capsule_id: str) -> CapsuleInfo:
        try:
            rows = self.client.select("capsules", {
                "select": "id,name,image,admin_id",
                "id": f"eq.{capsule_id}",
            })
        except (httpx.HTTPError, SupabaseError) as e:
            raise StoreError(f"Could not load capsule {capsule_id}: {e}") from e
        if not rows:
            raise NotFound(f"Capsule {capsule_id} not found")

        row = rows[0]
        info = CapsuleInfo(
            id=str(row.get("id") or capsule_id),
            name=row.get("name") or "",
            image=row.get("image") or None,
            admin_id=row.get("admin_id") or None,
        )
        if info.admin_id:
            info.admin = self._fetch_admin(info.admin_id)
        return info

    def _fetch_admin(self, admin_id: str):
        # Admin branding is optional; a failed lookup only drops it
        try:
            rows = self.client.select("admins", {
                "select": "name,logo_image",
                "admin_id": f"eq.{admin_id}",
            })
        except (httpx.HTTPError, SupabaseError) as e:
            logger.warning("Admin %s lookup failed, rendering without branding: %s", admin_id, e)
            return None
        if not rows:
            logger.warning("Admin %s not found, rendering without branding", admin_id)
            return None
        row = rows[0]
        return AdminInfo(name=row.get("name") or None, logo_image=row.get("logo_image") or None)

    def update_capsule_video(self, capsule_id: str, video_url: str) -> None:
        try:
            self.client.update("capsules", {"id": f"eq.{capsule_id}"}, {"final_video_url": video_url})
        except (httpx.HTTPError, SupabaseError) as e:
            raise PublishError(f"Could not update capsule {capsule_id}: {e}") from e
