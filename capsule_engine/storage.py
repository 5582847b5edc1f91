from pathlib import Path

import httpx

from .errors import PublishError
from .supabase import SupabaseClient, SupabaseError


def capsule_video_key(capsule_id: str) -> str:
    """Deterministic per capsule so a retried job overwrites, never duplicates."""
    return f"capsules/{capsule_id}/final_video.mp4"


class BlobStorage:
    def __init__(self, client: SupabaseClient, bucket: str):
        self.client = client
        self.bucket = bucket

    def upload_file(self, path: str, key: str, content_type: str = "video/mp4") -> str:
        """Upload with upsert and return the object's public URL."""
        data = Path(path).read_bytes()
        try:
            self.client.upload(self.bucket, key, data, content_type=content_type, upsert=True)
        except (httpx.HTTPError, SupabaseError) as e:
            raise PublishError(f"Upload of {key} to {self.bucket} failed: {e}") from e
        return self.public_url(key)

    def public_url(self, key: str) -> str:
        return self.client.public_url(self.bucket, key)
