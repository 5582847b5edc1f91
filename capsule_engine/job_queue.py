from typing import Any, Dict, List

import httpx

from .errors import QueueError
from .schemas import Job
from .supabase import SupabaseClient, SupabaseError


class JobQueue:
    """
    pgmq queue reached through the project's public RPC wrappers
    (pgmq_read, pgmq_delete, pgmq_send, pgmq_set_vt).
    """

    def __init__(self, client: SupabaseClient, queue_name: str):
        self.client = client
        self.queue_name = queue_name

    def _call(self, fn: str, args: Dict[str, Any]) -> Any:
        try:
            return self.client.rpc(fn, args)
        except (httpx.HTTPError, SupabaseError) as e:
            raise QueueError(f"{fn} on {args.get('queue_name')} failed: {e}") from e

    def read(self, visibility_timeout: int, limit: int = 1) -> List[Job]:
        rows = self._call("pgmq_read", {
            "queue_name": self.queue_name,
            "vt": visibility_timeout,
            "limit": limit,
        })
        return [Job.from_row(r) for r in rows or []]

    def delete(self, message_id: int) -> None:
        self._call("pgmq_delete", {"queue_name": self.queue_name, "message_id": message_id})

    def extend_lease(self, message_id: int, visibility_timeout: int) -> None:
        self._call("pgmq_set_vt", {
            "queue_name": self.queue_name,
            "message_id": message_id,
            "vt": visibility_timeout,
        })

    def send(self, payload: Dict[str, Any], queue_name: str | None = None) -> None:
        self._call("pgmq_send", {"queue_name": queue_name or self.queue_name, "message": payload})
