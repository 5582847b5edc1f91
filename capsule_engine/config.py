import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv


FALLBACK = "fallback"
ABORT = "abort"


def _need(env: Mapping[str, str], name: str) -> str:
    v = env.get(name)
    if not v:
        raise ValueError(f"{name} is required (set it in .env or env)")
    return v


@dataclass
class WorkerConfig:
    """Everything the worker needs, passed in explicitly at construction."""
    supabase_url: str
    supabase_key: str
    bucket: str = "media"
    queue_name: str = "video_jobs_queue"
    dead_letter_queue: Optional[str] = "video_jobs_dlq"
    visibility_timeout: int = 30
    poll_interval: float = 30.0
    max_attempts: int = 5
    part_failure_policy: str = FALLBACK
    background_image: str = "backgrounds/text_horizontal.jpg"
    font_path: Optional[str] = None
    debug_dir: Optional[str] = None
    scratch_root: Optional[str] = None
    ffmpeg_bin: Optional[str] = None
    ffprobe_bin: Optional[str] = None
    http_timeout: float = 60.0

    def __post_init__(self) -> None:
        if self.part_failure_policy not in (FALLBACK, ABORT):
            raise ValueError(
                f"part_failure_policy must be '{FALLBACK}' or '{ABORT}', got {self.part_failure_policy!r}"
            )
        if self.visibility_timeout <= 0:
            raise ValueError("visibility_timeout must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, load_dotenv_file: bool = True) -> "WorkerConfig":
        if env is None:
            if load_dotenv_file:
                load_dotenv()
            env = os.environ

        return cls(
            supabase_url=_need(env, "SUPABASE_URL").rstrip("/"),
            supabase_key=_need(env, "SUPABASE_SERVICE_ROLE_KEY"),
            bucket=env.get("MEDIA_BUCKET", "media"),
            queue_name=env.get("VIDEO_QUEUE", "video_jobs_queue"),
            dead_letter_queue=env.get("VIDEO_DEAD_LETTER_QUEUE", "video_jobs_dlq") or None,
            visibility_timeout=int(env.get("VISIBILITY_TIMEOUT", "30")),
            poll_interval=float(env.get("POLL_INTERVAL", "30")),
            max_attempts=int(env.get("MAX_ATTEMPTS", "5")),
            part_failure_policy=env.get("PART_FAILURE_POLICY", FALLBACK).strip().lower(),
            background_image=env.get("BACKGROUND_IMAGE", "backgrounds/text_horizontal.jpg"),
            font_path=env.get("FONT_PATH") or None,
            debug_dir=env.get("DEBUG_VIDEO_DIR") or None,
            scratch_root=env.get("SCRATCH_ROOT") or None,
            ffmpeg_bin=env.get("FFMPEG_BIN") or None,
            ffprobe_bin=env.get("FFPROBE_BIN") or None,
            http_timeout=float(env.get("HTTP_TIMEOUT", "60")),
        )
