import logging
import re
import tempfile
import time
from typing import Callable, List, Optional

from .concat import Concatenator
from .config import ABORT, WorkerConfig
from .errors import FetchError, InvalidJob, QueueError, RenderError
from .job_queue import JobQueue
from .media import MediaFetcher, detect_orientation
from .schemas import (
    AUDIO, AUDIO_CAPTION, TEXT, VIDEO, VIDEO_CAPTION,
    CapsuleInfo, FinalArtifact, Job, MediaPart, Message, RenderedSegment,
)
from .segments import SegmentRenderer
from .slides import SlideRenderer
from .storage import BlobStorage, capsule_video_key
from .store import ContentStore
from .utils import copy_file


logger = logging.getLogger(__name__)

# capsule ids are UUIDs; they also name the scratch directory
CAPSULE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# failures that stay confined to one contributor's part under the fallback policy
PART_ERRORS = (FetchError, RenderError)


def classify(message: Message) -> Optional[MediaPart]:
    """Map a message to its part; video wins over audio, audio over text."""
    if message.video_url:
        return MediaPart(kind=VIDEO, message=message, caption=VIDEO_CAPTION)
    if message.audio_url:
        return MediaPart(kind=AUDIO, message=message, caption=message.text or AUDIO_CAPTION)
    if message.text:
        return MediaPart(kind=TEXT, message=message, caption=message.text)
    return None


class CapsuleWorker:
    """
    Sequential pull worker: lease one job, render its capsule, publish, ack.
    A failed job is never acked, so the queue redelivers it once the lease
    expires; after max_attempts deliveries it goes to the dead-letter queue.
    """

    def __init__(
        self,
        config: WorkerConfig,
        queue: JobQueue,
        store: ContentStore,
        storage: BlobStorage,
        fetcher: MediaFetcher,
        slides: SlideRenderer,
        segments: SegmentRenderer,
        concatenator: Concatenator,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.queue = queue
        self.store = store
        self.storage = storage
        self.fetcher = fetcher
        self.slides = slides
        self.segments = segments
        self.concatenator = concatenator
        self.sleep = sleep
        self._stopped = False
        self._client = None

    @classmethod
    def from_config(cls, config: WorkerConfig) -> "CapsuleWorker":
        from .compositor import PillowCompositor
        from .supabase import SupabaseClient
        from .transcoder import FfmpegTranscoder

        client = SupabaseClient(config.supabase_url, config.supabase_key, timeout=config.http_timeout)
        fetcher = MediaFetcher(timeout=config.http_timeout)
        transcoder = FfmpegTranscoder(config.ffmpeg_bin)
        worker = cls(
            config=config,
            queue=JobQueue(client, config.queue_name),
            store=ContentStore(client),
            storage=BlobStorage(client, config.bucket),
            fetcher=fetcher,
            slides=SlideRenderer(config.background_image, fetcher, PillowCompositor(config.font_path)),
            segments=SegmentRenderer(transcoder, ffprobe=config.ffprobe_bin),
            concatenator=Concatenator(transcoder, ffprobe=config.ffprobe_bin),
        )
        worker._client = client
        return worker

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def stop(self) -> None:
        self._stopped = True

    @property
    def isolate_parts(self) -> bool:
        return self.config.part_failure_policy != ABORT

    # --- Stages --------------------------------------------------------------

    def prepare_parts(self, messages: List[Message], scratch_dir: str,
                      job: Optional[Job] = None) -> List[MediaPart]:
        parts: List[MediaPart] = []
        for msg in messages:
            part = classify(msg)
            if part is None:
                logger.debug("Message %s has no content, skipping", msg.id)
                continue
            try:
                if part.kind == VIDEO:
                    part.media_path = self.fetcher.fetch(msg.video_url, scratch_dir)
                    part.dimensions = detect_orientation(part.media_path, ffprobe=self.config.ffprobe_bin)
                    logger.info(
                        "Video from %s is %dx%d (vertical=%s)", msg.contributor_name,
                        part.dimensions.width, part.dimensions.height, part.dimensions.is_vertical,
                    )
                elif part.kind == AUDIO:
                    part.media_path = self.fetcher.fetch(msg.audio_url, scratch_dir)
            except FetchError as e:
                if not self.isolate_parts:
                    raise
                logger.warning("Media for message %s unavailable: %s", msg.id, e)
                part.error = str(e)
            if part.kind != TEXT:
                self._heartbeat(job)
            parts.append(part)
        return parts

    def _heartbeat(self, job: Optional[Job]) -> None:
        if job is None:
            return
        try:
            self.queue.extend_lease(job.message_id, self.config.visibility_timeout)
        except QueueError as e:
            # the job may be redelivered meanwhile; publishing is idempotent
            logger.warning("Could not extend lease of job %s: %s", job.message_id, e)

    def _render_part(self, part: MediaPart, capsule: CapsuleInfo, index: int, scratch_dir: str) -> RenderedSegment:
        name = part.message.contributor_name
        if part.error is None:
            try:
                slide = self.slides.render_slide(part.caption, name, capsule, part.kind, scratch_dir)
                return self.segments.render_segment(part, slide, index, scratch_dir)
            except PART_ERRORS as e:
                if not self.isolate_parts:
                    raise
                logger.warning("Rendering message %s failed, using fallback slide: %s", part.message.id, e)
        slide = self.slides.render_unavailable_slide(name, capsule, scratch_dir)
        return self.segments.render_still(slide, index, scratch_dir, kind="unavailable")

    def render_capsule(self, capsule_id: str, scratch_dir: str, job: Optional[Job] = None) -> FinalArtifact:
        messages = self.store.fetch_messages(capsule_id)
        capsule = self.store.fetch_capsule_info(capsule_id)
        parts = self.prepare_parts(messages, scratch_dir, job)
        if not parts:
            raise InvalidJob(f"Capsule {capsule_id} has no renderable messages")

        segments: List[RenderedSegment] = []
        title = self.slides.render_title_slide(capsule, scratch_dir)
        segments.append(self.segments.render_still(title, 0, scratch_dir, kind="title"))
        self._heartbeat(job)

        for part in parts:
            segments.append(self._render_part(part, capsule, len(segments), scratch_dir))
            logger.info("Rendered segment %d (%s) for capsule %s", len(segments) - 1, part.kind, capsule_id)
            self._heartbeat(job)

        path = self.concatenator.concatenate([s.path for s in segments], scratch_dir, capsule_id)
        return FinalArtifact(capsule_id=capsule_id, path=path, segments=segments)

    def save_debug_copy(self, artifact: FinalArtifact) -> Optional[str]:
        if not self.config.debug_dir:
            return None
        try:
            local = copy_file(artifact.path, self.config.debug_dir, f"capsule_{artifact.capsule_id}.mp4")
        except OSError as e:
            logger.warning("Debug copy of %s failed: %s", artifact.path, e)
            return None
        logger.info("Debug video saved locally: %s", local)
        return local

    def publish(self, artifact: FinalArtifact) -> str:
        key = capsule_video_key(artifact.capsule_id)
        url = self.storage.upload_file(artifact.path, key, content_type="video/mp4")
        self.store.update_capsule_video(artifact.capsule_id, url)
        artifact.storage_key = key
        artifact.public_url = url
        return url

    # --- Job lifecycle -------------------------------------------------------

    def dead_letter(self, job: Job, reason: str) -> bool:
        dlq = self.config.dead_letter_queue
        if not dlq:
            logger.error("Job %s should be dead-lettered (%s) but no dead-letter queue is configured",
                         job.message_id, reason)
            return False
        self.queue.send({
            **job.payload,
            "source_message_id": job.message_id,
            "attempts": job.read_count,
            "reason": reason,
        }, queue_name=dlq)
        self.queue.delete(job.message_id)
        logger.error("Job %s moved to %s: %s", job.message_id, dlq, reason)
        return True

    def process_job(self, job: Job) -> bool:
        """Returns True when the job was acknowledged (deleted from the queue)."""
        capsule_id = job.capsule_id
        if not capsule_id:
            return self.dead_letter(job, "payload has no capsule_id")
        if not CAPSULE_ID_RE.match(capsule_id):
            return self.dead_letter(job, f"invalid capsule_id {capsule_id!r}")
        if job.read_count > self.config.max_attempts:
            return self.dead_letter(job, f"gave up after {job.read_count - 1} attempts")

        age = job.queue_age()
        logger.info(
            "Processing job %s for capsule %s (attempt %d, queued %s)", job.message_id, capsule_id,
            job.read_count, f"{age:.0f}s ago" if age is not None else "at unknown time",
        )
        started = time.time()
        try:
            with tempfile.TemporaryDirectory(prefix=f"capsule_{capsule_id}_", dir=self.config.scratch_root) as scratch:
                artifact = self.render_capsule(capsule_id, scratch, job)
                logger.info("Capsule %s rendered in %.1fs", capsule_id, artifact.created_at - started)
                self.save_debug_copy(artifact)
                self._heartbeat(job)
                url = self.publish(artifact)
        except Exception:
            logger.exception("Job %s for capsule %s failed; leaving it for redelivery", job.message_id, capsule_id)
            return False

        self.queue.delete(job.message_id)
        logger.info("Job %s completed, capsule %s video at %s", job.message_id, capsule_id, url)
        return True

    def poll_once(self) -> bool:
        """Lease and process at most one job. Returns True if a job was leased."""
        try:
            jobs = self.queue.read(self.config.visibility_timeout, limit=1)
        except QueueError:
            logger.exception("Polling %s failed", self.config.queue_name)
            return False
        if not jobs:
            logger.debug("No jobs in queue.")
            return False
        try:
            self.process_job(jobs[0])
        except Exception:
            # keep polling; an unacked job is redelivered after its lease
            logger.exception("Job %s could not be handled", jobs[0].message_id)
        return True

    def run_forever(self, max_ticks: Optional[int] = None) -> None:
        logger.info("Capsule worker started on queue %s", self.config.queue_name)
        ticks = 0
        while not self._stopped:
            got = self.poll_once()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            if not got and not self._stopped:
                self.sleep(self.config.poll_interval)
        logger.info("Capsule worker stopped")
