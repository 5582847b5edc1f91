import os
import shutil
import tempfile
import uuid
from pathlib import Path

import pytest
from PIL import Image

from capsule_engine.compositor import PillowCompositor
from capsule_engine.concat import Concatenator
from capsule_engine.config import WorkerConfig
from capsule_engine.errors import FetchError, NotFound, RenderError
from capsule_engine.schemas import AdminInfo, CapsuleInfo, Dimensions, Job, Message
from capsule_engine.segments import SegmentRenderer
from capsule_engine.slides import SlideRenderer
from capsule_engine.transcoder import MediaTranscoder
from capsule_engine.worker import CapsuleWorker


class FakeTranscoder(MediaTranscoder):
    """Writes placeholder files and records what it was asked to do."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()

    def _write(self, out, label):
        Path(out).write_text(label)
        return out

    def loop_image_to_video(self, image, out, duration=None, audio=None):
        self.calls.append(("loop", Path(out).name, {"duration": duration, "audio": audio}))
        if audio and "loop_audio" in self.fail_on:
            raise RenderError("audio mux failed")
        return self._write(out, f"still:{duration}:{audio}")

    def scale_and_overlay(self, background, video, out, box, source_audio=True):
        self.calls.append(("overlay", Path(out).name, {"box": box, "source_audio": source_audio}))
        return self._write(out, f"overlay:{box}")

    def concat_stream_copy(self, list_path, out):
        lines = Path(list_path).read_text().splitlines()[1:]
        self.calls.append(("concat", Path(out).name, {"inputs": [Path(l.split("'")[1]).name for l in lines]}))
        return self._write(out, "final")


class FakeFetcher:
    """Serves fixture media by URL; URLs listed in `failing` raise FetchError."""

    def __init__(self):
        self.failing = set()
        self.fetched = []

    def fetch(self, url, dest_dir=None):
        self.fetched.append(url)
        if url in self.failing:
            raise FetchError(f"Download of {url} failed: 404")
        dest_dir = dest_dir or tempfile.gettempdir()
        suffix = Path(url).suffix or ".bin"
        local = Path(dest_dir) / f"in_{uuid.uuid4().hex}{suffix}"
        if suffix in (".png", ".jpg"):
            Image.new("RGB", (64, 64), (200, 30, 30)).save(local)
        else:
            local.write_bytes(b"media")
        return str(local)


class FakeQueue:
    def __init__(self, jobs=None, events=None):
        self.jobs = list(jobs or [])
        self.deleted = []
        self.sent = []
        self.extended = []
        self.events = events if events is not None else []

    def read(self, visibility_timeout, limit=1):
        out, self.jobs = self.jobs[:limit], self.jobs[limit:]
        return out

    def delete(self, message_id):
        self.events.append(("ack", message_id))
        self.deleted.append(message_id)

    def extend_lease(self, message_id, visibility_timeout):
        self.extended.append((message_id, visibility_timeout))

    def send(self, payload, queue_name=None):
        self.sent.append((queue_name, payload))


class FakeStore:
    def __init__(self, events=None):
        self.messages = {}
        self.capsules = {}
        self.updates = []
        self.events = events if events is not None else []

    def fetch_messages(self, capsule_id):
        msgs = [m for m in self.messages.get(capsule_id, []) if not m.hidden]
        if not msgs:
            raise NotFound(f"No messages for capsule {capsule_id}")
        return sorted(msgs, key=lambda m: m.submitted_at)

    def fetch_capsule_info(self, capsule_id):
        if capsule_id not in self.capsules:
            raise NotFound(f"Capsule {capsule_id} not found")
        return self.capsules[capsule_id]

    def update_capsule_video(self, capsule_id, video_url):
        self.events.append(("update", capsule_id))
        self.updates.append((capsule_id, video_url))


class FakeStorage:
    def __init__(self, events=None):
        self.uploads = []
        self.events = events if events is not None else []

    def upload_file(self, path, key, content_type="video/mp4"):
        assert os.path.exists(path)
        self.events.append(("upload", key))
        self.uploads.append((key, content_type, Path(path).read_text()))
        return self.public_url(key)

    def public_url(self, key):
        return f"https://example.supabase.co/storage/v1/object/public/media/{key}"


@pytest.fixture()
def background_image(tmp_path):
    path = tmp_path / "backgrounds" / "text_horizontal.jpg"
    path.parent.mkdir(parents=True)
    Image.new("RGB", (1280, 720), (20, 40, 80)).save(path, format="JPEG")
    return str(path)


@pytest.fixture()
def scratch_dir():
    tmpdir = tempfile.mkdtemp(prefix="capsule_scratch_")
    yield tmpdir
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture()
def fetcher():
    return FakeFetcher()


@pytest.fixture()
def transcoder():
    return FakeTranscoder()


@pytest.fixture()
def slide_renderer(background_image, fetcher):
    return SlideRenderer(background_image, fetcher, PillowCompositor())


@pytest.fixture()
def capsule_c1():
    return CapsuleInfo(
        id="C1",
        name="In Memory of Dana",
        image="https://cdn.example.com/capsules/c1.png",
        admin_id="A1",
        admin=AdminInfo(name="Sunrise Funeral Home", logo_image="https://cdn.example.com/admins/a1.png"),
    )


@pytest.fixture()
def c1_messages():
    return [
        Message(id="m3", capsule_id="C1", contributor_name="Cal", submitted_at="2024-05-01T10:02:00+00:00",
                video_url="https://cdn.example.com/m3.mp4"),
        Message(id="m1", capsule_id="C1", contributor_name="Ann", submitted_at="2024-05-01T10:00:00+00:00",
                text="Thanks for everything"),
        Message(id="m2", capsule_id="C1", contributor_name="Ben", submitted_at="2024-05-01T10:01:00+00:00",
                text="Audio Tribute", audio_url="https://cdn.example.com/m2.m4a"),
    ]


@pytest.fixture()
def pipeline(tmp_path, background_image, fetcher, transcoder, capsule_c1, c1_messages, mocker):
    """A CapsuleWorker over in-memory collaborators with capsule C1 queued."""
    mocker.patch("capsule_engine.segments.has_audio_stream", return_value=True)
    worker_orientation = mocker.patch(
        "capsule_engine.worker.detect_orientation",
        return_value=Dimensions(width=1920, height=1080, is_vertical=False),
    )
    events = []
    store = FakeStore(events)
    store.capsules["C1"] = capsule_c1
    store.messages["C1"] = list(c1_messages)
    queue = FakeQueue([Job(message_id=7, payload={"capsule_id": "C1"}, read_count=1)], events)
    storage = FakeStorage(events)
    config = WorkerConfig(
        supabase_url="https://example.supabase.co",
        supabase_key="service-key",
        background_image=background_image,
        scratch_root=str(tmp_path),
        poll_interval=0,
    )
    worker = CapsuleWorker(
        config=config,
        queue=queue,
        store=store,
        storage=storage,
        fetcher=fetcher,
        slides=SlideRenderer(background_image, fetcher, PillowCompositor()),
        segments=SegmentRenderer(transcoder),
        concatenator=Concatenator(transcoder, verify_streams=False),
        sleep=lambda s: None,
    )
    worker.events = events
    worker.detect_orientation = worker_orientation
    return worker
