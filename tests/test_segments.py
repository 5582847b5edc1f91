import pytest

from capsule_engine.errors import RenderError
from capsule_engine.schemas import AUDIO, TEXT, VIDEO, Dimensions, MediaPart, Message
from capsule_engine.segments import HORIZONTAL_BOX, VERTICAL_BOX, SegmentRenderer


def _part(kind, media_path=None, vertical=False):
    msg = Message(id="m1", capsule_id="C1", contributor_name="Cal")
    dims = Dimensions(1080, 1920, True) if vertical else Dimensions(1920, 1080, False)
    return MediaPart(kind=kind, message=msg, media_path=media_path, dimensions=dims if kind == VIDEO else None)


def test_text_segment_is_five_second_still(transcoder, scratch_dir):
    seg = SegmentRenderer(transcoder).render_segment(_part(TEXT), "slide.png", 1, scratch_dir)

    assert seg.path.endswith("segment_1.mp4")
    assert transcoder.calls == [("loop", "segment_1.mp4", {"duration": 5.0, "audio": None})]


def test_audio_segment_follows_audio_length(transcoder, scratch_dir):
    SegmentRenderer(transcoder).render_segment(_part(AUDIO, "ben.m4a"), "slide.png", 2, scratch_dir)

    assert transcoder.calls == [("loop", "segment_2.mp4", {"duration": None, "audio": "ben.m4a"})]


@pytest.mark.parametrize("vertical,box", [(True, VERTICAL_BOX), (False, HORIZONTAL_BOX)])
def test_video_layout_follows_orientation(transcoder, scratch_dir, mocker, vertical, box):
    mocker.patch("capsule_engine.segments.has_audio_stream", return_value=True)
    SegmentRenderer(transcoder).render_segment(_part(VIDEO, "cal.mp4", vertical), "slide.png", 3, scratch_dir)

    assert transcoder.calls == [("overlay", "segment_3.mp4", {"box": box, "source_audio": True})]


def test_video_without_audio_gets_silence(transcoder, scratch_dir, mocker):
    mocker.patch("capsule_engine.segments.has_audio_stream", return_value=False)
    SegmentRenderer(transcoder).render_segment(_part(VIDEO, "mute.mp4"), "slide.png", 3, scratch_dir)

    assert transcoder.calls[0][2]["source_audio"] is False


def test_unknown_audio_retries_with_silence(transcoder, scratch_dir, mocker):
    mocker.patch("capsule_engine.segments.has_audio_stream", return_value=None)
    overlay = mocker.patch.object(transcoder, "scale_and_overlay", side_effect=[RenderError("no 0:a"), "ok"])

    SegmentRenderer(transcoder).render_segment(_part(VIDEO, "cal.mp4"), "slide.png", 3, scratch_dir)

    assert [c.kwargs["source_audio"] for c in overlay.call_args_list] == [True, False]


def test_known_audio_failure_propagates(transcoder, scratch_dir, mocker):
    mocker.patch("capsule_engine.segments.has_audio_stream", return_value=True)
    mocker.patch.object(transcoder, "scale_and_overlay", side_effect=RenderError("bad input"))

    with pytest.raises(RenderError):
        SegmentRenderer(transcoder).render_segment(_part(VIDEO, "cal.mp4"), "slide.png", 3, scratch_dir)


def test_media_part_without_file_is_render_error(transcoder, scratch_dir):
    with pytest.raises(RenderError):
        SegmentRenderer(transcoder).render_segment(_part(AUDIO), "slide.png", 2, scratch_dir)
