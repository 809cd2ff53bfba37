import os

import cv2
import numpy as np
import pytest

from conftest import FakeClock
from crackscan.exceptions import EmptyOutputError, ExtractionTimeoutError, InvalidMediaError
from crackscan.frame_extractor import FrameExtractor, extract_frames

CLIP = b"\x00\x00\x00\x18ftypmp42fake-clip-bytes"


def test_samples_whole_duration_at_requested_rate(fake_capture):
    fake_capture(frame_count=34, fps=10.0)  # 3.4 s

    frames = FrameExtractor(fps=1).extract(CLIP)

    assert [f.index for f in frames] == [0, 1, 2, 3]
    assert [f.timestamp for f in frames] == [0.0, 1.0, 2.0, 3.0]
    assert [f.second for f in frames] == [0, 1, 2, 3]


def test_frames_are_jpeg_at_native_size(fake_capture):
    fake_capture(frame_count=10, fps=10.0, width=80, height=60)

    frame = FrameExtractor(fps=1).extract(CLIP)[0]

    assert frame.blob[:2] == b"\xff\xd8"
    image = cv2.imdecode(np.frombuffer(frame.blob, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert image.shape[:2] == (60, 80)
    assert (frame.width, frame.height) == (80, 60)


def test_timestamp_at_clip_end_uses_last_frame(fake_capture):
    factory = fake_capture(frame_count=30, fps=10.0)  # exactly 3.0 s

    frames = FrameExtractor(fps=1).extract(CLIP)

    assert [f.timestamp for f in frames] == [0.0, 1.0, 2.0, 3.0]
    assert (cv2.CAP_PROP_POS_FRAMES, 29) in factory.created[0].seeks


def test_higher_rate(fake_capture):
    fake_capture(frame_count=10, fps=10.0)
    frames = extract_frames(CLIP, fps=2)
    assert [f.timestamp for f in frames] == [0.0, 0.5, 1.0]


def test_empty_input_rejected_before_decoding(fake_capture):
    factory = fake_capture()

    with pytest.raises(InvalidMediaError):
        FrameExtractor().extract(b"")

    assert factory.created == []


def test_zero_duration_rejected(fake_capture):
    factory = fake_capture(frame_count=0)

    with pytest.raises(InvalidMediaError):
        FrameExtractor().extract(CLIP)

    assert factory.created[0].seeks == []


def test_unknown_rate_rejected(fake_capture):
    fake_capture(fps=0.0)
    with pytest.raises(InvalidMediaError):
        FrameExtractor().extract(CLIP)


def test_undecodable_clip_rejected(fake_capture):
    fake_capture(opened=False)
    with pytest.raises(InvalidMediaError):
        FrameExtractor().extract(CLIP)


def test_no_capturable_frames(fake_capture):
    fake_capture(readable=False)
    with pytest.raises(EmptyOutputError):
        FrameExtractor().extract(CLIP)


def test_timeout(fake_capture):
    fake_capture(frame_count=100, fps=10.0)
    extractor = FrameExtractor(fps=1, timeout_seconds=15, clock=FakeClock(start=0.0, step=10.0))

    with pytest.raises(ExtractionTimeoutError):
        extractor.extract(CLIP)


def test_iter_frames_yields_lazily(fake_capture):
    fake_capture(frame_count=50, fps=10.0)

    frames = FrameExtractor(fps=1).iter_frames(CLIP)

    assert next(frames).index == 0
    assert next(frames).index == 1
    frames.close()


def test_temporary_file_removed_and_capture_released(fake_capture):
    factory = fake_capture(frame_count=10, fps=10.0)

    FrameExtractor().extract(CLIP)

    capture = factory.created[0]
    assert capture.released
    assert not os.path.exists(capture.path)


def test_temporary_file_removed_on_failure(fake_capture):
    factory = fake_capture(readable=False)

    with pytest.raises(EmptyOutputError):
        FrameExtractor().extract(CLIP)

    assert not os.path.exists(factory.created[0].path)


@pytest.mark.parametrize("fps", [0, -1, float("inf")])
def test_invalid_rate(fps):
    with pytest.raises(ValueError):
        FrameExtractor(fps=fps)
