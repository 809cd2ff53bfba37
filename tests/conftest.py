"""Shared fixtures: temporary stores, a controllable clock and OpenCV doubles."""

import cv2
import numpy as np
import pytest

from crackscan.database_manager import DatabaseManager
from crackscan.storage import LocalBlobStore


class FakeClock:
    """Epoch-seconds clock that only moves when told to (or by `step` per call)."""

    def __init__(self, start: float = 1_700_000_000.0, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCapture:
    """
    Stand-in for cv2.VideoCapture over a clip of `frame_count` frames.

    Seeking by milliseconds past the clip end makes the next read fail,
    like a real decoder; seeking by frame index always lands on a picture.
    With `interrupt_after`, reads past that count raise KeyboardInterrupt
    as if the user pressed Ctrl-C.
    """

    def __init__(self, path=None, frame_count=30, fps=10.0, width=64, height=48,
                 opened=True, readable=True, live_frames=None, interrupt_after=None):
        self.path = path
        self.frame_count = frame_count
        self.source_fps = fps
        self.width = width
        self.height = height
        self.opened = opened
        self.readable = readable
        self.live_frames = live_frames
        self.interrupt_after = interrupt_after
        self.reads = 0
        self.position_ms = 0.0
        self.seeks = []
        self.released = False

    def isOpened(self):
        return self.opened and not self.released

    def get(self, prop):
        if prop == cv2.CAP_PROP_FRAME_WIDTH:
            return float(self.width)
        if prop == cv2.CAP_PROP_FRAME_HEIGHT:
            return float(self.height)
        if prop == cv2.CAP_PROP_FPS:
            return float(self.source_fps)
        if prop == cv2.CAP_PROP_FRAME_COUNT:
            return float(self.frame_count)
        return 0.0

    def set(self, prop, value):
        self.seeks.append((prop, value))
        if prop == cv2.CAP_PROP_POS_MSEC:
            self.position_ms = value
        elif prop == cv2.CAP_PROP_POS_FRAMES:
            self.position_ms = value / self.source_fps * 1000.0
        return True

    def read(self):
        self.reads += 1
        if self.interrupt_after is not None and self.reads > self.interrupt_after:
            raise KeyboardInterrupt
        if not self.readable:
            return False, None
        if self.live_frames is not None:
            if self.live_frames <= 0:
                return False, None
            self.live_frames -= 1
            return True, np.zeros((self.height, self.width, 3), dtype=np.uint8)
        duration_ms = self.frame_count / self.source_fps * 1000.0
        if self.position_ms >= duration_ms:
            return False, None
        shade = int(self.position_ms / 1000.0 * 40) % 256
        return True, np.full((self.height, self.width, 3), shade, dtype=np.uint8)

    def release(self):
        self.released = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "storage")


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(tmp_path / "crackscan.db")


@pytest.fixture
def fake_capture(monkeypatch):
    """
    Patch cv2.VideoCapture with FakeCapture.

    Returns a factory: call it with FakeCapture keyword arguments to choose
    the clip; every constructed capture is appended to `factory.created`.
    """
    def factory(**kwargs):
        def build(path):
            capture = FakeCapture(path, **kwargs)
            factory.created.append(capture)
            return capture
        monkeypatch.setattr(cv2, "VideoCapture", build)
        return factory

    factory.created = []
    return factory
