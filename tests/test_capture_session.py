import numpy as np
import pytest

from crackscan.capture_session import (
    CaptureSession,
    DeviceCameraSource,
    FileVideoSource,
    NetworkCameraSource,
    VideoRecorder,
    create_video_source,
)
from crackscan.exceptions import CameraUnavailableError, MediaError, RecordingStateError
from crackscan.gps_manager import LocationSampler, Position, ReplayEvent, ReplayLocationProvider


class FakeRecorder:

    def __init__(self, fail=False):
        self.fail = fail
        self.frames = []
        self.size = None
        self.started = False

    def attach(self, width, height, fps=None):
        self.size = (width, height, fps)

    def start(self):
        if self.fail:
            raise MediaError("no encoder")
        self.started = True

    def write(self, frame):
        self.frames.append(frame)

    def stop(self):
        self.started = False
        return [b"chunk-%d" % i for i in range(len(self.frames))]


@pytest.fixture
def source(fake_capture):
    fake_capture(live_frames=1000, width=64, height=48, fps=25.0)
    return DeviceCameraSource(0).open()


def gps_sampler(clock, *events):
    return LocationSampler(ReplayLocationProvider(list(events), clock=clock), clock=clock)


def test_start_and_stop_freezes_duration(source, clock):
    session = CaptureSession(source, FakeRecorder(), gps_sampler(clock, ReplayEvent(0, Position(41.0, 29.0))))

    assert session.start() is True
    assert session.is_recording
    clock.advance(2.6)
    assert session.elapsed_seconds == 2

    result = session.stop()

    assert result.duration_seconds == 2
    assert not session.is_recording
    clock.advance(10)
    assert session.elapsed_seconds == 2


def test_duration_never_below_one(source, clock):
    session = CaptureSession(source, FakeRecorder(), gps_sampler(clock))
    session.start()
    clock.advance(0.4)
    assert session.stop().duration_seconds == 1


def test_recording_continues_without_gps(source, clock):
    recorder = FakeRecorder()
    session = CaptureSession(source, recorder, LocationSampler(None, clock=clock))

    assert session.start() is False
    assert session.is_recording
    assert recorder.started

    session.capture_frame()
    result = session.stop()

    assert result.gps_started is False
    assert result.fixes == []
    assert result.gps_error == "Geolocation is not supported on this platform"
    assert result.chunks == [b"chunk-0"]


def test_recorder_attached_to_source_size(source, clock):
    recorder = FakeRecorder()
    CaptureSession(source, recorder, gps_sampler(clock)).start()
    assert recorder.size == (64, 48, 25.0)


def test_frames_pump_gps_events(source, clock):
    sampler = gps_sampler(
        clock,
        ReplayEvent(0, Position(41.0, 29.0, 3.0)),
        ReplayEvent(1, Position(41.1, 29.1, 3.0)),
    )
    session = CaptureSession(source, FakeRecorder(), sampler)
    session.start()

    clock.advance(1.2)
    session.capture_frame()
    clock.advance(1)
    result = session.stop()

    assert [f.second for f in result.fixes] == [0, 1, 1]
    assert result.duration_seconds == 2


def test_start_twice(source, clock):
    session = CaptureSession(source, FakeRecorder(), gps_sampler(clock))
    session.start()
    with pytest.raises(RecordingStateError):
        session.start()


def test_stop_when_idle(source, clock):
    session = CaptureSession(source, FakeRecorder(), gps_sampler(clock))
    with pytest.raises(RecordingStateError):
        session.stop()


def test_requires_live_source(fake_capture, clock):
    fake_capture()
    session = CaptureSession(DeviceCameraSource(0), FakeRecorder(), gps_sampler(clock))

    with pytest.raises(CameraUnavailableError):
        session.start()
    assert not session.sampler.is_watching


def test_recorder_failure_stops_gps(source, clock):
    sampler = gps_sampler(clock, ReplayEvent(0, Position(41.0, 29.0)))
    session = CaptureSession(source, FakeRecorder(fail=True), sampler)

    with pytest.raises(MediaError):
        session.start()

    assert not session.is_recording
    assert not sampler.is_watching


def test_run_until_source_ends(fake_capture, clock):
    fake_capture(live_frames=5)
    source = DeviceCameraSource(0).open()
    recorder = FakeRecorder()

    result = CaptureSession(source, recorder, gps_sampler(clock)).run()

    assert len(recorder.frames) == 5
    assert len(result.chunks) == 5
    assert result.duration_seconds == 1


def test_run_keeps_clip_on_ctrl_c(fake_capture, clock):
    fake_capture(live_frames=1000, interrupt_after=4)
    source = DeviceCameraSource(0).open()
    recorder = FakeRecorder()
    session = CaptureSession(source, recorder, gps_sampler(clock, ReplayEvent(0, Position(41.0, 29.0))))

    result = session.run()

    assert not session.is_recording
    assert len(recorder.frames) == 4
    assert len(result.chunks) == 4
    assert [f.second for f in result.fixes] == [0]


def test_run_stops_at_max_seconds(source):
    from conftest import FakeClock
    clock = FakeClock(step=0.25)
    recorder = FakeRecorder()

    result = CaptureSession(source, recorder, gps_sampler(clock)).run(max_seconds=3)

    assert result.duration_seconds >= 3
    assert 0 < len(recorder.frames) < 1000


def test_status_line(source, clock):
    session = CaptureSession(source, FakeRecorder(), gps_sampler(clock, ReplayEvent(0, Position(41.0, 29.0, 4.0))))
    session.start()
    clock.advance(3)
    assert session.status_line() == "[REC] 3s | GPS 4m | fixes: 1"


class TestVideoSources:

    def test_open_failure(self, fake_capture):
        fake_capture(opened=False)
        with pytest.raises(CameraUnavailableError):
            DeviceCameraSource(0).open()

    def test_missing_file(self, tmp_path):
        with pytest.raises(CameraUnavailableError):
            FileVideoSource(tmp_path / "missing.mp4").open()

    def test_read_and_dispose(self, fake_capture):
        fake_capture(live_frames=1)
        source = DeviceCameraSource(0).open()

        assert source.read_frame() is not None
        assert source.read_frame() is None
        source.dispose()
        assert not source.is_live

    def test_factory(self):
        assert isinstance(create_video_source("device", "2"), DeviceCameraSource)
        assert isinstance(create_video_source("network", "rtsp://cam/stream"), NetworkCameraSource)
        with pytest.raises(ValueError):
            create_video_source("drone", "x")


def test_recorder_produces_chunks(tmp_path):
    received = []
    recorder = VideoRecorder(codec="MJPG", fps=10.0, chunk_size=512, suffix=".avi", on_data=received.append)
    recorder.attach(64, 48)
    recorder.start()
    for shade in range(10):
        recorder.write(np.full((48, 64, 3), shade * 20, dtype=np.uint8))

    chunks = recorder.stop()

    assert len(chunks) > 1
    assert all(len(c) <= 512 for c in chunks)
    assert received == chunks
    assert not recorder.is_recording


def test_recorder_requires_dimensions():
    with pytest.raises(MediaError):
        VideoRecorder().start()
