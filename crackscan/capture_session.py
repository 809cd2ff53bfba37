"""
capture_session.py - Recording Session Orchestration

Starts and stops video recording and GPS sampling together and owns the
recording clock.

State machine: Idle --start()--> Recording --stop()--> Idle

- start() needs a live video source. GPS is best effort: if sampling
  cannot start, recording still proceeds and start() returns False so the
  caller can warn the user.
- stop() halts the recorder and the location watch, then freezes the
  duration from the same wall-clock delta the sampler uses to tag fixes.
  The reported duration is never below 1 second.

Video sources (device camera, network camera stream, recorded file) share
one interface; the session never branches on the source type.

Usage:
    source = create_video_source("device", 0)
    source.open()
    session = CaptureSession(source, VideoRecorder(), LocationSampler(provider))
    if not session.start():
        print("Recording without GPS:", session.sampler.error_message)
    result = session.run(max_seconds=60)
"""

import logging
import math
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import cv2
import numpy as np

from .exceptions import CameraUnavailableError, MediaError, RecordingStateError
from .gps_manager import LocationSampler, RawFix

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_FPS = 30.0


class VideoSource(ABC):
    """
    A live picture source backed by cv2.VideoCapture.

    Subclasses only say what to open; connection handling, frame reads and
    release are shared.
    """

    kind = "abstract"

    def __init__(self):
        self._cap: Optional["cv2.VideoCapture"] = None

    @abstractmethod
    def _capture_target(self) -> Union[int, str]:
        """Argument handed to cv2.VideoCapture."""

    def open(self) -> "VideoSource":
        """
        Connect to the source.

        Raises:
            CameraUnavailableError: If the source cannot be opened
        """
        if self.is_live:
            return self

        cap = cv2.VideoCapture(self._capture_target())
        if not cap.isOpened():
            cap.release()
            raise CameraUnavailableError(
                f"Failed to access {self.kind} source {self.describe()}. "
                f"Please check permissions and connection."
            )
        self._cap = cap

        width, height = self.frame_size
        logger.info(f"Opened {self.kind} source {self.describe()} ({width}x{height} @ {self.fps:.1f} fps)")
        return self

    @property
    def is_live(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    @property
    def frame_size(self) -> Tuple[int, int]:
        if self._cap is None:
            return (0, 0)
        return (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    @property
    def fps(self) -> float:
        if self._cap is None:
            return DEFAULT_SOURCE_FPS
        fps = self._cap.get(cv2.CAP_PROP_FPS)
        if not fps or not math.isfinite(fps) or fps <= 0:
            return DEFAULT_SOURCE_FPS
        return fps

    def read_frame(self) -> Optional[np.ndarray]:
        """Next picture, or None when the source has ended or dropped."""
        if not self.is_live:
            return None
        ok, frame = self._cap.read()
        return frame if ok else None

    def attach_to(self, sink: "VideoRecorder") -> None:
        """Configure a recorder for this source's picture size and rate."""
        width, height = self.frame_size
        sink.attach(width, height, self.fps)

    def dispose(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info(f"Released {self.kind} source {self.describe()}")

    def describe(self) -> str:
        return str(self._capture_target())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.describe()!r}, live={self.is_live})"


class DeviceCameraSource(VideoSource):
    """Local camera by device index."""

    kind = "device"

    def __init__(self, index: int = 0):
        super().__init__()
        self.index = index

    def _capture_target(self):
        return self.index


class NetworkCameraSource(VideoSource):
    """IP camera stream (RTSP/HTTP MJPEG URL)."""

    kind = "network"

    def __init__(self, url: str):
        super().__init__()
        if not url:
            raise CameraUnavailableError("IP camera URL is required")
        self.url = url

    def _capture_target(self):
        return self.url


class FileVideoSource(VideoSource):
    """Pre-recorded clip played back as if it were live."""

    kind = "file"

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)

    def _capture_target(self):
        return str(self.path)

    def open(self) -> "VideoSource":
        if not self.path.exists():
            raise CameraUnavailableError(f"Video file not found: {self.path.absolute()}")
        return super().open()


SOURCE_TYPES = {
    'device': DeviceCameraSource,
    'network': NetworkCameraSource,
    'file': FileVideoSource,
}


def create_video_source(kind: str, target: Any) -> VideoSource:
    """
    Build a video source by kind.

    Args:
        kind: 'device', 'network' or 'file'
        target: Device index, stream URL or file path

    Raises:
        ValueError: Unknown kind
    """
    if kind not in SOURCE_TYPES:
        raise ValueError(f"Unknown video source '{kind}'. Expected one of: {', '.join(SOURCE_TYPES)}")
    if kind == 'device':
        target = int(target)
    return SOURCE_TYPES[kind](target)


class VideoRecorder:
    """
    Encodes frames to a temporary file and hands the clip back as chunks.

    Attributes:
        codec (str): FourCC codec for cv2.VideoWriter
        chunk_size (int): Size of emitted data chunks in bytes
    """

    def __init__(
        self,
        codec: str = "mp4v",
        fps: float = DEFAULT_SOURCE_FPS,
        chunk_size: int = 1024 * 1024,
        suffix: str = ".mp4",
        on_data: Optional[Callable[[bytes], None]] = None
    ):
        self.codec = codec
        self.fps = fps
        self.chunk_size = chunk_size
        self.suffix = suffix
        self.on_data = on_data
        self.frame_size: Tuple[int, int] = (0, 0)
        self.frames_written = 0
        self._writer: Optional["cv2.VideoWriter"] = None
        self._path: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any], **kwargs) -> "VideoRecorder":
        recording = config['recording']
        return cls(
            codec=recording['codec'],
            fps=recording['fps'],
            chunk_size=int(recording['chunk_size_kb'] * 1024),
            **kwargs
        )

    def attach(self, width: int, height: int, fps: Optional[float] = None) -> None:
        self.frame_size = (width, height)
        if fps:
            self.fps = fps

    @property
    def is_recording(self) -> bool:
        return self._writer is not None

    def start(self) -> None:
        """
        Raises:
            MediaError: If the writer cannot be created
        """
        width, height = self.frame_size
        if width <= 0 or height <= 0:
            raise MediaError("Recorder is not attached to a source with valid dimensions")

        fd, self._path = tempfile.mkstemp(suffix=self.suffix, prefix="crackscan_rec_")
        os.close(fd)

        fourcc = cv2.VideoWriter_fourcc(*self.codec)
        writer = cv2.VideoWriter(self._path, fourcc, self.fps, (width, height))
        if not writer.isOpened():
            self._discard_file()
            raise MediaError(f"Failed to create video writer. Codec '{self.codec}' may not be supported.")

        self._writer = writer
        self.frames_written = 0

    def write(self, frame: np.ndarray) -> None:
        if self._writer is None:
            return
        height, width = frame.shape[:2]
        if (width, height) != self.frame_size:
            frame = cv2.resize(frame, self.frame_size)
        self._writer.write(frame)
        self.frames_written += 1

    def stop(self) -> List[bytes]:
        """Finish the clip and return it as ordered byte chunks."""
        if self._writer is None:
            return []

        self._writer.release()
        self._writer = None

        chunks = []
        try:
            with open(self._path, 'rb') as f:
                while True:
                    chunk = f.read(self.chunk_size)
                    if not chunk:
                        break
                    chunks.append(chunk)
                    if self.on_data is not None:
                        self.on_data(chunk)
        finally:
            self._discard_file()

        logger.info(
            f"Recorder stopped: {self.frames_written} frames, "
            f"{sum(len(c) for c in chunks)} bytes in {len(chunks)} chunks"
        )
        return chunks

    def _discard_file(self) -> None:
        if self._path is None:
            return
        try:
            os.unlink(self._path)
        except OSError as e:
            logger.warning(f"Could not remove temporary recording {self._path}: {e}")
        self._path = None


@dataclass
class CaptureResult:
    """Everything the upload step needs from a finished session."""
    chunks: List[bytes] = field(repr=False)
    duration_seconds: int
    fixes: List[RawFix] = field(repr=False)
    gps_started: bool
    gps_error: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)


class CaptureSession:
    """
    One recording session: video source, recorder and GPS sampler.

    All mutable recording state (flag, start time, frozen duration) lives
    on the instance and only between start() and stop().

    Attributes:
        is_recording (bool): True between start() and stop()
        start_epoch_millis (int or None): Start time on the sampler's clock
    """

    def __init__(
        self,
        source: VideoSource,
        recorder: VideoRecorder,
        sampler: LocationSampler
    ):
        self.source = source
        self.recorder = recorder
        self.sampler = sampler

        self.is_recording = False
        self.start_epoch_millis: Optional[int] = None
        self.gps_started = False
        self._final_elapsed = 0

    @property
    def elapsed_seconds(self) -> int:
        """Live elapsed time while recording, frozen duration afterwards."""
        if self.is_recording:
            return self.sampler.elapsed_seconds()
        return self._final_elapsed

    def start(self) -> bool:
        """
        Start recording and GPS sampling.

        Returns:
            True if GPS sampling started, False if recording without GPS

        Raises:
            RecordingStateError: Already recording
            CameraUnavailableError: Source is not live
            MediaError: Recorder could not start (GPS is stopped again)
        """
        if self.is_recording:
            raise RecordingStateError("Recording is already in progress")
        if not self.source.is_live:
            raise CameraUnavailableError("No live video source. Open a camera before recording.")

        self.gps_started = self.sampler.start()
        if not self.gps_started:
            logger.warning(
                f"GPS unavailable ({self.sampler.error_message}), recording without location"
            )
        self.start_epoch_millis = self.sampler.start_epoch_millis

        try:
            self.source.attach_to(self.recorder)
            self.recorder.start()
        except MediaError:
            self.sampler.stop()
            raise

        self.is_recording = True
        self._final_elapsed = 0
        logger.info(f"Recording started from {self.source!r}")
        return self.gps_started

    def capture_frame(self) -> bool:
        """
        Record one picture and let pending GPS events through.

        Returns:
            False once recording has stopped or the source has ended
        """
        if not self.is_recording:
            return False
        frame = self.source.read_frame()
        if frame is None:
            logger.info("Video source ended")
            return False
        self.recorder.write(frame)
        self.sampler.poll()
        return True

    def run(self, max_seconds: Optional[float] = None) -> CaptureResult:
        """
        Record until max_seconds have elapsed or the source ends, then stop.

        Ctrl-C ends the recording like any other stop; the clip captured so
        far is returned.
        """
        if not self.is_recording:
            self.start()
        try:
            while self.is_recording:
                if max_seconds is not None and self.sampler.elapsed_seconds() >= max_seconds:
                    break
                if not self.capture_frame():
                    break
        except KeyboardInterrupt:
            logger.info("Recording interrupted, stopping")
        finally:
            result = self.stop()
        return result

    def stop(self) -> CaptureResult:
        """
        Stop recording and sampling and freeze the duration.

        Raises:
            RecordingStateError: Not recording
        """
        if not self.is_recording:
            raise RecordingStateError("No recording in progress")

        self.is_recording = False
        stopped_at = self.sampler.now_millis()
        try:
            chunks = self.recorder.stop()
        finally:
            self.sampler.stop()

        self._final_elapsed = max(1, self.sampler.elapsed_seconds(stopped_at))
        logger.info(
            f"Recording stopped after {self._final_elapsed}s with "
            f"{len(self.sampler.fixes)} GPS fixes"
        )
        return CaptureResult(
            chunks=chunks,
            duration_seconds=self._final_elapsed,
            fixes=list(self.sampler.fixes),
            gps_started=self.gps_started,
            gps_error=self.sampler.error_message
        )

    def status_line(self) -> str:
        """One-line recording status for CLI output."""
        info = self.sampler.coverage_info()
        accuracy = info['last_accuracy']
        gps = f"GPS {accuracy:.0f}m" if accuracy is not None else "GPS --"
        if info['error']:
            gps += f" ({info['error']})"
        state = "REC" if self.is_recording else "IDLE"
        return f"[{state}] {self.elapsed_seconds}s | {gps} | fixes: {info['fix_count']}"
