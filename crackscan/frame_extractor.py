"""
frame_extractor.py - Still Frame Extraction from Encoded Video

Decodes a recorded clip and samples still images at a fixed rate:
for t = 0, 1/fps, 2/fps, ... while t <= duration, seek to t, take the
displayed picture at the clip's native size and encode it as JPEG.

Frames are produced lazily by a generator, one seek-and-capture step per
iteration, so long clips never build deep call chains and the caller
regains control between frames. A wall-time budget bounds the whole
extraction; exceeding it fails the operation instead of hanging.

Usage:
    extractor = FrameExtractor(fps=1.0)
    for frame in extractor.iter_frames(video_bytes):
        print(frame.index, frame.timestamp, len(frame.blob))
"""

import logging
import math
import os
import tempfile
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

import cv2
import numpy as np

from .exceptions import EmptyOutputError, ExtractionTimeoutError, InvalidMediaError, MediaError
from .gps_manager import PerSecondCoordinate

logger = logging.getLogger(__name__)


@dataclass
class VideoFrame:
    """Still image taken from a clip at timestamp = index / fps."""
    index: int
    blob: bytes = field(repr=False)
    timestamp: float
    width: int = 0
    height: int = 0
    # Attached after extraction by the frame/location matcher
    gps_coordinate: Optional[PerSecondCoordinate] = None

    @property
    def second(self) -> int:
        """Whole-second offset used for track lookups."""
        return int(math.floor(self.timestamp))


@dataclass
class VideoInfo:
    """Properties read from the decoder."""
    width: int
    height: int
    fps: float
    frame_count: int
    duration: float


class FrameExtractor:
    """
    Fixed-rate still frame extractor built on OpenCV.

    Attributes:
        fps (float): Frames sampled per second of video
        jpeg_quality (int): JPEG quality for encoded frames (1-100)
        timeout_seconds (float): Wall-time budget for one extraction
    """

    def __init__(
        self,
        fps: float = 1.0,
        jpeg_quality: int = 95,
        timeout_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            fps: Sampling rate; must be positive
            jpeg_quality: JPEG quality for encoded frames
            timeout_seconds: Total wall-time budget
            clock: Monotonic clock used for the budget

        Raises:
            ValueError: If fps is not positive
        """
        if not fps or fps <= 0 or not math.isfinite(fps):
            raise ValueError(f"fps must be a positive number, got {fps}")

        self.fps = float(fps)
        self.jpeg_quality = jpeg_quality
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "FrameExtractor":
        extraction = config['extraction']
        return cls(
            fps=extraction['fps'],
            jpeg_quality=extraction['jpeg_quality'],
            timeout_seconds=extraction['timeout_seconds']
        )

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.fps

    @staticmethod
    def _read_info(cap: "cv2.VideoCapture") -> VideoInfo:
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = cap.get(cv2.CAP_PROP_FPS)
        frame_count = cap.get(cv2.CAP_PROP_FRAME_COUNT)

        if not fps or not math.isfinite(fps) or fps <= 0:
            duration = math.nan
        else:
            duration = frame_count / fps

        return VideoInfo(
            width=width,
            height=height,
            fps=fps,
            frame_count=int(frame_count) if math.isfinite(frame_count) else 0,
            duration=duration
        )

    def _capture_at(
        self,
        cap: "cv2.VideoCapture",
        info: VideoInfo,
        timestamp: float
    ) -> Optional[np.ndarray]:
        """Seek to timestamp and return the displayed picture, or None past the end."""
        cap.set(cv2.CAP_PROP_POS_MSEC, timestamp * 1000.0)
        ok, image = cap.read()

        if not ok and timestamp > 0 and info.frame_count > 0:
            # Seeking to the very end shows the last decoded picture
            cap.set(cv2.CAP_PROP_POS_FRAMES, info.frame_count - 1)
            ok, image = cap.read()

        if not ok or image is None:
            return None

        if info.width and info.height and image.shape[:2] != (info.height, info.width):
            image = cv2.resize(image, (info.width, info.height))
        return image

    def _encode(self, image: np.ndarray, index: int) -> bytes:
        ok, buffer = cv2.imencode('.jpg', image, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not ok:
            raise MediaError(f"Failed to encode frame {index} as JPEG")
        return buffer.tobytes()

    def iter_frames(self, video: bytes, suffix: str = ".mp4") -> Iterator[VideoFrame]:
        """
        Lazily extract frames from an encoded clip.

        Args:
            video: Encoded video bytes
            suffix: File suffix hint for the decoder

        Yields:
            VideoFrame objects in strictly increasing index order

        Raises:
            InvalidMediaError: Empty input, undecodable clip, or
                zero/unknown/infinite duration
            EmptyOutputError: Valid duration but no frame could be captured
            ExtractionTimeoutError: Wall-time budget exceeded
        """
        if not video:
            raise InvalidMediaError("Video is empty (0 bytes)")

        logger.info(f"Extracting frames from {len(video)} byte video at {self.fps} fps")
        deadline = self.clock() + self.timeout_seconds

        fd, temp_path = tempfile.mkstemp(suffix=suffix, prefix="crackscan_")
        cap = None
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(video)

            cap = cv2.VideoCapture(temp_path)
            if not cap.isOpened():
                raise InvalidMediaError("Error loading video for frame extraction")

            info = self._read_info(cap)
            if not math.isfinite(info.duration) or info.duration <= 0:
                raise InvalidMediaError(
                    f"Video duration could not be determined (duration={info.duration})"
                )
            logger.info(
                f"Video metadata loaded. Duration: {info.duration:.2f}s, "
                f"{info.width}x{info.height} @ {info.fps:.2f} fps"
            )

            index = 0
            while index / self.fps <= info.duration:
                if self.clock() > deadline:
                    raise ExtractionTimeoutError(
                        f"Frame extraction exceeded {self.timeout_seconds}s "
                        f"after {index} frames"
                    )

                timestamp = index / self.fps
                image = self._capture_at(cap, info, timestamp)
                if image is None:
                    logger.warning(f"No picture at {timestamp:.2f}s, stopping extraction")
                    break

                blob = self._encode(image, index)
                logger.debug(f"Frame captured at {timestamp:.2f} seconds ({len(blob)} bytes)")
                yield VideoFrame(
                    index=index,
                    blob=blob,
                    timestamp=timestamp,
                    width=image.shape[1],
                    height=image.shape[0]
                )
                index += 1

            if index == 0:
                raise EmptyOutputError(
                    f"No frames extracted from a {info.duration:.2f}s video"
                )
            logger.info(f"Completed extraction: {index} frames captured")

        finally:
            if cap is not None:
                cap.release()
            try:
                os.unlink(temp_path)
            except OSError as e:
                logger.warning(f"Could not remove temporary video {temp_path}: {e}")

    def extract(self, video: bytes, suffix: str = ".mp4") -> List[VideoFrame]:
        """Extract all frames; any failure fails the whole operation."""
        return list(self.iter_frames(video, suffix=suffix))


def extract_frames(video: bytes, fps: float = 1.0, **kwargs) -> List[VideoFrame]:
    """
    Convenience wrapper: extract every frame of a clip at the given rate.

    Example:
        frames = extract_frames(video_bytes, fps=1)
    """
    return FrameExtractor(fps=fps, **kwargs).extract(video)
