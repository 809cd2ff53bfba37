"""
gps_manager.py - GPS Sampling and Frame Geolocation

This module collects raw location fixes during a recording session and
answers "where was the camera at second N" for extracted frames.

Design Philosophy:
- Fixes are tagged with whole seconds since the session started, using
  the same wall clock the capture session uses for its duration.
- Watch errors (permission denied, unavailable, timeout) are recorded as a
  sticky error state. They never stop the watch and clear themselves on
  the next successful fix.
- Frame lookups never invent a distant location: if the closest track
  entry is further than the tolerance window, the answer is None.

Supported replay file formats (ReplayLocationProvider):
1. CSV: second,latitude,longitude[,accuracy] (header optional)
2. JSON: [{"second": 0, "lat": 41.0, "lon": 28.9, "accuracy": 5.0}, ...]

Usage:
    provider = ReplayLocationProvider.from_file("drive_fixes.csv")
    sampler = LocationSampler(provider)
    if not sampler.start():
        print(sampler.error_message)
    ...
    sampler.stop()
    fixes = sampler.fixes
"""

import csv
import json
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .exceptions import GPSDataError

logger = logging.getLogger(__name__)

# Maximum |second - frame_second| for a track entry to count as a match
FRAME_MATCH_TOLERANCE_SECONDS = 5


@dataclass(frozen=True)
class RawFix:
    """Single observed location sample, tagged with its session second."""
    second: int
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


@dataclass(frozen=True)
class PerSecondCoordinate:
    """Reconstructed location for one whole second of a recording."""
    second: int
    latitude: float
    longitude: float
    accuracy: float = 0.0


@dataclass(frozen=True)
class Position:
    """A location reading as delivered by a LocationProvider."""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


class PositionErrorCode(IntEnum):
    """Reason codes for location errors."""
    UNKNOWN = 0
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


ERROR_MESSAGES = {
    PositionErrorCode.PERMISSION_DENIED: "GPS permission denied",
    PositionErrorCode.POSITION_UNAVAILABLE: "GPS position unavailable",
    PositionErrorCode.TIMEOUT: "GPS request timed out",
    PositionErrorCode.UNKNOWN: "Unknown GPS error",
}


@dataclass(frozen=True)
class PositionError:
    """A location error as delivered by a LocationProvider."""
    code: PositionErrorCode
    message: str = ""

    @property
    def reason(self) -> str:
        return self.message or ERROR_MESSAGES.get(self.code, ERROR_MESSAGES[PositionErrorCode.UNKNOWN])


@dataclass(frozen=True)
class WatchOptions:
    """Options passed to the location capability."""
    high_accuracy: bool = True
    timeout_ms: int = 5000
    max_age_ms: int = 0


FixCallback = Callable[[Position], None]
ErrorCallback = Callable[[PositionError], None]


class LocationProvider(ABC):
    """
    Device or platform location capability.

    Providers deliver fixes and errors through callbacks. Execution is
    single threaded: pending events are handed over when the owner calls
    poll(), typically once per captured video frame.
    """

    def is_available(self) -> bool:
        """Whether the underlying capability exists at all."""
        return True

    @abstractmethod
    def get_current_position(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: WatchOptions
    ) -> None:
        """Issue one immediate best-effort read."""

    @abstractmethod
    def watch(
        self,
        on_fix: FixCallback,
        on_error: ErrorCallback,
        options: WatchOptions
    ) -> int:
        """Begin continuous watching. Returns a handle for clear_watch()."""

    @abstractmethod
    def clear_watch(self, handle: int) -> None:
        """Cancel a watch started with watch()."""

    def poll(self) -> None:
        """Deliver any pending events to the registered callbacks."""


@dataclass(frozen=True)
class ReplayEvent:
    """One scheduled event for ReplayLocationProvider."""
    offset_seconds: float
    position: Optional[Position] = None
    error: Optional[PositionError] = None


class ReplayLocationProvider(LocationProvider):
    """
    Location provider that replays a recorded sequence of fixes.

    Events are scheduled relative to the moment watch() is called and are
    delivered by poll() once the clock has passed their offset.
    get_current_position() answers with the first recorded position, or
    a TIMEOUT error if the recording holds no positions.

    Attributes:
        events (List[ReplayEvent]): Scheduled events, sorted by offset
    """

    def __init__(
        self,
        events: Sequence[ReplayEvent],
        clock: Callable[[], float] = time.time,
        available: bool = True
    ):
        self.events: List[ReplayEvent] = sorted(events, key=lambda e: e.offset_seconds)
        self._clock = clock
        self._available = available
        self._next_handle = 1
        self._watches: Dict[int, Dict[str, Any]] = {}

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        clock: Callable[[], float] = time.time
    ) -> "ReplayLocationProvider":
        """
        Load replay events from a CSV or JSON fix file.

        Raises:
            GPSDataError: If the file is missing or cannot be parsed
        """
        path = Path(path)
        if not path.exists():
            raise GPSDataError(f"GPS replay file not found: {path}")

        suffix = path.suffix.lower()
        try:
            if suffix == '.json':
                events = _load_json_events(path)
            else:
                if suffix != '.csv':
                    logger.warning(f"Unknown extension '{suffix}', attempting CSV parse")
                events = _load_csv_events(path)
        except (OSError, ValueError) as e:
            raise GPSDataError(f"Failed to parse GPS replay file {path}: {e}") from e

        logger.info(f"Loaded {len(events)} replay fixes from {path.name}")
        return cls(events, clock=clock)

    def is_available(self) -> bool:
        return self._available

    def get_current_position(self, on_fix, on_error, options):
        for event in self.events:
            if event.position is not None:
                on_fix(event.position)
                return
        on_error(PositionError(PositionErrorCode.TIMEOUT))

    def watch(self, on_fix, on_error, options):
        handle = self._next_handle
        self._next_handle += 1
        self._watches[handle] = {
            'on_fix': on_fix,
            'on_error': on_error,
            'started_at': self._clock(),
            'cursor': 0,
        }
        return handle

    def clear_watch(self, handle):
        self._watches.pop(handle, None)

    def poll(self):
        now = self._clock()
        for watch in list(self._watches.values()):
            elapsed = now - watch['started_at']
            while watch['cursor'] < len(self.events):
                event = self.events[watch['cursor']]
                if event.offset_seconds > elapsed:
                    break
                watch['cursor'] += 1
                if event.position is not None:
                    watch['on_fix'](event.position)
                elif event.error is not None:
                    watch['on_error'](event.error)

    @property
    def active_watches(self) -> int:
        return len(self._watches)


def _load_csv_events(path: Path) -> List[ReplayEvent]:
    """Read second,latitude,longitude[,accuracy] rows, skipping malformed ones."""
    events = []
    with open(path, 'r', encoding='utf-8') as f:
        first_line = f.readline().strip()
        f.seek(0)

        has_header = False
        try:
            float(first_line.split(',')[0])
        except ValueError:
            has_header = True

        reader = csv.reader(f)
        if has_header:
            next(reader, None)

        for row in reader:
            if len(row) < 3:
                continue
            try:
                accuracy = float(row[3]) if len(row) > 3 and row[3].strip() else None
                events.append(ReplayEvent(
                    offset_seconds=float(row[0]),
                    position=Position(float(row[1]), float(row[2]), accuracy)
                ))
            except ValueError:
                continue
    return events


def _load_json_events(path: Path) -> List[ReplayEvent]:
    """Read an array of {second|frame, lat|latitude, lon|lng|longitude} objects."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON must contain an array of GPS points")

    events = []
    for point in data:
        second = _first_present(point, 'second', 'frame')
        latitude = _first_present(point, 'lat', 'latitude')
        longitude = _first_present(point, 'lon', 'lng', 'longitude')
        if second is None or latitude is None or longitude is None:
            continue
        accuracy = point.get('accuracy')
        events.append(ReplayEvent(
            offset_seconds=float(second),
            position=Position(
                float(latitude),
                float(longitude),
                float(accuracy) if accuracy is not None else None
            )
        ))
    return events


def load_fix_file(path: Union[str, Path]) -> List[RawFix]:
    """
    Read a CSV or JSON fix file as raw fixes tagged with whole seconds.

    Raises:
        GPSDataError: If the file is missing or cannot be parsed
    """
    provider = ReplayLocationProvider.from_file(path)
    return [
        RawFix(
            second=int(math.floor(event.offset_seconds)),
            latitude=event.position.latitude,
            longitude=event.position.longitude,
            accuracy=event.position.accuracy
        )
        for event in provider.events
        if event.position is not None
    ]


def _first_present(point: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if point.get(key) is not None:
            return point[key]
    return None


class LocationSampler:
    """
    Collects raw fixes from a LocationProvider during one recording session.

    The fix list is append-only while sampling and is exposed by reference
    through the `fixes` property. It is cleared only when a new session
    starts, so fixes survive stop() for the reconstruction step.

    Attributes:
        fixes (List[RawFix]): Fixes collected since the last start()
        start_epoch_millis (int or None): Session start on the shared clock
    """

    def __init__(
        self,
        provider: Optional[LocationProvider],
        watch_options: Optional[WatchOptions] = None,
        initial_options: Optional[WatchOptions] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the sampler.

        Args:
            provider: Location capability, or None if the platform has none
            watch_options: Options for continuous watching
            initial_options: Options for the immediate first read
            clock: Wall clock returning epoch seconds
        """
        self.provider = provider
        self.watch_options = watch_options or WatchOptions(timeout_ms=5000)
        self.initial_options = initial_options or WatchOptions(timeout_ms=10000)
        self.clock = clock

        self._fixes: List[RawFix] = []
        self._watch_handle: Optional[int] = None
        self.start_epoch_millis: Optional[int] = None
        self.last_accuracy: Optional[float] = None
        self.error: Optional[PositionError] = None

    @classmethod
    def from_config(
        cls,
        provider: Optional[LocationProvider],
        config: Dict[str, Any],
        clock: Callable[[], float] = time.time
    ) -> "LocationSampler":
        gps = config['gps']
        return cls(
            provider,
            watch_options=WatchOptions(gps['high_accuracy'], gps['watch_timeout_ms'], gps['max_age_ms']),
            initial_options=WatchOptions(gps['high_accuracy'], gps['initial_timeout_ms'], gps['max_age_ms']),
            clock=clock
        )

    def now_millis(self) -> int:
        return int(self.clock() * 1000)

    def elapsed_seconds(self, now_millis: Optional[int] = None) -> int:
        """Whole seconds since start(), on the same scheme used to tag fixes."""
        if self.start_epoch_millis is None:
            return 0
        if now_millis is None:
            now_millis = self.now_millis()
        return max(0, (now_millis - self.start_epoch_millis) // 1000)

    def start(self) -> bool:
        """
        Start sampling.

        Clears prior fixes, records the start time, issues one immediate
        read tagged second 0 and begins continuous watching.

        Returns:
            False if the location capability is unavailable, True otherwise
        """
        if self.is_watching:
            self.stop()

        self._fixes.clear()
        self.last_accuracy = None
        self.error = None
        self.start_epoch_millis = self.now_millis()

        if self.provider is None or not self.provider.is_available():
            self.error = PositionError(
                PositionErrorCode.POSITION_UNAVAILABLE,
                "Geolocation is not supported on this platform"
            )
            logger.error(self.error.reason)
            return False

        logger.info("Starting GPS tracking")
        try:
            self.provider.get_current_position(
                self._on_initial_fix, self._on_error, self.initial_options
            )
            self._watch_handle = self.provider.watch(
                self._on_fix, self._on_error, self.watch_options
            )
        except Exception as e:
            logger.exception(f"Error setting up GPS tracking: {e}")
            self.error = PositionError(PositionErrorCode.UNKNOWN, "Failed to start GPS tracking")
            self._watch_handle = None
            return False

        return True

    def poll(self) -> None:
        """Let the provider deliver pending fixes and errors."""
        if self.provider is not None and self.is_watching:
            self.provider.poll()

    def stop(self) -> None:
        """Cancel the watch. Collected fixes are kept."""
        if self._watch_handle is not None:
            logger.info("Stopping GPS tracking")
            self.provider.clear_watch(self._watch_handle)
            self._watch_handle = None
        logger.info(f"Collected {len(self._fixes)} GPS coordinates")

    def _on_initial_fix(self, position: Position) -> None:
        logger.info(
            f"Initial GPS position: {position.latitude}, {position.longitude} "
            f"(accuracy: {position.accuracy}m)"
        )
        self._record(0, position)

    def _on_fix(self, position: Position) -> None:
        second = self.elapsed_seconds()
        logger.debug(
            f"GPS update at {second}s: {position.latitude}, {position.longitude} "
            f"(accuracy: {position.accuracy}m)"
        )
        self._record(second, position)

    def _record(self, second: int, position: Position) -> None:
        self._fixes.append(RawFix(
            second=second,
            latitude=position.latitude,
            longitude=position.longitude,
            accuracy=position.accuracy
        ))
        self.last_accuracy = position.accuracy
        if self.error is not None:
            logger.info(f"GPS recovered after error: {self.error.reason}")
            self.error = None

    def _on_error(self, error: PositionError) -> None:
        logger.warning(f"GPS watch error ({error.code.name}): {error.reason}")
        self.error = error

    @property
    def fixes(self) -> List[RawFix]:
        return self._fixes

    @property
    def is_watching(self) -> bool:
        return self._watch_handle is not None

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.reason if self.error is not None else None

    def coverage_info(self) -> Dict[str, Any]:
        """
        Get information about collected fixes.

        Returns:
            Dictionary with fix_count, second_range, last_accuracy,
            is_watching and error
        """
        seconds = [fix.second for fix in self._fixes]
        return {
            'fix_count': len(self._fixes),
            'second_range': (min(seconds), max(seconds)) if seconds else None,
            'last_accuracy': self.last_accuracy,
            'is_watching': self.is_watching,
            'error': self.error_message,
        }

    def __repr__(self) -> str:
        state = "watching" if self.is_watching else "idle"
        return f"LocationSampler({state}, fixes={len(self._fixes)})"


def match_frame_to_gps(
    frame_second: int,
    track: Sequence[PerSecondCoordinate],
    tolerance: int = FRAME_MATCH_TOLERANCE_SECONDS
) -> Optional[PerSecondCoordinate]:
    """
    Get the track entry for a frame's second.

    Prefers an exact second match; otherwise takes the entry with the
    smallest |second - frame_second|, but only if that gap is within the
    tolerance window.

    Args:
        frame_second: Whole-second offset of the frame in the clip
        track: Per-second coordinates (any order)
        tolerance: Maximum allowed gap in seconds

    Returns:
        Matching PerSecondCoordinate, or None if nothing is close enough

    Example:
        coordinate = match_frame_to_gps(int(frame.timestamp), track)
        if coordinate is not None:
            print(f"Location: {coordinate.latitude}, {coordinate.longitude}")
    """
    if not track:
        return None

    best: Optional[PerSecondCoordinate] = None
    best_distance = math.inf

    for coordinate in track:
        distance = abs(coordinate.second - frame_second)
        if distance == 0:
            return coordinate
        if distance < best_distance:
            best_distance = distance
            best = coordinate

    if best is not None and best_distance <= tolerance:
        return best
    return None
