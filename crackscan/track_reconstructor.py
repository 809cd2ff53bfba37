"""
track_reconstructor.py - Per-Second GPS Track Reconstruction

Turns the sparse, irregular fix stream collected during a recording into
exactly one coordinate per second of video, and reads/writes that track
as the gps_by_second.csv log.

Reconstruction policy, for each target second s in [1, duration]:
1. Exact match: the first fix tagged s (after a stable sort) is used as is.
2. Otherwise the nearest fix strictly before s and strictly after s are
   looked up.
3. Both present: latitude/longitude are linearly interpolated by
   (s - before.second) / (after.second - before.second). Accuracy is the
   worse (larger) of the two known accuracies.
4. Only before: forward-fill.
5. Only after: backward-fill.
6. No fixes at all: (0, 0) with accuracy 0 for every second. This is a
   "no location data" sentinel, never a real fix at the equator/meridian.

Usage:
    from crackscan.track_reconstructor import reconstruct_track, generate_gps_log

    track = reconstruct_track(sampler.fixes, duration_seconds=42)
    csv_text = generate_gps_log(track)
"""

import bisect
import csv
import io
import logging
from typing import List, Optional, Sequence, Union

import numpy as np

from .exceptions import GPSDataError
from .gps_manager import PerSecondCoordinate, RawFix

logger = logging.getLogger(__name__)

GPS_LOG_HEADER = ['second', 'latitude', 'longitude', 'accuracy']


def _worse_accuracy(first: Optional[float], second: Optional[float]) -> float:
    known = [value for value in (first, second) if value is not None]
    return max(known) if known else 0.0


def is_sentinel(coordinate: PerSecondCoordinate) -> bool:
    """True for the (0, 0) "no location data" placeholder."""
    return coordinate.latitude == 0 and coordinate.longitude == 0


def reconstruct_track(
    fixes: Sequence[RawFix],
    duration_seconds: int
) -> List[PerSecondCoordinate]:
    """
    Build one coordinate per second from a sparse fix list.

    Pure and deterministic: the input is not modified and identical inputs
    give identical output.

    Args:
        fixes: Raw fixes in any order (sorted internally by second)
        duration_seconds: Target duration; values below 1 are treated as 1

    Returns:
        List of exactly max(1, duration_seconds) coordinates for seconds
        1..duration, strictly increasing by one
    """
    duration = max(1, int(duration_seconds))

    if not fixes:
        logger.warning(
            f"No GPS coordinates collected, using (0,0) for all {duration} seconds"
        )
        return [PerSecondCoordinate(second, 0.0, 0.0, 0.0) for second in range(1, duration + 1)]

    ordered = sorted(fixes, key=lambda fix: fix.second)
    seconds = [fix.second for fix in ordered]

    logger.debug(
        f"Reconstructing {duration}s track from {len(ordered)} fixes "
        f"(seconds {seconds[0]}..{seconds[-1]})"
    )

    track = []
    for s in range(1, duration + 1):
        left = bisect.bisect_left(seconds, s)
        right = bisect.bisect_right(seconds, s)

        if left < right:
            exact = ordered[left]
            track.append(PerSecondCoordinate(
                s, exact.latitude, exact.longitude,
                exact.accuracy if exact.accuracy is not None else 0.0
            ))
            continue

        # Closest fix before s is the first one carrying the largest earlier second
        before = None
        if left > 0:
            before = ordered[bisect.bisect_left(seconds, seconds[left - 1])]
        after = ordered[right] if right < len(ordered) else None

        if before is not None and after is not None:
            ratio = (s - before.second) / (after.second - before.second)
            track.append(PerSecondCoordinate(
                s,
                before.latitude + (after.latitude - before.latitude) * ratio,
                before.longitude + (after.longitude - before.longitude) * ratio,
                _worse_accuracy(before.accuracy, after.accuracy)
            ))
        else:
            edge = before if before is not None else after
            track.append(PerSecondCoordinate(
                s, edge.latitude, edge.longitude,
                edge.accuracy if edge.accuracy is not None else 0.0
            ))

    return track


def _format_decimal(value: float) -> str:
    """Plain decimal text, shortest round-trip form, never scientific notation."""
    return np.format_float_positional(float(value), trim='-')


def generate_gps_log(track: Sequence[PerSecondCoordinate]) -> str:
    """
    Serialize a per-second track as the GPS log CSV.

    Format: header `second,latitude,longitude,accuracy`, one row per
    second, plain decimal values, '\\n' line endings.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(GPS_LOG_HEADER)
    for coordinate in track:
        writer.writerow([
            coordinate.second,
            _format_decimal(coordinate.latitude),
            _format_decimal(coordinate.longitude),
            _format_decimal(coordinate.accuracy or 0.0),
        ])

    logger.info(f"Generated GPS log with {len(track)} entries, one per second of video")
    return buffer.getvalue()


def parse_gps_log(
    content: Union[str, bytes],
    drop_sentinel: bool = True
) -> List[PerSecondCoordinate]:
    """
    Parse GPS log CSV content back into per-second coordinates.

    Args:
        content: CSV text (or UTF-8 bytes) with a header line
        drop_sentinel: Skip (0, 0) "no location" rows

    Returns:
        Coordinates in file order; empty if the log has no data rows

    Raises:
        GPSDataError: If a data row has unparseable numeric fields
    """
    if isinstance(content, bytes):
        content = content.decode('utf-8')

    lines = [line for line in content.splitlines() if line.strip()]
    if len(lines) <= 1:
        logger.warning("GPS log contains only header or is empty")
        return []

    coordinates = []
    skipped_sentinels = 0
    for row in csv.reader(lines[1:]):
        if len(row) < 3:
            logger.warning(f"Invalid GPS data format: {','.join(row)}")
            continue
        try:
            accuracy = float(row[3]) if len(row) > 3 and row[3].strip() else 0.0
            coordinate = PerSecondCoordinate(
                second=int(row[0]),
                latitude=float(row[1]),
                longitude=float(row[2]),
                accuracy=accuracy
            )
        except ValueError as e:
            raise GPSDataError(f"Failed to parse GPS line '{','.join(row)}': {e}") from e

        if drop_sentinel and is_sentinel(coordinate):
            skipped_sentinels += 1
            continue
        coordinates.append(coordinate)

    if skipped_sentinels:
        logger.warning(f"Skipped {skipped_sentinels} GPS rows without location data (0,0)")
    logger.info(f"Successfully parsed {len(coordinates)} GPS coordinates")
    return coordinates
