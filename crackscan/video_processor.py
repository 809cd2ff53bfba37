"""
video_processor.py - Queued Video Processing Pipeline

This module runs the processing path for an uploaded recording:
1. Download the queued video and its per-second GPS log
2. Extract still frames at a fixed rate
3. Match every frame to the GPS track (5 second tolerance)
4. Send every frame to the crack detection endpoint
5. Annotate crack frames with bounding boxes and labels
6. Store frame images, frame rows and detection rows
7. Mark the video Completed

A frame whose detection fails terminally is logged and skipped; the rest
of the video is still processed. If frame extraction fails, the video
stays Queued and the error propagates.
"""

import csv
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from tqdm import tqdm

from .database_manager import DatabaseManager, VideoRecord, VideoStatus
from .detector import CrackDetector, Prediction
from .exceptions import DatabaseError, DetectionError, StorageError
from .frame_extractor import FrameExtractor, VideoFrame
from .gps_manager import FRAME_MATCH_TOLERANCE_SECONDS, PerSecondCoordinate, match_frame_to_gps
from .storage import BlobStore
from .track_reconstructor import parse_gps_log

logger = logging.getLogger(__name__)

# Visualization constants
BOX_COLOR_BGR = (0, 0, 255)  # Red
LABEL_BG_COLOR_BGR = (0, 0, 178)
TEXT_COLOR_BGR = (255, 255, 255)
BOX_THICKNESS = 3
TEXT_SCALE = 0.6
TEXT_THICKNESS = 2
JPEG_QUALITY = 95


def _draw_bounding_box(
    frame: np.ndarray,
    bbox: List[float],
    color_bgr: Tuple[int, int, int] = BOX_COLOR_BGR
) -> np.ndarray:
    x1, y1, x2, y2 = map(int, bbox)
    cv2.rectangle(frame, (x1, y1), (x2, y2), color_bgr, BOX_THICKNESS)
    return frame


def _draw_label(
    frame: np.ndarray,
    text: str,
    position: Tuple[int, int],
    bg_color_bgr: Tuple[int, int, int] = LABEL_BG_COLOR_BGR
) -> np.ndarray:
    """Draw text on a filled background whose bottom-left corner is at position."""
    x, y = position
    (text_width, text_height), _ = cv2.getTextSize(
        text, cv2.FONT_HERSHEY_SIMPLEX, TEXT_SCALE, TEXT_THICKNESS
    )

    padding = 5
    top = max(0, y - text_height - padding * 2)
    cv2.rectangle(
        frame,
        (x, top),
        (x + text_width + padding * 2, top + text_height + padding * 2),
        bg_color_bgr,
        -1
    )
    cv2.putText(
        frame,
        text,
        (x + padding, top + text_height + padding),
        cv2.FONT_HERSHEY_SIMPLEX,
        TEXT_SCALE,
        TEXT_COLOR_BGR,
        TEXT_THICKNESS
    )
    return frame


def annotate_predictions(
    image: bytes,
    predictions: Sequence[Prediction],
    quality: int = JPEG_QUALITY
) -> bytes:
    """
    Draw prediction boxes and `class NN.N%` labels on a JPEG.

    Args:
        image: Encoded image bytes
        predictions: Centre-based predictions from the detector
        quality: JPEG quality of the result

    Returns:
        Annotated JPEG bytes; the input unchanged if it cannot be decoded
    """
    frame = cv2.imdecode(np.frombuffer(image, dtype=np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        logger.error("Failed to decode image for drawing bounding boxes")
        return image

    for prediction in predictions:
        bbox = prediction.bbox
        frame = _draw_bounding_box(frame, bbox)
        label = f"{prediction.class_name} {prediction.confidence * 100:.1f}%"
        frame = _draw_label(frame, label, (max(0, int(bbox[0])), int(bbox[1])))

    ok, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        logger.error("Failed to encode annotated frame")
        return image
    return buffer.tobytes()


@dataclass
class ProcessingResult:
    """Final result after a video has been processed."""
    video_id: str
    frames_extracted: int = 0
    frames_with_gps: int = 0
    crack_frames: int = 0
    failed_frames: int = 0
    detections: List[Dict[str, Any]] = field(default_factory=list, repr=False)
    processing_time_seconds: float = 0.0


class VideoProcessor:
    """
    Processing collaborator for queued recordings.

    Usage:
        processor = VideoProcessor(store, db, detector, FrameExtractor(fps=1))
        result = processor.process(video_id)
        generate_csv_report(result.detections, "reports/run.csv")
    """

    def __init__(
        self,
        blob_store: BlobStore,
        db: DatabaseManager,
        detector: CrackDetector,
        extractor: Optional[FrameExtractor] = None,
        video_bucket: str = "videos",
        gps_bucket: str = "gps-logs",
        frames_bucket: str = "frames",
        tolerance_seconds: int = FRAME_MATCH_TOLERANCE_SECONDS,
        show_progress: bool = True
    ):
        self.blob_store = blob_store
        self.db = db
        self.detector = detector
        self.extractor = extractor or FrameExtractor()
        self.video_bucket = video_bucket
        self.gps_bucket = gps_bucket
        self.frames_bucket = frames_bucket
        self.tolerance_seconds = tolerance_seconds
        self.show_progress = show_progress

    @classmethod
    def from_config(
        cls,
        blob_store: BlobStore,
        db: DatabaseManager,
        detector: CrackDetector,
        config: Dict[str, Any],
        **kwargs
    ) -> "VideoProcessor":
        upload = config['upload']
        return cls(
            blob_store,
            db,
            detector,
            extractor=FrameExtractor.from_config(config),
            video_bucket=upload['video_bucket'],
            gps_bucket=upload['gps_bucket'],
            frames_bucket=upload['frames_bucket'],
            tolerance_seconds=config['matching']['tolerance_seconds'],
            **kwargs
        )

    def _load_record(self, video_id: str) -> VideoRecord:
        record = self.db.get_video(video_id)
        if record is None:
            raise DatabaseError(f"Video not found: {video_id}")
        return record

    def _load_track(self, record: VideoRecord) -> List[PerSecondCoordinate]:
        try:
            content = self.blob_store.download(self.gps_bucket, record.gps_log_location)
        except StorageError as e:
            logger.warning(f"GPS log unavailable for video {record.id}: {e}")
            return []
        return parse_gps_log(content)

    def match_frame(self, frame: VideoFrame, track: Sequence[PerSecondCoordinate]) -> bool:
        """Attach the matching track entry to a frame. Returns True if one was found."""
        frame.gps_coordinate = match_frame_to_gps(frame.second, track, self.tolerance_seconds)
        return frame.gps_coordinate is not None

    def _process_frame(
        self,
        record: VideoRecord,
        frame: VideoFrame,
        result: ProcessingResult
    ) -> None:
        try:
            detection = self.detector.detect(frame.blob, filename=f"frame_{frame.index}.jpg")
        except DetectionError as e:
            logger.error(f"Detection failed for frame {frame.index} of video {record.id}: {e}")
            result.failed_frames += 1
            return

        image = frame.blob
        if detection.has_crack:
            image = annotate_predictions(frame.blob, detection.predictions)
            result.crack_frames += 1

        frame_path = f"{record.owner_id}/{record.id}/frame_{frame.index}.jpg"
        self.blob_store.upload(self.frames_bucket, frame_path, image, upsert=True)

        latitude = frame.gps_coordinate.latitude if frame.gps_coordinate else None
        longitude = frame.gps_coordinate.longitude if frame.gps_coordinate else None

        self.db.insert_frame(
            video_id=record.id,
            frame_index=frame.index,
            timestamp=frame.timestamp,
            frame_location=frame_path,
            latitude=latitude,
            longitude=longitude
        )
        self.db.insert_detection(
            video_id=record.id,
            frame_index=frame.index,
            timestamp=frame.timestamp,
            has_crack=detection.has_crack,
            latitude=latitude,
            longitude=longitude,
            confidence=detection.confidence,
            detection_json={'predictions': [p.to_dict() for p in detection.predictions]},
            image_location=frame_path
        )

    def process(self, video_id: str) -> ProcessingResult:
        """
        Run the full processing path for one queued video.

        Frames are matched, detected and stored as the extractor produces
        them, so only one decoded frame is held at a time. Rows left by an
        earlier run are cleared first; a video is never stored with more
        than one row per frame.

        Returns:
            ProcessingResult with counts and the stored detection rows

        Raises:
            DatabaseError: Unknown video or record store failure
            StorageError: Video blob cannot be downloaded or frames stored
            MediaError: Frame extraction failed (video stays Queued)
        """
        start_time = time.time()
        record = self._load_record(video_id)
        if record.status is VideoStatus.COMPLETED:
            logger.warning(f"Video {video_id} is already Completed, processing again")
            self.db.update_video_status(record.id, VideoStatus.QUEUED)

        logger.info(f"Processing video {record.id} ({record.video_location})")
        video = self.blob_store.download(self.video_bucket, record.video_location)
        track = self._load_track(record)
        self.db.clear_results(record.id)

        suffix = Path(record.video_location).suffix or ".mp4"
        frames = self.extractor.iter_frames(video, suffix=suffix)

        result = ProcessingResult(video_id=record.id)
        for frame in tqdm(frames, desc="Processing", unit="frame", disable=not self.show_progress):
            result.frames_extracted += 1
            if self.match_frame(frame, track):
                result.frames_with_gps += 1
            self._process_frame(record, frame, result)

        logger.info(
            f"Extracted {result.frames_extracted} frames, {result.frames_with_gps} matched "
            f"to GPS ({len(track)} track points)"
        )
        self.db.update_video_status(record.id, VideoStatus.COMPLETED)

        result.detections = self.db.get_detections(record.id)
        result.processing_time_seconds = time.time() - start_time
        logger.info(
            f"Video {record.id} completed: {result.crack_frames} crack frames, "
            f"{result.failed_frames} failed, {result.processing_time_seconds:.1f}s"
        )
        return result


def detections_to_dataframe(detections: Sequence[Dict[str, Any]]):
    """
    Convert detection rows to a pandas DataFrame for display.

    Returns:
        pandas.DataFrame sorted by frame, empty if there are no rows
    """
    import pandas as pd

    if not detections:
        return pd.DataFrame()

    data = []
    for detection in detections:
        predictions = (detection.get('detection_json') or {}).get('predictions', [])
        data.append({
            'Frame': detection['frame_index'],
            'Time (s)': round(detection['timestamp'], 2),
            'Crack': 'Yes' if detection['has_crack'] else 'No',
            'Regions': len(predictions),
            'Confidence': round(detection['confidence'], 3) if detection['confidence'] is not None else None,
            'Latitude': detection['latitude'],
            'Longitude': detection['longitude'],
        })

    df = pd.DataFrame(data)
    return df.sort_values('Frame')


def generate_csv_report(
    detections: Sequence[Dict[str, Any]],
    output_path: Union[str, Path],
    only_cracks: bool = False
) -> int:
    """
    Write a per-frame detection report.

    CSV columns:
    - frame_index, timestamp: Frame position in the clip
    - has_crack, regions, confidence: Detection outcome
    - latitude, longitude: Matched GPS position (empty if none)
    - image_location: Stored frame image path

    Args:
        detections: Rows from DatabaseManager.get_detections()
        output_path: Path for output CSV file
        only_cracks: If True, only include frames with a crack

    Returns:
        Number of rows written
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    rows = [d for d in detections if not only_cracks or d['has_crack']]

    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow([
            'frame_index',
            'timestamp',
            'has_crack',
            'regions',
            'confidence',
            'latitude',
            'longitude',
            'image_location'
        ])
        for detection in rows:
            predictions = (detection.get('detection_json') or {}).get('predictions', [])
            writer.writerow([
                detection['frame_index'],
                f"{detection['timestamp']:.2f}",
                'yes' if detection['has_crack'] else 'no',
                len(predictions),
                f"{detection['confidence']:.4f}" if detection['confidence'] is not None else "",
                detection['latitude'] if detection['latitude'] is not None else "",
                detection['longitude'] if detection['longitude'] is not None else "",
                detection.get('image_location') or ""
            ])

    logger.info(f"Report saved: {output_path} ({len(rows)} rows)")
    return len(rows)
