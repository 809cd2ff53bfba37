"""
upload_pipeline.py - Recording Upload and Queueing

Packages a finished recording for processing:
1. Concatenate recorder chunks into one video blob
2. Reject empty recordings and recordings over the size cap
3. Rebuild the per-second GPS track and serialize gps_by_second.csv
4. Upload video and GPS log under {owner_id}/{session_timestamp}/
5. Create one `Queued` video record

Both blob uploads are always attempted. If either fails, blobs that did
make it are removed again and no record is created, so a failed upload
never leaves a half-registered recording behind.

Usage:
    pipeline = UploadPipeline(store, db, owner_id="user-1")
    record = pipeline.upload(result.chunks, result.duration_seconds, result.fixes)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Sequence, Tuple

from .database_manager import DatabaseManager, VideoRecord
from .exceptions import (
    DatabaseError,
    EmptyRecordingError,
    SizeLimitExceededError,
    StorageError,
    UploadError,
)
from .gps_manager import RawFix
from .storage import BlobStore
from .track_reconstructor import generate_gps_log, reconstruct_track

logger = logging.getLogger(__name__)

MAX_VIDEO_BYTES = 50 * 1024 * 1024


def session_timestamp(moment: datetime) -> str:
    """Storage-safe UTC timestamp, e.g. 2026-10-17T12-30-05-123Z."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime('%Y-%m-%dT%H-%M-%S-') + f"{moment.microsecond // 1000:03d}Z"


class UploadPipeline:
    """
    Persists recordings for one owner.

    Attributes:
        owner_id (str): Owner of uploaded recordings
        max_size_bytes (int): Size cap for the concatenated video
    """

    def __init__(
        self,
        blob_store: BlobStore,
        db: DatabaseManager,
        owner_id: str,
        max_size_bytes: int = MAX_VIDEO_BYTES,
        video_bucket: str = "videos",
        gps_bucket: str = "gps-logs",
        frames_bucket: str = "frames",
        video_filename: str = "video.mp4",
        gps_filename: str = "gps_by_second.csv",
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.blob_store = blob_store
        self.db = db
        self.owner_id = owner_id
        self.max_size_bytes = max_size_bytes
        self.video_bucket = video_bucket
        self.gps_bucket = gps_bucket
        self.frames_bucket = frames_bucket
        self.video_filename = video_filename
        self.gps_filename = gps_filename
        self.now = now

    @classmethod
    def from_config(
        cls,
        blob_store: BlobStore,
        db: DatabaseManager,
        owner_id: str,
        config: Dict[str, Any]
    ) -> "UploadPipeline":
        upload = config['upload']
        return cls(
            blob_store,
            db,
            owner_id,
            max_size_bytes=int(upload['max_size_mb'] * 1024 * 1024),
            video_bucket=upload['video_bucket'],
            gps_bucket=upload['gps_bucket'],
            frames_bucket=upload['frames_bucket'],
            video_filename=upload['video_filename'],
            gps_filename=upload['gps_filename']
        )

    def upload(
        self,
        video_chunks: Sequence[bytes],
        duration_seconds: int,
        fixes: Sequence[RawFix] = ()
    ) -> VideoRecord:
        """
        Upload a recording and queue it for processing.

        Args:
            video_chunks: Encoded video chunks in recording order
            duration_seconds: Recording duration (coerced to at least 1)
            fixes: Raw GPS fixes collected during the recording

        Returns:
            The created VideoRecord in status Queued

        Raises:
            UploadError: No owner
            EmptyRecordingError: Zero-byte video (no network call is made)
            SizeLimitExceededError: Video over the size cap
            StorageError: Either blob upload failed (no record created)
            DatabaseError: Record creation failed (uploaded blobs removed)
        """
        if not self.owner_id:
            raise UploadError("User not authenticated. Please sign in.")

        video = b"".join(video_chunks)
        logger.info(f"Video recording completed: {len(video)} bytes")

        if len(video) == 0:
            raise EmptyRecordingError("Video recording is empty. Please try again.")

        if len(video) > self.max_size_bytes:
            limit_mb = self.max_size_bytes / (1024 * 1024)
            raise SizeLimitExceededError(
                f"Video size exceeds {limit_mb:g}MB limit. Please record a shorter video."
            )

        duration = max(1, int(duration_seconds))
        logger.info(f"Processing {len(fixes)} GPS coordinates for a {duration}s video")
        track = reconstruct_track(fixes, duration)
        gps_log = generate_gps_log(track).encode('utf-8')

        prefix = f"{self.owner_id}/{session_timestamp(self.now())}"
        video_path = f"{prefix}/{self.video_filename}"
        gps_path = f"{prefix}/{self.gps_filename}"

        logger.info("Uploading video and GPS log files...")
        uploaded, errors = self._upload_all([
            (self.video_bucket, video_path, video),
            (self.gps_bucket, gps_path, gps_log),
        ])

        if errors:
            self._remove_uploaded(uploaded)
            raise StorageError(
                "Failed to save recording: " + "; ".join(str(e) for e in errors)
            ) from errors[0]

        try:
            record = self.db.insert_video(
                owner_id=self.owner_id,
                video_location=video_path,
                gps_log_location=gps_path
            )
        except DatabaseError:
            self._remove_uploaded(uploaded)
            raise

        logger.info(f"Recording saved and queued for processing: {record.id}")
        return record

    def _upload_all(
        self,
        blobs: Sequence[Tuple[str, str, bytes]]
    ) -> Tuple[List[Tuple[str, str]], List[StorageError]]:
        uploaded = []
        errors = []
        for bucket, path, data in blobs:
            try:
                self.blob_store.upload(bucket, path, data)
                uploaded.append((bucket, path))
            except StorageError as e:
                logger.error(f"Upload to {bucket}/{path} failed: {e}")
                errors.append(e)
        return uploaded, errors

    def _remove_uploaded(self, uploaded: Sequence[Tuple[str, str]]) -> None:
        for bucket, path in uploaded:
            try:
                self.blob_store.remove(bucket, [path])
            except StorageError as e:
                logger.error(f"Could not remove orphaned blob {bucket}/{path}: {e}")

    def delete_video(self, record: VideoRecord) -> None:
        """
        Remove a recording: its blobs first, then its rows (detections and
        frames cascade with the video row).
        """
        frame_paths = [frame['frame_location'] for frame in self.db.get_frames(record.id)]
        if frame_paths:
            self.blob_store.remove(self.frames_bucket, frame_paths)
        self.blob_store.remove(self.video_bucket, [record.video_location])
        self.blob_store.remove(self.gps_bucket, [record.gps_log_location])
        self.db.delete_video(record.id)
        logger.info(f"Video {record.id} deleted")
