"""
database_manager.py - SQLite Record Store for Videos and Detections

Persistent storage for uploaded recordings and their per-frame results.
Designed to handle missing GPS data gracefully (NULL values allowed).

Tables:
- videos: one row per uploaded recording (Queued -> Completed)
- detections: one row per analysed frame, keyed by video id
- video_frames: one row per stored frame image, keyed by video id

Usage:
    from crackscan.database_manager import DatabaseManager, VideoStatus

    db = DatabaseManager("data/crackscan.db")
    record = db.insert_video(
        owner_id="user-1",
        video_location="user-1/2026-10-17T12-00-00-000Z/video.mp4",
        gps_log_location="user-1/2026-10-17T12-00-00-000Z/gps_by_second.csv"
    )
    db.update_video_status(record.id, VideoStatus.COMPLETED)
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

from .exceptions import DatabaseError

logger = logging.getLogger(__name__)


class VideoStatus(Enum):
    """Lifecycle of an uploaded recording."""
    QUEUED = "Queued"
    COMPLETED = "Completed"


@dataclass
class VideoRecord:
    """Persisted recording row."""
    id: str
    owner_id: str
    video_location: str
    gps_log_location: str
    status: VideoStatus
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "VideoRecord":
        return cls(
            id=row['id'],
            owner_id=row['owner_id'],
            video_location=row['video_location'],
            gps_log_location=row['gps_log_location'],
            status=VideoStatus(row['status']),
            created_at=row['created_at']
        )


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseManager:
    """
    SQLite record store.

    Table Schema (videos):
    - id: TEXT PRIMARY KEY (uuid4)
    - owner_id: TEXT NOT NULL
    - video_location, gps_log_location: TEXT NOT NULL (blob paths)
    - status: TEXT NOT NULL (Queued / Completed)
    - created_at: TEXT NOT NULL (ISO 8601, UTC)

    Table Schema (detections):
    - video_id, frame_index, timestamp (seconds into the clip)
    - latitude, longitude: REAL (NULLABLE) - NULL when no GPS match
    - has_crack, confidence, detection_json, image_location

    Table Schema (video_frames):
    - video_id, frame_index, timestamp, frame_location
    - latitude, longitude: REAL (NULLABLE)

    Attributes:
        db_path (Path): Path to SQLite database file
    """

    CREATE_TABLES_SQL = """
    CREATE TABLE IF NOT EXISTS videos (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        video_location TEXT NOT NULL,
        gps_log_location TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS detections (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        video_id TEXT NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
        frame_index INTEGER NOT NULL,
        timestamp REAL NOT NULL,
        latitude REAL,
        longitude REAL,
        has_crack INTEGER NOT NULL,
        confidence REAL,
        detection_json TEXT,
        image_location TEXT
    );
    CREATE TABLE IF NOT EXISTS video_frames (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        video_id TEXT NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
        frame_index INTEGER NOT NULL,
        timestamp REAL NOT NULL,
        frame_location TEXT NOT NULL,
        latitude REAL,
        longitude REAL
    );
    CREATE INDEX IF NOT EXISTS idx_videos_owner_status ON videos(owner_id, status);
    CREATE INDEX IF NOT EXISTS idx_detections_video ON detections(video_id);
    CREATE INDEX IF NOT EXISTS idx_frames_video ON video_frames(video_id);
    """

    def __init__(self, db_path: Union[str, Path] = "data/crackscan.db"):
        """
        Initialize the DatabaseManager.

        Args:
            db_path: Path to SQLite database file (created if not exists)

        Raises:
            DatabaseError: If database initialization fails
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()
        logger.info(f"Database initialized: {self.db_path}")

    def _init_database(self) -> None:
        try:
            with self._get_connection() as conn:
                conn.executescript(self.CREATE_TABLES_SQL)
                conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to initialize database: {e}") from e

    @contextmanager
    def _get_connection(self):
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection with dict-like rows and foreign keys enforced
        """
        conn = None
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=10.0)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            if conn:
                conn.close()

    # ------------------------------------------------------------------
    # videos
    # ------------------------------------------------------------------

    def insert_video(
        self,
        owner_id: str,
        video_location: str,
        gps_log_location: str,
        status: VideoStatus = VideoStatus.QUEUED
    ) -> VideoRecord:
        """
        Create a video row.

        Returns:
            The stored VideoRecord (with generated id and created_at)

        Raises:
            DatabaseError: If insertion fails
        """
        record = VideoRecord(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            video_location=video_location,
            gps_log_location=gps_log_location,
            status=status,
            created_at=_utc_now()
        )
        sql = """
        INSERT INTO videos (id, owner_id, video_location, gps_log_location, status, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """
        try:
            with self._get_connection() as conn:
                conn.execute(sql, (
                    record.id,
                    record.owner_id,
                    record.video_location,
                    record.gps_log_location,
                    record.status.value,
                    record.created_at
                ))
                conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to create video record: {e}") from e

        logger.info(f"Video record created: {record.id} ({record.status.value})")
        return record

    def get_video(self, video_id: str) -> Optional[VideoRecord]:
        """Fetch one video by id, or None if it does not exist."""
        try:
            with self._get_connection() as conn:
                row = conn.execute("SELECT * FROM videos WHERE id = ?", (video_id,)).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to fetch video {video_id}: {e}") from e
        return VideoRecord.from_row(row) if row else None

    def get_videos(
        self,
        owner_id: str,
        status: Optional[VideoStatus] = None
    ) -> List[VideoRecord]:
        """
        List an owner's videos, newest first, optionally filtered by status.
        """
        sql = "SELECT * FROM videos WHERE owner_id = ?"
        params: List[Any] = [owner_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC, rowid DESC"

        try:
            with self._get_connection() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to fetch video records: {e}") from e
        return [VideoRecord.from_row(row) for row in rows]

    def update_video_status(self, video_id: str, status: VideoStatus) -> None:
        """
        Raises:
            DatabaseError: If the update fails or the video does not exist
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "UPDATE videos SET status = ? WHERE id = ?", (status.value, video_id)
                )
                conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to update video status: {e}") from e

        if cursor.rowcount == 0:
            raise DatabaseError(f"Video not found: {video_id}")
        logger.info(f"Video {video_id} marked {status.value}")

    def delete_video(self, video_id: str) -> bool:
        """Delete a video with its detections and frames. Returns False if absent."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))
                conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to delete video {video_id}: {e}") from e
        return cursor.rowcount > 0

    def clear_results(self, video_id: str) -> int:
        """
        Remove a video's detection and frame rows, keeping the video itself.

        Returns:
            Number of rows deleted across both tables
        """
        try:
            with self._get_connection() as conn:
                detections = conn.execute(
                    "DELETE FROM detections WHERE video_id = ?", (video_id,)
                ).rowcount
                frames = conn.execute(
                    "DELETE FROM video_frames WHERE video_id = ?", (video_id,)
                ).rowcount
                conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to clear results for video {video_id}: {e}") from e

        if detections or frames:
            logger.info(f"Cleared {detections} detections and {frames} frames of video {video_id}")
        return detections + frames

    # ------------------------------------------------------------------
    # detections
    # ------------------------------------------------------------------

    def insert_detection(
        self,
        video_id: str,
        frame_index: int,
        timestamp: float,
        has_crack: bool,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        confidence: Optional[float] = None,
        detection_json: Optional[Dict[str, Any]] = None,
        image_location: Optional[str] = None
    ) -> int:
        """
        Insert a per-frame detection result.

        If latitude/longitude is None, it is stored as SQL NULL.

        Returns:
            int: ID of the inserted row

        Raises:
            DatabaseError: If insertion fails
        """
        sql = """
        INSERT INTO detections (
            video_id, frame_index, timestamp, latitude, longitude,
            has_crack, confidence, detection_json, image_location
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(sql, (
                    video_id,
                    frame_index,
                    timestamp,
                    latitude,
                    longitude,
                    int(has_crack),
                    confidence,
                    json.dumps(detection_json) if detection_json is not None else None,
                    image_location
                ))
                conn.commit()
                return cursor.lastrowid
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to insert detection: {e}") from e

    def get_detections(self, video_id: str) -> List[Dict[str, Any]]:
        """Detections for a video ordered by timestamp, with JSON decoded."""
        sql = "SELECT * FROM detections WHERE video_id = ? ORDER BY timestamp, frame_index"
        try:
            with self._get_connection() as conn:
                rows = conn.execute(sql, (video_id,)).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to fetch detection data: {e}") from e

        detections = []
        for row in rows:
            item = dict(row)
            item['has_crack'] = bool(item['has_crack'])
            if item['detection_json']:
                item['detection_json'] = json.loads(item['detection_json'])
            detections.append(item)
        return detections

    # ------------------------------------------------------------------
    # video_frames
    # ------------------------------------------------------------------

    def insert_frame(
        self,
        video_id: str,
        frame_index: int,
        timestamp: float,
        frame_location: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None
    ) -> int:
        sql = """
        INSERT INTO video_frames (video_id, frame_index, timestamp, frame_location, latitude, longitude)
        VALUES (?, ?, ?, ?, ?, ?)
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(sql, (
                    video_id, frame_index, timestamp, frame_location, latitude, longitude
                ))
                conn.commit()
                return cursor.lastrowid
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to store frame metadata: {e}") from e

    def get_frames(self, video_id: str) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM video_frames WHERE video_id = ? ORDER BY frame_index"
        try:
            with self._get_connection() as conn:
                rows = conn.execute(sql, (video_id,)).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to fetch frames: {e}") from e
        return [dict(row) for row in rows]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get database statistics.

        Returns:
            Dictionary with:
            - videos_by_status: Count of videos per status
            - total_detections: Number of analysed frames
            - crack_detections: Frames with at least one crack
            - with_gps: Detections carrying coordinates
        """
        try:
            with self._get_connection() as conn:
                by_status = {
                    row[0]: row[1] for row in
                    conn.execute("SELECT status, COUNT(*) FROM videos GROUP BY status")
                }
                total = conn.execute("SELECT COUNT(*) FROM detections").fetchone()[0]
                cracks = conn.execute(
                    "SELECT COUNT(*) FROM detections WHERE has_crack = 1"
                ).fetchone()[0]
                with_gps = conn.execute("""
                    SELECT COUNT(*) FROM detections
                    WHERE latitude IS NOT NULL AND longitude IS NOT NULL
                """).fetchone()[0]
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to get statistics: {e}") from e

        return {
            'videos_by_status': by_status,
            'total_detections': total,
            'crack_detections': cracks,
            'with_gps': with_gps,
        }

    def __repr__(self) -> str:
        return f"DatabaseManager(db_path='{self.db_path}')"
