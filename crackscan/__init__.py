"""
crackscan - Road Crack Survey Module

Core components:
- gps_manager.py: Location sampling during recording, frame-to-GPS matching
- track_reconstructor.py: Per-second GPS track and gps_by_second.csv
- capture_session.py: Video sources, recorder and the recording session
- upload_pipeline.py: Upload and queueing of finished recordings
- frame_extractor.py: Fixed-rate still frame extraction
- detector.py: HTTP crack detection client with 429 back-off
- video_processor.py: Processing path for queued videos
- main.py: Command line entry point
"""

from .exceptions import (
    CrackScanError,
    GPSDataError,
    CameraUnavailableError,
    RecordingStateError,
    MediaError,
    InvalidMediaError,
    EmptyOutputError,
    ExtractionTimeoutError,
    UploadError,
    EmptyRecordingError,
    SizeLimitExceededError,
    StorageError,
    DatabaseError,
    DetectionError,
    RateLimitExceededError,
    ConfigurationError
)

from .gps_manager import (
    RawFix,
    PerSecondCoordinate,
    LocationProvider,
    ReplayLocationProvider,
    LocationSampler,
    match_frame_to_gps,
    load_fix_file
)

from .track_reconstructor import (
    reconstruct_track,
    generate_gps_log,
    parse_gps_log
)

from .frame_extractor import (
    VideoFrame,
    FrameExtractor,
    extract_frames
)

from .detector import (
    CrackDetector,
    DetectionResult,
    Prediction
)

from .storage import (
    BlobStore,
    LocalBlobStore
)

from .database_manager import (
    DatabaseManager,
    VideoRecord,
    VideoStatus
)

from .upload_pipeline import UploadPipeline

from .capture_session import (
    CaptureSession,
    CaptureResult,
    VideoRecorder,
    VideoSource,
    create_video_source
)

from .video_processor import (
    VideoProcessor,
    ProcessingResult,
    annotate_predictions,
    generate_csv_report,
    detections_to_dataframe
)

__all__ = [
    # Exceptions
    'CrackScanError',
    'GPSDataError',
    'CameraUnavailableError',
    'RecordingStateError',
    'MediaError',
    'InvalidMediaError',
    'EmptyOutputError',
    'ExtractionTimeoutError',
    'UploadError',
    'EmptyRecordingError',
    'SizeLimitExceededError',
    'StorageError',
    'DatabaseError',
    'DetectionError',
    'RateLimitExceededError',
    'ConfigurationError',
    # GPS
    'RawFix',
    'PerSecondCoordinate',
    'LocationProvider',
    'ReplayLocationProvider',
    'LocationSampler',
    'match_frame_to_gps',
    'load_fix_file',
    # Track
    'reconstruct_track',
    'generate_gps_log',
    'parse_gps_log',
    # Frames
    'VideoFrame',
    'FrameExtractor',
    'extract_frames',
    # Detection
    'CrackDetector',
    'DetectionResult',
    'Prediction',
    # Storage
    'BlobStore',
    'LocalBlobStore',
    'DatabaseManager',
    'VideoRecord',
    'VideoStatus',
    'UploadPipeline',
    # Capture
    'CaptureSession',
    'CaptureResult',
    'VideoRecorder',
    'VideoSource',
    'create_video_source',
    # Processing
    'VideoProcessor',
    'ProcessingResult',
    'annotate_predictions',
    'generate_csv_report',
    'detections_to_dataframe'
]
