"""
exceptions.py - Custom Exception Classes

Defines application-specific exceptions for capture, reconstruction,
extraction, upload and detection failures.

Usage:
    from crackscan.exceptions import InvalidMediaError

    raise InvalidMediaError("Video has no readable duration")
"""


class CrackScanError(Exception):
    """Base exception for all crack survey pipeline errors."""
    pass


class GPSDataError(CrackScanError):
    """Raised when GPS log content or a fix file is invalid or corrupted."""
    pass


class CameraUnavailableError(CrackScanError):
    """Raised when a video source cannot be opened or has no live stream."""
    pass


class RecordingStateError(CrackScanError):
    """Raised on start while recording, or stop while idle."""
    pass


class MediaError(CrackScanError):
    """Base class for video decoding and frame extraction failures."""
    pass


class InvalidMediaError(MediaError):
    """Raised when a clip is empty, unreadable, or has no finite duration."""
    pass


class EmptyOutputError(MediaError):
    """Raised when a clip with a valid duration produced zero frames."""
    pass


class ExtractionTimeoutError(MediaError):
    """Raised when frame extraction exceeds its wall-time budget."""
    pass


class UploadError(CrackScanError):
    """Raised when a recording cannot be persisted."""
    pass


class EmptyRecordingError(UploadError):
    """Raised when the concatenated video blob has zero bytes."""
    pass


class SizeLimitExceededError(UploadError):
    """Raised when the concatenated video blob is over the size cap."""
    pass


class StorageError(UploadError):
    """Raised when a blob store operation fails."""
    pass


class DatabaseError(CrackScanError):
    """Raised when record store operations fail."""
    pass


class DetectionError(CrackScanError):
    """Raised when the detection endpoint returns a terminal failure."""
    pass


class RateLimitExceededError(DetectionError):
    """Raised when a caller-chosen retry ceiling is exhausted on HTTP 429."""
    pass


class ConfigurationError(CrackScanError):
    """Raised when configuration is invalid."""
    pass
