"""
detector.py - Remote Crack Detection Client

This module provides a high-level interface to the hosted crack
classification model:
1. Posting a JPEG frame as a multipart form upload
2. Parsing labeled regions (centre-based boxes) with confidences
3. Waiting out HTTP 429 rate limits using the server's Retry-After hint

Usage:
    from crackscan.detector import CrackDetector

    detector = CrackDetector(endpoint, api_key="...")
    result = detector.detect(frame.blob)
    if result.has_crack:
        print(result.predictions[0].class_name, result.confidence)
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from .exceptions import DetectionError, RateLimitExceededError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 5.0


@dataclass
class Prediction:
    """One labeled region. x/y are the box centre, in pixels."""
    x: float
    y: float
    width: float
    height: float
    confidence: float
    class_name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prediction":
        return cls(
            x=float(data.get('x', 0.0)),
            y=float(data.get('y', 0.0)),
            width=float(data.get('width', 0.0)),
            height=float(data.get('height', 0.0)),
            confidence=float(data.get('confidence', 0.0)),
            class_name=str(data.get('class', 'crack'))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'x': self.x,
            'y': self.y,
            'width': self.width,
            'height': self.height,
            'confidence': self.confidence,
            'class': self.class_name,
        }

    @property
    def bbox(self) -> List[float]:
        """[x1, y1, x2, y2] corners."""
        return [
            self.x - self.width / 2,
            self.y - self.height / 2,
            self.x + self.width / 2,
            self.y + self.height / 2,
        ]


@dataclass
class DetectionResult:
    """Outcome of one detection request."""
    has_crack: bool
    predictions: List[Prediction] = field(default_factory=list)
    confidence: Optional[float] = None
    attempts: int = 1
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def parse_retry_after(value: Optional[str], default: float = DEFAULT_RETRY_AFTER_SECONDS) -> float:
    """
    Read a Retry-After header value in seconds.

    Missing, non-numeric, negative or non-finite values fall back to the
    default.
    """
    if value is None:
        return default
    try:
        seconds = float(value.strip())
    except ValueError:
        return default
    if not math.isfinite(seconds) or seconds < 0:
        return default
    return seconds


class CrackDetector:
    """
    HTTP client for the hosted crack detection model.

    Rate limiting: an HTTP 429 response is never terminal. The same image
    is re-sent after waiting Retry-After seconds (default 5). With
    max_retries=None the loop has no ceiling; otherwise
    RateLimitExceededError is raised once max_retries waits have been used.
    Any other non-2xx status is a terminal DetectionError.

    Attributes:
        endpoint (str): Model URL
        timeout (float): Per-request timeout in seconds
        max_retries (int or None): Ceiling on 429 retries
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        default_retry_after: float = DEFAULT_RETRY_AFTER_SECONDS,
        max_retries: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        session: Optional[requests.Session] = None
    ):
        """
        Args:
            endpoint: Detection endpoint URL
            api_key: API key, sent as the `api_key` query parameter
            timeout: Per-request timeout in seconds
            default_retry_after: Wait used when a 429 carries no usable hint
            max_retries: Maximum number of 429 retries per image (None = unbounded)
            sleep: Delay function, injected for tests
            session: Optional requests session to reuse connections

        Raises:
            ValueError: If endpoint is empty or max_retries is negative
        """
        if not endpoint:
            raise ValueError("Detection endpoint URL is required")
        if max_retries is not None and max_retries < 0:
            raise ValueError("max_retries must be >= 0 or None")

        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self.default_retry_after = default_retry_after
        self.max_retries = max_retries
        self.sleep = sleep
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: Dict[str, Any], **kwargs) -> "CrackDetector":
        detection = config['detection']
        return cls(
            endpoint=detection['endpoint'],
            api_key=detection.get('api_key') or None,
            timeout=detection['timeout_seconds'],
            default_retry_after=detection['default_retry_after'],
            max_retries=detection['max_retries'],
            **kwargs
        )

    def _post(self, image: bytes, filename: str) -> requests.Response:
        params = {'api_key': self.api_key} if self.api_key else None
        files = {'file': (filename, image, 'image/jpeg')}
        try:
            return self.session.post(
                self.endpoint,
                params=params,
                files=files,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise DetectionError(f"Detection request failed: {e}") from e

    def detect(self, image: bytes, filename: str = "frame.jpg") -> DetectionResult:
        """
        Run crack detection on one encoded image.

        Args:
            image: JPEG bytes
            filename: Multipart filename

        Returns:
            DetectionResult with parsed predictions

        Raises:
            DetectionError: Terminal HTTP status, transport error or bad JSON
            RateLimitExceededError: 429 retry ceiling reached
        """
        attempts = 0
        retries = 0
        while True:
            attempts += 1
            response = self._post(image, filename)

            if response.status_code != 429:
                break

            if self.max_retries is not None and retries >= self.max_retries:
                raise RateLimitExceededError(
                    f"Rate limited {attempts} times, giving up after {retries} retries"
                )

            wait = parse_retry_after(
                response.headers.get('Retry-After'), self.default_retry_after
            )
            logger.warning(f"Detection rate limited (429), retrying in {wait:g}s")
            self.sleep(wait)
            retries += 1

        if not 200 <= response.status_code < 300:
            raise DetectionError(f"API request failed with status {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise DetectionError(f"Detection response is not valid JSON: {e}") from e

        predictions = self.extract_detections(data)
        return DetectionResult(
            has_crack=len(predictions) > 0,
            predictions=predictions,
            confidence=predictions[0].confidence if predictions else None,
            attempts=attempts,
            raw=data
        )

    @staticmethod
    def extract_detections(data: Dict[str, Any]) -> List[Prediction]:
        """
        Extract predictions from a response body.

        Args:
            data: Decoded JSON `{predictions: [{x, y, width, height, confidence, class}], ...}`

        Returns:
            List of Prediction objects (empty when none)
        """
        if not isinstance(data, dict):
            return []
        return [Prediction.from_dict(p) for p in data.get('predictions') or []]

    def __repr__(self) -> str:
        ceiling = "unbounded" if self.max_retries is None else self.max_retries
        return f"CrackDetector(endpoint='{self.endpoint}', max_retries={ceiling})"
