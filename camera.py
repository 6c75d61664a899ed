"""Camera frame capture using OpenCV."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

from models import Frame

try:
    import cv2
except Exception:  # pragma: no cover
    cv2 = None  # type: ignore

logger = logging.getLogger(__name__)

MAX_WIDTH = 1024
MAX_HEIGHT = 576
JPEG_QUALITY = 85


def fit_within(width: int, height: int) -> tuple[int, int]:
    """Scale (width, height) down so it fits MAX_WIDTH x MAX_HEIGHT."""
    if width > height:
        if width > MAX_WIDTH:
            height = round(height * (MAX_WIDTH / width))
            width = MAX_WIDTH
    elif height > MAX_HEIGHT:
        width = round(width * (MAX_HEIGHT / height))
        height = MAX_HEIGHT
    return width, height


class OpenCvFrameSource:
    def __init__(self, device_index: int = 0) -> None:
        self._device_index = device_index
        self._capture: Any = None
        self._lock = threading.Lock()

    def open(self) -> None:
        if cv2 is None:
            raise RuntimeError("opencv-python is not installed")
        with self._lock:
            if self._capture is None:
                self._capture = cv2.VideoCapture(self._device_index)

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None

    def capture_frame(self) -> Optional[Frame]:
        with self._lock:
            if self._capture is None or not self._capture.isOpened():
                return None
            ok, image = self._capture.read()
        if not ok or image is None:
            return None
        height, width = image.shape[:2]
        new_width, new_height = fit_within(width, height)
        if (new_width, new_height) != (width, height):
            image = cv2.resize(image, (new_width, new_height), interpolation=cv2.INTER_AREA)
        ok, encoded = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), JPEG_QUALITY])
        if not ok:
            logger.warning("JPEG encoding failed")
            return None
        return Frame(
            jpeg_bytes=encoded.tobytes(),
            width=new_width,
            height=new_height,
            timestamp_ms=int(time.time() * 1000),
        )
