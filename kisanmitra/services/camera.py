"""
Camera Service
Owns one camera stream for the soil-analysis feature and grabs a single
JPEG still from it. The stream is exclusive: callers must `release()` on
every exit path (capture, cancel, teardown).
"""
import logging
from typing import Any, Callable, Optional

try:
    import cv2
    CV2_AVAILABLE = True
except Exception:
    cv2 = None
    CV2_AVAILABLE = False

from ..errors import CapabilityUnavailable

logger = logging.getLogger(__name__)

CAMERA_UNSUPPORTED = "Camera not supported on this device or browser."
CAMERA_ACCESS_FAILED = "Could not access camera. Please ensure permissions are granted and try again."
CAMERA_READ_FAILED = "Could not read a frame from the camera. Please try again."

DEFAULT_JPEG_QUALITY = 90


class CameraAdapter:
    def __init__(self, device_index: int = 0, capture_factory: Optional[Callable[[int], Any]] = None):
        self.device_index = device_index
        self._factory = capture_factory
        if self._factory is None and CV2_AVAILABLE:
            self._factory = cv2.VideoCapture
        self._stream = None

    @property
    def supported(self) -> bool:
        return self.device_index >= 0 and self._factory is not None and CV2_AVAILABLE

    @property
    def active(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        if not self.supported:
            raise CapabilityUnavailable(CAMERA_UNSUPPORTED)
        if self._stream is not None:
            return
        try:
            stream = self._factory(self.device_index)
        except Exception as e:
            logger.warning("[camera] device %s failed to open: %s", self.device_index, e)
            raise CapabilityUnavailable(CAMERA_ACCESS_FAILED) from e
        if not stream.isOpened():
            stream.release()
            logger.warning("[camera] device %s could not be opened", self.device_index)
            raise CapabilityUnavailable(CAMERA_ACCESS_FAILED)
        self._stream = stream
        logger.info("[camera] device %s opened", self.device_index)

    def read_jpeg(self, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
        """Grab one frame from the open stream and encode it as JPEG."""
        if self._stream is None:
            raise CapabilityUnavailable(CAMERA_ACCESS_FAILED)
        try:
            ok, frame = self._stream.read()
            if ok and frame is not None:
                ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
        except Exception as e:
            # cv2.error from the driver or the encoder
            logger.warning("[camera] frame capture failed on device %s: %s", self.device_index, e)
            raise CapabilityUnavailable(CAMERA_READ_FAILED) from e
        if not ok or frame is None:
            raise CapabilityUnavailable(CAMERA_READ_FAILED)
        return buf.tobytes()

    def release(self) -> None:
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        stream.release()
        logger.info("[camera] device %s released", self.device_index)
