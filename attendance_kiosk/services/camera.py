import asyncio
import base64
import threading
from typing import Any, Callable, Optional

import cv2
import numpy as np

from attendance_kiosk.exceptions import CaptureError
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)


class CameraStream:
    """
    Reads camera frames in a separate thread so the event loop never blocks
    on device I/O. `read()` always hands out the latest frame.

    `open()` returns only once the first frame has arrived, so detection
    started right after it never sees an empty stream. When the device stops
    delivering, the capture is released and the last frame is dropped.
    """

    def __init__(
        self,
        src: int = 0,
        width: int = 1280,
        height: int = 720,
        jpeg_quality: int = 85,
        capture_factory: Callable[[int], Any] = cv2.VideoCapture,
    ):
        self.src = src
        self.width = width
        self.height = height
        self.jpeg_quality = jpeg_quality
        self._capture_factory = capture_factory

        self.capture: Optional[Any] = None
        self.lock = threading.Lock()
        self.frame: Optional[np.ndarray] = None
        self.stopped = True
        self._thread: Optional[threading.Thread] = None

    @property
    def is_open(self) -> bool:
        return not self.stopped

    async def open(self) -> None:
        if self.is_open:
            return
        # A capture left over from a dead stream is released before reopening
        await self.close()
        capture, frame = await asyncio.to_thread(self._open_device)
        with self.lock:
            self.capture = capture
            self.frame = frame
        self.stopped = False
        self._thread = threading.Thread(target=self._update, daemon=True)
        self._thread.start()
        logger.info(f"Camera {self.src} opened")

    def _open_device(self):
        capture = self._capture_factory(self.src)
        if not capture.isOpened():
            capture.release()
            raise RuntimeError(f"Cannot open camera {self.src}")
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        # Buffer size 1 so we always get the *latest* frame, not an old buffered one
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        ret, frame = capture.read()
        if not ret:
            capture.release()
            raise RuntimeError(f"Camera {self.src} opened but delivered no frame")
        return capture, cv2.flip(frame, 1)

    def _update(self) -> None:
        capture = self.capture
        while not self.stopped:
            ret, frame = capture.read()
            if not ret:
                logger.warning(f"Camera {self.src} stopped delivering frames")
                self.stopped = True
                self._release()
                break
            # Mirror like a selfie preview
            frame = cv2.flip(frame, 1)
            with self.lock:
                self.frame = frame

    def _release(self) -> None:
        with self.lock:
            capture, self.capture = self.capture, None
            self.frame = None
        if capture is not None:
            capture.release()

    def read(self) -> Optional[np.ndarray]:
        with self.lock:
            if self.frame is not None:
                return self.frame.copy()
            return None

    async def snapshot(self) -> str:
        """
        Current frame as a JPEG data URL.

        The frame is copied before the first suspension point; only the
        encoding runs in a worker thread.
        """
        frame = self.read()
        if frame is None:
            raise CaptureError("No video frame available")
        return await asyncio.to_thread(self._encode_jpeg, frame)

    def _encode_jpeg(self, frame: np.ndarray) -> str:
        try:
            ok, buffer = cv2.imencode(
                ".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality]
            )
        except cv2.error as exc:
            raise CaptureError(f"JPEG encoding failed: {exc}") from exc
        if not ok:
            raise CaptureError("JPEG encoding failed")
        return "data:image/jpeg;base64," + base64.b64encode(buffer.tobytes()).decode("ascii")

    async def close(self) -> None:
        self.stopped = True
        if self._thread is not None:
            await asyncio.to_thread(self._thread.join, 2.0)
            self._thread = None
        had_capture = self.capture is not None
        self._release()
        if had_capture:
            logger.info(f"Camera {self.src} closed")
