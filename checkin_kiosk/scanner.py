"""
Camera Scanner for the Check-in Kiosk

A ``Scanner`` turns camera frames into decoded codes and hands each one
to a callback. The kiosk only depends on the abstract interface, so the
decoding engine can be swapped, and tests can use a fake.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from .exceptions import ScannerDeviceException

logger = logging.getLogger('scanner')

DecodeCallback = Callable[[str], None]


class Scanner(ABC):
    """Capability interface for a code scanner"""

    @abstractmethod
    def start(self, on_decode: DecodeCallback) -> None:
        """
        Start scanning

        Args:
            on_decode: Called with the decoded text of every code read

        Raises:
            ScannerDeviceException: If the device cannot be started
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop scanning and release the device. Safe to call twice."""
        pass

    @property
    @abstractmethod
    def is_active(self) -> bool:
        pass


class NullScanner(Scanner):
    """Scanner used when no camera is configured"""

    def start(self, on_decode: DecodeCallback) -> None:
        raise ScannerDeviceException("camera scanning is disabled (SCANNER_ENABLED is off)")

    def stop(self) -> None:
        pass

    @property
    def is_active(self) -> bool:
        return False


class DecodeDebouncer:
    """
    Drops repeated reads of the same code

    A camera decodes the same QR code many times a second while it is
    held in front of the lens. Only the first read gets through; the
    same code is accepted again once it has not been read for
    ``window_seconds``.
    """

    def __init__(self, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.clock = clock
        self._last_code: Optional[str] = None
        self._last_time = 0.0

    def accept(self, code: str) -> bool:
        now = self.clock()
        if code == self._last_code and (now - self._last_time) < self.window_seconds:
            self._last_time = now
            return False
        self._last_code = code
        self._last_time = now
        return True

    def reset(self) -> None:
        self._last_code = None
        self._last_time = 0.0


class OpenCVQRScanner(Scanner):
    """
    QR scanner that reads a local camera with OpenCV

    OpenCV is imported only when scanning starts, so the kiosk runs
    without it as long as nobody opens the camera tab. Frames are read
    and decoded on a daemon thread; ``stop`` joins it and releases the
    capture device.
    """

    def __init__(self, camera_index: int = 0, debounce_seconds: float = 3.0,
                 frame_interval: float = 0.1):
        """
        Initialize OpenCV scanner

        Args:
            camera_index: Index passed to ``cv2.VideoCapture``
            debounce_seconds: Window for suppressing repeated reads
            frame_interval: Delay between frames (10 fps by default)
        """
        self.camera_index = camera_index
        self.frame_interval = frame_interval
        self._debouncer = DecodeDebouncer(debounce_seconds)
        self.join_timeout = 2.0
        self._capture = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._capture is not None

    def start(self, on_decode: DecodeCallback) -> None:
        try:
            import cv2
        except ImportError as e:
            raise ScannerDeviceException(f"OpenCV is not installed: {e}")

        with self._lock:
            self._release()
            capture = cv2.VideoCapture(self.camera_index)
            if not capture.isOpened():
                capture.release()
                raise ScannerDeviceException(f"camera {self.camera_index} could not be opened")

            # one stop flag per run; a thread that outlives its join still sees its own flag set
            stop_event = threading.Event()
            self._capture = capture
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run,
                args=(cv2.QRCodeDetector(), capture, on_decode, stop_event),
                name="qr-scanner",
                daemon=True
            )
            self._thread.start()
        logger.info(f"Camera {self.camera_index} started")

    def _run(self, detector, capture, on_decode: DecodeCallback,
             stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            ok, frame = capture.read()
            if ok and frame is not None:
                # frame-level decode errors are expected while nothing is in view
                try:
                    text, _, _ = detector.detectAndDecode(frame)
                except Exception:
                    text = ""
                text = (text or "").strip()
                if text and self._debouncer.accept(text):
                    logger.debug(f"Decoded {text!r}")
                    try:
                        on_decode(text)
                    except Exception:
                        logger.exception("Decode callback failed")
            stop_event.wait(self.frame_interval)

    def _release(self) -> None:
        stop_event, self._stop_event = self._stop_event, None
        if stop_event is not None:
            stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout)
            if thread.is_alive():
                logger.warning("Scanner thread still busy after stop; it exits after its current decode")
        capture, self._capture = self._capture, None
        if capture is not None:
            capture.release()
            logger.info(f"Camera {self.camera_index} released")

    def stop(self) -> None:
        with self._lock:
            self._release()


def create_scanner(config: Dict) -> Scanner:
    """
    Build the scanner described by the configuration

    Args:
        config: Mapping with the ``SCANNER_*`` keys

    Returns:
        An OpenCVQRScanner when scanning is enabled, else a NullScanner
    """
    if not config.get('SCANNER_ENABLED'):
        return NullScanner()
    return OpenCVQRScanner(
        camera_index=config.get('SCANNER_CAMERA_INDEX', 0),
        debounce_seconds=config.get('SCANNER_DEBOUNCE_SECONDS', 3.0)
    )
