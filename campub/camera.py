"""
Frame sources for the publisher loop.

This module provides:
  - HardwareCapture: a V4L2 camera opened through OpenCV
  - SyntheticGenerator: a test pattern source for machines without a camera
  - create_source(): picks one of the two at startup

Both hand out PixelBuffers from next_frame(), or None when no frame could be
retrieved this tick.
"""

import time
from typing import Optional, Union

import cv2
import numpy as np
from PIL import Image, ImageDraw

from . import config
from .frame import PixelBuffer


class CameraError(Exception):
    """Raised when camera operations fail."""
    pass


class DeviceOpenError(CameraError):
    """Raised when the capture device cannot be opened at all."""

    def __init__(self, device):
        self.device = device
        super().__init__(f"Could not open video stream on device '{device}'")


class FrameSource:
    """
    Common interface for frame sources.

    Usage:
        with create_source(use_synthetic=True) as source:
            buf = source.next_frame()   # PixelBuffer or None
    """

    name = "source"

    def __init__(self, width: int = None, height: int = None):
        self.width = width or config.WIDTH
        self.height = height or config.HEIGHT
        self._running = False
        self._frame_count = 0
        self._empty_count = 0
        self._last_frame_time = 0.0

    def start(self):
        self._running = True

    def stop(self):
        self._running = False

    def next_frame(self) -> Optional[PixelBuffer]:
        raise NotImplementedError

    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict:
        return {
            "source": self.name,
            "running": self._running,
            "frames": self._frame_count,
            "empty": self._empty_count,
            "last_frame_time": self._last_frame_time,
            "resolution": f"{self.width}x{self.height}",
        }

    def _count(self, buf: Optional[PixelBuffer]) -> Optional[PixelBuffer]:
        if buf is None:
            self._empty_count += 1
        else:
            self._frame_count += 1
            self._last_frame_time = time.time()
        return buf

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


def _device_arg(device: str) -> Union[str, int]:
    """OpenCV wants an int index for "0", "1", ... and a path otherwise."""
    device = str(device).strip()
    if device.isdigit():
        return int(device)
    return device


class HardwareCapture(FrameSource):
    """
    V4L2 camera opened through cv2.VideoCapture.

    start() raises DeviceOpenError if the device cannot be opened. After
    that, read failures of any kind are reported as None so the caller can
    simply try again on the next tick.
    """

    name = "camera"

    def __init__(self, device: str = None, width: int = None, height: int = None):
        super().__init__(width, height)
        self.device = device or config.DEVICE
        self._cap: Optional[cv2.VideoCapture] = None

    def start(self):
        """Open the device and request the configured resolution."""
        if self._running:
            print("[camera] Already running")
            return

        print(f"[camera] Opening {self.device} ({self.width}x{self.height})")

        cap = cv2.VideoCapture(_device_arg(self.device), cv2.CAP_V4L2)
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, float(self.width))
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, float(self.height))
        if not cap.isOpened():
            cap.release()
            raise DeviceOpenError(self.device)

        self._cap = cap
        self._running = True
        print("[camera] Started successfully")

    def stop(self):
        """Release the device handle. Safe to call more than once."""
        if self._cap is None:
            return

        print("[camera] Releasing device...")
        cap, self._cap = self._cap, None
        self._running = False
        cap.release()
        print("[camera] Stopped")

    def next_frame(self) -> Optional[PixelBuffer]:
        if self._cap is None:
            return self._count(None)

        try:
            ok, frame = self._cap.read()
        except cv2.error as e:
            print(f"[camera] Read error: {e}")
            return self._count(None)

        if not ok or frame is None or frame.size == 0:
            return self._count(None)
        try:
            buf = PixelBuffer.from_array(frame)
        except ValueError as e:
            print(f"[camera] Bad frame from {self.device}: {e}")
            return self._count(None)
        return self._count(buf)

    def get_stats(self) -> dict:
        stats = super().get_stats()
        stats["device"] = self.device
        return stats


class SyntheticGenerator(FrameSource):
    """
    Test pattern source that never runs dry.

    Renders a vertical gradient with a burger sliding across it and a white
    marker in the top-left corner, so a horizontal flip is easy to spot on
    the receiving side. The output is
    BGR by default; channels=1 or 4 produce mono8 or rgba8 frames instead.
    """

    name = "synthetic"

    def __init__(self, width: int = None, height: int = None, channels: int = 3):
        super().__init__(width, height)
        if channels not in (1, 3, 4):
            raise CameraError(f"Synthetic source supports 1, 3 or 4 channels, not {channels}")
        self.channels = channels
        self._background = self._make_background()

    def start(self):
        print(f"[synthetic] Generating {self.width}x{self.height} test frames (no real hardware)")
        self._running = True

    def stop(self):
        if self._running:
            print("[synthetic] Stopping")
        self._running = False

    def _make_background(self) -> np.ndarray:
        ramp = np.linspace(0.0, 1.0, self.height, dtype=np.float32)[:, None]
        img = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        img[:, :, 0] = (255 * (1 - ramp)).astype(np.uint8)  # Blue fades out
        img[:, :, 2] = (255 * ramp).astype(np.uint8)        # Red fades in
        return img

    def render(self, index: int) -> np.ndarray:
        """Render pattern number `index` as an RGB array."""
        image = Image.fromarray(self._background[:, :, ::-1].copy())
        draw = ImageDraw.Draw(image)

        # Origin marker, so the frame is never left-right symmetric
        mark = max(1, min(self.width, self.height) // 8)
        draw.rectangle([0, 0, mark - 1, mark - 1], fill=(255, 255, 255))

        size = max(4, min(self.width, self.height) // 3)
        travel = max(1, self.width - size)
        x = (index * max(1, self.width // 30)) % travel
        y = (self.height - size) // 2

        # Bun, patty, bun
        draw.pieslice([x, y, x + size, y + size], 180, 360, fill=(214, 150, 60))
        draw.rectangle([x, y + size // 2 - size // 10, x + size, y + size // 2 + size // 10],
                       fill=(90, 50, 20))
        draw.chord([x, y + size // 2, x + size, y + size], 0, 180, fill=(214, 150, 60))

        return np.asarray(image)

    def next_frame(self) -> Optional[PixelBuffer]:
        rgb = self.render(self._frame_count)

        if self.channels == 1:
            frame = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)
        elif self.channels == 4:
            frame = cv2.cvtColor(rgb, cv2.COLOR_RGB2RGBA)
        else:
            frame = cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)

        return self._count(PixelBuffer.from_array(frame))


def create_source(use_synthetic: bool = False, **kwargs) -> FrameSource:
    """
    Factory function to create the frame source for this process.

    Args:
        use_synthetic: Use the test pattern instead of a camera
        **kwargs: Passed to the source constructor

    Returns:
        HardwareCapture or SyntheticGenerator instance (not yet started)
    """
    if use_synthetic:
        kwargs.pop("device", None)
        return SyntheticGenerator(**kwargs)
    kwargs.pop("channels", None)
    return HardwareCapture(**kwargs)
