"""
Local debug preview of the frames being published.
"""

import cv2
import numpy as np

from .frame import PixelBuffer


class PreviewWindow:
    """
    OpenCV window showing the most recent frame.

    Usage:
        preview = PreviewWindow()
        preview.show(buffer)
        preview.close()
    """

    WINDOW_NAME = "cam2image"

    def __init__(self, window_name: str = None):
        self.window_name = window_name or self.WINDOW_NAME
        self._open = False

    def show(self, buffer: PixelBuffer):
        """Draw a frame and pump the GUI event loop for 1 ms."""
        if not self._open:
            print(f"[preview] Opening window '{self.window_name}'")
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            self._open = True

        frame = buffer.as_array()
        if buffer.channels == 4:
            frame = cv2.cvtColor(frame, cv2.COLOR_RGBA2BGR)
        elif buffer.dtype == np.int16:
            # imshow has no signed 16-bit path
            frame = cv2.normalize(frame, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)

        cv2.imshow(self.window_name, np.ascontiguousarray(frame))
        cv2.waitKey(1)

    def close(self):
        if not self._open:
            return
        print("[preview] Closing window")
        self._open = False
        cv2.destroyWindow(self.window_name)
