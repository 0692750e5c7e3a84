"""
Frame receiver.

Subscribes to a campub frame topic and yields decoded WireMessages.
"""

import time
from typing import Generator, Optional

import zmq

from . import config
from .frame import WireMessage, decode_message
from .transport import topic_prefix


class FrameReceiver:
    """
    Receives and decodes frames published by campub.

    With conflate=True the socket keeps only the newest unread frame, which
    suits consumers that fall behind and only care about the latest image.

    Usage:
        receiver = FrameReceiver("tcp://192.168.1.100:5555")
        for msg in receiver.frames():
            frame = message_to_array(msg)
            process(frame)
    """

    def __init__(
        self,
        endpoint: str,
        topic: str = None,
        context: zmq.Context = None,
        conflate: bool = False
    ):
        self.endpoint = endpoint
        self.topic = topic or config.TOPIC
        self._prefix = topic_prefix(self.topic)
        self._running = False
        self._frame_count = 0
        self._bad_count = 0
        self._last_frame_time = 0.0

        self.context = context or zmq.Context.instance()
        self.socket = self.context.socket(zmq.SUB)
        self.socket.setsockopt(zmq.LINGER, 0)
        if conflate:
            self.socket.setsockopt(zmq.CONFLATE, 1)
        self.socket.setsockopt(zmq.SUBSCRIBE, self._prefix)
        self.socket.connect(endpoint)

    def receive(self, timeout_ms: int = 1000) -> Optional[WireMessage]:
        """
        Wait up to timeout_ms for the next frame.

        Returns:
            WireMessage, or None on timeout or a malformed frame.
        """
        if not self.socket.poll(timeout_ms, zmq.POLLIN):
            return None

        raw = self.socket.recv()
        if not raw.startswith(self._prefix):
            return None

        try:
            msg = decode_message(memoryview(raw)[len(self._prefix):])
        except ValueError as e:
            print(f"[receiver] Dropping bad frame: {e}")
            self._bad_count += 1
            return None

        self._frame_count += 1
        self._last_frame_time = time.time()
        return msg

    def frames(self, timeout_ms: int = 1000) -> Generator[WireMessage, None, None]:
        """Yield frames until stop() is called."""
        self._running = True
        while self._running:
            msg = self.receive(timeout_ms)
            if msg is not None:
                yield msg

    def stop(self):
        self._running = False

    def close(self):
        self.stop()
        self.socket.close(0)

    def get_stats(self) -> dict:
        """Get receiver statistics."""
        return {
            "frame_count": self._frame_count,
            "bad_frames": self._bad_count,
            "last_frame_time": self._last_frame_time,
            "endpoint": self.endpoint,
        }
