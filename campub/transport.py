"""
ZeroMQ transport for frames and flip toggles.

Outbound frames go out on a PUB socket as one ZeroMQ frame each:
    topic, NUL byte, encode_message(msg)
The topic prefix is what SUB sockets filter on; the NUL keeps "image" from
matching "image_raw".
Inbound toggles arrive on a SUB socket as:
    [b"flip_image", b"true" | b"false" | b'{"data": true}']

QoS is mapped onto socket options:
  - keep_last 1   -> CONFLATE: the queue holds only the newest message
                     (consumers wanting the same on their side use
                     FrameReceiver(conflate=True))
  - keep_last N   -> send high-water mark N. ZeroMQ drops the NEWEST message
                     once N are queued, so for N > 1 a stalled peer keeps
                     the oldest N rather than the latest N
  - keep_all      -> send high-water mark 0 (unbounded, memory limited)
  - best_effort   -> non-blocking send, full queues drop at the socket
  - reliable      -> XPUB_NODROP + bounded send timeout; a send that cannot
                     complete raises TransportPublishFailure
"""

import enum
import json
import os
from dataclasses import dataclass
from typing import List, Optional

import zmq

from . import config
from .frame import WireMessage, encode_message


class TransportPublishFailure(Exception):
    """Raised when a frame cannot be handed to the transport."""
    pass


class History(enum.Enum):
    KEEP_LAST = "keep_last"
    KEEP_ALL = "keep_all"


class Reliability(enum.Enum):
    BEST_EFFORT = "best_effort"
    RELIABLE = "reliable"


@dataclass(frozen=True)
class QoSConfig:
    """Delivery policy for the outbound channel, fixed for the publisher's lifetime."""

    history: History = History.KEEP_LAST
    depth: int = 10
    reliability: Reliability = Reliability.RELIABLE

    def __post_init__(self):
        if self.history is History.KEEP_LAST and self.depth < 1:
            raise ValueError(f"keep_last history needs depth >= 1, got {self.depth}")

    @classmethod
    def from_strings(cls, history: str, depth: int, reliability: str) -> "QoSConfig":
        """Build from configuration strings such as "keep_last" / "best_effort"."""
        try:
            hist = History(history.strip().lower().replace("-", "_"))
        except ValueError:
            raise ValueError(f"Unknown history policy: {history!r}") from None
        try:
            rel = Reliability(reliability.strip().lower().replace("-", "_"))
        except ValueError:
            raise ValueError(f"Unknown reliability policy: {reliability!r}") from None
        return cls(history=hist, depth=int(depth), reliability=rel)

    @property
    def send_hwm(self) -> int:
        return self.depth if self.history is History.KEEP_LAST else 0

    @property
    def conflate(self) -> bool:
        """True when only the newest message should ever be queued."""
        return self.history is History.KEEP_LAST and self.depth == 1

    def describe(self) -> str:
        if self.history is History.KEEP_LAST:
            return f"{self.history.value}({self.depth}), {self.reliability.value}"
        return f"{self.history.value}, {self.reliability.value}"


def topic_prefix(topic: str) -> bytes:
    """Bytes that start every frame message on topic, and the SUB filter for it."""
    return topic.encode("utf-8") + b"\x00"


def _ipc_path(endpoint: str) -> Optional[str]:
    if endpoint.startswith("ipc://"):
        return endpoint[len("ipc://"):]
    return None


def _open(sock: zmq.Socket, endpoint: str, mode: str) -> str:
    """Bind or connect a socket. Returns the mode actually used."""
    mode = (mode or "bind").strip().lower()
    if mode == "bind":
        path = _ipc_path(endpoint)
        if path and os.path.exists(path):
            os.remove(path)
        sock.bind(endpoint)
    else:
        mode = "connect"
        sock.connect(endpoint)
    return mode


class FramePublisher:
    """
    PUB socket for outbound frames.

    Usage:
        pub = FramePublisher("tcp://*:5555", "image", QoSConfig())
        pub.publish(msg)
        pub.close()
    """

    def __init__(
        self,
        endpoint: str = None,
        topic: str = None,
        qos: QoSConfig = None,
        context: zmq.Context = None,
        mode: str = "bind",
        send_timeout_ms: int = None
    ):
        self.endpoint = endpoint or config.ENDPOINT
        self.topic = topic or config.TOPIC
        self.qos = qos or QoSConfig()
        self._prefix = topic_prefix(self.topic)
        self._published = 0
        self._closed = False

        self.context = context or zmq.Context.instance()
        self.socket = self.context.socket(zmq.PUB)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket.setsockopt(zmq.SNDHWM, self.qos.send_hwm)
        if self.qos.conflate:
            self.socket.setsockopt(zmq.CONFLATE, 1)
        if self.qos.reliability is Reliability.RELIABLE:
            timeout = config.SEND_TIMEOUT_MS if send_timeout_ms is None else send_timeout_ms
            self.socket.setsockopt(zmq.XPUB_NODROP, 1)
            self.socket.setsockopt(zmq.SNDTIMEO, int(timeout))
            self._flags = 0
        else:
            self._flags = zmq.NOBLOCK

        try:
            self.mode = _open(self.socket, self.endpoint, mode)
        except zmq.ZMQError:
            self.socket.close(0)
            raise

        print(f"[transport] Publishing data on topic '{self.topic}' "
              f"({self.mode} {self.endpoint}, qos {self.qos.describe()})")

    def publish(self, msg: WireMessage):
        """Hand a message to the socket. The caller must not reuse it afterwards."""
        try:
            self.socket.send(self._prefix + encode_message(msg), flags=self._flags)
        except zmq.Again as e:
            raise TransportPublishFailure(
                f"Send queue on '{self.topic}' stayed full, frame {msg.frame_id} not sent"
            ) from e
        except zmq.ZMQError as e:
            raise TransportPublishFailure(f"Publish on '{self.topic}' failed: {e}") from e
        self._published += 1

    @property
    def published(self) -> int:
        return self._published

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.socket.close(0)
        if self.mode == "bind":
            path = _ipc_path(self.endpoint)
            if path and os.path.exists(path):
                os.remove(path)


def parse_toggle(payload: bytes) -> bool:
    """
    Decode a flip toggle payload.

    Accepts true/false, 1/0, on/off (any case), a bare JSON boolean, or a
    JSON object {"data": <bool>}.

    Raises:
        ValueError: if the payload is not a recognisable boolean
    """
    text = bytes(payload).decode("utf-8", errors="replace").strip()
    lowered = text.lower()
    if lowered in ("true", "1", "on", "yes"):
        return True
    if lowered in ("false", "0", "off", "no"):
        return False

    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        raise ValueError(f"Not a boolean toggle: {text!r}") from None
    if isinstance(value, dict):
        value = value.get("data")
    if not isinstance(value, bool):
        raise ValueError(f"Not a boolean toggle: {text!r}")
    return value


def encode_toggle(value: bool, topic: str = None) -> List[bytes]:
    """Frames a peer sends to toggle flipping."""
    topic = topic or config.FLIP_TOPIC
    return [topic.encode("utf-8"), b"true" if value else b"false"]


class ControlSubscriber:
    """
    SUB socket for inbound flip toggles.

    Never blocks: drain() returns whatever has arrived since the last call.
    """

    def __init__(
        self,
        endpoint: str = None,
        topic: str = None,
        context: zmq.Context = None,
        mode: str = "bind"
    ):
        self.endpoint = endpoint or config.CONTROL_ENDPOINT
        self.topic = topic or config.FLIP_TOPIC
        self._topic_bytes = self.topic.encode("utf-8")
        self._closed = False

        self.context = context or zmq.Context.instance()
        self.socket = self.context.socket(zmq.SUB)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket.setsockopt(zmq.SUBSCRIBE, self._topic_bytes)
        try:
            self.mode = _open(self.socket, self.endpoint, mode)
        except zmq.ZMQError:
            self.socket.close(0)
            raise

        print(f"[transport] Listening for '{self.topic}' toggles ({self.mode} {self.endpoint})")

    def _payload(self, parts: List[bytes]) -> Optional[bytes]:
        if len(parts) >= 2:
            return parts[1] if parts[0] == self._topic_bytes else None
        # Single-frame form: b"flip_image true"
        head, _, rest = parts[0].partition(b" ")
        return rest if head == self._topic_bytes else None

    def drain(self) -> List[bool]:
        """Receive every pending toggle without waiting."""
        values = []
        while True:
            try:
                parts = self.socket.recv_multipart(flags=zmq.NOBLOCK)
            except zmq.Again:
                return values

            payload = self._payload(parts)
            if payload is None:
                continue
            try:
                values.append(parse_toggle(payload))
            except ValueError as e:
                print(f"[transport] Ignoring malformed toggle: {e}")

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.socket.close(0)
        if self.mode == "bind":
            path = _ipc_path(self.endpoint)
            if path and os.path.exists(path):
                os.remove(path)
