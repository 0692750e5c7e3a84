"""
Pixel buffers and the wire message built from them.

PixelBuffer is the in-memory frame handed out by a frame source: a
rectangular grid of pixels with an explicit row stride. WireMessage is the
immutable, transport-ready snapshot of one frame. build_message() copies a
buffer into a message, and encode_message()/decode_message() turn a message
into the single blob that goes on the wire:
    [u32 big-endian header length][json header][raw pixel bytes]
"""

import json
import struct
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .encoding import bytes_per_pixel, encoding_for, layout_for


class PixelBuffer:
    """
    A frame with explicit stride.

    The payload is always a flat uint8 array of exactly stride * height bytes.
    Rows may be padded (stride larger than width * bytes-per-pixel); padding
    bytes are carried along untouched.

    Usage:
        buf = PixelBuffer.from_array(cv_frame)
        arr = buf.as_array()   # (H, W) or (H, W, C) view, padding hidden
    """

    def __init__(
        self,
        width: int,
        height: int,
        channels: int,
        dtype,
        stride: int,
        payload
    ):
        self.width = int(width)
        self.height = int(height)
        self.channels = int(channels)
        self.dtype = np.dtype(dtype)
        self.stride = int(stride)

        if self.width <= 0 or self.height <= 0 or self.channels <= 0:
            raise ValueError(
                f"Invalid frame shape {self.width}x{self.height}x{self.channels}"
            )

        row_bytes = self.width * bytes_per_pixel(self.dtype, self.channels)
        if self.stride < row_bytes:
            raise ValueError(
                f"Stride {self.stride} is smaller than the row size {row_bytes}"
            )

        if isinstance(payload, np.ndarray):
            payload = payload.reshape(-1).view(np.uint8)
        else:
            payload = np.frombuffer(payload, dtype=np.uint8)

        if payload.size != self.stride * self.height:
            raise ValueError(
                f"Payload is {payload.size} bytes, expected "
                f"{self.stride * self.height} (stride {self.stride} x height {self.height})"
            )
        self.payload = payload

    @classmethod
    def from_array(cls, frame: np.ndarray) -> "PixelBuffer":
        """
        Wrap an OpenCV-style (H, W) or (H, W, C) array.

        The array is made C-contiguous first, so the resulting buffer is
        tightly packed (stride == width * bytes-per-pixel).
        """
        if frame.ndim == 2:
            channels = 1
        elif frame.ndim == 3:
            channels = frame.shape[2]
        else:
            raise ValueError(f"Expected a 2D or 3D array, got shape {frame.shape}")

        frame = np.ascontiguousarray(frame)
        height, width = frame.shape[:2]
        stride = width * bytes_per_pixel(frame.dtype, channels)
        return cls(width, height, channels, frame.dtype, stride, frame)

    @property
    def nbytes(self) -> int:
        return self.stride * self.height

    def as_array(self) -> np.ndarray:
        """Strided array view over the payload. Single-channel frames are 2D."""
        itemsize = self.dtype.itemsize
        pixel = itemsize * self.channels
        view = np.ndarray(
            shape=(self.height, self.width, self.channels),
            dtype=self.dtype,
            buffer=self.payload,
            strides=(self.stride, pixel, itemsize),
        )
        if self.channels == 1:
            return view[:, :, 0]
        return view

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(
            self.width, self.height, self.channels, self.dtype,
            self.stride, self.payload.copy()
        )

    def __repr__(self) -> str:
        return (
            f"PixelBuffer({self.width}x{self.height}, channels={self.channels}, "
            f"dtype={self.dtype.name}, stride={self.stride})"
        )


def mirror(buffer: PixelBuffer) -> PixelBuffer:
    """
    Flip a buffer about its vertical axis.

    Shape, stride and layout are unchanged; only the pixel order inside each
    row is reversed. Row padding is copied as-is.
    """
    flipped = buffer.copy()
    flipped.as_array()[:] = buffer.as_array()[:, ::-1]
    return flipped


@dataclass(frozen=True)
class WireMessage:
    """One published frame. `data` is an owned copy, never a view."""

    height: int
    width: int
    encoding: str
    step: int
    data: bytes
    frame_id: str
    is_bigendian: bool = False
    stamp: float = field(default=0.0)

    def header(self) -> dict:
        return {
            "height": self.height,
            "width": self.width,
            "encoding": self.encoding,
            "step": self.step,
            "is_bigendian": self.is_bigendian,
            "frame_id": self.frame_id,
            "stamp": self.stamp,
        }


def build_message(
    buffer: PixelBuffer,
    sequence_id: int,
    stamp: Optional[float] = None
) -> WireMessage:
    """
    Copy a pixel buffer into a wire message.

    Args:
        buffer: Frame to copy
        sequence_id: Sequence number, stringified into frame_id
        stamp: Capture time in seconds (defaults to now)

    Returns:
        WireMessage with a full copy of stride * height bytes

    Raises:
        UnsupportedEncoding: if the buffer layout has no encoding tag
    """
    encoding = encoding_for(buffer)
    return WireMessage(
        height=buffer.height,
        width=buffer.width,
        encoding=encoding,
        step=buffer.stride,
        data=buffer.payload[:buffer.stride * buffer.height].tobytes(),
        frame_id=str(sequence_id),
        is_bigendian=False,
        stamp=time.time() if stamp is None else stamp,
    )


_HEADER_LEN = struct.Struct(">I")


def encode_message(msg: WireMessage) -> bytes:
    """
    Serialize a message as one blob: length-prefixed json header, then pixels.

    A single frame per message lets the transport conflate queues, which
    ZeroMQ only supports for single-part messages.
    """
    header = json.dumps(msg.header(), separators=(",", ":")).encode("utf-8")
    return b"".join([_HEADER_LEN.pack(len(header)), header, msg.data])


def decode_message(blob: bytes) -> WireMessage:
    """
    Parse a blob produced by encode_message.

    Raises:
        ValueError: on a truncated blob, a malformed header or a payload of
            the wrong size
    """
    blob = memoryview(blob)
    if len(blob) < _HEADER_LEN.size:
        raise ValueError(f"Message too short: {len(blob)} bytes")

    (header_len,) = _HEADER_LEN.unpack_from(blob)
    header_end = _HEADER_LEN.size + header_len
    if header_end > len(blob):
        raise ValueError(
            f"Header length {header_len} runs past the end of a {len(blob)} byte message"
        )
    header_raw = blob[_HEADER_LEN.size:header_end]
    data = blob[header_end:]
    try:
        header = json.loads(bytes(header_raw).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Bad frame header: {e}") from e

    try:
        msg = WireMessage(
            height=int(header["height"]),
            width=int(header["width"]),
            encoding=str(header["encoding"]),
            step=int(header["step"]),
            data=bytes(data),
            frame_id=str(header["frame_id"]),
            is_bigendian=bool(header.get("is_bigendian", False)),
            stamp=float(header.get("stamp", 0.0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Bad frame header: {e}") from e

    if len(msg.data) != msg.step * msg.height:
        raise ValueError(
            f"Frame {msg.frame_id}: payload is {len(msg.data)} bytes, "
            f"expected {msg.step * msg.height}"
        )
    return msg


def message_to_buffer(msg: WireMessage) -> PixelBuffer:
    """Rebuild a PixelBuffer from a received message."""
    dtype, channels = layout_for(msg.encoding)
    return PixelBuffer(msg.width, msg.height, channels, dtype, msg.step, msg.data)


def message_to_array(msg: WireMessage) -> np.ndarray:
    return message_to_buffer(msg).as_array()
