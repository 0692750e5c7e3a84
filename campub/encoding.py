"""
Pixel layout to encoding tag mapping.

A layout is the numpy sample dtype plus the number of channels per pixel,
the same pair OpenCV folds into a single Mat type (CV_8UC3 and friends).
"""

from typing import Tuple

import numpy as np


class UnsupportedEncoding(ValueError):
    """Raised when a pixel layout has no encoding tag."""
    pass


_ENCODINGS = {
    (np.dtype(np.uint8), 1): "mono8",
    (np.dtype(np.uint8), 3): "bgr8",
    (np.dtype(np.int16), 1): "mono16",
    (np.dtype(np.uint8), 4): "rgba8",
}

_LAYOUTS = {tag: layout for layout, tag in _ENCODINGS.items()}

SUPPORTED_ENCODINGS = tuple(_LAYOUTS)


def resolve_encoding(dtype, channels: int) -> str:
    """
    Map a sample dtype and channel count to its encoding tag.

    Args:
        dtype: numpy dtype (or anything np.dtype accepts)
        channels: Samples per pixel

    Returns:
        One of "mono8", "bgr8", "mono16", "rgba8"

    Raises:
        UnsupportedEncoding: for any other layout
    """
    try:
        key = (np.dtype(dtype), int(channels))
    except TypeError as e:
        raise UnsupportedEncoding(f"Unsupported encoding type: {dtype!r}") from e

    tag = _ENCODINGS.get(key)
    if tag is None:
        raise UnsupportedEncoding(
            f"Unsupported encoding type: {key[0].name} x {key[1]} channel(s)"
        )
    return tag


def encoding_for(buffer) -> str:
    """Encoding tag of a PixelBuffer."""
    return resolve_encoding(buffer.dtype, buffer.channels)


def layout_for(encoding: str) -> Tuple[np.dtype, int]:
    """Inverse of resolve_encoding, used when decoding received frames."""
    layout = _LAYOUTS.get(encoding)
    if layout is None:
        raise UnsupportedEncoding(f"Unknown encoding tag: {encoding!r}")
    return layout


def bytes_per_pixel(dtype, channels: int) -> int:
    return np.dtype(dtype).itemsize * int(channels)
