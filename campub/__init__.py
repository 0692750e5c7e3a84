"""
campub - Camera Frame Publisher

Grabs frames from a V4L2 camera (or a synthetic test pattern), packs each
one into a self-describing message and publishes it on a ZeroMQ topic at a
fixed rate. A flip_image side-channel toggles horizontal mirroring while the
stream keeps running.
"""

__version__ = "0.1.0"
