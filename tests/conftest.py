"""Shared pytest configuration and fixtures for the campub test suite."""

import sys
from pathlib import Path

import numpy as np
import pytest
import zmq

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


class FakeTransport:
    """Collects published messages instead of sending them."""

    def __init__(self):
        self.messages = []

    def publish(self, msg):
        self.messages.append(msg)


class FakeControl:
    """Hands out scripted batches of toggles, one batch per drain()."""

    def __init__(self, batches=None):
        self.batches = list(batches or [])

    def drain(self):
        if self.batches:
            return self.batches.pop(0)
        return []


class ScriptedSource:
    """Frame source replaying a fixed list of frames (None = empty tick)."""

    name = "scripted"

    def __init__(self, frames):
        self.frames = list(frames)
        self.stop_calls = 0

    def start(self):
        pass

    def stop(self):
        self.stop_calls += 1

    def next_frame(self):
        if self.frames:
            return self.frames.pop(0)
        return None

    def is_running(self):
        return self.stop_calls == 0

    def get_stats(self):
        return {"source": self.name}


class FakeVideoCapture:
    """Stand-in for cv2.VideoCapture driven by a list of read() results."""

    instances = []

    def __init__(self, device, api=None, opened=True, reads=None):
        self.device = device
        self.api = api
        self.opened = opened
        self.reads = list(reads or [])
        self.props = {}
        self.release_calls = 0
        FakeVideoCapture.instances.append(self)

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def isOpened(self):
        return self.opened

    def read(self):
        if not self.reads:
            return False, None
        item = self.reads.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def release(self):
        self.release_calls += 1


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def zmq_context():
    ctx = zmq.Context()
    yield ctx
    ctx.term()


@pytest.fixture
def bgr_frame():
    """4x3 BGR frame with distinct values in every byte."""
    return np.arange(3 * 4 * 3, dtype=np.uint8).reshape(3, 4, 3)


@pytest.fixture
def fake_capture(monkeypatch):
    """
    Patch cv2.VideoCapture inside campub.camera.

    Returns a function configuring the next capture to be created.
    """
    import campub.camera as camera

    FakeVideoCapture.instances = []
    settings = {"opened": True, "reads": []}

    def factory(device, api=None):
        return FakeVideoCapture(device, api, **settings)

    monkeypatch.setattr(camera.cv2, "VideoCapture", factory)

    def configure(opened=True, reads=None):
        settings["opened"] = opened
        settings["reads"] = list(reads or [])
        return FakeVideoCapture.instances

    return configure
