"""
The publisher loop.

Each tick:
  1. pull a frame from the source (None means skip straight to pacing)
  2. mirror it if flipping is on
  3. build a WireMessage with the next sequence id and publish it
  4. service pending flip toggles, then sleep out the rest of the period

The loop runs on a single thread and stops at the next tick boundary once
the shutdown flag is set.
"""

import signal
import threading
import time
from typing import Optional

from . import config
from .camera import FrameSource
from .encoding import UnsupportedEncoding
from .flip import FlipController
from .frame import WireMessage, build_message
from .metrics import PublishStats


class LoopRate:
    """
    Fixed-frequency pacing.

    sleep() waits out whatever is left of the current period. A tick that
    overran its period does not sleep, and the next period starts from now
    (no catch-up bursts).
    """

    def __init__(self, frequency: float, clock=time.monotonic, sleep=time.sleep):
        if frequency <= 0:
            raise ValueError(f"Frequency must be positive, got {frequency}")
        self.frequency = float(frequency)
        self.period = 1.0 / self.frequency
        self._clock = clock
        self._sleep = sleep
        self._last = clock()

    def reset(self):
        self._last = self._clock()

    def sleep(self) -> bool:
        """Returns False if the tick overran its period."""
        now = self._clock()
        deadline = self._last + self.period
        if now >= deadline:
            self._last = now
            return False
        self._sleep(deadline - now)
        self._last = deadline
        return True


class ShutdownFlag:
    """Process-wide keep-running flag, polled once per tick."""

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self):
        self._event = threading.Event()
        self._previous = {}

    def request(self, *_):
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float = None) -> bool:
        return self._event.wait(timeout)

    def install_signal_handlers(self):
        """Route SIGINT/SIGTERM to request(). Main thread only."""
        for sig in self.SIGNALS:
            self._previous[sig] = signal.signal(sig, self.request)

    def restore_signal_handlers(self):
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()


class Publisher:
    """
    Drives a frame source and publishes every frame it produces.

    The source must already be started. The publisher stops it when run()
    returns, however run() exits.

    Usage:
        source = create_source(use_synthetic=True)
        source.start()
        pub = Publisher(source, FramePublisher(), FlipController(), control=ControlSubscriber())
        pub.run()
    """

    def __init__(
        self,
        source: FrameSource,
        transport,
        flip: FlipController = None,
        control=None,
        rate: LoopRate = None,
        preview=None,
        stats: PublishStats = None,
        shutdown: ShutdownFlag = None
    ):
        self.source = source
        self.transport = transport
        self.flip = flip or FlipController()
        self.control = control
        self.shutdown = shutdown or ShutdownFlag()
        # Waiting on the flag lets a shutdown request cut the sleep short
        self.rate = rate or LoopRate(config.FREQUENCY, sleep=self.shutdown.wait)
        self.preview = preview
        self.stats = stats or PublishStats()
        self._next_id = 1
        self._closed = False

    @property
    def next_id(self) -> int:
        return self._next_id

    def tick(self) -> Optional[WireMessage]:
        """
        Run one tick without the pacing sleep.

        Returns:
            The published message, or None if nothing was published.

        Raises:
            TransportPublishFailure: if the transport rejects the message
        """
        msg = None
        buf = self.source.next_frame()

        if buf is None:
            self.stats.record_empty()
        else:
            buf = self.flip.apply(buf)
            try:
                msg = build_message(buf, self._next_id)
            except UnsupportedEncoding as e:
                print(f"[publisher] Skipping frame: {e}")
                self.stats.record_skipped()
            else:
                self._next_id += 1
                self.transport.publish(msg)
                self.stats.record_published()
                self._show(buf)

        self.service_control()
        return msg

    def service_control(self):
        """
        Apply pending toggles from every writer. If several arrived, the last one wins.

        ZeroMQ toggles are queued behind whatever HTTP submitted before this point.
        """
        if self.control is not None:
            for value in self.control.drain():
                self.flip.submit(value)
        self.flip.drain()

    def _show(self, buf):
        if self.preview is None:
            return
        try:
            self.preview.show(buf)
        except Exception as e:
            print(f"[publisher] Preview failed, disabling it: {e}")
            self.preview = None

    def run(self, max_ticks: int = None) -> int:
        """
        Loop until shutdown is requested (or max_ticks ticks have run).

        Returns:
            Number of frames published by this call (stats restart with it).
        """
        ticks = 0
        print(f"[publisher] Running at {self.rate.frequency:g} Hz")

        try:
            self.stats.reset()
            self.rate.reset()
            while not self.shutdown.is_set():
                self.tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                self.rate.sleep()
        finally:
            self.close()

        return self.stats.published

    def close(self):
        """Release the source and the preview window. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            self.source.stop()
        finally:
            if self.preview is not None:
                try:
                    self.preview.close()
                except Exception as e:
                    print(f"[publisher] Preview close failed: {e}")
                self.preview = None
