import threading
import time

import numpy as np
import pytest

from campub.camera import SyntheticGenerator
from campub.flip import FlipController
from campub.frame import PixelBuffer, message_to_array
from campub.metrics import PublishStats
from campub.publisher import LoopRate, Publisher, ShutdownFlag
from campub.receiver import FrameReceiver
from campub.transport import (
    FramePublisher,
    History,
    QoSConfig,
    Reliability,
    TransportPublishFailure,
)

from conftest import FakeControl, FakeTransport, ScriptedSource


class FakeClock:

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def frame(value=0):
    arr = np.full((2, 3, 3), value, dtype=np.uint8)
    arr[:, 0] = 255  # make rows asymmetric
    return PixelBuffer.from_array(arr)


class TestLoopRate:

    def test_sleeps_remainder_of_period(self):
        clock = FakeClock()
        rate = LoopRate(10.0, clock=clock, sleep=clock.sleep)
        clock.now += 0.03
        assert rate.sleep() is True
        assert clock.sleeps == [pytest.approx(0.07)]
        assert clock.now == pytest.approx(0.1)

    def test_keeps_phase_across_ticks(self):
        clock = FakeClock()
        rate = LoopRate(10.0, clock=clock, sleep=clock.sleep)
        for _ in range(5):
            clock.now += 0.02
            rate.sleep()
        assert clock.now == pytest.approx(0.5)

    def test_overrun_does_not_sleep_or_catch_up(self):
        clock = FakeClock()
        rate = LoopRate(10.0, clock=clock, sleep=clock.sleep)
        clock.now += 0.35
        assert rate.sleep() is False
        assert clock.sleeps == []

        # Next period starts from the overrun, not from the missed deadlines
        clock.now += 0.01
        assert rate.sleep() is True
        assert clock.sleeps == [pytest.approx(0.09)]

    @pytest.mark.parametrize("freq", [0, -1.0])
    def test_rejects_non_positive_frequency(self, freq):
        with pytest.raises(ValueError):
            LoopRate(freq)


class TestShutdownFlag:

    def test_request(self):
        flag = ShutdownFlag()
        assert not flag.is_set()
        flag.request()
        assert flag.is_set()
        assert flag.wait(0) is True

    def test_signal_handlers_restored(self):
        import signal
        before = signal.getsignal(signal.SIGTERM)
        flag = ShutdownFlag()
        flag.install_signal_handlers()
        assert signal.getsignal(signal.SIGTERM) == flag.request
        flag.restore_signal_handlers()
        assert signal.getsignal(signal.SIGTERM) == before


class TestTick:

    def make(self, frames, control=None, flip=None, preview=None):
        transport = FakeTransport()
        source = ScriptedSource(frames)
        pub = Publisher(source, transport, flip or FlipController(), control=control,
                        rate=LoopRate(1000.0), preview=preview)
        return pub, source, transport

    def test_sequence_ids_start_at_one(self):
        pub, _, transport = self.make([frame(), frame(), frame()])
        for _ in range(3):
            pub.tick()
        assert [m.frame_id for m in transport.messages] == ["1", "2", "3"]
        assert pub.next_id == 4

    def test_empty_ticks_do_not_consume_ids(self):
        pub, _, transport = self.make([frame(), None, None, frame()])
        results = [pub.tick() for _ in range(4)]
        assert results[1] is None and results[2] is None
        assert [m.frame_id for m in transport.messages] == ["1", "2"]
        assert pub.stats.empty == 2

    def test_unsupported_layout_is_skipped(self, capsys):
        bad = PixelBuffer.from_array(np.zeros((2, 2, 2), dtype=np.uint8))
        pub, _, transport = self.make([frame(), bad, frame()])
        for _ in range(3):
            pub.tick()
        assert [m.frame_id for m in transport.messages] == ["1", "2"]
        assert pub.stats.skipped == 1
        assert "Skipping frame" in capsys.readouterr().out

    def test_flip_applies_to_published_frame(self):
        pub, _, transport = self.make([frame(), frame()], flip=FlipController(initial=True))
        pub.tick()
        arr = message_to_array(transport.messages[0])
        assert (arr[:, -1] == 255).all()
        assert not (arr[:, 0] == 255).all()

    def test_toggle_observed_on_next_frame(self):
        control = FakeControl([[True], [], []])
        pub, _, transport = self.make([frame(), frame(), frame()], control=control)
        for _ in range(3):
            pub.tick()
        first, second, third = (message_to_array(m) for m in transport.messages)
        assert (first[:, 0] == 255).all()
        assert (second[:, -1] == 255).all()
        assert (third[:, -1] == 255).all()

    def test_last_toggle_in_a_batch_wins(self):
        control = FakeControl([[True, False]])
        pub, _, transport = self.make([frame(), frame()], control=control)
        pub.tick()
        pub.tick()
        assert pub.flip.get() is False
        assert (message_to_array(transport.messages[1])[:, 0] == 255).all()

    def test_set_then_unset_before_tick_publishes_unflipped(self):
        pub, _, transport = self.make([frame()])
        pub.flip.submit(True)
        pub.flip.submit(False)
        pub.service_control()
        pub.tick()
        assert (message_to_array(transport.messages[0])[:, 0] == 255).all()

    def test_control_serviced_on_empty_ticks(self):
        control = FakeControl([[True]])
        pub, _, _ = self.make([None], control=control)
        pub.tick()
        assert pub.flip.get() is True

    def test_http_toggle_before_zeromq_toggle_keeps_arrival_order(self):
        control = FakeControl([[False]])
        pub, _, _ = self.make([None], control=control)
        pub.flip.submit(True)
        pub.service_control()
        assert pub.flip.get() is False

    def test_published_message_is_detached_from_source(self):
        arr = np.full((2, 2, 3), 7, dtype=np.uint8)
        pub, _, transport = self.make([PixelBuffer.from_array(arr)])
        pub.tick()
        arr[:] = 0
        assert transport.messages[0].data == bytes([7] * 12)

    def test_broken_preview_is_disabled(self, capsys):
        class BrokenPreview:
            def __init__(self):
                self.calls = 0

            def show(self, buf):
                self.calls += 1
                raise RuntimeError("no display")

            def close(self):
                pass

        preview = BrokenPreview()
        pub, _, transport = self.make([frame(), frame()], preview=preview)
        pub.tick()
        pub.tick()
        assert len(transport.messages) == 2
        assert preview.calls == 1
        assert pub.preview is None
        assert "Preview failed" in capsys.readouterr().out


class TestRun:

    def test_max_ticks_and_release(self):
        source = ScriptedSource([frame(), None, frame()])
        transport = FakeTransport()
        pub = Publisher(source, transport, rate=LoopRate(1000.0))
        assert pub.run(max_ticks=3) == 2
        assert source.stop_calls == 1

    def test_shutdown_before_start_publishes_nothing(self):
        source = ScriptedSource([frame()])
        transport = FakeTransport()
        shutdown = ShutdownFlag()
        shutdown.request()
        pub = Publisher(source, transport, shutdown=shutdown, rate=LoopRate(1000.0))
        assert pub.run() == 0
        assert transport.messages == []
        assert source.stop_calls == 1

    def test_transport_failure_propagates_and_releases_source(self):
        class FailingTransport:
            def publish(self, msg):
                raise TransportPublishFailure("queue full")

        source = ScriptedSource([frame()])
        pub = Publisher(source, FailingTransport(), rate=LoopRate(1000.0))
        with pytest.raises(TransportPublishFailure):
            pub.run()
        assert source.stop_calls == 1

    def test_stats_clock_starts_with_the_loop(self):
        clock = FakeClock()
        stats = PublishStats(clock=clock)
        clock.now = 50.0  # sockets, device and HTTP setup
        pub = Publisher(ScriptedSource([frame(), frame()]), FakeTransport(), stats=stats,
                        rate=LoopRate(10.0, clock=clock, sleep=clock.sleep))
        assert pub.run(max_ticks=2) == 2
        assert stats.elapsed() == pytest.approx(0.1)
        assert stats.average_fps() == pytest.approx(20.0)

    def test_shutdown_interrupts_sleep(self):
        shutdown = ShutdownFlag()
        source = ScriptedSource([])
        pub = Publisher(source, FakeTransport(), shutdown=shutdown,
                        rate=LoopRate(0.5, sleep=shutdown.wait))
        timer = threading.Timer(0.1, shutdown.request)
        timer.start()
        start = time.monotonic()
        pub.run()
        timer.join()
        assert time.monotonic() - start < 1.0
        assert source.stop_calls == 1


@pytest.mark.slow
def test_one_second_at_ten_hz():
    source = SyntheticGenerator(width=64, height=48)
    source.start()
    transport = FakeTransport()
    shutdown = ShutdownFlag()
    pub = Publisher(
        source,
        transport,
        FlipController(),
        rate=LoopRate(10.0, sleep=shutdown.wait),
        stats=PublishStats(),
        shutdown=shutdown
    )

    timer = threading.Timer(1.0, shutdown.request)
    timer.start()
    published = pub.run()
    timer.join()

    assert 9 <= published <= 11
    assert len(transport.messages) == published
    assert [m.frame_id for m in transport.messages] == [str(i) for i in range(1, published + 1)]
    for msg in transport.messages:
        assert (msg.width, msg.height, msg.encoding) == (64, 48, "bgr8")
        assert msg.step == 64 * 3
        assert len(msg.data) == msg.step * msg.height
    assert not source.is_running()


@pytest.mark.slow
def test_one_second_at_ten_hz_over_zeromq(zmq_context):
    qos = QoSConfig(History.KEEP_LAST, 1, Reliability.BEST_EFFORT)
    transport = FramePublisher("inproc://ten-hz", "image", qos, context=zmq_context)
    receiver = FrameReceiver("inproc://ten-hz", "image", context=zmq_context)
    time.sleep(0.1)

    source = SyntheticGenerator(width=64, height=48)
    source.start()
    shutdown = ShutdownFlag()
    pub = Publisher(source, transport, FlipController(),
                    rate=LoopRate(10.0, sleep=shutdown.wait), shutdown=shutdown)
    received = []
    try:
        timer = threading.Timer(1.0, shutdown.request)
        timer.start()
        published = pub.run()
        timer.join()

        msg = receiver.receive(timeout_ms=500)
        while msg is not None:
            received.append(msg)
            msg = receiver.receive(timeout_ms=100)
    finally:
        receiver.close()
        transport.close()

    assert 9 <= published <= 11
    assert transport.published == published
    assert [m.frame_id for m in received] == [str(i) for i in range(1, published + 1)]
    for msg in received:
        assert (msg.width, msg.height, msg.encoding) == (64, 48, "bgr8")
        assert message_to_array(msg).shape == (48, 64, 3)
