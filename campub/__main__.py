"""
Entry point for running campub as a module.

Usage:
    python3 -m campub [--synthetic] [--device /dev/video0] [--freq 30]

Exit status is 0 on a clean shutdown (Ctrl+C / SIGTERM) and 1 if the
capture device cannot be opened or the transport fails.
"""

import argparse
import sys
import threading

import zmq

from . import config
from .camera import CameraError, create_source
from .flip import FlipController
from .metrics import PublishStats
from .publisher import LoopRate, Publisher, ShutdownFlag
from .transport import ControlSubscriber, FramePublisher, QoSConfig, TransportPublishFailure


def parse_args(argv=None):
    """Parse command line arguments. Defaults come from CAMPUB_* variables."""
    parser = argparse.ArgumentParser(
        prog="campub",
        description="Publish camera frames on a ZeroMQ topic at a fixed rate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m campub --device /dev/video0 --freq 15
    python -m campub --synthetic --width 320 --height 240 --show
    python -m campub --synthetic --reliability best_effort --depth 1
        """
    )

    parser.add_argument("--device", "-d", default=config.DEVICE,
                        help="Capture device path or index (default: %(default)s)")
    parser.add_argument("--topic", "-t", default=config.TOPIC,
                        help="Topic to publish frames on (default: %(default)s)")
    parser.add_argument("--width", "-x", type=int, default=config.WIDTH,
                        help="Frame width (default: %(default)s)")
    parser.add_argument("--height", "-y", type=int, default=config.HEIGHT,
                        help="Frame height (default: %(default)s)")
    parser.add_argument("--freq", "-f", type=float, default=config.FREQUENCY,
                        help="Publish frequency in Hz (default: %(default)s)")
    parser.add_argument("--history", choices=["keep_last", "keep_all"], default=config.HISTORY,
                        help="QoS history policy (default: %(default)s)")
    parser.add_argument("--depth", type=int, default=config.DEPTH,
                        help="QoS queue depth for keep_last (default: %(default)s)")
    parser.add_argument("--reliability", choices=["reliable", "best_effort"],
                        default=config.RELIABILITY,
                        help="QoS reliability policy (default: %(default)s)")
    parser.add_argument("--endpoint", default=config.ENDPOINT,
                        help="ZeroMQ endpoint frames are published on (default: %(default)s)")
    parser.add_argument("--control-endpoint", default=config.CONTROL_ENDPOINT,
                        help="ZeroMQ endpoint flip toggles arrive on (default: %(default)s)")
    parser.add_argument("--http-port", type=int, default=config.HTTP_PORT,
                        help="HTTP control/health port, 0 disables (default: %(default)s)")
    parser.add_argument("--show", "-s", action="store_true", default=config.SHOW_CAMERA,
                        help="Show the published frames in a local window")
    parser.add_argument("--synthetic", "--burger", "-b", dest="synthetic", action="store_true",
                        default=config.SYNTHETIC,
                        help="Publish a generated test pattern instead of a camera")
    parser.add_argument("--flip", action="store_true",
                        help="Start with horizontal flipping enabled")
    parser.add_argument("--duration", type=float, default=None,
                        help="Stop after this many seconds")

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point. Returns the process exit code."""
    args = parse_args(argv)

    # Line-buffer so output interleaves correctly under a process supervisor
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(line_buffering=True)

    print("=" * 50)
    print("  CAMPUB - camera frame publisher")
    print("=" * 50)
    config.print_config()
    print()

    shutdown = ShutdownFlag()
    try:
        qos = QoSConfig.from_strings(args.history, args.depth, args.reliability)
        rate = LoopRate(args.freq, sleep=shutdown.wait)
    except ValueError as e:
        print(f"[main] Invalid settings: {e}")
        return 2

    source = create_source(
        use_synthetic=args.synthetic,
        device=args.device,
        width=args.width,
        height=args.height
    )
    try:
        source.start()
    except CameraError as e:
        print(f"[main] {e}")
        return 1

    transport = None
    control = None
    http = None
    stats = PublishStats()
    flip = FlipController(initial=args.flip)

    try:
        transport = FramePublisher(args.endpoint, args.topic, qos)
        control = ControlSubscriber(args.control_endpoint)

        if args.http_port:
            from .server import ControlServer, create_app
            http = ControlServer(create_app(flip, stats, source), port=args.http_port)
            http.start()

        preview = None
        if args.show:
            from .preview import PreviewWindow
            preview = PreviewWindow()

        publisher = Publisher(
            source,
            transport,
            flip,
            control=control,
            rate=rate,
            preview=preview,
            stats=stats,
            shutdown=shutdown
        )

        shutdown.install_signal_handlers()
        if args.duration is not None:
            timer = threading.Timer(args.duration, shutdown.request)
            timer.daemon = True
            timer.start()

        print("[main] Press Ctrl+C to stop")
        print()
        publisher.run()

    except (TransportPublishFailure, zmq.ZMQError) as e:
        print(f"[main] Transport error: {e}")
        return 1

    except KeyboardInterrupt:
        print("\n[main] Interrupted by user")

    finally:
        print()
        print("[main] Shutting down...")
        shutdown.restore_signal_handlers()
        source.stop()
        if http is not None:
            http.stop()
        if control is not None:
            control.close()
        if transport is not None:
            transport.close()

        print()
        print("[main] Session Summary:")
        print(f"  Published frames: {stats.published}")
        print(f"  Empty ticks:      {stats.empty}")
        print(f"  Skipped frames:   {stats.skipped}")
        print(f"  Duration:         {stats.elapsed():.1f}s")
        print(f"  Average FPS:      {stats.average_fps():.1f}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
