"""
Command-line matcher.

Usage:
    python -m object_matcher --reference ref.jpg --model assets/MobileNet-v2.onnx
    python -m object_matcher --camera 1 --threshold 0.7 --duration 60

Without --reference the first camera frame becomes the reference object.
Runs until Ctrl-C (or --duration seconds) and prints the final count.
"""

import argparse
import logging
import sys
import time

from .config import DEFAULT_LOG_LEVEL, MatcherConfig
from .errors import MatcherError
from .events import LoggingNotifier, ThreadedNotifier
from .session import MatchingSession
from .sources import CameraImageSource, FileImageSource

logger = logging.getLogger("object_matcher")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="object_matcher",
        description="Count camera frames that match a reference object.",
    )
    parser.add_argument("--reference", help="Reference image file (default: capture from camera)")
    parser.add_argument("--model", help="ONNX model asset path")
    parser.add_argument("--camera", type=int, help="OpenCV camera index")
    parser.add_argument("--threshold", type=float, help="Cosine similarity threshold")
    parser.add_argument("--delay", type=float, help="Seconds between cycles")
    parser.add_argument("--timeout", type=float, help="Per-cycle deadline in seconds")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL,
                        help="Logging level (default: %(default)s)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = MatcherConfig.from_env().with_overrides(
        model_path=args.model,
        camera_index=args.camera,
        threshold=args.threshold,
        cycle_delay=args.delay,
        cycle_timeout=args.timeout,
    )

    camera = CameraImageSource(config.camera_index)
    reference_source = FileImageSource(args.reference) if args.reference else camera

    notifier = ThreadedNotifier(LoggingNotifier())
    try:
        session = MatchingSession.from_config(
            config,
            camera,
            notifier=notifier,
            reference_source=reference_source,
        )
    except MatcherError as e:
        logger.error(f"Failed to load model: {e}")
        camera.close()
        notifier.close()
        return 1

    with session:
        try:
            session.set_reference()
            session.start()
        except MatcherError as e:
            logger.error(f"Could not start matching: {e}")
            return 1

        deadline = time.monotonic() + args.duration if args.duration else None
        try:
            while deadline is None or time.monotonic() < deadline:
                time.sleep(0.2)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        session.stop()
        session.wait_idle(timeout=10.0)

        print(f"Object Count: {session.count}")
        stats = session.stats
        print(
            f"Cycles: {stats.cycles_completed} completed, "
            f"{stats.cycles_skipped} skipped, {stats.cycle_errors} failed"
        )

    return 0


if __name__ == "__main__":
    sys.exit(main())
