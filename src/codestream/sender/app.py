"""
CodeStream Sender CLI
=====================

Console entry point for the producer side.

Reads the `sender` section of the configuration, applies command-line
overrides, and streams frames until interrupted or until the sender
stops on its own (connect attempts exhausted, connection lost, source
ended).

Exit Codes:
    0 - stopped cleanly
    1 - could not connect / source could not be opened
    2 - invalid configuration

Usage:
    codestream-sender --host 192.168.1.20 --port 12345
    codestream-sender --source static --image samples/qr.png --duration 30
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from codestream.config import SenderConfig, settings
from codestream.errors import CodeStreamError
from codestream.sender.capture import create_capture_source
from codestream.sender.lifecycle import FrameSender


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codestream-sender",
        description="Stream camera frames to a CodeStream receiver",
    )
    parser.add_argument("--host", help="Receiver host")
    parser.add_argument("--port", type=int, help="Receiver port")
    parser.add_argument("--attempts", type=int, dest="max_attempts", help="Connect attempts")
    parser.add_argument("--source", choices=["camera", "static"], help="Capture source")
    parser.add_argument("--device", help="Camera index or device path")
    parser.add_argument("--image", dest="static_image_path", help="Image for the static source")
    parser.add_argument("--facing", choices=["back", "front"], help="Initial camera facing")
    parser.add_argument("--interval-ms", type=int, dest="frame_interval_ms", help="Frame spacing")
    parser.add_argument(
        "--rotation",
        type=int,
        default=0,
        help="Device rotation in degrees (0, 90, 180, 270)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until stopped)",
    )
    return parser


def resolve_config(args: argparse.Namespace, base: Optional[SenderConfig] = None) -> SenderConfig:
    """
    Merge command-line overrides into a SenderConfig.

    Raises:
        pydantic.ValidationError: If an override is out of range
    """
    base = base or settings.sender
    overrides = {
        name: getattr(args, name)
        for name in (
            "host",
            "port",
            "max_attempts",
            "source",
            "device",
            "static_image_path",
            "facing",
            "frame_interval_ms",
        )
        if getattr(args, name, None) is not None
    }
    return SenderConfig.model_validate({**base.model_dump(), **overrides})


async def run_sender(
    config: SenderConfig,
    device_rotation: int = 0,
    duration: Optional[float] = None,
) -> int:
    """
    Run one sender session.

    Args:
        config: Sender configuration
        device_rotation: Initial display rotation in degrees
        duration: Optional run time limit in seconds

    Returns:
        Process exit code
    """
    source = create_capture_source(config)
    sender = FrameSender(
        source,
        max_attempts=config.max_attempts,
        retry_backoff_seconds=config.retry_backoff_seconds,
        connect_timeout_seconds=config.connect_timeout_seconds,
        frame_interval_ms=config.frame_interval_ms,
    )
    sender.update_orientation(device_rotation)

    try:
        if not await sender.start(config.host, config.port):
            return 1

        task = sender.stream_task
        if task is not None:
            await asyncio.wait([task], timeout=duration)

        logger.info(f"Sender finished: {sender.metrics.to_dict()}")
        return 0
    finally:
        await sender.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(args)
    except ValidationError as e:
        logger.error(f"Invalid sender configuration: {e}")
        return 2

    try:
        return asyncio.run(run_sender(config, args.rotation, args.duration))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    except CodeStreamError as e:
        logger.error(f"Sender failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
