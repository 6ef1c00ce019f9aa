from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from capture_encoder.core.config import EncoderConfig, load_config
from capture_encoder.core.logging_config import configure_logging
from capture_encoder.core.logging_utils import get_module_logger
from capture_encoder.core.paths import CONFIG_PATH


LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

logger = get_module_logger("CLI")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="capture-encoder",
        description="Receive streamed frames over WebSocket and assemble them into videos",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Configuration file (key = value lines, default: {CONFIG_PATH} if present)",
    )
    parser.add_argument("--host", type=str, default=None, help="Interface to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    parser.add_argument(
        "--frame-dir",
        type=Path,
        default=None,
        help="Directory where incoming frames, timestamps and audio are written",
    )
    parser.add_argument(
        "--video-dir",
        type=Path,
        default=None,
        help="Directory where intermediate and finished videos are written and served from",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=None,
        help="Optional directory of static assets served at /",
    )
    parser.add_argument(
        "--keep-frames",
        action="store_true",
        default=None,
        help="Keep frame images after the video has been assembled",
    )
    parser.add_argument(
        "--allow-arbitrary-ffmpeg-arguments",
        action="store_true",
        default=None,
        help="Allow clients to pass extra ffmpeg arguments with 'start'",
    )
    parser.add_argument(
        "--max-concurrent-writes",
        type=int,
        default=None,
        help="Maximum simultaneous frame writes per session",
    )
    parser.add_argument(
        "--process-timeout",
        type=float,
        default=None,
        help="Kill an external tool that runs longer than this many seconds",
    )
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=None,
        help="Logging verbosity",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path to a rotating log file",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> EncoderConfig:
    config_path: Optional[Path] = args.config
    if config_path is None and CONFIG_PATH.exists():
        config_path = CONFIG_PATH

    overrides: Dict[str, Any] = {
        "host": args.host,
        "port": args.port,
        "frame_dir": args.frame_dir,
        "video_dir": args.video_dir,
        "base_dir": args.base_dir,
        "keep_frames": args.keep_frames,
        "allow_arbitrary_ffmpeg_arguments": args.allow_arbitrary_ffmpeg_arguments,
        "max_concurrent_writes": args.max_concurrent_writes,
        "process_timeout": args.process_timeout,
        "log_level": args.log_level,
        "log_file": args.log_file,
    }
    return load_config(config_path, overrides)


async def serve(config: EncoderConfig) -> None:
    from capture_encoder.api.server import EncoderServer

    server = EncoderServer(config)
    await server.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await stop_event.wait()
    finally:
        await server.stop()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = config_from_args(args)

    configure_logging(LOG_LEVELS.get(config.log_level, logging.INFO), log_file=config.log_file)
    logger.info(
        "frames: %s, videos: %s, keep frames: %s, arbitrary ffmpeg arguments: %s",
        config.frame_dir,
        config.video_dir,
        config.keep_frames,
        config.allow_arbitrary_ffmpeg_arguments,
    )

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve(config))
    return 0


__all__ = ["build_parser", "config_from_args", "serve", "main"]
