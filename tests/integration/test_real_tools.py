"""End-to-end capture against the real ffmpeg and mp4fpsmod binaries.

Skipped unless both tools are on PATH (see ``tests/conftest.py``).
"""

import base64
import struct
import zlib

import pytest

from capture_encoder.api.artifacts import VideoDirectoryRegistry
from capture_encoder.encoder.registry import SessionRegistry
from capture_encoder.encoder.session import SessionController, SessionState
from tests.unit.fakes import FakeChannel


def solid_png(width: int, height: int, rgb: tuple[int, int, int]) -> bytes:
    def chunk(kind: bytes, data: bytes) -> bytes:
        body = kind + data
        return struct.pack(">I", len(data)) + body + struct.pack(">I", zlib.crc32(body) & 0xFFFFFFFF)

    row = b"\x00" + bytes(rgb) * width
    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", header)
        + chunk(b"IDAT", zlib.compress(row * height))
        + chunk(b"IEND", b"")
    )


@pytest.mark.tools
@pytest.mark.slow
@pytest.mark.asyncio
async def test_capture_with_timestamps_produces_video(encoder_config):
    channel = FakeChannel()
    controller = SessionController(
        "1",
        channel,
        config=encoder_config,
        registry=SessionRegistry(),
        artifacts=VideoDirectoryRegistry(encoder_config.video_dir),
    )
    await controller.attach()
    await controller.dispatch({"cmd": "start", "data": {"name": "solid", "framerate": 10}})

    for shade in range(0, 250, 25):
        payload = base64.b64encode(solid_png(64, 64, (shade, 0, 255 - shade))).decode("ascii")
        await controller.dispatch({"cmd": "frame", "data": {"dataURL": f"data:image/png;base64,{payload}"}})

    timestamps = "# timecode format v2\n" + "".join(f"{i * 120}\n" for i in range(10))
    await controller.dispatch({"cmd": "timestamps", "data": timestamps})
    await controller.dispatch({"cmd": "meta", "data": {"textOverlay": "solid colors", "videoLength": 10}})
    await controller.dispatch({"cmd": "end"})
    await controller.wait_idle()

    assert channel.of("error") == [], channel.of("error")
    assert controller.state is SessionState.DONE
    [info] = channel.of("end")
    assert info["filename"] == "final-solid-1.mp4"
    assert info["size"] > 0
    assert controller.paths.final_video.exists()
