"""Unit tests for SessionController.

Frames are written to a temporary directory; external tools are replaced by
FakeRunner, which creates each stage's output file.
"""

import asyncio
import base64
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from capture_encoder.api.artifacts import VideoDirectoryRegistry
from capture_encoder.encoder.frame_store import write_bytes
from capture_encoder.encoder.pipeline import PipelineOrchestrator
from capture_encoder.encoder.registry import SessionRegistry
from capture_encoder.encoder.session import SessionController, SessionState
from tests.unit.fakes import FakeChannel, FakeRunner, GatedWriter, PerFrameWriter


def make_controller(config, channel=None, runner=None, *, writer=write_bytes, artifacts=None, session_id="1"):
    return SessionController(
        session_id,
        channel or FakeChannel(),
        config=config,
        registry=SessionRegistry(),
        artifacts=artifacts or VideoDirectoryRegistry(config.video_dir),
        orchestrator=PipelineOrchestrator(config, runner or FakeRunner()),
        frame_writer=writer,
    )


def start(name="pen", **options):
    return {"cmd": "start", "data": {"name": name, **options}}


def frame(data_url):
    return {"cmd": "frame", "data": {"dataURL": data_url}}


END = {"cmd": "end"}


class BlockingRunner(FakeRunner):
    """FakeRunner whose tools do not start until ``gate`` is set."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def run(self, tool, args):
        await self.gate.wait()
        async for event in super().run(tool, args):
            yield event


class TestConnection:

    @pytest.mark.asyncio
    async def test_attach_registers_and_greets(self, encoder_config):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)

        await controller.attach()

        assert controller in controller.registry
        assert channel.sent == [{"cmd": "start", "data": {}}]
        assert controller.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, encoder_config):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)
        await controller.attach()

        await controller.disconnect()
        await controller.disconnect()

        assert len(controller.registry) == 0
        assert channel.close_calls == 1
        assert await controller.send_event("frame", {"frameNum": 0}) is False

    @pytest.mark.asyncio
    async def test_unknown_command_is_ignored(self, encoder_config):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)

        await controller.dispatch({"cmd": "rewind", "data": {}})

        assert channel.sent == []
        assert controller.state is SessionState.IDLE


class TestStart:

    @pytest.mark.asyncio
    async def test_start_acks_with_sanitized_name(self, encoder_config):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel, session_id="42")

        await controller.dispatch(start("my pen/v2", framerate=24, extension="webm"))

        assert controller.state is SessionState.CAPTURING
        assert controller.name == "my_pen_v2-42"
        assert channel.of("start") == [{"name": "my_pen_v2-42"}]
        assert controller.session.frame_rate == 24
        assert controller.paths.raw_video.name == "my_pen_v2-42.webm"

    @pytest.mark.asyncio
    async def test_start_defaults(self, encoder_config):
        controller = make_controller(encoder_config)

        await controller.dispatch({"cmd": "start", "data": {}})

        assert controller.name == "untitled-1"
        assert controller.session.frame_rate == 30
        assert controller.session.extension == ".mp4"

    @pytest.mark.asyncio
    async def test_second_start_rejected_without_reset(self, encoder_config, png_data_url):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)
        await controller.dispatch(start("first"))
        await controller.dispatch(frame(png_data_url))

        await controller.dispatch(start("second"))

        assert channel.of("error") == [{"msg": "video already in progress"}]
        assert controller.name == "first-1"
        assert controller.frame_store.frame_counter == 1
        await controller.wait_idle()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ffmpeg_arguments", [["-vf", "hflip"], [], ""])
    async def test_ffmpeg_arguments_rejected_without_flag(self, encoder_config, ffmpeg_arguments):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)

        await controller.dispatch(start(ffmpegArguments=ffmpeg_arguments))

        [error] = channel.of("error")
        assert "--allow-arbitrary-ffmpeg-arguments" in error["msg"]
        assert controller.state is SessionState.IDLE
        assert list(encoder_config.frame_dir.iterdir()) == []
        assert list(encoder_config.video_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_ffmpeg_arguments_honored_with_flag(self, encoder_config, png_data_url):
        config = replace(encoder_config, allow_arbitrary_ffmpeg_arguments=True)
        runner = FakeRunner()
        controller = make_controller(config, runner=runner)

        await controller.dispatch(start(ffmpegArguments=["-vf", "hflip"]))
        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)
        await controller.wait_idle()

        encode_args = runner.calls[0][1]
        assert encode_args[-3:] == ["-vf", "hflip", str(controller.paths.raw_video)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("options", [
        {"framerate": -1},
        {"framerate": "fast"},
        {"framerate": True},
        {"extension": 4},
        {"extension": ""},
        {"codec": ""},
        {"ffmpegArguments": "-vf hflip"},
    ])
    async def test_invalid_options_rejected(self, encoder_config, options):
        config = replace(encoder_config, allow_arbitrary_ffmpeg_arguments=True)
        channel = FakeChannel()
        controller = make_controller(config, channel)

        await controller.dispatch(start(**options))

        assert len(channel.of("error")) == 1
        assert controller.state is SessionState.IDLE


class TestCapture:

    @pytest.mark.asyncio
    async def test_three_frames_produce_acks_progress_and_end(self, encoder_config, png_data_url):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)
        await controller.attach()
        await controller.dispatch(start())
        for _ in range(3):
            await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)
        await controller.wait_idle()

        assert sorted(ack["frameNum"] for ack in channel.of("frame")) == [0, 1, 2]
        completions = [p["stage"] for p in channel.of("progress") if p["progress"] == 1.0]
        assert completions == ["encode", "remux", "mux", "overlay"]
        assert channel.of("end") == [{
            "filename": "final-pen-1.mp4",
            "url": "/videos/final-pen-1.mp4",
            "size": len(b"video"),
        }]
        assert channel.sent[-1]["cmd"] == "end"
        assert controller.state is SessionState.DONE

        paths = controller.paths
        assert paths.final_video.exists()
        assert not any(p.exists() for p in paths.intermediates())
        assert list(encoder_config.frame_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_keep_frames(self, encoder_config, png_data_url):
        config = replace(encoder_config, keep_frames=True)
        controller = make_controller(config)
        await controller.dispatch(start())
        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)
        await controller.wait_idle()

        assert controller.state is SessionState.DONE
        assert controller.paths.frame(0).exists()

    @pytest.mark.asyncio
    async def test_end_waits_for_last_write(self, encoder_config, png_data_url):
        writer = GatedWriter()
        runner = FakeRunner()
        controller = make_controller(encoder_config, runner=runner, writer=writer)
        await controller.dispatch(start())
        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(frame(png_data_url))

        await controller.dispatch(END)
        await asyncio.sleep(0.01)

        assert controller.state is SessionState.ENDING
        assert controller.frame_store.pending_writes == 2
        assert runner.calls == []

        writer.release()
        await controller.wait_idle()

        assert controller.state is SessionState.DONE
        assert len(runner.calls) == 2

    @pytest.mark.asyncio
    async def test_end_waits_for_slowest_of_out_of_order_writes(self, encoder_config, png_data_url):
        writer = PerFrameWriter()
        channel = FakeChannel()
        runner = FakeRunner()
        controller = make_controller(encoder_config, channel, runner=runner, writer=writer)
        await controller.dispatch(start())
        for _ in range(3):
            await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)
        paths = controller.paths

        await writer.finish(paths.frame(2))
        await writer.finish(paths.frame(1))

        assert controller.state is SessionState.ENDING
        assert controller.frame_store.pending_writes == 1
        assert runner.calls == []

        writer.release(paths.frame(0))
        await controller.wait_idle()

        assert [ack["frameNum"] for ack in channel.of("frame")] == [2, 1, 0]
        assert controller.state is SessionState.DONE
        assert len(channel.of("end")) == 1

    @pytest.mark.asyncio
    async def test_end_with_no_frames_still_assembles(self, encoder_config):
        runner = FakeRunner()
        controller = make_controller(encoder_config, runner=runner)
        await controller.dispatch(start())

        await controller.dispatch(END)
        await controller.wait_idle()

        assert len(runner.calls) == 2

    @pytest.mark.asyncio
    async def test_bad_frame_is_dropped_silently(self, encoder_config, png_data_url):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)
        await controller.dispatch(start())

        await controller.dispatch(frame("data:image/jpeg;base64,AAAA"))
        await controller.dispatch(frame(png_data_url))
        await controller.wait_idle()

        assert channel.of("error") == []
        assert channel.of("frame") == [{"frameNum": 0}]
        assert controller.frame_store.pending_writes == 0

    @pytest.mark.asyncio
    async def test_frame_before_start(self, encoder_config, png_data_url):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)

        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)

        assert channel.of("error") == [{"msg": "video not started"}, {"msg": "video not started"}]

    @pytest.mark.asyncio
    async def test_restart_after_done(self, encoder_config, png_data_url):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)
        await controller.dispatch(start("one"))
        await controller.dispatch(END)
        await controller.wait_idle()

        await controller.dispatch(start("two"))

        assert controller.state is SessionState.CAPTURING
        assert controller.name == "two-1"
        assert controller.frame_store.frame_counter == 0


class TestSideChannels:

    @pytest.mark.asyncio
    async def test_timestamps_and_audio_enable_their_stages(self, encoder_config, png_data_url):
        runner = FakeRunner()
        controller = make_controller(encoder_config, runner=runner)
        await controller.dispatch(start())
        paths = controller.paths

        await controller.dispatch({"cmd": "timestamps", "data": "0 0\n1 33\n"})
        audio = base64.b64encode(b"ID3-audio").decode("ascii")
        await controller.dispatch({"cmd": "audiofile", "data": f"data:audio/mpeg;base64,{audio}"})

        assert paths.timestamps.read_text() == "0 0\n1 33\n"
        assert paths.audio.read_bytes() == b"ID3-audio"

        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)
        await controller.wait_idle()

        assert [tool for tool, _ in runner.calls] == ["ffmpeg", "mp4fpsmod", "ffmpeg", "ffmpeg"]
        assert not paths.timestamps.exists()
        assert not paths.audio.exists()

    @pytest.mark.asyncio
    async def test_undecodable_audio_is_logged_only(self, encoder_config):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel)
        await controller.dispatch(start())

        await controller.dispatch({"cmd": "audiofile", "data": "***"})

        assert channel.of("error") == []
        assert controller.session.has_audio is False

    @pytest.mark.asyncio
    async def test_meta_sets_overlay_text(self, encoder_config, png_data_url):
        runner = FakeRunner()
        controller = make_controller(encoder_config, runner=runner)
        await controller.dispatch(start())

        await controller.dispatch({"cmd": "meta", "data": {"textOverlay": "my pen", "videoLength": 25}})
        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)
        await controller.wait_idle()

        assert controller.session.text_overlay == "MY PEN"
        assert controller.session.video_length == 25
        overlay_graph = runner.calls[-1][1][4]
        assert "text='MY PEN'" in overlay_graph

    @pytest.mark.asyncio
    async def test_side_channel_outside_capture(self, encoder_config):
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel, runner=BlockingRunner())

        await controller.dispatch({"cmd": "timestamps", "data": "0 0\n"})
        await controller.dispatch(start())
        await controller.dispatch(END)
        await controller.dispatch({"cmd": "textoverlay", "data": "late"})

        assert channel.of("error") == [{"msg": "video not started"}, {"msg": "video capture already ended"}]
        await controller.disconnect()
        controller.orchestrator.runner.gate.set()
        await controller.wait_idle()


class TestFailures:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fail_call, stage", [(0, "encode"), (1, "remux"), (2, "mux"), (3, "overlay")])
    async def test_stage_failure_leaves_no_artifacts(self, encoder_config, png_data_url, fail_call, stage):
        channel = FakeChannel()
        runner = FakeRunner(fail_call=fail_call)
        controller = make_controller(encoder_config, channel, runner=runner)
        await controller.dispatch(start())
        paths = controller.paths
        await controller.dispatch({"cmd": "timestamps", "data": "0 0\n"})
        await controller.dispatch({"cmd": "audiofile", "data": base64.b64encode(b"ID3").decode()})
        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)
        await controller.wait_idle()

        [error] = channel.of("error")
        assert error["stage"] == stage
        assert error["result"]["returncode"] == 1
        assert channel.of("end") == []
        assert controller.state is SessionState.FAILED
        assert controller.name is None
        assert not paths.final_video.exists()
        assert not any(p.exists() for p in paths.intermediates())
        assert list(encoder_config.frame_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_registry_failure_is_reported(self, encoder_config, png_data_url):
        channel = FakeChannel()
        artifacts = AsyncMock()
        artifacts.add_file.side_effect = ValueError("outside video directory")
        controller = make_controller(encoder_config, channel, artifacts=artifacts)
        await controller.dispatch(start())
        await controller.dispatch(END)
        await controller.wait_idle()

        [error] = channel.of("error")
        assert error["stage"] == "register"
        assert controller.state is SessionState.FAILED
        assert not controller.paths.final_video.exists()


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_pending_writes_are_deleted_after_disconnect(self, encoder_config, png_data_url):
        writer = GatedWriter()
        channel = FakeChannel()
        controller = make_controller(encoder_config, channel, writer=writer)
        await controller.attach()
        await controller.dispatch(start())
        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(frame(png_data_url))
        await asyncio.sleep(0.01)

        registry = controller.registry
        registry.remove = MagicMock(wraps=registry.remove)
        await controller.disconnect()
        writer.release()
        await controller.wait_idle()
        await controller.disconnect()

        assert controller.frame_store.pending_writes == 0
        assert list(encoder_config.frame_dir.iterdir()) == []
        assert registry.remove.call_count == 1
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_send_failure_disconnects(self, encoder_config, png_data_url):
        channel = FakeChannel(fail_on="frame")
        controller = make_controller(encoder_config, channel)
        await controller.attach()
        await controller.dispatch(start())

        await controller.dispatch(frame(png_data_url))
        await controller.wait_idle()

        assert controller.connected is False
        assert channel.closed
        assert len(controller.registry) == 0
        assert list(encoder_config.frame_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_running_pipeline_result_is_discarded(self, encoder_config, png_data_url):
        channel = FakeChannel()
        runner = BlockingRunner()
        controller = make_controller(encoder_config, channel, runner=runner)
        await controller.dispatch(start())
        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)
        await controller.frame_store.wait_idle()
        assert controller.state is SessionState.ASSEMBLING

        await controller.disconnect()
        runner.gate.set()
        await controller.wait_idle()

        assert channel.of("end") == []
        assert not controller.paths.final_video.exists()
        assert list(encoder_config.video_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failed_end_delivery_deletes_final_video(self, encoder_config, png_data_url):
        channel = FakeChannel(fail_on="end")
        artifacts = VideoDirectoryRegistry(encoder_config.video_dir)
        controller = make_controller(encoder_config, channel, artifacts=artifacts)
        await controller.attach()
        await controller.dispatch(start())
        await controller.dispatch(frame(png_data_url))
        await controller.dispatch(END)
        await controller.wait_idle()

        assert controller.connected is False
        assert controller.state is not SessionState.DONE
        assert len(controller.registry) == 0
        assert artifacts.files() == []
        assert list(encoder_config.video_dir.iterdir()) == []
        assert list(encoder_config.frame_dir.iterdir()) == []
