"""Assemble captured frames into the final video.

The pipeline is an ordered tuple of :class:`PipelineStage` descriptors. Each
stage names the tool it runs, how to build its arguments from the job and the
previous stage's output, where it writes, and when it can be skipped. A
skipped stage passes its input through untouched. The first failing stage
stops the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from capture_encoder.core.config import EncoderConfig
from capture_encoder.core.logging_utils import LoggerLike, ensure_structured_logger

from .artifact_paths import ArtifactPaths
from .overlay import build_overlay_filter, schedule_for
from .process_runner import ExternalProcessRunner, ProcessDone, ProcessFailed, ProcessProgress

ProgressCallback = Callable[[str, float], Awaitable[None]]


@dataclass(frozen=True)
class AssemblyJob:
    """Snapshot of everything the stages need from a finished capture."""

    paths: ArtifactPaths
    frame_rate: float
    frame_count: int
    codec: Optional[str] = None
    encoder_arguments: tuple[str, ...] = ()
    has_timestamps: bool = False
    has_audio: bool = False
    text_overlay: str = ""
    video_length: Optional[float] = None

    @property
    def estimated_duration(self) -> Optional[float]:
        if self.frame_rate <= 0 or self.frame_count <= 0:
            return None
        return self.frame_count / self.frame_rate


@dataclass(frozen=True)
class PipelineStage:
    name: str
    tool: str
    build_args: Callable[[EncoderConfig, AssemblyJob, Optional[Path]], List[str]]
    output: Callable[[AssemblyJob], Path]
    skip_when: Optional[Callable[[AssemblyJob], bool]] = None


@dataclass(frozen=True)
class PipelineSuccess:
    final_path: Path
    stages_run: tuple[str, ...] = ()


@dataclass(frozen=True)
class PipelineFailure:
    stage: str
    diagnostic: Dict[str, Any] = field(default_factory=dict)


PipelineResult = PipelineSuccess | PipelineFailure


# ---------------------------------------------------------------------------
# Stage argument builders
# ---------------------------------------------------------------------------


def _number(value: float) -> str:
    return f"{value:g}"


def encode_args(config: EncoderConfig, job: AssemblyJob, _input: Optional[Path]) -> List[str]:
    args = [
        "-framerate", _number(job.frame_rate),
        "-pattern_type", "sequence",
        "-start_number", "0",
        "-i", str(job.paths.frame_pattern),
        "-y",
    ]
    if job.codec:
        args += ["-c:v", job.codec]
    elif job.paths.extension == ".mp4":
        args += ["-c:v", "libx264", "-pix_fmt", "yuv420p"]
    args += list(job.encoder_arguments)
    args.append(str(job.paths.raw_video))
    return args


def remux_args(config: EncoderConfig, job: AssemblyJob, source: Optional[Path]) -> List[str]:
    return [
        "-o", str(job.paths.vfr_video),
        "-t", str(job.paths.timestamps),
        str(source),
    ]


def mux_args(config: EncoderConfig, job: AssemblyJob, source: Optional[Path]) -> List[str]:
    return [
        "-y",
        "-i", str(source),
        "-i", str(job.paths.audio),
        "-map", "0:v",
        "-map", "1:a",
        "-shortest",
        str(job.paths.cfr_video),
    ]


def overlay_args(config: EncoderConfig, job: AssemblyJob, source: Optional[Path]) -> List[str]:
    schedule = schedule_for(job.video_length, job.estimated_duration)
    graph = build_overlay_filter(job.text_overlay, config.attribution_text, schedule, config.font_file)
    return [
        "-y",
        "-i", str(source),
        "-filter_complex", graph,
        "-codec:a", "copy",
        str(job.paths.final_video),
    ]


DEFAULT_STAGES: tuple[PipelineStage, ...] = (
    PipelineStage("encode", "ffmpeg", encode_args, lambda job: job.paths.raw_video),
    PipelineStage(
        "remux", "mp4fpsmod", remux_args, lambda job: job.paths.vfr_video,
        skip_when=lambda job: not job.has_timestamps,
    ),
    PipelineStage(
        "mux", "ffmpeg", mux_args, lambda job: job.paths.cfr_video,
        skip_when=lambda job: not job.has_audio,
    ),
    PipelineStage("overlay", "ffmpeg", overlay_args, lambda job: job.paths.final_video),
)


class PipelineOrchestrator:
    """Runs the stage chain for one capture at a time."""

    def __init__(
        self,
        config: EncoderConfig,
        runner: Optional[ExternalProcessRunner] = None,
        *,
        stages: Sequence[PipelineStage] = DEFAULT_STAGES,
        logger: LoggerLike = None,
    ) -> None:
        self.config = config
        self._logger = ensure_structured_logger(logger, fallback_name="Pipeline")
        self.runner = runner or ExternalProcessRunner(timeout=config.process_timeout, logger=self._logger)
        self.stages = tuple(stages)
        self.tools: Mapping[str, str] = {
            "ffmpeg": config.ffmpeg_path,
            "mp4fpsmod": config.mp4fpsmod_path,
        }

    async def assemble(self, job: AssemblyJob, on_progress: Optional[ProgressCallback] = None) -> PipelineResult:
        current: Optional[Path] = None
        stages_run: List[str] = []

        for stage in self.stages:
            if stage.skip_when is not None and stage.skip_when(job):
                self._logger.info("%s: skipping %s", job.paths.name, stage.name)
                await self._report(on_progress, stage.name, 1.0)
                continue

            args = stage.build_args(self.config, job, current)
            failure = await self._run_stage(stage, args, job, on_progress)
            if failure is not None:
                self._logger.error("%s: stage %s failed", job.paths.name, stage.name)
                return failure

            current = stage.output(job)
            stages_run.append(stage.name)
            self._logger.info("%s: %s -> %s", job.paths.name, stage.name, current)
            await self._report(on_progress, stage.name, 1.0)

        if current is None:
            return PipelineFailure("pipeline", {"msg": "no stage produced output"})
        return PipelineSuccess(current, tuple(stages_run))

    async def _run_stage(
        self,
        stage: PipelineStage,
        args: List[str],
        job: AssemblyJob,
        on_progress: Optional[ProgressCallback],
    ) -> Optional[PipelineFailure]:
        tool = self.tools.get(stage.tool, stage.tool)
        failure: Optional[PipelineFailure] = None

        async for event in self.runner.run(tool, args):
            match event:
                case ProcessProgress(frame=frame):
                    if job.frame_count > 0:
                        fraction = frame / job.frame_count
                        # 1.0 is reserved for stage completion
                        if fraction < 1.0:
                            await self._report(on_progress, stage.name, fraction)
                case ProcessDone():
                    pass
                case ProcessFailed(diagnostic=diagnostic):
                    failure = PipelineFailure(stage.name, diagnostic)

        return failure

    @staticmethod
    async def _report(on_progress: Optional[ProgressCallback], stage: str, fraction: float) -> None:
        if on_progress is not None:
            await on_progress(stage, max(0.0, min(1.0, fraction)))


__all__ = [
    "AssemblyJob",
    "PipelineStage",
    "PipelineSuccess",
    "PipelineFailure",
    "PipelineResult",
    "PipelineOrchestrator",
    "DEFAULT_STAGES",
    "encode_args",
    "remux_args",
    "mux_args",
    "overlay_args",
]
