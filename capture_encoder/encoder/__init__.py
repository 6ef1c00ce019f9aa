from .artifact_paths import ArtifactPaths, sanitize_name
from .commands import (
    AudioFileCommand,
    Command,
    EndCommand,
    FrameCommand,
    MetaCommand,
    StartCommand,
    TimestampsCommand,
    parse_command,
)
from .frame_store import EXPECTED_HEADER, FrameStore
from .pipeline import (
    AssemblyJob,
    PipelineFailure,
    PipelineOrchestrator,
    PipelineResult,
    PipelineStage,
    PipelineSuccess,
)
from .process_runner import (
    ExternalProcessRunner,
    ProcessDone,
    ProcessEvent,
    ProcessFailed,
    ProcessProgress,
)
from .registry import SessionRegistry
from .session import Session, SessionController, SessionState

__all__ = [
    "ArtifactPaths", "sanitize_name",
    "Command", "StartCommand", "FrameCommand", "EndCommand",
    "TimestampsCommand", "AudioFileCommand", "MetaCommand", "parse_command",
    "EXPECTED_HEADER", "FrameStore",
    "AssemblyJob", "PipelineStage", "PipelineSuccess", "PipelineFailure",
    "PipelineResult", "PipelineOrchestrator",
    "ExternalProcessRunner", "ProcessEvent", "ProcessProgress", "ProcessDone", "ProcessFailed",
    "SessionRegistry",
    "Session", "SessionController", "SessionState",
]
