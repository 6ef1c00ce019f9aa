"""Live frame capture to video: WebSocket ingestion and an ffmpeg assembly pipeline."""

__version__ = "0.1.0"
