"""Reelcraft: narrated vertical short videos with synced subtitles and overlays."""

from reelcraft.coordinator import JobCoordinator, new_job
from reelcraft.errors import (
    InvalidInputError,
    MediaValidationError,
    MuxError,
    ReelcraftError,
    UpstreamError,
)
from reelcraft.models import ImageOverlay, Job, JobStatus, SpeechResult, VisualCue, WordTiming

__all__ = [
    "JobCoordinator",
    "new_job",
    "ReelcraftError",
    "InvalidInputError",
    "UpstreamError",
    "MediaValidationError",
    "MuxError",
    "ImageOverlay",
    "Job",
    "JobStatus",
    "SpeechResult",
    "VisualCue",
    "WordTiming",
]
