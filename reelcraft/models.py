"""Data models for the narrated short-video pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class WordTiming:
    """A word as pronounced, with its timing on the audio timeline.

    Attributes:
        word: Word as it appeared in the script (punctuation preserved).
        start: Start time in seconds.
        end: End time in seconds.
        speaker: Speaker name; empty string means unknown / single voice.
    """
    word: str
    start: float
    end: float
    speaker: str = ""


@dataclass(frozen=True)
class SpeechResult:
    """Audio bytes together with the word timings of the same segment."""
    audio: bytes
    timings: tuple[WordTiming, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "timings", tuple(self.timings))

    @property
    def duration(self) -> float:
        return self.timings[-1].end if self.timings else 0.0


@dataclass(frozen=True)
class StitchedAudio:
    """Result of joining one or more speech segments."""
    data: bytes
    timings: tuple[WordTiming, ...]
    duration: float


@dataclass(frozen=True)
class VoiceConfig:
    """Logical identity of a speaker.

    Attributes:
        name: Speaker name, the join key between script, timings and colours.
        voice_id: Backend-specific voice identifier.
        subtitle_color: Hex colour ("#RRGGBB") for this speaker's subtitles.
    """
    name: str
    voice_id: str = ""
    subtitle_color: str = ""


class MediaType(str, Enum):
    IMAGE = "image"
    GIF = "gif"

    @classmethod
    def parse(cls, value: str | None) -> MediaType:
        if value and value.strip().lower() in ("gif", "animated"):
            return cls.GIF
        return cls.IMAGE


@dataclass(frozen=True)
class VisualCue:
    """Instruction to place a visual near a keyword of the narration."""
    keyword: str
    search_query: str
    type: MediaType = MediaType.IMAGE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VisualCue:
        keyword = str(data.get("keyword", "")).strip()
        query = str(data.get("search_query") or data.get("query") or keyword).strip()
        return cls(
            keyword=keyword,
            search_query=query,
            type=MediaType.parse(data.get("type")),
        )

    @property
    def animated(self) -> bool:
        return self.type is MediaType.GIF


@dataclass(frozen=True)
class SearchResult:
    """One candidate returned by an image or GIF search backend."""
    title: str
    url: str
    thumb_url: str = ""
    width: int = 0
    height: int = 0


@dataclass
class ImageOverlay:
    """A placed visual ready for compositing."""
    path: Path
    start: float
    end: float
    width: int
    height: int
    animated: bool = False


@dataclass(frozen=True)
class Subtitle:
    """A single word event of the subtitle track."""
    text: str
    start: float
    end: float
    color: str = ""


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    UPLOADED = "uploaded"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.UPLOADED)


class JobStage(str, Enum):
    PENDING = "pending"
    DRAFT_SCRIPT = "draft_script"
    SYNTHESISE = "synthesise"
    STITCH = "stitch"
    FETCH_OVERLAYS = "fetch_overlays"
    RENDER_SUBTITLES = "render_subtitles"
    MUX = "mux"
    DONE = "done"


@dataclass
class Job:
    """Lifecycle envelope of one video build.

    Only the coordinator mutates a job; every other component treats it as
    read-only input.
    """
    id: str
    output_dir: Path
    script: str = ""
    topic: str = ""
    title: str = ""
    status: JobStatus = JobStatus.PENDING
    stage: JobStage = JobStage.PENDING
    error: str | None = None
    error_kind: str | None = None
    audio_path: Path | None = None
    video_path: Path | None = None
    overlays: list[ImageOverlay] = field(default_factory=list)
    upload_url: str | None = None
    duration: float = 0.0
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def is_done(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "topic": self.topic,
            "status": self.status.value,
            "stage": self.stage.value,
            "error": self.error,
            "error_kind": self.error_kind,
            "audio_path": str(self.audio_path) if self.audio_path else None,
            "video_path": str(self.video_path) if self.video_path else None,
            "overlays": [
                {
                    "path": str(o.path), "start": o.start, "end": o.end,
                    "animated": o.animated,
                }
                for o in self.overlays
            ],
            "upload_url": self.upload_url,
            "duration": self.duration,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
        }
