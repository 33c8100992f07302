"""Configuration loading and path resolution."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from reelcraft.errors import InvalidInputError
from reelcraft.models import VoiceConfig

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = "config.yaml"

DEFAULT_WIDTH = 1080
DEFAULT_HEIGHT = 1920


def parse_resolution(value: str | None) -> tuple[int, int]:
    """Parse a ``WxH`` string; malformed input falls back to 1080x1920."""
    if not value:
        return DEFAULT_WIDTH, DEFAULT_HEIGHT
    parts = str(value).lower().split("x")
    if len(parts) != 2:
        return DEFAULT_WIDTH, DEFAULT_HEIGHT
    try:
        width, height = int(parts[0]), int(parts[1])
    except ValueError:
        return DEFAULT_WIDTH, DEFAULT_HEIGHT
    if width <= 0 or height <= 0:
        return DEFAULT_WIDTH, DEFAULT_HEIGHT
    return width, height


@dataclass
class TTSConfig:
    provider: str = ""
    words_per_minute: float = 150.0
    add_pauses: bool = False


@dataclass
class ElevenLabsConfig:
    api_keys: list[str] = field(default_factory=list)
    voice_id: str = ""
    model_id: str = "eleven_multilingual_v2"
    stability: float = 0.5
    similarity: float = 0.75
    speed: float = 1.0
    timeout: float = 120.0
    voices: list[VoiceConfig] = field(default_factory=list)


@dataclass
class LLMConfig:
    api_key: str = ""
    model: str = "gpt-4o-mini"
    base_url: str = ""
    visual_count: int = 5
    script_length: int = 150
    timeout: float = 60.0


@dataclass
class GoogleSearchConfig:
    api_key: str = ""
    engine_id: str = ""
    timeout: float = 15.0
    download_timeout: float = 30.0


@dataclass
class TenorConfig:
    api_key: str = ""
    timeout: float = 15.0
    download_timeout: float = 30.0


@dataclass
class VisualsConfig:
    """Overlay placement settings.

    Attributes:
        max_display_time: Upper bound on an overlay's on-screen time; 0 disables it.
        image_width: Target overlay width in pixels.
        image_height: Target overlay height in pixels.
        min_gap: Minimum seconds between one overlay's end and the next start.
    """
    enabled: bool = True
    max_display_time: float = 4.0
    image_width: int = 800
    image_height: int = 600
    min_gap: float = 1.0


@dataclass
class SubtitlesConfig:
    font_name: str = "Arial"
    font_size: int = 80
    primary_color: str = "#FFFFFF"
    outline_color: str = "#000000"
    outline_size: int = 4
    shadow_size: int = 2
    bold: bool = True
    offset: float = 0.0


@dataclass
class VideoConfig:
    background_dir: str = ""
    background_urls: list[str] = field(default_factory=list)
    cache_dir: str = ".cache/backgrounds"
    output_dir: str = "output"
    resolution: str = "1080x1920"
    end_buffer: float = 1.5
    max_overlays: int = 6
    conversation_mode: bool = True
    background_volume: float = 0.1
    music_dir: str = ""
    music_volume: float = 0.15
    music_fade_in: float = 1.0
    music_fade_out: float = 2.0

    @property
    def size(self) -> tuple[int, int]:
        return parse_resolution(self.resolution)


@dataclass
class TimeoutsConfig:
    """Per-stage deadlines of the job coordinator, in seconds."""
    draft: float = 120.0
    synthesise: float = 300.0
    stitch: float = 120.0
    fetch_overlays: float = 300.0
    render_subtitles: float = 30.0
    mux: float = 600.0


@dataclass
class AppConfig:
    tts: TTSConfig = field(default_factory=TTSConfig)
    elevenlabs: ElevenLabsConfig = field(default_factory=ElevenLabsConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    google_search: GoogleSearchConfig = field(default_factory=GoogleSearchConfig)
    tenor: TenorConfig = field(default_factory=TenorConfig)
    visuals: VisualsConfig = field(default_factory=VisualsConfig)
    subtitles: SubtitlesConfig = field(default_factory=SubtitlesConfig)
    video: VideoConfig = field(default_factory=VideoConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    root: Path = field(default_factory=Path.cwd)

    def resolve(self, value: str) -> Path:
        """Resolve a configured path relative to the config file's directory."""
        p = Path(value).expanduser()
        if not p.is_absolute():
            p = self.root / p
        return p

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, root: Path | None = None) -> AppConfig:
        data = data or {}
        if not isinstance(data, dict):
            raise InvalidInputError("Config root must be a mapping")

        el_raw = dict(_section(data, "elevenlabs"))
        voices = [_parse_voice(v) for v in el_raw.pop("voices", None) or []]
        single_key = el_raw.pop("api_key", None)
        if single_key and not el_raw.get("api_keys"):
            el_raw["api_keys"] = [single_key]
        elevenlabs = _build(ElevenLabsConfig, el_raw, "elevenlabs")
        elevenlabs.voices = voices

        return cls(
            tts=_build(TTSConfig, _section(data, "tts"), "tts"),
            elevenlabs=elevenlabs,
            llm=_build(LLMConfig, _section(data, "llm"), "llm"),
            google_search=_build(GoogleSearchConfig, _section(data, "google_search"), "google_search"),
            tenor=_build(TenorConfig, _section(data, "tenor"), "tenor"),
            visuals=_build(VisualsConfig, _section(data, "visuals"), "visuals"),
            subtitles=_build(SubtitlesConfig, _section(data, "subtitles"), "subtitles"),
            video=_build(VideoConfig, _section(data, "video"), "video"),
            timeouts=_build(TimeoutsConfig, _section(data, "timeouts"), "timeouts"),
            root=root or Path.cwd(),
        )


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise InvalidInputError(f"Config section '{key}' must be a mapping")
    return value


def _parse_voice(raw: Any) -> VoiceConfig:
    if not isinstance(raw, dict) or not raw.get("name"):
        raise InvalidInputError(f"Invalid voice entry (needs a name): {raw!r}")
    return VoiceConfig(
        name=str(raw["name"]),
        voice_id=str(raw.get("id") or raw.get("voice_id") or ""),
        subtitle_color=str(raw.get("subtitle_color") or ""),
    )


def _coerce(value: Any, default: Any, name: str) -> Any:
    """Convert a YAML scalar to the type of the field's default."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise InvalidInputError(f"{name}: expected true/false, got {value!r}")
    if isinstance(default, (int, float)):
        if isinstance(value, bool):
            raise InvalidInputError(f"{name}: expected a number, got {value!r}")
        try:
            return type(default)(value)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"{name}: expected a number, got {value!r}") from exc
    if isinstance(default, list):
        if not isinstance(value, list):
            raise InvalidInputError(f"{name}: expected a list, got {value!r}")
        return [str(v) for v in value]
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        raise InvalidInputError(f"{name}: expected a string, got {value!r}")
    return str(value)


def _build(cls: type, raw: dict, section: str) -> Any:
    instance = cls()
    known = {f.name for f in dataclasses.fields(cls)}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %s.%s", section, key)
            continue
        default = getattr(instance, key)
        setattr(instance, key, _coerce(value, default, f"{section}.{key}"))
    return instance


def load_config(config_path: str | None = None) -> AppConfig:
    """Load and validate the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to ./config.yaml.

    Returns:
        Parsed configuration.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        InvalidInputError: If the file is not valid YAML or has bad values.
    """
    path = Path(config_path or _DEFAULT_CONFIG)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise InvalidInputError(f"Malformed config {path}: {exc}") from exc
    return AppConfig.from_dict(raw, root=path.resolve().parent)
