"""Configuration handling."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
import yaml


@dataclass
class StorageConfig:
    filename: str = "conversations.json"
    debounce_ms: int = 500
    autosave_interval_seconds: float = 5.0
    max_storage_mb: float = 4.5
    max_sessions: int = 10


@dataclass
class CompressionConfig:
    threshold: int = 50
    ratio: float = 0.3
    min_messages_per_group: int = 3
    time_grouping_minutes: float = 2.0
    min_interval_minutes: float = 2.0
    fragment_chars: int = 100


@dataclass
class SummaryConfig:
    interval_minutes: float = 1.0
    max_key_points: int = 5
    include_timestamps: bool = True
    include_speaker_stats: bool = True
    max_message_length: int = 80


@dataclass
class SpeakerConfig:
    similarity_threshold: float = 0.3
    recency_window_seconds: float = 30.0


@dataclass
class Config:
    data_dir: str = ""
    log_dir: str = ""
    min_message_chars: int = 3
    validate_invariants: bool = False
    housekeeping_interval_seconds: float = 15.0
    storage: StorageConfig = field(default_factory=StorageConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    summarization: SummaryConfig = field(default_factory=SummaryConfig)
    speakers: SpeakerConfig = field(default_factory=SpeakerConfig)


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    storage = StorageConfig(**(data.get("storage") or {}))
    compression = CompressionConfig(**(data.get("compression") or {}))
    summarization = SummaryConfig(**(data.get("summarization") or {}))
    speakers = SpeakerConfig(**(data.get("speakers") or {}))

    return Config(
        data_dir=data.get("data_dir") or "",
        log_dir=data.get("log_dir") or "",
        min_message_chars=int(data.get("min_message_chars", 3)),
        validate_invariants=bool(data.get("validate_invariants", False)),
        housekeeping_interval_seconds=float(
            data.get("housekeeping_interval_seconds", 15.0)
        ),
        storage=storage,
        compression=compression,
        summarization=summarization,
        speakers=speakers,
    )


def config_to_dict(config: Config) -> dict:
    return asdict(config)


def save_config(path: str, config: Config) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(config_to_dict(config), handle, sort_keys=False)
