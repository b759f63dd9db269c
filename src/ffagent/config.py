from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass(slots=True)
class FfmpegConfig:
    path: str = "ffmpeg"
    report: bool = True
    report_level: int = 16
    report_dir: Path = field(default_factory=lambda: Path("."))
    log_stdout: bool = False


@dataclass(slots=True)
class TimingConfig:
    kill_grace_seconds: float = 5.0
    restart_delay_seconds: float = 1.0
    removal_delay_seconds: float = 2.0
    progress_window_seconds: float = 1.0


@dataclass(slots=True)
class InputsConfig:
    allowed_patterns: list[re.Pattern[str]] = field(default_factory=lambda: [re.compile(".*")])

    def is_allowed(self, source: str) -> bool:
        return any(pattern.search(source) for pattern in self.allowed_patterns)


@dataclass(slots=True)
class PathsConfig:
    log: Path | None = None


@dataclass(slots=True)
class AppConfig:
    ffmpeg: FfmpegConfig = field(default_factory=FfmpegConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    inputs: InputsConfig = field(default_factory=InputsConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def _as_bool(value: object, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "yes", "1", "on"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "no", "0", "off"}:
        return False
    raise ValueError(f"`{name}` must be a boolean")


def _non_negative(value: object, name: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValueError(f"`{name}` must be a number") from None
    if number < 0:
        raise ValueError(f"`{name}` must be >= 0")
    return number


def compile_patterns(patterns: list[str]) -> list[re.Pattern[str]]:
    compiled: list[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            raise ValueError(f"Invalid input pattern {pattern!r}: {exc}") from None
    return compiled


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> AppConfig:
    environ = os.environ if environ is None else environ
    raw: object = {}
    base_dir = Path.cwd()
    if path is not None:
        config_path = Path(path).expanduser().resolve()
        base_dir = config_path.parent
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    ffmpeg_raw = _section(raw, "ffmpeg")
    timing_raw = _section(raw, "timing")
    inputs_raw = _section(raw, "inputs")
    paths_raw = _section(raw, "paths")

    def to_path(value: object) -> Path:
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = base_dir / output
        return output

    ffmpeg = FfmpegConfig(
        path=str(ffmpeg_raw.get("path", "ffmpeg")),
        report=_as_bool(ffmpeg_raw.get("report", True), "ffmpeg.report"),
        report_level=int(ffmpeg_raw.get("report_level", 16)),
        report_dir=to_path(ffmpeg_raw.get("report_dir", ".")),
        log_stdout=_as_bool(ffmpeg_raw.get("log_stdout", False), "ffmpeg.log_stdout"),
    )
    if environ.get("FFMPEG_PATH"):
        ffmpeg.path = environ["FFMPEG_PATH"]
    if environ.get("DISABLE_FFMPEG_LOGS", "").lower() == "true":
        ffmpeg.report = False

    timing = TimingConfig(
        kill_grace_seconds=_non_negative(timing_raw.get("kill_grace_seconds", 5), "timing.kill_grace_seconds"),
        restart_delay_seconds=_non_negative(
            timing_raw.get("restart_delay_seconds", 1), "timing.restart_delay_seconds"
        ),
        removal_delay_seconds=_non_negative(
            timing_raw.get("removal_delay_seconds", 2), "timing.removal_delay_seconds"
        ),
        progress_window_seconds=_non_negative(
            timing_raw.get("progress_window_seconds", 1), "timing.progress_window_seconds"
        ),
    )

    patterns_raw = inputs_raw.get("allowed_patterns", [".*"])
    if isinstance(patterns_raw, str):
        patterns_raw = [patterns_raw]
    if not isinstance(patterns_raw, list) or not patterns_raw:
        raise ValueError("`inputs.allowed_patterns` must be a non-empty list")
    env_patterns = [item.strip() for item in environ.get("ALLOWED_INPUT_PATTERNS", "").split(",") if item.strip()]
    if env_patterns:
        patterns_raw = env_patterns
    inputs = InputsConfig(allowed_patterns=compile_patterns([str(item) for item in patterns_raw]))

    log_raw = paths_raw.get("log")
    paths = PathsConfig(log=to_path(log_raw) if log_raw else None)

    return AppConfig(ffmpeg=ffmpeg, timing=timing, inputs=inputs, paths=paths)
