from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError
from .models import CustomOptions, JobConfig, RequestHeaders, TransportMethod

HEADER_KEYS = ("user_agent", "referer", "origin", "cookie", "authorization")


def _optional_str(mapping: Mapping[str, Any], key: str) -> str | None:
    value = mapping.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _optional_number(mapping: Mapping[str, Any], key: str, kind: type) -> Any:
    value = mapping.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"`custom.{key}` must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"`custom.{key}` must be a number") from None
    if kind is int:
        if not number.is_integer():
            raise ValidationError(f"`custom.{key}` must be an integer")
        return int(number)
    return number


def _mapping(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = payload.get(key) or {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"`{key}` must be a mapping")
    return value


def parse_job_config(
    payload: Mapping[str, Any],
    allowed_patterns: list[re.Pattern[str]] | None = None,
) -> JobConfig:
    if not isinstance(payload, Mapping):
        raise ValidationError("job payload must be a mapping")

    missing = [key for key in ("source", "destination", "method") if not payload.get(key)]
    if missing:
        raise ValidationError(f"missing required fields: {', '.join(missing)}")

    source = str(payload["source"])
    method = str(payload["method"]).lower()
    if method not in {item.value for item in TransportMethod}:
        raise ValidationError(f"unknown method: {method}")
    if allowed_patterns is not None and not any(pattern.search(source) for pattern in allowed_patterns):
        raise ValidationError(f"source not allowed: {source}")

    headers_raw = _mapping(payload, "headers")
    custom_raw = _mapping(payload, "custom")
    profile = _optional_str(payload, "profile")

    return JobConfig(
        source=source,
        destination=str(payload["destination"]),
        method=method,
        profile=profile.lower() if profile else None,
        headers=RequestHeaders(**{key: _optional_str(headers_raw, key) for key in HEADER_KEYS}),
        custom=CustomOptions(
            crf=_optional_number(custom_raw, "crf", int),
            fps=_optional_number(custom_raw, "fps", float),
            width=_optional_number(custom_raw, "width", int),
            video_bitrate=_optional_str(custom_raw, "video_bitrate"),
            audio_bitrate=_optional_str(custom_raw, "audio_bitrate"),
            maxrate=_optional_str(custom_raw, "maxrate"),
            bufsize=_optional_str(custom_raw, "bufsize"),
        ),
    )


def load_jobs_file(
    path: str | Path,
    allowed_patterns: list[re.Pattern[str]] | None = None,
) -> list[JobConfig]:
    jobs_path = Path(path).expanduser()
    raw = yaml.safe_load(jobs_path.read_text(encoding="utf-8")) or []
    if isinstance(raw, Mapping):
        raw = raw.get("jobs", [])
    if not isinstance(raw, list) or not raw:
        raise ValidationError("jobs file must contain a non-empty list of jobs")

    configs: list[JobConfig] = []
    for idx, item in enumerate(raw):
        try:
            configs.append(parse_job_config(item, allowed_patterns))
        except ValidationError as exc:
            raise ValidationError(f"jobs[{idx}]: {exc}") from None
    return configs
