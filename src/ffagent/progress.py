"""Best-effort telemetry extraction from ffmpeg's stderr status lines.

ffmpeg reports progress as free text, e.g.::

    frame=  120 fps= 30 q=28.0 size=    2048kB time=00:00:04.00 bitrate=1024.0kbits/s speed=1.0x

A single read can carry several carriage-return separated status lines, so
the last occurrence of each field wins. Each field is matched on its own; a
field that does not appear in a chunk leaves the previous value untouched.
"""

from __future__ import annotations

import re
from dataclasses import replace

from .models import Telemetry

SIZE_RE = re.compile(r"size=\s*([\d.]+)\s*([a-z]*)", re.IGNORECASE)
BITRATE_RE = re.compile(r"bitrate=\s*([\d.]+)\s*kbits/s", re.IGNORECASE)
SPEED_RE = re.compile(r"speed=\s*([\d.]+)x", re.IGNORECASE)
FRAME_RE = re.compile(r"frame=\s*(\d+)", re.IGNORECASE)

FAILURE_MARKERS = ("Connection refused", "No such file", "Invalid data found")

UNIT_MULTIPLIERS = (
    (("kb", "kib"), 1024),
    (("mb", "mib"), 1024**2),
    (("gb", "gib"), 1024**3),
)


def _to_float(text: str) -> float | None:
    try:
        return float(text)
    except ValueError:
        return None


def size_to_bytes(value: str, unit: str) -> int | None:
    number = _to_float(value)
    if number is None:
        return None
    lowered = unit.lower()
    for prefixes, multiplier in UNIT_MULTIPLIERS:
        if lowered.startswith(prefixes):
            return round(number * multiplier)
    return round(number)


def _last_match(pattern: re.Pattern[str], chunk: str) -> re.Match[str] | None:
    match = None
    for match in pattern.finditer(chunk):
        pass
    return match


def extract_progress(chunk: str, telemetry: Telemetry) -> Telemetry:
    changes: dict[str, object] = {}

    match = _last_match(SIZE_RE, chunk)
    if match:
        size = size_to_bytes(match.group(1), match.group(2) or "B")
        if size is not None:
            changes["size_bytes"] = size

    match = _last_match(BITRATE_RE, chunk)
    if match:
        bitrate = _to_float(match.group(1))
        if bitrate is not None:
            changes["bitrate_kbps"] = bitrate

    match = _last_match(SPEED_RE, chunk)
    if match:
        speed = _to_float(match.group(1))
        if speed is not None:
            changes["speed"] = speed

    match = _last_match(FRAME_RE, chunk)
    if match:
        changes["last_frame"] = int(match.group(1))

    line = chunk.strip()
    if line:
        changes["last_log_line"] = line

    if not changes:
        return telemetry
    return replace(telemetry, **changes)


def detect_failure(chunk: str) -> str | None:
    if any(marker in chunk for marker in FAILURE_MARKERS):
        return chunk.strip()
    return None
