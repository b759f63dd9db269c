from __future__ import annotations

import uuid
from datetime import UTC, datetime


def iso_from_timestamp(timestamp: float | None) -> str | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, UTC).isoformat()


def new_job_id() -> str:
    return uuid.uuid4().hex


def uptime_seconds(started_at: float | None, ended_at: float | None, now: float) -> int | None:
    if started_at is None:
        return None
    end = ended_at if ended_at is not None else now
    return max(0, int(end - started_at))
