from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from .utils import iso_from_timestamp, uptime_seconds


class JobState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.STOPPED, JobState.ERROR, JobState.KILLED})


class TransportMethod(str, Enum):
    COPY = "copy"
    ENCODE = "encode"


class Profile(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class RequestHeaders:
    user_agent: str | None = None
    referer: str | None = None
    origin: str | None = None
    cookie: str | None = None
    authorization: str | None = None

    def lines(self) -> list[str]:
        pairs = [
            ("User-Agent", self.user_agent),
            ("Referer", self.referer),
            ("Origin", self.origin),
            ("Cookie", self.cookie),
            ("Authorization", self.authorization),
        ]
        return [f"{name}: {value}" for name, value in pairs if value]


@dataclass(frozen=True, slots=True)
class CustomOptions:
    crf: int | None = None
    fps: float | None = None
    width: int | None = None
    video_bitrate: str | None = None
    audio_bitrate: str | None = None
    maxrate: str | None = None
    bufsize: str | None = None


@dataclass(frozen=True, slots=True)
class JobConfig:
    source: str
    destination: str
    method: str
    profile: str | None = None
    headers: RequestHeaders = field(default_factory=RequestHeaders)
    custom: CustomOptions = field(default_factory=CustomOptions)


@dataclass(frozen=True, slots=True)
class Telemetry:
    size_bytes: int | None = None
    bitrate_kbps: float | None = None
    speed: float | None = None
    last_frame: int | None = None
    last_log_line: str | None = None


@dataclass(slots=True)
class RuntimeState:
    state: JobState = JobState.STARTING
    pid: int | None = None
    started_at: float | None = None
    ended_at: float | None = None
    telemetry: Telemetry = field(default_factory=Telemetry)
    error_message: str | None = None


@dataclass(slots=True)
class JobRecord:
    job_id: str
    config: JobConfig
    runtime: RuntimeState = field(default_factory=RuntimeState)

    def snapshot(self, now: float) -> JobSnapshot:
        runtime = self.runtime
        return JobSnapshot(
            job_id=self.job_id,
            config=self.config,
            state=runtime.state,
            pid=runtime.pid,
            started_at=runtime.started_at,
            ended_at=runtime.ended_at,
            uptime_seconds=uptime_seconds(runtime.started_at, runtime.ended_at, now),
            telemetry=runtime.telemetry,
            error_message=runtime.error_message,
        )


@dataclass(frozen=True, slots=True)
class JobSnapshot:
    job_id: str
    config: JobConfig
    state: JobState
    pid: int | None
    started_at: float | None
    ended_at: float | None
    uptime_seconds: int | None
    telemetry: Telemetry
    error_message: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.job_id,
            "source": self.config.source,
            "destination": self.config.destination,
            "method": self.config.method,
            "profile": self.config.profile,
            "state": self.state.value,
            "pid": self.pid,
            "started_at": iso_from_timestamp(self.started_at),
            "ended_at": iso_from_timestamp(self.ended_at),
            "uptime_seconds": self.uptime_seconds,
            **asdict(self.telemetry),
            "error_message": self.error_message,
        }
