from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .models import JobSnapshot

SnapshotFactory = Callable[[], "JobSnapshot | None"]


class Subscriber:
    """Receives job snapshots. Transports override the two hooks."""

    def jobs_snapshot(self, snapshots: list[JobSnapshot]) -> None:
        pass

    def job_update(self, snapshot: JobSnapshot) -> None:
        pass


class UpdateNotifier:
    """Fans job snapshots out to subscribers.

    ``publish`` emits right away and is used for lifecycle transitions.
    ``publish_throttled`` is for progress: the first call for a job opens a
    window and later calls inside it only replace the pending payload, so at
    most one snapshot per job leaves per window, built when the window closes.
    The window is not pushed back by later calls; ffmpeg reports progress
    more often than once per window, so a resetting timer would never fire.
    """

    def __init__(self, logger: logging.Logger, window_seconds: float = 1.0) -> None:
        self.logger = logger
        self.window_seconds = window_seconds
        self.subscribers: list[Subscriber] = []
        self._pending: dict[str, tuple[asyncio.TimerHandle, SnapshotFactory]] = {}

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self.subscribers:
            self.subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self.subscribers:
            self.subscribers.remove(subscriber)

    def publish(self, snapshot: JobSnapshot) -> None:
        for subscriber in list(self.subscribers):
            try:
                subscriber.job_update(snapshot)
            except Exception:
                self.logger.exception("subscriber failed on update for job %s", snapshot.job_id)

    def publish_throttled(self, job_id: str, factory: SnapshotFactory) -> None:
        pending = self._pending.get(job_id)
        if pending is not None:
            self._pending[job_id] = (pending[0], factory)
            return
        handle = asyncio.get_running_loop().call_later(self.window_seconds, self._flush, job_id)
        self._pending[job_id] = (handle, factory)

    def _flush(self, job_id: str) -> None:
        pending = self._pending.pop(job_id, None)
        if pending is None:
            return
        snapshot = pending[1]()
        if snapshot is not None:
            self.publish(snapshot)

    def has_pending(self, job_id: str) -> bool:
        return job_id in self._pending

    def discard(self, job_id: str) -> None:
        pending = self._pending.pop(job_id, None)
        if pending is not None:
            pending[0].cancel()

    def close(self) -> None:
        for job_id in list(self._pending):
            self.discard(job_id)
