from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .app_logging import log_with_fields
from .arguments import build_args
from .config import TimingConfig
from .errors import AgentError, CapabilityError, ValidationError
from .models import JobConfig, JobRecord, JobSnapshot, JobState, RuntimeState
from .notifier import Subscriber, UpdateNotifier
from .progress import detect_failure, extract_progress
from .supervisor import ExitOutcome, ProcessSupervisor
from .utils import new_job_id


@dataclass(slots=True)
class _Entry:
    record: JobRecord
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    generation: int = 0
    pending_start: asyncio.Handle | None = None
    removal: asyncio.TimerHandle | None = None


class JobRegistry:
    """Owns every job record and drives its lifecycle.

    All methods must be called from the event loop that runs the jobs.
    Mutating calls return as soon as the work is scheduled; spawns, stop
    escalation and restart settling happen on timers and tasks.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        notifier: UpdateNotifier,
        logger: logging.Logger,
        timing: TimingConfig | None = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = new_job_id,
    ) -> None:
        self.supervisor = supervisor
        self.notifier = notifier
        self.logger = logger
        self.timing = timing or TimingConfig()
        self.clock = clock
        self.id_factory = id_factory
        self._jobs: dict[str, _Entry] = {}
        self._tasks: set[asyncio.Task] = set()

    # -- reads -----------------------------------------------------------

    def list_jobs(self) -> list[JobSnapshot]:
        now = self.clock()
        return [entry.record.snapshot(now) for entry in self._jobs.values()]

    def get_job(self, job_id: str) -> JobSnapshot | None:
        entry = self._jobs.get(job_id)
        if entry is None:
            return None
        return entry.record.snapshot(self.clock())

    def attach(self, subscriber: Subscriber) -> None:
        subscriber.jobs_snapshot(self.list_jobs())
        self.notifier.subscribe(subscriber)

    def detach(self, subscriber: Subscriber) -> None:
        self.notifier.unsubscribe(subscriber)

    # -- mutations -------------------------------------------------------

    def create_job(self, config: JobConfig) -> JobSnapshot:
        missing = [name for name in ("source", "destination", "method") if not getattr(config, name)]
        if missing:
            raise ValidationError(f"missing required fields: {', '.join(missing)}")

        job_id = self.id_factory()
        if job_id in self._jobs:
            raise AgentError(f"duplicate job id: {job_id}")
        entry = _Entry(record=JobRecord(job_id=job_id, config=config))
        self._jobs[job_id] = entry
        log_with_fields(
            self.logger,
            logging.INFO,
            "job_created",
            job_id=job_id,
            source=config.source,
            destination=config.destination,
            method=config.method,
            profile=config.profile,
        )
        snapshot = self._publish(entry)
        entry.pending_start = asyncio.get_running_loop().call_soon(self._schedule_start, job_id)
        return snapshot

    def _schedule_start(self, job_id: str) -> None:
        entry = self._jobs.get(job_id)
        if entry is not None:
            entry.pending_start = None
        task = asyncio.get_running_loop().create_task(self.start_job(job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def start_job(self, job_id: str) -> None:
        entry = self._jobs.get(job_id)
        if entry is None:
            log_with_fields(self.logger, logging.INFO, "job_start_skipped", job_id=job_id, reason="not_found")
            return

        async with entry.lock:
            runtime = entry.record.runtime
            if runtime.state is not JobState.STARTING:
                log_with_fields(
                    self.logger,
                    logging.INFO,
                    "job_start_skipped",
                    job_id=job_id,
                    reason=f"state_{runtime.state.value}",
                )
                return

            generation = entry.generation
            try:
                args = build_args(entry.record.config)
                log_with_fields(self.logger, logging.INFO, "job_starting", job_id=job_id, args=args)
                pid = await self.supervisor.start(
                    job_id,
                    args,
                    on_output=lambda chunk: self._on_output(job_id, generation, chunk),
                    on_exit=lambda outcome: self._on_exit(job_id, generation, outcome),
                )
            except AgentError as exc:
                if not self._still_starting(job_id, entry, generation):
                    return
                self._fail_start(entry, str(exc))
                return
            except Exception as exc:
                self.logger.exception("unexpected error starting job %s", job_id)
                if not self._still_starting(job_id, entry, generation):
                    return
                self._fail_start(entry, str(exc) or type(exc).__name__)
                return

            if not self._still_starting(job_id, entry, generation):
                log_with_fields(self.logger, logging.INFO, "job_start_superseded", job_id=job_id, pid=pid)
                self.supervisor.stop(job_id)
                return

            runtime = entry.record.runtime
            runtime.pid = pid
            runtime.started_at = self.clock()
            runtime.ended_at = None
            runtime.error_message = None
            runtime.state = JobState.RUNNING
            log_with_fields(self.logger, logging.INFO, "job_started", job_id=job_id, pid=pid)
            self._publish(entry)

    def _still_starting(self, job_id: str, entry: _Entry, generation: int) -> bool:
        return (
            self._jobs.get(job_id) is entry
            and entry.generation == generation
            and entry.record.runtime.state is JobState.STARTING
        )

    def _fail_start(self, entry: _Entry, reason: str) -> None:
        runtime = entry.record.runtime
        runtime.state = JobState.ERROR
        runtime.error_message = f"Failed to start: {reason}"
        runtime.ended_at = self.clock()
        log_with_fields(
            self.logger,
            logging.ERROR,
            "job_start_failed",
            job_id=entry.record.job_id,
            error=reason,
        )
        self._publish(entry)

    def pause_job(self, job_id: str) -> bool:
        entry = self._jobs.get(job_id)
        if entry is None or entry.record.runtime.pid is None:
            log_with_fields(self.logger, logging.WARNING, "job_pause_rejected", job_id=job_id, reason="no_process")
            return False
        if entry.record.runtime.state is not JobState.RUNNING:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "job_pause_rejected",
                job_id=job_id,
                reason=f"state_{entry.record.runtime.state.value}",
            )
            return False
        if not self._signal(job_id, self.supervisor.suspend, "pause"):
            return False
        entry.record.runtime.state = JobState.PAUSED
        log_with_fields(self.logger, logging.INFO, "job_paused", job_id=job_id)
        self._publish(entry)
        return True

    def resume_job(self, job_id: str) -> bool:
        entry = self._jobs.get(job_id)
        if entry is None or entry.record.runtime.pid is None:
            log_with_fields(self.logger, logging.WARNING, "job_resume_rejected", job_id=job_id, reason="no_process")
            return False
        if entry.record.runtime.state is not JobState.PAUSED:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "job_resume_rejected",
                job_id=job_id,
                reason=f"state_{entry.record.runtime.state.value}",
            )
            return False
        if not self._signal(job_id, self.supervisor.resume, "resume"):
            return False
        entry.record.runtime.state = JobState.RUNNING
        log_with_fields(self.logger, logging.INFO, "job_resumed", job_id=job_id)
        self._publish(entry)
        return True

    def _signal(self, job_id: str, action: Callable[[str], None], name: str) -> bool:
        try:
            action(job_id)
        except (CapabilityError, OSError) as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                f"job_{name}_failed",
                job_id=job_id,
                error=str(exc),
            )
            return False
        return True

    def restart_job(self, job_id: str) -> bool:
        entry = self._jobs.get(job_id)
        if entry is None or entry.removal is not None:
            log_with_fields(self.logger, logging.WARNING, "job_restart_rejected", job_id=job_id, reason="not_found")
            return False

        log_with_fields(self.logger, logging.INFO, "job_restarting", job_id=job_id)
        self.supervisor.stop(job_id)
        entry.generation += 1
        entry.record.runtime = RuntimeState()
        self._cancel_pending_start(entry)
        self._publish(entry)
        entry.pending_start = asyncio.get_running_loop().call_later(
            self.timing.restart_delay_seconds, self._schedule_start, job_id
        )
        return True

    def kill_job(self, job_id: str) -> bool:
        entry = self._jobs.get(job_id)
        if entry is None:
            log_with_fields(self.logger, logging.WARNING, "job_kill_rejected", job_id=job_id, reason="not_found")
            return False
        if entry.removal is not None:
            return True

        log_with_fields(self.logger, logging.INFO, "job_killing", job_id=job_id, pid=entry.record.runtime.pid)
        self.supervisor.stop(job_id)
        self._cancel_pending_start(entry)
        runtime = entry.record.runtime
        if not runtime.state.is_terminal or runtime.ended_at is None:
            runtime.ended_at = self.clock()
        runtime.state = JobState.KILLED
        runtime.error_message = None
        self._publish(entry)
        entry.removal = asyncio.get_running_loop().call_later(
            self.timing.removal_delay_seconds, self._remove, job_id
        )
        return True

    def _cancel_pending_start(self, entry: _Entry) -> None:
        if entry.pending_start is not None:
            entry.pending_start.cancel()
            entry.pending_start = None

    def _remove(self, job_id: str) -> None:
        if self._jobs.pop(job_id, None) is None:
            return
        self.notifier.discard(job_id)
        log_with_fields(self.logger, logging.INFO, "job_removed", job_id=job_id)

    async def shutdown(self) -> None:
        for job_id, entry in list(self._jobs.items()):
            if not entry.record.runtime.state.is_terminal:
                self.kill_job(job_id)
        await self.supervisor.wait_all(self.timing.kill_grace_seconds + 1)
        for entry in self._jobs.values():
            if entry.removal is not None:
                entry.removal.cancel()
        self._jobs.clear()
        for task in list(self._tasks):
            task.cancel()
        self.notifier.close()

    # -- process events --------------------------------------------------

    def _current(self, job_id: str, generation: int) -> _Entry | None:
        entry = self._jobs.get(job_id)
        if entry is None or entry.generation != generation:
            return None
        return entry

    def _on_output(self, job_id: str, generation: int, chunk: str) -> None:
        entry = self._current(job_id, generation)
        if entry is None:
            return
        runtime = entry.record.runtime
        runtime.telemetry = extract_progress(chunk, runtime.telemetry)
        failure = detect_failure(chunk)
        if failure:
            runtime.error_message = failure
        self.notifier.publish_throttled(job_id, lambda: self.get_job(job_id))

    def _on_exit(self, job_id: str, generation: int, outcome: ExitOutcome) -> None:
        entry = self._current(job_id, generation)
        if entry is None:
            log_with_fields(
                self.logger,
                logging.INFO,
                "job_exit_ignored",
                job_id=job_id,
                returncode=outcome.returncode,
            )
            return

        runtime = entry.record.runtime
        runtime.pid = None
        if runtime.ended_at is None:
            runtime.ended_at = self.clock()
        if runtime.state is not JobState.KILLED:
            runtime.state = outcome.state
            if outcome.state is not JobState.ERROR:
                runtime.error_message = None
            elif runtime.error_message:
                runtime.error_message = f"{outcome.message}: {runtime.error_message}"
            else:
                runtime.error_message = outcome.message
        log_with_fields(
            self.logger,
            logging.INFO if runtime.state is not JobState.ERROR else logging.ERROR,
            "job_exited",
            job_id=job_id,
            state=runtime.state.value,
            returncode=outcome.returncode,
            error=runtime.error_message,
        )
        self._publish(entry)

    def _publish(self, entry: _Entry) -> JobSnapshot:
        snapshot = entry.record.snapshot(self.clock())
        self.notifier.publish(snapshot)
        return snapshot
