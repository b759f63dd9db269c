from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable
from dataclasses import dataclass, field

from .app_logging import log_with_fields
from .errors import CapabilityError, ProcessError
from .models import JobState
from .process import ManagedProcess, ProcessLauncher


@dataclass(frozen=True, slots=True)
class ExitOutcome:
    state: JobState
    returncode: int
    message: str | None


def classify_exit(returncode: int, stop_requested: bool = False) -> ExitOutcome:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return ExitOutcome(JobState.KILLED, returncode, f"Terminated by signal {name}")
    if stop_requested:
        return ExitOutcome(JobState.KILLED, returncode, "Terminated on request")
    if returncode == 0:
        return ExitOutcome(JobState.STOPPED, returncode, None)
    return ExitOutcome(JobState.ERROR, returncode, f"Process exited with code {returncode}")


OutputCallback = Callable[[str], None]
ExitCallback = Callable[[ExitOutcome], None]


@dataclass(slots=True)
class Attachment:
    job_id: str
    process: ManagedProcess
    on_output: OutputCallback
    on_exit: ExitCallback
    stop_requested: bool = False
    escalation: asyncio.TimerHandle | None = None
    watcher: asyncio.Task | None = field(default=None, repr=False)


class ProcessSupervisor:
    def __init__(
        self,
        launcher: ProcessLauncher,
        logger: logging.Logger,
        kill_grace_seconds: float = 5.0,
    ) -> None:
        self.launcher = launcher
        self.logger = logger
        self.kill_grace_seconds = kill_grace_seconds
        self.attachments: dict[str, Attachment] = {}
        self._watchers: set[asyncio.Task] = set()

    def is_attached(self, job_id: str) -> bool:
        return job_id in self.attachments

    async def start(
        self,
        job_id: str,
        args: list[str],
        on_output: OutputCallback,
        on_exit: ExitCallback,
    ) -> int:
        if job_id in self.attachments:
            raise ProcessError(f"job {job_id} already has an attached process")
        process = await self.launcher.launch(args)
        if job_id in self.attachments:
            process.force_stop()
            raise ProcessError(f"job {job_id} already has an attached process")

        attachment = Attachment(job_id=job_id, process=process, on_output=on_output, on_exit=on_exit)
        self.attachments[job_id] = attachment
        watcher = asyncio.get_running_loop().create_task(self._watch(attachment))
        attachment.watcher = watcher
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        return process.pid

    async def _watch(self, attachment: Attachment) -> None:
        process = attachment.process
        stdout_task = asyncio.get_running_loop().create_task(self._drain_stdout(attachment))
        try:
            async for chunk in process.stderr_chunks():
                try:
                    attachment.on_output(chunk)
                except Exception:
                    self.logger.exception("output handler failed for job %s", attachment.job_id)
            returncode = await process.wait()
            await stdout_task
        finally:
            if not stdout_task.done():
                stdout_task.cancel()
            if attachment.escalation is not None:
                attachment.escalation.cancel()
            if self.attachments.get(attachment.job_id) is attachment:
                del self.attachments[attachment.job_id]

        outcome = classify_exit(returncode, attachment.stop_requested)
        log_with_fields(
            self.logger,
            logging.INFO,
            "process_exited",
            job_id=attachment.job_id,
            pid=process.pid,
            returncode=returncode,
            state=outcome.state.value,
        )
        attachment.on_exit(outcome)

    async def _drain_stdout(self, attachment: Attachment) -> None:
        async for chunk in attachment.process.stdout_chunks():
            log_with_fields(
                self.logger,
                logging.DEBUG,
                "process_stdout",
                job_id=attachment.job_id,
                output=chunk.strip(),
            )

    def stop(self, job_id: str) -> bool:
        attachment = self.attachments.pop(job_id, None)
        if attachment is None:
            return False
        attachment.stop_requested = True
        try:
            attachment.process.request_graceful_stop()
        except ProcessLookupError:
            return True
        except OSError as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "process_stop_failed",
                job_id=job_id,
                pid=attachment.process.pid,
                error=str(exc),
            )
        attachment.escalation = asyncio.get_running_loop().call_later(
            self.kill_grace_seconds, self._escalate, attachment
        )
        return True

    def _escalate(self, attachment: Attachment) -> None:
        if attachment.process.returncode is not None:
            return
        log_with_fields(
            self.logger,
            logging.WARNING,
            "process_force_killed",
            job_id=attachment.job_id,
            pid=attachment.process.pid,
            grace_seconds=self.kill_grace_seconds,
        )
        try:
            attachment.process.force_stop()
        except ProcessLookupError:
            pass

    def _require(self, job_id: str) -> ManagedProcess:
        attachment = self.attachments.get(job_id)
        if attachment is None:
            raise CapabilityError(f"job {job_id} has no attached process")
        return attachment.process

    def suspend(self, job_id: str) -> None:
        self._require(job_id).suspend()

    def resume(self, job_id: str) -> None:
        self._require(job_id).resume()

    async def wait_all(self, timeout: float) -> None:
        pending = set(self._watchers)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
