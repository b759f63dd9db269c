from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import TextIO

from .app_logging import log_with_fields, setup_logger
from .arguments import build_args, format_command
from .config import AppConfig, load_config
from .errors import ValidationError
from .models import JobConfig, JobSnapshot, JobState
from .notifier import Subscriber, UpdateNotifier
from .process import ProcessLauncher, cleanup_reports
from .registry import JobRegistry
from .submission import load_jobs_file
from .supervisor import ProcessSupervisor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ffagent", description="Supervise ffmpeg restream/transcode jobs")
    parser.add_argument("--config", help="Path to ffagent YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run jobs and stream updates as JSON lines")
    run_parser.add_argument("jobs_file", help="YAML file with a list of jobs")

    command_parser = subparsers.add_parser("command", help="Print the ffmpeg command for each job")
    command_parser.add_argument("jobs_file", help="YAML file with a list of jobs")
    return parser


class JsonLinesSubscriber(Subscriber):
    def __init__(self, stream: TextIO) -> None:
        self.stream = stream
        self.states: dict[str, JobState] = {}
        self.watched: set[str] = set()
        self.finished = asyncio.Event()

    def _write(self, payload: dict) -> None:
        self.stream.write(json.dumps(payload, sort_keys=True) + "\n")
        self.stream.flush()

    def jobs_snapshot(self, snapshots: list[JobSnapshot]) -> None:
        for snapshot in snapshots:
            self.states[snapshot.job_id] = snapshot.state
        self._write({"event": "jobs_snapshot", "jobs": [snapshot.to_dict() for snapshot in snapshots]})

    def job_update(self, snapshot: JobSnapshot) -> None:
        self.states[snapshot.job_id] = snapshot.state
        self._write({"event": "job_update", "job": snapshot.to_dict()})
        self._check_finished()

    def watch(self, job_ids: list[str]) -> None:
        self.watched.update(job_ids)
        self._check_finished()

    def _check_finished(self) -> None:
        if self.watched and all(self.states.get(job_id, JobState.STARTING).is_terminal for job_id in self.watched):
            self.finished.set()


def build_registry(config: AppConfig, logger: logging.Logger) -> JobRegistry:
    launcher = ProcessLauncher.from_config(config.ffmpeg, logger=logger)
    supervisor = ProcessSupervisor(launcher, logger, kill_grace_seconds=config.timing.kill_grace_seconds)
    notifier = UpdateNotifier(logger, window_seconds=config.timing.progress_window_seconds)
    return JobRegistry(supervisor, notifier, logger, timing=config.timing)


async def run_jobs(
    config: AppConfig,
    jobs: list[JobConfig],
    logger: logging.Logger,
    stream: TextIO | None = None,
    registry: JobRegistry | None = None,
) -> int:
    registry = registry or build_registry(config, logger)
    subscriber = JsonLinesSubscriber(stream or sys.stdout)
    registry.attach(subscriber)

    interrupted = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, interrupted.set)
        except (NotImplementedError, RuntimeError):
            pass

    subscriber.watch([registry.create_job(job).job_id for job in jobs])
    finished_task = asyncio.create_task(subscriber.finished.wait())
    interrupted_task = asyncio.create_task(interrupted.wait())
    try:
        await asyncio.wait({finished_task, interrupted_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        finished_task.cancel()
        interrupted_task.cancel()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError):
                pass

    final_states = {job_id: subscriber.states.get(job_id) for job_id in subscriber.watched}
    if interrupted.is_set():
        log_with_fields(logger, logging.INFO, "shutdown", reason="signal")
    await registry.shutdown()
    registry.detach(subscriber)

    if interrupted.is_set():
        return 130
    return 1 if JobState.ERROR in final_states.values() else 0


def cmd_run(config: AppConfig, jobs_file: str) -> int:
    logger = setup_logger(config.paths.log)
    try:
        jobs = load_jobs_file(jobs_file, config.inputs.allowed_patterns)
    except (OSError, ValidationError) as exc:
        print(f"invalid jobs file: {exc}", file=sys.stderr)
        return 2

    if not config.ffmpeg.report:
        removed = cleanup_reports(config.ffmpeg.report_dir)
        if removed:
            log_with_fields(logger, logging.INFO, "reports_cleaned", count=len(removed))
    log_with_fields(
        logger,
        logging.INFO,
        "agent_starting",
        ffmpeg=config.ffmpeg.path,
        reports=config.ffmpeg.report,
        jobs=len(jobs),
    )
    try:
        return asyncio.run(run_jobs(config, jobs, logger))
    except KeyboardInterrupt:
        log_with_fields(logger, logging.INFO, "shutdown", reason="keyboard_interrupt")
        return 130


def cmd_command(config: AppConfig, jobs_file: str, stream: TextIO | None = None) -> int:
    try:
        jobs = load_jobs_file(jobs_file, config.inputs.allowed_patterns)
    except (OSError, ValidationError) as exc:
        print(f"invalid jobs file: {exc}", file=sys.stderr)
        return 2

    status = 0
    for idx, job in enumerate(jobs):
        try:
            args = build_args(job)
        except ValidationError as exc:
            print(f"jobs[{idx}]: {exc}", file=sys.stderr)
            status = 2
            continue
        print(format_command(config.ffmpeg.path, args), file=stream or sys.stdout)
    return status


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        print(f"invalid config: {exc}", file=sys.stderr)
        return 2

    if args.command == "run":
        return cmd_run(config, args.jobs_file)
    if args.command == "command":
        return cmd_command(config, args.jobs_file)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
