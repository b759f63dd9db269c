from __future__ import annotations

import asyncio
import io
import json
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from fakes import FakeLauncher, quiet_logger

from ffagent.cli import JsonLinesSubscriber, build_parser, cmd_command, run_jobs
from ffagent.config import AppConfig, TimingConfig
from ffagent.models import JobConfig
from ffagent.notifier import UpdateNotifier
from ffagent.registry import JobRegistry
from ffagent.supervisor import ProcessSupervisor

TIMING = TimingConfig(
    kill_grace_seconds=0.05,
    restart_delay_seconds=0.05,
    removal_delay_seconds=0.05,
    progress_window_seconds=0.05,
)


class CliTest(unittest.TestCase):
    def test_run_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--config", "ffagent.yaml", "run", "jobs.yaml"])
        self.assertEqual(args.command, "run")
        self.assertEqual(args.jobs_file, "jobs.yaml")

    def test_command_prints_ffmpeg_lines(self) -> None:
        with TemporaryDirectory() as temp_dir:
            jobs_path = Path(temp_dir) / "jobs.yaml"
            jobs_path.write_text(
                "- source: in.mp4\n  destination: out.flv\n  method: copy\n"
                "- source: in.mp4\n  destination: out.flv\n  method: encode\n  profile: ultra\n",
                encoding="utf-8",
            )
            output = io.StringIO()
            status = cmd_command(AppConfig(), str(jobs_path), stream=output)
            self.assertEqual(status, 2)
            self.assertEqual(
                output.getvalue().strip(),
                "ffmpeg -y -i in.mp4 -c copy -f flv -flvflags no_duration_filesize out.flv",
            )


class RunJobsTest(unittest.IsolatedAsyncioTestCase):
    async def test_streams_updates_until_jobs_finish(self) -> None:
        logger = quiet_logger()
        launcher = FakeLauncher()
        registry = JobRegistry(
            ProcessSupervisor(launcher, logger, kill_grace_seconds=TIMING.kill_grace_seconds),
            UpdateNotifier(logger, window_seconds=TIMING.progress_window_seconds),
            logger,
            timing=TIMING,
        )
        jobs = [
            JobConfig(source="in.mp4", destination="copy.flv", method="copy"),
            JobConfig(source="in.mp4", destination="bad.flv", method="encode", profile="ultra"),
        ]

        async def finish_copy_job() -> None:
            while not launcher.processes:
                await asyncio.sleep(0.01)
            launcher.last.emit("frame=5 size=1kB")
            launcher.last.exit(0)

        finisher = asyncio.create_task(finish_copy_job())
        output = io.StringIO()
        status = await asyncio.wait_for(
            run_jobs(AppConfig(timing=TIMING), jobs, logger, stream=output, registry=registry),
            timeout=5,
        )
        await finisher

        self.assertEqual(status, 1)
        events = [json.loads(line) for line in output.getvalue().splitlines()]
        self.assertEqual(events[0], {"event": "jobs_snapshot", "jobs": []})
        final_states = {}
        for event in events[1:]:
            self.assertEqual(event["event"], "job_update")
            final_states[event["job"]["destination"]] = event["job"]["state"]
        self.assertEqual(final_states, {"copy.flv": "stopped", "bad.flv": "error"})
        self.assertEqual(registry.list_jobs(), [])


class JsonLinesSubscriberTest(unittest.IsolatedAsyncioTestCase):
    async def test_not_finished_without_watched_jobs(self) -> None:
        subscriber = JsonLinesSubscriber(io.StringIO())
        subscriber.watch([])
        self.assertFalse(subscriber.finished.is_set())


if __name__ == "__main__":
    unittest.main()
