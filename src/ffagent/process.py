from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from collections.abc import AsyncIterator, Mapping
from pathlib import Path

from .app_logging import log_with_fields
from .config import FfmpegConfig
from .errors import CapabilityError, ProcessError

SUPPORTS_SUSPEND = hasattr(signal, "SIGSTOP") and hasattr(signal, "SIGCONT")
READ_CHUNK_SIZE = 4096


def build_process_env(ffmpeg: FfmpegConfig, base: Mapping[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env.pop("FFREPORT", None)
    if ffmpeg.report:
        report_file = ffmpeg.report_dir / "ffmpeg-%t.log"
        env["FFREPORT"] = f"file={report_file}:level={ffmpeg.report_level}"
    return env


def cleanup_reports(directory: Path) -> list[Path]:
    removed: list[Path] = []
    if not directory.is_dir():
        return removed
    for path in sorted(directory.glob("ffmpeg-*.log")):
        path.unlink(missing_ok=True)
        removed.append(path)
    return removed


class ManagedProcess:
    """Control surface over one spawned OS process."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self.suspended = False

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def request_graceful_stop(self) -> None:
        self._process.terminate()
        if self.suspended and SUPPORTS_SUSPEND:
            # a stopped process only acts on SIGTERM once continued
            os.kill(self.pid, signal.SIGCONT)
            self.suspended = False

    def force_stop(self) -> None:
        self._process.kill()

    def suspend(self) -> None:
        if not SUPPORTS_SUSPEND:
            raise CapabilityError("suspend is not supported on this platform")
        os.kill(self.pid, signal.SIGSTOP)
        self.suspended = True

    def resume(self) -> None:
        if not SUPPORTS_SUSPEND:
            raise CapabilityError("resume is not supported on this platform")
        os.kill(self.pid, signal.SIGCONT)
        self.suspended = False

    async def wait(self) -> int:
        return await self._process.wait()

    async def stderr_chunks(self) -> AsyncIterator[str]:
        async for chunk in _read_chunks(self._process.stderr):
            yield chunk

    async def stdout_chunks(self) -> AsyncIterator[str]:
        async for chunk in _read_chunks(self._process.stdout):
            yield chunk


async def _read_chunks(stream: asyncio.StreamReader | None) -> AsyncIterator[str]:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(READ_CHUNK_SIZE)
        if not data:
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail
            return
        text = decoder.decode(data)
        if text:
            yield text


class ProcessLauncher:
    def __init__(
        self,
        executable: str,
        env: Mapping[str, str] | None = None,
        capture_stdout: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.executable = executable
        self.env = dict(env) if env is not None else None
        self.capture_stdout = capture_stdout
        self.logger = logger or logging.getLogger("ffagent")

    @classmethod
    def from_config(cls, ffmpeg: FfmpegConfig, logger: logging.Logger | None = None) -> ProcessLauncher:
        return cls(
            ffmpeg.path,
            env=build_process_env(ffmpeg),
            capture_stdout=ffmpeg.log_stdout,
            logger=logger,
        )

    async def launch(self, args: list[str]) -> ManagedProcess:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if self.capture_stdout else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as exc:
            raise ProcessError(f"{self.executable}: {exc.strerror or exc}") from exc
        except (ValueError, TypeError) as exc:
            # embedded NUL bytes or non-str arguments
            raise ProcessError(f"{self.executable}: {exc}") from exc
        log_with_fields(
            self.logger,
            logging.DEBUG,
            "process_launched",
            executable=self.executable,
            pid=process.pid,
        )
        return ManagedProcess(process)
