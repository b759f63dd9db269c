from __future__ import annotations

import shlex

from .errors import DerivationError
from .models import CustomOptions, JobConfig, Profile, TransportMethod

CONTAINER_ARGS = ["-f", "flv"]
COPY_ARGS = ["-c", "copy", *CONTAINER_ARGS, "-flvflags", "no_duration_filesize"]
RECONNECT_ARGS = ["-reconnect", "1", "-reconnect_streamed", "1", "-reconnect_delay_max", "5"]
DEFAULT_AUDIO_BITRATE = "96k"

PRESETS: dict[Profile, list[str]] = {
    Profile.LOW: [
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-crf", "28",
        "-vf", "scale=-2:480,fps=25",
        "-b:v", "800k",
        "-maxrate", "800k",
        "-bufsize", "1600k",
        "-c:a", "aac",
        "-b:a", "96k",
    ],
    Profile.MEDIUM: [
        "-c:v", "libx264",
        "-preset", "faster",
        "-crf", "23",
        "-vf", "scale=-2:720,fps=30",
        "-b:v", "1500k",
        "-maxrate", "2000k",
        "-bufsize", "3000k",
        "-c:a", "aac",
        "-b:a", "128k",
    ],
    Profile.HIGH: [
        "-c:v", "libx264",
        "-preset", "fast",
        "-crf", "20",
        "-vf", "scale=-2:1080,fps=30",
        "-b:v", "3000k",
        "-maxrate", "4000k",
        "-bufsize", "5000k",
        "-c:a", "aac",
        "-b:a", "192k",
    ],
}


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def header_args(config: JobConfig) -> list[str]:
    lines = config.headers.lines()
    if not lines:
        return []
    return ["-headers", "\r\n".join(lines) + "\r\n"]


def input_args(config: JobConfig) -> list[str]:
    args = header_args(config)
    if config.source.lower().startswith(("http://", "https://")):
        args.extend(RECONNECT_ARGS)
    args.extend(["-i", config.source])
    return args


def custom_args(options: CustomOptions) -> list[str]:
    args = ["-c:v", "libx264", "-preset", "veryfast"]
    if options.crf is not None:
        args.extend(["-crf", str(options.crf)])
    if options.width is not None or options.fps is not None:
        scale = f"scale={options.width}:-2" if options.width else "scale=-2:-2"
        if options.fps:
            scale += f",fps={_format_number(options.fps)}"
        args.extend(["-vf", scale])
    if options.video_bitrate:
        args.extend(["-b:v", options.video_bitrate])
    if options.maxrate:
        args.extend(["-maxrate", options.maxrate])
    if options.bufsize:
        args.extend(["-bufsize", options.bufsize])
    args.extend(["-c:a", "aac", "-b:a", options.audio_bitrate or DEFAULT_AUDIO_BITRATE])
    return args


def processing_args(config: JobConfig) -> list[str]:
    try:
        method = TransportMethod(config.method)
    except ValueError:
        raise DerivationError(f"Unknown method: {config.method}") from None

    if method is TransportMethod.COPY:
        return list(COPY_ARGS)

    try:
        profile = Profile(config.profile)
    except ValueError:
        raise DerivationError(f"Unknown profile: {config.profile}") from None

    if profile is Profile.CUSTOM:
        return [*custom_args(config.custom), *CONTAINER_ARGS]
    return [*PRESETS[profile], *CONTAINER_ARGS]


def build_args(config: JobConfig) -> list[str]:
    return ["-y", *input_args(config), *processing_args(config), config.destination]


def format_command(executable: str, args: list[str]) -> str:
    return shlex.join([executable, *args])
