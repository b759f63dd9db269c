import unittest

from ffagent.arguments import build_args, format_command
from ffagent.errors import DerivationError, ValidationError
from ffagent.models import CustomOptions, JobConfig, RequestHeaders

ENCODING_FLAGS = {"-crf", "-vf", "-b:v", "-maxrate", "-bufsize", "-c:v", "-c:a", "-b:a"}


def flag_value(args: list[str], flag: str) -> str:
    return args[args.index(flag) + 1]


class CopyArgsTest(unittest.TestCase):
    def test_copy_has_no_encoding_flags(self) -> None:
        config = JobConfig(source="rtmp://in/live", destination="rtmp://out/live", method="copy", profile="high")
        args = build_args(config)
        self.assertEqual(args[0], "-y")
        self.assertEqual(args[-1], "rtmp://out/live")
        self.assertEqual(flag_value(args, "-i"), "rtmp://in/live")
        self.assertEqual(flag_value(args, "-c"), "copy")
        self.assertEqual(flag_value(args, "-f"), "flv")
        self.assertEqual(flag_value(args, "-flvflags"), "no_duration_filesize")
        self.assertFalse(ENCODING_FLAGS & set(args))

    def test_headers_precede_input(self) -> None:
        config = JobConfig(
            source="https://cdn.example.com/live.m3u8",
            destination="rtmp://out/live",
            method="copy",
            headers=RequestHeaders(user_agent="agent/1.0", cookie="a=b"),
        )
        args = build_args(config)
        self.assertLess(args.index("-headers"), args.index("-i"))
        self.assertEqual(flag_value(args, "-headers"), "User-Agent: agent/1.0\r\nCookie: a=b\r\n")

    def test_reconnect_only_for_http_sources(self) -> None:
        http_args = build_args(JobConfig(source="http://host/stream", destination="out.flv", method="copy"))
        self.assertLess(http_args.index("-reconnect"), http_args.index("-i"))
        file_args = build_args(JobConfig(source="/media/in.mp4", destination="out.flv", method="copy"))
        self.assertNotIn("-reconnect", file_args)
        self.assertNotIn("-headers", file_args)


class EncodeArgsTest(unittest.TestCase):
    def test_presets_use_fixed_tables(self) -> None:
        expected = {
            "low": ("28", "scale=-2:480,fps=25", "800k", "96k"),
            "medium": ("23", "scale=-2:720,fps=30", "1500k", "128k"),
            "high": ("20", "scale=-2:1080,fps=30", "3000k", "192k"),
        }
        for profile, (crf, scale, video_bitrate, audio_bitrate) in expected.items():
            with self.subTest(profile=profile):
                args = build_args(JobConfig(source="in.mp4", destination="out.flv", method="encode", profile=profile))
                self.assertEqual(flag_value(args, "-crf"), crf)
                self.assertEqual(flag_value(args, "-vf"), scale)
                self.assertEqual(flag_value(args, "-b:v"), video_bitrate)
                self.assertEqual(flag_value(args, "-b:a"), audio_bitrate)
                self.assertEqual(args[-1], "out.flv")

    def test_custom_without_options_only_sets_audio_fallback(self) -> None:
        args = build_args(JobConfig(source="in.mp4", destination="out.flv", method="encode", profile="custom"))
        for flag in ("-crf", "-vf", "-b:v", "-maxrate", "-bufsize"):
            self.assertNotIn(flag, args)
        self.assertEqual(flag_value(args, "-b:a"), "96k")
        self.assertEqual(flag_value(args, "-c:v"), "libx264")

    def test_custom_options(self) -> None:
        config = JobConfig(
            source="in.mp4",
            destination="out.flv",
            method="encode",
            profile="custom",
            custom=CustomOptions(crf=21, fps=24.0, width=1280, video_bitrate="2M", maxrate="2.5M", audio_bitrate="160k"),
        )
        args = build_args(config)
        self.assertEqual(flag_value(args, "-crf"), "21")
        self.assertEqual(flag_value(args, "-vf"), "scale=1280:-2,fps=24")
        self.assertEqual(flag_value(args, "-b:v"), "2M")
        self.assertEqual(flag_value(args, "-maxrate"), "2.5M")
        self.assertNotIn("-bufsize", args)
        self.assertEqual(flag_value(args, "-b:a"), "160k")

    def test_custom_fps_without_width(self) -> None:
        config = JobConfig(
            source="in.mp4", destination="out.flv", method="encode", profile="custom", custom=CustomOptions(fps=15)
        )
        self.assertEqual(flag_value(build_args(config), "-vf"), "scale=-2:-2,fps=15")

    def test_derivation_is_deterministic(self) -> None:
        config = JobConfig(
            source="https://a/b", destination="out", method="encode", profile="medium",
            headers=RequestHeaders(referer="https://a/"),
        )
        self.assertEqual(build_args(config), build_args(config))

    def test_unknown_profile_is_rejected(self) -> None:
        for profile in ("ultra", None):
            with self.subTest(profile=profile):
                with self.assertRaises(DerivationError) as ctx:
                    build_args(JobConfig(source="in", destination="out", method="encode", profile=profile))
                self.assertIsInstance(ctx.exception, ValidationError)
                self.assertIn("Unknown profile", str(ctx.exception))

    def test_unknown_method_is_rejected(self) -> None:
        with self.assertRaises(DerivationError):
            build_args(JobConfig(source="in", destination="out", method="remux"))


class FormatCommandTest(unittest.TestCase):
    def test_quotes_arguments(self) -> None:
        line = format_command("ffmpeg", ["-i", "my file.mp4", "out.flv"])
        self.assertEqual(line, "ffmpeg -i 'my file.mp4' out.flv")


if __name__ == "__main__":
    unittest.main()
