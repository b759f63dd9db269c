from pathlib import Path
from tempfile import TemporaryDirectory
import re
import unittest

from ffagent.errors import ValidationError
from ffagent.submission import load_jobs_file, parse_job_config


class ParseJobConfigTest(unittest.TestCase):
    def test_full_payload(self) -> None:
        config = parse_job_config(
            {
                "source": "https://cdn.example.com/live.m3u8",
                "destination": "rtmp://out/live",
                "method": "encode",
                "profile": "Custom",
                "headers": {"user_agent": "agent/1.0", "referer": ""},
                "custom": {"crf": "22", "fps": 29.97, "width": 1280, "audio_bitrate": "128k"},
            }
        )
        self.assertEqual(config.method, "encode")
        self.assertEqual(config.profile, "custom")
        self.assertEqual(config.headers.user_agent, "agent/1.0")
        self.assertIsNone(config.headers.referer)
        self.assertEqual(config.custom.crf, 22)
        self.assertEqual(config.custom.fps, 29.97)
        self.assertEqual(config.custom.width, 1280)
        self.assertIsNone(config.custom.video_bitrate)

    def test_missing_fields(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            parse_job_config({"source": "rtmp://in", "method": "copy"})
        self.assertIn("destination", str(ctx.exception))

    def test_unknown_method(self) -> None:
        with self.assertRaises(ValidationError):
            parse_job_config({"source": "a", "destination": "b", "method": "remux"})

    def test_unknown_profile_is_left_for_derivation(self) -> None:
        config = parse_job_config({"source": "a", "destination": "b", "method": "encode", "profile": "ultra"})
        self.assertEqual(config.profile, "ultra")

    def test_allow_list(self) -> None:
        patterns = [re.compile(r"^rtmp://")]
        parse_job_config({"source": "rtmp://in", "destination": "b", "method": "copy"}, patterns)
        with self.assertRaises(ValidationError):
            parse_job_config({"source": "file:///etc/passwd", "destination": "b", "method": "copy"}, patterns)

    def test_bad_custom_values(self) -> None:
        for custom in ({"crf": "high"}, {"width": 12.5}, {"fps": True}):
            with self.subTest(custom=custom):
                with self.assertRaises(ValidationError):
                    parse_job_config({"source": "a", "destination": "b", "method": "encode", "custom": custom})

    def test_headers_must_be_mapping(self) -> None:
        with self.assertRaises(ValidationError):
            parse_job_config({"source": "a", "destination": "b", "method": "copy", "headers": ["x"]})


class LoadJobsFileTest(unittest.TestCase):
    def test_load_jobs_file(self) -> None:
        with TemporaryDirectory() as temp_dir:
            jobs_path = Path(temp_dir) / "jobs.yaml"
            jobs_path.write_text(
                """
jobs:
  - source: rtmp://in/a
    destination: rtmp://out/a
    method: copy
  - source: rtmp://in/b
    destination: rtmp://out/b
    method: encode
    profile: low
""".strip(),
                encoding="utf-8",
            )
            jobs = load_jobs_file(jobs_path)
            self.assertEqual([job.destination for job in jobs], ["rtmp://out/a", "rtmp://out/b"])
            self.assertEqual(jobs[1].profile, "low")

    def test_error_names_the_job(self) -> None:
        with TemporaryDirectory() as temp_dir:
            jobs_path = Path(temp_dir) / "jobs.yaml"
            jobs_path.write_text("- source: a\n  destination: b\n  method: copy\n- source: c\n", encoding="utf-8")
            with self.assertRaises(ValidationError) as ctx:
                load_jobs_file(jobs_path)
            self.assertTrue(str(ctx.exception).startswith("jobs[1]:"))


if __name__ == "__main__":
    unittest.main()
