import unittest

from ffagent.utils import iso_from_timestamp, new_job_id, uptime_seconds


class UtilsTest(unittest.TestCase):
    def test_uptime_seconds(self) -> None:
        self.assertIsNone(uptime_seconds(None, None, 100.0))
        self.assertIsNone(uptime_seconds(None, 50.0, 100.0))
        self.assertEqual(uptime_seconds(10.0, None, 15.9), 5)
        self.assertEqual(uptime_seconds(10.0, 12.0, 100.0), 2)

    def test_new_job_id(self) -> None:
        first = new_job_id()
        self.assertEqual(len(first), 32)
        self.assertNotEqual(first, new_job_id())

    def test_iso_from_timestamp(self) -> None:
        self.assertIsNone(iso_from_timestamp(None))
        self.assertEqual(iso_from_timestamp(0), "1970-01-01T00:00:00+00:00")


if __name__ == "__main__":
    unittest.main()
