import unittest
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from xmppterm.modules.date_and_time import parse_datetime
from xmppterm.modules.date_and_time import parse_user_date
from xmppterm.modules.date_and_time import to_xs_datetime


class TestDateTime(unittest.TestCase):

    def test_convert_to_utc(self):

        strings = {
            # Valid UTC strings and fractions
            "2017-11-05T01:41:20Z": 1509846080.0,
            "2017-11-05T01:41:20.123Z": 1509846080.123,
            "2017-11-05T01:41:20.123123123+00:00": 1509846080.123123,
            "2017-11-05T01:41:20.123123123123123-00:00": 1509846080.123123,
            # Invalid strings
            "2017-11-05T01:41:20Z+05:00": None,
            "2017-11-05T01:41:20+0000": None,
            "2017-11-05T01:41:20-0000": None,
            "2017-11-05 01:41:20Z": None,
            # Valid strings with offset
            "2017-11-05T01:41:20-05:00": 1509864080.0,
            "2017-11-05T01:41:20+05:00": 1509828080.0,
            "2017-11-05T01:41:20-00:00": 1509846080.0,
            "2017-11-05T01:41:20+00:00": 1509846080.0,
        }

        strings2 = {
            # Valid strings with offset
            "2017-11-05T07:41:20-05:00": datetime(
                2017, 11, 5, 12, 41, 20, 0, timezone.utc
            ),
            "2017-11-05T07:41:20+05:00": datetime(
                2017, 11, 5, 2, 41, 20, 0, timezone.utc
            ),
            "2017-11-05T01:41:20Z": datetime(2017, 11, 5, 1, 41, 20, 0, timezone.utc),
            "0002-11-05T01:41:20Z": datetime(2, 11, 5, 1, 41, 20, 0, timezone.utc),
            "9998-11-05T01:41:20Z": datetime(9998, 11, 5, 1, 41, 20, 0, timezone.utc),
            "0001-11-05T01:41:20Z": None,
            "9999-11-05T01:41:20Z": None,
        }

        for time_string, expected_value in strings.items():
            result = parse_datetime(time_string, convert="utc", epoch=True)
            self.assertEqual(result, expected_value, msg=time_string)

        for time_string, expected_value in strings2.items():
            result = parse_datetime(time_string, convert="utc")
            self.assertEqual(result, expected_value, msg=time_string)

        self.assertIsNone(parse_datetime(None))

    def test_convert_to_local(self):
        expected = datetime(2017, 11, 5, 1, 41, 20, 0, timezone.utc)
        result = parse_datetime("2017-11-05T01:41:20Z", convert="local")
        self.assertEqual(result, expected.astimezone())

        with self.assertRaises(ValueError):
            parse_datetime("2017-11-05T01:41:20Z", convert="local", epoch=True)

        with self.assertRaises(TypeError):
            parse_datetime("2017-11-05T01:41:20Z", convert="mars")

    def test_no_convert(self):

        strings = {
            "2017-11-05T01:41:20Z": timedelta(0),
            "2017-11-05T01:41:20.123123123+00:00": timedelta(0),
            "2017-11-05T01:41:20-05:00": timedelta(hours=-5),
            "2017-11-05T01:41:20+05:00": timedelta(hours=5),
        }

        for time_string, expected_value in strings.items():
            result = parse_datetime(time_string, convert=None)
            assert result is not None
            self.assertEqual(result.utcoffset(), expected_value)

    def test_check_utc(self):

        strings = {
            "2017-11-05T01:41:20Z": 1509846080.0,
            "2017-11-05T01:41:20.123Z": 1509846080.123,
            "2017-11-05T01:41:20-00:00": 1509846080.0,
            "2017-11-05T01:41:20-05:00": None,
            "2017-11-05T01:41:20+05:00": None,
        }

        for time_string, expected_value in strings.items():
            result = parse_datetime(time_string, check_utc=True, epoch=True)
            self.assertEqual(result, expected_value)

    def test_parse_user_date(self):
        self.assertEqual(parse_user_date("2017-11-05T01:41:20Z"), 1509846080.0)
        self.assertEqual(parse_user_date("2017-11-05"), 1509840000.0)
        self.assertIsNone(parse_user_date("2017-13-05"))
        self.assertIsNone(parse_user_date("yesterday"))
        self.assertIsNone(parse_user_date("05.11.2017"))

    def test_to_xs_datetime(self):
        self.assertEqual(to_xs_datetime(1509846080.0), "2017-11-05T01:41:20Z")
        # Fractions are dropped
        self.assertEqual(to_xs_datetime(1509846080.9), "2017-11-05T01:41:20Z")
        self.assertEqual(
            parse_datetime(to_xs_datetime(1509840000.0), epoch=True), 1509840000.0
        )


if __name__ == "__main__":
    unittest.main()
