from __future__ import annotations

import datetime as dt
import re
import unittest

import rv_summary
from rv_data import Field, TelemetryRecord, TimestampParseError
from sample_records import CHICAGO_TZ, local_timezone, make_activity


def _label(name: str) -> str:
    return f"{name:<23}: "


class TestFieldFormatting(unittest.TestCase):
    def test_distance_uses_unit_suffix(self) -> None:
        fld = Field("total_distance", 5000.0, "m")
        self.assertEqual(rv_summary.format_field(fld, "metric"), _label("total_distance") + "5.00 kilometers")
        self.assertEqual(rv_summary.format_field(fld, "us"), _label("total_distance") + "3.11 miles")
        self.assertEqual(rv_summary.format_field(fld, "none"), _label("total_distance") + "5000.00")

    def test_elapsed_time_truncates(self) -> None:
        fld = Field("total_timer_time", 3725.9, "s")
        self.assertEqual(rv_summary.format_field(fld, "metric"), _label("total_timer_time") + "1h:02m:05s")

    def test_position_in_degrees(self) -> None:
        fld = Field("start_position_lat", 2 ** 30, "semicircles")
        self.assertEqual(rv_summary.format_field(fld, "us"), _label("start_position_lat") + "90.000°")

    def test_temperature_and_ascent(self) -> None:
        self.assertEqual(
            rv_summary.format_field(Field("avg_temperature", 10, "C"), "us"),
            _label("avg_temperature") + "50.00 °F",
        )
        self.assertEqual(
            rv_summary.format_field(Field("total_ascent", 100, "m"), "metric"),
            _label("total_ascent") + "100.00 meters",
        )

    def test_speed_rendered_as_pace(self) -> None:
        line = rv_summary.format_field(Field("enhanced_avg_speed", 3.0, "m/s"), "metric")
        self.assertEqual(line, _label("enhanced_avg_speed") + "5.56 min/km")

    def test_passthrough_keeps_declared_units(self) -> None:
        self.assertEqual(
            rv_summary.format_field(Field("avg_heart_rate", 150, "bpm"), "metric"),
            _label("avg_heart_rate") + "150 bpm",
        )
        self.assertEqual(rv_summary.format_field(Field("sport", "running", ""), "metric"), _label("sport") + "running")

    def test_timestamps_print_in_local_time(self) -> None:
        fld = Field("start_time", dt.datetime(2024, 11, 29, 1, 0), "")
        with local_timezone(CHICAGO_TZ):
            line = rv_summary.format_field(fld, "metric")
        self.assertEqual(line, _label("start_time") + "2024-11-28 19:00:00-06:00")
        self.assertIsNone(rv_summary.format_field(Field("timestamp", None, ""), "metric"))
        with self.assertRaises(TimestampParseError):
            rv_summary.format_field(Field("start_time", "yesterday", ""), "metric")

    def test_unknown_or_unusable_fields_are_omitted(self) -> None:
        self.assertIsNone(rv_summary.format_field(Field("some_unknown_field", 1, ""), "metric"))
        self.assertIsNone(rv_summary.format_field(Field("total_ascent", None, "m"), "metric"))
        self.assertIsNone(rv_summary.format_field(Field("total_distance", "far", "m"), "metric"))


class TestZones(unittest.TestCase):
    def test_zone_bounds(self) -> None:
        limits = [120.0, 140.0, 160.0]
        self.assertEqual(rv_summary.zone_bounds(0, limits), (0.0, 120.0))
        self.assertEqual(rv_summary.zone_bounds(2, limits), (140.0, 160.0))
        self.assertEqual(rv_summary.zone_bounds(3, limits), (160.0, 220.0))
        self.assertEqual(rv_summary.zone_bounds(0, []), (0.0, 220.0))

    def test_zone_lines(self) -> None:
        lines = rv_summary.zone_lines([60.0, 30.0], [120.0])
        self.assertEqual(lines, ["Zone 0 (  0-120 bpm): 0h:01m:00s", "Zone 1 (120-220 bpm): 0h:00m:30s"])


class TestSummaryReport(unittest.TestCase):
    def test_one_header_per_lap_record(self) -> None:
        laps = [
            TelemetryRecord.from_values("lap", {}),
            TelemetryRecord.from_values("lap", {"total_distance": None}),
            TelemetryRecord.from_values("lap", {"weird": "x"}),
        ]
        report = rv_summary.build_summary(laps, "metric")
        headers = re.findall(r"Lap (\d+)-", report)
        self.assertEqual(headers, ["1", "2", "3"])
        self.assertNotIn("Session", report)
        self.assertNotIn("Zone", report)

    def test_full_report_order(self) -> None:
        report = rv_summary.build_summary(make_activity(laps=2), "metric")
        lap1 = report.index("Lap 1-")
        lap2 = report.index("Lap 2-")
        session = report.index(rv_summary.SESSION_BANNER)
        zones = report.index(rv_summary.ZONE_BANNER)
        self.assertLess(lap1, lap2)
        self.assertLess(lap2, session)
        self.assertLess(session, zones)
        self.assertIn(_label("total_distance") + "1.00 kilometers", report)
        self.assertIn(_label("total_elapsed_time") + "0h:02m:05s", report)
        self.assertIn("Zone 4 (180-220 bpm): 0h:00m:30s", report)
        self.assertNotIn("some_unknown_field", report)
        # per-sample record messages never reach the report
        self.assertFalse(any(line.startswith("heart_rate") for line in report.splitlines()))

    def test_lap_count_ignores_field_content(self) -> None:
        report = rv_summary.build_summary(make_activity(laps=3), "us")
        self.assertEqual(len(re.findall(r"Lap \d+-", report)), 3)


if __name__ == "__main__":
    unittest.main()
