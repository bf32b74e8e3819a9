from __future__ import annotations

import os
import struct
import tempfile
import unittest
from unittest import mock

from typer.testing import CliRunner

import rv_cli
import rv_settings
from rv_data import TelemetryRecord
from sample_records import UTC_TZ, local_timezone, make_activity


def _png_size(path: str):
    with open(path, "rb") as fh:
        header = fh.read(24)
    return struct.unpack(">II", header[16:24])


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.runner = CliRunner()
        self.app = rv_cli._build_typer_app()
        self.fit_path = os.path.join(self._tmp.name, "run.fit")
        self.settings_path = os.path.join(self._tmp.name, "settings.json")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _invoke(self, args, records=None, error=None):
        if args[0] != "diagnose":
            args = list(args) + ["--settings", self.settings_path]
        loader = mock.patch.object(rv_cli, "load_fit_records")
        with loader as fake:
            if error is not None:
                fake.side_effect = error
            else:
                fake.return_value = make_activity() if records is None else records
            return self.runner.invoke(self.app, args)

    def test_summary(self) -> None:
        result = self._invoke(["summary", self.fit_path, "--units", "metric"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Lap 1-", result.output)
        self.assertIn("Lap 2-", result.output)

    def test_summary_to_file(self) -> None:
        out = os.path.join(self._tmp.name, "report.txt")
        result = self._invoke(["summary", self.fit_path, "--units", "us", "--output", out])
        self.assertEqual(result.exit_code, 0, result.output)
        with open(out, "r", encoding="utf-8") as fh:
            self.assertIn("miles", fh.read())

    def test_unreadable_file_exit_code(self) -> None:
        result = self._invoke(["summary", self.fit_path, "--units", "metric"], error=OSError("no such file"))
        self.assertEqual(result.exit_code, 2)

    def test_bad_timestamp_exit_code(self) -> None:
        records = [TelemetryRecord.from_values("record", {"timestamp": "yesterday", "distance": 1.0})]
        result = self._invoke(["scrub", self.fit_path, "--position", "0.5", "--units", "metric"], records=records)
        self.assertEqual(result.exit_code, 3)

    def test_bad_start_time_exit_code(self) -> None:
        records = make_activity() + [TelemetryRecord.from_values("session", {"start_time": "yesterday"})]
        result = self._invoke(["map", self.fit_path, "--png", os.path.join(self._tmp.name, "m.png")], records=records)
        self.assertEqual(result.exit_code, 3)
        result = self._invoke(["summary", self.fit_path, "--units", "metric"], records=records)
        self.assertEqual(result.exit_code, 3)

    def test_scrub(self) -> None:
        with local_timezone(UTC_TZ):
            result = self._invoke(["scrub", self.fit_path, "--position", "0.5", "--units", "metric"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("time: 2024-03-31 07:00:05+00:00", result.output)
        self.assertIn("Cadence: --", result.output)

    def test_graphs_and_map_write_pngs(self) -> None:
        graphs_png = os.path.join(self._tmp.name, "g.png")
        map_png = os.path.join(self._tmp.name, "m.png")
        result = self._invoke(["graphs", self.fit_path, "--units", "us", "--png", graphs_png, "-p", "0.3"])
        self.assertEqual(result.exit_code, 0, result.output)
        result = self._invoke(["map", self.fit_path, "--png", map_png, "-p", "0.3"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertTrue(os.path.exists(graphs_png))
        self.assertTrue(os.path.exists(map_png))

    def test_saved_settings_are_used(self) -> None:
        rv_settings.save_settings(rv_settings.ViewSettings(width=600, height=480, units_index=1), self.settings_path)
        result = self._invoke(["summary", self.fit_path])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("0.62 miles", result.output)

        graphs_png = os.path.join(self._tmp.name, "g.png")
        map_png = os.path.join(self._tmp.name, "m.png")
        self.assertEqual(self._invoke(["graphs", self.fit_path, "--png", graphs_png]).exit_code, 0)
        self.assertEqual(self._invoke(["map", self.fit_path, "--png", map_png]).exit_code, 0)
        self.assertEqual(_png_size(graphs_png), (600, 480))
        self.assertEqual(_png_size(map_png), (600, 480))

    def test_units_saved_and_shown(self) -> None:
        settings = os.path.join(self._tmp.name, "settings.json")
        result = self.runner.invoke(self.app, ["units", "us", "--settings", settings])
        self.assertEqual(result.exit_code, 0, result.output)
        result = self.runner.invoke(self.app, ["units", "--settings", settings])
        self.assertEqual(result.output.strip(), "us")

    def test_diagnose(self) -> None:
        result = self._invoke(["diagnose", self.fit_path])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("    - record: 11", result.output)


if __name__ == "__main__":
    unittest.main()
