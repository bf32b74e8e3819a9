from __future__ import annotations

import json
import os
import tempfile
import unittest
from unittest import mock

import rv_settings
from rv_settings import ViewSettings


class TestSettings(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "sub", "settings.json")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_file_gives_defaults(self) -> None:
        self.assertEqual(rv_settings.load_settings(self.path), ViewSettings())

    def test_round_trip(self) -> None:
        saved = ViewSettings(width=1024, height=700, units_index=1)
        written = rv_settings.save_settings(saved, self.path)
        self.assertEqual(written, self.path)
        self.assertFalse(os.path.exists(self.path + ".tmp"))
        self.assertEqual(rv_settings.load_settings(self.path), saved)

    def test_partial_file_keeps_other_defaults(self) -> None:
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump({"units_index": 2}, fh)
        loaded = rv_settings.load_settings(self.path)
        self.assertEqual(loaded.units_index, 2)
        self.assertEqual(loaded.width, 800)

    def test_bad_files_fall_back_to_defaults(self) -> None:
        os.makedirs(os.path.dirname(self.path))
        for content in ("{not json", "[1, 2]", '{"width": "wide"}', '{"units_index": true}'):
            with open(self.path, "w", encoding="utf-8") as fh:
                fh.write(content)
            with self.assertLogs(level="WARNING"):
                self.assertEqual(rv_settings.load_settings(self.path), ViewSettings())

    def test_default_path_honours_xdg(self) -> None:
        with mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": self._tmp.name}):
            self.assertEqual(
                rv_settings.default_settings_path(),
                os.path.join(self._tmp.name, rv_settings.SETTINGS_FILE),
            )


if __name__ == "__main__":
    unittest.main()
