"""
Tests for CLI entry points.

These tests focus on:
- exit codes (0 on success, 1 on handled errors, argparse errors nonzero)
- the create / edit / regenerate flow against a temporary JSON database
  (to avoid touching real user data during tests)
"""

import json
import os
import tempfile
import unittest
from datetime import date
from pathlib import Path
from unittest import mock

from classcal.cli import main
from classcal.storage import InstanceFilter, JsonDatabase

# far enough ahead that every instance counts as future
PAYLOAD = {
    "title": "Yoga",
    "isRecurring": True,
    "recurrence": {
        "type": "daily",
        "startDate": "2099-01-05",
        "occurrences": 3,
        "dailyTimeSlots": [{"startTime": "09:00", "endTime": "10:00"}],
    },
}


def _run(argv: list[str]) -> int:
    with mock.patch("builtins.print"):
        try:
            main(argv)
        except SystemExit as e:
            return e.code
    return 0


class TestCLI(unittest.TestCase):
    def setUp(self) -> None:
        self._dir = tempfile.TemporaryDirectory()
        self.addCleanup(self._dir.cleanup)
        self.root = Path(self._dir.name)
        self.db_path = self.root / "classcal.json"
        env = mock.patch.dict(
            os.environ, {"CLASSCAL_DB_PATH": str(self.db_path), "CLASSCAL_LOG_LEVEL": "WARNING"}
        )
        env.start()
        self.addCleanup(env.stop)

    def _payload_file(self, payload: dict) -> str:
        p = self.root / "payload.json"
        p.write_text(json.dumps(payload), encoding="utf-8")
        return str(p)

    def _db(self) -> JsonDatabase:
        return JsonDatabase(self.db_path)

    def test_cli_requires_command(self) -> None:
        with mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit) as ctx:
                main([])
        self.assertNotEqual(ctx.exception.code, 0)

    def test_create_edit_regenerate(self) -> None:
        self.assertEqual(_run(["create", self._payload_file(PAYLOAD)]), 0)

        (record,) = self._db().classes.all()
        self.assertEqual(len(self._db().instances.find(InstanceFilter(class_id=record.id))), 3)

        code = _run(["edit-instance", record.id, "2099-01-06", "--start", "9:00", "--status", "cancelled"])
        self.assertEqual(code, 0)
        self.assertEqual(_run(["regenerate", record.id]), 0)

        found = self._db().instances.find(InstanceFilter(class_id=record.id))
        self.assertEqual([i.scheduled_date for i in found], [date(2099, 1, 5), date(2099, 1, 6), date(2099, 1, 7)])
        self.assertEqual(found[1].status, "cancelled")

    def test_preview_does_not_store(self) -> None:
        self.assertEqual(_run(["preview", self._payload_file(PAYLOAD)]), 0)
        self.assertFalse(self.db_path.exists())

    def test_invalid_payload_exits_1(self) -> None:
        self.assertEqual(_run(["create", self._payload_file({"title": "Yoga", "isRecurring": True})]), 1)
        self.assertEqual(_run(["create", str(self.root / "missing.json")]), 1)

    def test_unknown_class_exits_1(self) -> None:
        self.assertEqual(_run(["show", "nope"]), 1)
        self.assertEqual(_run(["delete", "nope"]), 1)

    def test_export(self) -> None:
        _run(["create", self._payload_file(PAYLOAD)])
        out = self.root / "out.ics"
        self.assertEqual(_run(["export", "2099-01-01", "2099-01-31", str(out)]), 0)
        self.assertEqual(out.read_text(encoding="utf-8").count("BEGIN:VEVENT"), 3)


if __name__ == "__main__":
    unittest.main()
