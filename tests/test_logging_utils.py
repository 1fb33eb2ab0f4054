import json
import logging
import unittest

from attendance_engine.logging_utils import JsonFormatter


class JsonFormatterTests(unittest.TestCase):
    def _record(self, **extra) -> logging.LogRecord:  # type: ignore[no-untyped-def]
        record = logging.LogRecord(
            "attendance_engine.monthly",
            logging.WARNING,
            __file__,
            10,
            "monthly_employee_failed",
            None,
            None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_extra_fields_are_serialized(self) -> None:
        payload = json.loads(JsonFormatter().format(self._record(user_id="u1", month=10, code="EVALUATION_FAILED")))

        self.assertEqual(payload["level"], "WARNING")
        self.assertEqual(payload["logger"], "attendance_engine.monthly")
        self.assertEqual(payload["message"], "monthly_employee_failed")
        self.assertEqual(payload["user_id"], "u1")
        self.assertEqual(payload["month"], 10)
        self.assertNotIn("lineno", payload)

    def test_service_name_is_attached(self) -> None:
        payload = json.loads(JsonFormatter("AttendanceEngine").format(self._record()))

        self.assertEqual(payload["service"], "AttendanceEngine")
        self.assertTrue(payload["ts"].endswith("+00:00"))

    def test_non_json_values_fall_back_to_str(self) -> None:
        payload = json.loads(JsonFormatter().format(self._record(label="迟到", flags={"weekend"})))

        self.assertEqual(payload["label"], "迟到")
        self.assertEqual(payload["flags"], "{'weekend'}")


if __name__ == "__main__":
    unittest.main()
