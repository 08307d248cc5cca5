from __future__ import annotations

import io
import json
import threading
from contextlib import redirect_stderr, redirect_stdout
from datetime import datetime, timezone
from unittest import TestCase
from unittest.mock import patch

from measurebridge.adapters.fake_client import FakeHealthServicesClient
from measurebridge.cli import main
from measurebridge.schemas.health import Availability, DataPoint, DataType

HR = DataType.HEART_RATE_BPM


class _StreamingClient(FakeHealthServicesClient):
    """Starts delivering from a worker thread as soon as a callback registers."""

    def register_callback(self, data_type, callback):
        super().register_callback(data_type, callback)
        point = DataPoint(data_type=HR, value=90, start=datetime(2025, 1, 1, tzinfo=timezone.utc))

        def deliver():
            callback.on_availability_changed(HR, Availability.AVAILABLE)
            callback.on_data([point])

        threading.Thread(target=deliver).start()


class CommandLineTests(TestCase):
    def _run(self, argv, client):
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = main(["--log-level", "WARNING", *argv], client=client)
        return code, stdout.getvalue(), stderr.getvalue()

    def test_check_reports_support(self) -> None:
        code, out, _ = self._run(["check"], FakeHealthServicesClient({HR}))

        self.assertEqual(code, 0)
        self.assertIn("heart rate supported", out)

    def test_check_reports_missing_support(self) -> None:
        code, out, _ = self._run(["check"], FakeHealthServicesClient({DataType.STEPS}))

        self.assertEqual(code, 1)
        self.assertIn("not supported", out)

    def test_check_fails_on_query_error(self) -> None:
        client = FakeHealthServicesClient(capabilities_error=TimeoutError("no gateway"))

        code, _, _ = self._run(["check"], client)

        self.assertEqual(code, 2)

    def test_watch_prints_json_lines_and_unregisters(self) -> None:
        client = _StreamingClient({HR})

        code, out, _ = self._run(["watch", "--limit", "2"], client)

        lines = [json.loads(line) for line in out.splitlines()]
        self.assertEqual(code, 0)
        self.assertEqual([line["kind"] for line in lines], ["availability", "data"])
        self.assertEqual(lines[1]["samples"][0]["value"], 90.0)
        self.assertEqual(len(client.unregistered), 1)

    def test_watch_refuses_unsupported_device(self) -> None:
        client = FakeHealthServicesClient({DataType.STEPS})

        code, _, err = self._run(["watch"], client)

        self.assertEqual(code, 1)
        self.assertIn("not supported", err)
        self.assertEqual(client.registered, [])

    def test_metrics_port_starts_exporter(self) -> None:
        with patch("measurebridge.cli.serve_metrics") as mocked_serve:
            code, _, _ = self._run(["--metrics-port", "9464", "check"], FakeHealthServicesClient({HR}))

        self.assertEqual(code, 0)
        mocked_serve.assert_called_once_with(9464)
