from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest import TestCase

from pydantic import ValidationError

from measurebridge.schemas.health import Availability, Capabilities, DataPoint, DataType
from measurebridge.schemas.messages import AvailabilityChanged, DataBatch, dump_message, parse_message


class DataPointTests(TestCase):
    def test_end_defaults_to_start_and_naive_times_are_utc(self) -> None:
        point = DataPoint(data_type=DataType.HEART_RATE_BPM, value=70, start=datetime(2025, 1, 1, 12, 0))

        self.assertEqual(point.start, datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))
        self.assertEqual(point.end, point.start)

    def test_rejects_end_before_start(self) -> None:
        start = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

        with self.assertRaises(ValidationError):
            DataPoint(data_type=DataType.STEPS, value=10, start=start, end=start - timedelta(seconds=1))

    def test_is_immutable(self) -> None:
        point = DataPoint(data_type=DataType.HEART_RATE_BPM, value=70, start=datetime(2025, 1, 1))

        with self.assertRaises(ValidationError):
            point.value = 71


class MeasureMessageTests(TestCase):
    def test_json_carries_kind_discriminator(self) -> None:
        message = AvailabilityChanged(data_type=DataType.HEART_RATE_BPM, availability=Availability.AVAILABLE)

        self.assertEqual(
            json.loads(dump_message(message)),
            {"kind": "availability", "data_type": "HEART_RATE_BPM", "availability": "AVAILABLE"},
        )

    def test_parse_selects_variant(self) -> None:
        batch = DataBatch(
            samples=(
                DataPoint(data_type=DataType.HEART_RATE_BPM, value=64, start=datetime(2025, 1, 1, tzinfo=timezone.utc)),
            )
        )

        parsed = parse_message(dump_message(batch))

        self.assertIsInstance(parsed, DataBatch)
        self.assertEqual(parsed, batch)

    def test_parse_rejects_unknown_kind(self) -> None:
        with self.assertRaises(ValidationError):
            parse_message('{"kind": "error", "reason": "x"}')

    def test_capabilities_default_to_empty(self) -> None:
        self.assertEqual(Capabilities().supported_data_types_measure, frozenset())
