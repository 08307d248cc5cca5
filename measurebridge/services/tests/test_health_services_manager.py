from __future__ import annotations

from datetime import datetime, timezone
from unittest import TestCase

from asgiref.sync import async_to_sync

from measurebridge.adapters.fake_client import FakeHealthServicesClient
from measurebridge.schemas.health import Availability, DataPoint, DataType
from measurebridge.schemas.messages import AvailabilityChanged, DataBatch
from measurebridge.services.config import BridgeConfig
from measurebridge.services.health_services_manager import HealthServicesManager

HR = DataType.HEART_RATE_BPM


class HealthServicesManagerTests(TestCase):
    def test_capability_and_stream_share_one_client(self) -> None:
        client = FakeHealthServicesClient({HR, DataType.STEPS})
        manager = HealthServicesManager(client)
        sample = DataPoint(data_type=HR, value=68, start=datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc))

        async def scenario():
            supported = await manager.has_heart_rate_capability()
            received = []
            async with manager.heart_rate_measure_stream().subscribe() as messages:
                client.emit_availability(HR, Availability.ACQUIRING)
                client.emit_data(HR, [sample])
                async for message in messages:
                    match message:
                        case AvailabilityChanged(availability=availability):
                            received.append(availability)
                        case DataBatch(samples=samples):
                            received.extend(point.value for point in samples)
                            break
            return supported, received

        supported, received = async_to_sync(scenario)()

        self.assertTrue(supported)
        self.assertEqual(received, [Availability.ACQUIRING, 68])
        self.assertEqual(len(client.registered), 1)
        self.assertEqual(len(client.unregistered), 1)

    def test_buffer_capacity_comes_from_config(self) -> None:
        manager = HealthServicesManager(FakeHealthServicesClient(), BridgeConfig(buffer_capacity=3))

        self.assertEqual(manager.heart_rate_measure_stream().capacity, 3)
