"""Entry point for health client APIs, wrapped as asyncio-friendly calls and streams."""

from __future__ import annotations

from typing import Optional

from measurebridge.adapters.base import HealthServicesClient
from measurebridge.adapters.callback_flow import CallbackFlow
from measurebridge.adapters.measure_stream import MeasurementStreamAdapter
from measurebridge.schemas.messages import MeasureMessage

from .capability_checker import CapabilityChecker
from .config import BridgeConfig


class HealthServicesManager:
    """Composes the capability checker and the measure stream adapter over one client."""

    def __init__(self, client: HealthServicesClient, config: Optional[BridgeConfig] = None) -> None:
        config = config or BridgeConfig()
        self._checker = CapabilityChecker(client)
        self._streams = MeasurementStreamAdapter(client, capacity=config.buffer_capacity)

    async def has_heart_rate_capability(self) -> bool:
        return await self._checker.has_heart_rate_capability()

    def heart_rate_measure_stream(self) -> CallbackFlow[MeasureMessage]:
        """Cold stream: registers on subscription, unregisters when the subscription closes."""

        return self._streams.heart_rate_measure_stream()


__all__ = ["HealthServicesManager"]
