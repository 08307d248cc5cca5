"""Heart-rate measure stream built on :class:`CallbackFlow`."""

from __future__ import annotations

from typing import Sequence

from measurebridge.errors import SubscriptionClosedError
from measurebridge.schemas.health import Availability, DataPoint, DataType
from measurebridge.schemas.messages import AvailabilityChanged, DataBatch, MeasureMessage
from measurebridge.telemetry.logging import get_logger

from .base import HealthServicesClient
from .callback_flow import DEFAULT_CAPACITY, CallbackChannel, CallbackFlow


class ChannelMeasureCallback:
    """Measure callback translating each invocation into one message on a channel."""

    def __init__(self, channel: CallbackChannel[MeasureMessage], data_type: DataType) -> None:
        self._channel = channel
        self._logger = get_logger("measure_callback", data_type=data_type.value)

    def on_availability_changed(self, data_type: DataType, availability: Availability) -> None:
        self._emit(AvailabilityChanged(data_type=data_type, availability=availability))

    def on_data(self, data_points: Sequence[DataPoint]) -> None:
        self._emit(DataBatch(samples=tuple(data_points)))

    def _emit(self, message: MeasureMessage) -> None:
        try:
            self._channel.send(message)
        except SubscriptionClosedError:
            # consumer already gone; unregistration is in progress
            self._logger.debug(f"Dropping late {message.kind} callback")


class MeasurementStreamAdapter:
    """Exposes a client's measure callbacks as cold message streams."""

    def __init__(self, client: HealthServicesClient, *, capacity: int = DEFAULT_CAPACITY) -> None:
        self._client = client
        self._capacity = capacity

    def measure_stream(self, data_type: DataType) -> CallbackFlow[MeasureMessage]:
        """Cold flow of measure messages for ``data_type``; registers per subscription."""

        return CallbackFlow(
            register=lambda callback: self._client.register_callback(data_type, callback),
            unregister=lambda callback: self._client.unregister_callback(data_type, callback),
            make_callback=lambda channel: ChannelMeasureCallback(channel, data_type),
            capacity=self._capacity,
            name=f"measure:{data_type.value}",
        )

    def heart_rate_measure_stream(self) -> CallbackFlow[MeasureMessage]:
        return self.measure_stream(DataType.HEART_RATE_BPM)


__all__ = ["ChannelMeasureCallback", "MeasurementStreamAdapter"]
