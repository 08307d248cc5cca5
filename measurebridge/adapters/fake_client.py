"""In-memory health client that records registrations and fires callbacks on demand."""

from __future__ import annotations

import asyncio
import threading
from typing import Iterable, List, Optional, Sequence, Tuple

from measurebridge.schemas.health import Availability, Capabilities, DataPoint, DataType

from .base import MeasureCallback


class FakeHealthServicesClient:
    """Stand-in for a real sensor client.

    ``async_registration`` makes ``register_callback`` return a coroutine
    instead of completing synchronously; errors configured on the instance are
    raised from whichever form is in use.
    """

    def __init__(
        self,
        supported: Iterable[DataType] = (DataType.HEART_RATE_BPM,),
        *,
        capabilities_error: Optional[Exception] = None,
        register_error: Optional[Exception] = None,
        unregister_error: Optional[Exception] = None,
        async_registration: bool = False,
    ) -> None:
        self.supported = frozenset(supported)
        self.capabilities_error = capabilities_error
        self.register_error = register_error
        self.unregister_error = unregister_error
        self.async_registration = async_registration
        self.capability_queries = 0
        self.registered: List[Tuple[DataType, MeasureCallback]] = []
        self.unregistered: List[Tuple[DataType, MeasureCallback]] = []
        self._lock = threading.Lock()

    async def capabilities(self) -> Capabilities:
        self.capability_queries += 1
        if self.capabilities_error is not None:
            raise self.capabilities_error
        return Capabilities(supported_data_types_measure=self.supported)

    def register_callback(self, data_type: DataType, callback: MeasureCallback):
        if self.async_registration:
            return self._register_later(data_type, callback)
        self._register(data_type, callback)
        return None

    async def _register_later(self, data_type: DataType, callback: MeasureCallback) -> None:
        await asyncio.sleep(0)
        self._register(data_type, callback)

    def _register(self, data_type: DataType, callback: MeasureCallback) -> None:
        if self.register_error is not None:
            raise self.register_error
        with self._lock:
            self.registered.append((data_type, callback))

    def unregister_callback(self, data_type: DataType, callback: MeasureCallback) -> None:
        with self._lock:
            self.unregistered.append((data_type, callback))
        if self.unregister_error is not None:
            raise self.unregister_error

    def active_callbacks(self, data_type: DataType) -> List[MeasureCallback]:
        with self._lock:
            gone = [cb for kind, cb in self.unregistered if kind == data_type]
            return [
                cb for kind, cb in self.registered if kind == data_type and not any(cb is g for g in gone)
            ]

    def emit_data(self, data_type: DataType, points: Sequence[DataPoint]) -> None:
        for callback in self.active_callbacks(data_type):
            callback.on_data(list(points))

    def emit_availability(self, data_type: DataType, availability: Availability) -> None:
        for callback in self.active_callbacks(data_type):
            callback.on_availability_changed(data_type, availability)


__all__ = ["FakeHealthServicesClient"]
