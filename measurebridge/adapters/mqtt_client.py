"""Health services client backed by an MQTT sensor gateway.

Topic layout under ``<prefix>``::

    <prefix>/capabilities                      retained {"measure": ["HEART_RATE_BPM", ...]}
    <prefix>/measure/<DATA_TYPE>/availability  {"availability": "AVAILABLE"}
    <prefix>/measure/<DATA_TYPE>/data          {"points": [{"value": 72, "start": "..."}]}

Measure callbacks are invoked on the paho network thread.
"""

from __future__ import annotations

import asyncio
import json
import threading
from typing import Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt
from asgiref.sync import sync_to_async
from pydantic import ValidationError

from measurebridge.schemas.health import Availability, Capabilities, DataPoint, DataType
from measurebridge.services.config import MQTTConfig
from measurebridge.telemetry.logging import get_logger
from measurebridge.telemetry.metrics import record_dead_letter

from .base import MeasureCallback

_KNOWN_TYPES = {data_type.value for data_type in DataType}


def _is_success(reason_code: int | mqtt.ReasonCode) -> bool:
    """Paho/MQTT result code helper (0 is success)."""

    return getattr(reason_code, "value", reason_code) == 0


class MQTTHealthServicesClient:
    """Single paho client serving capability queries and measure callbacks."""

    def __init__(self, config: MQTTConfig, *, keepalive: int = 60) -> None:
        self._config = config
        self._keepalive = keepalive
        self._prefix = config.topic_prefix
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected = asyncio.Event()
        self._connect_lock = asyncio.Lock()
        # paho 线程与事件循环共享
        self._lock = threading.Lock()
        self._callbacks: Dict[DataType, List[MeasureCallback]] = {}
        self._capability_waiters: List[asyncio.Future[Capabilities]] = []
        self._loop_running = False

        self._logger = get_logger(
            "mqtt_health_client", client_id=config.client_id, broker=config.broker, port=config.port
        )

        self._client = mqtt.Client(
            client_id=config.client_id,
            protocol=mqtt.MQTTv311,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )
        if config.username:
            self._client.username_pw_set(config.username, config.password)

        self._client.on_connect = self._on_connect
        self._client.on_message = self._on_message
        self._client.on_disconnect = self._on_disconnect

    @property
    def capabilities_topic(self) -> str:
        return f"{self._prefix}/capabilities"

    def measure_topics(self, data_type: DataType) -> Tuple[str, str]:
        base = f"{self._prefix}/measure/{data_type.value}"
        return f"{base}/availability", f"{base}/data"

    # paho network thread

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties=None) -> None:
        if not _is_success(reason_code):
            code = getattr(reason_code, "value", reason_code)
            self._logger.warning(f"MQTT connect failed; code={code}")
            return
        self._logger.info("MQTT connected")
        with self._lock:
            data_types = list(self._callbacks)
        for data_type in data_types:
            for topic in self.measure_topics(data_type):
                client.subscribe(topic)
        if self._loop:
            self._loop.call_soon_threadsafe(self._connected.set)

    def _on_disconnect(self, client: mqtt.Client, userdata, flags, reason_code, properties=None) -> None:
        code = getattr(reason_code, "value", reason_code)
        self._logger.info(f"MQTT disconnected; code={code}")
        if self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._connected.clear)

    def _on_message(self, client: mqtt.Client, userdata, msg: mqtt.MQTTMessage) -> None:
        try:
            data = json.loads(msg.payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            record_dead_letter("invalid_json")
            self._logger.warning(f"MQTT invalid JSON payload: topic={msg.topic}")
            return
        if not isinstance(data, dict):
            record_dead_letter("invalid_payload")
            self._logger.warning(f"MQTT payload is not an object: topic={msg.topic}")
            return
        if msg.topic == self.capabilities_topic:
            self._handle_capabilities(data)
            return
        route = self._route(msg.topic)
        if route is None:
            record_dead_letter("unknown_topic")
            self._logger.warning(f"MQTT message for unmapped topic: {msg.topic}")
            return
        data_type, kind = route
        try:
            if kind == "availability":
                self._dispatch_availability(data_type, Availability(data["availability"]))
            else:
                points = [DataPoint.model_validate({**point, "data_type": data_type}) for point in data["points"]]
                self._dispatch_data(data_type, points)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            record_dead_letter("invalid_payload")
            self._logger.warning(f"MQTT payload rejected: topic={msg.topic} error={exc}")

    def _route(self, topic: str) -> Optional[Tuple[DataType, str]]:
        parts = topic[len(self._prefix) + 1 :].split("/") if topic.startswith(self._prefix + "/") else []
        if len(parts) != 3 or parts[0] != "measure" or parts[1] not in _KNOWN_TYPES:
            return None
        if parts[2] not in ("availability", "data"):
            return None
        return DataType(parts[1]), parts[2]

    def _snapshot(self, data_type: DataType) -> List[MeasureCallback]:
        with self._lock:
            return list(self._callbacks.get(data_type, ()))

    def _dispatch_availability(self, data_type: DataType, availability: Availability) -> None:
        for callback in self._snapshot(data_type):
            try:
                callback.on_availability_changed(data_type, availability)
            except Exception:
                record_dead_letter("callback_error")
                self._logger.exception("Measure callback raised on availability change")

    def _dispatch_data(self, data_type: DataType, points: List[DataPoint]) -> None:
        for callback in self._snapshot(data_type):
            try:
                callback.on_data(points)
            except Exception:
                record_dead_letter("callback_error")
                self._logger.exception("Measure callback raised on data")

    def _handle_capabilities(self, data: Dict[str, object]) -> None:
        raw = data.get("measure")
        if not isinstance(raw, list):
            record_dead_letter("invalid_payload")
            self._logger.warning("MQTT capabilities payload missing 'measure' list")
            return
        names = [item for item in raw if isinstance(item, str)]
        if len(names) != len(raw):
            record_dead_letter("invalid_payload")
            self._logger.warning("MQTT capabilities payload has non-string entries; ignoring them")
        capabilities = Capabilities(
            supported_data_types_measure=frozenset(DataType(name) for name in names if name in _KNOWN_TYPES)
        )
        if self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._resolve_capabilities, capabilities)

    # event loop

    def _resolve_capabilities(self, capabilities: Capabilities) -> None:
        with self._lock:
            waiters = list(self._capability_waiters)
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(capabilities)

    async def ensure_connected(self) -> None:
        if self._connected.is_set():
            return
        async with self._connect_lock:
            if self._connected.is_set():
                return
            self._loop = asyncio.get_running_loop()
            if not self._loop_running:
                self._client.loop_start()
                self._loop_running = True
            try:
                await sync_to_async(self._client.connect, thread_sensitive=False)(
                    self._config.broker, self._config.port, self._keepalive
                )
                await asyncio.wait_for(self._connected.wait(), timeout=self._config.capabilities_timeout)
            except Exception as exc:
                self._stop_network_loop()
                self._logger.error(f"MQTT connect error={exc!r}")
                raise ConnectionError("MQTT connect failed") from exc

    async def capabilities(self) -> Capabilities:
        await self.ensure_connected()
        waiter: asyncio.Future[Capabilities] = asyncio.get_running_loop().create_future()
        with self._lock:
            self._capability_waiters.append(waiter)
        try:
            self._client.subscribe(self.capabilities_topic)
            return await asyncio.wait_for(waiter, timeout=self._config.capabilities_timeout)
        finally:
            with self._lock:
                self._capability_waiters.remove(waiter)
                idle = not self._capability_waiters
            if idle:
                self._client.unsubscribe(self.capabilities_topic)

    async def register_callback(self, data_type: DataType, callback: MeasureCallback) -> None:
        await self.ensure_connected()
        with self._lock:
            callbacks = self._callbacks.setdefault(data_type, [])
            first = not callbacks
            callbacks.append(callback)
        if not first:
            return
        subscribed: List[str] = []
        for topic in self.measure_topics(data_type):
            result, _mid = self._client.subscribe(topic)
            if result != mqtt.MQTT_ERR_SUCCESS:
                for done in subscribed:
                    self._client.unsubscribe(done)
                self._remove(data_type, callback)
                raise ConnectionError(f"MQTT subscribe failed: topic={topic} rc={result}")
            subscribed.append(topic)
        self._logger.info(f"MQTT subscribed: {data_type.value}")

    def unregister_callback(self, data_type: DataType, callback: MeasureCallback) -> None:
        if not self._remove(data_type, callback):
            return
        if self._client.is_connected():
            for topic in self.measure_topics(data_type):
                self._client.unsubscribe(topic)
        self._logger.info(f"MQTT unsubscribed: {data_type.value}")

    def _remove(self, data_type: DataType, callback: MeasureCallback) -> bool:
        """Drop ``callback``; True when it was the last one for ``data_type``."""

        with self._lock:
            callbacks = self._callbacks.get(data_type, [])
            for index, existing in enumerate(callbacks):
                if existing is callback:
                    del callbacks[index]
                    break
            else:
                return False
            if callbacks:
                return False
            self._callbacks.pop(data_type, None)
            return True

    def _stop_network_loop(self) -> None:
        if self._loop_running:
            self._client.loop_stop()
            self._loop_running = False

    async def disconnect(self) -> None:
        if self._client.is_connected():
            self._client.disconnect()
        self._stop_network_loop()
        self._connected.clear()


__all__ = ["MQTTHealthServicesClient"]
