"""Bridge and MQTT client settings resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlparse

ENV_PREFIX = "MEASUREBRIDGE_"


@dataclass(frozen=True)
class BridgeConfig:
    buffer_capacity: int = 64


@dataclass(frozen=True)
class MQTTConfig:
    broker: str
    port: int
    client_id: str
    username: str
    password: str
    topic_prefix: str = "health"
    capabilities_timeout: float = 5.0

    @classmethod
    def from_broker_url(cls, broker_url: str, **kwargs) -> "MQTTConfig":
        url = urlparse(broker_url)
        host = url.hostname
        port = url.port
        if not host or port is None:
            raise ValueError("MQTT broker_url missing host/port")
        return cls(
            broker=host,
            port=port,
            username=url.username or "",
            password=url.password or "",
            **kwargs,
        )


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def resolve_bridge_config(env: Optional[Mapping[str, str]] = None) -> BridgeConfig:
    env = os.environ if env is None else env
    raw = _get(env, "BUFFER_CAPACITY")
    if raw is None:
        return BridgeConfig()
    try:
        capacity = int(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}BUFFER_CAPACITY must be an integer: {raw!r}") from exc
    if capacity < 1:
        raise ValueError(f"{ENV_PREFIX}BUFFER_CAPACITY must be >= 1")
    return BridgeConfig(buffer_capacity=capacity)


def resolve_mqtt_config(env: Optional[Mapping[str, str]] = None) -> MQTTConfig:
    env = os.environ if env is None else env
    broker_url = _get(env, "MQTT_BROKER_URL")
    if not broker_url:
        raise ValueError(f"{ENV_PREFIX}MQTT_BROKER_URL is required")

    raw_timeout = _get(env, "CAPABILITIES_TIMEOUT") or "5"
    try:
        timeout = float(raw_timeout)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}CAPABILITIES_TIMEOUT must be a number: {raw_timeout!r}") from exc
    if timeout <= 0:
        raise ValueError(f"{ENV_PREFIX}CAPABILITIES_TIMEOUT must be > 0")

    return MQTTConfig.from_broker_url(
        broker_url,
        client_id=_get(env, "MQTT_CLIENT_ID") or "measurebridge",
        topic_prefix=(_get(env, "MQTT_TOPIC_PREFIX") or "health").strip("/"),
        capabilities_timeout=timeout,
    )


__all__ = ["BridgeConfig", "MQTTConfig", "resolve_bridge_config", "resolve_mqtt_config"]
