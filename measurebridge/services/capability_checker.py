"""能力检查：判断底层客户端是否支持心率测量。"""

from __future__ import annotations

import asyncio
import logging

from measurebridge.adapters.base import HealthServicesClient
from measurebridge.errors import CapabilityQueryError
from measurebridge.schemas.health import DataType
from measurebridge.telemetry.metrics import mark_capability_query

logger = logging.getLogger(__name__)


class CapabilityChecker:
    def __init__(self, client: HealthServicesClient) -> None:
        self._client = client

    async def supports(self, data_type: DataType) -> bool:
        """Query the client once; True if ``data_type`` is a supported measure type."""

        try:
            capabilities = await self._client.capabilities()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            mark_capability_query("error")
            logger.warning(f"能力查询失败: {exc!r}")
            raise CapabilityQueryError(f"capability query failed: {exc}") from exc
        mark_capability_query("ok")
        supported = data_type in capabilities.supported_data_types_measure
        logger.info(f"能力查询完成: {data_type.value}={supported}")
        return supported

    async def has_heart_rate_capability(self) -> bool:
        return await self.supports(DataType.HEART_RATE_BPM)


__all__ = ["CapabilityChecker"]
