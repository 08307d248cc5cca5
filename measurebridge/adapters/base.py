"""定义健康数据客户端协议，供能力检查与测量流复用。"""

from __future__ import annotations

from typing import Awaitable, Optional, Protocol, Sequence, runtime_checkable

from measurebridge.schemas.health import Availability, Capabilities, DataPoint, DataType


@runtime_checkable
class MeasureCallback(Protocol):
    """Callback shape invoked by the client, possibly from a foreign thread."""

    def on_availability_changed(self, data_type: DataType, availability: Availability) -> None:
        """数据可用性变化。"""

    def on_data(self, data_points: Sequence[DataPoint]) -> None:
        """新的采样批次。"""


class HealthServicesClient(Protocol):
    """Underlying sensor client consumed by the bridge.

    ``register_callback`` and ``unregister_callback`` may complete synchronously
    (returning ``None``) or return an awaitable; callers await the latter.
    """

    async def capabilities(self) -> Capabilities:
        """查询支持的数据类型。"""

    def register_callback(
        self, data_type: DataType, callback: MeasureCallback
    ) -> Optional[Awaitable[None]]:
        """注册回调。"""

    def unregister_callback(
        self, data_type: DataType, callback: MeasureCallback
    ) -> Optional[Awaitable[None]]:
        """注销回调。"""
