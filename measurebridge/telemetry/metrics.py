"""Prometheus 指标注册中心"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest, start_http_server

# 订阅生命周期
REGISTRATION_COUNTER = Counter(
    "bridge_registrations_total",
    "Callback registrations attempted by stream subscriptions",
    labelnames=("flow", "outcome"),
)
UNREGISTRATION_COUNTER = Counter(
    "bridge_unregistrations_total",
    "Callback unregistrations performed on subscription teardown",
    labelnames=("flow", "outcome"),
)
ACTIVE_SUBSCRIPTIONS = Gauge(
    "bridge_active_subscriptions",
    "Subscriptions currently holding a callback registration",
    labelnames=("flow",),
)

# 投递
MESSAGE_COUNTER = Counter(
    "bridge_messages_total",
    "Events handed from client callbacks into subscription buffers",
    labelnames=("flow",),
)
SEND_BLOCKED = Histogram(
    "bridge_send_blocked_seconds",
    "Time a callback thread waited for buffer space",
    labelnames=("flow",),
    buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1, 5),
)

# 客户端
CAPABILITY_QUERY_COUNTER = Counter(
    "capability_queries_total",
    "Capability queries issued to the health client",
    labelnames=("outcome",),
)
DEAD_LETTER_COUNTER = Counter(
    "mqtt_dead_letters_total",
    "MQTT messages discarded by the health client",
    labelnames=("reason",),
)


def mark_registration(flow: str, outcome: str) -> None:
    """记录注册结果"""

    REGISTRATION_COUNTER.labels(flow=flow, outcome=outcome).inc()
    if outcome == "ok":
        ACTIVE_SUBSCRIPTIONS.labels(flow=flow).inc()


def mark_unregistration(flow: str, outcome: str) -> None:
    """记录注销结果"""

    UNREGISTRATION_COUNTER.labels(flow=flow, outcome=outcome).inc()
    ACTIVE_SUBSCRIPTIONS.labels(flow=flow).dec()


def observe_send(flow: str, blocked_seconds: float) -> None:
    MESSAGE_COUNTER.labels(flow=flow).inc()
    SEND_BLOCKED.labels(flow=flow).observe(blocked_seconds)


def mark_capability_query(outcome: str) -> None:
    CAPABILITY_QUERY_COUNTER.labels(outcome=outcome).inc()


def record_dead_letter(reason: str) -> None:
    """记录死信"""

    DEAD_LETTER_COUNTER.labels(reason=reason).inc()


def export_prometheus() -> tuple[bytes, str]:
    """导出 Prometheus 文本及 Content-Type"""

    data = generate_latest()
    return data, CONTENT_TYPE_LATEST


def serve_metrics(port: int) -> None:
    """在后台线程暴露 Prometheus 指标"""

    start_http_server(port)
