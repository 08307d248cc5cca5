"""Command line entry point: check heart-rate support or watch the measure stream."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from measurebridge.adapters.base import HealthServicesClient
from measurebridge.adapters.mqtt_client import MQTTHealthServicesClient
from measurebridge.errors import BridgeError
from measurebridge.schemas.messages import dump_message
from measurebridge.services.config import resolve_bridge_config, resolve_mqtt_config
from measurebridge.services.health_services_manager import HealthServicesManager
from measurebridge.telemetry.logging import configure_logging
from measurebridge.telemetry.metrics import serve_metrics

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="measurebridge", description=__doc__)
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--metrics-port", type=int, default=0, help="serve Prometheus metrics on this port (0 = off)")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("check", help="exit 0 if heart rate is supported, 1 otherwise")
    watch = commands.add_parser("watch", help="print heart-rate messages as JSON lines")
    watch.add_argument("--limit", type=int, default=0, help="stop after N messages (0 = until interrupted)")
    return parser


async def check(manager: HealthServicesManager) -> int:
    supported = await manager.has_heart_rate_capability()
    print("heart rate supported" if supported else "heart rate not supported")
    return 0 if supported else 1


async def watch(manager: HealthServicesManager, limit: int = 0) -> int:
    if not await manager.has_heart_rate_capability():
        print("heart rate not supported", file=sys.stderr)
        return 1
    received = 0
    async with manager.heart_rate_measure_stream().subscribe() as messages:
        async for message in messages:
            print(dump_message(message), flush=True)
            received += 1
            if limit and received >= limit:
                break
    return 0


async def run(args: argparse.Namespace, client: Optional[HealthServicesClient] = None) -> int:
    owned: Optional[MQTTHealthServicesClient] = None
    if client is None:
        client = owned = MQTTHealthServicesClient(resolve_mqtt_config())
    manager = HealthServicesManager(client, resolve_bridge_config())
    try:
        if args.command == "check":
            return await check(manager)
        return await watch(manager, args.limit)
    finally:
        if owned is not None:
            await owned.disconnect()


def main(argv: Optional[Sequence[str]] = None, client: Optional[HealthServicesClient] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    if args.metrics_port:
        serve_metrics(args.metrics_port)
    try:
        return asyncio.run(run(args, client))
    except KeyboardInterrupt:
        return 130
    except (BridgeError, ValueError) as exc:
        logger.error(f"measurebridge {args.command} failed: {exc}")
        return 2


__all__ = ["build_parser", "check", "main", "run", "watch"]
