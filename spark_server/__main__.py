"""Entry point for spark-server."""

import argparse
import asyncio
import logging
import signal
from dataclasses import dataclass

from .adapter import BLEAdapter, BleakAdapter
from .analytics import HeartRateAnalyzer, ThresholdConfig
from .config import Config, load_config
from .connection import ConnectionManager
from .log import setup_logging
from .router import CommandRouter
from .scanner import DeviceScanner
from .server import BroadcastHub
from .settings import DisplaySettings

logger = logging.getLogger(__name__)

# Shutdown event for graceful termination
_shutdown_event: asyncio.Event | None = None


def _signal_handler() -> None:
    """Handle shutdown signals."""
    if _shutdown_event:
        logger.info("Shutdown requested...")
        _shutdown_event.set()


@dataclass
class Components:
    adapter: BLEAdapter
    hub: BroadcastHub
    scanner: DeviceScanner
    analyzer: HeartRateAnalyzer
    connection: ConnectionManager
    router: CommandRouter


def build_components(config: Config, adapter: BLEAdapter, hub: BroadcastHub) -> Components:
    """Wire the core together; every collaborator is passed in explicitly."""
    analyzer = HeartRateAnalyzer(
        publish=hub.publish,
        thresholds=ThresholdConfig(
            resting_min=config.thresholds.resting_min,
            resting_max=config.thresholds.resting_max,
            max_heart_rate=config.thresholds.max_heart_rate,
            rapid_change_delta=config.thresholds.rapid_change_delta,
            variability_floor=config.thresholds.variability_floor,
        ),
        realtime_limit=config.analytics.realtime_limit,
        history_limit=config.analytics.history_limit,
        trend_limit=config.analytics.trend_limit,
        trend_interval_ms=int(config.analytics.trend_interval * 1000),
        window_size=config.analytics.window_size,
    )
    scanner = DeviceScanner(
        adapter,
        hub.publish,
        scan_timeout=config.ble.scan_timeout,
        rssi_update_threshold=config.ble.rssi_update_threshold,
    )
    connection = ConnectionManager(adapter, hub.publish, on_sample=analyzer.ingest)
    router = CommandRouter(
        adapter,
        scanner,
        connection,
        analyzer,
        DisplaySettings(config.display.mode),
        hub.publish,
    )
    adapter.bind(
        on_discovered=scanner.on_peripheral_discovered,
        on_state_change=scanner.handle_adapter_state,
        on_disconnected=connection.handle_link_loss,
    )
    return Components(adapter, hub, scanner, analyzer, connection, router)


async def run(config: Config, host: str, port: int, auto_scan: bool) -> None:
    """Run the hub until a shutdown signal arrives."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    hub = BroadcastHub(
        host=host,
        port=port,
        broadcast_timeout=config.server.broadcast_timeout,
        send_queue_size=config.server.send_queue_size,
    )
    components = build_components(config, BleakAdapter(), hub)

    # Start the hub first so observers can connect while the radio comes up
    await hub.start(components.router)
    logger.info("WebSocket server running on ws://%s:%d", host, port)

    try:
        await components.adapter.initialize()
        if auto_scan:
            await components.scanner.start_scan()
        await _shutdown_event.wait()
    finally:
        await components.connection.disconnect()
        await components.scanner.stop_scan()
        await hub.stop()
        logger.info("Shutdown complete")


def main() -> None:
    """CLI entry point."""
    config = load_config()

    parser = argparse.ArgumentParser(description="BLE heart rate hub with WebSocket observers")
    parser.add_argument("-H", "--host", default=config.server.host, help="Server host")
    parser.add_argument("-p", "--port", type=int, default=config.server.port, help="Server port")
    parser.add_argument(
        "-s",
        "--scan",
        action="store_true",
        default=config.ble.auto_scan,
        help="Start scanning as soon as the adapter is ready",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    # Setup logging before anything else
    log_level = "DEBUG" if args.verbose else config.server.log_level
    setup_logging(log_level)

    asyncio.run(run(config, args.host, args.port, args.scan))


if __name__ == "__main__":
    main()
