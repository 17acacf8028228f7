#!/usr/bin/env python3
"""
OBIS Meter Poller - Main Entry Point

Polls IEC 62056-21 mode C meters one after another and reports each readout.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from iec_core.connection import create_connection, MeterConnection
from obis_meter.config import ConfigLoader, DEFAULT_CONFIG_PATH, PollerConfig, setup_logging
from obis_meter.decoder import MeasurementRecord
from obis_meter.mqtt import RecordPublisher
from obis_meter.poller import PollingController


class PollerApplication:
    """Main application class."""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.loader = ConfigLoader(config_path)
        setup_logging(self.loader)

        self.logger = logging.getLogger(self.__class__.__name__)
        self.config = PollerConfig.from_loader(self.loader)
        self.connection: Optional[MeterConnection] = None
        self.controller: Optional[PollingController] = None
        self.publisher: Optional[RecordPublisher] = None

        self._stopped = asyncio.Event()

    def _create_publisher(self) -> Optional[RecordPublisher]:
        if not self.loader.get("mqtt.enabled", False):
            return None

        return RecordPublisher(
            broker=self.loader.get("mqtt.broker", "localhost"),
            port=int(self.loader.get("mqtt.port", 1883)),
            username=self.loader.get("mqtt.username"),
            password=self.loader.get("mqtt.password"),
            topic=self.loader.get("mqtt.topic", "meters"),
        )

    def _on_record(self, record: MeasurementRecord) -> None:
        """Handle decoded readout."""
        power = record.power
        self.logger.info(
            f"📨 {record.serial or 'meter'}: "
            f"L1={power.L1} L2={power.L2} L3={power.L3} {power.unit}"
        )
        self.logger.debug(f"Record: {record.to_dict()}")

    async def _status_loop(self) -> None:
        """Periodic status reporting. Also keeps the process waiting on I/O."""
        interval = float(self.loader.get("status_interval", 60))

        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

            stats = self.controller.get_stats()
            self.logger.info(
                f"📊 Stats: polls={stats['polls']}, records={stats['records']}, "
                f"checksum_errors={stats['checksum_errors']}, nacks={stats['nacks']}, "
                f"timeouts={stats['timeouts']}, transport_errors={stats['transport_errors']}"
            )

    async def run(self) -> None:
        """Run the application."""
        self.logger.info("🚀 Starting OBIS meter poller...")

        self.connection = create_connection(self.config.connection_params())
        self.controller = PollingController(self.connection, self.config, self._on_record)

        self.publisher = self._create_publisher()
        if self.publisher:
            self.publisher.connect()
            self.controller.register_callback(self.publisher.publish)

        self.controller.start()
        await self._status_loop()

    async def stop(self) -> None:
        """Stop the application."""
        self.logger.info("Stopping...")

        if self.controller:
            self.controller.stop()
        if self.publisher:
            self.publisher.disconnect()

        self._stopped.set()
        self.logger.info("Stopped")


async def main(config_path: str = DEFAULT_CONFIG_PATH):
    """Main entry point."""
    app = PollerApplication(config_path)

    # Handle signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(app.stop()))

    await app.run()


def run():
    parser = argparse.ArgumentParser(description="Poll IEC 62056-21 mode C meters")
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH,
                        help=f"YAML configuration file (default: {DEFAULT_CONFIG_PATH})")
    args = parser.parse_args()

    try:
        asyncio.run(main(args.config))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)


if __name__ == "__main__":
    run()
