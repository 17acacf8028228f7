"""
Round-robin mode C poller.

One connection at a time: connect, send the request message, wait for the
readout, disconnect and move straight on to the next meter address.
"""

import logging
from enum import Enum, auto
from typing import Callable, Dict, List, Optional

from iec_core.connection import MeterConnection, TransportEvent
from iec_core.telegram import (
    HANDSHAKE_ACK,
    NACK,
    FramerState,
    HandshakeReceived,
    Telegram,
    TelegramFramer,
    build_query,
)
from .config import PollerConfig
from .decoder import MeasurementRecord, ObisDecoder


class PollerState(Enum):
    IDLE = auto()
    CONNECTING = auto()
    CONNECTED = auto()   # Request message sent
    CLOSED = auto()


RecordCallback = Callable[[MeasurementRecord], None]


class PollingController:
    """
    Drives a MeterConnection through the poll cycle for each configured meter.

    All session state (framer buffers, device index, telegram timestamp)
    lives in this object and is only touched from connection events, so
    there is never more than one poll cycle in flight.
    """

    def __init__(self, connection: MeterConnection, config: PollerConfig,
                 callback: Optional[RecordCallback] = None):
        self.connection = connection
        self.config = config
        self.devices = tuple(config.serials)
        self.index = 0
        self.state = PollerState.IDLE
        self.framer = TelegramFramer()
        self.decoder = ObisDecoder(verbose=config.verbose)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._callbacks: List[RecordCallback] = []
        self._running = False
        self._current_device: Optional[str] = None
        self.stats = {
            "polls": 0,
            "records": 0,
            "checksum_errors": 0,
            "nacks": 0,
            "timeouts": 0,
            "transport_errors": 0,
            "callback_errors": 0,
        }

        if callback is not None:
            self.register_callback(callback)

        connection.on(TransportEvent.CONNECT, self._on_connect)
        connection.on(TransportEvent.CLOSE, self._on_close)
        connection.on(TransportEvent.TIMEOUT, self._on_timeout)
        connection.on(TransportEvent.ERROR, self._on_error)
        connection.on(TransportEvent.DATA, self._on_data)

    def register_callback(self, callback: RecordCallback) -> None:
        self._callbacks.append(callback)

    def _notify(self, record: MeasurementRecord) -> None:
        for cb in self._callbacks:
            try:
                cb(record)
            except Exception as e:
                self.stats["callback_errors"] += 1
                self.logger.error(f"Callback error: {e}")

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Begin polling. Keeps going until stop()."""
        self._running = True
        self.logger.info(
            f"Polling {len(self.devices)} meter(s) at "
            f"{self.config.host}:{self.config.port}, verbose={self.config.verbose}"
        )
        self.connect()

    def stop(self) -> None:
        self._running = False
        self.disconnect()
        self.state = PollerState.IDLE

    def connect(self) -> None:
        self.state = PollerState.CONNECTING
        self.connection.connect(self.config.connection_params())

    def disconnect(self) -> None:
        self.connection.destroy()

    def _on_connect(self) -> None:
        self.framer.reset()

        device = self.devices[self.index]
        self._current_device = device
        self.connection.send(build_query(device))
        self.stats["polls"] += 1
        self.logger.debug(f"Queried meter {device or '<any>'}")

        self.index = self.index + 1 if self.index < len(self.devices) - 1 else 0
        self.state = PollerState.CONNECTED

    def _on_close(self) -> None:
        self.state = PollerState.CLOSED
        if self._running:
            # No backoff, go straight to the next meter
            self.connect()

    def _on_timeout(self) -> None:
        self.stats["timeouts"] += 1
        self.logger.debug(f"Timeout polling meter {self._current_device or '<any>'}")
        self.disconnect()

    def _on_error(self, error: Exception) -> None:
        self.stats["transport_errors"] += 1
        self.logger.debug(f"Transport error: {error!r}")

    def _on_data(self, data: bytes) -> None:
        # A lone 0x15 once the data block has started is the BCC, not a NACK
        if data == bytes([NACK]) and self.framer.state == FramerState.AWAITING_RESPONSE:
            self.stats["nacks"] += 1
            self.logger.debug(f"Meter {self._current_device or '<any>'} rejected the request")
            self.disconnect()
            return

        for event in self.framer.feed(data):
            if isinstance(event, HandshakeReceived):
                self.connection.send(HANDSHAKE_ACK)
            elif isinstance(event, Telegram):
                self._handle_telegram(event)
                self.disconnect()
                break

    def _handle_telegram(self, telegram: Telegram) -> None:
        record = self.decoder.decode(telegram)
        if record is None:
            self.stats["checksum_errors"] += 1
            return

        self.stats["records"] += 1
        self._notify(record)

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)
