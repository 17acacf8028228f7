"""
Meter connection handlers.
Supports raw TCP (serial device servers, telnet ports) and direct serial connections.
"""

import serial
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Callable, Dict, List, Optional
from dataclasses import dataclass
from enum import Enum

from .telegram import CRLF


class ConnectionType(Enum):
    """Connection type enumeration."""
    TCP = "tcp"
    SERIAL = "serial"


class TransportEvent(Enum):
    """Events emitted by a connection."""
    CONNECT = "connect"
    CLOSE = "close"
    TIMEOUT = "timeout"
    ERROR = "error"
    DATA = "data"


@dataclass
class ConnectionParams:
    """Connection parameters."""
    type: ConnectionType = ConnectionType.TCP
    host: str = "localhost"
    port: int = 23
    device: str = "/dev/ttyUSB0"
    baudrate: int = 9600
    negotiation_mandatory: bool = False
    timeout: float = 2.0
    login_prompt: str = ""
    password_prompt: str = ""


class MeterConnection(ABC):
    """
    Abstract base class for meter connections.

    A connection is opened with connect() and reports everything that
    happens afterwards through events. CLOSE is emitted exactly once per
    connect(), whether the session ended by destroy(), by the peer or by
    a failed connection attempt.
    """

    def __init__(self, params: ConnectionParams):
        self.params = params
        self.logger = logging.getLogger(self.__class__.__name__)
        self._handlers: Dict[TransportEvent, List[Callable]] = defaultdict(list)
        self._connected = False
        self._closed = True
        self._session = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._connected

    def on(self, event: TransportEvent, handler: Callable) -> None:
        """Register a handler for a connection event."""
        self._handlers[event].append(handler)

    def _emit(self, event: TransportEvent, *args) -> None:
        for handler in self._handlers[event]:
            try:
                handler(*args)
            except Exception as e:
                self.logger.error(f"Handler error on {event.value}: {e}")

    def connect(self, params: Optional[ConnectionParams] = None) -> None:
        """Start a new connection attempt. Must be called from the event loop."""
        if params is not None:
            self.params = params

        self._session += 1
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(self._run(self._session))

    def send(self, data: bytes, line_ending: bytes = CRLF) -> bool:
        """Write data followed by the line ending."""
        if not self._connected:
            return False

        try:
            self._write(data + line_ending)
            return True
        except (OSError, serial.SerialException) as e:
            self.logger.debug(f"Write error: {e}")
            self._emit(TransportEvent.ERROR, e)
            return False

    def destroy(self) -> None:
        """Tear down the active session."""
        if self._closed:
            return

        self._closed = True
        self._connected = False

        try:
            self._close()
        except (OSError, serial.SerialException) as e:
            self.logger.debug(f"Close error: {e}")

        task = self._task
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        self._emit(TransportEvent.CLOSE)

    async def _run(self, session: int) -> None:
        """Open the connection and pump incoming data into DATA events."""
        timeout = self.params.timeout

        try:
            await asyncio.wait_for(self._open(), timeout=timeout)
        except (OSError, serial.SerialException, asyncio.TimeoutError) as e:
            self.logger.debug(f"Connect failed: {e!r}")
            if session == self._session:
                self._emit(TransportEvent.ERROR, e)
                self.destroy()
            return

        if session != self._session:
            return

        self._connected = True
        self._emit(TransportEvent.CONNECT)

        try:
            while self._connected and session == self._session:
                try:
                    data = await asyncio.wait_for(self._read_chunk(), timeout=timeout)
                except asyncio.TimeoutError:
                    self._emit(TransportEvent.TIMEOUT)
                    continue

                if not data:
                    self.logger.debug("Connection closed by peer")
                    break

                self._emit(TransportEvent.DATA, data)

        except (OSError, serial.SerialException) as e:
            if session == self._session:
                self._emit(TransportEvent.ERROR, e)

        finally:
            if session == self._session:
                self.destroy()

    @abstractmethod
    async def _open(self) -> None:
        """Open the underlying stream."""
        pass

    @abstractmethod
    async def _read_chunk(self) -> bytes:
        """Read the next chunk of bytes. Empty bytes means end of stream."""
        pass

    @abstractmethod
    def _write(self, data: bytes) -> None:
        pass

    @abstractmethod
    def _close(self) -> None:
        pass


class TcpConnection(MeterConnection):
    """Raw TCP connection, e.g. to a serial device server on a shared line."""

    READ_SIZE = 1024

    def __init__(self, params: ConnectionParams):
        super().__init__(params)
        if params.negotiation_mandatory:
            raise ValueError("Telnet option negotiation is not supported")
        if params.login_prompt or params.password_prompt:
            raise ValueError("Login prompts are not supported, the protocol has no login phase")

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def _open(self) -> None:
        self._reader, self._writer = await asyncio.open_connection(
            self.params.host,
            self.params.port
        )
        self.logger.debug(f"Connected to {self.params.host}:{self.params.port}")

    async def _read_chunk(self) -> bytes:
        return await self._reader.read(self.READ_SIZE)

    def _write(self, data: bytes) -> None:
        self._writer.write(data)

    def _close(self) -> None:
        if self._writer:
            self._writer.close()
        self._reader = None
        self._writer = None


class SerialConnection(MeterConnection):
    """Direct serial connection, e.g. an optical probe or RS-485 adapter."""

    POLL_INTERVAL = 0.1

    def __init__(self, params: ConnectionParams):
        super().__init__(params)
        self._serial: Optional[serial.Serial] = None

    async def _open(self) -> None:
        loop = asyncio.get_running_loop()
        self._serial = await loop.run_in_executor(None, self._open_port)
        self.logger.debug(f"Opened {self.params.device} at {self.params.baudrate} baud")

    def _open_port(self) -> serial.Serial:
        # Mode C uses 7 data bits, even parity, 1 stop bit
        return serial.Serial(
            port=self.params.device,
            baudrate=self.params.baudrate,
            bytesize=serial.SEVENBITS,
            parity=serial.PARITY_EVEN,
            stopbits=serial.STOPBITS_ONE,
            timeout=self.POLL_INTERVAL
        )

    async def _read_chunk(self) -> bytes:
        loop = asyncio.get_running_loop()
        while True:
            port = self._serial
            if port is None or not port.is_open:
                return b""

            data = await loop.run_in_executor(
                None, lambda: port.read(port.in_waiting or 1)
            )
            if data:
                return data

    def _write(self, data: bytes) -> None:
        self._serial.write(data)

    def _close(self) -> None:
        if self._serial and self._serial.is_open:
            self._serial.close()
        self._serial = None


def create_connection(params: ConnectionParams) -> MeterConnection:
    """Factory function to create appropriate connection type."""
    if params.type == ConnectionType.TCP:
        return TcpConnection(params)
    elif params.type == ConnectionType.SERIAL:
        return SerialConnection(params)
    else:
        raise ValueError(f"Unknown connection type: {params.type}")
