"""
IEC 62056-21 mode C telegram structure and framing.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, List, Optional, Union
import logging
import time

from .lrc import compute_lrc


# Control characters
STX = 0x02
ETX = 0x03
ACK = 0x06
NACK = 0x15

CRLF = b"\r\n"

# ACK, protocol control '0', baud rate id '5' (9600), mode control '0' (readout)
HANDSHAKE_ACK = bytes([ACK]) + b"050"


def build_query(device_id: str = "") -> bytes:
    """Build the request message '/?<device address>!' without terminator."""
    return f"/?{device_id}!".encode("ascii")


def epoch_ms() -> int:
    return int(time.time() * 1000)


class FramerState(Enum):
    """Framer states for one poll cycle."""
    AWAITING_RESPONSE = auto()  # Query sent, waiting for identification
    ACCUMULATING = auto()       # Inside the data block
    FRAME_COMPLETE = auto()     # ETX + BCC seen


@dataclass
class HandshakeReceived:
    """Identification line '/XXXZ Ident' received from the device."""
    identification: str
    timestamp: int


@dataclass
class Telegram:
    """
    One reassembled data block.

    Structure on the wire:
    - STX
    - data lines, each terminated by CR LF
    - '!' CR LF
    - ETX
    - BCC (XOR of everything after STX up to and including ETX)

    `frame` holds the bytes covered by the BCC. `bcc` is None when the
    ETX line carried no block check character.
    """

    frame: bytes
    bcc: Optional[int]
    timestamp: Optional[int] = None

    @property
    def lrc(self) -> int:
        return compute_lrc(self.frame)

    @property
    def checksum_valid(self) -> bool:
        return self.lrc == self.bcc

    @staticmethod
    def _hex(value: Optional[int]) -> str:
        return "none" if value is None else f"0x{value:02X}"

    def __repr__(self) -> str:
        status = "✓" if self.checksum_valid else "✗"
        return (
            f"Telegram[{status}](len={len(self.frame)}, "
            f"bcc={self._hex(self.bcc)}, lrc={self._hex(self.lrc)}, ts={self.timestamp})"
        )


FramerEvent = Union[HandshakeReceived, Telegram]


class TelegramFramer:
    """
    Reassembles a mode C response from a character stream.

    Bytes are buffered until a full CR LF terminated line is available;
    each line is then dispatched on its first character.
    """

    def __init__(self, clock: Callable[[], int] = epoch_ms):
        self._clock = clock
        self._line_buffer = bytearray()
        self._frame_buffer = bytearray()
        self.state = FramerState.AWAITING_RESPONSE
        self.timestamp: Optional[int] = None
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet terminated by CR LF."""
        return bytes(self._line_buffer)

    @property
    def frame_buffer(self) -> bytes:
        return bytes(self._frame_buffer)

    def reset(self) -> None:
        """Clear all buffers for a new connection attempt."""
        self._line_buffer.clear()
        self._frame_buffer.clear()
        self.state = FramerState.AWAITING_RESPONSE
        self.timestamp = None

    def feed(self, data: bytes) -> List[FramerEvent]:
        """
        Feed raw bytes into the framer.

        Args:
            data: Raw bytes from the connection

        Returns:
            List of events produced by the complete lines in the buffer
        """
        self._line_buffer.extend(data)
        events = []

        while True:
            end = self._line_buffer.find(CRLF)
            if end < 0:
                break

            line = bytes(self._line_buffer[:end])
            del self._line_buffer[:end + len(CRLF)]

            event = self.push_line(line)
            if event is not None:
                events.append(event)

        # ETX is followed by the BCC only, never by CR LF
        if len(self._line_buffer) >= 2 and self._line_buffer[0] == ETX:
            line = bytes(self._line_buffer)
            self._line_buffer.clear()

            event = self.push_line(line)
            if event is not None:
                events.append(event)

        return events

    def push_line(self, line: bytes) -> Optional[FramerEvent]:
        """Process one physical line (without terminator)."""
        if not line:
            return None

        if self.state == FramerState.FRAME_COMPLETE:
            self._logger.debug(f"Ignoring line after frame end: {line!r}")
            return None

        first = line[0]

        if first == ord("/"):
            self.timestamp = self._clock()
            identification = line[1:].decode("latin-1")
            self._logger.debug(f"Identification: {identification}")
            return HandshakeReceived(identification, self.timestamp)

        if first == STX:
            self._frame_buffer.extend(line[1:])
            self._frame_buffer.extend(CRLF)
            self.state = FramerState.ACCUMULATING
            return None

        if first == ETX:
            self._frame_buffer.append(ETX)
            if len(line) < 2:
                self._logger.debug("ETX without block check character")
                bcc = None
            else:
                bcc = line[1]
            self.state = FramerState.FRAME_COMPLETE
            return Telegram(bytes(self._frame_buffer), bcc, self.timestamp)

        self._frame_buffer.extend(line)
        self._frame_buffer.extend(CRLF)
        self.state = FramerState.ACCUMULATING
        return None
