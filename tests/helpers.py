"""Shared test helpers: readout builder and an in-memory connection."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from iec_core.connection import ConnectionParams, MeterConnection, TransportEvent
from iec_core.lrc import compute_lrc
from iec_core.telegram import CRLF, ETX, STX


IDENT_LINE = b"/ABC5METER-3PH\r\n"

DATA_LINES = [
    "ABC METER-3PH",
    "0-0:96.1.255*255(12345678)",
    "1-0:1.8.0*255(004512.345*kWh)",
    "1-0:2.1.7*255(001501.100*kWh)",
    "1-0:4.1.7*255(001502.200*kWh)",
    "1-0:6.1.7*255(001509.045*kWh)",
    "1-0:1.7.255*255(03.250*kW)",
    "1-0:21.7.255*255(01.100*kW)",
    "1-0:41.7.255*255(01.050*kW)",
    "1-0:61.7.255*255(01.100*kW)",
    "1-0:96.5.5*255(A)",
    "!",
]


def build_block(lines=DATA_LINES) -> bytes:
    """Bytes covered by the BCC: data lines, '!' and ETX."""
    return "".join(line + "\r\n" for line in lines).encode("latin-1") + bytes([ETX])


def build_readout(lines=DATA_LINES, bcc=None) -> bytes:
    """Complete device response as it appears on the wire."""
    block = build_block(lines)
    if bcc is None:
        bcc = compute_lrc(block)
    return IDENT_LINE + bytes([STX]) + block + bytes([bcc])


class FakeConnection(MeterConnection):
    """Connection driven by the test instead of a socket."""

    def __init__(self):
        super().__init__(ConnectionParams())
        self.sent = []
        self.connect_calls = 0
        self.destroy_calls = 0

    def connect(self, params=None):
        if params is not None:
            self.params = params
        self.connect_calls += 1
        self._closed = False

    def send(self, data, line_ending=CRLF):
        self.sent.append(data + line_ending)
        return True

    def destroy(self):
        self.destroy_calls += 1
        if self._closed:
            return
        self._closed = True
        self._connected = False
        self._emit(TransportEvent.CLOSE)

    # Test side

    def open(self):
        self._connected = True
        self._emit(TransportEvent.CONNECT)

    def deliver(self, data: bytes):
        self._emit(TransportEvent.DATA, data)

    def fire(self, event: TransportEvent, *args):
        self._emit(event, *args)

    async def _open(self):
        pass

    async def _read_chunk(self):
        return b""

    def _write(self, data):
        self.sent.append(data)

    def _close(self):
        pass


def split_chunks(data: bytes, size: int) -> list:
    """Split into consecutive chunks of `size`; the last one may be shorter."""
    return [data[i:i + size] for i in range(0, len(data), size)]


def lines_with_lrc(target: int, lines=DATA_LINES) -> list:
    """
    Copy of `lines` with a filler line inserted before '!' so that the
    block check character comes out as `target` (below 0x80).
    """
    for a in range(0x20, 0x7F):
        for b in range(0x20, 0x7F):
            candidate = list(lines[:-1]) + ["PAD" + chr(a) + chr(b)] + list(lines[-1:])
            if compute_lrc(build_block(candidate)) == target:
                return candidate
    raise ValueError(f"no filler line gives LRC 0x{target:02X}")
