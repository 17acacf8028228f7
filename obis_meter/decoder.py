"""
Readout decoder: turns a checked data block into a measurement record.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Optional

from iec_core.lrc import compute_lrc
from iec_core.telegram import Telegram
from .obis import RecordField, extract_value, find_obis, get_obis_definition

END_MARKER = "!"
ETX_CHAR = "\x03"


@dataclass
class PhaseValues:
    unit: Optional[str] = None
    total: Optional[float] = None
    L1: Optional[float] = None
    L2: Optional[float] = None
    L3: Optional[float] = None


@dataclass
class PowerReading(PhaseValues):
    pass


@dataclass
class EnergyReading(PhaseValues):
    pass


@dataclass
class PhaseOutage:
    L1: bool = False
    L2: bool = False
    L3: bool = False


@dataclass
class MeterState:
    """Decoded meter status byte."""
    idle: bool = True
    outage: PhaseOutage = field(default_factory=PhaseOutage)
    error: bool = False

    @classmethod
    def from_status_byte(cls, byte: int) -> "MeterState":
        return cls(
            idle=not byte & (1 << 6),  # bit 6 set: above start-up
            outage=PhaseOutage(
                L1=bool(byte & (1 << 5)),
                L2=bool(byte & (1 << 4)),
                L3=bool(byte & (1 << 3)),
            ),
            error=bool(byte & (1 << 0)),
        )


@dataclass
class ChecksumInfo:
    bcc: Optional[int]
    lrc: int
    match: bool


@dataclass
class MeasurementRecord:
    ts: Optional[int]
    power: Optional[PowerReading] = None
    energy: Optional[EnergyReading] = None
    checksum: Optional[ChecksumInfo] = None
    state: Optional[MeterState] = None
    serial: Optional[str] = None
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Nested dict of the populated fields."""
        tree = _prune(asdict(self))
        tree.setdefault("ts", self.ts)
        return tree


def _prune(tree: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for key, value in tree.items():
        if isinstance(value, dict):
            value = _prune(value)
        if value is not None:
            result[key] = value
    return result


_CONTAINERS: Dict[str, Callable[[], Any]] = {
    "power": PowerReading,
    "energy": EnergyReading,
}


def set_field(record: MeasurementRecord, target: RecordField, value: Any) -> None:
    """Set a value at the field's path, creating intermediate containers."""
    node = record
    *parents, leaf = target.path

    for name in parents:
        child = getattr(node, name)
        if child is None:
            child = _CONTAINERS[name]()
            setattr(node, name, child)
        node = child

    setattr(node, leaf, value)


class ObisDecoder:
    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.logger = logging.getLogger(self.__class__.__name__)
        self.stats = {"total": 0, "decoded": 0, "checksum_errors": 0, "skipped_fields": 0}

    def decode(self, telegram: Telegram) -> Optional[MeasurementRecord]:
        return self.decode_frame(telegram.frame, telegram.bcc, telegram.timestamp)

    def decode_frame(self, frame: bytes, bcc: Optional[int],
                     timestamp: Optional[int] = None) -> Optional[MeasurementRecord]:
        """
        Decode one data block.

        Args:
            frame: Bytes after STX up to and including ETX
            bcc: Block check character received after ETX, None if missing
            timestamp: Epoch milliseconds of the identification line

        Returns:
            The record, or None when the checksum does not match
            (never None in verbose mode)
        """
        self.stats["total"] += 1
        lrc = compute_lrc(frame)

        if not self.verbose and lrc != bcc:
            self.stats["checksum_errors"] += 1
            self.logger.debug(f"Checksum mismatch: got {bcc!r}, expected {lrc!r}")
            return None

        record = MeasurementRecord(ts=timestamp)

        self._add(record, RecordField.CHECKSUM, True, ChecksumInfo(bcc=bcc, lrc=lrc, match=lrc == bcc))

        self._add(record, RecordField.POWER_UNIT, False, "kW")
        self._add(record, RecordField.ENERGY_UNIT, True, "kWh")

        for line in frame.decode("latin-1").split("\r\n"):
            self._decode_line(record, line)

        self.stats["decoded"] += 1
        return record

    def _decode_line(self, record: MeasurementRecord, line: str) -> None:
        obis = find_obis(line)

        if obis is None:
            # Anything that is not data or an end marker is the model string
            if line and line != END_MARKER and line != ETX_CHAR:
                self._add(record, RecordField.MODEL, True, line)
            return

        definition = get_obis_definition(obis)
        if definition is None:
            return

        value = extract_value(line)
        if value is None:
            self.stats["skipped_fields"] += 1
            self.logger.debug(f"No value for {obis}: {line!r}")
            return

        target = definition.field

        if target.leaf == "state":
            decoded = MeterState.from_status_byte(ord(value[0]))
        elif target.leaf == "serial":
            decoded = value
        else:
            try:
                decoded = float(value)
            except ValueError:
                self.stats["skipped_fields"] += 1
                self.logger.debug(f"Bad number for {obis}: {value!r}")
                return

        self._add(record, target, definition.verbose, decoded)

    def _add(self, record: MeasurementRecord, target: RecordField,
             verbose_only: bool, value: Any) -> None:
        if verbose_only and not self.verbose:
            return
        set_field(record, target, value)

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)


def decode_frame(frame: bytes, bcc: Optional[int], verbose: bool = False,
                 timestamp: Optional[int] = None) -> Optional[MeasurementRecord]:
    return ObisDecoder(verbose).decode_frame(frame, bcc, timestamp)
