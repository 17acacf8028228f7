"""OBIS meter readout: decoding and round-robin polling."""

from .obis import (
    OBIS_DEFINITIONS,
    ObisDefinition,
    RecordField,
    get_obis_definition,
)
from .decoder import (
    ChecksumInfo,
    EnergyReading,
    MeasurementRecord,
    MeterState,
    ObisDecoder,
    PhaseOutage,
    PowerReading,
    decode_frame,
)
from .config import ConfigError, ConfigLoader, PollerConfig
from .poller import PollerState, PollingController

__all__ = [
    "OBIS_DEFINITIONS",
    "ObisDefinition",
    "RecordField",
    "get_obis_definition",
    "ChecksumInfo",
    "EnergyReading",
    "MeasurementRecord",
    "MeterState",
    "ObisDecoder",
    "PhaseOutage",
    "PowerReading",
    "decode_frame",
    "ConfigError",
    "ConfigLoader",
    "PollerConfig",
    "PollerState",
    "PollingController",
]
