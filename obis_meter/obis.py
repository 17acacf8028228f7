"""
OBIS object definitions for the polled meters.
Maps the identifiers found in a readout to fields of the measurement record.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


# A-B:C.D.E*F
OBIS_PATTERN = re.compile(r"\d+-\d+:\d+\.\d+\.\d+\*\d+")

# Value is the first parenthesised token, unit follows after '*'
VALUE_PATTERN = re.compile(r"\(([^)]+?)[)*]")


class RecordField(Enum):
    """Every location a value can be written to in a measurement record."""
    CHECKSUM = ("checksum",)
    POWER_UNIT = ("power", "unit")
    POWER_TOTAL = ("power", "total")
    POWER_L1 = ("power", "L1")
    POWER_L2 = ("power", "L2")
    POWER_L3 = ("power", "L3")
    ENERGY_UNIT = ("energy", "unit")
    ENERGY_TOTAL = ("energy", "total")
    ENERGY_L1 = ("energy", "L1")
    ENERGY_L2 = ("energy", "L2")
    ENERGY_L3 = ("energy", "L3")
    STATE = ("state",)
    SERIAL = ("serial",)
    MODEL = ("model",)

    @property
    def path(self) -> Tuple[str, ...]:
        return self.value

    @property
    def leaf(self) -> str:
        return self.value[-1]


@dataclass(frozen=True)
class ObisDefinition:
    obis: str
    field: RecordField
    verbose: bool = False
    description: str = ""


OBIS_DEFINITIONS = [
    # 1-0:0.0.0*255 (property number) is never used
    ObisDefinition("1-0:1.8.0*255", RecordField.ENERGY_TOTAL, True, "Active energy import, total"),
    ObisDefinition("1-0:2.1.7*255", RecordField.ENERGY_L1, True, "Active energy, phase L1"),
    ObisDefinition("1-0:4.1.7*255", RecordField.ENERGY_L2, True, "Active energy, phase L2"),
    ObisDefinition("1-0:6.1.7*255", RecordField.ENERGY_L3, True, "Active energy, phase L3"),
    ObisDefinition("1-0:21.7.255*255", RecordField.POWER_L1, False, "Active power, phase L1"),
    ObisDefinition("1-0:41.7.255*255", RecordField.POWER_L2, False, "Active power, phase L2"),
    ObisDefinition("1-0:61.7.255*255", RecordField.POWER_L3, False, "Active power, phase L3"),
    ObisDefinition("1-0:1.7.255*255", RecordField.POWER_TOTAL, True, "Active power, total"),
    ObisDefinition("1-0:96.5.5*255", RecordField.STATE, True, "Meter status byte"),
    ObisDefinition("0-0:96.1.255*255", RecordField.SERIAL, False, "Meter serial number"),
]

OBIS_MAP: Dict[str, ObisDefinition] = {d.obis: d for d in OBIS_DEFINITIONS}


def get_obis_definition(obis: str) -> Optional[ObisDefinition]:
    return OBIS_MAP.get(obis)


def find_obis(line: str) -> Optional[str]:
    """Return the first OBIS identifier in a data line."""
    m = OBIS_PATTERN.search(line)
    return m.group(0) if m else None


def extract_value(line: str) -> Optional[str]:
    """Return the text inside the first parenthesis pair, stopping at ')' or '*'."""
    m = VALUE_PATTERN.search(line)
    return m.group(1) if m else None
