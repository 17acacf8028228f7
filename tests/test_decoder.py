#!/usr/bin/env python3
"""Tests for the OBIS decoder."""

import copy
import sys
from dataclasses import asdict
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from iec_core.lrc import compute_lrc
from obis_meter.decoder import MeterState, ObisDecoder, decode_frame
from obis_meter.obis import OBIS_DEFINITIONS, RecordField, get_obis_definition
from helpers import build_block

TS = 1700000000000


def decode(lines, verbose=False, bcc=None):
    block = build_block(lines)
    if bcc is None:
        bcc = compute_lrc(block)
    return decode_frame(block, bcc, verbose, TS)


def verbose_base(block):
    lrc = compute_lrc(block)
    return {
        "ts": TS,
        "checksum": {"bcc": lrc, "lrc": lrc, "match": True},
        "power": {"unit": "kW"},
        "energy": {"unit": "kWh"},
    }


def test_full_readout_verbose():
    record = decode([
        "ABC METER-3PH",
        "0-0:96.1.255*255(12345678)",
        "1-0:1.8.0*255(004512.345*kWh)",
        "1-0:21.7.255*255(01.100*kW)",
        "1-0:41.7.255*255(01.050*kW)",
        "1-0:61.7.255*255(01.100*kW)",
        "1-0:1.7.255*255(03.250*kW)",
        "1-0:96.5.5*255(A)",
        "!",
    ], verbose=True)

    assert record.ts == TS
    assert record.checksum.match
    assert record.serial == "12345678"
    assert record.model == "ABC METER-3PH"
    assert record.power.unit == "kW"
    assert record.power.total == 3.25
    assert record.power.L1 == 1.1
    assert record.power.L2 == 1.05
    assert record.power.L3 == 1.1
    assert record.energy.unit == "kWh"
    assert record.energy.total == 4512.345
    assert record.state == MeterState.from_status_byte(0x41)


def test_non_verbose_skips_verbose_fields():
    record = decode([
        "ABC METER-3PH",
        "0-0:96.1.255*255(12345678)",
        "1-0:1.8.0*255(004512.345*kWh)",
        "1-0:21.7.255*255(01.100*kW)",
        "1-0:1.7.255*255(03.250*kW)",
        "1-0:96.5.5*255(A)",
        "!",
    ])

    assert record.to_dict() == {
        "ts": TS,
        "power": {"unit": "kW", "L1": 1.1},
        "serial": "12345678",
    }


def test_mapping_completeness():
    """Each identifier fills exactly its own path."""
    samples = {"state": "A", "serial": "12345678"}

    for definition in OBIS_DEFINITIONS:
        leaf = definition.field.leaf
        raw = samples.get(leaf, "12.5")
        lines = [f"{definition.obis}({raw}*kW)", "!"]
        block = build_block(lines)

        record = decode(lines, verbose=True)

        if leaf == "state":
            value = asdict(MeterState.from_status_byte(ord("A")))
        elif leaf == "serial":
            value = "12345678"
        else:
            value = 12.5

        expected = copy.deepcopy(verbose_base(block))
        node = expected
        *parents, leaf_name = definition.field.path
        for name in parents:
            node = node.setdefault(name, {})
        node[leaf_name] = value

        assert record.to_dict() == expected, definition.obis


def test_mapping_table_contents():
    assert len(OBIS_DEFINITIONS) == 10
    assert get_obis_definition("1-0:21.7.255*255").field == RecordField.POWER_L1
    assert not get_obis_definition("1-0:21.7.255*255").verbose
    assert get_obis_definition("1-0:1.7.255*255").verbose
    assert get_obis_definition("0-0:96.1.255*255").field == RecordField.SERIAL
    assert get_obis_definition("1-0:0.0.0*255") is None


def test_state_decoding():
    state = MeterState.from_status_byte(0b01000001)
    assert asdict(state) == {
        "idle": False,
        "outage": {"L1": False, "L2": False, "L3": False},
        "error": True,
    }

    state = MeterState.from_status_byte(0b00000000)
    assert asdict(state) == {
        "idle": True,
        "outage": {"L1": False, "L2": False, "L3": False},
        "error": False,
    }

    state = MeterState.from_status_byte(0b00101000)
    assert state.outage.L1 and not state.outage.L2 and state.outage.L3


def test_state_from_readout():
    record = decode(["1-0:96.5.5*255(\x00)", "!"], verbose=True)
    assert record.state.idle
    assert not record.state.error


def test_checksum_mismatch_dropped():
    block = build_block(["1-0:21.7.255*255(01.100*kW)", "!"])
    wrong = compute_lrc(block) ^ 0xFF

    decoder = ObisDecoder(verbose=False)
    assert decoder.decode_frame(block, wrong, TS) is None
    assert decoder.get_stats()["checksum_errors"] == 1
    assert decoder.get_stats()["decoded"] == 0


def test_checksum_mismatch_verbose():
    block = build_block(["1-0:21.7.255*255(01.100*kW)", "!"])
    lrc = compute_lrc(block)

    record = decode_frame(block, lrc ^ 0xFF, True, TS)
    assert record.checksum.match is False
    assert record.checksum.bcc == lrc ^ 0xFF
    assert record.checksum.lrc == lrc
    assert record.power.L1 == 1.1


def test_missing_bcc_verbose():
    block = build_block(["1-0:21.7.255*255(01.100*kW)", "!"])

    record = decode_frame(block, None, True, TS)
    assert record.checksum.bcc is None
    assert record.checksum.match is False
    assert record.checksum.lrc == compute_lrc(block)
    assert "bcc" not in record.to_dict()["checksum"]


def test_missing_bcc_dropped():
    block = build_block(["1-0:21.7.255*255(01.100*kW)", "!"])
    assert decode_frame(block, None, False, TS) is None


def test_checksum_match_verbose():
    record = decode(["!"], verbose=True)
    assert record.checksum.match is True


def test_malformed_fields_ignored():
    decoder = ObisDecoder(verbose=True)
    lines = [
        "1-0:21.7.255*255(abc*kW)",
        "1-0:41.7.255*255",
        "1-0:61.7.255*255(01.100*kW)",
        "!",
    ]
    block = build_block(lines)
    record = decoder.decode_frame(block, compute_lrc(block), TS)

    assert record.power.L1 is None
    assert record.power.L2 is None
    assert record.power.L3 == 1.1
    assert decoder.get_stats()["skipped_fields"] == 2


def test_unknown_obis_ignored():
    record = decode(["1-0:32.7.0*255(230.1*V)", "!"], verbose=True)
    assert record.model is None
    assert record.to_dict()["power"] == {"unit": "kW"}


def test_model_last_line_wins():
    record = decode(["FIRST", "SECOND", "!"], verbose=True)
    assert record.model == "SECOND"


def test_value_stops_at_unit_separator():
    record = decode(["0-0:96.1.255*255(ABC123*xyz)", "!"])
    assert record.serial == "ABC123"


def test_energy_absent_without_verbose():
    record = decode(["1-0:1.8.0*255(004512.345*kWh)", "!"])
    assert record.energy is None
    assert "energy" not in record.to_dict()
