"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

import logging

import pytest

from endurance_analyzer.common_types import FatalError, InsufficientRoundsError, Round
from endurance_analyzer.masterdb import MasterDB, escape_label


def make(dirname: str, uptime: float, metadata: dict | None = None, **kwargs) -> Round:
    return Round(dirname=dirname, path=f"/data/{dirname}", date=None, uptime=uptime,
                 metadata=metadata or {}, **kwargs)


# ============================================================================
# 构造
# ============================================================================

@pytest.mark.parametrize("count", [0, 1])
def test_fewer_than_two_rounds_is_fatal(count):
    rounds = [make(f"{i:03d}", 10.0 * (i + 1)) for i in range(count)]
    with pytest.raises(InsufficientRoundsError) as excinfo:
        MasterDB(rounds)
    assert isinstance(excinfo.value, FatalError)
    assert excinfo.value.count == count


def test_sequence_access_keeps_caller_order():
    db = MasterDB([make("002", 10.0), make("001", 20.0), make("003", 30.0)])
    assert len(db) == 3
    assert db.dirnames() == ["002", "001", "003"]
    assert [r.dirname for r in db] == db.dirnames()
    assert db[-1].dirname == "003"


# ============================================================================
# 时长、间隔与重启
# ============================================================================

def test_duration_and_interval_stats():
    db = MasterDB([make("000", 1000.0), make("001", 1500.0)])
    assert db.duration() == 500.0
    assert db.duration_note() is None
    stats = db.interval_stats()
    assert (stats.avg, stats.min, stats.max) == (500.0, 500.0, 500.0)
    assert db.reboots == ()


def test_interval_stats_with_three_rounds():
    db = MasterDB([make("000", 100.0), make("001", 400.0), make("002", 500.0)])
    stats = db.interval_stats()
    assert stats.avg == 200.0
    assert stats.min == 100.0
    assert stats.max == 300.0


def test_reboot_is_reported_with_directory_name(caplog):
    with caplog.at_level(logging.WARNING):
        db = MasterDB([make("000", 1000.0), make("001", 50.0), make("002", 600.0)])
    assert db.reboot_indices == (1,)
    assert db.reboots[0].dirname == "001"
    assert any("001" in record.getMessage() for record in caplog.records)


def test_equal_uptime_counts_as_reboot():
    db = MasterDB([make("000", 300.0), make("001", 300.0)])
    assert db.reboot_indices == (1,)


def test_negative_duration_gets_a_note():
    db = MasterDB([make("000", 1000.0), make("001", 50.0), make("002", 600.0)])
    assert db.duration() == -400.0
    note = db.duration_note()
    assert note is not None
    assert "002" in note and "000" in note


# ============================================================================
# 元数据
# ============================================================================

def test_metadata_lookup_uses_first_round_with_key():
    db = MasterDB([make("000", 1.0), make("001", 2.0, {"product": "devkit"})])
    assert db.metadata_lookup("product") == "devkit"
    assert db.metadata_lookup("absent") is None


def test_metadata_lookup_truncates_and_escapes():
    db = MasterDB([make("000", 1.0, {"note": 'say "hi"\nbye'}), make("001", 2.0)])
    assert db.metadata_lookup("note") == 'say \\"hi\\"\\nbye'
    assert db.metadata_lookup("note", max_bytes=3) == "say"


def test_escape_label_never_splits_a_character():
    assert escape_label("éé", 3) == "é"


def test_software_version_is_deduplicated():
    meta = {"SW-version": "build-1.2.3", "PRETTY_NAME": "Endurance Linux 1.0"}
    db = MasterDB([make("000", 1.0, meta), make("001", 2.0, meta),
                   make("002", 3.0, {"SW-version": "build-1.2.4"})])
    assert db.software_version() == "build-1.2.3, Endurance Linux 1.0, build-1.2.4"


def test_hardware_identity():
    db = MasterDB([make("000", 1.0, {"product": "devkit", "hw-build": "B2"}),
                   make("001", 2.0, {"product": "devkit", "hw-build": "B2"})])
    assert db.hardware_identity() == "devkit B2"


# ============================================================================
# 序列与差值
# ============================================================================

def test_deltas_are_none_across_reboot_and_counter_wrap():
    counters = [{"stat": {"ctxt": v}} for v in (100, 200, 50, 40)]
    db = MasterDB([
        make("000", 10.0, counters=counters[0]),
        make("001", 20.0, counters=counters[1]),
        make("002", 5.0, counters=counters[2]),
        make("003", 15.0, counters=counters[3]),
    ])
    assert db.counter_deltas("stat", "ctxt") == [None, 100, None, None]
    assert db.counter_rates("stat", "ctxt") == [None, 10.0, None, None]


def test_table_series_fills_missing_keys_with_none():
    db = MasterDB([
        make("000", 1.0, tables={"processes": {"7": {"VmRSS": 100, "Name": "a"}}}),
        make("001", 2.0, tables={"processes": {"8": {"VmRSS": 300, "Name": "b"}}}),
    ])
    assert db.table_keys("processes") == ["7", "8"]
    assert db.table_series("processes", "7", "VmRSS") == [100, None]
    assert db.table_value("processes", "8", "Name") == "b"
