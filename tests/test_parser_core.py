"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

from datetime import datetime

import pytest
from conftest import EXTRA_FILES, smaps_text, stat_text, usage_text

from endurance_analyzer import parser_core as Parser
from endurance_analyzer.common_types import RoundParseError
from endurance_analyzer.snapshot_reader import SnapshotReader


# ============================================================================
# usage.csv
# ============================================================================

def test_split_sections():
    header, sections = Parser.split_sections(usage_text(1000.0))
    assert [line for _, line in header] == ["date = 2026-03-01 10:00:00", "SW-version = build-1.2.3"]
    assert set(sections) == {"/proc/uptime", "/proc/loadavg", "/proc/meminfo",
                             "Process status", "Process FD count"}
    lineno, line = sections["/proc/uptime"][0]
    assert line.startswith("1000.00")
    assert lineno == 5


def test_parse_usage():
    usage, issues = Parser.parse_usage(usage_text(1234.5, scale=2))
    assert issues == []
    assert usage["uptime"] == 1234.5
    assert usage["date"] == datetime(2026, 3, 1, 10, 0, 0)
    assert usage["metadata"]["SW-version"] == "build-1.2.3"
    assert usage["counters"]["meminfo"]["MemFree"] == 510000
    assert usage["counters"]["loadavg"] == {"load1": 0.52, "load5": 0.4, "load15": 0.3}

    processes = usage["tables"]["processes"]
    assert set(processes) == {"1", "100"}
    assert processes["100"]["Name"] == "daemon"
    assert processes["100"]["VmRSS"] == 5320
    assert processes["100"]["Threads"] == 6


def test_fd_count_keeps_commas_in_command_line():
    usage, _ = Parser.parse_usage(usage_text(1.0))
    assert usage["tables"]["fds"]["100"] == {"count": 25, "cmdline": "/usr/bin/daemon --opt=a,b"}


def test_malformed_lines_are_recorded_not_fatal():
    """单行错误只记录为 ParseIssue，其余内容照常解析。"""
    text = usage_text(10.0).replace(
        "1,init,2048,1024,0,1,64\n", "1,init,2048\n"
    ).replace("Buffers:           10240 kB\n", "Buffers: lots\n")
    usage, issues = Parser.parse_usage(text)
    assert set(usage["tables"]["processes"]) == {"100"}
    assert "Buffers" not in usage["counters"]["meminfo"]
    assert len(issues) == 2
    assert all(issue.filename == "usage.csv" for issue in issues)
    assert {issue.line for issue in issues} == {"1,init,2048", "Buffers: lots"}


def test_unbalanced_quote_only_drops_its_own_line():
    text = usage_text(10.0).replace("1,init,2048,1024,0,1,64\n", "1,\"init,2048,1024,0,1,64\n")
    usage, issues = Parser.parse_usage(text)
    assert set(usage["tables"]["processes"]) == {"100"}
    assert len(issues) == 1
    assert issues[0].line == "1,\"init,2048,1024,0,1,64"
    assert usage["tables"]["fds"]["100"]["count"] == 25


def test_missing_numeric_process_fields_default_to_zero():
    text = "Process status:\nPid,Name,VmRSS,Threads\n7,worker,,2\n"
    usage, _ = Parser.parse_usage(text)
    record = usage["tables"]["processes"]["7"]
    assert record["VmRSS"] == 0
    assert record["VmSwap"] == 0
    assert record["Threads"] == 2


def test_unparseable_date():
    usage, issues = Parser.parse_usage("date = someday\n")
    assert usage["date"] is None
    assert issues[0].reason == "无法解析日期"


@pytest.mark.parametrize("text,expected", [
    ("42", 42),
    ("1234 kB", 1234),
    ("0.50", 0.5),
    ("n/a", None),
])
def test_to_number(text, expected):
    assert Parser.to_number(text) == expected


# ============================================================================
# 可选文件
# ============================================================================

def test_parse_smaps_sums_fields_per_process():
    table, issues = Parser.parse_smaps(smaps_text(scale=1))
    assert issues == []
    proc = table["100"]
    assert proc["name"] == "daemon"
    assert proc["mappings"] == 2
    assert proc["Pss"] == 614
    assert proc["Private_Dirty"] == 254
    assert proc["Swap"] == 16


def test_parse_smaps_rejects_lines_outside_process_block():
    _, issues = Parser.parse_smaps("Rss: 4 kB\n")
    assert len(issues) == 1


def test_parse_stat():
    (cpus, counters), issues = Parser.parse_stat(stat_text())
    assert issues == []
    assert set(cpus) == {"cpu", "cpu0"}
    assert cpus["cpu"]["user"] == 100
    assert cpus["cpu"]["idle"] == 1000
    assert counters["ctxt"] == 50000
    assert counters["intr"] == 12345
    assert counters["processes"] == 300


def test_parse_vmstat():
    counters, issues = Parser.parse_name_value(EXTRA_FILES["vmstat"](3), "vmstat")
    assert issues == []
    assert counters == {"pgmajfault": 13, "pswpin": 0, "pswpout": 3, "oom_kill": 0}


def test_parse_slabinfo():
    table, issues = Parser.parse_slabinfo(EXTRA_FILES["slabinfo"](0))
    assert issues == []
    assert table["kmalloc-64"]["size_kb"] == 64.0
    assert table["dentry"]["num_objs"] == 512


def test_parse_diskstats():
    table, issues = Parser.parse_diskstats(EXTRA_FILES["diskstats"](0) + "8 1 sda1 1 2\n")
    assert set(table) == {"sda"}
    assert table["sda"]["sectors_read"] == 2000
    assert table["sda"]["sectors_written"] == 4000
    assert len(issues) == 1


def test_parse_net_dev():
    table, issues = Parser.parse_net_dev(EXTRA_FILES["net_dev"](0))
    assert issues == []
    assert table["eth0"]["rx_bytes"] == 50000
    assert table["eth0"]["tx_bytes"] == 20000
    assert "lo" in table


def test_parse_release_and_component_version():
    release, _ = Parser.parse_os_release(EXTRA_FILES["release"](0))
    assert release["PRETTY_NAME"] == "Endurance Linux 1.0"
    component, _ = Parser.parse_component_version(EXTRA_FILES["component_version"](0))
    assert component == {"product": "devkit", "hw-build": "B2"}


def test_parse_steps():
    assert Parser.parse_steps("boot\n\n  play video  \n") == ("boot", "play video")


# ============================================================================
# 整个轮次
# ============================================================================

def test_parse_round(make_round):
    path = make_round("003", 1500.0, scale=1, step="suspend\nresume\n", compress="gz")
    rnd = Parser.parse_round(SnapshotReader(str(path)))
    assert rnd.dirname == "003"
    assert rnd.uptime == 1500.0
    assert rnd.step == ("suspend", "resume")
    assert rnd.metadata["product"] == "devkit"
    assert rnd.metadata["PRETTY_NAME"] == "Endurance Linux 1.0"
    assert rnd.counter("vmstat", "pgmajfault") == 11
    assert rnd.counter("stat", "ctxt") == 55000
    assert rnd.counter("vmstat", "missing", 0) == 0
    assert set(rnd.tables) >= {"processes", "fds", "smaps", "cpu", "slabinfo", "diskstats", "net_dev"}
    assert rnd.issues == ()


def test_parse_round_without_optional_files(make_round):
    rnd = Parser.parse_round(SnapshotReader(str(make_round("000", 5.0, extras=False))))
    assert rnd.step is None
    assert rnd.table("slabinfo") == {}
    assert "stat" not in rnd.counters


def test_parse_round_requires_usage(tmp_path):
    (tmp_path / "stat").write_text(stat_text())
    with pytest.raises(RoundParseError) as excinfo:
        Parser.parse_round(SnapshotReader(str(tmp_path)))
    assert excinfo.value.filename == "usage.csv"
