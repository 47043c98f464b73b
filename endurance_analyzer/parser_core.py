"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# parser_core.py
import csv
import logging
import re
from datetime import datetime
from typing import Any

from endurance_analyzer.common_types import ParseIssue, Round, RoundParseError, Table
from endurance_analyzer.snapshot_reader import USAGE_FILE, SnapshotReader

logger = logging.getLogger(__name__)

# 用于解析快照文件的常量
DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%a %b %d %H:%M:%S %Y")
PROCESS_NUMERIC_DEFAULTS = ("VmSize", "VmRSS", "VmSwap", "Threads", "FDSize")
SMAPS_FIELDS = (
    "Size", "Rss", "Pss", "Shared_Clean", "Shared_Dirty",
    "Private_Clean", "Private_Dirty", "Swap",
)
CPU_FIELDS = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")
STAT_COUNTERS = ("ctxt", "processes", "btime", "procs_running", "procs_blocked")
DISKSTATS_FIELDS = (
    "reads_completed", "reads_merged", "sectors_read", "ms_reading",
    "writes_completed", "writes_merged", "sectors_written", "ms_writing",
    "io_in_progress", "ms_io", "weighted_ms_io",
)
NET_DEV_FIELDS = (
    "rx_bytes", "rx_packets", "rx_errs", "rx_drop", "rx_fifo", "rx_frame", "rx_compressed", "rx_multicast",
    "tx_bytes", "tx_packets", "tx_errs", "tx_drop", "tx_fifo", "tx_colls", "tx_carrier", "tx_compressed",
)

SMAPS_HEADER_RE = re.compile(r"^==> /proc/(\d+)/smaps <==$")
SMAPS_MAPPING_RE = re.compile(r"^[0-9a-fA-F]+-[0-9a-fA-F]+\s+[rwxsp-]{4}\s")
SMAPS_FIELD_RE = re.compile(r"^(\w+):\s+(\d+)(?:\s+kB)?$")
KV_COLON_RE = re.compile(r"^([^\s:]+):\s*(-?\d+)(?:\s+kB)?\s*$")


def to_number(text: str) -> int | float | None:
    """将 "1234", "1234 kB", "0.50" 等转换为数字，失败返回 None。"""
    text = text.strip()
    if text.endswith(" kB"):
        text = text[:-3].strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def _issue(filename: str, lineno: int, line: str, reason: str) -> ParseIssue:
    return ParseIssue(filename, lineno, line.rstrip("\n")[:200], reason)


def parse_date(text: str) -> datetime | None:
    text = text.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


# --- usage.csv ---

def split_sections(text: str) -> tuple[list[tuple[int, str]], dict[str, list[tuple[int, str]]]]:
    """
    将 usage.csv 拆分为头部行和各个小节。
    小节以一个以 ':' 结尾的标题行开始，以空行结束。
    Returns:
        (头部行列表, {小节标题: 行列表})，行均带有 1 起始的行号。
    """
    header: list[tuple[int, str]] = []
    sections: dict[str, list[tuple[int, str]]] = {}
    current: list[tuple[int, str]] | None = None
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip()
        if not line:
            current = None
            continue
        if current is None and line.endswith(":") and " = " not in line:
            current = sections.setdefault(line[:-1].strip(), [])
            continue
        if current is None:
            header.append((lineno, line))
        else:
            current.append((lineno, line))
    return header, sections


def parse_usage_header(lines: list[tuple[int, str]], filename: str = USAGE_FILE) -> tuple[dict[str, str], list[ParseIssue]]:
    """解析 `key = value` 形式的头部。"""
    metadata: dict[str, str] = {}
    issues = []
    for lineno, line in lines:
        key, sep, value = line.partition("=")
        if not sep or not key.strip():
            issues.append(_issue(filename, lineno, line, "头部行不是 key = value 格式"))
            continue
        metadata[key.strip()] = value.strip()
    return metadata, issues


def parse_uptime(lines: list[tuple[int, str]], filename: str = USAGE_FILE) -> tuple[float, list[ParseIssue]]:
    """/proc/uptime: 第一个字段为开机以来的秒数。"""
    issues = []
    for lineno, line in lines:
        fields = line.split()
        value = to_number(fields[0]) if fields else None
        if value is None:
            issues.append(_issue(filename, lineno, line, "无法解析 uptime"))
            continue
        return float(value), issues
    return 0.0, issues


def parse_loadavg(lines: list[tuple[int, str]], filename: str = USAGE_FILE) -> tuple[dict[str, float], list[ParseIssue]]:
    issues = []
    for lineno, line in lines:
        fields = line.split()
        values = [to_number(f) for f in fields[:3]]
        if len(values) < 3 or any(v is None for v in values):
            issues.append(_issue(filename, lineno, line, "无法解析 loadavg"))
            continue
        return {"load1": values[0], "load5": values[1], "load15": values[2]}, issues
    return {}, issues


def parse_colon_counters(lines: list[tuple[int, str]], filename: str) -> tuple[dict[str, float], list[ParseIssue]]:
    """`Key: N kB` 形式的计数器 (如 /proc/meminfo)。"""
    counters: dict[str, float] = {}
    issues = []
    for lineno, line in lines:
        match = KV_COLON_RE.match(line.strip())
        if not match:
            issues.append(_issue(filename, lineno, line, "不是 Key: 数值 格式"))
            continue
        counters[match.group(1)] = int(match.group(2))
    return counters, issues


def _csv_row(line: str) -> list[str]:
    return next(csv.reader([line], strict=True), [])


def parse_csv_table(
    lines: list[tuple[int, str]],
    filename: str,
    key_field: str,
    numeric_defaults: tuple[str, ...] = (),
) -> tuple[Table, list[ParseIssue]]:
    """
    解析带表头的 CSV 小节，按 key_field 建立索引。
    能转换为数字的字段保存为数字，其余保持字符串；字段数不匹配的行被跳过。
    """
    issues = []
    table: Table = {}
    if not lines:
        return table, issues
    try:
        header = [h.strip() for h in _csv_row(lines[0][1])]
    except csv.Error as e:
        issues.append(_issue(filename, lines[0][0], lines[0][1], f"CSV 格式错误: {e}"))
        return table, issues
    if key_field not in header:
        issues.append(_issue(filename, lines[0][0], lines[0][1], f"表头缺少 {key_field} 字段"))
        return table, issues
    # 逐行解析，未闭合的引号不能吞掉后续行
    for lineno, line in lines[1:]:
        try:
            row = _csv_row(line)
        except csv.Error as e:
            issues.append(_issue(filename, lineno, line, f"CSV 格式错误: {e}"))
            continue
        if len(row) != len(header):
            issues.append(_issue(filename, lineno, line, f"字段数 {len(row)} 与表头 {len(header)} 不符"))
            continue
        record: dict[str, Any] = {}
        for name, raw in zip(header, row):
            value = to_number(raw)
            record[name] = raw.strip() if value is None else value
        for name in numeric_defaults:
            if not isinstance(record.get(name), (int, float)):
                record[name] = 0
        table[str(record[key_field])] = record
    return table, issues


def parse_usage(text: str, filename: str = USAGE_FILE) -> tuple[dict[str, Any], list[ParseIssue]]:
    """
    解析必需的 usage.csv 文件。
    Returns:
        ({"metadata", "date", "uptime", "counters", "tables"}, 跳过的行)
    """
    header, sections = split_sections(text)
    metadata, issues = parse_usage_header(header, filename)

    date = None
    if "date" in metadata:
        date = parse_date(metadata["date"])
        if date is None:
            issues.append(ParseIssue(filename, 0, metadata["date"], "无法解析日期"))

    uptime, found = parse_uptime(sections.get("/proc/uptime", []), filename)
    issues.extend(found)
    loadavg, found = parse_loadavg(sections.get("/proc/loadavg", []), filename)
    issues.extend(found)
    meminfo, found = parse_colon_counters(sections.get("/proc/meminfo", []), filename)
    issues.extend(found)
    processes, found = parse_csv_table(
        sections.get("Process status", []), filename, "Pid", PROCESS_NUMERIC_DEFAULTS)
    issues.extend(found)
    fds, found = parse_fd_counts(sections.get("Process FD count", []), filename)
    issues.extend(found)

    counters = {}
    if meminfo:
        counters["meminfo"] = meminfo
    if loadavg:
        counters["loadavg"] = loadavg
    tables = {}
    if processes:
        tables["processes"] = processes
    if fds:
        tables["fds"] = fds
    return {
        "metadata": metadata,
        "date": date,
        "uptime": uptime,
        "counters": counters,
        "tables": tables,
    }, issues


def parse_fd_counts(lines: list[tuple[int, str]], filename: str = USAGE_FILE) -> tuple[Table, list[ParseIssue]]:
    """`PID,FD count,Command line`，命令行中可能含有逗号，只切分前两个字段。"""
    table: Table = {}
    issues = []
    for lineno, line in lines[1:]:
        fields = line.split(",", 2)
        pid = to_number(fields[0]) if fields else None
        count = to_number(fields[1]) if len(fields) > 1 else None
        if pid is None or count is None:
            issues.append(_issue(filename, lineno, line, "无法解析 FD 计数"))
            continue
        table[str(pid)] = {"count": count, "cmdline": fields[2].strip() if len(fields) > 2 else ""}
    return table, issues


# --- 其他可选文件 ---

def parse_smaps(text: str, filename: str = "smaps.cap") -> tuple[Table, list[ParseIssue]]:
    """
    解析 smaps.cap：多个 /proc/<pid>/smaps 的拼接，汇总为每个进程的各字段总量 (kB)。
    """
    table: Table = {}
    issues = []
    current: dict[str, Any] | None = None
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        match = SMAPS_HEADER_RE.match(line)
        if match:
            pid = match.group(1)
            current = table.setdefault(pid, {"name": "", "mappings": 0, **{f: 0 for f in SMAPS_FIELDS}})
            continue
        if current is None:
            issues.append(_issue(filename, lineno, line, "进程块之外的行"))
            continue
        if line.startswith("#Name:"):
            current["name"] = line[len("#Name:"):].strip()
        elif line.startswith("#"):
            continue
        elif SMAPS_MAPPING_RE.match(line):
            current["mappings"] += 1
        elif line.startswith("VmFlags:"):
            continue
        else:
            match = SMAPS_FIELD_RE.match(line)
            if not match:
                issues.append(_issue(filename, lineno, line, "无法识别的 smaps 行"))
                continue
            if match.group(1) in SMAPS_FIELDS:
                current[match.group(1)] += int(match.group(2))
    return table, issues


def parse_stat(text: str, filename: str = "stat") -> tuple[tuple[Table, dict[str, float]], list[ParseIssue]]:
    """/proc/stat: cpu 行组成 cpu 表，其余为计数器。"""
    cpus: Table = {}
    counters: dict[str, float] = {}
    issues = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        fields = line.split()
        if not fields:
            continue
        name = fields[0]
        if name.startswith("cpu"):
            values = [to_number(f) for f in fields[1:len(CPU_FIELDS) + 1]]
            if len(values) < 4 or any(v is None for v in values):
                issues.append(_issue(filename, lineno, line, "无法解析 cpu 行"))
                continue
            record = dict.fromkeys(CPU_FIELDS, 0)
            record.update(zip(CPU_FIELDS, values))
            cpus[name] = record
        elif name in STAT_COUNTERS or name == "intr":
            value = to_number(fields[1]) if len(fields) > 1 else None
            if value is None:
                issues.append(_issue(filename, lineno, line, f"无法解析计数器 {name}"))
                continue
            counters[name] = value
    return (cpus, counters), issues


def parse_name_value(text: str, filename: str) -> tuple[dict[str, float], list[ParseIssue]]:
    """`name value` 形式 (如 /proc/vmstat)。"""
    counters: dict[str, float] = {}
    issues = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        fields = line.split()
        if not fields:
            continue
        value = to_number(fields[1]) if len(fields) == 2 else None
        if value is None:
            issues.append(_issue(filename, lineno, line, "不是 name value 格式"))
            continue
        counters[fields[0]] = value
    return counters, issues


def parse_slabinfo(text: str, filename: str = "slabinfo") -> tuple[Table, list[ParseIssue]]:
    table: Table = {}
    issues = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip() or line.startswith("slabinfo -") or line.startswith("#"):
            continue
        fields = line.split()
        values = [to_number(f) for f in fields[1:6]]
        if len(values) < 5 or any(v is None for v in values):
            issues.append(_issue(filename, lineno, line, "无法解析 slab 行"))
            continue
        active_objs, num_objs, objsize, objperslab, pagesperslab = values
        table[fields[0]] = {
            "active_objs": active_objs,
            "num_objs": num_objs,
            "objsize": objsize,
            "objperslab": objperslab,
            "pagesperslab": pagesperslab,
            "size_kb": num_objs * objsize / 1024,
        }
    return table, issues


def parse_diskstats(text: str, filename: str = "diskstats") -> tuple[Table, list[ParseIssue]]:
    table: Table = {}
    issues = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        fields = line.split()
        if not fields:
            continue
        values = [to_number(f) for f in fields[3:3 + len(DISKSTATS_FIELDS)]]
        if len(fields) < 14 or any(v is None for v in values):
            issues.append(_issue(filename, lineno, line, "diskstats 字段不足"))
            continue
        table[fields[2]] = dict(zip(DISKSTATS_FIELDS, values))
    return table, issues


def parse_net_dev(text: str, filename: str = "net_dev") -> tuple[Table, list[ParseIssue]]:
    table: Table = {}
    issues = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip() or "|" in line:
            continue
        name, sep, rest = line.partition(":")
        values = [to_number(f) for f in rest.split()]
        if not sep or len(values) < len(NET_DEV_FIELDS) or any(v is None for v in values):
            issues.append(_issue(filename, lineno, line, "无法解析网络接口行"))
            continue
        table[name.strip()] = dict(zip(NET_DEV_FIELDS, values))
    return table, issues


def parse_os_release(text: str, filename: str = "release") -> tuple[dict[str, str], list[ParseIssue]]:
    metadata: dict[str, str] = {}
    issues = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            issues.append(_issue(filename, lineno, line, "不是 KEY=value 格式"))
            continue
        metadata[key.strip()] = value.strip().strip('"').strip("'")
    return metadata, issues


def parse_component_version(text: str, filename: str = "component_version") -> tuple[dict[str, str], list[ParseIssue]]:
    metadata: dict[str, str] = {}
    issues = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        fields = line.split(None, 1)
        if not fields:
            continue
        if len(fields) != 2:
            issues.append(_issue(filename, lineno, line, "不是 key value 格式"))
            continue
        metadata[fields[0]] = fields[1].strip()
    return metadata, issues


def parse_steps(text: str) -> tuple[str, ...]:
    return tuple(line.strip() for line in text.splitlines() if line.strip())


def parse_round(reader: SnapshotReader) -> Round:
    """
    将一个轮次目录解析为 Round。
    缺少 usage.csv 时抛出 RoundParseError；其余文件均为可选，单行错误只记录不中断。
    """
    usage_text = reader.read_text(USAGE_FILE)
    if usage_text is None:
        raise RoundParseError(USAGE_FILE, "缺少必需的使用数据文件")

    usage, issues = parse_usage(usage_text)
    metadata = dict(usage["metadata"])
    counters = dict(usage["counters"])
    tables = dict(usage["tables"])

    if (text := reader.read_text("smaps.cap")) is not None:
        smaps, found = parse_smaps(text)
        issues.extend(found)
        tables["smaps"] = smaps
    if (text := reader.read_text("stat")) is not None:
        (cpus, stat), found = parse_stat(text)
        issues.extend(found)
        tables["cpu"] = cpus
        counters["stat"] = stat
    if (text := reader.read_text("vmstat")) is not None:
        counters["vmstat"], found = parse_name_value(text, "vmstat")
        issues.extend(found)
    if (text := reader.read_text("slabinfo")) is not None:
        tables["slabinfo"], found = parse_slabinfo(text)
        issues.extend(found)
    if (text := reader.read_text("diskstats")) is not None:
        tables["diskstats"], found = parse_diskstats(text)
        issues.extend(found)
    if (text := reader.read_text("net_dev")) is not None:
        tables["net_dev"], found = parse_net_dev(text)
        issues.extend(found)
    if (text := reader.read_text("release")) is not None:
        release, found = parse_os_release(text)
        issues.extend(found)
        metadata.update(release)
    if (text := reader.read_text("component_version")) is not None:
        component, found = parse_component_version(text)
        issues.extend(found)
        metadata.update(component)

    step = None
    if (text := reader.read_text("step.txt")) is not None:
        step = parse_steps(text)

    if issues:
        logger.debug(f"轮次 {reader.dirname}: 跳过了 {len(issues)} 行无法解析的内容")
        for issue in issues:
            logger.debug(f"  {issue.filename}:{issue.lineno}: {issue.reason}: {issue.line}")

    return Round(
        dirname=reader.dirname,
        path=reader.path,
        date=usage["date"],
        uptime=usage["uptime"],
        step=step,
        metadata=metadata,
        counters=counters,
        tables=tables,
        issues=tuple(issues),
    )
