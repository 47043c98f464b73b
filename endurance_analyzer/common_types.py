"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# common_types.py
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, NamedTuple


class ParseIssue(NamedTuple):
    """解析时被跳过的一行。"""
    filename: str
    lineno: int
    line: str
    reason: str


Table = dict[str, dict[str, Any]]
"""指标表：表内键 (如 pid、slab 名称) -> 字段记录。"""


@dataclass(frozen=True)
class Round:
    """
    一个快照目录 (一轮测量) 解析后的内容。
    构造之后不再修改，由 MasterDB 独占持有。
    """
    dirname: str
    path: str
    date: datetime | None
    uptime: float
    step: tuple[str, ...] | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    counters: dict[str, dict[str, float]] = field(default_factory=dict)
    """扁平的内核计数器分组: meminfo / vmstat / stat / loadavg"""
    tables: dict[str, Table] = field(default_factory=dict)
    """按键索引的指标表: processes / fds / smaps / cpu / slabinfo / diskstats / net_dev"""
    issues: tuple[ParseIssue, ...] = ()

    def counter(self, group: str, name: str, default: float | None = None) -> float | None:
        return self.counters.get(group, {}).get(name, default)

    def table(self, name: str) -> Table:
        return self.tables.get(name, {})


@dataclass(frozen=True)
class PlotSpec:
    """
    一个图生成器产出的声明式绘图描述。
    key 的数字前缀为 "1" 表示进程级图表，其余均为系统级图表。
    """
    key: str
    legend: str
    render_command: dict[str, Any]
    json_summary: dict[str, Any] | None = None

    @property
    def prefix(self) -> str:
        return self.key.split("_", 1)[0]

    @property
    def is_process_scoped(self) -> bool:
        return self.prefix == "1"


class JobState(str, enum.Enum):
    QUEUED = "queued"
    DISPATCHED = "dispatched"
    RENDERED = "rendered"
    FAILED = "failed"


@dataclass
class JobResult:
    """工作进程回报给协调者的单个渲染任务结果。"""
    key: str
    state: JobState
    worker: int = -1
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.state == JobState.RENDERED


# --- 异常 ---

class FatalError(Exception):
    """致命错误：进程以非零状态退出，不再进行后续工作。"""


class InsufficientRoundsError(FatalError):
    def __init__(self, count: int):
        super().__init__(f"有效轮次不足: 仅 {count} 个，至少需要 2 个才能计算差值")
        self.count = count


class RoundParseError(Exception):
    """单个轮次解析失败，该轮次被排除，运行继续。"""

    def __init__(self, filename: str, reason: str):
        super().__init__(f"{filename}: {reason}")
        self.filename = filename
        self.reason = reason


class DecompressorMissing(RoundParseError):
    """解压某个后缀所需的外部工具不可用。"""

    def __init__(self, tool: str, filename: str):
        super().__init__(filename, f"缺少外部解压工具 '{tool}'")
        self.tool = tool
