"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# masterdb.py
import logging
from datetime import datetime
from typing import Iterator, NamedTuple, Sequence

from endurance_analyzer.common_types import InsufficientRoundsError, Round

logger = logging.getLogger(__name__)

SW_VERSION_KEYS = ("SW-version", "PRETTY_NAME")
HW_IDENTITY_KEYS = ("product", "hw-build")


class RebootNotice(NamedTuple):
    """相邻轮次之间 uptime 未增长 (设备可能重启) 的提示。"""
    index: int
    dirname: str
    previous_uptime: float
    uptime: float


class IntervalStats(NamedTuple):
    avg: float
    min: float
    max: float


def escape_label(text: str, max_bytes: int) -> str:
    """按 UTF-8 字节数截断，并转义引号和换行，以便嵌入生成的标签中。"""
    data = text.encode("utf-8")[:max_bytes]
    text = data.decode("utf-8", errors="ignore")
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\r", "").replace("\n", "\\n")


def _unique(values: list[str]) -> list[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


class MasterDB:
    """
    按调用者给定顺序排列的全部有效轮次，构建后只读。
    少于两个轮次时没有可计算的差值，构造时直接抛出致命错误。
    """

    def __init__(self, rounds: Sequence[Round]):
        if len(rounds) < 2:
            raise InsufficientRoundsError(len(rounds))
        self._rounds: tuple[Round, ...] = tuple(rounds)
        self.reboots: tuple[RebootNotice, ...] = tuple(self._detect_reboots())
        for notice in self.reboots:
            logger.warning(
                f"轮次 {notice.dirname} 的 uptime ({notice.uptime:.2f}s) 未超过上一轮 "
                f"({notice.previous_uptime:.2f}s)，设备可能已重启。"
            )

    def _detect_reboots(self) -> Iterator[RebootNotice]:
        for i in range(1, len(self._rounds)):
            prev, cur = self._rounds[i - 1], self._rounds[i]
            # 未增长即视为重启，相等也算
            if cur.uptime <= prev.uptime:
                yield RebootNotice(i, cur.dirname, prev.uptime, cur.uptime)

    # --- 序列访问 ---

    @property
    def rounds(self) -> tuple[Round, ...]:
        return self._rounds

    def __len__(self) -> int:
        return len(self._rounds)

    def __iter__(self) -> Iterator[Round]:
        return iter(self._rounds)

    def __getitem__(self, index: int) -> Round:
        return self._rounds[index]

    @property
    def reboot_indices(self) -> tuple[int, ...]:
        return tuple(n.index for n in self.reboots)

    def dirnames(self) -> list[str]:
        return [r.dirname for r in self._rounds]

    def dates(self) -> list[datetime | None]:
        return [r.date for r in self._rounds]

    def steps(self) -> list[tuple[str, ...] | None]:
        return [r.step for r in self._rounds]

    def uptimes(self) -> list[float]:
        return [r.uptime for r in self._rounds]

    # --- 时长与间隔 ---

    def duration(self) -> float:
        """最后一轮与第一轮的 uptime 之差 (秒)，可能为负 (见 duration_note)。"""
        return self._rounds[-1].uptime - self._rounds[0].uptime

    def duration_note(self) -> str | None:
        """总时长为负时返回一条重启说明，而不是报告负的时长。"""
        if self.duration() >= 0:
            return None
        return (
            f"最后一轮 {self._rounds[-1].dirname} 的 uptime 小于第一轮 {self._rounds[0].dirname}，"
            f"期间设备已重启，总时长无意义"
        )

    def uptime_deltas(self) -> list[float]:
        return [self._rounds[i].uptime - self._rounds[i - 1].uptime for i in range(1, len(self._rounds))]

    def interval_stats(self) -> IntervalStats:
        deltas = self.uptime_deltas()
        return IntervalStats(sum(deltas) / len(deltas), min(deltas), max(deltas))

    def _valid_interval(self, i: int) -> bool:
        return self._rounds[i].uptime > self._rounds[i - 1].uptime

    # --- 元数据 ---

    def metadata_lookup(self, key: str, max_bytes: int = 80) -> str | None:
        """从第一个带有该键的轮次中取值，截断到 max_bytes 并转义。"""
        for rnd in self._rounds:
            value = rnd.metadata.get(key)
            if value:
                return escape_label(value, max_bytes)
        return None

    def software_version(self) -> str:
        values = []
        for rnd in self._rounds:
            values.extend(rnd.metadata.get(key, "") for key in SW_VERSION_KEYS)
        return ", ".join(_unique(values))

    def hardware_identity(self) -> str:
        values = []
        for rnd in self._rounds:
            parts = [rnd.metadata.get(key, "") for key in HW_IDENTITY_KEYS]
            values.append(" ".join(p for p in parts if p))
        return ", ".join(_unique(values))

    # --- 按键取值 ---

    def counter_series(self, group: str, name: str) -> list[float | None]:
        return [r.counter(group, name) for r in self._rounds]

    def table_keys(self, table: str) -> list[str]:
        """所有轮次中出现过的表键，按首次出现的顺序。"""
        keys: dict[str, None] = {}
        for rnd in self._rounds:
            keys.update(dict.fromkeys(rnd.table(table)))
        return list(keys)

    def table_series(self, table: str, key: str, field: str) -> list[float | None]:
        series = []
        for rnd in self._rounds:
            value = rnd.table(table).get(key, {}).get(field)
            series.append(value if isinstance(value, (int, float)) else None)
        return series

    def table_value(self, table: str, key: str, field: str) -> object | None:
        """最后一个带有该键的轮次中的字段值 (如进程名)。"""
        for rnd in reversed(self._rounds):
            record = rnd.table(table).get(key)
            if record is not None and field in record:
                return record[field]
        return None

    def _deltas(self, series: list[float | None]) -> list[float | None]:
        """
        逐个间隔的差值，第一个位置为 None。
        跨越重启或计数器回绕 (差值为负) 的间隔为 None。
        """
        deltas: list[float | None] = [None]
        for i in range(1, len(series)):
            prev, cur = series[i - 1], series[i]
            if prev is None or cur is None or not self._valid_interval(i) or cur < prev:
                deltas.append(None)
            else:
                deltas.append(cur - prev)
        return deltas

    def counter_deltas(self, group: str, name: str) -> list[float | None]:
        return self._deltas(self.counter_series(group, name))

    def table_deltas(self, table: str, key: str, field: str) -> list[float | None]:
        return self._deltas(self.table_series(table, key, field))

    def per_second(self, deltas: list[float | None]) -> list[float | None]:
        """将每个间隔的差值换算为每秒速率。"""
        rates: list[float | None] = [None]
        for i in range(1, len(deltas)):
            delta = deltas[i]
            elapsed = self._rounds[i].uptime - self._rounds[i - 1].uptime
            rates.append(delta / elapsed if delta is not None and elapsed > 0 else None)
        return rates

    def counter_rates(self, group: str, name: str) -> list[float | None]:
        return self.per_second(self.counter_deltas(group, name))
