"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# analysis.py
from typing import Callable

from endurance_analyzer.masterdb import MasterDB

Series = list[float | None]


def present(series: Series) -> list[float]:
    return [v for v in series if v is not None]


def series_change(series: Series) -> tuple[float, float, float] | None:
    """
    计算序列中第一个和最后一个有效值及其变化量。
    Returns:
        (first, last, change)，没有有效值时返回 None。
    """
    values = present(series)
    if not values:
        return None
    return values[0], values[-1], values[-1] - values[0]


def growth(series: Series) -> float:
    change = series_change(series)
    return change[2] if change else 0.0


def peak(series: Series) -> float:
    return max(present(series), default=0.0)


def total(series: Series) -> float:
    return sum(present(series))


def top_keys(
    candidates: dict[str, Series],
    n: int,
    metric: Callable[[Series], float] = growth,
    min_points: int = 2,
) -> list[str]:
    """
    按指标从大到小选出前 n 个键，指标相同时按键名排序以保证输出稳定。
    有效值少于 min_points 个的键直接忽略 (默认 2 个，少于两个无法比较变化)。
    """
    ranked = [
        (metric(series), key)
        for key, series in candidates.items()
        if len(present(series)) >= min_points
    ]
    ranked.sort(key=lambda item: (-item[0], item[1]))
    return [key for _, key in ranked[:n]]


def change_summary(named: dict[str, Series]) -> dict[str, dict[str, float]]:
    """每条曲线的 first/last/change 摘要，写入 JSON 索引。"""
    summary = {}
    for name, series in named.items():
        change = series_change(series)
        if change is None:
            continue
        first, last, delta = change
        summary[name] = {"first": round(first, 2), "last": round(last, 2), "change": round(delta, 2)}
    return summary


def range_summary(named: dict[str, Series]) -> dict[str, dict[str, float]]:
    """每条曲线的 min/max/avg 摘要。"""
    summary = {}
    for name, series in named.items():
        values = present(series)
        if not values:
            continue
        summary[name] = {
            "min": round(min(values), 2),
            "max": round(max(values), 2),
            "avg": round(sum(values) / len(values), 2),
        }
    return summary


def process_label(db: MasterDB, pid: str) -> str:
    """进程显示名: 名称[pid]，名称取自进程状态表或 smaps。"""
    name = db.table_value("processes", pid, "Name") or db.table_value("smaps", pid, "name")
    return f"{name}[{pid}]" if name else f"[{pid}]"


def process_series(db: MasterDB, table: str, field: str, transform: Callable[[float], float] | None = None) -> dict[str, Series]:
    """表中每个进程 (pid) 某个字段在各轮次的取值。"""
    result = {}
    for pid in db.table_keys(table):
        series = db.table_series(table, pid, field)
        if transform is not None:
            series = [transform(v) if v is not None else None for v in series]
        result[pid] = series
    return result


def relabel(db: MasterDB, by_pid: dict[str, Series], pids: list[str]) -> dict[str, Series]:
    return {process_label(db, pid): by_pid[pid] for pid in pids}


def kb_to_mb(value: float) -> float:
    return value / 1024


def combine(a: Series, b: Series, op: Callable[[float, float], float]) -> Series:
    return [op(x, y) if x is not None and y is not None else None for x, y in zip(a, b)]
