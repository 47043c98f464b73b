"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# graphs.py
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterator, NamedTuple

from endurance_analyzer import analysis
from endurance_analyzer.analysis import Series
from endurance_analyzer.common_types import PlotSpec
from endurance_analyzer.masterdb import MasterDB, escape_label

logger = logging.getLogger(__name__)

MIN_WIDTH = 1000
MAX_WIDTH = 1900
MAX_XTICKS = 50
SECTOR_KB = 0.5
LABEL_MAX_BYTES = 80


def plot_width(round_count: int) -> int:
    """图表宽度随轮次数增长，但限制在 [1000, 1900] 像素之间。"""
    return max(MIN_WIDTH, min(MAX_WIDTH, round_count * 13 + 200))


@dataclass(frozen=True)
class PlotContext:
    """所有生成器共享的绘图参数。"""
    width: int
    height: int
    label: str
    xticks: tuple[tuple[int, str], ...]
    reboot_indices: tuple[int, ...] = ()
    top_n: int = 10


def build_context(db: MasterDB, height: int = 480, top_n: int = 10) -> PlotContext:
    names = db.dirnames()
    step = max(1, math.ceil(len(names) / MAX_XTICKS))
    xticks = tuple((i, name) for i, name in enumerate(names) if i % step == 0)
    # 标签嵌入渲染命令，每部分按字节截断并转义
    label_parts = [
        escape_label(part, LABEL_MAX_BYTES)
        for part in (db.software_version(), db.hardware_identity()) if part
    ]
    return PlotContext(
        width=plot_width(len(db)),
        height=height,
        label=" / ".join(label_parts),
        xticks=xticks,
        reboot_indices=db.reboot_indices,
        top_n=top_n,
    )


def make_plot(
    key: str,
    legend: str,
    ctx: PlotContext,
    title: str,
    ylabel: str,
    series: dict[str, Series],
    style: str = "lines",
    summary: dict[str, Any] | None = None,
    yrange: tuple[float, float] | None = None,
) -> PlotSpec:
    """
    构造一个 PlotSpec。render_command 是交给外部渲染引擎的声明式描述，
    这里只生成，不执行。
    """
    command = {
        "title": title,
        "subtitle": ctx.label,
        "width": ctx.width,
        "height": ctx.height,
        "xlabel": "round",
        "ylabel": ylabel,
        "xticks": [list(tick) for tick in ctx.xticks],
        "reboots": list(ctx.reboot_indices),
        "style": style,
        "yrange": list(yrange) if yrange else None,
        "series": [{"label": name, "values": values} for name, values in series.items()],
    }
    return PlotSpec(key=key, legend=legend, render_command=command, json_summary=summary)


# --- 进程级图表 (key 前缀 1) ---

def _process_plot(db: MasterDB, ctx: PlotContext, key: str, table: str, field: str,
                  title: str, ylabel: str, legend: str,
                  metric: Callable[[Series], float] = analysis.growth,
                  transform: Callable[[float], float] | None = None) -> list[PlotSpec]:
    """legend 中的 {n} 替换为实际入选的进程数。"""
    by_pid = analysis.process_series(db, table, field, transform)
    pids = analysis.top_keys(by_pid, ctx.top_n, metric)
    if not pids:
        return []
    series = analysis.relabel(db, by_pid, pids)
    return [make_plot(key, legend.format(n=len(pids)), ctx, title, ylabel, series,
                      summary=analysis.change_summary(series))]


def private_dirty_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    by_pid = analysis.process_series(db, "smaps", "Private_Dirty")
    swap = analysis.process_series(db, "smaps", "Swap")
    for pid, series in by_pid.items():
        by_pid[pid] = analysis.combine(series, swap[pid], lambda a, b: (a + b) / 1024)
    pids = analysis.top_keys(by_pid, ctx.top_n)
    if not pids:
        return []
    series = analysis.relabel(db, by_pid, pids)
    return [make_plot(
        "1_private_dirty",
        f"Top {len(pids)} processes by growth of private dirty memory (incl. swap)",
        ctx, "Process private dirty + swap", "MB", series,
        summary=analysis.change_summary(series),
    )]


def pss_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    return _process_plot(db, ctx, "1_pss", "smaps", "Pss",
                         "Process PSS", "MB",
                         "Top {n} processes by peak proportional set size",
                         metric=analysis.peak, transform=analysis.kb_to_mb)


def rss_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    return _process_plot(db, ctx, "1_rss", "processes", "VmRSS",
                         "Process RSS", "MB",
                         "Top {n} processes by resident set size growth",
                         transform=analysis.kb_to_mb)


def threads_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    return _process_plot(db, ctx, "1_threads", "processes", "Threads",
                         "Process thread count", "threads",
                         "Top {n} processes by thread count growth")


def fds_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    return _process_plot(db, ctx, "1_fds", "fds", "count",
                         "Process open file descriptors", "FDs",
                         "Top {n} processes by open file descriptor growth")


# --- 系统级图表 ---

def memory_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    """系统内存使用 (堆叠图) 和 swap 使用，一个生成器产出两个图。"""
    total = db.counter_series("meminfo", "MemTotal")
    if not analysis.present(total):
        return []
    free = db.counter_series("meminfo", "MemFree")
    buffers = [v or 0 for v in db.counter_series("meminfo", "Buffers")]
    cached = [v or 0 for v in db.counter_series("meminfo", "Cached")]
    used = [
        (t - f - b - c) / 1024 if t is not None and f is not None else None
        for t, f, b, c in zip(total, free, buffers, cached)
    ]
    series = {
        "used": used,
        "buffers": [b / 1024 for b in buffers],
        "cached": [c / 1024 for c in cached],
        "free": [f / 1024 if f is not None else None for f in free],
    }
    plots = [make_plot(
        "2_memory", "System memory usage", ctx, "System memory", "MB", series,
        style="stacked", summary=analysis.range_summary(series),
    )]

    swap_total = db.counter_series("meminfo", "SwapTotal")
    if any(analysis.present(swap_total)):
        swap_used = analysis.combine(swap_total, db.counter_series("meminfo", "SwapFree"),
                                     lambda t, f: (t - f) / 1024)
        swap = {"swap used": swap_used}
        plots.append(make_plot(
            "2_swap", "Swap usage", ctx, "Swap", "MB", swap,
            summary=analysis.range_summary(swap),
        ))
    return plots


def cpu_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    """根据 /proc/stat 的累计值计算每个间隔内的 CPU 占用百分比。"""
    if "cpu" not in db.table_keys("cpu"):
        return []

    def delta(field: str) -> Series:
        return db.table_deltas("cpu", "cpu", field)

    user, nice, system = delta("user"), delta("nice"), delta("system")
    idle, iowait = delta("idle"), delta("iowait")
    irq, softirq = delta("irq"), delta("softirq")
    series: dict[str, Series] = {"user": [], "system": [], "iowait": []}
    for i in range(len(db)):
        parts = (user[i], nice[i], system[i], idle[i], iowait[i], irq[i], softirq[i])
        if any(p is None for p in parts) or sum(parts) <= 0:
            for values in series.values():
                values.append(None)
            continue
        ticks = sum(parts)
        series["user"].append(100.0 * (user[i] + nice[i]) / ticks)
        series["system"].append(100.0 * (system[i] + irq[i] + softirq[i]) / ticks)
        series["iowait"].append(100.0 * iowait[i] / ticks)
    if not any(analysis.present(v) for v in series.values()):
        return []
    return [make_plot(
        "3_cpu", "CPU usage between rounds", ctx, "CPU usage", "%", series,
        style="stacked", yrange=(0, 100), summary=analysis.range_summary(series),
    )]


def loadavg_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    series = {name: db.counter_series("loadavg", name) for name in ("load1", "load5", "load15")}
    if not any(analysis.present(v) for v in series.values()):
        return []
    return [make_plot(
        "3_loadavg", "System load average", ctx, "Load average", "load", series,
        summary=analysis.range_summary(series),
    )]


def kernel_activity_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    series = {
        "context switches/s": db.counter_rates("stat", "ctxt"),
        "processes created/s": db.counter_rates("stat", "processes"),
        "interrupts/s": db.counter_rates("stat", "intr"),
    }
    series = {k: v for k, v in series.items() if analysis.present(v)}
    if not series:
        return []
    return [make_plot(
        "4_kernel_activity", "Kernel activity rates between rounds", ctx,
        "Kernel activity", "events/s", series, summary=analysis.range_summary(series),
    )]


def slab_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    by_name = {name: db.table_series("slabinfo", name, "size_kb") for name in db.table_keys("slabinfo")}
    names = analysis.top_keys(by_name, ctx.top_n, analysis.peak)
    if not names:
        return []
    series = {name: by_name[name] for name in names}
    return [make_plot(
        "5_slabs", f"Top {len(names)} kernel slab caches by size", ctx,
        "Slab caches", "kB", series, summary=analysis.change_summary(series),
    )]


def disk_io_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    candidates: dict[str, Series] = {}
    for dev in db.table_keys("diskstats"):
        for field, label in (("sectors_read", "read"), ("sectors_written", "written")):
            deltas = db.table_deltas("diskstats", dev, field)
            candidates[f"{dev} {label}"] = [d * SECTOR_KB if d is not None else None for d in deltas]
    names = analysis.top_keys(candidates, ctx.top_n, analysis.total, min_points=1)
    names = [n for n in names if analysis.total(candidates[n]) > 0]
    if not names:
        return []
    series = {name: candidates[name] for name in names}
    return [make_plot(
        "6_disk_io", "Disk I/O between rounds", ctx, "Disk I/O", "kB", series,
        summary={name: {"total_kb": round(analysis.total(v), 2)} for name, v in series.items()},
    )]


def network_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    candidates: dict[str, Series] = {}
    for iface in db.table_keys("net_dev"):
        if iface == "lo":
            continue
        for field, label in (("rx_bytes", "rx"), ("tx_bytes", "tx")):
            deltas = db.table_deltas("net_dev", iface, field)
            candidates[f"{iface} {label}"] = [d / 1024 if d is not None else None for d in deltas]
    names = [n for n in analysis.top_keys(candidates, ctx.top_n, analysis.total, min_points=1)
             if analysis.total(candidates[n]) > 0]
    if not names:
        return []
    series = {name: candidates[name] for name in names}
    return [make_plot(
        "7_network", "Network traffic between rounds", ctx, "Network traffic", "kB", series,
        summary={name: {"total_kb": round(analysis.total(v), 2)} for name, v in series.items()},
    )]


def vm_events_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    series = {
        name: db.counter_deltas("vmstat", name)
        for name in ("pgmajfault", "pswpin", "pswpout", "oom_kill")
    }
    series = {k: v for k, v in series.items() if analysis.present(v)}
    if not series:
        return []
    return [make_plot(
        "8_vm_events", "Virtual memory events between rounds", ctx, "VM events", "count", series,
        summary={name: {"total": analysis.total(v)} for name, v in series.items()},
    )]


def interval_graph(db: MasterDB, ctx: PlotContext) -> list[PlotSpec]:
    deltas: Series = [None, *db.uptime_deltas()]
    stats = db.interval_stats()
    return [make_plot(
        "9_intervals", "Time between rounds", ctx, "Round intervals", "seconds",
        {"interval": deltas}, style="bars",
        summary={"avg": round(stats.avg, 2), "min": round(stats.min, 2), "max": round(stats.max, 2)},
    )]


class GraphGenerator(NamedTuple):
    name: str
    func: Callable[[MasterDB, PlotContext], list[PlotSpec]]


GENERATORS: tuple[GraphGenerator, ...] = (
    GraphGenerator("private_dirty", private_dirty_graph),
    GraphGenerator("pss", pss_graph),
    GraphGenerator("rss", rss_graph),
    GraphGenerator("threads", threads_graph),
    GraphGenerator("fds", fds_graph),
    GraphGenerator("memory", memory_graph),
    GraphGenerator("cpu", cpu_graph),
    GraphGenerator("loadavg", loadavg_graph),
    GraphGenerator("kernel_activity", kernel_activity_graph),
    GraphGenerator("slabs", slab_graph),
    GraphGenerator("disk_io", disk_io_graph),
    GraphGenerator("network", network_graph),
    GraphGenerator("vm_events", vm_events_graph),
    GraphGenerator("intervals", interval_graph),
)


class GeneratorOutcome(NamedTuple):
    """单个生成器的结果: 成功时 error 为 None。"""
    name: str
    plots: tuple[PlotSpec, ...]
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_generators(
    db: MasterDB,
    ctx: PlotContext,
    registry: tuple[GraphGenerator, ...] = GENERATORS,
) -> Iterator[GeneratorOutcome]:
    """
    依次运行所有生成器。
    单个生成器抛出异常时记录其名称和错误、丢弃它的输出，然后继续运行其余生成器。
    重复的 key 只保留第一个。
    """
    seen_keys: set[str] = set()
    for generator in registry:
        try:
            plots = list(generator.func(db, ctx))
        except Exception as e:
            logger.error(f"图生成器 '{generator.name}' 失败: {e!r}，其输出已丢弃。")
            yield GeneratorOutcome(generator.name, (), e)
            continue
        kept = []
        for plot in plots:
            if plot.key in seen_keys:
                logger.error(f"图生成器 '{generator.name}' 产出了重复的 key '{plot.key}'，已忽略。")
                continue
            seen_keys.add(plot.key)
            kept.append(plot)
        logger.debug(f"图生成器 '{generator.name}' 产出 {len(kept)} 个图表。")
        yield GeneratorOutcome(generator.name, tuple(kept))
