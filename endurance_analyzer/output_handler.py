# output_handler.py
import json
import logging
import os
import shutil
from datetime import datetime
from typing import Any, Iterable

from jinja2 import Environment, FileSystemLoader, select_autoescape

from endurance_analyzer.common_types import FatalError, PlotSpec
from endurance_analyzer.masterdb import MasterDB
from endurance_analyzer.render_pool import image_name, thumbnail_name

logger = logging.getLogger(__name__)

_TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

# 全局配置：默认启用美观输出
PRETTY_PRINT = True


def set_pretty_print(enable: bool):
    """设置JSON输出格式
    Args:
        enable: True=美观输出(带缩进), False=紧凑输出(无缩进)
    """
    global PRETTY_PRINT
    PRETTY_PRINT = enable


def remove_output_dir(output_dir: str):
    """
    删除指定的输出文件夹及其所有内容。

    Args:
        output_dir (str): 要删除的文件夹路径。
    """
    if os.path.exists(output_dir) and os.path.isdir(output_dir):
        try:
            shutil.rmtree(output_dir)
        except OSError as e:
            raise FatalError(f"无法删除输出目录 {output_dir}: {e}") from e
        logger.info(f"已删除文件夹: {output_dir}")


def ensure_output_dir(output_dir: str):
    try:
        os.makedirs(output_dir, exist_ok=True)
    except OSError as e:
        raise FatalError(f"无法创建输出目录 {output_dir}: {e}") from e


def _format_date(date: datetime | None) -> str | None:
    return date.strftime("%Y-%m-%d %H:%M:%S") if date is not None else None


def format_seconds(seconds: float) -> str:
    """将秒数格式化为 "1d 02:03:04" 形式。"""
    sign = "-" if seconds < 0 else ""
    seconds = int(round(abs(seconds)))
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    text = f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{sign}{days}d {text}" if days else f"{sign}{text}"


def split_plots(plots: Iterable[PlotSpec]) -> tuple[list[PlotSpec], list[PlotSpec]]:
    """按 key 前缀划分为 (进程级, 系统级)，各自按 key 排序。"""
    process, system = [], []
    for plot in sorted(plots, key=lambda p: p.key):
        (process if plot.is_process_scoped else system).append(plot)
    return process, system


def _graph_entry(plot: PlotSpec) -> dict[str, Any]:
    return {
        "legend": plot.legend,
        "filename": image_name(plot.key),
        "thumbnail": thumbnail_name(plot.key),
        "summary": plot.json_summary,
    }


def build_index(
    db: MasterDB,
    plots: Iterable[PlotSpec],
    failed_graphs: Iterable[str] = (),
    failed_generators: Iterable[str] = (),
) -> dict[str, Any]:
    """构造机器可读索引。plots 只应包含渲染成功的图表。"""
    process, system = split_plots(plots)
    stats = db.interval_stats()
    duration = db.duration()
    return {
        "process_graphs": {p.key: _graph_entry(p) for p in process},
        "system_graphs": {p.key: _graph_entry(p) for p in system},
        "metadata": {
            "steps": [list(step) if step else [] for step in db.steps()],
            "dates": [_format_date(d) for d in db.dates()],
            "dirnames": db.dirnames(),
            "duration": duration if duration >= 0 else None,
            "duration_note": db.duration_note(),
            "interval": {"avg": stats.avg, "min": stats.min, "max": stats.max},
            "sw_version": db.software_version(),
            "hw_identity": db.hardware_identity(),
            "reboots": [n.dirname for n in db.reboots],
            "failed_graphs": sorted(failed_graphs),
            "failed_generators": list(failed_generators),
        },
    }


def write_json_index(output_path: str, index: dict[str, Any]):
    """将索引写入JSON文件。"""
    indent = 2 if PRETTY_PRINT else None
    try:
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(index, f, indent=indent, ensure_ascii=False)
    except OSError as e:
        raise FatalError(f"无法写入 {output_path}: {e}") from e


def render_html(db: MasterDB, index: dict[str, Any], plots: Iterable[PlotSpec]) -> str:
    env = Environment(
        loader=FileSystemLoader(_TEMPLATE_DIR),
        autoescape=select_autoescape(["html", "xml", "j2"]),
    )
    template = env.get_template("index.html.j2")
    process, system = split_plots(plots)
    stats = db.interval_stats()
    duration = db.duration()
    rounds = [
        {
            "dirname": r.dirname,
            "date": _format_date(r.date) or "-",
            "uptime": format_seconds(r.uptime),
            "step": "; ".join(r.step) if r.step else "",
        }
        for r in db
    ]
    return template.render(
        title=f"Endurance report: {db[0].dirname} - {db[-1].dirname}",
        generated=datetime.now().isoformat(sep=" ", timespec="seconds"),
        sw_version=db.software_version(),
        hw_identity=db.hardware_identity(),
        round_count=len(db),
        duration=format_seconds(duration) if duration >= 0 else None,
        duration_note=db.duration_note(),
        interval_avg=format_seconds(stats.avg),
        interval_min=format_seconds(stats.min),
        interval_max=format_seconds(stats.max),
        reboots=db.reboots,
        process_graphs=[_graph_entry(p) | {"key": p.key} for p in process],
        system_graphs=[_graph_entry(p) | {"key": p.key} for p in system],
        failed_graphs=index["metadata"]["failed_graphs"],
        failed_generators=index["metadata"]["failed_generators"],
        rounds=rounds,
    )


def write_html_index(output_path: str, html: str):
    try:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(html)
    except OSError as e:
        raise FatalError(f"无法写入 {output_path}: {e}") from e
