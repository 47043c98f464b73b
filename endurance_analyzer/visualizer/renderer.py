"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

import json
import math
import sys
from typing import Any, Literal

import matplotlib
from tap import Tap

BACKENDS = {"agg": "Agg", "cairo": "Cairo"}
DPI = 100


class Config(Tap):
    """渲染引擎配置: 读取声明式渲染命令 (JSON)，输出 PNG 图像"""
    command: str  # 渲染命令文件
    output: str  # 输出图像路径
    backend: Literal["agg", "cairo"] = "agg"  # matplotlib 后端

    def configure(self) -> None:
        self.add_argument("command")
        self.add_argument("output")


def _values(raw: list[Any]) -> list[float]:
    # None 表示缺失数据，绘制为断开的曲线
    return [math.nan if v is None else float(v) for v in raw]


def render(command: dict[str, Any], output: str):
    """根据渲染命令绘制图表并保存。"""
    import matplotlib.pyplot as plt
    import matplotlib.ticker as ticker

    width = command.get("width", 1000) / DPI
    height = command.get("height", 480) / DPI
    fig, ax = plt.subplots(figsize=(width, height), dpi=DPI)

    series = command.get("series", [])
    labels = [s.get("label", "") for s in series]
    rows = [_values(s.get("values", [])) for s in series]
    count = max((len(r) for r in rows), default=0)
    xs = list(range(count))
    style = command.get("style", "lines")

    if style == "stacked" and rows:
        # 堆叠图不接受 NaN，缺失的点按 0 处理
        filled = [[0.0 if math.isnan(v) else v for v in row] for row in rows]
        ax.stackplot(xs, *filled, labels=labels, alpha=0.8)
    elif style == "bars" and rows:
        bar_width = 0.8 / len(rows)
        for i, (label, row) in enumerate(zip(labels, rows)):
            offsets = [x + (i - (len(rows) - 1) / 2) * bar_width for x in range(len(row))]
            ax.bar(offsets, [0.0 if math.isnan(v) else v for v in row], width=bar_width, label=label)
    else:
        for label, row in zip(labels, rows):
            ax.plot(range(len(row)), row, label=label, linewidth=1.5, marker="." if count < 60 else None)

    # 重启标记
    for index in command.get("reboots", []):
        ax.axvline(x=index - 0.5, color="grey", linestyle="--", alpha=0.7, linewidth=1.2)
        ax.text(index - 0.5, 0.98, "reboot", transform=ax.get_xaxis_transform(),
                rotation=90, ha="right", va="top", fontsize=7, color="grey")

    xticks = command.get("xticks", [])
    if xticks:
        ax.set_xticks([t[0] for t in xticks])
        ax.set_xticklabels([t[1] for t in xticks], rotation=90, fontsize=7)
    if count:
        ax.set_xlim(-0.5, count - 0.5)

    formatter = ticker.ScalarFormatter(useOffset=False)
    formatter.set_scientific(False)
    ax.yaxis.set_major_formatter(formatter)
    if command.get("yrange"):
        ax.set_ylim(*command["yrange"])

    title = command.get("title", "")
    if command.get("subtitle"):
        title = f"{title}\n{command['subtitle']}"
    ax.set_title(title, fontsize=10)
    ax.set_xlabel(command.get("xlabel", ""))
    ax.set_ylabel(command.get("ylabel", ""))
    ax.grid(True, alpha=0.3)
    if labels:
        ax.legend(loc="upper left", fontsize=7, ncol=2 if len(labels) > 5 else 1)

    fig.tight_layout()
    fig.savefig(output, dpi=DPI, format="png")
    plt.close(fig)


def main(argv: list[str] | None = None) -> int:
    config = Config(underscores_to_dashes=True).parse_args(argv)
    # 必须在导入 pyplot 之前选择后端
    matplotlib.use(BACKENDS[config.backend])
    with open(config.command, "r", encoding="utf-8") as f:
        command = json.load(f)
    render(command, config.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
