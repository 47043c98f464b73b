"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# config.py
from typing import Literal

from tap import Tap


class Config(Tap):
    """应用程序的配置模型"""

    # --- Input & Output ---
    inputs: list[str]  # 轮次目录 (或包含轮次目录的父目录)，按给定顺序处理
    output_dir: str = "endurance-report"  # 输出目录
    clear_output_dir: bool = False  # 是否清空输出目录
    compact_json: bool = False  # 是否生成紧凑的JSON格式

    # --- Rendering ---
    jobs: int = 1  # 渲染工作进程数
    backend: Literal["agg", "cairo"] = "agg"  # 渲染后端, cairo 为备用后端
    thumb_size: str = "320x250"  # 缩略图尺寸 (宽x高)
    plot_height: int = 480  # 图表高度 (像素)
    top_n: int = 10  # 进程/slab 等图表中最多显示的条目数
    render_timeout: float = 120.0  # 单个外部渲染进程的超时时间 (秒)

    # --- Diagnostics ---
    verbose: int = 0  # 日志详细级别, 0=INFO, >=1 为 DEBUG
    quiet: bool = False  # 只输出警告和错误
    debug: bool = False  # 保留中间渲染命令文件

    # --- Cache Management ---
    no_cache: bool = False  # 是否禁用缓存
    clear_cache: bool = False  # 是否清空缓存

    def configure(self) -> None:
        self.add_argument("inputs")

    def process_args(self) -> None:
        if self.jobs < 1:
            self.error("--jobs 至少为 1")
        try:
            parse_size(self.thumb_size)
        except ValueError:
            self.error(f"--thumb-size 格式无效: {self.thumb_size!r}, 应为 宽x高")


def parse_size(text: str) -> tuple[int, int]:
    """将 "320x250" 解析为 (320, 250)。"""
    width, sep, height = text.lower().partition("x")
    if not sep:
        raise ValueError(text)
    w, h = int(width), int(height)
    if w <= 0 or h <= 0:
        raise ValueError(text)
    return w, h


# 全局配置实例
settings: Config = None


def initialize_config(argv: list[str] | None = None) -> Config:
    """解析命令行参数并初始化全局的 `settings` 对象"""
    global settings
    if settings is not None and argv is None:
        return settings
    settings = Config(underscores_to_dashes=True).parse_args(argv)
    return settings
