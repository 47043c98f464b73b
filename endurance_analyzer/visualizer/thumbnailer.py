"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

import sys

from PIL import Image
from tap import Tap

from endurance_analyzer.config import parse_size


class Config(Tap):
    """缩略图生成配置"""
    source: str  # 原始图像
    output: str  # 缩略图路径
    size: str = "320x250"  # 缩略图尺寸 (宽x高)

    def configure(self) -> None:
        self.add_argument("source")
        self.add_argument("output")


def make_thumbnail(source: str, output: str, size: tuple[int, int]):
    """将图像缩放为固定尺寸的缩略图。"""
    with Image.open(source) as img:
        thumb = img.convert("RGB").resize(size, Image.Resampling.LANCZOS)
        thumb.save(output, format="PNG")


def main(argv: list[str] | None = None) -> int:
    config = Config(underscores_to_dashes=True).parse_args(argv)
    make_thumbnail(config.source, config.output, parse_size(config.size))
    return 0


if __name__ == "__main__":
    sys.exit(main())
