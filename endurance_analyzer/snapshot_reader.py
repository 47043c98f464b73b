"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# snapshot_reader.py
import gzip
import io
import logging
import lzma
import os
import shutil
import subprocess
from typing import Callable

import zstandard as zstd

from endurance_analyzer.common_types import DecompressorMissing, RoundParseError

logger = logging.getLogger(__name__)

USAGE_FILE = "usage.csv"


def decompress_raw(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def decompress_lzo(path: str) -> bytes:
    """通过外部 lzop 工具解压 .lzo 文件。"""
    if shutil.which("lzop") is None:
        raise DecompressorMissing("lzop", os.path.basename(path))
    proc = subprocess.run(["lzop", "-dc", path], capture_output=True)
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        raise RoundParseError(os.path.basename(path), f"lzop 解压失败: {stderr}")
    return proc.stdout


def decompress_zst(path: str) -> bytes:
    """解压一个 zstd 格式的压缩文件。帧不完整时抛出 ZstdError。"""
    dobj = zstd.ZstdDecompressor().decompressobj()
    with open(path, "rb") as f:
        data = dobj.decompress(f.read())
    if not dobj.eof:
        raise zstd.ZstdError("zstd 数据不完整")
    return data


def decompress_xz(path: str) -> bytes:
    with lzma.open(path, "rb") as f:
        return f.read()


def decompress_gz(path: str) -> bytes:
    with gzip.open(path, "rb") as f:
        return f.read()


# 后缀按优先级排列: 原始文件 -> 快速块压缩 -> LZMA -> 通用压缩，首个存在的文件胜出
CODECS: list[tuple[str, Callable[[str], bytes]]] = [
    ("", decompress_raw),
    (".lzo", decompress_lzo),
    (".zst", decompress_zst),
    (".xz", decompress_xz),
    (".gz", decompress_gz),
]


class SnapshotReader:
    """绑定到单个轮次目录，按逻辑文件名返回解压后的内容。只读，无副作用。"""

    def __init__(self, path: str):
        self.path = path

    @property
    def dirname(self) -> str:
        return os.path.basename(os.path.normpath(self.path))

    def locate(self, name: str) -> str | None:
        """返回逻辑文件对应的实际路径 (按后缀优先级)，不存在则返回 None。"""
        for suffix, _ in CODECS:
            candidate = os.path.join(self.path, name + suffix)
            if os.path.isfile(candidate):
                return candidate
        return None

    def exists(self, name: str) -> bool:
        return self.locate(name) is not None

    def read_bytes(self, name: str) -> bytes | None:
        for suffix, decompress in CODECS:
            candidate = os.path.join(self.path, name + suffix)
            if not os.path.isfile(candidate):
                continue
            try:
                return decompress(candidate)
            except (OSError, EOFError, lzma.LZMAError, zstd.ZstdError) as e:
                raise RoundParseError(name + suffix, f"无法读取或解压: {e}") from e
        return None

    def open(self, name: str) -> io.BytesIO | None:
        """返回解压后内容的字节流；逻辑文件不存在时返回 None (单个文件均为可选)。"""
        data = self.read_bytes(name)
        if data is None:
            return None
        return io.BytesIO(data)

    def read_text(self, name: str) -> str | None:
        data = self.read_bytes(name)
        if data is None:
            return None
        return data.decode("utf-8", errors="replace")


def is_round_dir(path: str) -> bool:
    return os.path.isdir(path) and SnapshotReader(path).exists(USAGE_FILE)


def _round_sort_key(name: str) -> tuple[int, int, str]:
    # 数字目录名 (000, 001, ...) 按数值排序，其余排在后面按字典序
    if name.isdigit():
        return (0, int(name), name)
    return (1, 0, name)


def expand_round_dirs(paths: list[str]) -> list[str]:
    """
    展开输入路径列表。
    - 本身是轮次目录 (包含 usage.csv) 或无法识别的路径: 原样保留，交给解析阶段报告。
    - 其子目录是轮次目录的父目录: 替换为按编号排序的子目录列表。
    其余情况保持调用者给定的顺序。
    """
    expanded = []
    for path in paths:
        if is_round_dir(path) or not os.path.isdir(path):
            expanded.append(path)
            continue
        children = sorted(
            (entry for entry in os.listdir(path) if os.path.isdir(os.path.join(path, entry))),
            key=_round_sort_key,
        )
        if children and any(is_round_dir(os.path.join(path, c)) for c in children):
            logger.info(f"在 {path} 下发现 {len(children)} 个轮次目录。")
            expanded.extend(os.path.join(path, c) for c in children)
        else:
            expanded.append(path)
    return expanded
