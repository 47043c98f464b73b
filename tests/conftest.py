"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# conftest.py
import gzip
import lzma
import sys
from pathlib import Path

import pytest
import zstandard as zstd

# 假渲染工具: argv[1] 为输入, argv[2] 为输出, 只写出一个占位文件
FAKE_TOOL = [sys.executable, "-c", "import sys; open(sys.argv[2], 'wb').write(b'fake-png')"]


def failing_tool(key: str) -> list[str]:
    """对指定 key 的渲染命令以非零状态退出，其余正常写出占位文件。"""
    script = (
        "import sys\n"
        f"if {key!r} in sys.argv[1]:\n"
        "    sys.stderr.write('boom\\n'); sys.exit(3)\n"
        "open(sys.argv[2], 'wb').write(b'fake-png')\n"
    )
    return [sys.executable, "-c", script]


def usage_text(uptime: float, date: str = "2026-03-01 10:00:00", sw: str = "build-1.2.3",
               scale: int = 0) -> str:
    rss = 5120 + scale * 100
    fds = 25 + scale
    return (
        f"date = {date}\n"
        f"SW-version = {sw}\n"
        "\n"
        "/proc/uptime:\n"
        f"{uptime:.2f} 3800.00\n"
        "\n"
        "/proc/loadavg:\n"
        f"0.{50 + scale} 0.40 0.30 1/120 345\n"
        "\n"
        "/proc/meminfo:\n"
        "MemTotal:        1024000 kB\n"
        f"MemFree:          {512000 - scale * 1000} kB\n"
        "Buffers:           10240 kB\n"
        "Cached:           102400 kB\n"
        "SwapTotal:         65536 kB\n"
        f"SwapFree:          {65536 - scale * 10} kB\n"
        "\n"
        "Process status:\n"
        "Pid,Name,VmSize,VmRSS,VmSwap,Threads,FDSize\n"
        "1,init,2048,1024,0,1,64\n"
        f"100,daemon,10240,{rss},0,{4 + scale},64\n"
        "\n"
        "Process FD count:\n"
        "PID,FD count,Command line\n"
        "1,10,/sbin/init\n"
        f"100,{fds},/usr/bin/daemon --opt=a,b\n"
    )


def smaps_text(scale: int = 0) -> str:
    return (
        "==> /proc/100/smaps <==\n"
        "#Name: daemon\n"
        "00400000-00452000 r-xp 00000000 08:02 173521      /usr/bin/daemon\n"
        "Size:               1000 kB\n"
        "Rss:                 800 kB\n"
        f"Pss:                 {600 + scale * 10} kB\n"
        f"Private_Dirty:       {200 + scale * 50} kB\n"
        "Swap:                 16 kB\n"
        "VmFlags: rd ex mr mw me dw\n"
        "00652000-00653000 rw-p 00052000 08:02 173521      /usr/bin/daemon\n"
        "Size:                  4 kB\n"
        "Rss:                   4 kB\n"
        "Pss:                   4 kB\n"
        "Private_Dirty:         4 kB\n"
        "Swap:                  0 kB\n"
    )


def stat_text(scale: int = 0) -> str:
    return (
        f"cpu  {100 + scale * 60} 0 {50 + scale * 20} {1000 + scale * 100} 10 0 5 0 0 0\n"
        f"cpu0 {100 + scale * 60} 0 {50 + scale * 20} {1000 + scale * 100} 10 0 5 0 0 0\n"
        f"intr {12345 + scale * 1000} 0 0\n"
        f"ctxt {50000 + scale * 5000}\n"
        "btime 1700000000\n"
        f"processes {300 + scale * 10}\n"
        "procs_running 1\n"
        "procs_blocked 0\n"
    )


EXTRA_FILES = {
    "vmstat": lambda s: f"pgmajfault {10 + s}\npswpin 0\npswpout {s}\noom_kill 0\n",
    "slabinfo": lambda s: (
        "slabinfo - version: 2.1\n"
        "# name            <active_objs> <num_objs> <objsize> <objperslab> <pagesperslab>\n"
        f"kmalloc-64          1000   {1024 + s * 64}     64   64    1 : tunables    0    0    0\n"
        "dentry               500    512    192   21    1 : tunables    0    0    0\n"
    ),
    "diskstats": lambda s: f"   8       0 sda 100 0 {2000 + s * 100} 50 200 0 {4000 + s * 400} 80 0 100 130\n",
    "net_dev": lambda s: (
        "Inter-|   Receive                                                |  Transmit\n"
        " face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed\n"
        "    lo: 1000 10 0 0 0 0 0 0 1000 10 0 0 0 0 0 0\n"
        f"  eth0: {50000 + s * 2048} 100 0 0 0 0 0 0 {20000 + s * 1024} 80 0 0 0 0 0 0\n"
    ),
    "release": lambda s: 'NAME="Endurance Linux"\nPRETTY_NAME="Endurance Linux 1.0"\n',
    "component_version": lambda s: "product devkit\nhw-build B2\n",
}


def write_file(path: Path, text: str, compress: str | None):
    data = text.encode("utf-8")
    if compress is None:
        path.write_bytes(data)
    elif compress == "gz":
        Path(f"{path}.gz").write_bytes(gzip.compress(data))
    elif compress == "xz":
        Path(f"{path}.xz").write_bytes(lzma.compress(data))
    elif compress == "zst":
        Path(f"{path}.zst").write_bytes(zstd.ZstdCompressor().compress(data))
    else:
        raise ValueError(compress)


def write_round(base: Path, name: str, uptime: float, scale: int = 0, extras: bool = True,
                compress: str | None = None, step: str | None = None, **usage_kwargs) -> Path:
    """在 base 下创建一个轮次目录。"""
    path = base / name
    path.mkdir(parents=True, exist_ok=True)
    write_file(path / "usage.csv", usage_text(uptime, scale=scale, **usage_kwargs), compress)
    if extras:
        write_file(path / "smaps.cap", smaps_text(scale), compress)
        write_file(path / "stat", stat_text(scale), compress)
        for filename, make in EXTRA_FILES.items():
            write_file(path / filename, make(scale), compress)
    if step is not None:
        (path / "step.txt").write_text(step, encoding="utf-8")
    return path


@pytest.fixture
def make_round(tmp_path):
    """返回一个在临时目录下创建轮次目录的函数。"""
    def _make(name: str, uptime: float, **kwargs) -> Path:
        return write_round(tmp_path / "rounds", name, uptime, **kwargs)
    return _make


@pytest.fixture
def two_rounds(make_round):
    return [make_round("000", 1000.0, scale=0, step="boot"), make_round("001", 1500.0, scale=5)]
