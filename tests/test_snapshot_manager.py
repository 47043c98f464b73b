"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

import os

from endurance_analyzer import parser_core as Parser
from endurance_analyzer import snapshot_manager as SnapshotMngr
from endurance_analyzer.snapshot_reader import SnapshotReader


def test_cache_round_trip(make_round, tmp_path):
    path = make_round("000", 1000.0)
    cache_dir = str(tmp_path / "cache")
    rnd = Parser.parse_round(SnapshotReader(str(path)))
    SnapshotMngr.save_round_cache(rnd, cache_dir)
    assert SnapshotMngr.load_round_cache(str(path), cache_dir) == rnd


def test_cache_is_invalidated_when_round_changes(make_round, tmp_path):
    path = make_round("000", 1000.0)
    cache_dir = str(tmp_path / "cache")
    SnapshotMngr.save_round_cache(Parser.parse_round(SnapshotReader(str(path))), cache_dir)
    (path / "step.txt").write_text("late step\n")
    assert SnapshotMngr.load_round_cache(str(path), cache_dir) is None


def test_corrupt_cache_is_ignored(make_round, tmp_path):
    path = make_round("000", 1000.0, extras=False)
    cache_dir = tmp_path / "cache"
    SnapshotMngr.save_round_cache(Parser.parse_round(SnapshotReader(str(path))), str(cache_dir))
    for name in os.listdir(cache_dir):
        (cache_dir / name).write_bytes(b"garbage")
    assert SnapshotMngr.load_round_cache(str(path), str(cache_dir)) is None


def test_missing_cache(make_round, tmp_path):
    path = make_round("000", 1000.0, extras=False)
    assert SnapshotMngr.load_round_cache(str(path), str(tmp_path / "cache")) is None


def test_clear_all_cache(make_round, tmp_path):
    cache_dir = tmp_path / "cache"
    for name, uptime in (("000", 1.0), ("001", 2.0)):
        path = make_round(name, uptime, extras=False)
        SnapshotMngr.save_round_cache(Parser.parse_round(SnapshotReader(str(path))), str(cache_dir))
    (cache_dir / "keep.txt").write_text("not a cache file")
    assert SnapshotMngr.clear_all_cache(str(cache_dir)) == 2
    assert os.listdir(cache_dir) == ["keep.txt"]
    assert SnapshotMngr.clear_all_cache(str(tmp_path / "absent")) == 0
