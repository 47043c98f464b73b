"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# main.py
import logging
import os
import sys

from endurance_analyzer import config
from endurance_analyzer import graphs
from endurance_analyzer import output_handler as Output
from endurance_analyzer import parser_core as Parser
from endurance_analyzer import snapshot_manager as SnapshotMngr
from endurance_analyzer import utils
from endurance_analyzer.common_types import FatalError, PlotSpec, RoundParseError, Round
from endurance_analyzer.masterdb import MasterDB
from endurance_analyzer.render_pool import RenderPool
from endurance_analyzer.snapshot_reader import SnapshotReader, expand_round_dirs

logger = logging.getLogger(__name__)

CACHE_DIR_NAME = "cache"


class MainProcessor:
    def __init__(self, settings: config.Config, render_argv: list[str] | None = None,
                 thumbnail_argv: list[str] | None = None):
        self.settings = settings
        self.output_dir = settings.output_dir
        self.cache_dir = os.path.join(self.output_dir, CACHE_DIR_NAME)
        self.render_argv = render_argv
        self.thumbnail_argv = thumbnail_argv

        # 内部状态
        self.rounds: list[Round] = []
        self.skipped: list[str] = []
        self.db: MasterDB | None = None
        self.plots: dict[str, PlotSpec] = {}
        self.failed_generators: list[str] = []
        self.failed_graphs: list[str] = []

    def run(self):
        """执行完整的分析流程"""
        self._prepare()

        # 解析所有轮次
        self._parse_rounds()

        # 少于两个有效轮次时在此抛出致命错误，不会产生任何渲染
        self.db = MasterDB(self.rounds)

        # 生成并渲染图表
        rendered = self._render_graphs()

        # 生成报告
        self._write_reports(rendered)

        # 清理临时数据
        self._cleanup()
        self._summarize()
        logger.info("所有处理完成。")

    def _prepare(self):
        """准备阶段：清空目录、设置输出格式"""
        if self.settings.clear_output_dir:
            Output.remove_output_dir(self.output_dir)
        Output.ensure_output_dir(self.output_dir)

        # 设置输出格式
        if self.settings.compact_json:
            Output.set_pretty_print(False)  # 禁用美观输出

    def _load_round(self, path: str) -> Round:
        """解析单个轮次，优先使用缓存"""
        if not self.settings.no_cache:
            cached = SnapshotMngr.load_round_cache(path, self.cache_dir)
            if cached is not None:
                return cached
        rnd = Parser.parse_round(SnapshotReader(path))
        if not self.settings.no_cache:
            SnapshotMngr.save_round_cache(rnd, self.cache_dir)
        return rnd

    def _parse_rounds(self):
        logger.info("--- 阶段 1: 解析轮次目录 ---")
        paths = expand_round_dirs(self.settings.inputs)
        for path in paths:
            dirname = os.path.basename(os.path.normpath(path))
            try:
                rnd = self._load_round(path)
            except RoundParseError as e:
                logger.warning(f"跳过轮次 {dirname}: {e}")
                self.skipped.append(dirname)
                continue
            logger.debug(f"已解析轮次 {rnd.dirname}: uptime={rnd.uptime:.2f}s")
            self.rounds.append(rnd)
        logger.info(f"共 {len(paths)} 个输入, {len(self.rounds)} 个有效轮次, 跳过 {len(self.skipped)} 个。")

    def _summarize(self):
        db = self.db
        duration = db.duration()
        stats = db.interval_stats()
        logger.info(f"已处理 {len(db)} 个轮次: {db[0].dirname} - {db[-1].dirname}")
        if duration >= 0:
            logger.info(f"总时长: {Output.format_seconds(duration)} ({duration:.0f}s)")
        else:
            logger.warning(db.duration_note())
        logger.info(
            f"轮次间隔: 平均 {stats.avg:.0f}s, 最小 {stats.min:.0f}s, 最大 {stats.max:.0f}s"
        )
        if version := db.software_version():
            logger.info(f"软件版本: {version}")

    def _render_graphs(self) -> list[PlotSpec]:
        """运行所有图生成器，并把产出的图表交给渲染工作进程"""
        logger.info("--- 阶段 2: 生成并渲染图表 ---")
        ctx = graphs.build_context(self.db, height=self.settings.plot_height, top_n=self.settings.top_n)
        pool = RenderPool(
            self.output_dir,
            workers=self.settings.jobs,
            backend=self.settings.backend,
            thumb_size=config.parse_size(self.settings.thumb_size),
            keep_commands=self.settings.debug,
            timeout=self.settings.render_timeout,
            render_argv=self.render_argv,
            thumbnail_argv=self.thumbnail_argv,
        )
        with pool:
            for outcome in graphs.run_generators(self.db, ctx):
                if not outcome.ok:
                    self.failed_generators.append(outcome.name)
                    continue
                for plot in outcome.plots:
                    self.plots[plot.key] = plot
                    pool.submit(plot)
            results = pool.close()

        self.failed_graphs = sorted(pool.failed_keys())
        rendered = [self.plots[key] for key in sorted(pool.rendered_keys())]
        logger.info(f"渲染完成: 成功 {len(rendered)} 个, 失败 {len(self.failed_graphs)} 个 (共 {len(results)} 个任务)。")
        return rendered

    def _write_reports(self, rendered: list[PlotSpec]):
        logger.info("--- 阶段 3: 生成报告 ---")
        index = Output.build_index(self.db, rendered, self.failed_graphs, self.failed_generators)
        json_path = os.path.join(self.output_dir, "index.json")
        Output.write_json_index(json_path, index)
        logger.info(f"JSON 索引 -> {json_path}")

        html_path = os.path.join(self.output_dir, "index.html")
        Output.write_html_index(html_path, Output.render_html(self.db, index, rendered))
        logger.info(f"HTML 报告 -> {html_path}")

    def _cleanup(self):
        """根据配置清理缓存"""
        if self.settings.clear_cache:
            deleted = SnapshotMngr.clear_all_cache(self.cache_dir)
            logger.info(f"已删除 {deleted} 个缓存文件。")


def main(argv: list[str] | None = None) -> int:
    settings = config.initialize_config(argv)
    utils.setup_logging(utils.log_level(settings.verbose, settings.quiet))
    try:
        MainProcessor(settings).run()
    except FatalError as e:
        logger.error(f"错误: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
