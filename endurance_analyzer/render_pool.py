"""
Copyright (c) 2026, Chen Jie, Joungtao, Xuzheng Jiang
All rights reserved.
This source code is licensed under the BSD-2-Clause license found in the
LICENSE file in the root directory of this source tree.
"""

# render_pool.py
import json
import logging
import multiprocessing as mp
import os
import queue
import subprocess
import sys

from endurance_analyzer import utils
from endurance_analyzer.common_types import JobResult, JobState, PlotSpec

logger = logging.getLogger(__name__)

DEFAULT_RENDER_ARGV = [sys.executable, "-m", "endurance_analyzer.visualizer.renderer"]
DEFAULT_THUMBNAIL_ARGV = [sys.executable, "-m", "endurance_analyzer.visualizer.thumbnailer"]
POLL_INTERVAL = 0.2


def command_path(output_dir: str, key: str) -> str:
    return os.path.join(output_dir, f"{key}.cmd.json")


def image_name(key: str) -> str:
    return f"{key}.png"


def thumbnail_name(key: str) -> str:
    return f"{key}_thumb.png"


def _remove(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _run_tool(argv: list[str], timeout: float) -> str | None:
    """运行一个外部工具，成功返回 None，失败返回错误描述。"""
    try:
        proc = subprocess.run(argv, capture_output=True, timeout=timeout)
    except FileNotFoundError:
        return f"找不到外部程序 '{argv[0]}'"
    except subprocess.TimeoutExpired:
        return f"外部程序超时 ({timeout}s)"
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip().splitlines()
        tail = stderr[-1] if stderr else ""
        return f"退出码 {proc.returncode}: {tail}"
    return None


def render_job(key: str, output_dir: str, render_argv: list[str], thumbnail_argv: list[str],
               backend: str, thumb_size: tuple[int, int], timeout: float,
               keep_commands: bool, worker: int = -1) -> JobResult:
    """
    处理单个渲染任务：调用渲染引擎生成主图，再调用缩略图工具生成缩略图。
    失败时删除不完整的产物，保证 "产物存在" 与 "任务成功" 一一对应。
    """
    cmd_file = command_path(output_dir, key)
    image = os.path.join(output_dir, image_name(key))
    thumb = os.path.join(output_dir, thumbnail_name(key))

    detail = None
    if not os.path.exists(cmd_file):
        detail = f"找不到渲染命令文件 {cmd_file}"
    if detail is None:
        error = _run_tool([*render_argv, cmd_file, image, "--backend", backend], timeout)
        if error is not None:
            detail = f"渲染引擎失败, {error}"
        elif not os.path.exists(image):
            detail = "渲染引擎未生成图像"
    if detail is None:
        width, height = thumb_size
        error = _run_tool([*thumbnail_argv, image, thumb, "--size", f"{width}x{height}"], timeout)
        if error is not None:
            detail = f"缩略图生成失败, {error}"
        elif not os.path.exists(thumb):
            detail = "缩略图工具未生成图像"

    if not keep_commands:
        _remove(cmd_file)
    if detail is not None:
        _remove(image)
        _remove(thumb)
        return JobResult(key, JobState.FAILED, worker, detail)
    return JobResult(key, JobState.RENDERED, worker, image)


def _worker_main(worker: int, job_queue, result_queue, output_dir: str,
                 render_argv: list[str], thumbnail_argv: list[str], backend: str,
                 thumb_size: tuple[int, int], timeout: float, keep_commands: bool,
                 log_level: int):
    """工作进程主循环：从队列取 key，直到收到 None。"""
    utils.setup_logging(log_level)
    while True:
        key = job_queue.get()
        if key is None:
            break
        result_queue.put(JobResult(key, JobState.DISPATCHED, worker))
        try:
            result = render_job(key, output_dir, render_argv, thumbnail_argv, backend,
                                thumb_size, timeout, keep_commands, worker)
        except OSError as e:
            result = JobResult(key, JobState.FAILED, worker, f"{type(e).__name__}: {e}")
        result_queue.put(result)


class RenderPool:
    """
    固定数量的常驻渲染工作进程。
    协调者通过 submit() 把任务 key 放入共享队列，close() 关闭队列并等待所有
    工作进程退出，返回每个任务的最终结果。单个任务失败不影响其他任务。
    """

    def __init__(
        self,
        output_dir: str,
        workers: int = 1,
        backend: str = "agg",
        thumb_size: tuple[int, int] = (320, 250),
        keep_commands: bool = False,
        timeout: float = 120.0,
        render_argv: list[str] | None = None,
        thumbnail_argv: list[str] | None = None,
    ):
        if workers < 1:
            raise ValueError("workers 至少为 1")
        self.output_dir = output_dir
        self.workers = workers
        self.backend = backend
        self.thumb_size = thumb_size
        self.keep_commands = keep_commands
        self.timeout = timeout
        self.render_argv = list(render_argv or DEFAULT_RENDER_ARGV)
        self.thumbnail_argv = list(thumbnail_argv or DEFAULT_THUMBNAIL_ARGV)

        self.states: dict[str, JobState] = {}
        self.results: dict[str, JobResult] = {}
        self._processes: list[mp.Process] = []
        self._exited: list[mp.Process] = []
        self._inflight: dict[int, str] = {}
        self._restarts = 0
        self._log_level = logging.INFO
        self._job_queue = None
        self._result_queue = None
        self._closed = False

    def __enter__(self) -> "RenderPool":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        if not self._closed:
            self.close()

    def _spawn(self, worker: int) -> mp.Process:
        proc = mp.Process(
            target=_worker_main,
            name=f"render-worker-{worker}",
            args=(worker, self._job_queue, self._result_queue, self.output_dir,
                  self.render_argv, self.thumbnail_argv, self.backend, self.thumb_size,
                  self.timeout, self.keep_commands, self._log_level),
            daemon=True,
        )
        proc.start()
        return proc

    def start(self):
        self._job_queue = mp.Queue()
        self._result_queue = mp.Queue()
        self._log_level = logging.getLogger().getEffectiveLevel()
        for worker in range(self.workers):
            self._processes.append(self._spawn(worker))
        logger.info(f"已启动 {self.workers} 个渲染工作进程。")

    def submit(self, plot: PlotSpec) -> bool:
        """写出渲染命令文件并把任务放入队列。同一个 key 只会被接受一次。"""
        if self._closed or self._job_queue is None:
            raise RuntimeError("渲染池未启动或已关闭")
        if plot.key in self.states:
            logger.error(f"渲染任务 {plot.key} 已提交过，忽略重复提交。")
            return False
        self.states[plot.key] = JobState.QUEUED
        path = command_path(self.output_dir, plot.key)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(plot.render_command, f)
        except (OSError, TypeError, ValueError) as e:
            _remove(path)
            self._record(JobResult(plot.key, JobState.FAILED, -1, f"无法写入渲染命令文件: {e}"))
            return False
        self._job_queue.put(plot.key)
        return True

    def _record(self, result: JobResult):
        if result.key not in self.states or result.key in self.results:
            return
        if result.state == JobState.DISPATCHED:
            self.states[result.key] = JobState.DISPATCHED
            self._inflight[result.worker] = result.key
            logger.debug(f"渲染任务 {result.key} 已分派给工作进程 {result.worker}。")
            return
        if self._inflight.get(result.worker) == result.key:
            del self._inflight[result.worker]
        self.states[result.key] = result.state
        self.results[result.key] = result
        if result.ok:
            logger.debug(f"渲染任务 {result.key} 完成。")
        else:
            logger.error(f"渲染任务 {result.key} 失败: {result.detail}")

    def _pending(self) -> bool:
        return len(self.results) < len(self.states)

    def _drain(self):
        while True:
            try:
                self._record(self._result_queue.get(timeout=POLL_INTERVAL))
            except queue.Empty:
                return

    def _discard_artifacts(self, key: str):
        """删除未完成任务留下的图像、缩略图，以及 (非调试时) 命令文件。"""
        _remove(os.path.join(self.output_dir, image_name(key)))
        _remove(os.path.join(self.output_dir, thumbnail_name(key)))
        if not self.keep_commands:
            _remove(command_path(self.output_dir, key))

    def _fail_unreported(self, key: str, detail: str):
        self._discard_artifacts(key)
        self._record(JobResult(key, JobState.FAILED, -1, detail))

    def _replace_dead_workers(self) -> int:
        """
        异常退出的工作进程: 它正在处理的任务记为失败，并启动一个替代进程
        继续消费队列。替代进程复用原编号，消费原进程未取走的结束标记。
        返回本次启动的替代进程数。
        """
        replaced = 0
        for worker, proc in enumerate(self._processes):
            if proc.is_alive() or proc.exitcode in (0, None) or proc in self._exited:
                continue
            logger.warning(f"渲染工作进程 {proc.name} 异常退出，退出码 {proc.exitcode}。")
            self._exited.append(proc)
            # 先收取它退出前已经写入管道的消息
            self._drain()
            key = self._inflight.pop(worker, None)
            if key is not None and key not in self.results:
                self._fail_unreported(key, f"工作进程异常退出 (退出码 {proc.exitcode})")
            if self._restarts >= len(self.states):
                logger.error(f"渲染工作进程重启次数过多，不再替换 {proc.name}。")
                continue
            self._restarts += 1
            self._processes[worker] = self._spawn(worker)
            replaced += 1
        return replaced

    def close(self) -> dict[str, JobResult]:
        """
        关闭提交通道：每个工作进程一个结束标记，工作进程处理完剩余任务后退出。
        异常退出的工作进程会被替换，队列中剩余的任务照常处理。
        等待所有工作进程退出后返回全部结果；没有回报结果的任务记为失败。
        """
        if self._closed:
            return self.results
        self._closed = True
        for _ in self._processes:
            self._job_queue.put(None)

        while self._pending():
            try:
                self._record(self._result_queue.get(timeout=POLL_INTERVAL))
            except queue.Empty:
                pass
            alive = any(p.is_alive() for p in self._processes)
            if self._replace_dead_workers() == 0 and not alive:
                break
        # 工作进程退出前写入的结果可能仍在管道中
        while self._pending():
            try:
                self._record(self._result_queue.get(timeout=POLL_INTERVAL))
            except queue.Empty:
                break

        for proc in self._processes:
            proc.join()
            if proc.exitcode not in (0, None) and proc not in self._exited:
                logger.warning(f"渲染工作进程 {proc.name} 异常退出，退出码 {proc.exitcode}。")

        for key in list(self.states):
            if key not in self.results:
                self._fail_unreported(key, "工作进程退出前未回报结果")
        self._job_queue.close()
        self._result_queue.close()
        return self.results

    def rendered_keys(self) -> set[str]:
        return {key for key, result in self.results.items() if result.ok}

    def failed_keys(self) -> set[str]:
        return {key for key, result in self.results.items() if not result.ok}
