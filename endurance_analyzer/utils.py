# utils.py
import logging


def log_level(verbosity: int = 0, quiet: bool = False) -> int:
    if quiet:
        return logging.WARNING
    return logging.DEBUG if verbosity > 0 else logging.INFO


def setup_logging(level: int = logging.INFO):
    """配置全局日志记录器"""
    # 创建根日志记录器
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # 避免重复添加处理器
    if root_logger.hasHandlers():
        return

    # 创建控制台处理器
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    # 定义日志格式
    formatter = logging.Formatter(
        '[%(asctime)s]-%(levelname)s- %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
