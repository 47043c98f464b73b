# snapshot_manager.py
import hashlib
import logging
import os
import pickle

from endurance_analyzer.common_types import Round

logger = logging.getLogger(__name__)

CACHE_PREFIX = "round_"
CACHE_SUFFIX = ".pkl"


def _cache_path(cache_dir: str, round_path: str) -> str:
    digest = hashlib.sha1(os.path.abspath(round_path).encode("utf-8")).hexdigest()[:16]
    return os.path.join(cache_dir, f"{CACHE_PREFIX}{digest}{CACHE_SUFFIX}")


def round_signature(round_path: str) -> tuple[tuple[str, int, int], ...]:
    """轮次目录中所有文件的 (名称, 大小, 修改时间)，任何变化都会使缓存失效。"""
    entries = []
    for name in sorted(os.listdir(round_path)):
        full = os.path.join(round_path, name)
        if os.path.isfile(full):
            st = os.stat(full)
            entries.append((name, st.st_size, st.st_mtime_ns))
    return tuple(entries)


def save_round_cache(rnd: Round, cache_dir: str):
    """
    将解析完成的轮次保存到 Pickle 文件中。
    文件名格式: round_<路径哈希>.pkl
    Args:
        rnd (Round): 要缓存的轮次。
        cache_dir (str): 缓存文件保存的目录。
    """
    os.makedirs(cache_dir, exist_ok=True)
    cache_file = _cache_path(cache_dir, rnd.path)
    payload = {"signature": round_signature(rnd.path), "round": rnd}
    try:
        with open(cache_file, "wb") as f:
            pickle.dump(payload, f)
    except OSError as e:
        logger.warning(f"无法写入缓存 {cache_file}: {e}")
        return
    logger.debug(f"轮次 {rnd.dirname} 已缓存至: {cache_file}")


def load_round_cache(round_path: str, cache_dir: str) -> Round | None:
    """
    加载某个轮次目录的缓存。
    缓存不存在、已损坏或轮次目录内容发生变化时返回 None。
    """
    cache_file = _cache_path(cache_dir, round_path)
    if not os.path.exists(cache_file):
        return None
    try:
        with open(cache_file, "rb") as f:
            payload = pickle.load(f)
    except Exception as e:
        logger.warning(f"加载缓存失败 {cache_file}: {e}。该缓存将被忽略。")
        return None

    try:
        signature = round_signature(round_path)
    except OSError:
        return None
    if not isinstance(payload, dict) or payload.get("signature") != signature:
        logger.debug(f"缓存 {cache_file} 已过期。")
        return None
    rnd = payload.get("round")
    if not isinstance(rnd, Round):
        return None
    logger.debug(f"从缓存加载轮次 {rnd.dirname}: {cache_file}")
    return rnd


def clear_all_cache(cache_dir: str) -> int:
    """
    删除缓存目录中所有的轮次缓存文件（round_*.pkl）。

    Args:
        cache_dir (str): 缓存文件所在的目录。

    Returns:
        int: 成功删除的文件数量。
    """
    if not os.path.exists(cache_dir):
        return 0

    cache_files = [f for f in os.listdir(cache_dir) if f.startswith(CACHE_PREFIX) and f.endswith(CACHE_SUFFIX)]

    deleted_count = 0
    for cache_file in cache_files:
        cache_path = os.path.join(cache_dir, cache_file)
        try:
            os.remove(cache_path)
            deleted_count += 1
        except OSError as e:
            logger.warning(f"无法删除缓存文件 {cache_path}: {e}")

    return deleted_count
