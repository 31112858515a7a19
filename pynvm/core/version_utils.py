"""
版本工具模块。

提供版本条目的排序、分组和别名选择等纯函数，全部以传入的快照为输入。
"""

from typing import Iterable, List, Dict, Any, Optional

from pynvm.core.models import VersionEntry
from pynvm.core.version_spec import Exact, Partial


def sort_versions_desc(versions: Iterable[VersionEntry]) -> List[VersionEntry]:
    """
    按版本号降序排列版本列表。

    参数:
        versions: 版本条目

    返回:
        排序后的版本列表
    """
    return sorted(versions, key=lambda v: v.version_key, reverse=True)


def group_versions_by_major(versions: Iterable[VersionEntry]) -> List[Dict[str, Any]]:
    """
    按主版本号分组版本列表。

    参数:
        versions: 版本条目

    返回:
        分组后的列表，每个分组包含 major_version、versions 和 lts 代号
    """
    groups: Dict[int, Dict[str, Any]] = {}

    for v in sort_versions_desc(versions):
        major = v.version_key[0]
        group = groups.setdefault(major, {
            "major_version": major,
            "versions": [],
            "lts": None,
        })
        group["versions"].append(v)
        if v.lts and not group["lts"]:
            group["lts"] = v.lts

    return sorted(groups.values(), key=lambda g: g["major_version"], reverse=True)


def select_latest(entries: Iterable[VersionEntry]) -> Optional[VersionEntry]:
    """返回快照中版本号最高的条目，快照为空返回 None。"""
    return max(entries, key=lambda e: e.version_key, default=None)


def select_lts(entries: Iterable[VersionEntry]) -> Optional[VersionEntry]:
    """返回快照中带 LTS 标记的最高版本，没有返回 None。"""
    return select_latest(e for e in entries if e.lts)


def select_matching(
    spec: Exact | Partial,
    local: Iterable[VersionEntry],
    remote: Iterable[VersionEntry] = (),
) -> Optional[VersionEntry]:
    """
    在本地与远程条目的并集中选择满足前缀的最高版本。

    版本号相同时优先返回本地已安装条目，但更高的远程版本总是胜出。

    参数:
        spec: Exact 或 Partial 说明符
        local: 本地已安装条目
        remote: 远程目录条目

    返回:
        选中的条目，无匹配返回 None
    """
    best: Optional[VersionEntry] = None
    # 本地在前：同版本时 > 比较不会替换已选中的本地条目
    for entry in list(local) + list(remote):
        if not spec.matches(entry.version_key):
            continue
        if best is None or entry.version_key > best.version_key:
            best = entry
    return best
