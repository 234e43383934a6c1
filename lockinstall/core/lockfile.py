"""锁文件（shrinkwrap.yaml）解析与序列化

职责:
- 读取并校验锁文件结构，不合法时抛 LockfileInvalidError
- 序列化时缩写默认仓库引用、省略可推导的 tarball，键排序固定，
  保证同一依赖图两次写出的内容逐字节一致
- 写入走原子替换；依赖清空时删除锁文件
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from lockinstall.core.dep_path import (
    default_tarball_url,
    expand_ref,
    normalize_version,
    parse_registry_path,
    registry_path,
    shorten_ref,
)
from lockinstall.core.exceptions import LockfileInvalidError
from lockinstall.core.models import ROOT_PATH, Lockfile, PackageSnapshot, Resolution
from lockinstall.utils.yaml_io import atomic_write, dump_yaml, load_yaml

logger = logging.getLogger(__name__)

LOCKFILE_VERSION = 2


# =========================================================================
# 解析
# =========================================================================


def parse_lockfile(payload: Any) -> Lockfile:
    """将 YAML 载荷转换为 Lockfile，结构不合法时抛 LockfileInvalidError"""
    if not isinstance(payload, dict):
        raise LockfileInvalidError("锁文件顶层必须是映射")

    version = payload.get("version")
    if version != LOCKFILE_VERSION:
        raise LockfileInvalidError(
            f"不支持的锁文件版本: {version!r}（需要 {LOCKFILE_VERSION}）",
        )

    registry = payload.get("registry")
    if not isinstance(registry, str) or not registry:
        raise LockfileInvalidError("锁文件缺少 registry 字段")
    if not registry.endswith("/"):
        registry += "/"

    specifiers = payload.get("specifiers") or {}
    if not isinstance(specifiers, dict):
        raise LockfileInvalidError("锁文件 specifiers 字段必须是映射")

    packages_raw = payload.get("packages") or {}
    if not isinstance(packages_raw, dict):
        raise LockfileInvalidError("锁文件 packages 字段必须是映射")

    packages: dict[str, PackageSnapshot] = {}
    for dep_path, raw in packages_raw.items():
        if not isinstance(dep_path, str) or not dep_path:
            raise LockfileInvalidError(f"无效的依赖路径: {dep_path!r}")
        key = _canonical_path(dep_path)
        packages[key] = _parse_snapshot(key, raw, registry)

    return Lockfile(
        version=version,
        registry=registry,
        specifiers={str(k): str(v) for k, v in specifiers.items()},
        packages=packages,
    )


def _canonical_path(dep_path: str) -> str:
    """默认仓库路径中的版本号去掉 v / = 前缀，与依赖引用的展开结果一致"""
    parsed = parse_registry_path(dep_path)
    return registry_path(*parsed) if parsed else dep_path


def _parse_snapshot(dep_path: str, raw: Any, registry: str) -> PackageSnapshot:
    parsed = parse_registry_path(dep_path)

    # 旧格式：快照直接写 shasum 字符串
    if isinstance(raw, str):
        return PackageSnapshot(
            resolution=_complete_resolution(Resolution(shasum=raw), parsed, registry),
            name=parsed[0] if parsed else "",
            version=parsed[1] if parsed else "",
        )
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise LockfileInvalidError(
            "快照必须是映射", context={"dep_path": dep_path},
        )

    deps_raw = raw.get("dependencies") or {}
    if not isinstance(deps_raw, dict):
        raise LockfileInvalidError(
            "快照 dependencies 必须是映射", context={"dep_path": dep_path},
        )
    dependencies = {
        str(name): expand_ref(str(name), str(ref)) for name, ref in deps_raw.items()
    }

    resolution: Resolution | None = None
    res_raw = raw.get("resolution")
    if res_raw is not None:
        if not isinstance(res_raw, dict):
            raise LockfileInvalidError(
                "快照 resolution 必须是映射", context={"dep_path": dep_path},
            )
        resolution = _complete_resolution(
            Resolution(
                integrity=str(res_raw.get("integrity") or ""),
                shasum=str(res_raw.get("shasum") or ""),
                tarball=str(res_raw.get("tarball") or ""),
            ),
            parsed,
            registry,
        )

    name = str(raw.get("name") or (parsed[0] if parsed else ""))
    version = normalize_version(str(raw.get("version") or (parsed[1] if parsed else "")))
    return PackageSnapshot(
        dependencies=dependencies, resolution=resolution, name=name, version=version,
    )


def _complete_resolution(
    res: Resolution, parsed: tuple[str, str] | None, registry: str,
) -> Resolution:
    """补全默认仓库可推导的 tarball 地址"""
    if res.tarball or parsed is None:
        return res
    return Resolution(
        integrity=res.integrity,
        shasum=res.shasum,
        tarball=default_tarball_url(registry, parsed[0], parsed[1]),
    )


# =========================================================================
# 序列化
# =========================================================================


def serialize_lockfile(lockfile: Lockfile) -> dict[str, Any]:
    """转换为写盘用的有序字典：根路径在前，其余路径与依赖名按字典序"""
    packages: dict[str, Any] = {}
    ordered = sorted(p for p in lockfile.packages if p != ROOT_PATH)
    if ROOT_PATH in lockfile.packages:
        ordered.insert(0, ROOT_PATH)

    for dep_path in ordered:
        snap = lockfile.packages[dep_path]
        entry: dict[str, Any] = {}
        parsed = parse_registry_path(dep_path)
        if dep_path != ROOT_PATH and parsed is None:
            if snap.name:
                entry["name"] = snap.name
            if snap.version:
                entry["version"] = snap.version
        if snap.dependencies or dep_path == ROOT_PATH:
            entry["dependencies"] = {
                name: shorten_ref(name, snap.dependencies[name])
                for name in sorted(snap.dependencies)
            }
        if snap.resolution is not None and dep_path != ROOT_PATH:
            entry["resolution"] = _serialize_resolution(
                snap.resolution, parsed, lockfile.registry,
            )
        packages[dep_path] = entry

    return {
        "version": lockfile.version,
        "registry": lockfile.registry,
        "specifiers": {k: lockfile.specifiers[k] for k in sorted(lockfile.specifiers)},
        "packages": packages,
    }


def _serialize_resolution(
    res: Resolution, parsed: tuple[str, str] | None, registry: str,
) -> dict[str, str]:
    out: dict[str, str] = {}
    if res.integrity:
        out["integrity"] = res.integrity
    elif res.shasum:
        out["shasum"] = res.shasum
    derivable = parsed is not None and res.tarball == default_tarball_url(
        registry, parsed[0], parsed[1],
    )
    if res.tarball and not derivable:
        out["tarball"] = res.tarball
    return out


def dumps_lockfile(lockfile: Lockfile) -> str:
    return dump_yaml(serialize_lockfile(lockfile))


# =========================================================================
# 文件读写
# =========================================================================


def read_lockfile(path: str | Path) -> Lockfile | None:
    """读取锁文件；文件不存在返回 None，内容无效抛 LockfileInvalidError"""
    p = Path(path)
    if not p.exists():
        return None
    try:
        payload = load_yaml(p)
    except (yaml.YAMLError, ValueError) as e:
        raise LockfileInvalidError(
            f"锁文件无法解析: {e}", context={"path": str(p)},
        ) from e
    lockfile = parse_lockfile(payload)
    logger.info("已加载锁文件: %s (%d 个快照)", p, len(lockfile.packages))
    return lockfile


def write_lockfile(lockfile: Lockfile, path: str | Path) -> Path:
    p = Path(path)
    atomic_write(p, dumps_lockfile(lockfile))
    logger.info("锁文件已写入: %s", p)
    return p


def remove_lockfile(path: str | Path) -> bool:
    """删除锁文件，返回是否确实删除了文件"""
    p = Path(path)
    if not p.exists():
        return False
    p.unlink()
    logger.info("依赖已清空，锁文件已删除: %s", p)
    return True
