"""依赖路径规则

依赖路径是锁文件中标识一个已解析包实例的键:
  - "/"                       项目根
  - "/name/1.0.0"             默认仓库中的包
  - "/@scope/name/1.0.0"      默认仓库中的 scoped 包
  - "host+port/name/1.0.0"    其他仓库中的包
  - "host/path/to/pkg.tgz"    直接 tarball URL
  - "github.com/o/r/<commit>" git 托管包

版本号在解析时统一去掉 "v" / "=" 前缀，v5.0.11 与 5.0.11 视为同一版本。
"""

from __future__ import annotations

from urllib.parse import urlparse

from lockinstall.core.models import ROOT_PATH
from lockinstall.utils.net import host_key


def normalize_version(version: str) -> str:
    """去掉版本号前的 v / = 前缀及空白"""
    v = version.strip()
    while v[:1] in ("v", "V", "="):
        v = v[1:].lstrip()
    return v


def registry_path(name: str, version: str) -> str:
    return f"/{name}/{normalize_version(version)}"


def remote_registry_path(tarball_url: str, name: str, version: str) -> str:
    """非默认仓库的包：以 tarball 主机为前缀，永不缩写"""
    return f"{host_key(tarball_url)}/{name}/{normalize_version(version)}"


def tarball_path(url: str) -> str:
    parsed = urlparse(url)
    return f"{host_key(url)}{parsed.path.rstrip('/')}"


def git_path(host: str, owner: str, repo: str, commit: str) -> str:
    return f"{host}/{owner}/{repo}/{commit}"


def parse_registry_path(dep_path: str) -> tuple[str, str] | None:
    """从默认仓库依赖路径中解析 (name, version)，非此形式返回 None"""
    if not dep_path.startswith("/") or dep_path == ROOT_PATH:
        return None
    parts = dep_path[1:].split("/")
    if parts[0].startswith("@"):
        if len(parts) != 3 or not all(parts):
            return None
        return f"{parts[0]}/{parts[1]}", normalize_version(parts[2])
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], normalize_version(parts[1])


def shorten_ref(name: str, dep_path: str) -> str:
    """默认仓库中与依赖名一致的路径缩写为版本号，其余保持完整路径"""
    parsed = parse_registry_path(dep_path)
    if parsed and parsed[0] == name:
        return parsed[1]
    return dep_path


def expand_ref(name: str, ref: str) -> str:
    """将锁文件中的引用还原为完整依赖路径"""
    if "/" in ref:
        return ref
    return registry_path(name, ref)


def default_tarball_url(registry: str, name: str, version: str) -> str:
    """默认仓库可推导的 tarball 地址: <registry>/<name>/-/<basename>-<version>.tgz"""
    base = name.split("/")[-1]
    return f"{registry.rstrip('/')}/{name}/-/{base}-{normalize_version(version)}.tgz"


def placement_prefix(dep_path: str, registry: str) -> str:
    """依赖路径在 node_modules 下的隐藏目录名（不含前导点）"""
    if dep_path.startswith("/"):
        return f"{host_key(registry)}{dep_path}"
    return dep_path
