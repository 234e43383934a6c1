"""核心数据模型

所有核心数据类集中定义，消除 resolver ↔ graph ↔ reconciler 的循环依赖。
依赖路径统一以完整形式（如 /name/1.0.0）保存在内存中，
缩写为版本号只发生在锁文件序列化阶段。
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

ROOT_PATH = "/"

# =========================================================================
# 仓库元数据
# =========================================================================


@dataclass(frozen=True)
class Resolution:
    """包内容的定位与校验信息

    integrity 为 SRI 格式（如 sha512-<base64>），shasum 为 sha1 十六进制。
    内存中 tarball 始终是完整 URL，默认仓库可推导时在序列化阶段省略。
    """

    integrity: str = ""
    shasum: str = ""
    tarball: str = ""

    @property
    def has_digest(self) -> bool:
        return bool(self.integrity or self.shasum)


@dataclass(frozen=True)
class VersionInfo:
    """仓库中单个已发布版本的元信息"""

    name: str
    version: str
    dependencies: dict[str, str] = field(default_factory=dict)
    resolution: Resolution = field(default_factory=Resolution)


@dataclass
class PackageMetadata:
    """仓库返回的包元数据（全部版本 + dist-tags）"""

    name: str
    versions: dict[str, VersionInfo] = field(default_factory=dict)
    dist_tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedPackage:
    """说明符解析结果

    dependencies 为 None 表示依赖声明需从包内容的 package.json 读取
    （tarball / git 来源）。
    """

    name: str
    version: str
    dep_path: str
    resolution: Resolution
    dependencies: dict[str, str] | None = None
    from_registry: bool = True


# =========================================================================
# 锁文件
# =========================================================================


@dataclass
class PackageSnapshot:
    """单个依赖路径的依赖 + 解析信息快照

    name / version 仅在依赖路径无法推导出包名和版本时记录（tarball、git 来源）。
    """

    dependencies: dict[str, str] = field(default_factory=dict)
    resolution: Resolution | None = None
    name: str = ""
    version: str = ""


@dataclass
class Lockfile:
    """持久化的解析记录（shrinkwrap）"""

    version: int
    registry: str
    specifiers: dict[str, str] = field(default_factory=dict)
    packages: dict[str, PackageSnapshot] = field(default_factory=dict)

    @property
    def root(self) -> PackageSnapshot:
        return self.packages.get(ROOT_PATH) or PackageSnapshot()

    def reachable_from(self, start: list[str]) -> list[str]:
        """从给定依赖路径出发可达的全部路径（含起点，跳过悬空引用）"""
        seen: list[str] = []
        seen_set: set[str] = set()
        queue = deque(p for p in start if p in self.packages)
        while queue:
            path = queue.popleft()
            if path in seen_set:
                continue
            seen_set.add(path)
            seen.append(path)
            for dep in self.packages[path].dependencies.values():
                if dep in self.packages and dep not in seen_set:
                    queue.append(dep)
        return seen


# =========================================================================
# 依赖图
# =========================================================================


@dataclass
class RootRequest:
    """根依赖请求；locked_path 非空表示沿用旧锁文件中的子树"""

    name: str
    spec: str
    dev: bool = False
    locked_path: str | None = None


@dataclass
class GraphNode:
    """依赖图中的一个包实例"""

    dep_path: str
    name: str
    version: str
    resolution: Resolution
    dependencies: dict[str, str] = field(default_factory=dict)  # 名称 -> 依赖路径
    declared: dict[str, str] | None = None  # 名称 -> 包自身声明的范围
    locked: bool = False  # 快照来自旧锁文件
    from_registry: bool = True
    depth: int = 1
    parent: str = ROOT_PATH  # 首次引入该实例的父路径，用于报告依赖链


@dataclass
class DependencyGraph:
    """完整解析后的依赖图"""

    roots: dict[str, str] = field(default_factory=dict)  # 根依赖名 -> 依赖路径
    dev_roots: set[str] = field(default_factory=set)
    nodes: dict[str, GraphNode] = field(default_factory=dict)

    def reachable_from(self, names: list[str] | None = None) -> set[str]:
        """从指定根依赖（默认全部）出发可达的依赖路径"""
        if names is None:
            names = list(self.roots)
        seen: set[str] = set()
        queue = deque(self.roots[n] for n in names if n in self.roots)
        while queue:
            path = queue.popleft()
            if path in seen or path not in self.nodes:
                continue
            seen.add(path)
            queue.extend(self.nodes[path].dependencies.values())
        return seen

    def production_paths(self) -> set[str]:
        """仅由 dependencies（非 devDependencies）可达的路径"""
        return self.reachable_from(
            [n for n in self.roots if n not in self.dev_roots],
        )

    def chain_to(self, path: str) -> list[str]:
        """沿首次引入关系回溯到根的依赖链"""
        chain: list[str] = []
        seen: set[str] = set()
        current = path
        while current in self.nodes and current not in seen:
            seen.add(current)
            chain.append(current)
            current = self.nodes[current].parent
        chain.append(ROOT_PATH)
        return list(reversed(chain))
