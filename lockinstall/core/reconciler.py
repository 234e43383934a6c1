"""锁文件协调器

对比旧锁文件的 specifiers 与当前清单，决定每个根依赖是沿用已记录子树还是重新解析；
依赖图构建完成后，按可达性重建锁文件（不在旧文件上打补丁）。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lockinstall.core.dep.resolver import locked_matches
from lockinstall.core.lockfile import LOCKFILE_VERSION
from lockinstall.core.manifest import Manifest
from lockinstall.core.models import (
    ROOT_PATH,
    DependencyGraph,
    Lockfile,
    PackageSnapshot,
    RootRequest,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconcilePlan:
    """协调结果"""

    roots: list[RootRequest] = field(default_factory=list)
    specifiers: dict[str, str] = field(default_factory=dict)
    reused: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    carried: dict[str, str] = field(default_factory=dict)  # 跳过解析的 dev 根依赖 -> 旧路径
    remove_lockfile: bool = False

    @property
    def summary(self) -> str:
        return (
            f"沿用 {len(self.reused)}, 变更 {len(self.changed)}, "
            f"新增 {len(self.added)}, 移除 {len(self.removed)}"
        )


class ShrinkwrapReconciler:
    """清单 + 旧锁文件 -> 解析计划 -> 新锁文件"""

    def __init__(self, registry_url: str) -> None:
        self.registry_url = registry_url

    @staticmethod
    def _reusable(previous: Lockfile, name: str, spec: str) -> str | None:
        if previous.specifiers.get(name) != spec:
            return None
        dep_path = previous.root.dependencies.get(name)
        if not dep_path:
            return None
        snap = previous.packages.get(dep_path)
        if snap is None or snap.resolution is None:
            return None
        if not locked_matches(spec, dep_path, snap.version):
            return None
        return dep_path

    def plan(
        self,
        manifest: Manifest,
        previous: Lockfile | None,
        *,
        skip_dev: bool = False,
    ) -> ReconcilePlan:
        """逐个根依赖决定沿用或重新解析

        Args:
            manifest: 当前清单
            previous: 旧锁文件（无效或不存在时为 None）
            skip_dev: 不解析 devDependencies（仅生产模式安装时使用）
        """
        plan = ReconcilePlan()
        requirements = manifest.requirements()
        if not requirements:
            plan.remove_lockfile = True
            if previous is not None:
                plan.removed = sorted(previous.specifiers)
            return plan

        for name in sorted(requirements):
            spec, dev = requirements[name]
            locked = self._reusable(previous, name, spec) if previous else None
            if locked:
                plan.reused.append(name)
            elif previous is not None and name in previous.specifiers:
                plan.changed.append(name)
            else:
                plan.added.append(name)

            if dev and skip_dev:
                if locked:
                    plan.carried[name] = locked
                    plan.specifiers[name] = spec
                else:
                    logger.info("生产模式跳过 devDependency 解析: %s@%s", name, spec)
                continue

            plan.specifiers[name] = spec
            plan.roots.append(RootRequest(name=name, spec=spec, dev=dev, locked_path=locked))

        if previous is not None:
            plan.removed = sorted(n for n in previous.specifiers if n not in requirements)
        logger.info("锁文件协调: %s", plan.summary)
        return plan

    def to_lockfile(
        self,
        graph: DependencyGraph,
        plan: ReconcilePlan,
        previous: Lockfile | None = None,
    ) -> Lockfile:
        """按可达性从依赖图重建锁文件

        未变化的旧快照按引用整体复制；跳过解析的 dev 子树从旧锁文件原样带入。
        """
        lockfile = Lockfile(version=LOCKFILE_VERSION, registry=self.registry_url)
        root_deps = dict(graph.roots)
        root_deps.update(plan.carried)
        lockfile.packages[ROOT_PATH] = PackageSnapshot(dependencies=root_deps)
        lockfile.specifiers = {n: plan.specifiers[n] for n in sorted(root_deps) if n in plan.specifiers}

        old = previous.packages if previous else {}
        for dep_path in sorted(graph.reachable_from()):
            node = graph.nodes[dep_path]
            prior = old.get(dep_path)
            if (
                node.locked
                and prior is not None
                and prior.dependencies == node.dependencies
                and prior.resolution == node.resolution
            ):
                lockfile.packages[dep_path] = prior
                continue
            lockfile.packages[dep_path] = PackageSnapshot(
                dependencies=dict(node.dependencies),
                resolution=node.resolution,
                name=node.name,
                version=node.version,
            )

        if plan.carried and previous is not None:
            for dep_path in previous.reachable_from(list(plan.carried.values())):
                lockfile.packages.setdefault(dep_path, previous.packages[dep_path])

        dropped = [p for p in old if p != ROOT_PATH and p not in lockfile.packages]
        if dropped:
            logger.debug("丢弃不可达快照: %s", ", ".join(sorted(dropped)))
        return lockfile
