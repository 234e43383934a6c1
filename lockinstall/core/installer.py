"""安装编排

一次安装的固定顺序:
  读取清单 -> 读取旧锁文件 -> 协调 -> 构建依赖图 -> 确保全部内容入库（含校验）
  -> 链接 node_modules -> 清理过期条目 -> 写锁文件

任何一步失败都在写锁文件之前中止；完整性校验在链接之前全部完成，
校验失败时 node_modules 不会被改动。
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from lockinstall.core.config import Config, InstallOptions, get_config
from lockinstall.core.dep.git import GitResolver
from lockinstall.core.dep.registry import HttpRegistry
from lockinstall.core.dep.resolver import (
    SpecifierResolver,
    SpecKind,
    parse_specifier,
    parse_version,
)
from lockinstall.core.exceptions import LockfileInvalidError, ValidationError
from lockinstall.core.graph import DependencyGraphBuilder
from lockinstall.core.linker import Linker
from lockinstall.core.lockfile import read_lockfile, remove_lockfile, write_lockfile
from lockinstall.core.manifest import add_dependency, read_manifest
from lockinstall.core.models import DependencyGraph, Lockfile
from lockinstall.core.protocols import RegistryClient
from lockinstall.core.reconciler import ReconcilePlan, ShrinkwrapReconciler
from lockinstall.core.store import ContentStore, StoreEntry

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^(?:@[\w.-]+/)?[\w.-]+$")


@dataclass
class InstallResult:
    """单次安装的结果摘要"""

    lockfile_path: Path
    lockfile_written: bool = False
    lockfile_removed: bool = False
    plan: ReconcilePlan | None = None
    graph: DependencyGraph | None = None
    installed: set[str] = field(default_factory=set)
    placed: int = 0
    pruned: int = 0


def split_package_spec(raw: str) -> tuple[str, str]:
    """拆分命令行参数为 (包名, 说明符)

    - name / @scope/name       -> (name, "latest")
    - name@range               -> (name, range)
    - URL 或 git 形式           -> ("", 原样)，包名需从包内容读取
    """
    raw = raw.strip()
    if not raw:
        raise ValidationError("包说明符不能为空")
    if "://" in raw or raw.startswith("git@"):
        if parse_specifier(raw).kind in (SpecKind.TARBALL, SpecKind.GIT):
            return "", raw
    if _NAME_RE.match(raw) and (raw.startswith("@") or "/" not in raw):
        return raw, "latest"
    at = raw.find("@", 1)
    if at > 0 and _NAME_RE.match(raw[:at]):
        return raw[:at], raw[at + 1:] or "latest"
    parsed = parse_specifier(raw)
    if parsed.kind in (SpecKind.TARBALL, SpecKind.GIT):
        return "", raw
    raise ValidationError(f"无法识别的包说明符: {raw}")


def saved_specifier(spec: str, version: str, *, exact: bool = False) -> str:
    """写回清单的说明符

    tag 或精确版本 -> ^version（exact 时为 version）；其他范围、URL、git 保持原样。
    """
    parsed = parse_specifier(spec)
    if parsed.kind is SpecKind.TAG or (
        parsed.kind is SpecKind.RANGE and parse_version(spec) is not None
    ):
        return version if exact else f"^{version}"
    return spec


class Installer:
    """一个项目目录上的安装入口"""

    def __init__(
        self,
        project_dir: str | Path,
        *,
        config: Config | None = None,
        registry: RegistryClient | None = None,
        store: ContentStore | None = None,
        git: GitResolver | None = None,
    ) -> None:
        self.project_dir = Path(project_dir)
        self.config = config or get_config()
        cfg = self.config
        self.registry = registry or HttpRegistry(
            cfg.registry, retries=cfg.fetch_retries, timeout=cfg.fetch_timeout,
        )
        self.store = store or ContentStore(cfg.store_path)
        self.resolver = SpecifierResolver(self.registry, cfg.registry, git=git)
        self.reconciler = ShrinkwrapReconciler(cfg.registry)
        self.linker = Linker(self.project_dir, cfg.modules_dir, cfg.registry)

    @property
    def lockfile_path(self) -> Path:
        return self.project_dir / self.config.lockfile_name

    def _load_previous(self) -> Lockfile | None:
        """读取旧锁文件；无效或仓库不一致时视为不存在"""
        try:
            previous = read_lockfile(self.lockfile_path)
        except LockfileInvalidError as e:
            logger.warning("锁文件无效，将完全重新解析: %s", e)
            return None
        if previous is not None and previous.registry != self.config.registry:
            logger.warning(
                "锁文件记录的仓库 %s 与当前仓库 %s 不一致，将完全重新解析",
                previous.registry, self.config.registry,
            )
            return None
        return previous

    def _ensure_all(
        self,
        graph: DependencyGraph,
        paths: set[str],
        known: dict[str, StoreEntry],
    ) -> dict[str, StoreEntry]:
        """并行确保 paths 的内容全部在存储中，任一失败即中止"""
        entries = {p: known[p] for p in paths if p in known}
        pending = sorted(p for p in paths if p not in entries)
        if not pending:
            return entries
        with ThreadPoolExecutor(
            max_workers=self.config.network_concurrency, thread_name_prefix="fetch",
        ) as pool:
            futures = {
                p: pool.submit(
                    self.store.ensure,
                    graph.nodes[p].resolution,
                    self.registry.fetch,
                    name=graph.nodes[p].name,
                    version=graph.nodes[p].version,
                )
                for p in pending
            }
            try:
                for dep_path in pending:
                    entries[dep_path] = futures[dep_path].result()
            except BaseException:
                pool.shutdown(wait=True, cancel_futures=True)
                raise
        return entries

    def install(self, options: InstallOptions | None = None) -> InstallResult:
        """按清单安装

        Raises:
            NoMatchingVersionError / RegistryUnavailableError / IntegrityMismatchError /
            CyclicDependencyError / LinkError / ValidationError
        """
        options = options or InstallOptions.from_config(self.config)
        result = InstallResult(lockfile_path=self.lockfile_path)
        manifest = read_manifest(self.project_dir)
        previous = self._load_previous()
        previous_paths = list(previous.packages) if previous else []

        plan = self.reconciler.plan(
            manifest, previous,
            skip_dev=options.production and self.config.skip_dev_resolution,
        )
        result.plan = plan

        if plan.remove_lockfile:
            result.pruned = self.linker.prune(set(), [], previous_paths)
            result.lockfile_removed = remove_lockfile(self.lockfile_path)
            return result

        builder = DependencyGraphBuilder(
            self.resolver,
            self.store,
            self.registry.fetch,
            previous=previous,
            concurrency=self.config.network_concurrency,
            max_depth=self.config.max_depth,
        )
        graph = builder.build(plan.roots)
        result.graph = graph
        lockfile = self.reconciler.to_lockfile(graph, plan, previous)

        if options.production:
            paths = graph.production_paths()
            root_names = [n for n in graph.roots if n not in graph.dev_roots]
        else:
            paths = graph.reachable_from()
            root_names = list(graph.roots)

        entries = self._ensure_all(graph, paths, builder.entries)
        result.installed = paths
        result.placed = self.linker.link(graph, entries, paths, root_names)
        result.pruned = self.linker.prune(paths, root_names, previous_paths)

        write_lockfile(lockfile, self.lockfile_path)
        result.lockfile_written = True
        logger.info("安装完成: %d 个包实例", len(paths))
        return result

    def _package_name(self, spec: str) -> str:
        """URL / git 说明符：下载包内容并读取其 package.json 中的包名"""
        resolved = self.resolver.resolve("", spec)
        entry = self.store.ensure(resolved.resolution, self.registry.fetch)
        name = str(entry.manifest().get("name") or "")
        if not name:
            raise ValidationError(f"包内容缺少 name 字段: {spec}", context={"range": spec})
        return name

    def install_pkgs(
        self, specs: list[str], options: InstallOptions | None = None,
    ) -> InstallResult:
        """解析并把新依赖写回清单，然后执行一次完整安装"""
        options = options or InstallOptions.from_config(self.config)
        for raw in specs:
            name, spec = split_package_spec(raw)
            if not name:
                name = self._package_name(spec)
                saved = spec
            else:
                resolved = self.resolver.resolve(name, spec)
                saved = saved_specifier(spec, resolved.version, exact=options.save_exact)
            add_dependency(self.project_dir, name, saved, dev=options.save_dev)
        return self.install(options)
