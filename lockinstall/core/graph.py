"""依赖图构建器

按层（广度优先）展开根依赖，每层分三步:
  1. 并行预取本层需要重新解析的包元数据（每个包名只有一个在途请求）
  2. 按固定顺序逐条决策（已锁定的边在前）：沿用旧锁文件记录 / 复用图中已有兼容版本
     / 沿用旧锁文件中满足范围的快照 / 新解析并隔离
  3. 并行读取新实例中需要从包内容获取的依赖声明（tarball、git、旧锁文件快照）

决策只在第 2 步串行进行，因此并发完成顺序不影响最终图与锁文件。
任一子树失败即整体失败，不返回部分图。
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

from lockinstall.core.dep.resolver import (
    SpecifierResolver,
    SpecKind,
    locked_matches,
    parse_specifier,
    parse_version,
    satisfies,
)
from lockinstall.core.dep_path import normalize_version
from lockinstall.core.exceptions import CyclicDependencyError
from lockinstall.core.models import (
    ROOT_PATH,
    DependencyGraph,
    GraphNode,
    Lockfile,
    PackageMetadata,
    Resolution,
    RootRequest,
)
from lockinstall.core.store import ContentStore, Fetch, StoreEntry

logger = logging.getLogger(__name__)


@dataclass
class _Edge:
    """待决策的一条依赖边"""

    parent: str
    name: str
    spec: str
    depth: int
    locked_path: str | None = None


class ResolvedIndex:
    """本次安装内已解析实例的索引: 包名 -> [(版本, 依赖路径)]"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_name: dict[str, list[tuple[str, str]]] = {}

    def add(self, name: str, version: str, dep_path: str) -> None:
        with self._lock:
            self._by_name.setdefault(name, []).append((version, dep_path))

    def find(self, name: str, spec_raw: str) -> str | None:
        """返回满足范围的最高已解析版本的依赖路径"""
        parsed = parse_specifier(spec_raw)
        with self._lock:
            entries = list(self._by_name.get(name, ()))
        best = None
        for version, dep_path in entries:
            if not satisfies(version, parsed):
                continue
            v = parse_version(version)
            if best is None or v > best[0]:
                best = (v, dep_path)
        return best[1] if best else None

    def path_for(self, name: str, version: str) -> str | None:
        with self._lock:
            for v, dep_path in self._by_name.get(name, ()):
                if v == version:
                    return dep_path
        return None


class DependencyGraphBuilder:
    """把根依赖集合展开为完整依赖图"""

    def __init__(
        self,
        resolver: SpecifierResolver,
        store: ContentStore,
        fetch: Fetch,
        *,
        previous: Lockfile | None = None,
        concurrency: int = 16,
        max_depth: int = 1000,
    ) -> None:
        self.resolver = resolver
        self.store = store
        self.fetch = fetch
        self.previous = previous
        self.concurrency = max(1, concurrency)
        self.max_depth = max_depth
        self.index = ResolvedIndex()
        self.recorded = ResolvedIndex()  # 旧锁文件中仍完整的默认仓库快照
        if previous is not None:
            for dep_path, snap in previous.packages.items():
                if dep_path == ROOT_PATH or not dep_path.startswith("/"):
                    continue
                if snap.resolution is not None and snap.version:
                    self.recorded.add(snap.name, snap.version, dep_path)
        self.entries: dict[str, StoreEntry] = {}
        self._meta_lock = threading.Lock()
        self._metadata: dict[str, Future[PackageMetadata]] = {}
        self._pool: ThreadPoolExecutor | None = None

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    def build(self, roots: list[RootRequest]) -> DependencyGraph:
        graph = DependencyGraph(dev_roots={r.name for r in roots if r.dev})
        level = [
            _Edge(parent=ROOT_PATH, name=r.name, spec=r.spec, depth=1, locked_path=r.locked_path)
            for r in sorted(roots, key=lambda r: r.name)
        ]

        pool = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="resolve")
        self._pool = pool
        try:
            while level:
                # 已锁定的边先决策，同层新边才能复用锁定版本
                level.sort(key=lambda e: self._locked_candidate(e) is None)
                self._prefetch_metadata(level)
                created: list[GraphNode] = []
                for edge in level:
                    dep_path = self._decide(graph, edge, created)
                    if edge.parent == ROOT_PATH:
                        graph.roots[edge.name] = dep_path
                    else:
                        graph.nodes[edge.parent].dependencies[edge.name] = dep_path
                self._load_declared(created)
                level = self._next_level(created)
        except BaseException:
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        finally:
            self._pool = None
        pool.shutdown(wait=True)

        logger.info(
            "依赖图构建完成: %d 个根依赖, %d 个包实例", len(graph.roots), len(graph.nodes),
        )
        return graph

    # ------------------------------------------------------------------
    # 第 1 步：元数据预取
    # ------------------------------------------------------------------

    def _metadata_future(self, name: str) -> Future[PackageMetadata]:
        """每个包名只有一个在途请求，并发调用者共享同一个 Future"""
        with self._meta_lock:
            fut = self._metadata.get(name)
            if fut is None:
                assert self._pool is not None
                fut = self._pool.submit(self.resolver.registry.get_metadata, name)
                self._metadata[name] = fut
            return fut

    def _prefetch_metadata(self, level: list[_Edge]) -> None:
        for edge in level:
            if self._locked_candidate(edge) is not None:
                continue
            parsed = parse_specifier(edge.spec)
            if parsed.kind is SpecKind.RANGE and self.recorded.find(edge.name, edge.spec):
                continue
            if parsed.from_registry:
                self._metadata_future(edge.name)

    # ------------------------------------------------------------------
    # 第 2 步：逐条决策
    # ------------------------------------------------------------------

    def _locked_candidate(self, edge: _Edge) -> str | None:
        """旧锁文件记录的路径若仍满足说明符且快照完整，返回该路径"""
        if not edge.locked_path or self.previous is None:
            return None
        snap = self.previous.packages.get(edge.locked_path)
        if snap is None or snap.resolution is None:
            return None
        if not locked_matches(edge.spec, edge.locked_path, snap.version):
            return None
        return edge.locked_path

    def _decide(self, graph: DependencyGraph, edge: _Edge, created: list[GraphNode]) -> str:
        if edge.depth > self.max_depth:
            chain = graph.chain_to(edge.parent) + [f"{edge.name}@{edge.spec}"]
            raise CyclicDependencyError(
                f"依赖链深度超过上限 {self.max_depth}",
                cycle=chain,
                context={"package": edge.name, "range": edge.spec},
            )

        locked = self._locked_candidate(edge)
        if locked is not None:
            if locked not in graph.nodes:
                self._add(graph, self._node_from_snapshot(locked, edge), created)
            return locked
        if edge.locked_path:
            logger.info(
                "锁文件记录已失效，重新解析: %s@%s (原 %s)", edge.name, edge.spec, edge.locked_path,
            )

        parsed = parse_specifier(edge.spec)
        metadata: PackageMetadata | None = None
        if parsed.kind is SpecKind.RANGE:
            existing = self.index.find(edge.name, edge.spec)
            if existing is not None:
                logger.debug("复用已解析实例: %s@%s -> %s", edge.name, edge.spec, existing)
                return existing
            recorded = self.recorded.find(edge.name, edge.spec)
            if recorded is not None:
                logger.debug("沿用锁文件中的兼容版本: %s@%s -> %s", edge.name, edge.spec, recorded)
                if recorded not in graph.nodes:
                    self._add(graph, self._node_from_snapshot(recorded, edge), created)
                return recorded
            metadata = self._metadata_future(edge.name).result()
        elif parsed.kind is SpecKind.TAG:
            metadata = self._metadata_future(edge.name).result()
            info = self.resolver.pick_version(metadata, parsed)
            existing = self.index.path_for(edge.name, info.version)
            if existing is not None:
                logger.debug("复用已解析实例: %s@%s -> %s", edge.name, edge.spec, existing)
                return existing

        resolved = self.resolver.resolve(edge.name, edge.spec, metadata=metadata)
        if resolved.dep_path not in graph.nodes:
            logger.debug("新建实例: %s@%s -> %s", edge.name, edge.spec, resolved.dep_path)
            self._add(graph, GraphNode(
                dep_path=resolved.dep_path,
                name=resolved.name,
                version=resolved.version,
                resolution=resolved.resolution,
                declared=resolved.dependencies,
                from_registry=resolved.from_registry,
                depth=edge.depth,
                parent=edge.parent,
            ), created)
        return resolved.dep_path

    def _node_from_snapshot(self, dep_path: str, edge: _Edge) -> GraphNode:
        assert self.previous is not None
        snap = self.previous.packages[dep_path]
        assert snap.resolution is not None
        return GraphNode(
            dep_path=dep_path,
            name=snap.name or edge.name,
            version=snap.version,
            resolution=snap.resolution,
            locked=True,
            from_registry=dep_path.startswith("/"),
            depth=edge.depth,
            parent=edge.parent,
        )

    def _add(self, graph: DependencyGraph, node: GraphNode, created: list[GraphNode]) -> None:
        graph.nodes[node.dep_path] = node
        if node.from_registry and node.version:
            self.index.add(node.name, node.version, node.dep_path)
        created.append(node)

    # ------------------------------------------------------------------
    # 第 3 步：读取包内容中的依赖声明
    # ------------------------------------------------------------------

    def _ensure(self, node: GraphNode) -> StoreEntry:
        return self.store.ensure(node.resolution, self.fetch, name=node.name, version=node.version)

    def _load_declared(self, nodes: list[GraphNode]) -> None:
        pending = [n for n in nodes if n.declared is None]
        if not pending:
            return
        assert self._pool is not None
        futures = [(n, self._pool.submit(self._ensure, n)) for n in pending]
        for node, fut in futures:
            entry = fut.result()
            self.entries[node.dep_path] = entry
            manifest = entry.manifest()
            node.declared = {
                str(k): str(v) for k, v in (manifest.get("dependencies") or {}).items()
            }
            if not node.version:
                node.version = normalize_version(str(manifest.get("version", "")))
            if not node.resolution.has_digest:
                node.resolution = Resolution(
                    integrity=entry.integrity, tarball=node.resolution.tarball,
                )

    def _next_level(self, created: list[GraphNode]) -> list[_Edge]:
        edges: list[_Edge] = []
        for node in created:
            prev = self.previous.packages.get(node.dep_path) if (node.locked and self.previous) else None
            for name in sorted(node.declared or {}):
                edges.append(_Edge(
                    parent=node.dep_path,
                    name=name,
                    spec=(node.declared or {})[name],
                    depth=node.depth + 1,
                    locked_path=prev.dependencies.get(name) if prev else None,
                ))
        return edges
