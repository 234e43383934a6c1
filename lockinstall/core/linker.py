"""node_modules 链接器

目录布局:
  node_modules/<name>                                   -> 根依赖的符号链接
  node_modules/.<placement>/node_modules/<name>/        包内容（从存储硬链接或复制）
  node_modules/.<placement>/node_modules/<dep>          -> 该实例自己解析到的依赖

<placement> 由依赖路径得出，同名不同实例互不覆盖，每个实例只看到自己的依赖。
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from lockinstall.core.dep_path import placement_prefix
from lockinstall.core.exceptions import LinkError
from lockinstall.core.models import DependencyGraph
from lockinstall.core.store import StoreEntry

logger = logging.getLogger(__name__)


def _link_or_copy(src: str, dst: str) -> str:
    """优先硬链接，跨设备等失败时退回复制"""
    try:
        os.link(src, dst)
    except OSError:
        shutil.copy2(src, dst)
    return dst


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _symlink(target: Path, link: Path) -> bool:
    """创建相对符号链接；已指向同一目标时不动，返回是否有改动"""
    relative = os.path.relpath(target, link.parent)
    if link.is_symlink() and os.readlink(link) == relative:
        return False
    if link.exists() or link.is_symlink():
        _remove(link)
    link.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(relative, link, target_is_directory=True)
    return True


class Linker:
    """把依赖图落到项目的 node_modules 目录"""

    def __init__(
        self,
        project_dir: str | Path,
        modules_dir: str = "node_modules",
        registry_url: str = "",
    ) -> None:
        self.project_dir = Path(project_dir)
        self.modules = self.project_dir / modules_dir
        self.registry_url = registry_url

    def placement_root(self, dep_path: str) -> Path:
        return self.modules / f".{placement_prefix(dep_path, self.registry_url)}"

    def package_dir(self, dep_path: str, name: str) -> Path:
        return self.placement_root(dep_path) / "node_modules" / name

    # ------------------------------------------------------------------
    # 链接
    # ------------------------------------------------------------------

    def _place(self, target: Path, entry: StoreEntry) -> bool:
        if target.exists():
            return False
        target.parent.mkdir(parents=True, exist_ok=True)
        staging = target.parent / f".{target.name}.tmp"
        if staging.exists():
            shutil.rmtree(staging)
        shutil.copytree(entry.path, staging, copy_function=_link_or_copy)
        os.replace(staging, target)
        return True

    def link(
        self,
        graph: DependencyGraph,
        entries: dict[str, StoreEntry],
        paths: set[str],
        root_names: list[str],
    ) -> int:
        """放置 paths 中的每个实例并建立依赖链接，返回新放置的实例数

        Raises:
            LinkError: 文件系统操作失败
        """
        placed = 0
        try:
            for dep_path in sorted(paths):
                node = graph.nodes[dep_path]
                target = self.package_dir(dep_path, node.name)
                if self._place(target, entries[dep_path]):
                    placed += 1
                deps_dir = self.placement_root(dep_path) / "node_modules"
                for dep_name, child in sorted(node.dependencies.items()):
                    if dep_name == node.name or child not in paths:
                        continue
                    child_node = graph.nodes[child]
                    _symlink(self.package_dir(child, child_node.name), deps_dir / dep_name)

            for name in sorted(root_names):
                dep_path = graph.roots[name]
                _symlink(self.package_dir(dep_path, graph.nodes[dep_path].name), self.modules / name)
        except OSError as e:
            raise LinkError(
                f"链接失败: {e}", context={"path": str(getattr(e, "filename", "") or self.modules)},
            ) from e

        logger.info("已链接 %d 个包实例（新放置 %d 个）", len(paths), placed)
        return placed

    # ------------------------------------------------------------------
    # 清理
    # ------------------------------------------------------------------

    def _root_links(self) -> dict[str, Path]:
        links: dict[str, Path] = {}
        if not self.modules.is_dir():
            return links
        for child in self.modules.iterdir():
            if child.name.startswith("."):
                continue
            if child.name.startswith("@") and child.is_dir() and not child.is_symlink():
                for scoped in child.iterdir():
                    if scoped.is_symlink():
                        links[f"{child.name}/{scoped.name}"] = scoped
            elif child.is_symlink():
                links[child.name] = child
        return links

    def prune(
        self,
        keep_paths: set[str],
        root_names: list[str],
        previous_paths: list[str] | None = None,
    ) -> int:
        """删除不再安装的根链接与实例目录，返回删除项数"""
        removed = 0
        keep_roots = set(root_names)
        try:
            for name, link in sorted(self._root_links().items()):
                if name not in keep_roots:
                    link.unlink()
                    removed += 1
                    scope = link.parent
                    if scope != self.modules and not any(scope.iterdir()):
                        scope.rmdir()

            keep_dirs = {self.placement_root(p) for p in keep_paths}
            for dep_path in previous_paths or []:
                if dep_path == "/" or dep_path in keep_paths:
                    continue
                stale = self.placement_root(dep_path)
                if stale in keep_dirs or not stale.exists():
                    continue
                shutil.rmtree(stale)
                removed += 1
        except OSError as e:
            raise LinkError(f"清理 node_modules 失败: {e}") from e

        if removed:
            logger.info("已清理 %d 个过期条目", removed)
        return removed
