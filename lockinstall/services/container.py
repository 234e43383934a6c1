"""服务容器：进程级共享句柄

内容存储的生命周期独立于单次安装：同一容器内的所有 Installer 共享同一个
ContentStore 和仓库客户端，跨项目安装时按内容去重。

用法:
    container = ServiceContainer()
    installer = container.installer("path/to/project")

    # 显式注入配置
    cfg = Config.from_file(".lockinstall.yml")
    container = ServiceContainer(config=cfg)

    # 全局单例（CLI 共享）
    from lockinstall.services.container import get_container
    store = get_container().store
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lockinstall.core.config import Config
    from lockinstall.core.dep.git import GitResolver
    from lockinstall.core.installer import Installer
    from lockinstall.core.protocols import RegistryClient
    from lockinstall.core.store import ContentStore

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器：每个实例持有一组共享的存储与仓库客户端"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from lockinstall.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    @property
    def store(self) -> ContentStore:
        if "store" not in self._instances:
            from lockinstall.core.store import ContentStore
            self._instances["store"] = ContentStore(self._config.store_path)
            logger.debug("内容存储: %s", self._config.store_path)
        return self._instances["store"]  # type: ignore[return-value]

    @property
    def registry(self) -> RegistryClient:
        if "registry" not in self._instances:
            from lockinstall.core.dep.registry import HttpRegistry
            self._instances["registry"] = HttpRegistry(
                self._config.registry,
                retries=self._config.fetch_retries,
                timeout=self._config.fetch_timeout,
            )
        return self._instances["registry"]  # type: ignore[return-value]

    @property
    def git(self) -> GitResolver:
        if "git" not in self._instances:
            from lockinstall.core.dep.git import GitResolver
            self._instances["git"] = GitResolver(timeout=self._config.fetch_timeout)
        return self._instances["git"]  # type: ignore[return-value]

    def installer(self, project_dir: str | Path = ".") -> Installer:
        """为项目目录创建 Installer，共享本容器的存储与仓库"""
        from lockinstall.core.installer import Installer
        return Installer(
            project_dir,
            config=self._config,
            registry=self.registry,
            store=self.store,
            git=self.git,
        )


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
