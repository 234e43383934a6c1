"""集中配置管理

替代各模块散落的 DEFAULT_* 常量，提供统一的配置入口。
支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

from lockinstall.core.exceptions import ConfigError
from lockinstall.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".lockinstall.yml"


@dataclass
class Config:
    """引擎全局配置"""

    # 仓库与目录
    registry: str = "https://registry.npmjs.org/"
    store_dir: str = "~/.lockinstall-store"
    lockfile_name: str = "shrinkwrap.yaml"
    modules_dir: str = "node_modules"

    # 网络
    network_concurrency: int = 16
    fetch_retries: int = 2
    fetch_timeout: int = 60  # 秒

    # 解析
    max_depth: int = 1000  # 依赖链深度上限（循环保护）

    # 安装模式
    production: bool = False
    save_exact: bool = False
    skip_dev_resolution: bool = False

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.registry.endswith("/"):
            self.registry += "/"
        if self.network_concurrency < 1:
            raise ConfigError(
                f"network_concurrency 必须 >= 1，实际: {self.network_concurrency}",
            )

    @property
    def store_path(self) -> Path:
        return Path(self.store_dir).expanduser()

    @classmethod
    def from_file(cls, path: str | Path = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except ValueError as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class InstallOptions:
    """单次安装调用的模式开关，未指定时取 Config 默认值"""

    production: bool = False
    save_exact: bool = False
    save_dev: bool = False

    @classmethod
    def from_config(cls, cfg: Config, **overrides: bool) -> InstallOptions:
        opts = cls(production=cfg.production, save_exact=cfg.save_exact)
        for k, v in overrides.items():
            setattr(opts, k, v)
        return opts


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str | Path = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
