"""lockinstall 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os
from typing import Any

import click

from lockinstall import __version__
from lockinstall.core.config import DEFAULT_CONFIG_FILE, init_config
from lockinstall.services.container import get_container, reset_container
from lockinstall.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_path", default=DEFAULT_CONFIG_FILE,
    help="配置文件路径（不存在时使用默认配置）",
)
def main(config_path: str) -> None:
    """lockinstall - 基于锁文件的依赖安装引擎"""
    setup_logging(
        level=os.getenv("LOCKINSTALL_LOG_LEVEL", "INFO"),
        json_output=os.getenv("LOCKINSTALL_LOG_JSON", "") == "1",
    )
    init_config(config_path)
    reset_container()


# 注册各领域子命令
from lockinstall.cli.cmd_install import register as _reg_install  # noqa: E402
from lockinstall.cli.cmd_store import register as _reg_store  # noqa: E402

_reg_install(main)
_reg_store(main)
