"""CLI：安装与添加依赖"""

from __future__ import annotations

import click

from lockinstall.cli import _svc
from lockinstall.core.config import InstallOptions
from lockinstall.core.exceptions import LockInstallError
from lockinstall.core.installer import InstallResult


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(add)


def _report(result: InstallResult) -> None:
    if result.lockfile_removed:
        click.echo(f"没有依赖，已删除锁文件: {result.lockfile_path}")
        return
    if not result.lockfile_written:
        click.echo("没有依赖，无需安装。")
        return
    plan = result.plan
    if plan is not None:
        click.echo(f"锁文件协调: {plan.summary}")
    click.echo(
        f"已安装 {len(result.installed)} 个包实例"
        f"（新放置 {result.placed}，清理 {result.pruned}）"
    )
    click.echo(f"锁文件: {result.lockfile_path}")


@click.command()
@click.option("--dir", "project_dir", default=".", type=click.Path(file_okay=False), help="项目目录")
@click.option("--production", "-P", is_flag=True, help="只安装 dependencies")
def install(project_dir: str, production: bool) -> None:
    """按 package.json 与锁文件安装依赖"""
    svc = _svc()
    options = InstallOptions.from_config(svc.config)
    if production:
        options.production = True
    try:
        result = svc.installer(project_dir).install(options)
    except LockInstallError as e:
        raise click.ClickException(str(e)) from e
    _report(result)


@click.command()
@click.argument("specs", nargs=-1, required=True)
@click.option("--dir", "project_dir", default=".", type=click.Path(file_okay=False), help="项目目录")
@click.option("--save-exact", "-E", is_flag=True, help="写入精确版本而非 ^ 范围")
@click.option("--save-dev", "-D", is_flag=True, help="写入 devDependencies")
def add(specs: tuple[str, ...], project_dir: str, save_exact: bool, save_dev: bool) -> None:
    """添加依赖（如 foo@^1.0.0、@scope/bar、owner/repo#tag）并安装"""
    svc = _svc()
    options = InstallOptions.from_config(svc.config, save_dev=save_dev)
    if save_exact:
        options.save_exact = True
    try:
        result = svc.installer(project_dir).install_pkgs(list(specs), options)
    except LockInstallError as e:
        raise click.ClickException(str(e)) from e
    _report(result)
