"""CLI：内容存储查看"""

from __future__ import annotations

import click

from lockinstall.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(store)


@click.command()
@click.option("--list", "show_list", is_flag=True, help="列出全部条目")
def store(show_list: bool) -> None:
    """显示内容存储位置与条目数"""
    st = _svc().store
    entries = st.entries()
    click.echo(f"存储位置: {st.root}")
    click.echo(f"条目数: {len(entries)}")
    if not show_list:
        return
    for e in entries:
        label = f"{e.get('name', '')}@{e.get('version', '')}" if e.get("name") else e.get("tarball", "")
        click.echo(f"  {label:40s} {e.get('integrity', '')[:30]}")
