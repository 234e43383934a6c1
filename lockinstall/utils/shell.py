"""Shell 命令执行工具：统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，方便测试替换。
当前用于 git ls-remote 解析 git 托管依赖的提交号。
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Protocol


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """命令执行器协议：测试时可注入 mock 实现，无需 patch subprocess"""

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        timeout: int | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """本地命令执行器（默认实现）"""

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str = ".",
        timeout: int | None = None,
    ) -> CommandResult:
        r = subprocess.run(
            cmd, capture_output=True, text=True,
            cwd=cwd, check=False, timeout=timeout,
        )
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )
