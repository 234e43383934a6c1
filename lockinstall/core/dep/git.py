"""git 托管依赖解析

把 owner/repo#ref 解析为确定的提交号，内容通过 codeload tarball 下载，
因此锁文件记录的始终是不可变的提交。
"""

from __future__ import annotations

import logging
import re

from lockinstall.core.exceptions import NoMatchingVersionError, RegistryUnavailableError
from lockinstall.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)

GIT_HOST = "github.com"

_COMMIT_RE = re.compile(r"^[0-9a-f]{40}$")


class GitResolver:
    """通过 git ls-remote 解析引用"""

    def __init__(self, executor: CommandExecutor | None = None, timeout: int = 60) -> None:
        self._executor = executor or LocalExecutor()
        self.timeout = timeout

    @staticmethod
    def repo_url(owner: str, repo: str) -> str:
        return f"https://{GIT_HOST}/{owner}/{repo}.git"

    @staticmethod
    def tarball_url(owner: str, repo: str, commit: str) -> str:
        return f"https://codeload.{GIT_HOST}/{owner}/{repo}/tar.gz/{commit}"

    def resolve_commit(self, owner: str, repo: str, ref: str = "") -> str:
        """ref 为空时取默认分支 HEAD；已是完整提交号时直接返回"""
        if _COMMIT_RE.match(ref):
            return ref
        url = self.repo_url(owner, repo)
        r = self._executor.execute(
            ["git", "ls-remote", url] + ([ref] if ref else ["HEAD"]),
            timeout=self.timeout,
        )
        if not r.success:
            raise RegistryUnavailableError(
                f"git ls-remote 失败 (rc={r.returncode}): {r.stderr[:300]}",
                context={"repo": url, "ref": ref or "HEAD"},
            )

        refs: dict[str, str] = {}
        for line in r.stdout.splitlines():
            parts = line.split()
            if len(parts) == 2:
                refs[parts[1]] = parts[0]

        wanted = ref or "HEAD"
        for candidate in (
            wanted,
            f"refs/tags/{wanted}^{{}}",
            f"refs/tags/{wanted}",
            f"refs/heads/{wanted}",
        ):
            if candidate in refs:
                logger.info("git 引用已解析: %s/%s#%s -> %s", owner, repo, wanted, refs[candidate])
                return refs[candidate]
        raise NoMatchingVersionError(
            f"git 仓库中不存在引用: {wanted}",
            context={"repo": url, "ref": wanted},
        )
