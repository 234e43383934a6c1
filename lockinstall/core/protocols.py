"""领域协议定义

集中定义引擎与外部协作方之间的接口契约（Protocol），
上层依赖抽象而非具体实现；测试中以内存仓库替换 HTTP 仓库。
"""

from __future__ import annotations

from typing import Protocol

from lockinstall.core.models import PackageMetadata


class RegistryClient(Protocol):
    """包仓库协作方协议"""

    def get_metadata(self, name: str) -> PackageMetadata:
        """获取包的全部版本与 dist-tags

        Raises:
            NoMatchingVersionError: 包不存在
            RegistryUnavailableError: 重试耗尽
        """
        ...

    def fetch(self, tarball_url: str) -> bytes:
        """下载 tarball 原始字节

        Raises:
            RegistryUnavailableError: 重试耗尽
        """
        ...
