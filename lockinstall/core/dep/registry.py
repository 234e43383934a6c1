"""HTTP 包仓库客户端

职责:
- 拉取包元数据（versions + dist-tags）
- 下载 tarball
- 网络失败按配置重试，404 视为包不存在
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import semantic_version

from lockinstall.core.dep_path import normalize_version
from lockinstall.core.exceptions import NoMatchingVersionError, RegistryUnavailableError
from lockinstall.core.models import PackageMetadata, Resolution, VersionInfo
from lockinstall.utils.net import NotFoundError, read_url, validate_url_scheme

logger = logging.getLogger(__name__)

_ACCEPT = "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8"


def parse_metadata(name: str, payload: dict[str, Any]) -> PackageMetadata:
    """把仓库 JSON 转换为 PackageMetadata，无法解析的版本号被跳过"""
    versions: dict[str, VersionInfo] = {}
    for raw_version, info in (payload.get("versions") or {}).items():
        version = normalize_version(str(raw_version))
        try:
            semantic_version.Version(version)
        except ValueError:
            logger.debug("跳过无法解析的版本: %s@%s", name, raw_version)
            continue
        info = info or {}
        dist = info.get("dist") or {}
        versions[version] = VersionInfo(
            name=name,
            version=version,
            dependencies={str(k): str(v) for k, v in (info.get("dependencies") or {}).items()},
            resolution=Resolution(
                integrity=str(dist.get("integrity") or ""),
                shasum=str(dist.get("shasum") or ""),
                tarball=str(dist.get("tarball") or ""),
            ),
        )
    dist_tags = {
        str(tag): normalize_version(str(v))
        for tag, v in (payload.get("dist-tags") or {}).items()
    }
    return PackageMetadata(name=name, versions=versions, dist_tags=dist_tags)


class HttpRegistry:
    """npm 兼容的 HTTP 仓库"""

    def __init__(self, registry_url: str, *, retries: int = 2, timeout: int = 60) -> None:
        validate_url_scheme(registry_url, context="registry")
        self.registry_url = registry_url if registry_url.endswith("/") else registry_url + "/"
        self.retries = retries
        self.timeout = timeout

    def metadata_url(self, name: str) -> str:
        return f"{self.registry_url}{quote(name, safe='@')}"

    def get_metadata(self, name: str) -> PackageMetadata:
        url = self.metadata_url(name)
        logger.debug("拉取元数据: %s", url)
        try:
            raw = read_url(
                url, retries=self.retries, timeout=self.timeout,
                headers={"Accept": _ACCEPT},
            )
        except NotFoundError as e:
            raise NoMatchingVersionError(
                f"仓库中不存在包: {name}",
                context={"package": name, "registry": self.registry_url},
            ) from e
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise RegistryUnavailableError(
                f"仓库返回的元数据无法解析: {name}",
                context={"package": name, "url": url},
            ) from e
        return parse_metadata(name, payload)

    def fetch(self, tarball_url: str) -> bytes:
        logger.info("  下载: %s", tarball_url)
        try:
            return read_url(tarball_url, retries=self.retries, timeout=self.timeout)
        except NotFoundError as e:
            raise RegistryUnavailableError(
                f"tarball 不存在: {tarball_url}", context={"url": tarball_url},
            ) from e
