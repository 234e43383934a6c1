"""网络工具：URL 安全校验 + 带重试的 HTTP 读取"""

from __future__ import annotations

import logging
import time
import urllib.error
import urllib.request
from urllib.parse import urlparse

from lockinstall.core.exceptions import RegistryUnavailableError, ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))

# 重试间隔基数（秒），第 n 次重试等待 n * base
RETRY_BACKOFF = 0.5


class NotFoundError(Exception):
    """HTTP 404，不参与重试"""


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def host_key(url: str) -> str:
    """URL 的主机标识，端口以 '+' 连接，如 localhost+4873"""
    parsed = urlparse(url)
    host = parsed.hostname or ""
    if parsed.port:
        return f"{host}+{parsed.port}"
    return host


def read_url(
    url: str,
    *,
    retries: int = 2,
    timeout: int = 60,
    headers: dict[str, str] | None = None,
) -> bytes:
    """读取 URL 内容，失败时按退避策略重试

    Raises:
        NotFoundError: 服务端返回 404
        RegistryUnavailableError: 重试耗尽
    """
    validate_url_scheme(url, context="registry request")
    req = urllib.request.Request(url, headers=headers or {})
    last_error: Exception | None = None
    for attempt in range(retries + 1):
        if attempt:
            logger.warning("请求失败，第 %d 次重试: %s (%s)", attempt, url, last_error)
            time.sleep(RETRY_BACKOFF * attempt)
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec B310
                return resp.read()
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise NotFoundError(url) from e
            last_error = e
        except (urllib.error.URLError, OSError) as e:
            last_error = e
    raise RegistryUnavailableError(
        f"请求失败，已重试 {retries} 次: {url}",
        context={"url": url, "error": str(last_error)},
    )
