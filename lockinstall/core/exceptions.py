"""统一异常体系

所有业务异常继承 LockInstallError，替代散落的 ValueError / RuntimeError。
每个异常带稳定的 code 和上下文（包名、版本范围、依赖路径），
CLI 层据此输出可直接定位问题的提示。

除 LockfileInvalidError（锁文件作废后全量重新解析）外，其余异常均中止整个安装。
"""

from __future__ import annotations

from collections.abc import Mapping


class LockInstallError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        for k, v in self.context.items():
            if v:
                parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        return {
            "code": self.code,
            "message": self.args[0] if self.args else "",
            "context": dict(self.context),
        }


class ConfigError(LockInstallError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(LockInstallError):
    """输入数据校验失败（清单、说明符、URL）"""

    code = "VALIDATION_ERROR"


class NoMatchingVersionError(LockInstallError):
    """版本范围或 dist-tag 无匹配的已发布版本"""

    code = "NO_MATCHING_VERSION"


class RegistryUnavailableError(LockInstallError):
    """元数据或 tarball 拉取在重试耗尽后仍失败"""

    code = "REGISTRY_UNAVAILABLE"


class IntegrityMismatchError(LockInstallError):
    """下载内容的哈希与记录值不一致"""

    code = "INTEGRITY_MISMATCH"


class LockfileInvalidError(LockInstallError):
    """锁文件格式版本不支持或结构损坏"""

    code = "LOCKFILE_INVALID"


class CyclicDependencyError(LockInstallError):
    """依赖链深度超过循环保护上限"""

    code = "CYCLIC_DEPENDENCY"

    def __init__(
        self,
        message: str,
        *,
        cycle: list[str] | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        self.cycle = list(cycle or [])
        ctx = dict(context or {})
        if self.cycle:
            ctx.setdefault("chain", " -> ".join(self.cycle))
        super().__init__(message, context=ctx)


class LinkError(LockInstallError):
    """node_modules 布局创建失败"""

    code = "LINK_ERROR"
