"""依赖解析模块

- registry.py: HTTP 仓库客户端
- resolver.py: 说明符解析（范围 / dist-tag / tarball / git）
- git.py: git 托管依赖的提交号解析
"""

from lockinstall.core.dep.git import GitResolver
from lockinstall.core.dep.registry import HttpRegistry
from lockinstall.core.dep.resolver import SpecifierResolver, parse_specifier

__all__ = [
    "GitResolver",
    "HttpRegistry",
    "SpecifierResolver",
    "parse_specifier",
]
