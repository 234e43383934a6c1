"""说明符解析器

把一个 (name, 说明符) 解析为确定的版本 + 解析信息。
说明符形式:
  - 语义化版本范围: ^1.0.0, ~2.1, 1.x, >=1 <3, 2.0.0
  - dist-tag: latest, next
  - tarball URL: https://host/path/pkg.tgz
  - git 托管: owner/repo#ref, github:owner/repo, git+https://github.com/owner/repo.git#ref,
    git+ssh://git@github.com/owner/repo.git, git@github.com:owner/repo.git

解析器不跨调用缓存结果（dist-tag 可能在两次调用间移动），
需要在一次安装内保持一致时由调用方传入已拉取的元数据。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

import semantic_version

from lockinstall.core.dep.git import GIT_HOST, GitResolver
from lockinstall.core.dep_path import (
    git_path,
    normalize_version,
    registry_path,
    remote_registry_path,
    tarball_path,
)
from lockinstall.core.exceptions import NoMatchingVersionError, ValidationError
from lockinstall.core.models import PackageMetadata, ResolvedPackage, Resolution, VersionInfo
from lockinstall.core.protocols import RegistryClient
from lockinstall.utils.net import host_key

logger = logging.getLogger(__name__)

_GIT_RE = re.compile(r"^(?:github:)?([\w.-]+)/([\w.-]+?)(?:\.git)?(?:#(.+))?$")
_GIT_URL_RE = re.compile(
    r"^(?:(?:git\+(?:https?|ssh)|git|ssh)://(?:[^@/]+@)?|git@)"
    r"github\.com[/:]([\w.-]+)/([\w.-]+?)(?:\.git)?/?(?:#(.+))?$"
)
_GIT_URL_PREFIXES = ("git+", "git://", "ssh://", "git@")
_TAG_RE = re.compile(r"^[A-Za-z][\w.-]*$")


class SpecKind(Enum):
    RANGE = "range"
    TAG = "tag"
    TARBALL = "tarball"
    GIT = "git"


@dataclass(frozen=True)
class ParsedSpecifier:
    kind: SpecKind
    raw: str
    range: semantic_version.NpmSpec | None = None
    tag: str = ""
    url: str = ""
    owner: str = ""
    repo: str = ""
    ref: str = ""

    @property
    def from_registry(self) -> bool:
        return self.kind in (SpecKind.RANGE, SpecKind.TAG)


def parse_specifier(spec: str) -> ParsedSpecifier:
    """识别说明符类型；无法识别时抛 ValidationError"""
    raw = spec.strip()
    m = _GIT_URL_RE.match(raw)
    if m:
        return ParsedSpecifier(
            kind=SpecKind.GIT, raw=raw,
            owner=m.group(1), repo=m.group(2), ref=m.group(3) or "",
        )
    if raw.startswith(_GIT_URL_PREFIXES):
        raise ValidationError(f"仅支持 {GIT_HOST} 托管的 git 依赖: {spec!r}")
    if raw.startswith(("http://", "https://")):
        return ParsedSpecifier(kind=SpecKind.TARBALL, raw=raw, url=raw)
    if not raw.startswith("@"):
        m = _GIT_RE.match(raw)
        if m:
            return ParsedSpecifier(
                kind=SpecKind.GIT, raw=raw,
                owner=m.group(1), repo=m.group(2), ref=m.group(3) or "",
            )
    try:
        return ParsedSpecifier(
            kind=SpecKind.RANGE, raw=raw,
            range=semantic_version.NpmSpec(_normalize_range(raw)),
        )
    except ValueError:
        pass
    if _TAG_RE.match(raw):
        return ParsedSpecifier(kind=SpecKind.TAG, raw=raw, tag=raw)
    raise ValidationError(f"无法识别的依赖说明符: {spec!r}")


def _normalize_range(raw: str) -> str:
    if raw == "":
        return "*"
    # 单个 v 前缀版本号，如 v5.0.11
    if raw[:1] in ("v", "V") and raw[1:2].isdigit():
        return normalize_version(raw)
    return raw


def parse_version(version: str) -> semantic_version.Version | None:
    try:
        return semantic_version.Version(normalize_version(version))
    except ValueError:
        return None


def satisfies(version: str, spec: ParsedSpecifier) -> bool:
    """版本是否满足范围说明符；非范围类说明符总是返回 False"""
    if spec.kind is not SpecKind.RANGE or spec.range is None:
        return False
    parsed = parse_version(version)
    return parsed is not None and spec.range.match(parsed)


def locked_matches(spec: str, dep_path: str, version: str) -> bool:
    """旧锁文件中的解析结果能否继续满足说明符

    - 范围: 记录的版本满足范围
    - dist-tag: 说明符未变即沿用记录（tag 移动不触发重新解析）
    - tarball: 依赖路径与 URL 对应
    - git: 依赖路径属于同一仓库（提交号已固定）
    """
    try:
        parsed = parse_specifier(spec)
    except ValidationError:
        return False
    if parsed.kind is SpecKind.RANGE:
        return satisfies(version, parsed)
    if parsed.kind is SpecKind.TAG:
        return bool(version)
    if parsed.kind is SpecKind.TARBALL:
        return dep_path == tarball_path(parsed.url)
    return dep_path.startswith(f"{GIT_HOST}/{parsed.owner}/{parsed.repo}/")


class SpecifierResolver:
    """(name, 说明符) -> ResolvedPackage"""

    def __init__(
        self,
        registry: RegistryClient,
        registry_url: str,
        git: GitResolver | None = None,
    ) -> None:
        self.registry = registry
        self.registry_url = registry_url if registry_url.endswith("/") else registry_url + "/"
        self.git = git or GitResolver()

    def resolve(
        self,
        name: str,
        spec: str,
        *,
        metadata: PackageMetadata | None = None,
    ) -> ResolvedPackage:
        """解析单个说明符

        Raises:
            NoMatchingVersionError: 无满足的版本
            RegistryUnavailableError: 仓库不可用
            ValidationError: 说明符无法识别
        """
        parsed = parse_specifier(spec)
        if parsed.kind is SpecKind.TARBALL:
            return ResolvedPackage(
                name=name, version="", dep_path=tarball_path(parsed.url),
                resolution=Resolution(tarball=parsed.url), from_registry=False,
            )
        if parsed.kind is SpecKind.GIT:
            commit = self.git.resolve_commit(parsed.owner, parsed.repo, parsed.ref)
            return ResolvedPackage(
                name=name, version="",
                dep_path=git_path(GIT_HOST, parsed.owner, parsed.repo, commit),
                resolution=Resolution(
                    tarball=self.git.tarball_url(parsed.owner, parsed.repo, commit),
                ),
                from_registry=False,
            )

        if metadata is None:
            metadata = self.registry.get_metadata(name)
        info = self.pick_version(metadata, parsed)
        logger.info("已解析: %s@%s -> %s", name, spec, info.version)
        return ResolvedPackage(
            name=name,
            version=info.version,
            dep_path=self.dep_path_for(info),
            resolution=info.resolution,
            dependencies=dict(info.dependencies),
        )

    def dep_path_for(self, info: VersionInfo) -> str:
        """默认仓库主机下的包用 /name/version，其余以 tarball 主机为前缀"""
        tarball = info.resolution.tarball
        if not tarball or host_key(tarball) == host_key(self.registry_url):
            return registry_path(info.name, info.version)
        return remote_registry_path(tarball, info.name, info.version)

    @staticmethod
    def pick_version(metadata: PackageMetadata, parsed: ParsedSpecifier) -> VersionInfo:
        """范围取满足条件的最高版本（latest 满足时优先），tag 取其指向版本"""
        if parsed.kind is SpecKind.TAG:
            version = metadata.dist_tags.get(parsed.tag)
            if version is None or version not in metadata.versions:
                raise NoMatchingVersionError(
                    f"dist-tag 不存在: {metadata.name}@{parsed.tag}",
                    context={"package": metadata.name, "range": parsed.raw},
                )
            return metadata.versions[version]

        latest = metadata.dist_tags.get("latest")
        if latest in metadata.versions and satisfies(latest, parsed):
            return metadata.versions[latest]

        candidates = {
            parse_version(v): v for v in metadata.versions
        }
        candidates.pop(None, None)
        best = parsed.range.select(candidates.keys()) if parsed.range else None
        if best is None:
            raise NoMatchingVersionError(
                f"没有满足范围的已发布版本: {metadata.name}@{parsed.raw}",
                context={
                    "package": metadata.name,
                    "range": parsed.raw,
                    "available": ", ".join(sorted(metadata.versions)[-10:]),
                },
            )
        return metadata.versions[candidates[best]]
