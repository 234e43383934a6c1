"""公共测试夹具：内存仓库 + 临时项目目录"""

from __future__ import annotations

import gzip
import io
import json
import tarfile
import threading
from collections import Counter
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from lockinstall.core.config import Config
from lockinstall.core.dep.registry import parse_metadata
from lockinstall.core.dep_path import default_tarball_url, normalize_version
from lockinstall.core.exceptions import NoMatchingVersionError, RegistryUnavailableError
from lockinstall.core.installer import Installer
from lockinstall.core.models import PackageMetadata
from lockinstall.core.store import ContentStore, compute_digests

REGISTRY = "http://localhost:4873/"


def make_tarball(
    name: str,
    version: str,
    dependencies: dict[str, str] | None = None,
    files: dict[str, str] | None = None,
) -> bytes:
    """在内存中构造 npm 风格的 .tgz（内容位于 package/ 目录下）"""
    pkg: dict[str, Any] = {"name": name, "version": version}
    if dependencies:
        pkg["dependencies"] = dependencies
    contents = {"package.json": json.dumps(pkg, indent=2)}
    contents.update(files or {"index.js": f"module.exports = '{name}@{version}'\n"})

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tf:
        for rel, text in sorted(contents.items()):
            data = text.encode("utf-8")
            info = tarfile.TarInfo(f"package/{rel}")
            info.size = len(data)
            info.mtime = 0
            tf.addfile(info, io.BytesIO(data))
    return gzip.compress(buf.getvalue(), mtime=0)


class FakeRegistry:
    """实现 RegistryClient 协议的内存仓库，统计元数据与下载调用次数"""

    def __init__(self, registry_url: str = REGISTRY) -> None:
        self.registry_url = registry_url
        self._versions: dict[str, dict[str, dict[str, Any]]] = {}
        self._tags: dict[str, dict[str, str]] = {}
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.metadata_calls: Counter[str] = Counter()
        self.fetch_calls: Counter[str] = Counter()
        self.unavailable: set[str] = set()  # fetch 时模拟仓库不可用的 URL

    def publish(
        self,
        name: str,
        version: str,
        dependencies: dict[str, str] | None = None,
        *,
        tarball_url: str = "",
        tag_latest: bool = True,
    ) -> bytes:
        data = make_tarball(name, normalize_version(version), dependencies)
        url = tarball_url or default_tarball_url(self.registry_url, name, version)
        integrity, shasum = compute_digests(data)
        self._blobs[url] = data
        self._versions.setdefault(name, {})[version] = {
            "name": name,
            "version": version,
            "dependencies": dict(dependencies or {}),
            "dist": {"integrity": integrity, "shasum": shasum, "tarball": url},
        }
        if tag_latest:
            self.tag(name, "latest", version)
        return data

    def serve(self, url: str, data: bytes) -> None:
        """挂载任意 URL 的原始内容（tarball / git 说明符）"""
        self._blobs[url] = data

    def tag(self, name: str, tag: str, version: str) -> None:
        self._tags.setdefault(name, {})[tag] = version

    def tarball(self, name: str, version: str) -> bytes:
        return self._blobs[self._versions[name][version]["dist"]["tarball"]]

    def get_metadata(self, name: str) -> PackageMetadata:
        with self._lock:
            self.metadata_calls[name] += 1
        if name not in self._versions:
            raise NoMatchingVersionError(f"仓库中不存在包: {name}", context={"package": name})
        return parse_metadata(name, {
            "name": name,
            "versions": self._versions[name],
            "dist-tags": dict(self._tags.get(name, {})),
        })

    def fetch(self, tarball_url: str) -> bytes:
        with self._lock:
            self.fetch_calls[tarball_url] += 1
        if tarball_url in self.unavailable:
            raise RegistryUnavailableError(f"仓库不可用: {tarball_url}", context={"tarball": tarball_url})
        if tarball_url not in self._blobs:
            raise RegistryUnavailableError(f"tarball 不存在: {tarball_url}")
        return self._blobs[tarball_url]


class Project:
    """临时项目目录的读写辅助"""

    def __init__(self, path: Path, lockfile_name: str = "shrinkwrap.yaml") -> None:
        self.path = path
        self.lockfile = path / lockfile_name
        self.modules = path / "node_modules"

    def write_manifest(
        self,
        dependencies: dict[str, str] | None = None,
        dev_dependencies: dict[str, str] | None = None,
    ) -> None:
        data: dict[str, Any] = {"name": "project", "version": "0.0.0"}
        if dependencies is not None:
            data["dependencies"] = dependencies
        if dev_dependencies is not None:
            data["devDependencies"] = dev_dependencies
        (self.path / "package.json").write_text(json.dumps(data, indent=2), encoding="utf-8")

    def read_manifest(self) -> dict[str, Any]:
        return json.loads((self.path / "package.json").read_text(encoding="utf-8"))

    def load_lockfile(self) -> dict[str, Any] | None:
        if not self.lockfile.exists():
            return None
        return yaml.safe_load(self.lockfile.read_text(encoding="utf-8"))

    def write_lockfile(self, data: dict[str, Any]) -> None:
        self.lockfile.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")

    def installed_version(self, *parts: str) -> str | None:
        """沿符号链接读取 node_modules/<a>/node_modules/<b>/... 的 package.json 版本"""
        current = self.modules / parts[0]
        for name in parts[1:]:
            current = current.resolve().parent / name
        pkg_json = current / "package.json"
        if not pkg_json.exists():
            return None
        return json.loads(pkg_json.read_text(encoding="utf-8"))["version"]


@pytest.fixture
def registry() -> FakeRegistry:
    """预置常用包的内存仓库"""
    reg = FakeRegistry()
    reg.publish("dep-of-pkg-with-1-dep", "100.0.0")
    reg.publish("dep-of-pkg-with-1-dep", "100.1.0", tag_latest=False)
    reg.publish("pkg-with-1-dep", "100.0.0", {"dep-of-pkg-with-1-dep": "^100.0.0"})
    reg.publish("@scope/name", "5.3.31")
    for v in ("1.0.0", "2.0.0", "2.1.0"):
        reg.publish("is-negative", v)
    for v in ("1.0.0", "3.1.0"):
        reg.publish("is-positive", v)
    reg.publish("needs-negative-1", "1.0.0", {"is-negative": "^1.0.0"})
    reg.publish("needs-negative-2", "1.0.0", {"is-negative": "^2.0.0"})
    return reg


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        registry=REGISTRY,
        store_dir=str(tmp_path / "store"),
        network_concurrency=4,
        fetch_retries=0,
    )


@pytest.fixture
def store(config: Config) -> ContentStore:
    return ContentStore(config.store_path)


@pytest.fixture
def project(tmp_path: Path) -> Project:
    path = tmp_path / "project"
    path.mkdir()
    return Project(path)


@pytest.fixture
def installer(
    project: Project, config: Config, registry: FakeRegistry, store: ContentStore,
) -> Installer:
    return Installer(project.path, config=config, registry=registry, store=store)


@pytest.fixture
def tarball_factory() -> Callable[..., bytes]:
    return make_tarball
