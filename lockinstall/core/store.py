"""内容寻址存储

职责:
- 以内容哈希为键缓存解压后的包内容，跨包、跨项目复用
- 下载后按记录的 integrity / shasum 校验，不一致立即失败
- 同一哈希同一时刻至多一次拉取，并发请求等待首个拉取完成

目录布局:
  <root>/files/<sha512[:2]>/<sha512[2:]>/package/   解压后的包内容
  <root>/files/<sha512[:2]>/<sha512[2:]>/meta.json  来源信息
  <root>/index/<algo>/<hex>                         哈希别名 -> 内容键
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import io
import json
import logging
import os
import shutil
import tarfile
import tempfile
import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from lockinstall.core.exceptions import IntegrityMismatchError, ValidationError
from lockinstall.core.models import Resolution
from lockinstall.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

_SUPPORTED_ALGOS = ("sha512", "sha384", "sha256", "sha1")

Fetch = Callable[[str], bytes]


@dataclass(frozen=True)
class StoreEntry:
    """存储中的一个内容条目"""

    key: str
    path: Path  # 包根目录
    integrity: str
    shasum: str

    def manifest(self) -> dict[str, Any]:
        pkg_json = self.path / "package.json"
        if not pkg_json.exists():
            return {}
        try:
            data = json.loads(pkg_json.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(
                f"包内 package.json 无法解析: {e}", context={"path": str(pkg_json)},
            ) from e
        return data if isinstance(data, dict) else {}


def compute_digests(data: bytes) -> tuple[str, str]:
    """返回 (sha512 SRI, sha1 十六进制)"""
    sha512 = hashlib.sha512(data).digest()
    sri = "sha512-" + base64.b64encode(sha512).decode("ascii")
    return sri, hashlib.sha1(data).hexdigest()  # noqa: S324


def expected_digests(resolution: Resolution) -> list[tuple[str, str]]:
    """从 resolution 中取出期望的 (算法, 十六进制摘要) 列表"""
    result: list[tuple[str, str]] = []
    for item in resolution.integrity.split():
        algo, _, b64 = item.partition("-")
        if algo not in _SUPPORTED_ALGOS or not b64:
            continue
        try:
            result.append((algo, base64.b64decode(b64).hex()))
        except (binascii.Error, ValueError):
            continue
    if resolution.shasum:
        result.append(("sha1", resolution.shasum.lower()))
    return result


def strongest_digests(resolution: Resolution) -> tuple[str, list[str]] | None:
    """记录中强度最高的算法及其全部期望摘要；弱算法的摘要不参与校验"""
    expected = expected_digests(resolution)
    if not expected:
        return None
    algo = min((a for a, _ in expected), key=_SUPPORTED_ALGOS.index)
    return algo, [h for a, h in expected if a == algo]


def verify(data: bytes, resolution: Resolution, *, label: str = "") -> None:
    """校验下载内容；无期望摘要时直接通过

    Raises:
        IntegrityMismatchError: 最强算法的摘要不匹配
    """
    strongest = strongest_digests(resolution)
    if strongest is None:
        return
    algo, wanted = strongest
    actual = hashlib.new(algo, data).hexdigest()
    if actual in wanted:
        return
    raise IntegrityMismatchError(
        f"完整性校验失败: {label or resolution.tarball}",
        context={
            "package": label,
            "tarball": resolution.tarball,
            "expected": f"{algo}:{wanted[0]}",
            "actual": f"{algo}:{actual}",
        },
    )


class ContentStore:
    """内容寻址存储；一个进程持有一个实例，生命周期独立于单次安装"""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()
        (self.root / "files").mkdir(parents=True, exist_ok=True)
        (self.root / "index").mkdir(parents=True, exist_ok=True)
        (self.root / "tmp").mkdir(parents=True, exist_ok=True)
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def _content_dir(self, key: str) -> Path:
        return self.root / "files" / key[:2] / key[2:]

    def _alias_path(self, algo: str, hex_digest: str) -> Path:
        return self.root / "index" / algo / hex_digest

    def _entry(self, key: str) -> StoreEntry | None:
        content = self._content_dir(key)
        meta_path = content / "meta.json"
        if not meta_path.exists():
            return None
        meta = json.loads(meta_path.read_text(encoding="utf-8"))
        return StoreEntry(
            key=key,
            path=content / "package",
            integrity=meta.get("integrity", ""),
            shasum=meta.get("shasum", ""),
        )

    def lookup(self, resolution: Resolution) -> StoreEntry | None:
        """按最强算法的期望摘要查找已有内容，未命中返回 None"""
        strongest = strongest_digests(resolution)
        if strongest is None:
            return None
        algo, wanted = strongest
        for hex_digest in wanted:
            alias = self._alias_path(algo, hex_digest)
            if alias.exists():
                entry = self._entry(alias.read_text(encoding="utf-8").strip())
                if entry is not None:
                    return entry
        return None

    def has(self, name: str, version: str) -> bool:
        return any(
            e.get("name") == name and e.get("version") == version
            for e in self.entries()
        )

    def entries(self) -> list[dict[str, Any]]:
        """列出全部条目的来源信息"""
        result = []
        for meta_path in sorted((self.root / "files").glob("*/*/meta.json")):
            result.append(json.loads(meta_path.read_text(encoding="utf-8")))
        return result

    # ------------------------------------------------------------------
    # 拉取与写入
    # ------------------------------------------------------------------

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def ensure(
        self,
        resolution: Resolution,
        fetch: Fetch,
        *,
        name: str = "",
        version: str = "",
    ) -> StoreEntry:
        """确保内容在存储中：命中直接返回，否则下载、校验、写入

        Raises:
            IntegrityMismatchError: 下载内容与记录摘要不一致
            RegistryUnavailableError: 下载失败
        """
        label = f"{name}@{version}" if name else resolution.tarball
        strongest = strongest_digests(resolution)
        lock_key = f"{strongest[0]}-{strongest[1][0]}" if strongest else f"url:{resolution.tarball}"

        with self._lock_for(lock_key):
            hit = self.lookup(resolution)
            if hit is not None:
                logger.debug("存储命中: %s -> %s", label, hit.path)
                return hit
            if not resolution.tarball:
                raise ValidationError(
                    f"缺少 tarball 地址，无法拉取: {label}", context={"package": label},
                )
            data = fetch(resolution.tarball)
            verify(data, resolution, label=label)
            return self.put(data, name=name, version=version, tarball=resolution.tarball)

    def put(
        self,
        data: bytes,
        *,
        name: str = "",
        version: str = "",
        tarball: str = "",
    ) -> StoreEntry:
        """写入 tarball 内容（已校验），相同内容只保存一份"""
        integrity, shasum = compute_digests(data)
        key = hashlib.sha512(data).hexdigest()
        final = self._content_dir(key)

        if not (final / "meta.json").exists():
            staging = Path(tempfile.mkdtemp(dir=str(self.root / "tmp")))
            try:
                self._extract(data, staging / "package", label=name or tarball)
                meta = {
                    "name": name,
                    "version": version,
                    "integrity": integrity,
                    "shasum": shasum,
                    "tarball": tarball,
                }
                (staging / "meta.json").write_text(
                    json.dumps(meta, indent=2, ensure_ascii=False), encoding="utf-8",
                )
                final.parent.mkdir(parents=True, exist_ok=True)
                try:
                    os.replace(staging, final)
                except OSError:
                    # 其他进程已写入同一内容
                    if not (final / "meta.json").exists():
                        raise
            finally:
                if staging.exists():
                    shutil.rmtree(staging, ignore_errors=True)
            logger.info("已写入存储: %s -> %s", name or tarball, final)

        for algo in _SUPPORTED_ALGOS:
            hex_digest = key if algo == "sha512" else hashlib.new(algo, data).hexdigest()
            alias = self._alias_path(algo, hex_digest)
            if not alias.exists():
                atomic_write(alias, key)

        entry = self._entry(key)
        if entry is None:
            raise ValidationError(f"存储条目写入失败: {final}")
        return entry

    @staticmethod
    def _extract(data: bytes, dest: Path, *, label: str) -> None:
        """解压到 dest；归档只有一个顶层目录时（如 package/）以其为包根"""
        unpack = dest.parent / "unpack"
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tf:
                tf.extractall(path=str(unpack), filter="data")  # noqa: S202
        except tarfile.TarError as e:
            raise ValidationError(
                f"包内容无法解压: {label}: {e}", context={"package": label},
            ) from e

        children = list(unpack.iterdir())
        if len(children) == 1 and children[0].is_dir():
            os.replace(children[0], dest)
            unpack.rmdir()
        else:
            os.replace(unpack, dest)
