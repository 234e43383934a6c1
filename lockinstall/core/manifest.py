"""项目清单（package.json）读取与依赖写回

引擎只读取 dependencies / devDependencies 的原始说明符；
add 命令通过 add_dependency 把新说明符写回清单。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lockinstall.core.exceptions import ValidationError
from lockinstall.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

MANIFEST_FILE = "package.json"


@dataclass
class Manifest:
    """项目清单中引擎关心的部分"""

    name: str = ""
    version: str = ""
    dependencies: dict[str, str] = field(default_factory=dict)
    dev_dependencies: dict[str, str] = field(default_factory=dict)

    def requirements(self) -> dict[str, tuple[str, bool]]:
        """根依赖 名称 -> (说明符, 是否 dev)；同名时 dependencies 优先"""
        reqs = {name: (spec, True) for name, spec in self.dev_dependencies.items()}
        reqs.update({name: (spec, False) for name, spec in self.dependencies.items()})
        return reqs

    @property
    def has_dependencies(self) -> bool:
        return bool(self.dependencies or self.dev_dependencies)


def _str_map(data: dict[str, Any], key: str, path: Path) -> dict[str, str]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValidationError(f"清单字段 {key} 必须是对象", context={"path": str(path)})
    return {str(k): str(v) for k, v in value.items()}


def read_manifest(project_dir: str | Path) -> Manifest:
    path = Path(project_dir) / MANIFEST_FILE
    if not path.exists():
        raise ValidationError(f"未找到项目清单: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"项目清单不是合法 JSON: {e}", context={"path": str(path)}) from e
    if not isinstance(data, dict):
        raise ValidationError("项目清单顶层必须是对象", context={"path": str(path)})
    return Manifest(
        name=str(data.get("name", "")),
        version=str(data.get("version", "")),
        dependencies=_str_map(data, "dependencies", path),
        dev_dependencies=_str_map(data, "devDependencies", path),
    )


def add_dependency(
    project_dir: str | Path, name: str, spec: str, *, dev: bool = False,
) -> None:
    """把依赖说明符写回清单，并从另一组依赖中移除同名项"""
    path = Path(project_dir) / MANIFEST_FILE
    data: dict[str, Any] = {}
    if path.exists():
        data = json.loads(path.read_text(encoding="utf-8"))
    target, other = ("devDependencies", "dependencies") if dev else ("dependencies", "devDependencies")
    section = dict(data.get(target) or {})
    section[name] = spec
    data[target] = {k: section[k] for k in sorted(section)}
    if name in (data.get(other) or {}):
        del data[other][name]
        if not data[other]:
            del data[other]
    atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
    logger.info("清单已更新: %s %s@%s", target, name, spec)
