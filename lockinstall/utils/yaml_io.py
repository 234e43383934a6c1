"""YAML 文件统一读写工具

集中管理 YAML 文件的序列化/反序列化，避免各模块重复实现。
统一 encoding="utf-8"、空值保护、目录自动创建、原子写入。
锁文件、配置文件均经由此处读写。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# YAML 文件最大大小限制 (10MB)，防止恶意大文件导致内存耗尽
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """原子写入文件：先写临时文件再 rename，防止中途崩溃导致损坏

    参数:
        path: 目标文件路径
        content: 要写入的内容

    异常:
        OSError: 文件写入或移动失败
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=str(path.parent), suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        # 只捕获普通异常，不拦截 KeyboardInterrupt/SystemExit
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """安全读取 YAML 文件

    参数:
        path: YAML 文件路径

    返回:
        dict: 解析后的字典。文件不存在或为空时返回空字典

    异常:
        yaml.YAMLError: YAML 格式错误
        ValueError: 文件过大，或顶层内容不是字典
        OSError: 读取失败
    """
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({file_size} 字节), "
            f"超过限制 {MAX_YAML_SIZE} 字节"
        )

    try:
        with open(p, encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 文件失败: %s, 错误: %s", path, e)
        raise
    except OSError as e:
        logger.error("读取文件失败: %s, 错误: %s", path, e)
        raise

    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ValueError(
            f"{path} 内容不是字典类型 (实际类型: {type(result).__name__})"
        )
    return result


def dump_yaml(data: Any) -> str:
    """序列化为 YAML 文本，保持调用方给出的键顺序"""
    return yaml.safe_dump(
        data, default_flow_style=False,
        allow_unicode=True, sort_keys=False,
    )

