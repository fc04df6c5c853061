"""模型注册表文件加载。

文件格式与原 models.json 一致：顶层是 "客户端模型名 -> 配置" 的映射，
每项包含 provider、model 以及可选的 type（chat / embedding）。
JSON 是 YAML 的子集，因此统一用 yaml.safe_load 解析。
"""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from ollama_proxy.domain.exceptions import ValidationError


# 没有注册表文件时使用的内置模型
BUILTIN_MODELS: Dict[str, Dict[str, Any]] = {
    "gpt-4o-mini": {"provider": "openai", "model": "gpt-4o-mini"},
    "gpt-4.1-mini": {"provider": "openai", "model": "gpt-4.1-mini"},
    "gpt-4.1-nano": {"provider": "openai", "model": "gpt-4.1-nano"},
    "gemini-2.5-flash": {"provider": "google", "model": "gemini-2.5-flash"},
    "gemini-2.5-flash-lite": {"provider": "google", "model": "gemini-2.5-flash-lite"},
    "deepseek-r1": {"provider": "openrouter", "model": "deepseek/deepseek-r1-0528:free"},
    "text-embedding-004": {"provider": "google", "model": "text-embedding-004", "type": "embedding"},
}

DEFAULT_FILENAMES = ("models.yaml", "models.yml", "models.json")


def find_models_file(explicit: Optional[str] = None, cwd: Optional[Path] = None) -> Optional[Path]:
    """定位注册表文件：显式路径优先，否则在工作目录下按默认文件名查找。"""

    if explicit:
        path = Path(explicit).expanduser()
        if not path.exists():
            raise ValidationError(code="MODELS_FILE_MISSING", message=f"Models file {path} does not exist")
        return path
    base = cwd or Path.cwd()
    for name in DEFAULT_FILENAMES:
        candidate = base / name
        if candidate.exists():
            return candidate
    return None


def load_models_file(explicit: Optional[str] = None, cwd: Optional[Path] = None) -> Tuple[Dict[str, Any], Optional[Path]]:
    """读取注册表原始配置。

    Returns:
        (原始配置映射, 来源文件路径)；未找到文件时返回内置模型与 None。
    """

    path = find_models_file(explicit, cwd)
    if path is None:
        return dict(BUILTIN_MODELS), None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ValidationError(code="MODELS_FILE_INVALID", message=f"Error loading {path}: {exc}")
    if not isinstance(data, dict):
        raise ValidationError(code="MODELS_FILE_INVALID", message=f"Models file {path} must contain a mapping")
    return data, path
