"""設定型定義と YAML 読み込み"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from .cache import DEFAULT_TTL_SECONDS
from .exceptions import ConfigError, ConfigErrorCodes


class CacheSection(BaseModel):
    """フラグキャッシュ設定。"""

    ttl_seconds: float = Field(default=DEFAULT_TTL_SECONDS, gt=0)
    warm_on_start: bool = True


class LogSection(BaseModel):
    """ログ設定。"""

    level: str = "INFO"
    format: Literal["json", "text"] = "json"


class MetricsSection(BaseModel):
    """メトリクス設定。"""

    enabled: bool = True


class FlipflapConfig(BaseModel):
    """flipflap 設定全体。"""

    cache: CacheSection = Field(default_factory=CacheSection)
    log: LogSection = Field(default_factory=LogSection)
    metrics: MetricsSection = Field(default_factory=MetricsSection)


def _overlay(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """環境別設定をセクション単位で重ねる。

    両方がマッピングのセクションはキー単位で override を優先し、それ以外は置き換える。
    """
    result: dict[str, Any] = dict(base)
    for section, values in override.items():
        current = result.get(section)
        if isinstance(current, dict) and isinstance(values, dict):
            result[section] = {**current, **values}
        else:
            result[section] = values
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(
            code=ConfigErrorCodes.READ_FILE,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(
            code=ConfigErrorCodes.PARSE_YAML,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise ConfigError(
            code=ConfigErrorCodes.PARSE_YAML,
            message=f"Config root must be a mapping: {path}",
        )
    return data


def load(base_path: Path, env_path: Path | None = None) -> FlipflapConfig:
    """設定ファイルを読み込んで FlipflapConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。
    """
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data = _overlay(data, _read_yaml(env_path))
    try:
        return FlipflapConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            code=ConfigErrorCodes.VALIDATION,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e
