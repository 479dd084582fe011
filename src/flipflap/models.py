"""フラグ評価のデータモデル"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .exceptions import FlagDocumentError

Scalar = str | int | float | bool
Operand = Scalar | list[Scalar]
ContextRule = dict[str, Operand | None]
EvaluationContext = Mapping[str, Scalar]

USER_ID_FIELD = "userId"


class Environment(str, Enum):
    """フラグ設定を持つ環境。"""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Operator(str, Enum):
    """コンテキストルールの演算子。"""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    ONE_OF = "oneOf"
    NOT_ONE_OF = "notOneOf"


class ReasonCode(str, Enum):
    """評価結果の理由コード。"""

    FLAG_NOT_FOUND = "flag_not_found"
    ENVIRONMENT_NOT_CONFIGURED = "environment_not_configured"
    FLAG_DISABLED = "flag_disabled"
    NO_ACTIVE_PHASE = "no_active_phase"
    CONTEXT_RULES_NOT_MATCHED = "context_rules_not_matched"
    MISSING_USER_ID = "missing_user_id"
    PERCENTAGE_MATCHED = "percentage_matched"
    PERCENTAGE_NOT_MATCHED = "percentage_not_matched"
    FLAG_ENABLED = "flag_enabled"
    EVALUATION_ERROR = "evaluation_error"


def parse_datetime(value: Any, field_name: str) -> datetime:
    """ISO-8601 文字列または datetime を UTC の aware datetime に変換する。

    末尾の ``Z`` を受け付け、タイムゾーンなしの値は UTC とみなす。
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise FlagDocumentError(f"Invalid {field_name}: {value!r}", cause=e) from e
    else:
        raise FlagDocumentError(f"Invalid {field_name}: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_datetime(value: datetime) -> str:
    """datetime をミリ秒精度の ISO-8601 (UTC, ``Z`` 付き) に整形する。"""
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


@dataclass(frozen=True)
class Phase:
    """期間 [start_date, end_date) とロールアウト率。"""

    start_date: datetime
    end_date: datetime | None = None
    percentage: int = 100

    def __post_init__(self) -> None:
        # タイムゾーンなしの値は UTC とみなす
        if self.start_date.tzinfo is None:
            object.__setattr__(self, "start_date", self.start_date.replace(tzinfo=timezone.utc))
        if self.end_date is not None and self.end_date.tzinfo is None:
            object.__setattr__(self, "end_date", self.end_date.replace(tzinfo=timezone.utc))

    def contains(self, now: datetime) -> bool:
        """now がこのフェーズの期間内か判定する。end_date は含まない。"""
        if now < self.start_date:
            return False
        return self.end_date is None or now < self.end_date

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Phase:
        if not isinstance(data, Mapping):
            raise FlagDocumentError(f"Phase must be an object: {data!r}")
        if "startDate" not in data:
            raise FlagDocumentError("Phase startDate is required")
        percentage = data.get("percentage")
        if isinstance(percentage, bool) or not isinstance(percentage, (int, float)):
            raise FlagDocumentError(f"Invalid phase percentage: {percentage!r}")
        if not 0 <= percentage <= 100 or int(percentage) != percentage:
            raise FlagDocumentError(f"Phase percentage out of range: {percentage!r}")
        end_date = data.get("endDate")
        return cls(
            start_date=parse_datetime(data["startDate"], "startDate"),
            end_date=parse_datetime(end_date, "endDate") if end_date is not None else None,
            percentage=int(percentage),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "startDate": format_datetime(self.start_date),
            "percentage": self.percentage,
        }
        if self.end_date is not None:
            result["endDate"] = format_datetime(self.end_date)
        return result


@dataclass
class EnvironmentConfig:
    """1 環境分のフラグ設定。"""

    enabled: bool = False
    phases: list[Phase] = field(default_factory=list)
    context_rules: dict[str, ContextRule] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EnvironmentConfig:
        if not isinstance(data, Mapping):
            raise FlagDocumentError(f"Environment config must be an object: {data!r}")
        enabled = data.get("enabled", False)
        if not isinstance(enabled, bool):
            raise FlagDocumentError(f"Invalid enabled value: {enabled!r}")
        phases = data.get("phases") or []
        if not isinstance(phases, list):
            raise FlagDocumentError("phases must be a list")
        rules = data.get("contextRules") or {}
        if not isinstance(rules, Mapping):
            raise FlagDocumentError("contextRules must be an object")
        context_rules: dict[str, ContextRule] = {}
        for field_name, rule in rules.items():
            if not isinstance(rule, Mapping):
                raise FlagDocumentError(f"Context rule for {field_name!r} must be an object")
            context_rules[str(field_name)] = dict(rule)
        return cls(
            enabled=enabled,
            phases=[Phase.from_dict(p) for p in phases],
            context_rules=context_rules,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"enabled": self.enabled}
        if self.phases:
            result["phases"] = [p.to_dict() for p in self.phases]
        if self.context_rules:
            result["contextRules"] = {k: dict(v) for k, v in self.context_rules.items()}
        return result


@dataclass
class Flag:
    """組織スコープのフィーチャーフラグ。"""

    organization_id: str
    flag_key: str
    name: str
    environments: dict[Environment, EnvironmentConfig] = field(default_factory=dict)
    description: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def environment(self, environment: Environment) -> EnvironmentConfig | None:
        """指定環境の設定を返す。未設定なら None。"""
        return self.environments.get(environment)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Flag:
        """ストアのドキュメント (camelCase) から Flag を生成する。"""
        if not isinstance(data, Mapping):
            raise FlagDocumentError(f"Flag document must be an object: {data!r}")
        try:
            organization_id = data["organizationId"]
            flag_key = data["flagKey"]
        except KeyError as e:
            raise FlagDocumentError(f"Missing required field: {e.args[0]}", cause=e) from e
        if not isinstance(flag_key, str) or not flag_key:
            raise FlagDocumentError(f"Invalid flagKey: {flag_key!r}")

        raw_envs = data.get("environments") or {}
        if not isinstance(raw_envs, Mapping):
            raise FlagDocumentError("environments must be an object")
        environments: dict[Environment, EnvironmentConfig] = {}
        for name, config in raw_envs.items():
            try:
                env = Environment(name)
            except ValueError as e:
                raise FlagDocumentError(f"Unknown environment: {name!r}", cause=e) from e
            environments[env] = EnvironmentConfig.from_dict(config)

        created_at = data.get("createdAt")
        updated_at = data.get("updatedAt")
        return cls(
            organization_id=str(organization_id),
            flag_key=flag_key,
            name=str(data.get("name") or flag_key),
            environments=environments,
            description=str(data.get("description") or ""),
            created_at=parse_datetime(created_at, "createdAt") if created_at is not None else None,
            updated_at=parse_datetime(updated_at, "updatedAt") if updated_at is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "organizationId": self.organization_id,
            "flagKey": self.flag_key,
            "name": self.name,
            "environments": {
                env.value: config.to_dict() for env, config in self.environments.items()
            },
        }
        if self.description:
            result["description"] = self.description
        if self.created_at is not None:
            result["createdAt"] = format_datetime(self.created_at)
        if self.updated_at is not None:
            result["updatedAt"] = format_datetime(self.updated_at)
        return result


@dataclass(frozen=True)
class EvaluationResult:
    """評価エンジンの判定結果。"""

    enabled: bool
    reason: ReasonCode
    matched_phase: Phase | None = None
    bucket: int | None = None


@dataclass(frozen=True)
class EvaluationResponse:
    """評価境界の応答。"""

    flag_key: str
    enabled: bool
    reason: ReasonCode
    matched_phase: Phase | None = None
    bucket: int | None = None

    @classmethod
    def from_result(cls, flag_key: str, result: EvaluationResult) -> EvaluationResponse:
        return cls(
            flag_key=flag_key,
            enabled=result.enabled,
            reason=result.reason,
            matched_phase=result.matched_phase,
            bucket=result.bucket,
        )

    @classmethod
    def disabled(cls, flag_key: str, reason: ReasonCode) -> EvaluationResponse:
        return cls(flag_key=flag_key, enabled=False, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"reason": self.reason.value}
        if self.matched_phase is not None:
            metadata["matchedPhase"] = self.matched_phase.to_dict()
        if self.bucket is not None:
            metadata["bucket"] = self.bucket
        return {"flagKey": self.flag_key, "enabled": self.enabled, "metadata": metadata}
