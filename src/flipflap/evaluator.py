"""フラグ評価エンジン

1 環境分の設定とコンテキストから判定結果を計算する。I/O や共有状態を持たず、
任意のタスク・スレッドから同時に呼び出してよい。

評価は次の順に行い、各段で結果が確定すればそこで終了する:

1. キルスイッチ (enabled=False なら flag_disabled)
2. フェーズ選択 (フェーズがあるのに有効なものがなければ no_active_phase)
3. コンテキストルール (1 つでも満たさなければ context_rules_not_matched)
4. パーセンテージ判定 (有効なフェーズがある場合のみ)
5. フェーズなしでルールを満たせば flag_enabled
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from .bucketing import calculate_bucket
from .models import (
    USER_ID_FIELD,
    EnvironmentConfig,
    EvaluationContext,
    EvaluationResult,
    Phase,
    ReasonCode,
)
from .rules import matches_context_rules


def find_active_phase(phases: Sequence[Phase] | None, now: datetime) -> Phase | None:
    """now を含む最初のフェーズを返す。

    フェーズ同士の期間が重なっている場合はリストの先頭に近いものが優先される。
    """
    if not phases:
        return None
    for phase in phases:
        if phase.contains(now):
            return phase
    return None


def _evaluate_percentage(
    flag_key: str, phase: Phase, context: EvaluationContext
) -> EvaluationResult:
    user_id = context.get(USER_ID_FIELD)
    if user_id is None:
        if phase.percentage < 100:
            return EvaluationResult(enabled=False, reason=ReasonCode.MISSING_USER_ID)
        return EvaluationResult(
            enabled=True, reason=ReasonCode.PERCENTAGE_MATCHED, matched_phase=phase
        )

    bucket = calculate_bucket(user_id, flag_key)
    if bucket < phase.percentage:
        return EvaluationResult(
            enabled=True,
            reason=ReasonCode.PERCENTAGE_MATCHED,
            matched_phase=phase,
            bucket=bucket,
        )
    return EvaluationResult(
        enabled=False,
        reason=ReasonCode.PERCENTAGE_NOT_MATCHED,
        matched_phase=phase,
        bucket=bucket,
    )


def evaluate(
    flag_key: str,
    config: EnvironmentConfig,
    context: EvaluationContext,
    now: datetime | None = None,
) -> EvaluationResult:
    """フラグを評価する。

    Args:
        flag_key: フラグキー (バケット計算に使用)
        config: 呼び出し元の環境のフラグ設定
        context: 評価コンテキスト
        now: 判定時刻。省略時は現在時刻 (UTC)

    Returns:
        判定結果。例外は送出しない。
    """
    if not config.enabled:
        return EvaluationResult(enabled=False, reason=ReasonCode.FLAG_DISABLED)

    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    active_phase = find_active_phase(config.phases, now)
    if config.phases and active_phase is None:
        return EvaluationResult(enabled=False, reason=ReasonCode.NO_ACTIVE_PHASE)

    if not matches_context_rules(context, config.context_rules):
        return EvaluationResult(enabled=False, reason=ReasonCode.CONTEXT_RULES_NOT_MATCHED)

    if active_phase is not None:
        return _evaluate_percentage(flag_key, active_phase, context)

    return EvaluationResult(enabled=True, reason=ReasonCode.FLAG_ENABLED)
