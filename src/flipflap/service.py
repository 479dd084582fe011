"""フラグ評価サービスと書き込みサービス"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

import structlog

from .cache import FlagCache
from .evaluator import evaluate
from .exceptions import FlagStoreError, FlagStoreErrorCodes
from .metrics import flag_evaluations_total
from .models import (
    Environment,
    EvaluationContext,
    EvaluationResponse,
    Flag,
    ReasonCode,
)
from .store import MutableFlagStore

logger = structlog.stdlib.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CallerContext:
    """認証済みの呼び出し元 (API キーから解決済みの組織と環境)。"""

    organization_id: str
    environment: Environment

    def __post_init__(self) -> None:
        # 文字列で渡された環境も Environment に揃える
        object.__setattr__(self, "environment", Environment(self.environment))


class EvaluationService:
    """キャッシュからフラグを引いて評価エンジンに渡す。

    ストア障害を含むあらゆる失敗は evaluation_error の無効判定として返し、
    呼び出し元に例外を送出しない。
    """

    def __init__(
        self,
        cache: FlagCache,
        clock: Callable[[], datetime] | None = None,
        record_metrics: bool = True,
    ) -> None:
        self._cache = cache
        self._clock = clock
        self._record_metrics = record_metrics

    async def evaluate(
        self,
        caller: CallerContext,
        flag_key: str,
        context: EvaluationContext,
    ) -> EvaluationResponse:
        """1 つのフラグを評価する。"""
        try:
            response = await self._evaluate(caller, flag_key, context)
        except Exception:
            logger.exception(
                "flag evaluation failed",
                organization_id=caller.organization_id,
                environment=caller.environment.value,
                flag_key=flag_key,
            )
            response = EvaluationResponse.disabled(flag_key, ReasonCode.EVALUATION_ERROR)
        if self._record_metrics:
            flag_evaluations_total.add(1, {"reason": response.reason.value})
        return response

    async def evaluate_many(
        self,
        caller: CallerContext,
        flag_keys: Sequence[str],
        context: EvaluationContext,
    ) -> list[EvaluationResponse]:
        """複数のフラグを同じコンテキストで評価する。結果は flag_keys の順。"""
        return list(
            await asyncio.gather(*(self.evaluate(caller, key, context) for key in flag_keys))
        )

    async def is_enabled(
        self,
        caller: CallerContext,
        flag_key: str,
        context: EvaluationContext,
    ) -> bool:
        response = await self.evaluate(caller, flag_key, context)
        return response.enabled

    async def _evaluate(
        self,
        caller: CallerContext,
        flag_key: str,
        context: EvaluationContext,
    ) -> EvaluationResponse:
        flag = await self._cache.get(caller.organization_id, flag_key)
        if flag is None:
            return EvaluationResponse.disabled(flag_key, ReasonCode.FLAG_NOT_FOUND)

        config = flag.environment(caller.environment)
        if config is None:
            return EvaluationResponse.disabled(flag_key, ReasonCode.ENVIRONMENT_NOT_CONFIGURED)

        now = self._clock() if self._clock is not None else None
        result = evaluate(flag_key, config, context, now=now)
        return EvaluationResponse.from_result(flag_key, result)


class FlagWriteService:
    """ストアへの書き込みとキャッシュの更新をまとめて行う。

    書き込み直後の評価に、次の TTL 再ロードを待たずに反映される。
    """

    def __init__(self, store: MutableFlagStore, cache: FlagCache) -> None:
        self._store = store
        self._cache = cache

    async def save(self, flag: Flag) -> Flag:
        """フラグを作成または更新する。"""
        saved = await self._write(self._store.save(flag), flag.flag_key)
        await self._cache.set(saved.organization_id, saved.flag_key, saved)
        logger.info(
            "flag saved",
            organization_id=saved.organization_id,
            flag_key=saved.flag_key,
        )
        return saved

    async def delete(self, organization_id: str, flag_key: str) -> bool:
        """フラグを削除する。ストアに存在していたら True。"""
        deleted = await self._write(self._store.delete(organization_id, flag_key), flag_key)
        await self._cache.delete(organization_id, flag_key)
        logger.info(
            "flag deleted",
            organization_id=organization_id,
            flag_key=flag_key,
            existed=deleted,
        )
        return deleted

    @staticmethod
    async def _write(operation: Awaitable[T], flag_key: str) -> T:
        try:
            return await operation
        except FlagStoreError:
            raise
        except Exception as e:
            raise FlagStoreError(
                code=FlagStoreErrorCodes.WRITE_FAILED,
                message=f"Failed to write flag {flag_key!r}: {e}",
                cause=e,
            ) from e
