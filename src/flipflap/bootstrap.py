"""ストアからフラグ評価ランタイムを組み立てる"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from .config import FlipflapConfig
from .logger import new_logger
from .memory import InMemoryFlagCache
from .service import EvaluationService, FlagWriteService
from .store import FlagStore, MutableFlagStore

logger = structlog.stdlib.get_logger(__name__)


@dataclass
class FlipflapRuntime:
    """組み立て済みのキャッシュとサービス一式。"""

    config: FlipflapConfig
    cache: InMemoryFlagCache
    evaluation: EvaluationService
    writer: FlagWriteService | None = None

    async def start(self) -> None:
        """キャッシュを事前ロードする。ストア障害はそのまま送出する。"""
        if self.config.cache.warm_on_start:
            await self.cache.load_all()
        logger.info("flipflap runtime started", cached_flags=self.cache.size)


def build_runtime(store: FlagStore, config: FlipflapConfig | None = None) -> FlipflapRuntime:
    """ストアと設定からランタイムを組み立てる。

    ストアが書き込み可能な場合は FlagWriteService も用意する。
    """
    config = config or FlipflapConfig()
    new_logger(level=config.log.level, format=config.log.format)

    record_metrics = config.metrics.enabled
    cache = InMemoryFlagCache(
        store,
        ttl=config.cache.ttl_seconds,
        record_metrics=record_metrics,
    )
    writer = FlagWriteService(store, cache) if isinstance(store, MutableFlagStore) else None
    return FlipflapRuntime(
        config=config,
        cache=cache,
        evaluation=EvaluationService(cache, record_metrics=record_metrics),
        writer=writer,
    )
