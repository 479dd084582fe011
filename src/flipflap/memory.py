"""InMemoryFlagStore / InMemoryFlagCache 実装"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

import structlog

from .cache import DEFAULT_TTL_SECONDS, FlagCache
from .exceptions import FlagStoreError, FlagStoreErrorCodes
from .metrics import flag_cache_lookups_total, flag_cache_refresh_total
from .models import Flag
from .store import FlagStore, MutableFlagStore

logger = structlog.stdlib.get_logger(__name__)

_CacheKey = tuple[str, str]


class InMemoryFlagStore(MutableFlagStore):
    """テスト・組み込み用インメモリフラグストア。"""

    def __init__(self, flags: list[Flag] | None = None) -> None:
        self._flags: dict[_CacheKey, Flag] = {}
        for flag in flags or []:
            self._flags[(flag.organization_id, flag.flag_key)] = flag

    async def find_one(self, organization_id: str, flag_key: str) -> Flag | None:
        return self._flags.get((organization_id, flag_key))

    async def find_all(self) -> list[Flag]:
        return list(self._flags.values())

    async def save(self, flag: Flag) -> Flag:
        key = (flag.organization_id, flag.flag_key)
        now = datetime.now(timezone.utc)
        existing = self._flags.get(key)
        created_at = existing.created_at if existing is not None else None
        saved = replace(flag, created_at=created_at or flag.created_at or now, updated_at=now)
        self._flags[key] = saved
        return saved

    async def delete(self, organization_id: str, flag_key: str) -> bool:
        return self._flags.pop((organization_id, flag_key), None) is not None


class InMemoryFlagCache(FlagCache):
    """プロセス内のフラグキャッシュ。

    最後の全件ロードから ttl 秒を超えると、次の get で全件を再ロードする。
    再ロードは同時に 1 つまでで、後から来た呼び出しは進行中のロードを待つ。
    一度ロードに成功した後の再ロード失敗では既存エントリを残して提供を続ける。
    """

    def __init__(
        self,
        store: FlagStore,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        record_metrics: bool = True,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._record_metrics = record_metrics
        self._entries: dict[_CacheKey, Flag] = {}
        self._last_refresh: float | None = None
        self._lock = asyncio.Lock()
        self._refresh_task: asyncio.Task[None] | None = None
        # set / delete / invalidate / load_all のたびに進める
        self._generation = 0

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def last_refresh(self) -> float | None:
        """最後に全件ロードに成功した時刻 (clock の値)。未ロードなら None。"""
        return self._last_refresh

    def is_stale(self) -> bool:
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh > self._ttl

    async def get(self, organization_id: str, flag_key: str) -> Flag | None:
        if self.is_stale():
            await self._refresh_before_read()

        key = (organization_id, flag_key)
        flag = self._entries.get(key)
        if flag is not None:
            self._count_lookup("hit")
            return flag

        generation = self._generation
        flag = await self._fetch_one(organization_id, flag_key)
        if flag is None:
            self._count_lookup("not_found")
            return None
        async with self._lock:
            if self._generation == generation:
                flag = self._entries.setdefault(key, flag)
            else:
                # 取得中に書き込みがあった。削除済みのフラグを戻さない
                flag = self._entries.get(key, flag)
        self._count_lookup("miss")
        logger.debug(
            "flag cache backfilled",
            organization_id=organization_id,
            flag_key=flag_key,
        )
        return flag

    async def set(self, organization_id: str, flag_key: str, flag: Flag) -> None:
        async with self._lock:
            self._generation += 1
            self._entries[(organization_id, flag_key)] = flag

    async def delete(self, organization_id: str, flag_key: str) -> bool:
        async with self._lock:
            self._generation += 1
            return self._entries.pop((organization_id, flag_key), None) is not None

    async def invalidate(self) -> None:
        async with self._lock:
            self._generation += 1
            self._entries = {}
            self._last_refresh = None
        logger.info("flag cache invalidated")

    async def load_all(self) -> None:
        try:
            flags = await self._store.find_all()
        except FlagStoreError:
            self._count_refresh("failure")
            raise
        except Exception as e:
            self._count_refresh("failure")
            raise FlagStoreError(
                code=FlagStoreErrorCodes.STORE_UNAVAILABLE,
                message=f"Failed to load flags: {e}",
                cause=e,
            ) from e

        entries = {(flag.organization_id, flag.flag_key): flag for flag in flags}
        async with self._lock:
            self._generation += 1
            self._entries = entries
            self._last_refresh = self._clock()
        self._count_refresh("success")
        logger.info("flag cache loaded", size=len(entries))

    async def refresh(self) -> None:
        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(self.load_all())
            self._refresh_task = task
            task.add_done_callback(self._on_refresh_done)
        # 呼び出し元のキャンセルで共有のロードを止めない
        await asyncio.shield(task)

    def _on_refresh_done(self, task: asyncio.Task[None]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # 待機者が全員キャンセルされても未取得例外の警告を出さない
        if not task.cancelled():
            task.exception()

    async def _refresh_before_read(self) -> None:
        try:
            await self.refresh()
        except FlagStoreError as e:
            if self._last_refresh is None:
                raise
            logger.warning(
                "flag cache refresh failed, serving stale entries",
                size=len(self._entries),
                error=str(e),
            )

    async def _fetch_one(self, organization_id: str, flag_key: str) -> Flag | None:
        try:
            return await self._store.find_one(organization_id, flag_key)
        except FlagStoreError:
            raise
        except Exception as e:
            raise FlagStoreError(
                code=FlagStoreErrorCodes.STORE_UNAVAILABLE,
                message=f"Failed to fetch flag {flag_key!r}: {e}",
                cause=e,
            ) from e

    def _count_lookup(self, result: str) -> None:
        if self._record_metrics:
            flag_cache_lookups_total.add(1, {"result": result})

    def _count_refresh(self, status: str) -> None:
        if self._record_metrics:
            flag_cache_refresh_total.add(1, {"status": status})
