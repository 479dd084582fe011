"""FlagCache 抽象基底クラス"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .models import Flag

DEFAULT_TTL_SECONDS: float = 60.0


class FlagCache(ABC):
    """フラグストアの読み取りをまとめるキャッシュ。

    エントリは (organization_id, flag_key) をキーに保持し、組織をまたいで
    同じキーのフラグが見えることはない。
    """

    @abstractmethod
    async def get(self, organization_id: str, flag_key: str) -> Flag | None:
        """フラグを取得する。ストアにも存在しなければ None。"""
        ...

    @abstractmethod
    async def set(self, organization_id: str, flag_key: str, flag: Flag) -> None:
        """エントリを無条件に上書きする。"""
        ...

    @abstractmethod
    async def delete(self, organization_id: str, flag_key: str) -> bool:
        """エントリを削除する。存在していたら True。"""
        ...

    @abstractmethod
    async def invalidate(self) -> None:
        """全エントリを破棄し、未ロード状態に戻す。"""
        ...

    @abstractmethod
    async def load_all(self) -> None:
        """ストアの全フラグでキャッシュを置き換える。"""
        ...

    @abstractmethod
    async def refresh(self) -> None:
        """load_all を実行する。同時呼び出しは 1 回のロードにまとめる。"""
        ...
