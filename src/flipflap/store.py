"""FlagStore 抽象基底クラス"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .models import Flag


class FlagStore(ABC):
    """フラグ設定の永続ストア (読み取り側)。"""

    @abstractmethod
    async def find_one(self, organization_id: str, flag_key: str) -> Flag | None:
        """組織とキーでフラグを取得する。存在しなければ None。"""
        ...

    @abstractmethod
    async def find_all(self) -> list[Flag]:
        """全組織の全フラグを取得する。"""
        ...


class MutableFlagStore(FlagStore):
    """書き込み可能なフラグストア。"""

    @abstractmethod
    async def save(self, flag: Flag) -> Flag:
        """フラグを作成または更新し、保存後のフラグを返す。"""
        ...

    @abstractmethod
    async def delete(self, organization_id: str, flag_key: str) -> bool:
        """フラグを削除する。削除できたら True。"""
        ...
