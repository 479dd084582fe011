"""テスト共通のヘルパーとフィクスチャ"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from flipflap import (
    Environment,
    EnvironmentConfig,
    Flag,
    InMemoryFlagStore,
    Phase,
)

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_flag(
    key: str,
    org: str = "org-a",
    development: EnvironmentConfig | None = None,
    staging: EnvironmentConfig | None = None,
    production: EnvironmentConfig | None = None,
) -> Flag:
    return Flag(
        organization_id=org,
        flag_key=key,
        name=f"Flag {key}",
        environments={
            Environment.DEVELOPMENT: development or EnvironmentConfig(enabled=True),
            Environment.STAGING: staging or EnvironmentConfig(enabled=False),
            Environment.PRODUCTION: production or EnvironmentConfig(enabled=False),
        },
    )


def open_phase(percentage: int, start: datetime = NOW - timedelta(days=1)) -> Phase:
    return Phase(start_date=start, percentage=percentage)


class FakeClock:
    """手動で進める単調時計。"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingStore(InMemoryFlagStore):
    """呼び出し回数を数え、遅延や障害を注入できるストア。"""

    def __init__(self, flags: list[Flag] | None = None) -> None:
        super().__init__(flags)
        self.find_all_calls = 0
        self.find_one_calls = 0
        self.delay: float = 0.0
        self.find_one_delay: float = 0.0
        self.error: Exception | None = None

    async def find_all(self) -> list[Flag]:
        self.find_all_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return await super().find_all()

    async def find_one(self, organization_id: str, flag_key: str) -> Flag | None:
        self.find_one_calls += 1
        if self.error is not None:
            raise self.error
        flag = await super().find_one(organization_id, flag_key)
        if self.find_one_delay:
            await asyncio.sleep(self.find_one_delay)
        return flag


def flag_document(**overrides: Any) -> dict[str, Any]:
    document: dict[str, Any] = {
        "organizationId": "000000000000000000000001",
        "flagKey": "new-checkout",
        "name": "New checkout",
        "description": "Rolls out the new checkout flow",
        "environments": {
            "development": {"enabled": True},
            "staging": {"enabled": False},
            "production": {
                "enabled": True,
                "phases": [
                    {
                        "startDate": "2025-01-01T00:00:00.000Z",
                        "endDate": "2025-02-01T00:00:00.000Z",
                        "percentage": 10,
                    },
                    {"startDate": "2025-02-01T00:00:00.000Z", "percentage": 50},
                ],
                "contextRules": {"location": {"oneOf": ["US", "EU"]}},
            },
        },
    }
    document.update(overrides)
    return document


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()
