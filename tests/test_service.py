"""EvaluationService / FlagWriteService のユニットテスト"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from conftest import NOW, CountingStore, FakeClock, make_flag, open_phase
from flipflap import (
    CallerContext,
    Environment,
    EnvironmentConfig,
    EvaluationService,
    Flag,
    FlagStoreError,
    FlagStoreErrorCodes,
    FlagWriteService,
    InMemoryFlagCache,
    ReasonCode,
)

DEV = CallerContext(organization_id="org-a", environment=Environment.DEVELOPMENT)
PROD = CallerContext(organization_id="org-a", environment=Environment.PRODUCTION)


def make_service(store: CountingStore, clock: FakeClock) -> EvaluationService:
    cache = InMemoryFlagCache(store, clock=clock)
    return EvaluationService(cache, clock=lambda: NOW)


async def test_environment_selects_configuration(store: CountingStore, clock: FakeClock) -> None:
    """呼び出し元の環境の設定で評価されること。"""
    await store.save(
        make_flag(
            "f",
            development=EnvironmentConfig(enabled=True),
            production=EnvironmentConfig(enabled=False),
        )
    )
    service = make_service(store, clock)

    prod = await service.evaluate(PROD, "f", {"userId": "u1"})
    assert prod.enabled is False
    assert prod.reason == ReasonCode.FLAG_DISABLED

    dev = await service.evaluate(DEV, "f", {"userId": "u1"})
    assert dev.enabled is True
    assert dev.reason == ReasonCode.FLAG_ENABLED
    assert dev.to_dict() == {
        "flagKey": "f",
        "enabled": True,
        "metadata": {"reason": "flag_enabled"},
    }


async def test_unknown_flag_is_not_found(store: CountingStore, clock: FakeClock) -> None:
    service = make_service(store, clock)
    response = await service.evaluate(DEV, "missing", {"userId": "u1"})
    assert response.enabled is False
    assert response.reason == ReasonCode.FLAG_NOT_FOUND


async def test_missing_environment_config(store: CountingStore, clock: FakeClock) -> None:
    await store.save(
        Flag(
            organization_id="org-a",
            flag_key="dev-only",
            name="Dev only",
            environments={Environment.DEVELOPMENT: EnvironmentConfig(enabled=True)},
        )
    )
    service = make_service(store, clock)
    response = await service.evaluate(PROD, "dev-only", {})
    assert response.enabled is False
    assert response.reason == ReasonCode.ENVIRONMENT_NOT_CONFIGURED


async def test_context_rules_scenario(store: CountingStore, clock: FakeClock) -> None:
    await store.save(
        make_flag(
            "geo",
            development=EnvironmentConfig(
                enabled=True, context_rules={"location": {"oneOf": ["US", "EU"]}}
            ),
        )
    )
    service = make_service(store, clock)

    response = await service.evaluate(DEV, "geo", {"userId": "u1", "location": "CN"})
    assert response.enabled is False
    assert response.reason == ReasonCode.CONTEXT_RULES_NOT_MATCHED

    response = await service.evaluate(DEV, "geo", {"userId": "u1", "location": "EU"})
    assert response.reason == ReasonCode.FLAG_ENABLED


async def test_percentage_rollout_reports_bucket(store: CountingStore, clock: FakeClock) -> None:
    await store.save(make_flag("rollout", development=EnvironmentConfig(enabled=True, phases=[open_phase(50)])))
    service = make_service(store, clock)

    first = await service.evaluate(DEV, "rollout", {"userId": "user-123"})
    second = await service.evaluate(DEV, "rollout", {"userId": "user-123"})

    assert first.bucket is not None
    assert first == second
    assert first.reason in (ReasonCode.PERCENTAGE_MATCHED, ReasonCode.PERCENTAGE_NOT_MATCHED)
    assert first.to_dict()["metadata"]["matchedPhase"]["percentage"] == 50


async def test_organizations_never_see_each_other(store: CountingStore, clock: FakeClock) -> None:
    """同じキーを持つ 2 組織の設定が混ざらないこと。"""
    await store.save(make_flag("x", org="org-a", production=EnvironmentConfig(enabled=True)))
    await store.save(make_flag("x", org="org-b", production=EnvironmentConfig(enabled=False)))
    service = make_service(store, clock)
    org_b = CallerContext(organization_id="org-b", environment=Environment.PRODUCTION)

    for _ in range(3):
        assert (await service.evaluate(PROD, "x", {})).reason == ReasonCode.FLAG_ENABLED
        assert (await service.evaluate(org_b, "x", {})).reason == ReasonCode.FLAG_DISABLED


async def test_store_failure_degrades_to_evaluation_error(
    store: CountingStore, clock: FakeClock
) -> None:
    """ストア障害時は例外ではなく evaluation_error の無効判定を返すこと。"""
    store.error = ConnectionError("store down")
    service = make_service(store, clock)

    response = await service.evaluate(DEV, "f", {"userId": "u1"})

    assert response.enabled is False
    assert response.reason == ReasonCode.EVALUATION_ERROR
    assert response.to_dict()["metadata"] == {"reason": "evaluation_error"}


async def test_unexpected_cache_error_degrades_to_evaluation_error() -> None:
    cache = AsyncMock()
    cache.get.side_effect = RuntimeError("boom")
    service = EvaluationService(cache)

    response = await service.evaluate(DEV, "f", {})
    assert response.reason == ReasonCode.EVALUATION_ERROR


async def test_evaluate_many_preserves_order(store: CountingStore, clock: FakeClock) -> None:
    await store.save(make_flag("on", development=EnvironmentConfig(enabled=True)))
    await store.save(make_flag("off", development=EnvironmentConfig(enabled=False)))
    store.delay = 0.01
    service = make_service(store, clock)

    responses = await service.evaluate_many(DEV, ["off", "missing", "on", "off"], {"userId": "u1"})

    assert [r.flag_key for r in responses] == ["off", "missing", "on", "off"]
    assert [r.reason for r in responses] == [
        ReasonCode.FLAG_DISABLED,
        ReasonCode.FLAG_NOT_FOUND,
        ReasonCode.FLAG_ENABLED,
        ReasonCode.FLAG_DISABLED,
    ]
    assert store.find_all_calls == 1


async def test_is_enabled(store: CountingStore, clock: FakeClock) -> None:
    await store.save(make_flag("on", development=EnvironmentConfig(enabled=True)))
    service = make_service(store, clock)
    assert await service.is_enabled(DEV, "on", {}) is True
    assert await service.is_enabled(PROD, "on", {}) is False


async def test_write_service_makes_changes_visible_immediately(
    store: CountingStore, clock: FakeClock
) -> None:
    """作成・更新・削除が TTL を待たずに評価へ反映されること。"""
    cache = InMemoryFlagCache(store, clock=clock)
    service = EvaluationService(cache, clock=lambda: NOW)
    writer = FlagWriteService(store, cache)
    await cache.load_all()

    assert (await service.evaluate(DEV, "f", {})).reason == ReasonCode.FLAG_NOT_FOUND

    saved = await writer.save(make_flag("f", development=EnvironmentConfig(enabled=True)))
    assert saved.created_at is not None
    assert (await service.evaluate(DEV, "f", {})).reason == ReasonCode.FLAG_ENABLED

    await writer.save(make_flag("f", development=EnvironmentConfig(enabled=False)))
    assert (await service.evaluate(DEV, "f", {})).reason == ReasonCode.FLAG_DISABLED

    assert await writer.delete("org-a", "f") is True
    assert (await service.evaluate(DEV, "f", {})).reason == ReasonCode.FLAG_NOT_FOUND
    assert await writer.delete("org-a", "f") is False
    assert store.find_all_calls == 1


async def test_write_failure_raises_store_error(store: CountingStore, clock: FakeClock) -> None:
    failing = AsyncMock(spec=CountingStore)
    failing.save.side_effect = ConnectionError("store down")
    cache = InMemoryFlagCache(store, clock=clock)
    writer = FlagWriteService(failing, cache)

    with pytest.raises(FlagStoreError) as exc_info:
        await writer.save(make_flag("f"))
    assert exc_info.value.code == FlagStoreErrorCodes.WRITE_FAILED
    assert cache.size == 0


async def test_string_environment_is_normalized(store: CountingStore, clock: FakeClock) -> None:
    """文字列の環境でも障害時に evaluation_error を返すこと。"""
    await store.save(make_flag("f", development=EnvironmentConfig(enabled=True)))
    cache = InMemoryFlagCache(store, clock=clock)
    service = EvaluationService(cache, clock=lambda: NOW)
    caller = CallerContext(organization_id="org-a", environment="development")
    assert caller.environment is Environment.DEVELOPMENT

    assert (await service.evaluate(caller, "f", {})).reason == ReasonCode.FLAG_ENABLED

    await cache.invalidate()
    store.error = ConnectionError("store down")
    response = await service.evaluate(caller, "f", {})
    assert response.enabled is False
    assert response.reason == ReasonCode.EVALUATION_ERROR


def test_unknown_environment_is_rejected() -> None:
    with pytest.raises(ValueError):
        CallerContext(organization_id="org-a", environment="qa")


async def test_delete_during_point_fetch_is_not_resurrected(
    store: CountingStore, clock: FakeClock
) -> None:
    """取得中に削除されたフラグがキャッシュに戻らないこと。"""
    cache = InMemoryFlagCache(store, clock=clock)
    writer = FlagWriteService(store, cache)
    await cache.load_all()
    await store.save(make_flag("f"))
    store.find_one_delay = 0.05

    pending = asyncio.create_task(cache.get("org-a", "f"))
    await asyncio.sleep(0.01)
    assert await writer.delete("org-a", "f") is True
    await pending

    assert cache.size == 0
    store.find_one_delay = 0.0
    assert await cache.get("org-a", "f") is None


async def test_evaluation_reason_is_recorded(store: CountingStore, clock: FakeClock) -> None:
    await store.save(make_flag("f", development=EnvironmentConfig(enabled=True)))
    service = make_service(store, clock)

    with patch("flipflap.service.flag_evaluations_total") as counter:
        await service.evaluate(DEV, "f", {})
        await service.evaluate(DEV, "missing", {})

    assert counter.add.call_args_list == [
        ((1, {"reason": "flag_enabled"}),),
        ((1, {"reason": "flag_not_found"}),),
    ]


async def test_evaluation_metrics_can_be_disabled(store: CountingStore, clock: FakeClock) -> None:
    """record_metrics=False ではカウンタを呼ばないこと。"""
    store.error = ConnectionError("store down")
    cache = InMemoryFlagCache(store, clock=clock, record_metrics=False)
    service = EvaluationService(cache, clock=lambda: NOW, record_metrics=False)

    with patch("flipflap.service.flag_evaluations_total") as counter:
        response = await service.evaluate(DEV, "f", {})

    assert response.reason == ReasonCode.EVALUATION_ERROR
    counter.add.assert_not_called()
