"""Tests for the sync coordinator"""

import asyncio

import pytest

from posterm.common.exceptions import AuthError, NetworkError
from posterm.common.models import MutationType
from posterm.services.sync.negotiator import MENU_KEY


@pytest.mark.asyncio
async def test_offline_enqueue_then_reconnect_flushes(coordinator, connectivity, cloud, outbox):
    connectivity.set_online(False)

    await coordinator.enqueue(MutationType.CREATE_ORDER, {"total": 20})
    await coordinator.wait_idle()

    assert len(outbox.get_queue()) == 1
    assert coordinator.get_status().pending_count == 1
    assert cloud.push_attempts == []

    connectivity.set_online(True)
    await coordinator.wait_idle()

    assert outbox.get_queue() == []
    assert len(cloud.pushed) == 1


@pytest.mark.asyncio
async def test_reconnect_flushes_before_pulling(coordinator, connectivity, cloud, cache, monkeypatch):
    calls = []
    original_push = cloud.push_mutation
    original_check = cloud.check_sync

    async def push(record, token):
        calls.append("push")
        await original_push(record, token)

    async def check(context, version, token):
        calls.append("check")
        return await original_check(context, version, token)

    monkeypatch.setattr(cloud, "push_mutation", push)
    monkeypatch.setattr(cloud, "check_sync", check)

    connectivity.set_online(False)
    await coordinator.enqueue(MutationType.UPDATE_TABLE, {"table": 1})
    await coordinator.enqueue(MutationType.CLOSE_TABLE, {"table": 1})

    cloud.server_version = 2
    connectivity.set_online(True)
    await coordinator.wait_idle()

    assert calls == ["push", "push", "check"]
    assert cache.get_version(MENU_KEY) == 2


@pytest.mark.asyncio
async def test_force_sync_waits_for_running_flush_before_pulling(coordinator, cloud, outbox, cache, monkeypatch):
    calls = []
    original_push = cloud.push_mutation
    original_check = cloud.check_sync

    async def push(record, token):
        await original_push(record, token)
        calls.append("pushed")

    async def check(context, version, token):
        calls.append("check")
        return await original_check(context, version, token)

    monkeypatch.setattr(cloud, "push_mutation", push)
    monkeypatch.setattr(cloud, "check_sync", check)
    cloud.push_gate = asyncio.Event()
    cloud.server_version = 3

    # Online enqueue starts a background pass that blocks inside the push
    await coordinator.enqueue(MutationType.CREATE_ORDER, {"total": 12})
    while not cloud.push_attempts:
        await asyncio.sleep(0)
    assert outbox.is_flushing

    sync_task = asyncio.create_task(coordinator.force_sync())
    for _ in range(5):
        await asyncio.sleep(0)
    assert calls == []

    cloud.push_gate.set()
    result = await sync_task
    await coordinator.wait_idle()

    assert calls == ["pushed", "check"]
    assert not result.skipped
    assert outbox.get_queue() == []
    assert cache.get_version(MENU_KEY) == 3


@pytest.mark.asyncio
async def test_status_pushed_to_subscribers(coordinator, connectivity):
    statuses = []
    unsubscribe = coordinator.subscribe(statuses.append)

    connectivity.set_online(False)
    await coordinator.enqueue(MutationType.START_SHIFT, {})

    assert statuses[0].is_online is False
    assert statuses[-1].pending_count == 1

    unsubscribe()
    connectivity.set_online(True)
    count = len(statuses)
    await coordinator.wait_idle()
    assert len(statuses) == count


@pytest.mark.asyncio
async def test_flush_marks_last_sync(coordinator, connectivity, cache, clock):
    connectivity.set_online(False)
    await coordinator.enqueue(MutationType.END_SHIFT, {})
    assert coordinator.get_status().last_sync_at is None

    connectivity.set_online(True)
    await coordinator.wait_idle()

    status = coordinator.get_status()
    assert status.last_sync_at == clock.now
    assert status.to_dict()["last_sync_at"].startswith("2023-11-14")


@pytest.mark.asyncio
async def test_submit_order_records_locally_and_queues(coordinator, connectivity, repository, outbox):
    connectivity.set_online(False)

    mutation_id = await coordinator.submit_order({"id": "order-1", "total": 9})

    assert repository.get_orders()[0]["id"] == "order-1"
    record = outbox.get_queue()[0]
    assert record.id == mutation_id
    assert record.type is MutationType.CREATE_ORDER


@pytest.mark.asyncio
async def test_shift_start_and_end_update_active_shift(coordinator, connectivity, repository, outbox):
    connectivity.set_online(False)

    await coordinator.start_shift({"id": "s1", "openingCash": 150})
    assert repository.get_active_shift() == {"id": "s1", "openingCash": 150}

    await coordinator.end_shift({"shiftId": "s1", "closingCash": 410})
    assert repository.get_active_shift() is None

    queued = outbox.get_queue()
    assert [r.type for r in queued] == [MutationType.START_SHIFT, MutationType.END_SHIFT]
    assert queued[1].payload == {"shiftId": "s1", "closingCash": 410}


@pytest.mark.asyncio
async def test_force_sync_flushes_and_pulls(coordinator, connectivity, cloud, cache):
    connectivity.set_online(False)
    await coordinator.enqueue(MutationType.CLOSE_DAY, {"date": "2024-05-01"})
    connectivity.set_online(True)
    await coordinator.wait_idle()

    cloud.server_version = 7
    result = await coordinator.force_sync()

    assert result.skipped is False
    assert cache.get_version(MENU_KEY) == 7


@pytest.mark.asyncio
async def test_pull_skipped_without_outlet(coordinator, cloud):
    coordinator.set_context(None)
    assert await coordinator.pull_latest_data() is False
    assert cloud.read_calls == 0


@pytest.mark.asyncio
async def test_pull_failure_is_logged_not_raised(coordinator, cloud):
    cloud.read_error = NetworkError("HTTP 502", status_code=502)
    assert await coordinator.pull_latest_data() is False


@pytest.mark.asyncio
async def test_auth_pause_and_resume(coordinator, connectivity, cloud, auth):
    statuses = []
    coordinator.subscribe(statuses.append)

    connectivity.set_online(False)
    await coordinator.enqueue(MutationType.CREATE_ORDER, {})
    cloud.push_errors = [AuthError()]
    connectivity.set_online(True)
    await coordinator.wait_idle()

    assert coordinator.get_status().auth_paused is True
    assert any(status.auth_paused for status in statuses)
    assert coordinator.get_status().pending_count == 1

    coordinator.resume_auth()
    await coordinator.wait_idle()

    status = coordinator.get_status()
    assert status.auth_paused is False
    assert status.pending_count == 0


@pytest.mark.asyncio
async def test_operator_actions_delegate(coordinator, connectivity, outbox):
    connectivity.set_online(False)
    await coordinator.enqueue(MutationType.STOCK_MOVE, {"sku": "A"})
    await coordinator.enqueue(MutationType.STOCK_MOVE, {"sku": "B"})

    assert coordinator.clear_failed() == 0
    assert coordinator.clear_all_pending() == 2
    assert outbox.get_queue() == []


@pytest.mark.asyncio
async def test_start_and_stop_schedulers(coordinator):
    await coordinator.start()
    stats = coordinator.get_scheduler_stats()
    assert [s["name"] for s in stats] == ["outbox-flush", "reference-pull"]

    await coordinator.stop()
