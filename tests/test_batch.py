from __future__ import annotations

import asyncio

import pytest

from reqboard.batch import (
    BatchFailure,
    BatchOptions,
    BatchOutcome,
    RetryPolicy,
    execute_batch,
    execute_batch_async,
    execute_batch_with_optimistic_update,
    execute_batch_with_optimistic_update_async,
)
from reqboard.errors import MutationError
from reqboard.notifications import CollectingNotifier, NotificationKind


def _failing_on(*bad_ids: str):  # noqa: ANN202
    calls: list[str] = []

    def _operation(item_id: str) -> str:
        calls.append(item_id)
        if item_id in bad_ids:
            raise ValueError(f"cannot process {item_id}")
        return item_id.upper()

    return _operation, calls


def test_all_success_runs_in_order_and_notifies_success() -> None:
    operation, calls = _failing_on()
    notifier = CollectingNotifier()

    result = execute_batch(["a", "b", "c"], operation, BatchOptions(operation_name="批量删除"), notifier=notifier)

    assert calls == ["a", "b", "c"]
    assert result.success
    assert result.success_ids == ["a", "b", "c"]
    assert result.data == ["A", "B", "C"]
    assert result.failures == []
    assert result.outcome is BatchOutcome.ALL_SUCCEEDED
    assert notifier.kinds() == [NotificationKind.SUCCESS]
    assert notifier.notifications[0].message == "批量删除成功：已处理 3 项"


def test_partial_failure_is_isolated_and_warns() -> None:
    operation, calls = _failing_on("b")
    notifier = CollectingNotifier()

    result = execute_batch(["a", "b", "c"], operation, notifier=notifier)

    assert calls == ["a", "b", "c"]
    assert not result.success
    assert result.success_ids == ["a", "c"]
    assert result.failures == [BatchFailure(id="b", error="cannot process b")]
    assert result.outcome is BatchOutcome.PARTIAL_SUCCESS
    assert notifier.kinds() == [NotificationKind.WARNING]
    assert "成功 2 项，失败 1 项" in notifier.notifications[0].message


def test_total_failure_notifies_error() -> None:
    operation, _ = _failing_on("a", "b")
    notifier = CollectingNotifier()

    result = execute_batch(["a", "b"], operation, notifier=notifier)

    assert result.success_count == 0
    assert result.failure_count == 2
    assert result.outcome is BatchOutcome.TOTAL_FAILURE
    assert notifier.kinds() == [NotificationKind.ERROR]


def test_error_without_message_uses_exception_class_name() -> None:
    def _operation(item_id: str) -> None:
        raise RuntimeError()

    result = execute_batch(["a"], _operation, notifier=CollectingNotifier())
    assert result.failures == [BatchFailure(id="a", error="RuntimeError")]
    assert isinstance(result.errors()[0], MutationError)


def test_empty_batch_is_rejected_without_invocations() -> None:
    operation, calls = _failing_on()
    notifier = CollectingNotifier()

    result = execute_batch([], operation, notifier=notifier)

    assert calls == []
    assert result.rejected
    assert not result.success
    assert result.outcome is BatchOutcome.TOTAL_FAILURE
    assert notifier.kinds() == [NotificationKind.ERROR]


def test_oversized_batch_is_rejected_without_invocations() -> None:
    operation, calls = _failing_on()

    result = execute_batch(["a", "b", "c"], operation, BatchOptions(max_items=2), notifier=CollectingNotifier())

    assert calls == []
    assert result.rejected
    assert [failure.id for failure in result.failures] == ["a", "b", "c"]
    assert all("最多只能选择 2 项" in failure.error for failure in result.failures)


def test_default_max_items_is_one_hundred() -> None:
    operation, calls = _failing_on()
    ids = [f"#{index}" for index in range(101)]
    assert execute_batch(ids, operation, notifier=CollectingNotifier()).rejected
    assert calls == []
    assert execute_batch(ids[:100], operation, notifier=CollectingNotifier()).success


def test_max_failures_stops_remaining_items() -> None:
    operation, calls = _failing_on("a", "b")

    result = execute_batch(["a", "b", "c"], operation, BatchOptions(max_failures=1), notifier=CollectingNotifier())

    assert calls == ["a"]
    assert result.failed_ids == ["a"]
    assert result.skipped_ids == ["b", "c"]
    assert result.success_ids == []


def test_notifications_can_be_disabled() -> None:
    operation, _ = _failing_on("b")
    notifier = CollectingNotifier()
    options = BatchOptions(notify_success=False, notify_errors=False)

    execute_batch(["a", "b"], operation, options, notifier=notifier)
    execute_batch(["a"], operation, options, notifier=notifier)
    execute_batch([], operation, options, notifier=notifier)

    assert notifier.notifications == []


def test_invalid_options_raise() -> None:
    with pytest.raises(ValueError):
        BatchOptions(max_items=0)
    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)


def test_optimistic_update_rolls_back_failed_items() -> None:
    state = {"a": "draft", "b": "draft", "c": "draft"}
    rolled_back: list[str] = []
    operation, _ = _failing_on("b")

    def _optimistic(item_id: str) -> None:
        state[item_id] = "approved"

    def _rollback(item_id: str) -> None:
        rolled_back.append(item_id)
        state[item_id] = "draft"

    notifier = CollectingNotifier()
    result = execute_batch_with_optimistic_update(
        ["a", "b", "c"], _optimistic, operation, _rollback, notifier=notifier
    )

    assert rolled_back == ["b"]
    assert state == {"a": "approved", "b": "draft", "c": "approved"}
    assert result.success_ids == ["a", "c"]
    assert notifier.kinds() == [NotificationKind.WARNING]


def test_optimistic_success_notifies_once() -> None:
    operation, _ = _failing_on()
    notifier = CollectingNotifier()

    result = execute_batch_with_optimistic_update(
        ["a", "b"], lambda item_id: None, operation, lambda item_id: None, notifier=notifier
    )

    assert result.success
    assert notifier.kinds() == [NotificationKind.SUCCESS]


def test_optimistic_rejected_batch_touches_nothing() -> None:
    touched: list[str] = []
    operation, calls = _failing_on()

    result = execute_batch_with_optimistic_update(
        ["a", "b"], touched.append, operation, touched.append,
        BatchOptions(max_items=1), notifier=CollectingNotifier(),
    )

    assert result.rejected
    assert touched == []
    assert calls == []


def test_rollback_is_retried_and_never_raises() -> None:
    attempts: list[str] = []
    operation, _ = _failing_on("a")

    def _flaky_rollback(item_id: str) -> None:
        attempts.append(item_id)
        if len(attempts) < 2:
            raise OSError("transient")

    execute_batch_with_optimistic_update(
        ["a"], lambda item_id: None, operation, _flaky_rollback,
        notifier=CollectingNotifier(), rollback_policy=RetryPolicy(attempts=2),
    )
    assert attempts == ["a", "a"]

    def _broken_rollback(item_id: str) -> None:
        raise OSError("permanent")

    result = execute_batch_with_optimistic_update(
        ["a"], lambda item_id: None, operation, _broken_rollback, notifier=CollectingNotifier()
    )
    assert result.failed_ids == ["a"]


def test_optimistic_update_rolls_back_skipped_items() -> None:
    rolled_back: list[str] = []
    operation, _ = _failing_on("a")

    result = execute_batch_with_optimistic_update(
        ["a", "b", "c"], lambda item_id: None, operation, rolled_back.append,
        BatchOptions(max_failures=1), notifier=CollectingNotifier(),
    )

    assert result.skipped_ids == ["b", "c"]
    assert rolled_back == ["a", "b", "c"]


def test_async_batch_runs_items_one_at_a_time() -> None:
    active = 0
    peak = 0
    order: list[str] = []

    async def _operation(item_id: str) -> str:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0)
        order.append(item_id)
        active -= 1
        if item_id == "b":
            raise ValueError("nope")
        return item_id

    notifier = CollectingNotifier()
    result = asyncio.run(execute_batch_async(["a", "b", "c"], _operation, notifier=notifier))

    assert peak == 1
    assert order == ["a", "b", "c"]
    assert result.success_ids == ["a", "c"]
    assert result.failures == [BatchFailure(id="b", error="nope")]
    assert notifier.kinds() == [NotificationKind.WARNING]


def test_async_batch_rejects_empty_input() -> None:
    async def _operation(item_id: str) -> str:
        raise AssertionError("should not run")

    result = asyncio.run(execute_batch_async([], _operation, notifier=CollectingNotifier()))
    assert result.rejected


def test_async_optimistic_update_awaits_rollback() -> None:
    rolled_back: list[str] = []

    async def _operation(item_id: str) -> str:
        if item_id == "b":
            raise ValueError("conflict")
        return item_id

    async def _rollback(item_id: str) -> None:
        await asyncio.sleep(0)
        rolled_back.append(item_id)

    result = asyncio.run(
        execute_batch_with_optimistic_update_async(
            ["a", "b"], lambda item_id: None, _operation, _rollback, notifier=CollectingNotifier()
        )
    )

    assert rolled_back == ["b"]
    assert result.success_ids == ["a"]


def test_default_notifier_logs_outcome(caplog: pytest.LogCaptureFixture) -> None:
    operation, _ = _failing_on("b")
    with caplog.at_level("INFO", logger="reqboard"):
        execute_batch(["a", "b"], operation, BatchOptions(operation_name="批量关闭"))

    warnings = [record for record in caplog.records if record.name == "reqboard.notifications"]
    assert [record.levelname for record in warnings] == ["WARNING"]
    assert "批量关闭部分成功" in warnings[0].getMessage()
