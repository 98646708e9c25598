"""Batch mutation executor.

Applies one caller-supplied operation to many record ids, one at a time
and in input order. A failing item is recorded and does not stop the
batch unless the failure budget (``max_failures``) is used up. Outcomes
are summarized through a ``Notifier`` and returned as a
``BatchOperationResult``; nothing raised by an item escapes the batch.

The optimistic variants apply a cheap local effect to every id first and
compensate with a rollback for ids whose real operation did not succeed.
Rollback is best effort under a caller-supplied ``RetryPolicy``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from .errors import BatchRejected, MutationError
from .notifications import LoggingNotifier, Notification, NotificationKind, Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ITEMS = 100


class BatchOutcome(str, Enum):
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL_SUCCESS = "partial_success"
    TOTAL_FAILURE = "total_failure"


@dataclass(frozen=True)
class BatchFailure:
    id: str
    error: str


@dataclass(frozen=True)
class BatchOperationResult(Generic[T]):
    success: bool
    success_ids: list[str]
    failures: list[BatchFailure]
    data: list[T] = field(default_factory=list)
    rejected: bool = False
    skipped_ids: list[str] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.success_ids)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def failed_ids(self) -> list[str]:
        return [failure.id for failure in self.failures]

    @property
    def outcome(self) -> BatchOutcome:
        if self.rejected:
            return BatchOutcome.TOTAL_FAILURE
        if not self.failures:
            return BatchOutcome.ALL_SUCCEEDED
        if self.success_ids:
            return BatchOutcome.PARTIAL_SUCCESS
        return BatchOutcome.TOTAL_FAILURE

    def errors(self) -> list[MutationError]:
        """Failures as ``MutationError`` values, for callers that want exceptions."""
        return [MutationError(failure.id, failure.error) for failure in self.failures]


@dataclass(frozen=True)
class BatchOptions:
    operation_name: str = "批量操作"
    max_items: int = DEFAULT_MAX_ITEMS
    max_failures: int | None = None
    notify_success: bool = True
    notify_errors: bool = True

    def __post_init__(self) -> None:
        if self.max_items < 1:
            raise ValueError(f"max_items must be >= 1, got: {self.max_items}")
        if self.max_failures is not None and self.max_failures < 1:
            raise ValueError(f"max_failures must be >= 1, got: {self.max_failures}")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a compensating action is attempted before giving up."""

    attempts: int = 1
    delay_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got: {self.attempts}")
        if self.delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got: {self.delay_seconds}")


# ---------------------------------------------------------------------------
# Shared bookkeeping
# ---------------------------------------------------------------------------

def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _check_preconditions(ids: Sequence[str], options: BatchOptions) -> BatchRejected | None:
    if not ids:
        return BatchRejected("没有选择任何项。")
    if len(ids) > options.max_items:
        return BatchRejected(f"最多只能选择 {options.max_items} 项进行批量操作。")
    return None


def _rejected_result(
    ids: Sequence[str],
    rejection: BatchRejected,
    options: BatchOptions,
    notifier: Notifier,
) -> BatchOperationResult[Any]:
    logger.warning("[%s] batch rejected (%d items): %s", options.operation_name, len(ids), rejection)
    if options.notify_errors:
        notifier.notify(
            Notification(NotificationKind.ERROR, f"{options.operation_name}失败", description=str(rejection))
        )
    return BatchOperationResult(
        success=False,
        success_ids=[],
        failures=[BatchFailure(id=item_id, error=str(rejection)) for item_id in ids],
        rejected=True,
    )


class _Accumulator(Generic[T]):
    def __init__(self, ids: Sequence[str], options: BatchOptions) -> None:
        self.ids = list(ids)
        self.options = options
        self.max_failures = options.max_failures if options.max_failures is not None else len(ids)
        self.success_ids: list[str] = []
        self.failures: list[BatchFailure] = []
        self.data: list[T] = []
        self.attempted = 0

    def succeeded(self, item_id: str, value: T) -> None:
        self.attempted += 1
        self.success_ids.append(item_id)
        self.data.append(value)
        logger.debug("[%s] succeeded: %s", self.options.operation_name, item_id)

    def failed(self, item_id: str, exc: Exception) -> bool:
        """Record a failure; return True when the failure budget is exhausted."""
        self.attempted += 1
        self.failures.append(BatchFailure(id=item_id, error=_error_message(exc)))
        logger.warning("[%s] failed: %s: %s", self.options.operation_name, item_id, exc)
        if len(self.failures) >= self.max_failures:
            logger.warning(
                "[%s] failure limit reached (%d), stopping", self.options.operation_name, self.max_failures
            )
            return True
        return False

    def result(self) -> BatchOperationResult[T]:
        skipped = self.ids[self.attempted:]
        result = BatchOperationResult(
            success=not self.failures,
            success_ids=self.success_ids,
            failures=self.failures,
            data=self.data,
            skipped_ids=skipped,
        )
        logger.info(
            "[%s] batch finished: %d succeeded, %d failed, %d skipped",
            self.options.operation_name,
            result.success_count,
            result.failure_count,
            len(skipped),
        )
        return result


def _notify_summary(
    result: BatchOperationResult[Any],
    options: BatchOptions,
    notifier: Notifier,
    *,
    notify_success: bool,
) -> None:
    name = options.operation_name
    outcome = result.outcome
    if outcome is BatchOutcome.ALL_SUCCEEDED:
        if notify_success:
            notifier.notify(Notification(NotificationKind.SUCCESS, f"{name}成功：已处理 {result.success_count} 项"))
        return
    if not options.notify_errors:
        return
    failed = ", ".join(result.failed_ids)
    if outcome is BatchOutcome.PARTIAL_SUCCESS:
        notifier.notify(
            Notification(
                NotificationKind.WARNING,
                f"{name}部分成功：成功 {result.success_count} 项，失败 {result.failure_count} 项",
                description=f"失败项：{failed}",
            )
        )
    else:
        notifier.notify(
            Notification(
                NotificationKind.ERROR,
                f"{name}失败：全部 {result.failure_count} 项操作失败",
                description=f"失败项：{failed}",
            )
        )


def _run_compensation(
    label: str,
    action: Callable[[str], Any],
    item_ids: Sequence[str],
    policy: RetryPolicy,
    operation_name: str,
) -> list[str]:
    """Apply *action* to each id under *policy*; return ids that never succeeded."""
    abandoned: list[str] = []
    for item_id in item_ids:
        for attempt in range(1, policy.attempts + 1):
            try:
                action(item_id)
                break
            except Exception as exc:  # noqa: BLE001
                logger.error("[%s] %s failed for %s (attempt %d/%d): %s",
                             operation_name, label, item_id, attempt, policy.attempts, exc)
                if attempt < policy.attempts and policy.delay_seconds:
                    time.sleep(policy.delay_seconds)
        else:
            abandoned.append(item_id)
    return abandoned


async def _run_compensation_async(
    label: str,
    action: Callable[[str], Any],
    item_ids: Sequence[str],
    policy: RetryPolicy,
    operation_name: str,
) -> list[str]:
    abandoned: list[str] = []
    for item_id in item_ids:
        for attempt in range(1, policy.attempts + 1):
            try:
                outcome = action(item_id)
                if asyncio.iscoroutine(outcome):
                    await outcome
                break
            except Exception as exc:  # noqa: BLE001
                logger.error("[%s] %s failed for %s (attempt %d/%d): %s",
                             operation_name, label, item_id, attempt, policy.attempts, exc)
                if attempt < policy.attempts and policy.delay_seconds:
                    await asyncio.sleep(policy.delay_seconds)
        else:
            abandoned.append(item_id)
    return abandoned


def _apply_optimistic(optimistic_update: Callable[[str], Any], ids: Sequence[str], operation_name: str) -> None:
    logger.info("[%s] applying optimistic update to %d items", operation_name, len(ids))
    for item_id in ids:
        try:
            optimistic_update(item_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("[%s] optimistic update failed for %s: %s", operation_name, item_id, exc)


# ---------------------------------------------------------------------------
# Synchronous executors
# ---------------------------------------------------------------------------

def execute_batch(
    ids: Sequence[str],
    operation: Callable[[str], T],
    options: BatchOptions | None = None,
    *,
    notifier: Notifier | None = None,
) -> BatchOperationResult[T]:
    """Run *operation* for each id in order, isolating per-item failures.

    Args:
        ids: Record ids, processed in this order.
        operation: Called once per id; any ``Exception`` it raises is
            recorded as that id's failure.
        options: Batch limits and notification switches.
        notifier: Outcome sink (default: log only).

    Returns:
        The aggregate result. A batch that is empty or larger than
        ``options.max_items`` is rejected without calling *operation*.
    """
    options = options or BatchOptions()
    notifier = notifier or LoggingNotifier()
    return _execute(ids, operation, options, notifier, notify_success=options.notify_success)


def _execute(
    ids: Sequence[str],
    operation: Callable[[str], T],
    options: BatchOptions,
    notifier: Notifier,
    *,
    notify_success: bool,
) -> BatchOperationResult[T]:
    rejection = _check_preconditions(ids, options)
    if rejection is not None:
        return _rejected_result(ids, rejection, options, notifier)

    logger.info("[%s] starting batch of %d items", options.operation_name, len(ids))
    acc: _Accumulator[T] = _Accumulator(ids, options)
    for item_id in ids:
        try:
            value = operation(item_id)
        except Exception as exc:  # noqa: BLE001
            if acc.failed(item_id, exc):
                break
            continue
        acc.succeeded(item_id, value)

    result = acc.result()
    _notify_summary(result, options, notifier, notify_success=notify_success)
    return result


def execute_batch_with_optimistic_update(
    ids: Sequence[str],
    optimistic_update: Callable[[str], Any],
    operation: Callable[[str], T],
    rollback: Callable[[str], Any],
    options: BatchOptions | None = None,
    *,
    notifier: Notifier | None = None,
    rollback_policy: RetryPolicy | None = None,
) -> BatchOperationResult[T]:
    """Optimistically apply a local effect, run the batch, compensate failures.

    ``optimistic_update`` runs for every id before any real operation;
    its failures are only logged. After the batch, ``rollback`` runs for
    every failed id and for ids skipped by the failure limit. A rejected
    batch touches nothing.
    """
    options = options or BatchOptions()
    notifier = notifier or LoggingNotifier()
    policy = rollback_policy or RetryPolicy()

    rejection = _check_preconditions(ids, options)
    if rejection is not None:
        return _rejected_result(ids, rejection, options, notifier)

    _apply_optimistic(optimistic_update, ids, options.operation_name)
    result = _execute(ids, operation, options, notifier, notify_success=False)

    to_compensate = result.failed_ids + result.skipped_ids
    if to_compensate:
        logger.warning("[%s] rolling back %d items", options.operation_name, len(to_compensate))
        abandoned = _run_compensation("rollback", rollback, to_compensate, policy, options.operation_name)
        if abandoned:
            logger.error("[%s] rollback abandoned for: %s", options.operation_name, ", ".join(abandoned))

    if result.success and options.notify_success:
        notifier.notify(
            Notification(NotificationKind.SUCCESS, f"{options.operation_name}成功：已处理 {result.success_count} 项")
        )
    return result


# ---------------------------------------------------------------------------
# Asynchronous executors
# ---------------------------------------------------------------------------

async def execute_batch_async(
    ids: Sequence[str],
    operation: Callable[[str], Awaitable[T]],
    options: BatchOptions | None = None,
    *,
    notifier: Notifier | None = None,
) -> BatchOperationResult[T]:
    """Coroutine form of ``execute_batch``; items are awaited strictly one at a time."""
    options = options or BatchOptions()
    notifier = notifier or LoggingNotifier()
    return await _execute_async(ids, operation, options, notifier, notify_success=options.notify_success)


async def _execute_async(
    ids: Sequence[str],
    operation: Callable[[str], Awaitable[T]],
    options: BatchOptions,
    notifier: Notifier,
    *,
    notify_success: bool,
) -> BatchOperationResult[T]:
    rejection = _check_preconditions(ids, options)
    if rejection is not None:
        return _rejected_result(ids, rejection, options, notifier)

    logger.info("[%s] starting async batch of %d items", options.operation_name, len(ids))
    acc: _Accumulator[T] = _Accumulator(ids, options)
    for item_id in ids:
        try:
            value = await operation(item_id)
        except Exception as exc:  # noqa: BLE001
            if acc.failed(item_id, exc):
                break
            continue
        acc.succeeded(item_id, value)

    result = acc.result()
    _notify_summary(result, options, notifier, notify_success=notify_success)
    return result


async def execute_batch_with_optimistic_update_async(
    ids: Sequence[str],
    optimistic_update: Callable[[str], Any],
    operation: Callable[[str], Awaitable[T]],
    rollback: Callable[[str], Any],
    options: BatchOptions | None = None,
    *,
    notifier: Notifier | None = None,
    rollback_policy: RetryPolicy | None = None,
) -> BatchOperationResult[T]:
    """Coroutine form of ``execute_batch_with_optimistic_update``.

    ``optimistic_update`` stays synchronous; ``rollback`` may be a plain
    function or return an awaitable.
    """
    options = options or BatchOptions()
    notifier = notifier or LoggingNotifier()
    policy = rollback_policy or RetryPolicy()

    rejection = _check_preconditions(ids, options)
    if rejection is not None:
        return _rejected_result(ids, rejection, options, notifier)

    _apply_optimistic(optimistic_update, ids, options.operation_name)
    result = await _execute_async(ids, operation, options, notifier, notify_success=False)

    to_compensate = result.failed_ids + result.skipped_ids
    if to_compensate:
        logger.warning("[%s] rolling back %d items", options.operation_name, len(to_compensate))
        abandoned = await _run_compensation_async("rollback", rollback, to_compensate, policy, options.operation_name)
        if abandoned:
            logger.error("[%s] rollback abandoned for: %s", options.operation_name, ", ".join(abandoned))

    if result.success and options.notify_success:
        notifier.notify(
            Notification(NotificationKind.SUCCESS, f"{options.operation_name}成功：已处理 {result.success_count} 项")
        )
    return result
