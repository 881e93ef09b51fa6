"""
Usage tracking: hands each completed operation's UsageRecord to the
configured sink, and aggregates records for billing.
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Union

from .errors import UsageEmissionError
from .models import UsageRecord

logger = logging.getLogger(__name__)


UsageSink = Callable[[UsageRecord], Union[Awaitable[None], None]]


def _is_coroutine_sink(sink: UsageSink) -> bool:
    return inspect.iscoroutinefunction(sink) or inspect.iscoroutinefunction(
        getattr(sink, "__call__", None)
    )


class UsageTracker:
    """
    使用记录跟踪器，每次操作完成后调用一次 sink。

    The sink may be a coroutine function, or a plain function which is
    run in a worker thread so a blocking sink cannot stall the loop. Sink
    failures and timeouts are logged and swallowed: metering never turns
    a successful user-facing operation into a failure. There are no
    retries; a sink that needs durability must provide it itself.

    Optionally keeps an in-memory history for per-workspace queries.
    """

    def __init__(
        self,
        on_usage: UsageSink | None = None,
        timeout: float = 10.0,
        keep_history: bool = False,
        max_history: int = 10_000,
    ) -> None:
        self._on_usage = on_usage
        self._timeout = timeout
        self._keep_history = keep_history
        self._records: deque[UsageRecord] = deque(maxlen=max_history)

    async def emit(self, record: UsageRecord) -> bool:
        """
        Deliver a record to the sink exactly once.

        Returns:
            True if the sink completed (or there is no sink), False if it
            failed or timed out
        """
        if self._keep_history:
            self._records.append(record)

        if self._on_usage is None:
            return True

        try:
            if _is_coroutine_sink(self._on_usage):
                await asyncio.wait_for(self._on_usage(record), timeout=self._timeout)
            else:
                # blocking sinks run off the event loop, under the same deadline
                result = await asyncio.wait_for(
                    asyncio.to_thread(self._on_usage, record), timeout=self._timeout
                )
                if inspect.isawaitable(result):
                    await asyncio.wait_for(result, timeout=self._timeout)
        except asyncio.TimeoutError:
            error = UsageEmissionError(
                f"usage sink timed out after {self._timeout:g}s", record=record
            )
            logger.warning(
                "%s (provider=%s model=%s operation=%s)",
                error, record.provider, record.model, record.operation,
            )
            return False
        except Exception as e:
            error = UsageEmissionError(f"usage sink failed: {e}", record=record)
            logger.error(
                "%s (provider=%s model=%s operation=%s)",
                error, record.provider, record.model, record.operation,
                exc_info=e,
            )
            return False
        return True

    def get_records_by_workspace(self, workspace_id: str) -> list[UsageRecord]:
        """按工作区ID查询使用记录。"""
        return [r for r in self._records if r.workspace_id == workspace_id]

    def get_records_by_time_range(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> list[UsageRecord]:
        """
        按时间范围查询使用记录。

        Args:
            start_time: 开始时间（包含），None表示不限制开始时间
            end_time: 结束时间（包含），None表示不限制结束时间
        """
        return [r for r in self._records if _in_range(r, start_time, end_time)]

    def get_all_records(self) -> list[UsageRecord]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()


def _in_range(record: UsageRecord, start: datetime | None, end: datetime | None) -> bool:
    if start is not None and record.timestamp < start:
        return False
    if end is not None and record.timestamp > end:
        return False
    return True


@dataclass
class WorkspaceBilling:
    """Billed totals for one workspace."""
    workspace_id: str
    total_billed: float = 0.0
    total_provider_cost: float = 0.0
    record_count: int = 0
    by_project: dict[str, float] = field(default_factory=dict)
    by_agent: dict[str, float] = field(default_factory=dict)
    by_provider: dict[str, float] = field(default_factory=dict)

    def add(self, record: UsageRecord) -> None:
        self.total_billed += record.billed_amount
        self.total_provider_cost += record.provider_cost
        self.record_count += 1
        if record.project_id:
            self.by_project[record.project_id] = (
                self.by_project.get(record.project_id, 0.0) + record.billed_amount
            )
        if record.agent_id:
            self.by_agent[record.agent_id] = (
                self.by_agent.get(record.agent_id, 0.0) + record.billed_amount
            )
        self.by_provider[record.provider] = (
            self.by_provider.get(record.provider, 0.0) + record.billed_amount
        )


def calculate_workspace_billing(
    records: Iterable[UsageRecord],
    workspace_id: str,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    providers: Iterable[str] | None = None,
    operations: Iterable[str] | None = None,
) -> WorkspaceBilling:
    """
    Sum billed amount and provider cost for one workspace.

    Records of other workspaces, outside the time range, or not matching
    the provider/operation filters are ignored.
    """
    provider_filter = set(providers) if providers is not None else None
    operation_filter = set(operations) if operations is not None else None

    billing = WorkspaceBilling(workspace_id=workspace_id)
    for record in records:
        if record.workspace_id != workspace_id:
            continue
        if not _in_range(record, start_time, end_time):
            continue
        if provider_filter is not None and record.provider not in provider_filter:
            continue
        if operation_filter is not None and record.operation not in operation_filter:
            continue
        billing.add(record)
    return billing


def billing_by_workspace(records: Iterable[UsageRecord]) -> dict[str, WorkspaceBilling]:
    """Group records by workspace id. Records without one are skipped."""
    result: dict[str, WorkspaceBilling] = {}
    for record in records:
        if not record.workspace_id:
            continue
        if record.workspace_id not in result:
            result[record.workspace_id] = WorkspaceBilling(workspace_id=record.workspace_id)
        result[record.workspace_id].add(record)
    return result


@dataclass
class UsageTotals:
    cost: float = 0.0
    billed: float = 0.0
    count: int = 0


@dataclass
class UsageSummary:
    total_provider_cost: float = 0.0
    total_billed_amount: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    record_count: int = 0
    by_provider: dict[str, UsageTotals] = field(default_factory=dict)
    by_operation: dict[str, UsageTotals] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalProviderCost": self.total_provider_cost,
            "totalBilledAmount": self.total_billed_amount,
            "totalTokens": {"input": self.input_tokens, "output": self.output_tokens},
            "recordCount": self.record_count,
            "byProvider": {k: vars(v) for k, v in self.by_provider.items()},
            "byOperation": {k: vars(v) for k, v in self.by_operation.items()},
        }


def summarize(records: Iterable[UsageRecord]) -> UsageSummary:
    """Totals of cost, billed amount and tokens, by provider and operation."""
    summary = UsageSummary()
    for record in records:
        summary.record_count += 1
        summary.total_provider_cost += record.provider_cost
        summary.total_billed_amount += record.billed_amount
        summary.input_tokens += record.input_tokens or 0
        summary.output_tokens += record.output_tokens or 0
        for bucket, key in (
            (summary.by_provider, record.provider),
            (summary.by_operation, record.operation),
        ):
            totals = bucket.setdefault(key, UsageTotals())
            totals.cost += record.provider_cost
            totals.billed += record.billed_amount
            totals.count += 1
    return summary


class BufferedUsageSink:
    """
    A usage sink that batches records before handing them on.

    Flushes when ``batch_size`` records are buffered, every
    ``flush_interval`` seconds when one is given, and on ``flush()`` /
    ``aclose()``. If the downstream flush fails the records go back to
    the front of the buffer; an explicit flush re-raises the error, a
    timed flush logs it and retries on the next tick.
    """

    def __init__(
        self,
        on_flush: Callable[[list[UsageRecord]], Awaitable[None]],
        batch_size: int = 100,
        flush_interval: float | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if flush_interval is not None and flush_interval <= 0:
            raise ValueError("flush_interval must be > 0")
        self._on_flush = on_flush
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._buffer: list[UsageRecord] = []
        self._timer: asyncio.Task | None = None
        self._closed = False

    async def __call__(self, record: UsageRecord) -> None:
        self._buffer.append(record)
        self._start_timer()
        if len(self._buffer) >= self._batch_size:
            await self.flush()

    def _start_timer(self) -> None:
        # started lazily: the first record arrives inside a running loop
        if self._flush_interval is None or self._closed or self._timer is not None:
            return
        self._timer = asyncio.get_running_loop().create_task(self._flush_periodically())

    async def _flush_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            try:
                await self.flush()
            except Exception as e:
                logger.error(
                    "Timed usage flush failed, %d records kept: %s",
                    len(self._buffer), e, exc_info=e,
                )

    async def flush(self) -> None:
        if not self._buffer:
            return

        records = self._buffer
        self._buffer = []
        try:
            await self._on_flush(records)
        except BaseException:
            # requeued on cancellation too
            self._buffer = records + self._buffer
            raise

    async def aclose(self) -> None:
        """Stop the flush timer and flush what is left."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        await self.flush()

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    def summary(self) -> UsageSummary:
        return summarize(self._buffer)
