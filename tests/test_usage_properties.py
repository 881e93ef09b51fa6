"""
Property-based tests for usage tracking and workspace billing.

Feature: ai-gateway
Property 7: 使用记录只发送一次
Property 8: 工作区计费汇总
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, strategies as st, settings

from ai_gateway.models import UsageRecord
from ai_gateway.usage import (
    BufferedUsageSink,
    UsageTracker,
    billing_by_workspace,
    calculate_workspace_billing,
    summarize,
)


provider_strategy = st.sampled_from(["openai", "anthropic", "google", "fal", "elevenlabs"])
operation_strategy = st.sampled_from(["chat", "stream_chat", "generate_image", "text_to_speech"])
workspace_strategy = st.sampled_from(["ws_a", "ws_b", "ws_c", None])
amount_strategy = st.integers(min_value=0, max_value=400).map(lambda n: n * 0.25)


@st.composite
def usage_record_strategy(draw):
    cost = draw(st.floats(min_value=0.0, max_value=10.0, allow_nan=False, allow_infinity=False))
    return UsageRecord(
        provider=draw(provider_strategy),
        model="model-x",
        operation=draw(operation_strategy),
        provider_cost=cost,
        billed_amount=draw(amount_strategy),
        input_tokens=draw(st.integers(min_value=0, max_value=100_000)),
        output_tokens=draw(st.integers(min_value=0, max_value=100_000)),
        workspace_id=draw(workspace_strategy),
        project_id=draw(st.sampled_from(["proj_1", "proj_2", None])),
        agent_id=draw(st.sampled_from(["agent_1", None])),
    )


def _record(**overrides) -> UsageRecord:
    values = dict(
        provider="openai", model="gpt-4o", operation="chat",
        provider_cost=0.0173, billed_amount=0.25, workspace_id="ws_a",
    )
    values.update(overrides)
    return UsageRecord(**values)


class TestUsageEmission:
    """
    Property 7: 使用记录只发送一次

    The sink sees each emitted record exactly once; sink failures and
    timeouts are reported as False, never raised.
    """

    @settings(max_examples=50)
    @given(records=st.lists(usage_record_strategy(), max_size=20))
    def test_async_sink_receives_each_record_once(self, records):
        received = []

        async def sink(record):
            received.append(record)

        tracker = UsageTracker(sink)

        async def run():
            return [await tracker.emit(r) for r in records]

        results = asyncio.run(run())
        assert all(results)
        assert received == records

    def test_sync_sink(self):
        received = []
        tracker = UsageTracker(received.append)
        record = _record()
        assert asyncio.run(tracker.emit(record)) is True
        assert received == [record]

    def test_no_sink_is_success(self):
        assert asyncio.run(UsageTracker().emit(_record())) is True

    def test_failing_sink_is_swallowed(self, caplog):
        def sink(record):
            raise RuntimeError("database unavailable")

        tracker = UsageTracker(sink)
        assert asyncio.run(tracker.emit(_record())) is False
        assert "usage sink failed" in caplog.text

    def test_slow_sink_times_out(self):
        async def sink(record):
            await asyncio.sleep(5)

        tracker = UsageTracker(sink, timeout=0.05)
        assert asyncio.run(tracker.emit(_record())) is False

    def test_blocking_sync_sink_times_out_without_stalling_the_loop(self):
        def sink(record):
            time.sleep(0.3)

        tracker = UsageTracker(sink, timeout=0.05)

        async def run():
            ticks = 0

            async def ticker():
                nonlocal ticks
                while True:
                    await asyncio.sleep(0.01)
                    ticks += 1

            task = asyncio.create_task(ticker())
            started = time.monotonic()
            delivered = await tracker.emit(_record())
            elapsed = time.monotonic() - started
            task.cancel()
            return delivered, elapsed, ticks

        delivered, elapsed, ticks = asyncio.run(run())
        assert delivered is False
        assert elapsed < 0.25
        assert ticks >= 1

    def test_async_callable_object_sink(self):
        class Sink:
            def __init__(self):
                self.records = []

            async def __call__(self, record):
                self.records.append(record)

        sink = Sink()
        record = _record()
        assert asyncio.run(UsageTracker(sink).emit(record)) is True
        assert sink.records == [record]

    def test_history_queries(self):
        tracker = UsageTracker(keep_history=True)
        now = datetime.now(timezone.utc)
        old = _record(timestamp=now - timedelta(days=2))
        new = _record(workspace_id="ws_b", timestamp=now)

        async def run():
            await tracker.emit(old)
            await tracker.emit(new)

        asyncio.run(run())
        assert tracker.get_records_by_workspace("ws_b") == [new]
        assert tracker.get_records_by_time_range(start_time=now - timedelta(hours=1)) == [new]
        assert tracker.get_records_by_time_range(end_time=now - timedelta(days=1)) == [old]
        tracker.clear()
        assert tracker.get_all_records() == []


class TestWorkspaceBilling:
    """
    Property 8: 工作区计费汇总

    A workspace's total is the sum of its records' billed amounts and
    never includes another workspace's records.
    """

    @settings(max_examples=100)
    @given(records=st.lists(usage_record_strategy(), max_size=30), workspace=st.sampled_from(["ws_a", "ws_b"]))
    def test_total_is_sum_of_own_records(self, records, workspace):
        billing = calculate_workspace_billing(records, workspace)
        own = [r for r in records if r.workspace_id == workspace]

        assert billing.record_count == len(own)
        assert billing.total_billed == pytest.approx(sum(r.billed_amount for r in own))
        assert billing.total_provider_cost == pytest.approx(sum(r.provider_cost for r in own))

    @settings(max_examples=100)
    @given(records=st.lists(usage_record_strategy(), max_size=30))
    def test_grouping_partitions_records(self, records):
        grouped = billing_by_workspace(records)
        with_workspace = [r for r in records if r.workspace_id]

        assert sum(b.record_count for b in grouped.values()) == len(with_workspace)
        for workspace_id, billing in grouped.items():
            assert billing.total_billed == pytest.approx(
                calculate_workspace_billing(records, workspace_id).total_billed
            )

    def test_filters(self):
        records = [
            _record(provider="openai", operation="chat", billed_amount=0.25),
            _record(provider="fal", operation="generate_image", billed_amount=0.5),
            _record(provider="fal", operation="generate_image", billed_amount=0.5, project_id="proj_1"),
        ]
        billing = calculate_workspace_billing(records, "ws_a", providers=["fal"])
        assert billing.total_billed == 1.0
        assert billing.by_project == {"proj_1": 0.5}

        billing = calculate_workspace_billing(records, "ws_a", operations=["chat"])
        assert billing.record_count == 1
        assert billing.by_provider == {"openai": 0.25}

    def test_summary(self):
        records = [
            _record(input_tokens=100, output_tokens=50),
            _record(provider="anthropic", input_tokens=10, output_tokens=5),
        ]
        summary = summarize(records)
        assert summary.record_count == 2
        assert summary.input_tokens == 110
        assert summary.total_billed_amount == 0.5
        data = summary.to_dict()
        assert data["byProvider"]["anthropic"]["count"] == 1
        assert data["totalTokens"] == {"input": 110, "output": 55}


class TestBufferedUsageSink:

    def test_flushes_at_batch_size(self):
        batches = []

        async def on_flush(records):
            batches.append(list(records))

        sink = BufferedUsageSink(on_flush, batch_size=2)

        async def run():
            for i in range(5):
                await sink(_record(input_tokens=i))

        asyncio.run(run())
        assert [len(b) for b in batches] == [2, 2]
        assert sink.buffer_size == 1

    def test_failed_flush_requeues_records(self):
        async def on_flush(records):
            raise RuntimeError("warehouse down")

        sink = BufferedUsageSink(on_flush, batch_size=10)

        async def run():
            await sink(_record())
            await sink(_record())
            with pytest.raises(RuntimeError):
                await sink.flush()

        asyncio.run(run())
        assert sink.buffer_size == 2
        assert sink.summary().total_billed_amount == 0.5

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            BufferedUsageSink(lambda records: None, batch_size=0)

    def test_flush_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            BufferedUsageSink(lambda records: None, flush_interval=0)

    def test_timer_flushes_partial_batch(self):
        batches = []

        async def on_flush(records):
            batches.append(list(records))

        sink = BufferedUsageSink(on_flush, batch_size=100, flush_interval=0.01)

        async def run():
            await sink(_record())
            await asyncio.sleep(0.05)
            flushed_by_timer = [len(b) for b in batches]
            await sink.aclose()
            return flushed_by_timer

        assert asyncio.run(run()) == [1]
        assert sink.buffer_size == 0

    def test_timer_keeps_records_when_flush_fails(self, caplog):
        async def on_flush(records):
            raise RuntimeError("warehouse down")

        sink = BufferedUsageSink(on_flush, batch_size=100, flush_interval=0.01)

        async def run():
            await sink(_record())
            await asyncio.sleep(0.03)
            size = sink.buffer_size
            with pytest.raises(RuntimeError):
                await sink.aclose()
            return size

        assert asyncio.run(run()) == 1
        assert "Timed usage flush failed" in caplog.text

    def test_aclose_flushes_remaining_records(self):
        batches = []

        async def on_flush(records):
            batches.append(list(records))

        sink = BufferedUsageSink(on_flush, batch_size=10, flush_interval=60)

        async def run():
            await sink(_record())
            await sink(_record())
            await sink.aclose()
            await sink(_record())
            return sink._timer

        assert asyncio.run(run()) is None
        assert [len(b) for b in batches] == [2]
        assert sink.buffer_size == 1
