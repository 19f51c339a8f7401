"""
性能统计单元测试

测试：
- Agent 滚动准确率
- 日统计桶：计数累加 / 在线均值 / 按本地日历日分桶
- 周期报表与环比变化
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from agent_meter.models import PerformanceDelta, Timeframe
from agent_meter.services.performance import PerformanceAggregator, percent_change


def delta(success=True, seconds=1.0, accuracy=100.0, tokens=10):
    return PerformanceDelta(
        responses=1,
        successes=1 if success else 0,
        failures=0 if success else 1,
        response_time_seconds=seconds,
        accuracy=accuracy,
        token_usage=tokens,
    )


# =============================================================================
# 滚动准确率
# =============================================================================


class TestRollingAccuracy:
    """Agent 级滚动准确率"""

    @pytest.mark.asyncio
    async def test_success_fail_success(self, repos):
        accuracies = []
        for success in (True, False, True):
            state = await repos.agents.record_response("agent-1", success)
            accuracies.append(round(state.accuracy, 2))

        assert accuracies == [100.0, 50.0, 66.67]

    @pytest.mark.asyncio
    async def test_first_failure_is_zero(self, repos):
        state = await repos.agents.record_response("agent-1", False)
        assert state.accuracy == 0.0
        assert state.responses == 1
        assert state.last_active is not None


# =============================================================================
# 日统计桶
# =============================================================================


class TestPerformanceAggregator:
    """日统计桶写入"""

    @pytest.mark.asyncio
    async def test_online_mean_of_response_times(self, repos):
        aggregator = PerformanceAggregator(repos.performance, repos.agents)
        day = datetime(2026, 3, 10, 9, 30)

        averages = []
        for seconds in (1.0, 3.0, 2.0):
            bucket = await aggregator.record("agent-1", day, delta(seconds=seconds))
            averages.append(bucket.average_response_time)

        assert averages == [1.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_counters_are_additive(self, repos):
        aggregator = PerformanceAggregator(repos.performance, repos.agents)
        day = datetime(2026, 3, 10, 9, 30)

        await aggregator.record("agent-1", day, delta(success=True, tokens=20))
        await aggregator.record("agent-1", day, delta(success=False, tokens=0, accuracy=50.0))
        bucket = await aggregator.record("agent-1", day, delta(success=True, tokens=15, accuracy=66.7))

        assert bucket.total_responses == 3
        assert bucket.successful_responses == 2
        assert bucket.failed_responses == 1
        assert bucket.token_usage == 35
        assert bucket.accuracy == 66.7

    @pytest.mark.asyncio
    async def test_bucket_keyed_by_local_day(self, repos):
        aggregator = PerformanceAggregator(repos.performance, repos.agents)

        morning = await aggregator.record("agent-1", datetime(2026, 3, 10, 0, 5), delta())
        evening = await aggregator.record("agent-1", datetime(2026, 3, 10, 23, 55), delta())
        next_day = await aggregator.record("agent-1", datetime(2026, 3, 11, 0, 1), delta())

        assert morning.bucket_id == evening.bucket_id == "agent-1:2026-03-10"
        assert evening.total_responses == 2
        assert next_day.bucket_id == "agent-1:2026-03-11"
        assert next_day.date == datetime(2026, 3, 11)

    @pytest.mark.asyncio
    async def test_concurrent_records_do_not_lose_updates(self, repos):
        aggregator = PerformanceAggregator(repos.performance, repos.agents)
        day = datetime(2026, 3, 10, 12, 0)

        await asyncio.gather(*(aggregator.record("agent-1", day, delta()) for _ in range(20)))

        bucket = await repos.performance.get("agent-1", day)
        assert bucket.total_responses == 20


# =============================================================================
# 报表
# =============================================================================


class TestPerformanceReport:
    """周期报表"""

    @pytest.mark.asyncio
    async def test_report_aggregates_current_period(self, repos):
        aggregator = PerformanceAggregator(repos.performance, repos.agents)
        now = datetime(2026, 3, 10, 18, 0)

        await aggregator.record("agent-1", now, delta(success=True, seconds=1.0, tokens=10))
        await aggregator.record("agent-1", now, delta(success=False, seconds=3.0, tokens=5))
        await aggregator.record("agent-1", now - timedelta(days=3), delta(seconds=5.0, tokens=100))

        report = await aggregator.report("agent-1", Timeframe.DAY, now=now)

        assert report.responses == 2
        assert report.accuracy == 50.0
        assert report.response_time == 2.0
        assert report.token_usage == 15
        assert len(report.buckets) == 1

        weekly = await aggregator.report("agent-1", "week", now=now)
        assert weekly.responses == 3
        assert weekly.token_usage == 115
        assert weekly.response_time == 3.0
        assert [b["date"] for b in weekly.buckets] == ["2026-03-10", "2026-03-07"]

    @pytest.mark.asyncio
    async def test_report_change_against_previous_period(self, repos):
        aggregator = PerformanceAggregator(repos.performance, repos.agents)
        now = datetime(2026, 3, 10, 18, 0)

        for _ in range(4):
            await aggregator.record("agent-1", now, delta(seconds=1.0))
        for _ in range(2):
            await aggregator.record("agent-1", now - timedelta(days=1), delta(seconds=2.0))

        report = await aggregator.report("agent-1", Timeframe.DAY, now=now)

        assert report.responses == 4
        assert report.changes.responses == 100.0
        assert report.changes.response_time == -50.0
        assert report.changes.accuracy == 0.0

    @pytest.mark.asyncio
    async def test_report_without_data_uses_rolling_accuracy(self, repos):
        aggregator = PerformanceAggregator(repos.performance, repos.agents)
        await repos.agents.record_response("agent-1", True)
        await repos.agents.record_response("agent-1", False)

        report = await aggregator.report("agent-1", "month", now=datetime(2026, 3, 10))

        assert report.responses == 0
        assert report.accuracy == 50.0
        assert report.response_time == 0.0
        assert report.changes.responses == 0.0

    def test_percent_change(self):
        assert percent_change(150, 100) == 50.0
        assert percent_change(1, 3) == -66.7
        assert percent_change(5, 0) == 0.0
