"""
性能统计

- PerformanceAggregator.record: 单次事件写入当天统计桶（原子 upsert）
- PerformanceAggregator.report: 按 day / week / month 聚合，并与上一等长周期对比
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from agent_meter.models import (
    PerformanceBucket,
    PerformanceChanges,
    PerformanceDelta,
    PerformanceReport,
    Timeframe,
)
from agent_meter.services.repositories import AgentRepository, PerformanceRepository
from agent_meter.utils.datetime import local_midnight, period_start

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodTotals:
    """一个统计周期内的汇总"""
    responses: int = 0
    successes: int = 0
    weighted_response_time: float = 0.0
    token_usage: int = 0

    @property
    def success_rate(self) -> Optional[float]:
        if self.responses == 0:
            return None
        return self.successes / self.responses * 100

    @property
    def average_response_time(self) -> float:
        if self.responses == 0:
            return 0.0
        return self.weighted_response_time / self.responses

    @classmethod
    def from_buckets(cls, buckets: Sequence[PerformanceBucket]) -> "PeriodTotals":
        return cls(
            responses=sum(b.total_responses for b in buckets),
            successes=sum(b.successful_responses for b in buckets),
            weighted_response_time=sum(b.average_response_time * b.total_responses for b in buckets),
            token_usage=sum(b.token_usage for b in buckets),
        )


def percent_change(current: float, previous: float) -> float:
    """相对变化百分比；上一周期为 0 时记为 0"""
    if previous == 0:
        return 0.0
    return round((current - previous) / previous * 100, 1)


def _local_naive(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone().replace(tzinfo=None)
    return dt


class PerformanceAggregator:
    """
    性能统计聚合器

    Usage:
        aggregator = PerformanceAggregator(repos.performance, repos.agents)
        await aggregator.record(agent_id, datetime.now(), delta)
        report = await aggregator.report(agent_id, Timeframe.WEEK)
    """

    def __init__(self, buckets: PerformanceRepository, agents: AgentRepository):
        self._buckets = buckets
        self._agents = agents

    async def record(
        self,
        agent_id: str,
        day: datetime,
        delta: PerformanceDelta,
    ) -> PerformanceBucket:
        """把增量写入 day 所在本地日历日的统计桶"""
        bucket = await self._buckets.apply(agent_id, local_midnight(day), delta)
        logger.debug(
            f"Performance recorded: {bucket.bucket_id}, total={bucket.total_responses}, "
            f"avg_time={bucket.average_response_time:.3f}s"
        )
        return bucket

    async def report(
        self,
        agent_id: str,
        timeframe: Timeframe | str = Timeframe.DAY,
        now: datetime | None = None,
    ) -> PerformanceReport:
        """
        周期报表

        - accuracy: 周期内成功率；无数据时取 Agent 滚动准确率
        - response_time: 按响应数加权的平均响应时间
        - changes: 与上一等长周期相比的百分比变化
        """
        timeframe = Timeframe(timeframe)
        end = _local_naive(now) if now else datetime.now()
        start = period_start(end, timeframe.value)
        prev_start = period_start(start, timeframe.value)

        buckets = await self._buckets.list_range(agent_id, start, end)
        previous = await self._buckets.list_range(
            agent_id, prev_start, start - timedelta(microseconds=1)
        )

        current_totals = PeriodTotals.from_buckets(buckets)
        previous_totals = PeriodTotals.from_buckets(previous)

        accuracy = current_totals.success_rate
        if accuracy is None:
            state = await self._agents.get(agent_id)
            accuracy = state.accuracy if state else 0.0

        report = PerformanceReport(
            agent_id=agent_id,
            timeframe=timeframe.value,
            responses=current_totals.responses,
            accuracy=round(accuracy, 2),
            response_time=round(current_totals.average_response_time, 3),
            token_usage=current_totals.token_usage,
            changes=PerformanceChanges(
                responses=percent_change(current_totals.responses, previous_totals.responses),
                accuracy=percent_change(accuracy, previous_totals.success_rate or 0.0),
                response_time=percent_change(
                    current_totals.average_response_time,
                    previous_totals.average_response_time,
                ),
            ),
            buckets=[
                {
                    "date": b.date.date().isoformat(),
                    "total_responses": b.total_responses,
                    "successful_responses": b.successful_responses,
                    "failed_responses": b.failed_responses,
                    "average_response_time": b.average_response_time,
                    "accuracy": b.accuracy,
                    "token_usage": b.token_usage,
                }
                for b in buckets
            ],
        )
        logger.info(
            f"Performance report: agent={agent_id}, timeframe={timeframe.value}, "
            f"responses={report.responses}, accuracy={report.accuracy}"
        )
        return report
