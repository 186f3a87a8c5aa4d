"""
Trend bucketing: per-entity, per-day sentiment series and the stats derived
from them.

A bucket covers one UTC calendar day of item observations. Days without any
activity still produce an all-zero bucket so every series has one entry per
day in the requested range.
"""

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from fanpulse.errors import FanPulseError, InsufficientData, StoreUnavailable
from fanpulse.services.types import (
    DayBucket,
    EntityTrend,
    OverallStats,
    TrendAnalysis,
    TrendSummary,
    utcnow,
)

logger = logging.getLogger(__name__)

PERIODS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_PERIOD = "7d"

TREND_WINDOW = 7
MIN_ACTIVE_DAYS = 4
DIRECTION_THRESHOLD = 0.1
MIN_COMMENTS_FOR_NEGATIVE = 10


def overall(buckets: Sequence[DayBucket]) -> OverallStats:
    """Totals, label percentages and trend direction for one series."""
    total_comments = sum(b.total for b in buckets)
    stats = OverallStats(total_comments=total_comments)

    if total_comments > 0:
        stats.positive_percent = sum(b.positive for b in buckets) / total_comments * 100
        stats.negative_percent = sum(b.negative for b in buckets) / total_comments * 100
        stats.neutral_percent = sum(b.neutral for b in buckets) / total_comments * 100

    window = list(buckets)[-TREND_WINDOW:]
    active_days = sum(1 for b in window if b.verdict_count > 0)
    if active_days < MIN_ACTIVE_DAYS:
        stats.insufficient_data = True
        stats.notice = InsufficientData(
            f"{active_days} active days in the last {len(window)}, need {MIN_ACTIVE_DAYS}"
        ).to_dict()
        return stats

    # Compares only the two oldest and the two newest days of the window
    first_half = (window[0].score + window[1].score) / 2
    second_half = (window[-2].score + window[-1].score) / 2
    change = second_half - first_half

    stats.weekly_change = change * 100
    if change > DIRECTION_THRESHOLD:
        stats.trend_direction = "up"
    elif change < -DIRECTION_THRESHOLD:
        stats.trend_direction = "down"
    return stats


class TrendBucketer:
    def __init__(
        self,
        store,
        attributor,
        clock: Callable[[], datetime] = utcnow,
        store_timeout_seconds: float = 15.0,
        max_range_days: int = 366,
    ):
        self.store = store
        self.attributor = attributor
        self.clock = clock
        self.store_timeout_seconds = store_timeout_seconds
        self.max_range_days = max_range_days

    def today(self) -> date:
        return self.clock().astimezone(timezone.utc).date()

    async def bucket(self, entity_id: str, start_date: date, end_date: date) -> List[DayBucket]:
        """
        One DayBucket per UTC day in [start_date, end_date], oldest first.

        Raises:
            ValueError: if the range is reversed or longer than max_range_days
            StoreUnavailable: if a day query fails or times out
        """
        if start_date > end_date:
            raise ValueError(f"start_date {start_date} is after end_date {end_date}")

        span = (end_date - start_date).days + 1
        if span > self.max_range_days:
            raise ValueError(f"Range of {span} days exceeds the {self.max_range_days} day limit")

        days = [start_date + timedelta(days=i) for i in range(span)]
        buckets = await asyncio.gather(*(self._day_bucket(entity_id, d) for d in days))
        return sorted(buckets, key=lambda b: b.date)

    async def _day_bucket(self, entity_id: str, day: date) -> DayBucket:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)

        try:
            counts = await asyncio.wait_for(
                asyncio.to_thread(self.store.day_counts, entity_id, start, end),
                timeout=self.store_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Day query for {entity_id} on {day} timed out")
            raise StoreUnavailable(
                f"Day query for {entity_id} on {day} exceeded {self.store_timeout_seconds}s"
            )

        verdicts = counts["positive"] + counts["negative"] + counts["neutral"]
        return DayBucket(
            date=day,
            positive=counts["positive"],
            negative=counts["negative"],
            neutral=counts["neutral"],
            total=counts["total"],
            score=counts["signed_score_sum"] / verdicts if verdicts else 0.0,
        )

    async def entity_trend(self, entity_id: str, start_date: date, end_date: date) -> EntityTrend:
        buckets = await self.bucket(entity_id, start_date, end_date)
        return EntityTrend(
            entity_id=entity_id,
            entity_name=self.attributor.name_for(entity_id),
            data=buckets,
            overall=overall(buckets),
        )

    async def analyze(self, period: Optional[str] = None) -> TrendAnalysis:
        """
        Trend analysis for every configured entity over a 7d, 30d or 90d period.

        Unknown periods fall back to 7d. The range ends today (UTC) and starts
        `days` earlier, so each series holds days + 1 buckets.
        """
        if period not in PERIODS:
            period = DEFAULT_PERIOD
        days = PERIODS[period]

        end_date = self.today()
        start_date = end_date - timedelta(days=days)
        logger.info(f"Analyzing {period} trends from {start_date} to {end_date}")

        analysis = TrendAnalysis(period=period, days=days, start_date=start_date, end_date=end_date)
        entities = self.attributor.entities()
        last_error: Optional[FanPulseError] = None

        for entity in entities:
            try:
                trend = await self.entity_trend(entity.id, start_date, end_date)
            except FanPulseError as e:
                logger.warning(f"Failed to get trend for {entity.name}: {e.message}")
                last_error = e
                continue
            analysis.entities.append(trend)

        if entities and not analysis.entities and last_error is not None:
            raise last_error

        analysis.summary = self._summarize(analysis.entities, days)
        return analysis

    @staticmethod
    def _summarize(trends: List[EntityTrend], days: int) -> TrendSummary:
        summary = TrendSummary()
        highest_positive, lowest_positive = -1.0, 101.0

        for trend in trends:
            stats = trend.overall
            summary.total_comments += stats.total_comments

            if stats.positive_percent > highest_positive:
                highest_positive = stats.positive_percent
                summary.most_positive_entity = trend.entity_name
            if stats.positive_percent < lowest_positive and stats.total_comments > MIN_COMMENTS_FOR_NEGATIVE:
                lowest_positive = stats.positive_percent
                summary.most_negative_entity = trend.entity_name

        summary.average_daily = summary.total_comments / days
        TrendBucketer._calculate_improvements(trends, summary)
        return summary

    @staticmethod
    def _calculate_improvements(trends: List[EntityTrend], summary: TrendSummary):
        max_improvement, max_decline = -100.0, 100.0

        for trend in trends:
            change = trend.overall.weekly_change
            if change > max_improvement:
                max_improvement = change
                summary.biggest_improvement = trend.entity_name
            if change < max_decline:
                max_decline = change
                summary.biggest_decline = trend.entity_name
