import logging
from typing import List, Optional, Sequence

from fanpulse.services.types import EntityTrend, Insight, TrendAnalysis, TrendSummary

logger = logging.getLogger(__name__)

SEVERITY_RANK = {"high": 3, "medium": 2, "low": 1}

IMPROVEMENT_THRESHOLD = 5.0
DECLINE_THRESHOLD = -5.0
POSITIVE_SPIKE_PERCENT = 60.0
NEGATIVE_WARNING_PERCENT = 40.0
MIN_COMMENTS = 10
HIGH_ACTIVITY_COMMENTS = 100
DAILY_SPIKE_AVERAGE = 10.0


class InsightRanker:
    """Turn trend statistics into human-readable findings, most severe first."""

    def __init__(self, bucketer=None):
        self.bucketer = bucketer

    def rank(self, trends: Sequence[EntityTrend], summary: TrendSummary, period: str = "7d") -> List[Insight]:
        insights: List[Insight] = []

        for trend in trends:
            insights.extend(self._entity_insights(trend, period))

        if summary.average_daily > DAILY_SPIKE_AVERAGE:
            insights.append(Insight(
                type="spike",
                entity_id="overall",
                description=f"Averaging {summary.average_daily:.0f} comments a day: sustained fan activity",
                value=f"{summary.average_daily:.0f}/day",
                severity="medium",
            ))

        if summary.total_comments > 0:
            insights.append(Insight(
                type="trend",
                entity_id="platform",
                description=(
                    f"{summary.total_comments} comments analyzed in total, "
                    f"{summary.average_daily:.1f} per day on average"
                ),
                value=f"{summary.total_comments} comments",
                severity="low",
            ))

        # sorted() is stable, so equal severities keep insertion order
        return sorted(insights, key=lambda i: SEVERITY_RANK[i.severity], reverse=True)

    @staticmethod
    def _entity_insights(trend: EntityTrend, period: str) -> List[Insight]:
        stats = trend.overall
        name = trend.entity_name
        found = []

        if stats.weekly_change > IMPROVEMENT_THRESHOLD:
            found.append(Insight(
                type="improvement",
                entity_id=trend.entity_id,
                description=f"{name} fan sentiment improved by {stats.weekly_change:.1f}% over {period}",
                value=f"+{stats.weekly_change:.1f}%",
                severity="high",
            ))

        if stats.weekly_change < DECLINE_THRESHOLD:
            found.append(Insight(
                type="decline",
                entity_id=trend.entity_id,
                description=f"{name} fan sentiment dropped by {-stats.weekly_change:.1f}% over {period}",
                value=f"{stats.weekly_change:.1f}%",
                severity="high",
            ))

        if stats.positive_percent > POSITIVE_SPIKE_PERCENT and stats.total_comments > MIN_COMMENTS:
            found.append(Insight(
                type="spike",
                entity_id=trend.entity_id,
                description=f"{stats.positive_percent:.1f}% of {name} fans are expressing positive sentiment",
                value=f"{stats.positive_percent:.1f}%",
                severity="medium",
            ))

        if stats.negative_percent > NEGATIVE_WARNING_PERCENT and stats.total_comments > MIN_COMMENTS:
            found.append(Insight(
                type="warning",
                entity_id=trend.entity_id,
                description=f"{stats.negative_percent:.1f}% of {name} fans are expressing negative sentiment",
                value=f"{stats.negative_percent:.1f}%",
                severity="medium",
            ))

        if stats.total_comments > HIGH_ACTIVITY_COMMENTS:
            found.append(Insight(
                type="activity",
                entity_id=trend.entity_id,
                description=f"{stats.total_comments} comments analyzed for {name} over {period}: high fan activity",
                value=f"{stats.total_comments} comments",
                severity="low",
            ))

        return found

    async def insights(self, period: Optional[str] = None) -> List[Insight]:
        """Analyze the period and rank the findings."""
        if self.bucketer is None:
            raise RuntimeError("InsightRanker needs a TrendBucketer to compute insights")
        analysis: TrendAnalysis = await self.bucketer.analyze(period)
        ranked = self.rank(analysis.entities, analysis.summary, analysis.period)
        logger.info(f"Generated {len(ranked)} insights for {analysis.period}")
        return ranked
