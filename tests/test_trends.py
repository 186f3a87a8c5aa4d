"""Test day bucketing, overall stats and period analysis."""

import time
from datetime import date, timedelta
import pytest
from fanpulse.errors import StoreUnavailable
from fanpulse.services.trends import TrendBucketer, overall
from fanpulse.services.types import DayBucket, EntityTrend, OverallStats, TrendSummary
from fanpulse.storage.memory_storage import InMemoryStorage
from tests.conftest import FIXED_NOW, fixed_clock, make_item, verdict

TODAY = FIXED_NOW.date()


def buckets_with_scores(scores):
    """Buckets ending today; None marks a day without verdicts."""
    start = TODAY - timedelta(days=len(scores) - 1)
    out = []
    for i, score in enumerate(scores):
        if score is None:
            out.append(DayBucket(date=start + timedelta(days=i)))
        else:
            out.append(DayBucket(date=start + timedelta(days=i), positive=1, total=1, score=score))
    return out


def seed(store, entity_id, day_offset, label="POSITIVE", score=0.8, count=1, prefix=None):
    prefix = prefix or f"{entity_id}-{day_offset}-{label}"
    for i in range(count):
        store.insert_record(
            make_item(f"{prefix}-{i}", observed_at=FIXED_NOW - timedelta(days=day_offset)),
            entity_id,
            verdict(label, score=score),
        )


class SlowEarlyDaysStore(InMemoryStorage):
    """Earlier days answer later, so completion order is reversed."""

    def day_counts(self, entity_id, start, end):
        time.sleep((10 - start.day % 10) * 0.01)
        return super().day_counts(entity_id, start, end)


class HangingStore(InMemoryStorage):
    def day_counts(self, entity_id, start, end):
        time.sleep(0.5)
        return super().day_counts(entity_id, start, end)


class BrokenEntityStore(InMemoryStorage):
    def __init__(self, broken):
        super().__init__()
        self.broken = set(broken)

    def day_counts(self, entity_id, start, end):
        if entity_id in self.broken:
            raise StoreUnavailable("connection reset")
        return super().day_counts(entity_id, start, end)


@pytest.fixture
def bucketer(store, attributor):
    return TrendBucketer(store, attributor, clock=fixed_clock)


class TestBucket:
    """Test per-day bucket generation."""

    @pytest.mark.asyncio
    async def test_gap_day_is_zero(self, store, bucketer):
        seed(store, "galatasaray", 2)
        seed(store, "galatasaray", 0, label="NEGATIVE", score=0.6)

        buckets = await bucketer.bucket("galatasaray", TODAY - timedelta(days=2), TODAY)

        assert [b.date for b in buckets] == [TODAY - timedelta(days=2), TODAY - timedelta(days=1), TODAY]
        assert buckets[0].positive == 1
        assert buckets[0].score == pytest.approx(0.8)
        assert buckets[1] == DayBucket(date=TODAY - timedelta(days=1))
        assert buckets[2].negative == 1
        assert buckets[2].score == pytest.approx(-0.6)

    @pytest.mark.asyncio
    async def test_score_is_mean_signed(self, store, bucketer):
        seed(store, "galatasaray", 0, label="POSITIVE", score=0.8)
        seed(store, "galatasaray", 0, label="NEGATIVE", score=0.4)
        seed(store, "galatasaray", 0, label="NEUTRAL", score=0.9)

        [bucket] = await bucketer.bucket("galatasaray", TODAY, TODAY)

        assert bucket.total == 3
        assert bucket.score == pytest.approx((0.8 - 0.4) / 3)

    @pytest.mark.asyncio
    async def test_other_entities_excluded(self, store, bucketer):
        seed(store, "fenerbahce", 0, count=3)

        [bucket] = await bucketer.bucket("galatasaray", TODAY, TODAY)

        assert bucket.total == 0

    @pytest.mark.asyncio
    async def test_duplicate_verdicts_counted_until_cleanup(self, store, bucketer):
        record = store.insert_record(make_item("p1"), "galatasaray", verdict())
        store.append_verdict(record.item_id, verdict())

        [bucket] = await bucketer.bucket("galatasaray", TODAY, TODAY)

        assert bucket.total == 1
        assert bucket.positive == 2

    @pytest.mark.asyncio
    async def test_sorted_regardless_of_completion(self, attributor):
        store = SlowEarlyDaysStore()
        bucketer = TrendBucketer(store, attributor, clock=fixed_clock)
        start = TODAY - timedelta(days=5)

        buckets = await bucketer.bucket("galatasaray", start, TODAY)

        assert [b.date for b in buckets] == [start + timedelta(days=i) for i in range(6)]

    @pytest.mark.asyncio
    async def test_reversed_range(self, bucketer):
        with pytest.raises(ValueError):
            await bucketer.bucket("galatasaray", TODAY, TODAY - timedelta(days=1))

    @pytest.mark.asyncio
    async def test_range_limit(self, store, attributor):
        bucketer = TrendBucketer(store, attributor, clock=fixed_clock, max_range_days=10)

        await bucketer.bucket("galatasaray", TODAY - timedelta(days=9), TODAY)
        with pytest.raises(ValueError):
            await bucketer.bucket("galatasaray", TODAY - timedelta(days=10), TODAY)

    @pytest.mark.asyncio
    async def test_store_timeout(self, attributor):
        bucketer = TrendBucketer(HangingStore(), attributor, clock=fixed_clock, store_timeout_seconds=0.05)

        with pytest.raises(StoreUnavailable):
            await bucketer.bucket("galatasaray", TODAY, TODAY)


class TestOverall:
    """Test totals, percentages and trend direction."""

    def test_upward_trend(self):
        stats = overall(buckets_with_scores([0.2, 0.3, None, None, None, 0.5, 0.6]))

        assert stats.trend_direction == "up"
        assert stats.weekly_change == pytest.approx(30.0)
        assert not stats.insufficient_data
        assert stats.notice is None

    def test_downward_trend(self):
        stats = overall(buckets_with_scores([0.5, 0.5, 0.3, 0.2, 0.1, 0.1, 0.1]))

        assert stats.trend_direction == "down"
        assert stats.weekly_change == pytest.approx(-40.0)

    def test_small_change_is_stable(self):
        stats = overall(buckets_with_scores([0.2, 0.2, 0.2, 0.2, 0.2, 0.25, 0.25]))

        assert stats.trend_direction == "stable"
        assert stats.weekly_change == pytest.approx(5.0)

    def test_insufficient_data(self):
        stats = overall(buckets_with_scores([0.9, None, None, None, None, -0.9, -0.9]))

        assert stats.trend_direction == "stable"
        assert stats.weekly_change == 0.0
        assert stats.insufficient_data
        assert stats.notice["kind"] == "insufficient_data"
        assert "3 active days" in stats.notice["message"]

    def test_only_last_seven_days(self):
        stats = overall(buckets_with_scores([-1.0, -1.0, -1.0, 0.2, 0.2, 0.2, 0.2, 0.2, 0.2, 0.2]))

        assert stats.trend_direction == "stable"
        assert stats.weekly_change == pytest.approx(0.0)

    def test_percentages(self):
        buckets = [
            DayBucket(date=TODAY - timedelta(days=1), positive=3, negative=1, total=4, score=0.5),
            DayBucket(date=TODAY, neutral=4, total=6),
        ]
        stats = overall(buckets)

        assert stats.total_comments == 10
        assert stats.positive_percent == pytest.approx(30.0)
        assert stats.negative_percent == pytest.approx(10.0)
        assert stats.neutral_percent == pytest.approx(40.0)

    def test_empty(self):
        stats = overall([])

        assert stats.total_comments == 0
        assert stats.positive_percent == 0.0
        assert stats.insufficient_data
        assert stats.notice["kind"] == "insufficient_data"


class TestAnalyze:
    """Test period analysis across all entities."""

    @pytest.mark.asyncio
    async def test_week_range(self, bucketer):
        analysis = await bucketer.analyze("7d")

        assert analysis.period == "7d"
        assert analysis.end_date == TODAY
        assert analysis.start_date == TODAY - timedelta(days=7)
        assert len(analysis.entities) == 4
        assert all(len(t.data) == 8 for t in analysis.entities)

    @pytest.mark.asyncio
    async def test_month_range(self, bucketer):
        analysis = await bucketer.analyze("30d")

        assert analysis.days == 30
        assert len(analysis.entities[0].data) == 31

    @pytest.mark.asyncio
    @pytest.mark.parametrize("period", [None, "1y", ""])
    async def test_unknown_period_defaults_to_week(self, bucketer, period):
        analysis = await bucketer.analyze(period)

        assert analysis.period == "7d"

    @pytest.mark.asyncio
    async def test_summary(self, store, bucketer):
        seed(store, "galatasaray", 1, label="POSITIVE", count=12)
        seed(store, "fenerbahce", 1, label="NEGATIVE", count=10)
        seed(store, "fenerbahce", 2, label="POSITIVE", count=2)
        seed(store, "besiktas", 0, label="NEGATIVE", count=3)

        analysis = await bucketer.analyze("7d")
        summary = analysis.summary

        assert summary.total_comments == 27
        assert summary.most_positive_entity == "Galatasaray"
        assert summary.most_negative_entity == "Fenerbahçe"
        assert summary.average_daily == pytest.approx(27 / 7)

    @pytest.mark.asyncio
    async def test_failed_entity_skipped(self, attributor):
        store = BrokenEntityStore(["besiktas"])
        bucketer = TrendBucketer(store, attributor, clock=fixed_clock)

        analysis = await bucketer.analyze("7d")

        assert [t.entity_id for t in analysis.entities] == ["galatasaray", "fenerbahce", "trabzonspor"]

    @pytest.mark.asyncio
    async def test_all_entities_failed(self, attributor):
        store = BrokenEntityStore(["galatasaray", "fenerbahce", "besiktas", "trabzonspor"])
        bucketer = TrendBucketer(store, attributor, clock=fixed_clock)

        with pytest.raises(StoreUnavailable):
            await bucketer.analyze("7d")

    def test_improvements(self):
        def trend(name, change):
            return EntityTrend(entity_id=name.lower(), entity_name=name,
                               overall=OverallStats(weekly_change=change))

        summary = TrendSummary()
        TrendBucketer._calculate_improvements(
            [trend("A", 3.0), trend("B", 25.0), trend("C", -12.0)], summary
        )

        assert summary.biggest_improvement == "B"
        assert summary.biggest_decline == "C"
