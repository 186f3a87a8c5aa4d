from pydantic import BaseModel, Field, field_validator
from typing import Dict, Literal, Optional, List
from datetime import date, datetime, timezone
from enum import Enum

UNASSIGNED = "unassigned"


class SentimentLabel(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceItem(BaseModel):
    source_id: str = Field(..., min_length=1)
    source_platform: Literal["reddit", "youtube", "twitter", "instagram"]
    text: str
    author: str = ""
    observed_at: datetime
    url: Optional[str] = None
    language: str = "tr"

    @field_validator("observed_at")
    @classmethod
    def _observed_at_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def identity_key(self) -> tuple:
        return (self.source_platform, self.source_id)


class ClassifierResult(BaseModel):
    """Output of a single classifier backend."""
    label: SentimentLabel
    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    model: str


class Verdict(BaseModel):
    """Fused sentiment decision for one source item."""
    label: SentimentLabel
    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    model_used: str
    produced_at: datetime = Field(default_factory=utcnow)

    @property
    def signed_score(self) -> float:
        if self.label == SentimentLabel.POSITIVE:
            return self.score
        if self.label == SentimentLabel.NEGATIVE:
            return -self.score
        return 0.0

    @property
    def confidence_level(self) -> str:
        if self.confidence >= 0.8:
            return "high"
        elif self.confidence >= 0.6:
            return "medium"
        return "low"


class EntityAssignment(BaseModel):
    entity_id: str = UNASSIGNED

    @property
    def is_assigned(self) -> bool:
        return self.entity_id != UNASSIGNED


class Entity(BaseModel):
    id: str
    name: str
    keywords: List[str]


class StoredRecord(BaseModel):
    id: int  # verdict surrogate id
    item_id: int
    source_id: str
    source_platform: str
    text: str
    author: str = ""
    observed_at: datetime
    entity_id: str
    label: SentimentLabel
    score: float
    confidence: float
    model_used: str
    produced_at: datetime
    ingested_at: datetime


class DayBucket(BaseModel):
    date: date
    positive: int = 0
    negative: int = 0
    neutral: int = 0
    total: int = 0
    score: float = 0.0  # mean signed score, -1 to 1

    @property
    def verdict_count(self) -> int:
        return self.positive + self.negative + self.neutral


class OverallStats(BaseModel):
    total_comments: int = 0
    positive_percent: float = 0.0
    negative_percent: float = 0.0
    neutral_percent: float = 0.0
    trend_direction: Literal["up", "down", "stable"] = "stable"
    weekly_change: float = 0.0  # percentage points, not percent of baseline
    insufficient_data: bool = False
    notice: Optional[Dict[str, str]] = None  # structured error payload when insufficient_data


class EntityTrend(BaseModel):
    entity_id: str
    entity_name: str
    data: List[DayBucket] = []
    overall: OverallStats = OverallStats()


class TrendSummary(BaseModel):
    total_comments: int = 0
    most_positive_entity: str = ""
    most_negative_entity: str = ""
    biggest_improvement: str = ""
    biggest_decline: str = ""
    average_daily: float = 0.0


class TrendAnalysis(BaseModel):
    period: str
    days: int
    start_date: date
    end_date: date
    entities: List[EntityTrend] = []
    summary: TrendSummary = TrendSummary()


class Insight(BaseModel):
    type: Literal["improvement", "decline", "spike", "warning", "activity", "trend"]
    entity_id: str
    description: str
    value: str
    severity: Literal["high", "medium", "low"]


class CleanupResult(BaseModel):
    groups_inspected: int = 0
    duplicates_found: int = 0
    duplicates_removed: int = 0
    errors: List[str] = []
    completed_at: datetime = Field(default_factory=utcnow)


class IngestReport(BaseModel):
    received: int = 0
    stored: int = 0
    duplicates: int = 0
    unassigned_skipped: int = 0
    failed: int = 0
    records: List[StoredRecord] = []


class SentimentStats(BaseModel):
    """Label, platform and language breakdown over stored records."""
    entity_id: Optional[str] = None
    total_items: int = 0
    total_verdicts: int = 0
    sentiment_breakdown: Dict[str, int] = Field(
        default_factory=lambda: {label.value: 0 for label in SentimentLabel}
    )
    platform_breakdown: Dict[str, int] = {}
    language_breakdown: Dict[str, int] = {}
    average_confidence: float = 0.0
