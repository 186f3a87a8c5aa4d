"""Shared fixtures: fake classifier backends, in-memory store, fixed clock."""
import asyncio
from datetime import datetime, timezone
from typing import Optional

import pytest

from fanpulse.config import Settings
from fanpulse.errors import BackendUnavailable
from fanpulse.orchestration.tasks import build_services
from fanpulse.services.entities import EntityAttributor
from fanpulse.services.types import ClassifierResult, SentimentLabel, SourceItem, Verdict
from fanpulse.storage.memory_storage import InMemoryStorage

FIXED_NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


def result(label: str, confidence: float, score: Optional[float] = None) -> ClassifierResult:
    return ClassifierResult(
        label=SentimentLabel(label),
        score=confidence if score is None else score,
        confidence=confidence,
        model="fake",
    )


def verdict(label: str = "POSITIVE", score: float = 0.8, confidence: float = 0.8) -> Verdict:
    return Verdict(
        label=SentimentLabel(label),
        score=score,
        confidence=confidence,
        model_used="hybrid-consensus",
    )


def make_item(source_id: str, text: str = "Galatasaray harika oynadı",
              observed_at: datetime = FIXED_NOW, platform: str = "reddit") -> SourceItem:
    return SourceItem(
        source_id=source_id,
        source_platform=platform,
        text=text,
        author="taraftar",
        observed_at=observed_at,
    )


class RejectingStorage(InMemoryStorage):
    """Store that refuses items whose text carries a NUL byte."""

    def insert_record(self, item, entity_id, verdict):
        if "\x00" in item.text:
            raise ValueError("PostgreSQL text fields cannot contain NUL (0x00) bytes")
        return super().insert_record(item, entity_id, verdict)


class FakeBackend:
    """Classifier backend double: returns a fixed result or raises."""

    def __init__(self, name: str, result: Optional[ClassifierResult] = None,
                 fail: bool = False, delay: float = 0.0, fail_texts=()):
        self.name = name
        self.result = result
        self.fail = fail
        self.delay = delay
        self.fail_texts = set(fail_texts)
        self.calls = []

    async def classify(self, text: str, max_length: int) -> ClassifierResult:
        self.calls.append((text, max_length))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail or text in self.fail_texts or self.result is None:
            raise BackendUnavailable(self.name, "simulated failure")
        return self.result


@pytest.fixture
def store():
    return InMemoryStorage()


@pytest.fixture
def attributor():
    return EntityAttributor()


@pytest.fixture
def backend_a():
    return FakeBackend("fake-a", result("POSITIVE", 0.6))


@pytest.fixture
def backend_b():
    return FakeBackend("fake-b", result("POSITIVE", 0.8))


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def services(settings, store, backend_a, backend_b):
    return build_services(settings, store=store, backends=(backend_a, backend_b))
