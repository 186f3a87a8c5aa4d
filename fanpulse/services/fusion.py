"""
Sentiment fusion: two unreliable classifiers in, one verdict out.

Both backends are queried concurrently. A backend that errors or times out
abstains; the verdict is built from whatever answered:

    neither         -> AnalysisUnavailable
    only A / only B -> that backend's answer ("a-only" / "b-only")
    both, agree     -> averaged, confidence +0.1 consensus bonus capped at 0.95
    both, disagree  -> the more confident answer, ties to A
"""

import asyncio
import logging
import time
from typing import List, Optional, Sequence

from fanpulse.errors import AnalysisUnavailable, BackendUnavailable, InvalidText
from fanpulse.services.types import ClassifierResult, Verdict, utcnow

logger = logging.getLogger(__name__)

CONSENSUS_BONUS = 0.1
CONFIDENCE_CEILING = 0.95
BATCH_SIZE = 10


def fuse(a: Optional[ClassifierResult], b: Optional[ClassifierResult]) -> Verdict:
    """Combine two (possibly missing) backend results into a Verdict."""
    if a is None and b is None:
        raise AnalysisUnavailable("Both sentiment backends failed")

    if b is None:
        return _from_result(a, "a-only")

    if a is None:
        return _from_result(b, "b-only")

    if a.label == b.label:
        confidence = min(CONFIDENCE_CEILING, (a.confidence + b.confidence) / 2.0 + CONSENSUS_BONUS)
        return Verdict(
            label=a.label,
            score=min(1.0, (a.score + b.score) / 2.0),
            confidence=confidence,
            model_used="hybrid-consensus",
        )

    if a.confidence >= b.confidence:
        return _from_result(a, "hybrid-a-primary")
    return _from_result(b, "hybrid-b-primary")


def _from_result(result: ClassifierResult, provenance: str) -> Verdict:
    return Verdict(
        label=result.label,
        score=result.score,
        confidence=result.confidence,
        model_used=provenance,
        produced_at=utcnow(),
    )


class SentimentFusionResolver:
    def __init__(
        self,
        backend_a,
        backend_b,
        timeout_seconds: float = 30.0,
        a_max_chars: int = 1600,
        b_max_chars: int = 4000,
    ):
        self.backend_a = backend_a
        self.backend_b = backend_b
        self.timeout_seconds = timeout_seconds
        self.a_max_chars = a_max_chars
        self.b_max_chars = b_max_chars

    async def resolve(self, text: str) -> Verdict:
        """
        Resolve the sentiment of one text.

        Raises:
            InvalidText: if the text is blank
            AnalysisUnavailable: if neither backend produced a result
        """
        if not text or not text.strip():
            raise InvalidText("Text cannot be empty")

        start = time.monotonic()
        a, b = await asyncio.gather(
            self._ask(self.backend_a, text, self.a_max_chars),
            self._ask(self.backend_b, text, self.b_max_chars),
        )
        elapsed = time.monotonic() - start

        verdict = fuse(a, b)
        logger.info(
            f"Resolved {verdict.label.value} ({verdict.confidence:.3f} confidence, "
            f"{verdict.model_used}) in {elapsed:.2f}s"
        )
        return verdict

    async def resolve_batch(self, texts: Sequence[str]) -> List[Optional[Verdict]]:
        """Resolve many texts; failed resolutions come back as None, order preserved."""
        semaphore = asyncio.Semaphore(BATCH_SIZE)

        async def _one(text: str) -> Optional[Verdict]:
            async with semaphore:
                try:
                    return await self.resolve(text)
                except (AnalysisUnavailable, InvalidText) as e:
                    logger.warning(f"Batch item failed: {e.message}")
                    return None

        return list(await asyncio.gather(*(_one(t) for t in texts)))

    async def _ask(self, backend, text: str, max_length: int) -> Optional[ClassifierResult]:
        try:
            return await asyncio.wait_for(
                backend.classify(text, max_length), timeout=self.timeout_seconds
            )
        except BackendUnavailable as e:
            logger.warning(f"Backend abstained: {e.message}")
        except asyncio.TimeoutError:
            logger.warning(f"Backend {backend.name} timed out after {self.timeout_seconds}s")
        return None
