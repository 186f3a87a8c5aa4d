"""
Classifier backends consumed by the fusion resolver.

Backend-A is a direct text classifier served by the HuggingFace inference API.
Backend-B is an LLM (Groq chat completions) prompted to return a JSON verdict.
Both raise BackendUnavailable for every failure mode so the resolver only has
to handle one error type.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from fanpulse.config import Settings
from fanpulse.errors import BackendUnavailable
from fanpulse.nlp.clean import fold_text, preprocess_text
from fanpulse.services.types import ClassifierResult, SentimentLabel

logger = logging.getLogger(__name__)

_LABEL_ALIASES = {
    "POSITIVE": SentimentLabel.POSITIVE,
    "POZITIF": SentimentLabel.POSITIVE,
    "POS": SentimentLabel.POSITIVE,
    "OLUMLU": SentimentLabel.POSITIVE,
    "LABEL_1": SentimentLabel.POSITIVE,
    "NEGATIVE": SentimentLabel.NEGATIVE,
    "NEGATIF": SentimentLabel.NEGATIVE,
    "NEG": SentimentLabel.NEGATIVE,
    "OLUMSUZ": SentimentLabel.NEGATIVE,
    "LABEL_0": SentimentLabel.NEGATIVE,
    "NEUTRAL": SentimentLabel.NEUTRAL,
    "NOTR": SentimentLabel.NEUTRAL,
    "NEU": SentimentLabel.NEUTRAL,
    "LABEL_2": SentimentLabel.NEUTRAL,
}

_DECODER = json.JSONDecoder()

GROQ_PROMPT = """You are an expert on Turkish football. Classify the sentiment of the following fan comment.

COMMENT: "{text}"

Answer with a single JSON object and nothing else:
{{
  "sentiment": "POSITIVE" | "NEGATIVE" | "NEUTRAL",
  "confidence": a number between 0.0 and 1.0,
  "explanation": "one short sentence"
}}"""


def normalize_label(label: Optional[str]) -> SentimentLabel:
    """Map any backend label variant to the three-value enum; unknown -> NEUTRAL."""
    if not label:
        return SentimentLabel.NEUTRAL
    key = fold_text(label).strip().upper()
    return _LABEL_ALIASES.get(key, SentimentLabel.NEUTRAL)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """HTTP client shared by both backends; retries only at the transport layer."""
    transport = httpx.AsyncHTTPTransport(retries=settings.backend_max_retries)
    return httpx.AsyncClient(
        timeout=settings.backend_timeout_seconds,
        transport=transport,
        headers={"User-Agent": "fanpulse/1.0"},
    )


class ClassifierBackend:
    """Base class: text in, ClassifierResult out, BackendUnavailable on failure."""

    name = "backend"

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @property
    def is_configured(self) -> bool:
        return True

    async def classify(self, text: str, max_length: int) -> ClassifierResult:
        if not self.is_configured:
            raise BackendUnavailable(self.name, "not configured")

        prepared = preprocess_text(text, max_length)
        try:
            return await self._classify(prepared)
        except httpx.HTTPStatusError as e:
            raise BackendUnavailable(
                self.name, f"API returned status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise BackendUnavailable(self.name, f"request failed: {e!r}") from e
        except (ValueError, KeyError, TypeError, IndexError) as e:
            raise BackendUnavailable(self.name, f"malformed response: {e}") from e

    async def _classify(self, text: str) -> ClassifierResult:
        raise NotImplementedError


class HuggingFaceBackend(ClassifierBackend):
    """Backend-A: BERT sentiment model behind the HuggingFace inference API."""

    name = "huggingface"

    def __init__(self, client: httpx.AsyncClient, url: str, token: str = ""):
        super().__init__(client)
        self.url = url
        self.token = token

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    async def _classify(self, text: str) -> ClassifierResult:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        response = await self.client.post(self.url, json={"inputs": [text]}, headers=headers)
        response.raise_for_status()

        best = self._best_candidate(response.json())
        score = _clamp(float(best["score"]))

        return ClassifierResult(
            label=normalize_label(best.get("label")),
            score=score,
            confidence=score,
            model=self.url.rsplit("/models/", 1)[-1],
        )

    @staticmethod
    def _best_candidate(payload: Any) -> Dict[str, Any]:
        if isinstance(payload, dict) and "error" in payload:
            raise ValueError(payload["error"])

        candidates: List[Dict[str, Any]] = payload
        # Batched requests come back nested one level
        if candidates and isinstance(candidates[0], list):
            candidates = candidates[0]

        if not candidates:
            raise ValueError("empty response")

        return max(candidates, key=lambda c: float(c["score"]))


class GroqBackend(ClassifierBackend):
    """Backend-B: LLM classifier via Groq's OpenAI-compatible chat API."""

    name = "groq"

    def __init__(self, client: httpx.AsyncClient, url: str, api_key: str, model: str):
        super().__init__(client)
        self.url = url
        self.api_key = api_key
        self.model = model

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _classify(self, text: str) -> ClassifierResult:
        request = {
            "messages": [{"role": "user", "content": GROQ_PROMPT.format(text=text)}],
            "model": self.model,
            "temperature": 0.3,
            "max_tokens": 300,
        }
        response = await self.client.post(
            self.url,
            json=request,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        response.raise_for_status()

        content = response.json()["choices"][0]["message"]["content"]
        parsed = self._parse_content(content)
        confidence = _clamp(float(parsed["confidence"]))

        return ClassifierResult(
            label=normalize_label(parsed["sentiment"]),
            score=confidence,
            confidence=confidence,
            model=f"groq-{self.model}",
        )

    @staticmethod
    def _parse_content(content: str) -> Dict[str, Any]:
        # Models sometimes wrap the object in prose or a code fence
        content = content or ""
        start = content.find("{")
        while start != -1:
            try:
                parsed, _ = _DECODER.raw_decode(content, start)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                return parsed
            start = content.find("{", start + 1)
        raise ValueError("no JSON object in reply")


def build_backends(settings: Settings, client: httpx.AsyncClient):
    """Construct (Backend-A, Backend-B) from settings."""
    backend_a = HuggingFaceBackend(
        client, url=settings.huggingface_url, token=settings.huggingface_token
    )
    backend_b = GroqBackend(
        client,
        url=settings.groq_url,
        api_key=settings.groq_api_key,
        model=settings.groq_model,
    )
    return backend_a, backend_b
