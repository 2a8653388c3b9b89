"""Financial sentiment classifiers.

Three interchangeable strategies behind ``SentimentClassifier.classify``:

    LexicalClassifier: keyword counting, no dependencies, deterministic
    FinBERTClassifier: local CPU ``ProsusAI/finbert`` via transformers
    HuggingFaceInferenceClassifier: hosted inference API, primary then secondary model

All return ``(SentimentLabel, confidence)`` where confidence ∈ [0, 1] is the
confidence of the label, not a signed polarity.
"""

import re
from typing import List, Optional, Sequence, Tuple

import requests

from stock_advisor.core.logger import logger
from stock_advisor.models.datatypes import SentenceSentiment, SentimentLabel
from stock_advisor.providers.base import SentimentClassifier

_FINBERT_MODEL = "ProsusAI/finbert"
_HF_INFERENCE_URL = "https://router.huggingface.co/hf-inference/models"
DEFAULT_API_MODELS = (
    "cardiffnlp/twitter-roberta-base-sentiment-latest",
    "nlptown/bert-base-multilingual-uncased-sentiment",
)

POSITIVE_WORDS = (
    "good", "great", "excellent", "positive", "strong", "up", "gain", "profit",
    "growth", "success", "win", "beat", "exceed", "surge", "rally", "boom",
)
NEGATIVE_WORDS = (
    "bad", "terrible", "negative", "weak", "down", "loss", "decline", "fall",
    "crash", "drop", "miss", "disappoint", "concern", "worry", "risk", "threat",
)
# Shorter lists for sentence-level breakdown
_SENTENCE_POSITIVE = ("good", "great", "excellent", "positive", "strong", "up", "gain")
_SENTENCE_NEGATIVE = ("bad", "terrible", "negative", "weak", "down", "loss", "decline")

# Raw model label → canonical label
_LABEL_MAP = {
    "positive": SentimentLabel.POSITIVE,
    "negative": SentimentLabel.NEGATIVE,
    "neutral": SentimentLabel.NEUTRAL,
    "label_2": SentimentLabel.POSITIVE,
    "label_1": SentimentLabel.NEUTRAL,
    "label_0": SentimentLabel.NEGATIVE,
    "5 stars": SentimentLabel.POSITIVE,
    "4 stars": SentimentLabel.POSITIVE,
    "3 stars": SentimentLabel.NEUTRAL,
    "2 stars": SentimentLabel.NEGATIVE,
    "1 star": SentimentLabel.NEGATIVE,
}


def map_label(raw_label: str) -> SentimentLabel:
    """Map any supported model label to the canonical label (unknown → NEUTRAL)."""
    return _LABEL_MAP.get((raw_label or "").strip().lower(), SentimentLabel.NEUTRAL)


def count_terms(text: str, terms: Sequence[str]) -> int:
    """Number of distinct ``terms`` that start a word in ``text``."""
    lowered = text.lower()
    return sum(1 for term in terms if re.search(r"\b" + re.escape(term), lowered))


# ── LexicalClassifier ─────────────────────────────────────────────────────────

class LexicalClassifier(SentimentClassifier):
    """Keyword-count classifier usable with no external dependency."""

    name = "lexical"

    def classify(self, text: str) -> Tuple[SentimentLabel, float]:
        label, score, _, _ = self.explain(text)
        return label, score

    def explain(self, text: str) -> Tuple[SentimentLabel, float, int, int]:
        """Classify and also return the positive/negative term counts."""
        positive = count_terms(text, POSITIVE_WORDS)
        negative = count_terms(text, NEGATIVE_WORDS)

        if positive > negative:
            return SentimentLabel.POSITIVE, min(0.9, 0.5 + (positive - negative) * 0.1), positive, negative
        if negative > positive:
            return SentimentLabel.NEGATIVE, min(0.9, 0.5 + (negative - positive) * 0.1), positive, negative
        return SentimentLabel.NEUTRAL, 0.5, positive, negative


def sentence_breakdown(text: str, limit: int = 3) -> Tuple[SentenceSentiment, ...]:
    """Lexical sentiment of the first ``limit`` sentences longer than 10 characters."""
    sentences = [s.strip() for s in re.split(r"[.!?]+", text or "") if len(s.strip()) > 10]

    results: List[SentenceSentiment] = []
    for sentence in sentences[:limit]:
        positive = count_terms(sentence, _SENTENCE_POSITIVE)
        negative = count_terms(sentence, _SENTENCE_NEGATIVE)
        if positive > negative:
            label, score = SentimentLabel.POSITIVE, min(0.9, 0.5 + positive * 0.1)
        elif negative > positive:
            label, score = SentimentLabel.NEGATIVE, min(0.9, 0.5 + negative * 0.1)
        else:
            label, score = SentimentLabel.NEUTRAL, 0.5
        results.append(SentenceSentiment(text=sentence, label=label, score=round(score, 4)))
    return tuple(results)


# ── FinBERTClassifier ─────────────────────────────────────────────────────────

class FinBERTClassifier(SentimentClassifier):
    """Local CPU financial sentiment using ``ProsusAI/finbert``.

    The underlying HuggingFace pipeline is loaded lazily on the first call to
    :meth:`classify` so that importing this module has zero cost.

    Args:
        model_name: HuggingFace model identifier (default ``ProsusAI/finbert``).
    """

    name = "finbert"

    def __init__(self, model_name: str = _FINBERT_MODEL) -> None:
        self.model_name = model_name
        self._pipeline = None  # lazy-loaded

    def classify(self, text: str) -> Tuple[SentimentLabel, float]:
        pipe = self._get_pipeline()
        raw = pipe(text, truncation=True, max_length=512)
        # transformers may return list[dict] or list[list[dict]]
        result = raw[0]
        if isinstance(result, list):
            result = result[0]

        label = map_label(result["label"])
        score = round(float(result["score"]), 4)
        logger.debug(f"FinBERTClassifier: [{label.value} / {score:.3f}] {text[:60]!r}")
        return label, score

    def _get_pipeline(self):
        """Lazy-load the HuggingFace pipeline on first call."""
        if self._pipeline is None:
            from transformers import pipeline as hf_pipeline
            logger.info(
                f"FinBERTClassifier: loading model '{self.model_name}' on CPU "
                f"(first call only)"
            )
            self._pipeline = hf_pipeline(
                task="text-classification",
                model=self.model_name,
                device=-1,
            )
            logger.info("FinBERTClassifier: model loaded")
        return self._pipeline


# ── HuggingFaceInferenceClassifier ────────────────────────────────────────────

class HuggingFaceInferenceClassifier(SentimentClassifier):
    """Hosted HuggingFace inference API; the next model is tried when one fails.

    Args:
        api_key: HuggingFace access token.
        models: Model ids tried in order.
        timeout: Per-request HTTP timeout in seconds.
    """

    name = "huggingface_api"

    def __init__(
        self,
        api_key: str,
        models: Sequence[str] = DEFAULT_API_MODELS,
        timeout: float = 15.0,
    ) -> None:
        if not models:
            raise ValueError("HuggingFaceInferenceClassifier needs at least one model id")
        self.api_key = api_key
        self.models = tuple(models)
        self.timeout = timeout

    def classify(self, text: str) -> Tuple[SentimentLabel, float]:
        last_error: Optional[Exception] = None
        for model in self.models:
            try:
                return self._classify_with(model, text)
            except (requests.RequestException, KeyError, IndexError, TypeError, ValueError) as exc:
                logger.warning(f"HuggingFaceInferenceClassifier: model {model} failed: {exc}")
                last_error = exc
        raise RuntimeError(f"all inference models failed: {last_error}")

    def _classify_with(self, model: str, text: str) -> Tuple[SentimentLabel, float]:
        resp = requests.post(
            f"{_HF_INFERENCE_URL}/{model}",
            json={"inputs": text},
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        results = resp.json()
        if results and isinstance(results[0], list):
            results = results[0]
        top = max(results, key=lambda item: float(item["score"]))
        return map_label(top["label"]), round(float(top["score"]), 4)
