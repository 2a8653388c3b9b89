"""Sentiment scoring stage: per-article classification and a time-decayed aggregate.

Pipeline:
    articles → classify(title + snippet) per article (bounded concurrency,
    per-article timeout) → SentimentResult list → SentimentAggregate

A failed or slow classification degrades only its own article to
NEUTRAL / 0.5 with a fallback note; the batch always completes.

Aggregate:
    weightedScore = Σ(signed_i × w_i) / Σ(w_i)
    signed_i      = +score (POSITIVE), −score (NEGATIVE), 0 (NEUTRAL)
    w_i           = max(0.1, 1 − daysSincePublished_i / 30)
"""

import asyncio
from datetime import datetime
from typing import Optional, Sequence

from stock_advisor.core.fallback import call_blocking
from stock_advisor.core.logger import logger
from stock_advisor.models.datatypes import (
    NewsArticle, SentimentAggregate, SentimentLabel, SentimentReport, SentimentResult,
)
from stock_advisor.providers.base import SentimentClassifier
from stock_advisor.providers.sentiment import LexicalClassifier, sentence_breakdown

DECAY_DAYS = 30.0
MIN_RECENCY_WEIGHT = 0.1
FALLBACK_SCORE = 0.5


def recency_weight(published_at: datetime, as_of: datetime) -> float:
    """Linear decay over 30 days, floored at 0.1; future timestamps count as fresh."""
    days = max(0.0, (as_of - published_at).total_seconds() / 86400.0)
    return max(MIN_RECENCY_WEIGHT, 1.0 - days / DECAY_DAYS)


def aggregate_sentiment(
    results: Sequence[SentimentResult],
    articles: Sequence[NewsArticle],
    as_of: datetime,
) -> SentimentAggregate:
    """Label fractions plus the recency-weighted signed score.

    Decay is always computed from each article's ``published_at``.
    """
    if not results:
        return SentimentAggregate.empty()

    published = {article.id: article.published_at for article in articles}
    total = len(results)
    positive = sum(1 for r in results if r.label is SentimentLabel.POSITIVE)
    negative = sum(1 for r in results if r.label is SentimentLabel.NEGATIVE)
    neutral = total - positive - negative

    weighted_sum = 0.0
    total_weight = 0.0
    for result in results:
        weight = recency_weight(published.get(result.article_id, as_of), as_of)
        weighted_sum += result.signed_score * weight
        total_weight += weight

    weighted = weighted_sum / total_weight if total_weight > 0 else 0.0
    return SentimentAggregate(
        positive_fraction=positive / total,
        negative_fraction=negative / total,
        neutral_fraction=neutral / total,
        weighted_score=max(-1.0, min(1.0, weighted)),
    )


def interpret_sentiment(weighted_score: float) -> str:
    if weighted_score > 0.3:
        return "strongly positive"
    if weighted_score > 0.1:
        return "mildly positive"
    if weighted_score > -0.1:
        return "neutral"
    if weighted_score > -0.3:
        return "mildly negative"
    return "strongly negative"


class SentimentScorer:
    """Classifies each article and aggregates the batch.

    Args:
        classifier: Model-backed or lexical classifier; None selects lexical.
        article_timeout: Upper bound in seconds per article classification.
        max_concurrency: Maximum classification calls in flight at once.
    """

    def __init__(
        self,
        classifier: Optional[SentimentClassifier] = None,
        article_timeout: float = 15.0,
        max_concurrency: int = 4,
    ) -> None:
        self.classifier = classifier or LexicalClassifier()
        self.article_timeout = article_timeout
        self.max_concurrency = max(1, max_concurrency)

    @property
    def strategy(self) -> str:
        return self.classifier.name

    async def score(
        self,
        ticker: str,
        articles: Sequence[NewsArticle],
        as_of: datetime,
    ) -> SentimentReport:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(
            *(self._score_article(article, semaphore) for article in articles)
        )
        aggregate = aggregate_sentiment(results, articles, as_of)

        fallbacks = sum(1 for r in results if r.is_fallback)
        logger.info(
            f"SENTIMENT [{ticker}] strategy={self.strategy} | {len(results)} articles, "
            f"{fallbacks} fallbacks, weighted={aggregate.weighted_score:+.3f}"
        )
        return SentimentReport(
            ticker=ticker.upper(),
            analyzed_at=as_of,
            items=tuple(results),
            aggregate=aggregate,
            strategy=self.strategy,
        )

    async def _score_article(self, article: NewsArticle, semaphore: asyncio.Semaphore) -> SentimentResult:
        text = f"{article.title} {article.snippet}".strip()
        sentences = sentence_breakdown(text)

        if isinstance(self.classifier, LexicalClassifier):
            label, score, positive, negative = self.classifier.explain(text)
            return SentimentResult(
                article_id=article.id,
                title=article.title,
                label=label,
                score=round(score, 4),
                notes=f"Lexical analysis: {positive} positive, {negative} negative indicators",
                sentence_level=sentences,
            )

        try:
            async with semaphore:
                label, score = await call_blocking(self.classifier.classify, text, timeout=self.article_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"SentimentScorer: TIMEOUT classifying {article.id}, defaulting to neutral")
            return _fallback_result(article, sentences, f"timed out after {self.article_timeout:.0f}s")
        except Exception as exc:
            logger.warning(f"SentimentScorer: classification failed for {article.id}: {exc}")
            return _fallback_result(article, sentences, type(exc).__name__)

        score = min(1.0, max(0.0, float(score)))
        return SentimentResult(
            article_id=article.id,
            title=article.title,
            label=label,
            score=round(score, 4),
            notes=f"{self.classifier.name} analysis: {label.value} ({score * 100:.1f}% confidence)",
            sentence_level=sentences,
        )


def _fallback_result(article: NewsArticle, sentences, reason: str) -> SentimentResult:
    return SentimentResult(
        article_id=article.id,
        title=article.title,
        label=SentimentLabel.NEUTRAL,
        score=FALLBACK_SCORE,
        notes=f"Sentiment analysis failed ({reason}), defaulting to neutral [fallback]",
        sentence_level=sentences,
        is_fallback=True,
    )
