"""Tests for per-article scoring, recency decay and the aggregate."""

import time
from datetime import timedelta

import pytest

from stock_advisor.models.datatypes import SentimentAggregate, SentimentLabel, SentimentResult
from stock_advisor.pipeline.sentiment_scorer import (
    SentimentScorer, aggregate_sentiment, interpret_sentiment, recency_weight,
)
from stock_advisor.providers.base import SentimentClassifier

from conftest import AS_OF, make_article


class FlakyClassifier(SentimentClassifier):
    """Positive for everything except titles containing 'fail' or 'slow'."""

    name = "flaky"

    def classify(self, text):
        if "fail" in text:
            raise RuntimeError("model endpoint returned 503")
        if "slow" in text:
            time.sleep(0.5)
        return SentimentLabel.POSITIVE, 0.8


def _result(article_id, label, score):
    return SentimentResult(article_id=article_id, title=article_id, label=label, score=score, notes="")


class TestRecencyWeight:
    def test_fresh_article_full_weight(self):
        assert recency_weight(AS_OF, AS_OF) == 1.0

    def test_linear_decay(self):
        assert recency_weight(AS_OF - timedelta(days=15), AS_OF) == pytest.approx(0.5)

    def test_floor(self):
        assert recency_weight(AS_OF - timedelta(days=90), AS_OF) == 0.1

    def test_future_timestamp_counts_as_fresh(self):
        assert recency_weight(AS_OF + timedelta(days=2), AS_OF) == 1.0


class TestAggregateSentiment:
    def test_empty_is_neutral(self):
        assert aggregate_sentiment([], [], AS_OF) == SentimentAggregate(0.0, 0.0, 1.0, 0.0)

    def test_weighted_by_recency(self):
        articles = [make_article(1, "a", days_old=0), make_article(2, "b", days_old=15)]
        results = [
            _result("n1", SentimentLabel.POSITIVE, 0.8),
            _result("n2", SentimentLabel.NEGATIVE, 0.6),
        ]
        aggregate = aggregate_sentiment(results, articles, AS_OF)
        # (0.8 × 1.0 − 0.6 × 0.5) / 1.5
        assert aggregate.weighted_score == pytest.approx(0.5 / 1.5)
        assert aggregate.positive_fraction == 0.5
        assert aggregate.negative_fraction == 0.5
        assert aggregate.neutral_fraction == 0.0

    def test_fractions_sum_to_one_and_score_bounded(self):
        articles = [make_article(i, str(i), days_old=i * 3) for i in range(1, 8)]
        labels = [SentimentLabel.POSITIVE, SentimentLabel.NEGATIVE, SentimentLabel.NEUTRAL]
        results = [_result(f"n{i}", labels[i % 3], 1.0) for i in range(1, 8)]
        aggregate = aggregate_sentiment(results, articles, AS_OF)
        total = aggregate.positive_fraction + aggregate.negative_fraction + aggregate.neutral_fraction
        assert total == pytest.approx(1.0)
        assert -1.0 <= aggregate.weighted_score <= 1.0

    def test_neutral_items_dilute_score(self):
        articles = [make_article(1, "a"), make_article(2, "b")]
        results = [_result("n1", SentimentLabel.POSITIVE, 0.9), _result("n2", SentimentLabel.NEUTRAL, 0.9)]
        assert aggregate_sentiment(results, articles, AS_OF).weighted_score == pytest.approx(0.45)


@pytest.mark.parametrize("score, expected", [
    (0.5, "strongly positive"),
    (0.2, "mildly positive"),
    (0.0, "neutral"),
    (-0.2, "mildly negative"),
    (-0.5, "strongly negative"),
])
def test_interpret_sentiment(score, expected):
    assert interpret_sentiment(score) == expected


class TestSentimentScorer:
    @pytest.mark.asyncio
    async def test_zero_articles(self):
        report = await SentimentScorer().score("AAPL", [], AS_OF)
        assert report.items == ()
        assert report.aggregate == SentimentAggregate.empty()
        assert report.strategy == "lexical"

    @pytest.mark.asyncio
    async def test_lexical_batch(self, articles):
        report = await SentimentScorer().score("aapl", articles, AS_OF)

        assert report.ticker == "AAPL"
        assert [item.article_id for item in report.items] == ["n1", "n2", "n3", "n4", "n5"]
        labels = [item.label for item in report.items]
        assert labels == [
            SentimentLabel.POSITIVE, SentimentLabel.POSITIVE, SentimentLabel.NEGATIVE,
            SentimentLabel.NEUTRAL, SentimentLabel.POSITIVE,
        ]
        assert report.items[0].score == pytest.approx(0.8)
        assert report.items[0].notes == "Lexical analysis: 3 positive, 0 negative indicators"
        assert report.aggregate.positive_fraction == pytest.approx(0.6)
        assert report.aggregate.weighted_score > 0

    @pytest.mark.asyncio
    async def test_model_failure_degrades_only_that_article(self):
        articles = [make_article(1, "record quarter"), make_article(2, "fail to load")]
        report = await SentimentScorer(classifier=FlakyClassifier()).score("AAPL", articles, AS_OF)

        first, second = report.items
        assert first.label is SentimentLabel.POSITIVE and not first.is_fallback
        assert second.label is SentimentLabel.NEUTRAL
        assert second.score == 0.5
        assert second.is_fallback
        assert "[fallback]" in second.notes
        assert report.strategy == "flaky"

    @pytest.mark.asyncio
    async def test_model_timeout_degrades_to_neutral(self):
        articles = [make_article(1, "slow response")]
        scorer = SentimentScorer(classifier=FlakyClassifier(), article_timeout=0.05)
        report = await scorer.score("AAPL", articles, AS_OF)

        assert report.items[0].is_fallback
        assert report.items[0].label is SentimentLabel.NEUTRAL
        assert "timed out" in report.items[0].notes

    @pytest.mark.asyncio
    async def test_sentence_breakdown_attached(self):
        article = make_article(1, "Strong growth ahead", snippet="Revenue gains were excellent. Costs remain a concern.")
        report = await SentimentScorer().score("AAPL", [article], AS_OF)
        assert len(report.items[0].sentence_level) >= 2
