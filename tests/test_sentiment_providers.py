"""Tests for the lexical classifier, label mapping and the hosted inference client."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from stock_advisor.models.datatypes import SentimentLabel
from stock_advisor.providers.sentiment import (
    FinBERTClassifier, HuggingFaceInferenceClassifier, LexicalClassifier, count_terms, map_label,
    sentence_breakdown,
)


class TestLexicalClassifier:
    def test_positive(self):
        label, score = LexicalClassifier().classify("Shares surge as profit beats forecasts")
        assert label is SentimentLabel.POSITIVE
        assert score == pytest.approx(0.8)

    def test_negative(self):
        label, score = LexicalClassifier().classify("Stock falls on weak guidance")
        assert label is SentimentLabel.NEGATIVE
        assert score == pytest.approx(0.7)

    def test_balanced_is_neutral(self):
        assert LexicalClassifier().classify("Strong sales offset by loss in Europe") == (SentimentLabel.NEUTRAL, 0.5)

    def test_score_capped(self):
        text = "good great excellent positive strong gain profit growth success"
        assert LexicalClassifier().classify(text)[1] == 0.9

    def test_terms_counted_once(self):
        assert count_terms("gain gain gains", ["gain"]) == 1


class TestHelpers:
    @pytest.mark.parametrize("raw, expected", [
        ("positive", SentimentLabel.POSITIVE),
        ("LABEL_0", SentimentLabel.NEGATIVE),
        ("LABEL_1", SentimentLabel.NEUTRAL),
        ("5 stars", SentimentLabel.POSITIVE),
        ("1 star", SentimentLabel.NEGATIVE),
        ("mystery", SentimentLabel.NEUTRAL),
    ])
    def test_map_label(self, raw, expected):
        assert map_label(raw) is expected

    def test_sentence_breakdown(self):
        sentences = sentence_breakdown("Revenue was strong this year. Short. Margins are weak and down! Outlook remains unclear?")
        assert [s.label for s in sentences] == [
            SentimentLabel.POSITIVE, SentimentLabel.NEGATIVE, SentimentLabel.NEUTRAL,
        ]
        assert sentences[1].score == pytest.approx(0.7)


class TestHuggingFaceInferenceClassifier:
    def _response(self, payload=None, error=None):
        response = MagicMock()
        response.json.return_value = payload
        if error:
            response.raise_for_status.side_effect = error
        return response

    def test_top_label(self):
        payload = [[{"label": "LABEL_2", "score": 0.81}, {"label": "LABEL_0", "score": 0.05}]]
        with patch("stock_advisor.providers.sentiment.requests.post", return_value=self._response(payload)):
            assert HuggingFaceInferenceClassifier("hf").classify("text") == (SentimentLabel.POSITIVE, 0.81)

    def test_secondary_model_after_failure(self):
        responses = [
            self._response(error=requests.HTTPError("503")),
            self._response([{"label": "2 stars", "score": 0.6}]),
        ]
        with patch("stock_advisor.providers.sentiment.requests.post", side_effect=responses) as post:
            label, score = HuggingFaceInferenceClassifier("hf", models=("primary", "secondary")).classify("text")

        assert (label, score) == (SentimentLabel.NEGATIVE, 0.6)
        assert post.call_args.args[0].endswith("/secondary")

    def test_all_models_failing_raises(self):
        with patch("stock_advisor.providers.sentiment.requests.post",
                   return_value=self._response(error=requests.HTTPError("401"))):
            with pytest.raises(RuntimeError, match="all inference models failed"):
                HuggingFaceInferenceClassifier("hf", models=("only",)).classify("text")

    def test_requires_models(self):
        with pytest.raises(ValueError):
            HuggingFaceInferenceClassifier("hf", models=())


def test_finbert_pipeline_is_lazy():
    classifier = FinBERTClassifier()
    fake_pipe = MagicMock(return_value=[{"label": "negative", "score": 0.93}])
    with patch.object(classifier, "_get_pipeline", return_value=fake_pipe):
        assert classifier.classify("Guidance cut") == (SentimentLabel.NEGATIVE, 0.93)
    assert classifier._pipeline is None
