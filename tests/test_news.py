"""Tests for query building, news sources and the news-fetch stage."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from stock_advisor.core.news_utils import build_search_queries, dedupe_by_url, source_from_url, strip_suffix
from stock_advisor.providers.news import (
    SAMPLE_SOURCE, NewsFetcher, NewsUnavailableError, SerperNewsSource, parse_published_at, sample_articles,
)

from conftest import AS_OF, StaticNewsSource


class TestNewsUtils:
    @pytest.mark.parametrize("name, expected", [
        ("Apple Inc.", "Apple"),
        ("Hindustan Zinc Ltd.", "Hindustan Zinc"),
        ("Microsoft Corporation", "Microsoft"),
        ("Reliance Industries", "Reliance Industries"),
    ])
    def test_strip_suffix(self, name, expected):
        assert strip_suffix(name) == expected

    def test_query_variants(self):
        queries = build_search_queries("aapl", "Apple Inc.")
        assert len(queries) == 9
        assert queries[0] == "AAPL earnings"
        assert "Apple news" in queries
        assert "AAPL lawsuit" in queries
        assert "Apple partnership" in queries

    def test_source_from_url(self):
        assert source_from_url("https://www.reuters.com/markets/x") == "reuters"
        assert source_from_url("not a url") == "Unknown"

    def test_dedupe_keeps_first_occurrence(self):
        batches = [
            [{"url": "u1", "title": "first"}, {"url": "u2", "title": "b"}],
            [{"url": "u1", "title": "second"}, {"url": "", "title": "no url"}],
        ]
        unique = dedupe_by_url(batches)
        assert [item["title"] for item in unique] == ["first", "b"]


class TestParsePublishedAt:
    def test_relative(self):
        assert parse_published_at("3 hours ago", AS_OF) == AS_OF - timedelta(hours=3)
        assert parse_published_at("2 days ago", AS_OF) == AS_OF - timedelta(days=2)

    def test_iso_string(self):
        assert parse_published_at("2026-02-27T09:00:00Z", AS_OF) == datetime(2026, 2, 27, 9, tzinfo=timezone.utc)

    def test_naive_datetime_is_utc(self):
        assert parse_published_at(datetime(2026, 3, 1, 8), AS_OF).tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "sometime soon"])
    def test_unparsable_maps_to_run_time(self, value):
        assert parse_published_at(value, AS_OF) == AS_OF


class TestSerperNewsSource:
    def test_parses_news_results(self):
        response = MagicMock()
        response.json.return_value = {
            "news": [
                {"title": "Apple earnings beat", "link": "https://www.cnbc.com/a", "date": "1 hour ago",
                 "source": "CNBC", "snippet": "Strong quarter."},
                {"title": "", "link": "https://skip.me"},
                {"title": "Apple analyst note", "link": "https://www.ft.com/b"},
            ]
        }
        with patch("stock_advisor.providers.news.requests.post", return_value=response) as post:
            hits = SerperNewsSource("key").search("AAPL earnings")

        assert post.call_args.kwargs["headers"]["X-API-KEY"] == "key"
        assert post.call_args.kwargs["json"]["q"] == "AAPL earnings"
        assert [h["url"] for h in hits] == ["https://www.cnbc.com/a", "https://www.ft.com/b"]
        assert hits[1]["source"] == "ft"
        assert hits[0]["publishedAt"] == "1 hour ago"

    def test_http_error_propagates(self):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("403")
        with patch("stock_advisor.providers.news.requests.post", return_value=response):
            with pytest.raises(requests.HTTPError):
                SerperNewsSource("key").search("AAPL earnings")


class TestNewsFetcher:
    @pytest.mark.asyncio
    async def test_no_source_serves_samples(self):
        bundle = await NewsFetcher().fetch("aapl", "Apple Inc.", AS_OF)
        assert bundle.source == SAMPLE_SOURCE
        assert bundle.ticker == "AAPL"
        assert [a.id for a in bundle.articles] == ["mock_1", "mock_2", "mock_3", "mock_4", "mock_5"]
        assert bundle.articles == sample_articles("AAPL", "Apple Inc.", AS_OF)

    @pytest.mark.asyncio
    async def test_dedupes_sorts_and_caps(self):
        hits = {
            "AAPL earnings": [
                {"title": "Old", "url": "https://a.com/1", "publishedAt": "2026-02-01"},
                {"title": "Newest", "url": "https://a.com/2", "publishedAt": "1 hour ago"},
            ],
            "Apple news": [
                {"title": "Dup of old", "url": "https://a.com/1", "publishedAt": "2026-02-01"},
                {"title": "Middle", "url": "https://b.com/3", "publishedAt": "2026-02-25"},
            ],
        }
        fetcher = NewsFetcher(StaticNewsSource(hits), max_articles=2)
        bundle = await fetcher.fetch("AAPL", "Apple Inc.", AS_OF)

        assert [a.title for a in bundle.articles] == ["Newest", "Middle"]
        assert [a.id for a in bundle.articles] == ["n1", "n2"]
        assert bundle.articles[1].source == "b"
        assert bundle.source == "static"

    @pytest.mark.asyncio
    async def test_partial_failure_is_skipped(self):
        source = StaticNewsSource(
            {"AAPL lawsuit": [{"title": "Suit filed", "url": "https://c.com/1", "publishedAt": ""}]},
            failing={"AAPL earnings", "Apple news"},
        )
        bundle = await NewsFetcher(source).fetch("AAPL", "Apple Inc.", AS_OF)
        assert len(source.calls) == 9
        assert [a.title for a in bundle.articles] == ["Suit filed"]
        assert bundle.articles[0].published_at == AS_OF

    @pytest.mark.asyncio
    async def test_all_queries_failing_raises(self):
        with pytest.raises(NewsUnavailableError):
            await NewsFetcher(StaticNewsSource(failing={"*"})).fetch("AAPL", "Apple Inc.", AS_OF)

    @pytest.mark.asyncio
    async def test_coverage_gap_is_not_an_error(self):
        bundle = await NewsFetcher(StaticNewsSource()).fetch("AAPL", "Apple Inc.", AS_OF)
        assert bundle.articles == ()
