"""Pipeline orchestrator: runs the recommendation task graph for one request.

Flow per request:
  1. News ‖ Market ‖ Financial-health prior  (concurrent, each with its own fallback)
  2. Sentiment: SentimentScorer over the fetched articles
  3. Signals: MarketSignalExtractor over the snapshot
  4. Risk: RiskBudgetCalculator (needs the latest price from step 1)
  5. Synthesis: RecommendationSynthesizer (AI path, then rule engine)
  6. Assemble the Recommendation, append degradation caveats, validate

Every non-fatal substitution is logged, noted in ``data_source_log`` and
surfaced as a caveat. Synthesis failure is the only fatal condition and is
raised as RecommendationSynthesisError with no partial result.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from stock_advisor.core.config import get_api_key, section, timeout_for
from stock_advisor.core.fallback import call_blocking, run_with_fallback
from stock_advisor.core.logger import logger
from stock_advisor.models.datatypes import (
    AnalysisRequest, FinancialHealthPrior, MarketSnapshot, NewsBundle, RawInputs, Recommendation,
    SentimentAggregate, SentimentOverview, SentimentReport, UserProfileSummary,
)
from stock_advisor.pipeline.market_signals import MarketSignalExtractor
from stock_advisor.pipeline.risk_budget import RiskBudgetCalculator
from stock_advisor.pipeline.sentiment_scorer import SentimentScorer, interpret_sentiment
from stock_advisor.pipeline.synthesizer import (
    RecommendationSynthesisError, RecommendationSynthesizer, actionable_items,
    build_caveats, build_evidence, news_summary,
)
from stock_advisor.pipeline.validator import validate
from stock_advisor.providers.base import FinancialHealthSource
from stock_advisor.providers.health import JSONFileHealthSource
from stock_advisor.providers.llm import GeminiEndpoint
from stock_advisor.providers.market import (
    FALLBACK_SOURCE, AlphaVantageProvider, MarketDataFetcher, YFinanceProvider, fallback_snapshot,
)
from stock_advisor.providers.news import (
    SAMPLE_SOURCE, GoogleNewsRSSSource, NewsFetcher, SerperNewsSource,
)
from stock_advisor.providers.sentiment import FinBERTClassifier, HuggingFaceInferenceClassifier

STAGE_FALLBACK = "fallback"

DEFAULT_STAGE_TIMEOUTS: Dict[str, float] = {
    "news": 45.0,
    "market": 45.0,
    "sentiment": 90.0,
    "risk": 10.0,
}


class PipelineOrchestrator:
    """Sequences the stages, isolates their failures and assembles the result.

    Args:
        news: News stage; defaults to sample articles.
        market: Market stage; defaults to generated market data.
        scorer: Sentiment stage; defaults to the lexical classifier.
        synthesizer: Synthesis stage; defaults to the rule engine only.
        health_source: Optional upstream financial-health assessments.
        stage_timeouts: Whole-stage upper bounds in seconds, keyed by stage.
    """

    def __init__(
        self,
        news: Optional[NewsFetcher] = None,
        market: Optional[MarketDataFetcher] = None,
        scorer: Optional[SentimentScorer] = None,
        synthesizer: Optional[RecommendationSynthesizer] = None,
        health_source: Optional[FinancialHealthSource] = None,
        stage_timeouts: Optional[Dict[str, float]] = None,
    ) -> None:
        self.news = news or NewsFetcher()
        self.market = market or MarketDataFetcher()
        self.scorer = scorer or SentimentScorer()
        self.extractor = MarketSignalExtractor()
        self.risk = RiskBudgetCalculator()
        self.synthesizer = synthesizer or RecommendationSynthesizer()
        self.health_source = health_source
        self.stage_timeouts = {**DEFAULT_STAGE_TIMEOUTS, **(stage_timeouts or {})}

    # ── construction ──────────────────────────────────────────────────────────

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PipelineOrchestrator":
        """Build every stage from a parsed config.yaml dict and the environment.

        A collaborator whose API key is missing is replaced by its keyless
        alternative. Unknown provider names raise ValueError.
        """
        news_cfg = section(config, "news")
        sentiment_cfg = section(config, "sentiment")
        market_cfg = section(config, "market")
        synthesis_cfg = section(config, "synthesis")
        risk_cfg = section(config, "risk")

        stage_timeouts = {
            name: float(section(config, name)["stage_timeout_seconds"])
            for name in DEFAULT_STAGE_TIMEOUTS
            if "stage_timeout_seconds" in section(config, name)
        }

        health_source = None
        if risk_cfg.get("assessments_path"):
            health_source = JSONFileHealthSource(risk_cfg["assessments_path"])

        synthesizer = RecommendationSynthesizer(
            endpoint=_build_endpoint(synthesis_cfg),
            timeout=timeout_for(config, "synthesis"),
        )
        return cls(
            news=NewsFetcher(
                source=_build_news_source(news_cfg, timeout_for(config, "news")),
                max_articles=int(news_cfg.get("max_articles", 10)),
                query_timeout=timeout_for(config, "news"),
            ),
            market=MarketDataFetcher(
                provider=_build_market_provider(market_cfg, timeout_for(config, "market")),
                history_window=int(market_cfg.get("history_window", 90)),
                call_timeout=timeout_for(config, "market"),
            ),
            scorer=SentimentScorer(
                classifier=_build_classifier(sentiment_cfg, timeout_for(config, "sentiment")),
                article_timeout=timeout_for(config, "sentiment"),
                max_concurrency=int(sentiment_cfg.get("max_concurrency", 4)),
            ),
            synthesizer=synthesizer,
            health_source=health_source,
            stage_timeouts=stage_timeouts,
        )

    # ── public ────────────────────────────────────────────────────────────────

    async def run(self, request: AnalysisRequest, as_of: Optional[datetime] = None) -> Recommendation:
        """Run the full pipeline for one request.

        Args:
            request: Validated analysis request.
            as_of: Reference time for recency and generated data; defaults to now (UTC).

        Returns:
            The fully populated :class:`Recommendation`.

        Raises:
            RecommendationSynthesisError: If no auditable decision could be produced.
        """
        as_of = as_of or datetime.now(timezone.utc)
        ticker = request.ticker
        profile = request.user_profile
        logger.info(f"PipelineOrchestrator: start {ticker} ({request.company_name}) as of {as_of.isoformat()}")

        async with asyncio.TaskGroup() as tg:
            news_task = tg.create_task(run_with_fallback(
                "news",
                lambda: self.news.fetch(ticker, request.company_name, as_of),
                lambda: _empty_news(request, as_of),
                self.stage_timeouts["news"],
            ))
            market_task = tg.create_task(run_with_fallback(
                "market data",
                lambda: self.market.fetch(ticker, as_of),
                lambda: fallback_snapshot(ticker, as_of, self.market.history_window),
                self.stage_timeouts["market"],
            ))
            prior_task = tg.create_task(self._lookup_prior(request))

        news, news_note = news_task.result()
        snapshot, market_note = market_task.result()
        prior, prior_note = prior_task.result()

        report, sentiment_note = await run_with_fallback(
            "sentiment",
            lambda: self.scorer.score(ticker, news.articles, as_of),
            lambda: _empty_report(ticker, as_of),
            self.stage_timeouts["sentiment"],
        )
        signals = self.extractor.extract(snapshot)

        risk_note = None
        try:
            budget = self.risk.calculate(profile, signals.latest_price, prior)
        except Exception as exc:
            logger.error(f"PipelineOrchestrator: risk budget INFRA_FAILURE ({exc}), using conservative budget")
            budget = self.risk.conservative(profile, signals.latest_price)
            risk_note = f"risk budget failed ({type(exc).__name__})"

        try:
            result = await self.synthesizer.synthesize(
                ticker, request.company_name, profile, signals, report, budget,
            )
        except RecommendationSynthesisError:
            raise
        except Exception as exc:
            logger.error(f"PipelineOrchestrator: synthesis raised {exc}", exc_info=True)
            raise RecommendationSynthesisError(str(exc)) from exc

        degradations = _degradation_caveats(
            news=news, news_note=news_note,
            snapshot=snapshot, market_note=market_note,
            report=report, sentiment_note=sentiment_note,
            prior_note=prior_note, risk_note=risk_note,
            ai_configured=self.synthesizer.endpoint is not None, synthesis_path=result.path,
        )
        data_source_log = (
            f"news={news.source} | sentiment={report.strategy} | market={_market_log(snapshot)} | "
            f"risk={budget.source} | synthesis={result.path}"
        )

        recommendation = Recommendation(
            ticker=ticker,
            company_name=request.company_name,
            generated_at=as_of,
            decision=result.decision,
            confidence=result.confidence,
            suggested_quantity=result.suggested_quantity,
            rationale=result.rationale,
            actionable_items=actionable_items(result.decision, profile, signals),
            evidence=build_evidence(news, report, snapshot),
            caveats=build_caveats(len(news.articles), degradations),
            user_profile_summary=UserProfileSummary(
                financial_health_score=budget.financial_health_score,
                max_allocation=budget.safe_allocation,
                max_quantity=budget.max_quantity,
            ),
            news_summary=news_summary(report),
            market_signals=signals,
            sentiment_overview=SentimentOverview(
                weighted_score=report.aggregate.weighted_score,
                interpretation=interpret_sentiment(report.aggregate.weighted_score),
            ),
            synthesis_path=result.path,
            data_source_log=data_source_log,
            raw=RawInputs(news=news, sentiment=report, market=snapshot, risk_budget=budget),
        )

        passed, messages = validate(recommendation.to_dict())
        if not passed:
            failures = [m for m in messages if m.startswith("FAIL")]
            logger.error(f"PipelineOrchestrator: output invariants violated: {failures}")
            raise RecommendationSynthesisError(f"output failed validation: {'; '.join(failures)}")

        logger.info(
            f"PipelineOrchestrator: {ticker} → {result.decision.value} "
            f"(confidence={result.confidence:.2f}, qty={result.suggested_quantity}) | {data_source_log}"
        )
        return recommendation

    # ── internals ─────────────────────────────────────────────────────────────

    async def _lookup_prior(self, request: AnalysisRequest) -> Tuple[Optional[FinancialHealthPrior], Optional[str]]:
        if self.health_source is None or not request.user_id:
            return None, None
        timeout = self.stage_timeouts["risk"]
        return await run_with_fallback(
            "financial health prior",
            lambda: call_blocking(self.health_source.latest_assessment, request.user_id, timeout=timeout),
            lambda: None,
            timeout,
        )


# ── fallbacks & notes ─────────────────────────────────────────────────────────

def _empty_news(request: AnalysisRequest, as_of: datetime) -> NewsBundle:
    return NewsBundle(
        ticker=request.ticker,
        company_name=request.company_name,
        query="",
        articles=(),
        fetched_at=as_of,
        source=STAGE_FALLBACK,
    )


def _empty_report(ticker: str, as_of: datetime) -> SentimentReport:
    return SentimentReport(
        ticker=ticker,
        analyzed_at=as_of,
        items=(),
        aggregate=SentimentAggregate.empty(),
        strategy=STAGE_FALLBACK,
    )


def _market_log(snapshot: MarketSnapshot) -> str:
    if not snapshot.degraded_indicators:
        return snapshot.source
    return f"{snapshot.source} ({'; '.join(snapshot.degraded_indicators)})"


def _degradation_caveats(
    news: NewsBundle,
    news_note: Optional[str],
    snapshot: MarketSnapshot,
    market_note: Optional[str],
    report: SentimentReport,
    sentiment_note: Optional[str],
    prior_note: Optional[str],
    risk_note: Optional[str],
    ai_configured: bool,
    synthesis_path: str,
) -> List[str]:
    caveats: List[str] = []
    if news_note:
        caveats.append(f"Degraded input: {news_note}; analysis proceeds without news")
    elif news.source == SAMPLE_SOURCE:
        caveats.append("Degraded input: no news source configured; sample articles were used")

    if market_note:
        caveats.append(f"Degraded input: {market_note}; generated fallback market data was used")
    elif snapshot.source == FALLBACK_SOURCE:
        caveats.append("Degraded input: no market data provider configured; generated market data was used")
    elif snapshot.degraded_indicators:
        caveats.append(
            f"Degraded input: {snapshot.source} did not serve every indicator "
            f"({'; '.join(snapshot.degraded_indicators)})"
        )

    if sentiment_note:
        caveats.append(f"Degraded input: {sentiment_note}; sentiment treated as neutral")
    else:
        fallbacks = sum(1 for item in report.items if item.is_fallback)
        if fallbacks:
            caveats.append(
                f"Degraded input: {fallbacks} of {len(report.items)} articles could not be "
                f"classified and were scored as neutral"
            )

    if prior_note:
        caveats.append(f"Degraded input: {prior_note}; heuristic financial health score was used")
    if risk_note:
        caveats.append(f"Degraded input: {risk_note}; conservative allocation estimates were used")
    if ai_configured and synthesis_path == "rules":
        caveats.append("Degraded input: AI analysis unavailable; decision produced by the rule-based engine")
    return caveats


# ── factory helpers ───────────────────────────────────────────────────────────

def _build_news_source(cfg: Dict[str, Any], timeout: float):
    provider = cfg.get("provider", "google_rss")
    if provider == "mock":
        return None
    if provider == "serper":
        api_key = get_api_key("serper")
        if api_key:
            return SerperNewsSource(api_key, lookback=cfg.get("lookback", "qdr:w"), timeout=timeout)
        logger.warning("PipelineOrchestrator: SERPER_API_KEY not set, using Google News RSS")
        provider = "google_rss"
    if provider == "google_rss":
        return GoogleNewsRSSSource(window=cfg.get("rss_window", "7d"))
    raise ValueError(f"Unknown news provider: {provider}")


def _build_classifier(cfg: Dict[str, Any], timeout: float):
    backend = cfg.get("backend", "lexical")
    if backend == "lexical":
        return None
    if backend == "finbert":
        return FinBERTClassifier(model_name=cfg.get("model_name", "ProsusAI/finbert"))
    if backend == "huggingface_api":
        api_key = get_api_key("huggingface")
        if not api_key:
            logger.warning("PipelineOrchestrator: HUGGINGFACE_API_KEY not set, using lexical sentiment")
            return None
        models = cfg.get("api_models")
        if models:
            return HuggingFaceInferenceClassifier(api_key, models=tuple(models), timeout=timeout)
        return HuggingFaceInferenceClassifier(api_key, timeout=timeout)
    raise ValueError(f"Unknown sentiment backend: {backend}")


def _build_market_provider(cfg: Dict[str, Any], timeout: float):
    provider = cfg.get("provider", "yfinance")
    if provider == "mock":
        return None
    if provider == "alpha_vantage":
        api_key = get_api_key("alpha_vantage")
        if api_key:
            return AlphaVantageProvider(api_key, timeout=timeout)
        logger.warning("PipelineOrchestrator: ALPHA_VANTAGE_API_KEY not set, using yfinance")
        provider = "yfinance"
    if provider == "yfinance":
        return YFinanceProvider(suffix=cfg.get("suffix", ""), period=cfg.get("period", "1y"))
    raise ValueError(f"Unknown market provider: {provider}")


def _build_endpoint(cfg: Dict[str, Any]) -> Optional[GeminiEndpoint]:
    if not cfg.get("enabled", True):
        return None
    api_key = get_api_key("gemini")
    if not api_key:
        logger.warning("PipelineOrchestrator: GEMINI_API_KEY not set, synthesis uses the rule engine")
        return None
    return GeminiEndpoint(
        api_key,
        model=cfg.get("model", "gemini-2.5-flash"),
        temperature=float(cfg.get("temperature", 0.3)),
    )
