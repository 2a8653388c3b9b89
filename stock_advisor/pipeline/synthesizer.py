"""Recommendation synthesis: generative decision with a deterministic rule engine fallback.

Primary path: a structured prompt is sent to the generative endpoint, the reply
is parsed leniently into ``{decision, confidence, rationale}`` and validated.
Fallback path (no endpoint, timeout, error or unparseable reply):

    score  = 0.4 × sentimentWeightedScore
           + 0.2 if price > SMA50 > SMA200, −0.2 if price < SMA50 < SMA200
           + 0.1 if RSI14 < 30,             −0.1 if RSI14 > 70
           + 0.1 if trend = up,             −0.1 if trend = down
    score ×= riskMultiplier × horizonMultiplier
    BUY  if score >  0.3 (confidence = min(0.9, 0.5 + score × 0.5))
    SELL if score < −0.3 (confidence = min(0.9, 0.5 + |score| × 0.5))
    HOLD otherwise       (confidence = 0.6)

On either path the suggested quantity never exceeds the risk budget.
"""

import asyncio
import json
import math
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from stock_advisor.core.logger import logger
from stock_advisor.models.datatypes import (
    Decision, EvidenceItem, MarketSignals, MarketSnapshot, NewsBundle, NewsSummary,
    RiskBudget, RiskTolerance, SentimentLabel, SentimentReport, SynthesisResult,
    TimeHorizon, Trend, UserProfile,
)
from stock_advisor.pipeline.market_signals import (
    RSI_OVERBOUGHT, RSI_OVERSOLD, interpret_macd, interpret_rsi, interpret_sma50,
)
from stock_advisor.pipeline.risk_budget import max_quantity_for
from stock_advisor.pipeline.sentiment_scorer import interpret_sentiment
from stock_advisor.providers.base import GenerativeEndpoint

RISK_MULTIPLIER = {RiskTolerance.LOW: 0.8, RiskTolerance.MEDIUM: 1.0, RiskTolerance.HIGH: 1.2}
HORIZON_MULTIPLIER = {TimeHorizon.WEEKS: 0.7, TimeHorizon.MONTHS: 1.0, TimeHorizon.YEARS: 1.1}

BUY_THRESHOLD = 0.3
SELL_THRESHOLD = -0.3
MAX_RULE_CONFIDENCE = 0.9
HOLD_CONFIDENCE = 0.6
MIN_NEWS_ARTICLES = 5

REQUIRED_FIELDS = ("decision", "confidence", "rationale")

NO_NEWS_CAVEAT = "No recent news available - analysis based primarily on technical indicators"
LIMITED_NEWS_CAVEAT = "Limited news data may affect sentiment analysis accuracy"
DATA_LATENCY_CAVEAT = "Market data may be delayed by 15-20 minutes"
PAST_PERFORMANCE_CAVEAT = "Past performance does not guarantee future results"
NOT_ADVICE_CAVEAT = "This analysis is for informational purposes only, not financial advice"


class ResponseParseError(ValueError):
    """The generative reply could not be turned into a validated decision object."""


class RecommendationSynthesisError(RuntimeError):
    """Fatal: no auditable decision could be produced for this run."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"recommendation synthesis failed: {reason}")
        self.reason = reason


# ── parsing ───────────────────────────────────────────────────────────────────

def parse_model_response(text: str) -> Dict[str, Any]:
    """Extract and validate the ``{decision, confidence, rationale}`` object.

    Surrounding prose and markdown code fences are stripped before parsing.
    ``recommendation`` is accepted as an alias of ``decision``.

    Raises:
        ResponseParseError: If no valid object can be recovered.
    """
    cleaned = re.sub(r"```(?:json)?", "", text or "", flags=re.IGNORECASE).strip()
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ResponseParseError("no JSON object in model reply")

    try:
        payload = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ResponseParseError("model reply is not a JSON object")

    if "decision" not in payload and "recommendation" in payload:
        payload["decision"] = payload["recommendation"]
    missing = [name for name in REQUIRED_FIELDS if name not in payload]
    if missing:
        raise ResponseParseError(f"missing fields: {', '.join(missing)}")

    try:
        payload["decision"] = Decision(str(payload["decision"]).strip().upper())
    except ValueError:
        raise ResponseParseError(f"unknown decision {payload['decision']!r}") from None

    confidence = payload["confidence"]
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not math.isfinite(confidence):
        raise ResponseParseError(f"confidence is not a number: {confidence!r}")
    payload["confidence"] = max(0.0, min(1.0, float(confidence)))

    rationale = payload["rationale"]
    if not isinstance(rationale, str) or not rationale.strip():
        raise ResponseParseError("rationale is empty")
    payload["rationale"] = rationale.strip()
    return payload


# ── rule engine ───────────────────────────────────────────────────────────────

def rule_score(
    sentiment_score: float,
    signals: MarketSignals,
    risk_tolerance: RiskTolerance,
    time_horizon: TimeHorizon,
) -> Tuple[float, List[str]]:
    """Weighted rule score and the factors that moved it."""
    factors: List[str] = []
    score = sentiment_score * 0.4
    if sentiment_score > 0.2:
        factors.append("positive news sentiment")
    elif sentiment_score < -0.2:
        factors.append("negative news sentiment")

    price, sma50, sma200 = signals.latest_price, signals.sma50, signals.sma200
    if price > sma50 and sma50 > sma200:
        score += 0.2
        factors.append("price above key moving averages")
    elif price < sma50 and sma50 < sma200:
        score -= 0.2
        factors.append("price below key moving averages")

    if signals.rsi14 < RSI_OVERSOLD:
        score += 0.1
        factors.append("oversold conditions (RSI < 30)")
    elif signals.rsi14 > RSI_OVERBOUGHT:
        score -= 0.1
        factors.append("overbought conditions (RSI > 70)")

    if signals.trend is Trend.UP:
        score += 0.1
        factors.append("uptrend confirmed")
    elif signals.trend is Trend.DOWN:
        score -= 0.1
        factors.append("downtrend confirmed")

    score *= RISK_MULTIPLIER[risk_tolerance] * HORIZON_MULTIPLIER[time_horizon]
    return score, factors


def decide(score: float) -> Tuple[Decision, float]:
    if score > BUY_THRESHOLD:
        return Decision.BUY, min(MAX_RULE_CONFIDENCE, 0.5 + score * 0.5)
    if score < SELL_THRESHOLD:
        return Decision.SELL, min(MAX_RULE_CONFIDENCE, 0.5 + abs(score) * 0.5)
    return Decision.HOLD, HOLD_CONFIDENCE


def bounded_quantity(budget: RiskBudget, latest_price: float, proposed: Any = None) -> int:
    """min(maxQuantity, floor(safeAllocation / price)), further capped by a proposed size."""
    cap = max(0, min(budget.max_quantity, max_quantity_for(budget.safe_allocation, latest_price)))
    if isinstance(proposed, bool) or not isinstance(proposed, (int, float)) or not math.isfinite(proposed):
        return cap
    return max(0, min(cap, int(proposed)))


# ── evidence, actions, caveats ────────────────────────────────────────────────

def build_evidence(news: NewsBundle, report: SentimentReport, snapshot: MarketSnapshot) -> Tuple[EvidenceItem, ...]:
    """Top-3 news items plus RSI14, SMA50, SMA200 and MACD readings."""
    snippets = {article.id: article.snippet or article.title for article in news.articles}
    evidence: List[EvidenceItem] = [
        EvidenceItem(
            type="news",
            id=item.article_id,
            snippet=snippets.get(item.article_id) or item.title,
            sentiment=item.label,
            score=item.score,
        )
        for item in report.items[:3]
    ]

    indicators = snapshot.indicators
    price = snapshot.latest_price
    evidence.extend([
        EvidenceItem(type="indicator", name="RSI14", value=indicators.rsi14,
                     interpretation=interpret_rsi(indicators.rsi14)),
        EvidenceItem(type="indicator", name="SMA50", value=indicators.sma50,
                     interpretation=interpret_sma50(price, indicators.sma50)),
        EvidenceItem(type="indicator", name="SMA200", value=indicators.sma200,
                     interpretation="price above SMA200" if price > indicators.sma200 else "price below SMA200"),
        EvidenceItem(type="indicator", name="MACD", value=indicators.macd.hist,
                     interpretation=interpret_macd(indicators.macd)),
    ])
    return tuple(evidence)


def actionable_items(decision: Decision, profile: UserProfile, signals: MarketSignals) -> Tuple[str, ...]:
    items: List[str] = []
    if decision is Decision.BUY:
        items.append("Consider dollar-cost averaging to reduce timing risk")
        items.append("Set a stop-loss at 5-10% below entry price")
        if profile.risk_tolerance is RiskTolerance.LOW:
            items.append("Start with a small position size")
    elif decision is Decision.SELL:
        items.append("Consider taking profits if holding gains")
        items.append("Set a stop-loss to protect against further losses")
    else:
        items.append("Monitor for better entry/exit opportunities")
        items.append("Review position size based on risk tolerance")

    if signals.rsi14 > RSI_OVERBOUGHT:
        items.append("RSI indicates overbought conditions - consider waiting for pullback")
    elif signals.rsi14 < RSI_OVERSOLD:
        items.append("RSI indicates oversold conditions - potential buying opportunity")
    return tuple(items)


def build_caveats(article_count: int, degradation_notes: Sequence[str] = ()) -> Tuple[str, ...]:
    """News-coverage warnings, fixed disclaimers, then every degradation note."""
    caveats: List[str] = []
    if article_count == 0:
        caveats.append(NO_NEWS_CAVEAT)
    if article_count < MIN_NEWS_ARTICLES:
        caveats.append(LIMITED_NEWS_CAVEAT)
    caveats.extend([DATA_LATENCY_CAVEAT, PAST_PERFORMANCE_CAVEAT, NOT_ADVICE_CAVEAT])
    caveats.extend(degradation_notes)
    return tuple(caveats)


def news_summary(report: SentimentReport) -> NewsSummary:
    labels = [item.label for item in report.items]
    return NewsSummary(
        positive=labels.count(SentimentLabel.POSITIVE),
        negative=labels.count(SentimentLabel.NEGATIVE),
        neutral=labels.count(SentimentLabel.NEUTRAL),
        top_headlines=tuple(f"{item.title} - {item.label.value}" for item in report.items[:3]),
    )


# ── synthesizer ───────────────────────────────────────────────────────────────

class RecommendationSynthesizer:
    """Produces the decision, confidence, quantity and rationale.

    Args:
        endpoint: Generative endpoint, or None to always use the rule engine.
        timeout: Upper bound in seconds for the generative call.
    """

    def __init__(self, endpoint: Optional[GenerativeEndpoint] = None, timeout: float = 30.0) -> None:
        self.endpoint = endpoint
        self.timeout = timeout

    async def synthesize(
        self,
        ticker: str,
        company_name: str,
        profile: UserProfile,
        signals: MarketSignals,
        report: SentimentReport,
        budget: RiskBudget,
    ) -> SynthesisResult:
        """Return the decision; raises RecommendationSynthesisError only if both paths fail."""
        if self.endpoint is not None:
            try:
                return await self._ai_decision(ticker, company_name, profile, signals, report, budget)
            except asyncio.TimeoutError:
                logger.warning(f"SYNTHESIS [{ticker}] AI path TIMEOUT after {self.timeout:.0f}s, using rules")
            except ResponseParseError as exc:
                logger.warning(f"SYNTHESIS [{ticker}] AI path PARSE_FAILURE ({exc}), using rules")
            except Exception as exc:
                logger.warning(f"SYNTHESIS [{ticker}] AI path INFRA_FAILURE ({exc}), using rules")

        try:
            return self.rule_decision(profile, signals, report, budget)
        except Exception as exc:
            logger.error(f"SYNTHESIS [{ticker}] rule engine failed: {exc}", exc_info=True)
            raise RecommendationSynthesisError(str(exc)) from exc

    def rule_decision(
        self,
        profile: UserProfile,
        signals: MarketSignals,
        report: SentimentReport,
        budget: RiskBudget,
    ) -> SynthesisResult:
        score, factors = rule_score(
            report.aggregate.weighted_score, signals, profile.risk_tolerance, profile.time_horizon,
        )
        decision, confidence = decide(score)
        quantity = bounded_quantity(budget, signals.latest_price)

        rationale = (
            f"Based on rule-based analysis: {', '.join(factors) or 'no strong signals'}. "
            f"The combined score of {score:.2f} suggests a {decision.value} recommendation "
            f"with {confidence * 100:.1f}% confidence. "
            f"This recommendation considers your {profile.risk_tolerance.value} risk tolerance "
            f"and {profile.time_horizon.value} time horizon. "
            f"Based on your financial health score of {budget.financial_health_score:.0f}/100, "
            f"you can safely invest up to {budget.max_quantity} shares."
        )
        logger.info(f"SYNTHESIS path=rules | score={score:+.3f} → {decision.value} ({confidence:.2f})")
        return SynthesisResult(
            decision=decision,
            confidence=confidence,
            suggested_quantity=quantity,
            rationale=rationale,
            path="rules",
        )

    async def _ai_decision(
        self,
        ticker: str,
        company_name: str,
        profile: UserProfile,
        signals: MarketSignals,
        report: SentimentReport,
        budget: RiskBudget,
    ) -> SynthesisResult:
        prompt = build_prompt(ticker, company_name, profile, signals, report, budget)
        reply = await asyncio.wait_for(self.endpoint.generate(prompt), timeout=self.timeout)
        parsed = parse_model_response(reply)

        quantity = bounded_quantity(budget, signals.latest_price, parsed.get("suggestedQuantity"))
        logger.info(
            f"SYNTHESIS [{ticker}] path=ai | {parsed['decision'].value} "
            f"({parsed['confidence']:.2f}) qty={quantity}"
        )
        return SynthesisResult(
            decision=parsed["decision"],
            confidence=parsed["confidence"],
            suggested_quantity=quantity,
            rationale=parsed["rationale"],
            path="ai",
        )


def build_prompt(
    ticker: str,
    company_name: str,
    profile: UserProfile,
    signals: MarketSignals,
    report: SentimentReport,
    budget: RiskBudget,
) -> str:
    summary = news_summary(report)
    weighted = report.aggregate.weighted_score
    portfolio = ", ".join(f"{symbol}: {qty:g}" for symbol, qty in profile.current_portfolio) or "none"
    recent = "\n".join(
        f'- "{item.title}" ({item.label.value}, {item.score * 100:.1f}% confidence)'
        for item in report.items[:5]
    ) or "- none"

    return f"""You are a financial analyst providing stock recommendations. Analyze the following data and provide a BUY/HOLD/SELL recommendation.

STOCK: {ticker} ({company_name})
USER PROFILE:
- Risk Tolerance: {profile.risk_tolerance.value}
- Time Horizon: {profile.time_horizon.value}
- Monthly Income: ${profile.monthly_income:,.2f}
- Monthly Expenses: ${profile.monthly_expenses:,.2f}
- Savings: ${profile.savings:,.2f}
- Current Portfolio: {portfolio}

FINANCIAL HEALTH ANALYSIS:
- Financial Health Score: {budget.financial_health_score:.0f}/100
- Safe Allocation: ${budget.safe_allocation:,.2f}
- Max Quantity: {budget.max_quantity} shares
- Risk Factors: {', '.join(budget.risk_factors) or 'none'}
- Recommendations: {', '.join(budget.recommendations) or 'none'}

NEWS SENTIMENT ANALYSIS:
- Positive Articles: {summary.positive}
- Negative Articles: {summary.negative}
- Neutral Articles: {summary.neutral}
- Weighted Sentiment Score: {weighted:.3f} ({interpret_sentiment(weighted)})
- Top Headlines: {', '.join(summary.top_headlines) or 'none'}

MARKET TECHNICAL ANALYSIS:
- Current Price: ${signals.latest_price:.2f}
- 50-day SMA: ${signals.sma50:.2f}
- 200-day SMA: ${signals.sma200:.2f}
- RSI(14): {signals.rsi14:.1f}
- Trend: {signals.trend.value}

RECENT NEWS SENTIMENTS:
{recent}

ANALYSIS REQUIREMENTS:
1. Consider the user's risk tolerance and time horizon
2. Weigh news sentiment against technical indicators
3. Account for market trends and momentum
4. Provide confidence level (0.0-1.0)
5. Give clear reasoning for the recommendation

RESPOND WITH ONLY THIS JSON FORMAT:
{{
  "decision": "BUY|HOLD|SELL",
  "confidence": 0.0-1.0,
  "rationale": "2-5 paragraphs explaining your reasoning, considering both fundamental (news) and technical (market) factors, and how they align with the user's risk profile and time horizon."
}}"""
