"""Data structures for the stock recommendation pipeline.

Every entity is a frozen dataclass with tuple-typed sequences: each run builds
a fresh chain of these objects and nothing is mutated after construction.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class SentimentLabel(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class Decision(str, Enum):
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"


class RiskTolerance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TimeHorizon(str, Enum):
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


# ── request ───────────────────────────────────────────────────────────────────

_PROFILE_FIELDS = {
    "monthlyIncome": "monthly_income",
    "monthlyExpenses": "monthly_expenses",
    "savings": "savings",
    "riskTolerance": "risk_tolerance",
    "currentPortfolio": "current_portfolio",
    "timeHorizon": "time_horizon",
}


@dataclass(frozen=True)
class UserProfile:
    """The caller's personal finances and investing preferences."""
    monthly_income: float
    monthly_expenses: float
    savings: float
    risk_tolerance: RiskTolerance
    time_horizon: TimeHorizon
    current_portfolio: Tuple[Tuple[str, float], ...] = ()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UserProfile":
        """Build a validated profile from a camelCase or snake_case mapping.

        Raises:
            ValueError: On missing fields, unknown enum values or negative amounts.
        """
        values = {}
        missing = []
        for camel, snake in _PROFILE_FIELDS.items():
            if camel in payload:
                values[snake] = payload[camel]
            elif snake in payload:
                values[snake] = payload[snake]
            else:
                missing.append(camel)
        if missing:
            raise ValueError(f"Missing required userProfile fields: {', '.join(missing)}")

        try:
            risk = RiskTolerance(str(values["risk_tolerance"]).lower())
        except ValueError:
            raise ValueError("riskTolerance must be 'low', 'medium', or 'high'") from None
        try:
            horizon = TimeHorizon(str(values["time_horizon"]).lower())
        except ValueError:
            raise ValueError("timeHorizon must be 'weeks', 'months', or 'years'") from None

        try:
            income = float(values["monthly_income"])
            expenses = float(values["monthly_expenses"])
            savings = float(values["savings"])
        except (TypeError, ValueError):
            raise ValueError("Financial values must be numeric") from None
        if income < 0 or expenses < 0 or savings < 0:
            raise ValueError("Financial values must be non-negative")

        portfolio = values["current_portfolio"] or {}
        if not isinstance(portfolio, Mapping):
            raise ValueError("currentPortfolio must be a mapping of symbol to quantity")

        return cls(
            monthly_income=income,
            monthly_expenses=expenses,
            savings=savings,
            risk_tolerance=risk,
            time_horizon=horizon,
            current_portfolio=tuple(
                (str(symbol), float(qty)) for symbol, qty in sorted(portfolio.items())
            ),
        )


@dataclass(frozen=True)
class AnalysisRequest:
    """Input to one pipeline run."""
    ticker: str
    company_name: str
    user_profile: UserProfile
    user_id: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AnalysisRequest":
        ticker = (payload.get("ticker") or "").strip()
        company_name = (payload.get("companyName") or payload.get("company_name") or "").strip()
        profile = payload.get("userProfile") or payload.get("user_profile")
        if not ticker or not company_name or not profile:
            raise ValueError("Missing required fields: ticker, companyName, userProfile")
        return cls(
            ticker=ticker.upper(),
            company_name=company_name,
            user_profile=UserProfile.from_dict(profile),
            user_id=payload.get("userId") or payload.get("user_id"),
        )


# ── news & sentiment ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NewsArticle:
    """A normalized news article; unique by url within one run."""
    id: str
    title: str
    url: str
    published_at: datetime
    source: str
    snippet: str = ""


@dataclass(frozen=True)
class NewsBundle:
    """Raw output of the news stage."""
    ticker: str
    company_name: str
    query: str
    articles: Tuple[NewsArticle, ...]
    fetched_at: datetime
    source: str


@dataclass(frozen=True)
class SentenceSentiment:
    text: str
    label: SentimentLabel
    score: float


@dataclass(frozen=True)
class SentimentResult:
    """Per-article classification. ``score`` is label confidence, not polarity."""
    article_id: str
    title: str
    label: SentimentLabel
    score: float
    notes: str
    sentence_level: Tuple[SentenceSentiment, ...] = ()
    is_fallback: bool = False

    @property
    def signed_score(self) -> float:
        if self.label is SentimentLabel.POSITIVE:
            return self.score
        if self.label is SentimentLabel.NEGATIVE:
            return -self.score
        return 0.0


@dataclass(frozen=True)
class SentimentAggregate:
    positive_fraction: float
    negative_fraction: float
    neutral_fraction: float
    weighted_score: float

    @classmethod
    def empty(cls) -> "SentimentAggregate":
        return cls(0.0, 0.0, 1.0, 0.0)


@dataclass(frozen=True)
class SentimentReport:
    """Raw output of the sentiment stage."""
    ticker: str
    analyzed_at: datetime
    items: Tuple[SentimentResult, ...]
    aggregate: SentimentAggregate
    strategy: str


# ── market ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OHLCVPoint:
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: int


@dataclass(frozen=True)
class MACD:
    macd: float = 0.0
    signal: float = 0.0
    hist: float = 0.0


@dataclass(frozen=True)
class TechnicalIndicators:
    sma50: float = 0.0
    sma200: float = 0.0
    rsi14: float = 0.0
    macd: MACD = field(default_factory=MACD)


@dataclass(frozen=True)
class MarketSnapshot:
    """Raw output of the market stage. ``history`` is most recent first.

    ``degraded_indicators`` lists readings that were not served by the
    provider, e.g. ``"SMA200 computed from price history"``.
    """
    ticker: str
    fetched_at: datetime
    latest_price: float
    change_percent: float
    history: Tuple[OHLCVPoint, ...]
    indicators: TechnicalIndicators
    source: str
    degraded_indicators: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MarketSignals:
    latest_price: float
    sma50: float
    sma200: float
    rsi14: float
    trend: Trend


# ── risk budget ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FinancialHealthPrior:
    """Assessment supplied by the upstream financial-health engine."""
    overall_score: float
    category_scores: Tuple[Tuple[str, float], ...] = ()
    priority_actions: Tuple[str, ...] = ()

    def category(self, name: str) -> Optional[float]:
        return dict(self.category_scores).get(name)


@dataclass(frozen=True)
class RiskBudget:
    disposable_income: float
    safe_allocation: float
    max_quantity: int
    financial_health_score: float
    risk_factors: Tuple[str, ...]
    recommendations: Tuple[str, ...]
    source: str


# ── synthesis & final artifact ────────────────────────────────────────────────

@dataclass(frozen=True)
class EvidenceItem:
    type: str  # "news" | "indicator"
    id: Optional[str] = None
    name: Optional[str] = None
    snippet: Optional[str] = None
    value: Optional[float] = None
    sentiment: Optional[SentimentLabel] = None
    score: Optional[float] = None
    interpretation: Optional[str] = None


@dataclass(frozen=True)
class SynthesisResult:
    decision: Decision
    confidence: float
    suggested_quantity: int
    rationale: str
    path: str  # "ai" | "rules"


@dataclass(frozen=True)
class UserProfileSummary:
    financial_health_score: float
    max_allocation: float
    max_quantity: int


@dataclass(frozen=True)
class NewsSummary:
    positive: int
    negative: int
    neutral: int
    top_headlines: Tuple[str, ...]


@dataclass(frozen=True)
class SentimentOverview:
    weighted_score: float
    interpretation: str


@dataclass(frozen=True)
class RawInputs:
    """Every upstream payload, one typed field per source, kept for auditability."""
    news: NewsBundle
    sentiment: SentimentReport
    market: MarketSnapshot
    risk_budget: RiskBudget


@dataclass(frozen=True)
class Recommendation:
    """The final, fully populated pipeline artifact."""
    ticker: str
    company_name: str
    generated_at: datetime
    decision: Decision
    confidence: float
    suggested_quantity: int
    rationale: str
    actionable_items: Tuple[str, ...]
    evidence: Tuple[EvidenceItem, ...]
    caveats: Tuple[str, ...]
    user_profile_summary: UserProfileSummary
    news_summary: NewsSummary
    market_signals: MarketSignals
    sentiment_overview: SentimentOverview
    synthesis_path: str
    data_source_log: str
    raw: RawInputs

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation (enums → values, datetimes → ISO 8601)."""
        return _jsonable(self)


def _jsonable(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _jsonable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_jsonable(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    return obj
