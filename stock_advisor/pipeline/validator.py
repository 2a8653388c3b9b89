"""Output validator: enforces the Recommendation invariants on a serialized result.

Checks:
  1. decision ∈ {BUY, HOLD, SELL} and confidence ∈ [0, 1]
  2. 0 ≤ suggested_quantity ≤ risk budget max_quantity
  3. Sentiment fractions sum to 1 and weighted score ∈ [-1, 1]
  4. Fixed disclaimers present, news-coverage caveats present when due
  5. Evidence carries RSI14 and SMA50 readings
  6. Rationale is non-empty

Usage:
    python -m stock_advisor.pipeline.validator output/recommendation_AAPL.json
"""

import json
import sys
from typing import Any, List, Mapping, Tuple

from stock_advisor.pipeline.synthesizer import (
    DATA_LATENCY_CAVEAT, LIMITED_NEWS_CAVEAT, MIN_NEWS_ARTICLES, NO_NEWS_CAVEAT,
    NOT_ADVICE_CAVEAT, PAST_PERFORMANCE_CAVEAT,
)

_REQUIRED_KEYS = [
    "ticker", "decision", "confidence", "suggested_quantity", "rationale",
    "evidence", "caveats", "raw",
]
_DECISIONS = {"BUY", "HOLD", "SELL"}
_FRACTION_TOLERANCE = 1e-6

_FIXED_CAVEATS = (DATA_LATENCY_CAVEAT, PAST_PERFORMANCE_CAVEAT, NOT_ADVICE_CAVEAT)


def validate(payload: Mapping[str, Any]) -> Tuple[bool, List[str]]:
    """Run all validation checks against a ``Recommendation.to_dict()`` payload.

    Returns:
        Tuple of ``(passed: bool, messages: list[str])``.
        ``messages`` contains PASS/FAIL lines for each check.
    """
    missing = [k for k in _REQUIRED_KEYS if k not in payload]
    if missing:
        return False, [f"FAIL  missing keys: {missing}"]

    messages: List[str] = []
    passed = True

    def check(ok: bool, pass_msg: str, fail_msg: str) -> None:
        nonlocal passed
        if ok:
            messages.append(f"PASS  {pass_msg}")
        else:
            messages.append(f"FAIL  {fail_msg}")
            passed = False

    raw = payload["raw"] or {}
    budget = raw.get("risk_budget") or {}
    aggregate = (raw.get("sentiment") or {}).get("aggregate") or {}
    articles = (raw.get("news") or {}).get("articles") or []

    # ── check 1: decision and confidence ─────────────────────────────────────
    decision = payload["decision"]
    check(decision in _DECISIONS, f"decision = {decision}", f"unknown decision {decision!r}")
    confidence = payload["confidence"]
    check(
        _is_number(confidence) and 0.0 <= confidence <= 1.0,
        f"confidence = {confidence} ∈ [0, 1]",
        f"confidence out of range: {confidence!r}",
    )

    # ── check 2: quantity bounded by the risk budget ─────────────────────────
    quantity = payload["suggested_quantity"]
    max_quantity = budget.get("max_quantity")
    check(
        isinstance(quantity, int) and isinstance(max_quantity, int) and 0 <= quantity <= max_quantity,
        f"suggested_quantity = {quantity} ≤ max_quantity = {max_quantity}",
        f"suggested_quantity {quantity!r} not within [0, {max_quantity!r}]",
    )
    safe = budget.get("safe_allocation")
    check(
        _is_number(safe) and safe >= 0,
        f"safe_allocation = {safe} ≥ 0",
        f"safe_allocation invalid: {safe!r}",
    )

    # ── check 3: sentiment aggregate ─────────────────────────────────────────
    fractions = [aggregate.get(k) for k in ("positive_fraction", "negative_fraction", "neutral_fraction")]
    check(
        all(_is_number(f) for f in fractions) and abs(sum(fractions) - 1.0) <= _FRACTION_TOLERANCE,
        "sentiment fractions sum to 1",
        f"sentiment fractions do not sum to 1: {fractions}",
    )
    weighted = aggregate.get("weighted_score")
    check(
        _is_number(weighted) and -1.0 <= weighted <= 1.0,
        f"weighted_score = {weighted} ∈ [-1, 1]",
        f"weighted_score out of range: {weighted!r}",
    )

    # ── check 4: caveats ─────────────────────────────────────────────────────
    caveats = payload["caveats"] or []
    absent = [c for c in _FIXED_CAVEATS if c not in caveats]
    if not articles and NO_NEWS_CAVEAT not in caveats:
        absent.append(NO_NEWS_CAVEAT)
    if len(articles) < MIN_NEWS_ARTICLES and LIMITED_NEWS_CAVEAT not in caveats:
        absent.append(LIMITED_NEWS_CAVEAT)
    check(not absent, f"{len(caveats)} caveats, all required present", f"missing caveats: {absent}")

    # ── check 5: indicator evidence ──────────────────────────────────────────
    names = {item.get("name") for item in payload["evidence"] or [] if item.get("type") == "indicator"}
    check(
        {"RSI14", "SMA50"} <= names,
        "evidence includes RSI14 and SMA50",
        f"indicator evidence incomplete: {sorted(n for n in names if n)}",
    )

    # ── check 6: rationale ───────────────────────────────────────────────────
    rationale = payload["rationale"]
    check(isinstance(rationale, str) and bool(rationale.strip()), "rationale present", "rationale is empty")

    return passed, messages


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def main() -> int:
    if len(sys.argv) < 2:
        print("Usage: python -m stock_advisor.pipeline.validator <path_to_json>")
        return 1
    json_path = sys.argv[1]
    try:
        with open(json_path, encoding="utf-8") as f:
            payload = json.load(f)
    except FileNotFoundError:
        print(f"FAIL  file not found: {json_path}")
        return 1
    except json.JSONDecodeError as exc:
        print(f"FAIL  could not read JSON: {exc}")
        return 1

    passed, messages = validate(payload)
    for msg in messages:
        print(msg)
    if passed:
        print("\nVALIDATION PASSED ✓")
        return 0
    else:
        print("\nVALIDATION FAILED ✗")
        return 1


if __name__ == "__main__":
    sys.exit(main())
