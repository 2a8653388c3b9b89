"""Adapters for prior financial-health assessments produced upstream."""

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from stock_advisor.core.logger import logger
from stock_advisor.models.datatypes import FinancialHealthPrior
from stock_advisor.providers.base import FinancialHealthSource


def prior_from_dict(payload: Mapping[str, Any]) -> FinancialHealthPrior:
    """Build a prior from an assessment document.

    Expected keys: ``overallScore`` (0–100), optional ``categoryScores``
    mapping and optional ``aiInsights.priorityActions`` list.
    """
    score = float(payload["overallScore"])
    if not 0.0 <= score <= 100.0:
        raise ValueError(f"overallScore out of range: {score}")

    categories = payload.get("categoryScores") or {}
    actions = (payload.get("aiInsights") or {}).get("priorityActions") or []
    return FinancialHealthPrior(
        overall_score=score,
        category_scores=tuple((str(k), float(v)) for k, v in categories.items()),
        priority_actions=tuple(str(a) for a in actions),
    )


class JSONFileHealthSource(FinancialHealthSource):
    """Reads the latest assessment per user from a JSON file keyed by user id.

    The file is re-read on every lookup so runs never share loaded state.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def latest_assessment(self, user_id: str) -> Optional[FinancialHealthPrior]:
        if not self.path.exists():
            logger.warning(f"JSONFileHealthSource: {self.path} not found")
            return None

        with open(self.path, "r", encoding="utf-8") as f:
            documents: Dict[str, Any] = json.load(f)

        document = documents.get(user_id)
        if document is None:
            logger.info(f"JSONFileHealthSource: no assessment for user {user_id}")
            return None
        return prior_from_dict(document)
