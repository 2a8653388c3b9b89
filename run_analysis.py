"""Stock recommendation entry point.

Usage:
    python run_analysis.py requests/sample_request.json [--config config.yaml]

Loads config.yaml and the request JSON, runs PipelineOrchestrator, writes
output/recommendation_<TICKER>.json and prints a one-line summary.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()  # before stock_advisor imports, which read env vars at module load

from stock_advisor.core.config import load_config  # noqa: E402
from stock_advisor.core.logger import logger  # noqa: E402
from stock_advisor.models.datatypes import AnalysisRequest  # noqa: E402
from stock_advisor.pipeline.engine import PipelineOrchestrator  # noqa: E402
from stock_advisor.pipeline.synthesizer import RecommendationSynthesisError  # noqa: E402


def main(argv=None) -> int:
    """Run the pipeline for one request file. Returns 0 on success, 1 on failure."""
    parser = argparse.ArgumentParser(description="Generate a BUY/HOLD/SELL recommendation for one stock.")
    parser.add_argument("request", help="Path to the analysis request JSON file")
    parser.add_argument("--config", default=None, help="Settings file (default: $ADVISOR_CONFIG or config.yaml)")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        with open(args.request, "r", encoding="utf-8") as f:
            request = AnalysisRequest.from_dict(json.load(f))
        orchestrator = PipelineOrchestrator.from_config(config)
    except (FileNotFoundError, ValueError) as exc:
        logger.error(f"run_analysis: invalid input: {exc}")
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    try:
        recommendation = asyncio.run(orchestrator.run(request))
    except RecommendationSynthesisError as exc:
        logger.error(f"run_analysis: {exc}")
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    output_dir = Path(config.get("output_dir", "output"))
    output_dir.mkdir(parents=True, exist_ok=True)
    out_path = output_dir / f"recommendation_{recommendation.ticker}.json"
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(recommendation.to_dict(), f, indent=2)

    print(
        f"SUCCESS: {recommendation.ticker} {recommendation.decision.value} "
        f"x{recommendation.suggested_quantity} (confidence {recommendation.confidence:.0%}) → {out_path}"
    )
    logger.info(f"run_analysis: completed → {out_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
