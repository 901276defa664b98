#!/usr/bin/env python3
"""
Analysis Runner

Drives a domain through the onboarding pipeline from a JSON file and prints
the resulting dashboard metrics. Extraction, keywords and phrases come from
the file; the query batch and the dashboard compute run for real.

Input file:
    {
        "context": "CRM for small teams",
        "location": "Sweden",
        "industry": "Software",
        "extraction": {"extracted_context": "...", "pages_scanned": 40},
        "keywords": [{"term": "crm software", "volume": 5000}],
        "phrases": [{"keyword": "crm software", "text": "What is the best CRM?"}]
    }

Usage:
    # Set environment variables first:
    export OPENAI_API_KEY=your_key
    export ANTHROPIC_API_KEY=your_key

    # Run analysis:
    python scripts/run_analysis.py example.com --input example.json

    # Recompute the dashboard of an analyzed domain:
    python scripts/run_analysis.py example.com --reanalyze
"""

import asyncio
import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run_analysis(url: str, input_path: str = None, models: list = None, reanalyze: bool = False):
    """Run the pipeline (or a recompute) for one domain."""

    load_dotenv()

    from aivis.cache.manager import AnalysisCacheManager
    from aivis.collector.providers import default_models
    from aivis.database import get_db_context, init_db
    from aivis.database.models import Domain
    from aivis.errors import AnalysisError
    from aivis.pipeline.stages import (
        ExtractionData, KeywordDiscoveryData, PhraseGenerationData, SubmissionData,
    )
    from aivis.services.analysis import AnalysisPipeline
    from api.dependencies import get_competitor_analyzer, get_orchestrator

    init_db()
    orchestrator = get_orchestrator()

    with get_db_context() as db:
        cache = AnalysisCacheManager(db, get_competitor_analyzer())
        pipeline = AnalysisPipeline(db, orchestrator, cache, models or default_models())

        try:
            if reanalyze:
                domain = db.query(Domain).filter(Domain.url == url).first()
                if domain is None:
                    logger.error(f"Domain {url} has not been analyzed yet")
                    return None
                artifact = await cache.reanalyze(domain.id)
            else:
                inputs = json.loads(Path(input_path).read_text(encoding="utf-8"))
                version = pipeline.create_domain(
                    url, inputs.get("context"), inputs.get("location"), inputs.get("industry"),
                )
                logger.info(f"Analyzing {url} (domain {version.domain_id}, version {version.version})")

                domain_id, version_id = version.domain_id, version.id
                state = pipeline.resume(domain_id, version_id)
                payloads = [
                    SubmissionData(url=url, context=inputs.get("context"), location=inputs.get("location")),
                    ExtractionData(**inputs.get("extraction", {})),
                    KeywordDiscoveryData(keywords=inputs.get("keywords", [])),
                    PhraseGenerationData(phrases=inputs.get("phrases", [])),
                ]
                for payload in payloads[int(state.current_step):]:
                    state = await pipeline.advance(domain_id, version_id, payload)
                    logger.info(f"Pipeline at {state.current_step.key}")

                artifact = await cache.get_or_compute(domain_id, version_id)
        except AnalysisError as e:
            logger.error(f"Analysis failed: {type(e).__name__}: {e}")
            return None
        finally:
            await orchestrator.registry.close()

    return artifact.to_dict()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run an AI visibility analysis for a domain"
    )
    parser.add_argument(
        "url",
        help="Domain to analyze (e.g., example.com)"
    )
    parser.add_argument(
        "--input",
        default=None,
        help="JSON file with context, extraction, keywords and phrases"
    )
    parser.add_argument(
        "--models",
        default=None,
        help="Comma-separated provider:model ids (default: QUERY_MODELS)"
    )
    parser.add_argument(
        "--reanalyze",
        action="store_true",
        help="Recompute the dashboard from stored query results"
    )

    args = parser.parse_args()
    if not args.reanalyze and not args.input:
        parser.error("--input is required unless --reanalyze is given")

    result = asyncio.run(run_analysis(
        url=args.url,
        input_path=args.input,
        models=args.models.split(",") if args.models else None,
        reanalyze=args.reanalyze,
    ))

    if result:
        metrics = result["metrics"]
        print(f"\nVisibility score: {metrics['visibilityScore']}")
        print(f"Mention rate:     {metrics['mentionRate']}%")
        print(f"Coverage:         {metrics['coverage']['coveragePercent']}%")
        for model in metrics["modelPerformance"]:
            print(f"  {model['model']:<45} {model['mentionRate']:>5}% mentions, score {model['score']}")
    else:
        sys.exit(1)


if __name__ == "__main__":
    main()
