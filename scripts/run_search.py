"""
CLI wrapper to run one lead search.

Usage:
    python scripts/run_search.py --location Berlin --category tech --intensity standard
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional

# Ensure repo root on path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.append(ROOT)

from leadscout.errors import PipelineError
from leadscout.models import CATEGORIES, INTENSITIES, SearchRequest
from leadscout.pipeline import build_pipeline


def _print_progress(percent: float, label: Optional[str] = None) -> None:
    print(f"[{percent:5.1f}%] {label or ''}", file=sys.stderr, flush=True)


async def _arun(request: SearchRequest) -> list:
    pipeline = build_pipeline()
    leads = await pipeline.run(request, on_progress=_print_progress)
    return [lead.to_dict() for lead in leads]


def main() -> int:
    parser = argparse.ArgumentParser(description="Find business leads for a location and category.")
    parser.add_argument("--location", required=True, help="City, region or country")
    parser.add_argument("--category", required=True, choices=CATEGORIES)
    parser.add_argument("--intensity", default="standard", choices=INTENSITIES)
    parser.add_argument("--verbose", action="store_true", help="Log pipeline internals to stderr")
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=logging.INFO if args.verbose else logging.WARNING,
    )
    # Suppress OpenAI and LangChain HTTP request logs
    for name in ("openai", "langchain", "langchain_openai", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.ERROR)

    request = SearchRequest(location=args.location, category=args.category, intensity=args.intensity)
    try:
        leads = asyncio.run(_arun(request))
    except PipelineError as exc:
        print(f"search failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(leads, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
