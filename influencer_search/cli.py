"""Command-line interface for influencer search"""

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from . import __version__
from .budget import SCRAPING_MODES
from .config import DEFAULT_LOG_FILE, DEFAULT_MAX_RESULTS, DEFAULT_OUTPUT_DIR, DEFAULT_PLATFORMS, DEFAULT_SCRAPING_MODE
from .connectors import ApifyScrapingService, ScrapeBackedVerifier, SerplySearchProvider
from .exceptions import InfluencerSearchError
from .logging_config import setup_logging
from .models import SearchResponse
from .orchestrator import SearchContext, SearchOrchestrator
from .storage import save_response
from .vetted_store import JsonVettedStore


def build_orchestrator(
    mode: str,
    vetted_file: Optional[Path] = None,
    serply_key: Optional[str] = None,
    apify_token: Optional[str] = None,
    verify: bool = False,
    context: Optional[SearchContext] = None,
) -> SearchOrchestrator:
    """Wire connectors that have credentials into an orchestrator"""
    context = context or SearchContext()

    providers = []
    if serply_key:
        providers.append(SerplySearchProvider(serply_key))
    else:
        logger.warning("⚠️ SERPLY_API_KEY not set - web discovery disabled")

    scraper = None
    verifier = None
    if apify_token:
        scraper = ApifyScrapingService(apify_token)
        if verify:
            verifier = ScrapeBackedVerifier(scraper)
    else:
        logger.warning("⚠️ APIFY_TOKEN not set - profiles will not be scraped")

    vetted_store = None
    if vetted_file:
        if not vetted_file.exists():
            raise InfluencerSearchError(f"Vetted dataset not found: {vetted_file}")
        vetted_store = JsonVettedStore(vetted_file)

    return SearchOrchestrator(
        context,
        search_providers=providers,
        scraper=scraper,
        vetted_store=vetted_store,
        verifier=verifier,
        mode=mode,
    )


def params_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Raw parameter bag; validation happens in SearchParams.from_dict"""
    return {
        "platforms": [p.lower() for p in args.platforms],
        "niches": args.niches or [],
        "location": args.location,
        "brand_name": args.brand,
        "user_query": args.query,
        "min_followers": args.min_followers,
        "max_followers": args.max_followers,
        "gender": args.gender,
        "max_results": args.max_results,
    }


async def run_search(
    orchestrator: SearchOrchestrator,
    params: Dict[str, Any],
    output_dir: Path,
) -> Tuple[SearchResponse, Path]:
    """Run one search and persist the response"""
    async with orchestrator:
        response = await orchestrator.search(params)
    output_file = await save_response(response, output_dir)
    return response, output_file


def log_summary(response: SearchResponse, output_file: Path) -> None:
    summary = response.summary
    logger.info("=" * 60)
    logger.info("SEARCH SUMMARY")
    logger.info("=" * 60)
    logger.info(f"  Search ID: {response.search_id}")
    logger.info(f"  Strategy: {response.source_strategy or 'none'}")
    if response.quality_tier:
        logger.info(f"  Quality tier: {response.quality_tier.value}")
    logger.info(f"  Found: {summary.total_found} | Scraped: {summary.total_scraped} | Returned: {summary.total_returned}")
    logger.info(f"  Verified: {summary.verified} | Average score: {summary.average_score}")
    logger.info(f"  Time: {summary.processing_time_ms}ms")
    if summary.improvements_used:
        logger.info(f"  Improvements: {', '.join(summary.improvements_used)}")

    for item in response.results[:10]:
        profile = item.profile
        tag = "" if profile.data_source.value == "scraped" else f" [{profile.data_source.value}]"
        logger.info(
            f"  #{item.rank:<2} @{profile.username} ({profile.platform}) "
            f"score={item.combined_score} followers={profile.followers:,}{tag}"
        )

    for warning in response.warnings:
        logger.warning(f"  ⚠️ {warning}")
    for recommendation in response.recommendations:
        logger.info(f"  💡 {recommendation}")
    logger.info(f"  Output: {output_file}")
    logger.info("=" * 60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="influencer-search",
        description="Resilient influencer discovery across web search, scraping and a vetted dataset",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    search_group = parser.add_argument_group("Search")
    search_group.add_argument(
        "--platforms", nargs="+", default=list(DEFAULT_PLATFORMS), help="Platforms to search"
    )
    search_group.add_argument("--niches", nargs="+", help="Content niches, e.g. fitness beauty")
    search_group.add_argument("--location", type=str, help="Location filter, e.g. spain")
    search_group.add_argument("--brand", type=str, help="Brand the campaign is for")
    search_group.add_argument("--query", type=str, help="Free-text query")
    search_group.add_argument("--min-followers", type=int, help="Minimum follower count")
    search_group.add_argument("--max-followers", type=int, help="Maximum follower count")
    search_group.add_argument("--gender", choices=["male", "female", "any"], help="Creator gender")
    search_group.add_argument(
        "--max-results", type=int, default=DEFAULT_MAX_RESULTS, help="Maximum results to return"
    )

    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument(
        "--mode",
        choices=sorted(SCRAPING_MODES),
        default=DEFAULT_SCRAPING_MODE,
        help="Scraping budget mode",
    )
    config_group.add_argument("--vetted-file", type=str, help="Vetted influencer dataset (JSON)")
    config_group.add_argument("--verify", action="store_true", help="Verify top profiles after ranking")
    config_group.add_argument(
        "--output", type=str, default=str(DEFAULT_OUTPUT_DIR), help="Output directory"
    )
    config_group.add_argument("--verbose", action="store_true", help="Debug logging")
    config_group.add_argument("--log-file", type=str, help="Log file path")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)

    log_file = Path(args.log_file) if args.log_file else DEFAULT_LOG_FILE
    setup_logging(verbose=args.verbose, log_file=log_file)

    logger.info("=" * 60)
    logger.info(f"Influencer Search (v{__version__}) - mode: {args.mode}")
    logger.info("=" * 60)

    async def run():
        try:
            orchestrator = build_orchestrator(
                mode=args.mode,
                vetted_file=Path(args.vetted_file) if args.vetted_file else None,
                serply_key=os.environ.get("SERPLY_API_KEY"),
                apify_token=os.environ.get("APIFY_TOKEN"),
                verify=args.verify,
            )
            response, output_file = await run_search(orchestrator, params_from_args(args), Path(args.output))
            log_summary(response, output_file)
            if not response.success:
                sys.exit(1)

        except InfluencerSearchError as e:
            logger.error(f"❌ {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Interrupted by user")
            sys.exit(1)

    asyncio.run(run())


if __name__ == "__main__":
    main()
