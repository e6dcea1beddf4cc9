"""
Scraper Worker - Product Listing Scraper
========================================
Runs one scrape: acquires the render driver, navigates to a listing that
yields products, saves them to Supabase and reports the outcome.

Flow:
1. Check the database connection (unless saving is disabled)
2. Search for the configured query, falling back to direct listing URLs
3. Save each product; a failed insert is reported and skipped
4. Log a summary and optionally write it to RESULTS_DIR

Usage:
    python scraper_worker.py [--query electronics] [--no-save] [--out-json results.json]
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from config import (
    LOG_LEVEL,
    LOG_TO_FILE,
    LOGS_DIR,
    RESULTS_DIR,
    SAVE_RESULTS,
)
from models import NavigationResult
from navigation import NavigationStrategy, build_default_plan
from page_driver import DriverError, PageDriver, open_driver
from product_extractor import ProductExtractor
from product_store import ProductStore, SaveReport, create_store

logger = logging.getLogger(__name__)


def setup_logging():
    """Configure logging with console and optional file output."""
    handlers = []

    console_handler = logging.StreamHandler()
    # Set UTF-8 encoding for console handler (Windows compatibility)
    if hasattr(console_handler.stream, 'reconfigure'):
        try:
            console_handler.stream.reconfigure(encoding='utf-8', errors='replace')
        except (AttributeError, ValueError):
            pass
    handlers.append(console_handler)

    if LOG_TO_FILE and LOGS_DIR:
        Path(LOGS_DIR).mkdir(parents=True, exist_ok=True)
        log_file = LOGS_DIR / f"scraper_{datetime.now().strftime('%Y%m%d')}.log"
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def scrape_products(
    query: Optional[str] = None,
    driver: Optional[PageDriver] = None,
    extractor: Optional[ProductExtractor] = None,
) -> NavigationResult:
    """
    Run the navigation plan with a scoped driver.

    The driver is always closed, including when DriverError propagates.

    Args:
        query: Search query override
        driver: Driver to use (defaults to a RenderWorkerDriver)
        extractor: Extractor to use (defaults to the configured selector sets)

    Returns:
        NavigationResult
    """
    extractor = extractor if extractor is not None else ProductExtractor()
    plan = build_default_plan(extractor.selector_sets, query=query)

    with open_driver(driver) as active_driver:
        return NavigationStrategy(extractor, plan).run(active_driver)


def build_summary(result: NavigationResult, report: Optional[SaveReport]) -> Dict[str, Any]:
    summary = {
        'run_id': f"run_{datetime.now().strftime('%Y%m%d_%H%M%S')}",
        'timestamp': datetime.now().isoformat(),
        'total_products': len(result.products),
        'saved': report.saved_count if report else 0,
        'failed_to_save': report.failed_count if report else 0,
        'save_errors': [
            {'name': record.name, 'error': error} for record, error in report.failed
        ] if report else [],
        'items_skipped': sum(a.skipped for a in result.attempts),
        'items_failed': sum(a.failed for a in result.attempts),
    }
    summary.update(result.to_dict())
    if report:
        summary['products'] = [record.to_dict() for record in report.saved] + [
            record.to_dict() for record, _ in report.failed
        ]
    return summary


def write_summary(summary: Dict[str, Any], out_path: Optional[str] = None) -> Optional[Path]:
    """Write the run summary to out_path, or to RESULTS_DIR when enabled."""
    if out_path:
        path = Path(out_path)
    elif SAVE_RESULTS and RESULTS_DIR:
        path = RESULTS_DIR / f"{summary['run_id']}.json"
    else:
        return None

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(summary, f, indent=2, ensure_ascii=False)

    logger.info(f"Summary saved to: {path}")
    return path


def run_scraper(
    query: Optional[str] = None,
    save: bool = True,
    store: Optional[ProductStore] = None,
    driver: Optional[PageDriver] = None,
    out_json: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Scrape products and persist them.

    Returns:
        Run summary, or None when the database is unreachable

    Raises:
        DriverError: the render driver could not be used
    """
    logger.info("=" * 60)
    logger.info("Product Listing Scraper")
    logger.info("=" * 60)

    if save:
        store = store if store is not None else create_store()
        logger.info("Testing database connection...")
        if not store.test_connection():
            logger.error("Database connection failed. Please check your Supabase settings.")
            return None
        logger.info("Database connection successful!")

    logger.info("Initializing web scraper...")
    result = scrape_products(query=query, driver=driver)

    report = None
    if result.products:
        logger.info(f"Found {len(result.products)} products.")
        if save:
            logger.info("Saving to database...")
            report = store.save_products(result.products)
    else:
        logger.warning("No products found or scraping failed.")

    summary = build_summary(result, report)

    logger.info("=" * 60)
    logger.info("SCRAPING COMPLETE")
    logger.info("=" * 60)
    logger.info(f"Navigation state: {result.state.value} (used fallback: {result.used_fallback})")
    logger.info(f"Source URL: {result.source_url or 'none'}")
    logger.info(f"Total products found: {summary['total_products']}")
    logger.info(f"Items skipped (no name): {summary['items_skipped']}, failed: {summary['items_failed']}")
    if save:
        logger.info(f"Successfully saved: {summary['saved']}")
        logger.info(f"Failed to save: {summary['failed_to_save']}")

    write_summary(summary, out_json)
    return summary


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Product listing scraper")
    p.add_argument("--query", type=str, default=None, help="Search query (defaults to SEARCH_QUERY)")
    p.add_argument("--no-save", action="store_true", help="Do not save products to Supabase")
    p.add_argument("--out-json", type=str, default=None, help="Write the run summary to this path")
    return p.parse_args(argv)


def main(argv=None) -> int:
    """Main execution function."""
    args = parse_args(argv)
    setup_logging()

    try:
        summary = run_scraper(query=args.query, save=not args.no_save, out_json=args.out_json)
    except DriverError as e:
        logger.critical(f"Fatal driver error: {e}", exc_info=True)
        return 1
    except ValueError as e:
        logger.critical(f"Configuration error: {e}")
        return 1

    return 0 if summary is not None else 1


if __name__ == "__main__":
    sys.exit(main())
