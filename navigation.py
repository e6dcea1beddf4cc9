"""
Navigation Strategy - Product Listing Scraper
=============================================
Reaches a listing page that actually yields products.

States:
1. Search attempt - open the home page, type the query into the search box,
   submit and extract
2. Category fallback - only when the search produced nothing; visit direct
   listing URLs in order and stop at the first one with products

Per-page navigation failures are recorded and skipped. Running out of
options is a normal, empty outcome. Only DriverError escapes.
"""

import logging
from typing import Dict, List, Optional

from config import HOME_URL, SEARCH_QUERY, FALLBACK_URLS
from models import (
    Failure,
    FailureKind,
    NavigationAttempt,
    NavigationPlan,
    NavigationResult,
    NavigationState,
    PageExtraction,
    SearchAction,
    SelectorChain,
)
from page_driver import DriverError, NavigationError, PageDriver
from product_extractor import ProductExtractor, first_match

logger = logging.getLogger(__name__)


def build_default_plan(
    selector_sets: Dict[str, SelectorChain],
    query: Optional[str] = None,
    home_url: str = HOME_URL,
    fallback_urls: Optional[List[str]] = None,
) -> NavigationPlan:
    """Navigation plan from configuration: site search first, then listing URLs."""
    return NavigationPlan.build(
        home_url=home_url,
        query=query or SEARCH_QUERY,
        input_chain=selector_sets['search_inputs'],
        fallback_urls=fallback_urls if fallback_urls is not None else FALLBACK_URLS,
    )


class NavigationStrategy:
    """Runs a navigation plan against one exclusively owned driver."""

    def __init__(self, extractor: ProductExtractor, plan: Optional[NavigationPlan] = None):
        self.extractor = extractor
        self.plan = plan if plan is not None else build_default_plan(extractor.selector_sets)

    def run(self, driver: PageDriver) -> NavigationResult:
        """
        Navigate until a page yields products or all options are exhausted.

        Args:
            driver: Started driver

        Returns:
            NavigationResult (products may be empty)

        Raises:
            DriverError: the driver itself failed
        """
        result = NavigationResult(state=NavigationState.SEARCH)

        for action in self.plan.actions:
            if action.kind == 'url' and result.state == NavigationState.SEARCH:
                logger.info("Direct search failed, trying category navigation...")
                result.state = NavigationState.CATEGORY_FALLBACK

            attempt = NavigationAttempt(action=action.kind, url=action.target)
            result.attempts.append(attempt)

            if action.kind == 'search':
                extraction = self._search_attempt(driver, action, attempt)
            else:
                extraction = self._visit(driver, action.target, attempt)

            if extraction is not None and extraction.products:
                result.products = extraction.products
                result.source_url = extraction.url if action.kind == 'search' else action.target
                logger.info(
                    f"Found {len(result.products)} products via {action.kind} "
                    f"({result.source_url})"
                )
                return result

        # Only reached after the search attempt yielded nothing
        result.state = NavigationState.CATEGORY_FALLBACK
        logger.warning("All navigation options exhausted without finding products")
        return result

    def _search_attempt(
        self, driver: PageDriver, search: SearchAction, attempt: NavigationAttempt
    ) -> Optional[PageExtraction]:
        try:
            logger.info(f"Navigating to {search.home_url}...")
            driver.navigate(search.home_url)

            selector, inputs = first_match(search.input_chain, lambda s: driver.find_all(s))
            if not inputs:
                logger.info("No search box found")
                attempt.failure = Failure(
                    FailureKind.SELECTOR_MISS, search.input_chain.name, 'No search input matched'
                )
                return None

            search_box = inputs[0]
            driver.submit_text(search_box, search.query)
            driver.press_enter(search_box)
            attempt.url = driver.current_url()
            logger.info(f"Performed search for '{search.query}' (input: {selector})")

            extraction = self.extractor.extract_page(driver)
        except DriverError:
            raise
        except NavigationError as e:
            logger.warning(f"Search navigation failed: {e}")
            attempt.failure = Failure(FailureKind.NAVIGATION_FAILURE, attempt.url, str(e))
            return None
        except Exception as e:
            logger.error(f"Error in search approach: {type(e).__name__}: {e}", exc_info=True)
            attempt.failure = Failure(FailureKind.NAVIGATION_FAILURE, attempt.url, f"{type(e).__name__}: {e}")
            return None

        attempt.record(extraction)
        return extraction

    def _visit(self, driver: PageDriver, url: str, attempt: NavigationAttempt) -> Optional[PageExtraction]:
        try:
            logger.info(f"Trying URL: {url}")
            driver.navigate(url)
            extraction = self.extractor.extract_page(driver)
        except DriverError:
            raise
        except NavigationError as e:
            logger.warning(f"Failed with URL {url}: {e}")
            attempt.failure = Failure(FailureKind.NAVIGATION_FAILURE, url, str(e))
            return None
        except Exception as e:
            logger.error(f"Failed with URL {url}: {type(e).__name__}: {e}", exc_info=True)
            attempt.failure = Failure(FailureKind.NAVIGATION_FAILURE, url, f"{type(e).__name__}: {e}")
            return None

        attempt.record(extraction)
        return extraction
