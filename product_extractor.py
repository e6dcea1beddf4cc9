"""
Product Extractor - Product Listing Scraper
===========================================
Extracts product records from a rendered listing page whose markup shifts
between experiments and regions.

Every semantic target (product containers, each product field, the search
box) is described by an ordered selector chain. A single evaluator walks a
chain and stops at the first selector that produces something useful, so a
stale selector costs one failed lookup instead of the whole page.

Pipeline:
1. Container discovery - first container selector with matches wins (capped)
2. Product assembly - name, price, rating, description per container
3. Validation - records without a real name are dropped
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from config import (
    MAX_PRODUCTS_PER_PAGE,
    MIN_TEXT_LENGTH,
    MERGE_CONTAINER_MATCHES,
    SELECTOR_CONFIG_PATH,
)
from models import (
    FIELD_ORDER,
    FIELD_SENTINELS,
    ContainerMatch,
    Failure,
    FailureKind,
    PageExtraction,
    ProductRecord,
    SelectorChain,
)
from page_driver import (
    DriverError,
    ElementError,
    PageDriver,
    RenderedHtmlDriver,
    SelectorError,
)

logger = logging.getLogger(__name__)


# Selector library, most current markup first
DEFAULT_SELECTOR_SETS = {
    # Product tiles on search and category listings
    'containers': [
        'div[class*="slAVV4"]',  # grid tile
        'div[data-id]',
        'div[class*="_1AtVbE"]',
        'div[class*="_13oc-S"]',
        'div[class*="_2kHMtA"]',  # list row
        'a[class*="CGtC98"]',
        'div[class*="yKfJKb"]',
    ],

    'name': [
        'a[class*="wjcEIp"]',
        'div[class*="KzDlHZ"]',
        'div[class*="_4rR01T"]',
    ],

    'price': [
        'div[class*="Nx9bqj"]',  # current price
        'div[class*="_30jeq3"]',
    ],

    'rating': [
        'div[class*="XQDdHH"]',
        'div[class*="_3LWZlK"]',
    ],

    'description': [
        'ul[class*="G4BRas"]',  # feature bullet list
        'div[class*="yKfJKb"]',
        'div[class*="_3Djpdu"]',
    ],

    # Site search box
    'search_inputs': [
        'input[name="q"]',
        'input[placeholder="Search for Products, Brands and More"]',
        'input[class="Pke_EE"]',
        'input[class*="search"]',
    ],
}


def load_selector_sets(config_path: str = SELECTOR_CONFIG_PATH) -> Dict[str, SelectorChain]:
    """
    Build selector chains from the built-in library, with optional overrides.

    Args:
        config_path: JSON file mapping target name to a list of selectors.
            Targets present in the file replace the built-in chain.

    Returns:
        Dict of target name to SelectorChain
    """
    selector_sets = {name: list(selectors) for name, selectors in DEFAULT_SELECTOR_SETS.items()}

    if config_path:
        with open(config_path, 'r', encoding='utf-8') as f:
            overrides = json.load(f)

        for name, selectors in overrides.items():
            if name not in selector_sets:
                logger.warning(f"Ignoring unknown selector target in {config_path}: {name}")
                continue
            selector_sets[name] = selectors
        logger.info(f"Loaded selector overrides from {config_path}: {sorted(overrides)}")

    return {name: SelectorChain(name, tuple(selectors)) for name, selectors in selector_sets.items()}


def first_match(chain: SelectorChain, probe: Callable[[str], Any]) -> Tuple[Optional[str], Any]:
    """
    Evaluate a selector chain in priority order.

    Args:
        chain: Selectors to try
        probe: Called with each selector; returns a falsy value for no match

    Returns:
        (selector, value) for the first selector whose probe returned a truthy
        value, or (None, None) when the chain is exhausted
    """
    for selector in chain:
        try:
            value = probe(selector)
        except (SelectorError, ElementError) as e:
            logger.debug(f"Selector failed: {selector} - {e}")
            continue

        if value:
            return selector, value

    return None, None


def extract_field(
    driver: PageDriver,
    container: Any,
    chain: SelectorChain,
    min_length: int = MIN_TEXT_LENGTH,
) -> Optional[str]:
    """
    Return the first non-trivial text matched by a field's selector chain.

    Within one selector, matches are read in document order and the first
    trimmed text longer than min_length wins.
    """
    def probe(selector: str) -> Optional[str]:
        for element in driver.find_all(selector, within=container):
            text = (driver.text(element) or '').strip()
            if len(text) > min_length:
                return text
        return None

    _, text = first_match(chain, probe)
    return text


def assemble_product(
    driver: PageDriver,
    container: Any,
    index: int,
    selector_sets: Dict[str, SelectorChain],
    min_length: int = MIN_TEXT_LENGTH,
) -> ProductRecord:
    """
    Build one record from a product container.

    Fields are independent: a field that cannot be read gets its sentinel
    and the remaining fields are still extracted. The record is returned
    even when every field is a sentinel.
    """
    values = {}

    for field_name in FIELD_ORDER:
        try:
            text = extract_field(driver, container, selector_sets[field_name], min_length)
        except DriverError:
            raise
        except Exception as e:
            logger.warning(f"Error extracting {field_name} for item {index}: {type(e).__name__}: {e}")
            text = None

        if text is None:
            logger.debug(f"Item {index}: {field_name} not found")
        values[field_name] = text if text is not None else FIELD_SENTINELS[field_name]

    now = datetime.now()
    return ProductRecord(created_at=now, updated_at=now, **values)


def _overlaps_kept(element: Any, kept: set) -> bool:
    """True when element is, contains or sits inside an already kept container."""
    if id(element) in kept:
        return True
    if any(id(parent) in kept for parent in getattr(element, 'parents', ())):
        return True
    return any(id(child) in kept for child in getattr(element, 'descendants', ()))


def discover_containers(
    driver: PageDriver,
    chain: SelectorChain,
    cap: int = MAX_PRODUCTS_PER_PAGE,
    merge: bool = False,
) -> ContainerMatch:
    """
    Find product containers on the current page.

    Args:
        driver: Driver positioned on a rendered page
        chain: Container selectors, highest priority first
        cap: Maximum number of containers returned
        merge: Union the matches of every selector instead of stopping
            at the first selector that matches. A match nested inside, or
            wrapping, an already kept container is dropped

    Returns:
        ContainerMatch (empty when no selector matched)
    """
    cap = max(0, cap)

    if not merge:
        selector, elements = first_match(chain, lambda s: driver.find_all(s))
        if not elements:
            return ContainerMatch()

        logger.info(f"Found {len(elements)} product containers using selector: {selector}")
        return ContainerMatch(elements=list(elements[:cap]), used_selector=selector)

    merged = []
    kept = set()
    used = []
    for selector in chain:
        try:
            found = driver.find_all(selector)
        except (SelectorError, ElementError) as e:
            logger.debug(f"Selector failed: {selector} - {e}")
            continue

        added = False
        for element in found:
            # One tile may match at several nesting levels
            if _overlaps_kept(element, kept):
                continue
            kept.add(id(element))
            merged.append(element)
            added = True

        if added:
            used.append(selector)

    if not merged:
        return ContainerMatch()

    logger.info(f"Found {len(merged)} product containers using {len(used)} merged selectors")
    return ContainerMatch(elements=merged[:cap], used_selector=', '.join(used))


class ProductExtractor:
    """Extracts all valid products visible on the driver's current page."""

    def __init__(
        self,
        selector_sets: Optional[Dict[str, SelectorChain]] = None,
        max_products: int = MAX_PRODUCTS_PER_PAGE,
        min_text_length: int = MIN_TEXT_LENGTH,
        merge_containers: bool = MERGE_CONTAINER_MATCHES,
    ):
        self.logger = logging.getLogger(__name__)
        self.selector_sets = selector_sets if selector_sets is not None else load_selector_sets()
        self.max_products = max_products
        self.min_text_length = min_text_length
        self.merge_containers = merge_containers

    def extract_page(self, driver: PageDriver) -> PageExtraction:
        """
        Extract products from the current page.

        One bad container never aborts the batch: assembly errors are logged,
        recorded as item failures and the container is skipped.

        Args:
            driver: Driver positioned on a rendered page

        Returns:
            PageExtraction with the valid products and diagnostics
        """
        url = driver.current_url()
        result = PageExtraction(url=url)

        self.logger.info("Looking for products on current page...")
        match = discover_containers(
            driver,
            self.selector_sets['containers'],
            cap=self.max_products,
            merge=self.merge_containers,
        )

        if not match:
            self.logger.info("No product containers found.")
            result.failures.append(Failure(FailureKind.CONTAINER_MISS, url, 'No container selector matched'))
            return result

        result.used_selector = match.used_selector
        result.attempted = len(match)
        self.logger.info(f"Processing {result.attempted} products...")

        for index, container in enumerate(match.elements, 1):
            try:
                product = assemble_product(
                    driver, container, index, self.selector_sets, self.min_text_length
                )
            except DriverError:
                raise
            except Exception as e:
                self.logger.warning(f"[FAIL] Error extracting product {index}: {type(e).__name__}: {e}")
                result.failures.append(
                    Failure(FailureKind.ITEM_FAILURE, f"{url}#item-{index}", f"{type(e).__name__}: {e}")
                )
                continue

            if product.is_valid:
                result.products.append(product)
                self.logger.info(f"[OK] Extracted: {product.name} - {product.price}")
            else:
                result.skipped += 1
                self.logger.info(f"[SKIP] Skipped product {index}: No valid name found")

        self.logger.info(
            f"Successfully extracted {len(result.products)} valid products "
            f"out of {result.attempted} attempted "
            f"({result.skipped} skipped, {result.failed} failed)"
        )
        return result

    def extract_html(self, html_content: str, source_url: str = '') -> PageExtraction:
        """Extract products from already rendered HTML."""
        return self.extract_page(RenderedHtmlDriver(html_content, source_url))
