"""
Data Models - Product Listing Scraper
=====================================
Product records, selector chains, navigation plans and the result
objects returned by the extraction engine.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# Sentinel values for fields that could not be found on the page
UNKNOWN_PRODUCT = "Unknown Product"
PRICE_NOT_AVAILABLE = "Price not available"
NO_RATING = "No rating"
NO_DESCRIPTION = "No description"

FIELD_ORDER = ('name', 'price', 'rating', 'description')

FIELD_SENTINELS = {
    'name': UNKNOWN_PRODUCT,
    'price': PRICE_NOT_AVAILABLE,
    'rating': NO_RATING,
    'description': NO_DESCRIPTION,
}


@dataclass(frozen=True)
class ProductRecord:
    """One product scraped from a listing page."""
    name: str
    price: str = PRICE_NOT_AVAILABLE
    rating: str = NO_RATING
    description: str = NO_DESCRIPTION
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    product_id: Optional[int] = None

    @property
    def is_valid(self) -> bool:
        """A record is kept only when its name was actually found."""
        name = (self.name or '').strip()
        return bool(name) and name != UNKNOWN_PRODUCT

    def with_id(self, product_id: int) -> 'ProductRecord':
        return replace(self, product_id=product_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'name': self.name,
            'price': self.price,
            'rating': self.rating,
            'description': self.description,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class SelectorChain:
    """
    Ordered CSS selectors for one semantic target.

    Earlier entries are the markup variants believed most current; the
    first entry that produces a result wins.
    """
    name: str
    selectors: Tuple[str, ...]

    def __post_init__(self):
        if isinstance(self.selectors, (list, str)):
            selectors = [self.selectors] if isinstance(self.selectors, str) else self.selectors
            object.__setattr__(self, 'selectors', tuple(selectors))
        if not self.selectors:
            raise ValueError(f"Selector chain '{self.name}' must contain at least one selector")

    def __iter__(self):
        return iter(self.selectors)

    def __len__(self):
        return len(self.selectors)


class NavigationState(str, Enum):
    SEARCH = 'search'
    CATEGORY_FALLBACK = 'category_fallback'


@dataclass(frozen=True)
class SearchAction:
    """Open the home page, type the query into the search box and submit."""
    home_url: str
    query: str
    input_chain: SelectorChain

    @property
    def kind(self) -> str:
        return 'search'

    @property
    def target(self) -> str:
        return self.home_url


@dataclass(frozen=True)
class UrlAction:
    """Visit a listing URL directly."""
    url: str

    @property
    def kind(self) -> str:
        return 'url'

    @property
    def target(self) -> str:
        return self.url


@dataclass(frozen=True)
class NavigationPlan:
    """One search action followed by direct listing URLs, tried in order."""
    search: SearchAction
    fallback_urls: Tuple[UrlAction, ...] = ()

    @classmethod
    def build(cls, home_url: str, query: str, input_chain: SelectorChain,
              fallback_urls: List[str]) -> 'NavigationPlan':
        return cls(
            search=SearchAction(home_url=home_url, query=query, input_chain=input_chain),
            fallback_urls=tuple(UrlAction(url) for url in fallback_urls),
        )

    @property
    def actions(self) -> List[Any]:
        return [self.search, *self.fallback_urls]


class FailureKind(str, Enum):
    SELECTOR_MISS = 'selector_miss'
    CONTAINER_MISS = 'container_miss'
    ITEM_FAILURE = 'item_failure'
    NAVIGATION_FAILURE = 'navigation_failure'
    DRIVER_FAILURE = 'driver_failure'


@dataclass(frozen=True)
class Failure:
    """A failure that was observed and recovered from."""
    kind: FailureKind
    target: str
    message: str = ''

    def to_dict(self) -> Dict[str, str]:
        return {'kind': self.kind.value, 'target': self.target, 'message': self.message}


@dataclass
class ContainerMatch:
    elements: List[Any] = field(default_factory=list)
    used_selector: Optional[str] = None

    def __bool__(self):
        return bool(self.elements)

    def __len__(self):
        return len(self.elements)


@dataclass
class PageExtraction:
    """Products extracted from one rendered page, plus diagnostics."""
    url: str = ''
    products: List[ProductRecord] = field(default_factory=list)
    used_selector: Optional[str] = None
    attempted: int = 0
    skipped: int = 0
    failures: List[Failure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.products) > 0

    @property
    def failed(self) -> int:
        return sum(1 for f in self.failures if f.kind == FailureKind.ITEM_FAILURE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'success': self.success,
            'num_products': len(self.products),
            'products': [p.to_dict() for p in self.products],
            'container_selector': self.used_selector,
            'attempted': self.attempted,
            'skipped': self.skipped,
            'failed': self.failed,
            'failures': [f.to_dict() for f in self.failures],
        }


@dataclass
class NavigationAttempt:
    """One navigation action and what its page yielded."""
    action: str
    url: str
    num_products: int = 0
    container_selector: Optional[str] = None
    attempted: int = 0
    skipped: int = 0
    failed: int = 0
    failure: Optional[Failure] = None

    def record(self, extraction: PageExtraction) -> None:
        self.url = extraction.url or self.url
        self.num_products = len(extraction.products)
        self.container_selector = extraction.used_selector
        self.attempted = extraction.attempted
        self.skipped = extraction.skipped
        self.failed = extraction.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action,
            'url': self.url,
            'num_products': self.num_products,
            'container_selector': self.container_selector,
            'attempted': self.attempted,
            'skipped': self.skipped,
            'failed': self.failed,
            'failure': self.failure.to_dict() if self.failure else None,
        }


@dataclass
class NavigationResult:
    """Outcome of running a navigation plan."""
    products: List[ProductRecord] = field(default_factory=list)
    state: NavigationState = NavigationState.SEARCH
    source_url: Optional[str] = None
    attempts: List[NavigationAttempt] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return self.state == NavigationState.CATEGORY_FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            'num_products': len(self.products),
            'products': [p.to_dict() for p in self.products],
            'state': self.state.value,
            'used_fallback': self.used_fallback,
            'source_url': self.source_url,
            'attempts': [a.to_dict() for a in self.attempts],
        }
