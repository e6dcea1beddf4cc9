import os

# Keep test runs from writing cache, result and log files
os.environ.setdefault('SAVE_HTML_CACHE', 'False')
os.environ.setdefault('SAVE_RESULTS', 'False')
os.environ.setdefault('SAVE_LOGS', 'False')

import pytest

from page_driver import NavigationError, RenderedHtmlDriver
from product_extractor import load_selector_sets

HOME_URL = 'https://www.flipkart.com'
SEARCH_URL = 'https://www.flipkart.com/search?q=electronics'


def product_tile(name=None, price=None, rating=None, description=None, tile_class='slAVV4 tUxRFH'):
    """One product tile in current listing markup; omitted fields are left out."""
    parts = [f'<div class="{tile_class}">']
    if name is not None:
        parts.append(f'<a class="wjcEIp" href="/p/item">{name}</a>')
    if price is not None:
        parts.append(f'<div class="Nx9bqj _4b5DiR">{price}</div>')
    if rating is not None:
        parts.append(f'<div class="XQDdHH">{rating}<img src="star.svg"></div>')
    if description is not None:
        items = ''.join(f'<li class="J+igdf">{line}</li>' for line in description)
        parts.append(f'<ul class="G4BRas">{items}</ul>')
    parts.append('</div>')
    return ''.join(parts)


def listing_page(tiles, with_search=True):
    search = (
        '<form action="/search" method="GET">'
        '<input class="Pke_EE" name="q" placeholder="Search for Products, Brands and More" value="">'
        '<button type="submit">Search</button>'
        '</form>'
    ) if with_search else ''
    return f'<html><body><header>{search}</header><main>{"".join(tiles)}</main></body></html>'


def numbered_tiles(count, **fields):
    return [product_tile(name=f'Product Number {i}', **fields) for i in range(1, count + 1)]


class StaticSiteDriver(RenderedHtmlDriver):
    """Serves pre-rendered pages by URL and records every navigation."""

    def __init__(self, pages, failing_urls=()):
        super().__init__()
        self.pages = dict(pages)
        self.failing_urls = set(failing_urls)
        self.visited = []
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def close(self):
        self.closed = True

    def navigate(self, url):
        self.visited.append(url)
        if url in self.failing_urls or url not in self.pages:
            raise NavigationError(f"Failed to render {url}")
        self.load_html(self.pages[url], url)


@pytest.fixture
def selector_sets():
    return load_selector_sets('')


@pytest.fixture
def page_driver():
    def _make(tiles, url=SEARCH_URL, with_search=True):
        return RenderedHtmlDriver(listing_page(tiles, with_search=with_search), url)
    return _make
