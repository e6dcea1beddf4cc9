"""
Page Driver - Product Listing Scraper
=====================================
Rendered-page access for the extraction engine.

The engine only talks to a driver through a small capability surface:
navigate, current_url, find_all, text, submit_text and press_enter.

Drivers:
- RenderedHtmlDriver: queries one already rendered HTML page with CSS selectors
- RenderWorkerDriver: fetches rendered HTML from the Chrome Worker API

Errors:
- SelectorError: malformed or unsupported selector (engine treats as no match)
- ElementError: element cannot be read (engine treats as no match)
- NavigationError: one page failed to load (engine tries the next option)
- DriverError: the render session is unusable (fatal for the run)
"""

import hashlib
import logging
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import urlencode, urljoin, urlparse, urlsplit, urlunsplit

import requests
from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from config import (
    RENDER_API_URL,
    API_TIMEOUT,
    MAX_RETRIES,
    RETRY_DELAY,
    HTML_CACHE_DIR,
)

logger = logging.getLogger(__name__)

# Input types that never contribute to a submitted form
_SKIPPED_INPUT_TYPES = {'submit', 'button', 'image', 'reset', 'file'}


class DriverException(Exception):
    """Base class for driver errors."""


class SelectorError(DriverException):
    """A selector could not be evaluated."""


class ElementError(DriverException):
    """An element could not be read (missing page, detached node)."""


class NavigationError(DriverException):
    """A single navigation failed; other pages may still load."""


class DriverError(DriverException):
    """The driver session cannot be created or used."""


class PageDriver:
    """Capability surface consumed by the extraction engine."""

    def start(self):
        """Acquire driver resources."""

    def close(self):
        """Release driver resources."""

    def navigate(self, url: str) -> None:
        raise NotImplementedError

    def current_url(self) -> str:
        raise NotImplementedError

    def find_all(self, selector: str, within: Any = None) -> List[Any]:
        raise NotImplementedError

    def text(self, element: Any) -> str:
        raise NotImplementedError

    def submit_text(self, element: Any, text: str) -> None:
        raise NotImplementedError

    def press_enter(self, element: Any) -> None:
        raise NotImplementedError

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class RenderedHtmlDriver(PageDriver):
    """Driver over a single rendered HTML document parsed with BeautifulSoup."""

    def __init__(self, html: Optional[str] = None, url: str = ''):
        self._soup: Optional[BeautifulSoup] = None
        self._url = url
        if html is not None:
            self.load_html(html, url)

    def load_html(self, html: str, url: str = '') -> None:
        """Replace the current page with the given rendered HTML."""
        self._soup = BeautifulSoup(html, 'html.parser')
        self._url = url

    def navigate(self, url: str) -> None:
        raise NavigationError(f"{type(self).__name__} cannot fetch pages: {url}")

    def current_url(self) -> str:
        return self._url

    def find_all(self, selector: str, within: Any = None) -> List[Tag]:
        root = within if within is not None else self._soup
        if root is None:
            raise ElementError("No page loaded")
        if not isinstance(root, Tag):
            raise ElementError(f"Cannot query inside {type(root).__name__}")
        try:
            return root.select(selector)
        except (SelectorSyntaxError, NotImplementedError) as e:
            raise SelectorError(f"Invalid selector '{selector}': {e}") from e

    def text(self, element: Any) -> str:
        if not isinstance(element, Tag):
            raise ElementError(f"Cannot read text of {type(element).__name__}")
        return ' '.join(element.get_text(' ').split())

    def submit_text(self, element: Any, text: str) -> None:
        """Type text into an input; text is appended to any existing value."""
        if not isinstance(element, Tag):
            raise ElementError(f"Cannot type into {type(element).__name__}")
        element['value'] = (element.get('value') or '') + text

    def press_enter(self, element: Any) -> None:
        """Submit the form that owns the element and load the result page."""
        if not isinstance(element, Tag):
            raise ElementError(f"Cannot submit {type(element).__name__}")
        self.navigate(self._form_submission_url(element))

    def _form_submission_url(self, element: Tag) -> str:
        """Build the GET URL a browser would request when submitting the element's form."""
        form = element.find_parent('form')

        if form is None:
            action = '/search'
            fields = [(element.get('name') or 'q', element.get('value') or '')]
        else:
            method = (form.get('method') or 'get').lower()
            if method != 'get':
                raise NavigationError(f"Unsupported form method: {method.upper()}")

            action = form.get('action') or self._url
            fields = []
            for field_elem in form.find_all(['input', 'select', 'textarea']):
                name = field_elem.get('name')
                input_type = (field_elem.get('type') or '').lower()
                if not name or input_type in _SKIPPED_INPUT_TYPES:
                    continue
                if input_type in ('checkbox', 'radio') and not field_elem.has_attr('checked'):
                    continue
                fields.append((name, field_elem.get('value') or ''))

        target = urlsplit(urljoin(self._url, action))
        return urlunsplit((target.scheme, target.netloc, target.path, urlencode(fields), ''))


class RenderWorkerDriver(RenderedHtmlDriver):
    """Fetches rendered HTML from the Chrome Worker API, one page at a time."""

    def __init__(
        self,
        api_url: str = RENDER_API_URL,
        timeout: int = API_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        retry_delay: int = RETRY_DELAY,
        cache_dir: Optional[Path] = HTML_CACHE_DIR,
    ):
        super().__init__()
        self.api_url = api_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.cache_dir = cache_dir
        self.session: Optional[requests.Session] = None

    def start(self):
        if not self.api_url:
            raise DriverError("Render API URL not configured. Set RENDER_API_URL.")

        if self.cache_dir:
            Path(self.cache_dir).mkdir(parents=True, exist_ok=True)

        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'ProductScraper/1.0'
        })
        logger.info(f"Render driver started: {self.api_url}")

    def close(self):
        if self.session is not None:
            self.session.close()
            self.session = None
            logger.info("Render driver closed")

    def navigate(self, url: str) -> None:
        html = self._render(url)
        self.load_html(html, url)

        # The page is already loaded; a cache write failure only loses the copy
        try:
            self._save_html(url, html)
        except OSError as e:
            logger.warning(f"Could not cache HTML for {url}: {type(e).__name__}: {e}")

    def _render(self, url: str) -> str:
        """
        Fetch rendered HTML for one URL.

        Args:
            url: Page to render

        Returns:
            Rendered HTML string

        Raises:
            NavigationError: page could not be rendered
            DriverError: render service unreachable or driver not started
        """
        if self.session is None:
            raise DriverError("Render driver is not started")

        logger.info(f"Rendering: {url}")
        payload = {"urls": [url]}
        last_error: DriverException = NavigationError(f"No render attempt made for {url}")

        for attempt in range(self.max_retries):
            try:
                response = self.session.post(self.api_url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
            except requests.exceptions.ConnectionError as e:
                last_error = DriverError(f"Render service unreachable: {e}")
            except requests.exceptions.Timeout as e:
                last_error = NavigationError(f"Render request timed out for {url}: {e}")
            except requests.exceptions.HTTPError as e:
                last_error = NavigationError(f"Render service error for {url}: {e}")
            except (requests.exceptions.RequestException, ValueError) as e:
                last_error = NavigationError(f"Invalid render response for {url}: {type(e).__name__}: {e}")
            else:
                return self._html_from_response(data, url)

            logger.error(f"Attempt {attempt + 1}/{self.max_retries} failed: {last_error}")
            if attempt < self.max_retries - 1:
                delay = self.retry_delay * (2 ** attempt)  # Exponential backoff
                logger.info(f"Retrying in {delay} seconds...")
                time.sleep(delay)

        logger.error("All retry attempts exhausted")
        raise last_error

    def _html_from_response(self, data: Any, url: str) -> str:
        # Format: {"results": [...]} or a bare list of results
        if isinstance(data, dict) and 'results' in data:
            results = data['results']
        elif isinstance(data, list):
            results = data
        else:
            raise NavigationError(f"Unexpected render response format: {type(data).__name__}")

        if not results or not isinstance(results[0], dict):
            raise NavigationError(f"Empty render response for {url}")

        result = next((r for r in results if isinstance(r, dict) and r.get('url') == url), results[0])
        status = result.get('status', '')
        html = result.get('html', '')

        if status != 'success' or not isinstance(html, str) or not html.strip():
            error_msg = result.get('error', 'No HTML content')
            error_type = result.get('errorType', '')
            if error_type:
                error_msg = f"{error_msg} (Type: {error_type})"
            raise NavigationError(f"Failed to render {url} - Status: {status}, Error: {error_msg}")

        logger.info(f"Rendered {url} ({len(html):,} chars)")
        return html

    def _generate_filename(self, url: str, extension: str = 'html') -> str:
        """
        Generate unique filename from URL.

        Args:
            url: Source URL
            extension: File extension

        Returns:
            Filename string with timestamp
        """
        parsed = urlparse(url)
        domain = parsed.netloc.replace('www.', '').split('.')[0] or 'page'

        url_hash = hashlib.md5(url.encode()).hexdigest()[:8]
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')

        return f"{domain}_{url_hash}_{timestamp}.{extension}"

    def _save_html(self, url: str, html_content: str) -> str:
        """Save rendered HTML to the cache directory, if enabled."""
        if not self.cache_dir:
            return ""

        filepath = Path(self.cache_dir) / self._generate_filename(url, 'html')
        with open(filepath, 'w', encoding='utf-8') as f:
            f.write(html_content)

        logger.info(f"Saved HTML: {filepath.name} ({len(html_content)} bytes)")
        return str(filepath)


@contextmanager
def open_driver(driver: Optional[PageDriver] = None):
    """
    Acquire a driver for one run and always release it.

    Args:
        driver: Driver to manage (defaults to a RenderWorkerDriver)

    Yields:
        The started driver
    """
    driver = driver if driver is not None else RenderWorkerDriver()
    try:
        driver.start()
        yield driver
    finally:
        driver.close()
