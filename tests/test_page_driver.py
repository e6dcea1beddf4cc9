from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import HOME_URL, SEARCH_URL, listing_page
from page_driver import (
    DriverError,
    ElementError,
    NavigationError,
    PageDriver,
    RenderedHtmlDriver,
    RenderWorkerDriver,
    SelectorError,
    open_driver,
)

RENDERED = '<html><body><div class="slAVV4">Rendered tile</div></body></html>'


def render_response(payload):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


def started_worker(tmp_path=None, **kwargs):
    driver = RenderWorkerDriver(
        api_url='https://render.example.com/render',
        retry_delay=0,
        cache_dir=tmp_path,
        **kwargs
    )
    driver.session = MagicMock()
    return driver


# ============ RenderedHtmlDriver ============

def test_find_all_rejects_malformed_selector():
    driver = RenderedHtmlDriver('<div></div>')

    with pytest.raises(SelectorError):
        driver.find_all('div[')


def test_find_all_without_page_is_element_error():
    with pytest.raises(ElementError):
        RenderedHtmlDriver().find_all('div')


def test_find_all_inside_text_node_is_element_error():
    driver = RenderedHtmlDriver('<p>plain</p>')
    text_node = driver.find_all('p')[0].contents[0]

    with pytest.raises(ElementError):
        driver.find_all('span', within=text_node)


def test_text_normalizes_whitespace():
    driver = RenderedHtmlDriver('<div id="d">\n  Apple   iPhone<span>15</span>\n (Black)</div>')

    assert driver.text(driver.find_all('#d')[0]) == 'Apple iPhone 15 (Black)'


def test_base_driver_cannot_navigate():
    driver = RenderedHtmlDriver('<p></p>', HOME_URL)

    with pytest.raises(NavigationError):
        driver.navigate(SEARCH_URL)


def test_press_enter_submits_owning_form():
    driver = RenderedHtmlDriver(listing_page([]), HOME_URL)
    driver.navigate = MagicMock()
    search_box = driver.find_all('input[name="q"]')[0]

    driver.submit_text(search_box, 'electronics')
    driver.press_enter(search_box)

    driver.navigate.assert_called_once_with(SEARCH_URL)


def test_press_enter_includes_hidden_fields_and_skips_unchecked_boxes():
    html = (
        '<form action="https://shop.example.com/find">'
        '<input type="hidden" name="marketplace" value="FLIPKART">'
        '<input type="checkbox" name="assured">'
        '<input type="checkbox" name="instock" checked value="1">'
        '<input name="q" value="">'
        '<input type="submit" name="go" value="Go">'
        '</form>'
    )
    driver = RenderedHtmlDriver(html, HOME_URL)
    driver.navigate = MagicMock()
    search_box = driver.find_all('input[name="q"]')[0]

    driver.submit_text(search_box, 'usb hub')
    driver.press_enter(search_box)

    driver.navigate.assert_called_once_with(
        'https://shop.example.com/find?marketplace=FLIPKART&instock=1&q=usb+hub'
    )


def test_press_enter_without_form_uses_search_path():
    driver = RenderedHtmlDriver('<input class="search-box" name="query">', HOME_URL)
    driver.navigate = MagicMock()
    search_box = driver.find_all('input')[0]

    driver.submit_text(search_box, 'tv')
    driver.press_enter(search_box)

    driver.navigate.assert_called_once_with('https://www.flipkart.com/search?query=tv')


def test_press_enter_rejects_post_forms():
    driver = RenderedHtmlDriver('<form method="post" action="/search"><input name="q"></form>', HOME_URL)
    search_box = driver.find_all('input')[0]

    with pytest.raises(NavigationError):
        driver.press_enter(search_box)


def test_submit_text_appends_to_existing_value():
    driver = RenderedHtmlDriver('<input name="q" value="smart ">')
    search_box = driver.find_all('input')[0]

    driver.submit_text(search_box, 'watch')

    assert search_box['value'] == 'smart watch'


# ============ RenderWorkerDriver ============

def test_render_worker_loads_rendered_html():
    driver = started_worker()
    driver.session.post.return_value = render_response({
        'results': [{'url': SEARCH_URL, 'status': 'success', 'html': RENDERED}]
    })

    driver.navigate(SEARCH_URL)

    assert driver.current_url() == SEARCH_URL
    assert driver.text(driver.find_all('div.slAVV4')[0]) == 'Rendered tile'
    driver.session.post.assert_called_once_with(
        'https://render.example.com/render', json={'urls': [SEARCH_URL]}, timeout=driver.timeout
    )


def test_render_worker_accepts_bare_list_response():
    driver = started_worker()
    driver.session.post.return_value = render_response([
        {'url': 'https://other.example.com', 'status': 'success', 'html': '<p>other</p>'},
        {'url': SEARCH_URL, 'status': 'success', 'html': RENDERED},
    ])

    driver.navigate(SEARCH_URL)

    assert len(driver.find_all('div.slAVV4')) == 1


def test_render_worker_failed_status_is_navigation_error():
    driver = started_worker(max_retries=1)
    driver.session.post.return_value = render_response({
        'results': [{'url': SEARCH_URL, 'status': 'error', 'error': 'net::ERR_TIMED_OUT', 'errorType': 'timeout'}]
    })

    with pytest.raises(NavigationError, match='ERR_TIMED_OUT'):
        driver.navigate(SEARCH_URL)


@patch('page_driver.time.sleep')
def test_render_worker_timeout_retries_then_navigation_error(mock_sleep):
    driver = started_worker(max_retries=3)
    driver.session.post.side_effect = requests.exceptions.Timeout('read timed out')

    with pytest.raises(NavigationError):
        driver.navigate(SEARCH_URL)

    assert driver.session.post.call_count == 3
    assert mock_sleep.call_count == 2


@patch('page_driver.time.sleep')
def test_render_worker_retry_recovers(mock_sleep):
    driver = started_worker(max_retries=2)
    driver.session.post.side_effect = [
        requests.exceptions.Timeout('read timed out'),
        render_response({'results': [{'url': SEARCH_URL, 'status': 'success', 'html': RENDERED}]}),
    ]

    driver.navigate(SEARCH_URL)

    assert driver.current_url() == SEARCH_URL


@patch('page_driver.time.sleep')
def test_render_worker_unreachable_service_is_driver_error(mock_sleep):
    driver = started_worker(max_retries=2)
    driver.session.post.side_effect = requests.exceptions.ConnectionError('refused')

    with pytest.raises(DriverError):
        driver.navigate(SEARCH_URL)


def test_render_worker_requires_start():
    driver = RenderWorkerDriver(api_url='https://render.example.com/render', cache_dir=None)

    with pytest.raises(DriverError):
        driver.navigate(SEARCH_URL)


def test_render_worker_start_requires_api_url():
    with pytest.raises(DriverError):
        RenderWorkerDriver(api_url='', cache_dir=None).start()


def test_render_worker_start_and_close_manage_session():
    driver = RenderWorkerDriver(api_url='https://render.example.com/render', cache_dir=None)

    driver.start()
    assert isinstance(driver.session, requests.Session)

    driver.close()
    assert driver.session is None


def test_render_worker_caches_html(tmp_path):
    driver = started_worker(tmp_path)
    driver.session.post.return_value = render_response({
        'results': [{'url': SEARCH_URL, 'status': 'success', 'html': RENDERED}]
    })

    driver.navigate(SEARCH_URL)

    cached = list(tmp_path.glob('flipkart_*.html'))
    assert len(cached) == 1
    assert cached[0].read_text(encoding='utf-8') == RENDERED


def test_render_worker_cache_write_failure_keeps_page(tmp_path):
    # Cache directory was never created, so the write raises FileNotFoundError
    driver = started_worker(tmp_path / 'missing' / 'cache')
    driver.session.post.return_value = render_response({
        'results': [{'url': SEARCH_URL, 'status': 'success', 'html': RENDERED}]
    })

    driver.navigate(SEARCH_URL)

    assert driver.current_url() == SEARCH_URL
    assert driver.text(driver.find_all('div.slAVV4')[0]) == 'Rendered tile'
    assert not (tmp_path / 'missing').exists()


# ============ open_driver ============

class TrackingDriver(PageDriver):
    def __init__(self):
        self.events = []

    def start(self):
        self.events.append('start')

    def close(self):
        self.events.append('close')


def test_open_driver_closes_after_error():
    driver = TrackingDriver()

    with pytest.raises(DriverError):
        with open_driver(driver):
            raise DriverError('browser crashed')

    assert driver.events == ['start', 'close']


def test_open_driver_closes_when_start_fails():
    driver = TrackingDriver()

    def failing_start():
        raise DriverError('cannot start')

    driver.start = failing_start

    with pytest.raises(DriverError):
        with open_driver(driver):
            pass

    assert driver.events == ['close']
