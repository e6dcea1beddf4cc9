from datetime import datetime
from unittest.mock import MagicMock

import pytest

import api_server
from conftest import SEARCH_URL, listing_page, numbered_tiles, product_tile
from models import NavigationResult, NavigationState, ProductRecord
from page_driver import DriverError
from product_store import SaveReport


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(api_server, 'MAX_WORKERS', 4)
    monkeypatch.setattr(api_server, 'MAX_PRODUCTS_PER_PAGE', 20)
    monkeypatch.setattr(api_server, 'get_store', lambda: None)
    api_server.app.config['TESTING'] = True
    with api_server.app.test_client() as test_client:
        yield test_client


def stored(name, product_id):
    stamp = datetime(2024, 5, 1, 12, 30)
    return ProductRecord(name=name, price='₹999', created_at=stamp, updated_at=stamp, product_id=product_id)


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'


def test_extract_single_page(client):
    html = listing_page([product_tile(name='Gaming Mouse', price='₹1,099', rating='4.4')])

    response = client.post('/extract', json={'html': html, 'url': SEARCH_URL})

    data = response.get_json()
    assert response.status_code == 200
    assert data['total_products'] == 1
    product = data['results'][0]['products'][0]
    assert product['name'] == 'Gaming Mouse'
    assert product['rating'] == '4.4'
    assert data['total_saved_to_db'] == 0


def test_extract_batch_keeps_request_order(client):
    pages = [
        {'html': listing_page(numbered_tiles(count)), 'url': f'https://example.com/page/{count}'}
        for count in (3, 1, 2)
    ]

    response = client.post('/extract', json={'html_contents': pages, 'max_workers': 3})

    data = response.get_json()
    assert response.status_code == 200
    assert [r['url'] for r in data['results']] == [p['url'] for p in pages]
    assert [r['num_products'] for r in data['results']] == [3, 1, 2]
    assert data['total_products'] == 6
    assert data['max_workers_used'] == 3


def test_extract_page_without_products_reports_container_miss(client):
    response = client.post('/extract', json={'html': '<html><body></body></html>', 'url': SEARCH_URL})

    result = response.get_json()['results'][0]
    assert result['success'] is False
    assert result['failures'][0]['kind'] == 'container_miss'


def test_extract_saves_when_requested(client, monkeypatch):
    store = MagicMock()
    store.save_products.side_effect = lambda records: SaveReport(
        saved=[r.with_id(i) for i, r in enumerate(records, 100)]
    )
    monkeypatch.setattr(api_server, 'get_store', lambda: store)

    response = client.post('/extract', json={'html': listing_page(numbered_tiles(2)), 'url': SEARCH_URL, 'save': True})

    data = response.get_json()
    assert data['total_saved_to_db'] == 2
    assert [p['product_id'] for p in data['results'][0]['products']] == [100, 101]


@pytest.mark.parametrize('body', [
    {},
    {'html': ''},
    {'html_contents': []},
    {'html_contents': 'not-a-list'},
    {'html_contents': ['<html></html>']},
    {'unexpected': True},
])
def test_extract_rejects_bad_requests(client, body):
    response = client.post('/extract', json=body)

    assert response.status_code == 400
    assert response.get_json()['success'] is False


def test_extract_rejects_oversized_batch(client, monkeypatch):
    monkeypatch.setattr(api_server, 'MAX_BATCH_SIZE', 2)
    pages = [{'html': '<p></p>', 'url': f'https://example.com/{i}'} for i in range(3)]

    response = client.post('/extract', json={'html_contents': pages})

    assert response.status_code == 400


def test_scrape_returns_navigation_result(client, monkeypatch):
    result = NavigationResult(
        products=[stored('Desk Lamp', None)],
        state=NavigationState.CATEGORY_FALLBACK,
        source_url='https://www.flipkart.com/home-lighting/pr',
    )
    scrape = MagicMock(return_value=result)
    monkeypatch.setattr(api_server, 'scrape_products', scrape)

    response = client.post('/scrape', json={'query': 'lamps'})

    data = response.get_json()
    assert response.status_code == 200
    assert data['state'] == 'category_fallback'
    assert data['num_products'] == 1
    assert scrape.call_args.kwargs['query'] == 'lamps'


def test_scrape_driver_failure_is_bad_gateway(client, monkeypatch):
    monkeypatch.setattr(api_server, 'scrape_products', MagicMock(side_effect=DriverError('render service down')))

    response = client.post('/scrape', json={})

    assert response.status_code == 502


def test_scrape_save_without_store_is_unavailable(client):
    response = client.post('/scrape', json={'save': True})

    assert response.status_code == 503


def test_products_without_store_is_unavailable(client):
    assert client.get('/products').status_code == 503
    assert client.get('/products/1').status_code == 503


def test_list_and_get_products(client, monkeypatch):
    store = MagicMock()
    store.list_all.return_value = [stored('Kettle', 1), stored('Toaster', 2)]
    store.get_by_id.side_effect = lambda product_id: stored('Toaster', 2) if product_id == 2 else None
    monkeypatch.setattr(api_server, 'get_store', lambda: store)

    listing = client.get('/products').get_json()
    assert [p['name'] for p in listing['products']] == ['Kettle', 'Toaster']

    found = client.get('/products/2')
    assert found.status_code == 200
    assert found.get_json()['product']['product_id'] == 2

    assert client.get('/products/99').status_code == 404


def test_config_roundtrip(client):
    response = client.post('/config', json={'max_workers': 8, 'max_products_per_page': 10})

    assert response.status_code == 200
    assert client.get('/config').get_json() == {'max_workers': 8, 'max_products_per_page': 10}


def test_config_caps_products_per_page_for_extraction(client):
    client.post('/config', json={'max_products_per_page': 2})

    response = client.post('/extract', json={'html': listing_page(numbered_tiles(5)), 'url': SEARCH_URL})

    assert response.get_json()['total_products'] == 2


@pytest.mark.parametrize('body', [{'max_workers': 0}, {'max_workers': 'many'}, {'max_products_per_page': 500}])
def test_config_rejects_invalid_values(client, body):
    assert client.post('/config', json=body).status_code == 400


@pytest.mark.parametrize('save', ['false', 'true', 1, None])
def test_scrape_rejects_non_boolean_save(client, monkeypatch, save):
    scrape = MagicMock()
    monkeypatch.setattr(api_server, 'scrape_products', scrape)

    response = client.post('/scrape', json={'save': save})

    assert response.status_code == 400
    assert response.get_json()['error'] == 'save must be a boolean'
    scrape.assert_not_called()


def test_extract_rejects_non_boolean_save(client):
    response = client.post('/extract', json={'html': listing_page(numbered_tiles(1)), 'url': SEARCH_URL, 'save': 'false'})

    assert response.status_code == 400


def test_scrape_with_save_false_runs_without_store(client, monkeypatch):
    monkeypatch.setattr(api_server, 'scrape_products', MagicMock(return_value=NavigationResult()))

    response = client.post('/scrape', json={'save': False})

    assert response.status_code == 200
    assert response.get_json()['saved_to_db'] == 0
