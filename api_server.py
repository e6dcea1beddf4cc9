"""
Flask API Server - Product Listing Scraper
==========================================
HTTP access to the extraction engine and the product store.

Features:
- Extract products from posted rendered HTML (single or batch)
- Run a full scrape through the render service
- List and look up stored products
"""

from flask import Flask, request, jsonify
from flask_cors import CORS
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Any, Dict, Optional
import logging
from datetime import datetime
import traceback
import os

from config import SUPABASE_URL, SUPABASE_KEY
from api_config import (
    MAX_WORKERS as DEFAULT_MAX_WORKERS,
    MAX_PRODUCTS_PER_PAGE as DEFAULT_MAX_PRODUCTS,
    FLASK_HOST,
    FLASK_PORT,
    FLASK_DEBUG,
    MAX_BATCH_SIZE
)
from page_driver import DriverError
from product_extractor import ProductExtractor, load_selector_sets
from product_store import ProductStore, StorageError, create_store
from scraper_worker import scrape_products

# Initialize Flask app
app = Flask(__name__)
CORS(app)  # Enable CORS for all routes

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Selector chains are static for the lifetime of the server
SELECTOR_SETS = load_selector_sets()

# Configuration (can be updated via API)
MAX_WORKERS = DEFAULT_MAX_WORKERS
MAX_PRODUCTS_PER_PAGE = DEFAULT_MAX_PRODUCTS

_store: Optional[ProductStore] = None
_store_lock = Lock()


def get_store() -> Optional[ProductStore]:
    """Return the shared product store, or None when Supabase is not configured."""
    global _store

    with _store_lock:
        if _store is None and SUPABASE_URL and SUPABASE_KEY:
            try:
                _store = create_store()
            except Exception as e:
                logger.warning(f"Failed to initialize Supabase client: {e}")
                _store = None
    return _store


def get_extractor() -> ProductExtractor:
    return ProductExtractor(selector_sets=SELECTOR_SETS, max_products=MAX_PRODUCTS_PER_PAGE)


def _error(message: str, status: int):
    return jsonify({'success': False, 'error': message}), status


def extract_products_from_html(html_content: str, source_url: str, save: bool = False) -> Dict[str, Any]:
    """
    Extract products from a single rendered HTML page.

    Args:
        html_content: Rendered HTML string
        source_url: Source URL of the HTML
        save: Save the extracted products to Supabase

    Returns:
        Dict with products list and extraction diagnostics
    """
    try:
        extraction = get_extractor().extract_html(html_content, source_url)
        result = extraction.to_dict()

        saved_count = 0
        store = get_store() if save else None
        if store and extraction.products:
            report = store.save_products(extraction.products)
            saved_count = report.saved_count
            result['products'] = [record.to_dict() for record in report.saved] + [
                record.to_dict() for record, _ in report.failed
            ]
        elif save:
            logger.warning("Supabase client not initialized. Skipping database save.")

        result['saved_to_db'] = saved_count
        return result
    except Exception as e:
        logger.error(f"Error extracting products from {source_url}: {e}", exc_info=True)
        return {
            'url': source_url,
            'success': False,
            'num_products': 0,
            'products': [],
            'error': f"{type(e).__name__}: {str(e)}",
            'saved_to_db': 0
        }


@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return jsonify({
        'status': 'healthy',
        'service': 'Product Listing Scraper API',
        'timestamp': datetime.now().isoformat()
    })


@app.route('/extract', methods=['POST'])
def extract_products():
    """
    Extract products from rendered HTML.

    Request body (single page):
    {
        "html": "<html>...</html>",
        "url": "https://www.flipkart.com/search?q=electronics",
        "save": false
    }

    Request body (batch):
    {
        "html_contents": [
            {"html": "<html>...</html>", "url": "https://..."},
            ...
        ],
        "max_workers": 4,
        "save": false
    }

    Results are returned in request order.
    """
    start_time = datetime.now()

    try:
        data = request.get_json(silent=True)

        if not data:
            return _error('No JSON data provided', 400)

        save = data.get('save', False)
        if not isinstance(save, bool):
            return _error('save must be a boolean', 400)

        if 'html' in data:
            html_content = data.get('html', '')
            source_url = data.get('url', '')

            if not html_content:
                return _error('HTML content is required', 400)

            result = extract_products_from_html(html_content, source_url, save)
            processing_time = (datetime.now() - start_time).total_seconds()

            return jsonify({
                'success': True,
                'results': [result],
                'total_processed': 1,
                'total_products': result['num_products'],
                'total_saved_to_db': result.get('saved_to_db', 0),
                'processing_time_seconds': round(processing_time, 2)
            })

        elif 'html_contents' in data:
            html_contents = data.get('html_contents', [])
            max_workers = data.get('max_workers', MAX_WORKERS)

            if not isinstance(html_contents, list):
                return _error('html_contents must be an array', 400)

            if not html_contents:
                return _error('html_contents array is required', 400)

            if len(html_contents) > MAX_BATCH_SIZE:
                return _error(
                    f'Batch size exceeds maximum of {MAX_BATCH_SIZE}. Received {len(html_contents)} items.',
                    400
                )

            if not all(isinstance(item, dict) for item in html_contents):
                return _error('Each html_contents item must be an object with "html" and "url"', 400)

            try:
                max_workers = min(max(int(max_workers), 1), 20)  # Cap at 20 for safety
            except (ValueError, TypeError):
                max_workers = MAX_WORKERS

            logger.info(f"Processing {len(html_contents)} pages with {max_workers} workers")

            # One driver per page; map keeps request order
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                results = list(executor.map(
                    lambda item: extract_products_from_html(
                        item.get('html', ''),
                        item.get('url', ''),
                        save
                    ),
                    html_contents
                ))

            total_products = sum(r.get('num_products', 0) for r in results)
            total_saved = sum(r.get('saved_to_db', 0) for r in results)
            processing_time = (datetime.now() - start_time).total_seconds()

            return jsonify({
                'success': True,
                'results': results,
                'total_processed': len(results),
                'total_products': total_products,
                'total_saved_to_db': total_saved,
                'processing_time_seconds': round(processing_time, 2),
                'max_workers_used': max_workers
            })

        else:
            return _error(
                'Invalid request format. Provide either {"html": "...", "url": "..."} or {"html_contents": [...]}',
                400
            )

    except Exception as e:
        logger.error(f"Error in extract_products endpoint: {e}", exc_info=True)
        return jsonify({
            'success': False,
            'error': f"{type(e).__name__}: {str(e)}",
            'traceback': traceback.format_exc() if app.debug else None
        }), 500


@app.route('/scrape', methods=['POST'])
def scrape():
    """
    Run a full scrape through the render service.

    Request body (optional):
    {
        "query": "electronics",
        "save": true
    }
    """
    start_time = datetime.now()
    data = request.get_json(silent=True) or {}
    query = data.get('query')
    save = data.get('save', False)
    if not isinstance(save, bool):
        return _error('save must be a boolean', 400)

    store = None
    if save:
        store = get_store()
        if store is None:
            return _error('Product store is not configured', 503)

    try:
        result = scrape_products(query=query, extractor=get_extractor())
    except DriverError as e:
        logger.error(f"Render driver failed: {e}", exc_info=True)
        return _error(f"Driver error: {e}", 502)
    except Exception as e:
        logger.error(f"Error in scrape endpoint: {e}", exc_info=True)
        return jsonify({
            'success': False,
            'error': f"{type(e).__name__}: {str(e)}",
            'traceback': traceback.format_exc() if app.debug else None
        }), 500

    response = result.to_dict()
    response['saved_to_db'] = 0
    if store and result.products:
        report = store.save_products(result.products)
        response['saved_to_db'] = report.saved_count
        response['failed_to_save'] = report.failed_count

    response['success'] = True
    response['processing_time_seconds'] = round((datetime.now() - start_time).total_seconds(), 2)
    return jsonify(response)


@app.route('/products', methods=['GET'])
def list_products():
    """List stored products."""
    store = get_store()
    if store is None:
        return _error('Product store is not configured', 503)

    try:
        products = store.list_all()
    except StorageError as e:
        logger.error(f"Error listing products: {e}")
        return _error(str(e), 500)

    return jsonify({
        'success': True,
        'num_products': len(products),
        'products': [product.to_dict() for product in products]
    })


@app.route('/products/<int:product_id>', methods=['GET'])
def get_product(product_id: int):
    """Look up one stored product."""
    store = get_store()
    if store is None:
        return _error('Product store is not configured', 503)

    try:
        product = store.get_by_id(product_id)
    except StorageError as e:
        logger.error(f"Error retrieving product {product_id}: {e}")
        return _error(str(e), 500)

    if product is None:
        return _error(f'Product {product_id} not found', 404)

    return jsonify({'success': True, 'product': product.to_dict()})


@app.route('/config', methods=['GET', 'POST'])
def config_endpoint():
    """
    Get or update configuration.

    GET: Returns current configuration
    POST: Updates configuration
    {
        "max_workers": 4,
        "max_products_per_page": 20
    }
    """
    global MAX_WORKERS, MAX_PRODUCTS_PER_PAGE

    if request.method == 'GET':
        return jsonify({
            'max_workers': MAX_WORKERS,
            'max_products_per_page': MAX_PRODUCTS_PER_PAGE
        })

    data = request.get_json(silent=True) or {}

    if 'max_workers' in data:
        try:
            max_workers = int(data['max_workers'])
        except (ValueError, TypeError):
            return _error('max_workers must be an integer', 400)
        if not 1 <= max_workers <= 20:
            return _error('max_workers must be between 1 and 20', 400)
        MAX_WORKERS = max_workers

    if 'max_products_per_page' in data:
        try:
            max_products = int(data['max_products_per_page'])
        except (ValueError, TypeError):
            return _error('max_products_per_page must be an integer', 400)
        if not 1 <= max_products <= 100:
            return _error('max_products_per_page must be between 1 and 100', 400)
        MAX_PRODUCTS_PER_PAGE = max_products

    return jsonify({
        'success': True,
        'message': 'Configuration updated',
        'config': {
            'max_workers': MAX_WORKERS,
            'max_products_per_page': MAX_PRODUCTS_PER_PAGE
        }
    })


if __name__ == '__main__':
    port = int(os.getenv('PORT', FLASK_PORT))
    logger.info(f"Starting Product Listing Scraper API on {FLASK_HOST}:{port}")
    logger.info(f"Default max_workers: {MAX_WORKERS}, max_products_per_page: {MAX_PRODUCTS_PER_PAGE}")
    logger.info(f"Environment: {os.getenv('ENVIRONMENT', 'development')}")
    app.run(host=FLASK_HOST, port=port, debug=FLASK_DEBUG)
