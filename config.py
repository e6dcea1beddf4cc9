"""
Configuration - Product Listing Scraper
=======================================
Centralized configuration for the render driver, extraction engine,
navigation plan and product store.
"""

from pathlib import Path
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# ============ Environment Detection ============
ENVIRONMENT = os.getenv('ENVIRONMENT', 'development').lower()
IS_PRODUCTION = ENVIRONMENT == 'production'

# ============ Render Service Configuration ============

# Chrome Worker API endpoint that returns fully rendered HTML
RENDER_API_URL = os.getenv(
    'RENDER_API_URL',
    'https://chromeworkers-production.up.railway.app/render'
)

# Timeout for one render request (seconds)
API_TIMEOUT = int(os.getenv('API_TIMEOUT', '120'))

# Maximum retry attempts for failed render requests
MAX_RETRIES = int(os.getenv('MAX_RETRIES', '2'))

# Delay between retries (seconds), doubled on each attempt
RETRY_DELAY = int(os.getenv('RETRY_DELAY', '2'))

# ============ Extraction Configuration ============

# Maximum product containers processed per page
MAX_PRODUCTS_PER_PAGE = int(os.getenv('MAX_PRODUCTS_PER_PAGE', '20'))

# Extracted text must be longer than this to count as a match
MIN_TEXT_LENGTH = int(os.getenv('MIN_TEXT_LENGTH', '2'))

# Union matches of every container selector instead of first-match-wins
MERGE_CONTAINER_MATCHES = os.getenv('MERGE_CONTAINER_MATCHES', 'False').lower() == 'true'

# Optional JSON file overriding the built-in selector sets
SELECTOR_CONFIG_PATH = os.getenv('SELECTOR_CONFIG_PATH', '')

# ============ Navigation Configuration ============

HOME_URL = os.getenv('HOME_URL', 'https://www.flipkart.com')

# Query typed into the site search box
SEARCH_QUERY = os.getenv('SEARCH_QUERY', 'electronics')

# Direct listing URLs tried in order when search yields nothing
_DEFAULT_FALLBACK_URLS = [
    'https://www.flipkart.com/electronics/pr?sid=6bo%2Cg0v&marketplace=FLIPKART',
    'https://www.flipkart.com/electronics-store',
    'https://www.flipkart.com/mobiles/pr?sid=tyy%2C4io&marketplace=FLIPKART',
    'https://www.flipkart.com/search?q=electronics&otracker=search&otracker1=search&marketplace=FLIPKART',
]
FALLBACK_URLS = [
    url.strip() for url in os.getenv('FALLBACK_URLS', '').split(',') if url.strip()
] or _DEFAULT_FALLBACK_URLS

# ============ Supabase Configuration ============

SUPABASE_URL = os.getenv('SUPABASE_URL', '')
SUPABASE_KEY = os.getenv('SUPABASE_KEY', '')
PRODUCTS_TABLE = os.getenv('PRODUCTS_TABLE', 'products')

# ============ Storage Configuration ============

# Whether to save rendered HTML (disabled in production by default)
SAVE_HTML_CACHE = os.getenv('SAVE_HTML_CACHE', 'False' if IS_PRODUCTION else 'True').lower() == 'true'

# Whether to save run results to files (disabled in production by default)
SAVE_RESULTS = os.getenv('SAVE_RESULTS', 'False' if IS_PRODUCTION else 'True').lower() == 'true'

# Whether to save logs to files
SAVE_LOGS = os.getenv('SAVE_LOGS', 'True').lower() == 'true'

# ============ Directory Configuration ============

BASE_DIR = Path.cwd()

HTML_CACHE_DIR = BASE_DIR / "html_cache" if SAVE_HTML_CACHE else None

RESULTS_DIR = BASE_DIR / "results" if SAVE_RESULTS else None

LOGS_DIR = BASE_DIR / "logs" if SAVE_LOGS else None

# ============ Logging Configuration ============

# Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# Whether to log to file (uses SAVE_LOGS setting)
LOG_TO_FILE = SAVE_LOGS


# ============ Render API Request Format ============
# Example payload structure for reference:
"""
{
  "urls": ["https://www.flipkart.com/search?q=electronics"]
}

Expected response format:
{
  "results": [
    {
      "url": "https://www.flipkart.com/search?q=electronics",
      "html": "<html>...</html>",
      "status": "success"
    }
  ]
}

OR simple array format:
[
  {
    "url": "https://www.flipkart.com/search?q=electronics",
    "html": "<html>...</html>",
    "status": "success"
  }
]
"""
