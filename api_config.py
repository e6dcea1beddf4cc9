"""
API Configuration
================
Configuration settings for the Flask API server.
Loads from environment variables with fallback defaults.
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Maximum number of pages extracted in parallel for a batch request
# Example: If you send 20 pages with max_workers=4,
#          4 will be processed at a time, the rest wait in queue
MAX_WORKERS = int(os.getenv('MAX_WORKERS', '4'))

# Maximum product containers processed per page
MAX_PRODUCTS_PER_PAGE = int(os.getenv('MAX_PRODUCTS_PER_PAGE', '20'))

# Flask server configuration
FLASK_HOST = os.getenv('FLASK_HOST', '0.0.0.0')
FLASK_PORT = int(os.getenv('FLASK_PORT', '5000'))
FLASK_DEBUG = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'

# Maximum number of pages allowed in a single batch request
# Different from MAX_WORKERS:
#   - MAX_BATCH_SIZE = how many pages you can send in one request (input limit)
#   - MAX_WORKERS = how many pages are processed in parallel (concurrency)
MAX_BATCH_SIZE = int(os.getenv('MAX_BATCH_SIZE', '50'))
