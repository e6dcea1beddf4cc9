"""
Product Store - Product Listing Scraper
=======================================
Supabase persistence for scraped product records.

Table layout (PRODUCTS_TABLE):
    product_id    bigint generated always as identity primary key
    name          text not null
    price         text
    rating        text
    description   text
    created_date  timestamptz
    updated_date  timestamptz
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from supabase import create_client, Client

from config import SUPABASE_URL, SUPABASE_KEY, PRODUCTS_TABLE
from models import ProductRecord

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A product could not be stored or read."""


@dataclass
class SaveReport:
    saved: List[ProductRecord] = field(default_factory=list)
    failed: List[Tuple[ProductRecord, str]] = field(default_factory=list)

    @property
    def saved_count(self) -> int:
        return len(self.saved)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


def _is_connection_error(error: Exception) -> bool:
    error_type = type(error).__name__
    error_msg = str(error)
    return (
        'RemoteProtocolError' in error_type
        or 'Connection' in error_type
        or 'Server disconnected' in error_msg
    )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            logger.debug(f"Unparseable timestamp: {value}")
    return datetime.now()


class ProductStore:
    """Stores and reads ProductRecords through a Supabase client."""

    def __init__(self, client: Client, table: str = PRODUCTS_TABLE, max_retries: int = 3):
        self.client = client
        self.table = table
        self.max_retries = max(1, max_retries)

    @staticmethod
    def _to_row(record: ProductRecord) -> Dict[str, Any]:
        return {
            'name': record.name,
            'price': record.price,
            'rating': record.rating,
            'description': record.description,
            'created_date': record.created_at.isoformat(),
            'updated_date': record.updated_at.isoformat(),
        }

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> ProductRecord:
        return ProductRecord(
            name=row.get('name') or '',
            price=row.get('price') or '',
            rating=row.get('rating') or '',
            description=row.get('description') or '',
            created_at=_parse_timestamp(row.get('created_date')),
            updated_at=_parse_timestamp(row.get('updated_date')),
            product_id=row.get('product_id'),
        )

    def test_connection(self) -> bool:
        """Check that the products table can be queried."""
        try:
            self.client.table(self.table).select('product_id').limit(1).execute()
            return True
        except Exception as e:
            logger.error(f"Database connection error: {type(e).__name__}: {e}")
            return False

    def insert(self, record: ProductRecord) -> int:
        """
        Insert one product.

        Args:
            record: Product to store

        Returns:
            Generated product_id

        Raises:
            StorageError: insert failed after retries or returned no row
        """
        row = self._to_row(record)

        for attempt in range(self.max_retries):
            try:
                result = self.client.table(self.table).insert(row).execute()
            except Exception as e:
                if _is_connection_error(e) and attempt < self.max_retries - 1:
                    wait_time = 1.0 * (2 ** attempt)
                    logger.warning(
                        f"Connection error (attempt {attempt + 1}/{self.max_retries}): "
                        f"{type(e).__name__}. Retrying in {wait_time}s..."
                    )
                    time.sleep(wait_time)
                    continue
                raise StorageError(f"Error inserting product: {type(e).__name__}: {e}") from e

            if not result.data:
                raise StorageError(f"Insert returned no data for product: {record.name}")

            product_id = result.data[0].get('product_id')
            if product_id is None:
                raise StorageError(f"Insert returned no product_id for product: {record.name}")
            return int(product_id)

        raise StorageError(f"Failed to insert product after {self.max_retries} attempts: {record.name}")

    def save_products(self, records: List[ProductRecord]) -> SaveReport:
        """Insert records one by one; a failed insert never stops the batch."""
        report = SaveReport()

        for record in records:
            try:
                product_id = self.insert(record)
            except StorageError as e:
                logger.error(f"[FAIL] Failed to save: {record.name} - {e}")
                report.failed.append((record, str(e)))
                continue

            report.saved.append(record.with_id(product_id))
            logger.info(f"[OK] Saved: {record.name} (ID: {product_id})")

        if report.failed:
            logger.warning(f"Encountered {report.failed_count} errors while saving to Supabase")
        return report

    def list_all(self) -> List[ProductRecord]:
        """Return every stored product ordered by product_id."""
        try:
            result = self.client.table(self.table).select('*').order('product_id').execute()
        except Exception as e:
            raise StorageError(f"Error retrieving products: {type(e).__name__}: {e}") from e
        return [self._from_row(row) for row in result.data or []]

    def get_by_id(self, product_id: int) -> Optional[ProductRecord]:
        """Return one stored product, or None when it does not exist."""
        try:
            result = (
                self.client.table(self.table)
                .select('*')
                .eq('product_id', product_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise StorageError(f"Error retrieving product by ID: {type(e).__name__}: {e}") from e

        if not result.data:
            return None
        return self._from_row(result.data[0])


def create_store(url: str = SUPABASE_URL, key: str = SUPABASE_KEY, table: str = PRODUCTS_TABLE) -> ProductStore:
    """
    Build a ProductStore from Supabase credentials.

    Raises:
        ValueError: credentials are missing
    """
    if not url or not key:
        error_msg = "Supabase credentials not provided. Set SUPABASE_URL and SUPABASE_KEY environment variables."
        logger.error(error_msg)
        logger.error(f"SUPABASE_URL present: {bool(url)}")
        logger.error(f"SUPABASE_KEY present: {bool(key)}")
        raise ValueError(error_msg)

    client = create_client(url, key)
    logger.info("Supabase client initialized successfully")
    return ProductStore(client, table=table)
