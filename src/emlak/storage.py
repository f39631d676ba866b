"""Record sinks: JSON Lines dataset, Baserow table, and the pipeline feeding them."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx

from emlak.config import settings
from emlak.constants import DEFAULT_CURRENCY
from emlak.errors import SinkError
from emlak.models import ListingRecord

logger = logging.getLogger(__name__)


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class RecordSink(ABC):
    """Destination for extracted listing records."""

    name = "sink"

    @abstractmethod
    async def save(self, record: ListingRecord) -> None:
        """Persist one record.

        Raises:
            SinkError: if the record could not be stored
        """

    async def save_batch(self, records: Sequence[ListingRecord]) -> int:
        """Persist records in order; returns how many were stored."""
        for record in records:
            await self.save(record)
        return len(records)

    async def close(self) -> None:
        """Release resources held by the sink."""


class DatasetSink(RecordSink):
    """Appends records to a JSON Lines file, one object per line."""

    name = "dataset"

    def __init__(self, path: str = settings.OUTPUT_PATH):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.count = 0
        self._lock = asyncio.Lock()

    def _line(self, record: ListingRecord) -> str:
        return json.dumps(record.to_dict(), ensure_ascii=False, cls=DateTimeEncoder)

    async def save(self, record: ListingRecord) -> None:
        await self.save_batch([record])

    async def save_batch(self, records: Sequence[ListingRecord]) -> int:
        if not records:
            return 0
        lines = [self._line(r) for r in records]
        async with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    for line in lines:
                        f.write(line + "\n")
            except OSError as e:
                raise SinkError(f"Could not write dataset {self.path}: {e}") from e
            self.count += len(lines)
        logger.debug(f"Wrote {len(lines)} record(s) to {self.path}")
        return len(lines)

    def read_all(self) -> List[Dict[str, Any]]:
        """Load every record written so far."""
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


def prepare_row(record: ListingRecord) -> Dict[str, Any]:
    """Map a record onto the Baserow table's user field names."""
    now = datetime.now().isoformat()
    return {
        "listing_id": record.id or "",
        "url": record.url or "",
        "title": record.title or "",
        "price": record.price or 0,
        "price_currency": record.price_currency or DEFAULT_CURRENCY,
        "location": record.location or "",
        "description": record.description or "",
        "date": record.date or "",
        "rooms": record.rooms or "",
        "size": record.size or "",
        "building_age": record.building_age or "",
        "floor": record.floor or "",
        "total_floors": record.total_floors or "",
        "heating": record.heating or "",
        "furnished": record.furnished or "",
        "usage_status": record.usage or "",
        "in_site": record.in_site or "",
        "dues": record.dues or "",
        "deed_status": record.deed_status or "",
        "credit_eligible": record.credit_eligible or "",
        "seller": record.seller or "",
        "images": json.dumps(record.images or [], ensure_ascii=False),
        "all_info": json.dumps(record.info or {}, ensure_ascii=False),
        "scraped_at": record.scraped_at or now,
        "last_updated": now,
    }


class BaserowSink(RecordSink):
    """
    Upserts records into a Baserow table, keyed on ``listing_id``.

    An existing row is located with the table's full-text search and an
    exact, case-sensitive match on ``listing_id``; it is PATCHed in place,
    otherwise a new row is POSTed.
    """

    name = "baserow"

    def __init__(
        self,
        api_token: str,
        table_id: str,
        database_id: Optional[str] = None,
        api_url: str = settings.BASEROW_API_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize Baserow sink.

        Args:
            api_token: Baserow database token
            table_id: Target table id
            database_id: Database id (informational)
            api_url: API base URL
            client: Pre-built httpx client (owned by the caller)
            timeout: Request timeout in seconds for the sink's own client
        """
        if not api_token:
            raise ValueError("Baserow API token is required")
        if not table_id:
            raise ValueError("Baserow table ID is required")

        self.table_id = table_id
        self.database_id = database_id
        self.api_url = api_url.rstrip("/")
        headers = {
            "Authorization": f"Token {api_token}",
            "Content-Type": "application/json",
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers
        self.created = 0
        self.updated = 0

        logger.info(f"Baserow sink initialized (table {table_id}, database {database_id})")

    @property
    def rows_url(self) -> str:
        return f"{self.api_url}/database/rows/table/{self.table_id}/"

    async def find_row(self, listing_id: str) -> Optional[Dict[str, Any]]:
        """Existing row for ``listing_id``, or None (also on lookup errors)."""
        try:
            response = await self._client.get(
                self.rows_url,
                params={"search": listing_id, "user_field_names": "true"},
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Error finding existing listing {listing_id}: {e}")
            return None

        for row in response.json().get("results", []):
            if row.get("listing_id") == listing_id:
                return row
        return None

    async def save(self, record: ListingRecord) -> None:
        if not record.id:
            raise SinkError(f"Record without id cannot be upserted: {record.url}", url=record.url)

        data = prepare_row(record)
        existing = await self.find_row(record.id)

        try:
            if existing:
                logger.info(f"Updating existing listing: {record.id}")
                response = await self._client.patch(
                    f"{self.rows_url}{existing['id']}/",
                    params={"user_field_names": "true"},
                    json=data,
                    headers=self._headers,
                )
            else:
                logger.info(f"Creating new listing: {record.id}")
                response = await self._client.post(
                    self.rows_url,
                    params={"user_field_names": "true"},
                    json=data,
                    headers=self._headers,
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SinkError(
                f"Baserow returned {e.response.status_code} for listing {record.id}", url=record.url
            ) from e
        except httpx.HTTPError as e:
            raise SinkError(f"Baserow request failed for listing {record.id}: {e}", url=record.url) from e

        if existing:
            self.updated += 1
        else:
            self.created += 1

    async def save_batch(self, records: Sequence[ListingRecord]) -> int:
        logger.info(f"Storing {len(records)} listings in Baserow")
        stored = 0
        for record in records:
            try:
                await self.save(record)
                stored += 1
            except SinkError as e:
                logger.error(f"Error storing listing {record.id}: {e}")
        logger.info(f"Successfully stored {stored} out of {len(records)} listings")
        return stored

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class RecordPipeline:
    """Fans records out to every sink; a failing sink never stops the crawl."""

    def __init__(self, sinks: Optional[List[RecordSink]] = None):
        self.sinks: List[RecordSink] = list(sinks or [])
        self.saved = 0
        self.sink_errors = 0

    def add_sink(self, sink: RecordSink) -> None:
        self.sinks.append(sink)

    async def save(self, record: ListingRecord) -> None:
        await self.save_batch([record])

    async def save_batch(self, records: Sequence[ListingRecord]) -> None:
        if not records:
            return
        for sink in self.sinks:
            try:
                await sink.save_batch(records)
            except SinkError as e:
                self.sink_errors += 1
                logger.warning(f"Sink '{sink.name}' failed: {e}")
            except Exception as e:
                self.sink_errors += 1
                logger.warning(f"Sink '{sink.name}' raised {type(e).__name__}: {e}")
        self.saved += len(records)

    async def close(self) -> None:
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.warning(f"Error closing sink '{sink.name}': {e}")
