"""Tests for data models."""

import math

import pytest

from emlak.models import CrawlRequest, CrawlStats, ListingRecord, RequestRole


class TestListingRecordPrice:
    """Tests for price normalization."""

    def test_string_price_parsed(self):
        """A raw price string becomes a number."""
        assert ListingRecord(price="150.000 TL").price == 150000.0

    def test_negative_price_dropped(self):
        """Negative prices are not valid prices."""
        assert ListingRecord(price=-5).price is None

    def test_nan_price_dropped(self):
        """NaN is not a price."""
        assert ListingRecord(price=math.nan).price is None

    def test_unparseable_price_dropped(self):
        """Text without digits yields None."""
        assert ListingRecord(price="Fiyat sorunuz").price is None

    def test_numeric_price_kept(self):
        """Numbers pass through as floats."""
        assert ListingRecord(price=120).price == 120.0

    def test_scraped_at_defaulted(self):
        """Records are timestamped on creation."""
        assert ListingRecord().scraped_at is not None


class TestListingRecordMerge:
    """Tests for the carried/detail merge rule."""

    def test_detail_overrides_and_partial_survives(self):
        """Detail fields win on collision; carried fields survive otherwise."""
        carried = ListingRecord(title="A", price=100)
        detail = ListingRecord(price=120, description="x")

        merged = carried.merge(detail)

        assert merged.title == "A"
        assert merged.price == 120
        assert merged.description == "x"

    def test_merge_does_not_mutate_inputs(self):
        """merge() returns a new record."""
        carried = ListingRecord(title="A", price=100)
        carried.merge(ListingRecord(price=120))
        assert carried.price == 100

    def test_empty_values_do_not_override(self):
        """None, empty strings and empty lists leave carried values alone."""
        carried = ListingRecord(title="A", location="Kadıköy", images=["a.jpg"])
        merged = carried.merge(ListingRecord(title="", location=None, images=[]))

        assert merged.title == "A"
        assert merged.location == "Kadıköy"
        assert merged.images == ["a.jpg"]

    def test_info_merged_key_wise(self):
        """Info mappings merge, detail winning per key."""
        carried = ListingRecord(info={"Oda Sayısı": "2+1", "Aidat": "500"})
        detail = ListingRecord(info={"Oda Sayısı": "3+1", "Isınma": "Kombi"})

        merged = carried.merge(detail)
        assert merged.info == {"Oda Sayısı": "3+1", "Aidat": "500", "Isınma": "Kombi"}

    def test_scraped_at_kept_from_carried(self):
        """The first extraction time is preserved."""
        carried = ListingRecord(title="A", scraped_at="2024-01-01T00:00:00")
        assert carried.merge(ListingRecord(description="x")).scraped_at == "2024-01-01T00:00:00"


class TestListingRecordInfo:
    """Tests for info normalization and serialization."""

    def test_apply_info_fields(self):
        """Known labels fill the convenience attributes."""
        record = ListingRecord(info={"Oda Sayısı": "3+1", "m² (Brüt)": "120", "Krediye Uygun": "Evet"})
        record.apply_info_fields()

        assert record.rooms == "3+1"
        assert record.size == "120"
        assert record.credit_eligible == "Evet"
        assert record.heating is None

    def test_apply_info_fields_keeps_existing(self):
        """Already-set attributes are not overwritten."""
        record = ListingRecord(rooms="1+1", info={"Oda Sayısı": "3+1"})
        record.apply_info_fields()
        assert record.rooms == "1+1"

    def test_has_title(self):
        """Whitespace-only titles do not count."""
        assert ListingRecord(title="Satılık daire").has_title
        assert not ListingRecord(title="   ").has_title
        assert not ListingRecord().has_title

    def test_dict_round_trip_ignores_unknown(self):
        """from_dict ignores keys it does not know."""
        record = ListingRecord(id="1234567890", title="A", price=5)
        data = record.to_dict()
        data["extra"] = "ignored"

        assert ListingRecord.from_dict(data) == record


class TestCrawlRequest:
    """Tests for CrawlRequest."""

    def test_defaults(self):
        """New requests are first-attempt CATEGORY requests."""
        request = CrawlRequest(url="https://example.com/")
        assert request.role == RequestRole.CATEGORY
        assert request.attempt == 0
        assert request.label == "CATEGORY"

    def test_next_attempt(self):
        """next_attempt bumps the counter and records the error."""
        request = CrawlRequest(url="https://example.com/", role=RequestRole.DETAIL)
        retry = request.next_attempt(RuntimeError("boom")).next_attempt(RuntimeError("again"))

        assert retry.attempt == 2
        assert retry.errors == ["boom", "again"]
        assert retry.role == RequestRole.DETAIL
        assert request.attempt == 0
        assert request.errors == []


class TestCrawlStats:
    """Tests for CrawlStats."""

    def test_to_dict(self):
        """Stats serialize with ISO timestamps and a failure count."""
        stats = CrawlStats(emitted=3, failed={"u": {}})
        data = stats.to_dict()

        assert data["emitted"] == 3
        assert data["failed"] == 1
        assert data["finished_at"] is None
        assert isinstance(data["started_at"], str)
