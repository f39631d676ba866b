"""Page parsing for category and detail pages.

The crawl core only depends on the ``ListingPageParser`` interface; the
selectors in ``SahibindenParser`` are site-specific and expected to
drift with the target's markup.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from emlak.constants import DEFAULT_CURRENCY, LISTING_ID_PATTERN
from emlak.errors import PageParseError
from emlak.models import ListingRecord

logger = logging.getLogger(__name__)


# =============================================================================
# Value helpers
# =============================================================================

def format_price(price_str: Optional[str]) -> Optional[float]:
    """Turn a localized price string into a number.

    "150.000 TL" -> 150000.0, "1.250.000,50 TL" -> 1250000.5

    Returns:
        Numeric price or None when nothing numeric is present
    """
    if not price_str:
        return None

    numeric = re.sub(r"[^0-9,.]", "", price_str)
    numeric = numeric.replace(".", "").replace(",", ".")  # dot = thousands, comma = decimal

    try:
        return float(numeric)
    except ValueError:
        return None


def extract_currency(price_str: Optional[str]) -> str:
    """Currency code for a price string, defaulting to TL."""
    if not price_str:
        return DEFAULT_CURRENCY
    if "EUR" in price_str or "€" in price_str:
        return "EUR"
    if "USD" in price_str or "$" in price_str:
        return "USD"
    if "GBP" in price_str or "£" in price_str:
        return "GBP"
    return DEFAULT_CURRENCY


def parse_yes_no(value: Optional[str]) -> Optional[bool]:
    """Interpret Turkish yes/no answers ("Evet"/"Var" vs "Hayır"/"Yok")."""
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized in ("evet", "var"):
        return True
    if normalized in ("hayır", "hayir", "yok"):
        return False
    return None


def normalize_text(text: Optional[str]) -> str:
    """Collapse runs of whitespace and trim."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def extract_listing_id(url: Optional[str]) -> Optional[str]:
    """Listing id embedded in a listing URL.

    e.g. /ilan/emlak-konut-satilik-daire-1234567890/detay -> "1234567890"
    """
    if not url:
        return None
    match = re.search(LISTING_ID_PATTERN, url)
    return match.group(1) if match else None


# =============================================================================
# Parser interface
# =============================================================================

class ListingPageParser(ABC):
    """Maps page HTML to listing fields."""

    @abstractmethod
    def category_rows(self, html: str, page_url: str) -> List[Any]:
        """Return the ordered listing rows of a category page.

        Raises:
            PageParseError: if no known strategy finds any rows
        """

    @abstractmethod
    def parse_row(self, row: Any, page_url: str) -> Optional[ListingRecord]:
        """Extract a partial record from one row, or None to skip it."""

    @abstractmethod
    def next_page_url(self, html: str, page_url: str) -> Optional[str]:
        """Absolute URL of the next category page, if any."""

    @abstractmethod
    def parse_detail(self, html: str, page_url: str) -> ListingRecord:
        """Extract the detail fields of a listing page.

        Raises:
            PageParseError: if the page holds no listing detail at all
        """


class SahibindenParser(ListingPageParser):
    """BeautifulSoup parser for sahibinden.com real-estate pages."""

    # Tried in order until one yields rows
    ROW_SELECTORS = [
        "tbody.searchResultsRowClass > tr.searchResultsItem",
        "tr.searchResultsItem",
        "table#searchResultsTable tr[data-id]",
    ]
    TITLE_LINK_SELECTOR = "td.searchResultsTitleValue a.classifiedTitle, a.classifiedTitle"
    PRICE_SELECTOR = "td.searchResultsPriceValue span, td.searchResultsPriceValue"
    DATE_SELECTOR = "td.searchResultsDateValue"
    LOCATION_SELECTOR = "td.searchResultsLocationValue"
    NEXT_PAGE_SELECTOR = 'a.prevNextBut[title="Sonraki"]:not(.passive)'

    DESCRIPTION_SELECTOR = "#classifiedDescription"
    INFO_ITEM_SELECTOR = ".classifiedInfoList li"
    IMAGE_SELECTOR = ".classifiedDetailMainPhoto img, .swiper-slide img, #classifiedDetailPhotos img"
    SELLER_SELECTOR = ".classifiedUserContent h5, .classifiedOtherBoxes .username-info-area"
    CLASSIFIED_ID_SELECTOR = ".classifiedId"

    def category_rows(self, html: str, page_url: str) -> List[Tag]:
        soup = BeautifulSoup(html, "html.parser")

        for selector in self.ROW_SELECTORS:
            rows = soup.select(selector)
            if rows:
                logger.debug(f"Found {len(rows)} rows with '{selector}' on {page_url}")
                return rows

        raise PageParseError(f"No listing rows found on {page_url}", url=page_url)

    def parse_row(self, row: Tag, page_url: str) -> Optional[ListingRecord]:
        title_link = row.select_one(self.TITLE_LINK_SELECTOR)
        title = normalize_text(title_link.get_text()) if title_link else ""
        href = title_link.get("href") if title_link else None

        if not title or not href:
            logger.debug("Skipping row due to missing title or detail URL.")
            return None

        detail_url = urljoin(page_url, href)
        price_raw = self._text(row, self.PRICE_SELECTOR)

        image = None
        img = row.select_one("img")
        if img:
            image = img.get("src") or img.get("data-src")
            if image:
                image = urljoin(page_url, image)

        return ListingRecord(
            id=extract_listing_id(detail_url),
            url=detail_url,
            title=title,
            price=format_price(price_raw),
            price_currency=extract_currency(price_raw),
            price_raw=price_raw,
            location=self._lines(row, self.LOCATION_SELECTOR, " / "),
            date=self._lines(row, self.DATE_SELECTOR, " "),
            image=image,
            source_url=page_url,
        )

    def next_page_url(self, html: str, page_url: str) -> Optional[str]:
        soup = BeautifulSoup(html, "html.parser")
        anchor = soup.select_one(self.NEXT_PAGE_SELECTOR)
        if not anchor or not anchor.get("href"):
            return None
        return urljoin(page_url, anchor["href"])

    def parse_detail(self, html: str, page_url: str) -> ListingRecord:
        soup = BeautifulSoup(html, "html.parser")

        description = self._text(soup, self.DESCRIPTION_SELECTOR)

        info = {}
        for item in soup.select(self.INFO_ITEM_SELECTOR):
            label = item.select_one("strong")
            value = item.select_one("span")
            if label and value:
                label_text = normalize_text(label.get_text())
                value_text = normalize_text(value.get_text())
                if label_text and value_text:
                    info[label_text] = value_text

        images = []
        for img in soup.select(self.IMAGE_SELECTOR):
            src = img.get("src") or img.get("data-src")
            if src:
                src = urljoin(page_url, src)
                if src not in images:
                    images.append(src)

        seller = self._text(soup, self.SELLER_SELECTOR)
        page_id = re.sub(r"[^0-9]", "", self._text(soup, self.CLASSIFIED_ID_SELECTOR) or "") or None

        if not (description or info or images or page_id):
            raise PageParseError(f"No listing detail found on {page_url}", url=page_url)

        record = ListingRecord(
            id=page_id or extract_listing_id(page_url),
            description=description or None,
            images=images,
            seller=seller or None,
            info=info,
        )
        record.apply_info_fields()
        return record

    @staticmethod
    def _text(node: Tag, selector: str) -> Optional[str]:
        found = node.select_one(selector)
        if not found:
            return None
        return normalize_text(found.get_text()) or None

    @staticmethod
    def _lines(node: Tag, selector: str, separator: str) -> Optional[str]:
        found = node.select_one(selector)
        if not found:
            return None
        parts = [normalize_text(p) for p in found.get_text("\n").split("\n")]
        return separator.join(p for p in parts if p) or None
