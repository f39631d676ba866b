"""Data models for listing crawls."""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class RequestRole(str, Enum):
    """Page role of a scheduled request."""
    CATEGORY = "CATEGORY"  # listing index page
    DETAIL = "DETAIL"  # single listing page


# Convenience attributes normalized out of the free-form ``info`` mapping.
# Each maps to the site labels that may carry it, in priority order.
INFO_FIELD_LABELS: Dict[str, List[str]] = {
    "size": ["Brüt / Net M2", "m² (Brüt)", "m² (Net)"],
    "rooms": ["Oda Sayısı"],
    "building_age": ["Bina Yaşı"],
    "floor": ["Bulunduğu Kat"],
    "total_floors": ["Kat Sayısı"],
    "heating": ["Isınma"],
    "furnished": ["Eşyalı"],
    "usage": ["Kullanım Durumu"],
    "in_site": ["Site İçinde"],
    "dues": ["Aidat"],
    "deed_status": ["Tapu Durumu"],
    "credit_eligible": ["Krediye Uygun"],
}


@dataclass
class ListingRecord:
    """A single extracted listing.

    ``price`` is always either a non-negative number or None. Anything
    else handed in (a raw string, a negative number) is normalized in
    ``__post_init__``; the raw text belongs in ``price_raw``.
    """

    id: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None
    price: Optional[float] = None
    price_currency: Optional[str] = None
    price_raw: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None
    image: Optional[str] = None
    images: List[str] = field(default_factory=list)
    description: Optional[str] = None
    seller: Optional[str] = None
    info: Dict[str, str] = field(default_factory=dict)

    # Normalized from info
    size: Optional[str] = None
    rooms: Optional[str] = None
    building_age: Optional[str] = None
    floor: Optional[str] = None
    total_floors: Optional[str] = None
    heating: Optional[str] = None
    furnished: Optional[str] = None
    usage: Optional[str] = None
    in_site: Optional[str] = None
    dues: Optional[str] = None
    deed_status: Optional[str] = None
    credit_eligible: Optional[str] = None

    source_url: Optional[str] = None
    scraped_at: Optional[str] = None

    def __post_init__(self):
        self.price = _coerce_price(self.price)
        if self.scraped_at is None:
            self.scraped_at = datetime.now().isoformat()

    def merge(self, other: "ListingRecord") -> "ListingRecord":
        """Return a new record with ``other`` layered on top of this one.

        Fields that ``other`` actually sets win on collision; fields it
        leaves empty keep this record's value. ``info`` is merged key by
        key with ``other`` winning.
        """
        updates: Dict[str, Any] = {}
        for f in fields(self):
            if f.name in ("info", "scraped_at"):
                continue
            value = getattr(other, f.name)
            if value is None or value == [] or value == "":
                continue
            updates[f.name] = value

        merged = replace(self, **updates)
        merged.info = {**self.info, **other.info}
        merged.images = list(updates.get("images", self.images))
        return merged

    def apply_info_fields(self) -> None:
        """Fill the normalized attributes from ``info`` where still unset."""
        for attr, labels in INFO_FIELD_LABELS.items():
            if getattr(self, attr):
                continue
            for label in labels:
                if self.info.get(label):
                    setattr(self, attr, self.info[label])
                    break

    @property
    def has_title(self) -> bool:
        return bool(self.title and self.title.strip())

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ListingRecord":
        """Deserialize from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def _coerce_price(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        # Late import: parsing depends on models for ListingRecord
        from emlak.parsing import format_price
        value = format_price(value)
        if value is None:
            return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if price != price or price < 0:  # NaN or negative
        return None
    return price


@dataclass
class CrawlRequest:
    """Unit of scheduled work."""

    url: str
    role: RequestRole = RequestRole.CATEGORY
    carried_data: Optional[ListingRecord] = None
    attempt: int = 0
    source_url: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def next_attempt(self, error: Exception) -> "CrawlRequest":
        """Copy of this request for the following retry."""
        return replace(
            self,
            attempt=self.attempt + 1,
            errors=self.errors + [str(error)[:500]],
        )

    @property
    def label(self) -> str:
        return self.role.value


@dataclass
class LoadedPage:
    """A page that passed challenge handling and is ready for a handler."""

    request: CrawlRequest
    url: str
    status_code: int
    html: str


@dataclass
class CrawlStats:
    """Summary of a finished crawl run."""
    emitted: int = 0
    requests_dispatched: int = 0
    requests_succeeded: int = 0
    retries: int = 0
    failed: Dict[str, dict] = field(default_factory=dict)
    stopped_early: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "emitted": self.emitted,
            "requests_dispatched": self.requests_dispatched,
            "requests_succeeded": self.requests_succeeded,
            "retries": self.retries,
            "failed": len(self.failed),
            "stopped_early": self.stopped_early,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
