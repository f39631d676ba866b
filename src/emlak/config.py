from dotenv import load_dotenv
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path
import json
import os

from emlak.constants import (
    DEFAULT_START_URL,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_REQUESTS_PER_CRAWL,
    REQUESTS_PER_ITEM_HEADROOM,
    DEFAULT_SESSION_POOL_SIZE,
    DEFAULT_SESSION_MAX_USAGE,
    SESSION_STARVATION_TIMEOUT_SECONDS,
    PAGE_DELAY_MS,
    CHALLENGE_DELAY_MS,
    CHALLENGE_LINGER_DELAY_MS,
    NEXT_PAGE_DELAY_MS,
    DETAIL_DELAY_MS,
    NAVIGATION_TIMEOUT_SECONDS,
    CHALLENGE_REDIRECT_TIMEOUT_SECONDS,
    BODY_TIMEOUT_SECONDS,
    INITIAL_BACKOFF_DELAY_SECONDS,
    MAX_BACKOFF_DELAY_SECONDS,
)

load_dotenv()  # Loads variables from .env file

# Input fields that must be whole numbers, with their smallest allowed value
INT_FIELDS = {
    "max_items": 0,
    "max_concurrency": 1,
    "max_attempts": 1,
    "session_pool_size": 1,
    "session_max_usage": 1,
}
BOOL_FIELDS = ("include_details", "headless")

TRUE_STRINGS = ("true", "1", "yes")
FALSE_STRINGS = ("false", "0", "no")


def coerce_input_value(key: str, name: str, value: Any) -> Any:
    """Convert a raw input value to the type of the config field it sets.

    Args:
        key: Input key as written in the input, used in error messages
        name: Config field name
        value: Raw value from the input JSON

    Returns:
        The converted value

    Raises:
        ValueError: If the value cannot be read as the field's type
    """
    if value is None:
        return value

    if name in INT_FIELDS:
        if isinstance(value, bool) or isinstance(value, float) and not value.is_integer():
            raise ValueError(f"Invalid value for {key}: {value!r} is not a whole number")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid value for {key}: {value!r} is not a whole number") from None
        if number < INT_FIELDS[name]:
            raise ValueError(f"Invalid value for {key}: must be >= {INT_FIELDS[name]}, got {number}")
        return number

    if name in BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        raise ValueError(f"Invalid value for {key}: {value!r} is not a boolean")

    return value


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    BASEROW_API_URL = os.getenv("BASEROW_API_URL", "https://api.baserow.io/api")
    BASEROW_API_TOKEN = os.getenv("BASEROW_API_TOKEN")
    BASEROW_TABLE_ID = os.getenv("BASEROW_TABLE_ID")
    BASEROW_DATABASE_ID = os.getenv("BASEROW_DATABASE_ID")

    PROXY_URLS = os.getenv("PROXY_URLS", "")
    PROXY_FILE = os.getenv("PROXY_FILE", "")
    PROXY_COUNTRY = os.getenv("PROXY_COUNTRY", "TR")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    OUTPUT_PATH = os.getenv("OUTPUT_PATH", "storage/datasets/default.jsonl")


settings = Settings()


@dataclass
class TimingConfig:
    """Human-like delays (ms ranges) and hard timeouts (seconds)."""

    page_delay_ms: Tuple[int, int] = PAGE_DELAY_MS
    challenge_delay_ms: Tuple[int, int] = CHALLENGE_DELAY_MS
    challenge_linger_delay_ms: Tuple[int, int] = CHALLENGE_LINGER_DELAY_MS
    next_page_delay_ms: Tuple[int, int] = NEXT_PAGE_DELAY_MS
    detail_delay_ms: Tuple[int, int] = DETAIL_DELAY_MS

    navigation_timeout_secs: float = NAVIGATION_TIMEOUT_SECONDS
    challenge_redirect_timeout_secs: Tuple[float, float] = CHALLENGE_REDIRECT_TIMEOUT_SECONDS
    body_timeout_secs: float = BODY_TIMEOUT_SECONDS

    initial_backoff_secs: float = INITIAL_BACKOFF_DELAY_SECONDS
    max_backoff_secs: float = MAX_BACKOFF_DELAY_SECONDS
    session_starvation_timeout_secs: float = SESSION_STARVATION_TIMEOUT_SECONDS

    @classmethod
    def instant(cls) -> "TimingConfig":
        """Zero-delay timing, used for dry runs and tests."""
        return cls(
            page_delay_ms=(0, 0),
            challenge_delay_ms=(0, 0),
            challenge_linger_delay_ms=(0, 0),
            next_page_delay_ms=(0, 0),
            detail_delay_ms=(0, 0),
            navigation_timeout_secs=1,
            challenge_redirect_timeout_secs=(0.05, 0.05),
            body_timeout_secs=1,
            initial_backoff_secs=0.0,
            max_backoff_secs=0.0,
            session_starvation_timeout_secs=0.2,
        )


@dataclass
class CrawlConfig:
    """Configuration for a single crawl run."""
    start_urls: List[Any] = field(default_factory=lambda: [{"url": DEFAULT_START_URL}])
    max_items: Optional[int] = None
    include_details: bool = False
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    # Proxy / session policy
    proxy_urls: List[str] = field(default_factory=list)
    proxy_file: Optional[str] = None
    proxy_country: Optional[str] = None
    session_pool_size: int = DEFAULT_SESSION_POOL_SIZE
    session_max_usage: int = DEFAULT_SESSION_MAX_USAGE

    # Browser
    headless: bool = True

    # Output
    output_path: str = settings.OUTPUT_PATH
    baserow_api_token: Optional[str] = None
    baserow_table_id: Optional[str] = None
    baserow_database_id: Optional[str] = None

    log_level: str = "INFO"
    timing: TimingConfig = field(default_factory=TimingConfig)

    # actor-style input keys -> dataclass field names
    INPUT_KEYS = {
        "startUrls": "start_urls",
        "maxItems": "max_items",
        "includeDetails": "include_details",
        "maxConcurrency": "max_concurrency",
        "maxAttempts": "max_attempts",
        "proxyUrls": "proxy_urls",
        "proxyFile": "proxy_file",
        "proxyCountry": "proxy_country",
        "sessionPoolSize": "session_pool_size",
        "sessionMaxUsage": "session_max_usage",
        "headless": "headless",
        "outputPath": "output_path",
        "baseRowApiToken": "baserow_api_token",
        "baseRowTableId": "baserow_table_id",
        "baseRowDatabaseId": "baserow_database_id",
        "logLevel": "log_level",
    }

    @property
    def max_requests_per_crawl(self) -> int:
        """Ceiling on admitted requests for the whole run."""
        if self.max_items:
            return self.max_items * REQUESTS_PER_ITEM_HEADROOM
        return DEFAULT_MAX_REQUESTS_PER_CRAWL

    @property
    def baserow_enabled(self) -> bool:
        return bool(self.baserow_api_token and self.baserow_table_id and self.baserow_database_id)

    @classmethod
    def from_input(cls, data: Dict[str, Any]) -> "CrawlConfig":
        """Build a config from an actor-style input mapping.

        Both the camelCase input keys (``startUrls``, ``maxItems`` ...) and
        the snake_case field names are accepted. Unknown keys are ignored.
        Numeric and boolean fields given as strings are converted.

        Args:
            data: Parsed input JSON

        Returns:
            CrawlConfig with values from the input

        Raises:
            ValueError: If a value has the wrong type or is out of range
        """
        config = cls.from_env()
        known = {f.name for f in fields(cls)}

        for key, value in (data or {}).items():
            name = cls.INPUT_KEYS.get(key, key)
            if name not in known or name == "timing" or value is None and name != "max_items":
                continue
            setattr(config, name, coerce_input_value(key, name, value))

        proxy = (data or {}).get("proxyConfiguration") or {}
        if proxy.get("proxyUrls"):
            config.proxy_urls = list(proxy["proxyUrls"])
        if proxy.get("countryCode"):
            config.proxy_country = proxy["countryCode"]

        if isinstance(config.start_urls, (str, dict)):
            config.start_urls = [config.start_urls]

        return config

    @classmethod
    def from_env(cls) -> "CrawlConfig":
        """Load configuration from environment variables.

        Returns:
            CrawlConfig: Configuration instance with values from environment
        """
        max_items = os.getenv("MAX_ITEMS")
        return cls(
            max_items=int(max_items) if max_items else None,
            include_details=os.getenv("INCLUDE_DETAILS", "false").lower() in ("true", "1", "yes"),
            max_concurrency=int(os.getenv("MAX_CONCURRENCY", str(DEFAULT_MAX_CONCURRENCY))),
            proxy_urls=[u.strip() for u in settings.PROXY_URLS.split(",") if u.strip()],
            proxy_file=settings.PROXY_FILE or None,
            proxy_country=settings.PROXY_COUNTRY or None,
            output_path=settings.OUTPUT_PATH,
            baserow_api_token=settings.BASEROW_API_TOKEN,
            baserow_table_id=settings.BASEROW_TABLE_ID,
            baserow_database_id=settings.BASEROW_DATABASE_ID,
            log_level=settings.LOG_LEVEL,
        )

    @classmethod
    def from_file(cls, path: str) -> "CrawlConfig":
        """Load configuration from an input JSON file.

        Args:
            path: Path to JSON input file

        Returns:
            CrawlConfig with values from file (defaults if the file is missing)
        """
        file_path = Path(path)

        if not file_path.exists():
            return cls.from_env()

        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        return cls.from_input(data)

    def to_dict(self) -> dict:
        """Convert config to a dictionary, with credentials masked.

        Returns:
            Dictionary of all config values
        """
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "timing":
                value = {t.name: getattr(value, t.name) for t in fields(value)}
            elif f.name == "baserow_api_token" and value:
                value = "***"
            result[f.name] = value
        return result
