"""Price parsing, currency conversion and URL normalization utilities."""

import re
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
import structlog

from shopcrawl.core.constants import ZERO_DECIMAL_CURRENCIES
from shopcrawl.core.exceptions import RateUnavailable
from shopcrawl.scrapers.utils.retry import rate_refresh_retry

logger = structlog.get_logger(__name__)


class CurrencyConverter:
    """Converts source-currency prices to the display currency.

    Rates come from an exchangerate-api style endpoint (``<url>/<display currency>``)
    and are cached for ``ttl_seconds``. A failed refresh keeps serving the last good
    table and logs how stale it is; only a converter that has never fetched a
    table raises RateUnavailable.
    """

    RETRY_AFTER_FAILURE_SECONDS = 60

    def __init__(
        self,
        display_currency: str = "KRW",
        rate_url: str = "https://api.exchangerate-api.com/v4/latest",
        ttl_seconds: int = 3600,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.display_currency = display_currency.upper()
        self._rate_url = f"{rate_url.rstrip('/')}/{self.display_currency}"
        self._ttl_seconds = ttl_seconds
        self._http_client = http_client
        self._clock = clock
        # Display-currency units per one unit of the keyed currency
        self._rates: Dict[str, Decimal] = {}
        self._fetched_at: Optional[float] = None
        self._next_refresh_at: float = 0.0

    @classmethod
    def from_settings(cls, settings, http_client: Optional[httpx.AsyncClient] = None) -> "CurrencyConverter":
        return cls(
            display_currency=settings.DISPLAY_CURRENCY,
            rate_url=settings.EXCHANGE_RATE_URL,
            ttl_seconds=settings.EXCHANGE_RATE_TTL_SECONDS,
            http_client=http_client,
        )

    @property
    def has_rates(self) -> bool:
        return bool(self._rates)

    @property
    def age_seconds(self) -> Optional[float]:
        if self._fetched_at is None:
            return None
        return self._clock() - self._fetched_at

    def _refresh_due(self) -> bool:
        return self._clock() >= self._next_refresh_at

    async def refresh(self) -> bool:
        """Fetch a fresh rate table.

        Returns:
            True if the table was replaced, False if the previous table (if any) is kept
        """
        try:
            data = await self._fetch()
            raw_rates = data["rates"]
            new_rates: Dict[str, Decimal] = {self.display_currency: Decimal("1")}
            for code, value in raw_rates.items():
                rate = Decimal(str(value))
                if rate > 0:
                    # API gives display -> X, we need X -> display
                    new_rates[code.upper()] = Decimal("1") / rate
        except (httpx.HTTPError, KeyError, TypeError, ValueError, AttributeError, InvalidOperation) as e:
            self._next_refresh_at = self._clock() + min(self.RETRY_AFTER_FAILURE_SECONDS, self._ttl_seconds)
            logger.warning("exchange_rate_refresh_failed", url=self._rate_url, error=str(e))
            if self._rates:
                logger.warning(
                    "exchange_rates_stale",
                    age_seconds=round(self.age_seconds or 0, 1),
                    currencies=len(self._rates),
                )
            return False

        self._rates = new_rates
        self._fetched_at = self._clock()
        self._next_refresh_at = self._fetched_at + self._ttl_seconds
        logger.info("exchange_rates_updated", base=self.display_currency, currencies=len(new_rates))
        return True

    @rate_refresh_retry
    async def _fetch(self) -> dict:
        if self._http_client is not None:
            resp = await self._http_client.get(self._rate_url)
            resp.raise_for_status()
            return resp.json()
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(self._rate_url)
            resp.raise_for_status()
            return resp.json()

    def convert(self, amount: Decimal, source_currency: str) -> Decimal:
        """Convert with the cached table only (no refresh)."""
        currency = source_currency.upper()
        if currency == self.display_currency:
            return self.round(amount)
        rate = self._rates.get(currency)
        if rate is None:
            raise RateUnavailable(currency)
        return self.round(amount * rate)

    async def to_display_currency(self, amount: Decimal, source_currency: str) -> Decimal:
        """Convert ``amount`` to the display currency, refreshing the table when due.

        Raises:
            RateUnavailable: if no table holding ``source_currency`` was ever fetched
        """
        if source_currency.upper() != self.display_currency and self._refresh_due():
            await self.refresh()
        return self.convert(amount, source_currency)

    def round(self, amount: Decimal) -> Decimal:
        quantum = Decimal("1") if self.display_currency in ZERO_DECIMAL_CURRENCIES else Decimal("0.01")
        return Decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)


# Longest symbols first so "US$" wins over "$"
_CURRENCY_SYMBOLS = (
    ("US$", "USD"),
    ("CA$", "CAD"),
    ("AU$", "AUD"),
    ("HK$", "HKD"),
    ("NZ$", "NZD"),
    ("S$", "SGD"),
    ("A$", "AUD"),
    ("C$", "CAD"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("¥", "JPY"),
    ("₩", "KRW"),
    ("원", "KRW"),
    ("$", "USD"),
)

_ISO_CODE = re.compile(r"\b(USD|EUR|GBP|JPY|KRW|CAD|AUD|HKD|SGD|NZD|CNY|CHF|SEK|DKK|NOK|MXN)\b")


class PriceNormalizer:
    """Price string parsing helpers used by the adapters."""

    @staticmethod
    def clean_price_string(raw: str) -> Optional[Decimal]:
        """Parse a price string and extract numeric value.

        Handles various formats:
        - "1,234원" -> 1234
        - "$12.99" -> 12.99
        - "US $1,299.00" -> 1299.00
        - "EUR 1.234,56" -> 1234.56
        - "12,99 €" -> 12.99
        """
        if not raw:
            return None

        cleaned = re.sub(r"[^\d.,]", "", str(raw)).strip(".,")
        if "," in cleaned and "." in cleaned:
            if cleaned.rfind(",") > cleaned.rfind("."):
                # Decimal comma with dot grouping
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        elif cleaned.count(",") == 1 and re.search(r",\d{1,2}$", cleaned):
            cleaned = cleaned.replace(",", ".")
        elif cleaned.count(".") > 1:
            cleaned = cleaned.replace(".", "")
        else:
            cleaned = cleaned.replace(",", "")

        if not cleaned:
            return None

        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None

    @staticmethod
    def extract_price_from_text(text: str) -> Optional[Decimal]:
        """Extract first positive price-like number from text."""
        if not text:
            return None

        for match in re.findall(r"\d[\d.,]*\d|\d", text):
            price = PriceNormalizer.clean_price_string(match)
            if price and price > 0:
                return price

        return None

    @staticmethod
    def detect_currency(text: str, default: Optional[str] = None) -> Optional[str]:
        """ISO code for the currency written in ``text`` (symbol or code)."""
        if not text:
            return default
        code = _ISO_CODE.search(text.upper())
        if code:
            return code.group(1)
        for symbol, iso in _CURRENCY_SYMBOLS:
            if symbol in text:
                return iso
        return default


TRACKING_PARAMS = frozenset({
    "ref", "ref_", "source", "fbclid", "gclid", "mc_cid", "mc_eid",
    "spm", "scm", "pvid", "algo_pvid", "algo_exp_id", "aff_platform", "aff_trace_key",
    "aff_fcid", "aff_fsk", "sk", "terminal_id", "srcsns", "businesstype", "gatewayadapt",
    "tag", "psc", "th", "qid", "sr", "crid", "sprefix", "keywords", "content-id",
    "hash", "mkcid", "mkrid", "campid", "customid", "toolid", "mkevt", "_trkparms", "_trksid",
})
TRACKING_PREFIXES = ("utm_", "pd_rd_", "pf_rd_", "_randl_")


def _is_tracking_param(key: str) -> bool:
    key = key.lower()
    return key in TRACKING_PARAMS or key.startswith(TRACKING_PREFIXES)


def normalize_url(url: str) -> str:
    """Normalize a URL into a stable identity form.

    Lower-cases scheme and host, drops the fragment and tracking parameters,
    sorts the remaining query parameters and strips a trailing slash.
    """
    if not url:
        return url

    parsed = urlsplit(url.strip())
    query = sorted(
        (k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(k)
    )
    path = parsed.path.rstrip("/") if len(parsed.path) > 1 else parsed.path

    return urlunsplit(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, urlencode(query), "")
    )
