"""Heuristic extraction of price, platform and deep link from free text.

Responses from the text-generation service are unstructured prose. Every
extractor here is a pure function that returns ``None`` when nothing usable is
found and never raises on malformed input.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from dealspy.price_discovery.result import PriceSearchResult

logger = logging.getLogger(__name__)

# Priority order: the first name found in a response wins
KNOWN_PLATFORMS: tuple[str, ...] = (
    "Flipkart",
    "Amazon",
    "Myntra",
    "Nykaa",
    "Ajio",
    "Blinkit",
    "Mamaearth",
    "Shopsy",
    "Snapdeal",
    "Paytm",
    "Meesho",
    "BigBasket",
    "Tata CLiQ",
    "Reliance Digital",
    "JioMart",
    "Croma",
)

ECOMMERCE_DOMAINS: tuple[str, ...] = (
    "flipkart.com",
    "amazon.in",
    "amzn.to",
    "amzn.in",
    "myntra.com",
    "ajio.com",
    "nykaa.com",
    "mamaearth.in",
    "blinkit.com",
    "bigbasket.com",
    "grofers.com",
    "jiomart.com",
    "shopsy.in",
    "snapdeal.com",
    "paytmmall.com",
    "meesho.com",
    "tatacliq.com",
    "reliancedigital.in",
    "croma.com",
)

TRACKING_PARAM_PREFIXES: tuple[str, ...] = (
    "utm_",
    "ref",
    "tag",
    "campaign",
    "source",
    "medium",
    "gclid",
    "fbclid",
    "msclkid",
    "affid",
    "affiliate",
    "aff_",
    "pf_rd_",
)

MIN_URL_LENGTH = 15


@dataclass(frozen=True)
class PriceBand:
    """Inclusive range of prices accepted as plausible."""

    minimum: Decimal = Decimal("10")
    maximum: Decimal = Decimal("1000000")

    def contains(self, price: Decimal) -> bool:
        return self.minimum <= price <= self.maximum


DEFAULT_PRICE_BAND = PriceBand()

# ---------------------------------------------------------------------------
# Price rules
# ---------------------------------------------------------------------------

# Grouped amounts (1,299 or 1,29,999) before plain ones so the group is kept whole
_AMOUNT = r"(?P<amount>\d{1,3}(?:,\d{2,3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)"
_CURRENCY = r"(?:₹|\bRs\.?|\bINR)"
_PLATFORM_NAMES = "|".join(re.escape(name) for name in KNOWN_PLATFORMS)
_UNIT_SUFFIX = r"(?:GB|TB|MB|mAh|ml|kg|g|mm|cm|inch|inches|W|Hz|MP)\b"


@dataclass(frozen=True)
class PriceRule:
    name: str
    pattern: re.Pattern[str]
    # Fallback rules only run when no currency-anchored rule matched
    fallback: bool = False


PRICE_RULES: tuple[PriceRule, ...] = (
    PriceRule(
        "platform_then_price",
        re.compile(rf"(?:{_PLATFORM_NAMES})\s*[:\-–]?\s*{_CURRENCY}\s*{_AMOUNT}", re.IGNORECASE),
    ),
    PriceRule(
        "price_then_platform",
        re.compile(rf"{_CURRENCY}\s*{_AMOUNT}\s*(?:on|at)\s+(?:{_PLATFORM_NAMES})", re.IGNORECASE),
    ),
    PriceRule("rupee_symbol", re.compile(rf"₹\s*{_AMOUNT}")),
    PriceRule("rs_prefix", re.compile(rf"\bRs\.?\s*{_AMOUNT}", re.IGNORECASE)),
    PriceRule("inr_prefix", re.compile(rf"\bINR\s*{_AMOUNT}", re.IGNORECASE)),
    PriceRule(
        "lowest_price_phrase",
        re.compile(
            r"\b(?:lowest|best)\s+(?:current\s+)?price\s*(?:is|of|:|-)?\s*"
            rf"{_CURRENCY}?\s*{_AMOUNT}",
            re.IGNORECASE,
        ),
        fallback=True,
    ),
    PriceRule(
        "bare_number_near_currency",
        re.compile(
            r"(?<![\d,.A-Za-z])(?P<amount>\d{3,6})(?![\d,%A-Za-z]|\.\d)"
            rf"(?!\s+{_UNIT_SUFFIX})"
            r"(?=[^\n]{0,40}?(?:rupees?|₹|\bprice\b|\bINR\b|\bRs\b))",
            re.IGNORECASE,
        ),
        fallback=True,
    ),
)

_ANCHORED_RULES = tuple(rule for rule in PRICE_RULES if not rule.fallback)
_FALLBACK_RULES = tuple(rule for rule in PRICE_RULES if rule.fallback)


def _to_decimal(raw: str) -> Decimal | None:
    try:
        return Decimal(raw.replace(",", ""))
    except (InvalidOperation, ValueError):
        return None


def _lowest_match(
    text: str, rules: tuple[PriceRule, ...], band: PriceBand
) -> Decimal | None:
    lowest: Decimal | None = None
    for rule in rules:
        for match in rule.pattern.finditer(text):
            price = _to_decimal(match.group("amount"))
            if price is None or not band.contains(price):
                continue
            if lowest is None or price < lowest:
                lowest = price
    return lowest


def extract_price(text: str | None, band: PriceBand = DEFAULT_PRICE_BAND) -> Decimal | None:
    """Return the lowest plausible price mentioned in ``text``.

    Every rule may match several candidates; all candidates inside ``band``
    compete and the smallest one wins. Amounts without a currency marker are
    only considered when no currency-marked amount is in the band, so model
    numbers repeated from the product name never beat a quoted price.
    Returns None when nothing survives.
    """
    if not text or not text.strip():
        return None

    lowest = _lowest_match(text, _ANCHORED_RULES, band)
    if lowest is None:
        lowest = _lowest_match(text, _FALLBACK_RULES, band)

    if lowest is not None:
        logger.debug("Found lowest price %s", lowest)
    return lowest


def extract_platform(text: str | None) -> str | None:
    """Return the first known retailer named in ``text``, or None."""
    if not text or not text.strip():
        return None

    lowered = text.lower()
    for platform in KNOWN_PLATFORMS:
        if platform.lower() in lowered:
            return platform
    return None


# ---------------------------------------------------------------------------
# Deep links
# ---------------------------------------------------------------------------

_URL_BODY = r"[^\s<>\"'()\[\]{}]*"

URL_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(rf"https?://(?:[\w-]+\.)*{re.escape(domain)}(?![\w.-]){_URL_BODY}", re.IGNORECASE)
    for domain in ECOMMERCE_DOMAINS
) + (re.compile(rf"https?://[\w.-]+\.[a-z]{{2,}}/{_URL_BODY}", re.IGNORECASE),)

_TRAILING_PUNCTUATION = ".,!?;:'\"`*)]}>"
_URL_SHAPE = re.compile(r"^https?://[a-z0-9.-]+\.[a-z]{2,}/", re.IGNORECASE)
_PRODUCT_PATH = re.compile(
    r"(?:/(?:product|products|item|items|buy|shop|deal|deals)(?:[/\-?]|$)|/dp/|/p-|/p/)",
    re.IGNORECASE,
)
_AMAZON_REF_SEGMENT = re.compile(r"/ref=[^/]*$")


def _hostname(url: str) -> str | None:
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def _is_allowed_domain(host: str) -> bool:
    return any(host == domain or host.endswith("." + domain) for domain in ECOMMERCE_DOMAINS)


def is_valid_ecommerce_url(url: str | None) -> bool:
    """Check whether a URL plausibly points at a retailer listing.

    Allow-listed retailer domains pass outright. Other hosts pass only when
    the path looks like a product page (``/product/``, ``/buy/``, ``dp/``,
    ``p-`` and similar) on a well-formed absolute URL.
    """
    if not url or len(url) < MIN_URL_LENGTH:
        return False

    host = _hostname(url)
    if not host:
        return False
    if _is_allowed_domain(host.lower()):
        return True

    if not _URL_SHAPE.match(url):
        return False
    return bool(_PRODUCT_PATH.search(urlsplit(url).path))


def clean_url(url: str) -> str:
    """Strip tracking parameters and Amazon ``/ref=`` path suffixes."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith(TRACKING_PARAM_PREFIXES)
    ]
    path = parts.path
    host = (parts.hostname or "").lower()
    if "amazon." in host or "amzn." in host:
        path = _AMAZON_REF_SEGMENT.sub("", path)

    return urlunsplit((parts.scheme, parts.netloc, path, urlencode(query), parts.fragment))


def extract_deep_link(text: str | None) -> str | None:
    """Return the first valid retailer URL in ``text``, cleaned, or None."""
    if not text or not text.strip():
        return None

    for pattern in URL_PATTERNS:
        for match in pattern.finditer(text):
            url = match.group().strip().rstrip(_TRAILING_PUNCTUATION)
            if not is_valid_ecommerce_url(url):
                logger.debug("Rejected non e-commerce URL: %s", url)
                continue
            cleaned = clean_url(url)
            logger.debug("Found deep link on %s", _hostname(cleaned))
            return cleaned

    return None


def parse_response(
    text: str | None,
    band: PriceBand = DEFAULT_PRICE_BAND,
    strategy: str | None = None,
) -> PriceSearchResult:
    """Turn one response into a PriceSearchResult.

    The result is successful only when a plausible price was found; platform
    and deep link are best effort and may be None either way.
    """
    price = extract_price(text, band)
    if price is None:
        return PriceSearchResult.failed(strategy)

    return PriceSearchResult(
        lowest_price=price,
        platform=extract_platform(text),
        deep_link=extract_deep_link(text),
        success=True,
        strategy=strategy,
    )


__all__ = [
    "DEFAULT_PRICE_BAND",
    "ECOMMERCE_DOMAINS",
    "KNOWN_PLATFORMS",
    "PriceBand",
    "clean_url",
    "extract_deep_link",
    "extract_platform",
    "extract_price",
    "is_valid_ecommerce_url",
    "parse_response",
]
