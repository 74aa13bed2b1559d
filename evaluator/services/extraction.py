"""Price extraction from the rendered valuation results.

Two strategies, tried in order:

1. Structured: the results region's value-range block has a left (min),
   right (max) and "average" labelled figure.
2. Fallback: every currency amount in the results region is collected,
   sorted, and min / median / max are taken. Needs at least 3 amounts.

Parsing works on the page HTML, so the same code runs against a live page
(``extract``) and against saved markup (``extract_price_record``).
"""

from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup, Tag

from evaluator.core.exceptions import ExtractionError
from evaluator.core.metrics import extraction_strategy_total
from evaluator.schemas.valuation import PriceRecord

logger = logging.getLogger(__name__)

STRATEGY_STRUCTURED = "structured"
STRATEGY_FALLBACK = "fallback"
STRATEGY_PARTIAL = "structured_partial"

MIN_FALLBACK_SAMPLES = 3

RESULTS_REGION_SELECTORS = [
    ".market-value",
    '[class*="market"]',
    '[class*="valuation"]',
]
VALUE_RANGE_SELECTOR = '.value-range, [class*="value-range"]'
MIN_SELECTOR = '.text-left, [class*="text-left"]'
MAX_SELECTOR = '.text-right, [class*="text-right"]'
FIGURE_SELECTOR = ".h1, .h2, span"
AVERAGE_LABELS = ("average", "avg")

# 3,215 / 1.234 / 1\u202f234 / 3215.50 / 30000. Only non-breaking spaces group
# digits; a plain space separates two amounts.
_NUMBER = r"\d{1,3}(?:[.,'\u00a0\u202f]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?"
_CURRENCY = r"[$€£¥]|USD|EUR|GBP|CHF"
NUMBER_RE = re.compile(_NUMBER)
PREFIX_AMOUNT_RE = re.compile(rf"(?:{_CURRENCY})\s?(?:{_NUMBER})")
SUFFIX_AMOUNT_RE = re.compile(rf"(?<![\d.,])(?:{_NUMBER})\s?(?:{_CURRENCY})")
_DECIMAL_TAIL_RE = re.compile(r"[.,](\d{1,2})$")


def parse_price(text: str | None) -> int | None:
    """Parse the first amount in ``text`` to whole currency units.

    Thousands separators are dropped; a trailing one- or two-digit decimal
    part is rounded half-up. Returns None when no positive amount is found.
    """
    if not text:
        return None
    match = NUMBER_RE.search(text)
    if not match:
        return None
    number = match.group(0)

    round_up = False
    tail = _DECIMAL_TAIL_RE.search(number)
    if tail:
        cents = tail.group(1).ljust(2, "0")
        round_up = int(cents) >= 50
        number = number[: tail.start()]

    digits = re.sub(r"\D", "", number)
    if not digits:
        return None
    value = int(digits) + (1 if round_up else 0)
    return value if value > 0 else None


def _amounts(pattern: re.Pattern, text: str) -> list[int]:
    values = []
    for match in pattern.finditer(text):
        value = parse_price(match.group(0))
        if value is not None:
            values.append(value)
    return values


def currency_amounts(text: str) -> list[int]:
    """All currency-looking amounts in a piece of text.

    A sign between two numbers (``Sold 2024 $100``) could belong to
    either. The text is read once with signs in front and once with signs
    behind, and whichever reading finds more amounts wins; a tie goes to
    signs in front.
    """
    prefixed = _amounts(PREFIX_AMOUNT_RE, text or "")
    suffixed = _amounts(SUFFIX_AMOUNT_RE, text or "")
    return suffixed if len(suffixed) > len(prefixed) else prefixed


def _build_record(
    min_price: float,
    max_price: float,
    avg_price: float | None,
    samples: int,
) -> PriceRecord:
    if min_price > max_price:
        logger.info("Page rendered min/max reversed (%s > %s), swapping", min_price, max_price)
        min_price, max_price = max_price, min_price
    if avg_price is not None and not (min_price <= avg_price <= max_price):
        logger.warning(
            "Average %s outside [%s, %s], discarding it", avg_price, min_price, max_price
        )
        avg_price = None
    return PriceRecord(
        min_price=min_price,
        max_price=max_price,
        avg_price=avg_price,
        samples_observed=samples,
    )


def fallback_record(values: list[int]) -> PriceRecord:
    """min / median / max of the observed amounts.

    Raises:
        ExtractionError: fewer than three amounts were observed.
    """
    if len(values) < MIN_FALLBACK_SAMPLES:
        raise ExtractionError(
            f"Only {len(values)} price value(s) found, need {MIN_FALLBACK_SAMPLES}"
        )
    ordered = sorted(values)
    return _build_record(
        ordered[0], ordered[-1], ordered[len(ordered) // 2], len(ordered)
    )


def fallback_from_texts(texts: list[str]) -> PriceRecord:
    """Fallback strategy over raw text snippets."""
    values: list[int] = []
    for text in texts:
        values.extend(currency_amounts(text))
    return fallback_record(values)


# ---------------------------------------------------------------------------
# HTML strategies
# ---------------------------------------------------------------------------


def _results_region(soup: BeautifulSoup) -> Tag | None:
    """Best matching results container.

    Loose selectors also hit unrelated elements (``marketplace-nav``), so a
    candidate holding the value-range block wins, then one holding any
    currency amount, then the first match.
    """
    candidates = [
        region for selector in RESULTS_REGION_SELECTORS for region in soup.select(selector)
    ]
    if not candidates:
        return None
    for region in candidates:
        if region.select_one(VALUE_RANGE_SELECTOR) is not None:
            return region
    for region in candidates:
        if region_amounts(region):
            return region
    return candidates[0]


def _figure(container: Tag | None) -> int | None:
    if container is None:
        return None
    figure = container.select_one(FIGURE_SELECTOR)
    text = figure.get_text(" ", strip=True) if figure else container.get_text(" ", strip=True)
    amounts = currency_amounts(text)
    return amounts[0] if amounts else parse_price(text)


def _average_container(value_range: Tag) -> Tag | None:
    """Innermost div in the range block whose text mentions the average."""
    candidates = [
        div
        for div in value_range.find_all("div")
        if any(label in div.get_text(" ", strip=True).lower() for label in AVERAGE_LABELS)
    ]
    innermost = [
        div
        for div in candidates
        if not any(other is not div and div in other.parents for other in candidates)
    ]
    return innermost[0] if innermost else None


def structured_values(region: Tag) -> tuple[int | None, int | None, int | None]:
    """(min, avg, max) from the labelled value-range layout."""
    value_range = region.select_one(VALUE_RANGE_SELECTOR)
    if value_range is None:
        return None, None, None
    min_price = _figure(value_range.select_one(MIN_SELECTOR))
    max_price = _figure(value_range.select_one(MAX_SELECTOR))
    avg_price = _figure(_average_container(value_range))
    return min_price, avg_price, max_price


def region_amounts(region: Tag) -> list[int]:
    """Currency amounts from every text node in the results region."""
    values: list[int] = []
    for node in region.find_all(string=True):
        if node.parent is not None and node.parent.name in ("script", "style"):
            continue
        values.extend(currency_amounts(str(node)))
    return values


def extract_price_record(html: str) -> tuple[PriceRecord, str]:
    """Parse rendered results HTML into a price record.

    Returns the record and the name of the strategy that produced it.

    Raises:
        ExtractionError: no results region, or neither strategy yields a
            minimum and maximum price.
    """
    soup = BeautifulSoup(html, "lxml")
    region = _results_region(soup)
    if region is None:
        raise ExtractionError("Results region not found on page")

    min_price, avg_price, max_price = structured_values(region)
    samples = region_amounts(region)

    if min_price and max_price and avg_price:
        return _build_record(min_price, max_price, avg_price, len(samples)), STRATEGY_STRUCTURED

    logger.info(
        "Structured extraction incomplete (min=%s avg=%s max=%s), trying fallback over %d amount(s)",
        min_price,
        avg_price,
        max_price,
        len(samples),
    )
    try:
        return fallback_record(samples), STRATEGY_FALLBACK
    except ExtractionError:
        if min_price and max_price:
            # Average genuinely unrecoverable; min and max still stand
            return _build_record(min_price, max_price, None, len(samples)), STRATEGY_PARTIAL
        raise


async def extract(session) -> PriceRecord:
    """Read the session's current page and build its price record."""
    html = await session.page.content()
    record, strategy = extract_price_record(html)
    extraction_strategy_total.labels(strategy=strategy).inc()
    logger.info(
        "Extracted prices via %s: min=%s avg=%s max=%s (%d samples)",
        strategy,
        record.min_price,
        record.avg_price,
        record.max_price,
        record.samples_observed,
    )
    return record
