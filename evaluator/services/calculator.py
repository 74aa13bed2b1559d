"""Target-price calculation.

Pure functions only: the same price record always produces the same
valuation (apart from its timestamp).
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from evaluator.core.exceptions import InvalidInputError
from evaluator.schemas.valuation import (
    Calculation,
    Confidence,
    PriceRange,
    PriceRecord,
    ValuationResult,
)

logger = logging.getLogger(__name__)

TARGET_MULTIPLIER = Decimal("0.8")
HIGH_CONFIDENCE_MAX_SPREAD = 15
MEDIUM_CONFIDENCE_MAX_SPREAD = 30
MAX_REASONABLE_RATIO = 10

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "CHF": "CHF ", "JPY": "¥"}

CONFIDENCE_EXPLANATIONS = {
    Confidence.HIGH: "Price range is tight (≤15% spread), indicating stable market pricing",
    Confidence.MEDIUM: "Price range has moderate spread (16-30%), typical market variation",
    Confidence.LOW: "Price range has wide spread (>30%), indicating volatile or uncertain pricing",
}


def _decimal(value) -> Decimal:
    return Decimal(str(value))


def round_half_up(value, places: int = 0) -> Decimal:
    exponent = Decimal(1).scaleb(-places)
    return _decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def _whole(value):
    """30000.0 -> 30000, 3215.5 stays as is."""
    return int(value) if float(value).is_integer() else float(value)


def classify_confidence(spread_percentage: float) -> Confidence:
    if spread_percentage <= HIGH_CONFIDENCE_MAX_SPREAD:
        return Confidence.HIGH
    if spread_percentage <= MEDIUM_CONFIDENCE_MAX_SPREAD:
        return Confidence.MEDIUM
    return Confidence.LOW


def normalize_ref(ref_number) -> str:
    if not isinstance(ref_number, str) or not ref_number.strip():
        raise InvalidInputError(
            "Reference number is required and must be a non-empty string"
        )
    return ref_number.strip().upper()


def calculate(
    ref_number: str,
    record: PriceRecord,
    now: datetime | None = None,
) -> ValuationResult:
    """Turn a price record into a target-price recommendation.

    targetPrice is 80% of the minimum price, rounded half-up to whole
    units. marketAverage is the observed average, or the midpoint of the
    range when the page did not show one. Confidence follows the spread
    of the range relative to its minimum.

    Raises:
        InvalidInputError: empty reference, or non-positive min/max.
    """
    ref = normalize_ref(ref_number)
    if record.min_price <= 0 or record.max_price <= 0:
        raise InvalidInputError("Invalid price range provided")

    min_price = _decimal(record.min_price)
    max_price = _decimal(record.max_price)

    target_price = int(round_half_up(min_price * TARGET_MULTIPLIER))
    if record.avg_price is not None:
        market_average = int(round_half_up(record.avg_price))
    else:
        market_average = int(round_half_up((min_price + max_price) / 2))

    spread = float(round_half_up((max_price - min_price) / min_price * 100, 2))
    confidence = classify_confidence(spread)

    for warning in validate_price_range(record.min_price, record.max_price):
        logger.warning("Price range for %s: %s", ref, warning)

    now = now or datetime.now(timezone.utc)
    return ValuationResult(
        ref_number=ref,
        target_price=target_price,
        market_average=market_average,
        confidence=confidence,
        price_range=PriceRange(
            min=_whole(record.min_price),
            max=_whole(record.max_price),
            spread_percentage=spread,
        ),
        calculation=Calculation(
            multiplier=float(TARGET_MULTIPLIER),
            based_on_min_price=_whole(record.min_price),
        ),
        timestamp=now.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
    )


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def format_price(amount, currency: str = "USD") -> str:
    """Whole-unit display string, e.g. ``format_price(24000) == "$24,000"``."""
    try:
        value = int(round_half_up(amount))
    except (TypeError, ValueError, ArithmeticError):
        value = 0
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,}"


def validate_price_range(min_price, max_price) -> list[str]:
    """Return human-readable problems with a min/max pair (empty if fine)."""
    errors = []
    if not min_price or min_price <= 0:
        errors.append("Minimum price must be a positive number")
    if not max_price or max_price <= 0:
        errors.append("Maximum price must be a positive number")
    if min_price and max_price and min_price > max_price:
        errors.append("Minimum price cannot be greater than maximum price")
    if min_price and max_price and min_price > 0 and max_price / min_price > MAX_REASONABLE_RATIO:
        errors.append("Price range appears unusually large (max/min ratio > 10:1)")
    return errors


def confidence_explanation(confidence) -> str:
    try:
        return CONFIDENCE_EXPLANATIONS[Confidence(confidence)]
    except ValueError:
        return "Unknown confidence level"
