from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class NavigationState(str, Enum):
    """Observable progress of one evaluation through the target site."""

    START = "Start"
    PAGE_LOADING = "PageLoading"
    CHALLENGE_PRESENT = "ChallengePresent"
    CHALLENGE_RESOLVED = "ChallengeResolved"
    CONSENT_PRESENT = "ConsentPresent"
    CONSENT_RESOLVED = "ConsentResolved"
    AUTHENTICATING = "Authenticating"
    AUTHENTICATED = "Authenticated"
    SEARCH_READY = "SearchReady"
    REFERENCE_ENTERED = "ReferenceEntered"
    SUGGESTION_SELECTED = "SuggestionSelected"
    CONDITION_SET = "ConditionSet"
    DELIVERY_SET = "DeliverySet"
    SUBMITTED = "Submitted"
    RESULTS_RENDERED = "ResultsRendered"
    EXTRACTED = "Extracted"
    FAILED = "Failed"


class Confidence(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class PriceRecord(BaseModel):
    """Min/avg/max market price read from one rendered results page."""

    model_config = ConfigDict(frozen=True)

    min_price: float = Field(gt=0)
    max_price: float = Field(gt=0)
    avg_price: float | None = None
    samples_observed: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_ordering(self):
        if self.max_price < self.min_price:
            raise ValueError("max_price must be >= min_price")
        if self.avg_price is not None and not (
            self.min_price <= self.avg_price <= self.max_price
        ):
            raise ValueError("avg_price must lie within [min_price, max_price]")
        return self


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class PriceRange(_CamelModel):
    min: int | float
    max: int | float
    spread_percentage: float


class Calculation(_CamelModel):
    multiplier: float
    based_on_min_price: int | float


class ValuationResult(_CamelModel):
    ref_number: str
    target_price: int
    market_average: int
    confidence: Confidence
    price_range: PriceRange
    calculation: Calculation
    timestamp: str
