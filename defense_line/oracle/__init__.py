"""Oracle — контракт ценового фида и классификация показаний."""

from .adapter import (
    PriceOracleAdapter,
    RoundDataOracleAdapter,
    StaticPriceOracle,
    utc_now_ms,
)
from .freshness import ReadingAssessment, ReadingVerdict, assess_reading

__all__ = [
    "PriceOracleAdapter",
    "StaticPriceOracle",
    "RoundDataOracleAdapter",
    "utc_now_ms",
    "ReadingVerdict",
    "ReadingAssessment",
    "assess_reading",
]
