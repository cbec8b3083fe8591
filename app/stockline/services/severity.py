from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from app.stockline.core.config import settings


SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"
SEVERITIES = (SEVERITY_LOW, SEVERITY_MEDIUM, SEVERITY_HIGH, SEVERITY_CRITICAL)

VARIANCE_OPEN = "open"
VARIANCE_INVESTIGATING = "investigating"
VARIANCE_RESOLVED = "resolved"
VARIANCE_WRITE_OFF = "write_off"

_CENT = Decimal("0.01")


def as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def variance_value(variance: int, unit_cost) -> Decimal:
    return (Decimal(variance) * as_decimal(unit_cost)).quantize(_CENT)


@dataclass(frozen=True)
class SeverityPolicy:
    """Buckets a variance by the magnitude of its monetary value.

    Comparisons are strict: a value exactly on a threshold stays in the lower bucket.
    """

    medium_above: Decimal = Decimal("1000")
    high_above: Decimal = Decimal("5000")
    critical_above: Decimal = Decimal("10000")

    @classmethod
    def from_settings(cls, config=settings) -> "SeverityPolicy":
        return cls(
            medium_above=as_decimal(config.SEVERITY_MEDIUM_ABOVE),
            high_above=as_decimal(config.SEVERITY_HIGH_ABOVE),
            critical_above=as_decimal(config.SEVERITY_CRITICAL_ABOVE),
        )

    def classify(self, value) -> str:
        magnitude = abs(as_decimal(value))
        if magnitude > self.critical_above:
            return SEVERITY_CRITICAL
        if magnitude > self.high_above:
            return SEVERITY_HIGH
        if magnitude > self.medium_above:
            return SEVERITY_MEDIUM
        return SEVERITY_LOW
