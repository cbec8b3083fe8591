from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from app.stockline.core.config import settings
from app.stockline.services.severity import SEVERITY_CRITICAL, SEVERITIES, VARIANCE_OPEN, VARIANCE_RESOLVED, as_decimal


FLAG_HIGH_VALUE = "High Value Loss"
FLAG_STOCK_LOSS = "Stock Loss"
FLAG_CRITICAL = "Critical Severity"

PATTERN_SYSTEMATIC = "Systematic Losses at Location"
PATTERN_REPEATED_PRODUCT = "Repeated Product Shrinkage"
# Fires on large overages (variance is expected minus received); polarity under review.
PATTERN_LARGE_THEFT = "Large Quantity Theft Suspected"


@dataclass(frozen=True)
class RiskPolicy:
    high_value_above: Decimal = Decimal("10000")
    high_value_points: int = 35
    stock_loss_points: int = 20
    critical_severity_points: int = 25
    location_min_unresolved: int = 3
    location_points: int = 30
    product_min_unresolved: int = 2
    product_points: int = 20
    age_days_above: int = 7
    age_points: int = 15
    high_risk_score: int = 60
    max_score: int = 100
    systematic_value_above: Decimal = Decimal("5000")
    repeated_product_min_unresolved: int = 3
    theft_variance_below: int = -50
    theft_value_above: Decimal = Decimal("20000")

    @classmethod
    def from_settings(cls, config=settings) -> "RiskPolicy":
        return cls(
            high_value_above=as_decimal(config.RISK_HIGH_VALUE_ABOVE),
            high_value_points=config.RISK_HIGH_VALUE_POINTS,
            stock_loss_points=config.RISK_STOCK_LOSS_POINTS,
            critical_severity_points=config.RISK_CRITICAL_SEVERITY_POINTS,
            location_min_unresolved=config.RISK_LOCATION_MIN_UNRESOLVED,
            location_points=config.RISK_LOCATION_POINTS,
            product_min_unresolved=config.RISK_PRODUCT_MIN_UNRESOLVED,
            product_points=config.RISK_PRODUCT_POINTS,
            age_days_above=config.RISK_AGE_DAYS_ABOVE,
            age_points=config.RISK_AGE_POINTS,
            high_risk_score=config.RISK_HIGH_RISK_SCORE,
            max_score=config.RISK_MAX_SCORE,
            systematic_value_above=as_decimal(config.RISK_SYSTEMATIC_VALUE_ABOVE),
            repeated_product_min_unresolved=config.RISK_REPEATED_PRODUCT_MIN_UNRESOLVED,
            theft_variance_below=config.RISK_THEFT_VARIANCE_BELOW,
            theft_value_above=as_decimal(config.RISK_THEFT_VALUE_ABOVE),
        )


@dataclass(frozen=True)
class RiskAssessment:
    variance_id: object
    score: int
    is_high_risk: bool
    flags: tuple[str, ...]
    pattern: str | None
    unresolved_at_location: int
    unresolved_for_item: int
    age_days: int


def is_unresolved(variance) -> bool:
    return variance.status != VARIANCE_RESOLVED


def _others(variance, population: Iterable) -> list:
    return [
        candidate
        for candidate in population
        if candidate.id != variance.id and is_unresolved(candidate)
    ]


def score(variance, all_open_variances: Iterable, *, now: datetime | None = None, policy: RiskPolicy | None = None) -> RiskAssessment:
    """Fraud-risk score for one variance against the population it is judged with.

    Pure: reads only its arguments. Candidates that are resolved, or that are the
    scored variance itself, are ignored, so callers may pass an unfiltered list.
    """
    policy = policy or RiskPolicy.from_settings()
    now = now or datetime.utcnow()
    value = abs(as_decimal(variance.variance_value))
    others = _others(variance, all_open_variances)
    at_location = sum(1 for candidate in others if candidate.outlet_id == variance.outlet_id)
    for_item = sum(1 for candidate in others if candidate.item_id == variance.item_id)
    age_days = max((now - variance.created_at).days, 0) if variance.created_at else 0

    points = 0
    flags: list[str] = []
    if value > policy.high_value_above:
        points += policy.high_value_points
        flags.append(FLAG_HIGH_VALUE)
    if variance.variance > 0:
        points += policy.stock_loss_points
        flags.append(FLAG_STOCK_LOSS)
    if variance.severity == SEVERITY_CRITICAL:
        points += policy.critical_severity_points
        flags.append(FLAG_CRITICAL)
    if at_location >= policy.location_min_unresolved:
        points += policy.location_points
        flags.append(f"{at_location} Unresolved at Location")
    if for_item >= policy.product_min_unresolved:
        points += policy.product_points
        flags.append(f"{for_item} Unresolved for Product")
    if variance.status == VARIANCE_OPEN and age_days > policy.age_days_above:
        points += policy.age_points
        flags.append(f"Unresolved for {age_days} Days")

    points = min(points, policy.max_score)
    return RiskAssessment(
        variance_id=variance.id,
        score=points,
        is_high_risk=points >= policy.high_risk_score,
        flags=tuple(flags),
        pattern=_pattern(variance, value, at_location, for_item, policy),
        unresolved_at_location=at_location,
        unresolved_for_item=for_item,
        age_days=age_days,
    )


def _pattern(variance, value: Decimal, at_location: int, for_item: int, policy: RiskPolicy) -> str | None:
    if at_location >= policy.location_min_unresolved and value > policy.systematic_value_above:
        return PATTERN_SYSTEMATIC
    if for_item >= policy.repeated_product_min_unresolved:
        return PATTERN_REPEATED_PRODUCT
    if variance.variance < policy.theft_variance_below and value > policy.theft_value_above:
        return PATTERN_LARGE_THEFT
    return None


def score_all(variances: Iterable, *, now: datetime | None = None, policy: RiskPolicy | None = None) -> list[RiskAssessment]:
    policy = policy or RiskPolicy.from_settings()
    population = list(variances)
    now = now or datetime.utcnow()
    return [score(variance, population, now=now, policy=policy) for variance in population]


def summarize(variances: Iterable, assessments: Iterable[RiskAssessment]) -> dict:
    variances = list(variances)
    assessments = list(assessments)
    by_severity = {severity: 0 for severity in SEVERITIES}
    by_severity.update(Counter(variance.severity for variance in variances))
    return {
        "total_unresolved": sum(1 for variance in variances if is_unresolved(variance)),
        "high_risk_count": sum(1 for assessment in assessments if assessment.is_high_risk),
        "total_variance_value": sum((as_decimal(variance.variance_value) for variance in variances), Decimal("0")),
        "by_severity": by_severity,
        "by_pattern": dict(Counter(assessment.pattern for assessment in assessments if assessment.pattern)),
    }
