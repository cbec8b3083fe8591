import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

from app.stockline.services import risk as risk_module
from app.stockline.services.risk import (
    PATTERN_LARGE_THEFT,
    PATTERN_REPEATED_PRODUCT,
    PATTERN_SYSTEMATIC,
    RiskPolicy,
    score,
    score_all,
    summarize,
)


NOW = datetime(2026, 3, 10, 12, 0, 0)
OUTLET = uuid.uuid4()
ITEM = uuid.uuid4()


def _variance(**overrides):
    values = {
        "id": uuid.uuid4(),
        "outlet_id": OUTLET,
        "item_id": ITEM,
        "variance": 2,
        "variance_value": Decimal("25.00"),
        "severity": "low",
        "status": "open",
        "created_at": NOW,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _elsewhere(**overrides):
    """Unresolved variance at the scored outlet for an unrelated item."""
    return _variance(item_id=uuid.uuid4(), **overrides)


def test_small_shortage_scores_stock_loss_only():
    target = _variance()
    result = score(target, [target], now=NOW)
    assert result.score == 20
    assert result.flags == ("Stock Loss",)
    assert result.is_high_risk is False
    assert result.pattern is None


def test_high_value_critical_shortage():
    target = _variance(variance=900, variance_value=Decimal("11250.00"), severity="critical")
    result = score(target, [], now=NOW)
    assert result.score == 80
    assert result.flags == ("High Value Loss", "Stock Loss", "Critical Severity")
    assert result.is_high_risk is True


def test_value_exactly_on_threshold_is_not_high_value():
    target = _variance(variance_value=Decimal("10000.00"), severity="high")
    assert "High Value Loss" not in score(target, [], now=NOW).flags


def test_high_risk_boundary_is_inclusive():
    target = _variance(variance=-40, variance_value=Decimal("-15000.00"), severity="critical")
    result = score(target, [], now=NOW)
    assert result.score == 60
    assert result.is_high_risk is True


def test_crossing_location_threshold_adds_exactly_thirty():
    target = _variance()
    others = [_elsewhere(), _elsewhere()]
    before = score(target, [target, *others], now=NOW)
    after = score(target, [target, *others, _elsewhere()], now=NOW)

    assert before.unresolved_at_location == 2
    assert after.unresolved_at_location == 3
    assert after.score - before.score == 30
    assert "3 Unresolved at Location" in after.flags


def test_resolved_variances_do_not_count_but_write_offs_do():
    target = _variance()
    population = [
        _elsewhere(status="resolved"),
        _elsewhere(status="resolved"),
        _elsewhere(status="write_off"),
        _elsewhere(status="investigating"),
    ]
    result = score(target, population, now=NOW)
    assert result.unresolved_at_location == 2


def test_scored_variance_is_excluded_from_its_own_counts():
    target = _variance()
    result = score(target, [target, target, target], now=NOW)
    assert result.unresolved_at_location == 0
    assert result.unresolved_for_item == 0


def test_repeat_product_adds_twenty():
    target = _variance()
    population = [_variance(outlet_id=uuid.uuid4()), _variance(outlet_id=uuid.uuid4())]
    result = score(target, population, now=NOW)
    assert result.score == 40
    assert "2 Unresolved for Product" in result.flags


def test_age_counts_only_for_open_variances_older_than_seven_days():
    stale = _variance(created_at=NOW - timedelta(days=8))
    week_old = _variance(created_at=NOW - timedelta(days=7, hours=23))
    stale_investigating = _variance(created_at=NOW - timedelta(days=30), status="investigating")

    assert "Unresolved for 8 Days" in score(stale, [], now=NOW).flags
    assert score(stale, [], now=NOW).score == 35
    assert score(week_old, [], now=NOW).score == 20
    assert score(stale_investigating, [], now=NOW).score == 20


def test_score_is_capped():
    target = _variance(
        variance=1000,
        variance_value=Decimal("12500.00"),
        severity="critical",
        created_at=NOW - timedelta(days=20),
    )
    population = [_variance(), _variance(), _variance()]
    result = score(target, population, now=NOW)
    assert result.score == 100
    assert len(result.flags) == 6


def test_systematic_losses_pattern():
    target = _variance(variance=480, variance_value=Decimal("6000.00"), severity="high")
    population = [_elsewhere(), _elsewhere(), _elsewhere()]
    assert score(target, population, now=NOW).pattern == PATTERN_SYSTEMATIC


def test_repeated_product_pattern():
    target = _variance()
    population = [_variance(outlet_id=uuid.uuid4()) for _ in range(3)]
    assert score(target, population, now=NOW).pattern == PATTERN_REPEATED_PRODUCT


def test_large_theft_pattern_fires_on_large_overage():
    overage = _variance(variance=-60, variance_value=Decimal("-25000.00"), severity="critical")
    shortage = _variance(variance=60, variance_value=Decimal("25000.00"), severity="critical")
    assert score(overage, [], now=NOW).pattern == PATTERN_LARGE_THEFT
    assert score(shortage, [], now=NOW).pattern is None


def test_policy_weights_are_configurable():
    policy = RiskPolicy(stock_loss_points=5, location_min_unresolved=1, location_points=7)
    target = _variance()
    result = score(target, [_elsewhere()], now=NOW, policy=policy)
    assert result.score == 12


def test_scoring_does_not_touch_inputs():
    target = _variance()
    population = [target, _elsewhere()]
    snapshot = [vars(item).copy() for item in population]
    score(target, population, now=NOW)
    assert [vars(item) for item in population] == snapshot


def test_score_all_and_summary():
    population = [
        _variance(variance=900, variance_value=Decimal("11250.00"), severity="critical"),
        _elsewhere(severity="medium", variance_value=Decimal("1500.00")),
        _elsewhere(status="investigating"),
    ]
    assessments = score_all(population, now=NOW)
    summary = summarize(population, assessments)

    assert [assessment.variance_id for assessment in assessments] == [item.id for item in population]
    assert summary["total_unresolved"] == 3
    assert summary["high_risk_count"] == 1
    assert summary["total_variance_value"] == Decimal("12775.00")
    assert summary["by_severity"] == {"low": 1, "medium": 1, "high": 0, "critical": 1}
    assert summary["by_pattern"] == {}


def test_scoring_without_a_policy_follows_configured_thresholds(monkeypatch):
    monkeypatch.setattr(risk_module.settings, "RISK_STOCK_LOSS_POINTS", 45)
    monkeypatch.setattr(risk_module.settings, "RISK_HIGH_RISK_SCORE", 40)
    target = _variance()

    [assessment] = score_all([target], now=NOW)

    assert score(target, [target], now=NOW).score == 45
    assert assessment.score == 45
    assert assessment.is_high_risk is True
