"""Tests for the CreditEngine."""

from decimal import Decimal

import pytest

from fiscal_engine.classifier import RuleClassifier
from fiscal_engine.credits import (
    ADVISORY_NOTE,
    CompanyTotals,
    CreditEngine,
    PeriodTotals,
    company_totals_from,
    compute_credits,
    summarize,
)
from fiscal_engine.parsers import DocumentKind, NormalizedLineItem, parse_ledger
from fiscal_engine.rules import ConfidenceLevel, RuleSet
from fiscal_engine.taxonomy import Regime, TaxType


@pytest.fixture
def engine() -> CreditEngine:
    return CreditEngine()


@pytest.fixture
def classifier() -> RuleClassifier:
    return RuleClassifier()


def _item(
    line: int,
    value: str,
    ncm: str = "94036000",
    cfop: str = "5102",
    codes: dict | None = None,
    period: str = "2024-03",
    direction: str = "exit",
    taxes: dict | None = None,
    document_id: str = "nfe-03",
) -> NormalizedLineItem:
    return NormalizedLineItem(
        document_id=document_id,
        line_number=line,
        source_kind=DocumentKind.INVOICE_BATCH,
        period=period,
        product_code=ncm,
        operation_code=cfop,
        direction=direction,
        situation_codes=codes or {},
        item_value=Decimal(value),
        tax_amounts={k: Decimal(v) for k, v in (taxes or {}).items()},
    )


def _st(line: int, value: str, **kwargs) -> NormalizedLineItem:
    return _item(line, value, cfop="5405", codes={TaxType.ICMS: "500"}, **kwargs)


def _mono(line: int, value: str, **kwargs) -> NormalizedLineItem:
    return _item(line, value, ncm="30049099",
                 codes={TaxType.PIS: "04", TaxType.COFINS: "04"}, **kwargs)


def _simples(*periods: PeriodTotals) -> CompanyTotals:
    return company_totals_from(Regime.SIMPLES_NACIONAL, periods)


def _march(**kwargs) -> PeriodTotals:
    declared = kwargs.pop("declared_tax", {
        TaxType.PIS: Decimal("27.60"),
        TaxType.COFINS: Decimal("127.40"),
        TaxType.ICMS: Decimal("340.00"),
    })
    return PeriodTotals(
        period="2024-03",
        total_declared_revenue=kwargs.pop("revenue", Decimal("10000.00")),
        declared_tax=declared,
        **kwargs,
    )


def _by_key(computation) -> dict[tuple[str, TaxType], Decimal]:
    return {(c.rule_code, c.tax_type): c.recoverable_value for c in computation.credits}


# ── Proportional allocation (Simples Nacional) ───────────────────────


def test_state_share_independent_of_federal_share(engine, classifier):
    items = [
        _st(1, "4000.00"),
        _mono(2, "1000.00"),
        _item(3, "5000.00"),
    ]
    classified = classifier.classify(items, RuleSet.default())
    result = engine.compute_credits(classified, _simples(_march()), "2024-03")
    credits = _by_key(result)
    # ICMS: 340.00 x 40% substitution revenue
    assert credits[("SIMPLES_ICMS_ST_001", TaxType.ICMS)] == Decimal("136.00")
    # PIS/COFINS: 10% single-phase revenue
    assert credits[("SIMPLES_MONO_001", TaxType.PIS)] == Decimal("2.76")
    assert credits[("SIMPLES_MONO_001", TaxType.COFINS)] == Decimal("12.74")


def test_declared_basis_is_high_confidence(engine, classifier):
    classified = classifier.classify([_st(1, "4000.00")], RuleSet.default())
    credit = engine.compute_credits(classified, _simples(_march()), "2024-03").credits[0]
    assert credit.confidence is ConfidenceLevel.HIGH
    assert credit.detail.basis == "declared"
    assert credit.detail.revenue_share == Decimal("0.400000")
    assert credit.detail.base_revenue == Decimal("4000.00")
    assert credit.original_tax_value == Decimal("340.00")
    assert credit.document_ids == ("nfe-03",)


def test_estimated_basis_is_medium_confidence(engine, classifier):
    totals = _march(
        declared_tax={},
        effective_rate=Decimal("0.05"),
        repartition_percent={TaxType.ICMS: Decimal("34")},
    )
    classified = classifier.classify([_st(1, "4000.00")], RuleSet.default())
    credit = engine.compute_credits(classified, _simples(totals), "2024-03").credits[0]
    # 10,000 x 5% x 34% = 170.00 paid; 40% of it recoverable
    assert credit.recoverable_value == Decimal("68.00")
    assert credit.confidence is ConfidenceLevel.MEDIUM
    assert credit.detail.basis == "estimated"


def test_estimate_falls_back_to_simples_tables(engine, classifier):
    totals = _march(declared_tax={}, annex="I", rbt12=Decimal("150000"))
    classified = classifier.classify([_st(1, "4000.00")], RuleSet.default())
    credit = engine.compute_credits(classified, _simples(totals), "2024-03").credits[0]
    # 10,000 x 4.00% x 34% = 136.00 paid; 40% of it recoverable
    assert credit.recoverable_value == Decimal("54.40")
    assert credit.detail.effective_rate == Decimal("0.0400")


def test_estimate_from_total_due(engine, classifier):
    totals = _march(
        declared_tax={},
        total_due=Decimal("500.00"),
        repartition_percent={TaxType.ICMS: Decimal("34")},
    )
    classified = classifier.classify([_st(1, "4000.00")], RuleSet.default())
    credit = engine.compute_credits(classified, _simples(totals), "2024-03").credits[0]
    # 500.00 due x 34% ICMS share = 170.00 paid
    assert credit.recoverable_value == Decimal("68.00")


def test_unestimable_tax_warns(engine, classifier):
    classified = classifier.classify([_st(1, "4000.00")], RuleSet.default())
    result = engine.compute_credits(classified, _simples(_march(declared_tax={})), "2024-03")
    assert result.credits == []
    assert any("ICMS" in w for w in result.warnings)


def test_zero_revenue_yields_no_credit(engine, classifier):
    totals = _march(revenue=Decimal("0"))
    classified = classifier.classify([_st(1, "4000.00")], RuleSet.default())
    result = engine.compute_credits(classified, _simples(totals), "2024-03")
    assert result.credits == []


def test_share_capped_at_one(engine, classifier):
    classified = classifier.classify([_st(1, "12000.00")], RuleSet.default())
    result = engine.compute_credits(classified, _simples(_march()), "2024-03")
    credit = result.credits[0]
    assert credit.recoverable_value == Decimal("340.00")
    assert credit.detail.revenue_share == Decimal("1.000000")
    assert any("capped" in w for w in result.warnings)


def test_missing_period_totals_warns(engine, classifier):
    classified = classifier.classify([_st(1, "4000.00")], RuleSet.default())
    result = engine.compute_credits(classified, _simples(), "2024-03")
    assert result.credits == []
    assert result.warnings == ["2024-03: no declared totals, proportional credits skipped"]


def test_items_from_other_periods_ignored(engine, classifier):
    items = [_st(1, "4000.00"), _st(2, "4000.00", period="2024-04")]
    classified = classifier.classify(items, RuleSet.default())
    credit = engine.compute_credits(classified, _simples(_march()), "2024-03").credits[0]
    assert credit.detail.items_count == 1


def test_recomputation_is_stable(engine, classifier):
    items = [_st(1, "3333.33"), _mono(2, "1234.56"), _item(3, "5432.11")]
    classified = classifier.classify(items, RuleSet.default())
    company = _simples(_march())
    first = engine.compute_credits(classified, company, "2024-03")
    second = engine.compute_credits(classified, company, "2024-03")
    assert _by_key(first) == _by_key(second)
    for credit in first.credits:
        assert credit.recoverable_value == credit.recoverable_value.quantize(Decimal("0.01"))


# ── Regime exclusions ────────────────────────────────────────────────

LEDGER = "\n".join(
    [
        "|0000|006|0|||01032024|31032024|EMPRESA TESTE LTDA|12345678000190|SP|3550308||00|0|",
        "|0110|2|1|1||",
        "|M100|101|0|100000,00|1,65|||1650,00|0|0|0|1650,00|1|1000,00|650,00|",
    ]
)


def _ledger_results(classifier):
    items = parse_ledger(LEDGER, "efd-03").items
    return classifier.classify(items, RuleSet.default())


def test_excluded_rule_is_suppressed_with_reason(engine, classifier):
    company = CompanyTotals(regime=Regime.LUCRO_PRESUMIDO)
    result = engine.compute_credits(_ledger_results(classifier), company, "2024-03")
    assert result.credits == []
    assert len(result.suppressed) == 1
    warning = result.suppressed[0]
    assert warning.rule_code == "PIS_COFINS_004"
    assert warning.regime == "LUCRO_PRESUMIDO"
    assert warning.tax_types == ("PIS",)
    assert warning.affected_items == 1
    assert "Cumulative" in warning.reason


def test_per_item_rules_suppressed_under_simples(engine, classifier):
    result = engine.compute_credits(_ledger_results(classifier), _simples(_march()), "2024-03")
    assert result.credits == []
    assert [s.rule_code for s in result.suppressed] == ["PIS_COFINS_004"]


def test_simples_rules_suppressed_outside_simples(engine, classifier):
    classified = classifier.classify([_st(1, "4000.00")], RuleSet.default())
    company = company_totals_from(Regime.LUCRO_REAL, [_march()])
    result = engine.compute_credits(classified, company, "2024-03")
    assert result.credits == []
    assert result.suppressed[0].rule_code == "SIMPLES_ICMS_ST_001"


# ── Per-item credits ─────────────────────────────────────────────────


def test_ledger_undiscounted_balance(engine, classifier):
    company = CompanyTotals(regime="lucro_real")
    result = engine.compute_credits(_ledger_results(classifier), company, "2024-03")
    credit = result.credits[0]
    # 1,650 computed - 1,000 discounted, factor 1.0
    assert credit.recoverable_value == Decimal("650.00")
    assert credit.confidence is ConfidenceLevel.HIGH
    assert credit.detail.basis == "per_item"
    assert credit.detail.recovery_factor == Decimal("1.0")


def test_recovery_factor_applied(engine, classifier):
    items = [
        _item(1, "1000.00", cfop="1403", direction="entry",
              taxes={TaxType.ICMS_ST: "100.00"}),
        _item(2, "500.00", cfop="1403", direction="entry",
              taxes={TaxType.ICMS_ST: "33.33"}),
    ]
    classified = classifier.classify(items, RuleSet.default())
    company = CompanyTotals(regime=Regime.LUCRO_REAL)
    credit = engine.compute_credits(classified, company, "2024-03").credits[0]
    # (100.00 + 33.33) x 0.15 = 19.9995
    assert credit.rule_code == "ICMS_ST_001"
    assert credit.original_tax_value == Decimal("133.33")
    assert credit.recoverable_value == Decimal("20.00")
    assert credit.confidence is ConfidenceLevel.LOW


def test_group_takes_weakest_confidence(engine, classifier):
    rules = RuleSet.from_records(
        [
            {
                "rule_code": "CUSTOM_001",
                "tax_types": ["PIS"],
                "treatment": "eligible-input-credit",
                "situation_codes": ["50"],
                "product_prefixes": ["8471"],
                "requires_tax_value": True,
            }
        ]
    )
    items = [
        _item(1, "100.00", ncm="12345678", codes={TaxType.PIS: "50"},
              taxes={TaxType.PIS: "10.00"}),
        _item(2, "100.00", ncm="84713012", taxes={TaxType.PIS: "5.00"}),
    ]
    classified = classifier.classify(items, rules)
    company = CompanyTotals(regime=Regime.LUCRO_REAL)
    credit = engine.compute_credits(classified, company, "2024-03").credits[0]
    assert credit.recoverable_value == Decimal("15.00")
    assert credit.confidence is ConfidenceLevel.MEDIUM


# ── All periods and summary ──────────────────────────────────────────


def test_compute_all_periods(engine, classifier):
    items = [
        _st(1, "4000.00"),
        _st(2, "4000.00", period="2024-04"),
    ]
    classified = classifier.classify(items, RuleSet.default())
    result = engine.compute_all_periods(classified, _simples(_march()))
    assert [c.period for c in result.credits] == ["2024-03"]
    assert result.warnings == ["2024-04: no declared totals, proportional credits skipped"]


def test_suppressed_rules_merged_across_periods(engine, classifier):
    items = [
        _st(1, "4000.00"),
        _st(2, "4000.00", period="2024-04"),
    ]
    classified = classifier.classify(items, RuleSet.default())
    company = CompanyTotals(regime=Regime.LUCRO_PRESUMIDO)
    result = engine.compute_all_periods(classified, company)
    assert len(result.suppressed) == 1
    assert result.suppressed[0].affected_items == 2


def test_undated_items_warn(engine, classifier):
    item = NormalizedLineItem(
        document_id="nfe",
        line_number=1,
        source_kind=DocumentKind.INVOICE_BATCH,
        operation_code="5405",
        direction="exit",
        item_value=Decimal("10"),
    )
    classified = classifier.classify([item], RuleSet.default())
    result = engine.compute_all_periods(classified, _simples(_march()))
    assert result.credits == []
    assert "1 classified matches have no period" in result.warnings[0]


def test_summary_totals(classifier):
    items = [_st(1, "4000.00"), _mono(2, "1000.00"), _item(3, "5000.00")]
    classified = classifier.classify(items, RuleSet.default())
    computation = compute_credits(classified, _simples(_march()), "2024-03")
    summary = summarize(computation, documents_analyzed=1)
    # 136.00 + 2.76 + 12.74
    assert summary.total_recoverable == Decimal("151.50")
    assert summary.by_confidence["high"] == Decimal("151.50")
    assert summary.by_confidence["low"] == Decimal("0")
    assert summary.by_tax_type["ICMS"] == Decimal("136.00")
    assert summary.credits_count == 3
    assert summary.documents_analyzed == 1
    assert summary.disclaimer == ADVISORY_NOTE


def test_company_totals_normalize_regime():
    company = CompanyTotals(regime="simples")
    assert company.regime is Regime.SIMPLES_NACIONAL
    assert company.for_period("2024-03") is None
