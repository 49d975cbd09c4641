"""Tests for the rule table and regime exclusion list."""

import json

import pytest

from fiscal_engine.errors import RuleTableError
from fiscal_engine.rules import (
    DEFAULT_RULES_VERSION,
    Allocation,
    ConfidenceLevel,
    CreditRule,
    ExclusionList,
    RuleSet,
    Treatment,
)
from fiscal_engine.taxonomy import Regime, TaxType


def _record(rule_code: str = "CUSTOM_001", **overrides) -> dict:
    record = {
        "rule_code": rule_code,
        "name": "Custom rule",
        "tax_types": ["PIS"],
        "treatment": "eligible-input-credit",
        "legal_basis": "Lei 10.637/2002",
        "product_prefixes": ["8471"],
    }
    record.update(overrides)
    return record


# ── Built-in rule table ──────────────────────────────────────────────


def test_default_rule_set():
    rules = RuleSet.default()
    assert rules.version == DEFAULT_RULES_VERSION
    codes = [r.rule_code for r in rules.rules]
    assert len(codes) == len(set(codes))
    assert "SIMPLES_MONO_001" in codes
    assert "ICMS_ST_001" in codes


def test_simples_rules_are_proportional():
    rules = RuleSet.default()
    assert rules.get("SIMPLES_MONO_001").allocation is Allocation.PROPORTIONAL
    assert rules.get("SIMPLES_ICMS_ST_001").allocation is Allocation.PROPORTIONAL
    assert rules.get("PIS_COFINS_001").allocation is Allocation.PER_ITEM


def test_simples_rules_split_federal_and_state_taxes():
    rules = RuleSet.default()
    assert rules.get("SIMPLES_MONO_001").tax_types == (TaxType.PIS, TaxType.COFINS)
    assert rules.get("SIMPLES_ICMS_ST_001").tax_types == (TaxType.ICMS,)


def test_get_unknown_rule():
    assert RuleSet.default().get("NOPE") is None


def test_confidence_scores():
    assert ConfidenceLevel.HIGH.score == 90
    assert ConfidenceLevel.MEDIUM.score == 70
    assert ConfidenceLevel.LOW.score == 45
    assert ConfidenceLevel.LOW.rank < ConfidenceLevel.MEDIUM.rank < ConfidenceLevel.HIGH.rank


# ── Loading rule tables ──────────────────────────────────────────────


def test_from_records_defaults():
    rule = RuleSet.from_records([_record()]).rules[0]
    assert isinstance(rule, CreditRule)
    assert rule.tax_types == (TaxType.PIS,)
    assert rule.treatment is Treatment.INPUT_CREDIT
    assert rule.allocation is Allocation.PER_ITEM
    assert rule.recovery_factor == 1.0
    assert rule.active


def test_from_json_object():
    text = json.dumps({"version": "2025.2", "rules": [_record()]})
    rules = RuleSet.from_json(text)
    assert rules.version == "2025.2"
    assert rules.get("CUSTOM_001").product_prefixes == ("8471",)


def test_from_json_bare_list():
    rules = RuleSet.from_json(json.dumps([_record()]))
    assert rules.version == "custom"


def test_default_table_survives_json():
    original = RuleSet.default()
    loaded = RuleSet.from_json(original.to_json())
    assert loaded.version == original.version
    assert loaded.rules == original.rules


def test_inactive_rule_not_active():
    rules = RuleSet.from_records([_record(), _record("OFF_001", active=False)])
    assert [r.rule_code for r in rules.active_rules] == ["CUSTOM_001"]


def test_duplicate_rule_codes_rejected():
    with pytest.raises(RuleTableError):
        RuleSet.from_records([_record(), _record()])


def test_unknown_treatment_rejected():
    with pytest.raises(RuleTableError):
        RuleSet.from_records([_record(treatment="refund-everything")])


def test_unknown_tax_type_rejected():
    with pytest.raises(RuleTableError):
        RuleSet.from_records([_record(tax_types=["VAT"])])


def test_missing_field_rejected():
    record = _record()
    del record["treatment"]
    with pytest.raises(RuleTableError):
        RuleSet.from_records([record])


def test_invalid_json_rejected():
    with pytest.raises(RuleTableError):
        RuleSet.from_json("{rules")


def test_json_without_rules_rejected():
    with pytest.raises(RuleTableError):
        RuleSet.from_json(json.dumps({"version": "1"}))


# ── Regime exclusion list ────────────────────────────────────────────


@pytest.fixture
def exclusions() -> ExclusionList:
    return ExclusionList.default()


def test_simples_excludes_per_item_rules(exclusions: ExclusionList):
    assert exclusions.is_excluded(Regime.SIMPLES_NACIONAL, "PIS_COFINS_001")
    assert exclusions.is_excluded(Regime.SIMPLES_NACIONAL, "ICMS_001")
    assert not exclusions.is_excluded(Regime.SIMPLES_NACIONAL, "SIMPLES_MONO_001")


def test_presumed_profit_excludes_input_credits(exclusions: ExclusionList):
    reason = exclusions.reason(Regime.LUCRO_PRESUMIDO, "PIS_COFINS_004")
    assert reason is not None
    assert "Cumulative" in reason
    assert not exclusions.is_excluded(Regime.LUCRO_PRESUMIDO, "PIS_COFINS_002")


def test_actual_profit_excludes_only_simples_rules(exclusions: ExclusionList):
    assert exclusions.is_excluded(Regime.LUCRO_REAL, "SIMPLES_MONO_001")
    assert not exclusions.is_excluded(Regime.LUCRO_REAL, "PIS_COFINS_001")
    assert set(exclusions.for_regime(Regime.LUCRO_REAL)) == {
        "SIMPLES_MONO_001",
        "SIMPLES_ICMS_ST_001",
    }


def test_exclusion_lookup_accepts_regime_strings(exclusions: ExclusionList):
    assert exclusions.is_excluded("simples", "PIS_COFINS_004")
    assert exclusions.is_excluded("Lucro Presumido", "PIS_COFINS_004")


def test_transition_regimes_have_no_exclusions(exclusions: ExclusionList):
    assert exclusions.for_regime(Regime.SIMPLES_2027_FORA) == {}


def test_exclusions_from_json():
    text = json.dumps({"LUCRO_REAL": {"ICMS_001": "Not applicable here"}})
    exclusions = ExclusionList.from_json(text)
    assert exclusions.reason("LUCRO_REAL", "ICMS_001") == "Not applicable here"
    assert exclusions.to_dict() == {"LUCRO_REAL": {"ICMS_001": "Not applicable here"}}


def test_exclusions_unknown_regime_rejected():
    with pytest.raises(RuleTableError):
        ExclusionList.from_json(json.dumps({"FLAT_TAX": {"ICMS_001": "x"}}))


def test_exclusions_invalid_json_rejected():
    with pytest.raises(RuleTableError):
        ExclusionList.from_json("[")
