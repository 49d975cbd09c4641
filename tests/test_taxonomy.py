"""Tests for the TaxonomyTables."""

from decimal import Decimal

import pytest

from fiscal_engine.taxonomy import (
    Regime,
    Sector,
    TaxonomyTables,
    TaxType,
    annex_from_cnae,
    bracket_from_rbt12,
    is_entry_operation,
    is_exit_operation,
    normalize_regime,
    sector_from_cnae,
)


@pytest.fixture
def tables() -> TaxonomyTables:
    return TaxonomyTables()


# ── Single-phase products ────────────────────────────────────────────


def test_medicament_is_monophasic(tables: TaxonomyTables):
    product = tables.monophasic_product("3004.90.99")
    assert product is not None
    assert product.category == "Pharmaceuticals"
    assert product.ncm_prefix == "3004"


def test_zero_rate_medicament_is_excluded(tables: TaxonomyTables):
    # 3004.90.46 starts with 3004 but is on the exclusion list
    assert tables.monophasic_product("30049046") is None
    assert not tables.is_monophasic("30049046")


def test_oral_hygiene_is_not_monophasic(tables: TaxonomyTables):
    assert not tables.is_monophasic("33061000")


def test_longest_prefix_wins(tables: TaxonomyTables):
    product = tables.monophasic_product("30021000")
    assert product is not None
    assert product.ncm_prefix == "300210"


def test_beverages_and_auto_parts(tables: TaxonomyTables):
    assert tables.monophasic_product("22030000").category == "Beverages"
    assert tables.monophasic_product("87089990").category == "Vehicles and auto parts"


def test_furniture_is_not_monophasic(tables: TaxonomyTables):
    assert tables.monophasic_product("94036000") is None


def test_empty_ncm(tables: TaxonomyTables):
    assert tables.monophasic_product(None) is None
    assert tables.monophasic_product("") is None


def test_monophasic_table_loaded(tables: TaxonomyTables):
    assert tables.monophasic_count > 40


# ── Situation codes ──────────────────────────────────────────────────


def test_single_phase_cst(tables: TaxonomyTables):
    assert tables.is_single_phase_cst("04")
    assert tables.is_single_phase_cst("06")
    assert not tables.is_single_phase_cst("01")
    assert not tables.is_single_phase_cst(None)


def test_credit_cst(tables: TaxonomyTables):
    info = tables.situation_code("50")
    assert info is not None
    assert info.credit_bearing


def test_csosn_500_is_substitution(tables: TaxonomyTables):
    assert tables.csosn("500").substitution
    assert tables.icms_paid_by_substitution("500")
    assert not tables.icms_paid_by_substitution("102")


def test_ledger_credit_type(tables: TaxonomyTables):
    assert tables.ledger_credit_type("04") == "Electric and thermal energy"
    assert tables.ledger_credit_type("99") == "Other"


# ── Operation codes ──────────────────────────────────────────────────


def test_entry_and_exit_operations():
    assert is_entry_operation("1102")
    assert is_entry_operation("2102")
    assert is_exit_operation("5405")
    assert is_exit_operation("6102")
    assert not is_exit_operation("1102")
    assert not is_entry_operation(None)
    assert not is_exit_operation("")


# ── Simples Nacional tables ──────────────────────────────────────────


def test_bracket_from_rbt12():
    assert bracket_from_rbt12(180000) == 1
    assert bracket_from_rbt12(180000.01) == 2
    assert bracket_from_rbt12(900000) == 4
    assert bracket_from_rbt12(5000000) == 6


def test_first_bracket_effective_rate_equals_nominal(tables: TaxonomyTables):
    rate = tables.effective_rate(150000, "I")
    assert rate is not None
    assert rate.bracket == 1
    assert rate.rate == Decimal("0.0400")


def test_effective_rate_applies_deduction(tables: TaxonomyTables):
    # (900,000 x 10.7% - 22,500) / 900,000 = 8.20%
    rate = tables.effective_rate(900000, "I")
    assert rate.bracket == 4
    assert rate.rate == Decimal("0.0820")


def test_effective_rate_unknown_annex(tables: TaxonomyTables):
    assert tables.effective_rate(900000, "VII") is None


def test_effective_rate_zero_rbt12(tables: TaxonomyTables):
    assert tables.effective_rate(0, "I") is None


def test_annex_label_forms(tables: TaxonomyTables):
    assert tables.annex("anexo_iii").annex == "III"
    assert tables.annex("Anexo V").annex == "V"


def test_repartition_percent(tables: TaxonomyTables):
    assert tables.repartition_percent(150000, "I", TaxType.ICMS) == 34.0
    assert tables.repartition_percent(150000, "I", TaxType.PIS) == 2.76
    # Annex III has no ICMS share
    assert tables.repartition_percent(150000, "III", TaxType.ICMS) == 0.0


def test_repartition_sums_to_100(tables: TaxonomyTables):
    for annex in ("I", "II", "III", "IV", "V"):
        for bracket in tables.annex(annex).brackets:
            assert sum(bracket.repartition.values()) == pytest.approx(100.0, abs=0.05)


# ── Sector and regime helpers ────────────────────────────────────────


def test_sector_from_cnae():
    assert sector_from_cnae("4711-3/02") is Sector.COMMERCE
    assert sector_from_cnae("1091-1/01") is Sector.INDUSTRY
    assert sector_from_cnae("6201-5/01") is Sector.SERVICES
    assert sector_from_cnae(None) is Sector.COMMERCE


def test_annex_from_cnae():
    assert annex_from_cnae("4711") == "I"
    assert annex_from_cnae("1091") == "II"
    assert annex_from_cnae("8630") == "III"
    assert annex_from_cnae("4120") == "IV"
    assert annex_from_cnae("6201") == "V"


def test_normalize_regime_aliases():
    assert normalize_regime("Simples Nacional") is Regime.SIMPLES_NACIONAL
    assert normalize_regime("simples") is Regime.SIMPLES_NACIONAL
    assert normalize_regime("lucro real") is Regime.LUCRO_REAL
    assert normalize_regime("LUCRO_PRESUMIDO") is Regime.LUCRO_PRESUMIDO
    assert normalize_regime(Regime.LUCRO_REAL) is Regime.LUCRO_REAL


def test_normalize_unknown_regime_raises():
    with pytest.raises(ValueError):
        normalize_regime("bogus")
