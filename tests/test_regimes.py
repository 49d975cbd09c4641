"""Tests for the RegimeSimulator."""

from decimal import Decimal

import pytest

from fiscal_engine.errors import IneligibleRegimeError
from fiscal_engine.regimes import (
    TRANSITION_DISCLAIMER,
    CompanyInputs,
    CustomerProfile,
    RegimeSimulator,
    compare_regimes,
    justification_for,
)
from fiscal_engine.taxonomy import Regime, Sector


@pytest.fixture
def simulator() -> RegimeSimulator:
    return RegimeSimulator()


def _inputs(
    revenue: str = "1000000",
    payroll: str = "0",
    purchases: str = "0",
    expenses: str = "0",
    cnae: str | None = "4711-3/02",
    profile: str = "MIXED",
) -> CompanyInputs:
    return CompanyInputs(
        annual_revenue=Decimal(revenue),
        payroll=Decimal(payroll),
        purchases=Decimal(purchases),
        operating_expenses=Decimal(expenses),
        cnae=cnae,
        customer_profile=profile,
    )


# ── Simples Nacional ─────────────────────────────────────────────────


def test_fator_r_discount_for_services(simulator: RegimeSimulator):
    # Payroll 30% of revenue: 21% bracket rate x 0.85
    with_payroll = simulator.simples_nacional(
        _inputs("2000000", payroll="600000", cnae="6201-5/01")
    )
    assert with_payroll.annual_tax == Decimal("357000.00")
    assert with_payroll.effective_rate == Decimal("0.1785")

    without_payroll = simulator.simples_nacional(_inputs("2000000", cnae="6201-5/01"))
    assert without_payroll.annual_tax == Decimal("420000.00")
    assert with_payroll.annual_tax / without_payroll.annual_tax == Decimal("0.85")


def test_fator_r_below_threshold(simulator: RegimeSimulator):
    # Payroll 25% of revenue: no discount
    calc = simulator.simples_nacional(_inputs("2000000", payroll="500000", cnae="6201"))
    assert calc.annual_tax == Decimal("420000.00")


def test_fator_r_not_applied_to_commerce(simulator: RegimeSimulator):
    calc = simulator.simples_nacional(_inputs("2000000", payroll="600000"))
    # Commerce, 3.6M bracket: 14.3%
    assert calc.annual_tax == Decimal("286000.00")


def test_simples_bracket_boundary(simulator: RegimeSimulator):
    assert simulator.simples_rate(_inputs("180000")) == Decimal("0.04")
    assert simulator.simples_rate(_inputs("180001")) == Decimal("0.073")


def test_revenue_above_ceiling_is_ineligible(simulator: RegimeSimulator):
    result = simulator.compare(_inputs("5000000"))
    for regime in (Regime.SIMPLES_NACIONAL, Regime.SIMPLES_2027_DENTRO, Regime.SIMPLES_2027_FORA):
        calc = result.get(regime)
        assert not calc.eligible
        assert calc.ineligible_reason
        assert calc.annual_tax == Decimal("0")
    assert len(result.regimes) == 5
    assert result.recommended in (Regime.LUCRO_PRESUMIDO, Regime.LUCRO_REAL)
    assert all(isinstance(e, IneligibleRegimeError) for e in result.ineligible)
    assert {e.regime for e in result.ineligible} == {
        "SIMPLES_NACIONAL",
        "SIMPLES_2027_DENTRO",
        "SIMPLES_2027_FORA",
    }


# ── Lucro Presumido and Lucro Real ───────────────────────────────────


def test_lucro_presumido_commerce(simulator: RegimeSimulator):
    calc = simulator.lucro_presumido(_inputs("1000000"))
    # Base 80,000: IRPJ 12,000 + CSLL 7,200 + PIS/COFINS 36,500
    assert calc.annual_tax == Decimal("55700.00")
    assert calc.effective_rate == Decimal("0.0557")
    assert calc.breakdown["IRPJ"] == Decimal("12000.00")


def test_lucro_presumido_services_surcharge(simulator: RegimeSimulator):
    calc = simulator.lucro_presumido(_inputs("1000000", cnae="6201"))
    # Base 320,000: IRPJ 48,000 + 8,000 surcharge, CSLL 28,800, PIS/COFINS 36,500
    assert calc.annual_tax == Decimal("121300.00")
    assert calc.breakdown["IRPJ"] == Decimal("56000.00")


def test_lucro_real(simulator: RegimeSimulator):
    calc = simulator.lucro_real(
        _inputs("1000000", payroll="200000", purchases="400000", expenses="100000")
    )
    # Profit 300,000: IRPJ 45,000 + 6,000, CSLL 27,000
    # PIS/COFINS 92,500 - (37,000 + 4,625) credits = 50,875
    assert calc.annual_tax == Decimal("128875.00")
    assert calc.credits_generated == Decimal("41625.00")
    assert "50%" in calc.advantage


def test_lucro_real_loss_pays_no_income_tax(simulator: RegimeSimulator):
    calc = simulator.lucro_real(_inputs("100000", purchases="150000"))
    assert calc.breakdown["IRPJ"] == Decimal("0.00")
    assert calc.breakdown["PIS/COFINS"] == Decimal("0.00")


# ── Simples 2027 transition ──────────────────────────────────────────


def test_inside_matches_current_simples(simulator: RegimeSimulator):
    inputs = _inputs("1000000")
    assert (
        simulator.simples_2027_inside(inputs).annual_tax
        == simulator.simples_nacional(inputs).annual_tax
    )


def test_outside_reduces_das_and_credits_purchases(simulator: RegimeSimulator):
    calc = simulator.simples_2027_outside(_inputs("1000000", purchases="600000"))
    # DAS 1,000,000 x 10.7% x 0.70 = 74,900
    # IBS/CBS 265,000 - 159,000 = 106,000
    assert calc.breakdown["DAS"] == Decimal("74900.00")
    assert calc.breakdown["IBS/CBS"] == Decimal("106000.00")
    assert calc.annual_tax == Decimal("180900.00")
    assert calc.credits_generated == Decimal("159000.00")


# ── Ranking ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "revenue,payroll,purchases,cnae",
    [
        ("100000", "0", "0", "4711"),
        ("1000000", "200000", "400000", "4711"),
        ("2000000", "600000", "100000", "6201"),
        ("3000000", "100000", "2500000", "1091"),
        ("6000000", "900000", "1000000", "6201"),
    ],
)
def test_recommended_is_cheapest_eligible(revenue, payroll, purchases, cnae):
    result = compare_regimes(_inputs(revenue, payroll, purchases, cnae=cnae))
    recommended = result.get(result.recommended)
    assert recommended.eligible
    for calc in result.regimes:
        if calc.eligible:
            assert recommended.annual_tax <= calc.annual_tax
    ranking = result.ranking
    assert result.gap_to_runner_up == ranking[1].annual_tax - ranking[0].annual_tax


def test_tie_keeps_computation_order():
    # Simples and Simples 2027 "dentro" always cost the same
    result = compare_regimes(_inputs("100000"))
    assert result.recommended is Regime.SIMPLES_NACIONAL
    assert result.gap_to_runner_up == Decimal("0")
    assert result.ranking[1].regime is Regime.SIMPLES_2027_DENTRO


def test_missing_inputs_default_to_zero():
    result = compare_regimes({})
    assert len(result.regimes) == 5
    assert all(calc.annual_tax == Decimal("0") for calc in result.regimes)
    assert result.recommended is Regime.SIMPLES_NACIONAL


def test_dict_inputs():
    result = compare_regimes({"annual_revenue": "1000000", "cnae": "4711"})
    assert result.get(Regime.LUCRO_PRESUMIDO).annual_tax == Decimal("55700.00")


def test_result_carries_disclaimer():
    result = compare_regimes(_inputs())
    assert result.disclaimer == TRANSITION_DISCLAIMER
    assert "LC 214/2025" in result.disclaimer
    assert result.justification


# ── Inputs and justification ─────────────────────────────────────────


def test_negative_inputs_clamped():
    inputs = CompanyInputs(annual_revenue=Decimal("-10"), payroll=-5)
    assert inputs.annual_revenue == Decimal("0")
    assert inputs.payroll == Decimal("0")


def test_customer_profile_parsing():
    assert CompanyInputs(customer_profile="b2b").customer_profile is CustomerProfile.B2B
    assert CompanyInputs(customer_profile="retail").customer_profile is CustomerProfile.MIXED
    assert CompanyInputs().sector is Sector.COMMERCE


def test_justification_depends_on_profile():
    b2b = justification_for(Regime.SIMPLES_2027_FORA, CustomerProfile.B2B)
    b2c = justification_for(Regime.SIMPLES_2027_FORA, CustomerProfile.B2C)
    assert "B2B" in b2b
    assert b2b != b2c


def test_justification_default():
    text = justification_for(Regime.LUCRO_REAL, CustomerProfile.B2B)
    assert "Lucro Real" in text
