"""
Tax regime comparison simulator.

Computes the annual tax burden of one company under every supported
regime, ranks the eligible ones and recommends the cheapest:
- Simples Nacional: bracket rate by sector, with the Fator R discount
  for services when payroll / revenue >= 28%
- Lucro Presumido: presumed margin by sector, IRPJ + CSLL + cumulative
  PIS/COFINS
- Lucro Real: IRPJ + CSLL on actual profit, non-cumulative PIS/COFINS
  net of input credits
- Simples 2027 "dentro" / "fora": the two options of the IBS/CBS
  transition (LC 214/2025)

All inputs are optional and default to zero so that partially filled
forms still produce a full comparison.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional, Union

from loguru import logger

from fiscal_engine.errors import IneligibleRegimeError
from fiscal_engine.taxonomy import Regime, Sector, sector_from_cnae


_ZERO = Decimal("0")

SIMPLES_REVENUE_CEILING = Decimal("4800000")
CBS_IBS_RATE = Decimal("0.265")
DAS_REDUCTION_OUTSIDE = Decimal("0.30")
FATOR_R_THRESHOLD = Decimal("0.28")
FATOR_R_DISCOUNT = Decimal("0.85")
IRPJ_RATE = Decimal("0.15")
IRPJ_SURCHARGE_RATE = Decimal("0.10")
IRPJ_SURCHARGE_THRESHOLD = Decimal("240000")
CSLL_RATE = Decimal("0.09")
PIS_COFINS_CUMULATIVE = Decimal("0.0365")
PIS_COFINS_NON_CUMULATIVE = Decimal("0.0925")
EXPENSE_ESSENTIALITY_FACTOR = Decimal("0.50")

# Annual revenue ceilings of the six Simples brackets
_SIMPLES_BRACKETS = [180000, 360000, 720000, 1800000, 3600000, 4800000]

_SIMPLES_RATES: dict[Sector, list[float]] = {
    Sector.COMMERCE: [0.04, 0.073, 0.095, 0.107, 0.143, 0.19],
    Sector.INDUSTRY: [0.045, 0.078, 0.10, 0.112, 0.147, 0.30],
    Sector.SERVICES: [0.06, 0.112, 0.135, 0.16, 0.21, 0.33],
}

_PRESUMED_MARGIN: dict[Sector, float] = {
    Sector.COMMERCE: 0.08,
    Sector.INDUSTRY: 0.08,
    Sector.SERVICES: 0.32,
}

REGIME_NAMES: dict[Regime, str] = {
    Regime.SIMPLES_NACIONAL: "Simples Nacional",
    Regime.LUCRO_PRESUMIDO: "Lucro Presumido",
    Regime.LUCRO_REAL: "Lucro Real",
    Regime.SIMPLES_2027_DENTRO: 'Simples 2027 ("por dentro")',
    Regime.SIMPLES_2027_FORA: 'Simples 2027 ("por fora")',
}

TRANSITION_DISCLAIMER = (
    'Figures for "Simples 2027" are simulations based on the current state of '
    "the tax reform (LC 214/2025) and may change with future regulation. "
    "Consult an accountant before making a final decision."
)

_CEILING_REASON = "Annual revenue above the R$ 4.8 million Simples Nacional ceiling"


class CustomerProfile(Enum):
    B2B = "B2B"
    B2C = "B2C"
    MIXED = "MIXED"


_JUSTIFICATIONS: dict[Regime, dict[Optional[CustomerProfile], str]] = {
    Regime.SIMPLES_2027_FORA: {
        CustomerProfile.B2B: (
            "You sell mainly to other businesses (B2B), so generating IBS/CBS "
            "credits makes you more competitive: your customers can use the "
            "credits you generate."
        ),
        CustomerProfile.MIXED: (
            "Part of your sales go to businesses that can use IBS/CBS credits, "
            "and your input purchases generate enough credits to offset the "
            "extra complexity of paying IBS/CBS outside the DAS."
        ),
        None: (
            "Even selling to final consumers, your high volume of input "
            "purchases generates significant savings through IBS/CBS credits, "
            "offsetting the extra complexity."
        ),
    },
    Regime.SIMPLES_2027_DENTRO: {
        CustomerProfile.B2B: (
            "Keeping IBS/CBS inside the DAS is still cheaper for your figures, "
            "although your business customers will not receive full IBS/CBS "
            "credits from your invoices. Review this if customers start asking for them."
        ),
        None: (
            "The unified regime's simplicity fits your business model. Your "
            "customers are mostly final consumers who would not use the "
            "credits, so paying inside the DAS means less bureaucracy with no "
            "loss of competitiveness."
        ),
    },
    Regime.LUCRO_REAL: {
        None: (
            "With your cost structure and margin, Lucro Real lets you deduct a "
            "wider range of expenses and take PIS/COFINS credits, giving the "
            "lowest net tax burden."
        ),
    },
    Regime.LUCRO_PRESUMIDO: {
        None: (
            "For your activity and cost structure, the fixed presumed margin of "
            "Lucro Presumido gives the lowest tax burden with good "
            "predictability and lower operating complexity."
        ),
    },
    Regime.SIMPLES_NACIONAL: {
        None: (
            "The current Simples Nacional remains the cheapest option for your "
            "revenue and activity, with simplicity and a single unified rate."
        ),
    },
}


def _money(value: Any) -> Decimal:
    if value is None or value == "":
        return _ZERO
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    return max(amount, _ZERO)


def _round(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _rate(tax: Decimal, revenue: Decimal) -> Decimal:
    if revenue <= _ZERO:
        return _ZERO
    return (tax / revenue).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


@dataclass
class CompanyInputs:
    """Annual financial figures for one company snapshot."""

    annual_revenue: Any = None
    payroll: Any = None
    purchases: Any = None
    operating_expenses: Any = None
    cnae: Optional[str] = None
    customer_profile: Union[CustomerProfile, str] = CustomerProfile.MIXED

    def __post_init__(self) -> None:
        self.annual_revenue = _money(self.annual_revenue)
        self.payroll = _money(self.payroll)
        self.purchases = _money(self.purchases)
        self.operating_expenses = _money(self.operating_expenses)
        if not isinstance(self.customer_profile, CustomerProfile):
            try:
                self.customer_profile = CustomerProfile(
                    str(self.customer_profile or "MIXED").upper()
                )
            except ValueError:
                self.customer_profile = CustomerProfile.MIXED

    @property
    def sector(self) -> Sector:
        return sector_from_cnae(self.cnae)


@dataclass
class RegimeCalculation:
    regime: Regime
    name: str
    annual_tax: Decimal
    effective_rate: Decimal  # fraction of revenue
    credits_generated: Decimal
    eligible: bool
    ineligible_reason: Optional[str] = None
    advantage: str = ""
    breakdown: dict[str, Decimal] = field(default_factory=dict)


@dataclass
class ComparisonResult:
    regimes: list[RegimeCalculation]
    recommended: Regime
    gap_to_runner_up: Decimal
    justification: str
    disclaimer: str = TRANSITION_DISCLAIMER
    ineligible: list[IneligibleRegimeError] = field(default_factory=list)

    def get(self, regime: Regime) -> RegimeCalculation:
        for calc in self.regimes:
            if calc.regime is regime:
                return calc
        raise KeyError(regime)

    @property
    def ranking(self) -> list[RegimeCalculation]:
        """Eligible regimes, cheapest first, ties kept in computation order."""
        return sorted(
            (calc for calc in self.regimes if calc.eligible),
            key=lambda calc: calc.annual_tax,
        )


class RegimeSimulator:
    """
    Computes and ranks the annual tax under each regime.

    Stateless; every call to ``compare`` builds fresh calculations.
    """

    def simples_rate(self, inputs: CompanyInputs) -> Decimal:
        """Bracket rate for the sector, after the Fator R discount."""
        revenue = inputs.annual_revenue
        rates = _SIMPLES_RATES[inputs.sector]
        index = len(_SIMPLES_BRACKETS) - 1
        for i, ceiling in enumerate(_SIMPLES_BRACKETS):
            if revenue <= ceiling:
                index = i
                break
        rate = Decimal(str(rates[index]))
        if inputs.sector is Sector.SERVICES and revenue > _ZERO:
            if inputs.payroll / revenue >= FATOR_R_THRESHOLD:
                rate = rate * FATOR_R_DISCOUNT
        return rate

    def _ineligible(self, regime: Regime, advantage: str) -> RegimeCalculation:
        return RegimeCalculation(
            regime=regime,
            name=REGIME_NAMES[regime],
            annual_tax=_ZERO,
            effective_rate=_ZERO,
            credits_generated=_ZERO,
            eligible=False,
            ineligible_reason=_CEILING_REASON,
            advantage=advantage,
        )

    def simples_nacional(self, inputs: CompanyInputs) -> RegimeCalculation:
        if inputs.annual_revenue > SIMPLES_REVENUE_CEILING:
            return self._ineligible(Regime.SIMPLES_NACIONAL, "Simplicity and a single unified payment")
        rate = self.simples_rate(inputs)
        tax = inputs.annual_revenue * rate
        return RegimeCalculation(
            regime=Regime.SIMPLES_NACIONAL,
            name=REGIME_NAMES[Regime.SIMPLES_NACIONAL],
            annual_tax=_round(tax),
            effective_rate=rate.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP),
            credits_generated=_ZERO,
            eligible=True,
            advantage="Simplicity and a single unified payment",
            breakdown={"DAS": _round(tax)},
        )

    def lucro_presumido(self, inputs: CompanyInputs) -> RegimeCalculation:
        revenue = inputs.annual_revenue
        base = revenue * Decimal(str(_PRESUMED_MARGIN[inputs.sector]))
        irpj = base * IRPJ_RATE
        if base > IRPJ_SURCHARGE_THRESHOLD:
            irpj += (base - IRPJ_SURCHARGE_THRESHOLD) * IRPJ_SURCHARGE_RATE
        csll = base * CSLL_RATE
        pis_cofins = revenue * PIS_COFINS_CUMULATIVE
        total = irpj + csll + pis_cofins
        return RegimeCalculation(
            regime=Regime.LUCRO_PRESUMIDO,
            name=REGIME_NAMES[Regime.LUCRO_PRESUMIDO],
            annual_tax=_round(total),
            effective_rate=_rate(total, revenue),
            credits_generated=_ZERO,
            eligible=True,
            advantage="Predictability and simplicity",
            breakdown={
                "IRPJ": _round(irpj),
                "CSLL": _round(csll),
                "PIS/COFINS": _round(pis_cofins),
            },
        )

    def lucro_real(self, inputs: CompanyInputs) -> RegimeCalculation:
        revenue = inputs.annual_revenue
        expenses = inputs.operating_expenses
        profit = max(_ZERO, revenue - inputs.purchases - inputs.payroll - expenses)
        irpj = profit * IRPJ_RATE
        if profit > IRPJ_SURCHARGE_THRESHOLD:
            irpj += (profit - IRPJ_SURCHARGE_THRESHOLD) * IRPJ_SURCHARGE_RATE
        csll = profit * CSLL_RATE

        debit = revenue * PIS_COFINS_NON_CUMULATIVE
        credits = (
            inputs.purchases * PIS_COFINS_NON_CUMULATIVE
            + expenses * PIS_COFINS_NON_CUMULATIVE * EXPENSE_ESSENTIALITY_FACTOR
        )
        pis_cofins = max(_ZERO, debit - credits)
        total = irpj + csll + pis_cofins

        advantage = "Deduction of expenses and credits"
        if expenses > _ZERO:
            advantage += " (operating expenses credited at a 50% factor)"
        return RegimeCalculation(
            regime=Regime.LUCRO_REAL,
            name=REGIME_NAMES[Regime.LUCRO_REAL],
            annual_tax=_round(total),
            effective_rate=_rate(total, revenue),
            credits_generated=_round(credits),
            eligible=True,
            advantage=advantage,
            breakdown={
                "IRPJ": _round(irpj),
                "CSLL": _round(csll),
                "PIS/COFINS": _round(pis_cofins),
            },
        )

    def simples_2027_inside(self, inputs: CompanyInputs) -> RegimeCalculation:
        """IBS/CBS kept inside the DAS: same burden as today's Simples."""
        current = self.simples_nacional(inputs)
        if not current.eligible:
            return self._ineligible(Regime.SIMPLES_2027_DENTRO, "Simplicity preserved")
        return RegimeCalculation(
            regime=Regime.SIMPLES_2027_DENTRO,
            name=REGIME_NAMES[Regime.SIMPLES_2027_DENTRO],
            annual_tax=current.annual_tax,
            effective_rate=current.effective_rate,
            credits_generated=_ZERO,
            eligible=True,
            advantage="Simplicity preserved",
            breakdown=dict(current.breakdown),
        )

    def simples_2027_outside(self, inputs: CompanyInputs) -> RegimeCalculation:
        """IBS/CBS paid outside the DAS: reduced DAS plus net IBS/CBS."""
        if inputs.annual_revenue > SIMPLES_REVENUE_CEILING:
            return self._ineligible(Regime.SIMPLES_2027_FORA, "Generates IBS/CBS credits")
        revenue = inputs.annual_revenue
        das = revenue * self.simples_rate(inputs) * (1 - DAS_REDUCTION_OUTSIDE)
        cbs_ibs_credit = inputs.purchases * CBS_IBS_RATE
        cbs_ibs = max(_ZERO, revenue * CBS_IBS_RATE - cbs_ibs_credit)
        total = das + cbs_ibs
        return RegimeCalculation(
            regime=Regime.SIMPLES_2027_FORA,
            name=REGIME_NAMES[Regime.SIMPLES_2027_FORA],
            annual_tax=_round(total),
            effective_rate=_rate(total, revenue),
            credits_generated=_round(cbs_ibs_credit),
            eligible=True,
            advantage="Generates IBS/CBS credits",
            breakdown={"DAS": _round(das), "IBS/CBS": _round(cbs_ibs)},
        )

    def compare(self, inputs: CompanyInputs) -> ComparisonResult:
        regimes = [
            self.simples_nacional(inputs),
            self.lucro_presumido(inputs),
            self.lucro_real(inputs),
            self.simples_2027_inside(inputs),
            self.simples_2027_outside(inputs),
        ]
        ranked = sorted((r for r in regimes if r.eligible), key=lambda r: r.annual_tax)
        recommended = ranked[0].regime if ranked else Regime.SIMPLES_NACIONAL
        gap = ranked[1].annual_tax - ranked[0].annual_tax if len(ranked) > 1 else _ZERO

        logger.debug(
            f"Regime comparison for revenue {inputs.annual_revenue}: "
            + ", ".join(f"{r.regime.value}={r.annual_tax}" for r in ranked)
        )
        return ComparisonResult(
            regimes=regimes,
            recommended=recommended,
            gap_to_runner_up=gap,
            justification=justification_for(recommended, inputs.customer_profile),
            ineligible=[
                IneligibleRegimeError(r.regime.value, r.ineligible_reason or "")
                for r in regimes
                if not r.eligible
            ],
        )


def justification_for(regime: Regime, profile: CustomerProfile) -> str:
    templates = _JUSTIFICATIONS.get(regime, {})
    return templates.get(profile) or templates.get(None) or (
        "Analysis based on the figures provided."
    )


def compare_regimes(inputs: Union[CompanyInputs, dict]) -> ComparisonResult:
    """Compare all regimes for one company snapshot."""
    if isinstance(inputs, dict):
        inputs = CompanyInputs(**inputs)
    return RegimeSimulator().compare(inputs)
