"""
Credit computation engine.

Turns classified line items into recoverable amounts.

Two paths:
- Proportional allocation (Simples Nacional): the DAS is one blended rate
  on revenue, so the recoverable share of a tax is the declared (or
  estimated) amount paid times the share of revenue that was improperly
  taxed.
- Per item (presumed and actual profit): the tax highlighted on each
  line, less any credit already taken, times the rule's recovery factor.

The regime exclusion list is consulted before any credit is emitted and
every suppressed rule is reported back with its reason.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from loguru import logger

from fiscal_engine.classifier import ClassificationResult
from fiscal_engine.errors import ExcludedRuleWarning
from fiscal_engine.rules import (
    Allocation,
    ConfidenceLevel,
    CreditRule,
    ExclusionList,
    Treatment,
)
from fiscal_engine.taxonomy import Regime, TaxonomyTables, TaxType, normalize_regime


ADVISORY_NOTE = (
    "All amounts are advisory estimates and require review by a qualified "
    "tax professional before any claim or correction is filed."
)

_ZERO = Decimal("0")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")


def _round(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass
class PeriodTotals:
    """Declared company figures for one period (YYYY-MM)."""

    period: str
    total_declared_revenue: Decimal = _ZERO
    declared_tax: dict[TaxType, Decimal] = field(default_factory=dict)
    effective_rate: Optional[Decimal] = None  # fraction
    repartition_percent: dict[TaxType, Decimal] = field(default_factory=dict)
    total_due: Optional[Decimal] = None
    annex: Optional[str] = None
    rbt12: Optional[Decimal] = None


@dataclass
class CompanyTotals:
    regime: Regime
    periods: dict[str, PeriodTotals] = field(default_factory=dict)
    annex: Optional[str] = None
    rbt12: Optional[Decimal] = None

    def __post_init__(self) -> None:
        self.regime = normalize_regime(self.regime)

    def for_period(self, period: str) -> Optional[PeriodTotals]:
        return self.periods.get(period)

    def add_period(self, totals: PeriodTotals) -> None:
        self.periods[totals.period] = totals


@dataclass(frozen=True)
class CreditDetail:
    """How a recoverable amount was derived."""

    basis: str  # declared | estimated | per_item
    base_revenue: Decimal
    total_revenue: Optional[Decimal] = None
    revenue_share: Optional[Decimal] = None
    effective_rate: Optional[Decimal] = None
    repartition_percent: Optional[Decimal] = None
    recovery_factor: Optional[Decimal] = None
    items_count: int = 0


@dataclass(frozen=True)
class RecoverableCredit:
    """One recoverable amount per (period, rule, tax type)."""

    period: str
    rule_code: str
    tax_type: TaxType
    treatment: Treatment
    original_tax_value: Decimal
    recoverable_value: Decimal
    legal_basis: str
    confidence: ConfidenceLevel
    detail: CreditDetail
    description: str = ""
    document_ids: tuple[str, ...] = ()

    @property
    def confidence_score(self) -> int:
        return self.confidence.score


@dataclass
class CreditComputation:
    credits: list[RecoverableCredit] = field(default_factory=list)
    suppressed: list[ExcludedRuleWarning] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def extend(self, other: "CreditComputation") -> None:
        self.credits.extend(other.credits)
        self.suppressed.extend(other.suppressed)
        self.warnings.extend(other.warnings)


@dataclass
class CreditSummary:
    """Result summary handed to the caller."""

    total_recoverable: Decimal
    by_confidence: dict[str, Decimal]
    by_tax_type: dict[str, Decimal]
    credits_count: int
    documents_analyzed: int
    credits: list[RecoverableCredit]
    suppressed_rules: list[ExcludedRuleWarning] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    disclaimer: str = ADVISORY_NOTE


class CreditEngine:
    """
    Computes recoverable credits from classification results.

    The exclusion list and taxonomy tables are injected once; company
    totals are supplied per call.
    """

    def __init__(
        self,
        exclusions: Optional[ExclusionList] = None,
        taxonomy: Optional[TaxonomyTables] = None,
    ) -> None:
        self.exclusions = exclusions or ExclusionList.default()
        self.taxonomy = taxonomy or TaxonomyTables()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def compute_credits(
        self,
        classified: Iterable[ClassificationResult],
        company_totals: CompanyTotals,
        period: str,
    ) -> CreditComputation:
        """Credits for one period. Results for other periods are ignored."""
        results = [r for r in classified if r.item.period == period]
        outcome = CreditComputation()
        allowed = self._apply_exclusions(results, company_totals.regime, outcome)

        proportional = [r for r in allowed if r.rule.allocation is Allocation.PROPORTIONAL]
        per_item = [r for r in allowed if r.rule.allocation is Allocation.PER_ITEM]

        if proportional:
            totals = company_totals.for_period(period)
            if totals is None:
                outcome.warnings.append(
                    f"{period}: no declared totals, proportional credits skipped"
                )
            else:
                self._proportional(proportional, totals, company_totals, outcome)
        if per_item:
            self._per_item(per_item, period, outcome)

        outcome.credits.sort(key=lambda c: (c.period, c.rule_code, c.tax_type.value))
        return outcome

    def compute_all_periods(
        self,
        classified: Iterable[ClassificationResult],
        company_totals: CompanyTotals,
    ) -> CreditComputation:
        """Run ``compute_credits`` for every period present in the items."""
        results = list(classified)
        undated = sum(1 for r in results if r.item.period is None)
        periods = sorted({r.item.period for r in results if r.item.period is not None})

        outcome = CreditComputation()
        if undated:
            outcome.warnings.append(
                f"{undated} classified matches have no period and were not computed"
            )
        for period in periods:
            outcome.extend(self.compute_credits(results, company_totals, period))
        outcome.suppressed = _merge_suppressed(outcome.suppressed)
        return outcome

    # ------------------------------------------------------------------
    # Exclusions
    # ------------------------------------------------------------------

    def _apply_exclusions(
        self,
        results: list[ClassificationResult],
        regime: Regime,
        outcome: CreditComputation,
    ) -> list[ClassificationResult]:
        allowed: list[ClassificationResult] = []
        excluded: dict[str, list[ClassificationResult]] = {}
        for result in results:
            if self.exclusions.is_excluded(regime, result.rule_code):
                excluded.setdefault(result.rule_code, []).append(result)
            else:
                allowed.append(result)

        for rule_code, hits in excluded.items():
            reason = self.exclusions.reason(regime, rule_code) or ""
            tax_types = tuple(dict.fromkeys(r.tax_type.value for r in hits))
            items = {(r.item.document_id, r.item.line_number) for r in hits}
            logger.info(f"Rule {rule_code} suppressed for {regime.value}: {reason}")
            outcome.suppressed.append(
                ExcludedRuleWarning(
                    rule_code=rule_code,
                    regime=regime.value,
                    reason=reason,
                    tax_types=tax_types,
                    affected_items=len(items),
                )
            )
        return allowed

    # ------------------------------------------------------------------
    # Proportional allocation
    # ------------------------------------------------------------------

    def _proportional(
        self,
        results: list[ClassificationResult],
        totals: PeriodTotals,
        company: CompanyTotals,
        outcome: CreditComputation,
    ) -> None:
        revenue = totals.total_declared_revenue
        if revenue <= _ZERO:
            logger.debug(f"{totals.period}: declared revenue is zero, no credits")
            return

        for (rule, tax_type), group in _group(results).items():
            affected = _affected_revenue(group)
            share = affected / revenue
            if share <= _ZERO:
                continue
            if share > _ONE:
                outcome.warnings.append(
                    f"{totals.period}: {rule.rule_code}/{tax_type.value} itemized "
                    f"revenue {affected} exceeds declared revenue {revenue}; share capped at 1"
                )
                share = _ONE

            paid = self._tax_paid(tax_type, totals, company)
            if paid is None:
                outcome.warnings.append(
                    f"{totals.period}: no declared or estimable {tax_type.value} "
                    f"amount for {rule.rule_code}"
                )
                continue
            tax_paid, basis, rate, repartition = paid

            recoverable = _round(tax_paid * share)
            logger.debug(
                f"{totals.period} {rule.rule_code}/{tax_type.value}: revenue={revenue} "
                f"affected={affected} share={share:.6f} paid={tax_paid} ({basis})"
            )
            if recoverable <= _ZERO:
                continue

            outcome.credits.append(
                RecoverableCredit(
                    period=totals.period,
                    rule_code=rule.rule_code,
                    tax_type=tax_type,
                    treatment=rule.treatment,
                    original_tax_value=_round(tax_paid),
                    recoverable_value=recoverable,
                    legal_basis=rule.legal_basis,
                    confidence=(
                        ConfidenceLevel.HIGH if basis == "declared" else ConfidenceLevel.MEDIUM
                    ),
                    detail=CreditDetail(
                        basis=basis,
                        base_revenue=_round(affected),
                        total_revenue=_round(revenue),
                        revenue_share=share.quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP),
                        effective_rate=rate,
                        repartition_percent=repartition,
                        items_count=len(group),
                    ),
                    description=rule.name,
                    document_ids=_document_ids(group),
                )
            )

    def _tax_paid(
        self, tax_type: TaxType, totals: PeriodTotals, company: CompanyTotals
    ) -> Optional[tuple[Decimal, str, Optional[Decimal], Optional[Decimal]]]:
        """
        Amount of ``tax_type`` paid in the period.

        Declared amounts win. Otherwise the amount is estimated as
        revenue x effective rate x repartition %, filling in the rate
        and the repartition from the Simples tables when needed.
        """
        if tax_type in totals.declared_tax:
            return totals.declared_tax[tax_type], "declared", totals.effective_rate, None

        revenue = totals.total_declared_revenue
        rbt12 = totals.rbt12 if totals.rbt12 is not None else company.rbt12
        annex = totals.annex or company.annex

        rate = totals.effective_rate
        if rate is None and totals.total_due is not None and revenue > _ZERO:
            rate = totals.total_due / revenue
        if rate is None and rbt12 and annex:
            table_rate = self.taxonomy.effective_rate(float(rbt12), annex)
            rate = table_rate.rate if table_rate else None

        repartition = totals.repartition_percent.get(tax_type)
        if repartition is None and rbt12 and annex:
            percent = self.taxonomy.repartition_percent(float(rbt12), annex, tax_type)
            repartition = Decimal(str(percent)) if percent is not None else None

        if rate is None or repartition is None:
            return None
        return revenue * rate * repartition / _HUNDRED, "estimated", rate, repartition

    # ------------------------------------------------------------------
    # Per item
    # ------------------------------------------------------------------

    def _per_item(
        self,
        results: list[ClassificationResult],
        period: str,
        outcome: CreditComputation,
    ) -> None:
        for (rule, tax_type), group in _group(results).items():
            factor = Decimal(str(rule.recovery_factor))
            original = _ZERO
            for result in group:
                if rule.requires_unclaimed_credit:
                    original += result.item.unclaimed_credit(tax_type)
                else:
                    original += result.item.tax_value(tax_type)
            recoverable = _round(original * factor)
            if recoverable <= _ZERO:
                continue

            outcome.credits.append(
                RecoverableCredit(
                    period=period,
                    rule_code=rule.rule_code,
                    tax_type=tax_type,
                    treatment=rule.treatment,
                    original_tax_value=_round(original),
                    recoverable_value=recoverable,
                    legal_basis=rule.legal_basis,
                    confidence=min(
                        (r.confidence for r in group), key=lambda c: c.rank
                    ),
                    detail=CreditDetail(
                        basis="per_item",
                        base_revenue=_round(_affected_revenue(group)),
                        recovery_factor=factor,
                        items_count=len(group),
                    ),
                    description=rule.name,
                    document_ids=_document_ids(group),
                )
            )


def _group(
    results: list[ClassificationResult],
) -> dict[tuple[CreditRule, TaxType], list[ClassificationResult]]:
    grouped: dict[tuple[str, TaxType], list[ClassificationResult]] = {}
    rules: dict[str, CreditRule] = {}
    for result in results:
        grouped.setdefault((result.rule_code, result.tax_type), []).append(result)
        rules[result.rule_code] = result.rule
    return {
        (rules[code], tax_type): group
        for (code, tax_type), group in sorted(
            grouped.items(), key=lambda kv: (kv[0][0], kv[0][1].value)
        )
    }


def _affected_revenue(group: list[ClassificationResult]) -> Decimal:
    seen: set[tuple[str, int]] = set()
    total = _ZERO
    for result in group:
        key = (result.item.document_id, result.item.line_number)
        if key in seen:
            continue
        seen.add(key)
        total += result.item.item_value or _ZERO
    return total


def _document_ids(group: list[ClassificationResult]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(r.item.document_id for r in group))


def _merge_suppressed(warnings: list[ExcludedRuleWarning]) -> list[ExcludedRuleWarning]:
    """One warning per (regime, rule) across periods."""
    merged: dict[tuple[str, str], ExcludedRuleWarning] = {}
    for warning in warnings:
        key = (warning.regime, warning.rule_code)
        previous = merged.get(key)
        if previous is None:
            merged[key] = warning
            continue
        merged[key] = ExcludedRuleWarning(
            rule_code=warning.rule_code,
            regime=warning.regime,
            reason=warning.reason,
            tax_types=tuple(dict.fromkeys(previous.tax_types + warning.tax_types)),
            affected_items=previous.affected_items + warning.affected_items,
        )
    return list(merged.values())


def compute_credits(
    classified: Iterable[ClassificationResult],
    company_totals: CompanyTotals,
    period: str,
    exclusions: Optional[ExclusionList] = None,
    taxonomy: Optional[TaxonomyTables] = None,
) -> CreditComputation:
    return CreditEngine(exclusions, taxonomy).compute_credits(
        classified, company_totals, period
    )


def summarize(
    computation: CreditComputation, documents_analyzed: int = 0
) -> CreditSummary:
    """Aggregate a computation into totals by confidence tier and tax type."""
    by_confidence: dict[str, Decimal] = {level.value: _ZERO for level in ConfidenceLevel}
    by_tax_type: dict[str, Decimal] = {}
    total = _ZERO
    for credit in computation.credits:
        total += credit.recoverable_value
        by_confidence[credit.confidence.value] += credit.recoverable_value
        by_tax_type[credit.tax_type.value] = (
            by_tax_type.get(credit.tax_type.value, _ZERO) + credit.recoverable_value
        )
    return CreditSummary(
        total_recoverable=total,
        by_confidence=by_confidence,
        by_tax_type=by_tax_type,
        credits_count=len(computation.credits),
        documents_analyzed=documents_analyzed,
        credits=list(computation.credits),
        suppressed_rules=list(computation.suppressed),
        warnings=list(computation.warnings),
    )


def company_totals_from(
    regime: Union[Regime, str],
    periods: Iterable[PeriodTotals],
    annex: Optional[str] = None,
    rbt12: Optional[Decimal] = None,
) -> CompanyTotals:
    company = CompanyTotals(regime=normalize_regime(regime), annex=annex, rbt12=rbt12)
    for totals in periods:
        company.add_period(totals)
    return company
