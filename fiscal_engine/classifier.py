"""
Rule classifier.

Evaluates every active rule against every line item, once per tax type
the rule covers. Rules never short-circuit each other: one line can be
single-phase for PIS/COFINS and substitution-taxed for ICMS at the same
time, and each match is its own ClassificationResult.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from loguru import logger

from fiscal_engine.parsers import NormalizedLineItem
from fiscal_engine.rules import ConfidenceLevel, CreditRule, RuleSet, Treatment
from fiscal_engine.taxonomy import TaxonomyTables, TaxType


@dataclass(frozen=True)
class ClassificationResult:
    """A line item tagged by one rule for one tax type."""

    item: NormalizedLineItem
    rule: CreditRule
    tax_type: TaxType
    confidence: ConfidenceLevel
    signal: str  # situation_code | operation_code | product_code | heuristic

    @property
    def rule_code(self) -> str:
        return self.rule.rule_code

    @property
    def treatment(self) -> Treatment:
        return self.rule.treatment

    @property
    def legal_basis(self) -> str:
        return self.rule.legal_basis

    @property
    def confidence_score(self) -> int:
        return self.confidence.score


class RuleClassifier:
    """
    Stateless classifier over a rule set supplied per call.

    The taxonomy tables are only needed for rules that match on
    single-phase product lists.
    """

    def __init__(self, taxonomy: Optional[TaxonomyTables] = None) -> None:
        self.taxonomy = taxonomy or TaxonomyTables()

    def classify(
        self, items: Iterable[NormalizedLineItem], rule_set: RuleSet
    ) -> list[ClassificationResult]:
        rules = rule_set.active_rules
        results: list[ClassificationResult] = []
        count = 0
        for item in items:
            count += 1
            results.extend(self._classify_item(item, rules))
        logger.debug(
            f"Classified {count} items against {len(rules)} rules "
            f"(table {rule_set.version}): {len(results)} matches"
        )
        return results

    def classify_item(
        self, item: NormalizedLineItem, rule_set: RuleSet
    ) -> list[ClassificationResult]:
        return self._classify_item(item, rule_set.active_rules)

    def _classify_item(
        self, item: NormalizedLineItem, rules: list[CreditRule]
    ) -> list[ClassificationResult]:
        results: list[ClassificationResult] = []
        for rule in rules:
            if not self._passes_gates(item, rule):
                continue
            for tax_type in rule.tax_types:
                match = self._match(item, rule, tax_type)
                if match is None:
                    continue
                confidence, signal = match
                results.append(
                    ClassificationResult(
                        item=item,
                        rule=rule,
                        tax_type=tax_type,
                        confidence=confidence,
                        signal=signal,
                    )
                )
        return results

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    @staticmethod
    def _passes_gates(item: NormalizedLineItem, rule: CreditRule) -> bool:
        if rule.direction and item.direction != rule.direction:
            return False
        if rule.document_kinds and item.source_kind.value not in rule.document_kinds:
            return False
        return True

    def _match(
        self, item: NormalizedLineItem, rule: CreditRule, tax_type: TaxType
    ) -> Optional[tuple[ConfidenceLevel, str]]:
        """
        Strongest signal for ``rule`` on ``item`` for one tax type.

        Situation and operation codes outrank the product code, which
        outranks the heuristic.
        """
        if rule.requires_tax_value and item.tax_value(tax_type) <= Decimal("0"):
            return None
        if rule.requires_unclaimed_credit and item.unclaimed_credit(tax_type) <= Decimal("0"):
            return None

        situation = item.situation_codes.get(tax_type)
        if situation is None and tax_type is TaxType.ICMS_ST:
            situation = item.situation_codes.get(TaxType.ICMS)
        if situation and situation in rule.situation_codes:
            return ConfidenceLevel.HIGH, "situation_code"

        operation = item.operation_code
        if operation:
            if operation in rule.operation_codes:
                return ConfidenceLevel.HIGH, "operation_code"
            if any(operation.startswith(p) for p in rule.operation_prefixes):
                return ConfidenceLevel.HIGH, "operation_code"

        product = item.product_code
        if product:
            if any(product.startswith(p) for p in rule.product_prefixes):
                return ConfidenceLevel.MEDIUM, "product_code"
            if rule.monophasic_products and self.taxonomy.is_monophasic(product):
                return ConfidenceLevel.MEDIUM, "product_code"

        if rule.heuristic_tax and item.tax_value(tax_type) > Decimal("0"):
            return ConfidenceLevel.LOW, "heuristic"

        return None


def classify(
    line_items: Iterable[NormalizedLineItem],
    rule_set: RuleSet,
    taxonomy: Optional[TaxonomyTables] = None,
) -> list[ClassificationResult]:
    return RuleClassifier(taxonomy).classify(line_items, rule_set)
