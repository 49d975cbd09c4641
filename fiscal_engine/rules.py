"""
Credit rule tables.

A rule describes which signals on a line item point to a recoverable tax
and how the recoverable amount is computed. Rules and the regime
exclusion list are plain data: they load from JSON so a yearly
regulatory update is a table change, not a code change.

Signal strength, strongest first:
- situation_codes / operation_codes / operation_prefixes: explicit codes
  printed on the document (high confidence)
- product_prefixes / monophasic_products: NCM classification (medium)
- heuristic_tax: a nonzero tax value on an otherwise ambiguous line (low)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from fiscal_engine.errors import RuleTableError
from fiscal_engine.taxonomy import (
    ENERGY_TELECOM_CFOPS,
    INPUT_PURCHASE_CFOPS,
    LEDGER_CREDIT_TYPES,
    RETURN_CFOPS,
    SUBSTITUTION_EXIT_CFOPS,
    Regime,
    TaxType,
    normalize_regime,
)


class Treatment(Enum):
    SINGLE_PHASE = "single-phase-taxed"
    SUBSTITUTION = "substitution-taxed"
    WITHHELD = "tax-withheld-at-source"
    INPUT_CREDIT = "eligible-input-credit"
    CHARGED_WITHOUT_INCIDENCE = "tax-charged-without-incidence"


class ConfidenceLevel(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def score(self) -> int:
        return _CONFIDENCE_SCORES[self]

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_SCORES = {
    ConfidenceLevel.HIGH: 90,
    ConfidenceLevel.MEDIUM: 70,
    ConfidenceLevel.LOW: 45,
}
_CONFIDENCE_RANK = {
    ConfidenceLevel.HIGH: 3,
    ConfidenceLevel.MEDIUM: 2,
    ConfidenceLevel.LOW: 1,
}


class Allocation(Enum):
    PROPORTIONAL = "proportional"  # share of a blended declared tax
    PER_ITEM = "per_item"  # tax value on the line x recovery factor


@dataclass(frozen=True)
class CreditRule:
    """One entry in the rule table."""

    rule_code: str
    name: str
    tax_types: tuple[TaxType, ...]
    treatment: Treatment
    legal_basis: str
    description: str = ""
    situation_codes: frozenset[str] = frozenset()
    operation_codes: frozenset[str] = frozenset()
    operation_prefixes: tuple[str, ...] = ()
    product_prefixes: tuple[str, ...] = ()
    monophasic_products: bool = False
    heuristic_tax: bool = False
    direction: Optional[str] = None
    document_kinds: frozenset[str] = frozenset()
    requires_tax_value: bool = False
    requires_unclaimed_credit: bool = False
    allocation: Allocation = Allocation.PER_ITEM
    recovery_factor: float = 1.0
    active: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CreditRule":
        """Build a rule from a JSON-style record. Raises RuleTableError."""
        try:
            return cls(
                rule_code=str(data["rule_code"]),
                name=str(data.get("name", data["rule_code"])),
                tax_types=tuple(TaxType(t) for t in data["tax_types"]),
                treatment=Treatment(data["treatment"]),
                legal_basis=str(data.get("legal_basis", "")),
                description=str(data.get("description", "")),
                situation_codes=frozenset(data.get("situation_codes", [])),
                operation_codes=frozenset(data.get("operation_codes", [])),
                operation_prefixes=tuple(data.get("operation_prefixes", [])),
                product_prefixes=tuple(data.get("product_prefixes", [])),
                monophasic_products=bool(data.get("monophasic_products", False)),
                heuristic_tax=bool(data.get("heuristic_tax", False)),
                direction=data.get("direction"),
                document_kinds=frozenset(data.get("document_kinds", [])),
                requires_tax_value=bool(data.get("requires_tax_value", False)),
                requires_unclaimed_credit=bool(
                    data.get("requires_unclaimed_credit", False)
                ),
                allocation=Allocation(data.get("allocation", "per_item")),
                recovery_factor=float(data.get("recovery_factor", 1.0)),
                active=bool(data.get("active", True)),
            )
        except KeyError as exc:
            raise RuleTableError(f"Rule is missing field {exc}: {data}") from exc
        except (ValueError, TypeError) as exc:
            raise RuleTableError(
                f"Invalid rule {data.get('rule_code', '?')}: {exc}"
            ) from exc

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_code": self.rule_code,
            "name": self.name,
            "tax_types": [t.value for t in self.tax_types],
            "treatment": self.treatment.value,
            "legal_basis": self.legal_basis,
            "description": self.description,
            "situation_codes": sorted(self.situation_codes),
            "operation_codes": sorted(self.operation_codes),
            "operation_prefixes": list(self.operation_prefixes),
            "product_prefixes": list(self.product_prefixes),
            "monophasic_products": self.monophasic_products,
            "heuristic_tax": self.heuristic_tax,
            "direction": self.direction,
            "document_kinds": sorted(self.document_kinds),
            "requires_tax_value": self.requires_tax_value,
            "requires_unclaimed_credit": self.requires_unclaimed_credit,
            "allocation": self.allocation.value,
            "recovery_factor": self.recovery_factor,
            "active": self.active,
        }


# ---------------------------------------------------------------------------
# Built-in rule table
# ---------------------------------------------------------------------------

DEFAULT_RULES_VERSION = "2025.1"

_T = TaxType

_DEFAULT_RULES: list[CreditRule] = [
    CreditRule(
        rule_code="SIMPLES_MONO_001",
        name="Single-phase PIS/COFINS paid inside the DAS",
        tax_types=(_T.PIS, _T.COFINS),
        treatment=Treatment.SINGLE_PHASE,
        legal_basis="LC 123/2006, art. 18, par. 4-A, I; Lei 10.147/2000",
        description=(
            "Resale of single-phase products taxed again in the DAS without "
            "revenue segregation"
        ),
        situation_codes=frozenset({"04", "05", "06"}),
        monophasic_products=True,
        direction="exit",
        allocation=Allocation.PROPORTIONAL,
    ),
    CreditRule(
        rule_code="SIMPLES_ICMS_ST_001",
        name="ICMS-ST paid inside the DAS",
        tax_types=(_T.ICMS,),
        treatment=Treatment.SUBSTITUTION,
        legal_basis="LC 123/2006, art. 18, par. 4-A, I; art. 13, par. 1, XIII, a",
        description=(
            "Resale of goods with ICMS already collected by tax substitution "
            "taxed again in the DAS"
        ),
        situation_codes=frozenset({"500"}),
        operation_codes=SUBSTITUTION_EXIT_CFOPS,
        direction="exit",
        allocation=Allocation.PROPORTIONAL,
    ),
    CreditRule(
        rule_code="PIS_COFINS_001",
        name="Unclaimed PIS/COFINS input credit",
        tax_types=(_T.PIS, _T.COFINS),
        treatment=Treatment.INPUT_CREDIT,
        legal_basis="Lei 10.637/2002, art. 3; Lei 10.833/2003, art. 3",
        description="Credit-bearing CST on a purchase with no credit taken",
        situation_codes=frozenset({"50", "51", "52", "53", "54", "55", "56"}),
        direction="entry",
        requires_unclaimed_credit=True,
        recovery_factor=1.0,
    ),
    CreditRule(
        rule_code="PIS_COFINS_002",
        name="PIS/COFINS charged on a no-incidence acquisition",
        tax_types=(_T.PIS, _T.COFINS),
        treatment=Treatment.CHARGED_WITHOUT_INCIDENCE,
        legal_basis="Lei 10.637/2002, art. 3, par. 2, II; Lei 10.833/2003, art. 3, par. 2, II",
        description="CST 70-73 purchase with PIS/COFINS amounts charged",
        situation_codes=frozenset({"70", "71", "72", "73"}),
        direction="entry",
        requires_tax_value=True,
        recovery_factor=0.9,
    ),
    CreditRule(
        rule_code="PIS_COFINS_003",
        name="Energy and telecom input credit",
        tax_types=(_T.PIS, _T.COFINS),
        treatment=Treatment.INPUT_CREDIT,
        legal_basis="Lei 10.833/2003, art. 3, III",
        description="Electric energy and communication acquisitions",
        operation_codes=ENERGY_TELECOM_CFOPS,
        direction="entry",
        requires_unclaimed_credit=True,
        recovery_factor=0.85,
    ),
    CreditRule(
        rule_code="PIS_COFINS_004",
        name="Ledger credit balance not discounted",
        tax_types=(_T.PIS, _T.COFINS),
        treatment=Treatment.INPUT_CREDIT,
        legal_basis="IN RFB 1.252/2012; Lei 10.833/2003, art. 3, par. 4",
        description="EFD-Contribuicoes credit computed but left undiscounted",
        operation_codes=frozenset(LEDGER_CREDIT_TYPES),
        direction="entry",
        document_kinds=frozenset({"ledger"}),
        requires_unclaimed_credit=True,
        recovery_factor=1.0,
    ),
    CreditRule(
        rule_code="PIS_COFINS_005",
        name="PIS/COFINS on sales returns",
        tax_types=(_T.PIS, _T.COFINS),
        treatment=Treatment.INPUT_CREDIT,
        legal_basis="Lei 10.833/2003, art. 3, VIII",
        description="Returned goods whose original sale was taxed",
        operation_codes=RETURN_CFOPS,
        direction="entry",
        requires_unclaimed_credit=True,
        recovery_factor=0.9,
    ),
    CreditRule(
        rule_code="PIS_COFINS_008",
        name="PIS/COFINS charged on single-phase resale",
        tax_types=(_T.PIS, _T.COFINS),
        treatment=Treatment.SINGLE_PHASE,
        legal_basis="Lei 10.147/2000, art. 2; Lei 10.485/2002, art. 3, par. 2",
        description="Reseller charged PIS/COFINS on a product already taxed at the manufacturer",
        monophasic_products=True,
        direction="exit",
        requires_tax_value=True,
        recovery_factor=1.0,
    ),
    CreditRule(
        rule_code="ICMS_001",
        name="Interstate ICMS input credit",
        tax_types=(_T.ICMS,),
        treatment=Treatment.INPUT_CREDIT,
        legal_basis="LC 87/1996, art. 20",
        description="Interstate purchase with ICMS highlighted and not credited",
        operation_prefixes=("2",),
        direction="entry",
        requires_unclaimed_credit=True,
        recovery_factor=0.85,
    ),
    CreditRule(
        rule_code="ICMS_ST_001",
        name="ICMS-ST refund review",
        tax_types=(_T.ICMS_ST,),
        treatment=Treatment.SUBSTITUTION,
        legal_basis="STF RE 593.849 (Tema 201)",
        description="ST paid on entry where the actual sale price may be below the presumed base",
        heuristic_tax=True,
        direction="entry",
        requires_tax_value=True,
        recovery_factor=0.15,
    ),
    CreditRule(
        rule_code="IPI_001",
        name="IPI input credit",
        tax_types=(_T.IPI,),
        treatment=Treatment.INPUT_CREDIT,
        legal_basis="Decreto 7.212/2010 (RIPI), art. 226",
        description="IPI on raw materials and inputs not credited",
        operation_codes=INPUT_PURCHASE_CFOPS,
        direction="entry",
        requires_unclaimed_credit=True,
        recovery_factor=0.95,
    ),
]


@dataclass
class RuleSet:
    """A versioned rule table."""

    version: str
    rules: list[CreditRule] = field(default_factory=list)

    def __post_init__(self) -> None:
        codes = [rule.rule_code for rule in self.rules]
        duplicates = {code for code in codes if codes.count(code) > 1}
        if duplicates:
            raise RuleTableError(f"Duplicate rule codes: {sorted(duplicates)}")

    @property
    def active_rules(self) -> list[CreditRule]:
        return [rule for rule in self.rules if rule.active]

    def get(self, rule_code: str) -> Optional[CreditRule]:
        for rule in self.rules:
            if rule.rule_code == rule_code:
                return rule
        return None

    @classmethod
    def default(cls) -> "RuleSet":
        return cls(version=DEFAULT_RULES_VERSION, rules=list(_DEFAULT_RULES))

    @classmethod
    def from_records(
        cls, records: list[dict[str, Any]], version: str = "custom"
    ) -> "RuleSet":
        return cls(version=version, rules=[CreditRule.from_dict(r) for r in records])

    @classmethod
    def from_json(cls, text: str) -> "RuleSet":
        """
        Load ``{"version": ..., "rules": [...]}`` or a bare list of rules.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RuleTableError(f"Rule table is not valid JSON: {exc}") from exc
        if isinstance(data, list):
            return cls.from_records(data)
        if isinstance(data, dict) and isinstance(data.get("rules"), list):
            return cls.from_records(data["rules"], str(data.get("version", "custom")))
        raise RuleTableError("Rule table must be a list or an object with 'rules'")

    def to_json(self) -> str:
        return json.dumps(
            {"version": self.version, "rules": [r.to_dict() for r in self.rules]},
            indent=2,
            ensure_ascii=False,
        )


# ---------------------------------------------------------------------------
# Regime exclusion list
# ---------------------------------------------------------------------------

_PER_ITEM_UNDER_SIMPLES = (
    "Simples Nacional taxes are paid as a blended rate on revenue; "
    "per-transaction credits do not apply (LC 123/2006, art. 23)"
)
_PROPORTIONAL_OUTSIDE_SIMPLES = (
    "Revenue segregation in the DAS only applies to Simples Nacional payers"
)
_CUMULATIVE_NO_CREDITS = (
    "Cumulative PIS/COFINS under presumed profit does not allow input "
    "credits (Lei 10.833/2003, art. 10, II)"
)

_DEFAULT_EXCLUSIONS: dict[str, dict[str, str]] = {
    Regime.SIMPLES_NACIONAL.value: {
        "PIS_COFINS_001": _PER_ITEM_UNDER_SIMPLES,
        "PIS_COFINS_002": _PER_ITEM_UNDER_SIMPLES,
        "PIS_COFINS_003": _PER_ITEM_UNDER_SIMPLES,
        "PIS_COFINS_004": _PER_ITEM_UNDER_SIMPLES,
        "PIS_COFINS_005": _PER_ITEM_UNDER_SIMPLES,
        "PIS_COFINS_008": _PER_ITEM_UNDER_SIMPLES,
        "ICMS_001": _PER_ITEM_UNDER_SIMPLES,
        "ICMS_ST_001": _PER_ITEM_UNDER_SIMPLES,
        "IPI_001": _PER_ITEM_UNDER_SIMPLES,
    },
    Regime.LUCRO_PRESUMIDO.value: {
        "SIMPLES_MONO_001": _PROPORTIONAL_OUTSIDE_SIMPLES,
        "SIMPLES_ICMS_ST_001": _PROPORTIONAL_OUTSIDE_SIMPLES,
        "PIS_COFINS_001": _CUMULATIVE_NO_CREDITS,
        "PIS_COFINS_003": _CUMULATIVE_NO_CREDITS,
        "PIS_COFINS_004": _CUMULATIVE_NO_CREDITS,
        "PIS_COFINS_005": _CUMULATIVE_NO_CREDITS,
    },
    Regime.LUCRO_REAL.value: {
        "SIMPLES_MONO_001": _PROPORTIONAL_OUTSIDE_SIMPLES,
        "SIMPLES_ICMS_ST_001": _PROPORTIONAL_OUTSIDE_SIMPLES,
    },
}


class ExclusionList:
    """
    Rule codes that may not produce credits under a given company regime.

    Keyed by regime, then rule code, with the reason shown to the user.
    """

    def __init__(self, entries: Optional[dict[str, dict[str, str]]] = None) -> None:
        self._entries: dict[Regime, dict[str, str]] = {}
        for regime, rules in (entries or {}).items():
            try:
                key = normalize_regime(regime)
            except ValueError as exc:
                raise RuleTableError(str(exc)) from exc
            if not isinstance(rules, dict):
                raise RuleTableError(f"Exclusions for {regime} must map rule code to reason")
            self._entries[key] = {str(code): str(reason) for code, reason in rules.items()}

    def reason(self, regime: Union[Regime, str], rule_code: str) -> Optional[str]:
        """The exclusion reason, or None when the rule may apply."""
        return self._entries.get(normalize_regime(regime), {}).get(rule_code)

    def is_excluded(self, regime: Union[Regime, str], rule_code: str) -> bool:
        return self.reason(regime, rule_code) is not None

    def for_regime(self, regime: Union[Regime, str]) -> dict[str, str]:
        return dict(self._entries.get(normalize_regime(regime), {}))

    @classmethod
    def default(cls) -> "ExclusionList":
        return cls(_DEFAULT_EXCLUSIONS)

    @classmethod
    def from_json(cls, text: str) -> "ExclusionList":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RuleTableError(f"Exclusion table is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise RuleTableError("Exclusion table must be an object keyed by regime")
        return cls(data)

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {regime.value: dict(rules) for regime, rules in self._entries.items()}
