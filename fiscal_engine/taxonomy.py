"""
Fiscal code taxonomy tables.

Static lookup data for Brazilian fiscal codes:
- NCM product codes subject to single-phase (monophasic) PIS/COFINS
- CST PIS/COFINS and CSOSN tax-situation codes
- CFOP operation-type helpers
- SPED EFD-Contribuicoes credit-type codes
- Simples Nacional annex tables (brackets, nominal rates, repartition)

Sources: LC 123/2006 (Anexos I a V, as amended by LC 155/2016),
Leis 10.147/2000, 10.485/2002, 11.116/2005, 13.097/2015,
Ajuste SINIEF 07/2005, IN RFB 1.009/2010.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Union


class TaxType(Enum):
    """Taxes the engine knows how to classify or allocate."""

    PIS = "PIS"
    COFINS = "COFINS"
    ICMS = "ICMS"
    ICMS_ST = "ICMS_ST"
    IPI = "IPI"
    ISS = "ISS"
    IRPJ = "IRPJ"
    CSLL = "CSLL"
    CPP = "CPP"


class Regime(Enum):
    """Tax regimes, in the order the simulator computes them."""

    SIMPLES_NACIONAL = "SIMPLES_NACIONAL"
    LUCRO_PRESUMIDO = "LUCRO_PRESUMIDO"
    LUCRO_REAL = "LUCRO_REAL"
    SIMPLES_2027_DENTRO = "SIMPLES_2027_DENTRO"
    SIMPLES_2027_FORA = "SIMPLES_2027_FORA"


_REGIME_ALIASES: dict[str, Regime] = {
    "simples": Regime.SIMPLES_NACIONAL,
    "simples_nacional": Regime.SIMPLES_NACIONAL,
    "mei": Regime.SIMPLES_NACIONAL,
    "presumido": Regime.LUCRO_PRESUMIDO,
    "lucro_presumido": Regime.LUCRO_PRESUMIDO,
    "real": Regime.LUCRO_REAL,
    "lucro_real": Regime.LUCRO_REAL,
}


def normalize_regime(value: Union[Regime, str]) -> Regime:
    """Map a declared regime string ("Simples Nacional", "lucro_real") to a Regime."""
    if isinstance(value, Regime):
        return value
    key = str(value).strip().lower().replace(" ", "_").replace("-", "_")
    for member in Regime:
        if key == member.value.lower():
            return member
    if key in _REGIME_ALIASES:
        return _REGIME_ALIASES[key]
    raise ValueError(f"Unknown tax regime: {value}")


class Sector(Enum):
    COMMERCE = "commerce"
    INDUSTRY = "industry"
    SERVICES = "services"


@dataclass(frozen=True)
class MonophasicProduct:
    """An NCM prefix taxed once at the start of the supply chain."""

    ncm_prefix: str
    description: str
    category: str
    legal_basis: str


@dataclass(frozen=True)
class SituationCode:
    """A CST PIS/COFINS code."""

    code: str
    description: str
    single_phase: bool = False
    credit_bearing: bool = False
    no_incidence: bool = False


@dataclass(frozen=True)
class CsosnCode:
    """A CSOSN code (ICMS situation for Simples Nacional issuers)."""

    code: str
    description: str
    icms_in_das: bool
    substitution: bool


@dataclass(frozen=True)
class SimplesBracket:
    """One revenue bracket of a Simples Nacional annex."""

    bracket: int
    revenue_ceiling: float  # RBT12 upper bound, BRL
    nominal_rate: float  # decimal, e.g. 0.107
    deduction: float  # parcela a deduzir, BRL
    repartition: dict[TaxType, float] = field(default_factory=dict)  # percent


@dataclass
class SimplesAnnex:
    annex: str
    description: str
    brackets: list[SimplesBracket]


@dataclass(frozen=True)
class EffectiveRate:
    """Effective Simples rate for a given RBT12 and annex."""

    annex: str
    bracket: int
    rate: Decimal  # decimal, rounded to 4 places
    repartition: dict[TaxType, float]


# ---------------------------------------------------------------------------
# Single-phase (monophasic) products
# ---------------------------------------------------------------------------

_MONOPHASIC_DATA: dict[str, dict] = {
    "Fuels": {
        "basis": "Lei 11.116/2005",
        "prefixes": {
            "2710": "Petroleum oils and fuels",
            "2207": "Ethyl alcohol",
            "2711": "Liquefied petroleum gas",
            "3826": "Biodiesel",
        },
    },
    "Pharmaceuticals": {
        "basis": "Lei 10.147/2000",
        "prefixes": {
            "3001": "Glands and organs for organotherapeutic uses",
            "300210": "Antisera and vaccines",
            "300290": "Other blood products",
            "3003": "Medicaments not put up in measured doses",
            "3004": "Medicaments put up in measured doses",
            "30051010": "Sterile adhesive dressings",
            "300610": "Sterile surgical catgut",
            "300620": "Blood-grouping reagents",
            "300630": "Opacifying preparations for X-ray examinations",
            "300640": "Dental cements and fillings",
            "300660": "Chemical contraceptive preparations",
        },
    },
    "Cosmetics": {
        "basis": "Lei 10.147/2000",
        "prefixes": {
            "3303": "Perfumes and toilet waters",
            "3304": "Beauty and make-up preparations",
            "3305": "Hair preparations",
            "3307": "Shaving and deodorant preparations",
            "340111": "Toilet soap",
            "340119": "Other soap",
            "340120": "Soap in other forms",
            "340130": "Organic skin-washing products",
            "96032100": "Toothbrushes",
        },
    },
    "Beverages": {
        "basis": "Lei 13.097/2015",
        "prefixes": {
            "2201": "Mineral waters",
            "2202": "Flavoured waters and soft drinks",
            "2203": "Beer made from malt",
            "2204": "Wine of fresh grapes",
            "2106901": "Preparations for soft drinks",
        },
    },
    "Vehicles and auto parts": {
        "basis": "Lei 10.485/2002",
        "prefixes": {
            "8701": "Tractors",
            "8702": "Public-transport passenger vehicles",
            "8703": "Motor cars",
            "8704": "Goods-transport vehicles",
            "8705": "Special purpose vehicles",
            "8706": "Chassis fitted with engines",
            "87162000": "Self-loading trailers",
            "4009": "Vulcanised rubber tubes",
            "4010": "Conveyor belts of vulcanised rubber",
            "4011": "New pneumatic tyres",
            "4013": "Inner tubes",
            "6813": "Friction material (brake pads)",
            "7007": "Safety glass",
            "7009": "Rear-view mirrors",
            "8507": "Electric accumulators",
            "8708": "Parts and accessories of motor vehicles",
        },
    },
}

# Prefixes that override a monophasic match
_MONOPHASIC_EXCLUDED: dict[str, str] = {
    "3306": "Oral hygiene preparations (Lei 10.147/2000, art. 1, I, a)",
    "30039056": "Other mixed medicaments at zero rate",
    "30049046": "Other medicaments in doses at zero rate",
}

# ---------------------------------------------------------------------------
# Tax-situation codes
# ---------------------------------------------------------------------------

_CST_PIS_COFINS: dict[str, dict] = {
    "01": {"desc": "Taxable at the basic rate"},
    "02": {"desc": "Taxable at a differentiated rate"},
    "03": {"desc": "Taxable at a rate per unit of measure"},
    "04": {"desc": "Single-phase taxable, resale at zero rate", "single_phase": True},
    "05": {"desc": "Taxable by tax substitution", "single_phase": True},
    "06": {"desc": "Taxable at zero rate", "single_phase": True},
    "07": {"desc": "Exempt operation"},
    "08": {"desc": "Operation without incidence"},
    "09": {"desc": "Operation with suspension"},
    "49": {"desc": "Other output operations"},
    "50": {"desc": "Credit linked to taxed domestic revenue", "credit": True},
    "51": {"desc": "Credit linked to non-taxed domestic revenue", "credit": True},
    "52": {"desc": "Credit linked to export revenue", "credit": True},
    "53": {"desc": "Credit linked to taxed and non-taxed domestic revenue", "credit": True},
    "54": {"desc": "Credit linked to taxed domestic and export revenue", "credit": True},
    "55": {"desc": "Credit linked to non-taxed domestic and export revenue", "credit": True},
    "56": {"desc": "Credit linked to all revenue types", "credit": True},
    "70": {"desc": "Acquisition without credit", "no_incidence": True},
    "71": {"desc": "Acquisition with exemption", "no_incidence": True},
    "72": {"desc": "Acquisition with suspension", "no_incidence": True},
    "73": {"desc": "Acquisition at zero rate", "no_incidence": True},
    "98": {"desc": "Other input operations"},
    "99": {"desc": "Other operations"},
}

_CSOSN: dict[str, tuple[str, bool, bool]] = {
    "101": ("Taxed with credit permission", True, False),
    "102": ("Taxed without credit permission", True, False),
    "103": ("ICMS exemption for revenue bracket", False, False),
    "201": ("Taxed with credit permission and ICMS by ST", True, True),
    "202": ("Taxed without credit permission and ICMS by ST", True, True),
    "203": ("Bracket exemption and ICMS by ST", False, True),
    "300": ("Immune", False, False),
    "400": ("Not taxed by Simples Nacional", False, False),
    "500": ("ICMS previously charged by ST or anticipation", False, True),
    "900": ("Others", True, False),
}

# ---------------------------------------------------------------------------
# Operation-type codes (CFOP)
# ---------------------------------------------------------------------------

SUBSTITUTION_EXIT_CFOPS = frozenset({"5401", "5403", "5405", "6401", "6403", "6404", "6405"})
RETURN_CFOPS = frozenset({
    "1411", "1412", "1413", "2411", "2412", "2413",
    "5411", "5412", "5413", "6411", "6412", "6413",
    "1556", "2556", "5556", "6556",
})
RESALE_PURCHASE_CFOPS = frozenset({"1102", "2102", "3102", "1403", "2403", "3403"})
INPUT_PURCHASE_CFOPS = frozenset({
    "1101", "2101", "3101", "1111", "2111", "1116", "2116",
    "1117", "2117", "1126", "2126",
})
ENERGY_TELECOM_CFOPS = frozenset({"1253", "2253", "1254", "2254", "1255", "2255"})

# ---------------------------------------------------------------------------
# SPED EFD-Contribuicoes credit types (last two digits of COD_CRED)
# ---------------------------------------------------------------------------

LEDGER_CREDIT_TYPES: dict[str, str] = {
    "01": "Goods acquired for resale",
    "02": "Goods used as inputs",
    "03": "Services used as inputs",
    "04": "Electric and thermal energy",
    "05": "Building rentals",
    "06": "Machinery and equipment rentals",
    "07": "Storage and freight on sales",
    "08": "Leasing consideration",
    "09": "Fixed assets (depreciation)",
    "10": "Fixed assets (acquisition cost)",
    "11": "Amortization and depreciation of buildings",
    "12": "Returns of sales taxed at the general rate",
    "13": "Other operations with credit rights",
    "14": "Freight subcontracting",
    "15": "Real estate: incurred cost",
    "16": "Real estate: budgeted cost",
    "17": "Cleaning, conservation and maintenance services",
    "18": "Opening inventory",
}

# ---------------------------------------------------------------------------
# Simples Nacional annexes (LC 123/2006)
# ---------------------------------------------------------------------------

_T = TaxType

_SIMPLES_DATA: dict[str, dict] = {
    "I": {
        "description": "Commerce",
        "brackets": [
            (180000, 0.04, 0, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 12.74, _T.PIS: 2.76, _T.CPP: 41.50, _T.ICMS: 34.00}),
            (360000, 0.073, 5940, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 12.74, _T.PIS: 2.76, _T.CPP: 41.50, _T.ICMS: 34.00}),
            (720000, 0.095, 13860, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 12.74, _T.PIS: 2.76, _T.CPP: 42.00, _T.ICMS: 33.50}),
            (1800000, 0.107, 22500, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 12.74, _T.PIS: 2.76, _T.CPP: 42.00, _T.ICMS: 33.50}),
            (3600000, 0.143, 87300, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 12.74, _T.PIS: 2.76, _T.CPP: 42.00, _T.ICMS: 33.50}),
            (4800000, 0.19, 378000, {_T.IRPJ: 13.50, _T.CSLL: 10.00, _T.COFINS: 28.27, _T.PIS: 6.13, _T.CPP: 42.10}),
        ],
    },
    "II": {
        "description": "Industry",
        "brackets": [
            (180000, 0.045, 0, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 11.51, _T.PIS: 2.49, _T.CPP: 37.50, _T.ICMS: 32.00, _T.IPI: 7.50}),
            (360000, 0.078, 5940, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 11.51, _T.PIS: 2.49, _T.CPP: 37.50, _T.ICMS: 32.00, _T.IPI: 7.50}),
            (720000, 0.10, 13860, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 11.51, _T.PIS: 2.49, _T.CPP: 37.50, _T.ICMS: 32.00, _T.IPI: 7.50}),
            (1800000, 0.112, 22500, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 11.51, _T.PIS: 2.49, _T.CPP: 37.50, _T.ICMS: 32.00, _T.IPI: 7.50}),
            (3600000, 0.147, 85500, {_T.IRPJ: 5.50, _T.CSLL: 3.50, _T.COFINS: 11.51, _T.PIS: 2.49, _T.CPP: 37.50, _T.ICMS: 32.00, _T.IPI: 7.50}),
            (4800000, 0.30, 720000, {_T.IRPJ: 8.50, _T.CSLL: 7.50, _T.COFINS: 20.96, _T.PIS: 4.54, _T.CPP: 23.50, _T.IPI: 35.00}),
        ],
    },
    "III": {
        "description": "Services (art. 18, par. 5-B)",
        "brackets": [
            (180000, 0.06, 0, {_T.IRPJ: 4.00, _T.CSLL: 3.50, _T.COFINS: 12.82, _T.PIS: 2.78, _T.CPP: 43.40, _T.ISS: 33.50}),
            (360000, 0.112, 9360, {_T.IRPJ: 4.00, _T.CSLL: 3.50, _T.COFINS: 14.05, _T.PIS: 3.05, _T.CPP: 43.40, _T.ISS: 32.00}),
            (720000, 0.135, 17640, {_T.IRPJ: 4.00, _T.CSLL: 3.50, _T.COFINS: 13.64, _T.PIS: 2.96, _T.CPP: 43.40, _T.ISS: 32.50}),
            (1800000, 0.16, 35640, {_T.IRPJ: 4.00, _T.CSLL: 3.50, _T.COFINS: 13.64, _T.PIS: 2.96, _T.CPP: 43.40, _T.ISS: 32.50}),
            (3600000, 0.21, 125640, {_T.IRPJ: 4.00, _T.CSLL: 3.50, _T.COFINS: 12.82, _T.PIS: 2.78, _T.CPP: 43.40, _T.ISS: 33.50}),
            (4800000, 0.33, 648000, {_T.IRPJ: 35.00, _T.CSLL: 15.00, _T.COFINS: 16.03, _T.PIS: 3.47, _T.CPP: 30.50}),
        ],
    },
    "IV": {
        "description": "Construction, security and cleaning services",
        "brackets": [
            (180000, 0.045, 0, {_T.IRPJ: 18.80, _T.CSLL: 15.20, _T.COFINS: 17.67, _T.PIS: 3.83, _T.ISS: 44.50}),
            (360000, 0.09, 8100, {_T.IRPJ: 19.80, _T.CSLL: 15.20, _T.COFINS: 20.55, _T.PIS: 4.45, _T.ISS: 40.00}),
            (720000, 0.102, 12420, {_T.IRPJ: 20.80, _T.CSLL: 15.20, _T.COFINS: 19.73, _T.PIS: 4.27, _T.ISS: 40.00}),
            (1800000, 0.14, 39780, {_T.IRPJ: 17.80, _T.CSLL: 19.20, _T.COFINS: 18.90, _T.PIS: 4.10, _T.ISS: 40.00}),
            (3600000, 0.22, 183780, {_T.IRPJ: 18.80, _T.CSLL: 19.20, _T.COFINS: 18.08, _T.PIS: 3.92, _T.ISS: 40.00}),
            (4800000, 0.33, 828000, {_T.IRPJ: 53.50, _T.CSLL: 21.50, _T.COFINS: 20.55, _T.PIS: 4.45}),
        ],
    },
    "V": {
        "description": "Services (art. 18, par. 5-I): technology, engineering",
        "brackets": [
            (180000, 0.155, 0, {_T.IRPJ: 25.00, _T.CSLL: 15.00, _T.COFINS: 14.10, _T.PIS: 3.05, _T.CPP: 28.85, _T.ISS: 14.00}),
            (360000, 0.18, 4500, {_T.IRPJ: 23.00, _T.CSLL: 15.00, _T.COFINS: 14.10, _T.PIS: 3.05, _T.CPP: 27.85, _T.ISS: 17.00}),
            (720000, 0.195, 9900, {_T.IRPJ: 24.00, _T.CSLL: 15.00, _T.COFINS: 14.92, _T.PIS: 3.23, _T.CPP: 23.85, _T.ISS: 19.00}),
            (1800000, 0.205, 17100, {_T.IRPJ: 21.00, _T.CSLL: 15.00, _T.COFINS: 15.74, _T.PIS: 3.41, _T.CPP: 23.85, _T.ISS: 21.00}),
            (3600000, 0.23, 62100, {_T.IRPJ: 23.00, _T.CSLL: 12.50, _T.COFINS: 14.10, _T.PIS: 3.05, _T.CPP: 23.85, _T.ISS: 23.50}),
            (4800000, 0.305, 540000, {_T.IRPJ: 35.00, _T.CSLL: 15.50, _T.COFINS: 16.44, _T.PIS: 3.56, _T.CPP: 29.50}),
        ],
    },
}

# CNAE division (first two digits) -> Simples annex
_CNAE_ANNEX: dict[str, str] = {}
for _prefix in [str(n) for n in range(10, 34)] + ["35", "36", "37", "38", "39"]:
    _CNAE_ANNEX[_prefix] = "II"
for _prefix in ("45", "46", "47"):
    _CNAE_ANNEX[_prefix] = "I"
for _prefix in ("41", "42", "43", "80", "81"):
    _CNAE_ANNEX[_prefix] = "IV"
for _prefix in ("62", "63", "71", "73", "76"):
    _CNAE_ANNEX[_prefix] = "V"


def _digits(code: Optional[str]) -> str:
    return "".join(ch for ch in (code or "") if ch.isdigit())


def sector_from_cnae(cnae: Optional[str]) -> Sector:
    """Divisions 10-33 are industry, 45-47 commerce, everything else services."""
    digits = _digits(cnae)
    if not digits:
        return Sector.COMMERCE
    division = int(digits[:2])
    if 10 <= division <= 33:
        return Sector.INDUSTRY
    if 45 <= division <= 47:
        return Sector.COMMERCE
    return Sector.SERVICES


def annex_from_cnae(cnae: Optional[str]) -> str:
    digits = _digits(cnae)
    if not digits:
        return "I"
    return _CNAE_ANNEX.get(digits[:2], "III")


def bracket_from_rbt12(rbt12: float) -> int:
    """Return the 1-based Simples bracket for a trailing 12-month revenue."""
    for i, (ceiling, *_rest) in enumerate(_SIMPLES_DATA["I"]["brackets"], start=1):
        if rbt12 <= ceiling:
            return i
    return 6


def is_entry_operation(cfop: Optional[str]) -> bool:
    return bool(cfop) and cfop[0] in "123"


def is_exit_operation(cfop: Optional[str]) -> bool:
    return bool(cfop) and cfop[0] in "567"


class TaxonomyTables:
    """
    Read-only lookup over all fiscal code tables.

    Built once per process and passed into parsers and the classifier.
    """

    def __init__(self) -> None:
        self._monophasic: dict[str, MonophasicProduct] = {}
        self._cst: dict[str, SituationCode] = {}
        self._csosn: dict[str, CsosnCode] = {}
        self._annexes: dict[str, SimplesAnnex] = {}
        self._load()

    def _load(self) -> None:
        for category, data in _MONOPHASIC_DATA.items():
            for prefix, description in data["prefixes"].items():
                self._monophasic[prefix] = MonophasicProduct(
                    ncm_prefix=prefix,
                    description=description,
                    category=category,
                    legal_basis=data["basis"],
                )

        for code, data in _CST_PIS_COFINS.items():
            self._cst[code] = SituationCode(
                code=code,
                description=data["desc"],
                single_phase=data.get("single_phase", False),
                credit_bearing=data.get("credit", False),
                no_incidence=data.get("no_incidence", False),
            )

        for code, (description, in_das, st) in _CSOSN.items():
            self._csosn[code] = CsosnCode(code, description, in_das, st)

        for annex, data in _SIMPLES_DATA.items():
            brackets = [
                SimplesBracket(
                    bracket=i,
                    revenue_ceiling=ceiling,
                    nominal_rate=rate,
                    deduction=deduction,
                    repartition=dict(repartition),
                )
                for i, (ceiling, rate, deduction, repartition) in enumerate(
                    data["brackets"], start=1
                )
            ]
            self._annexes[annex] = SimplesAnnex(annex, data["description"], brackets)

    @property
    def monophasic_count(self) -> int:
        return len(self._monophasic)

    def monophasic_product(self, ncm: Optional[str]) -> Optional[MonophasicProduct]:
        """
        Longest-prefix lookup of an NCM in the single-phase table.

        Explicitly excluded prefixes win over any match.
        """
        digits = _digits(ncm)
        if not digits:
            return None
        for excluded in _MONOPHASIC_EXCLUDED:
            if digits.startswith(excluded):
                return None
        best: Optional[MonophasicProduct] = None
        for prefix, product in self._monophasic.items():
            if digits.startswith(prefix):
                if best is None or len(prefix) > len(best.ncm_prefix):
                    best = product
        return best

    def is_monophasic(self, ncm: Optional[str]) -> bool:
        return self.monophasic_product(ncm) is not None

    def situation_code(self, cst: Optional[str]) -> Optional[SituationCode]:
        return self._cst.get(cst or "")

    def is_single_phase_cst(self, cst: Optional[str]) -> bool:
        info = self.situation_code(cst)
        return info is not None and info.single_phase

    def csosn(self, code: Optional[str]) -> Optional[CsosnCode]:
        return self._csosn.get(code or "")

    def icms_paid_by_substitution(self, csosn: Optional[str]) -> bool:
        """CSOSN 500: ICMS already collected upstream by ST."""
        return csosn == "500"

    def ledger_credit_type(self, code: Optional[str]) -> str:
        return LEDGER_CREDIT_TYPES.get(code or "", "Other")

    def annex(self, annex: str) -> Optional[SimplesAnnex]:
        key = annex.upper().replace("ANEXO_", "").replace("ANEXO ", "").strip()
        return self._annexes.get(key)

    def simples_bracket(self, rbt12: float, annex: str) -> Optional[SimplesBracket]:
        data = self.annex(annex)
        if data is None:
            return None
        for bracket in data.brackets:
            if rbt12 <= bracket.revenue_ceiling:
                return bracket
        return data.brackets[-1]

    def effective_rate(self, rbt12: float, annex: str) -> Optional[EffectiveRate]:
        """
        Effective Simples rate: [(RBT12 x nominal) - deduction] / RBT12.

        Returns None for an unknown annex or non-positive RBT12.
        """
        if rbt12 <= 0:
            return None
        bracket = self.simples_bracket(rbt12, annex)
        if bracket is None:
            return None
        rbt = Decimal(str(rbt12))
        raw = (rbt * Decimal(str(bracket.nominal_rate)) - Decimal(str(bracket.deduction))) / rbt
        return EffectiveRate(
            annex=self.annex(annex).annex,
            bracket=bracket.bracket,
            rate=raw.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP),
            repartition=dict(bracket.repartition),
        )

    def repartition_percent(
        self, rbt12: float, annex: str, tax_type: TaxType
    ) -> Optional[float]:
        """Share (percent) of the DAS attributable to one tax."""
        bracket = self.simples_bracket(rbt12, annex)
        if bracket is None:
            return None
        return bracket.repartition.get(tax_type, 0.0)
