"""
Fiscal document parsers.

Turns the three supported layouts into a header plus normalized line items:
- ledger:        SPED EFD-Contribuicoes, pipe-delimited typed records
- text-report:   PGDAS-D declaration text (loose label: value pairs)
- invoice-batch: pre-itemized NF-e batches as JSON or CSV

Parsers only raise MalformedDocumentError for a missing or inconsistent
mandatory header field. Anything else that fails to parse is left empty
on the record and reported as a PartialFieldError.
"""

from __future__ import annotations

import calendar
import io
import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterator, Optional, Union

import pandas as pd
from loguru import logger

from fiscal_engine.errors import MalformedDocumentError, PartialFieldError
from fiscal_engine.taxonomy import (
    TaxonomyTables,
    TaxType,
    is_entry_operation,
    is_exit_operation,
)


class DocumentKind(Enum):
    LEDGER = "ledger"
    TEXT_REPORT = "text-report"
    INVOICE_BATCH = "invoice-batch"


@dataclass
class RawDocument:
    """File content plus its declared kind, as received from the caller."""

    content: bytes
    kind: DocumentKind
    document_id: str = "document"


@dataclass
class ParsedDocumentHeader:
    document_id: str
    kind: DocumentKind
    tax_id: Optional[str] = None
    legal_name: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    declared_regime: Optional[str] = None
    accounting_method_code: Optional[str] = None  # ledger only


@dataclass
class NormalizedLineItem:
    """
    One taxable event or product line.

    Money fields are never negative; a value that could not be read is
    None (or absent from the per-tax dicts) and has a matching
    PartialFieldError on the parent document.
    """

    document_id: str
    line_number: int
    source_kind: DocumentKind
    period: Optional[str] = None  # YYYY-MM
    issue_date: Optional[date] = None
    product_code: Optional[str] = None  # NCM
    operation_code: Optional[str] = None  # CFOP, or ledger credit type
    direction: Optional[str] = None  # "entry" | "exit"
    situation_codes: dict[TaxType, str] = field(default_factory=dict)
    description: str = ""
    product_category: Optional[str] = None
    item_value: Optional[Decimal] = None
    base_amounts: dict[TaxType, Decimal] = field(default_factory=dict)
    tax_amounts: dict[TaxType, Decimal] = field(default_factory=dict)
    claimed_credits: dict[TaxType, Decimal] = field(default_factory=dict)
    invoice_key: Optional[str] = None
    invoice_number: Optional[str] = None
    record_code: Optional[str] = None

    def __post_init__(self) -> None:
        amounts: list[Optional[Decimal]] = [self.item_value]
        for bucket in (self.base_amounts, self.tax_amounts, self.claimed_credits):
            amounts.extend(bucket.values())
        for amount in amounts:
            if amount is not None and amount < 0:
                raise ValueError(
                    f"{self.document_id}#{self.line_number}: negative amount {amount}"
                )

    def tax_value(self, tax_type: TaxType) -> Decimal:
        return self.tax_amounts.get(tax_type, Decimal("0"))

    def unclaimed_credit(self, tax_type: TaxType) -> Decimal:
        remaining = self.tax_value(tax_type) - self.claimed_credits.get(
            tax_type, Decimal("0")
        )
        return max(remaining, Decimal("0"))


@dataclass
class LedgerConsolidation:
    """Period totals from an M200 (PIS) or M600 (COFINS) record."""

    tax_type: TaxType
    line_number: int
    total_contribution: Optional[Decimal]
    credits_discounted: Optional[Decimal]
    total_payable: Optional[Decimal]


@dataclass
class TaxReport:
    """Declared figures recovered from a PGDAS-D text report."""

    period: Optional[str] = None
    gross_revenue: Optional[Decimal] = None
    total_due: Optional[Decimal] = None
    effective_rate: Optional[Decimal] = None  # fraction, e.g. 0.0976
    annex: Optional[str] = None
    bracket: Optional[int] = None
    rbt12: Optional[Decimal] = None
    repartition_amounts: dict[TaxType, Decimal] = field(default_factory=dict)
    revenue_exceptions: dict[str, Decimal] = field(default_factory=dict)

    def to_period_totals(self):
        """Period totals for the credit engine, or None without a period."""
        from fiscal_engine.credits import PeriodTotals

        if self.period is None:
            return None
        return PeriodTotals(
            period=self.period,
            total_declared_revenue=self.gross_revenue or Decimal("0"),
            declared_tax=dict(self.repartition_amounts),
            effective_rate=self.effective_rate,
            total_due=self.total_due,
            annex=self.annex,
            rbt12=self.rbt12,
        )


@dataclass
class ParsedDocument:
    header: ParsedDocumentHeader
    items: list[NormalizedLineItem] = field(default_factory=list)
    field_errors: list[PartialFieldError] = field(default_factory=list)
    consolidations: list[LedgerConsolidation] = field(default_factory=list)
    report: Optional[TaxReport] = None
    skipped_records: int = 0

    @property
    def kind(self) -> DocumentKind:
        return self.header.kind


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

_MONEY_NOISE = re.compile(r"[^\d,.\-]")


def parse_money(raw: Any) -> Optional[Decimal]:
    """
    Parse a money value without a declared locale.

    The separator that appears last is the decimal separator when both
    appear ("1.234,56" and "1,234.56" both give 1234.56). With only one
    kind of separator, repeated occurrences are thousands separators, a
    single comma is decimal, and a single dot is decimal unless exactly
    three digits follow it.

    Returns None when no number can be recovered.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float, Decimal)):
        value = Decimal(str(raw))
        return value if value.is_finite() else None

    text = _MONEY_NOISE.sub("", str(raw)).strip(".,")
    negative = text.startswith("-")
    text = text.lstrip("-")
    if not text or "-" in text or not any(ch.isdigit() for ch in text):
        return None

    last_comma = text.rfind(",")
    last_dot = text.rfind(".")
    if last_comma >= 0 and last_dot >= 0:
        if last_comma > last_dot:
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif last_comma >= 0:
        if text.count(",") > 1:
            text = text.replace(",", "")
        else:
            text = text.replace(",", ".")
    elif last_dot >= 0:
        if text.count(".") > 1 or len(text) - last_dot - 1 == 3:
            text = text.replace(".", "")

    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return -value if negative else value


def parse_rate(raw: Any) -> Optional[Decimal]:
    """Parse a rate given as percent ("9,76%") or fraction ("0.0976")."""
    if raw is None:
        return None
    if isinstance(raw, (int, float, Decimal)):
        value = Decimal(str(raw))
    else:
        text = str(raw).replace("%", "").strip()
        if "," in text and "." in text:
            value = parse_money(text)
        else:
            try:
                value = Decimal(text.replace(",", "."))
            except InvalidOperation:
                return None
    if value is None or not value.is_finite() or value < 0:
        return None
    if value > 1:
        value = value / Decimal("100")
    return value


def _digits(raw: Any) -> str:
    return "".join(ch for ch in str(raw or "") if ch.isdigit())


def _clean_code(raw: Any, width: int) -> Optional[str]:
    digits = _digits(raw)
    if not digits:
        return None
    return digits.zfill(width) if len(digits) < width else digits


def _period_of(day: Optional[date]) -> Optional[str]:
    return day.strftime("%Y-%m") if day else None


def _month_bounds(month: int, year: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def _parse_issue_date(raw: Any) -> Optional[date]:
    text = str(raw or "").strip()
    if not text:
        return None
    for fmt, chunk in (("%Y-%m-%d", text[:10]), ("%d/%m/%Y", text[:10])):
        try:
            return datetime.strptime(chunk, fmt).date()
        except ValueError:
            continue
    return None


def _decode(content: Union[bytes, str]) -> str:
    if isinstance(content, str):
        return content
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return content.decode("latin-1")


class _FieldErrors:
    """Collects PartialFieldErrors for one document."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        self.errors: list[PartialFieldError] = []

    def money(
        self, raw: Any, field_name: str, line_number: Optional[int]
    ) -> Optional[Decimal]:
        """Non-negative money, or None with an error for bad input."""
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return None
        value = parse_money(raw)
        if value is None:
            self.add(line_number, field_name, raw, "not a number")
            return None
        if value < 0:
            self.add(line_number, field_name, raw, "negative amount")
            return None
        return value

    def add(
        self, line_number: Optional[int], field_name: str, raw: Any, message: str
    ) -> None:
        logger.warning(
            f"{self.document_id}: line {line_number}: {field_name}={raw!r}: {message}"
        )
        self.errors.append(
            PartialFieldError(
                document_id=self.document_id,
                line_number=line_number,
                field=field_name,
                raw_value=str(raw),
                message=message,
            )
        )


# ---------------------------------------------------------------------------
# Ledger (SPED EFD-Contribuicoes)
# ---------------------------------------------------------------------------

# COD_INC_TRIB from record 0110
_LEDGER_REGIMES: dict[str, str] = {
    "1": "LUCRO_REAL",  # non-cumulative
    "2": "LUCRO_PRESUMIDO",  # cumulative
    "3": "LUCRO_REAL",  # both
}

_LEDGER_CREDIT_RECORDS = {"M100": TaxType.PIS, "M500": TaxType.COFINS}
_LEDGER_CONSOLIDATION_RECORDS = {"M200": TaxType.PIS, "M600": TaxType.COFINS}


def _ledger_fields(line: str) -> list[str]:
    text = line.strip()
    if text.startswith("|"):
        text = text[1:]
    if text.endswith("|"):
        text = text[:-1]
    return text.split("|")


def _field(fields: list[str], index: int) -> str:
    return fields[index].strip() if index < len(fields) else ""


def _ledger_date(raw: str) -> Optional[date]:
    try:
        return datetime.strptime(raw, "%d%m%Y").date()
    except ValueError:
        return None


def parse_ledger(
    content: Union[bytes, str],
    document_id: str = "ledger",
    taxonomy: Optional[TaxonomyTables] = None,
) -> ParsedDocument:
    """
    Parse an EFD-Contribuicoes file.

    The 0000 record is mandatory and must carry a CNPJ and a valid
    period. M100/M500 credit records become line items; M200/M600
    consolidation records are kept separately as period totals.
    """
    text = _decode(content)
    errors = _FieldErrors(document_id)
    header: Optional[ParsedDocumentHeader] = None
    items: list[NormalizedLineItem] = []
    consolidations: list[LedgerConsolidation] = []
    skipped = 0

    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        fields = _ledger_fields(line)
        record = fields[0].strip().upper()

        if record == "0000":
            header = _ledger_header(fields, document_id, line_number)
        elif record == "0110":
            if header is None:
                raise MalformedDocumentError(
                    document_id, "0000", "record 0110 found before opening record"
                )
            code = _field(fields, 1)
            header.accounting_method_code = code or None
            header.declared_regime = _LEDGER_REGIMES.get(code)
            if code and code not in _LEDGER_REGIMES:
                errors.add(line_number, "COD_INC_TRIB", code, "unknown regime code")
        elif record in _LEDGER_CREDIT_RECORDS:
            period = _period_of(header.period_start) if header else None
            items.append(
                _ledger_credit_item(
                    fields,
                    _LEDGER_CREDIT_RECORDS[record],
                    record,
                    document_id,
                    line_number,
                    period,
                    errors,
                    taxonomy,
                )
            )
        elif record in _LEDGER_CONSOLIDATION_RECORDS:
            consolidations.append(
                LedgerConsolidation(
                    tax_type=_LEDGER_CONSOLIDATION_RECORDS[record],
                    line_number=line_number,
                    total_contribution=errors.money(
                        _field(fields, 1), f"{record}.VL_TOT_CONT", line_number
                    ),
                    credits_discounted=errors.money(
                        _field(fields, 2), f"{record}.VL_TOT_CRED_DESC", line_number
                    ),
                    total_payable=errors.money(
                        _field(fields, 12), f"{record}.VL_TOT_CONT_REC", line_number
                    ),
                )
            )
        else:
            skipped += 1

    if header is None:
        raise MalformedDocumentError(document_id, "0000", "opening record not found")

    logger.debug(
        f"{document_id}: ledger parsed, {len(items)} credit items, "
        f"{len(consolidations)} consolidations, {skipped} records skipped"
    )
    return ParsedDocument(
        header=header,
        items=items,
        field_errors=errors.errors,
        consolidations=consolidations,
        skipped_records=skipped,
    )


def _ledger_header(
    fields: list[str], document_id: str, line_number: int
) -> ParsedDocumentHeader:
    tax_id = _digits(_field(fields, 8))
    if len(tax_id) != 14:
        raise MalformedDocumentError(
            document_id, "CNPJ", f"line {line_number}: missing or invalid CNPJ"
        )
    start = _ledger_date(_field(fields, 5))
    end = _ledger_date(_field(fields, 6))
    if start is None or end is None:
        raise MalformedDocumentError(
            document_id, "DT_INI/DT_FIN", f"line {line_number}: invalid period"
        )
    if start > end:
        raise MalformedDocumentError(
            document_id, "DT_INI/DT_FIN", f"period start {start} is after end {end}"
        )
    return ParsedDocumentHeader(
        document_id=document_id,
        kind=DocumentKind.LEDGER,
        tax_id=tax_id,
        legal_name=_field(fields, 7) or None,
        period_start=start,
        period_end=end,
    )


def _ledger_credit_item(
    fields: list[str],
    tax_type: TaxType,
    record: str,
    document_id: str,
    line_number: int,
    period: Optional[str],
    errors: _FieldErrors,
    taxonomy: Optional[TaxonomyTables],
) -> NormalizedLineItem:
    credit_code = _digits(_field(fields, 1))
    credit_type = credit_code[-2:] if len(credit_code) >= 2 else None
    if credit_type is None:
        errors.add(line_number, f"{record}.COD_CRED", _field(fields, 1), "missing credit code")

    base = errors.money(_field(fields, 3), f"{record}.VL_BC", line_number)
    credit = errors.money(_field(fields, 7), f"{record}.VL_CRED", line_number)
    discounted = errors.money(_field(fields, 13), f"{record}.VL_CRED_DESC", line_number)

    description = ""
    if taxonomy is not None and credit_type:
        description = taxonomy.ledger_credit_type(credit_type)

    return NormalizedLineItem(
        document_id=document_id,
        line_number=line_number,
        source_kind=DocumentKind.LEDGER,
        period=period,
        operation_code=credit_type,
        direction="entry",
        description=description,
        item_value=base,
        base_amounts={tax_type: base} if base is not None else {},
        tax_amounts={tax_type: credit} if credit is not None else {},
        claimed_credits={tax_type: discounted} if discounted is not None else {},
        record_code=record,
    )


# ---------------------------------------------------------------------------
# Text report (PGDAS-D)
# ---------------------------------------------------------------------------

_VALUE = r"[:\s]*R?\$?\s*(\d[\d.,]*)"

_TAX_ID_PATTERNS = [
    re.compile(r"CNPJ[:\s]*(\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2})", re.I),
    re.compile(r"CNPJ(?:\s+B[áa]sico)?[:\s]*(\d{2}\.?\d{3}\.?\d{3})\b", re.I),
]
_LEGAL_NAME_PATTERNS = [
    re.compile(r"Raz[ãa]o Social[:\s]*([^\n]+)", re.I),
    re.compile(r"Nome Empresarial[:\s]*([^\n]+)", re.I),
    re.compile(r"Contribuinte[:\s]*([^\n]+)", re.I),
]
_PERIOD_RANGE_PATTERN = re.compile(
    r"(\d{2}/\d{2}/\d{4})\s*(?:a|at[ée]|-)\s*(\d{2}/\d{2}/\d{4})", re.I
)
_PERIOD_PATTERNS = [
    re.compile(r"Per[íi]odo de Apura[çc][ãa]o(?:\s*\(PA\))?[:\s]*(\d{2}/\d{4})", re.I),
    re.compile(r"Compet[êe]ncia[:\s]*(\d{2}/\d{4})", re.I),
    re.compile(r"\bPA[:\s]+(\d{2}/\d{4})"),
    re.compile(r"(?<![\d/])(\d{2}/\d{4})(?![\d/])"),
]
_GROSS_REVENUE_PATTERNS = [
    re.compile(r"Receita Bruta do PA(?:\s*\(RPA\))?" + _VALUE, re.I),
    re.compile(r"Receita Bruta" + _VALUE, re.I),
    re.compile(r"Receita Total" + _VALUE, re.I),
    re.compile(r"Faturamento(?: do M[êe]s)?" + _VALUE, re.I),
]
_TOTAL_DUE_PATTERNS = [
    re.compile(r"Valor do DAS" + _VALUE, re.I),
    re.compile(r"Valor a Pagar" + _VALUE, re.I),
    re.compile(r"Total a Recolher" + _VALUE, re.I),
    re.compile(r"Total Devido" + _VALUE, re.I),
]
_EFFECTIVE_RATE_PATTERNS = [
    re.compile(r"Al[íi]quota Efetiva[:\s]*(\d[\d.,]*)\s*%?", re.I),
    re.compile(r"Al[íi]quota(?!\s+Nominal)[:\s]*(\d[\d.,]*)\s*%?", re.I),
]
_ANNEX_PATTERNS = [re.compile(r"Anexo[:\s]*(IV|V|I{1,3})\b", re.I)]
_BRACKET_PATTERNS = [
    re.compile(r"Faixa[:\s]*(\d)\b", re.I),
    re.compile(r"\b(\d)\s*[ªºa]\s*Faixa", re.I),
]
_RBT12_PATTERNS = [
    re.compile(r"RBT12" + _VALUE, re.I),
    re.compile(r"Receita Bruta Acumulada[^:\n]*:\s*R?\$?\s*(\d[\d.,]*)", re.I),
    re.compile(r"Receita Bruta (?:dos|nos) [úu]ltimos 12 meses[^:\n]*:\s*R?\$?\s*(\d[\d.,]*)", re.I),
]
_REPARTITION_PATTERNS: dict[TaxType, list[re.Pattern]] = {
    TaxType.IRPJ: [re.compile(r"\bIRPJ" + _VALUE, re.I)],
    TaxType.CSLL: [re.compile(r"\bCSLL" + _VALUE, re.I)],
    TaxType.COFINS: [re.compile(r"\bCOFINS" + _VALUE, re.I)],
    TaxType.PIS: [re.compile(r"\bPIS(?:/PASEP)?" + _VALUE, re.I)],
    TaxType.CPP: [re.compile(r"\bCPP" + _VALUE, re.I)],
    TaxType.ICMS: [re.compile(r"\bICMS" + _VALUE, re.I)],
    TaxType.IPI: [re.compile(r"\bIPI" + _VALUE, re.I)],
    TaxType.ISS: [re.compile(r"\bISS(?:QN)?" + _VALUE, re.I)],
}
_EXCEPTION_VALUE = r"[^:\n]*:\s*R?\$?\s*(\d[\d.,]*)"
_REVENUE_EXCEPTION_PATTERNS: dict[str, list[re.Pattern]] = {
    "single_phase": [
        re.compile(r"Monof[áa]sic[oa]s?" + _EXCEPTION_VALUE, re.I),
        re.compile(r"Tributa[çc][ãa]o Concentrada" + _EXCEPTION_VALUE, re.I),
    ],
    "substitution": [
        re.compile(r"Substitui[çc][ãa]o Tribut[áa]ria" + _EXCEPTION_VALUE, re.I),
        re.compile(r"\bICMS[- ]ST\b" + _EXCEPTION_VALUE, re.I),
    ],
    "export": [re.compile(r"Exporta[çc][ãa]o" + _EXCEPTION_VALUE, re.I)],
    "exempt": [
        re.compile(r"Isen[çc][ãa]o" + _EXCEPTION_VALUE, re.I),
        re.compile(r"Imunidade" + _EXCEPTION_VALUE, re.I),
    ],
}


def _first_match(text: str, patterns: list[re.Pattern]) -> Optional[re.Match]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match
    return None


def _report_money(
    text: str, patterns: list[re.Pattern], field_name: str, errors: _FieldErrors
) -> Optional[Decimal]:
    match = _first_match(text, patterns)
    if match is None:
        return None
    return errors.money(match.group(1), field_name, None)


def parse_text_report(
    content: Union[bytes, str],
    document_id: str = "text-report",
    taxonomy: Optional[TaxonomyTables] = None,
) -> ParsedDocument:
    """
    Parse a PGDAS-D declaration rendered as text.

    Every field is optional. Each field has an ordered list of label
    patterns and the first that matches wins. Only empty content is
    rejected.
    """
    text = _decode(content)
    if not text.strip():
        raise MalformedDocumentError(document_id, "content", "empty text report")

    errors = _FieldErrors(document_id)
    header = ParsedDocumentHeader(
        document_id=document_id,
        kind=DocumentKind.TEXT_REPORT,
        declared_regime="SIMPLES_NACIONAL",
    )
    report = TaxReport()

    match = _first_match(text, _TAX_ID_PATTERNS)
    if match:
        header.tax_id = _digits(match.group(1))

    match = _first_match(text, _LEGAL_NAME_PATTERNS)
    if match:
        header.legal_name = match.group(1).strip() or None

    range_match = _PERIOD_RANGE_PATTERN.search(text)
    if range_match:
        start = _parse_issue_date(range_match.group(1))
        end = _parse_issue_date(range_match.group(2))
        if start and end and start <= end:
            header.period_start, header.period_end = start, end
        else:
            errors.add(None, "period", range_match.group(0), "invalid period range")
    if header.period_start is None:
        match = _first_match(text, _PERIOD_PATTERNS)
        if match:
            month, year = (int(part) for part in match.group(1).split("/"))
            if not 1 <= month <= 12:
                errors.add(None, "period", match.group(1), "invalid month")
            elif year < 1:
                errors.add(None, "period", match.group(1), "invalid period")
            else:
                header.period_start, header.period_end = _month_bounds(month, year)
    report.period = _period_of(header.period_start)

    report.gross_revenue = _report_money(text, _GROSS_REVENUE_PATTERNS, "gross_revenue", errors)
    report.total_due = _report_money(text, _TOTAL_DUE_PATTERNS, "total_due", errors)
    report.rbt12 = _report_money(text, _RBT12_PATTERNS, "rbt12", errors)

    match = _first_match(text, _EFFECTIVE_RATE_PATTERNS)
    if match:
        report.effective_rate = parse_rate(match.group(1).rstrip(".,"))
        if report.effective_rate is None:
            errors.add(None, "effective_rate", match.group(1), "not a rate")

    match = _first_match(text, _ANNEX_PATTERNS)
    if match:
        report.annex = match.group(1).upper()

    match = _first_match(text, _BRACKET_PATTERNS)
    if match:
        report.bracket = int(match.group(1))

    for tax_type, patterns in _REPARTITION_PATTERNS.items():
        amount = _report_money(text, patterns, f"repartition.{tax_type.value}", errors)
        if amount is not None:
            report.repartition_amounts[tax_type] = amount

    for category, patterns in _REVENUE_EXCEPTION_PATTERNS.items():
        amount = _report_money(text, patterns, f"exception.{category}", errors)
        if amount is not None:
            report.revenue_exceptions[category] = amount

    logger.debug(
        f"{document_id}: text report parsed, period={report.period} "
        f"revenue={report.gross_revenue} due={report.total_due} "
        f"rate={report.effective_rate}"
    )
    return ParsedDocument(header=header, field_errors=errors.errors, report=report)


# ---------------------------------------------------------------------------
# Invoice batch (NF-e)
# ---------------------------------------------------------------------------

_INVOICE_LIST_KEYS = ("invoices", "notas", "parsed_xmls")
_ITEM_LIST_KEYS = ("itens", "items", "produtos")
_ITEM_VALUE_KEYS = ("valor_item", "valorTotal", "valor_total", "valor")
_ISSUE_DATE_KEYS = ("data_emissao", "dataEmissao", "issue_date")

_TAX_FIELDS: dict[TaxType, tuple[str, ...]] = {
    TaxType.PIS: ("valor_pis", "valorPis"),
    TaxType.COFINS: ("valor_cofins", "valorCofins"),
    TaxType.ICMS: ("valor_icms", "valorIcms"),
    TaxType.ICMS_ST: ("valor_icms_st", "valorIcmsSt"),
    TaxType.IPI: ("valor_ipi", "valorIpi"),
}
_CREDIT_FIELDS: dict[TaxType, tuple[str, ...]] = {
    TaxType.PIS: ("credito_pis", "creditoPis"),
    TaxType.COFINS: ("credito_cofins", "creditoCofins"),
    TaxType.ICMS: ("credito_icms", "creditoIcms"),
    TaxType.IPI: ("credito_ipi", "creditoIpi"),
}
_BASE_FIELDS: dict[TaxType, tuple[str, ...]] = {
    TaxType.PIS: ("base_pis",),
    TaxType.COFINS: ("base_cofins",),
    TaxType.ICMS: ("base_icms", "bc_icms"),
    TaxType.IPI: ("base_ipi",),
}


def _pick(record: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def _load_invoices(text: str, document_id: str) -> tuple[list[dict], dict]:
    stripped = text.lstrip()
    if stripped.startswith("{") or stripped.startswith("["):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise MalformedDocumentError(
                document_id, "content", f"invalid JSON: {exc}"
            ) from exc
        if isinstance(data, list):
            return data, {}
        if isinstance(data, dict):
            for key in _INVOICE_LIST_KEYS:
                if isinstance(data.get(key), list):
                    return data[key], data
        raise MalformedDocumentError(document_id, "invoices", "no invoice list found")

    header_line = stripped.splitlines()[0]
    sep = ";" if header_line.count(";") > header_line.count(",") else ","
    try:
        frame = pd.read_csv(
            io.BytesIO(stripped.encode("utf-8")),
            dtype=str,
            keep_default_na=False,
            sep=sep,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise MalformedDocumentError(
            document_id, "content", f"unreadable CSV: {exc}"
        ) from exc
    if frame.empty:
        raise MalformedDocumentError(document_id, "invoices", "no invoice rows found")
    frame.columns = [str(col).strip() for col in frame.columns]
    return frame.to_dict(orient="records"), {}


def _iter_invoice_items(invoices: list[Any]) -> Iterator[tuple[dict, dict]]:
    """Yield (invoice, item); a flat invoice record is its own single item."""
    for invoice in invoices:
        if not isinstance(invoice, dict):
            continue
        items = _pick(invoice, _ITEM_LIST_KEYS)
        if isinstance(items, list):
            for item in items:
                if isinstance(item, dict):
                    yield invoice, item
        else:
            yield invoice, invoice


def _situation_codes(item: dict) -> dict[TaxType, str]:
    codes: dict[TaxType, str] = {}
    pis = _clean_code(_pick(item, ("cst_pis", "cstPis")), 2)
    cofins = _clean_code(_pick(item, ("cst_cofins", "cstCofins")), 2) or pis
    if pis:
        codes[TaxType.PIS] = pis
    if cofins:
        codes[TaxType.COFINS] = cofins
    csosn = _clean_code(item.get("csosn"), 3)
    icms = csosn or _clean_code(_pick(item, ("cst_icms", "cstIcms")), 2)
    if icms:
        codes[TaxType.ICMS] = icms
    ipi = _clean_code(_pick(item, ("cst_ipi", "cstIpi")), 2)
    if ipi:
        codes[TaxType.IPI] = ipi
    return codes


def parse_invoice_batch(
    content: Union[bytes, str],
    document_id: str = "invoice-batch",
    taxonomy: Optional[TaxonomyTables] = None,
) -> ParsedDocument:
    """
    Normalize a pre-itemized invoice batch.

    Accepts a JSON list of invoices, a JSON object wrapping one, or a CSV
    file with one row per item. Codes are cleaned to digits and padded;
    money is coerced with the same tolerant parser as text reports.
    """
    text = _decode(content)
    if not text.strip():
        raise MalformedDocumentError(document_id, "content", "empty invoice batch")
    invoices, envelope = _load_invoices(text, document_id)

    errors = _FieldErrors(document_id)
    items: list[NormalizedLineItem] = []
    dates: list[date] = []

    for line_number, (invoice, item) in enumerate(_iter_invoice_items(invoices), start=1):
        raw_date = _pick(item, _ISSUE_DATE_KEYS) or _pick(invoice, _ISSUE_DATE_KEYS)
        issue_date = _parse_issue_date(raw_date)
        if issue_date is None:
            errors.add(line_number, "data_emissao", raw_date, "missing or invalid issue date")
        else:
            dates.append(issue_date)

        cfop = _digits(item.get("cfop")) or None
        if cfop and len(cfop) != 4:
            errors.add(line_number, "cfop", item.get("cfop"), "CFOP must have 4 digits")
            cfop = None
        ncm = _digits(item.get("ncm")) or None

        tax_amounts: dict[TaxType, Decimal] = {}
        for tax_type, keys in _TAX_FIELDS.items():
            amount = errors.money(_pick(item, keys), keys[0], line_number)
            if amount is not None:
                tax_amounts[tax_type] = amount
        claimed: dict[TaxType, Decimal] = {}
        for tax_type, keys in _CREDIT_FIELDS.items():
            amount = errors.money(_pick(item, keys), keys[0], line_number)
            if amount is not None:
                claimed[tax_type] = amount
        bases: dict[TaxType, Decimal] = {}
        for tax_type, keys in _BASE_FIELDS.items():
            amount = errors.money(_pick(item, keys), keys[0], line_number)
            if amount is not None:
                bases[tax_type] = amount

        category = None
        if taxonomy is not None:
            product = taxonomy.monophasic_product(ncm)
            category = product.category if product else None

        direction = None
        if is_entry_operation(cfop):
            direction = "entry"
        elif is_exit_operation(cfop):
            direction = "exit"

        items.append(
            NormalizedLineItem(
                document_id=document_id,
                line_number=line_number,
                source_kind=DocumentKind.INVOICE_BATCH,
                period=_period_of(issue_date),
                issue_date=issue_date,
                product_code=ncm,
                operation_code=cfop,
                direction=direction,
                situation_codes=_situation_codes(item),
                description=str(_pick(item, ("descricao", "description")) or ""),
                product_category=category,
                item_value=errors.money(_pick(item, _ITEM_VALUE_KEYS), "valor_item", line_number),
                base_amounts=bases,
                tax_amounts=tax_amounts,
                claimed_credits=claimed,
                invoice_key=_pick(invoice, ("chave_nfe", "chaveNfe")),
                invoice_number=_pick(invoice, ("numero", "numero_nfe")),
            )
        )

    first = invoices[0] if invoices and isinstance(invoices[0], dict) else {}
    header = ParsedDocumentHeader(
        document_id=document_id,
        kind=DocumentKind.INVOICE_BATCH,
        tax_id=_digits(_pick(envelope, ("cnpj",)) or _pick(first, ("cnpj_destinatario",))) or None,
        legal_name=_pick(envelope, ("razao_social", "nome")) or _pick(first, ("nome_destinatario",)),
        period_start=min(dates) if dates else None,
        period_end=max(dates) if dates else None,
        declared_regime=_pick(envelope, ("regime", "regime_tributario")),
    )
    logger.debug(f"{document_id}: invoice batch parsed, {len(items)} items")
    return ParsedDocument(header=header, items=items, field_errors=errors.errors)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

_PARSERS = {
    DocumentKind.LEDGER: parse_ledger,
    DocumentKind.TEXT_REPORT: parse_text_report,
    DocumentKind.INVOICE_BATCH: parse_invoice_batch,
}


def parse(
    kind: Union[DocumentKind, str],
    content: Union[bytes, str],
    document_id: Optional[str] = None,
    taxonomy: Optional[TaxonomyTables] = None,
) -> ParsedDocument:
    """Parse ``content`` with the parser for the declared ``kind``."""
    try:
        kind = DocumentKind(kind)
    except ValueError:
        raise ValueError(f"Unknown document kind: {kind}") from None
    return _PARSERS[kind](content, document_id or kind.value, taxonomy)


def parse_document(
    document: RawDocument, taxonomy: Optional[TaxonomyTables] = None
) -> ParsedDocument:
    return parse(document.kind, document.content, document.document_id, taxonomy)
