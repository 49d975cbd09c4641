#!/usr/bin/env python3
"""
Quick Start Example
===================

Parses a small NF-e batch for a Simples Nacional reseller, computes the
PIS/COFINS and ICMS paid twice inside the DAS, and compares regimes.

Usage:
    python examples/quick_start.py
"""

import json
from decimal import Decimal

from fiscal_engine.analysis import analyze_documents
from fiscal_engine.credits import CompanyTotals, PeriodTotals
from fiscal_engine.parsers import DocumentKind, RawDocument
from fiscal_engine.regimes import CompanyInputs, compare_regimes
from fiscal_engine.taxonomy import Regime, TaxType


def main() -> None:
    # A month of sales: shampoo (single-phase NCM), a beer sold with
    # ICMS-ST, and an ordinary item
    batch = {
        "cnpj": "12.345.678/0001-90",
        "invoices": [
            {
                "chave_nfe": "3524031234567800019055001000000101",
                "numero": "101",
                "data_emissao": "2024-03-05",
                "itens": [
                    {"ncm": "3305.10.00", "cfop": "5102", "cst_pis": "04", "valor_item": "3000.00"},
                    {"ncm": "2203.00.00", "cfop": "5405", "csosn": "500", "valor_item": "2000.00"},
                    {"ncm": "9403.60.00", "cfop": "5102", "csosn": "102", "valor_item": "5000.00"},
                ],
            }
        ],
    }
    document = RawDocument(
        content=json.dumps(batch).encode("utf-8"),
        kind=DocumentKind.INVOICE_BATCH,
        document_id="nfe-2024-03",
    )

    # Declared DAS figures for the same month
    company = CompanyTotals(regime=Regime.SIMPLES_NACIONAL, annex="I")
    company.add_period(
        PeriodTotals(
            period="2024-03",
            total_declared_revenue=Decimal("10000.00"),
            declared_tax={
                TaxType.PIS: Decimal("27.60"),
                TaxType.COFINS: Decimal("127.40"),
                TaxType.ICMS: Decimal("340.00"),
            },
        )
    )

    result = analyze_documents([document], company)
    summary = result.summary

    print(f"Documents:        {summary.documents_analyzed}")
    print(f"Credits found:    {summary.credits_count}")
    for credit in summary.credits:
        print(
            f"  {credit.period} {credit.rule_code:<20} {credit.tax_type.value:<7} "
            f"R$ {credit.recoverable_value:>8.2f} ({credit.confidence.value})"
        )
    print(f"Total recoverable: R$ {summary.total_recoverable:.2f}")
    print(summary.disclaimer)

    # Regime comparison for the same business
    print("\n--- Regime Comparison ---")
    comparison = compare_regimes(
        CompanyInputs(
            annual_revenue=Decimal("120000"),
            payroll=Decimal("24000"),
            purchases=Decimal("70000"),
            cnae="4772-5/00",
            customer_profile="B2C",
        )
    )
    for calc in comparison.regimes:
        print(f"  {calc.name:<28} R$ {calc.annual_tax:>10.2f}  {calc.effective_rate:.2%}")
    print(f"Recommended:      {comparison.recommended.value}")
    print(f"Saving vs next:   R$ {comparison.gap_to_runner_up:.2f}")
    print(comparison.justification)


if __name__ == "__main__":
    main()
