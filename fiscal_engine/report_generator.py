"""
Credit and regime report generator.

Produces:
- Recoverable credit summaries (totals by confidence tier and tax type,
  itemized credits, suppressed rules, per-document status)
- Regime comparison reports
- CSV and JSON export
"""

from __future__ import annotations

import csv
import io
import json
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from fiscal_engine.analysis import DocumentOutcome
from fiscal_engine.credits import CreditSummary
from fiscal_engine.regimes import ComparisonResult


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, Enum and date objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, date):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return super().default(o)


def _decimal_to_float(obj: Any) -> Any:
    """Recursively convert Decimal values to float for serialization."""
    if isinstance(obj, dict):
        return {k: _decimal_to_float(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_decimal_to_float(i) for i in obj]
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return obj


class ReportGenerator:
    """
    Generates credit and regime reports with export capabilities.

    All reports can be returned as structured dicts, rendered to
    console-friendly text, or exported to CSV/JSON files.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path("reports")

    def _write(self, filename: str, content: str) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        (self.output_dir / filename).write_text(content, encoding="utf-8")

    # ------------------------------------------------------------------
    # Credit summary
    # ------------------------------------------------------------------

    def credit_report(
        self,
        summary: CreditSummary,
        documents: Optional[list[DocumentOutcome]] = None,
        company_label: str = "",
    ) -> dict[str, Any]:
        """
        Generate a recoverable credit report.

        Returns a structured dict suitable for display or export.
        """
        report: dict[str, Any] = {
            "report_type": "credit_analysis",
            "company": company_label,
            "generated_date": date.today().isoformat(),
            "summary": {
                "total_recoverable": summary.total_recoverable,
                "high_confidence": summary.by_confidence.get("high", Decimal("0")),
                "medium_confidence": summary.by_confidence.get("medium", Decimal("0")),
                "low_confidence": summary.by_confidence.get("low", Decimal("0")),
                "credits_count": summary.credits_count,
                "documents_analyzed": summary.documents_analyzed,
            },
            "by_tax_type": dict(
                sorted(summary.by_tax_type.items(), key=lambda x: x[1], reverse=True)
            ),
            "credits": [
                {
                    "period": c.period,
                    "rule_code": c.rule_code,
                    "tax_type": c.tax_type.value,
                    "treatment": c.treatment.value,
                    "original_tax_value": c.original_tax_value,
                    "recoverable_value": c.recoverable_value,
                    "confidence": c.confidence.value,
                    "confidence_score": c.confidence_score,
                    "basis": c.detail.basis,
                    "base_revenue": c.detail.base_revenue,
                    "revenue_share": c.detail.revenue_share,
                    "effective_rate": c.detail.effective_rate,
                    "repartition_percent": c.detail.repartition_percent,
                    "legal_basis": c.legal_basis,
                }
                for c in summary.credits
            ],
            "suppressed_rules": [
                {
                    "rule_code": s.rule_code,
                    "regime": s.regime,
                    "tax_types": ", ".join(s.tax_types),
                    "affected_items": s.affected_items,
                    "reason": s.reason,
                }
                for s in summary.suppressed_rules
            ],
            "warnings": list(summary.warnings),
            "disclaimer": summary.disclaimer,
        }

        if documents is not None:
            report["documents"] = [
                {
                    "document_id": d.document_id,
                    "kind": d.kind.value,
                    "status": "parsed" if d.success else "rejected",
                    "items": d.items,
                    "field_errors": len(d.field_errors),
                    "error": d.error or "",
                }
                for d in documents
            ]
            report["summary"]["documents_rejected"] = sum(
                1 for d in documents if not d.success
            )

        return report

    # ------------------------------------------------------------------
    # Regime comparison
    # ------------------------------------------------------------------

    def regime_report(self, comparison: ComparisonResult) -> dict[str, Any]:
        """Generate a regime comparison report."""
        recommended = comparison.get(comparison.recommended)
        return {
            "report_type": "regime_comparison",
            "generated_date": date.today().isoformat(),
            "summary": {
                "recommended": recommended.name,
                "recommended_tax": recommended.annual_tax,
                "recommended_rate": recommended.effective_rate,
                "gap_to_runner_up": comparison.gap_to_runner_up,
            },
            "regimes": [
                {
                    "regime": r.regime.value,
                    "name": r.name,
                    "annual_tax": r.annual_tax,
                    "effective_rate": r.effective_rate,
                    "credits_generated": r.credits_generated,
                    "eligible": r.eligible,
                    "ineligible_reason": r.ineligible_reason or "",
                    "advantage": r.advantage,
                }
                for r in comparison.regimes
            ],
            "justification": comparison.justification,
            "disclaimer": comparison.disclaimer,
        }

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def to_json(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
    ) -> str:
        """Export a report to JSON. Returns the JSON string."""
        serializable = _decimal_to_float(report)
        json_str = json.dumps(
            serializable, indent=2, ensure_ascii=False, cls=_DecimalEncoder
        )

        if filename:
            self._write(filename, json_str)

        return json_str

    def to_csv(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
        section: str = "credits",
    ) -> str:
        """
        Export a report section to CSV. Returns the CSV string.

        The section parameter specifies which list/dict in the report
        to export as rows.
        """
        data = report.get(section, [])
        if not data:
            return ""

        output = io.StringIO()

        if isinstance(data, list) and isinstance(data[0], dict):
            writer = csv.DictWriter(output, fieldnames=list(data[0].keys()))
            writer.writeheader()
            for row in data:
                writer.writerow(
                    {k: float(v) if isinstance(v, Decimal) else v for k, v in row.items()}
                )
        elif isinstance(data, dict):
            writer = csv.writer(output)
            writer.writerow(["key", "value"])
            for k, v in data.items():
                writer.writerow([k, float(v) if isinstance(v, Decimal) else v])

        csv_str = output.getvalue()

        if filename:
            self._write(filename, csv_str)

        return csv_str

    # ------------------------------------------------------------------
    # Console-formatted text output
    # ------------------------------------------------------------------

    def format_text(self, report: dict[str, Any]) -> str:
        """Format a report as human-readable text for console output."""
        lines: list[str] = []
        report_type = report.get("report_type", "report").replace("_", " ").title()
        lines.append(f"{'=' * 60}")
        lines.append(f"  {report_type}")
        lines.append(f"  Generated: {report.get('generated_date', '')}")
        if report.get("company"):
            lines.append(f"  Company: {report['company']}")
        lines.append(f"{'=' * 60}")
        lines.append("")

        summary = report.get("summary", {})
        if summary:
            lines.append("SUMMARY")
            lines.append("-" * 40)
            for key, value in summary.items():
                label = key.replace("_", " ").title()
                if isinstance(value, (float, Decimal)):
                    if "rate" in key:
                        lines.append(f"  {label}: {float(value):.2%}")
                    else:
                        lines.append(f"  {label}: R$ {float(value):,.2f}")
                else:
                    lines.append(f"  {label}: {value}")
            lines.append("")

        by_tax = report.get("by_tax_type", {})
        if by_tax:
            lines.append("BY TAX TYPE")
            lines.append("-" * 40)
            for tax, amount in by_tax.items():
                lines.append(f"  {tax}: R$ {float(amount):>12,.2f}")
            lines.append("")

        regimes = report.get("regimes", [])
        if regimes:
            lines.append("REGIMES")
            lines.append("-" * 40)
            for r in regimes:
                if r["eligible"]:
                    lines.append(
                        f"  {r['name']}: R$ {float(r['annual_tax']):>14,.2f} | "
                        f"{float(r['effective_rate']):.2%}"
                    )
                else:
                    lines.append(f"  {r['name']}: ineligible ({r['ineligible_reason']})")
            lines.append("")

        suppressed = report.get("suppressed_rules", [])
        if suppressed:
            lines.append("SUPPRESSED RULES")
            lines.append("-" * 40)
            for s in suppressed:
                lines.append(f"  {s['rule_code']} ({s['affected_items']} items): {s['reason']}")
            lines.append("")

        rejected = [d for d in report.get("documents", []) if d["status"] == "rejected"]
        if rejected:
            lines.append("REJECTED DOCUMENTS")
            lines.append("-" * 40)
            for d in rejected:
                lines.append(f"  {d['document_id']}: {d['error']}")
            lines.append("")

        if report.get("justification"):
            lines.append("RECOMMENDATION")
            lines.append("-" * 40)
            lines.append(f"  {report['justification']}")
            lines.append("")

        warnings = report.get("warnings", [])
        if warnings:
            lines.append("WARNINGS")
            lines.append("-" * 40)
            for w in warnings:
                lines.append(f"  * {w}")
            lines.append("")

        if report.get("disclaimer"):
            lines.append(report["disclaimer"])

        return "\n".join(lines)
