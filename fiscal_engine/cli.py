"""
Command-line interface for the Fiscal Credit Engine.

Provides subcommands for document parsing, credit analysis, regime
comparison, and rule table inspection.
"""

from __future__ import annotations

import argparse
import sys
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pandas as pd
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fiscal_engine.analysis import analyze_documents
from fiscal_engine.config import Settings, configure_logging
from fiscal_engine.credits import CompanyTotals, PeriodTotals
from fiscal_engine.errors import FiscalEngineError, MalformedDocumentError
from fiscal_engine.parsers import DocumentKind, RawDocument, parse, parse_money, parse_rate
from fiscal_engine.regimes import CompanyInputs, compare_regimes
from fiscal_engine.report_generator import ReportGenerator
from fiscal_engine.rules import RuleSet
from fiscal_engine.taxonomy import TaxonomyTables, TaxType, normalize_regime

console = Console()


def _read_file(path: str) -> bytes:
    file_path = Path(path)
    if not file_path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        sys.exit(1)
    return file_path.read_bytes()


def _infer_kind(path: str, content: bytes) -> DocumentKind:
    """Guess the layout from the extension and the first bytes."""
    suffix = Path(path).suffix.lower()
    if suffix in (".json", ".csv"):
        return DocumentKind.INVOICE_BATCH
    if content.lstrip()[:6] == b"|0000|":
        return DocumentKind.LEDGER
    return DocumentKind.TEXT_REPORT


def _load_period_totals(path: str) -> list[PeriodTotals]:
    """
    Load declared period totals from a CSV file.

    Expected columns: period, revenue, and optionally effective_rate,
    total_due, and one column per tax (pis, cofins, icms, ...).
    """
    frame = pd.read_csv(path, dtype=str, keep_default_na=False)
    frame.columns = [str(c).strip().lower() for c in frame.columns]
    totals: list[PeriodTotals] = []
    for i, row in frame.iterrows():
        if not row.get("period"):
            console.print(f"[yellow]Skipping totals row {i + 1}: no period[/yellow]")
            continue
        declared = {}
        for tax_type in TaxType:
            amount = parse_money(row.get(tax_type.value.lower()))
            if amount is not None:
                declared[tax_type] = amount
        totals.append(
            PeriodTotals(
                period=row["period"].strip(),
                total_declared_revenue=parse_money(row.get("revenue")) or Decimal("0"),
                declared_tax=declared,
                effective_rate=parse_rate(row.get("effective_rate") or None),
                total_due=parse_money(row.get("total_due")),
            )
        )
    return totals


# -----------------------------------------------------------------------
# Subcommand: parse
# -----------------------------------------------------------------------


def cmd_parse(args: argparse.Namespace) -> None:
    """Parse one document and show its header, items and field errors."""
    content = _read_file(args.file)
    kind = DocumentKind(args.kind) if args.kind else _infer_kind(args.file, content)
    try:
        doc = parse(kind, content, Path(args.file).name, TaxonomyTables())
    except MalformedDocumentError as e:
        console.print(f"[red]Malformed document: {e}[/red]")
        sys.exit(1)

    header = doc.header
    console.print(
        Panel(
            f"[bold]Kind:[/bold] {header.kind.value}\n"
            f"[bold]Tax ID:[/bold] {header.tax_id or 'N/A'}\n"
            f"[bold]Legal Name:[/bold] {header.legal_name or 'N/A'}\n"
            f"[bold]Period:[/bold] {header.period_start or '?'} to {header.period_end or '?'}\n"
            f"[bold]Regime:[/bold] {header.declared_regime or 'N/A'}\n"
            f"[bold]Items:[/bold] {len(doc.items)}",
            title=header.document_id,
            border_style="blue",
        )
    )

    if doc.items:
        table = Table(title="Line Items", box=box.ROUNDED)
        table.add_column("#", style="dim", justify="right")
        table.add_column("Period")
        table.add_column("NCM")
        table.add_column("Operation")
        table.add_column("Codes")
        table.add_column("Value", justify="right")
        table.add_column("Taxes")
        for item in doc.items[: args.limit]:
            table.add_row(
                str(item.line_number),
                item.period or "-",
                item.product_code or "-",
                item.operation_code or "-",
                " ".join(f"{t.value}:{c}" for t, c in item.situation_codes.items()),
                f"{item.item_value:,.2f}" if item.item_value is not None else "-",
                " ".join(f"{t.value}={v:,.2f}" for t, v in item.tax_amounts.items()),
            )
        console.print(table)

    if doc.report is not None:
        report = doc.report
        console.print(
            Panel(
                f"[bold]Gross Revenue:[/bold] {report.gross_revenue if report.gross_revenue is not None else 'N/A'}\n"
                f"[bold]Total Due:[/bold] {report.total_due if report.total_due is not None else 'N/A'}\n"
                f"[bold]Effective Rate:[/bold] {f'{report.effective_rate:.4%}' if report.effective_rate is not None else 'N/A'}\n"
                f"[bold]Annex:[/bold] {report.annex or 'N/A'}  [bold]RBT12:[/bold] {report.rbt12 or 'N/A'}",
                title="Declared Figures",
                border_style="cyan",
            )
        )

    for err in doc.field_errors:
        console.print(
            f"[yellow]Line {err.line_number or '-'}: {err.field}={err.raw_value!r}: {err.message}[/yellow]"
        )


# -----------------------------------------------------------------------
# Subcommand: credits
# -----------------------------------------------------------------------


def cmd_credits(args: argparse.Namespace) -> None:
    """Run the full credit analysis over one or more documents."""
    settings = Settings.from_env()
    if args.rules_file:
        rule_set = RuleSet.from_json(Path(args.rules_file).read_text(encoding="utf-8"))
    else:
        rule_set = settings.load_rule_set()
    exclusions = settings.load_exclusions()

    try:
        regime = normalize_regime(args.regime)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    documents: list[RawDocument] = []
    for path in args.files:
        content = _read_file(path)
        kind = DocumentKind(args.kind) if args.kind else _infer_kind(path, content)
        documents.append(RawDocument(content=content, kind=kind, document_id=Path(path).name))

    company = CompanyTotals(
        regime=regime,
        annex=args.annex,
        rbt12=parse_money(args.rbt12) if args.rbt12 else None,
    )
    if args.totals:
        for totals in _load_period_totals(args.totals):
            company.add_period(totals)

    result = analyze_documents(documents, company, rule_set, exclusions)
    summary = result.summary

    rg = ReportGenerator(args.output_dir or "reports")
    report = rg.credit_report(summary, result.documents, company_label=args.company or "")

    if summary.credits:
        table = Table(title="Recoverable Credits", box=box.ROUNDED, show_lines=True)
        table.add_column("Period")
        table.add_column("Rule", style="dim")
        table.add_column("Tax")
        table.add_column("Paid", justify="right")
        table.add_column("Recoverable", justify="right", style="bold green")
        table.add_column("Confidence", justify="center")
        table.add_column("Basis")
        for c in summary.credits:
            color = {"high": "green", "medium": "yellow", "low": "red"}[c.confidence.value]
            table.add_row(
                c.period,
                c.rule_code,
                c.tax_type.value,
                f"R$ {c.original_tax_value:,.2f}",
                f"R$ {c.recoverable_value:,.2f}",
                f"[{color}]{c.confidence.value}[/{color}]",
                c.detail.basis,
            )
        console.print(table)
    else:
        console.print("[yellow]No recoverable credits found.[/yellow]")

    console.print()
    console.print(
        Panel(
            f"[bold]Total Recoverable:[/bold] R$ {summary.total_recoverable:,.2f}\n"
            f"[bold]High / Medium / Low:[/bold] "
            f"R$ {summary.by_confidence['high']:,.2f} / "
            f"R$ {summary.by_confidence['medium']:,.2f} / "
            f"R$ {summary.by_confidence['low']:,.2f}\n"
            f"[bold]Documents:[/bold] {result.succeeded} parsed, {result.failed} rejected",
            title="Credit Summary",
            border_style="green",
        )
    )

    for s in summary.suppressed_rules:
        console.print(f"[yellow]Suppressed {s.rule_code} ({s.affected_items} items): {s.reason}[/yellow]")
    for d in result.documents:
        if not d.success:
            console.print(f"[red]Rejected {d.document_id}: {d.error}[/red]")
    for w in summary.warnings:
        console.print(f"[yellow]Warning: {w}[/yellow]")
    console.print(f"[dim]{summary.disclaimer}[/dim]")

    if args.export_json:
        rg.to_json(report, args.export_json)
        console.print(f"[green]Report exported to {args.export_json}[/green]")
    if args.export_csv:
        rg.to_csv(report, args.export_csv, section="credits")
        console.print(f"[green]CSV exported to {args.export_csv}[/green]")


# -----------------------------------------------------------------------
# Subcommand: regimes
# -----------------------------------------------------------------------


def cmd_regimes(args: argparse.Namespace) -> None:
    """Compare the annual tax burden under every regime."""
    comparison = compare_regimes(
        CompanyInputs(
            annual_revenue=parse_money(args.revenue),
            payroll=parse_money(args.payroll),
            purchases=parse_money(args.purchases),
            operating_expenses=parse_money(args.expenses),
            cnae=args.cnae,
            customer_profile=args.customers,
        )
    )

    table = Table(title="Regime Comparison", box=box.ROUNDED)
    table.add_column("Regime", style="bold")
    table.add_column("Annual Tax", justify="right")
    table.add_column("Effective Rate", justify="right")
    table.add_column("Credits", justify="right")
    table.add_column("Notes")
    for r in comparison.regimes:
        marker = " *" if r.regime is comparison.recommended else ""
        if r.eligible:
            table.add_row(
                r.name + marker,
                f"R$ {r.annual_tax:,.2f}",
                f"{r.effective_rate:.2%}",
                f"R$ {r.credits_generated:,.2f}",
                r.advantage,
            )
        else:
            table.add_row(r.name, "-", "-", "-", r.ineligible_reason or "", style="dim strike")
    console.print(table)

    recommended = comparison.get(comparison.recommended)
    console.print(
        Panel(
            f"[bold]{recommended.name}[/bold]: R$ {recommended.annual_tax:,.2f}/year\n"
            f"[bold]Saving vs runner-up:[/bold] R$ {comparison.gap_to_runner_up:,.2f}\n\n"
            f"{comparison.justification}",
            title="Recommendation",
            border_style="green",
        )
    )
    console.print(f"[dim]{comparison.disclaimer}[/dim]")

    if args.export_json:
        rg = ReportGenerator(args.output_dir or "reports")
        rg.to_json(rg.regime_report(comparison), args.export_json)
        console.print(f"[green]Report exported to {args.export_json}[/green]")


# -----------------------------------------------------------------------
# Subcommand: rules
# -----------------------------------------------------------------------


def cmd_rules(args: argparse.Namespace) -> None:
    """List the active rule table and the regime exclusions."""
    settings = Settings.from_env()
    if args.rules_file:
        rule_set = RuleSet.from_json(Path(args.rules_file).read_text(encoding="utf-8"))
    else:
        rule_set = settings.load_rule_set()
    exclusions = settings.load_exclusions()

    table = Table(title=f"Credit Rules (table {rule_set.version})", box=box.ROUNDED)
    table.add_column("Code", style="bold")
    table.add_column("Taxes")
    table.add_column("Treatment")
    table.add_column("Allocation")
    table.add_column("Factor", justify="right")
    table.add_column("Legal Basis")
    for rule in rule_set.rules:
        table.add_row(
            rule.rule_code,
            ", ".join(t.value for t in rule.tax_types),
            rule.treatment.value,
            rule.allocation.value,
            f"{rule.recovery_factor:.2f}",
            rule.legal_basis,
            style="" if rule.active else "dim",
        )
    console.print(table)

    excl = Table(title="Regime Exclusions", box=box.SIMPLE)
    excl.add_column("Regime", style="bold")
    excl.add_column("Rule")
    excl.add_column("Reason")
    for regime, rules in exclusions.to_dict().items():
        for code, reason in rules.items():
            excl.add_row(regime, code, reason)
    console.print(excl)


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fiscal-engine",
        description="Fiscal Credit Engine - Brazilian fiscal document parsing, tax credit recovery, and regime comparison",
    )
    parser.add_argument("--log-level", help="Log level (default: FISCAL_ENGINE_LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    kinds = [k.value for k in DocumentKind]

    # parse
    parse_p = subparsers.add_parser("parse", help="Parse a fiscal document")
    parse_p.add_argument("--file", "-f", required=True, help="Document file")
    parse_p.add_argument("--kind", "-k", choices=kinds, help="Document layout (inferred if omitted)")
    parse_p.add_argument("--limit", type=int, default=50, help="Max items to display")
    parse_p.set_defaults(func=cmd_parse)

    # credits
    credits_p = subparsers.add_parser("credits", help="Analyze recoverable credits")
    credits_p.add_argument("files", nargs="+", help="Document files")
    credits_p.add_argument("--regime", "-r", required=True, help="Company tax regime")
    credits_p.add_argument("--kind", "-k", choices=kinds, help="Layout for all files (inferred if omitted)")
    credits_p.add_argument("--annex", help="Simples Nacional annex (I-V)")
    credits_p.add_argument("--rbt12", help="Trailing 12-month revenue")
    credits_p.add_argument("--totals", help="CSV file with declared period totals")
    credits_p.add_argument("--rules-file", help="JSON rule table to use instead of the default")
    credits_p.add_argument("--company", help="Company label for reports")
    credits_p.add_argument("--export-json", help="Export report to JSON")
    credits_p.add_argument("--export-csv", help="Export itemized credits to CSV")
    credits_p.add_argument("--output-dir", help="Output directory")
    credits_p.set_defaults(func=cmd_credits)

    # regimes
    regimes_p = subparsers.add_parser("regimes", help="Compare tax regimes")
    regimes_p.add_argument("--revenue", help="Annual revenue")
    regimes_p.add_argument("--payroll", help="Annual payroll")
    regimes_p.add_argument("--purchases", help="Annual input purchases")
    regimes_p.add_argument("--expenses", help="Annual operating expenses")
    regimes_p.add_argument("--cnae", help="Main CNAE code")
    regimes_p.add_argument("--customers", choices=["B2B", "B2C", "MIXED"], default="MIXED", help="Customer profile")
    regimes_p.add_argument("--export-json", help="Export report to JSON")
    regimes_p.add_argument("--output-dir", help="Output directory")
    regimes_p.set_defaults(func=cmd_regimes)

    # rules
    rules_p = subparsers.add_parser("rules", help="Show the rule table")
    rules_p.add_argument("--rules-file", help="JSON rule table to show instead of the default")
    rules_p.set_defaults(func=cmd_rules)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    configure_logging(args.log_level or Settings.from_env().log_level)
    try:
        args.func(args)
    except FiscalEngineError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
