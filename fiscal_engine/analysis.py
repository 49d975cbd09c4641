"""
End-to-end credit analysis over a batch of documents.

parse -> classify -> compute -> summarize. A malformed document is
reported on its own outcome and the rest of the batch carries on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from loguru import logger

from fiscal_engine.classifier import RuleClassifier
from fiscal_engine.credits import CompanyTotals, CreditEngine, CreditSummary, summarize
from fiscal_engine.errors import MalformedDocumentError, PartialFieldError
from fiscal_engine.parsers import DocumentKind, ParsedDocument, RawDocument, parse_document
from fiscal_engine.rules import ExclusionList, RuleSet
from fiscal_engine.taxonomy import TaxonomyTables


@dataclass
class DocumentOutcome:
    """Per-document parse result shown next to the headline figures."""

    document_id: str
    kind: DocumentKind
    success: bool
    items: int = 0
    field_errors: list[PartialFieldError] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class AnalysisResult:
    summary: CreditSummary
    documents: list[DocumentOutcome]
    parsed: list[ParsedDocument] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for d in self.documents if d.success)

    @property
    def failed(self) -> int:
        return sum(1 for d in self.documents if not d.success)


def analyze_documents(
    documents: Iterable[RawDocument],
    company: CompanyTotals,
    rule_set: Optional[RuleSet] = None,
    exclusions: Optional[ExclusionList] = None,
    taxonomy: Optional[TaxonomyTables] = None,
) -> AnalysisResult:
    """
    Run the full credit analysis for one company.

    Text reports contribute declared period totals; ledgers and invoice
    batches contribute line items. Totals already present on ``company``
    win over totals read from reports. The caller's ``company`` is not
    modified.
    """
    taxonomy = taxonomy or TaxonomyTables()
    rule_set = rule_set or RuleSet.default()
    classifier = RuleClassifier(taxonomy)
    engine = CreditEngine(exclusions, taxonomy)

    totals = CompanyTotals(
        regime=company.regime,
        periods=dict(company.periods),
        annex=company.annex,
        rbt12=company.rbt12,
    )
    outcomes: list[DocumentOutcome] = []
    parsed: list[ParsedDocument] = []

    for document in documents:
        try:
            result = parse_document(document, taxonomy)
        except MalformedDocumentError as exc:
            logger.warning(f"Document {document.document_id} rejected: {exc}")
            outcomes.append(
                DocumentOutcome(
                    document_id=document.document_id,
                    kind=document.kind,
                    success=False,
                    error=str(exc),
                )
            )
            continue

        parsed.append(result)
        outcomes.append(
            DocumentOutcome(
                document_id=document.document_id,
                kind=document.kind,
                success=True,
                items=len(result.items),
                field_errors=list(result.field_errors),
            )
        )
        if result.report is not None:
            period_totals = result.report.to_period_totals()
            if period_totals is not None and period_totals.period not in totals.periods:
                totals.add_period(period_totals)

    items = [item for doc in parsed for item in doc.items]
    classified = classifier.classify(items, rule_set)
    computation = engine.compute_all_periods(classified, totals)
    summary = summarize(computation, documents_analyzed=len(parsed))

    logger.info(
        f"Analyzed {len(parsed)}/{len(outcomes)} documents: "
        f"{summary.credits_count} credits, total {summary.total_recoverable}"
    )
    return AnalysisResult(summary=summary, documents=outcomes, parsed=parsed)
