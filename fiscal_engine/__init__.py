"""
Fiscal Credit Engine
====================

Brazilian fiscal document parsing, tax credit recovery analysis, and
tax regime comparison.

Modules:
    taxonomy        - NCM, CST, CSOSN, CFOP and Simples Nacional tables
    errors          - Exceptions and soft error records
    config          - Environment settings and logging setup
    parsers         - SPED ledger, PGDAS-D text and NF-e batch parsers
    rules           - Versioned credit rule table and regime exclusions
    classifier      - Rule evaluation over normalized line items
    credits         - Proportional and per-item credit computation
    regimes         - Regime comparison simulator
    analysis        - End-to-end document batch analysis
    report_generator- Credit and regime reports with CSV/JSON export
    cli             - Command-line interface
"""

__version__ = "1.0.0"

from fiscal_engine.taxonomy import TaxonomyTables
from fiscal_engine.parsers import parse
from fiscal_engine.rules import ExclusionList, RuleSet
from fiscal_engine.classifier import RuleClassifier, classify
from fiscal_engine.credits import CreditEngine, compute_credits
from fiscal_engine.regimes import RegimeSimulator, compare_regimes
from fiscal_engine.analysis import analyze_documents
from fiscal_engine.report_generator import ReportGenerator

__all__ = [
    "TaxonomyTables",
    "parse",
    "RuleSet",
    "ExclusionList",
    "RuleClassifier",
    "classify",
    "CreditEngine",
    "compute_credits",
    "RegimeSimulator",
    "compare_regimes",
    "analyze_documents",
    "ReportGenerator",
]
