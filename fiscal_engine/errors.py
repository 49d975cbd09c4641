"""
Error taxonomy.

Hard errors are exceptions and abort a single document or table load.
Soft conditions are plain records collected alongside results so a batch
keeps going when one field, rule or regime cannot be handled.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class FiscalEngineError(Exception):
    """Base class for all engine exceptions."""


class MalformedDocumentError(FiscalEngineError):
    """A mandatory header field could not be located or is inconsistent."""

    def __init__(self, document_id: str, field: str, message: str) -> None:
        self.document_id = document_id
        self.field = field
        self.message = message
        super().__init__(f"{document_id}: {field}: {message}")


class RuleTableError(FiscalEngineError):
    """A rule or exclusion table could not be loaded."""


@dataclass(frozen=True)
class PartialFieldError:
    """An optional field that could not be parsed and was left empty."""

    document_id: str
    line_number: Optional[int]
    field: str
    raw_value: str
    message: str


@dataclass(frozen=True)
class ExcludedRuleWarning:
    """A matched rule suppressed by the exclusion list for a regime."""

    rule_code: str
    regime: str
    reason: str
    tax_types: tuple[str, ...] = ()
    affected_items: int = 0


@dataclass(frozen=True)
class IneligibleRegimeError:
    """A regime that cannot apply to the company's inputs."""

    regime: str
    reason: str
