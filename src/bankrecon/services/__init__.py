"""
Import services: classification, deduplication, account resolution and the
two-phase (preview / commit) import orchestrator.
"""

from bankrecon.services.classification import (
    ClassificationEngine,
    ClassificationResult,
    TransactionClassification,
    extract_iban,
)
from bankrecon.services.deduplication import DeduplicationResolver
from bankrecon.services.account_resolver import AccountResolver
from bankrecon.services.preview import (
    AccountPreviewEntry,
    CommitResult,
    ImportPreview,
    ImportSummary,
    MatchMethod,
    TransactionPreviewEntry,
)
from bankrecon.services.import_service import ImportService

__all__ = [
    "ClassificationEngine",
    "ClassificationResult",
    "TransactionClassification",
    "extract_iban",
    "DeduplicationResolver",
    "AccountResolver",
    "AccountPreviewEntry",
    "CommitResult",
    "ImportPreview",
    "ImportSummary",
    "MatchMethod",
    "TransactionPreviewEntry",
    "ImportService",
]
