"""Adapters for the extractor, scorer, contact enrichment and CRM services."""

from leadgrid.services.external.errors import CollaboratorError, PermanentError, RetryableError
from leadgrid.services.external.protocols import ContactEnricher, CrmSink, Extractor, Scorer

__all__ = [
    "CollaboratorError",
    "ContactEnricher",
    "CrmSink",
    "Extractor",
    "PermanentError",
    "RetryableError",
    "Scorer",
]
