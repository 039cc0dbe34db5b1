"""Crawl domain helpers: record validation, normalisation and de-duplication."""

from leadgrid.features.crawl.domain.lead_normalizer import (
    NO_PHONE,
    SeenSet,
    dedup_key,
    extract_domain,
    is_valid,
    normalize,
    record_key,
)

__all__ = [
    "NO_PHONE",
    "SeenSet",
    "dedup_key",
    "extract_domain",
    "is_valid",
    "normalize",
    "record_key",
]
