"""
Validation, de-duplication keys and normalisation for raw extracted places.
"""

from typing import Any
from urllib.parse import urlparse

from leadgrid.models.domain.lead_domain import LeadRecord

NO_PHONE = "no-phone"

# Column widths in the leads table.
_DOMAIN_MAX = 255
_INDUSTRY_MAX = 100
_REGION_MAX = 100
_PHONE_MAX = 50


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _truncate(value: str | None, limit: int) -> str | None:
    return value[:limit] if value else value


def is_valid(raw: dict[str, Any]) -> bool:
    """A record needs at least a name and a category."""
    return bool(_text(raw.get("name")) and _text(raw.get("category")))


def record_key(company_name: str | None, phone: str | None) -> str:
    """Key of a stored (normalised) lead."""
    return f"{company_name or ''}|{phone or NO_PHONE}"


def dedup_key(raw: dict[str, Any]) -> str:
    """Key of a raw record, built from the values normalize() would store."""
    name = _text(raw.get("name") or raw.get("company_name"))
    return record_key(name, _truncate(_text(raw.get("phone")), _PHONE_MAX))


def extract_domain(website: str | None) -> str | None:
    """Host part of a website URL without a leading www."""
    website = _text(website)
    if not website:
        return None
    if "://" not in website:
        website = f"http://{website}"
    host = (urlparse(website).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host or None


def _to_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None and value != "" else None
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(str(value).replace(",", "").strip())
    except ValueError:
        return None


def normalize(raw: dict[str, Any], region: str | None = None) -> LeadRecord:
    website = _text(raw.get("website"))
    return LeadRecord(
        company_name=_text(raw.get("name")) or "",
        industry=_truncate(_text(raw.get("category")), _INDUSTRY_MAX),
        website=website,
        domain=_truncate(extract_domain(website), _DOMAIN_MAX),
        phone=_truncate(_text(raw.get("phone")), _PHONE_MAX),
        email=_text(raw.get("email")),
        address=_text(raw.get("address")),
        region=_truncate(_text(region), _REGION_MAX),
        rating=_to_float(raw.get("rating")),
        review_count=_to_int(raw.get("review_count", raw.get("reviews"))),
        source_url=_text(raw.get("url")),
        raw_data=dict(raw),
    )


class SeenSet:
    """Run-scoped de-duplication of extracted records by name and phone."""

    def __init__(self, keys: set[str] | None = None):
        self._keys: set[str] = set(keys or ())

    def add(self, raw: dict[str, Any]) -> bool:
        """Record the key; False when it was already seen."""
        key = dedup_key(raw)
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def __len__(self) -> int:
        return len(self._keys)
