"""Vendor metadata: matching service names to shared vendor rows and enriching them.

Matching order for a normalized service name:
- Exact normalized-name lookup
- Containment ("spotify" vs "spotify premium"), scored by length ratio
- Fuzzy ratio (difflib) over all vendors

A score of at least 0.85 is a match. Unknown names get a fallback vendor
marked for enrichment; the mark lives on the vendor row so nothing is lost
between runs.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from difflib import SequenceMatcher
from typing import TYPE_CHECKING, Optional

from ..schemas.subscription import Subscription, Vendor

if TYPE_CHECKING:
    from ..state_store.base import SubscriptionStore

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.85
DEFAULT_VENDOR_CATEGORY = "Other"

_COMPANY_SUFFIXES = (" inc.", " inc", " llc", " ltd.", " ltd", " corp.", " corp", " co.", " co")
_SPECIAL_CHARS_RE = re.compile(r"[^\w\s+]")
_SPACES_RE = re.compile(r"\s+")
_DOMAIN_CHARS_RE = re.compile(r"[^a-z0-9]")

KNOWN_WEBSITES = {
    "netflix": "https://www.netflix.com",
    "spotify": "https://www.spotify.com",
    "amazon prime": "https://www.amazon.com/prime",
    "disney+": "https://www.disneyplus.com",
    "disney plus": "https://www.disneyplus.com",
    "hulu": "https://www.hulu.com",
    "hbo max": "https://www.max.com",
    "apple music": "https://music.apple.com",
    "apple tv+": "https://tv.apple.com",
    "youtube premium": "https://www.youtube.com/premium",
    "adobe": "https://www.adobe.com",
    "microsoft 365": "https://www.microsoft.com/microsoft-365",
    "dropbox": "https://www.dropbox.com",
    "google one": "https://one.google.com",
    "icloud": "https://www.icloud.com",
    "slack": "https://slack.com",
    "zoom": "https://zoom.us",
    "notion": "https://www.notion.so",
    "github": "https://github.com",
    "audible": "https://www.audible.com",
    "nordvpn": "https://nordvpn.com",
    "1password": "https://1password.com",
}


def normalize_vendor_name(name: Optional[str]) -> str:
    """Lowercase, strip company suffixes and punctuation, collapse spaces."""
    if not name or not name.strip():
        return ""

    normalized = name.strip().casefold()
    for suffix in _COMPANY_SUFFIXES:
        if normalized.endswith(suffix):
            normalized = normalized[: -len(suffix)]
            break

    normalized = _SPECIAL_CHARS_RE.sub(" ", normalized)
    return _SPACES_RE.sub(" ", normalized).strip()


def name_similarity(a: str, b: str) -> float:
    """Similarity of two normalized names in [0, 1]."""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    # Containment handles "spotify" vs "spotify premium"
    if a in b or b in a:
        shorter, longer = sorted((a, b), key=len)
        return len(shorter) / len(longer)

    return SequenceMatcher(None, a, b).ratio()


def guess_website(name: str) -> Optional[str]:
    """Known domain for popular services, else www.<name>.com for names of 3+ chars."""
    key = name.strip().lower()
    if key in KNOWN_WEBSITES:
        return KNOWN_WEBSITES[key]

    clean = _DOMAIN_CHARS_RE.sub("", key)
    if len(clean) >= 3:
        return f"https://www.{clean}.com"
    return None


def favicon_url(website_url: str) -> str:
    domain = re.sub(r"^https?://", "", website_url).split("/")[0]
    return f"https://www.google.com/s2/favicons?domain={domain}&sz=128"


@dataclass
class VendorEnrichmentSummary:
    """Outcome of one enrichment job run."""

    linked: int = 0
    enriched: int = 0
    failed: list[int] = field(default_factory=list)


class VendorMatcher:
    """Links subscriptions to vendor rows and fills in vendor metadata.

    Usage:
        matcher = VendorMatcher(store)
        vendor = matcher.get_or_create("Netflix", category="Entertainment")
    """

    def __init__(self, store: SubscriptionStore, threshold: float = MATCH_THRESHOLD) -> None:
        self.store = store
        self.threshold = threshold

    def match(self, service_name: Optional[str]) -> Optional[Vendor]:
        """Best existing vendor for a service name, or None."""
        normalized = normalize_vendor_name(service_name)
        if not normalized:
            return None

        vendor = self.store.find_vendor(normalized)
        if vendor is not None:
            return vendor

        best: Optional[Vendor] = None
        best_score = 0.0
        for candidate in self.store.list_vendors():
            score = name_similarity(normalized, candidate.normalized_name)
            if score >= self.threshold and score > best_score:
                best, best_score = candidate, score

        if best is not None:
            logger.debug(
                "Fuzzy vendor match %r -> %s (%.2f)", service_name, best.name, best_score
            )
        return best

    def get_or_create(
        self,
        service_name: str,
        category: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Vendor]:
        """Matched vendor, or a new one marked for enrichment. None for a blank name."""
        vendor = self.match(service_name)
        if vendor is not None:
            return vendor

        normalized = normalize_vendor_name(service_name)
        if not normalized:
            return None

        now = now or datetime.now(timezone.utc)
        logger.info("Creating fallback vendor for unknown service: %s", service_name)
        return self.store.create_vendor(
            Vendor(
                id=None,
                name=service_name.strip(),
                normalized_name=normalized,
                category=category or DEFAULT_VENDOR_CATEGORY,
                needs_enrichment=True,
                created_at=now,
                updated_at=now,
            )
        )

    def link(self, subscription: Subscription, now: Optional[datetime] = None) -> bool:
        """Set vendor_id on a subscription that has none. Returns True when linked."""
        if subscription.vendor_id is not None:
            return False

        vendor = self.get_or_create(subscription.service_name, subscription.category, now)
        if vendor is None:
            return False

        subscription.vendor_id = vendor.id
        self.store.update_subscription(subscription)
        return True

    def enrich(self, vendor: Vendor, now: Optional[datetime] = None) -> bool:
        """
        Fill in website and logo URLs and clear the enrichment mark.

        Returns True when any URL was added. The mark is cleared either way
        so a vendor with nothing to guess is not retried on every run.
        """
        enriched = False
        if not vendor.website_url:
            website = guess_website(vendor.name)
            if website:
                vendor.website_url = website
                enriched = True
        if not vendor.logo_url and vendor.website_url:
            vendor.logo_url = favicon_url(vendor.website_url)
            enriched = True

        vendor.needs_enrichment = False
        vendor.updated_at = now or datetime.now(timezone.utc)
        self.store.update_vendor(vendor)

        if enriched:
            logger.info("Enriched vendor %s with website %s", vendor.name, vendor.website_url)
        else:
            logger.debug("No enrichment data found for vendor %s", vendor.name)
        return enriched

    def run(self, now: Optional[datetime] = None) -> VendorEnrichmentSummary:
        """Link unlinked subscriptions, then enrich every vendor still marked."""
        now = now or datetime.now(timezone.utc)
        summary = VendorEnrichmentSummary()

        for subscription in self.store.list_unlinked_subscriptions():
            if self.link(subscription, now):
                summary.linked += 1

        pending = self.store.list_vendors(needs_enrichment=True)
        if pending:
            logger.info("Processing %d vendors for enrichment", len(pending))

        for vendor in pending:
            try:
                if self.enrich(vendor, now):
                    summary.enriched += 1
            except Exception:
                # The mark stays set, so the next run retries this vendor
                logger.exception("Error enriching vendor %s", vendor.id)
                summary.failed.append(vendor.id)

        logger.info(
            "Vendor enrichment completed. Linked: %d, Enriched: %d, Failed: %d",
            summary.linked,
            summary.enriched,
            len(summary.failed),
        )
        return summary
