# smart_intake/services/facility_matcher.py
"""
Best-effort match of an extracted facility against the CMS registry.

A certification number is looked up directly; otherwise candidates are
searched by name/state and scored by name-token overlap, city and bed count.
"""
from __future__ import annotations

import re
from typing import Optional, Sequence

from ..clients.cms_provider import CMSProvider, CMSProviderClient
from ..domain.pipeline_types import CMSMatchData, ExtractedFacility

MIN_MATCH_CONFIDENCE = 50.0

_STOPWORDS = {
    "the", "of", "and", "at", "llc", "inc", "center", "centre", "healthcare", "health", "care",
    "nursing", "rehabilitation", "rehab", "home", "living", "skilled", "facility",
}


def _tokens(name: str) -> set[str]:
    return {t for t in re.findall(r"[a-z0-9]+", (name or "").lower()) if t not in _STOPWORDS and len(t) > 1}


def _search_term(name: str) -> str:
    toks = sorted(_tokens(name), key=len, reverse=True)
    return toks[0] if toks else (name or "").strip()


def score_candidate(facility: ExtractedFacility, provider: CMSProvider) -> float:
    """0..100: name overlap up to 70, city 15, bed proximity 15."""
    a, b = _tokens(facility.name), _tokens(provider.name)
    score = 0.0
    if a and b:
        score += 70.0 * len(a & b) / len(a | b)

    if facility.city and provider.city and facility.city.strip().lower() == str(provider.city).strip().lower():
        score += 15.0

    if facility.licensed_beds and provider.certified_beds:
        diff = abs(int(facility.licensed_beds) - int(provider.certified_beds))
        score += max(0.0, 15.0 - float(diff))

    return round(score, 1)


def best_candidate(
    facility: ExtractedFacility, candidates: Sequence[CMSProvider]
) -> tuple[Optional[CMSProvider], float]:
    best: Optional[CMSProvider] = None
    best_score = 0.0
    for c in candidates:
        s = score_candidate(facility, c)
        if s > best_score:
            best, best_score = c, s
    return best, best_score


def to_match_data(provider: CMSProvider, confidence: float) -> CMSMatchData:
    return CMSMatchData(
        provider_number=provider.ccn,
        overall_rating=provider.overall_rating,
        health_inspection_rating=provider.health_inspection_rating,
        staffing_rating=provider.staffing_rating,
        quality_rating=provider.quality_rating,
        is_sff=provider.is_sff,
        total_beds=provider.certified_beds,
        city=provider.city,
        state=provider.state,
        match_confidence=confidence,
    )


class FacilityMatcher:
    def __init__(self, client: Optional[CMSProviderClient] = None) -> None:
        self.client = client or CMSProviderClient()

    async def match(self, facility: ExtractedFacility) -> Optional[CMSMatchData]:
        """Raises CollaboratorUnavailable when the registry cannot be reached."""
        if facility.ccn:
            provider = await self.client.get_by_ccn(facility.ccn)
            if provider is not None:
                return to_match_data(provider, 100.0)

        candidates = await self.client.search(_search_term(facility.name), facility.state)
        provider, confidence = best_candidate(facility, candidates)
        if provider is None or confidence < MIN_MATCH_CONFIDENCE:
            return None
        return to_match_data(provider, confidence)
