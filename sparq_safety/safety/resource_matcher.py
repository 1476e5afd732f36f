"""
Resource Matching

Ranks crisis resources for a crisis type and jurisdiction. The result is
never empty: the national fallback set is always appended.
"""

import logging
from typing import Optional

from sparq_safety.safety.models import CrisisResource, CrisisType, VerificationStatus
from sparq_safety.safety.resource_catalog import (
    NATIONAL_FALLBACK,
    ResourceCatalog,
    region_candidates,
)

logger = logging.getLogger(__name__)


def relevance_score(
    resource: CrisisResource,
    crisis_type: CrisisType,
    geo: Optional[str],
) -> float:
    """
    Score how well a resource fits a crisis.

    Verified +20, serves the crisis type +30, crisis-specific +10,
    24/7 +15, quality rating x2, exact region +25, same country +15,
    international +5.
    """
    score = 0.0

    if resource.verification_status == VerificationStatus.VERIFIED:
        score += 20
    if crisis_type in resource.targeting.crisis_types:
        score += 30
    if resource.crisis_specific:
        score += 10
    if resource.availability.is_24_7:
        score += 15
    score += resource.quality_rating * 2

    regions = region_candidates(geo)
    if regions and regions[0] in resource.targeting.geo:
        score += 25
    elif len(regions) > 1 and regions[1] in resource.targeting.geo:
        score += 15
    elif "INTL" in resource.targeting.geo:
        score += 5

    return score


class ResourceMatcher:
    """
    Matches crisis resources to a crisis.

    Usage:
        matcher = ResourceMatcher(StaticResourceCatalog())
        resources = await matcher.match(CrisisType.DOMESTIC_VIOLENCE, "US")
    """

    def __init__(
        self,
        catalog: ResourceCatalog,
        fallback: Optional[list[CrisisResource]] = None,
    ):
        self.catalog = catalog
        self.fallback = fallback or NATIONAL_FALLBACK

    async def match(
        self,
        crisis_type: CrisisType,
        geo: Optional[str] = None,
    ) -> list[CrisisResource]:
        """
        Ranked resources for a crisis, de-duplicated by id.

        Args:
            crisis_type: Type of crisis
            geo: Jurisdiction hint such as "US" or "CA-AB"

        Returns:
            Matches ordered by relevance, then the fallback set
        """
        try:
            candidates = await self.catalog.query_resources(crisis_type, geo)
        except Exception as e:
            logger.error(f"Resource catalog query failed for {crisis_type.value}/{geo}: {e}")
            candidates = []

        active = [resource for resource in candidates if resource.is_active]
        ranked = sorted(
            active,
            key=lambda r: relevance_score(r, crisis_type, geo),
            reverse=True,
        )

        results: list[CrisisResource] = []
        seen: set[str] = set()
        for resource in ranked + list(self.fallback):
            if resource.id in seen:
                continue
            seen.add(resource.id)
            results.append(resource)

        logger.debug(
            f"Matched {len(active)} resources for {crisis_type.value}/{geo}, "
            f"{len(results)} after fallback"
        )
        return results
