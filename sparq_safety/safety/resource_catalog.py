"""
Crisis Resource Catalog

Static directory of verified crisis services. The catalog interface lets
a database- or API-backed directory replace it without touching the
matcher.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from sparq_safety.safety.models import (
    ContactMethod,
    CrisisResource,
    CrisisType,
    ResourceAvailability,
    ResourceTargeting,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

ALL_CRISIS_TYPES = list(CrisisType)


class ResourceCatalog(ABC):
    """Source of crisis resources."""

    @abstractmethod
    async def query_resources(
        self,
        crisis_type: CrisisType,
        geo: Optional[str],
    ) -> list[CrisisResource]:
        """Resources that may serve this crisis type in this region."""


# ==================================
# National Fallback Resources
# ==================================

LIFELINE_988 = CrisisResource(
    id="us-988-lifeline",
    name="988 Suicide & Crisis Lifeline",
    type="hotline",
    description="Free, confidential support for people in distress, 24/7.",
    contact_methods=[
        ContactMethod(type="phone", value="988", label="Call 988", is_primary=True),
        ContactMethod(type="text", value="988", label="Text 988"),
        ContactMethod(type="chat", value="https://988lifeline.org/chat", label="Chat online"),
    ],
    availability=ResourceAvailability(hours="24/7", languages=["en", "es"]),
    targeting=ResourceTargeting(
        geo=["US"],
        crisis_types=[
            CrisisType.SUICIDAL_IDEATION,
            CrisisType.SELF_HARM,
            CrisisType.MENTAL_HEALTH_CRISIS,
        ],
    ),
    quality_rating=4.8,
    verification_status=VerificationStatus.VERIFIED,
    crisis_specific=True,
)

CRISIS_TEXT_LINE = CrisisResource(
    id="crisis-text-line",
    name="Crisis Text Line",
    type="text_line",
    description="Text-based crisis support with trained counselors.",
    contact_methods=[
        ContactMethod(type="text", value="741741", label="Text HOME to 741741", is_primary=True),
    ],
    availability=ResourceAvailability(hours="24/7", languages=["en", "es"]),
    targeting=ResourceTargeting(
        geo=["US", "CA", "GB", "IE"],
        crisis_types=[
            CrisisType.SUICIDAL_IDEATION,
            CrisisType.SELF_HARM,
            CrisisType.MENTAL_HEALTH_CRISIS,
            CrisisType.SUBSTANCE_ABUSE,
        ],
    ),
    quality_rating=4.6,
    verification_status=VerificationStatus.VERIFIED,
    crisis_specific=True,
)

DOMESTIC_VIOLENCE_HOTLINE = CrisisResource(
    id="us-ndvh",
    name="National Domestic Violence Hotline",
    type="hotline",
    description="Confidential support for anyone affected by relationship abuse.",
    contact_methods=[
        ContactMethod(type="phone", value="1-800-799-7233", label="Call 1-800-799-SAFE", is_primary=True),
        ContactMethod(type="text", value="88788", label="Text START to 88788"),
        ContactMethod(type="chat", value="https://www.thehotline.org", label="Chat online"),
    ],
    availability=ResourceAvailability(hours="24/7", languages=["en", "es"]),
    targeting=ResourceTargeting(
        geo=["US"],
        crisis_types=[CrisisType.DOMESTIC_VIOLENCE],
    ),
    quality_rating=4.7,
    verification_status=VerificationStatus.VERIFIED,
    crisis_specific=True,
)

EMERGENCY_SERVICES = CrisisResource(
    id="emergency-services",
    name="Emergency Services",
    type="emergency",
    description="Call your local emergency number if you or someone else is in immediate danger.",
    contact_methods=[
        ContactMethod(type="phone", value="911", label="Call 911 (US/Canada)", is_primary=True),
        ContactMethod(type="phone", value="112", label="Call 112 (EU)"),
    ],
    availability=ResourceAvailability(hours="24/7"),
    targeting=ResourceTargeting(geo=["INTL"], crisis_types=ALL_CRISIS_TYPES),
    quality_rating=5.0,
    verification_status=VerificationStatus.VERIFIED,
    crisis_specific=True,
)

# Appended to every match result, in this order
NATIONAL_FALLBACK: list[CrisisResource] = [
    LIFELINE_988,
    CRISIS_TEXT_LINE,
    DOMESTIC_VIOLENCE_HOTLINE,
    EMERGENCY_SERVICES,
]


# ==================================
# Regional Resources
# ==================================

REGIONAL_RESOURCES: list[CrisisResource] = [
    CrisisResource(
        id="us-samhsa-helpline",
        name="SAMHSA National Helpline",
        type="hotline",
        description="Treatment referral and information for substance use disorders.",
        contact_methods=[
            ContactMethod(type="phone", value="1-800-662-4357", label="Call 1-800-662-HELP", is_primary=True),
        ],
        availability=ResourceAvailability(hours="24/7", languages=["en", "es"]),
        targeting=ResourceTargeting(geo=["US"], crisis_types=[CrisisType.SUBSTANCE_ABUSE]),
        quality_rating=4.5,
        verification_status=VerificationStatus.VERIFIED,
        crisis_specific=True,
    ),
    CrisisResource(
        id="us-nami-helpline",
        name="NAMI HelpLine",
        type="counseling",
        description="Peer support and referrals for mental health conditions.",
        contact_methods=[
            ContactMethod(type="phone", value="1-800-950-6264", is_primary=True),
            ContactMethod(type="text", value="62640", label="Text HelpLine to 62640"),
        ],
        availability=ResourceAvailability(hours="Mon-Fri 10am-10pm ET"),
        targeting=ResourceTargeting(geo=["US"], crisis_types=[CrisisType.MENTAL_HEALTH_CRISIS]),
        quality_rating=4.3,
        verification_status=VerificationStatus.VERIFIED,
    ),
    CrisisResource(
        id="ca-988",
        name="9-8-8 Suicide Crisis Helpline (Canada)",
        type="hotline",
        description="Bilingual suicide prevention support across Canada.",
        contact_methods=[
            ContactMethod(type="phone", value="988", label="Call or text 988", is_primary=True),
        ],
        availability=ResourceAvailability(hours="24/7", languages=["en", "fr"]),
        targeting=ResourceTargeting(
            geo=["CA"],
            crisis_types=[CrisisType.SUICIDAL_IDEATION, CrisisType.SELF_HARM, CrisisType.MENTAL_HEALTH_CRISIS],
        ),
        quality_rating=4.7,
        verification_status=VerificationStatus.VERIFIED,
        crisis_specific=True,
    ),
    CrisisResource(
        id="ca-ab-family-violence",
        name="Alberta Family Violence Info Line",
        type="hotline",
        description="Support for family violence in Alberta, in over 170 languages.",
        contact_methods=[
            ContactMethod(type="phone", value="310-1818", is_primary=True),
        ],
        availability=ResourceAvailability(hours="24/7", languages=["en", "fr"]),
        targeting=ResourceTargeting(geo=["CA-AB"], crisis_types=[CrisisType.DOMESTIC_VIOLENCE]),
        quality_rating=4.4,
        verification_status=VerificationStatus.VERIFIED,
        crisis_specific=True,
    ),
    CrisisResource(
        id="ca-ab-mental-health",
        name="Alberta Mental Health Help Line",
        type="hotline",
        description="Crisis intervention and referrals for Albertans.",
        contact_methods=[
            ContactMethod(type="phone", value="1-877-303-2642", is_primary=True),
        ],
        availability=ResourceAvailability(hours="24/7"),
        targeting=ResourceTargeting(
            geo=["CA-AB"],
            crisis_types=[CrisisType.MENTAL_HEALTH_CRISIS, CrisisType.SUBSTANCE_ABUSE],
        ),
        quality_rating=4.2,
        verification_status=VerificationStatus.VERIFIED,
        crisis_specific=True,
    ),
    CrisisResource(
        id="gb-samaritans",
        name="Samaritans",
        type="hotline",
        description="Listening support for anyone struggling to cope.",
        contact_methods=[
            ContactMethod(type="phone", value="116 123", is_primary=True),
        ],
        availability=ResourceAvailability(hours="24/7"),
        targeting=ResourceTargeting(
            geo=["GB", "IE"],
            crisis_types=[CrisisType.SUICIDAL_IDEATION, CrisisType.MENTAL_HEALTH_CRISIS],
        ),
        quality_rating=4.7,
        verification_status=VerificationStatus.VERIFIED,
        crisis_specific=True,
    ),
    CrisisResource(
        id="intl-findahelpline",
        name="Find A Helpline",
        type="directory",
        description="Directory of free crisis lines in more than 130 countries.",
        contact_methods=[
            ContactMethod(type="website", value="https://findahelpline.com", is_primary=True),
        ],
        availability=ResourceAvailability(hours="24/7"),
        targeting=ResourceTargeting(geo=["INTL"], crisis_types=ALL_CRISIS_TYPES),
        quality_rating=4.0,
        verification_status=VerificationStatus.VERIFIED,
    ),
]


class StaticResourceCatalog(ResourceCatalog):
    """
    In-process catalog backed by a list of resources.

    A resource is returned when it targets the crisis type and either
    covers the requested region (exact code or its country prefix) or is
    international.
    """

    def __init__(self, resources: Optional[list[CrisisResource]] = None):
        if resources is None:
            resources = REGIONAL_RESOURCES + NATIONAL_FALLBACK
        self.resources = list(resources)
        logger.info(f"StaticResourceCatalog loaded with {len(self.resources)} resources")

    async def query_resources(
        self,
        crisis_type: CrisisType,
        geo: Optional[str],
    ) -> list[CrisisResource]:
        regions = region_candidates(geo)
        return [
            resource
            for resource in self.resources
            if crisis_type in resource.targeting.crisis_types
            and (
                "INTL" in resource.targeting.geo
                or any(region in resource.targeting.geo for region in regions)
            )
        ]


def region_candidates(geo: Optional[str]) -> list[str]:
    """Expand "CA-AB" to ["CA-AB", "CA"]; "us" to ["US"]; None to []."""
    if not geo:
        return []
    code = geo.strip().upper()
    candidates = [code]
    if "-" in code:
        candidates.append(code.split("-", 1)[0])
    return candidates
