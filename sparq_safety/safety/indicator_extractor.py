"""
Risk Indicator Extraction

Scans user text for lexical signs of crisis (suicidality, self-harm,
domestic violence, substance abuse, severe distress) and returns one
indicator per category found.

IMPORTANT: This is a coarse first-pass screen. Severity decisions are
made by the classifier; clinical judgement is made by people.
"""

import logging
import re
from typing import Optional

from sparq_safety.safety.models import EvaluationContext, RiskCategory, RiskIndicator

logger = logging.getLogger(__name__)


# ==================================
# Indicator Patterns Configuration
# ==================================

# Pattern structure: (regex_pattern, category, weight, label)
# Weight is the confidence contributed by a single match

INDICATOR_PATTERNS: list[tuple[str, RiskCategory, float, str]] = [
    # ==========================================
    # SUICIDAL IDEATION
    # ==========================================

    (r"\b(want|going|plan(ning)?|think(ing)?\s+about|ready)\s+to\s+(die|kill\s+myself|end\s+(it\s+all|my\s+life))\b",
     RiskCategory.SUICIDAL_IDEATION, 0.95, "stated intent to die"),
    (r"\bkill(ing)?\s+myself\b",
     RiskCategory.SUICIDAL_IDEATION, 0.95, "kill myself"),
    (r"\bsuicid(e|al)\b",
     RiskCategory.SUICIDAL_IDEATION, 0.9, "suicide"),
    (r"\bend\s+it\s+all\b",
     RiskCategory.SUICIDAL_IDEATION, 0.9, "end it all"),
    (r"\b(better\s+off\s+dead|better\s+off\s+without\s+me)\b",
     RiskCategory.SUICIDAL_IDEATION, 0.9, "better off dead"),
    (r"\b(not|isn'?t)\s+worth\s+living\b",
     RiskCategory.SUICIDAL_IDEATION, 0.85, "life not worth living"),
    (r"\bcan'?t\s+go\s+on\b",
     RiskCategory.SUICIDAL_IDEATION, 0.8, "can't go on"),
    (r"\bwish\s+i\s+(was|were)\s+(dead|never\s+born)\b",
     RiskCategory.SUICIDAL_IDEATION, 0.85, "wish I were dead"),
    (r"\bdon'?t\s+want\s+to\s+(be\s+alive|wake\s+up|exist)\b",
     RiskCategory.SUICIDAL_IDEATION, 0.8, "doesn't want to be alive"),

    # ==========================================
    # SELF-HARM
    # ==========================================

    (r"\b(hurt|hurting|harm|harming)\s+myself\b",
     RiskCategory.SELF_HARM, 0.9, "hurt myself"),
    (r"\bself[- ]?harm(ing)?\b",
     RiskCategory.SELF_HARM, 0.85, "self-harm"),
    (r"\b(cutting|cut|burn(ing)?)\s+(myself|my\s+(wrists?|arms?|legs?))\b",
     RiskCategory.SELF_HARM, 0.9, "cutting or burning"),
    (r"\bplanning\s+to\s+hurt\b",
     RiskCategory.SELF_HARM, 0.9, "planning to hurt"),
    (r"\bpunish(ing)?\s+myself\b",
     RiskCategory.SELF_HARM, 0.6, "self-punishment"),

    # ==========================================
    # DOMESTIC VIOLENCE
    # ==========================================

    (r"\b(partner|husband|wife|boyfriend|girlfriend|spouse|he|she)\s+(hit|hits|hitting|beat|beats|beating|hurt|hurts|choked|chokes|pushed|shoves)\s+me\b",
     RiskCategory.DOMESTIC_VIOLENCE, 0.9, "physical violence from partner"),
    (r"\bafraid\s+(of\s+)?(my\s+)?(partner|husband|wife|boyfriend|girlfriend|spouse)\b",
     RiskCategory.DOMESTIC_VIOLENCE, 0.9, "afraid of partner"),
    (r"\b(threatens?|threatened|threatening)\s+(me|to\s+(kill|hurt)\s+me)\b",
     RiskCategory.DOMESTIC_VIOLENCE, 0.9, "threats from partner"),
    (r"\bdomestic\s+(violence|abuse)\b",
     RiskCategory.DOMESTIC_VIOLENCE, 0.85, "domestic violence"),
    (r"\b(physically\s+)?abus(es|ed|ive|ing)\s+(me|relationship|partner)\b",
     RiskCategory.DOMESTIC_VIOLENCE, 0.85, "abuse"),
    (r"\b(won'?t|doesn'?t)\s+let\s+me\s+(see|talk\s+to|leave|go)\b",
     RiskCategory.DOMESTIC_VIOLENCE, 0.7, "coercive control"),
    (r"\b(controls?|controlling)\s+(all\s+)?(my|the)\s+(money|phone|finances)\b",
     RiskCategory.DOMESTIC_VIOLENCE, 0.7, "financial or digital control"),
    (r"\bscared\s+to\s+go\s+home\b",
     RiskCategory.DOMESTIC_VIOLENCE, 0.8, "scared to go home"),

    # ==========================================
    # SUBSTANCE ABUSE
    # ==========================================

    (r"\b(drinking|drunk|using|high)\s+(every\s+day|all\s+the\s+time|to\s+cope|again)\b",
     RiskCategory.SUBSTANCE_ABUSE, 0.75, "compulsive use"),
    (r"\b(can'?t|couldn'?t)\s+stop\s+(drinking|using)\b",
     RiskCategory.SUBSTANCE_ABUSE, 0.8, "loss of control over use"),
    (r"\boverdos(e|ed|ing)\b",
     RiskCategory.SUBSTANCE_ABUSE, 0.9, "overdose"),
    (r"\b(relapsed?|relapsing)\b",
     RiskCategory.SUBSTANCE_ABUSE, 0.7, "relapse"),
    (r"\baddict(ed|ion)\b",
     RiskCategory.SUBSTANCE_ABUSE, 0.7, "addiction"),
    (r"\b(took|taking|swallowed)\s+(too\s+many|a\s+bunch\s+of)\s+(pills|drugs)\b",
     RiskCategory.SUBSTANCE_ABUSE, 0.9, "excessive pills"),

    # ==========================================
    # SEVERE DISTRESS
    # ==========================================

    (r"\bhopeless(ness)?\b",
     RiskCategory.SEVERE_DISTRESS, 0.8, "hopeless"),
    (r"\bworthless\b",
     RiskCategory.SEVERE_DISTRESS, 0.8, "worthless"),
    (r"\bcan'?t\s+(take\s+it|handle\s+this|cope)(\s+any\s*more)?\b",
     RiskCategory.SEVERE_DISTRESS, 0.8, "can't cope"),
    (r"\bgiving\s+up\b",
     RiskCategory.SEVERE_DISTRESS, 0.75, "giving up"),
    (r"\bno\s+point\b",
     RiskCategory.SEVERE_DISTRESS, 0.75, "no point"),
    (r"\beverything\s+is\s+falling\s+apart\b",
     RiskCategory.SEVERE_DISTRESS, 0.75, "everything falling apart"),
    (r"\bbreaking\s+down\b",
     RiskCategory.SEVERE_DISTRESS, 0.75, "breaking down"),
    (r"\b(depressed|anxious\s+all\s+the\s+time|lost\s+interest)\b",
     RiskCategory.SEVERE_DISTRESS, 0.6, "depression or anxiety"),
    (r"\b(can'?t\s+sleep|feeling\s+empty|numb|disconnected|overwhelmed)\b",
     RiskCategory.SEVERE_DISTRESS, 0.6, "emotional exhaustion"),
    (r"\bpanic\s+attacks?\b",
     RiskCategory.SEVERE_DISTRESS, 0.6, "panic attack"),

    # ==========================================
    # OTHER
    # ==========================================

    (r"\b(don'?t|do\s+not)\s+feel\s+safe\b",
     RiskCategory.OTHER, 0.6, "feels unsafe"),
    (r"\b(nobody|no\s+one)\s+(cares|would\s+care|would\s+notice)\b",
     RiskCategory.OTHER, 0.5, "perceived isolation"),
    (r"\b(completely|totally|all)\s+alone\b",
     RiskCategory.OTHER, 0.5, "isolation"),
]

CATEGORY_DESCRIPTIONS: dict[RiskCategory, str] = {
    RiskCategory.SUICIDAL_IDEATION: "Language indicating suicidal thoughts or intent",
    RiskCategory.SELF_HARM: "Language indicating self-harm",
    RiskCategory.DOMESTIC_VIOLENCE: "Language indicating violence or control by a partner",
    RiskCategory.SUBSTANCE_ABUSE: "Language indicating harmful substance use",
    RiskCategory.SEVERE_DISTRESS: "Language indicating severe emotional distress",
    RiskCategory.OTHER: "Language indicating isolation or feeling unsafe",
}

# Confidence added for each extra distinct match in a category
REPEAT_MATCH_BONUS = 0.05

_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "ʼ": "'"})


# ==================================
# Indicator Extractor Class
# ==================================

class IndicatorExtractor:
    """
    Extracts risk indicators from free text.

    Pure and deterministic: the same text always yields the same
    indicators with the same confidences. Never raises.

    Usage:
        extractor = IndicatorExtractor()
        indicators = extractor.extract("I want to die")
        # [RiskIndicator(category=suicidal_ideation, confidence=0.95, ...)]
    """

    def __init__(self, patterns: Optional[list[tuple[str, RiskCategory, float, str]]] = None):
        """
        Initialize Indicator Extractor.

        Args:
            patterns: Override the default pattern table (mainly for tests)
        """
        # Compile patterns for efficiency
        self._compiled_patterns = [
            (re.compile(pattern, re.IGNORECASE), category, weight, label)
            for pattern, category, weight, label in (patterns or INDICATOR_PATTERNS)
        ]

        logger.info(f"IndicatorExtractor initialized with patterns={len(self._compiled_patterns)}")

    def extract(
        self,
        text: object,
        context: Optional[EvaluationContext] = None,
    ) -> list[RiskIndicator]:
        """
        Find risk indicators in text.

        Args:
            text: User text to scan; anything that is not a non-empty
                string yields no indicators
            context: Where the text came from (logged only)

        Returns:
            One RiskIndicator per matched category, strongest first
        """
        if not isinstance(text, str) or not text.strip():
            return []

        normalized = text.translate(_APOSTROPHES)

        # category -> [(weight, label)]
        hits: dict[RiskCategory, list[tuple[float, str]]] = {}

        for pattern, category, weight, label in self._compiled_patterns:
            if pattern.search(normalized):
                hits.setdefault(category, []).append((weight, label))

        if not hits:
            return []

        indicators = []
        for category, matches in hits.items():
            labels = sorted({label for _, label in matches})
            strongest = max(weight for weight, _ in matches)
            confidence = min(1.0, strongest + REPEAT_MATCH_BONUS * (len(labels) - 1))
            indicators.append(
                RiskIndicator(
                    category=category,
                    confidence=round(confidence, 3),
                    description=CATEGORY_DESCRIPTIONS[category],
                    matched_terms=labels,
                )
            )

        indicators.sort(key=lambda i: (-i.confidence, i.category.value))

        logger.debug(
            f"Extracted indicators {[i.category.value for i in indicators]} "
            f"(context={context.value if context else 'none'})"
        )
        return indicators
