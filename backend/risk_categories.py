"""
Risk Categories - Static registry of brand-safety risk categories
Think of this like the signature table of an antivirus, but each entry is a
set of natural-language probes for the visual search service.

Also holds the severity → score table and the risk score reduction.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

# Severity tiers, highest first
SEVERITY_ORDER = ("Floor", "High", "Medium", "Low")

# Base score per severity tier for risk calculation
SEVERITY_SCORES = {"Floor": 100, "High": 80, "Medium": 50, "Low": 20}

EVENT_SOURCES = ("visual", "transcript", "audio")

MAX_RISK_SCORE = 100

# Risk level bands (lower bound, label, color token), checked top-down
RISK_LEVELS = [
    (80, "High Risk", "text-red-600"),
    (50, "Medium Risk", "text-yellow-600"),
    (20, "Low Risk", "text-green-600"),
]
SAFE_LEVEL = ("Safe", "text-green-500")

# The only category detected from the transcript instead of visual search
LEXICAL_CATEGORY_ID = "profanity"


@dataclass(frozen=True)
class RiskCategory:
    id: str
    name: str
    icon: str
    color: str
    search_queries: tuple[str, ...]
    severity: str
    description: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "icon": self.icon,
            "color": self.color,
            "search_queries": list(self.search_queries),
            "severity": self.severity,
            "description": self.description,
        }


@dataclass(frozen=True)
class RiskEvent:
    """One detected occurrence of a risk category inside a video."""
    id: str
    video_id: str
    category: RiskCategory
    start_time: float
    end_time: float
    confidence: float
    evidence: str
    source: str
    severity: str = field(default="")

    def __post_init__(self):
        if self.end_time < self.start_time:
            raise ValueError(f"Event {self.id}: end_time {self.end_time} < start_time {self.start_time}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Event {self.id}: confidence {self.confidence} outside [0, 1]")
        if self.source not in EVENT_SOURCES:
            raise ValueError(f"Event {self.id}: unknown source '{self.source}'")
        # Severity is always the category's tier
        if not self.severity:
            object.__setattr__(self, "severity", self.category.severity)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "video_id": self.video_id,
            "category": self.category.to_dict(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "confidence": self.confidence,
            "evidence": self.evidence,
            "severity": self.severity,
            "source": self.source,
        }


RISK_CATEGORIES: tuple[RiskCategory, ...] = (
    RiskCategory(
        id="profanity",
        name="Profanity",
        icon="🤬",
        color="bg-red-500",
        search_queries=(
            "profanity or swear words or explicit language",
            "offensive language or cursing",
        ),
        severity="Medium",
        description="Explicit language, swearing, or offensive speech",
    ),
    RiskCategory(
        id="sexual",
        name="Sexual Content",
        icon="💋",
        color="bg-pink-500",
        search_queries=(
            "sexual content or nudity or adult material",
            "suggestive content or intimate scenes",
        ),
        severity="High",
        description="Sexual content, nudity, or adult material",
    ),
    RiskCategory(
        id="drugs_alcohol",
        name="Drugs & Alcohol",
        icon="🍺",
        color="bg-yellow-500",
        search_queries=(
            "smoking or drinking or alcohol consumption",
            "drugs or substance use or vaping",
            "cigarettes or beer or wine or pills",
        ),
        severity="Medium",
        description="Drug use, alcohol consumption, or substance abuse",
    ),
    RiskCategory(
        id="violence",
        name="Violence",
        icon="🔫",
        color="bg-red-600",
        search_queries=(
            "violence or fighting or weapons",
            "blood or assault or aggressive behavior",
            "guns or knives or dangerous weapons",
        ),
        severity="Floor",
        description="Violence, weapons, or aggressive behavior",
    ),
    RiskCategory(
        id="hate_speech",
        name="Hate Speech",
        icon="⚠️",
        color="bg-orange-500",
        search_queries=(
            "hate speech or discriminatory language",
            "slurs or derogatory language toward protected groups",
        ),
        severity="Floor",
        description="Discriminatory language or hate speech",
    ),
    RiskCategory(
        id="sensitive_issues",
        name="Sensitive Issues",
        icon="🗞️",
        color="bg-blue-500",
        search_queries=(
            "political content or controversial topics",
            "war or terrorism or tragic events",
            "elections or protests or social unrest",
        ),
        severity="Medium",
        description="Political content, news, or controversial topics",
    ),
    RiskCategory(
        id="sponsorship",
        name="Sponsorship Issues",
        icon="📣",
        color="bg-green-500",
        search_queries=(
            "sponsored content or paid partnership",
            "advertisement or promotional content",
            "brand mentions or product placement",
        ),
        severity="Low",
        description="Undisclosed sponsorship or advertising content",
    ),
)

_CATEGORIES_BY_ID = {c.id: c for c in RISK_CATEGORIES}


def get_category(category_id: str) -> RiskCategory:
    """Look up a category by id. Raises KeyError for unknown ids."""
    return _CATEGORIES_BY_ID[category_id]


def find_category(category_id: str) -> Optional[RiskCategory]:
    return _CATEGORIES_BY_ID.get(category_id)


def severity_rank(severity: str) -> int:
    """0 for the highest tier (Floor), increasing towards Low."""
    return SEVERITY_ORDER.index(severity)


def calculate_risk_score(events) -> int:
    """
    Reduce events to a single 0-100 risk score.

    Each event contributes its severity base score weighted by confidence;
    the result is the plain mean over all events.
    """
    if not events:
        return 0

    total = sum(SEVERITY_SCORES[e.severity] * e.confidence for e in events)
    mean = total / len(events)
    # Round half up, not to even
    return min(MAX_RISK_SCORE, int(math.floor(mean + 0.5)))


def get_risk_level(score: int) -> dict:
    """Map a risk score onto its qualitative band."""
    for lower_bound, level, color in RISK_LEVELS:
        if score >= lower_bound:
            return {"level": level, "color": color}
    level, color = SAFE_LEVEL
    return {"level": level, "color": color}
