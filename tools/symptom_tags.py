"""Canonical symptom-tag vocabulary."""

from __future__ import annotations

from typing import Dict, Tuple

__all__ = [
    "SYMPTOM_TAGS",
    "ALL_SYMPTOM_TAGS",
    "SYMPTOM_TAG_LABELS",
    "COMMUNITY_TAG_SHORTLIST",
    "is_known_tag",
]

SYMPTOM_TAGS: Dict[str, Tuple[str, ...]] = {
    "physical": (
        "cramps",
        "bloating",
        "fatigue",
        "headache",
        "back_pain",
        "joint_pain",
        "breast_tenderness",
        "nausea",
        "dizziness",
    ),
    "skin_hair": (
        "acne",
        "oily_skin",
        "dry_skin",
        "hair_loss",
        "excess_hair_growth",
    ),
    "digestive": ("constipation", "diarrhea", "gas", "stomach_pain"),
    "emotional": ("anxious", "irritable", "low_mood", "brain_fog", "mood_swings"),
    "sleep_rest": ("insomnia", "restless_sleep", "night_sweats"),
    "cycle_irregularities": (
        "heavy_flow",
        "light_flow",
        "spotting",
        "missed_period",
        "irregular_cycle",
        "clotting",
    ),
}

ALL_SYMPTOM_TAGS: Tuple[str, ...] = tuple(
    tag for tags in SYMPTOM_TAGS.values() for tag in tags
)

SYMPTOM_TAG_LABELS: Dict[str, str] = {
    tag: tag.replace("_", " ").capitalize() for tag in ALL_SYMPTOM_TAGS
}

# Probed one by one for the community top tag; order decides ties.
COMMUNITY_TAG_SHORTLIST: Tuple[str, ...] = (
    "bloating",
    "acne",
    "cramps",
    "headache",
    "nausea",
    "insomnia",
    "brain_fog",
    "mood_swings",
)


def is_known_tag(tag: str) -> bool:
    return tag in SYMPTOM_TAG_LABELS
