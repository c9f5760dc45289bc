from __future__ import annotations

from dataclasses import dataclass


RISK_MIN_PERCENT = 5.0
RISK_MAX_PERCENT = 60.0
RISK_PER_LEVEL_GAP = 2.0

ACTIVITY_TYPE_MODIFIERS: dict[str, float] = {
    "scout": 0.5,
    "standard": 1.0,
    "deep": 1.5,
    "legendary": 2.0,
}

RISK_BEARING_TYPES = frozenset(ACTIVITY_TYPE_MODIFIERS)


@dataclass(frozen=True)
class RiskAssessment:
    failure_probability: float
    level_gap: int
    type_modifier: float
    band: str
    description: str

    @property
    def failure_chance(self) -> float:
        return self.failure_probability / 100.0


def type_modifier(activity_type: str | None) -> float:
    key = str(activity_type or "").strip().lower()
    return ACTIVITY_TYPE_MODIFIERS.get(key, 1.0)


def is_risk_bearing(activity_type: str | None) -> bool:
    return str(activity_type or "").strip().lower() in RISK_BEARING_TYPES


def _band(probability: float) -> tuple[str, str]:
    if probability <= 15:
        return "low", "Safe expedition with minimal danger"
    if probability <= 30:
        return "moderate", "Some risk involved, be prepared"
    if probability <= 45:
        return "high", "Dangerous! Failure may result in losses"
    return "extreme", "Very dangerous! Likely to fail with severe penalties"


def assess_risk(character_level: int, zone_danger_level: int, activity_type: str | None) -> RiskAssessment:
    level_gap = int(zone_danger_level) - int(character_level)
    base = max(0.0, level_gap * RISK_PER_LEVEL_GAP)
    modifier = type_modifier(activity_type)
    probability = min(max(base * modifier, RISK_MIN_PERCENT), RISK_MAX_PERCENT)
    band, description = _band(probability)
    return RiskAssessment(
        failure_probability=probability,
        level_gap=level_gap,
        type_modifier=modifier,
        band=band,
        description=description,
    )
