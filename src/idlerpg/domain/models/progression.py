from __future__ import annotations

import math


LEVEL_CAP = 100
SKILL_LEVEL_CAP = 99
LEVEL_XP_BASE = 100
SKILL_XP_BASE = 50


def xp_required_for_level(level: int) -> int:
    safe_level = max(1, min(int(level), LEVEL_CAP))
    return LEVEL_XP_BASE * (safe_level - 1) ** 2


def level_for_experience(xp: int) -> int:
    if int(xp) <= 0:
        return 1
    return max(1, min(LEVEL_CAP, 1 + math.isqrt(int(xp) // LEVEL_XP_BASE)))


def skill_level_for_experience(xp: int) -> int:
    if int(xp) <= 0:
        return 1
    return max(1, min(SKILL_LEVEL_CAP, 1 + math.isqrt(int(xp) // SKILL_XP_BASE)))
