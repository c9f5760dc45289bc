from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class ActivityKind(str, Enum):
    TRAVEL = "travel"
    EXPLORATION = "exploration"
    CRAFTING = "crafting"


class ActivityStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class RewardLedger:
    gold: int = 0
    experience: int = 0
    items: Dict[str, int] = field(default_factory=dict)
    skill_xp: Dict[str, int] = field(default_factory=dict)
    discoveries: List[str] = field(default_factory=list)
    health: int = 0

    def is_empty(self) -> bool:
        return not (self.gold or self.experience or self.items or self.skill_xp or self.discoveries or self.health)

    def merged(self, other: "RewardLedger") -> "RewardLedger":
        items = dict(self.items)
        for item_id, quantity in other.items.items():
            items[item_id] = items.get(item_id, 0) + int(quantity)
        skill_xp = dict(self.skill_xp)
        for skill, amount in other.skill_xp.items():
            skill_xp[skill] = skill_xp.get(skill, 0) + int(amount)
        discoveries = list(self.discoveries)
        for landmark_id in other.discoveries:
            if landmark_id not in discoveries:
                discoveries.append(landmark_id)
        return RewardLedger(
            gold=self.gold + other.gold,
            experience=self.experience + other.experience,
            items={key: value for key, value in items.items() if value},
            skill_xp={key: value for key, value in skill_xp.items() if value},
            discoveries=discoveries,
            health=self.health + other.health,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "gold": int(self.gold),
            "experience": int(self.experience),
            "items": {str(key): int(value) for key, value in sorted(self.items.items())},
            "skill_xp": {str(key): int(value) for key, value in sorted(self.skill_xp.items())},
            "discoveries": [str(value) for value in self.discoveries],
            "health": int(self.health),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "RewardLedger":
        data = payload or {}
        return cls(
            gold=int(data.get("gold", 0) or 0),
            experience=int(data.get("experience", 0) or 0),
            items={str(key): int(value) for key, value in dict(data.get("items") or {}).items()},
            skill_xp={str(key): int(value) for key, value in dict(data.get("skill_xp") or {}).items()},
            discoveries=[str(value) for value in list(data.get("discoveries") or [])],
            health=int(data.get("health", 0) or 0),
        )


@dataclass
class ActivitySession:
    session_id: Optional[int]
    character_id: int
    kind: ActivityKind
    started_at: datetime
    config: Dict[str, Any] = field(default_factory=dict)
    rng_seed: int = 0
    last_processed_progress: int = 0
    ledger: RewardLedger = field(default_factory=RewardLedger)
    status: ActivityStatus = ActivityStatus.ACTIVE
    active_event: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None
    finalized_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.kind = ActivityKind(self.kind)
        self.status = ActivityStatus(self.status)
        self.started_at = ensure_utc(self.started_at)
        if self.finalized_at is not None:
            self.finalized_at = ensure_utc(self.finalized_at)
        if not 0 <= int(self.last_processed_progress) <= 100:
            raise ValueError("last_processed_progress must be within 0..100")

    @property
    def is_open(self) -> bool:
        return self.finalized_at is None

    @property
    def is_active(self) -> bool:
        return self.is_open and self.status == ActivityStatus.ACTIVE
