from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from idlerpg.domain.models.activity import ensure_utc


class CombatStatus(str, Enum):
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"


class CombatStyle(str, Enum):
    MELEE = "melee"
    MAGIC = "magic"
    RANGED = "ranged"

    @classmethod
    def normalize(cls, value: "CombatStyle | str | None") -> "CombatStyle":
        raw = str(getattr(value, "value", value) or cls.MELEE.value).strip().lower()
        try:
            return cls(raw)
        except ValueError:
            raise ValueError(f"Unsupported combat style: {value}") from None


@dataclass(frozen=True)
class CombatAction:
    turn: int
    actor: str
    action: str
    message: str
    damage: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "turn": self.turn,
            "actor": self.actor,
            "action": self.action,
            "message": self.message,
        }
        if self.damage is not None:
            payload["damage"] = self.damage
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CombatAction":
        damage = payload.get("damage")
        return cls(
            turn=int(payload["turn"]),
            actor=str(payload["actor"]),
            action=str(payload["action"]),
            message=str(payload.get("message", "")),
            damage=None if damage is None else int(damage),
        )


@dataclass
class CombatInstance:
    character_id: int
    enemy_id: str
    player_current_health: int
    enemy_current_health: int
    player_starting_health: int
    enemy_starting_health: int
    started_at: datetime
    turn: int = 0
    combat_log: List[CombatAction] = field(default_factory=list)
    status: CombatStatus = CombatStatus.ACTIVE
    skill_xp: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.status = CombatStatus(self.status)
        self.started_at = ensure_utc(self.started_at)

    @property
    def is_over(self) -> bool:
        return self.status != CombatStatus.ACTIVE

    @property
    def damage_dealt(self) -> int:
        return max(0, self.enemy_starting_health - self.enemy_current_health)

    @property
    def damage_taken(self) -> int:
        return max(0, self.player_starting_health - self.player_current_health)


@dataclass
class CombatResult:
    victory: bool
    experience: int = 0
    gold: int = 0
    loot: List[str] = field(default_factory=list)
    combat_skill_xp: Dict[str, int] = field(default_factory=dict)
    damage_dealt: int = 0
    damage_taken: int = 0
    turns: int = 0
    penalty: str = ""
