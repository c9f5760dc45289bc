from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional


class ConnectionType(str, Enum):
    ROAD = "road"
    PATH = "path"
    SECRET_PASSAGE = "secret_passage"
    PORTAL = "portal"
    TELEPORT = "teleport"


@dataclass(frozen=True)
class Zone:
    id: str
    name: str
    danger_level: int = 1
    required_level: int = 1
    discovery_chance: float = 0.2
    zone_type: str = "wilderness"

    @property
    def tier(self) -> int:
        return 1 + max(0, int(self.danger_level)) // 10


@dataclass(frozen=True)
class Landmark:
    id: str
    zone_id: str
    name: str
    landmark_type: str = "ruins"
    hidden: bool = True


@dataclass(frozen=True)
class ZoneConnection:
    from_zone_id: str
    to_zone_id: str
    base_travel_seconds: int
    connection_type: ConnectionType = ConnectionType.ROAD


@dataclass(frozen=True)
class Enemy:
    id: str
    name: str
    level: int
    health: int
    attack: int
    defense: int
    experience_reward: int
    gold_min: int = 0
    gold_max: int = 0
    loot_table: Mapping[str, float] = field(default_factory=dict)
    required_player_level: int = 1


@dataclass(frozen=True)
class Recipe:
    id: str
    name: str
    result_item_id: str
    skill: str
    ingredients: Mapping[str, int]
    crafting_seconds: int
    experience_reward: int
    result_quantity: int = 1
    required_level: int = 1


@dataclass(frozen=True)
class ChoiceOutcome:
    message: str
    gold: int = 0
    experience: int = 0
    health: int = 0
    items: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class EventChoice:
    key: str
    text: str
    outcome: ChoiceOutcome
    skill_check: Optional[tuple[str, int]] = None
    failure: Optional[ChoiceOutcome] = None


@dataclass(frozen=True)
class ExplorationEvent:
    key: str
    title: str
    description: str
    trigger_chance: float
    choices: tuple[EventChoice, ...]
    zone_id: Optional[str] = None
    min_progress: int = 0
    max_progress: int = 100
    min_danger: int = 0
    max_danger: int = 999

    def applies_to(self, zone: Zone, progress: int) -> bool:
        if self.zone_id is not None and self.zone_id != zone.id:
            return False
        if not self.min_danger <= int(zone.danger_level) <= self.max_danger:
            return False
        return self.min_progress <= int(progress) <= self.max_progress

    def choice(self, key: str) -> Optional[EventChoice]:
        return next((choice for choice in self.choices if choice.key == key), None)


@dataclass(frozen=True)
class Supply:
    key: str
    name: str
    effects: Mapping[str, float] = field(default_factory=dict)
