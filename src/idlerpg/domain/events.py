from dataclasses import dataclass


@dataclass
class ActivityStarted:
    character_id: int
    session_id: int
    kind: str
    status: str


@dataclass
class ActivityFinalized:
    character_id: int
    session_id: int
    kind: str
    status: str
    progress: int
    gold: int
    experience: int


@dataclass
class LandmarkDiscovered:
    character_id: int
    zone_id: str
    landmark_id: str
    progress: int


@dataclass
class ExplorationEventTriggered:
    character_id: int
    session_id: int
    event_key: str
    progress: int


@dataclass
class CombatEnded:
    character_id: int
    enemy_id: str
    victory: bool
    turns: int
    experience: int
    gold: int
