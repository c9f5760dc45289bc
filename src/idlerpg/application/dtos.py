from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from idlerpg.domain.models.activity import ActivitySession, RewardLedger
from idlerpg.domain.models.combat import CombatInstance, CombatResult


__all__ = [
    "CombatResult",
    "EventResolutionView",
    "FinalizedLedger",
    "PollView",
    "RiskView",
    "TurnView",
    "combat_payload",
    "session_summary",
]


@dataclass
class PollView:
    session_id: int
    kind: str
    status: str
    progress: float
    time_spent: int
    marker: int
    rewards: List[Dict[str, Any]] = field(default_factory=list)
    discoveries: List[str] = field(default_factory=list)
    event: Optional[Dict[str, Any]] = None
    completed: bool = False
    failed: Optional[Dict[str, str]] = None
    ledger: RewardLedger = field(default_factory=RewardLedger)
    restarted_session_id: Optional[int] = None


@dataclass
class FinalizedLedger:
    session_id: int
    kind: str
    status: str
    progress: int
    ledger: RewardLedger
    failure_reason: Optional[str] = None


@dataclass
class EventResolutionView:
    session_id: int
    event_key: str
    choice: str
    success: bool
    message: str
    rewards: RewardLedger = field(default_factory=RewardLedger)
    enemy_id: Optional[str] = None


@dataclass
class RiskView:
    zone_id: str
    expedition_type: Optional[str]
    risk_bearing: bool
    failure_probability: float
    band: str
    description: str
    level_gap: int
    type_modifier: float
    duration_seconds: int


@dataclass
class TurnView:
    combat: Dict[str, Any]
    is_over: bool
    victory: Optional[bool] = None


def session_summary(session: ActivitySession) -> Dict[str, Any]:
    return {
        "session_id": session.session_id,
        "character_id": session.character_id,
        "kind": session.kind.value,
        "status": session.status.value,
        "started_at": session.started_at.isoformat(),
        "marker": session.last_processed_progress,
        "ledger": session.ledger.to_payload(),
        "active_event": session.active_event,
        "failure_reason": session.failure_reason,
        "finalized_at": session.finalized_at.isoformat() if session.finalized_at else None,
    }


def combat_payload(instance: CombatInstance) -> Dict[str, Any]:
    return {
        "character_id": instance.character_id,
        "enemy_id": instance.enemy_id,
        "turn": instance.turn,
        "status": instance.status.value,
        "player_health": instance.player_current_health,
        "player_starting_health": instance.player_starting_health,
        "enemy_health": instance.enemy_current_health,
        "enemy_starting_health": instance.enemy_starting_health,
        "combat_log": [action.to_payload() for action in instance.combat_log],
        "skill_xp": dict(instance.skill_xp),
    }
