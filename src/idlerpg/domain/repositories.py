from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any, Dict, List, Mapping, Optional

from idlerpg.domain.models.activity import ActivityKind, ActivitySession, ActivityStatus, RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.combat import CombatInstance, CombatResult
from idlerpg.domain.models.world import (
    Enemy,
    ExplorationEvent,
    Landmark,
    Recipe,
    Supply,
    Zone,
    ZoneConnection,
)


Operation = Callable[[object], None]


class _Keep:
    def __repr__(self) -> str:
        return "KEEP"


KEEP: Any = _Keep()


class ActivitySessionRepository(ABC):
    @abstractmethod
    def create(self, session: ActivitySession, operations: Sequence[Operation] | None = None) -> ActivitySession:
        """Persist a new session; ConflictError when the (character, kind) pair already has an open one."""
        raise NotImplementedError

    @abstractmethod
    def get(self, session_id: int) -> Optional[ActivitySession]:
        raise NotImplementedError

    @abstractmethod
    def get_open(self, character_id: int, kind: ActivityKind) -> Optional[ActivitySession]:
        raise NotImplementedError

    @abstractmethod
    def update_ledger_and_marker(
        self,
        session_id: int,
        *,
        expected_progress: int,
        new_progress: int,
        ledger_delta: RewardLedger,
        status: ActivityStatus | None = None,
        active_event: Any = KEEP,
        failure_reason: str | None = None,
        finalize: bool = False,
        operations: Sequence[Operation] | None = None,
        expected_event_key: Any = KEEP,
    ) -> ActivitySession:
        """Compare-and-set on ``last_processed_progress``.

        Raises StaleSessionError and applies nothing when the stored marker is
        not ``expected_progress``, the session has been finalized meanwhile, or
        (unless KEEP) the pending event key differs from ``expected_event_key``.
        """
        raise NotImplementedError

    @abstractmethod
    def resolve_event(self, session_id: int, *, event_key: str, ledger_delta: RewardLedger) -> ActivitySession:
        raise NotImplementedError

    @abstractmethod
    def list_for_character(self, character_id: int, kind: ActivityKind | None = None) -> List[ActivitySession]:
        raise NotImplementedError


class CharacterRepository(ABC):
    @abstractmethod
    def get(self, character_id: int) -> Optional[Character]:
        raise NotImplementedError

    @abstractmethod
    def create(self, character: Character) -> Character:
        raise NotImplementedError

    @abstractmethod
    def save(self, character: Character) -> None:
        raise NotImplementedError

    @abstractmethod
    def build_settlement_operation(
        self,
        character_id: int,
        *,
        ledger: RewardLedger | None = None,
        consume_items: Mapping[str, int] | None = None,
        zone_id: Any = KEEP,
        health: int | None = None,
        alive: bool | None = None,
    ) -> Operation:
        """Return a callable applying the changes inside the caller's transaction."""
        raise NotImplementedError


class CombatRepository(ABC):
    @abstractmethod
    def get(self, character_id: int) -> Optional[CombatInstance]:
        raise NotImplementedError

    @abstractmethod
    def create(self, instance: CombatInstance) -> CombatInstance:
        raise NotImplementedError

    @abstractmethod
    def save_turn(self, instance: CombatInstance, *, expected_turn: int) -> CombatInstance:
        raise NotImplementedError

    @abstractmethod
    def finish(
        self,
        character_id: int,
        result: CombatResult,
        operations: Sequence[Operation] | None = None,
    ) -> None:
        """Delete the instance, append history and run operations atomically."""
        raise NotImplementedError

    @abstractmethod
    def list_history(self, character_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        raise NotImplementedError


class WorldRepository(ABC):
    @abstractmethod
    def get_zone(self, zone_id: str) -> Optional[Zone]:
        raise NotImplementedError

    @abstractmethod
    def list_zones(self) -> List[Zone]:
        raise NotImplementedError

    @abstractmethod
    def list_landmarks(self, zone_id: str) -> List[Landmark]:
        raise NotImplementedError

    @abstractmethod
    def get_connection(self, from_zone_id: str, to_zone_id: str) -> Optional[ZoneConnection]:
        raise NotImplementedError

    @abstractmethod
    def get_enemy(self, enemy_id: str) -> Optional[Enemy]:
        raise NotImplementedError

    @abstractmethod
    def list_enemies(self) -> List[Enemy]:
        raise NotImplementedError

    @abstractmethod
    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        raise NotImplementedError

    @abstractmethod
    def list_events(self) -> List[ExplorationEvent]:
        raise NotImplementedError

    @abstractmethod
    def get_supply(self, supply_key: str) -> Optional[Supply]:
        raise NotImplementedError

    def get_event(self, event_key: str) -> Optional[ExplorationEvent]:
        return next((event for event in self.list_events() if event.key == event_key), None)
