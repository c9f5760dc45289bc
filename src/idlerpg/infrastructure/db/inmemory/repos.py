import copy
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from idlerpg.domain.errors import (
    ConflictError,
    EngineInvariantError,
    NoActiveCombatError,
    StaleSessionError,
    TurnInProgressError,
    ValidationError,
)
from idlerpg.domain.models.activity import ActivityKind, ActivitySession, ActivityStatus, RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.combat import CombatInstance, CombatResult
from idlerpg.domain.models.world import Enemy, ExplorationEvent, Landmark, Recipe, Supply, Zone, ZoneConnection
from idlerpg.domain.repositories import (
    KEEP,
    ActivitySessionRepository,
    CharacterRepository,
    CombatRepository,
    Operation,
    WorldRepository,
)
from idlerpg.domain.services.settlement import settle_character
from idlerpg.infrastructure.inmemory.atomic_persistence import InMemoryUnitOfWork
from idlerpg.infrastructure.inmemory.content import WorldCatalog, default_catalog


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryWorldRepository(WorldRepository):
    def __init__(self, catalog: WorldCatalog | None = None) -> None:
        catalog = catalog or default_catalog()
        self._zones = {zone.id: zone for zone in catalog.zones}
        self._landmarks = list(catalog.landmarks)
        self._connections = {(c.from_zone_id, c.to_zone_id): c for c in catalog.connections}
        self._enemies = {enemy.id: enemy for enemy in catalog.enemies}
        self._recipes = {recipe.id: recipe for recipe in catalog.recipes}
        self._events = list(catalog.events)
        self._supplies = {supply.key: supply for supply in catalog.supplies}

    def get_zone(self, zone_id: str) -> Optional[Zone]:
        return self._zones.get(str(zone_id))

    def list_zones(self) -> List[Zone]:
        return sorted(self._zones.values(), key=lambda zone: (zone.danger_level, zone.id))

    def list_landmarks(self, zone_id: str) -> List[Landmark]:
        return [landmark for landmark in self._landmarks if landmark.zone_id == str(zone_id)]

    def get_connection(self, from_zone_id: str, to_zone_id: str) -> Optional[ZoneConnection]:
        return self._connections.get((str(from_zone_id), str(to_zone_id)))

    def list_connections(self, from_zone_id: str) -> List[ZoneConnection]:
        return [c for (origin, _), c in sorted(self._connections.items()) if origin == str(from_zone_id)]

    def get_enemy(self, enemy_id: str) -> Optional[Enemy]:
        return self._enemies.get(str(enemy_id))

    def list_enemies(self) -> List[Enemy]:
        return sorted(self._enemies.values(), key=lambda enemy: (enemy.level, enemy.id))

    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        return self._recipes.get(str(recipe_id))

    def list_recipes(self) -> List[Recipe]:
        return sorted(self._recipes.values(), key=lambda recipe: recipe.id)

    def list_events(self) -> List[ExplorationEvent]:
        return list(self._events)

    def get_supply(self, supply_key: str) -> Optional[Supply]:
        return self._supplies.get(str(supply_key))


class InMemoryCharacterRepository(CharacterRepository):
    _STATE_ATTRS = ("_characters",)

    def __init__(self, initial: Dict[int, Character] | None = None, unit: InMemoryUnitOfWork | None = None) -> None:
        self._characters: Dict[int, Character] = dict(initial or {})
        self._next_id = max(self._characters, default=0) + 1
        self._unit = unit or InMemoryUnitOfWork()
        self._unit.register(self)

    def get(self, character_id: int) -> Optional[Character]:
        with self._unit.read():
            character = self._characters.get(int(character_id))
            return copy.deepcopy(character) if character is not None else None

    def list_all(self) -> List[Character]:
        with self._unit.read():
            return [copy.deepcopy(character) for _, character in sorted(self._characters.items())]

    def create(self, character: Character) -> Character:
        with self._unit.begin():
            if character.id is None:
                character.id = self._next_id
            self._next_id = max(self._next_id, int(character.id) + 1)
            self._characters[int(character.id)] = copy.deepcopy(character)
            return copy.deepcopy(character)

    def save(self, character: Character) -> None:
        with self._unit.begin():
            self._characters[int(character.id)] = copy.deepcopy(character)

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
        def _operation(_session: object) -> None:
            character = self._characters.get(int(character_id))
            if character is None:
                raise ValidationError(f"Unknown character: {character_id}")
            settle_character(
                character,
                ledger=ledger,
                consume_items=consume_items,
                zone_id=zone_id,
                health=health,
                alive=alive,
            )

        return _operation


def _event_key(session: ActivitySession) -> Optional[str]:
    if not session.active_event:
        return None
    return str(session.active_event.get("key", ""))


class InMemoryActivitySessionRepository(ActivitySessionRepository):
    _STATE_ATTRS = ("_sessions", "_open", "_next_id")

    def __init__(self, unit: InMemoryUnitOfWork | None = None, clock: Callable[[], datetime] | None = None) -> None:
        self._sessions: Dict[int, ActivitySession] = {}
        self._open: Dict[Tuple[int, str], int] = {}
        self._next_id = 1
        self._clock = clock or _utc_now
        self._unit = unit or InMemoryUnitOfWork()
        self._unit.register(self)

    def create(self, session: ActivitySession, operations: Sequence[Operation] | None = None) -> ActivitySession:
        with self._unit.begin():
            key = (int(session.character_id), session.kind.value)
            if key in self._open:
                raise ConflictError(
                    f"Character {session.character_id} already has an open {session.kind.value} session"
                )
            for operation in operations or ():
                operation(None)
            stored = copy.deepcopy(session)
            stored.session_id = self._next_id
            stored.last_processed_progress = 0
            stored.finalized_at = None
            self._next_id += 1
            self._sessions[stored.session_id] = stored
            self._open[key] = stored.session_id
            return copy.deepcopy(stored)

    def get(self, session_id: int) -> Optional[ActivitySession]:
        with self._unit.read():
            session = self._sessions.get(int(session_id))
            return copy.deepcopy(session) if session is not None else None

    def get_open(self, character_id: int, kind: ActivityKind) -> Optional[ActivitySession]:
        with self._unit.read():
            session_id = self._open.get((int(character_id), ActivityKind(kind).value))
            if session_id is None:
                return None
            return copy.deepcopy(self._sessions[session_id])

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
        if not 0 <= int(new_progress) <= 100:
            raise EngineInvariantError(f"Progress marker {new_progress} is outside 0..100")
        with self._unit.begin():
            stored = self._sessions.get(int(session_id))
            if stored is None:
                raise StaleSessionError(f"Session {session_id} does not exist")
            if not stored.is_open:
                raise StaleSessionError(f"Session {session_id} is already finalized")
            if stored.last_processed_progress != int(expected_progress) or int(new_progress) < int(expected_progress):
                raise StaleSessionError(
                    f"Session {session_id} marker is {stored.last_processed_progress}, expected {expected_progress}"
                )
            if expected_event_key is not KEEP and _event_key(stored) != expected_event_key:
                raise StaleSessionError(f"Session {session_id} pending event changed")

            for operation in operations or ():
                operation(None)

            stored.ledger = stored.ledger.merged(ledger_delta)
            stored.last_processed_progress = int(new_progress)
            if status is not None:
                stored.status = ActivityStatus(status)
            if active_event is not KEEP:
                stored.active_event = copy.deepcopy(active_event)
            if failure_reason is not None:
                stored.failure_reason = failure_reason
            if finalize:
                stored.finalized_at = self._clock()
                stored.active_event = None
                self._open.pop((stored.character_id, stored.kind.value), None)
            return copy.deepcopy(stored)

    def resolve_event(self, session_id: int, *, event_key: str, ledger_delta: RewardLedger) -> ActivitySession:
        with self._unit.begin():
            stored = self._sessions.get(int(session_id))
            if stored is None or not stored.is_open or _event_key(stored) != str(event_key):
                raise StaleSessionError(f"Event {event_key} is no longer pending on session {session_id}")
            stored.ledger = stored.ledger.merged(ledger_delta)
            stored.active_event = None
            return copy.deepcopy(stored)

    def list_for_character(self, character_id: int, kind: ActivityKind | None = None) -> List[ActivitySession]:
        with self._unit.read():
            return [
                copy.deepcopy(session)
                for _, session in sorted(self._sessions.items())
                if session.character_id == int(character_id) and (kind is None or session.kind == ActivityKind(kind))
            ]


class InMemoryCombatRepository(CombatRepository):
    _STATE_ATTRS = ("_instances", "_history")
    _HISTORY_MAX = 100

    def __init__(self, unit: InMemoryUnitOfWork | None = None, clock: Callable[[], datetime] | None = None) -> None:
        self._instances: Dict[int, CombatInstance] = {}
        self._history: Dict[int, List[Dict[str, Any]]] = {}
        self._clock = clock or _utc_now
        self._unit = unit or InMemoryUnitOfWork()
        self._unit.register(self)

    def get(self, character_id: int) -> Optional[CombatInstance]:
        with self._unit.read():
            instance = self._instances.get(int(character_id))
            return copy.deepcopy(instance) if instance is not None else None

    def create(self, instance: CombatInstance) -> CombatInstance:
        with self._unit.begin():
            if int(instance.character_id) in self._instances:
                raise ConflictError(f"Character {instance.character_id} is already in combat")
            self._instances[int(instance.character_id)] = copy.deepcopy(instance)
            return copy.deepcopy(instance)

    def save_turn(self, instance: CombatInstance, *, expected_turn: int) -> CombatInstance:
        with self._unit.begin():
            stored = self._instances.get(int(instance.character_id))
            if stored is None:
                raise NoActiveCombatError(f"Character {instance.character_id} is not in combat")
            if stored.turn != int(expected_turn) or stored.is_over:
                raise TurnInProgressError(f"Turn {expected_turn} for character {instance.character_id} was already taken")
            self._instances[int(instance.character_id)] = copy.deepcopy(instance)
            return copy.deepcopy(instance)

    def finish(
        self,
        character_id: int,
        result: CombatResult,
        operations: Sequence[Operation] | None = None,
    ) -> None:
        with self._unit.begin():
            instance = self._instances.pop(int(character_id), None)
            if instance is None:
                raise NoActiveCombatError(f"Character {character_id} is not in combat")
            for operation in operations or ():
                operation(None)
            rows = self._history.setdefault(int(character_id), [])
            rows.append(
                {
                    "character_id": int(character_id),
                    "enemy_id": instance.enemy_id,
                    "victory": bool(result.victory),
                    "experience": int(result.experience),
                    "gold": int(result.gold),
                    "loot": list(result.loot),
                    "turns": int(result.turns),
                    "damage_dealt": int(result.damage_dealt),
                    "damage_taken": int(result.damage_taken),
                    "ended_at": self._clock().isoformat(),
                }
            )
            if len(rows) > self._HISTORY_MAX:
                del rows[: -self._HISTORY_MAX]

    def list_history(self, character_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        with self._unit.read():
            rows = self._history.get(int(character_id), [])
            return [dict(row) for row in reversed(rows[-max(0, int(limit)):])] if limit else []
