from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

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
from idlerpg.domain.models.combat import CombatAction, CombatInstance, CombatResult
from idlerpg.domain.repositories import (
    KEEP,
    ActivitySessionRepository,
    CharacterRepository,
    CombatRepository,
    Operation,
)
from idlerpg.domain.services.settlement import settle_character
from idlerpg.infrastructure.db.sql import connection
from idlerpg.infrastructure.db.sql.connection import dialect_name


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(str(value))


def _dump(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _open_key(character_id: int, kind: ActivityKind) -> str:
    return f"{int(character_id)}:{ActivityKind(kind).value}"


class _SqlRepository:
    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory

    @property
    def session_local(self):
        return self._session_factory or connection.SessionLocal


class SqlCharacterRepository(_SqlRepository, CharacterRepository):
    def get(self, character_id: int) -> Optional[Character]:
        with self.session_local() as session:
            return self._load(session, character_id)

    def create(self, character: Character) -> Character:
        with self.session_local.begin() as session:
            params = self._row_params(character)
            if character.id is None:
                result = session.execute(
                    text(
                        """
                        INSERT INTO characters (name, level, xp, gold, health, max_health, attack, defense, zone_id, alive)
                        VALUES (:name, :level, :xp, :gold, :health, :max_health, :attack, :defense, :zone_id, :alive)
                        """
                    ),
                    params,
                )
                character.id = int(result.lastrowid)
            else:
                session.execute(
                    text(
                        """
                        INSERT INTO characters (character_id, name, level, xp, gold, health, max_health, attack, defense, zone_id, alive)
                        VALUES (:cid, :name, :level, :xp, :gold, :health, :max_health, :attack, :defense, :zone_id, :alive)
                        """
                    ),
                    params,
                )
            self._write_children(session, character)
        return character

    def save(self, character: Character) -> None:
        with self.session_local.begin() as session:
            self._write(session, character)

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
        def _operation(session) -> None:
            character = self._load(session, character_id)
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
            self._write(session, character)

        return _operation

    @staticmethod
    def _row_params(character: Character) -> dict[str, Any]:
        return {
            "cid": character.id,
            "name": character.name,
            "level": int(character.level),
            "xp": int(character.xp),
            "gold": int(character.gold),
            "health": int(character.health),
            "max_health": int(character.max_health),
            "attack": int(character.attack),
            "defense": int(character.defense),
            "zone_id": character.zone_id,
            "alive": int(bool(character.alive)),
        }

    def _load(self, session, character_id: int) -> Optional[Character]:
        row = session.execute(
            text(
                """
                SELECT character_id, name, level, xp, gold, health, max_health, attack, defense, zone_id, alive
                FROM characters
                WHERE character_id = :cid
                """
            ),
            {"cid": int(character_id)},
        ).first()
        if row is None:
            return None
        items = session.execute(
            text("SELECT item_id, quantity FROM character_item WHERE character_id = :cid"),
            {"cid": int(character_id)},
        ).all()
        skills = session.execute(
            text("SELECT skill, xp FROM character_skill WHERE character_id = :cid"),
            {"cid": int(character_id)},
        ).all()
        discoveries = session.execute(
            text(
                "SELECT discovery_key FROM character_discovery WHERE character_id = :cid ORDER BY position, discovery_key"
            ),
            {"cid": int(character_id)},
        ).all()
        return Character(
            id=row.character_id,
            name=row.name,
            level=row.level,
            xp=row.xp,
            gold=row.gold,
            health=row.health,
            max_health=row.max_health,
            attack=row.attack,
            defense=row.defense,
            zone_id=row.zone_id,
            alive=bool(row.alive),
            inventory={item.item_id: item.quantity for item in items},
            skills={skill.skill: skill.xp for skill in skills},
            discoveries=[discovery.discovery_key for discovery in discoveries],
        )

    def _write(self, session, character: Character) -> None:
        if dialect_name(session) == "mysql":
            statement = text(
                """
                INSERT INTO characters (character_id, name, level, xp, gold, health, max_health, attack, defense, zone_id, alive)
                VALUES (:cid, :name, :level, :xp, :gold, :health, :max_health, :attack, :defense, :zone_id, :alive)
                ON DUPLICATE KEY UPDATE
                    name = VALUES(name),
                    level = VALUES(level),
                    xp = VALUES(xp),
                    gold = VALUES(gold),
                    health = VALUES(health),
                    max_health = VALUES(max_health),
                    attack = VALUES(attack),
                    defense = VALUES(defense),
                    zone_id = VALUES(zone_id),
                    alive = VALUES(alive)
                """
            )
        else:
            statement = text(
                """
                INSERT INTO characters (character_id, name, level, xp, gold, health, max_health, attack, defense, zone_id, alive)
                VALUES (:cid, :name, :level, :xp, :gold, :health, :max_health, :attack, :defense, :zone_id, :alive)
                ON CONFLICT(character_id) DO UPDATE SET
                    name = excluded.name,
                    level = excluded.level,
                    xp = excluded.xp,
                    gold = excluded.gold,
                    health = excluded.health,
                    max_health = excluded.max_health,
                    attack = excluded.attack,
                    defense = excluded.defense,
                    zone_id = excluded.zone_id,
                    alive = excluded.alive
                """
            )
        session.execute(statement, self._row_params(character))
        self._write_children(session, character)

    @staticmethod
    def _write_children(session, character: Character) -> None:
        params = {"cid": int(character.id)}
        session.execute(text("DELETE FROM character_item WHERE character_id = :cid"), params)
        session.execute(text("DELETE FROM character_skill WHERE character_id = :cid"), params)
        session.execute(text("DELETE FROM character_discovery WHERE character_id = :cid"), params)
        for item_id, quantity in sorted(character.inventory.items()):
            session.execute(
                text("INSERT INTO character_item (character_id, item_id, quantity) VALUES (:cid, :item_id, :quantity)"),
                {"cid": int(character.id), "item_id": item_id, "quantity": int(quantity)},
            )
        for skill, xp in sorted(character.skills.items()):
            session.execute(
                text("INSERT INTO character_skill (character_id, skill, xp) VALUES (:cid, :skill, :xp)"),
                {"cid": int(character.id), "skill": skill, "xp": int(xp)},
            )
        for position, key in enumerate(character.discoveries):
            session.execute(
                text(
                    "INSERT INTO character_discovery (character_id, discovery_key, position) VALUES (:cid, :key, :position)"
                ),
                {"cid": int(character.id), "key": key, "position": position},
            )


_SESSION_COLUMNS = """
    session_id, character_id, kind, started_at, config_json, rng_seed, last_processed_progress,
    ledger_json, status, active_event_json, failure_reason, finalized_at
"""


class SqlActivitySessionRepository(_SqlRepository, ActivitySessionRepository):
    def __init__(self, session_factory=None, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(session_factory)
        self._clock = clock or _utc_now

    def create(self, session: ActivitySession, operations: Sequence[Operation] | None = None) -> ActivitySession:
        try:
            with self.session_local.begin() as db:
                for operation in operations or ():
                    operation(db)
                result = db.execute(
                    text(
                        """
                        INSERT INTO activity_session (
                            character_id, kind, started_at, config_json, rng_seed, last_processed_progress,
                            ledger_json, status, active_event_json, active_event_key, failure_reason, finalized_at, open_key
                        )
                        VALUES (
                            :cid, :kind, :started_at, :config_json, :rng_seed, 0,
                            :ledger_json, :status, NULL, NULL, :failure_reason, NULL, :open_key
                        )
                        """
                    ),
                    {
                        "cid": int(session.character_id),
                        "kind": session.kind.value,
                        "started_at": session.started_at.isoformat(),
                        "config_json": _dump(session.config),
                        "rng_seed": int(session.rng_seed),
                        "ledger_json": _dump(session.ledger.to_payload()),
                        "status": session.status.value,
                        "failure_reason": session.failure_reason,
                        "open_key": _open_key(session.character_id, session.kind),
                    },
                )
                session_id = int(result.lastrowid)
        except IntegrityError as exc:
            raise ConflictError(
                f"Character {session.character_id} already has an open {session.kind.value} session"
            ) from exc
        created = self.get(session_id)
        if created is None:
            raise EngineInvariantError(f"Session {session_id} vanished after insert")
        return created

    def get(self, session_id: int) -> Optional[ActivitySession]:
        with self.session_local() as db:
            row = db.execute(
                text(f"SELECT {_SESSION_COLUMNS} FROM activity_session WHERE session_id = :sid"),
                {"sid": int(session_id)},
            ).first()
            return self._from_row(row) if row is not None else None

    def get_open(self, character_id: int, kind: ActivityKind) -> Optional[ActivitySession]:
        with self.session_local() as db:
            row = db.execute(
                text(f"SELECT {_SESSION_COLUMNS} FROM activity_session WHERE open_key = :open_key"),
                {"open_key": _open_key(character_id, kind)},
            ).first()
            return self._from_row(row) if row is not None else None

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
        if int(new_progress) < int(expected_progress):
            raise StaleSessionError(f"Marker for session {session_id} cannot move backwards")

        with self.session_local.begin() as db:
            current = db.execute(
                text(f"SELECT {_SESSION_COLUMNS} FROM activity_session WHERE session_id = :sid"),
                {"sid": int(session_id)},
            ).first()
            if current is None:
                raise StaleSessionError(f"Session {session_id} does not exist")
            stored = self._from_row(current)

            event_json = current.active_event_json
            event_key = stored.active_event.get("key") if stored.active_event else None
            if active_event is not KEEP:
                event_json = _dump(active_event) if active_event else None
                event_key = str(active_event["key"]) if active_event else None
            if finalize:
                event_json = None
                event_key = None

            clauses = [
                "session_id = :sid",
                "last_processed_progress = :expected",
                "finalized_at IS NULL",
            ]
            params: dict[str, Any] = {
                "sid": int(session_id),
                "expected": int(expected_progress),
                "new_progress": int(new_progress),
                "ledger_json": _dump(stored.ledger.merged(ledger_delta).to_payload()),
                "status": ActivityStatus(status).value if status is not None else stored.status.value,
                "event_json": event_json,
                "event_key": event_key,
                "failure_reason": failure_reason if failure_reason is not None else stored.failure_reason,
                "finalized_at": self._clock().isoformat() if finalize else None,
                "open_key": None if finalize else _open_key(stored.character_id, stored.kind),
            }
            if expected_event_key is not KEEP:
                clauses.append("COALESCE(active_event_key, '') = :expected_event_key")
                params["expected_event_key"] = expected_event_key or ""

            result = db.execute(
                text(
                    f"""
                    UPDATE activity_session
                    SET last_processed_progress = :new_progress,
                        ledger_json = :ledger_json,
                        status = :status,
                        active_event_json = :event_json,
                        active_event_key = :event_key,
                        failure_reason = :failure_reason,
                        finalized_at = :finalized_at,
                        open_key = :open_key
                    WHERE {' AND '.join(clauses)}
                    """
                ),
                params,
            )
            if result.rowcount != 1:
                raise StaleSessionError(
                    f"Session {session_id} moved past marker {expected_progress} or was finalized"
                )
            for operation in operations or ():
                operation(db)

        updated = self.get(session_id)
        if updated is None:
            raise EngineInvariantError(f"Session {session_id} vanished after update")
        return updated

    def resolve_event(self, session_id: int, *, event_key: str, ledger_delta: RewardLedger) -> ActivitySession:
        with self.session_local.begin() as db:
            current = db.execute(
                text(f"SELECT {_SESSION_COLUMNS} FROM activity_session WHERE session_id = :sid"),
                {"sid": int(session_id)},
            ).first()
            if current is None:
                raise StaleSessionError(f"Session {session_id} does not exist")
            stored = self._from_row(current)
            result = db.execute(
                text(
                    """
                    UPDATE activity_session
                    SET ledger_json = :ledger_json,
                        active_event_json = NULL,
                        active_event_key = NULL
                    WHERE session_id = :sid
                      AND active_event_key = :event_key
                      AND last_processed_progress = :marker
                      AND finalized_at IS NULL
                    """
                ),
                {
                    "sid": int(session_id),
                    "event_key": str(event_key),
                    "marker": stored.last_processed_progress,
                    "ledger_json": _dump(stored.ledger.merged(ledger_delta).to_payload()),
                },
            )
            if result.rowcount != 1:
                raise StaleSessionError(f"Event {event_key} is no longer pending on session {session_id}")

        updated = self.get(session_id)
        if updated is None:
            raise EngineInvariantError(f"Session {session_id} vanished after event resolution")
        return updated

    def list_for_character(self, character_id: int, kind: ActivityKind | None = None) -> List[ActivitySession]:
        query = f"SELECT {_SESSION_COLUMNS} FROM activity_session WHERE character_id = :cid"
        params: dict[str, Any] = {"cid": int(character_id)}
        if kind is not None:
            query += " AND kind = :kind"
            params["kind"] = ActivityKind(kind).value
        with self.session_local() as db:
            rows = db.execute(text(query + " ORDER BY session_id"), params).all()
            return [self._from_row(row) for row in rows]

    @staticmethod
    def _from_row(row) -> ActivitySession:
        return ActivitySession(
            session_id=int(row.session_id),
            character_id=int(row.character_id),
            kind=ActivityKind(row.kind),
            started_at=_parse_ts(row.started_at),
            config=json.loads(row.config_json or "{}"),
            rng_seed=int(row.rng_seed),
            last_processed_progress=int(row.last_processed_progress),
            ledger=RewardLedger.from_payload(json.loads(row.ledger_json or "{}")),
            status=ActivityStatus(row.status),
            active_event=json.loads(row.active_event_json) if row.active_event_json else None,
            failure_reason=row.failure_reason,
            finalized_at=_parse_ts(row.finalized_at),
        )


class SqlCombatRepository(_SqlRepository, CombatRepository):
    def __init__(self, session_factory=None, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(session_factory)
        self._clock = clock or _utc_now

    def get(self, character_id: int) -> Optional[CombatInstance]:
        with self.session_local() as db:
            row = db.execute(
                text(
                    """
                    SELECT character_id, enemy_id, player_current_health, enemy_current_health,
                           player_starting_health, enemy_starting_health, started_at, turn, status,
                           combat_log_json, skill_xp_json
                    FROM combat_instance
                    WHERE character_id = :cid
                    """
                ),
                {"cid": int(character_id)},
            ).first()
        if row is None:
            return None
        return CombatInstance(
            character_id=int(row.character_id),
            enemy_id=row.enemy_id,
            player_current_health=int(row.player_current_health),
            enemy_current_health=int(row.enemy_current_health),
            player_starting_health=int(row.player_starting_health),
            enemy_starting_health=int(row.enemy_starting_health),
            started_at=_parse_ts(row.started_at),
            turn=int(row.turn),
            status=row.status,
            combat_log=[CombatAction.from_payload(entry) for entry in json.loads(row.combat_log_json or "[]")],
            skill_xp={str(key): int(value) for key, value in json.loads(row.skill_xp_json or "{}").items()},
        )

    def create(self, instance: CombatInstance) -> CombatInstance:
        try:
            with self.session_local.begin() as db:
                db.execute(
                    text(
                        """
                        INSERT INTO combat_instance (
                            character_id, enemy_id, player_current_health, enemy_current_health,
                            player_starting_health, enemy_starting_health, started_at, turn, status,
                            combat_log_json, skill_xp_json
                        )
                        VALUES (
                            :cid, :enemy_id, :player_hp, :enemy_hp, :player_start, :enemy_start,
                            :started_at, :turn, :status, :log_json, :skill_json
                        )
                        """
                    ),
                    self._params(instance),
                )
        except IntegrityError as exc:
            raise ConflictError(f"Character {instance.character_id} is already in combat") from exc
        return instance

    def save_turn(self, instance: CombatInstance, *, expected_turn: int) -> CombatInstance:
        with self.session_local.begin() as db:
            params = self._params(instance)
            params["expected_turn"] = int(expected_turn)
            result = db.execute(
                text(
                    """
                    UPDATE combat_instance
                    SET player_current_health = :player_hp,
                        enemy_current_health = :enemy_hp,
                        turn = :turn,
                        status = :status,
                        combat_log_json = :log_json,
                        skill_xp_json = :skill_json
                    WHERE character_id = :cid
                      AND turn = :expected_turn
                      AND status = 'active'
                    """
                ),
                params,
            )
            if result.rowcount != 1:
                exists = db.execute(
                    text("SELECT 1 FROM combat_instance WHERE character_id = :cid"),
                    {"cid": int(instance.character_id)},
                ).first()
                if exists is None:
                    raise NoActiveCombatError(f"Character {instance.character_id} is not in combat")
                raise TurnInProgressError(
                    f"Turn {expected_turn} for character {instance.character_id} was already taken"
                )
        return instance

    def finish(
        self,
        character_id: int,
        result: CombatResult,
        operations: Sequence[Operation] | None = None,
    ) -> None:
        with self.session_local.begin() as db:
            row = db.execute(
                text("SELECT enemy_id FROM combat_instance WHERE character_id = :cid"),
                {"cid": int(character_id)},
            ).first()
            deleted = db.execute(
                text("DELETE FROM combat_instance WHERE character_id = :cid"),
                {"cid": int(character_id)},
            )
            if row is None or deleted.rowcount != 1:
                raise NoActiveCombatError(f"Character {character_id} is not in combat")
            for operation in operations or ():
                operation(db)
            db.execute(
                text(
                    """
                    INSERT INTO combat_history (
                        character_id, enemy_id, victory, experience, gold, loot_json,
                        turns, damage_dealt, damage_taken, ended_at
                    )
                    VALUES (
                        :cid, :enemy_id, :victory, :experience, :gold, :loot_json,
                        :turns, :damage_dealt, :damage_taken, :ended_at
                    )
                    """
                ),
                {
                    "cid": int(character_id),
                    "enemy_id": row.enemy_id,
                    "victory": int(bool(result.victory)),
                    "experience": int(result.experience),
                    "gold": int(result.gold),
                    "loot_json": _dump(list(result.loot)),
                    "turns": int(result.turns),
                    "damage_dealt": int(result.damage_dealt),
                    "damage_taken": int(result.damage_taken),
                    "ended_at": self._clock().isoformat(),
                },
            )

    def list_history(self, character_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        with self.session_local() as db:
            rows = db.execute(
                text(
                    """
                    SELECT character_id, enemy_id, victory, experience, gold, loot_json,
                           turns, damage_dealt, damage_taken, ended_at
                    FROM combat_history
                    WHERE character_id = :cid
                    ORDER BY history_id DESC
                    LIMIT :limit
                    """
                ),
                {"cid": int(character_id), "limit": max(0, int(limit))},
            ).all()
        return [
            {
                "character_id": int(row.character_id),
                "enemy_id": row.enemy_id,
                "victory": bool(row.victory),
                "experience": int(row.experience),
                "gold": int(row.gold),
                "loot": json.loads(row.loot_json or "[]"),
                "turns": int(row.turns),
                "damage_dealt": int(row.damage_dealt),
                "damage_taken": int(row.damage_taken),
                "ended_at": row.ended_at,
            }
            for row in rows
        ]

    @staticmethod
    def _params(instance: CombatInstance) -> dict[str, Any]:
        return {
            "cid": int(instance.character_id),
            "enemy_id": instance.enemy_id,
            "player_hp": int(instance.player_current_health),
            "enemy_hp": int(instance.enemy_current_health),
            "player_start": int(instance.player_starting_health),
            "enemy_start": int(instance.enemy_starting_health),
            "started_at": instance.started_at.isoformat(),
            "turn": int(instance.turn),
            "status": instance.status.value,
            "log_json": _dump([action.to_payload() for action in instance.combat_log]),
            "skill_json": _dump(dict(instance.skill_xp)),
        }
