import sys
from pathlib import Path
import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from idlerpg.application.services.combat_service import CombatService
from idlerpg.application.services.crafting_service import CraftingService
from idlerpg.application.services.exploration_service import ExplorationService
from idlerpg.domain.errors import ConflictError, NoActiveCombatError, StaleSessionError, TurnInProgressError, ValidationError
from idlerpg.domain.models.activity import ActivityKind, ActivitySession, ActivityStatus, RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.infrastructure.db.inmemory.repos import InMemoryWorldRepository
from idlerpg.infrastructure.db.sql.connection import build_engine
from idlerpg.infrastructure.db.sql.migrate import apply_schema
from idlerpg.infrastructure.db.sql.repos import (
    SqlActivitySessionRepository,
    SqlCharacterRepository,
    SqlCombatRepository,
)


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class SqlRepositoryIntegrationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine("sqlite:///:memory:")
        apply_schema(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)
        self.clock = FakeClock()
        self.characters = SqlCharacterRepository(self.SessionLocal)
        self.sessions = SqlActivitySessionRepository(self.SessionLocal, clock=self.clock)
        self.combats = SqlCombatRepository(self.SessionLocal, clock=self.clock)
        self.world = InMemoryWorldRepository()
        self.character = self.characters.create(
            Character(
                id=None,
                name="Mira",
                zone_id="greenwood_village",
                inventory={"copper_ore": 4, "wood": 2},
                skills={"smithing": 5},
                discoveries=["greenwood_village"],
            )
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    def _session(self, kind: ActivityKind = ActivityKind.EXPLORATION) -> ActivitySession:
        return ActivitySession(
            session_id=None,
            character_id=self.character.id,
            kind=kind,
            started_at=T0,
            config={"zone_id": "greenwood_village", "duration_seconds": 1500},
            rng_seed=17,
        )

    def test_character_round_trip_keeps_children(self) -> None:
        loaded = self.characters.get(self.character.id)

        self.assertEqual(loaded.name, "Mira")
        self.assertEqual(loaded.inventory, {"copper_ore": 4, "wood": 2})
        self.assertEqual(loaded.skills, {"smithing": 5})
        self.assertEqual(loaded.discoveries, ["greenwood_village"])

        loaded.inventory = {"wood": 1}
        loaded.discoveries.append("old_well")
        self.characters.save(loaded)
        reloaded = self.characters.get(self.character.id)
        self.assertEqual(reloaded.inventory, {"wood": 1})
        self.assertEqual(reloaded.discoveries, ["greenwood_village", "old_well"])

    def test_only_one_open_session_per_kind(self) -> None:
        self.sessions.create(self._session())
        with self.assertRaises(ConflictError):
            self.sessions.create(self._session())
        self.sessions.create(self._session(ActivityKind.TRAVEL))

    def test_marker_compare_and_set(self) -> None:
        session = self.sessions.create(self._session())
        updated = self.sessions.update_ledger_and_marker(
            session.session_id, expected_progress=0, new_progress=12, ledger_delta=RewardLedger(gold=7)
        )
        self.assertEqual(updated.last_processed_progress, 12)
        self.assertEqual(updated.ledger.gold, 7)

        with self.assertRaises(StaleSessionError):
            self.sessions.update_ledger_and_marker(
                session.session_id, expected_progress=0, new_progress=20, ledger_delta=RewardLedger(gold=7)
            )
        with self.assertRaises(StaleSessionError):
            self.sessions.update_ledger_and_marker(
                session.session_id, expected_progress=12, new_progress=11, ledger_delta=RewardLedger()
            )
        self.assertEqual(self.sessions.get(session.session_id).ledger.gold, 7)

    def test_finalizing_frees_the_slot_and_settles_in_one_transaction(self) -> None:
        session = self.sessions.create(self._session())
        credit = self.characters.build_settlement_operation(self.character.id, ledger=RewardLedger(gold=30))
        self.sessions.update_ledger_and_marker(
            session.session_id,
            expected_progress=0,
            new_progress=100,
            ledger_delta=RewardLedger(gold=30),
            status=ActivityStatus.COMPLETED,
            finalize=True,
            operations=[credit],
        )

        self.assertIsNone(self.sessions.get_open(self.character.id, ActivityKind.EXPLORATION))
        self.assertEqual(self.characters.get(self.character.id).gold, 30)
        history = self.sessions.list_for_character(self.character.id, ActivityKind.EXPLORATION)
        self.assertEqual(history[0].status, ActivityStatus.COMPLETED)
        self.assertEqual(history[0].finalized_at, T0)
        self.sessions.create(self._session())

    def test_failing_settlement_rolls_back_the_marker(self) -> None:
        session = self.sessions.create(self._session())
        consume = self.characters.build_settlement_operation(self.character.id, consume_items={"rare_gem": 1})

        with self.assertRaises(ValidationError):
            self.sessions.update_ledger_and_marker(
                session.session_id,
                expected_progress=0,
                new_progress=100,
                ledger_delta=RewardLedger(gold=30),
                finalize=True,
                operations=[consume],
            )

        stored = self.sessions.get(session.session_id)
        self.assertEqual(stored.last_processed_progress, 0)
        self.assertIsNone(stored.finalized_at)
        self.assertEqual(self.characters.get(self.character.id).gold, 0)

    def test_event_resolution_guards_on_the_pending_key(self) -> None:
        session = self.sessions.create(self._session())
        event = {"key": "mysterious_chest", "progress": 20, "choices": []}
        self.sessions.update_ledger_and_marker(
            session.session_id,
            expected_progress=0,
            new_progress=20,
            ledger_delta=RewardLedger(),
            active_event=event,
        )

        with self.assertRaises(StaleSessionError):
            self.sessions.update_ledger_and_marker(
                session.session_id,
                expected_progress=20,
                new_progress=25,
                ledger_delta=RewardLedger(),
                expected_event_key=None,
            )
        resolved = self.sessions.resolve_event(
            session.session_id, event_key="mysterious_chest", ledger_delta=RewardLedger(gold=80)
        )
        self.assertIsNone(resolved.active_event)
        self.assertEqual(resolved.ledger.gold, 80)
        with self.assertRaises(StaleSessionError):
            self.sessions.resolve_event(
                session.session_id, event_key="mysterious_chest", ledger_delta=RewardLedger(gold=80)
            )

    def test_exploration_service_runs_end_to_end(self) -> None:
        service = ExplorationService(self.sessions, self.characters, self.world, clock=self.clock, rng_seed=3)
        service.start(self.character.id)
        for _ in range(5):
            self.clock.advance(300)
            view = service.poll(self.character.id)

        self.assertTrue(view.completed)
        stored = self.characters.get(self.character.id)
        self.assertEqual(stored.gold, view.ledger.gold)
        self.assertEqual(stored.xp, view.ledger.experience)

    def test_crafting_cancel_refund_through_sql(self) -> None:
        service = CraftingService(self.sessions, self.characters, self.world, clock=self.clock, rng_seed=3)
        service.start(self.character.id, {"recipe_id": "bronze_dagger", "quantity": 2})
        self.assertEqual(self.characters.get(self.character.id).inventory, {})

        self.clock.advance(10)
        service.poll(self.character.id)
        service.cancel(self.character.id)

        self.assertEqual(
            self.characters.get(self.character.id).inventory,
            {"bronze_dagger": 1, "copper_ore": 2, "wood": 1},
        )

    def test_combat_turns_history_and_single_flight(self) -> None:
        service = CombatService(self.combats, self.characters, self.world, clock=self.clock, rng_seed=3)
        service.start(self.character.id, "slime")
        with self.assertRaises(ConflictError):
            service.start(self.character.id, "slime")

        instance = self.combats.get(self.character.id)
        with self.assertRaises(TurnInProgressError):
            self.combats.save_turn(instance, expected_turn=4)

        result = service.auto_fight(self.character.id)
        self.assertTrue(result.victory)
        self.assertIsNone(self.combats.get(self.character.id))
        with self.assertRaises(NoActiveCombatError):
            service.end(self.character.id, True)

        history = service.history(self.character.id)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["enemy_id"], "slime")
        self.assertTrue(history[0]["victory"])
        self.assertEqual(self.characters.get(self.character.id).xp, 10)

    def test_schema_is_idempotent(self) -> None:
        apply_schema(self.engine)
        with self.engine.connect() as conn:
            count = conn.execute(text("SELECT COUNT(*) FROM characters")).scalar_one()
        self.assertEqual(count, 1)


if __name__ == "__main__":
    unittest.main()
