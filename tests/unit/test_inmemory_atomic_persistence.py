import sys
from pathlib import Path
import unittest
from datetime import datetime, timezone

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from idlerpg.domain.errors import ValidationError
from idlerpg.domain.models.activity import ActivityKind, ActivitySession, ActivityStatus, RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.infrastructure.db.inmemory.repos import InMemoryActivitySessionRepository, InMemoryCharacterRepository
from idlerpg.infrastructure.inmemory.atomic_persistence import InMemoryUnitOfWork


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _crafting_session(character_id: int) -> ActivitySession:
    return ActivitySession(
        session_id=None,
        character_id=character_id,
        kind=ActivityKind.CRAFTING,
        started_at=T0,
        config={"crafting_seconds": 10, "quantity_goal": 1, "result_item_id": "bronze_dagger", "skill": "smithing"},
        rng_seed=4,
    )


class InMemoryUnitOfWorkTests(unittest.TestCase):
    def setUp(self) -> None:
        self.unit = InMemoryUnitOfWork()
        self.characters = InMemoryCharacterRepository(unit=self.unit)
        self.sessions = InMemoryActivitySessionRepository(self.unit, clock=lambda: T0)
        self.character = self.characters.create(
            Character(id=None, name="Ari", gold=10, inventory={"copper_ore": 1})
        )

    def test_failed_reservation_rolls_back_the_new_session(self) -> None:
        reserve = self.characters.build_settlement_operation(self.character.id, consume_items={"copper_ore": 2})

        with self.assertRaises(ValidationError):
            self.sessions.create(_crafting_session(self.character.id), [reserve])

        self.assertIsNone(self.sessions.get_open(self.character.id, ActivityKind.CRAFTING))
        self.assertEqual(self.sessions.list_for_character(self.character.id), [])
        self.assertEqual(self.characters.get(self.character.id).inventory, {"copper_ore": 1})

    def test_failed_settlement_keeps_the_marker_and_the_character(self) -> None:
        session = self.sessions.create(_crafting_session(self.character.id))
        credit = self.characters.build_settlement_operation(self.character.id, ledger=RewardLedger(gold=90))

        def explode(_session: object) -> None:
            raise RuntimeError("disk full")

        with self.assertRaises(RuntimeError):
            self.sessions.update_ledger_and_marker(
                session.session_id,
                expected_progress=0,
                new_progress=100,
                ledger_delta=RewardLedger(gold=90),
                status=ActivityStatus.COMPLETED,
                finalize=True,
                operations=[credit, explode],
            )

        stored = self.sessions.get(session.session_id)
        self.assertEqual(stored.last_processed_progress, 0)
        self.assertTrue(stored.is_open)
        self.assertEqual(self.characters.get(self.character.id).gold, 10)

    def test_nested_scopes_commit_with_the_outer_one(self) -> None:
        with self.assertRaises(KeyError):
            with self.unit.begin():
                self.characters.save(Character(id=self.character.id, name="Ari", gold=500))
                raise KeyError("abort")
        self.assertEqual(self.characters.get(self.character.id).gold, 10)

        with self.unit.begin():
            self.characters.save(Character(id=self.character.id, name="Ari", gold=500))
        self.assertEqual(self.characters.get(self.character.id).gold, 500)

    def test_returned_objects_are_detached_copies(self) -> None:
        loaded = self.characters.get(self.character.id)
        loaded.gold = 9999
        self.assertEqual(self.characters.get(self.character.id).gold, 10)


if __name__ == "__main__":
    unittest.main()
