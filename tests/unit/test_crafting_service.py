import sys
from pathlib import Path
import unittest
from datetime import datetime, timedelta, timezone

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from idlerpg.bootstrap import EngineSettings, build_inmemory_engine
from idlerpg.domain.errors import ConflictError, ValidationError


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class CraftingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.engine = build_inmemory_engine(EngineSettings(rng_seed=9), clock=self.clock)

    def _smith(self, **inventory):
        return self.engine.create_character("Cora", inventory=dict(inventory))

    def test_start_reserves_every_ingredient(self) -> None:
        character = self._smith(copper_ore=6, wood=3)
        session = self.engine.start_crafting_intent(character.id, "bronze_dagger", quantity=3)

        self.assertEqual(session.config["quantity_goal"], 3)
        self.assertEqual(self.engine.characters.get(character.id).inventory, {})

    def test_units_are_credited_as_progress_crosses_them(self) -> None:
        character = self._smith(herbs=6, berries=3)
        self.engine.start_crafting_intent(character.id, "health_potion", quantity=3)

        self.clock.advance(7)
        view = self.engine.poll_activity_intent(character.id, "crafting")
        self.assertEqual(view.ledger.items, {"health_potion": 2})
        self.clock.advance(11)
        view = self.engine.poll_activity_intent(character.id, "crafting")

        self.assertTrue(view.completed)
        stored = self.engine.characters.get(character.id)
        self.assertEqual(stored.inventory, {"health_potion": 6})
        self.assertEqual(stored.skills["alchemy"], 30)

    def test_cancel_refunds_the_uncrafted_units(self) -> None:
        character = self._smith(copper_ore=6, wood=3)
        self.engine.start_crafting_intent(character.id, "bronze_dagger", quantity=3)
        self.clock.advance(15)
        self.engine.poll_activity_intent(character.id, "crafting")
        self.engine.cancel_activity_intent(character.id, "crafting")

        stored = self.engine.characters.get(character.id)
        self.assertEqual(stored.inventory, {"bronze_dagger": 1, "copper_ore": 4, "wood": 2})
        self.assertEqual(stored.skills["smithing"], 15)

    def test_cancel_before_any_unit_refunds_everything(self) -> None:
        character = self._smith(copper_ore=4, wood=2)
        self.engine.start_crafting_intent(character.id, "bronze_dagger", quantity=2)
        self.clock.advance(3)
        self.engine.cancel_activity_intent(character.id, "crafting")

        self.assertEqual(self.engine.characters.get(character.id).inventory, {"copper_ore": 4, "wood": 2})

    def test_auto_repeat_restarts_until_ingredients_run_out(self) -> None:
        character = self._smith(herbs=4, berries=2)
        self.engine.start_crafting_intent(character.id, "health_potion", quantity=1, auto_repeat=True)

        self.clock.advance(6)
        first = self.engine.poll_activity_intent(character.id, "crafting")
        self.assertTrue(first.completed)
        self.assertIsNotNone(first.restarted_session_id)

        self.clock.advance(6)
        second = self.engine.poll_activity_intent(character.id, "crafting")
        self.assertTrue(second.completed)
        self.assertIsNone(second.restarted_session_id)

        stored = self.engine.characters.get(character.id)
        self.assertEqual(stored.inventory, {"health_potion": 4})
        history = self.engine.activity_history_intent(character.id, "crafting")
        self.assertEqual([row["status"] for row in history], ["completed", "completed"])

    def test_restarted_batch_starts_at_the_previous_completion(self) -> None:
        character = self._smith(herbs=4, berries=2)
        self.engine.start_crafting_intent(character.id, "health_potion", quantity=1, auto_repeat=True)

        self.clock.advance(9)
        self.engine.poll_activity_intent(character.id, "crafting")
        restarted = self.engine.crafting.current(character.id)

        self.assertEqual(restarted.started_at, T0 + timedelta(seconds=6))

    def test_start_validation(self) -> None:
        character = self._smith(copper_ore=1, wood=1, leather=3)
        cases = {
            "unknown recipe": ("mithril_crown", 1),
            "missing ingredients": ("bronze_dagger", 1),
            "zero quantity": ("bronze_dagger", 0),
            "skill too low": ("leather_armor", 1),
        }
        for label, (recipe_id, quantity) in cases.items():
            with self.subTest(label):
                with self.assertRaises(ValidationError):
                    self.engine.start_crafting_intent(character.id, recipe_id, quantity=quantity)
        self.assertEqual(self.engine.characters.get(character.id).inventory, {"copper_ore": 1, "wood": 1, "leather": 3})

    def test_one_batch_at_a_time(self) -> None:
        character = self._smith(copper_ore=4, wood=2)
        self.engine.start_crafting_intent(character.id, "bronze_dagger")
        with self.assertRaises(ConflictError):
            self.engine.start_crafting_intent(character.id, "bronze_dagger")
        self.assertEqual(self.engine.characters.get(character.id).inventory, {"copper_ore": 2, "wood": 1})

    def test_crafting_has_no_events(self) -> None:
        character = self._smith(copper_ore=2, wood=1)
        self.engine.start_crafting_intent(character.id, "bronze_dagger")
        with self.assertRaises(ValidationError):
            self.engine.resolve_activity_event_intent(character.id, "crafting", "engage")


if __name__ == "__main__":
    unittest.main()
