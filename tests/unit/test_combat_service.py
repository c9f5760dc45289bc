import sys
from pathlib import Path
import dataclasses
import random
import unittest
from datetime import datetime, timezone

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from idlerpg.application.services.combat_service import CombatResolver, CombatService, DefeatPenalty
from idlerpg.bootstrap import EngineSettings, build_inmemory_engine
from idlerpg.domain.errors import ConflictError, NoActiveCombatError, TurnInProgressError, ValidationError
from idlerpg.domain.events import CombatEnded
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.combat import CombatInstance, CombatStatus, CombatStyle
from idlerpg.domain.models.world import Enemy
from idlerpg.infrastructure.db.inmemory.repos import (
    InMemoryCharacterRepository,
    InMemoryCombatRepository,
    InMemoryWorldRepository,
)
from idlerpg.infrastructure.inmemory.atomic_persistence import InMemoryUnitOfWork
from idlerpg.infrastructure.inmemory.content import default_catalog


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

OGRE = Enemy("ogre", "Ogre", level=1, health=1000, attack=500, defense=0, experience_reward=0)


class ReentrantCombats(InMemoryCombatRepository):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.on_get = None

    def get(self, character_id):
        hook, self.on_get = self.on_get, None
        if hook is not None:
            hook()
        return super().get(character_id)


def _combat_service(penalty=DefeatPenalty.RESTORE_HALF, combats_cls=InMemoryCombatRepository):
    unit = InMemoryUnitOfWork()
    characters = InMemoryCharacterRepository(unit=unit)
    combats = combats_cls(unit, clock=lambda: T0)
    world = InMemoryWorldRepository(dataclasses.replace(default_catalog(), enemies=default_catalog().enemies + (OGRE,)))
    service = CombatService(combats, characters, world, defeat_penalty=penalty, clock=lambda: T0, rng_seed=1)
    character = characters.create(Character(id=None, name="Finn", zone_id="greenwood_village"))
    return service, combats, characters, character.id


class CombatResolverTests(unittest.TestCase):
    def test_fight_ends_within_the_damage_bounds(self) -> None:
        enemy = Enemy("dummy", "Dummy", level=1, health=50, attack=5, defense=5, experience_reward=0)
        character = Character(id=1, name="Gale", attack=20, defense=5)
        for seed in range(25):
            with self.subTest(seed=seed):
                rng = random.Random(seed)
                instance = CombatInstance(
                    character_id=1,
                    enemy_id="dummy",
                    player_current_health=100,
                    enemy_current_health=50,
                    player_starting_health=100,
                    enemy_starting_health=50,
                    started_at=T0,
                )
                resolver = CombatResolver()
                turns = 0
                while not instance.is_over:
                    resolver.execute_turn(instance, character, enemy, CombatStyle.MELEE, rng)
                    turns += 1
                self.assertEqual(instance.status, CombatStatus.WON)
                self.assertIn(turns, (2, 3, 4))
                self.assertEqual(instance.enemy_current_health, 0)

    def test_finished_combat_rejects_more_turns(self) -> None:
        enemy = Enemy("dummy", "Dummy", level=1, health=1, attack=1, defense=0, experience_reward=0)
        instance = CombatInstance(1, "dummy", 100, 1, 100, 1, T0)
        resolver = CombatResolver()
        resolver.execute_turn(instance, Character(id=1, name="Gale"), enemy, CombatStyle.MAGIC, random.Random(0))
        with self.assertRaises(ValidationError):
            resolver.execute_turn(instance, Character(id=1, name="Gale"), enemy, CombatStyle.MAGIC, random.Random(0))
        self.assertIn("magic", instance.skill_xp)


class CombatServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_inmemory_engine(EngineSettings(rng_seed=5))
        self.character = self.engine.create_character("Finn")

    def test_auto_fight_against_a_slime_is_won_and_settled(self) -> None:
        ended = []
        self.engine.event_bus.subscribe(CombatEnded, ended.append)

        result = self.engine.auto_fight_intent(self.character.id)

        self.assertTrue(result.victory)
        self.assertEqual(result.experience, 10)
        self.assertTrue(1 <= result.gold <= 5)
        self.assertEqual(result.combat_skill_xp["slayer"], 12)
        stored = self.engine.characters.get(self.character.id)
        self.assertEqual(stored.xp, 10)
        self.assertEqual(stored.gold, result.gold)
        self.assertEqual(stored.skills["slayer"], 12)
        self.assertEqual([event.victory for event in ended], [True])

        history = self.engine.combat_history_intent(self.character.id)
        self.assertEqual(history[0]["enemy_id"], "slime")
        self.assertTrue(history[0]["victory"])

    def test_turn_by_turn_fight(self) -> None:
        self.engine.start_combat_intent(self.character.id, "slime")
        with self.assertRaises(ConflictError):
            self.engine.start_combat_intent(self.character.id, "slime")
        with self.assertRaises(ValidationError):
            self.engine.end_combat_intent(self.character.id, victory=True)

        view = self.engine.execute_combat_turn_intent(self.character.id, "ranged")
        while not view.is_over:
            view = self.engine.execute_combat_turn_intent(self.character.id, "ranged")
        self.assertTrue(view.victory)
        with self.assertRaises(ValidationError):
            self.engine.execute_combat_turn_intent(self.character.id)

        result = self.engine.end_combat_intent(self.character.id, victory=True)
        self.assertIn("ranged", result.combat_skill_xp)
        with self.assertRaises(NoActiveCombatError):
            self.engine.end_combat_intent(self.character.id, victory=True)

    def test_start_validation(self) -> None:
        with self.assertRaises(ValidationError):
            self.engine.start_combat_intent(self.character.id, "kraken")
        with self.assertRaises(ValidationError):
            self.engine.start_combat_intent(self.character.id, "wolf")
        self.engine.start_combat_intent(self.character.id, "slime")
        with self.assertRaises(ValidationError):
            self.engine.execute_combat_turn_intent(self.character.id, "kicking")

    def test_abandon_is_a_loss_and_idempotent(self) -> None:
        self.engine.start_combat_intent(self.character.id, "slime")
        result = self.engine.abandon_combat_intent(self.character.id)

        self.assertFalse(result.victory)
        self.assertEqual(result.penalty, "restore_half")
        self.assertIsNone(self.engine.abandon_combat_intent(self.character.id))

    def test_abandon_leaves_a_won_fight_for_end_to_settle(self) -> None:
        self.engine.start_combat_intent(self.character.id, "slime")
        view = self.engine.execute_combat_turn_intent(self.character.id)
        while not view.is_over:
            view = self.engine.execute_combat_turn_intent(self.character.id)
        self.assertTrue(view.victory)

        self.assertIsNone(self.engine.abandon_combat_intent(self.character.id))
        result = self.engine.end_combat_intent(self.character.id, victory=True)
        self.assertTrue(result.victory)
        self.assertEqual(self.engine.characters.get(self.character.id).xp, 10)


class DefeatPenaltyTests(unittest.TestCase):
    def test_restore_half(self) -> None:
        service, _, characters, character_id = _combat_service(DefeatPenalty.RESTORE_HALF)
        service.start(character_id, "ogre")
        result = service.auto_fight(character_id)

        self.assertFalse(result.victory)
        stored = characters.get(character_id)
        self.assertEqual(stored.health, 50)
        self.assertTrue(stored.alive)

    def test_permadeath(self) -> None:
        service, _, characters, character_id = _combat_service(DefeatPenalty.PERMADEATH)
        service.start(character_id, "ogre")
        service.auto_fight(character_id)

        stored = characters.get(character_id)
        self.assertFalse(stored.alive)
        self.assertEqual(stored.health, 0)
        with self.assertRaises(ValidationError):
            service.start(character_id, "slime")

    def test_no_penalty_keeps_the_battle_health(self) -> None:
        service, _, characters, character_id = _combat_service(DefeatPenalty.NONE)
        service.start(character_id, "ogre")
        result = service.auto_fight(character_id)

        self.assertEqual(result.penalty, "none")
        self.assertEqual(characters.get(character_id).health, 0)
        self.assertTrue(characters.get(character_id).alive)


class SingleFlightTests(unittest.TestCase):
    def test_overlapping_turn_is_rejected(self) -> None:
        service, combats, _, character_id = _combat_service(combats_cls=ReentrantCombats)
        service.start(character_id, "ogre")
        rejected = []

        def overlapping_turn() -> None:
            try:
                service.turn(character_id)
            except TurnInProgressError as exc:
                rejected.append(exc)

        combats.on_get = overlapping_turn
        view = service.turn(character_id)

        self.assertEqual(len(rejected), 1)
        player_swings = [a for a in view.combat["combat_log"] if a["actor"] == "player" and a["action"] != "defeat"]
        self.assertEqual(len(player_swings), 1)

    def test_store_rejects_a_turn_saved_twice(self) -> None:
        service, combats, _, character_id = _combat_service()
        service.start(character_id, "ogre")
        instance = combats.get(character_id)
        instance.enemy_current_health -= 5
        combats.save_turn(instance, expected_turn=0)

        stale = combats.get(character_id)
        with self.assertRaises(TurnInProgressError):
            combats.save_turn(stale, expected_turn=3)


if __name__ == "__main__":
    unittest.main()
