import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from idlerpg.application.services import balance_tables as bt
from idlerpg.domain.models.progression import (
    level_for_experience,
    skill_level_for_experience,
    xp_required_for_level,
)


class RewardCurveTests(unittest.TestCase):
    def test_reward_chance_rises_linearly_inside_bounds(self) -> None:
        self.assertAlmostEqual(bt.reward_chance(1), 0.25)
        self.assertAlmostEqual(bt.reward_chance(100), 0.50)
        chances = [bt.reward_chance(point) for point in range(1, 101)]
        self.assertEqual(chances, sorted(chances))
        self.assertAlmostEqual(bt.reward_chance(-4), 0.25)
        self.assertAlmostEqual(bt.reward_chance(250), 0.50)

    def test_loot_brackets_cover_every_point(self) -> None:
        self.assertEqual(bt.loot_bracket(1), "early")
        self.assertEqual(bt.loot_bracket(25), "mid")
        self.assertEqual(bt.loot_bracket(74), "late")
        self.assertEqual(bt.loot_bracket(100), "end")
        for point in range(1, 101):
            self.assertIn(bt.loot_bracket(point), bt.EXPLORATION_LOOT_TABLES)

    def test_every_expedition_type_has_a_duration_and_table(self) -> None:
        self.assertEqual(set(bt.EXPEDITION_DURATION_SECONDS), set(bt.EXPEDITION_REWARD_TABLES))
        self.assertEqual(bt.exploration_duration_seconds(None), 1500)
        self.assertEqual(bt.exploration_duration_seconds(None, seconds_per_percent=1), 100)
        self.assertEqual(bt.exploration_duration_seconds("legendary"), 1800)


class TravelTimeTests(unittest.TestCase):
    def test_level_weather_and_connection_modifiers(self) -> None:
        self.assertEqual(bt.calculate_travel_seconds(60, character_level=1, connection_type="road"), 59)
        self.assertEqual(bt.calculate_travel_seconds(60, character_level=1, connection_type="road", weather="fog"), 71)
        self.assertEqual(bt.calculate_travel_seconds(900, character_level=1, connection_type="portal"), 89)

    def test_level_reduction_is_capped(self) -> None:
        self.assertEqual(bt.calculate_travel_seconds(60, character_level=200, connection_type="road"), 48)

    def test_minimum_duration(self) -> None:
        self.assertEqual(bt.calculate_travel_seconds(10, character_level=1, connection_type="teleport"), bt.TRAVEL_MIN_SECONDS)


class ProgressionCurveTests(unittest.TestCase):
    def test_level_thresholds_match_the_xp_curve(self) -> None:
        for level in range(1, 30):
            threshold = xp_required_for_level(level)
            self.assertEqual(level_for_experience(threshold), level)
            if threshold:
                self.assertEqual(level_for_experience(threshold - 1), level - 1)

    def test_skill_levels_are_capped(self) -> None:
        self.assertEqual(skill_level_for_experience(0), 1)
        self.assertEqual(skill_level_for_experience(50), 2)
        self.assertEqual(skill_level_for_experience(10**9), 99)


if __name__ == "__main__":
    unittest.main()
