import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from idlerpg.domain.services.risk_model import (
    RISK_MAX_PERCENT,
    RISK_MIN_PERCENT,
    assess_risk,
    is_risk_bearing,
    type_modifier,
)


class RiskModelTests(unittest.TestCase):
    def test_overlevelled_character_gets_the_floor(self) -> None:
        assessment = assess_risk(character_level=10, zone_danger_level=5, activity_type="standard")
        self.assertEqual(assessment.failure_probability, RISK_MIN_PERCENT)
        self.assertEqual(assessment.level_gap, -5)
        self.assertEqual(assessment.band, "low")

    def test_gap_and_type_modifier_scale_risk(self) -> None:
        self.assertEqual(assess_risk(1, 12, "deep").failure_probability, 33.0)
        self.assertEqual(assess_risk(1, 12, "deep").band, "high")
        self.assertEqual(assess_risk(1, 12, "scout").failure_probability, 11.0)
        self.assertEqual(assess_risk(1, 12, "standard").band, "moderate")

    def test_risk_is_capped(self) -> None:
        assessment = assess_risk(1, 35, "legendary")
        self.assertEqual(assessment.failure_probability, RISK_MAX_PERCENT)
        self.assertEqual(assessment.band, "extreme")
        self.assertAlmostEqual(assessment.failure_chance, 0.6)

    def test_probability_always_within_bounds(self) -> None:
        for level in (1, 5, 20, 60):
            for danger in (0, 1, 10, 35, 100):
                for kind in ("scout", "standard", "deep", "legendary", None):
                    probability = assess_risk(level, danger, kind).failure_probability
                    self.assertGreaterEqual(probability, RISK_MIN_PERCENT)
                    self.assertLessEqual(probability, RISK_MAX_PERCENT)

    def test_open_exploration_is_not_risk_bearing(self) -> None:
        self.assertFalse(is_risk_bearing(None))
        self.assertFalse(is_risk_bearing(""))
        self.assertTrue(is_risk_bearing("Deep"))
        self.assertEqual(type_modifier("unknown"), 1.0)


if __name__ == "__main__":
    unittest.main()
