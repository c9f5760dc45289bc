import sys
from pathlib import Path
import unittest
from datetime import datetime, timedelta, timezone

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from idlerpg.domain.errors import EngineInvariantError
from idlerpg.domain.models.activity import ActivityKind, ActivitySession
from idlerpg.domain.services import progress as progress_calc


T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _session(kind=ActivityKind.TRAVEL, **config) -> ActivitySession:
    return ActivitySession(session_id=1, character_id=1, kind=kind, started_at=T0, config=config)


class ProgressTests(unittest.TestCase):
    def test_progress_is_linear_in_elapsed_time(self) -> None:
        session = _session(duration_seconds=100)
        self.assertEqual(progress_calc.progress(session, T0 + timedelta(seconds=50)), 50.0)
        self.assertEqual(progress_calc.progress(session, T0 + timedelta(seconds=25)), 25.0)

    def test_progress_clamps_to_bounds(self) -> None:
        session = _session(duration_seconds=100)
        self.assertEqual(progress_calc.progress(session, T0 - timedelta(seconds=30)), 0.0)
        self.assertEqual(progress_calc.progress(session, T0 + timedelta(hours=3)), 100.0)

    def test_same_instant_gives_same_progress_for_every_caller(self) -> None:
        session = _session(duration_seconds=1500)
        now = T0 + timedelta(seconds=711, milliseconds=250)
        first = progress_calc.progress(session, now)
        second = progress_calc.progress(_session(duration_seconds=1500), now)
        self.assertEqual(first, second)

    def test_marker_truncates_to_whole_points(self) -> None:
        session = _session(duration_seconds=100)
        self.assertEqual(progress_calc.progress_marker(session, T0 + timedelta(seconds=47, milliseconds=900)), 47)

    def test_crafting_duration_scales_with_quantity(self) -> None:
        session = _session(ActivityKind.CRAFTING, crafting_seconds=10, quantity_goal=3)
        self.assertEqual(progress_calc.total_duration_ms(session), 30_000)
        self.assertAlmostEqual(progress_calc.progress(session, T0 + timedelta(seconds=10)), 100 / 3)

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        session = _session(duration_seconds=100)
        naive_now = (T0 + timedelta(seconds=10)).replace(tzinfo=None)
        self.assertEqual(progress_calc.elapsed_seconds(session, naive_now), 10)

    def test_missing_or_non_positive_duration_is_an_invariant_error(self) -> None:
        with self.assertRaises(EngineInvariantError):
            progress_calc.total_duration_ms(_session())
        with self.assertRaises(EngineInvariantError):
            progress_calc.total_duration_ms(_session(duration_seconds=0))
        with self.assertRaises(EngineInvariantError):
            progress_calc.total_duration_ms(_session(ActivityKind.CRAFTING, crafting_seconds=5, quantity_goal=0))

    def test_marker_outside_bounds_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ActivitySession(
                session_id=1,
                character_id=1,
                kind=ActivityKind.EXPLORATION,
                started_at=T0,
                config={"duration_seconds": 10},
                last_processed_progress=101,
            )


if __name__ == "__main__":
    unittest.main()
