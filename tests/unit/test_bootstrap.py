import sys
from pathlib import Path
import os
import unittest
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from sqlalchemy.exc import OperationalError

from idlerpg import bootstrap
from idlerpg.application.services.combat_service import DefeatPenalty
from idlerpg.bootstrap import EngineSettings, build_inmemory_engine, create_activity_engine
from idlerpg.domain.events import ActivityFinalized


class EngineSettingsTests(unittest.TestCase):
    def test_defaults_without_environment(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = EngineSettings.from_env()

        self.assertIsNone(settings.database_url)
        self.assertIsNone(settings.rng_seed)
        self.assertEqual(settings.stale_retry_limit, 8)
        self.assertEqual(settings.defeat_penalty, DefeatPenalty.RESTORE_HALF)
        self.assertEqual(settings.exploration_seconds_per_percent, 15)
        self.assertTrue(settings.auto_migrate)

    def test_environment_overrides(self) -> None:
        env = {
            "RPG_DATABASE_URL": "sqlite:///idle.db",
            "RPG_RNG_SEED": "42",
            "RPG_STALE_RETRY_LIMIT": "3",
            "RPG_DEFEAT_PENALTY": "Permadeath",
            "RPG_EXPLORATION_SECONDS_PER_PERCENT": "1",
            "RPG_AUTO_MIGRATE": "off",
            "RPG_LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = EngineSettings.from_env()

        self.assertEqual(settings.database_url, "sqlite:///idle.db")
        self.assertEqual(settings.rng_seed, 42)
        self.assertEqual(settings.stale_retry_limit, 3)
        self.assertEqual(settings.defeat_penalty, DefeatPenalty.PERMADEATH)
        self.assertEqual(settings.exploration_seconds_per_percent, 1)
        self.assertFalse(settings.auto_migrate)
        self.assertEqual(settings.log_level, "DEBUG")

    def test_invalid_values_name_the_variable(self) -> None:
        for name, value in (("RPG_RNG_SEED", "lucky"), ("RPG_DEFEAT_PENALTY", "exile")):
            with self.subTest(name=name):
                with mock.patch.dict(os.environ, {name: value}, clear=True):
                    with self.assertRaisesRegex(ValueError, name):
                        EngineSettings.from_env()


class EngineAssemblyTests(unittest.TestCase):
    def test_inmemory_engine_shares_one_store_across_controllers(self) -> None:
        engine = build_inmemory_engine(EngineSettings(rng_seed=1, exploration_seconds_per_percent=1))
        character = engine.create_character("Juno")
        engine.start_travel_intent(character.id, "whispering_forest")

        self.assertIsNone(engine.characters.get(character.id).zone_id)
        self.assertEqual(engine.exploration.assess(character.id, "greenwood_village").duration_seconds, 100)

    def test_audit_handlers_log_finalized_activities(self) -> None:
        engine = build_inmemory_engine()
        with self.assertLogs("idlerpg.audit", level="INFO") as logs:
            engine.event_bus.publish(
                ActivityFinalized(
                    character_id=1, session_id=1, kind="travel", status="completed", progress=100, gold=0, experience=0
                )
            )
        self.assertIn("Activity finalized", logs.output[0])

    def test_without_database_url_the_engine_is_inmemory(self) -> None:
        with mock.patch.object(bootstrap, "build_sql_engine") as sql_builder:
            engine = create_activity_engine(EngineSettings())
        sql_builder.assert_not_called()
        self.assertIsNotNone(engine.create_character("Kai").id)

    def test_unreachable_local_mysql_falls_back_to_inmemory(self) -> None:
        settings = EngineSettings(database_url="mysql+mysqlconnector://root@127.0.0.1:3307/idle")
        with mock.patch.object(bootstrap, "_looks_like_local_mysql_unreachable", return_value=True), mock.patch.object(
            bootstrap, "build_sql_engine"
        ) as sql_builder, self.assertLogs("idlerpg.bootstrap", level="WARNING"):
            create_activity_engine(settings)
        sql_builder.assert_not_called()

    def test_sql_errors_fall_back_to_inmemory(self) -> None:
        settings = EngineSettings(database_url="postgresql://db.example/idle")
        failure = OperationalError("connect", {}, Exception("refused"))
        with mock.patch.object(bootstrap, "build_sql_engine", side_effect=failure), self.assertLogs(
            "idlerpg.bootstrap", level="WARNING"
        ) as logs:
            engine = create_activity_engine(settings)
        self.assertIn("falling back to in-memory", logs.output[0])
        self.assertIsNotNone(engine.create_character("Kai").id)

    def test_sqlite_url_builds_a_working_sql_engine(self) -> None:
        engine = create_activity_engine(EngineSettings(database_url="sqlite:///:memory:", rng_seed=2))
        character = engine.create_character("Lio")
        engine.start_travel_intent(character.id, "whispering_forest")

        self.assertEqual(engine.travel.current(character.id).config["destination_zone_id"], "whispering_forest")
        self.assertEqual(type(engine.characters).__name__, "SqlCharacterRepository")


if __name__ == "__main__":
    unittest.main()
