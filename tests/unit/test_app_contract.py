import sys
from pathlib import Path
import inspect
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from idlerpg.application import dtos
from idlerpg.application.contract import (
    COMMAND_INTENTS,
    CONTRACT_DTO_TYPES,
    CONTRACT_VERSION,
    QUERY_INTENTS,
)
from idlerpg.application.services.engine_service import ActivityEngine
from idlerpg.bootstrap import build_inmemory_engine
from idlerpg.domain.errors import ValidationError


class ApplicationContractTests(unittest.TestCase):
    def test_contract_version_uses_semver(self) -> None:
        self.assertRegex(CONTRACT_VERSION, r"^\d+\.\d+\.\d+$")

    def test_engine_implements_declared_command_and_query_intents(self) -> None:
        for name in COMMAND_INTENTS + QUERY_INTENTS:
            self.assertTrue(callable(getattr(ActivityEngine, name, None)), f"Missing contract intent: {name}")

    def test_every_intent_takes_the_character_first(self) -> None:
        for name in COMMAND_INTENTS + QUERY_INTENTS:
            parameters = list(inspect.signature(getattr(ActivityEngine, name)).parameters)
            self.assertEqual(parameters[1], "character_id", name)

    def test_declared_dto_types_exist(self) -> None:
        for dto_name in CONTRACT_DTO_TYPES:
            self.assertTrue(hasattr(dtos, dto_name), f"Missing contract DTO: {dto_name}")
            self.assertIn(dto_name, dtos.__all__)

    def test_unknown_activity_kind_is_a_validation_error(self) -> None:
        engine = build_inmemory_engine()
        character = engine.create_character("Ivo")
        with self.assertRaises(ValidationError):
            engine.poll_activity_intent(character.id, "fishing")
        self.assertIs(engine.controller(" Travel "), engine.travel)

    def test_characters_start_in_a_known_zone(self) -> None:
        engine = build_inmemory_engine()
        with self.assertRaises(ValidationError):
            engine.create_character("Ivo", zone_id="atlantis")
        character = engine.create_character("Ivo", zone_id="whispering_forest")
        self.assertEqual(character.discoveries, ["whispering_forest"])


if __name__ == "__main__":
    unittest.main()
