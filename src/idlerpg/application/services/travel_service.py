from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from idlerpg.application.dtos import EventResolutionView
from idlerpg.application.services import balance_tables as bt
from idlerpg.application.services.activity_service import ActivityService, PreparedStart, Settlement
from idlerpg.application.services.seed_policy import derive_rng
from idlerpg.domain.errors import ValidationError
from idlerpg.domain.models.activity import ActivityKind, ActivitySession, RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.world import ConnectionType, Zone, ZoneConnection


ENCOUNTER_KEY = "travel_encounter"
ENGAGE = "engage"
FLEE = "flee"


def encounter_chance(destination: Zone, connection_type: ConnectionType) -> float:
    if connection_type in (ConnectionType.PORTAL, ConnectionType.TELEPORT):
        return 0.0
    chance = bt.TRAVEL_ENCOUNTER_BASE_CHANCE + int(destination.danger_level) / 200
    if connection_type == ConnectionType.SECRET_PASSAGE:
        chance += 0.15
    elif connection_type == ConnectionType.PATH:
        chance -= 0.10
    return max(0.0, min(1.0, chance))


class TravelService(ActivityService):
    """Moves a character between connected zones over real time.

    The character leaves its origin zone when travel starts and is placed in
    the destination on arrival, or back at the origin when the trip is
    cancelled or stopped early.
    """

    kind = ActivityKind.TRAVEL

    def _prepare(self, character: Character, config: Mapping[str, Any], rng_seed: int) -> PreparedStart:
        destination_id = str(config.get("destination_zone_id") or "").strip()
        if not destination_id:
            raise ValidationError("destination_zone_id is required")
        origin_id = character.zone_id
        if origin_id is None:
            raise ValidationError(f"Character {character.id} is not standing in a zone")
        if origin_id == destination_id:
            raise ValidationError(f"Character {character.id} is already in {destination_id}")

        destination = self._world.get_zone(destination_id)
        if destination is None:
            raise ValidationError(f"Unknown zone: {destination_id}")
        connection = self._world.get_connection(origin_id, destination_id)
        if connection is None:
            raise ValidationError(f"No route from {origin_id} to {destination_id}")
        if character.level < destination.required_level:
            raise ValidationError(
                f"{destination.name} requires level {destination.required_level} (character is {character.level})"
            )

        weather = config.get("weather")
        duration = bt.calculate_travel_seconds(
            connection.base_travel_seconds,
            character_level=character.level,
            connection_type=ConnectionType(connection.connection_type).value,
            weather=weather,
        )
        encounter = self._roll_encounter(character, destination, connection, rng_seed)
        return PreparedStart(
            config={
                "origin_zone_id": origin_id,
                "destination_zone_id": destination_id,
                "zone_id": destination_id,
                "connection_type": ConnectionType(connection.connection_type).value,
                "weather": weather,
                "duration_seconds": duration,
                "encounter": encounter,
            },
            operations=[self._characters.build_settlement_operation(int(character.id), zone_id=None)],
        )

    def _roll_encounter(
        self,
        character: Character,
        destination: Zone,
        connection: ZoneConnection,
        rng_seed: int,
    ) -> Optional[Dict[str, Any]]:
        rng = derive_rng("travel.encounter", {"seed": rng_seed, "destination": destination.id})
        if rng.random() >= encounter_chance(destination, ConnectionType(connection.connection_type)):
            return None

        roll = rng.random()
        encounter: Dict[str, Any] = {"key": ENCOUNTER_KEY, "progress": bt.TRAVEL_ENCOUNTER_PROGRESS}
        if roll < 0.40:
            enemies = sorted(
                (enemy for enemy in self._world.list_enemies() if enemy.required_player_level <= character.level),
                key=lambda enemy: (abs(enemy.level - destination.danger_level), enemy.id),
            )
            if not enemies:
                return None
            enemy = enemies[0]
            encounter.update(
                type="combat",
                title=f"{enemy.name} blocks the road",
                description=f"A {enemy.name} (level {enemy.level}) ambushes you on the way to {destination.name}.",
                enemy_id=enemy.id,
            )
        elif roll < 0.65:
            encounter.update(
                type="loot",
                title="Abandoned supplies",
                description="You spot a traveller's pack half hidden by the roadside.",
                gold=int(rng.random() * character.level * 10) + 10,
            )
        elif roll < 0.85:
            encounter.update(
                type="merchant",
                title="Wandering merchant",
                description="A wandering merchant offers wares from distant lands.",
            )
        else:
            encounter.update(
                type="lore",
                title="Roadside curiosity",
                description=rng.choice(bt.TRAVEL_LORE_MESSAGES),
            )
        encounter["choices"] = [
            {"key": ENGAGE, "text": "Investigate" if encounter["type"] != "combat" else "Fight"},
            {"key": FLEE, "text": "Keep moving"},
        ]
        return encounter

    def _completion_settlement(self, session: ActivitySession) -> Settlement:
        return Settlement(zone_id=str(session.config["destination_zone_id"]))

    def _early_exit_settlement(self, session: ActivitySession, marker: int) -> Settlement:
        return Settlement(zone_id=str(session.config["origin_zone_id"]))

    def _resolve_choice(
        self,
        session: ActivitySession,
        character: Character,
        event: Mapping[str, Any],
        choice: str,
    ) -> EventResolutionView:
        if choice not in (ENGAGE, FLEE):
            raise ValidationError(f"Unknown encounter choice: {choice}")
        encounter_type = str(event.get("type", ""))
        view = EventResolutionView(
            session_id=int(session.session_id),
            event_key=str(event["key"]),
            choice=choice,
            success=True,
            message="You keep your head down and move on.",
        )
        if choice == FLEE:
            return view

        if encounter_type == "loot":
            gold = int(event.get("gold", 0))
            view.rewards = RewardLedger(gold=gold)
            view.message = f"You found {gold} gold in the abandoned pack."
        elif encounter_type == "combat":
            view.enemy_id = str(event["enemy_id"])
            view.message = "You stand your ground and prepare to fight."
        elif encounter_type == "merchant":
            view.message = "The merchant shows you their wares before going on their way."
        else:
            view.message = str(event.get("description", ""))
        return view
