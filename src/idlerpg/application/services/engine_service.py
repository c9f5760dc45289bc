from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from idlerpg.application.dtos import (
    EventResolutionView,
    FinalizedLedger,
    PollView,
    RiskView,
    TurnView,
    session_summary,
)
from idlerpg.application.services.activity_service import ActivityService
from idlerpg.application.services.combat_service import CombatService
from idlerpg.application.services.crafting_service import CraftingService
from idlerpg.application.services.event_bus import EventBus
from idlerpg.application.services.exploration_service import ExplorationService
from idlerpg.application.services.travel_service import TravelService
from idlerpg.domain.errors import ValidationError
from idlerpg.domain.models.activity import ActivityKind, ActivitySession
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.combat import CombatInstance, CombatResult
from idlerpg.domain.repositories import CharacterRepository, WorldRepository


class ActivityEngine:
    """Single entry point an outer UI drives; one method per contract intent."""

    def __init__(
        self,
        *,
        travel: TravelService,
        exploration: ExplorationService,
        crafting: CraftingService,
        combat: CombatService,
        characters: CharacterRepository,
        world: WorldRepository,
        event_bus: EventBus,
    ) -> None:
        self.travel = travel
        self.exploration = exploration
        self.crafting = crafting
        self.combat = combat
        self.characters = characters
        self.world = world
        self.event_bus = event_bus

    def controller(self, kind: ActivityKind | str) -> ActivityService:
        try:
            activity = ActivityKind(str(getattr(kind, "value", kind)).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown activity kind: {kind}") from None
        return {
            ActivityKind.TRAVEL: self.travel,
            ActivityKind.EXPLORATION: self.exploration,
            ActivityKind.CRAFTING: self.crafting,
        }[activity]

    # commands

    def start_travel_intent(self, character_id: int, destination_zone_id: str, weather: str | None = None) -> ActivitySession:
        return self.travel.start(character_id, {"destination_zone_id": destination_zone_id, "weather": weather})

    def start_exploration_intent(
        self,
        character_id: int,
        zone_id: str | None = None,
        expedition_type: str | None = None,
        supplies: Sequence[str] = (),
        auto_stop_at: int | None = None,
    ) -> ActivitySession:
        return self.exploration.start(
            character_id,
            {
                "zone_id": zone_id,
                "expedition_type": expedition_type,
                "supplies": list(supplies),
                "auto_stop_at": auto_stop_at,
            },
        )

    def start_crafting_intent(
        self,
        character_id: int,
        recipe_id: str,
        quantity: int = 1,
        auto_repeat: bool = False,
    ) -> ActivitySession:
        return self.crafting.start(
            character_id,
            {"recipe_id": recipe_id, "quantity": quantity, "auto_repeat": auto_repeat},
        )

    def stop_activity_intent(self, character_id: int, kind: ActivityKind | str) -> FinalizedLedger:
        return self.controller(kind).stop(character_id)

    def cancel_activity_intent(self, character_id: int, kind: ActivityKind | str) -> None:
        self.controller(kind).cancel(character_id)

    def resolve_activity_event_intent(self, character_id: int, kind: ActivityKind | str, choice: str) -> EventResolutionView:
        return self.controller(kind).resolve_event(character_id, choice)

    def start_combat_intent(self, character_id: int, enemy_id: str) -> CombatInstance:
        return self.combat.start(character_id, enemy_id)

    def execute_combat_turn_intent(self, character_id: int, style: str = "melee") -> TurnView:
        return self.combat.turn(character_id, style)

    def end_combat_intent(self, character_id: int, victory: bool) -> CombatResult:
        return self.combat.end(character_id, victory)

    def abandon_combat_intent(self, character_id: int) -> Optional[CombatResult]:
        return self.combat.abandon(character_id)

    def auto_fight_intent(self, character_id: int, style: str = "melee", max_turns: int = 200) -> CombatResult:
        return self.combat.auto_fight(character_id, style, max_turns)

    # queries

    def poll_activity_intent(self, character_id: int, kind: ActivityKind | str) -> PollView:
        return self.controller(kind).poll(character_id)

    def assess_expedition_risk_intent(self, character_id: int, zone_id: str, expedition_type: str | None) -> RiskView:
        return self.exploration.assess(character_id, zone_id, expedition_type)

    def combat_history_intent(self, character_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        return self.combat.history(character_id, limit)

    def activity_history_intent(self, character_id: int, kind: ActivityKind | str | None = None) -> List[Dict[str, Any]]:
        controllers = [self.controller(kind)] if kind is not None else [self.travel, self.exploration, self.crafting]
        sessions = [session for controller in controllers for session in controller.history(character_id)]
        return [session_summary(session) for session in sorted(sessions, key=lambda s: int(s.session_id))]

    def create_character(self, name: str, *, zone_id: str = "greenwood_village", **stats: Any) -> Character:
        if self.world.get_zone(zone_id) is None:
            raise ValidationError(f"Unknown zone: {zone_id}")
        return self.characters.create(Character(id=None, name=name, zone_id=zone_id, discoveries=[zone_id], **stats))
