from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from idlerpg.application.dtos import EventResolutionView, RiskView
from idlerpg.application.services import balance_tables as bt
from idlerpg.application.services.activity_service import ActivityService, PreparedStart
from idlerpg.application.services.milestone_roller import RollContext
from idlerpg.application.services.seed_policy import derive_rng
from idlerpg.domain.errors import ValidationError
from idlerpg.domain.models.activity import ActivityKind, ActivitySession, ActivityStatus, RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.world import ChoiceOutcome, Zone
from idlerpg.domain.services.risk_model import assess_risk, is_risk_bearing


FAILURE_REASONS = (
    "Your party was ambushed and forced to retreat.",
    "A sudden storm scattered your supplies.",
    "You lost your way and had to turn back.",
    "Hostile creatures drove you out of the area.",
    "An injury forced an early return to camp.",
)


def combine_supply_effects(supplies) -> Dict[str, float]:
    effects: Dict[str, float] = {}
    for supply in supplies:
        for name, value in supply.effects.items():
            effects[name] = effects.get(name, 0.0) + float(value)
    return effects


class ExplorationService(ActivityService):
    """Open-ended exploration and typed expeditions of the character's zone."""

    kind = ActivityKind.EXPLORATION

    def __init__(self, *args, seconds_per_percent: int = bt.EXPLORATION_SECONDS_PER_PERCENT, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._seconds_per_percent = int(seconds_per_percent)

    def assess(self, character_id: int, zone_id: str, expedition_type: Optional[str] = None) -> RiskView:
        character = self._require_character(character_id)
        zone = self._require_zone(zone_id)
        expedition = self._normalize_type(expedition_type)
        assessment = assess_risk(character.level, zone.danger_level, expedition)
        return RiskView(
            zone_id=zone.id,
            expedition_type=expedition,
            risk_bearing=is_risk_bearing(expedition),
            failure_probability=assessment.failure_probability,
            band=assessment.band,
            description=assessment.description,
            level_gap=assessment.level_gap,
            type_modifier=assessment.type_modifier,
            duration_seconds=bt.exploration_duration_seconds(expedition, self._seconds_per_percent),
        )

    def _prepare(self, character: Character, config: Mapping[str, Any], rng_seed: int) -> PreparedStart:
        zone = self._require_zone(str(config.get("zone_id") or character.zone_id or ""))
        if character.zone_id != zone.id:
            raise ValidationError(f"Character {character.id} must be in {zone.name} to explore it")
        if character.level < zone.required_level:
            raise ValidationError(f"{zone.name} requires level {zone.required_level} (character is {character.level})")
        expedition = self._normalize_type(config.get("expedition_type"))

        auto_stop_at = config.get("auto_stop_at")
        if auto_stop_at is not None:
            if expedition is not None:
                raise ValidationError("auto_stop_at only applies to open exploration")
            try:
                auto_stop_at = int(auto_stop_at)
            except (TypeError, ValueError) as exc:
                raise ValidationError("auto_stop_at must be an integer") from exc
            if not 1 <= auto_stop_at <= 100:
                raise ValidationError("auto_stop_at must be between 1 and 100")

        supply_keys = sorted({str(key) for key in config.get("supplies") or ()})
        supplies = []
        for key in supply_keys:
            supply = self._world.get_supply(key)
            if supply is None:
                raise ValidationError(f"Unknown supply: {key}")
            supplies.append(supply)
        consumed = {key: 1 for key in supply_keys}
        if not character.has_items(consumed):
            raise ValidationError("Character does not carry the requested supplies")
        effects = combine_supply_effects(supplies)

        base_duration = bt.exploration_duration_seconds(expedition, self._seconds_per_percent)
        duration = base_duration / (1 + max(0.0, effects.get("exploration_speed", 0.0)))

        prepared = PreparedStart(
            config={
                "zone_id": zone.id,
                "expedition_type": expedition,
                "supplies": supply_keys,
                "supply_effects": effects,
                "auto_stop_at": auto_stop_at,
                "duration_seconds": duration,
            },
        )
        if consumed:
            prepared.operations.append(
                self._characters.build_settlement_operation(int(character.id), consume_items=consumed)
            )
        if is_risk_bearing(expedition):
            self._roll_risk(prepared, character, zone, expedition, rng_seed)
        return prepared

    def _roll_risk(
        self,
        prepared: PreparedStart,
        character: Character,
        zone: Zone,
        expedition: str,
        rng_seed: int,
    ) -> None:
        assessment = assess_risk(character.level, zone.danger_level, expedition)
        rng = derive_rng("expedition.risk", {"seed": rng_seed, "zone": zone.id, "type": expedition})
        if rng.random() >= assessment.failure_chance:
            return
        table = bt.EXPEDITION_REWARD_TABLES[expedition]
        gold = int(bt.roll_between(rng, *table["gold"]) * bt.RISK_FAILURE_REWARD_FRACTION)
        experience = int(bt.roll_between(rng, *table["xp"]) * bt.RISK_FAILURE_REWARD_FRACTION)
        prepared.status = ActivityStatus.FAILED
        prepared.ledger = RewardLedger(gold=gold, experience=experience)
        prepared.failure_reason = rng.choice(FAILURE_REASONS)
        self._logger.info(
            "Expedition failed its risk roll",
            extra={
                "character_id": character.id,
                "zone_id": zone.id,
                "expedition_type": expedition,
                "failure_probability": assessment.failure_probability,
            },
        )

    def _roll_context(self, session: ActivitySession, character: Character, *, allow_event: bool) -> RollContext:
        zone_id = str(session.config["zone_id"])
        return RollContext(
            character=character,
            zone=self._world.get_zone(zone_id),
            landmarks=tuple(self._world.list_landmarks(zone_id)),
            events=tuple(self._world.list_events()),
            supply_effects=dict(session.config.get("supply_effects") or {}),
            allow_event=allow_event,
        )

    def _completion_point(self, session: ActivitySession) -> int:
        return int(session.config.get("auto_stop_at") or 100)

    def _resolve_choice(
        self,
        session: ActivitySession,
        character: Character,
        event: Mapping[str, Any],
        choice: str,
    ) -> EventResolutionView:
        event_key = str(event["key"])
        definition = self._world.get_event(event_key)
        if definition is None:
            raise ValidationError(f"Unknown exploration event: {event_key}")
        option = definition.choice(choice)
        if option is None:
            raise ValidationError(f"Event {event_key} has no choice {choice!r}")

        success = True
        skill_xp: Dict[str, int] = {}
        outcome = option.outcome
        if option.skill_check is not None:
            skill, difficulty = option.skill_check
            rng = derive_rng(
                "exploration.event.resolve",
                {"seed": session.rng_seed, "event": event_key, "progress": event.get("progress"), "choice": choice},
            )
            roll = rng.randint(1, 20) + character.skill_level(skill)
            success = roll >= int(difficulty)
            if success:
                skill_xp[str(skill).lower()] = bt.EVENT_SKILL_CHECK_XP
            else:
                outcome = option.failure or ChoiceOutcome(message="You fail and gain nothing.")

        return EventResolutionView(
            session_id=int(session.session_id),
            event_key=event_key,
            choice=choice,
            success=success,
            message=outcome.message,
            rewards=RewardLedger(
                gold=int(outcome.gold),
                experience=int(outcome.experience),
                items={str(item): int(qty) for item, qty in outcome.items.items()},
                skill_xp=skill_xp,
                health=int(outcome.health),
            ),
        )

    def _require_zone(self, zone_id: str) -> Zone:
        zone = self._world.get_zone(zone_id)
        if zone is None:
            raise ValidationError(f"Unknown zone: {zone_id!r}")
        return zone

    @staticmethod
    def _normalize_type(expedition_type: Any) -> Optional[str]:
        if expedition_type in (None, "", "open"):
            return None
        key = str(expedition_type).strip().lower()
        if key not in bt.EXPEDITION_DURATION_SECONDS:
            raise ValidationError(f"Unknown expedition type: {expedition_type}")
        return key
