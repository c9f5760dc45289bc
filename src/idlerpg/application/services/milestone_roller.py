"""Converts a crossed progress range into milestone outcomes.

Every whole percentage point gets its own RNG derived from the session seed
and the point itself, so rolling ``(0, 47]`` in one call or as ``(0, 20]``
then ``(20, 47]`` produces identical rewards. Event triggers are the one
exception: they are rolled once per advancing call, seeded by the target
point.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from idlerpg.application.services import balance_tables as bt
from idlerpg.application.services.seed_policy import milestone_rng
from idlerpg.domain.models.activity import ActivityKind, ActivitySession, RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.milestone import MilestoneOutcome, OutcomeKind
from idlerpg.domain.models.world import ExplorationEvent, Landmark, Zone


REWARD_NAMESPACE = "exploration.reward"
DISCOVERY_NAMESPACE = "exploration.discovery"
EVENT_NAMESPACE = "exploration.event"
EXPEDITION_NAMESPACE = "expedition.complete"


@dataclass(frozen=True)
class RollContext:
    character: Character
    zone: Optional[Zone] = None
    landmarks: Sequence[Landmark] = ()
    events: Sequence[ExplorationEvent] = ()
    supply_effects: Mapping[str, float] = field(default_factory=dict)
    allow_event: bool = True


def fold_outcomes(outcomes: Sequence[MilestoneOutcome]) -> RewardLedger:
    ledger = RewardLedger()
    for outcome in outcomes:
        ledger = ledger.merged(outcome.ledger)
    return ledger


def roll_outcomes(
    session: ActivitySession,
    from_progress: int,
    to_progress: int,
    context: RollContext,
) -> List[MilestoneOutcome]:
    start = max(0, int(from_progress))
    end = min(100, int(to_progress))
    if end <= start:
        return []
    if session.kind == ActivityKind.EXPLORATION:
        return _roll_exploration(session, start, end, context)
    if session.kind == ActivityKind.TRAVEL:
        return _roll_travel(session, start, end, context)
    if session.kind == ActivityKind.CRAFTING:
        return _roll_crafting(session, start, end)
    return []


def _roll_exploration(session: ActivitySession, start: int, end: int, context: RollContext) -> List[MilestoneOutcome]:
    outcomes: List[MilestoneOutcome] = []
    expedition_type = session.config.get("expedition_type")
    multiplier = bt.EXPEDITION_REWARD_MULTIPLIERS.get(str(expedition_type), 1.0)
    tier = context.zone.tier if context.zone is not None else 1
    discovered = set(context.character.discoveries) | set(session.ledger.discoveries)

    for point in range(start + 1, end + 1):
        rng = milestone_rng(REWARD_NAMESPACE, session_seed=session.rng_seed, kind=session.kind.value, point=point)
        if rng.random() < bt.reward_chance(point):
            outcomes.append(_exploration_reward(rng, point, tier, multiplier))

        if point % bt.DISCOVERY_INTERVAL == 0:
            discovery = _roll_discovery(session, point, context, discovered)
            if discovery is not None:
                discovered.add(discovery.landmark_id)
                outcomes.append(discovery)

    if context.allow_event and session.active_event is None and end < 100:
        event = _roll_event(session, end, context)
        if event is not None:
            outcomes.append(event)

    if expedition_type and end == 100:
        outcomes.append(_expedition_completion(session, context.supply_effects))
    return outcomes


def _exploration_reward(rng, point: int, tier: int, multiplier: float) -> MilestoneOutcome:
    count = rng.randint(bt.REWARD_ITEMS_MIN, bt.REWARD_ITEMS_MAX)
    table = bt.EXPLORATION_LOOT_TABLES[bt.loot_bracket(point)]
    names = list(table)
    drawn = rng.choices(names, weights=[table[name] for name in names], k=count)
    items: Dict[str, int] = {}
    for item_id in drawn:
        items[item_id] = items.get(item_id, 0) + 1
    gold = int(bt.roll_between(rng, *bt.REWARD_GOLD_RANGE) * tier * multiplier)
    experience = int(bt.roll_between(rng, *bt.REWARD_XP_RANGE) * tier * multiplier)
    return MilestoneOutcome(
        kind=OutcomeKind.REWARD,
        progress=point,
        ledger=RewardLedger(gold=gold, experience=experience, items=items),
    )


def _roll_discovery(
    session: ActivitySession,
    point: int,
    context: RollContext,
    discovered: set,
) -> Optional[MilestoneOutcome]:
    rng = milestone_rng(DISCOVERY_NAMESPACE, session_seed=session.rng_seed, kind=session.kind.value, point=point)
    base = context.zone.discovery_chance if context.zone is not None else 0.0
    chance = min(1.0, base + float(context.supply_effects.get("discovery_chance", 0.0)))
    if rng.random() >= chance:
        return None
    candidates = sorted(
        (landmark for landmark in context.landmarks if landmark.hidden and landmark.id not in discovered),
        key=lambda landmark: landmark.id,
    )
    if not candidates:
        return None
    landmark = rng.choice(candidates)
    return MilestoneOutcome(
        kind=OutcomeKind.DISCOVERY,
        progress=point,
        ledger=RewardLedger(discoveries=[landmark.id]),
        landmark_id=landmark.id,
        label=landmark.name,
    )


def _roll_event(session: ActivitySession, point: int, context: RollContext) -> Optional[MilestoneOutcome]:
    if context.zone is None:
        return None
    eligible = sorted(
        (event for event in context.events if event.applies_to(context.zone, point)),
        key=lambda event: event.key,
    )
    if not eligible:
        return None
    rng = milestone_rng(EVENT_NAMESPACE, session_seed=session.rng_seed, kind=session.kind.value, point=point)
    for event in eligible:
        if rng.random() < event.trigger_chance:
            return MilestoneOutcome(
                kind=OutcomeKind.EVENT,
                progress=point,
                event=event_payload(event, point),
                label=event.title,
            )
    return None


def event_payload(event: ExplorationEvent, point: int) -> Dict[str, Any]:
    return {
        "key": event.key,
        "title": event.title,
        "description": event.description,
        "progress": int(point),
        "choices": [{"key": choice.key, "text": choice.text} for choice in event.choices],
    }


def _expedition_completion(session: ActivitySession, supply_effects: Mapping[str, float]) -> MilestoneOutcome:
    expedition_type = str(session.config["expedition_type"])
    table = bt.EXPEDITION_REWARD_TABLES[expedition_type]
    rng = milestone_rng(EXPEDITION_NAMESPACE, session_seed=session.rng_seed, kind=session.kind.value, point=100)
    gold = bt.roll_between(rng, *table["gold"])
    experience = bt.roll_between(rng, *table["xp"])
    gold = int(gold * (1 + float(supply_effects.get("gold_find", 0.0))))
    experience = int(experience * (1 + float(supply_effects.get("xp_bonus", 0.0))))

    items: Dict[str, int] = {}
    for item_id, chance in table["items"]:
        if rng.random() < chance:
            items[item_id] = items.get(item_id, 0) + 1
    for item_id, low, high in table["materials"]:
        items[item_id] = items.get(item_id, 0) + bt.roll_between(rng, low, high)

    return MilestoneOutcome(
        kind=OutcomeKind.REWARD,
        progress=100,
        ledger=RewardLedger(gold=gold, experience=experience, items=items),
        label=f"{expedition_type}_expedition_complete",
    )


def _roll_travel(session: ActivitySession, start: int, end: int, context: RollContext) -> List[MilestoneOutcome]:
    outcomes: List[MilestoneOutcome] = []
    encounter = session.config.get("encounter")
    if encounter and start < bt.TRAVEL_ENCOUNTER_PROGRESS <= end:
        outcomes.append(
            MilestoneOutcome(
                kind=OutcomeKind.EVENT,
                progress=bt.TRAVEL_ENCOUNTER_PROGRESS,
                event=dict(encounter),
                label=str(encounter.get("title", "")),
            )
        )
    if end == 100:
        destination = str(session.config["destination_zone_id"])
        discoveries = [] if context.character.has_discovered(destination) else [destination]
        outcomes.append(
            MilestoneOutcome(
                kind=OutcomeKind.REWARD,
                progress=100,
                ledger=RewardLedger(
                    skill_xp={bt.TRAVEL_ARRIVAL_SKILL: bt.TRAVEL_ARRIVAL_SKILL_XP},
                    discoveries=discoveries,
                ),
                label="arrival",
            )
        )
    return outcomes


def crafted_units(progress_point: int, quantity_goal: int) -> int:
    return (int(progress_point) * int(quantity_goal)) // 100


def _roll_crafting(session: ActivitySession, start: int, end: int) -> List[MilestoneOutcome]:
    config = session.config
    goal = int(config["quantity_goal"])
    result_item = str(config["result_item_id"])
    result_quantity = int(config.get("result_quantity", 1))
    skill = str(config["skill"]).lower()
    experience = int(config.get("experience_reward", 0))

    outcomes: List[MilestoneOutcome] = []
    for unit in range(crafted_units(start, goal) + 1, crafted_units(end, goal) + 1):
        outcomes.append(
            MilestoneOutcome(
                kind=OutcomeKind.REWARD,
                progress=end,
                ledger=RewardLedger(items={result_item: result_quantity}, skill_xp={skill: experience}),
                label=f"unit {unit}/{goal}",
            )
        )
    return outcomes
