CONTRACT_VERSION = "1.0.0"

COMMAND_INTENTS = (
    "start_travel_intent",
    "start_exploration_intent",
    "start_crafting_intent",
    "stop_activity_intent",
    "cancel_activity_intent",
    "resolve_activity_event_intent",
    "start_combat_intent",
    "execute_combat_turn_intent",
    "end_combat_intent",
    "abandon_combat_intent",
    "auto_fight_intent",
)

QUERY_INTENTS = (
    "poll_activity_intent",
    "assess_expedition_risk_intent",
    "combat_history_intent",
    "activity_history_intent",
)

CONTRACT_DTO_TYPES = (
    "PollView",
    "FinalizedLedger",
    "EventResolutionView",
    "RiskView",
    "TurnView",
    "CombatResult",
)
