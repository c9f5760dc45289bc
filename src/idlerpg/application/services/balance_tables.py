from __future__ import annotations

import random


EXPLORATION_SECONDS_PER_PERCENT = 15

EXPEDITION_DURATION_SECONDS = {
    "scout": 300,
    "standard": 600,
    "deep": 1200,
    "legendary": 1800,
}

EXPEDITION_REWARD_MULTIPLIERS = {
    "scout": 0.75,
    "standard": 1.0,
    "deep": 1.5,
    "legendary": 2.5,
}

REWARD_CHANCE_MIN = 0.25
REWARD_CHANCE_MAX = 0.50
REWARD_ITEMS_MIN = 3
REWARD_ITEMS_MAX = 8
REWARD_GOLD_RANGE = (8, 40)
REWARD_XP_RANGE = (20, 80)

DISCOVERY_INTERVAL = 5

# item -> drop weight; common >= 150, uncommon 50-149, rare 10-49, epic 2-9, legendary 1
EXPLORATION_LOOT_TABLES = {
    "early": {
        "wood": 220,
        "stone": 200,
        "berries": 180,
        "copper_ore": 120,
        "leather_scrap": 90,
        "health_potion": 40,
        "iron_ore": 20,
        "silver_ring": 5,
        "ancient_coin": 1,
    },
    "mid": {
        "wood": 180,
        "iron_ore": 170,
        "herbs": 160,
        "leather": 110,
        "health_potion": 70,
        "silver_ore": 35,
        "rare_gem": 12,
        "enchanted_ring": 4,
        "ancient_relic": 1,
    },
    "late": {
        "iron_ore": 170,
        "herbs": 160,
        "silver_ore": 150,
        "greater_health_potion": 90,
        "mythril_ore": 60,
        "rare_gem": 30,
        "enchanted_ring": 8,
        "epic_weapon": 3,
        "dragon_scale": 1,
    },
    "end": {
        "silver_ore": 160,
        "mythril_ore": 150,
        "greater_health_potion": 120,
        "rare_gem": 60,
        "adamantite_ore": 40,
        "enchanted_ring": 15,
        "epic_armor": 6,
        "epic_weapon": 5,
        "legendary_weapon": 1,
    },
}

EXPEDITION_REWARD_TABLES = {
    "scout": {
        "gold": (200, 400),
        "xp": (300, 500),
        "items": (
            ("health_potion", 1.0),
            ("mana_potion", 1.0),
            ("berries", 0.9),
            ("mushroom", 0.9),
            ("wooden_club", 0.5),
            ("cloth_tunic", 0.5),
            ("leather_cap", 0.3),
            ("copper_ring", 0.1),
        ),
        "materials": (("wood", 5, 15), ("stone", 3, 10)),
    },
    "standard": {
        "gold": (500, 1000),
        "xp": (800, 1500),
        "items": (
            ("health_potion", 1.0),
            ("mana_potion", 1.0),
            ("greater_health_potion", 0.8),
            ("iron_sword", 0.7),
            ("leather_armor", 0.7),
            ("steel_sword", 0.4),
            ("silver_ring", 0.3),
            ("gold_ring", 0.15),
            ("rare_gem", 0.1),
            ("enchanted_ring", 0.05),
        ),
        "materials": (("iron_ore", 5, 15), ("wood", 10, 25), ("herbs", 3, 8)),
    },
    "deep": {
        "gold": (1500, 3000),
        "xp": (2500, 4000),
        "items": (
            ("greater_health_potion", 1.0),
            ("greater_mana_potion", 1.0),
            ("steel_sword", 0.8),
            ("iron_armor", 0.8),
            ("mythril_sword", 0.6),
            ("steel_armor", 0.6),
            ("gold_ring", 0.5),
            ("enchanted_ring", 0.4),
            ("rare_artifact", 0.3),
            ("epic_weapon", 0.2),
            ("rare_gem", 0.3),
            ("treasure_map", 0.1),
            ("legendary_weapon", 0.03),
        ),
        "materials": (("mythril_ore", 3, 10), ("iron_ore", 10, 20), ("rare_gem", 2, 6), ("ancient_fragment", 1, 3)),
    },
    "legendary": {
        "gold": (5000, 10000),
        "xp": (6000, 10000),
        "items": (
            ("legendary_health_potion", 1.0),
            ("legendary_mana_potion", 1.0),
            ("mythril_sword", 0.9),
            ("steel_armor", 0.9),
            ("enchanted_ring", 0.8),
            ("epic_weapon", 0.7),
            ("epic_armor", 0.7),
            ("rare_artifact", 0.6),
            ("legendary_weapon", 0.5),
            ("legendary_armor", 0.5),
            ("treasure_map", 0.6),
            ("ancient_relic", 0.3),
            ("dragon_scale", 0.2),
            ("ultimate_artifact", 0.1),
        ),
        "materials": (("adamantite_ore", 5, 15), ("mythril_ore", 10, 25), ("legendary_gem", 3, 8), ("dragon_scale", 1, 3)),
    },
}

RISK_FAILURE_REWARD_FRACTION = 0.25

TRAVEL_MIN_SECONDS = 5
TRAVEL_LEVEL_REDUCTION_PER_LEVEL = 0.002
TRAVEL_MAX_LEVEL_REDUCTION = 0.2
TRAVEL_WEATHER_MULTIPLIERS = {"blizzard": 1.5, "fog": 1.2, "clear": 0.9}
TRAVEL_CONNECTION_MULTIPLIERS = {"portal": 0.1, "teleport": 0.05, "secret_passage": 1.3}
TRAVEL_ENCOUNTER_BASE_CHANCE = 0.20
TRAVEL_ENCOUNTER_PROGRESS = 50
TRAVEL_ARRIVAL_SKILL = "agility"
TRAVEL_ARRIVAL_SKILL_XP = 10
TRAVEL_LORE_MESSAGES = (
    "You find an ancient inscription on a roadside stone.",
    "A mysterious traveler shares a cryptic riddle.",
    "You notice strange markings on the trees.",
    "An old signpost points to a forgotten path.",
    "You discover remnants of a long-abandoned camp.",
)

EVENT_SKILL_CHECK_XP = 10

DAMAGE_VARIANCE = (0.85, 1.15)
CRITICAL_MULTIPLIER = 1.5
ENEMY_CRITICAL_CHANCE = 0.05
COMBAT_STYLE_PROFILES = {
    "melee": {"damage_modifier": 1.0, "critical_chance": 0.10, "verb": "You hit {enemy} for {damage} damage!"},
    "magic": {"damage_modifier": 1.15, "critical_chance": 0.05, "verb": "Your spell hits {enemy} for {damage} damage!"},
    "ranged": {"damage_modifier": 0.95, "critical_chance": 0.15, "verb": "Your arrow strikes {enemy} for {damage} damage!"},
}
DEFEAT_HEALTH_FRACTION = 0.5
SLAYER_XP_BASE = 10
SLAYER_XP_PER_ENEMY_LEVEL = 2
THIEVING_XP_PER_ITEM = 5


def reward_chance(progress_point: int) -> float:
    point = max(1, min(100, int(progress_point)))
    return REWARD_CHANCE_MIN + (REWARD_CHANCE_MAX - REWARD_CHANCE_MIN) * (point - 1) / 99


def loot_bracket(progress_point: int) -> str:
    point = int(progress_point)
    if point < 25:
        return "early"
    if point < 50:
        return "mid"
    if point < 75:
        return "late"
    return "end"


def exploration_duration_seconds(expedition_type: str | None, seconds_per_percent: int = EXPLORATION_SECONDS_PER_PERCENT) -> int:
    if expedition_type:
        return EXPEDITION_DURATION_SECONDS[str(expedition_type)]
    return int(seconds_per_percent) * 100


def calculate_travel_seconds(
    base_seconds: int,
    *,
    character_level: int,
    connection_type: str,
    weather: str | None = None,
    speed_buffs: tuple[float, ...] = (),
) -> int:
    seconds = float(base_seconds)
    seconds *= TRAVEL_WEATHER_MULTIPLIERS.get(str(weather or ""), 1.0)
    level_factor = 1 - int(character_level) * TRAVEL_LEVEL_REDUCTION_PER_LEVEL
    seconds *= max(level_factor, 1 - TRAVEL_MAX_LEVEL_REDUCTION)
    seconds *= TRAVEL_CONNECTION_MULTIPLIERS.get(str(connection_type), 1.0)
    for buff in speed_buffs:
        seconds *= 1 - float(buff)
    return max(int(seconds), TRAVEL_MIN_SECONDS)


def roll_between(rng: random.Random, low: int, high: int) -> int:
    return rng.randint(int(low), max(int(low), int(high)))
