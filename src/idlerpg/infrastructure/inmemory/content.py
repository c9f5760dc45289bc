from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from idlerpg.domain.models.world import (
    ChoiceOutcome,
    ConnectionType,
    Enemy,
    EventChoice,
    ExplorationEvent,
    Landmark,
    Recipe,
    Supply,
    Zone,
    ZoneConnection,
)


@dataclass(frozen=True)
class WorldCatalog:
    zones: Tuple[Zone, ...] = ()
    landmarks: Tuple[Landmark, ...] = ()
    connections: Tuple[ZoneConnection, ...] = ()
    enemies: Tuple[Enemy, ...] = ()
    recipes: Tuple[Recipe, ...] = ()
    events: Tuple[ExplorationEvent, ...] = ()
    supplies: Tuple[Supply, ...] = field(default_factory=tuple)


ZONES = (
    Zone("greenwood_village", "Greenwood Village", danger_level=1, required_level=1, discovery_chance=0.30, zone_type="town"),
    Zone("whispering_forest", "Whispering Forest", danger_level=5, required_level=1, discovery_chance=0.25),
    Zone("misty_marsh", "Misty Marsh", danger_level=12, required_level=5, discovery_chance=0.20),
    Zone("iron_peaks", "Iron Peaks", danger_level=20, required_level=10, discovery_chance=0.18, zone_type="mountain"),
    Zone("shadowfen_ruins", "Shadowfen Ruins", danger_level=35, required_level=20, discovery_chance=0.15, zone_type="dungeon"),
    Zone("dragon_spire", "Dragon Spire", danger_level=60, required_level=40, discovery_chance=0.10, zone_type="dungeon"),
)

LANDMARKS = (
    Landmark("old_well", "greenwood_village", "Old Well", "structure"),
    Landmark("hidden_cellar", "greenwood_village", "Hidden Cellar", "cache"),
    Landmark("moonlit_glade", "whispering_forest", "Moonlit Glade", "natural"),
    Landmark("hollow_oak", "whispering_forest", "Hollow Oak", "natural"),
    Landmark("hunters_lodge", "whispering_forest", "Abandoned Hunter's Lodge", "ruins"),
    Landmark("sunken_shrine", "misty_marsh", "Sunken Shrine", "shrine"),
    Landmark("witch_hut", "misty_marsh", "Witch's Hut", "structure"),
    Landmark("collapsed_mine", "iron_peaks", "Collapsed Mine", "ruins"),
    Landmark("eagle_nest", "iron_peaks", "Eagle's Nest", "natural"),
    Landmark("frozen_forge", "iron_peaks", "Frozen Forge", "structure"),
    Landmark("fallen_throne", "shadowfen_ruins", "Fallen Throne", "ruins"),
    Landmark("bone_library", "shadowfen_ruins", "Bone Library", "ruins"),
    Landmark("hoard_chamber", "dragon_spire", "Hoard Chamber", "cache"),
)


def _both_ways(a: str, b: str, seconds: int, kind: ConnectionType = ConnectionType.ROAD) -> Tuple[ZoneConnection, ...]:
    return (ZoneConnection(a, b, seconds, kind), ZoneConnection(b, a, seconds, kind))


CONNECTIONS = (
    _both_ways("greenwood_village", "whispering_forest", 60)
    + _both_ways("whispering_forest", "misty_marsh", 120, ConnectionType.PATH)
    + _both_ways("greenwood_village", "iron_peaks", 240)
    + _both_ways("misty_marsh", "shadowfen_ruins", 300, ConnectionType.SECRET_PASSAGE)
    + _both_ways("iron_peaks", "dragon_spire", 600)
    + _both_ways("greenwood_village", "shadowfen_ruins", 900, ConnectionType.PORTAL)
)

ENEMIES = (
    Enemy("slime", "Slime", level=1, health=20, attack=4, defense=1, experience_reward=10, gold_min=1, gold_max=5,
          loot_table={"slime_gel": 0.6}),
    Enemy("goblin", "Goblin", level=3, health=40, attack=8, defense=3, experience_reward=25, gold_min=5, gold_max=15,
          loot_table={"rusty_dagger": 0.2, "leather_scrap": 0.5}),
    Enemy("wolf", "Grey Wolf", level=5, health=55, attack=11, defense=4, experience_reward=40, gold_min=0, gold_max=5,
          loot_table={"wolf_pelt": 0.7, "wolf_fang": 0.3}, required_player_level=3),
    Enemy("bandit", "Bandit", level=10, health=90, attack=16, defense=8, experience_reward=80, gold_min=20, gold_max=60,
          loot_table={"health_potion": 0.3, "iron_sword": 0.05}, required_player_level=6),
    Enemy("troll", "Cave Troll", level=22, health=220, attack=30, defense=18, experience_reward=260, gold_min=60,
          gold_max=150, loot_table={"troll_hide": 0.5, "rare_gem": 0.1}, required_player_level=15),
    Enemy("dragon", "Elder Dragon", level=60, health=1200, attack=95, defense=60, experience_reward=5000,
          gold_min=1000, gold_max=3000, loot_table={"dragon_scale": 0.8, "legendary_weapon": 0.05},
          required_player_level=40),
)

RECIPES = (
    Recipe("bronze_dagger", "Bronze Dagger", "bronze_dagger", "smithing",
           ingredients={"copper_ore": 2, "wood": 1}, crafting_seconds=10, experience_reward=15),
    Recipe("health_potion", "Health Potion", "health_potion", "alchemy",
           ingredients={"herbs": 2, "berries": 1}, crafting_seconds=6, experience_reward=10, result_quantity=2),
    Recipe("leather_armor", "Leather Armor", "leather_armor", "crafting",
           ingredients={"leather": 3}, crafting_seconds=20, experience_reward=30, required_level=3),
    Recipe("iron_sword", "Iron Sword", "iron_sword", "smithing",
           ingredients={"iron_ore": 3, "wood": 1}, crafting_seconds=30, experience_reward=45, required_level=5),
)

EVENTS = (
    ExplorationEvent(
        key="wounded_traveler",
        title="A Wounded Traveler",
        description="A traveler lies injured beside the trail, clutching a satchel.",
        trigger_chance=0.05,
        max_danger=20,
        choices=(
            EventChoice("help", "Tend their wounds", ChoiceOutcome("The grateful traveler rewards you.", gold=25, experience=30)),
            EventChoice("rob", "Take the satchel", ChoiceOutcome("You pocket the satchel's coins.", gold=60),
                        skill_check=("thieving", 12),
                        failure=ChoiceOutcome("The traveler fights back and wounds you.", health=-10)),
            EventChoice("ignore", "Walk on", ChoiceOutcome("You leave the traveler behind.")),
        ),
    ),
    ExplorationEvent(
        key="mysterious_chest",
        title="Mysterious Chest",
        description="An iron-bound chest sits half buried in the undergrowth.",
        trigger_chance=0.04,
        min_progress=20,
        choices=(
            EventChoice("pick_lock", "Pick the lock", ChoiceOutcome("The lock clicks open.", gold=80, items={"rare_gem": 1}),
                        skill_check=("thieving", 14),
                        failure=ChoiceOutcome("A needle trap pricks your finger.", health=-15)),
            EventChoice("leave", "Leave it alone", ChoiceOutcome("Some things are better left closed.")),
        ),
    ),
    ExplorationEvent(
        key="ancient_shrine",
        title="Ancient Shrine",
        description="Faint runes glow on a moss-covered altar.",
        trigger_chance=0.03,
        min_danger=10,
        choices=(
            EventChoice("pray", "Kneel and pray", ChoiceOutcome("A warm light restores you.", health=25, experience=50)),
            EventChoice("study", "Study the runes", ChoiceOutcome("You decipher part of the inscription.", experience=120),
                        skill_check=("magic", 15),
                        failure=ChoiceOutcome("The runes make no sense to you.")),
        ),
    ),
    ExplorationEvent(
        key="troll_bridge",
        title="Troll Bridge",
        description="A troll demands a toll before you may cross.",
        trigger_chance=0.05,
        zone_id="iron_peaks",
        choices=(
            EventChoice("pay", "Pay the toll", ChoiceOutcome("The troll grunts and steps aside.", gold=-30)),
            EventChoice("sneak", "Sneak past", ChoiceOutcome("You slip by unnoticed.", experience=60),
                        skill_check=("agility", 13),
                        failure=ChoiceOutcome("The troll catches you with a heavy swing.", health=-30)),
        ),
    ),
)

SUPPLIES = (
    Supply("trail_rations", "Trail Rations", {"exploration_speed": 0.10}),
    Supply("lantern", "Lantern", {"discovery_chance": 0.10}),
    Supply("treasure_compass", "Treasure Compass", {"gold_find": 0.25}),
    Supply("scholars_journal", "Scholar's Journal", {"xp_bonus": 0.20}),
)


def default_catalog() -> WorldCatalog:
    return WorldCatalog(
        zones=ZONES,
        landmarks=LANDMARKS,
        connections=CONNECTIONS,
        enemies=ENEMIES,
        recipes=RECIPES,
        events=EVENTS,
        supplies=SUPPLIES,
    )
