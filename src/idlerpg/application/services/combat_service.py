import logging
import random
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from idlerpg.application.dtos import TurnView, combat_payload
from idlerpg.application.services import balance_tables as bt
from idlerpg.application.services.seed_policy import derive_rng
from idlerpg.domain.errors import (
    ConflictError,
    EngineInvariantError,
    NoActiveCombatError,
    TurnInProgressError,
    ValidationError,
)
from idlerpg.domain.events import CombatEnded
from idlerpg.domain.models.activity import RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.combat import CombatAction, CombatInstance, CombatResult, CombatStatus, CombatStyle
from idlerpg.domain.models.world import Enemy
from idlerpg.domain.repositories import CharacterRepository, CombatRepository, WorldRepository


DEFAULT_AUTO_FIGHT_TURNS = 200


class DefeatPenalty(str, Enum):
    RESTORE_HALF = "restore_half"
    PERMADEATH = "permadeath"
    NONE = "none"


def roll_damage(attack: float, defense: int, rng: random.Random) -> int:
    low, high = bt.DAMAGE_VARIANCE
    return max(1, int((attack - int(defense) // 2) * rng.uniform(low, high)))


def style_skill_xp(style: CombatStyle, damage: int) -> Dict[str, int]:
    if style == CombatStyle.MAGIC:
        return {"magic": 3 + max(1, damage // 2)}
    if style == CombatStyle.RANGED:
        return {"ranged": 2 + max(1, damage // 3)}
    return {"attack": 2, "strength": max(1, damage // 2)}


class CombatResolver:
    """Turn state machine: ``active`` moves to ``won`` or ``lost`` and stays there.

    Each turn deals at least one damage to the enemy, so a fight against a
    finite health pool always terminates.
    """

    def execute_turn(
        self,
        instance: CombatInstance,
        character: Character,
        enemy: Enemy,
        style: CombatStyle,
        rng: random.Random,
    ) -> CombatInstance:
        if instance.is_over:
            raise ValidationError(f"Combat for character {instance.character_id} is already {instance.status.value}")
        profile = bt.COMBAT_STYLE_PROFILES[style.value]
        turn = instance.turn

        damage = roll_damage(character.attack * profile["damage_modifier"], enemy.defense, rng)
        action = "attack"
        message = profile["verb"].format(enemy=enemy.name, damage="{damage}")
        if rng.random() < profile["critical_chance"]:
            damage = int(damage * bt.CRITICAL_MULTIPLIER)
            action = "critical"
            message = "Critical hit! " + message
        instance.enemy_current_health = max(0, instance.enemy_current_health - damage)
        instance.combat_log.append(
            CombatAction(turn=turn, actor="player", action=action, message=message.format(damage=damage), damage=damage)
        )
        self._accrue(instance, style_skill_xp(style, damage))

        if instance.enemy_current_health > 0:
            counter = roll_damage(enemy.attack, character.defense, rng)
            action = "attack"
            message = f"{enemy.name} hits you for {counter} damage!"
            if rng.random() < bt.ENEMY_CRITICAL_CHANCE:
                counter = int(counter * bt.CRITICAL_MULTIPLIER)
                action = "critical"
                message = f"{enemy.name} lands a critical hit for {counter} damage!"
            instance.player_current_health = max(0, instance.player_current_health - counter)
            instance.combat_log.append(
                CombatAction(turn=turn, actor="enemy", action=action, message=message, damage=counter)
            )
            self._accrue(instance, {"defense": max(1, counter // 2)})

        self._accrue(instance, {"constitution": 1})

        if instance.enemy_current_health <= 0:
            instance.status = CombatStatus.WON
            instance.combat_log.append(
                CombatAction(turn=turn, actor="enemy", action="defeat", message=f"{enemy.name} has been defeated!")
            )
        elif instance.player_current_health <= 0:
            instance.status = CombatStatus.LOST
            instance.combat_log.append(
                CombatAction(turn=turn, actor="player", action="defeat", message="You have been defeated!")
            )
        else:
            instance.turn += 1
        return instance

    @staticmethod
    def _accrue(instance: CombatInstance, gains: Dict[str, int]) -> None:
        for skill, amount in gains.items():
            instance.skill_xp[skill] = instance.skill_xp.get(skill, 0) + int(amount)


class CombatService:
    def __init__(
        self,
        combats: CombatRepository,
        characters: CharacterRepository,
        world: WorldRepository,
        *,
        defeat_penalty: DefeatPenalty | str = DefeatPenalty.RESTORE_HALF,
        event_publisher: Optional[Callable[[object], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rng_seed: int | None = None,
        resolver: CombatResolver | None = None,
    ) -> None:
        self.combats = combats
        self.characters = characters
        self.world = world
        self.defeat_penalty = DefeatPenalty(defeat_penalty)
        self.event_publisher = event_publisher
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.resolver = resolver or CombatResolver()
        self._seed = int(rng_seed) if rng_seed is not None else random.randrange(2**32)
        self._busy: Set[int] = set()
        self._busy_lock = threading.Lock()
        self._logger = logging.getLogger(__name__)

    def start(self, character_id: int, enemy_id: str) -> CombatInstance:
        character = self._require_character(character_id)
        enemy = self.world.get_enemy(str(enemy_id))
        if enemy is None:
            raise ValidationError(f"Unknown enemy: {enemy_id!r}")
        if not character.alive:
            raise ValidationError(f"{character.name} is dead and cannot fight")
        if character.health <= 0:
            raise ValidationError(f"{character.name} has no health left to fight")
        if character.level < enemy.required_player_level:
            raise ValidationError(f"{enemy.name} requires level {enemy.required_player_level}")
        if self.combats.get(character_id) is not None:
            raise ConflictError(f"Character {character_id} is already in combat")

        instance = CombatInstance(
            character_id=character_id,
            enemy_id=enemy.id,
            player_current_health=character.health,
            enemy_current_health=enemy.health,
            player_starting_health=character.health,
            enemy_starting_health=enemy.health,
            started_at=self.clock(),
        )
        created = self.combats.create(instance)
        self._logger.info("Combat started", extra={"character_id": character_id, "enemy_id": enemy.id})
        return created

    def turn(self, character_id: int, style: CombatStyle | str = CombatStyle.MELEE) -> TurnView:
        try:
            combat_style = CombatStyle.normalize(style)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        with self._single_flight(character_id):
            instance = self._require_instance(character_id)
            if instance.is_over:
                raise ValidationError(f"Combat for character {character_id} is already {instance.status.value}")
            character = self._require_character(character_id)
            enemy = self._require_enemy(instance.enemy_id)
            expected_turn = instance.turn
            rng = self._rng("combat.turn", instance, turn=expected_turn)
            self.resolver.execute_turn(instance, character, enemy, combat_style, rng)
            saved = self.combats.save_turn(instance, expected_turn=expected_turn)
        return TurnView(
            combat=combat_payload(saved),
            is_over=saved.is_over,
            victory=None if not saved.is_over else saved.status == CombatStatus.WON,
        )

    def end(self, character_id: int, victory: bool) -> CombatResult:
        with self._single_flight(character_id):
            instance = self._require_instance(character_id)
            if victory and instance.status != CombatStatus.WON:
                raise ValidationError("Cannot claim victory: the enemy is not defeated")
            if not victory and instance.status == CombatStatus.WON:
                raise ValidationError("Cannot end a won combat as a loss")
            character = self._require_character(character_id)
            enemy = self._require_enemy(instance.enemy_id)
            result, ledger, health, alive = self._settle(instance, character, enemy, victory)
            operation = self.characters.build_settlement_operation(
                character_id, ledger=ledger, health=health, alive=alive
            )
            self.combats.finish(character_id, result, [operation])

        self._logger.info(
            "Combat ended",
            extra={
                "character_id": character_id,
                "enemy_id": enemy.id,
                "victory": victory,
                "turns": result.turns,
                "penalty": result.penalty,
            },
        )
        if self.event_publisher is not None:
            self.event_publisher(
                CombatEnded(
                    character_id=character_id,
                    enemy_id=enemy.id,
                    victory=victory,
                    turns=result.turns,
                    experience=result.experience,
                    gold=result.gold,
                )
            )
        return result

    def abandon(self, character_id: int) -> Optional[CombatResult]:
        """End the current fight as a loss.

        Nothing happens when there is no fight or the enemy is already
        defeated; a won fight is settled through ``end(character_id, True)``.
        """
        instance = self.combats.get(character_id)
        if instance is None or instance.status == CombatStatus.WON:
            return None
        return self.end(character_id, victory=False)

    def auto_fight(
        self,
        character_id: int,
        style: CombatStyle | str = CombatStyle.MELEE,
        max_turns: int = DEFAULT_AUTO_FIGHT_TURNS,
    ) -> CombatResult:
        for _ in range(max(1, int(max_turns))):
            view = self.turn(character_id, style)
            if view.is_over:
                return self.end(character_id, bool(view.victory))
        raise EngineInvariantError(f"Combat for character {character_id} did not finish within {max_turns} turns")

    def history(self, character_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        return self.combats.list_history(character_id, limit=limit)

    def _settle(self, instance: CombatInstance, character: Character, enemy: Enemy, victory: bool):
        turns = instance.turn + (1 if instance.is_over else 0)
        skill_xp = dict(instance.skill_xp)
        result = CombatResult(
            victory=victory,
            damage_dealt=instance.damage_dealt,
            damage_taken=instance.damage_taken,
            turns=turns,
        )
        alive = None
        if victory:
            rng = self._rng("combat.rewards", instance, turn=instance.turn)
            result.experience = int(enemy.experience_reward)
            result.gold = bt.roll_between(rng, enemy.gold_min, enemy.gold_max)
            result.loot = [item_id for item_id, chance in sorted(enemy.loot_table.items()) if rng.random() < float(chance)]
            skill_xp["slayer"] = skill_xp.get("slayer", 0) + bt.SLAYER_XP_BASE + bt.SLAYER_XP_PER_ENEMY_LEVEL * enemy.level
            if result.loot:
                skill_xp["thieving"] = skill_xp.get("thieving", 0) + bt.THIEVING_XP_PER_ITEM * len(result.loot)
            health = max(1, instance.player_current_health)
        elif self.defeat_penalty == DefeatPenalty.PERMADEATH:
            health = 0
            alive = False
            result.penalty = DefeatPenalty.PERMADEATH.value
        elif self.defeat_penalty == DefeatPenalty.RESTORE_HALF:
            health = max(1, int(character.max_health * bt.DEFEAT_HEALTH_FRACTION))
            result.penalty = DefeatPenalty.RESTORE_HALF.value
        else:
            health = instance.player_current_health
            result.penalty = DefeatPenalty.NONE.value
        result.combat_skill_xp = skill_xp

        items: Dict[str, int] = {}
        for item_id in result.loot:
            items[item_id] = items.get(item_id, 0) + 1
        ledger = RewardLedger(gold=result.gold, experience=result.experience, items=items, skill_xp=skill_xp)
        return result, ledger, health, alive

    @contextmanager
    def _single_flight(self, character_id: int) -> Iterator[None]:
        with self._busy_lock:
            if character_id in self._busy:
                raise TurnInProgressError(f"A combat action for character {character_id} is already in progress")
            self._busy.add(character_id)
        try:
            yield
        finally:
            with self._busy_lock:
                self._busy.discard(character_id)

    def _rng(self, namespace: str, instance: CombatInstance, *, turn: int) -> random.Random:
        return derive_rng(
            namespace,
            {
                "seed": self._seed,
                "character_id": instance.character_id,
                "enemy_id": instance.enemy_id,
                "started_at": instance.started_at.isoformat(),
                "turn": int(turn),
            },
        )

    def _require_instance(self, character_id: int) -> CombatInstance:
        instance = self.combats.get(character_id)
        if instance is None:
            raise NoActiveCombatError(f"Character {character_id} is not in combat")
        return instance

    def _require_character(self, character_id: int) -> Character:
        character = self.characters.get(character_id)
        if character is None:
            raise ValidationError(f"Unknown character: {character_id}")
        return character

    def _require_enemy(self, enemy_id: str) -> Enemy:
        enemy = self.world.get_enemy(enemy_id)
        if enemy is None:
            raise EngineInvariantError(f"Combat references unknown enemy {enemy_id!r}")
        return enemy
