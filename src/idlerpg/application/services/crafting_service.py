from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from idlerpg.application.services.activity_service import ActivityService, PreparedStart, Settlement
from idlerpg.application.services.milestone_roller import crafted_units
from idlerpg.domain.errors import ConflictError, ValidationError
from idlerpg.domain.models.activity import ActivityKind, ActivitySession, RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.world import Recipe


def max_craftable(character: Character, recipe: Recipe) -> int:
    limits = [character.item_quantity(item_id) // int(quantity) for item_id, quantity in recipe.ingredients.items() if int(quantity) > 0]
    return min(limits) if limits else 0


class CraftingService(ActivityService):
    """Batch crafting with ingredients reserved up front.

    Every unit's ingredients leave the inventory when the batch starts;
    cancelling refunds the ones belonging to units not yet crafted.
    """

    kind = ActivityKind.CRAFTING

    def _prepare(self, character: Character, config: Mapping[str, Any], rng_seed: int) -> PreparedStart:
        recipe_id = str(config.get("recipe_id") or "").strip()
        recipe = self._world.get_recipe(recipe_id)
        if recipe is None:
            raise ValidationError(f"Unknown recipe: {recipe_id!r}")
        try:
            quantity = int(config.get("quantity", 1))
        except (TypeError, ValueError) as exc:
            raise ValidationError("quantity must be an integer") from exc
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")
        if recipe.crafting_seconds <= 0:
            raise ValidationError(f"Recipe {recipe.id} has no crafting time")
        if character.skill_level(recipe.skill) < recipe.required_level:
            raise ValidationError(f"{recipe.name} requires {recipe.skill} level {recipe.required_level}")

        reserved = {item_id: int(per_unit) * quantity for item_id, per_unit in recipe.ingredients.items()}
        if not character.has_items(reserved):
            raise ValidationError(
                f"Not enough ingredients for {quantity} x {recipe.name} (can craft {max_craftable(character, recipe)})"
            )

        return PreparedStart(
            config={
                "recipe_id": recipe.id,
                "quantity_goal": quantity,
                "crafting_seconds": recipe.crafting_seconds,
                "result_item_id": recipe.result_item_id,
                "result_quantity": recipe.result_quantity,
                "skill": recipe.skill.lower(),
                "experience_reward": recipe.experience_reward,
                "ingredients": {item_id: int(per_unit) for item_id, per_unit in recipe.ingredients.items()},
                "auto_repeat": bool(config.get("auto_repeat", False)),
            },
            operations=[self._characters.build_settlement_operation(int(character.id), consume_items=reserved)],
        )

    def _early_exit_settlement(self, session: ActivitySession, marker: int) -> Settlement:
        goal = int(session.config["quantity_goal"])
        remaining = goal - crafted_units(marker, goal)
        refund: Dict[str, int] = {}
        if remaining > 0:
            refund = {
                str(item_id): int(per_unit) * remaining
                for item_id, per_unit in dict(session.config.get("ingredients") or {}).items()
            }
        return Settlement(ledger=RewardLedger(items=refund))

    def _after_completion(self, session: ActivitySession, now: datetime) -> Optional[ActivitySession]:
        if not session.config.get("auto_repeat"):
            return None
        character = self._require_character(session.character_id)
        recipe = self._world.get_recipe(str(session.config["recipe_id"]))
        if recipe is None:
            return None
        quantity = min(max_craftable(character, recipe), int(session.config["quantity_goal"]))
        if quantity < 1:
            self._logger.info(
                "Auto-repeat stopped: out of ingredients",
                extra={"character_id": session.character_id, "recipe_id": recipe.id},
            )
            return None
        config = {"recipe_id": recipe.id, "quantity": quantity, "auto_repeat": True}
        try:
            return self._start_for(character, config, min(now, self._completion_instant(session)))
        except ConflictError:
            # another poller already restarted the batch
            return self._sessions.get_open(session.character_id, self.kind)
        except ValidationError as exc:
            self._logger.info(
                "Auto-repeat stopped: %s",
                exc,
                extra={"character_id": session.character_id, "recipe_id": recipe.id},
            )
            return None
