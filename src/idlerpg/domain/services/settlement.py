from __future__ import annotations

from typing import Any, Mapping

from idlerpg.domain.errors import ValidationError
from idlerpg.domain.models.activity import RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.domain.repositories import KEEP


def settle_character(
    character: Character,
    *,
    ledger: RewardLedger | None = None,
    consume_items: Mapping[str, int] | None = None,
    zone_id: Any = KEEP,
    health: int | None = None,
    alive: bool | None = None,
) -> Character:
    """Apply one settlement to ``character`` in place.

    Item consumption is checked against the stored inventory at commit time,
    so a reservation that no longer fits aborts the surrounding transaction.
    """
    if consume_items:
        if not character.has_items(consume_items):
            raise ValidationError(f"Character {character.id} no longer has the required items")
        character.consume_items(consume_items)
    if ledger is not None:
        character.apply_ledger(ledger)
    if zone_id is not KEEP:
        character.zone_id = zone_id
    if health is not None:
        character.health = max(0, min(int(health), character.max_health))
    if alive is not None:
        character.alive = bool(alive)
    return character
