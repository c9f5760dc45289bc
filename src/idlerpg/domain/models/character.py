from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional

from idlerpg.domain.models.progression import level_for_experience, skill_level_for_experience

if TYPE_CHECKING:
    from idlerpg.domain.models.activity import RewardLedger


@dataclass
class Character:
    id: Optional[int]
    name: str
    level: int = 1
    xp: int = 0
    gold: int = 0
    health: int = 100
    max_health: int = 100
    attack: int = 10
    defense: int = 5
    zone_id: Optional[str] = None
    alive: bool = True
    inventory: Dict[str, int] = field(default_factory=dict)
    skills: Dict[str, int] = field(default_factory=dict)
    discoveries: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        normalized: Dict[str, int] = {}
        if isinstance(self.inventory, dict):
            for raw_item, raw_quantity in self.inventory.items():
                item_id = str(raw_item or "").strip()
                if not item_id:
                    continue
                try:
                    quantity = int(raw_quantity)
                except (TypeError, ValueError):
                    continue
                if quantity > 0:
                    normalized[item_id] = normalized.get(item_id, 0) + quantity
        self.inventory = normalized

        skills: Dict[str, int] = {}
        if isinstance(self.skills, dict):
            for raw_skill, raw_xp in self.skills.items():
                slug = str(raw_skill or "").strip().lower()
                if slug:
                    skills[slug] = max(0, int(raw_xp or 0))
        self.skills = skills

        self.health = max(0, min(int(self.health), int(self.max_health)))

    def item_quantity(self, item_id: str) -> int:
        return int(self.inventory.get(str(item_id), 0))

    def has_discovered(self, key: str) -> bool:
        return str(key) in self.discoveries

    def skill_level(self, skill: str) -> int:
        return skill_level_for_experience(self.skills.get(str(skill).strip().lower(), 0))

    def has_items(self, requirements: Mapping[str, int]) -> bool:
        return all(self.item_quantity(item_id) >= int(quantity) for item_id, quantity in requirements.items())

    def consume_items(self, requirements: Mapping[str, int]) -> None:
        if not self.has_items(requirements):
            missing = sorted(item for item, qty in requirements.items() if self.item_quantity(item) < int(qty))
            raise ValueError(f"Character {self.id} lacks items: {', '.join(missing)}")
        for item_id, quantity in requirements.items():
            remaining = self.item_quantity(item_id) - int(quantity)
            if remaining > 0:
                self.inventory[str(item_id)] = remaining
            else:
                self.inventory.pop(str(item_id), None)

    def apply_ledger(self, ledger: "RewardLedger") -> None:
        """Credit a settled ledger; level and skill totals follow the XP curves."""
        self.gold = max(0, self.gold + int(ledger.gold))
        self.xp = max(0, self.xp + int(ledger.experience))
        self.level = max(self.level, level_for_experience(self.xp))
        for item_id, quantity in ledger.items.items():
            total = self.item_quantity(item_id) + int(quantity)
            if total > 0:
                self.inventory[str(item_id)] = total
            else:
                self.inventory.pop(str(item_id), None)
        for skill, amount in ledger.skill_xp.items():
            self.skills[skill] = max(0, self.skills.get(skill, 0) + int(amount))
        for key in ledger.discoveries:
            if key not in self.discoveries:
                self.discoveries.append(key)
        if ledger.health:
            self.health = max(1, min(self.max_health, self.health + int(ledger.health)))
