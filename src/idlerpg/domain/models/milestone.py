from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from idlerpg.domain.models.activity import RewardLedger


class OutcomeKind(str, Enum):
    REWARD = "reward"
    DISCOVERY = "discovery"
    EVENT = "event"
    NONE = "none"


@dataclass(frozen=True)
class MilestoneOutcome:
    kind: OutcomeKind
    progress: int
    ledger: RewardLedger = field(default_factory=RewardLedger)
    landmark_id: Optional[str] = None
    event: Optional[Dict[str, Any]] = None
    label: str = ""

    def to_view(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind.value, "progress": self.progress}
        if self.label:
            payload["label"] = self.label
        if not self.ledger.is_empty():
            payload.update(self.ledger.to_payload())
        if self.landmark_id is not None:
            payload["landmark_id"] = self.landmark_id
        if self.event is not None:
            payload["event"] = dict(self.event)
        return payload
