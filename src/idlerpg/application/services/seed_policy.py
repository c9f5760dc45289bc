from __future__ import annotations

import hashlib
import json
import math
import random
from typing import Any, Mapping


def _normalize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _normalize(val) for key, val in sorted(value.items(), key=lambda item: str(item[0]))}
    if isinstance(value, (list, tuple, set, frozenset)):
        normalized = [_normalize(item) for item in value]
        if isinstance(value, (set, frozenset)):
            return sorted(normalized, key=lambda item: json.dumps(item, sort_keys=True, separators=(",", ":")))
        return normalized
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("Seed context values must be finite")
    return getattr(value, "value", value)


def derive_seed(namespace: str, context: Mapping[str, Any]) -> int:
    normalized = _normalize(context)
    payload = {"namespace": namespace, "context": normalized}
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()
    return int(digest, 16) % (2**32)


def derive_rng(namespace: str, context: Mapping[str, Any]) -> random.Random:
    return random.Random(derive_seed(namespace, context))


def milestone_rng(namespace: str, *, session_seed: int, kind: str, point: int) -> random.Random:
    """RNG for one whole percentage point of one session.

    Depends only on the session seed and the point, never on how the
    progress range was split across polls.
    """
    return derive_rng(namespace, {"seed": int(session_seed), "kind": str(kind), "point": int(point)})
