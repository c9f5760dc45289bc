"""Elapsed-time progress for activity sessions.

Progress is always reconstructed from the session's authoritative
``started_at`` and the caller-supplied server time, so a reloaded client
sees exactly the value any other poller would compute for the same instant.
"""

from __future__ import annotations

from datetime import datetime

from idlerpg.domain.errors import EngineInvariantError
from idlerpg.domain.models.activity import ActivityKind, ActivitySession, ensure_utc


def total_duration_ms(session: ActivitySession) -> int:
    config = session.config or {}
    if session.kind == ActivityKind.CRAFTING:
        try:
            per_unit = float(config["crafting_seconds"])
            goal = int(config["quantity_goal"])
        except (KeyError, TypeError, ValueError) as exc:
            raise EngineInvariantError(f"Crafting session {session.session_id} has no usable duration") from exc
        duration_ms = int(round(per_unit * 1000)) * goal
    else:
        try:
            duration_ms = int(round(float(config["duration_seconds"]) * 1000))
        except (KeyError, TypeError, ValueError) as exc:
            raise EngineInvariantError(f"{session.kind.value} session {session.session_id} has no duration") from exc

    if duration_ms <= 0:
        raise EngineInvariantError(
            f"{session.kind.value} session {session.session_id} resolved to a non-positive duration ({duration_ms} ms)"
        )
    return duration_ms


def elapsed_ms(session: ActivitySession, now: datetime) -> int:
    delta = ensure_utc(now) - session.started_at
    return max(0, int(delta.total_seconds() * 1000))


def elapsed_seconds(session: ActivitySession, now: datetime) -> int:
    return elapsed_ms(session, now) // 1000


def progress(session: ActivitySession, now: datetime) -> float:
    ratio = elapsed_ms(session, now) / total_duration_ms(session) * 100
    return max(0.0, min(100.0, ratio))


def progress_marker(session: ActivitySession, now: datetime) -> int:
    """Whole percentage points reached; the unit the milestone marker advances in."""
    return int(progress(session, now))
