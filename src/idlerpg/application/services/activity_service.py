from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import random
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from idlerpg.application.dtos import EventResolutionView, FinalizedLedger, PollView
from idlerpg.application.services.event_bus import EventBus
from idlerpg.application.services.milestone_roller import RollContext, fold_outcomes, roll_outcomes
from idlerpg.domain.errors import (
    ConflictError,
    NoActiveSessionError,
    StaleRetryExhaustedError,
    StaleSessionError,
    ValidationError,
)
from idlerpg.domain.events import (
    ActivityFinalized,
    ActivityStarted,
    ExplorationEventTriggered,
    LandmarkDiscovered,
)
from idlerpg.domain.models.activity import ActivityKind, ActivitySession, ActivityStatus, RewardLedger
from idlerpg.domain.models.character import Character
from idlerpg.domain.models.milestone import MilestoneOutcome, OutcomeKind
from idlerpg.domain.repositories import (
    KEEP,
    ActivitySessionRepository,
    CharacterRepository,
    Operation,
    WorldRepository,
)
from idlerpg.domain.services import progress as progress_calc


DEFAULT_STALE_RETRY_LIMIT = 8

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def pending_event_key(session: ActivitySession) -> Optional[str]:
    if not session.active_event:
        return None
    return str(session.active_event.get("key", ""))


@dataclass
class PreparedStart:
    config: Dict[str, Any]
    operations: List[Operation] = field(default_factory=list)
    status: ActivityStatus = ActivityStatus.ACTIVE
    ledger: RewardLedger = field(default_factory=RewardLedger)
    failure_reason: Optional[str] = None


@dataclass
class Settlement:
    """Extra ledger and zone change applied when a session finalizes."""

    ledger: RewardLedger = field(default_factory=RewardLedger)
    zone_id: Any = KEEP


class ActivityService:
    """Shared start/poll/stop/cancel orchestration for one activity kind.

    Every state change goes through the session store's compare-and-set on
    ``last_processed_progress``. A caller that loses the race re-reads the
    session and recomputes from the refreshed marker, so each percentage
    point is rolled and committed exactly once no matter how many tabs poll.
    """

    kind: ActivityKind

    def __init__(
        self,
        sessions: ActivitySessionRepository,
        characters: CharacterRepository,
        world: WorldRepository,
        *,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        stale_retry_limit: int = DEFAULT_STALE_RETRY_LIMIT,
        rng_seed: int | None = None,
    ) -> None:
        self._sessions = sessions
        self._characters = characters
        self._world = world
        self._clock = clock or utc_now
        self._event_bus = event_bus
        self._stale_retry_limit = max(0, int(stale_retry_limit))
        self._seed_source = random.Random(rng_seed)
        self._logger = logging.getLogger(self.__class__.__module__)

    # -- hooks -------------------------------------------------------------

    def _prepare(self, character: Character, config: Mapping[str, Any], rng_seed: int) -> PreparedStart:
        raise NotImplementedError

    def _roll_context(self, session: ActivitySession, character: Character, *, allow_event: bool) -> RollContext:
        return RollContext(character=character, allow_event=allow_event)

    def _completion_point(self, session: ActivitySession) -> int:
        return 100

    def _completion_settlement(self, session: ActivitySession) -> Settlement:
        return Settlement()

    def _early_exit_settlement(self, session: ActivitySession, marker: int) -> Settlement:
        return Settlement()

    def _resolve_choice(
        self,
        session: ActivitySession,
        character: Character,
        event: Mapping[str, Any],
        choice: str,
    ) -> EventResolutionView:
        raise ValidationError(f"{self.kind.value} sessions have no events to resolve")

    def _after_completion(self, session: ActivitySession, now: datetime) -> Optional[ActivitySession]:
        return None

    # -- public surface ----------------------------------------------------

    def start(self, character_id: int, config: Mapping[str, Any] | None = None) -> ActivitySession:
        character = self._require_character(character_id)
        if self._sessions.get_open(character_id, self.kind) is not None:
            raise ConflictError(f"Character {character_id} already has an open {self.kind.value} session")
        return self._start_for(character, dict(config or {}), self._clock())

    def poll(self, character_id: int) -> PollView:
        for attempt in range(self._stale_retry_limit + 1):
            session = self._require_open(character_id)
            now = self._clock()
            try:
                if session.status == ActivityStatus.FAILED:
                    return self._acknowledge_failure(session, now)
                return self._advance(session, now)
            except StaleSessionError:
                self._log_stale(session, attempt)
        raise self._exhausted(character_id)

    def stop(self, character_id: int) -> FinalizedLedger:
        for attempt in range(self._stale_retry_limit + 1):
            session = self._require_open(character_id)
            now = self._clock()
            try:
                if session.status == ActivityStatus.FAILED:
                    self._acknowledge_failure(session, now)
                    return self._finalized_view(session, session.last_processed_progress, session.ledger)
                return self._stop(session, now)
            except StaleSessionError:
                self._log_stale(session, attempt)
        raise self._exhausted(character_id)

    def cancel(self, character_id: int) -> None:
        for attempt in range(self._stale_retry_limit + 1):
            session = self._require_open(character_id)
            marker = session.last_processed_progress
            try:
                if session.status == ActivityStatus.FAILED:
                    self._acknowledge_failure(session, self._clock())
                    return None
                extra = self._early_exit_settlement(session, marker)
                final_ledger = session.ledger.merged(extra.ledger)
                self._sessions.update_ledger_and_marker(
                    session.session_id,
                    expected_event_key=pending_event_key(session),
                    expected_progress=marker,
                    new_progress=marker,
                    ledger_delta=extra.ledger,
                    status=ActivityStatus.CANCELLED,
                    finalize=True,
                    operations=[self._settlement_operation(session, final_ledger, extra.zone_id)],
                )
                self._logger.info(
                    "Activity cancelled",
                    extra={"character_id": character_id, "session_id": session.session_id, "progress": marker},
                )
                self._publish_finalized(session, ActivityStatus.CANCELLED, marker, final_ledger)
                return None
            except StaleSessionError:
                self._log_stale(session, attempt)
        raise self._exhausted(character_id)

    def resolve_event(self, character_id: int, choice: str) -> EventResolutionView:
        for attempt in range(self._stale_retry_limit + 1):
            session = self._require_open(character_id)
            event = session.active_event
            if not event:
                raise ValidationError(f"Character {character_id} has no pending {self.kind.value} event")
            character = self._require_character(character_id)
            view = self._resolve_choice(session, character, event, str(choice).strip().lower())
            try:
                self._sessions.resolve_event(
                    session.session_id,
                    event_key=str(event["key"]),
                    ledger_delta=view.rewards,
                )
            except StaleSessionError:
                self._log_stale(session, attempt)
                continue
            self._logger.info(
                "Activity event resolved",
                extra={
                    "character_id": character_id,
                    "session_id": session.session_id,
                    "event_key": view.event_key,
                    "choice": view.choice,
                    "success": view.success,
                },
            )
            return view
        raise self._exhausted(character_id)

    def current(self, character_id: int) -> Optional[ActivitySession]:
        return self._sessions.get_open(character_id, self.kind)

    def history(self, character_id: int) -> List[ActivitySession]:
        return self._sessions.list_for_character(character_id, self.kind)

    # -- internals ---------------------------------------------------------

    def _start_for(self, character: Character, config: Dict[str, Any], started_at: datetime) -> ActivitySession:
        if not character.alive:
            raise ValidationError(f"{character.name} is dead and cannot start a {self.kind.value} session")
        rng_seed = self._seed_source.randrange(2**32)
        prepared = self._prepare(character, config, rng_seed)
        session = ActivitySession(
            session_id=None,
            character_id=int(character.id),
            kind=self.kind,
            started_at=started_at,
            config=prepared.config,
            rng_seed=rng_seed,
            ledger=prepared.ledger,
            status=prepared.status,
            failure_reason=prepared.failure_reason,
        )
        progress_calc.total_duration_ms(session)
        created = self._sessions.create(session, prepared.operations)
        self._logger.info(
            "Activity started",
            extra={
                "character_id": created.character_id,
                "session_id": created.session_id,
                "kind": created.kind.value,
                "status": created.status.value,
            },
        )
        self._publish(
            ActivityStarted(
                character_id=created.character_id,
                session_id=int(created.session_id),
                kind=created.kind.value,
                status=created.status.value,
            )
        )
        return created

    def _advance(self, session: ActivitySession, now: datetime) -> PollView:
        current = progress_calc.progress(session, now)
        marker = session.last_processed_progress
        completion = self._completion_point(session)
        target = min(progress_calc.progress_marker(session, now), completion)
        if target <= marker:
            return self._poll_view(session, current, now, [], completed=False)

        character = self._require_character(session.character_id)
        completing = target >= completion
        context = self._roll_context(session, character, allow_event=not completing)
        outcomes = roll_outcomes(session, marker, target, context)
        delta = fold_outcomes(outcomes)
        event = next((outcome.event for outcome in outcomes if outcome.kind == OutcomeKind.EVENT), None)

        operations: List[Operation] = []
        status = None
        if completing:
            extra = self._completion_settlement(session)
            delta = delta.merged(extra.ledger)
            operations.append(self._settlement_operation(session, session.ledger.merged(delta), extra.zone_id))
            status = ActivityStatus.COMPLETED

        updated = self._sessions.update_ledger_and_marker(
            session.session_id,
            expected_event_key=pending_event_key(session),
            expected_progress=marker,
            new_progress=target,
            ledger_delta=delta,
            status=status,
            active_event=event if event is not None else KEEP,
            finalize=completing,
            operations=operations,
        )
        self._publish_outcomes(updated, outcomes)

        restarted = None
        if completing:
            self._logger.info(
                "Activity completed",
                extra={"character_id": updated.character_id, "session_id": updated.session_id, "kind": self.kind.value},
            )
            self._publish_finalized(updated, ActivityStatus.COMPLETED, target, updated.ledger)
            restarted = self._after_completion(updated, now)

        view = self._poll_view(updated, current, now, outcomes, completed=completing)
        if restarted is not None:
            view.restarted_session_id = restarted.session_id
        return view

    def _stop(self, session: ActivitySession, now: datetime) -> FinalizedLedger:
        marker = session.last_processed_progress
        completion = self._completion_point(session)
        target = max(marker, min(progress_calc.progress_marker(session, now), completion))
        completing = target >= completion

        character = self._require_character(session.character_id)
        outcomes = roll_outcomes(session, marker, target, self._roll_context(session, character, allow_event=False))
        delta = fold_outcomes(outcomes)
        if completing:
            extra = self._completion_settlement(session)
            status = ActivityStatus.COMPLETED
        else:
            extra = self._early_exit_settlement(session, target)
            status = ActivityStatus.CANCELLED
        delta = delta.merged(extra.ledger)
        final_ledger = session.ledger.merged(delta)

        updated = self._sessions.update_ledger_and_marker(
            session.session_id,
            expected_event_key=pending_event_key(session),
            expected_progress=marker,
            new_progress=target,
            ledger_delta=delta,
            status=status,
            finalize=True,
            operations=[self._settlement_operation(session, final_ledger, extra.zone_id)],
        )
        self._publish_outcomes(updated, outcomes)
        self._logger.info(
            "Activity stopped",
            extra={
                "character_id": updated.character_id,
                "session_id": updated.session_id,
                "status": status.value,
                "progress": target,
            },
        )
        self._publish_finalized(updated, status, target, final_ledger)
        return self._finalized_view(updated, target, final_ledger)

    def _acknowledge_failure(self, session: ActivitySession, now: datetime) -> PollView:
        marker = session.last_processed_progress
        extra = self._early_exit_settlement(session, marker)
        final_ledger = session.ledger.merged(extra.ledger)
        updated = self._sessions.update_ledger_and_marker(
            session.session_id,
            expected_event_key=pending_event_key(session),
            expected_progress=marker,
            new_progress=marker,
            ledger_delta=extra.ledger,
            status=ActivityStatus.FAILED,
            failure_reason=session.failure_reason,
            finalize=True,
            operations=[self._settlement_operation(session, final_ledger, extra.zone_id)],
        )
        self._logger.info(
            "Activity failure acknowledged",
            extra={
                "character_id": updated.character_id,
                "session_id": updated.session_id,
                "reason": updated.failure_reason,
            },
        )
        self._publish_finalized(updated, ActivityStatus.FAILED, marker, final_ledger)
        view = self._poll_view(updated, progress_calc.progress(session, now), now, [], completed=False)
        view.failed = {"reason": str(updated.failure_reason or "")}
        return view

    def _settlement_operation(self, session: ActivitySession, ledger: RewardLedger, zone_id: Any = KEEP) -> Operation:
        return self._characters.build_settlement_operation(session.character_id, ledger=ledger, zone_id=zone_id)

    def _poll_view(
        self,
        session: ActivitySession,
        current: float,
        now: datetime,
        outcomes: Sequence[MilestoneOutcome],
        *,
        completed: bool,
    ) -> PollView:
        return PollView(
            session_id=int(session.session_id),
            kind=session.kind.value,
            status=session.status.value,
            progress=round(current, 2),
            time_spent=progress_calc.elapsed_seconds(session, now),
            marker=session.last_processed_progress,
            rewards=[outcome.to_view() for outcome in outcomes if outcome.kind == OutcomeKind.REWARD],
            discoveries=[
                str(outcome.landmark_id) for outcome in outcomes if outcome.kind == OutcomeKind.DISCOVERY
            ],
            event=session.active_event,
            completed=completed,
            ledger=session.ledger,
        )

    def _finalized_view(self, session: ActivitySession, marker: int, ledger: RewardLedger) -> FinalizedLedger:
        return FinalizedLedger(
            session_id=int(session.session_id),
            kind=session.kind.value,
            status=session.status.value,
            progress=int(marker),
            ledger=ledger,
            failure_reason=session.failure_reason,
        )

    def _require_character(self, character_id: int) -> Character:
        character = self._characters.get(character_id)
        if character is None:
            raise ValidationError(f"Unknown character: {character_id}")
        return character

    def _require_open(self, character_id: int) -> ActivitySession:
        session = self._sessions.get_open(character_id, self.kind)
        if session is None:
            raise NoActiveSessionError(f"Character {character_id} has no open {self.kind.value} session")
        return session

    def _completion_instant(self, session: ActivitySession) -> datetime:
        return session.started_at + timedelta(milliseconds=progress_calc.total_duration_ms(session))

    def _log_stale(self, session: ActivitySession, attempt: int) -> None:
        self._logger.debug(
            "Stale session marker, retrying",
            extra={
                "character_id": session.character_id,
                "session_id": session.session_id,
                "expected_progress": session.last_processed_progress,
                "attempt": attempt + 1,
            },
        )

    def _exhausted(self, character_id: int) -> StaleRetryExhaustedError:
        return StaleRetryExhaustedError(
            f"Gave up on {self.kind.value} session for character {character_id} after "
            f"{self._stale_retry_limit + 1} stale attempts"
        )

    def _publish(self, event: object) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)

    def _publish_outcomes(self, session: ActivitySession, outcomes: Sequence[MilestoneOutcome]) -> None:
        if self._event_bus is None:
            return
        zone_id = str(session.config.get("zone_id", ""))
        events: List[object] = []
        for outcome in outcomes:
            if outcome.kind == OutcomeKind.DISCOVERY and outcome.landmark_id:
                events.append(
                    LandmarkDiscovered(
                        character_id=session.character_id,
                        zone_id=zone_id,
                        landmark_id=outcome.landmark_id,
                        progress=outcome.progress,
                    )
                )
            elif outcome.kind == OutcomeKind.EVENT and outcome.event:
                events.append(
                    ExplorationEventTriggered(
                        character_id=session.character_id,
                        session_id=int(session.session_id),
                        event_key=str(outcome.event.get("key", "")),
                        progress=outcome.progress,
                    )
                )
        if events:
            self._event_bus.publish_many(events)

    def _publish_finalized(self, session: ActivitySession, status: ActivityStatus, marker: int, ledger: RewardLedger) -> None:
        self._publish(
            ActivityFinalized(
                character_id=session.character_id,
                session_id=int(session.session_id),
                kind=session.kind.value,
                status=status.value,
                progress=int(marker),
                gold=ledger.gold,
                experience=ledger.experience,
            )
        )
