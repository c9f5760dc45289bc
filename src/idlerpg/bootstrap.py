from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError

from idlerpg.application.services.activity_service import DEFAULT_STALE_RETRY_LIMIT, utc_now
from idlerpg.application.services.balance_tables import EXPLORATION_SECONDS_PER_PERCENT
from idlerpg.application.services.combat_service import CombatService, DefeatPenalty
from idlerpg.application.services.crafting_service import CraftingService
from idlerpg.application.services.engine_service import ActivityEngine
from idlerpg.application.services.event_bus import EventBus
from idlerpg.application.services.exploration_service import ExplorationService
from idlerpg.application.services.travel_service import TravelService
from idlerpg.domain.events import ActivityFinalized, CombatEnded, LandmarkDiscovered
from idlerpg.domain.repositories import ActivitySessionRepository, CharacterRepository, CombatRepository
from idlerpg.infrastructure.db.inmemory.repos import (
    InMemoryActivitySessionRepository,
    InMemoryCharacterRepository,
    InMemoryCombatRepository,
    InMemoryWorldRepository,
)
from idlerpg.infrastructure.inmemory.atomic_persistence import InMemoryUnitOfWork


logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class EngineSettings:
    database_url: Optional[str] = None
    rng_seed: Optional[int] = None
    stale_retry_limit: int = DEFAULT_STALE_RETRY_LIMIT
    defeat_penalty: DefeatPenalty = DefeatPenalty.RESTORE_HALF
    exploration_seconds_per_percent: int = EXPLORATION_SECONDS_PER_PERCENT
    auto_migrate: bool = True
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        penalty = os.getenv("RPG_DEFEAT_PENALTY", DefeatPenalty.RESTORE_HALF.value).strip().lower()
        try:
            defeat_penalty = DefeatPenalty(penalty)
        except ValueError:
            raise ValueError(
                f"RPG_DEFEAT_PENALTY must be one of {', '.join(p.value for p in DefeatPenalty)}, got {penalty!r}"
            ) from None
        return cls(
            database_url=os.getenv("RPG_DATABASE_URL") or None,
            rng_seed=_env_int("RPG_RNG_SEED", None),
            stale_retry_limit=_env_int("RPG_STALE_RETRY_LIMIT", DEFAULT_STALE_RETRY_LIMIT),
            defeat_penalty=defeat_penalty,
            exploration_seconds_per_percent=_env_int(
                "RPG_EXPLORATION_SECONDS_PER_PERCENT", EXPLORATION_SECONDS_PER_PERCENT
            ),
            auto_migrate=os.getenv("RPG_AUTO_MIGRATE", "1").strip().lower() in _TRUTHY,
            log_level=os.getenv("RPG_LOG_LEVEL", "WARNING").strip().upper() or "WARNING",
        )


def configure_logging(settings: EngineSettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _looks_like_local_mysql_unreachable(database_url: str) -> bool:
    if not database_url:
        return False

    parsed = urlparse(database_url)
    if not parsed.scheme.startswith("mysql"):
        return False

    host = (parsed.hostname or "").strip().lower()
    if host not in {"localhost", "127.0.0.1", "::1"}:
        return False

    port = parsed.port or 3306
    timeout = float(os.getenv("RPG_DB_CONNECT_PROBE_TIMEOUT_S", "0.35"))

    try:
        with socket.create_connection((host, port), timeout=timeout):
            return False
    except OSError:
        return True


def register_audit_handlers(event_bus: EventBus) -> None:
    audit = logging.getLogger("idlerpg.audit")

    def _on_finalized(event: ActivityFinalized) -> None:
        audit.info(
            "Activity finalized",
            extra={
                "character_id": event.character_id,
                "session_id": event.session_id,
                "kind": event.kind,
                "status": event.status,
                "gold": event.gold,
                "experience": event.experience,
            },
        )

    def _on_discovery(event: LandmarkDiscovered) -> None:
        audit.info(
            "Landmark discovered",
            extra={"character_id": event.character_id, "zone_id": event.zone_id, "landmark_id": event.landmark_id},
        )

    def _on_combat(event: CombatEnded) -> None:
        audit.info(
            "Combat finished",
            extra={"character_id": event.character_id, "enemy_id": event.enemy_id, "victory": event.victory},
        )

    event_bus.subscribe(ActivityFinalized, _on_finalized)
    event_bus.subscribe(LandmarkDiscovered, _on_discovery)
    event_bus.subscribe(CombatEnded, _on_combat)


def _assemble(
    settings: EngineSettings,
    *,
    sessions: ActivitySessionRepository,
    characters: CharacterRepository,
    combats: CombatRepository,
    clock: Callable[[], datetime],
) -> ActivityEngine:
    world = InMemoryWorldRepository()
    event_bus = EventBus()
    register_audit_handlers(event_bus)

    def _seed(offset: int) -> Optional[int]:
        return None if settings.rng_seed is None else settings.rng_seed + offset

    shared = dict(clock=clock, event_bus=event_bus, stale_retry_limit=settings.stale_retry_limit)
    return ActivityEngine(
        travel=TravelService(sessions, characters, world, rng_seed=_seed(1), **shared),
        exploration=ExplorationService(
            sessions,
            characters,
            world,
            rng_seed=_seed(2),
            seconds_per_percent=settings.exploration_seconds_per_percent,
            **shared,
        ),
        crafting=CraftingService(sessions, characters, world, rng_seed=_seed(3), **shared),
        combat=CombatService(
            combats,
            characters,
            world,
            defeat_penalty=settings.defeat_penalty,
            event_publisher=event_bus.publish,
            clock=clock,
            rng_seed=_seed(4),
        ),
        characters=characters,
        world=world,
        event_bus=event_bus,
    )


def build_inmemory_engine(
    settings: EngineSettings | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> ActivityEngine:
    settings = settings or EngineSettings()
    clock = clock or utc_now
    unit = InMemoryUnitOfWork()
    return _assemble(
        settings,
        sessions=InMemoryActivitySessionRepository(unit, clock=clock),
        characters=InMemoryCharacterRepository(unit=unit),
        combats=InMemoryCombatRepository(unit, clock=clock),
        clock=clock,
    )


def build_sql_engine(
    settings: EngineSettings,
    *,
    clock: Callable[[], datetime] | None = None,
) -> ActivityEngine:
    from idlerpg.infrastructure.db.sql import connection
    from idlerpg.infrastructure.db.sql.migrate import apply_schema
    from idlerpg.infrastructure.db.sql.repos import (
        SqlActivitySessionRepository,
        SqlCharacterRepository,
        SqlCombatRepository,
    )

    clock = clock or utc_now
    engine = connection.configure(settings.database_url)
    session_factory = connection.SessionLocal
    if settings.auto_migrate:
        # also acts as the connectivity probe before the engine is handed out
        apply_schema(engine)
    return _assemble(
        settings,
        sessions=SqlActivitySessionRepository(session_factory, clock=clock),
        characters=SqlCharacterRepository(session_factory),
        combats=SqlCombatRepository(session_factory, clock=clock),
        clock=clock,
    )


def create_activity_engine(settings: EngineSettings | None = None) -> ActivityEngine:
    settings = settings or EngineSettings.from_env()
    database_url = settings.database_url
    if database_url:
        if _looks_like_local_mysql_unreachable(database_url):
            logger.warning("MySQL appears unreachable, falling back to in-memory", extra={"database_url": database_url})
            return build_inmemory_engine(settings)
        try:
            return build_sql_engine(settings)
        except SQLAlchemyError as exc:
            logger.warning("SQL backend unavailable, falling back to in-memory: %s", exc)

    return build_inmemory_engine(settings)
