from __future__ import annotations

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


DATABASE_URL = os.getenv("RPG_DATABASE_URL", "sqlite:///idlerpg.db")

SessionLocal = sessionmaker(autoflush=False, autocommit=False, future=True)


def build_engine(database_url: str | None = None, *, echo: bool = False) -> Engine:
    url = database_url or DATABASE_URL
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:"):
        # one shared connection so every session sees the same in-memory database
        return create_engine(
            url,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, future=True, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, future=True, pool_pre_ping=True)


def configure(database_url: str | None = None, *, echo: bool = False) -> Engine:
    engine = build_engine(database_url, echo=echo)
    SessionLocal.configure(bind=engine)
    return engine


def dialect_name(session) -> str:
    return session.bind.dialect.name if session.bind is not None else "mysql"
