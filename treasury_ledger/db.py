from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine


def make_engine(url: str) -> Engine:
    """Engine for the treasury database. In-memory sqlite shares one connection."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    return create_engine(url, echo=False, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Initialise tables (idempotent)."""
    # register every table on SQLModel.metadata before create_all
    import common.audit  # noqa: F401
    import settlement.models  # noqa: F401
    import treasury_ledger.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
