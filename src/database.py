from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from asyncpg import Connection
from uuid import uuid4
from sqlalchemy import (
    Column, ForeignKey, Integer, String,
    func, DateTime, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship

import config

class Base(DeclarativeBase): pass


class FixedConnection(Connection):
    def _get_unique_id(self, prefix: str) -> str:
        return f'__asyncpg_{prefix}_{uuid4()}__'


engine = None
AsyncSessionLocal = None


def get_engine(url: str = None):
    global engine, AsyncSessionLocal
    if engine is None:
        url = url or config.DATABASE_URL
        connect_args = {}
        if url.startswith("postgresql+asyncpg"):
            connect_args = {
                "statement_cache_size": 0,
                "prepared_statement_cache_size": 0,
                "connection_class": FixedConnection,
            }
        engine = create_async_engine(url, echo=False, future=True, connect_args=connect_args)
        # Фабрика сессий
        AsyncSessionLocal = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )
    return engine


async def init_models():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session():
    get_engine()
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

#ORM

class TournamentORM(Base):
    __tablename__ = "tournaments"

    id            = Column(String, primary_key=True)
    mode          = Column(String, nullable=False, default="knockout")
    name          = Column(String, nullable=False)
    status        = Column(String, nullable=False, default="setup")
    created_at    = Column(DateTime(timezone=True), server_default=func.now())

    teams = relationship(
        "TeamORM",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="TeamORM.registration_order",
        lazy="selectin",
    )
    matches = relationship(
        "MatchORM",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="MatchORM.round, MatchORM.slot",
        lazy="selectin",
    )


class TeamORM(Base):
    __tablename__ = "teams"

    id                 = Column(String, primary_key=True)
    tournament_id      = Column(String, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    name               = Column(String, nullable=True)
    seed               = Column(Integer, nullable=True)
    registration_order = Column(Integer, nullable=False, default=0)

    tournament = relationship("TournamentORM", back_populates="teams")
    players = relationship(
        "PlayerORM",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="PlayerORM.position",
        lazy="selectin",
    )


class PlayerORM(Base):
    __tablename__ = "players"

    id            = Column(String, primary_key=True)
    team_id       = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    name          = Column(String, nullable=False)
    position      = Column(Integer, nullable=False, default=0)  # 0 | 1

    team = relationship("TeamORM", back_populates="players")


class MatchORM(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("tournament_id", "round", "slot", name="uq_matches_tournament_round_slot"),
    )

    id            = Column(String, primary_key=True)
    tournament_id = Column(String, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    round         = Column(Integer, nullable=False)
    slot          = Column(Integer, nullable=False)
    home_team_id  = Column(String, ForeignKey("teams.id"), nullable=True)
    away_team_id  = Column(String, ForeignKey("teams.id"), nullable=True)
    status        = Column(String, nullable=False, default="unscheduled")
    score         = Column(String, nullable=True)   # "6-4,3-6,10-8"
    winner_id     = Column(String, ForeignKey("teams.id"), nullable=True)
    court         = Column(String, nullable=True)
    scheduled_at  = Column(DateTime(timezone=True), nullable=True)
    version       = Column(Integer, nullable=False, default=0)

    tournament = relationship("TournamentORM", back_populates="matches")
