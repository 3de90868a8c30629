from __future__ import annotations

import asyncio
import datetime
import logging
import unicodedata
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .util import utcnow

Base = declarative_base()
logger = logging.getLogger(__name__)


def normalize_topic_name(name: str) -> str:
    """Lookup key for topic names: NFKC, casefolded, single-spaced."""
    folded = unicodedata.normalize("NFKC", name or "").casefold()
    return " ".join(folded.split())


def join_keywords(keywords: Iterable[str]) -> str:
    return ", ".join(k for k in keywords if k)


def split_keywords(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class Token(Base):
    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True)
    address = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False, default="")
    symbol = Column(String, nullable=False, default="")
    decimals = Column(Integer)
    icon = Column(String, nullable=False, default="")
    created_at = Column(DateTime, default=utcnow, index=True)
    first_seen_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Token {self.symbol or '?'} {self.address}>"


class MarketSnapshot(Base):
    __tablename__ = "market_snapshots"

    id = Column(Integer, primary_key=True)
    token_id = Column(Integer, ForeignKey("tokens.id"), nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    price_change_24h = Column(Float, nullable=False, default=0.0)
    market_cap = Column(Float, nullable=False, default=0.0)
    volume_24h = Column(Float, nullable=False, default=0.0)
    liquidity = Column(Float, nullable=False, default=0.0)
    holder_count = Column(Integer, nullable=False, default=0)
    tx_count_24h = Column(Integer, nullable=False, default=0)
    fdv = Column(Float, nullable=False, default=0.0)
    source = Column(String, nullable=False, default="")
    timestamp = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("token_id", "timestamp", name="uq_snapshot_token_ts"),
        Index("ix_snapshots_token_ts", "token_id", "timestamp"),
    )


class Topic(Base):
    __tablename__ = "topics"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    normalized_name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")
    keywords = Column(Text, nullable=False, default="")
    hotness = Column(Float, nullable=False, default=0.0, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    @property
    def keyword_list(self) -> list[str]:
        return split_keywords(self.keywords)


class TopicToken(Base):
    __tablename__ = "topic_tokens"

    id = Column(Integer, primary_key=True)
    topic_id = Column(Integer, ForeignKey("topics.id"), nullable=False)
    token_id = Column(Integer, ForeignKey("tokens.id"), nullable=False, index=True)
    added_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("topic_id", "token_id", name="uq_topic_token"),
        Index("ix_topic_tokens_topic_added", "topic_id", "added_at"),
    )


_SNAPSHOT_FIELDS = (
    "price",
    "price_change_24h",
    "market_cap",
    "volume_24h",
    "liquidity",
    "holder_count",
    "tx_count_24h",
    "fdv",
    "source",
)


def _enable_sqlite_fk(dbapi_conn: Any, _record: Any) -> None:
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


class TrendStore:
    """Async SQLAlchemy persistence for tokens, snapshots and topics.

    Every write is idempotent under retry: creating something that already
    exists returns the existing row.
    """

    def __init__(self, url: str = "sqlite:///trendhunter.db"):
        if url.startswith("sqlite:///"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)

        self.engine = create_async_engine(url, echo=False, future=True)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_fk)
        self.Session: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine, expire_on_commit=False
        )
        self._init_task = asyncio.create_task(self._init_models())

    async def _init_models(self) -> None:
        async with self.engine.begin() as conn:
            try:
                if str(self.engine.url).startswith("sqlite+aiosqlite") and ":memory:" not in str(
                    self.engine.url
                ):
                    await conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
                    await conn.exec_driver_sql("PRAGMA synchronous=NORMAL;")
            except Exception:
                logger.debug("SQLite PRAGMA tuning failed", exc_info=True)
            await conn.run_sync(Base.metadata.create_all)

    async def ready(self) -> None:
        await self._init_task

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def find_token(self, address: str) -> Token | None:
        await self._init_task
        async with self.Session() as session:
            result = await session.execute(select(Token).filter_by(address=address))
            return result.scalar_one_or_none()

    async def create_token(
        self,
        address: str,
        *,
        name: str = "",
        symbol: str = "",
        decimals: int | None = None,
        icon: str = "",
        created_at: datetime.datetime | None = None,
    ) -> tuple[Token, bool]:
        """Insert a token record, or return the existing one.

        The second element is ``True`` when a row was inserted. For an
        existing token the metadata rule of :meth:`apply_metadata` applies.
        """

        await self._init_task
        existing = await self.find_token(address)
        if existing is not None:
            updated = await self.apply_metadata(
                address, name=name, symbol=symbol, icon=icon, decimals=decimals
            )
            return updated or existing, False

        now = utcnow()
        token = Token(
            address=address,
            name=name or "",
            symbol=symbol or "",
            decimals=decimals,
            icon=icon or "",
            created_at=created_at or now,
            first_seen_at=now,
        )
        async with self.Session() as session:
            session.add(token)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug("Token %s inserted concurrently; reusing row", address)
                existing = await self.find_token(address)
                if existing is None:  # pragma: no cover - constraint without row
                    raise
                return existing, False
        logger.debug("Created token %s (%s)", address, symbol)
        return token, True

    async def apply_metadata(
        self,
        address: str,
        *,
        name: str = "",
        symbol: str = "",
        icon: str = "",
        decimals: int | None = None,
    ) -> Token | None:
        """Overwrite name/symbol only when a non-empty icon fills an empty one.

        Returns the updated token, or ``None`` when nothing changed.
        """

        if not icon:
            return None
        await self._init_task
        async with self.Session() as session:
            result = await session.execute(select(Token).filter_by(address=address))
            token = result.scalar_one_or_none()
            if token is None or token.icon:
                return None
            token.icon = icon
            if name:
                token.name = name
            if symbol:
                token.symbol = symbol
            if token.decimals is None and decimals is not None:
                token.decimals = decimals
            await session.commit()
            logger.info("Filled metadata for %s: %s (%s)", address, token.name, token.symbol)
            return token

    async def unassigned_tokens(
        self, since: datetime.datetime, limit: int | None = None
    ) -> list[Token]:
        """Tokens first seen at or after *since* that belong to no topic."""

        await self._init_task
        member = select(TopicToken.id).where(TopicToken.token_id == Token.id).exists()
        stmt = (
            select(Token)
            .where(Token.first_seen_at >= since, ~member)
            .order_by(Token.first_seen_at, Token.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.Session() as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    # ------------------------------------------------------------------
    # Market snapshots
    # ------------------------------------------------------------------

    async def append_market_snapshot(
        self,
        token_id: int,
        fields: Mapping[str, Any],
        *,
        timestamp: datetime.datetime | None = None,
    ) -> MarketSnapshot:
        """Append an immutable snapshot row.

        Retrying with the same ``(token_id, timestamp)`` returns the row that
        was written the first time.
        """

        await self._init_task
        values = {key: fields[key] for key in _SNAPSHOT_FIELDS if fields.get(key) is not None}
        snap = MarketSnapshot(token_id=token_id, timestamp=timestamp or utcnow(), **values)
        async with self.Session() as session:
            session.add(snap)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                result = await session.execute(
                    select(MarketSnapshot).filter_by(token_id=token_id, timestamp=snap.timestamp)
                )
                existing = result.scalar_one_or_none()
                if existing is None:
                    raise
                return existing
        return snap

    async def latest_snapshot(self, token_id: int) -> MarketSnapshot | None:
        await self._init_task
        stmt = (
            select(MarketSnapshot)
            .where(MarketSnapshot.token_id == token_id)
            .order_by(MarketSnapshot.timestamp.desc(), MarketSnapshot.id.desc())
            .limit(1)
        )
        async with self.Session() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def snapshots(self, token_id: int) -> list[MarketSnapshot]:
        await self._init_task
        stmt = (
            select(MarketSnapshot)
            .where(MarketSnapshot.token_id == token_id)
            .order_by(MarketSnapshot.timestamp, MarketSnapshot.id)
        )
        async with self.Session() as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    def _latest_ids(self):
        ranked = select(
            MarketSnapshot.id.label("snapshot_id"),
            func.row_number()
            .over(
                partition_by=MarketSnapshot.token_id,
                order_by=(MarketSnapshot.timestamp.desc(), MarketSnapshot.id.desc()),
            )
            .label("rn"),
        ).subquery()
        return select(ranked.c.snapshot_id).where(ranked.c.rn == 1)

    async def tracked_tokens(self) -> list[tuple[Token, MarketSnapshot]]:
        """Every token with at least one snapshot, paired with its latest one."""

        await self._init_task
        stmt = (
            select(Token, MarketSnapshot)
            .join(MarketSnapshot, MarketSnapshot.token_id == Token.id)
            .where(MarketSnapshot.id.in_(self._latest_ids()))
            .order_by(Token.id)
        )
        async with self.Session() as session:
            result = await session.execute(stmt)
            return [(token, snap) for token, snap in result.all()]

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def find_topic_by_name(self, name: str) -> Topic | None:
        await self._init_task
        key = normalize_topic_name(name)
        async with self.Session() as session:
            result = await session.execute(select(Topic).filter_by(normalized_name=key))
            return result.scalar_one_or_none()

    async def get_topic(self, topic_id: int) -> Topic | None:
        await self._init_task
        async with self.Session() as session:
            return await session.get(Topic, topic_id)

    async def create_topic(
        self,
        name: str,
        *,
        description: str = "",
        keywords: Sequence[str] = (),
        hotness: float = 0.0,
    ) -> tuple[Topic, bool]:
        """Create a topic keyed by its normalized name, or return the existing one."""

        await self._init_task
        existing = await self.find_topic_by_name(name)
        if existing is not None:
            return existing, False
        now = utcnow()
        topic = Topic(
            name=name,
            normalized_name=normalize_topic_name(name),
            description=description,
            keywords=join_keywords(keywords),
            hotness=float(hotness),
            created_at=now,
            updated_at=now,
        )
        async with self.Session() as session:
            session.add(topic)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self.find_topic_by_name(name)
                if existing is None:  # pragma: no cover - constraint without row
                    raise
                return existing, False
        logger.info("Created topic %r", name)
        return topic, True

    async def update_topic(
        self,
        topic_id: int,
        *,
        description: str | None = None,
        keywords: Sequence[str] | None = None,
        hotness: float | None = None,
    ) -> Topic:
        await self._init_task
        async with self.Session() as session:
            topic = await session.get(Topic, topic_id)
            if topic is None:
                raise LookupError(f"topic {topic_id} does not exist")
            if description is not None:
                topic.description = description
            if keywords is not None:
                topic.keywords = join_keywords(keywords)
            if hotness is not None:
                topic.hotness = float(hotness)
            topic.updated_at = utcnow()
            await session.commit()
            return topic

    async def add_member_to_topic(
        self,
        topic_id: int,
        token_id: int,
        *,
        added_at: datetime.datetime | None = None,
    ) -> bool:
        """Associate a token with a topic; ``False`` if it already was."""

        await self._init_task
        async with self.Session() as session:
            result = await session.execute(
                select(TopicToken.id).filter_by(topic_id=topic_id, token_id=token_id)
            )
            if result.scalar_one_or_none() is not None:
                return False
            session.add(
                TopicToken(topic_id=topic_id, token_id=token_id, added_at=added_at or utcnow())
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def topic_members(
        self, topic_id: int
    ) -> list[tuple[Token, TopicToken, MarketSnapshot | None]]:
        """Members in association order with their latest snapshot (if any)."""

        await self._init_task
        latest = (
            select(MarketSnapshot)
            .where(MarketSnapshot.id.in_(self._latest_ids()))
            .subquery()
        )
        stmt = (
            select(Token, TopicToken, latest.c.id)
            .join(TopicToken, TopicToken.token_id == Token.id)
            .outerjoin(latest, latest.c.token_id == Token.id)
            .where(TopicToken.topic_id == topic_id)
            .order_by(TopicToken.added_at, TopicToken.id)
        )
        async with self.Session() as session:
            rows = (await session.execute(stmt)).all()
            snap_ids = [snap_id for _, _, snap_id in rows if snap_id is not None]
            snaps: dict[int, MarketSnapshot] = {}
            if snap_ids:
                found = await session.execute(
                    select(MarketSnapshot).where(MarketSnapshot.id.in_(snap_ids))
                )
                snaps = {s.id: s for s in found.scalars()}
            return [
                (token, link, snaps.get(snap_id) if snap_id is not None else None)
                for token, link, snap_id in rows
            ]

    async def list_topics(self, limit: int | None = None) -> list[Topic]:
        await self._init_task
        stmt = select(Topic).order_by(Topic.hotness.desc(), Topic.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.Session() as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    async def close(self) -> None:
        if not self._init_task.done():
            self._init_task.cancel()
        await self.engine.dispose()

    async def __aenter__(self) -> "TrendStore":
        await self._init_task
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = [
    "Base",
    "Token",
    "MarketSnapshot",
    "Topic",
    "TopicToken",
    "TrendStore",
    "normalize_topic_name",
    "join_keywords",
    "split_keywords",
]
