"""
Persistent byte-range store.

Raw byte ranges fetched from a media URL are kept in a SQL table keyed by
``(url, range_start, range_end)`` so that a later process can serve repeated
reads without touching the network. Decoded frames are never persisted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import BigInteger, DateTime, Index, LargeBinary, String, delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Mapped, mapped_column

from gopcache.infra.db import Base, get_engine, get_sessionmaker, session_scope

_logger = logging.getLogger(__name__)


def range_key(url: str, start: int, end: int) -> str:
    """Storage key for ``[start, end)`` of ``url``."""
    return f"{url}:{start}-{end}"


class CachedRange(Base):
    __tablename__ = "cached_ranges"
    __table_args__ = (Index("ix_cached_ranges_url", "url"),)

    id: Mapped[str] = mapped_column(String(2048), primary_key=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    range_start: Mapped[int] = mapped_column(BigInteger, nullable=False)
    range_end: Mapped[int] = mapped_column(BigInteger, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class RangeStore:
    """Key-value byte store for fetched ranges, backed by SQLAlchemy."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = get_sessionmaker(engine)
        Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, db_url: str) -> RangeStore:
        return cls(get_engine(db_url))

    def get(self, url: str, start: int, end: int) -> bytes | None:
        with session_scope(self._sessions) as session:
            row = session.get(CachedRange, range_key(url, start, end))
            if row is None:
                _logger.debug("Range cache miss %s [%d, %d)", url, start, end)
                return None
            _logger.debug("Range cache hit %s [%d, %d)", url, start, end)
            return bytes(row.data)

    def put(self, url: str, start: int, end: int, data: bytes) -> None:
        with session_scope(self._sessions) as session:
            session.merge(
                CachedRange(
                    id=range_key(url, start, end),
                    url=url,
                    range_start=start,
                    range_end=end,
                    data=data,
                )
            )

    def clear(self, url: str | None = None) -> int:
        """Delete stored ranges (all, or those of one URL). Returns the row count."""
        with session_scope(self._sessions) as session:
            stmt = delete(CachedRange)
            if url is not None:
                stmt = stmt.where(CachedRange.url == url)
            result = session.execute(stmt)
            removed = result.rowcount or 0
        _logger.info("Cleared %d cached ranges (url=%s)", removed, url)
        return removed

    def stats(self) -> dict[str, Any]:
        with session_scope(self._sessions) as session:
            count, size = session.execute(
                select(func.count(CachedRange.id), func.coalesce(func.sum(func.length(CachedRange.data)), 0))
            ).one()
            urls = session.execute(select(CachedRange.url).distinct().order_by(CachedRange.url)).scalars().all()
        return {"count": int(count), "size": int(size), "urls": list(urls)}

    def dispose(self) -> None:
        self._engine.dispose()
