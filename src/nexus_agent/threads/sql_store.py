"""Postgres-backed thread store."""

from __future__ import annotations

import logging
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import Select, desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nexus_agent.errors import DuplicateSourceThread, ThreadNotFound
from nexus_agent.threads.models import ThreadRecord
from nexus_agent.threads.schemas import (
    TERMINAL_STATUSES,
    Thread,
    ThreadMessage,
    ThreadSource,
    ThreadStatus,
    generate_id,
    utcnow,
)
from nexus_agent.threads.state import check_transition
from nexus_agent.threads.store import ThreadStore, _check_fields

logger = logging.getLogger(__name__)


def record_to_thread(record: ThreadRecord) -> Thread:
    """Convert an ORM row into the domain model."""
    return Thread.model_validate(record, from_attributes=True)


def _to_column(name: str, value: Any) -> Any:
    if name == "status" and value is not None:
        return ThreadStatus(value).value
    if name == "messages":
        return [
            m.model_dump(mode="json") if isinstance(m, ThreadMessage) else to_jsonable_python(m)
            for m in value
        ]
    if name == "context":
        return to_jsonable_python(value)
    return value


def source_query(
    source: ThreadSource, source_id: str, *, open_only: bool = False
) -> Select[tuple[ThreadRecord]]:
    """Newest thread for an origin, optionally only active or sleeping ones."""
    query = select(ThreadRecord).where(
        ThreadRecord.source == ThreadSource(source).value,
        ThreadRecord.source_id == source_id,
    )
    if open_only:
        query = query.where(
            ThreadRecord.status.not_in([s.value for s in TERMINAL_STATUSES])
        )
    return query.order_by(desc(ThreadRecord.updated_at)).limit(1)


class SqlThreadStore(ThreadStore):
    """Thread store using SQLAlchemy's async ORM over asyncpg."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> SqlThreadStore:
        engine = create_async_engine(database_url, echo=False)
        session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        return cls(session_factory, engine)

    async def create(
        self,
        source: ThreadSource,
        source_id: str | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> Thread:
        record = ThreadRecord(
            id=generate_id(),
            status=ThreadStatus.ACTIVE.value,
            source=ThreadSource(source).value,
            source_id=source_id,
            messages=[],
            context=to_jsonable_python(context or {}),
        )
        async with self._session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateSourceThread(record.source, source_id) from exc
            await session.refresh(record)
            return record_to_thread(record)

    async def get(self, thread_id: str) -> Thread:
        async with self._session_factory() as session:
            record = await session.get(ThreadRecord, thread_id)
            if record is None:
                raise ThreadNotFound(thread_id)
            return record_to_thread(record)

    async def update(
        self,
        thread_id: str,
        *,
        force_status: bool = False,
        **fields: Any,
    ) -> Thread:
        _check_fields(fields)
        async with self._session_factory() as session, session.begin():
            record = await session.get(ThreadRecord, thread_id, with_for_update=True)
            if record is None:
                raise ThreadNotFound(thread_id)

            if "status" in fields:
                check_transition(
                    ThreadStatus(record.status),
                    ThreadStatus(fields["status"]),
                    force=force_status,
                )

            for name, value in fields.items():
                setattr(record, name, _to_column(name, value))
            record.updated_at = utcnow()

        return record_to_thread(record)

    async def find_by_source(
        self, source: ThreadSource, source_id: str
    ) -> Thread | None:
        return await self._newest(source_query(source, source_id))

    async def find_open_by_source(
        self, source: ThreadSource, source_id: str
    ) -> Thread | None:
        return await self._newest(source_query(source, source_id, open_only=True))

    async def _newest(self, query: Select[tuple[ThreadRecord]]) -> Thread | None:
        async with self._session_factory() as session:
            result = await session.execute(query)
            record = result.scalar_one_or_none()
            return record_to_thread(record) if record is not None else None

    async def list_threads(
        self,
        *,
        status: ThreadStatus | None = None,
        source: ThreadSource | None = None,
        limit: int = 50,
    ) -> list[Thread]:
        query = select(ThreadRecord)
        if status is not None:
            query = query.where(ThreadRecord.status == ThreadStatus(status).value)
        if source is not None:
            query = query.where(ThreadRecord.source == ThreadSource(source).value)
        query = query.order_by(desc(ThreadRecord.updated_at)).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [record_to_thread(r) for r in result.scalars()]

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Disposed thread store engine")
