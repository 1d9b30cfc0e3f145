"""Thread store interface and an in-process implementation."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from nexus_agent.errors import DuplicateSourceThread, ThreadNotFound
from nexus_agent.threads.schemas import (
    Thread,
    ThreadSource,
    ThreadStatus,
    generate_id,
    utcnow,
)
from nexus_agent.threads.state import check_transition

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {"status", "title", "messages", "context", "wake_job_id", "wake_reason"}
)


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        msg = f"Cannot update thread fields: {sorted(unknown)}"
        raise TypeError(msg)


class ThreadStore(ABC):
    """Durable record of threads.

    Writes are unconditional whole-field replacements (last write wins).
    Callers serialize access per thread, so no version check is made.
    """

    @abstractmethod
    async def create(
        self,
        source: ThreadSource,
        source_id: str | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> Thread:
        """Create a new active thread.

        Raises:
            DuplicateSourceThread: If an open alert thread already exists for
                the same source id.
        """

    @abstractmethod
    async def get(self, thread_id: str) -> Thread:
        """Load a thread.

        Raises:
            ThreadNotFound: If the id is unknown.
        """

    @abstractmethod
    async def update(
        self,
        thread_id: str,
        *,
        force_status: bool = False,
        **fields: Any,
    ) -> Thread:
        """Replace the given fields and bump updated_at.

        Args:
            thread_id: Thread to update.
            force_status: Allow a forced move to failed from any status.
            **fields: Any of status, title, messages, context, wake_job_id,
                wake_reason.

        Raises:
            ThreadNotFound: If the id is unknown.
            InvalidStatusTransition: If a status change leaves a terminal state.
        """

    @abstractmethod
    async def find_by_source(
        self, source: ThreadSource, source_id: str
    ) -> Thread | None:
        """Most recently updated thread with this origin, if any."""

    @abstractmethod
    async def find_open_by_source(
        self, source: ThreadSource, source_id: str
    ) -> Thread | None:
        """Most recently updated active or sleeping thread with this origin.

        Complete and failed threads are skipped even when they were touched
        more recently than the open one.
        """

    @abstractmethod
    async def list_threads(
        self,
        *,
        status: ThreadStatus | None = None,
        source: ThreadSource | None = None,
        limit: int = 50,
    ) -> list[Thread]:
        """Threads ordered by most recently updated first."""

    async def close(self) -> None:  # noqa: B027
        """Release any underlying connections."""

    async def set_wake(self, thread_id: str, job_id: str, reason: str) -> Thread:
        """Record a pending wake and put the thread to sleep."""
        return await self.update(
            thread_id,
            status=ThreadStatus.SLEEPING,
            wake_job_id=job_id,
            wake_reason=reason,
        )

    async def clear_wake(self, thread_id: str) -> Thread:
        """Drop the pending wake handle; a sleeping thread becomes active."""
        thread = await self.get(thread_id)
        status = ThreadStatus.ACTIVE if thread.status == ThreadStatus.SLEEPING else thread.status
        return await self.update(
            thread_id,
            status=status,
            wake_job_id=None,
            wake_reason=None,
        )

    async def mark_failed(self, thread_id: str) -> Thread:
        """Force the thread into the failed state."""
        return await self.update(thread_id, force_status=True, status=ThreadStatus.FAILED)


class InMemoryThreadStore(ThreadStore):
    """Process-local store.

    Threads are copied on every read and write so callers never share
    mutable state with the store, matching the semantics of a real database.
    """

    def __init__(self) -> None:
        self._threads: dict[str, Thread] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        source: ThreadSource,
        source_id: str | None = None,
        *,
        context: dict[str, Any] | None = None,
    ) -> Thread:
        async with self._lock:
            if source == ThreadSource.ALERT and source_id is not None:
                for existing in self._threads.values():
                    if (
                        existing.source == source
                        and existing.source_id == source_id
                        and not existing.is_terminal
                    ):
                        raise DuplicateSourceThread(source.value, source_id)

            thread = Thread(
                id=generate_id(),
                source=source,
                source_id=source_id,
                context=dict(context or {}),
            )
            self._threads[thread.id] = thread
            logger.debug("Created thread %s in memory", thread.id)
            return thread.model_copy(deep=True)

    async def get(self, thread_id: str) -> Thread:
        thread = self._threads.get(thread_id)
        if thread is None:
            raise ThreadNotFound(thread_id)
        return thread.model_copy(deep=True)

    async def update(
        self,
        thread_id: str,
        *,
        force_status: bool = False,
        **fields: Any,
    ) -> Thread:
        _check_fields(fields)
        async with self._lock:
            current = self._threads.get(thread_id)
            if current is None:
                raise ThreadNotFound(thread_id)

            if "status" in fields:
                check_transition(
                    current.status, ThreadStatus(fields["status"]), force=force_status
                )

            data = current.model_dump()
            data.update(fields)
            data["updated_at"] = utcnow()
            updated = Thread.model_validate(data)
            self._threads[thread_id] = updated
            return updated.model_copy(deep=True)

    async def find_by_source(
        self, source: ThreadSource, source_id: str
    ) -> Thread | None:
        return self._newest(source, source_id, open_only=False)

    async def find_open_by_source(
        self, source: ThreadSource, source_id: str
    ) -> Thread | None:
        return self._newest(source, source_id, open_only=True)

    def _newest(
        self, source: ThreadSource, source_id: str, *, open_only: bool
    ) -> Thread | None:
        matches = [
            t for t in self._threads.values()
            if t.source == source
            and t.source_id == source_id
            and not (open_only and t.is_terminal)
        ]
        if not matches:
            return None
        # max() keeps the first of equal keys, so scan newest-inserted first
        newest = max(reversed(matches), key=lambda t: t.updated_at)
        return newest.model_copy(deep=True)

    async def list_threads(
        self,
        *,
        status: ThreadStatus | None = None,
        source: ThreadSource | None = None,
        limit: int = 50,
    ) -> list[Thread]:
        threads = [
            t for t in self._threads.values()
            if (status is None or t.status == status)
            and (source is None or t.source == source)
        ]
        threads.sort(key=lambda t: t.updated_at, reverse=True)
        return [t.model_copy(deep=True) for t in threads[:limit]]
