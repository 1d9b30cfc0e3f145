"""Alert ingestion: one investigation thread per firing alert."""

from __future__ import annotations

import asyncio
import logging
import weakref

from pydantic import BaseModel, Field

from nexus_agent.agent.prompts import build_alert_message
from nexus_agent.agent.service import AgentService
from nexus_agent.errors import DuplicateSourceThread
from nexus_agent.tasks import spawn
from nexus_agent.threads import Thread, ThreadSource

logger = logging.getLogger(__name__)


class AlertInput(BaseModel):
    """A single normalized alert from Grafana or Alertmanager."""

    alert_name: str
    severity: str
    description: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    starts_at: str
    fingerprint: str
    generator_url: str | None = None

    def context(self) -> dict[str, object]:
        """What is stored on the thread under ``context["alert"]``."""
        return {
            "name": self.alert_name,
            "severity": self.severity,
            "labels": self.labels,
            "annotations": self.annotations,
            "starts_at": self.starts_at,
            "generator_url": self.generator_url,
        }


class AlertIngestor:
    """Creates alert threads, deduplicated by fingerprint.

    Within one process a per-fingerprint lock serializes lookups; across
    processes the store refuses a second open thread for the same
    fingerprint and the existing one is returned instead.
    """

    def __init__(self, service: AgentService) -> None:
        self._service = service
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock(self, fingerprint: str) -> asyncio.Lock:
        lock = self._locks.get(fingerprint)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[fingerprint] = lock
        return lock

    async def create_thread_from_alert(self, alert: AlertInput) -> Thread:
        """Return the open thread for this alert, or create one and investigate.

        The investigation runs in the background; its failure marks the
        thread failed and is never raised to the caller.
        """
        store = self._service.store
        async with self._lock(alert.fingerprint):
            existing = await store.find_open_by_source(ThreadSource.ALERT, alert.fingerprint)
            if existing is not None:
                logger.info(
                    "Alert %s already has open thread %s, skipping",
                    alert.fingerprint,
                    existing.id,
                )
                return existing

            try:
                thread = await self._service.create_thread(
                    ThreadSource.ALERT, alert.fingerprint, context={"alert": alert.context()}
                )
            except DuplicateSourceThread:
                existing = await store.find_open_by_source(ThreadSource.ALERT, alert.fingerprint)
                if existing is None:
                    raise
                logger.info(
                    "Alert %s thread %s was created concurrently, reusing it",
                    alert.fingerprint,
                    existing.id,
                )
                return existing

        logger.info(
            "Created thread %s for alert %s (%s)", thread.id, alert.alert_name, alert.severity
        )
        spawn(self._investigate(thread.id, alert), name=f"alert:{thread.id}")
        return thread

    async def _investigate(self, thread_id: str, alert: AlertInput) -> None:
        try:
            await self._service.send_message(thread_id, build_alert_message(alert))
        except Exception:
            logger.exception("Investigation of alert %s on thread %s failed", alert.alert_name, thread_id)
            await self._service.store.mark_failed(thread_id)
