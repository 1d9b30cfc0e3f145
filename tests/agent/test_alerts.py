"""Tests for alert ingestion and investigation prompts."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from nexus_agent.agent.alerts import AlertIngestor, AlertInput
from nexus_agent.agent.prompts import INVESTIGATION_INSTRUCTION, build_alert_message
from nexus_agent.agent.service import AgentService
from nexus_agent.errors import DuplicateSourceThread
from nexus_agent.tasks import drain
from nexus_agent.threads import InMemoryThreadStore, ThreadSource, ThreadStatus
from tests.conftest import ScriptedModel, reply


def make_alert(**overrides) -> AlertInput:
    fields = {
        "alert_name": "HighCPU",
        "severity": "critical",
        "description": "CPU above 90% for 5 minutes",
        "labels": {"alertname": "HighCPU", "instance": "web-1"},
        "annotations": {"summary": "CPU hot", "runbook": "https://runbooks/cpu"},
        "starts_at": "2024-05-01T10:00:00Z",
        "fingerprint": "abc123",
        "generator_url": "http://alertmanager/graph",
    }
    fields.update(overrides)
    return AlertInput(**fields)


class TestAlertMessage:
    def test_contains_alert_details_in_order(self) -> None:
        message = build_alert_message(make_alert())

        assert message.startswith("**Alert: HighCPU** (critical)")
        assert "CPU above 90% for 5 minutes" in message
        assert "- instance: web-1" in message
        assert "- runbook: https://runbooks/cpu" in message
        assert "summary" not in message
        assert "[View in Alertmanager](http://alertmanager/graph)" in message
        assert message.endswith(INVESTIGATION_INSTRUCTION)
        assert message.index("**Labels:**") < message.index("**Annotations:**") < message.index("---")

    def test_optional_sections_are_omitted(self) -> None:
        message = build_alert_message(
            make_alert(description="", labels={}, annotations={}, generator_url=None)
        )
        assert "**Labels:**" not in message
        assert "**Annotations:**" not in message
        assert "View in Alertmanager" not in message

    def test_context_for_thread(self) -> None:
        context = make_alert().context()
        assert context["name"] == "HighCPU"
        assert context["severity"] == "critical"
        assert context["labels"]["instance"] == "web-1"


class TestCreateThreadFromAlert:
    @pytest.mark.asyncio
    async def test_creates_alert_thread_and_investigates(
        self, service: AgentService, model: ScriptedModel, store: InMemoryThreadStore
    ) -> None:
        model.scripts.append(reply("Looks like a runaway process"))
        ingestor = AlertIngestor(service)

        thread = await ingestor.create_thread_from_alert(make_alert())
        await drain(timeout=5)

        assert thread.source == ThreadSource.ALERT
        assert thread.source_id == "abc123"
        assert thread.context["alert"]["name"] == "HighCPU"
        stored = await store.get(thread.id)
        assert stored.messages[0].content.startswith("**Alert: HighCPU**")
        assert stored.messages[1].content == "Looks like a runaway process"

    @pytest.mark.asyncio
    async def test_same_fingerprint_reuses_open_thread(
        self, service: AgentService, model: ScriptedModel
    ) -> None:
        ingestor = AlertIngestor(service)

        first = await ingestor.create_thread_from_alert(make_alert())
        second = await ingestor.create_thread_from_alert(make_alert())
        await drain(timeout=5)

        assert first.id == second.id
        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_alerts_create_one_thread(self, service: AgentService) -> None:
        ingestor = AlertIngestor(service)

        threads = await asyncio.gather(
            *(ingestor.create_thread_from_alert(make_alert()) for _ in range(5))
        )
        await drain(timeout=5)

        assert len({t.id for t in threads}) == 1

    @pytest.mark.asyncio
    async def test_new_thread_after_previous_was_completed(
        self, service: AgentService, store: InMemoryThreadStore
    ) -> None:
        ingestor = AlertIngestor(service)
        first = await ingestor.create_thread_from_alert(make_alert())
        await drain(timeout=5)
        await store.update(first.id, status=ThreadStatus.COMPLETE)

        second = await ingestor.create_thread_from_alert(make_alert())
        await drain(timeout=5)

        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_investigation_failure_marks_thread_failed(
        self, service: AgentService, model: ScriptedModel, store: InMemoryThreadStore
    ) -> None:
        model.scripts.append([RuntimeError("model unavailable")])
        ingestor = AlertIngestor(service)

        thread = await ingestor.create_thread_from_alert(make_alert())
        await drain(timeout=5)

        assert (await store.get(thread.id)).status == ThreadStatus.FAILED

    @pytest.mark.asyncio
    async def test_duplicate_from_another_process_is_reused(
        self, service: AgentService, store: InMemoryThreadStore
    ) -> None:
        existing = await store.create(ThreadSource.ALERT, "abc123")
        ingestor = AlertIngestor(service)
        find = AsyncMock(side_effect=[None, existing])

        with (
            patch.object(service, "create_thread", AsyncMock(side_effect=DuplicateSourceThread("alert", "abc123"))),
            patch.object(store, "find_open_by_source", find),
        ):
            thread = await ingestor.create_thread_from_alert(make_alert())

        assert thread.id == existing.id
        assert find.await_count == 2

    @pytest.mark.asyncio
    async def test_open_thread_found_after_completed_thread_is_touched(
        self, service: AgentService, store: InMemoryThreadStore, model: ScriptedModel
    ) -> None:
        old = await store.create(ThreadSource.ALERT, "abc123")
        await store.update(old.id, status=ThreadStatus.COMPLETE)
        open_thread = await store.create(ThreadSource.ALERT, "abc123")
        await asyncio.sleep(0.001)
        await store.update(old.id, title="Late title")

        thread = await AlertIngestor(service).create_thread_from_alert(make_alert())

        assert thread.id == open_thread.id
        assert model.calls == []
