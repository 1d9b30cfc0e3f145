"""HTTP routes: threads, chat streaming, tools, webhooks and queue stats."""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Annotated, Any

from fastapi import (
    APIRouter,
    Body,
    Depends,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import StreamingResponse

from nexus_agent.agent.chunks import to_sse
from nexus_agent.agent.tools import ToolInfo
from nexus_agent.config import Config
from nexus_agent.events import QueueStatsPayload
from nexus_agent.queues import SYSTEM_EVENT_JOB, QueueName
from nexus_agent.runtime import Runtime
from nexus_agent.server.events import connection_manager
from nexus_agent.server.schemas import (
    ChatRequest,
    CreateThreadRequest,
    SendMessageRequest,
    ThreadDetail,
    ThreadSummary,
    ToolsResponse,
    WebhookAccepted,
)
from nexus_agent.threads import ThreadSource, ThreadStatus
from nexus_agent.threads.schemas import utcnow
from nexus_agent.worker.jobs.system_events import ALERTMANAGER_ALERT, GRAFANA_ALERT

logger = logging.getLogger(__name__)


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime  # type: ignore[no-any-return]


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]

agent_router = APIRouter(prefix="/agent", tags=["agent"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
system_router = APIRouter(tags=["system"])


# Threads


@agent_router.get("/threads")
async def list_threads(
    runtime: RuntimeDep,
    status: ThreadStatus | None = None,
    source: ThreadSource | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[ThreadSummary]:
    threads = await runtime.service.list_threads(status=status, source=source, limit=limit)
    return [ThreadSummary.from_thread(t) for t in threads]


@agent_router.post("/threads")
async def create_thread(body: CreateThreadRequest, runtime: RuntimeDep) -> ThreadDetail:
    thread = await runtime.service.create_thread(body.source, body.source_id)
    if not body.initial_message:
        return ThreadDetail(**thread.model_dump())

    result = await runtime.service.send_message(thread.id, body.initial_message)
    return ThreadDetail(**result.thread.model_dump(), last_response=result.response)


@agent_router.get("/threads/{thread_id}")
async def get_thread(thread_id: str, runtime: RuntimeDep) -> ThreadDetail:
    thread = await runtime.service.get_thread(thread_id)
    return ThreadDetail(**thread.model_dump())


@agent_router.post("/threads/{thread_id}/message")
async def send_message(thread_id: str, body: SendMessageRequest, runtime: RuntimeDep) -> ThreadDetail:
    """Send a message and wait for the full reply (non-streaming)."""
    result = await runtime.service.send_message(thread_id, body.content)
    return ThreadDetail(**result.thread.model_dump(), last_response=result.response)


@agent_router.post("/chat")
async def chat(body: ChatRequest, runtime: RuntimeDep) -> StreamingResponse:
    """Stream one exchange as Server-Sent Events.

    The thread id (new or existing) is returned in the ``X-Thread-Id``
    header so the client can continue the conversation.
    """
    thread, chunks = await runtime.service.open_chat(body.thread_id, body.content)

    async def events() -> Any:
        async with aclosing(chunks) as stream:
            async for chunk in stream:
                yield to_sse(chunk)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"X-Thread-Id": thread.id, "Cache-Control": "no-cache"},
    )


# Tools


@agent_router.get("/tools")
async def list_tools(runtime: RuntimeDep) -> ToolsResponse:
    tools = runtime.service.describe_tools()
    by_category: dict[str, int] = {}
    for info in tools:
        by_category[info.category] = by_category.get(info.category, 0) + 1
    return ToolsResponse(total=len(tools), by_category=by_category, tools=tools)


@agent_router.get("/tools/grouped")
async def grouped_tools(runtime: RuntimeDep) -> dict[str, list[ToolInfo]]:
    return runtime.service.grouped_tools()


# Webhooks


def require_webhook_token(authorization: Annotated[str | None, Header()] = None) -> None:
    """Check ``Authorization: Bearer <token>`` when a webhook token is configured."""
    token = Config.GRAFANA_WEBHOOK_TOKEN.value
    if token and authorization != f"Bearer {token}":
        raise HTTPException(status_code=401, detail="Invalid webhook token")


async def _enqueue_system_event(runtime: Runtime, event_type: str, payload: dict[str, Any]) -> WebhookAccepted:
    job_id = await runtime.queues.enqueue(
        QueueName.EVENTS_SYSTEM,
        SYSTEM_EVENT_JOB,
        type=event_type,
        payload=payload,
        received_at=utcnow().isoformat(),
    )
    logger.info("Queued %s event as job %s (%d alerts)", event_type, job_id, len(payload.get("alerts") or []))
    return WebhookAccepted(job_id=job_id)


@webhook_router.post("/grafana", status_code=202, dependencies=[Depends(require_webhook_token)])
async def grafana_webhook(
    runtime: RuntimeDep, payload: Annotated[dict[str, Any], Body()]
) -> WebhookAccepted:
    return await _enqueue_system_event(runtime, GRAFANA_ALERT, payload)


@webhook_router.post("/alertmanager", status_code=202, dependencies=[Depends(require_webhook_token)])
async def alertmanager_webhook(
    runtime: RuntimeDep, payload: Annotated[dict[str, Any], Body()]
) -> WebhookAccepted:
    return await _enqueue_system_event(runtime, ALERTMANAGER_ALERT, payload)


# Queues and live events


@system_router.get("/queues/stats")
async def queue_stats(runtime: RuntimeDep) -> list[QueueStatsPayload]:
    return [await runtime.queues.stats(name) for name in QueueName]


@system_router.websocket("/events")
async def events_endpoint(websocket: WebSocket) -> None:
    """Live bus events, pushed as ``{"type": ..., "payload": {...}}`` JSON."""
    await websocket.accept()
    await connection_manager.register(websocket)
    try:
        # Keep connection open, events are pushed via ConnectionManager
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await connection_manager.unregister(websocket)
