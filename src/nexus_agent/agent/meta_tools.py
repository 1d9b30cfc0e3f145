"""Tools that act on the agent's own thread.

These are built per exchange, bound to one thread id, and registered next
to the shared domain tools.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from nexus_agent.agent.tools import Tool
from nexus_agent.agent.wake import WakeScheduler
from nexus_agent.discord import DiscordNotifier
from nexus_agent.embeddings import EmbeddingIndex
from nexus_agent.threads import ThreadStatus, ThreadStore

logger = logging.getLogger(__name__)

META_CATEGORY = "meta"

# Search results are trimmed so a long past answer does not flood the context
SEARCH_SNIPPET_LENGTH = 500


class ScheduleWakeInput(BaseModel):
    delay: str = Field(description='Time to wait, e.g. "10s", "5m", "2h", "1d"')
    reason: str = Field(description="What to check or do when waking")


class CompleteTaskInput(BaseModel):
    summary: str = Field(description="Brief description of what was accomplished")


class StoreContextInput(BaseModel):
    key: str = Field(description="String identifier for the data")
    value: Any = Field(default=None, description="Any JSON-serializable value; null clears the key")


class GetContextInput(BaseModel):
    key: str = Field(description="The identifier used when storing")


class SendNotificationInput(BaseModel):
    message: str = Field(description="The notification text to send")


class SearchHistoryInput(BaseModel):
    query: str = Field(description="Natural language search query")
    limit: int = Field(default=5, ge=1, le=10, description="Maximum number of results")


class _ThreadTool(Tool):
    category = META_CATEGORY

    def __init__(self, thread_id: str) -> None:
        self.thread_id = thread_id


class ScheduleWakeTool(_ThreadTool):
    name = "schedule_wake"
    description = (
        "Schedule yourself to wake up later and stop working until then. "
        'delay is a string like "10s", "5m", "2h" or "1d"; reason is what to '
        "check or do when you wake. Replaces any wake already scheduled."
    )
    input_model = ScheduleWakeInput

    def __init__(self, thread_id: str, scheduler: WakeScheduler) -> None:
        super().__init__(thread_id)
        self._scheduler = scheduler

    async def execute(self, params: ScheduleWakeInput) -> dict[str, Any]:
        wake = await self._scheduler.schedule_wake(self.thread_id, params.delay, params.reason)
        return {
            "success": True,
            "message": f"Scheduled to wake in {params.delay}",
            "wake_at": wake.wake_at.isoformat(),
        }


class CompleteTaskTool(_ThreadTool):
    name = "complete_task"
    description = (
        "Mark the task as complete once the request is fully resolved. "
        "summary is a brief description of what was accomplished."
    )
    input_model = CompleteTaskInput

    def __init__(self, thread_id: str, store: ThreadStore) -> None:
        super().__init__(thread_id)
        self._store = store

    async def execute(self, params: CompleteTaskInput) -> dict[str, Any]:
        await self._store.update(self.thread_id, status=ThreadStatus.COMPLETE)
        logger.info("Thread %s completed: %s", self.thread_id, params.summary)
        return {"success": True, "message": "Task marked complete", "summary": params.summary}


class StoreContextTool(_ThreadTool):
    name = "store_context"
    description = (
        "Store information for later. Persists across sleep and wake. "
        "key identifies the data; value is any JSON value (null removes it)."
    )
    input_model = StoreContextInput

    def __init__(self, thread_id: str, store: ThreadStore) -> None:
        super().__init__(thread_id)
        self._store = store

    async def execute(self, params: StoreContextInput) -> dict[str, Any]:
        thread = await self._store.get(self.thread_id)
        context = dict(thread.context)
        if params.value is None:
            context.pop(params.key, None)
        else:
            context[params.key] = params.value
        await self._store.update(self.thread_id, context=context)
        return {"success": True, "message": f'Stored "{params.key}" in context'}


class GetContextTool(_ThreadTool):
    name = "get_context"
    description = "Retrieve data previously saved with store_context."
    input_model = GetContextInput

    def __init__(self, thread_id: str, store: ThreadStore) -> None:
        super().__init__(thread_id)
        self._store = store

    async def execute(self, params: GetContextInput) -> dict[str, Any]:
        thread = await self._store.get(self.thread_id)
        if params.key not in thread.context:
            return {"found": False, "key": params.key}
        return {"found": True, "key": params.key, "value": thread.context[params.key]}


class SendNotificationTool(_ThreadTool):
    name = "send_notification"
    description = (
        "Send a Discord notification to the user about important events, "
        "completed work or issues that need attention."
    )
    input_model = SendNotificationInput

    def __init__(self, thread_id: str, notifier: DiscordNotifier) -> None:
        super().__init__(thread_id)
        self._notifier = notifier

    async def execute(self, params: SendNotificationInput) -> dict[str, Any]:
        if await self._notifier.notify(params.message):
            logger.info("Thread %s sent a notification (%d chars)", self.thread_id, len(params.message))
            return {"success": True, "message": "Notification sent to Discord"}
        return {"success": False, "message": "Notification not sent"}


class SearchHistoryTool(_ThreadTool):
    name = "search_history"
    description = (
        "Search past conversations for relevant messages, to recall earlier "
        "decisions or context. The current thread is excluded."
    )
    input_model = SearchHistoryInput

    def __init__(self, thread_id: str, index: EmbeddingIndex) -> None:
        super().__init__(thread_id)
        self._index = index

    async def execute(self, params: SearchHistoryInput) -> dict[str, Any]:
        hits = await self._index.search(
            params.query, limit=params.limit, exclude_thread_id=self.thread_id
        )
        if not hits:
            return {"found": False, "message": "No relevant past conversations found"}

        def snippet(text: str) -> str:
            if len(text) <= SEARCH_SNIPPET_LENGTH:
                return text
            return f"{text[:SEARCH_SNIPPET_LENGTH]}..."

        return {
            "found": True,
            "count": len(hits),
            "results": [
                {
                    "role": hit.role,
                    "content": snippet(hit.content),
                    "date": hit.created_at,
                    "relevance": f"{round(hit.score * 100)}%",
                }
                for hit in hits
            ],
        }


META_TOOL_TYPES: tuple[type[Tool], ...] = (
    ScheduleWakeTool,
    CompleteTaskTool,
    StoreContextTool,
    GetContextTool,
    SendNotificationTool,
    SearchHistoryTool,
)


def build_meta_tools(
    thread_id: str,
    *,
    store: ThreadStore,
    scheduler: WakeScheduler,
    notifier: DiscordNotifier,
    index: EmbeddingIndex | None = None,
) -> list[Tool]:
    """Meta tools bound to one thread. search_history needs an index."""
    tools: list[Tool] = [
        ScheduleWakeTool(thread_id, scheduler),
        CompleteTaskTool(thread_id, store),
        StoreContextTool(thread_id, store),
        GetContextTool(thread_id, store),
        SendNotificationTool(thread_id, notifier),
    ]
    if index is not None:
        tools.append(SearchHistoryTool(thread_id, index))
    return tools
