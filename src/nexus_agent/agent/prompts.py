"""Prompt text for the agent loop, wakes, titles and alert investigations."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nexus_agent.agent.alerts import AlertInput
    from nexus_agent.threads.schemas import Thread

AGENT_SYSTEM_PROMPT = """You are Nexus, an operations agent that works on long-running tasks.

Each conversation is a thread. A thread can outlive a single reply: when you
need to wait for something (a deploy to roll out, a metric to settle, a
person to respond), call schedule_wake with a delay and a reason, then stop.
You will be woken with that reason and the full history.

Use store_context to remember facts you will need after a wake and
get_context to read them back. Call complete_task once the work is done, with
a short summary. Use send_notification for anything a human should see even
if they are not watching this thread.

Be direct. Report what you checked and what you found."""

TITLE_PROMPT = (
    "Generate a concise 3-5 word title for this conversation. "
    "Return ONLY the title, no quotes or punctuation.\n\n"
    "User: {message}\n\nAssistant: {response}"
)

TITLE_MAX_TOKENS = 20

WAKE_PREFIX = "[SYSTEM WAKE]"

INVESTIGATION_INSTRUCTION = (
    "Please investigate this alert. Check the relevant metrics and logs, "
    "identify the likely cause, and recommend next steps. If the situation "
    "needs time to develop, schedule a wake to check back."
)


def system_prompt_for(thread: Thread) -> str:
    """Base system prompt plus the thread's stored context, if any."""
    section = context_section(thread)
    if not section:
        return AGENT_SYSTEM_PROMPT
    return f"{AGENT_SYSTEM_PROMPT}\n\n{section}"


def context_section(thread: Thread) -> str:
    if not thread.context:
        return ""
    rendered = json.dumps(thread.context, indent=2, default=str)
    return f"## Thread context\n```json\n{rendered}\n```"


def wake_message(reason: str) -> str:
    return f"{WAKE_PREFIX} Scheduled wake: {reason}"


def title_prompt(message: str, response: str) -> str:
    return TITLE_PROMPT.format(message=message[:500], response=response[:500])


def clean_title(raw: str) -> str:
    return raw.strip().strip("\"'").strip()


def build_alert_message(alert: AlertInput) -> str:
    """Investigation prompt for a newly ingested alert."""
    lines = [f"**Alert: {alert.alert_name}** ({alert.severity})", ""]

    if alert.description:
        lines += [alert.description, ""]

    if alert.labels:
        lines.append("**Labels:**")
        lines += [f"- {key}: {value}" for key, value in alert.labels.items()]
        lines.append("")

    extra = {
        key: value
        for key, value in alert.annotations.items()
        if key not in ("description", "summary")
    }
    if extra:
        lines.append("**Annotations:**")
        lines += [f"- {key}: {value}" for key, value in extra.items()]
        lines.append("")

    if alert.generator_url:
        lines += [f"[View in Alertmanager]({alert.generator_url})", ""]

    lines += ["---", "", INVESTIGATION_INSTRUCTION]
    return "\n".join(lines)
