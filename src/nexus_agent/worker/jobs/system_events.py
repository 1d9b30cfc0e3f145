"""System event job: turn Grafana and Alertmanager webhooks into alert threads."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from nexus_agent.agent.alerts import AlertInput
from nexus_agent.worker.hooks import runtime_from
from nexus_agent.worker.tracing import traced_job

if TYPE_CHECKING:
    from saq.types import Context

logger = logging.getLogger(__name__)

GRAFANA_ALERT = "grafana-alert"
ALERTMANAGER_ALERT = "alertmanager-alert"

# Grafana-only alert fields kept with the annotations
GRAFANA_EXTRAS = ("dashboardURL", "panelURL", "silenceURL", "valueString")


class WebhookAlert(BaseModel):
    """One alert in an Alertmanager-style webhook body (Grafana uses the same shape)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] | None = None
    starts_at: str = Field(default="", alias="startsAt")
    fingerprint: str
    generator_url: str | None = Field(default=None, alias="generatorURL")


class WebhookPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: str = ""
    alerts: list[WebhookAlert] = Field(default_factory=list)
    title: str | None = None
    message: str | None = None


def _to_alert_input(
    alert: WebhookAlert, *, annotations: dict[str, str], fallback_name: str | None = None,
    fallback_description: str | None = None,
) -> AlertInput:
    name = alert.labels.get("alertname") or fallback_name or "Unknown"
    description = (
        annotations.get("description")
        or annotations.get("summary")
        or fallback_description
        or f"Alert: {name}"
    )
    return AlertInput(
        alert_name=name,
        severity=alert.labels.get("severity") or "warning",
        description=description,
        labels=alert.labels,
        annotations=annotations,
        starts_at=alert.starts_at,
        fingerprint=alert.fingerprint,
        generator_url=alert.generator_url,
    )


def grafana_alerts(payload: dict[str, Any]) -> list[AlertInput]:
    """Firing alerts from a Grafana webhook body; empty for anything else."""
    body = WebhookPayload.model_validate(payload)
    if body.status != "firing":
        logger.info("Ignoring %s Grafana notification (%d alerts)", body.status, len(body.alerts))
        return []

    inputs = []
    for alert in body.alerts:
        annotations = dict(alert.annotations or {})
        extras = alert.model_extra or {}
        for key in GRAFANA_EXTRAS:
            if extras.get(key):
                annotations[key] = str(extras[key])
        inputs.append(
            _to_alert_input(
                alert,
                annotations=annotations,
                fallback_name=body.title,
                fallback_description=body.message,
            )
        )
    return inputs


def alertmanager_alerts(payload: dict[str, Any]) -> list[AlertInput]:
    """Firing alerts from an Alertmanager webhook body; empty for anything else."""
    body = WebhookPayload.model_validate(payload)
    if body.status != "firing":
        logger.info(
            "Ignoring %s Alertmanager notification (%d alerts)", body.status, len(body.alerts)
        )
        return []
    return [
        _to_alert_input(alert, annotations=dict(alert.annotations or {}))
        for alert in body.alerts
    ]


_PARSERS = {
    GRAFANA_ALERT: grafana_alerts,
    ALERTMANAGER_ALERT: alertmanager_alerts,
}


@traced_job
async def process_system_event(
    ctx: Context,
    *,
    type: str,  # noqa: A002
    payload: dict[str, Any],
    received_at: str | None = None,
) -> dict[str, object]:
    """Create (or reuse) an investigation thread for every firing alert.

    Args:
        ctx: SAQ job context.
        type: "grafana-alert" or "alertmanager-alert".
        payload: Raw webhook body.
        received_at: When the webhook arrived (ISO timestamp).

    Returns:
        Status dict with the thread ids used.
    """
    parser = _PARSERS.get(type)
    if parser is None:
        logger.warning("Unknown system event type %r, skipping", type)
        return {"status": "skipped", "reason": "unknown_type"}

    alerts = parser(payload)
    if not alerts:
        logger.info("No firing alerts in %s event received at %s", type, received_at)
        return {"status": "skipped", "reason": "no_firing_alerts"}

    ingestor = runtime_from(ctx).alerts
    thread_ids = []
    for alert in alerts:
        thread = await ingestor.create_thread_from_alert(alert)
        thread_ids.append(thread.id)
        logger.info(
            "Alert %s (%s) -> thread %s (%s)",
            alert.alert_name,
            alert.severity,
            thread.id,
            thread.status.value,
        )

    return {"status": "ok", "threads": thread_ids}
