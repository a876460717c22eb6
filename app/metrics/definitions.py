"""Metric definitions used by the ticket lifecycle engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

TRANSITIONS_TOTAL = "ticket_transitions_total"
TRANSITION_REJECTIONS_TOTAL = "ticket_transition_rejections_total"
TRANSITION_DURATION_SECONDS = "ticket_transition_duration_seconds"
NOTIFICATIONS_SENT_TOTAL = "ticket_notifications_sent_total"
NOTIFICATION_FAILURES_TOTAL = "ticket_notification_failures_total"


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TRANSITIONS_TOTAL,
        metric_type="counter",
        description="Committed ticket transitions.",
        label_names=("kind",),
    ),
    MetricDefinition(
        name=TRANSITION_REJECTIONS_TOTAL,
        metric_type="counter",
        description="Ticket change requests rejected before commit.",
        label_names=("reason",),
    ),
    MetricDefinition(
        name=TRANSITION_DURATION_SECONDS,
        metric_type="distribution",
        description="Time spent handling a ticket change request, in seconds.",
    ),
    MetricDefinition(
        name=NOTIFICATIONS_SENT_TOTAL,
        metric_type="counter",
        description="Notification events delivered to the sink.",
        label_names=("kind",),
    ),
    MetricDefinition(
        name=NOTIFICATION_FAILURES_TOTAL,
        metric_type="counter",
        description="Notification events that could not be delivered.",
    ),
)
