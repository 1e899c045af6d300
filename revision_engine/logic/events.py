"""Domain event constants and publisher.

Defines event type constants and a simple publish() callable used by the
revision, binding write and submission flows.
"""

from __future__ import annotations

from typing import Any, Dict, List
import logging

logger = logging.getLogger(__name__)

QUESTION_REVISION_CREATED = "question.revision_created"
BINDING_WRITE_COMMITTED = "binding_write.committed"
SUBMISSION_SAVED = "submission.saved"


def publish(event_type: str, payload: Dict[str, Any]) -> None:
    """Publish a domain event.

    Events are logged and kept in an in-process buffer; there is no broker.
    """
    logger.info("event_publish type=%s payload=%s", event_type, payload)
    EVENT_BUFFER.append({"type": event_type, "payload": payload})


# In-memory buffer for domain events (test-only visibility)
EVENT_BUFFER: List[Dict[str, Any]] = []


def get_buffered_events(clear: bool = True) -> List[Dict[str, Any]]:
    """Return buffered domain events; optionally clear the buffer."""
    events = list(EVENT_BUFFER)
    if clear:
        EVENT_BUFFER.clear()
    return events


__all__ = [
    "QUESTION_REVISION_CREATED",
    "BINDING_WRITE_COMMITTED",
    "SUBMISSION_SAVED",
    "publish",
    "get_buffered_events",
    "EVENT_BUFFER",
]
