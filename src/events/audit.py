"""Integration event log for scoring and settings activity.

Events record type, outcome, latency and actor. They never carry the
scoring-service credential. Writes are fire-and-forget: a failure to
record an event is logged and never fails the operation being audited.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from elasticsearch import ApiError, Elasticsearch, TransportError

from src.data.schemas import IntegrationEvent

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLog:
    """Append-only sink for :class:`IntegrationEvent` documents.

    Args:
        es_client: Connected Elasticsearch client.
        index_name: Index receiving the events.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        es_client: Elasticsearch,
        index_name: str = "integration_events",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.es = es_client
        self.index_name = index_name
        self.clock = clock

    def record(
        self,
        type: str,
        outcome: str,
        latency_ms: int | None = None,
        actor: str | None = None,
        message: str | None = None,
    ) -> IntegrationEvent | None:
        """Write one event. Returns it, or None if it could not be stored."""
        event = IntegrationEvent(
            type=type,
            outcome=outcome,
            latency_ms=latency_ms,
            actor=actor,
            message=message,
            created_at=self.clock(),
        )
        try:
            self.es.index(
                index=self.index_name,
                id=uuid.uuid4().hex,
                document=event.model_dump(mode="json"),
            )
        except (ApiError, TransportError) as exc:
            logger.warning("Could not record %s event: %s", type, exc)
            return None
        logger.info(
            "event type=%s outcome=%s latency_ms=%s actor=%s",
            type, outcome, latency_ms, actor,
        )
        return event

    def recent(self, limit: int = 20) -> list[IntegrationEvent]:
        """Most recent events first."""
        resp = self.es.search(
            index=self.index_name,
            query={"match_all": {}},
            sort=[{"created_at": {"order": "desc"}}],
            size=limit,
        )
        return [IntegrationEvent(**hit["_source"]) for hit in resp["hits"]["hits"]]
