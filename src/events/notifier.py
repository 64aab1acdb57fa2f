"""In-process fan-out of "adoption requests changed" signals.

The real-time transport (websocket push to dashboards) subscribes a
listener here. Delivery is fire-and-forget: a failing listener is logged
and never affects the lifecycle transition that emitted the signal.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestsChanged:
    shelter_id: str
    request_id: str | None = None
    adopter_id: str | None = None


Listener = Callable[[RequestsChanged], None]


class ChangeNotifier:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def adoption_requests_changed(
        self,
        shelter_id: str,
        request_id: str | None = None,
        adopter_id: str | None = None,
    ) -> None:
        signal = RequestsChanged(shelter_id, request_id, adopter_id)
        logger.debug("adoption-requests:changed %s", signal)
        for listener in list(self._listeners):
            try:
                listener(signal)
            except Exception:
                logger.exception("Change listener %r failed", listener)
