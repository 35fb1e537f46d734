"""
Device twin request/response correlation.

Each request goes Sent -> Acknowledged(status) | Abandoned. Only one full
twin GET may be outstanding; reported-property PATCHes are unlimited.
Reconnecting abandons everything in flight and nothing is re-issued.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Optional

from azure_iot_mqtt.errors import TwinBusy

logger = logging.getLogger(__name__)

MAX_REQUEST_ID = 2**31 - 1


class TwinRequestKind(str, enum.Enum):
    GET = "get"
    PATCH = "patch"


class TwinRequestState(str, enum.Enum):
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    ABANDONED = "abandoned"


@dataclass(slots=True)
class TwinRequest:
    request_id: int
    kind: TwinRequestKind
    state: TwinRequestState = TwinRequestState.SENT
    status: Optional[int] = None

    @property
    def pending(self) -> bool:
        return self.state is TwinRequestState.SENT


@dataclass
class TwinRequestTracker:
    last_id: int = 0
    _pending: dict[int, TwinRequest] = field(default_factory=dict)
    _pending_get: Optional[TwinRequest] = None

    def next_id(self) -> int:
        """
        Increasing request id, wrapping from MAX_REQUEST_ID back to 1.

        After a wrap, ids still held by in-flight requests are skipped.
        """
        while True:
            self.last_id = 1 if self.last_id >= MAX_REQUEST_ID else self.last_id + 1
            if self.last_id not in self._pending:
                return self.last_id

    def send_get(self) -> TwinRequest:
        if self._pending_get is not None and self._pending_get.pending:
            raise TwinBusy(self._pending_get.request_id)
        req = TwinRequest(self.next_id(), TwinRequestKind.GET)
        self._pending[req.request_id] = req
        self._pending_get = req
        return req

    def send_patch(self) -> TwinRequest:
        req = TwinRequest(self.next_id(), TwinRequestKind.PATCH)
        self._pending[req.request_id] = req
        return req

    def pending(self) -> list[TwinRequest]:
        return list(self._pending.values())

    def resolve(self, status: int, request_id: Optional[int]) -> Optional[TwinRequest]:
        """
        Match a twin response to its request and mark it acknowledged.

        Without a request id the most recently sent pending GET is used.
        Returns None for responses that match nothing (unknown or abandoned).
        """
        if request_id is None:
            req = self._pending_get if self._pending_get and self._pending_get.pending else None
        else:
            req = self._pending.get(request_id)

        if req is None:
            logger.debug("Twin response status=%s rid=%s matches no pending request", status, request_id)
            return None

        self._pending.pop(req.request_id, None)
        if req is self._pending_get:
            self._pending_get = None
        req.state = TwinRequestState.ACKNOWLEDGED
        req.status = status
        return req

    def cancel(self, request_id: int) -> None:
        """Forget a request whose publish never left the device."""
        req = self._pending.pop(request_id, None)
        if req is None:
            return
        req.state = TwinRequestState.ABANDONED
        if req is self._pending_get:
            self._pending_get = None

    def abandon_all(self) -> int:
        count = len(self._pending)
        for req in self._pending.values():
            req.state = TwinRequestState.ABANDONED
        self._pending.clear()
        self._pending_get = None
        if count:
            logger.info("Abandoned %d pending twin request(s)", count)
        return count
