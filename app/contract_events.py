from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from app.errors import CodecError
from app.queue_backend import CONTRACT_EVENTS_QUEUE

logger = logging.getLogger(__name__)

CONTRACT_CREATED = "contract.created"
CONTRACT_UPDATED = "contract.updated"
CONTRACT_DELETED = "contract.deleted"
CONTRACT_STATUS_CHANGED = "contract.status_changed"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ContractCreatedEvent(BaseModel):
    """Inbound notification that a contract exists and may carry an attachment."""

    contract_id: str = Field(min_length=1)
    contract_name: str = ""
    contract_type: str = ""
    attachment_id: str | None = None
    requested_by: str = "system"
    occurred_at: datetime = Field(default_factory=_utcnow)

    @property
    def has_attachment(self) -> bool:
        return bool((self.attachment_id or "").strip())

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ContractCreatedEvent":
        body = payload
        if isinstance(payload, dict):
            body = payload.get("data") if "event_type" in payload else payload.get("event", payload)
        try:
            return cls.model_validate(body)
        except ValidationError as exc:
            raise CodecError(f"malformed contract.created payload: {exc.errors()[0].get('msg', 'invalid')}") from exc


class QueueBackend(Protocol):
    def enqueue(self, *, queue_name: str, payload: dict[str, Any], available_at: datetime | None = None) -> Any: ...


class ContractEventPublisher:
    """Publishes contract lifecycle notifications for downstream consumers.

    This is the outbound seam for the contract service that owns contracts:
    the engine never creates, edits or re-status contracts itself, so it never
    calls these methods. The owning service takes ``Engine.publisher`` and calls
    ``publish_*`` after its own write commits. ``publish_created`` payloads land
    on ``contract.events``; a deployment that wants them to start extraction
    routes that queue (or ``contract.created``) to the event consumer.
    """

    def __init__(self, *, queue_backend: QueueBackend, queue_name: str = CONTRACT_EVENTS_QUEUE) -> None:
        self._queue = queue_backend
        self._queue_name = queue_name

    def _publish(self, event_type: str, contract_id: str, data: dict[str, Any]) -> dict[str, Any]:
        payload = {
            "event_id": f"evt_{uuid.uuid4().hex[:12]}",
            "event_type": event_type,
            "contract_id": contract_id,
            "occurred_at": _utcnow().isoformat(),
            "data": data,
        }
        self._queue.enqueue(queue_name=self._queue_name, payload=payload)
        logger.info("contract_event_published type=%s contract_id=%s", event_type, contract_id)
        return payload

    def publish_created(self, event: ContractCreatedEvent) -> dict[str, Any]:
        return self._publish(CONTRACT_CREATED, event.contract_id, event.model_dump(mode="json"))

    def publish_updated(self, contract_id: str, changes: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._publish(CONTRACT_UPDATED, contract_id, {"changes": dict(changes or {})})

    def publish_deleted(self, contract_id: str) -> dict[str, Any]:
        return self._publish(CONTRACT_DELETED, contract_id, {})

    def publish_status_changed(self, contract_id: str, *, old_status: str, new_status: str) -> dict[str, Any]:
        return self._publish(
            CONTRACT_STATUS_CHANGED,
            contract_id,
            {"old_status": old_status, "new_status": new_status},
        )
