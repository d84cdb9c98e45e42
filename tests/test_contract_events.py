from __future__ import annotations

import pytest

from app.contract_events import (
    CONTRACT_DELETED,
    CONTRACT_STATUS_CHANGED,
    ContractCreatedEvent,
    ContractEventPublisher,
)
from app.errors import CodecError
from app.queue_backend import CONTRACT_EVENTS_QUEUE, InMemoryQueueBackend


def test_created_event_parses_payload_and_nested_event():
    flat = ContractCreatedEvent.from_payload({"contract_id": "ct_1", "attachment_id": "att_1"})
    nested = ContractCreatedEvent.from_payload({"event": {"contract_id": "ct_2"}})
    assert flat.has_attachment is True
    assert nested.contract_id == "ct_2"
    assert nested.has_attachment is False
    assert nested.requested_by == "system"


def test_created_event_rejects_malformed_payload():
    with pytest.raises(CodecError):
        ContractCreatedEvent.from_payload({"contract_name": "missing id"})
    with pytest.raises(CodecError):
        ContractCreatedEvent.from_payload({"contract_id": ""})


def test_publisher_enqueues_change_events():
    q = InMemoryQueueBackend()
    publisher = ContractEventPublisher(queue_backend=q)
    publisher.publish_created(ContractCreatedEvent(contract_id="ct_1", contract_type="lease"))
    publisher.publish_updated("ct_1", {"contract_name": "renamed"})
    publisher.publish_status_changed("ct_1", old_status="draft", new_status="signed")
    publisher.publish_deleted("ct_1")
    assert q.pending_count(queue_name=CONTRACT_EVENTS_QUEUE) == 4

    payloads = []
    for _ in range(4):
        msg = q.dequeue(queue_name=CONTRACT_EVENTS_QUEUE)
        assert msg is not None
        payloads.append(msg.payload)
    assert [p["event_type"] for p in payloads][-2:] == [CONTRACT_STATUS_CHANGED, CONTRACT_DELETED]
    assert payloads[0]["data"]["contract_type"] == "lease"
    assert payloads[2]["data"] == {"old_status": "draft", "new_status": "signed"}
    assert all(p["event_id"].startswith("evt_") and p["contract_id"] == "ct_1" for p in payloads)
