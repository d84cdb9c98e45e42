from __future__ import annotations

import logging
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.contract_events import CONTRACT_CREATED, ContractCreatedEvent
from app.errors import CodecError
from app.extraction_service import ExtractionService
from app.models import ExtractionStatus
from app.queue_backend import CONTRACT_CREATED_QUEUE

logger = logging.getLogger(__name__)


@dataclass
class ConsumerRunStats:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    rejected: int = 0
    acked: int = 0

    def merge(self, other: "ConsumerRunStats") -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.skipped += other.skipped
        self.rejected += other.rejected
        self.acked += other.acked

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "rejected": self.rejected,
            "acked": self.acked,
        }


class ContractEventConsumer:
    """Drains contract.created messages and hands each one to the extraction service.

    Every dequeued message is acked, whatever the outcome: a malformed payload or an
    unexpected handler error is logged and counted, never redelivered.
    """

    def __init__(
        self,
        *,
        service: ExtractionService,
        queue_backend: Any,
        queue_names: list[str] | None = None,
        max_messages_per_iteration: int = 20,
        poll_interval_ms: int = 200,
    ) -> None:
        self.service = service
        self.queue_backend = queue_backend
        self.queue_names = list(queue_names or [CONTRACT_CREATED_QUEUE])
        self.max_messages_per_iteration = max(1, int(max_messages_per_iteration))
        self.poll_interval_ms = max(1, int(poll_interval_ms))

    def _process_message(self, *, queue_name: str, stats: ConsumerRunStats) -> bool:
        msg = self.queue_backend.dequeue(queue_name=queue_name)
        if msg is None:
            return False
        stats.processed += 1
        event_type = msg.payload.get("event_type") if isinstance(msg.payload, dict) else None
        if event_type is not None and event_type != CONTRACT_CREATED:
            logger.info("contract_event_ignored message_id=%s type=%s", msg.message_id, event_type)
            stats.skipped += 1
            self.queue_backend.ack(message_id=msg.message_id)
            stats.acked += 1
            return True
        try:
            event = ContractCreatedEvent.from_payload(msg.payload)
            run = self.service.handle_contract_created(event)
        except CodecError as exc:
            logger.warning("contract_event_rejected message_id=%s error=%s", msg.message_id, exc.message)
            stats.rejected += 1
        except Exception:
            logger.exception("contract_event_failed message_id=%s", msg.message_id)
            stats.failed += 1
        else:
            if run is None:
                stats.skipped += 1
            elif run.status is ExtractionStatus.SUCCEEDED:
                stats.succeeded += 1
            else:
                stats.failed += 1
        self.queue_backend.ack(message_id=msg.message_id)
        stats.acked += 1
        return True

    def run_once(self) -> dict[str, int]:
        stats = ConsumerRunStats()
        for queue_name in self.queue_names:
            while stats.processed < self.max_messages_per_iteration:
                if not self._process_message(queue_name=queue_name, stats=stats):
                    break
        return stats.as_dict()

    def run_forever(self, *, stop_after_iterations: int | None = None) -> dict[str, int]:
        aggregate = ConsumerRunStats()
        iterations = 0
        while True:
            current = self.run_once()
            aggregate.merge(ConsumerRunStats(**current))
            iterations += 1
            if stop_after_iterations is not None and iterations >= max(1, stop_after_iterations):
                break
            if int(current["processed"]) == 0:
                time.sleep(self.poll_interval_ms / 1000.0)
        return aggregate.as_dict()


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 0) -> int:
    raw = str(env.get(name, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def create_event_consumer_from_env(
    *,
    service: ExtractionService,
    queue_backend: Any,
    environ: Mapping[str, str] | None = None,
) -> ContractEventConsumer:
    env = os.environ if environ is None else environ
    queue_names_raw = str(env.get("WORKER_QUEUE_NAMES", CONTRACT_CREATED_QUEUE)).strip()
    queue_names = [x.strip() for x in queue_names_raw.split(",") if x.strip()] or [CONTRACT_CREATED_QUEUE]
    return ContractEventConsumer(
        service=service,
        queue_backend=queue_backend,
        queue_names=queue_names,
        max_messages_per_iteration=_env_int(env, "WORKER_MAX_MESSAGES_PER_ITERATION", default=20, minimum=1),
        poll_interval_ms=_env_int(env, "WORKER_POLL_INTERVAL_MS", default=200, minimum=1),
    )
