"""
ingest.py - Ingestion worker.

Consumes scored-message batches from the Redis Stream, records a violation
for every flagged message and enqueues each sender for behavioral analysis.

GUARANTEES:
- At-least-once delivery: XACK only after every event in the batch was handled
- Replays are harmless: violation ids are derived from (batch_id, index)
  when the connector did not supply one, so re-recording is idempotent
- Dead Letter Queue (DLQ) for malformed batches and after MAX_RETRIES
- Graceful shutdown on SIGTERM/SIGINT
"""

from __future__ import annotations

import json
import logging
import os
import signal
import time
import uuid
from typing import Any

from pydantic import ValidationError

from securewatch.config import settings
from securewatch.core.redis import (
    CONSUMER_GROUP,
    DLQ_STREAM_NAME,
    MAX_RETRIES,
    STREAM_NAME,
    ensure_consumer_group,
    get_redis_client,
)
from securewatch.database import SessionLocal, engine
from securewatch.runtime import build_runtime
from securewatch.schemas.ingestion import IngestBatchRequest, ScoredMessageEvent
from securewatch.services.violations import UnknownEmployeeError, ViolationService

logger = logging.getLogger(__name__)

CONSUMER_NAME = os.environ.get("WORKER_CONSUMER_NAME", "ingest-01")

BLOCK_MS = 5000  # Block for 5s waiting for new messages
BATCH_COUNT = 10  # Read up to 10 messages per call


def derive_violation_id(batch_id: str, index: int) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"securewatch:{batch_id}:{index}"))


class IngestionWorker:
    """
    Lifecycle:
    1. Connect to Redis, ensure consumer group exists
    2. Re-process messages left pending by a previous crash
    3. Loop: XREADGROUP -> record violations + enqueue analysis -> XACK
    4. On failure: retry up to MAX_RETRIES, then DLQ
    5. On SIGTERM: finish current message, stop the behavioral queue, exit
    """

    def __init__(self, violations: ViolationService) -> None:
        self.running = False
        self.redis = get_redis_client()
        self.violations = violations

    def start(self) -> None:
        self.running = True
        signal.signal(signal.SIGTERM, self._shutdown_handler)
        signal.signal(signal.SIGINT, self._shutdown_handler)

        ensure_consumer_group(self.redis)
        logger.info(
            "Worker '%s' started. Consuming from '%s' (group: '%s')",
            CONSUMER_NAME,
            STREAM_NAME,
            CONSUMER_GROUP,
        )

        self._process_pending()

        while self.running:
            try:
                messages = self.redis.xreadgroup(
                    groupname=CONSUMER_GROUP,
                    consumername=CONSUMER_NAME,
                    streams={STREAM_NAME: ">"},
                    count=BATCH_COUNT,
                    block=BLOCK_MS,
                )
                if not messages:
                    continue
                for _stream, stream_messages in messages:
                    for message_id, fields in stream_messages:
                        self._process_message(message_id, fields)
            except Exception:
                logger.exception("Error in worker loop")
                time.sleep(1)

        logger.info("Worker '%s' stopped gracefully.", CONSUMER_NAME)

    def _process_pending(self) -> None:
        """Re-deliver messages this consumer read but never acknowledged."""
        try:
            messages = self.redis.xreadgroup(
                groupname=CONSUMER_GROUP,
                consumername=CONSUMER_NAME,
                streams={STREAM_NAME: "0"},
                count=BATCH_COUNT,
            )
            for _stream, stream_messages in messages or []:
                for message_id, fields in stream_messages:
                    if not fields:
                        continue
                    logger.info("Re-processing pending message: %s", message_id)
                    self._process_message(message_id, fields)
        except Exception:
            logger.exception("Error processing pending messages")

    def _process_message(self, message_id: str, fields: dict[str, Any]) -> None:
        batch_id = fields.get("batch_id") or message_id

        try:
            raw_events = json.loads(fields.get("events", "[]"))
        except json.JSONDecodeError:
            logger.error("Batch %s: invalid JSON in events field. Moving to DLQ.", batch_id)
            self._move_to_dlq(message_id, fields, "INVALID_JSON")
            return

        try:
            batch = IngestBatchRequest.model_validate({"events": raw_events})
        except ValidationError as e:
            logger.error("Batch %s: invalid payload (%d errors). Moving to DLQ.", batch_id, e.error_count())
            self._move_to_dlq(message_id, fields, "INVALID_PAYLOAD")
            return

        try:
            recorded = 0
            for index, event in enumerate(batch.events):
                recorded += self._handle_event(batch_id, index, event)
        except Exception:
            logger.exception("Batch %s: processing failed", batch_id)
            self._handle_retry(message_id, fields, batch_id)
            return

        logger.info(
            "Batch %s processed: %d messages, %d violations",
            batch_id,
            len(batch.events),
            recorded,
        )
        self.redis.xack(STREAM_NAME, CONSUMER_GROUP, message_id)

    def _handle_event(self, batch_id: str, index: int, event: ScoredMessageEvent) -> int:
        recorded = 0
        if event.violation is not None:
            v = event.violation
            metadata = {"source": event.source, **event.metadata, **v.metadata}
            if event.risk_score is not None:
                metadata.setdefault("risk_score", event.risk_score)
            try:
                self.violations.record_violation(
                    employee_id=v.employee_id,
                    type=v.type,
                    severity=v.severity,
                    description=v.description,
                    metadata=metadata,
                    violation_id=v.violation_id or derive_violation_id(batch_id, index),
                )
                recorded = 1
            except UnknownEmployeeError as e:
                # Permanent: retrying cannot make the employee exist
                logger.warning("Batch %s[%d]: %s; violation dropped", batch_id, index, e)

        self.violations.enqueue_for_behavioral_analysis(event.employee_id, event.source)
        return recorded

    def _handle_retry(self, message_id: str, fields: dict[str, Any], batch_id: str) -> None:
        """Increment retry counter. Move to DLQ after MAX_RETRIES."""
        retry_count = int(fields.get("_retry_count", "0")) + 1

        if retry_count >= MAX_RETRIES:
            logger.error("Batch %s: exceeded %d retries. Moving to DLQ.", batch_id, MAX_RETRIES)
            self._move_to_dlq(message_id, fields, f"MAX_RETRIES_EXCEEDED({retry_count})")
            return

        # Streams have no in-place update: ack the old entry, re-add with the count.
        # batch_id is pinned so derived violation ids survive the new stream id.
        self.redis.xack(STREAM_NAME, CONSUMER_GROUP, message_id)
        self.redis.xadd(
            STREAM_NAME, {**fields, "batch_id": batch_id, "_retry_count": str(retry_count)}
        )
        logger.warning("Batch %s: retry %d/%d re-queued.", batch_id, retry_count, MAX_RETRIES)

    def _move_to_dlq(self, message_id: str, fields: dict[str, Any], reason: str) -> None:
        dlq_fields = {**fields, "_dlq_reason": reason, "_original_id": message_id}
        self.redis.xadd(DLQ_STREAM_NAME, dlq_fields)
        self.redis.xack(STREAM_NAME, CONSUMER_GROUP, message_id)
        logger.warning("Message %s moved to DLQ '%s' (reason: %s)", message_id, DLQ_STREAM_NAME, reason)

    def _shutdown_handler(self, signum: int, frame: Any) -> None:
        logger.info("Received signal %d. Finishing current batch and shutting down...", signum)
        self.running = False


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting SecureWatch ingestion worker...")

    runtime = build_runtime(engine, SessionLocal)
    if runtime.behavior_queue is not None:
        runtime.behavior_queue.start()
    try:
        IngestionWorker(runtime.violations).start()
    finally:
        if runtime.behavior_queue is not None:
            runtime.behavior_queue.stop()


if __name__ == "__main__":
    main()
