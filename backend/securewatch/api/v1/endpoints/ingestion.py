"""
ingestion.py - Async batch ingestion endpoint.

Accepts scored-message batches from connectors, pushes them to the Redis
Stream and returns 202 Accepted. Schema validation happens here so
malformed input never reaches the stream; the ingestion worker records
violations and feeds the behavioral queue.
"""

import json
import logging
import uuid

import redis
from fastapi import APIRouter, Depends, HTTPException, status

from securewatch.api.deps import get_redis
from securewatch.core.redis import STREAM_NAME
from securewatch.schemas.ingestion import IngestBatchAccepted, IngestBatchRequest

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/batch",
    response_model=IngestBatchAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Async batch ingestion via Redis Stream",
)
def ingest_batch(
    request: IngestBatchRequest,
    redis_client: redis.Redis = Depends(get_redis),
) -> IngestBatchAccepted:
    batch_id = str(uuid.uuid4())
    payload = {
        "batch_id": batch_id,
        "events": json.dumps([event.model_dump(mode="json") for event in request.events]),
    }

    try:
        message_id = redis_client.xadd(STREAM_NAME, payload)
    except redis.RedisError:
        logger.exception("Failed to push batch %s to Redis", batch_id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ingestion queue unavailable. Retry later.",
        )

    logger.info(
        "Batch %s accepted: %d messages -> Redis message %s",
        batch_id,
        len(request.events),
        message_id,
    )
    return IngestBatchAccepted(accepted_count=len(request.events), stream=STREAM_NAME)
