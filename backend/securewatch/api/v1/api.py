from fastapi import APIRouter

from securewatch.api.v1.endpoints import executions, ingestion, policies, violations

# Create the main API router
router = APIRouter()

router.include_router(violations.router, prefix="/violations", tags=["violations"])
router.include_router(ingestion.router, prefix="/ingest", tags=["ingestion"])
router.include_router(executions.router, prefix="/executions", tags=["executions"])
router.include_router(policies.router, prefix="/policies", tags=["policies"])
