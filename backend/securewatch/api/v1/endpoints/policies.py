"""
policies.py - Policy views and YAML reload.

Policies are administered through policy.yaml; reload validates the whole
document before anything is written.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session as DBSession, selectinload

from securewatch.api.deps import get_runtime, get_session
from securewatch.config import settings
from securewatch.models import SecurityPolicy
from securewatch.runtime import Runtime
from securewatch.schemas.policy import PolicyRead, PolicyReloadResult
from securewatch.services.policy.loader import PolicyConfigError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=list[PolicyRead], summary="List policies in evaluation order")
def list_policies(
    active_only: bool = Query(False, description="Only active policies"),
    db: DBSession = Depends(get_session),
) -> list[PolicyRead]:
    query = db.query(SecurityPolicy).options(
        selectinload(SecurityPolicy.conditions),
        selectinload(SecurityPolicy.actions),
    )
    if active_only:
        query = query.filter(SecurityPolicy.is_active.is_(True))
    rows = query.order_by(SecurityPolicy.priority.asc(), SecurityPolicy.id.asc()).all()
    return [PolicyRead.model_validate(r) for r in rows]


@router.post("/reload", response_model=PolicyReloadResult, summary="Reload policy.yaml")
def reload_policies(runtime: Runtime = Depends(get_runtime)) -> PolicyReloadResult:
    try:
        result = runtime.loader.load_file(settings.POLICY_CONFIG_PATH)
    except PolicyConfigError as e:
        logger.error("Policy reload rejected: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return PolicyReloadResult(
        version=result.version,
        config_hash=result.config_hash,
        created=result.created,
        updated=result.updated,
        policies=list(result.policies),
    )
