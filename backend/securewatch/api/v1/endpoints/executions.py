"""
executions.py - Read-only execution views.

Executions are only mutated by the dispatcher; there are no write
endpoints here.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session as DBSession

from securewatch.api.deps import get_session
from securewatch.models import ExecutionStatus, PolicyExecution
from securewatch.schemas.execution import ExecutionRead, ExecutionSummary

router = APIRouter()


@router.get("", response_model=ExecutionSummary, summary="List executions with filters")
def list_executions(
    execution_status: ExecutionStatus | None = Query(None, alias="status", description="Filter by status"),
    violation_id: str | None = Query(None, description="Filter by violation"),
    policy_id: int | None = Query(None, description="Filter by policy"),
    action_type: str | None = Query(None, description="Filter by action type"),
    limit: int = Query(100, ge=1, le=1000, description="Max results"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    db: DBSession = Depends(get_session),
) -> ExecutionSummary:
    query = db.query(PolicyExecution)
    if violation_id:
        query = query.filter(PolicyExecution.violation_id == violation_id)
    if policy_id is not None:
        query = query.filter(PolicyExecution.policy_id == policy_id)
    if action_type:
        query = query.filter(PolicyExecution.action_type == action_type)

    # Counts ignore the status filter so the dashboard can show all buckets
    counts = {s.value: 0 for s in ExecutionStatus}
    for value, count in (
        query.with_entities(PolicyExecution.status, func.count(PolicyExecution.id))
        .group_by(PolicyExecution.status)
        .all()
    ):
        counts[value] = count

    if execution_status is not None:
        query = query.filter(PolicyExecution.status == execution_status.value)

    total = query.count()
    rows = (
        query.order_by(PolicyExecution.created_at.desc(), PolicyExecution.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return ExecutionSummary(
        total=total,
        counts=counts,
        executions=[ExecutionRead.model_validate(r) for r in rows],
    )


@router.get("/{execution_id}", response_model=ExecutionRead, summary="Get one execution")
def get_execution(execution_id: int, db: DBSession = Depends(get_session)) -> ExecutionRead:
    row = db.get(PolicyExecution, execution_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Execution not found")
    return ExecutionRead.model_validate(row)
