"""
violations.py - Violation API endpoints.

POST records a violation synchronously (persist, match, schedule). The only
mutation afterwards is the forward-only status change, which never
re-triggers policy matching.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session as DBSession

from securewatch.api.deps import get_runtime, get_session
from securewatch.models import Violation
from securewatch.runtime import Runtime
from securewatch.schemas.violation import (
    ViolationCreate,
    ViolationCreated,
    ViolationRead,
    ViolationStatusUpdate,
    ViolationSummary,
)
from securewatch.services.violations import (
    StatusTransitionError,
    UnknownEmployeeError,
    ViolationNotFound,
)

router = APIRouter()


@router.post(
    "",
    response_model=ViolationCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Record a violation and schedule policy responses",
)
def record_violation(
    request: ViolationCreate,
    runtime: Runtime = Depends(get_runtime),
) -> ViolationCreated:
    try:
        result = runtime.violations.record_violation(
            employee_id=request.employee_id,
            type=request.type,
            severity=request.severity,
            description=request.description,
            metadata=request.metadata,
            violation_id=request.violation_id,
        )
    except UnknownEmployeeError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return ViolationCreated(
        violation_id=result.violation_id,
        created=result.created,
        scheduled_executions=result.scheduled_executions,
    )


@router.get(
    "",
    response_model=ViolationSummary,
    summary="List violations with filters",
)
def list_violations(
    severity: str | None = Query(None, description="Filter by severity"),
    violation_status: str | None = Query(None, alias="status", description="Filter by status"),
    employee_id: int | None = Query(None, description="Filter by employee"),
    type: str | None = Query(None, description="Filter by violation type"),
    limit: int = Query(100, ge=1, le=1000, description="Max results"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    db: DBSession = Depends(get_session),
) -> ViolationSummary:
    query = db.query(Violation)

    if severity:
        query = query.filter(Violation.severity == severity)
    if violation_status:
        query = query.filter(Violation.status == violation_status)
    if employee_id is not None:
        query = query.filter(Violation.employee_id == employee_id)
    if type:
        query = query.filter(Violation.type == type)

    total = query.count()
    violations = (
        query.order_by(Violation.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return ViolationSummary(
        total=total,
        violations=[ViolationRead.model_validate(v) for v in violations],
    )


@router.get("/{violation_id}", response_model=ViolationRead, summary="Get one violation")
def get_violation(violation_id: str, db: DBSession = Depends(get_session)) -> ViolationRead:
    violation = db.get(Violation, violation_id)
    if violation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Violation not found")
    return ViolationRead.model_validate(violation)


@router.patch(
    "/{violation_id}/status",
    response_model=ViolationRead,
    summary="Advance violation status (forward only)",
)
def update_violation_status(
    violation_id: str,
    request: ViolationStatusUpdate,
    runtime: Runtime = Depends(get_runtime),
    db: DBSession = Depends(get_session),
) -> ViolationRead:
    try:
        runtime.violations.update_status(violation_id, request.status)
    except ViolationNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Violation not found")
    except StatusTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return ViolationRead.model_validate(db.get(Violation, violation_id))
