"""Equipment registry, claim and issue endpoints for the Gym Floor API."""

from __future__ import annotations

from fastapi import APIRouter, Query, status

from gym_floor.api.errors import ERROR_RESPONSES
from gym_floor.api.v1.dependencies import ConsumerDep, CoordinatorDep, SessionDep
from gym_floor.models.equipment import Equipment, EquipmentCategory, EquipmentStatus
from gym_floor.schemas.equipment import (
    EquipmentCreate,
    EquipmentResponse,
    EquipmentStatusUpdate,
)
from gym_floor.schemas.issue import IssueCreate, IssueResponse
from gym_floor.schemas.usage import UsageSessionResponse
from gym_floor.services.coordinator import ContentionCoordinator

router = APIRouter(prefix="/equipment", tags=["equipment"], responses=ERROR_RESPONSES)


def _to_response(
    equipment: Equipment,
    coordinator: ContentionCoordinator,
    db: SessionDep,
) -> EquipmentResponse:
    response = EquipmentResponse.model_validate(equipment)
    response.queue_length = coordinator.get_queue_length(db, equipment.id)
    return response


@router.post("", response_model=EquipmentResponse, status_code=status.HTTP_201_CREATED)
def create_equipment(
    payload: EquipmentCreate,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> EquipmentResponse:
    """Register a new equipment item; it starts AVAILABLE."""
    equipment = coordinator.create_equipment(
        db,
        name=payload.name,
        category=payload.category,
        location=payload.location,
    )
    return _to_response(equipment, coordinator, db)


@router.get("", response_model=list[EquipmentResponse])
def list_equipment(
    coordinator: CoordinatorDep,
    db: SessionDep,
    status_filter: EquipmentStatus | None = Query(None, alias="status"),
    category: EquipmentCategory | None = None,
) -> list[EquipmentResponse]:
    """List equipment, optionally filtered by status and category."""
    items = coordinator.list_equipment(db, status=status_filter, category=category)
    return [_to_response(item, coordinator, db) for item in items]


@router.get("/{equipment_id}", response_model=EquipmentResponse)
def get_equipment(
    equipment_id: str,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> EquipmentResponse:
    return _to_response(coordinator.get_equipment(db, equipment_id), coordinator, db)


@router.put("/{equipment_id}/status", response_model=EquipmentResponse)
def set_equipment_status(
    equipment_id: str,
    payload: EquipmentStatusUpdate,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> EquipmentResponse:
    """Administrative status change (maintenance, out of order, back in service)."""
    equipment = coordinator.set_equipment_status(db, equipment_id, payload.status)
    return _to_response(equipment, coordinator, db)


@router.post(
    "/{equipment_id}/claim",
    response_model=UsageSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
def claim_equipment(
    equipment_id: str,
    consumer_id: ConsumerDep,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> UsageSessionResponse:
    """Start an exclusive session on the equipment.

    A 409 with hint ``join_queue`` means the caller should queue instead.
    """
    usage = coordinator.claim_resource(db, equipment_id, consumer_id)
    return UsageSessionResponse.model_validate(usage)


@router.get("/{equipment_id}/session", response_model=UsageSessionResponse | None)
def get_active_session(
    equipment_id: str,
    consumer_id: ConsumerDep,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> UsageSessionResponse | None:
    """Return the caller's open session on the equipment, or null."""
    usage = coordinator.get_active_session(db, equipment_id, consumer_id)
    return UsageSessionResponse.model_validate(usage) if usage else None


@router.post(
    "/{equipment_id}/issues",
    response_model=IssueResponse,
    status_code=status.HTTP_201_CREATED,
)
def report_issue(
    equipment_id: str,
    payload: IssueCreate,
    consumer_id: ConsumerDep,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> IssueResponse:
    """Report a problem; HIGH and CRITICAL take the equipment out of order."""
    issue = coordinator.report_issue(
        db,
        equipment_id,
        consumer_id,
        payload.severity,
        issue_type=payload.issue_type,
        description=payload.description,
    )
    return IssueResponse.model_validate(issue)


@router.get("/{equipment_id}/issues", response_model=list[IssueResponse])
def list_issues(
    equipment_id: str,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> list[IssueResponse]:
    issues = coordinator.list_issues(db, equipment_id)
    return [IssueResponse.model_validate(issue) for issue in issues]
