"""Queue endpoints for the Gym Floor API."""

from __future__ import annotations

from fastapi import APIRouter, status

from gym_floor.api.errors import ERROR_RESPONSES
from gym_floor.api.v1.dependencies import ConsumerDep, CoordinatorDep, SessionDep
from gym_floor.schemas.queue import QueueEntryResponse, QueuePositionResponse

router = APIRouter(prefix="/queue", tags=["queue"], responses=ERROR_RESPONSES)


@router.get("/equipment/{equipment_id}", response_model=list[QueueEntryResponse])
def get_queue(
    equipment_id: str,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> list[QueueEntryResponse]:
    """Live queue for the equipment, the called member first."""
    entries = coordinator.get_queue(db, equipment_id)
    return [QueueEntryResponse.model_validate(entry) for entry in entries]


@router.post(
    "/equipment/{equipment_id}",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
def join_queue(
    equipment_id: str,
    consumer_id: ConsumerDep,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> QueueEntryResponse:
    """Join the line; a 409 with hint ``claim`` means the equipment is free."""
    entry = coordinator.join_queue(db, equipment_id, consumer_id)
    return QueueEntryResponse.model_validate(entry)


@router.get("/equipment/{equipment_id}/position", response_model=QueuePositionResponse)
def get_queue_position(
    equipment_id: str,
    consumer_id: ConsumerDep,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> QueuePositionResponse:
    position = coordinator.get_queue_position(db, equipment_id, consumer_id)
    return QueuePositionResponse.model_validate(position)


@router.delete("/entries/{entry_id}", response_model=QueueEntryResponse)
def leave_queue(
    entry_id: str,
    consumer_id: ConsumerDep,
    coordinator: CoordinatorDep,
    db: SessionDep,
) -> QueueEntryResponse:
    """Leave the line; everyone behind moves up one place."""
    entry = coordinator.leave_queue(db, entry_id, consumer_id)
    return QueueEntryResponse.model_validate(entry)
