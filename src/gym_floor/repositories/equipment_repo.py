"""Data access helpers for equipment items."""
from __future__ import annotations

from sqlalchemy import select, update

from gym_floor.models.equipment import Equipment, EquipmentCategory, EquipmentStatus

from .base import Repository

__all__ = ["EquipmentRepository"]


class EquipmentRepository(Repository):
    """Thin wrapper around database access for equipment rows."""

    def get(self, equipment_id: str) -> Equipment | None:
        """Return an equipment item by identifier."""
        return self.session.get(Equipment, equipment_id)

    def get_for_update(self, equipment_id: str) -> Equipment | None:
        """Return an equipment item, row-locked for the rest of the transaction."""
        stmt = (
            select(Equipment)
            .where(Equipment.id == equipment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalars().first()

    def list_all(
        self,
        *,
        status: EquipmentStatus | None = None,
        category: EquipmentCategory | None = None,
    ) -> list[Equipment]:
        """Return equipment items, optionally filtered."""
        stmt = select(Equipment)
        if status is not None:
            stmt = stmt.where(Equipment.status == status)
        if category is not None:
            stmt = stmt.where(Equipment.category == category)
        stmt = stmt.order_by(Equipment.name, Equipment.id)
        return list(self.session.execute(stmt).scalars())

    def create(
        self,
        *,
        name: str,
        category: EquipmentCategory,
        location: str | None = None,
        status: EquipmentStatus = EquipmentStatus.AVAILABLE,
    ) -> Equipment:
        """Insert a new equipment item and return the persisted ORM instance."""
        equipment = Equipment(
            name=name,
            category=category,
            location=location,
            status=status,
            usage_hours=0.0,
        )
        self.session.add(equipment)
        self.session.flush()
        return equipment

    def compare_and_set_status(
        self,
        equipment_id: str,
        *,
        expected: tuple[EquipmentStatus, ...],
        new: EquipmentStatus,
    ) -> bool:
        """Move the item to ``new`` only if its status is one of ``expected``."""
        stmt = (
            update(Equipment)
            .where(Equipment.id == equipment_id, Equipment.status.in_(expected))
            .values(status=new)
        )
        return self._execute_update(stmt, Equipment) == 1

    def force_status(self, equipment_id: str, new: EquipmentStatus) -> bool:
        """Set the status unconditionally; returns False if the row is missing."""
        stmt = update(Equipment).where(Equipment.id == equipment_id).values(status=new)
        return self._execute_update(stmt, Equipment) == 1

    def add_usage_hours(self, equipment_id: str, hours: float) -> None:
        """Atomically increment the cumulative usage counter."""
        stmt = (
            update(Equipment)
            .where(Equipment.id == equipment_id)
            .values(usage_hours=Equipment.usage_hours + hours)
        )
        self._execute_update(stmt, Equipment)
