"""Data access helpers for issue reports."""
from __future__ import annotations

from sqlalchemy import select

from gym_floor.models.issue import IssueReport, IssueSeverity

from .base import Repository

__all__ = ["IssueRepository"]


class IssueRepository(Repository):

    def create(
        self,
        *,
        equipment_id: str,
        consumer_id: str,
        issue_type: str,
        severity: IssueSeverity,
        description: str | None = None,
    ) -> IssueReport:
        report = IssueReport(
            equipment_id=equipment_id,
            consumer_id=consumer_id,
            issue_type=issue_type,
            severity=severity,
            description=description,
        )
        self.session.add(report)
        self.session.flush()
        return report

    def list_for_equipment(self, equipment_id: str) -> list[IssueReport]:
        stmt = (
            select(IssueReport)
            .where(IssueReport.equipment_id == equipment_id)
            .order_by(IssueReport.created_at.desc(), IssueReport.id)
        )
        return list(self.session.execute(stmt).scalars())
