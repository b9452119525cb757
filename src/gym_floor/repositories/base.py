"""Shared plumbing for repositories."""
from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session


class Repository:
    """Base class holding the session a repository works against."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def _execute_update(self, stmt: Any, model: type) -> int:
        """Run a bulk UPDATE and return the number of matched rows.

        Pending changes are flushed first so the statement sees them, and
        already loaded instances of ``model`` are expired so later reads in
        the same transaction observe the new column values.
        """
        self.session.flush()
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        for obj in list(self.session.identity_map.values()):
            if isinstance(obj, model):
                self.session.expire(obj)
        return int(result.rowcount or 0)
