"""Repository for the processed-event ledger."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models.processed_event import ProcessedEvent
from .base_repository import BaseRepository


class ProcessedEventRepository(BaseRepository[ProcessedEvent]):
    def __init__(self, db: Session):
        super().__init__(db, ProcessedEvent)

    def has_processed(self, external_event_id: str) -> bool:
        return self.exists(external_event_id=external_event_id)

    def record(
        self,
        external_event_id: str,
        event_type: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> ProcessedEvent:
        """Insert the ledger row; raises RepositoryException on a duplicate id."""
        return self.create(
            external_event_id=external_event_id,
            event_type=event_type,
            payload=payload,
        )
