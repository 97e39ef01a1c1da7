"""Bookkeeping of ingested documents and ingestion events."""

from datetime import datetime, timezone
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    def has_document(self, user_id: str, identifier: str) -> bool: ...

    def record_document(
        self, user_id: str, identifier: str, record: dict[str, Any]
    ) -> None: ...

    def get_document(self, user_id: str, identifier: str) -> dict[str, Any] | None: ...

    def remove_document(self, user_id: str, identifier: str) -> bool: ...

    def log_event(self, user_id: str, event: str, **details: Any) -> None: ...


class InMemoryDocumentStore:
    """Keyed document records and an append-only event log held in memory."""

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        self.events: list[dict[str, Any]] = []

    def has_document(self, user_id: str, identifier: str) -> bool:
        return (user_id, identifier) in self._documents

    def record_document(
        self, user_id: str, identifier: str, record: dict[str, Any]
    ) -> None:
        self._documents[(user_id, identifier)] = dict(record)

    def get_document(self, user_id: str, identifier: str) -> dict[str, Any] | None:
        return self._documents.get((user_id, identifier))

    def remove_document(self, user_id: str, identifier: str) -> bool:
        return self._documents.pop((user_id, identifier), None) is not None

    def log_event(self, user_id: str, event: str, **details: Any) -> None:
        self.events.append(
            {
                "user_id": user_id,
                "event": event,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **details,
            }
        )
        logger.debug(f"Logged {event} event for user {user_id}")
