"""Chroma-backed journal of item transitions and published item views."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Protocol

from .models import JournalEvent, TransitionRecord

if TYPE_CHECKING:
    from ..activity import ActivityContext, TransitionResult
    from ..monitor.models import ItemView

TRANSITION_EVENT = "transition"
ITEM_UPDATE_EVENT = "item_update"


class JournalUnavailableError(RuntimeError):
    """Raised when the Chroma client backing the journal cannot be constructed."""


class CollectionProtocol(Protocol):
    """Minimal Chroma collection API used by the journal."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


def _where(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    if not filters:
        return None
    if len(filters) == 1:
        return dict(filters)
    return {"$and": [{key: value} for key, value in filters.items()]}


class ActivityJournal:
    """Append-only record of what the monitor observed, keyed by item."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "copilot_monitor",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    @property
    def path(self) -> Path:
        return self._path

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise JournalUnavailableError(
                "chromadb package is not installed; install copilot-monitor[persistence]"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[JournalEvent]:
        events: list[JournalEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                JournalEvent(
                    id=event_id,
                    item_key=metadata.get("item_key", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        item_key: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> JournalEvent:
        collection = self._ensure_collection()
        counter = self._counters[item_key] = self._counters[item_key] + 1
        event_id = f"{item_key}:{uuid.uuid4().hex}"
        timestamp = timestamp or self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata: dict[str, Any] = {
            "item_key": item_key,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            # chroma metadata values must be scalars
            record_metadata.update({key: value for key, value in metadata.items() if value is not None})

        collection.add(documents=[document], metadatas=[record_metadata], ids=[event_id])

        return JournalEvent(
            id=event_id,
            item_key=item_key,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def record_transition(
        self,
        item_key: str,
        result: "TransitionResult",
        *,
        occurred_at: datetime,
        context: "ActivityContext",
    ) -> TransitionRecord:
        record = TransitionRecord(
            item_key=item_key,
            event=result.event.value,
            from_state=result.from_state.value,
            to_state=result.to_state.value,
            occurred_at=occurred_at,
            session_count=context.session_count,
            total_session_time_ms=context.total_session_time_ms,
        )
        self.record_event(
            item_key=item_key,
            event_type=TRANSITION_EVENT,
            body=record.to_dict(),
            metadata={"event": record.event, "to_state": record.to_state},
            timestamp=occurred_at,
        )
        return record

    def record_item_update(self, view: "ItemView") -> JournalEvent:
        return self.record_event(
            item_key=view.key,
            event_type=ITEM_UPDATE_EVENT,
            body=view.to_payload(),
            metadata={
                "repository": view.repository,
                "machine_state": view.machine_state.value,
                "ci_status": view.ci.status,
            },
        )

    def fetch_item_events(self, item_key: str, *, limit: int | None = None) -> list[JournalEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"item_key": item_key}, limit=limit)
        return self._convert_result(result)

    def list_transitions(self, item_key: str | None = None) -> list[TransitionRecord]:
        filters: dict[str, Any] = {"event_type": TRANSITION_EVENT}
        if item_key:
            filters["item_key"] = item_key
        transitions: list[TransitionRecord] = []
        for event in self.search_events(filters=filters):
            doc = json.loads(event.document)
            transitions.append(
                TransitionRecord(
                    item_key=doc["item_key"],
                    event=doc["event"],
                    from_state=doc["from_state"],
                    to_state=doc["to_state"],
                    occurred_at=datetime.fromisoformat(doc["occurred_at"]),
                    session_count=doc.get("session_count", 0),
                    total_session_time_ms=doc.get("total_session_time_ms", 0),
                )
            )
        return transitions

    def latest_item_views(self) -> list[dict[str, Any]]:
        """Return the most recent stored view per item, in first-seen order."""

        latest: dict[str, dict[str, Any]] = {}
        for event in self.search_events(filters={"event_type": ITEM_UPDATE_EVENT}):
            latest[event.item_key] = json.loads(event.document)
        return list(latest.values())

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[JournalEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=_where(filters))
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[-limit:] if limit else events


__all__ = [
    "ActivityJournal",
    "ITEM_UPDATE_EVENT",
    "JournalUnavailableError",
    "TRANSITION_EVENT",
]
