"""Chroma-based completion history log."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import CompletionHistoryEntry, HistoryRecord


class HistoryUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by mergewatch."""

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
    """Protocol for the minimal Chroma client API used by mergewatch."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


class HistoryStore:
    """Append-only audit log of completed runs, persisted via ChromaDB.

    Entries are written once and never updated. Nothing in the decision path
    reads them back; they exist for diagnostics.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "mergewatch_history",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise HistoryUnavailableError(
                "chromadb package is not installed; completion history is unavailable"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        try:
            self._ensure_collection()
        except HistoryUnavailableError:
            raise
        except Exception as exc:  # chromadb raises assorted errors for bad directories
            raise HistoryUnavailableError(f"Cannot open history at {self._path}: {exc}") from exc
        return True

    def append(self, entry: CompletionHistoryEntry) -> HistoryRecord:
        collection = self._ensure_collection()
        record_id = f"{entry.run.id}:{uuid.uuid4().hex}"
        document = entry.to_dict()
        metadata: dict[str, Any] = {
            "run_id": entry.run.id,
            "workflow": entry.run.workflow_name,
            "branch": entry.run.branch,
            "action": entry.action.value,
            "failure": entry.failure,
            "timestamp": entry.recorded_at.isoformat(),
            "written_at": self._clock().isoformat(),
        }
        if entry.eligibility is not None:
            metadata["score"] = entry.eligibility.score
            metadata["eligible"] = entry.eligibility.eligible
        if entry.merge is not None and entry.merge.pr_number is not None:
            metadata["pr_number"] = entry.merge.pr_number
        # Chroma rejects null metadata values.
        metadata = {key: value for key, value in metadata.items() if value is not None}

        collection.add(documents=[json.dumps(document)], metadatas=[metadata], ids=[record_id])
        return self._to_record(record_id, document, metadata)

    def _to_record(self, record_id: str, document: dict[str, Any], metadata: dict[str, Any]) -> HistoryRecord:
        timestamp_raw = metadata.get("timestamp")
        recorded_at = (
            datetime.fromisoformat(timestamp_raw) if isinstance(timestamp_raw, str) else self._clock()
        )
        return HistoryRecord(
            id=record_id,
            run_id=str(metadata.get("run_id", "")),
            workflow=str(metadata.get("workflow", "")),
            action=str(metadata.get("action", "")),
            failure=bool(metadata.get("failure", False)),
            recorded_at=recorded_at,
            document=document,
        )

    def list_entries(
        self,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[HistoryRecord]:
        """Return stored entries oldest first; ``limit`` keeps the newest ones."""

        collection = self._ensure_collection()
        result = collection.get(where=filters or None)
        records = [
            self._to_record(record_id, json.loads(document), metadata or {})
            for record_id, document, metadata in zip(
                result.get("ids", []),
                result.get("documents", []),
                result.get("metadatas", []),
            )
        ]
        records.sort(key=lambda record: record.recorded_at)
        if limit is not None and limit > 0:
            records = records[-limit:]
        return records


__all__ = ["HistoryStore", "HistoryUnavailableError"]
