import logging
import threading
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from .errors import DuplicateEntry, NotFound
from .models import (
    DURABLE_STATES,
    CuratedEntry,
    LifecycleState,
    SourceKind,
    TrialRole,
    utcnow,
)

logger = logging.getLogger(__name__)


class CurationStore:
    """A user's durable collection for one source kind.

    Entries are keyed by external id and kept in insertion order, which is
    the default display order. One instance per user session; mutations are
    serialized so the one-entry-per-id rule holds even with several writers.
    """

    def __init__(self, kind: SourceKind, entries: Optional[Iterable[CuratedEntry]] = None):
        self.kind = kind
        self._entries: Dict[str, CuratedEntry] = {}
        self._lock = threading.RLock()
        for entry in entries or []:
            self._load_one(entry)

    def _load_one(self, entry: CuratedEntry) -> None:
        if entry.kind != self.kind:
            logger.warning(f"Skipping {entry.kind.value} entry {entry.id} in {self.kind.value} collection")
            return
        if entry.lifecycle_state not in DURABLE_STATES:
            logger.warning(f"Skipping {entry.lifecycle_state.value} entry {entry.id}; only curated entries are kept")
            return
        if entry.id in self._entries:
            logger.warning(f"Skipping duplicate entry {entry.id}")
            return
        self._entries[entry.id] = entry

    # -- queries ----------------------------------------------------------

    def all(self) -> List[CuratedEntry]:
        with self._lock:
            return list(self._entries.values())

    def get(self, external_id: str) -> Optional[CuratedEntry]:
        return self._entries.get(external_id)

    def visible(self) -> List[CuratedEntry]:
        return [e for e in self.all() if e.is_visible]

    def featured(self) -> List[CuratedEntry]:
        return [e for e in self.all() if e.is_featured]

    def count_by_visibility(self) -> Dict[str, int]:
        entries = self.all()
        shown = sum(1 for e in entries if e.is_visible)
        return {"visible": shown, "hidden": len(entries) - shown}

    def count_by_featured(self) -> Dict[str, int]:
        entries = self.all()
        featured = sum(1 for e in entries if e.is_featured)
        return {"featured": featured, "not_featured": len(entries) - featured}

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # -- mutations --------------------------------------------------------

    def promote(self, entries: Iterable[CuratedEntry]) -> int:
        """Approve selected discovery candidates.

        Ids already in the collection and entries that are not pending are
        skipped without error. Returns the number of entries added.
        """
        added = 0
        with self._lock:
            for entry in entries:
                if entry.lifecycle_state != LifecycleState.PENDING:
                    logger.warning(f"Not promoting {entry.id}: state is {entry.lifecycle_state.value}")
                    continue
                if entry.kind != self.kind:
                    logger.warning(f"Not promoting {entry.kind.value} entry {entry.id} into {self.kind.value} collection")
                    continue
                if entry.id in self._entries:
                    logger.debug(f"{entry.id} already curated; skipping")
                    continue
                now = utcnow()
                self._entries[entry.id] = entry.model_copy(
                    deep=True,
                    update={
                        "lifecycle_state": LifecycleState.APPROVED,
                        "added_at": now,
                        "last_modified_at": now,
                    },
                )
                added += 1
        if added:
            logger.info(f"Promoted {added} {self.kind.value} entries")
        return added

    def add_manual(self, entry: CuratedEntry) -> CuratedEntry:
        with self._lock:
            if entry.id in self._entries:
                raise DuplicateEntry(entry.id)
            self._entries[entry.id] = entry
        logger.info(f"Added {self.kind.value} entry {entry.id} manually")
        return entry

    def _update(self, external_id: str, **changes) -> CuratedEntry:
        with self._lock:
            current = self._entries.get(external_id)
            if current is None:
                raise NotFound(f"{external_id} is not in the {self.kind.value} collection")
            changes["last_modified_at"] = utcnow()
            updated = current.model_copy(update=changes)
            self._entries[external_id] = updated
            return updated

    def set_visibility(self, external_id: str, visible: bool) -> CuratedEntry:
        return self._update(external_id, is_visible=bool(visible))

    def set_featured(self, external_id: str, featured: bool) -> CuratedEntry:
        if self.kind != SourceKind.MEDIA:
            raise ValueError("Only media entries can be featured")
        return self._update(external_id, is_featured=bool(featured))

    def set_role(self, external_id: str, role) -> CuratedEntry:
        if self.kind != SourceKind.CLINICAL_TRIAL:
            raise ValueError("Only clinical trial entries carry a role")
        try:
            role = TrialRole(role)
        except ValueError:
            raise ValueError(f"Unknown trial role {role!r}; expected one of {[r.value for r in TrialRole]}")
        return self._update(external_id, role=role)

    def set_classification(self, external_id: str, classification: str) -> CuratedEntry:
        """Correct the category of an entry (e.g. a mis-detected media type)."""
        with self._lock:
            current = self._entries.get(external_id)
            if current is None:
                raise NotFound(f"{external_id} is not in the {self.kind.value} collection")
            record = current.record.model_copy(update={"classification": classification})
            return self._update(external_id, record=record)

    def remove(self, external_id: str) -> None:
        with self._lock:
            if self._entries.pop(external_id, None) is not None:
                logger.info(f"Removed {self.kind.value} entry {external_id}")

    # -- serialization ----------------------------------------------------

    def dump(self) -> List[dict]:
        return [serialize_entry(e) for e in self.all()]

    @classmethod
    def load(cls, kind: SourceKind, rows: Iterable[dict]) -> "CurationStore":
        entries = []
        for row in rows:
            entry = deserialize_entry(row)
            if entry is not None:
                entries.append(entry)
        return cls(kind, entries)


def serialize_entry(entry: CuratedEntry) -> dict:
    """JSON-ready dict; timestamps and dates become ISO-8601 strings."""
    return entry.model_dump(mode="json")


def deserialize_entry(row: dict) -> Optional[CuratedEntry]:
    try:
        return CuratedEntry.model_validate(row)
    except ValidationError as e:
        ident = ((row or {}).get("record") or {}).get("external_id") if isinstance(row, dict) else None
        logger.warning(f"Dropping stored entry {ident!r}: {e.error_count()} invalid field(s)")
        return None
