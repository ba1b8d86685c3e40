import logging

from .errors import DuplicateEntry
from .models import CuratedEntry, new_manual_entry
from .sources.source import Source
from .store import CurationStore

logger = logging.getLogger(__name__)


class ManualIntakeResolver:
    """Adds a single record to a collection from a user-typed id or URL."""

    def __init__(self, source: Source, store: CurationStore):
        if source.kind != store.kind:
            raise ValueError(f"{source.name} yields {source.kind.value} records, store holds {store.kind.value}")
        self.source = source
        self.store = store

    def add_by_identifier(self, raw: str) -> CuratedEntry:
        """
        Validate, resolve and store one record as a visible manual entry.

        Raises:
            InvalidFormat: the input does not look like an identifier for this source.
            DuplicateEntry: the record is already in the collection.
            NotFound: the source has no record with this identifier.
            SourceError: the source could not be reached or returned garbage.
        """
        check = self.source.validate_id(raw)
        if not check.ok:
            raise check.error
        identifier = check.value

        # Checked before any network traffic.
        if identifier in self.store:
            raise DuplicateEntry(identifier)

        raw_record = self.source.fetch_by_id(identifier)
        record = self.source.parse_raw(raw_record)

        # Redirects and canonical links can resolve to an id already stored.
        if record.external_id != identifier and record.external_id in self.store:
            raise DuplicateEntry(record.external_id)

        entry = new_manual_entry(record)
        return self.store.add_manual(entry)
