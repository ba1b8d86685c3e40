import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import requests

from . import config
from .db.db import init_db, load_collection, save_collection
from .discovery import DiscoverySession, discover_all
from .errors import SourceError
from .intake import ManualIntakeResolver
from .models import CuratedEntry, DiscoveryResult, SourceKind
from .sources.clinicaltrials_source import ClinicalTrialsSource
from .sources.media_source import MediaSource
from .sources.pubmed_source import PubMedSource
from .sources.source import Source
from .store import CurationStore

logger = logging.getLogger(__name__)


SOURCES: Dict[SourceKind, Callable[..., Source]] = {
    SourceKind.PUBLICATION: PubMedSource,
    SourceKind.CLINICAL_TRIAL: ClinicalTrialsSource,
    SourceKind.MEDIA: MediaSource,
}


def make_source(kind: SourceKind, session: Optional[requests.Session] = None) -> Source:
    return SOURCES[SourceKind(kind)](session=session)


class CurationWorkspace:
    """Everything one user needs to curate one collection.

    Ties a source adapter to a discovery session, the user's store and the
    manual intake resolver. Nothing is written to disk until ``save``.
    """

    def __init__(
        self,
        user_id: str,
        kind: SourceKind,
        *,
        source: Optional[Source] = None,
        store: Optional[CurationStore] = None,
        max_results: int = config.DEFAULT_MAX_RESULTS,
    ):
        self.user_id = user_id
        self.kind = SourceKind(kind)
        self.source = source or make_source(self.kind)
        self.store = store or CurationStore(self.kind)
        self.session = DiscoverySession(self.source, max_results=max_results)
        self.resolver = ManualIntakeResolver(self.source, self.store)

    @classmethod
    def open(
        cls,
        user_id: str,
        kind: SourceKind,
        db_path: str = config.DB_PATH,
        **kwargs,
    ) -> "CurationWorkspace":
        kind = SourceKind(kind)
        conn = init_db(db_path)
        try:
            entries = load_collection(conn, user_id=user_id, kind=kind)
        finally:
            conn.close()
        logger.info(f"Loaded {len(entries)} {kind.value} entries for {user_id}")
        return cls(user_id, kind, store=CurationStore(kind, entries), **kwargs)

    def save(self, db_path: str = config.DB_PATH) -> int:
        conn = init_db(db_path)
        try:
            written = save_collection(conn, user_id=self.user_id, kind=self.kind, entries=self.store.all())
        finally:
            conn.close()
        logger.info(f"Saved {written} {self.kind.value} entries for {self.user_id}")
        return written

    # -- discovery ----------------------------------------------------------

    def discover(self, name: str, affiliation: Optional[str] = None) -> DiscoveryResult:
        return self.session.discover(name, affiliation)

    def promote(self, candidate_ids: Iterable[str]) -> int:
        """Approve candidates of the current discovery result by external id."""
        selected = self.session.select(candidate_ids)
        return self.store.promote(selected)

    def promote_all(self) -> int:
        if self.session.current is None:
            return 0
        return self.store.promote(self.session.current.candidates)

    # -- manual intake and collection edits ----------------------------------

    def add_by_identifier(self, raw: str) -> CuratedEntry:
        return self.resolver.add_by_identifier(raw)

    def set_visibility(self, external_id: str, visible: bool) -> CuratedEntry:
        return self.store.set_visibility(external_id, visible)

    def set_featured(self, external_id: str, featured: bool) -> CuratedEntry:
        return self.store.set_featured(external_id, featured)

    def set_role(self, external_id: str, role) -> CuratedEntry:
        return self.store.set_role(external_id, role)

    def set_classification(self, external_id: str, classification: str) -> CuratedEntry:
        return self.store.set_classification(external_id, classification)

    def remove(self, external_id: str) -> None:
        self.store.remove(external_id)

    def entries(self) -> List[CuratedEntry]:
        return self.store.all()


def discover_everywhere(
    workspaces: Iterable[CurationWorkspace],
    name: str,
    affiliation: Optional[str] = None,
) -> Tuple[Dict[SourceKind, DiscoveryResult], Dict[SourceKind, SourceError]]:
    """Discovery across several collections at once, one thread per source."""
    sessions = {ws.kind: ws.session for ws in workspaces}
    return discover_all(sessions, name, affiliation)
