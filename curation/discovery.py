import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from . import config
from .errors import SourceError
from .models import CuratedEntry, DiscoveryResult, SourceKind, new_candidate, utcnow
from .sources.source import Source

logger = logging.getLogger(__name__)


class DiscoverySession:
    """One user's search-and-propose loop against a single source.

    Each ``discover`` call replaces the previous result outright. Nothing
    here touches the curated collection; callers promote explicitly.
    """

    def __init__(self, source: Source, max_results: int = config.DEFAULT_MAX_RESULTS):
        self.source = source
        self.max_results = max_results
        self.current: Optional[DiscoveryResult] = None

    @property
    def kind(self) -> SourceKind:
        return self.source.kind

    def discover(self, name: str, affiliation: Optional[str] = None) -> DiscoveryResult:
        self.current = None
        name = " ".join((name or "").split())
        affiliation = " ".join((affiliation or "").split()) or None
        query = self.source.build_query(name, affiliation)
        logger.info(f"{self.source.name}: searching {query!r}")

        page = self.source.search(query, max_results=self.max_results)

        candidates: List[CuratedEntry] = [new_candidate(r) for r in self.source.parse_batch(page.records)]

        result = DiscoveryResult(
            query_echo=f"{name} ({affiliation})" if affiliation else name,
            searched_at=utcnow(),
            total_found=max(page.total, len(candidates)),
            candidates=candidates,
            suggested_queries=self.source.suggest_queries(name, [affiliation] if affiliation else []),
        )
        logger.info(f"{self.source.name}: {len(candidates)} candidates of {result.total_found} reported")
        self.current = result
        return result

    def select(self, external_ids: Iterable[str]) -> List[CuratedEntry]:
        """Candidates of the current result with the given ids, in source order."""
        if self.current is None:
            return []
        wanted = set(external_ids)
        return [c for c in self.current.candidates if c.id in wanted]

    def clear(self) -> None:
        self.current = None


def discover_all(
    sessions: Mapping[SourceKind, DiscoverySession],
    name: str,
    affiliation: Optional[str] = None,
) -> Tuple[Dict[SourceKind, DiscoveryResult], Dict[SourceKind, SourceError]]:
    """Run one discovery per source in parallel and wait for all of them.

    Returns (results, errors) keyed by source kind; a failing source does not
    prevent the others from completing.
    """
    results: Dict[SourceKind, DiscoveryResult] = {}
    errors: Dict[SourceKind, SourceError] = {}
    if not sessions:
        return results, errors
    with ThreadPoolExecutor(max_workers=len(sessions)) as pool:
        futures = {pool.submit(s.discover, name, affiliation): kind for kind, s in sessions.items()}
        for fut in as_completed(futures):
            kind = futures[fut]
            try:
                results[kind] = fut.result()
            except SourceError as e:
                logger.error(f"Discovery failed for {kind.value}: {e}")
                errors[kind] = e
    return results, errors
