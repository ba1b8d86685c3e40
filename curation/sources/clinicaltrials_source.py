import logging
from typing import Optional

import requests

from .. import config
from ..identifiers import IdCheck, validate_nct_id
from ..models import RawRecord, RawShape, SourceKind
from ..queries import TrialQueryBuilder
from .source import Attempt, SearchPage, Source

logger = logging.getLogger(__name__)

# Capped by the registry at 1000 per page.
MAX_PAGE_SIZE = 1000


class ClinicalTrialsSource(Source):
    """Clinical trials from the ClinicalTrials.gov v2 REST API (JSON only)."""

    kind = SourceKind.CLINICAL_TRIAL
    query_builder = TrialQueryBuilder()

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[int] = None):
        super().__init__("ClinicalTrials.gov", session=session, timeout=timeout)
        self.base_url = config.CTGOV_API_URL.rstrip("/")

    def validate_id(self, raw: str) -> IdCheck:
        return validate_nct_id(raw)

    def search(self, query: str, max_results: int = config.DEFAULT_MAX_RESULTS) -> SearchPage:
        params = {
            "query.term": query,
            "pageSize": max(1, min(int(max_results), MAX_PAGE_SIZE)),
            "countTotal": "true",
            "format": "json",
        }
        data = self.single_path(
            lambda: self._get_json(f"{self.base_url}/studies", params),
            f"search {query!r}",
        )
        studies = [s for s in (data or {}).get("studies") or [] if isinstance(s, dict)]
        records = [RawRecord(RawShape.CTGOV_STUDY, s) for s in studies]
        try:
            total = int((data or {}).get("totalCount") or len(records))
        except (TypeError, ValueError):
            total = len(records)
        return SearchPage(records=records, total=total)

    def fetch_by_id(self, identifier: str) -> RawRecord:
        data = self.single_path(
            lambda: self._lookup(identifier),
            identifier,
        )
        return RawRecord(RawShape.CTGOV_STUDY, data, identifier)

    def _lookup(self, nct_id: str) -> Attempt:
        got = self._get_json(f"{self.base_url}/studies/{nct_id}", {"format": "json"})
        if not got.ok:
            return got
        data = got.value or {}
        # Single-study lookups return the study itself; tolerate list-shaped bodies too.
        if "studies" in data:
            studies = data.get("studies") or []
            if not studies:
                return Attempt.not_found(f"No clinical trial with id {nct_id}")
            data = studies[0]
        if not isinstance(data, dict) or "protocolSection" not in data:
            return Attempt.parse_failure(f"Unexpected study payload for {nct_id}")
        return Attempt.success(data)
