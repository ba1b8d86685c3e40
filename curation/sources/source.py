import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from .. import config
from ..errors import NotFound, SourceError
from ..identifiers import IdCheck
from ..models import CanonicalRecord, RawRecord, SourceKind
from ..normalize import normalize, normalize_batch
from ..queries import QueryBuilder

logger = logging.getLogger(__name__)


@dataclass
class SearchPage:
    """Raw records in source order plus the source's total-count hint."""
    records: List[RawRecord] = field(default_factory=list)
    total: int = 0


@dataclass
class Attempt:
    """Outcome of one retrieval path.

    Exactly one of ``value`` / ``error`` is meaningful. ``missing`` marks a
    definitive not-found answer; ``retryable`` marks a transport failure.
    """
    value: Any = None
    error: Optional[str] = None
    missing: bool = False
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.missing

    @classmethod
    def success(cls, value: Any) -> "Attempt":
        return cls(value=value)

    @classmethod
    def not_found(cls, reason: str) -> "Attempt":
        return cls(error=reason, missing=True)

    @classmethod
    def transport_failure(cls, reason: str) -> "Attempt":
        return cls(error=reason, retryable=True)

    @classmethod
    def parse_failure(cls, reason: str) -> "Attempt":
        return cls(error=reason)


class Source(ABC):
    """Adapter for one external catalog.

    Subclasses supply the query syntax (``query_builder``), identifier
    validation, and the two network operations. Normalization of whatever
    raw shapes they return is shared.
    """

    kind: SourceKind
    query_builder: QueryBuilder

    def __init__(self, name: str, session: Optional[requests.Session] = None, timeout: Optional[int] = None):
        self.name = name
        self.session = session or requests.Session()
        self.timeout = timeout or config.HTTP_TIMEOUT

    @abstractmethod
    def validate_id(self, raw: str) -> IdCheck:
        pass

    @abstractmethod
    def search(self, query: str, max_results: int = config.DEFAULT_MAX_RESULTS) -> SearchPage:
        pass

    @abstractmethod
    def fetch_by_id(self, identifier: str) -> RawRecord:
        pass

    def build_query(self, name: str, affiliation: Optional[str] = None) -> str:
        return self.query_builder.build_primary_query(name, affiliation)

    def suggest_queries(self, name: str, affiliations: Optional[List[str]] = None) -> List[str]:
        return self.query_builder.suggest_alternate_queries(name, affiliations or [])

    def parse_raw(self, raw: RawRecord) -> CanonicalRecord:
        return normalize(raw, self.kind)

    def parse_batch(self, raws: List[RawRecord]) -> List[CanonicalRecord]:
        """Parse a search page in order; records that cannot be mapped are dropped."""
        return normalize_batch(raws, self.kind)

    # -- HTTP -----------------------------------------------------------------

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Attempt:
        """GET returning the response as an Attempt; 404 is reported as missing."""
        hdrs = {"User-Agent": config.USER_AGENT}
        if headers:
            hdrs.update(headers)
        try:
            r = self.session.get(url, params=params, headers=hdrs, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            return Attempt.transport_failure(f"{self.name} request failed: {e}")
        if r.status_code == 404:
            return Attempt.not_found(f"{self.name} has no record at {url}")
        try:
            r.raise_for_status()
        except requests.exceptions.HTTPError as e:
            return Attempt.transport_failure(f"{self.name} HTTP error: {e}")
        return Attempt.success(r)

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Attempt:
        got = self._get(url, params=params, headers={"Accept": "application/json"})
        if not got.ok:
            return got
        try:
            return Attempt.success(got.value.json())
        except ValueError as e:
            return Attempt.parse_failure(f"{self.name} returned invalid JSON: {e}")

    # -- Retrieval policy -----------------------------------------------------

    def with_fallback(
        self,
        primary: Callable[[], Attempt],
        fallback: Callable[[], Attempt],
        what: str,
    ) -> Any:
        """Run the high-fidelity path, then the low-fidelity path once.

        The primary path is never retried. The fallback may be repeated once
        more when it fails at the transport level. A definitive not-found from
        either path raises NotFound; anything else left over raises SourceError.
        """
        first = primary()
        if first.ok:
            return first.value
        if first.missing:
            raise NotFound(first.error)
        logger.warning(f"{self.name}: primary path failed for {what} ({first.error}); using fallback")

        second = Attempt.transport_failure("fallback not attempted")
        for attempt in range(config.FALLBACK_ATTEMPTS):
            second = fallback()
            if second.ok:
                return second.value
            if second.missing:
                raise NotFound(second.error)
            if not second.retryable:
                break
            logger.warning(f"{self.name}: fallback attempt {attempt + 1} failed for {what}: {second.error}")
        logger.error(f"{self.name}: both retrieval paths failed for {what}: {second.error}")
        raise SourceError(f"{self.name} is unavailable. Please try again later. ({second.error})")

    def single_path(self, primary: Callable[[], Attempt], what: str) -> Any:
        got = primary()
        if got.ok:
            return got.value
        if got.missing:
            raise NotFound(got.error)
        logger.error(f"{self.name}: request failed for {what}: {got.error}")
        raise SourceError(f"{self.name} is unavailable. Please try again later. ({got.error})")
