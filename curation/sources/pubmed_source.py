import logging
from typing import Any, Dict, List, Optional

import requests
from defusedxml import DefusedXmlException
from defusedxml import ElementTree as ET

from .. import config
from ..errors import NotFound
from ..identifiers import IdCheck, validate_pmid
from ..models import RawRecord, RawShape, SourceKind
from ..queries import PubMedQueryBuilder
from .source import Attempt, SearchPage, Source

logger = logging.getLogger(__name__)


class PubMedSource(Source):
    """
    Publications from PubMed via NCBI E-utilities.

    Search goes through ESearch for identifiers, then article details are
    pulled from EFetch XML (abstracts, keywords, affiliations). When EFetch
    is down or returns unparseable XML the same identifiers are resolved
    through ESummary JSON, which lacks abstracts and keywords.
    """

    kind = SourceKind.PUBLICATION
    query_builder = PubMedQueryBuilder()

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[int] = None):
        super().__init__("PubMed", session=session, timeout=timeout)
        self.base_url = config.NCBI_EUTILS_URL.rstrip("/")
        if not config.NCBI_EMAIL:
            logger.info("NCBI_EMAIL is not set; E-utilities requests are sent without a contact address")

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params: Dict[str, Any] = {"db": "pubmed", "tool": config.NCBI_TOOL}
        if config.NCBI_EMAIL:
            params["email"] = config.NCBI_EMAIL
        if config.NCBI_API_KEY:
            params["api_key"] = config.NCBI_API_KEY
        params.update(extra)
        return params

    def validate_id(self, raw: str) -> IdCheck:
        return validate_pmid(raw)

    def search(self, query: str, max_results: int = config.DEFAULT_MAX_RESULTS) -> SearchPage:
        """
        Search PubMed and return article payloads in relevance order.

        Args:
            query (str): Entrez query, e.g. ``Jane Doe[Author] AND Mayo Clinic[Affiliation]``.
            max_results (int): Cap on the number of articles retrieved.

        Returns:
            SearchPage: raw articles and the total number of hits PubMed reports.
        """
        data = self.single_path(
            lambda: self._get_json(
                f"{self.base_url}/esearch.fcgi",
                self._params(term=query, retmax=max_results, retmode="json"),
            ),
            f"search {query!r}",
        )
        result = (data or {}).get("esearchresult") or {}
        ids = [str(i) for i in result.get("idlist") or []]
        try:
            total = int(result.get("count") or 0)
        except (TypeError, ValueError):
            total = len(ids)
        if not ids:
            return SearchPage(records=[], total=total)
        try:
            records = self._fetch_details(ids)
        except NotFound:
            # Identifiers listed by ESearch but absent from both detail endpoints.
            records = []
        return SearchPage(records=records, total=total)

    def fetch_by_id(self, identifier: str) -> RawRecord:
        records = self._fetch_details([identifier])
        for rec in records:
            if rec.requested_id == identifier:
                return rec
        raise NotFound(f"No PubMed article with PMID {identifier}")

    def _fetch_details(self, pmids: List[str]) -> List[RawRecord]:
        return self.with_fallback(
            lambda: self._efetch(pmids),
            lambda: self._esummary(pmids),
            f"PMIDs {','.join(pmids[:5])}{'...' if len(pmids) > 5 else ''}",
        )

    def _efetch(self, pmids: List[str]) -> Attempt:
        got = self._get(
            f"{self.base_url}/efetch.fcgi",
            params=self._params(id=",".join(pmids), retmode="xml"),
            headers={"Accept": "application/xml"},
        )
        if not got.ok:
            return got
        try:
            root = ET.fromstring(got.value.content)
        except (ET.ParseError, DefusedXmlException) as e:
            return Attempt.parse_failure(f"EFetch returned malformed XML: {e}")
        if root.tag != "PubmedArticleSet":
            return Attempt.parse_failure(f"EFetch returned unexpected root <{root.tag}>")
        articles = root.findall("PubmedArticle")
        if not articles:
            return Attempt.not_found(f"No PubMed article for {','.join(pmids)}")
        records = []
        for article in articles:
            pmid_el = article.find("MedlineCitation/PMID")
            pmid = (pmid_el.text or "").strip() if pmid_el is not None else None
            records.append(RawRecord(RawShape.PUBMED_XML, article, pmid))
        return Attempt.success(records)

    def _esummary(self, pmids: List[str]) -> Attempt:
        got = self._get_json(
            f"{self.base_url}/esummary.fcgi",
            self._params(id=",".join(pmids), retmode="json"),
        )
        if not got.ok:
            return got
        result = (got.value or {}).get("result")
        if not isinstance(result, dict):
            return Attempt.parse_failure("ESummary response has no result block")
        records = []
        for pmid in result.get("uids") or pmids:
            summary = result.get(str(pmid))
            if not isinstance(summary, dict) or summary.get("error"):
                continue
            records.append(RawRecord(RawShape.PUBMED_SUMMARY, summary, str(pmid)))
        if not records:
            return Attempt.not_found(f"No PubMed summary for {','.join(pmids)}")
        return Attempt.success(records)
