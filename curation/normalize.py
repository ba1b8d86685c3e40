"""Mapping of every known raw source shape onto :class:`CanonicalRecord`.

Each field falls back to a safe default when the source omits it. Only a
missing identifier or title is fatal for a record; that raises
:class:`NormalizationError` so batch callers can drop the one record.
"""
import html
import logging
import re
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from pydantic import ValidationError

from .errors import NormalizationError
from .identifiers import normalize_url
from .models import CanonicalRecord, FreeText, PartialDate, RawRecord, RawShape, SourceKind

logger = logging.getLogger(__name__)

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_ISO_MONTH = re.compile(r"^(\d{4})[-/](\d{1,2})(?:[-/](\d{1,2}))?(?:[T\s].*)?$")
_YEAR = re.compile(r"\b(1[89]\d{2}|2\d{3})\b")
_TAG = re.compile(r"<[^>]+>")


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_authors(authors: List[str]) -> str:
    if len(authors) == 0:
        return "Unknown"
    if len(authors) == 1:
        return authors[0]
    if len(authors) == 2:
        return f"{authors[0]} and {authors[1]}"
    return f"{authors[0]} et al."


def _sentence(text: str) -> str:
    text = text.strip()
    return text if text.endswith((".", "?", "!")) else f"{text}."


def format_citation(record: CanonicalRecord) -> str:
    """Vancouver-like one-line citation for a bibliographic record."""
    attrs = record.attributes
    year = str(record.published_at.year) if record.published_at else "n.d."
    parts = [format_authors(record.authors), record.title, record.source_name]
    citation = " ".join(_sentence(p) for p in parts if p and p.strip()) + f" {year}"
    volume = attrs.get("volume")
    if volume:
        citation += f";{volume}"
        if attrs.get("issue"):
            citation += f"({attrs['issue']})"
        if attrs.get("pages"):
            citation += f":{attrs['pages']}"
    if attrs.get("doi"):
        citation += f". doi:{attrs['doi']}"
    return citation


_PHASE_LABELS = {
    "EARLY_PHASE1": "Early Phase 1",
    "PHASE1": "Phase 1",
    "PHASE2": "Phase 2",
    "PHASE3": "Phase 3",
    "PHASE4": "Phase 4",
    "NA": "Not Applicable",
}


def format_phases(phases: List[str]) -> str:
    if not phases:
        return "Not applicable"
    return ", ".join(_PHASE_LABELS.get(p, p) for p in phases)


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _month_number(token: str) -> Optional[int]:
    t = (token or "").strip().lower()
    if t.isdigit():
        n = int(t)
        return n if 1 <= n <= 12 else None
    return _MONTHS.get(t[:3])


def parse_partial_date(text: Optional[str]) -> Optional[PartialDate]:
    """Parse source date text without inventing precision.

    Handles ISO forms ("2021", "2021-03", "2021-03-05T10:00:00Z") and the
    free forms PubMed and registries emit ("2021 Mar 5", "2019 Jan-Feb",
    "March 2021", "March 5, 2021"). Returns None when no year is present.
    """
    s = (text or "").strip()
    if not s:
        return None
    m = _ISO_MONTH.match(s)
    if m:
        year, month, day = m.groups()
        return _build_date(int(year), _month_number(month) if month else None, int(day) if day else None)
    ym = _YEAR.search(s)
    if not ym:
        return None
    year = int(ym.group(1))
    tokens = [t for t in re.split(r"[\s,\-/]+", s) if t]
    month = None
    day = None
    for tok in tokens:
        if tok.isalpha() and len(tok) >= 3 and _month_number(tok):
            month = _month_number(tok)
            break
    if month is not None:
        for tok in tokens:
            if tok.isdigit() and len(tok) <= 2 and 1 <= int(tok) <= 31:
                day = int(tok)
                break
    return _build_date(year, month, day)


def _build_date(year: int, month: Optional[int], day: Optional[int]) -> Optional[PartialDate]:
    try:
        return PartialDate(year=year, month=month, day=day if month else None)
    except ValidationError:
        try:
            return PartialDate(year=year, month=month)
        except ValidationError:
            return PartialDate(year=year)


def strip_markup(text: Optional[str]) -> str:
    s = html.unescape(_TAG.sub(" ", text or ""))
    return " ".join(s.split())


def _xml_text(el: Any, path: str) -> str:
    if el is None:
        return ""
    found = el.find(path)
    if found is None:
        return ""
    return " ".join("".join(found.itertext()).split())


def _xml_texts(el: Any, path: str) -> List[str]:
    out = []
    for found in el.findall(path):
        t = " ".join("".join(found.itertext()).split())
        if t:
            out.append(t)
    return out


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _build(kind: SourceKind, **fields: Any) -> CanonicalRecord:
    try:
        return CanonicalRecord(kind=kind, **fields)
    except ValidationError as e:
        first = e.errors()[0]
        raise NormalizationError(
            f"Unusable {kind.value} record {fields.get('external_id')!r}: {first['loc'][0]} {first['msg']}"
        ) from e


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

# Checked in order: a review is also tagged "Journal Article".
_PUBLICATION_TYPES = [
    ("systematic review", "review"),
    ("review", "review"),
    ("case reports", "case_report"),
    ("editorial", "editorial"),
    ("book chapter", "chapter"),
    ("chapter", "chapter"),
    ("book", "book"),
    ("meeting abstract", "abstract"),
    ("congress", "abstract"),
    ("journal article", "peer_reviewed"),
]


def classify_publication(types: Iterable[str]) -> str:
    lowered = [t.lower() for t in types if t]
    for needle, label in _PUBLICATION_TYPES:
        if any(needle in t for t in lowered):
            return label
    return "other"


TRIAL_STATUSES = {
    "not_yet_recruiting", "recruiting", "enrolling_by_invitation", "active_not_recruiting",
    "suspended", "terminated", "completed", "withdrawn",
}


def classify_trial_status(status: Optional[str]) -> str:
    s = re.sub(r"[^a-z]+", "_", (status or "").strip().lower()).strip("_")
    return s if s in TRIAL_STATUSES else "unknown"


def detect_media_type(url: str, title: Optional[str] = None) -> str:
    parts = urlsplit(url or "")
    domain = (parts.hostname or "").lower()
    path = (url or "").lower()
    t = (title or "").lower()
    if "youtube.com" in domain or "youtu.be" in domain or "vimeo.com" in domain:
        return "video"
    if "spotify.com" in domain or "podcasts.apple.com" in domain or "podcast" in path or "episode" in path:
        return "podcast"
    if ("press-release" in path or "/pr/" in path
            or "businesswire.com" in domain or "prnewswire.com" in domain):
        return "press_release"
    if "interview" in path or "interview" in t:
        return "interview"
    if "opinion" in path or "editorial" in path or "op-ed" in path or "opinion" in t:
        return "opinion"
    if "blog" in path or "medium.com" in domain or "substack.com" in domain:
        return "blog_post"
    return "news_article"


SITE_NAMES = {
    "nytimes.com": "The New York Times",
    "wsj.com": "The Wall Street Journal",
    "washingtonpost.com": "The Washington Post",
    "cnn.com": "CNN",
    "bbc.com": "BBC",
    "bbc.co.uk": "BBC",
    "reuters.com": "Reuters",
    "forbes.com": "Forbes",
    "bloomberg.com": "Bloomberg",
    "npr.org": "NPR",
    "pbs.org": "PBS",
    "abcnews.go.com": "ABC News",
    "nbcnews.com": "NBC News",
    "cbsnews.com": "CBS News",
    "foxnews.com": "Fox News",
    "theguardian.com": "The Guardian",
    "ft.com": "Financial Times",
    "statnews.com": "STAT News",
    "medscape.com": "Medscape",
    "webmd.com": "WebMD",
}


def site_name_for(url_or_domain: str) -> str:
    s = (url_or_domain or "").strip().lower()
    if "://" in s:
        domain = urlsplit(s).hostname or ""
    else:
        domain = s.split("/")[0]
    if domain.startswith("www."):
        domain = domain[4:]
    if not domain:
        return ""
    for key, name in SITE_NAMES.items():
        if domain == key or domain.endswith("." + key):
            return name
    label = domain.split(".")[0]
    return label[:1].upper() + label[1:]


# ---------------------------------------------------------------------------
# PubMed
# ---------------------------------------------------------------------------

def _pubmed_xml_authors(article: Any) -> List[str]:
    names = []
    for author in article.findall(".//AuthorList/Author"):
        collective = _xml_text(author, "CollectiveName")
        if collective:
            names.append(collective)
            continue
        name = f"{_xml_text(author, 'ForeName')} {_xml_text(author, 'LastName')}".strip()
        if name:
            names.append(name)
    return names


def _pubmed_xml_date(article: Any) -> Optional[PartialDate]:
    pub_date = article.find(".//Article/Journal/JournalIssue/PubDate")
    if pub_date is None:
        return None
    medline = _xml_text(pub_date, "MedlineDate")
    if medline:
        return parse_partial_date(medline)
    year = _xml_text(pub_date, "Year")
    if not year.isdigit():
        return None
    month = _month_number(_xml_text(pub_date, "Month"))
    day = _xml_text(pub_date, "Day")
    return _build_date(int(year), month, int(day) if day.isdigit() else None)


def _pubmed_xml_abstract(article: Any) -> Optional[str]:
    paragraphs = []
    for part in article.findall(".//Article/Abstract/AbstractText"):
        text = " ".join("".join(part.itertext()).split())
        if not text:
            continue
        label = part.get("Label")
        paragraphs.append(f"{label}: {text}" if label else text)
    return "\n\n".join(paragraphs) or None


def _pubmed_xml_doi(article: Any) -> Optional[str]:
    for aid in article.findall(".//PubmedData/ArticleIdList/ArticleId"):
        if aid.get("IdType") == "doi" and (aid.text or "").strip():
            return aid.text.strip()
    for eloc in article.findall(".//Article/ELocationID"):
        if eloc.get("EIdType") == "doi" and (eloc.text or "").strip():
            return eloc.text.strip()
    return None


def pubmed_locator(pmid: str) -> str:
    return f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/"


def normalize_pubmed_xml(article: Any) -> CanonicalRecord:
    pmid = _xml_text(article, ".//MedlineCitation/PMID")
    types = _xml_texts(article, ".//Article/PublicationTypeList/PublicationType")
    journal = _xml_text(article, ".//Article/Journal/Title") or _xml_text(article, ".//MedlineJournalInfo/MedlineTA")
    affiliations = []
    for aff in _xml_texts(article, ".//AuthorList/Author/AffiliationInfo/Affiliation"):
        if aff not in affiliations:
            affiliations.append(aff)
    return _build(
        SourceKind.PUBLICATION,
        external_id=pmid,
        title=_xml_text(article, ".//Article/ArticleTitle"),
        source_name=journal,
        published_at=_pubmed_xml_date(article),
        classification=classify_publication(types),
        free_text=FreeText(
            summary=_pubmed_xml_abstract(article),
            keywords=_xml_texts(article, ".//KeywordList/Keyword"),
        ),
        locator=pubmed_locator(pmid) if pmid else None,
        attributes={
            "authors": _pubmed_xml_authors(article),
            "affiliations": affiliations,
            "volume": _xml_text(article, ".//Article/Journal/JournalIssue/Volume") or None,
            "issue": _xml_text(article, ".//Article/Journal/JournalIssue/Issue") or None,
            "pages": _xml_text(article, ".//Article/Pagination/MedlinePgn") or None,
            "doi": _pubmed_xml_doi(article),
            "publication_types": types,
        },
    )


def _summary_doi(summary: Dict[str, Any]) -> Optional[str]:
    for aid in summary.get("articleids") or []:
        if (aid or {}).get("idtype") == "doi" and aid.get("value"):
            return aid["value"]
    eloc = summary.get("elocationid") or ""
    if "doi:" in eloc:
        return eloc.split("doi:", 1)[1].strip() or None
    return None


def normalize_pubmed_summary(summary: Dict[str, Any]) -> CanonicalRecord:
    pmid = str(summary.get("uid") or "")
    types = [t for t in _as_list(summary.get("pubtype")) if isinstance(t, str)]
    authors = []
    for a in summary.get("authors") or []:
        name = a if isinstance(a, str) else (a or {}).get("name")
        if name and name.strip():
            authors.append(name.strip())
    return _build(
        SourceKind.PUBLICATION,
        external_id=pmid,
        title=(summary.get("title") or "").strip(),
        source_name=summary.get("fulljournalname") or summary.get("source") or "",
        published_at=parse_partial_date(summary.get("pubdate") or summary.get("epubdate")),
        classification=classify_publication(types),
        # ESummary carries no abstract or keywords.
        free_text=FreeText(),
        locator=pubmed_locator(pmid) if pmid else None,
        attributes={
            "authors": authors,
            "affiliations": [],
            "volume": summary.get("volume") or None,
            "issue": summary.get("issue") or None,
            "pages": summary.get("pages") or None,
            "doi": _summary_doi(summary),
            "publication_types": types,
        },
    )


# ---------------------------------------------------------------------------
# ClinicalTrials.gov
# ---------------------------------------------------------------------------

def _ctgov_locations(locations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for loc in locations or []:
        contact = ((loc or {}).get("contacts") or [{}])[0] or {}
        out.append({
            "facility": loc.get("facility") or "",
            "city": loc.get("city") or "",
            "state": loc.get("state") or "",
            "country": loc.get("country") or "",
            "zip_code": loc.get("zip"),
            "status": loc.get("status"),
            "contact_name": contact.get("name"),
            "contact_phone": contact.get("phone"),
            "contact_email": contact.get("email"),
        })
    return out


def _ctgov_outcomes(outcomes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "measure": (o or {}).get("measure") or "",
            "time_frame": (o or {}).get("timeFrame") or "",
            "description": (o or {}).get("description"),
        }
        for o in outcomes or []
    ]


def ctgov_locator(nct_id: str) -> str:
    return f"https://clinicaltrials.gov/study/{nct_id}"


def normalize_ctgov_study(study: Dict[str, Any]) -> CanonicalRecord:
    protocol = (study or {}).get("protocolSection") or {}
    ident = protocol.get("identificationModule") or {}
    status = protocol.get("statusModule") or {}
    design = protocol.get("designModule") or {}
    design_info = design.get("designInfo") or {}
    conditions = protocol.get("conditionsModule") or {}
    interventions = protocol.get("armsInterventionsModule") or protocol.get("interventionsModule") or {}
    outcomes = protocol.get("outcomesModule") or {}
    eligibility = protocol.get("eligibilityModule") or {}
    contacts = protocol.get("contactsLocationsModule") or {}
    sponsors = protocol.get("sponsorCollaboratorsModule") or {}
    description = protocol.get("descriptionModule") or {}

    nct_id = (ident.get("nctId") or "").strip().upper()
    start = (status.get("startDateStruct") or {}).get("date")
    completion = (status.get("completionDateStruct") or {}).get("date")
    primary_completion = (status.get("primaryCompletionDateStruct") or {}).get("date")
    first_posted = (status.get("studyFirstPostDateStruct") or {}).get("date")

    return _build(
        SourceKind.CLINICAL_TRIAL,
        external_id=nct_id,
        title=ident.get("briefTitle") or ident.get("officialTitle") or "",
        source_name=(sponsors.get("leadSponsor") or {}).get("name") or "",
        published_at=parse_partial_date(start or first_posted),
        classification=classify_trial_status(status.get("overallStatus")),
        free_text=FreeText(
            summary=(description.get("briefSummary") or "").strip() or None,
            keywords=list(conditions.get("keywords") or []),
        ),
        locator=ctgov_locator(nct_id) if nct_id else None,
        attributes={
            "phases": list(design.get("phases") or []),
            "study_type": design.get("studyType") or "",
            "conditions": list(conditions.get("conditions") or []),
            "interventions": [(i or {}).get("name") or "" for i in interventions.get("interventions") or []],
            "primary_purpose": design_info.get("primaryPurpose") or "",
            "allocation": design_info.get("allocation") or "",
            "masking": (design_info.get("maskingInfo") or {}).get("masking") or "",
            "enrollment_count": (design.get("enrollmentInfo") or {}).get("count") or 0,
            "start_date": start,
            "completion_date": completion,
            "primary_completion_date": primary_completion,
            "sponsor": (sponsors.get("leadSponsor") or {}).get("name") or "",
            "collaborators": [(c or {}).get("name") for c in sponsors.get("collaborators") or [] if (c or {}).get("name")],
            "locations": _ctgov_locations(contacts.get("locations") or []),
            "eligibility_criteria": eligibility.get("eligibilityCriteria") or "",
            "primary_outcomes": _ctgov_outcomes(outcomes.get("primaryOutcomes") or []),
            "secondary_outcomes": _ctgov_outcomes(outcomes.get("secondaryOutcomes") or []),
            "detailed_description": description.get("detailedDescription"),
        },
    )


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

def _rss_date(text: str) -> Optional[PartialDate]:
    if not text:
        return None
    try:
        dt = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return parse_partial_date(text)
    return PartialDate(year=dt.year, month=dt.month, day=dt.day)


def normalize_rss_item(item: Any) -> CanonicalRecord:
    link = normalize_url(_xml_text(item, "link")) or ""
    source_el = item.find("source")
    outlet = _xml_text(item, "source")
    outlet_url = source_el.get("url") if source_el is not None else None
    title = _xml_text(item, "title")
    # Aggregated feeds append " - Outlet" to every headline.
    if outlet and title.endswith(f" - {outlet}"):
        title = title[: -len(outlet) - 3].rstrip()
    return _build(
        SourceKind.MEDIA,
        external_id=link,
        title=title,
        source_name=outlet or site_name_for(outlet_url or link),
        published_at=_rss_date(_xml_text(item, "pubDate")),
        classification=detect_media_type(link, title),
        free_text=FreeText(summary=strip_markup(_xml_text(item, "description")) or None),
        locator=link or None,
        attributes={
            "site_name": outlet or site_name_for(outlet_url or link),
            "source_url": outlet_url,
        },
    )


def _meta_first(meta: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = meta.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if value and str(value).strip():
            return str(value).strip()
    return ""


def normalize_page_meta(meta: Dict[str, Any], requested_url: str) -> CanonicalRecord:
    canonical = normalize_url(_meta_first(meta, "canonical", "og:url")) or requested_url
    title = _meta_first(meta, "og:title", "twitter:title", "title")
    tags = [t for t in _as_list(meta.get("article:tag")) if t]
    if not tags and meta.get("keywords"):
        tags = [t.strip() for t in str(_meta_first(meta, "keywords")).split(",") if t.strip()]
    site = _meta_first(meta, "og:site_name") or site_name_for(requested_url)
    og_type = _meta_first(meta, "og:type")
    classification = "video" if og_type.startswith("video") else detect_media_type(requested_url, title)
    return _build(
        SourceKind.MEDIA,
        external_id=requested_url,
        title=title,
        source_name=site,
        published_at=parse_partial_date(_meta_first(meta, "article:published_time", "datePublished", "date", "pubdate")),
        classification=classification,
        free_text=FreeText(
            summary=_meta_first(meta, "og:description", "twitter:description", "description") or None,
            keywords=tags,
        ),
        locator=canonical,
        attributes={
            "author": _meta_first(meta, "author", "article:author") or None,
            "image_url": _meta_first(meta, "og:image", "twitter:image") or None,
            "site_name": site,
            "tags": tags,
            "word_count": meta.get("word_count"),
        },
    )


def normalize_oembed(data: Dict[str, Any], requested_url: str) -> CanonicalRecord:
    title = (data.get("title") or "").strip()
    site = (data.get("provider_name") or "").strip() or site_name_for(requested_url)
    embed_type = data.get("type") or ""
    return _build(
        SourceKind.MEDIA,
        external_id=requested_url,
        title=title,
        source_name=site,
        published_at=None,
        classification="video" if embed_type == "video" else detect_media_type(requested_url, title),
        free_text=FreeText(),
        locator=normalize_url(data.get("url") or "") or requested_url,
        attributes={
            "author": (data.get("author_name") or "").strip() or None,
            "image_url": data.get("thumbnail_url"),
            "site_name": site,
            "tags": [],
            "word_count": None,
        },
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

_EXPECTED_KIND = {
    RawShape.PUBMED_XML: SourceKind.PUBLICATION,
    RawShape.PUBMED_SUMMARY: SourceKind.PUBLICATION,
    RawShape.CTGOV_STUDY: SourceKind.CLINICAL_TRIAL,
    RawShape.RSS_ITEM: SourceKind.MEDIA,
    RawShape.PAGE_META: SourceKind.MEDIA,
    RawShape.OEMBED: SourceKind.MEDIA,
}


def normalize(raw: RawRecord, kind: SourceKind) -> CanonicalRecord:
    if _EXPECTED_KIND.get(raw.shape) != kind:
        raise NormalizationError(f"{raw.shape.value} payload cannot describe a {kind.value} record")
    try:
        return _dispatch(raw)
    except NormalizationError:
        raise
    except (AttributeError, TypeError, KeyError, ValueError) as e:
        # Payload parsed but its structure is not what the source documents.
        ident = raw.requested_id or "unidentified"
        raise NormalizationError(f"Malformed {raw.shape.value} payload for {ident}: {e}") from e


def _dispatch(raw: RawRecord) -> CanonicalRecord:
    if raw.shape == RawShape.PUBMED_XML:
        return normalize_pubmed_xml(raw.payload)
    if raw.shape == RawShape.PUBMED_SUMMARY:
        return normalize_pubmed_summary(raw.payload or {})
    if raw.shape == RawShape.CTGOV_STUDY:
        return normalize_ctgov_study(raw.payload or {})
    if raw.shape == RawShape.RSS_ITEM:
        return normalize_rss_item(raw.payload)
    if raw.shape == RawShape.PAGE_META:
        return normalize_page_meta(raw.payload or {}, raw.requested_id or "")
    return normalize_oembed(raw.payload or {}, raw.requested_id or "")


def normalize_batch(raws: Iterable[RawRecord], kind: SourceKind) -> List[CanonicalRecord]:
    """Normalize in order, dropping (and logging) records that cannot be mapped."""
    records = []
    for raw in raws:
        try:
            records.append(normalize(raw, kind))
        except NormalizationError as e:
            logger.warning(f"Dropping malformed {kind.value} record: {e}")
    return records
