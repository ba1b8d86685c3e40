import re
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, Field, field_validator, model_serializer, model_validator


class SourceKind(str, Enum):
    PUBLICATION = "publication"
    CLINICAL_TRIAL = "clinical_trial"
    MEDIA = "media"


class LifecycleState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    MANUAL = "manual"
    REJECTED = "rejected"


# Only these states are written to durable storage.
DURABLE_STATES = (LifecycleState.APPROVED, LifecycleState.MANUAL)


class TrialRole(str, Enum):
    PRINCIPAL_INVESTIGATOR = "principal_investigator"
    SUB_INVESTIGATOR = "sub_investigator"
    STUDY_COORDINATOR = "study_coordinator"
    SPONSOR = "sponsor"
    COLLABORATOR = "collaborator"
    CONSULTANT = "consultant"
    OTHER = "other"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_ISO_PARTIAL = re.compile(r"^(\d{4})(?:-(\d{2})(?:-(\d{2}))?)?$")


class PartialDate(BaseModel):
    """A calendar date that keeps only the precision the source reported.

    Serializes to reduced-precision ISO-8601 text ("2021", "2021-03",
    "2021-03-05") and accepts the same text on load.
    """

    year: int
    month: Optional[int] = None
    day: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _from_text(cls, data: Any) -> Any:
        if isinstance(data, str):
            m = _ISO_PARTIAL.match(data.strip())
            if not m:
                raise ValueError(f"not an ISO-8601 date: {data!r}")
            year, month, day = m.groups()
            return {
                "year": int(year),
                "month": int(month) if month else None,
                "day": int(day) if day else None,
            }
        return data

    @model_validator(mode="after")
    def _check_ranges(self) -> "PartialDate":
        if self.day is not None and self.month is None:
            raise ValueError("day given without month")
        if self.month is not None and not 1 <= self.month <= 12:
            raise ValueError(f"month out of range: {self.month}")
        if self.day is not None and not 1 <= self.day <= 31:
            raise ValueError(f"day out of range: {self.day}")
        return self

    @model_serializer
    def _to_text(self) -> str:
        return self.isoformat()

    def isoformat(self) -> str:
        parts = [f"{self.year:04d}"]
        if self.month is not None:
            parts.append(f"{self.month:02d}")
            if self.day is not None:
                parts.append(f"{self.day:02d}")
        return "-".join(parts)

    def __str__(self) -> str:
        return self.isoformat()


class FreeText(BaseModel):
    summary: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)


class CanonicalRecord(BaseModel):
    kind: SourceKind
    external_id: str
    title: str
    source_name: str = ""
    published_at: Optional[PartialDate] = None
    classification: str = "other"
    free_text: FreeText = Field(default_factory=FreeText)
    locator: Optional[str] = None
    # Domain-specific fields, carried through the pipeline uninterpreted.
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("external_id", "title")
    @classmethod
    def _required_text(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @property
    def authors(self) -> List[str]:
        return list(self.attributes.get("authors") or [])


class CuratedEntry(BaseModel):
    record: CanonicalRecord
    lifecycle_state: LifecycleState = LifecycleState.PENDING
    is_visible: bool = False
    is_featured: bool = False
    role: Optional[TrialRole] = None
    added_at: datetime = Field(default_factory=utcnow)
    last_modified_at: datetime = Field(default_factory=utcnow)

    @property
    def id(self) -> str:
        return self.record.external_id

    @property
    def kind(self) -> SourceKind:
        return self.record.kind


class DiscoveryResult(BaseModel):
    query_echo: str
    searched_at: datetime = Field(default_factory=utcnow)
    total_found: int = 0
    candidates: List[CuratedEntry] = Field(default_factory=list)
    suggested_queries: List[str] = Field(default_factory=list)


def new_candidate(record: CanonicalRecord) -> CuratedEntry:
    """Wrap a freshly discovered record as a hidden, pending entry."""
    now = utcnow()
    return CuratedEntry(
        record=record,
        lifecycle_state=LifecycleState.PENDING,
        is_visible=False,
        role=TrialRole.PRINCIPAL_INVESTIGATOR if record.kind == SourceKind.CLINICAL_TRIAL else None,
        added_at=now,
        last_modified_at=now,
    )


def new_manual_entry(record: CanonicalRecord) -> CuratedEntry:
    now = utcnow()
    return CuratedEntry(
        record=record,
        lifecycle_state=LifecycleState.MANUAL,
        is_visible=True,
        role=TrialRole.PRINCIPAL_INVESTIGATOR if record.kind == SourceKind.CLINICAL_TRIAL else None,
        added_at=now,
        last_modified_at=now,
    )


class RawShape(str, Enum):
    PUBMED_XML = "pubmed_xml"
    PUBMED_SUMMARY = "pubmed_summary"
    CTGOV_STUDY = "ctgov_study"
    RSS_ITEM = "rss_item"
    PAGE_META = "page_meta"
    OEMBED = "oembed"


class RawRecord(NamedTuple):
    """One record as the source delivered it, tagged with its shape."""
    shape: RawShape
    payload: Any
    requested_id: Optional[str] = None
