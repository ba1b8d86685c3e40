import re
from typing import NamedTuple, Optional
from urllib.parse import urlsplit, urlunsplit

from .errors import InvalidFormat


class IdCheck(NamedTuple):
    """Outcome of validating one user-entered identifier."""
    value: Optional[str] = None
    error: Optional[InvalidFormat] = None

    @property
    def ok(self) -> bool:
        return self.error is None


PMID_PATTERN = "a PubMed ID of 1 to 8 digits (e.g. 31452104)"
NCT_PATTERN = "an NCT number: NCT followed by 8 digits (e.g. NCT01234567)"
URL_PATTERN = "a web address (e.g. https://example.com/article)"

_PMID_RE = re.compile(r"^\d{1,8}$")
_NCT_RE = re.compile(r"^(?:NCT)?(\d{8})$")
_PMID_PREFIX_RE = re.compile(r"^pmid\s*:?\s*", re.IGNORECASE)


def validate_pmid(raw: str) -> IdCheck:
    s = _PMID_PREFIX_RE.sub("", (raw or "").strip())
    if not _PMID_RE.match(s):
        return IdCheck(error=InvalidFormat(raw, PMID_PATTERN))
    # Leading zeros are not part of PubMed identifiers.
    return IdCheck(value=str(int(s)))


def validate_nct_id(raw: str) -> IdCheck:
    s = (raw or "").strip().upper()
    m = _NCT_RE.match(s)
    if not m:
        return IdCheck(error=InvalidFormat(raw, NCT_PATTERN))
    return IdCheck(value=f"NCT{m.group(1)}")


def normalize_url(raw: str) -> Optional[str]:
    """Canonical form of a web address, or None when it is not one."""
    s = (raw or "").strip()
    if not s or any(ch.isspace() for ch in s):
        return None
    if "://" not in s:
        s = "https://" + s
    try:
        parts = urlsplit(s)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if scheme not in ("http", "https") or not host:
        return None
    if "." not in host and host != "localhost":
        return None
    netloc = host if port is None else f"{host}:{port}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def validate_url(raw: str) -> IdCheck:
    url = normalize_url(raw)
    if url is None:
        return IdCheck(error=InvalidFormat(raw, URL_PATTERN))
    return IdCheck(value=url)
