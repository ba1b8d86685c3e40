import logging
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional

import requests
from defusedxml import DefusedXmlException
from defusedxml import ElementTree as ET

from .. import config
from ..identifiers import IdCheck, validate_url
from ..models import RawRecord, RawShape, SourceKind
from ..queries import NewsQueryBuilder
from .source import Attempt, SearchPage, Source

logger = logging.getLogger(__name__)


class PageMetaParser(HTMLParser):
    """Collects <meta>, <title>, canonical link and a body word count."""

    _SKIP = {"script", "style", "noscript", "template"}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.meta: Dict[str, Any] = {}
        self._title: List[str] = []
        self._in_title = False
        self._skip_depth = 0
        self.word_count = 0

    def handle_starttag(self, tag, attrs):
        a = {k.lower(): (v or "") for k, v in attrs}
        if tag == "meta":
            key = (a.get("property") or a.get("name") or a.get("itemprop") or "").strip().lower()
            content = a.get("content", "").strip()
            if key and content:
                if key == "article:tag":
                    self.meta.setdefault(key, []).append(content)
                else:
                    self.meta.setdefault(key, content)
        elif tag == "link" and "canonical" in a.get("rel", "").lower().split():
            self.meta.setdefault("canonical", a.get("href", "").strip())
        elif tag == "title":
            self._in_title = True
        elif tag in self._SKIP:
            self._skip_depth += 1

    def handle_endtag(self, tag):
        if tag == "title":
            self._in_title = False
        elif tag in self._SKIP and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data):
        if self._in_title:
            self._title.append(data)
        elif not self._skip_depth:
            self.word_count += len(data.split())

    def result(self) -> Dict[str, Any]:
        meta = dict(self.meta)
        title = " ".join("".join(self._title).split())
        if title:
            meta.setdefault("title", title)
        if self.word_count:
            meta["word_count"] = self.word_count
        return meta


def parse_page_meta(text: str) -> Dict[str, Any]:
    parser = PageMetaParser()
    parser.feed(text)
    parser.close()
    return parser.result()


class MediaSource(Source):
    """
    Media coverage: news search over an RSS feed, and single-URL lookup.

    A single URL is resolved from the page's own HTML metadata (Open Graph,
    article tags, canonical link). If the page cannot be fetched or carries
    no usable title, an oEmbed resolver is asked for the flat title/author/
    provider fields instead.
    """

    kind = SourceKind.MEDIA
    query_builder = NewsQueryBuilder()

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[int] = None):
        super().__init__("News", session=session, timeout=timeout)

    def validate_id(self, raw: str) -> IdCheck:
        return validate_url(raw)

    def search(self, query: str, max_results: int = config.DEFAULT_MAX_RESULTS) -> SearchPage:
        lang = config.NEWS_RSS_LOCALE.split("-")[0]
        country = config.NEWS_RSS_LOCALE.split("-")[-1]
        params = {"q": query, "hl": config.NEWS_RSS_LOCALE, "gl": country, "ceid": f"{country}:{lang}"}
        items = self.single_path(lambda: self._rss(params), f"search {query!r}")
        # The feed gives no hit count beyond what it returns.
        return SearchPage(records=items[:max_results], total=len(items))

    def _rss(self, params: Dict[str, Any]) -> Attempt:
        got = self._get(config.NEWS_RSS_URL, params=params, headers={"Accept": "application/rss+xml"})
        if not got.ok:
            return got
        try:
            root = ET.fromstring(got.value.content)
        except (ET.ParseError, DefusedXmlException) as e:
            return Attempt.parse_failure(f"News feed returned malformed XML: {e}")
        return Attempt.success([RawRecord(RawShape.RSS_ITEM, item) for item in root.iter("item")])

    def fetch_by_id(self, identifier: str) -> RawRecord:
        return self.with_fallback(
            lambda: self._page(identifier),
            lambda: self._oembed(identifier),
            identifier,
        )

    def _page(self, url: str) -> Attempt:
        got = self._get(url, headers={"Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"})
        if not got.ok:
            return got
        ctype = (got.value.headers.get("Content-Type") or "").lower()
        if ctype and "html" not in ctype:
            return Attempt.parse_failure(f"{url} is not an HTML page ({ctype})")
        meta = parse_page_meta(got.value.text or "")
        if not any(meta.get(k) for k in ("og:title", "twitter:title", "title")):
            return Attempt.parse_failure(f"{url} has no title metadata")
        return Attempt.success(RawRecord(RawShape.PAGE_META, meta, url))

    def _oembed(self, url: str) -> Attempt:
        got = self._get_json(config.OEMBED_URL, {"url": url})
        if not got.ok:
            return got
        data = got.value if isinstance(got.value, dict) else {}
        if data.get("error") or not (data.get("title") or "").strip():
            return Attempt.not_found(f"No metadata could be resolved for {url}")
        return Attempt.success(RawRecord(RawShape.OEMBED, data, url))
