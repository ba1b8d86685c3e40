import json
from unittest.mock import MagicMock

import pytest
import requests
from defusedxml import ElementTree as ET

from curation.models import CanonicalRecord, SourceKind, new_candidate

PMID = "31452104"

PUBMED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<PubmedArticleSet>
  <PubmedArticle>
    <MedlineCitation>
      <PMID Version="1">31452104</PMID>
      <Article>
        <Journal>
          <JournalIssue>
            <Volume>12</Volume>
            <Issue>3</Issue>
            <PubDate><Year>2021</Year><Month>Mar</Month></PubDate>
          </JournalIssue>
          <Title>Journal of Clinical Testing</Title>
        </Journal>
        <ArticleTitle>A <i>prospective</i> study of asthma outcomes.</ArticleTitle>
        <Pagination><MedlinePgn>100-110</MedlinePgn></Pagination>
        <Abstract>
          <AbstractText Label="BACKGROUND">Asthma is common.</AbstractText>
          <AbstractText Label="RESULTS">Outcomes improved.</AbstractText>
        </Abstract>
        <AuthorList>
          <Author>
            <LastName>Smith</LastName><ForeName>Jane</ForeName>
            <AffiliationInfo><Affiliation>Mayo Clinic, Rochester, MN</Affiliation></AffiliationInfo>
          </Author>
          <Author><LastName>Doe</LastName><ForeName>John</ForeName></Author>
          <Author><CollectiveName>Asthma Study Group</CollectiveName></Author>
        </AuthorList>
        <PublicationTypeList>
          <PublicationType>Journal Article</PublicationType>
          <PublicationType>Review</PublicationType>
        </PublicationTypeList>
      </Article>
      <KeywordList><Keyword>asthma</Keyword><Keyword>outcomes</Keyword></KeywordList>
    </MedlineCitation>
    <PubmedData>
      <ArticleIdList>
        <ArticleId IdType="pubmed">31452104</ArticleId>
        <ArticleId IdType="doi">10.1000/jct.2021.12</ArticleId>
      </ArticleIdList>
    </PubmedData>
  </PubmedArticle>
</PubmedArticleSet>
"""

PUBMED_SUMMARY = {
    "header": {"type": "esummary"},
    "result": {
        "uids": [PMID],
        PMID: {
            "uid": PMID,
            "title": "A prospective study of asthma outcomes.",
            "fulljournalname": "Journal of Clinical Testing",
            "source": "J Clin Test",
            "pubdate": "2021 Mar 5",
            "authors": [{"name": "Smith J", "authtype": "Author"}, {"name": "Doe J", "authtype": "Author"}],
            "pubtype": ["Journal Article"],
            "volume": "12",
            "issue": "3",
            "pages": "100-110",
            "articleids": [{"idtype": "pubmed", "value": PMID}, {"idtype": "doi", "value": "10.1000/jct.2021.12"}],
        },
    },
}

ESEARCH_ONE = {"esearchresult": {"count": "1", "retmax": "1", "idlist": [PMID]}}
ESEARCH_NONE = {"esearchresult": {"count": "0", "retmax": "0", "idlist": []}}


def ctgov_study(nct_id="NCT01234567", title="Inhaled Steroids for Adult Asthma", status="RECRUITING"):
    ident = {"nctId": nct_id}
    if title:
        ident["briefTitle"] = title
    return {
        "protocolSection": {
            "identificationModule": ident,
            "statusModule": {
                "overallStatus": status,
                "startDateStruct": {"date": "2020-06"},
                "completionDateStruct": {"date": "2023-12-31"},
            },
            "sponsorCollaboratorsModule": {
                "leadSponsor": {"name": "Mayo Clinic"},
                "collaborators": [{"name": "National Heart, Lung, and Blood Institute"}],
            },
            "descriptionModule": {"briefSummary": "Tests inhaled steroids."},
            "conditionsModule": {"conditions": ["Asthma"], "keywords": ["inhaler"]},
            "designModule": {
                "studyType": "INTERVENTIONAL",
                "phases": ["PHASE2", "PHASE3"],
                "enrollmentInfo": {"count": 120},
                "designInfo": {"allocation": "RANDOMIZED", "primaryPurpose": "TREATMENT"},
            },
            "armsInterventionsModule": {"interventions": [{"type": "DRUG", "name": "Budesonide"}]},
            "contactsLocationsModule": {
                "locations": [{"facility": "Mayo Clinic", "city": "Rochester", "state": "Minnesota", "country": "United States"}],
            },
        }
    }


RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>"Jane Smith" - Google News</title>
    <item>
      <title>Dr. Jane Smith on new asthma treatments - The New York Times</title>
      <link>https://www.nytimes.com/2021/03/05/health/asthma.html</link>
      <pubDate>Fri, 05 Mar 2021 10:00:00 GMT</pubDate>
      <description>&lt;a href="https://www.nytimes.com/x"&gt;Dr. Jane Smith&lt;/a&gt; explains the trial</description>
      <source url="https://www.nytimes.com">The New York Times</source>
    </item>
    <item>
      <title>Podcast: breathing easier - Health Talk</title>
      <link>https://healthtalk.example.org/podcast/episode-12</link>
      <pubDate>Mon, 10 May 2021 08:00:00 GMT</pubDate>
      <source url="https://healthtalk.example.org">Health Talk</source>
    </item>
  </channel>
</rss>
"""

ARTICLE_URL = "https://example.com/news/award"

ARTICLE_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>Fallback title</title>
  <meta property="og:title" content="Jane Smith wins cardiology award">
  <meta property="og:site_name" content="Health News Daily">
  <meta property="og:description" content="A profile of the award winner.">
  <meta property="og:image" content="https://example.com/img/award.jpg">
  <meta property="article:published_time" content="2022-05-01T09:00:00Z">
  <meta property="article:tag" content="awards">
  <meta property="article:tag" content="cardiology">
  <meta name="author" content="Pat Reporter">
  <link rel="canonical" href="https://example.com/news/award">
  <script>var tracking = "not words";</script>
</head>
<body>
  <p>Jane Smith was honoured this week.</p>
</body>
</html>
"""


def make_response(status=200, *, json_data=None, body=None, content_type=None, url="https://test.invalid/"):
    """A real requests.Response carrying the given payload."""
    r = requests.Response()
    r.status_code = status
    r.url = url
    if json_data is not None:
        body = json.dumps(json_data)
        content_type = content_type or "application/json"
    if isinstance(body, str):
        body = body.encode("utf-8")
    r._content = body or b""
    r.encoding = "utf-8"
    if content_type:
        r.headers["Content-Type"] = content_type
    return r


def fake_session(routes):
    """MagicMock session answering GETs by URL substring.

    A route value may be a response, an exception to raise, or a list of
    those consumed in order (the last one repeats).
    """
    session = MagicMock()

    def get(url, params=None, headers=None, timeout=None):
        for key, outcome in routes.items():
            if key in url:
                if isinstance(outcome, list):
                    outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        raise AssertionError(f"unexpected request to {url}")

    session.get.side_effect = get
    return session


def calls_to(session, fragment):
    return [c for c in session.get.call_args_list if fragment in c.args[0]]


@pytest.fixture
def pubmed_article():
    return ET.fromstring(PUBMED_XML.encode("utf-8")).find("PubmedArticle")


def make_record(kind=SourceKind.PUBLICATION, external_id="1", title="Title", **fields):
    return CanonicalRecord(kind=kind, external_id=external_id, title=title, **fields)


def make_candidates(kind=SourceKind.PUBLICATION, ids=("1", "2", "3")):
    return [new_candidate(make_record(kind, i, f"Record {i}")) for i in ids]
