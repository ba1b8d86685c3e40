import pytest
from defusedxml import ElementTree as ET

from curation.errors import NormalizationError, SourceError
from curation.models import PartialDate, RawRecord, RawShape, SourceKind
from curation.normalize import (
    classify_publication,
    classify_trial_status,
    detect_media_type,
    format_authors,
    format_citation,
    format_phases,
    normalize,
    normalize_batch,
    normalize_ctgov_study,
    normalize_oembed,
    normalize_page_meta,
    normalize_pubmed_summary,
    normalize_pubmed_xml,
    normalize_rss_item,
    parse_partial_date,
    site_name_for,
)
from curation.sources.media_source import parse_page_meta

from conftest import ARTICLE_HTML, ARTICLE_URL, PMID, PUBMED_SUMMARY, RSS_FEED, ctgov_study


def test_format_authors():
    assert format_authors([]) == "Unknown"
    assert format_authors(["Jane Smith"]) == "Jane Smith"
    assert format_authors(["Jane Smith", "John Doe"]) == "Jane Smith and John Doe"
    assert format_authors(["Jane Smith", "John Doe", "Ann Lee"]) == "Jane Smith et al."


@pytest.mark.parametrize("text,expected", [
    ("2021", "2021"),
    ("2021-03", "2021-03"),
    ("2021-03-05T10:00:00Z", "2021-03-05"),
    ("2021 Mar 5", "2021-03-05"),
    ("2019 Jan-Feb", "2019-01"),
    ("March 2021", "2021-03"),
    ("March 5, 2021", "2021-03-05"),
    ("Spring 2020", "2020"),
])
def test_dates_keep_given_precision(text, expected):
    assert parse_partial_date(text).isoformat() == expected


def test_unparseable_dates_are_none():
    assert parse_partial_date("") is None
    assert parse_partial_date(None) is None
    assert parse_partial_date("unknown") is None


def test_partial_date_round_trips_through_text():
    d = PartialDate(year=2021, month=3)
    assert d.model_dump() == "2021-03"
    assert PartialDate.model_validate("2021-03") == d
    with pytest.raises(ValueError):
        PartialDate.model_validate("2021-13")


def test_pubmed_xml(pubmed_article):
    rec = normalize_pubmed_xml(pubmed_article)
    assert rec.kind == SourceKind.PUBLICATION
    assert rec.external_id == PMID
    assert rec.title == "A prospective study of asthma outcomes."
    assert rec.source_name == "Journal of Clinical Testing"
    assert str(rec.published_at) == "2021-03"
    assert rec.classification == "review"
    assert rec.authors == ["Jane Smith", "John Doe", "Asthma Study Group"]
    assert rec.attributes["affiliations"] == ["Mayo Clinic, Rochester, MN"]
    assert rec.attributes["doi"] == "10.1000/jct.2021.12"
    assert rec.free_text.summary == "BACKGROUND: Asthma is common.\n\nRESULTS: Outcomes improved."
    assert rec.free_text.keywords == ["asthma", "outcomes"]
    assert rec.locator == f"https://pubmed.ncbi.nlm.nih.gov/{PMID}/"


def test_citation(pubmed_article):
    rec = normalize_pubmed_xml(pubmed_article)
    assert format_citation(rec) == (
        "Jane Smith et al. A prospective study of asthma outcomes. Journal of Clinical Testing. "
        "2021;12(3):100-110. doi:10.1000/jct.2021.12"
    )


def test_pubmed_summary_has_no_abstract():
    rec = normalize_pubmed_summary(PUBMED_SUMMARY["result"][PMID])
    assert rec.external_id == PMID
    assert rec.title == "A prospective study of asthma outcomes."
    assert str(rec.published_at) == "2021-03-05"
    assert rec.classification == "peer_reviewed"
    assert rec.authors == ["Smith J", "Doe J"]
    assert rec.free_text.summary is None
    assert rec.free_text.keywords == []
    assert rec.attributes["doi"] == "10.1000/jct.2021.12"


def test_pubmed_summary_without_title_is_rejected():
    with pytest.raises(NormalizationError) as exc:
        normalize_pubmed_summary({"uid": "123", "title": "  "})
    assert isinstance(exc.value, SourceError)
    assert "title" in str(exc.value)


def test_ctgov_study():
    rec = normalize_ctgov_study(ctgov_study())
    assert rec.kind == SourceKind.CLINICAL_TRIAL
    assert rec.external_id == "NCT01234567"
    assert rec.source_name == "Mayo Clinic"
    assert rec.classification == "recruiting"
    assert str(rec.published_at) == "2020-06"
    assert rec.locator == "https://clinicaltrials.gov/study/NCT01234567"
    attrs = rec.attributes
    assert attrs["interventions"] == ["Budesonide"]
    assert attrs["enrollment_count"] == 120
    assert attrs["collaborators"] == ["National Heart, Lung, and Blood Institute"]
    assert attrs["locations"][0]["city"] == "Rochester"
    assert format_phases(attrs["phases"]) == "Phase 2, Phase 3"


def test_ctgov_defaults_for_sparse_study():
    rec = normalize_ctgov_study({"protocolSection": {"identificationModule": {"nctId": "nct00000001", "officialTitle": "Only official"}}})
    assert rec.external_id == "NCT00000001"
    assert rec.title == "Only official"
    assert rec.classification == "unknown"
    assert rec.published_at is None
    assert rec.attributes["phases"] == []
    assert format_phases(rec.attributes["phases"]) == "Not applicable"


def test_rss_item_strips_outlet_suffix():
    items = list(ET.fromstring(RSS_FEED.encode("utf-8")).iter("item"))
    rec = normalize_rss_item(items[0])
    assert rec.title == "Dr. Jane Smith on new asthma treatments"
    assert rec.external_id == "https://www.nytimes.com/2021/03/05/health/asthma.html"
    assert rec.source_name == "The New York Times"
    assert str(rec.published_at) == "2021-03-05"
    assert rec.free_text.summary == "Dr. Jane Smith explains the trial"
    assert rec.classification == "news_article"
    assert normalize_rss_item(items[1]).classification == "podcast"


def test_page_meta():
    meta = parse_page_meta(ARTICLE_HTML)
    assert meta["word_count"] == 6
    rec = normalize_page_meta(meta, ARTICLE_URL)
    assert rec.title == "Jane Smith wins cardiology award"
    assert rec.source_name == "Health News Daily"
    assert str(rec.published_at) == "2022-05-01"
    assert rec.free_text.keywords == ["awards", "cardiology"]
    assert rec.attributes["author"] == "Pat Reporter"
    assert rec.attributes["image_url"] == "https://example.com/img/award.jpg"
    assert rec.locator == "https://example.com/news/award"


def test_oembed_video():
    rec = normalize_oembed(
        {"type": "video", "title": "Grand rounds", "provider_name": "YouTube", "author_name": "Hospital TV"},
        "https://www.youtube.com/watch?v=abc",
    )
    assert rec.classification == "video"
    assert rec.source_name == "YouTube"
    assert rec.attributes["author"] == "Hospital TV"
    assert rec.free_text.summary is None


@pytest.mark.parametrize("types,expected", [
    (["Journal Article"], "peer_reviewed"),
    (["Journal Article", "Systematic Review"], "review"),
    (["Case Reports"], "case_report"),
    (["Editorial"], "editorial"),
    (["Congress"], "abstract"),
    ([], "other"),
])
def test_classify_publication(types, expected):
    assert classify_publication(types) == expected


def test_classify_trial_status():
    assert classify_trial_status("ACTIVE_NOT_RECRUITING") == "active_not_recruiting"
    assert classify_trial_status("Not yet recruiting") == "not_yet_recruiting"
    assert classify_trial_status("SOMETHING_NEW") == "unknown"
    assert classify_trial_status(None) == "unknown"


@pytest.mark.parametrize("url,title,expected", [
    ("https://www.youtube.com/watch?v=abc", None, "video"),
    ("https://open.spotify.com/episode/123", None, "podcast"),
    ("https://www.prnewswire.com/news/x", None, "press_release"),
    ("https://example.com/story", "An interview with Dr. Smith", "interview"),
    ("https://example.com/opinion/health", None, "opinion"),
    ("https://someone.substack.com/p/post", None, "blog_post"),
    ("https://example.com/story", "Hospital opens wing", "news_article"),
])
def test_detect_media_type(url, title, expected):
    assert detect_media_type(url, title) == expected


def test_site_name_for():
    assert site_name_for("https://www.nytimes.com/2021/x.html") == "The New York Times"
    assert site_name_for("edition.cnn.com") == "CNN"
    assert site_name_for("https://localnews.org/a") == "Localnews"


def test_normalize_rejects_shape_of_another_kind():
    raw = RawRecord(RawShape.CTGOV_STUDY, ctgov_study())
    with pytest.raises(NormalizationError):
        normalize(raw, SourceKind.PUBLICATION)


def test_normalize_batch_drops_malformed_records():
    raws = [
        RawRecord(RawShape.CTGOV_STUDY, ctgov_study("NCT00000001")),
        RawRecord(RawShape.CTGOV_STUDY, ctgov_study("NCT00000002", title=None)),
        RawRecord(RawShape.CTGOV_STUDY, ctgov_study("NCT00000003")),
    ]
    records = normalize_batch(raws, SourceKind.CLINICAL_TRIAL)
    assert [r.external_id for r in records] == ["NCT00000001", "NCT00000003"]


def test_structurally_broken_payloads_raise_normalization_error():
    no_location = ctgov_study("NCT00000002")
    no_location["protocolSection"]["contactsLocationsModule"]["locations"] = [None]
    flat_ident = ctgov_study("NCT00000002")
    flat_ident["protocolSection"]["identificationModule"] = "NCT00000002"
    odd_author = dict(PUBMED_SUMMARY["result"][PMID], authors=[{"name": "Smith J"}, 42])
    cases = [
        (RawRecord(RawShape.CTGOV_STUDY, no_location), SourceKind.CLINICAL_TRIAL),
        (RawRecord(RawShape.CTGOV_STUDY, flat_ident), SourceKind.CLINICAL_TRIAL),
        (RawRecord(RawShape.PUBMED_SUMMARY, odd_author, PMID), SourceKind.PUBLICATION),
    ]
    for raw, kind in cases:
        with pytest.raises(NormalizationError) as exc:
            normalize(raw, kind)
        assert "Malformed" in str(exc.value)
