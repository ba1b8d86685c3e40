import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# NCBI E-utilities (PubMed)
NCBI_EUTILS_URL: str = os.getenv("NCBI_EUTILS_URL", "https://eutils.ncbi.nlm.nih.gov/entrez/eutils")
NCBI_TOOL: str = os.getenv("NCBI_TOOL", "provider-record-curation")
NCBI_EMAIL: Optional[str] = os.getenv("NCBI_EMAIL")
NCBI_API_KEY: Optional[str] = os.getenv("NCBI_API_KEY")

# ClinicalTrials.gov API v2
CTGOV_API_URL: str = os.getenv("CTGOV_API_URL", "https://clinicaltrials.gov/api/v2")

# Media coverage: news search feed and oEmbed resolver for single URLs
NEWS_RSS_URL: str = os.getenv("NEWS_RSS_URL", "https://news.google.com/rss/search")
NEWS_RSS_LOCALE: str = os.getenv("NEWS_RSS_LOCALE", "en-US")
OEMBED_URL: str = os.getenv("OEMBED_URL", "https://noembed.com/embed")

# HTTP behaviour
HTTP_TIMEOUT: int = int(os.getenv("HTTP_TIMEOUT", "30"))
USER_AGENT: str = os.getenv("USER_AGENT", "Mozilla/5.0 (compatible; provider-record-curation)")
# Low-fidelity path gets at most one retry; the primary path is never retried.
FALLBACK_ATTEMPTS: int = 2

# Discovery
DEFAULT_MAX_RESULTS: int = int(os.getenv("DEFAULT_MAX_RESULTS", "50"))

# Storage and logging
DB_PATH: str = os.getenv("CURATION_DB_PATH", "curation.db")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
