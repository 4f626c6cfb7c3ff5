"""Domain normalization helpers shared by providers, cache keys and dedup."""

from __future__ import annotations

from urllib.parse import urlparse

import tldextract

# Bundled Public Suffix List snapshot only; no network fetch at runtime.
_SUFFIXES = tldextract.TLDExtract(suffix_list_urls=())

# Social networks, aggregators and directories that are never a company's own site.
NOISE_DOMAINS = (
    "linkedin.com",
    "facebook.com",
    "twitter.com",
    "x.com",
    "instagram.com",
    "youtube.com",
    "tiktok.com",
    "crunchbase.com",
    "zoominfo.com",
    "glassdoor.com",
    "indeed.com",
    "bloomberg.com",
    "reuters.com",
    "wikipedia.org",
    "reddit.com",
    "medium.com",
    "github.com",
    "g2.com",
    "trustpilot.com",
    "yelp.com",
    "bbb.org",
    "dnb.com",
)


def normalize_domain(value: str | None) -> str:
    """Lowercase, trim and drop a leading ``www.``; idempotent."""
    if not value:
        return ""
    host = value.strip().lower()
    while host.startswith("www."):
        host = host[4:]
    return host.strip()


def extract_domain(url: str | None) -> str:
    """Return the normalized host of ``url``; falls back to the raw value."""
    if not url:
        return ""
    candidate = url.strip()
    parsed = urlparse(candidate if "://" in candidate else f"https://{candidate}")
    host = parsed.hostname or ""
    if not host:
        return normalize_domain(candidate)
    return normalize_domain(host)


def root_domain(value: str | None) -> str:
    """Collapse a host into its registrable domain (``a.b.example.co.uk`` -> ``example.co.uk``)."""
    host = extract_domain(value)
    if not host:
        return ""
    # IPs, bare hosts and unknown suffixes have no registrable part.
    return _SUFFIXES(host).top_domain_under_public_suffix or host


def is_noise_domain(domain: str | None) -> bool:
    host = normalize_domain(domain)
    if not host:
        return False
    return any(host == noise or host.endswith(f".{noise}") for noise in NOISE_DOMAINS)
