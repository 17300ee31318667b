"""Host normalization and URL extraction from worker markdown."""

from __future__ import annotations
from urllib.parse import urlparse
from typing import List
import re

# Stops at whitespace, closing brackets/quotes and markdown punctuation
_URL_RE = re.compile(r"https?://[^\s<>()\[\]\"'`]+", re.I)
_TRAILING = ".,;:!?*_"


def normalize_host(url_or_domain: str) -> str:
    """Extract a bare host from a URL or domain string.

    Strips scheme, credentials, port, path and a leading ``www.``.
    """
    host = (url_or_domain or "").strip()
    if "://" not in host:
        host = "//" + host
    try:
        host = urlparse(host).hostname or ""
    except ValueError:
        return ""
    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def host_matches(host: str, domain: str) -> bool:
    """True when host equals domain or is one of its subdomains."""
    domain = domain.lower().lstrip(".")
    return host == domain or host.endswith("." + domain)


def extract_urls(text: str) -> List[str]:
    """Return unique URLs in order of first appearance."""
    seen = set()
    urls = []
    for match in _URL_RE.finditer(text or ""):
        url = match.group(0).rstrip(_TRAILING)
        if url not in seen:
            seen.add(url)
            urls.append(url)
    return urls
