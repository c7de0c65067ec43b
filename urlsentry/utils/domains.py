"""URL and domain normalization utilities."""

from __future__ import annotations

from typing import Iterable
from urllib.parse import urlsplit, urlunsplit

import tldextract

# Bundled public suffix snapshot only; never fetch the list over the network.
_extract = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


def normalize_url(url: str) -> str:
    """
    Normalize a URL for caching and comparison.

    - Lowercase
    - Drop the fragment
    - Drop trailing slashes
    - Inputs that are not absolute URLs are lowercased the same way

    Idempotent: normalize_url(normalize_url(u)) == normalize_url(u).
    """
    raw = (url or "").strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        return _normalize_raw(raw)

    if not parts.scheme or not parts.netloc.strip():
        return _normalize_raw(raw)

    rebuilt = urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))
    return _trim_tail(rebuilt.lower())


def _normalize_raw(raw: str) -> str:
    return _trim_tail(raw.split("#", 1)[0].strip().lower())


def _trim_tail(value: str) -> str:
    """Drop trailing slashes, empty query markers and whitespace."""
    end = len(value)
    while end and (value[end - 1] in "/?" or value[end - 1].isspace()):
        end -= 1
    return value[:end]


def extract_hostname(value: str) -> str:
    """Return the lowercase hostname of a URL or bare domain, without port."""
    raw = (value or "").strip()
    if not raw:
        return ""
    candidate = raw if "://" in raw else f"https://{raw}"
    try:
        host = urlsplit(candidate).hostname or ""
    except ValueError:
        return ""
    return host.strip().lower().strip(".")


def canonicalize_domain(value: str) -> str:
    """
    Normalize a domain/URL to a canonical host key.

    - Lowercase
    - Ignore scheme, port, path, query and fragment
    - Strip a trailing dot
    """
    return extract_hostname(value)


def host_matches(host: str, domains: Iterable[str]) -> bool:
    """Check if host equals one of the domains or is a subdomain of one."""
    host = (host or "").lower().strip(".")
    if not host:
        return False
    for domain in domains:
        if not domain:
            continue
        if host == domain or host.endswith(f".{domain}"):
            return True
    return False


def second_level_label(host: str) -> str:
    """Return the registrable label of a host ("example" for "a.example.co.uk")."""
    host = (host or "").lower().strip(".")
    if not host:
        return ""
    extracted = _extract(host)
    if extracted.domain and extracted.suffix:
        return extracted.domain
    labels = host.split(".")
    return labels[-2] if len(labels) >= 2 else ""
