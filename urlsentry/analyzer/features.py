"""
URL feature extraction.

Turns a raw URL into an immutable FeatureSet (lexical, host, path, encoding
and linguistic features) and the numeric MLFeatureVector derived from it.

Extraction is total: anything that cannot be parsed yields the benign
default feature set, so downstream scoring degrades toward "not blocked".
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from typing import Optional
from urllib.parse import urlsplit

import idna
from rapidfuzz.distance import Levenshtein

from ..config import Config
from ..utils.domains import host_matches, second_level_label
from .models import FeatureSet, MLFeatureVector

logger = logging.getLogger(__name__)

IPV4_PATTERN = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
IPV6_PATTERN = re.compile(r"^([0-9a-f]{0,4}:){2,7}[0-9a-f]{0,4}$", re.I)
PERCENT_ENCODED = re.compile(r"%[0-9a-f]{2}", re.I)
SPECIAL_CHAR = re.compile(r"[^a-zA-Z0-9]")
DIGIT = re.compile(r"\d")
VOWEL = re.compile(r"[aeiou]", re.I)
CONSECUTIVE_CHARS = re.compile(r"([a-z0-9])\1{3,}", re.I)
READABLE_PARAM = re.compile(r"[a-z]{3,}=[^&]+", re.I)
RANDOM_PARAM = re.compile(r"[a-z0-9]{20,}", re.I)
ALPHA_ONLY = re.compile(r"^[a-z]+$", re.I)

# DGA-like second-level domains
DGA_HYPHENATED = re.compile(r"[a-z0-9]+-[a-z0-9]+")
DGA_LETTERS_THEN_DIGITS = re.compile(r"[a-z]{5,}[0-9]{3,}")
DGA_HEX = re.compile(r"^[a-f0-9]{10,}$", re.I)

# Generated-looking leftmost labels ("a3f9c1.example.com")
HEX_LABEL = re.compile(r"^[a-f0-9]{3,8}$", re.I)

DEFAULT_PORTS = {"http": 80, "https": 443}


def shannon_entropy(text: str) -> float:
    """Shannon entropy (base 2) of the character distribution of text."""
    if not text:
        return 0.0
    length = len(text)
    entropy = 0.0
    for count in Counter(text).values():
        p = count / length
        entropy -= p * math.log2(p)
    return entropy


def is_ip_address(hostname: str) -> bool:
    """Dotted-quad IPv4 or a relaxed colon-delimited IPv6 literal."""
    host = (hostname or "").strip("[]")
    return bool(IPV4_PATTERN.match(host) or IPV6_PATTERN.match(host))


def _decode_idn(hostname: str) -> str:
    """Best-effort punycode decode so look-alike glyphs become visible."""
    if "xn--" not in hostname:
        return hostname
    try:
        decoded = idna.decode(hostname)
    except (idna.IDNAError, UnicodeError, ValueError):
        return hostname
    return decoded.lower() if decoded else hostname


class FeatureExtractor:
    """Extracts FeatureSets from URLs using the configured keyword/brand lists."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

    def extract(self, url: str) -> FeatureSet:
        """Extract features; never raises."""
        try:
            return self._extract(url)
        except Exception as e:
            logger.debug(f"Feature extraction failed for {url!r}: {e}")
            return FeatureSet.benign_default()

    def _extract(self, url: str) -> FeatureSet:
        cfg = self.config
        parts = urlsplit(url)
        hostname = (parts.hostname or "").lower().strip(".")
        if not parts.scheme or not hostname:
            raise ValueError("URL has no scheme or host")

        scheme = parts.scheme.lower()
        port = parts.port  # Raises ValueError on a malformed port
        has_port = port is not None and port != DEFAULT_PORTS.get(scheme)

        path = parts.path or "/"
        search = f"?{parts.query}" if parts.query else ""

        labels = hostname.split(".")
        has_ip = is_ip_address(hostname)
        subdomain_count = max(0, len(labels) - 2)
        tld = labels[-1]

        url_lower = url.lower()
        host_encoding = len(PERCENT_ENCODED.findall(hostname))
        path_encoding = len(PERCENT_ENCODED.findall(path))
        query_encoding = len(PERCENT_ENCODED.findall(search))

        sld = "" if has_ip else second_level_label(hostname)
        leftmost = labels[0] if len(labels) > 2 and not has_ip else ""

        return FeatureSet(
            length=len(url),
            domain_length=len(hostname),
            subdomain_count=subdomain_count,
            has_ip=has_ip,
            uses_https=scheme == "https",
            has_suspicious_tld=tld in cfg.suspicious_tlds,
            has_punycode="xn--" in hostname,
            has_port=has_port,
            special_char_count=len(SPECIAL_CHAR.findall(url)),
            digit_count=len(DIGIT.findall(url)),
            vowel_count=len(VOWEL.findall(url)),
            entropy=shannon_entropy(hostname),
            url_encoding_count=len(PERCENT_ENCODED.findall(url)),
            host_encoding_count=host_encoding,
            path_encoding_count=path_encoding,
            query_encoding_count=query_encoding,
            # Encoding in query strings is common for APIs and is not penalized
            suspicious_encoding=host_encoding > 0 or path_encoding > cfg.path_encoding_threshold,
            phishing_keyword_count=self.count_keywords(url_lower, cfg.phishing_keywords),
            urgent_keyword_count=self.count_keywords(url_lower, cfg.urgent_keywords),
            brand_impersonation=self.detect_brand_impersonation(hostname),
            path_length=len(path),
            query_length=len(search),
            path_depth=len([segment for segment in path.split("/") if segment]),
            path_slash_count=path.count("/"),
            has_consecutive_chars=bool(CONSECUTIVE_CHARS.search(hostname)),
            is_shortener=host_matches(hostname, cfg.url_shorteners),
            has_hyphen_spam=hostname.count("-") > cfg.hyphen_spam_threshold,
            has_dot_spam=len(labels) > cfg.dot_spam_label_threshold,
            dga_like=self.is_dga_like(sld),
            suspicious_subdomain=self.is_generated_label(leftmost),
            has_readable_params=bool(search) and bool(READABLE_PARAM.search(search)),
            has_random_params=bool(search) and bool(RANDOM_PARAM.search(search)),
            has_quality_domain=len(sld) >= 3 and bool(ALPHA_ONLY.match(sld)),
        )

    def extract_vector(self, url: str, features: Optional[FeatureSet] = None) -> MLFeatureVector:
        """Build the ML feature vector for a URL (reusing features when given)."""
        features = features or self.extract(url)
        length = max(features.length, 1)
        consonants = features.length - features.vowel_count - features.digit_count

        return MLFeatureVector(
            url_length=features.length,
            domain_length=features.domain_length,
            path_length=features.path_length,
            query_length=features.query_length,
            subdomain_count=features.subdomain_count,
            digit_ratio=features.digit_count / length,
            special_char_ratio=features.special_char_count / length,
            consonant_ratio=consonants / length,
            entropy=features.entropy,
            has_ip=int(features.has_ip),
            uses_https=int(features.uses_https),
            has_suspicious_tld=int(features.has_suspicious_tld),
            has_punycode=int(features.has_punycode),
            phishing_keyword_score=features.phishing_keyword_count * 10,
            urgent_keyword_score=features.urgent_keyword_count * 15,
            path_depth=features.path_depth,
            has_consecutive_chars=int(features.has_consecutive_chars),
            is_shortener=int(features.is_shortener),
            has_readable_params=int(features.has_readable_params),
            has_quality_domain=int(features.has_quality_domain),
            suspicious_encoding=int(features.suspicious_encoding),
            has_random_params=int(features.has_random_params),
        )

    @staticmethod
    def count_keywords(text: str, keywords: list[str]) -> int:
        """Number of distinct keywords present in text."""
        return sum(1 for keyword in keywords if keyword in text)

    def detect_brand_impersonation(self, hostname: str) -> Optional[str]:
        """Return the first targeted brand the hostname impersonates, if any."""
        host = hostname.lower()
        decoded = _decode_idn(host)

        for brand in self.config.targeted_brands:
            official = f"{brand}.com"

            # Brand name in the host, but not the official domain
            if brand in host and not host.endswith(official):
                return brand

            # Typosquatting ("paypa1.com")
            distance = Levenshtein.distance(host, official)
            if 0 < distance <= 2 and brand[:4] in host:
                return brand

            # Look-alike glyphs for a letter the brand contains
            for letter, glyphs in self.config.homoglyphs.items():
                if letter not in brand:
                    continue
                if any(glyph in host or glyph in decoded for glyph in glyphs):
                    return brand

        return None

    @staticmethod
    def is_dga_like(sld: str) -> bool:
        """Second-level domain looks algorithmically generated."""
        if not sld:
            return False
        return bool(
            (DGA_HYPHENATED.search(sld) and DIGIT.search(sld) and len(sld) > 12)
            or DGA_LETTERS_THEN_DIGITS.search(sld)
            or DGA_HEX.match(sld)
        )

    @staticmethod
    def is_generated_label(label: str) -> bool:
        """Leftmost subdomain label looks like a hash or generated ID."""
        if not label:
            return False
        if HEX_LABEL.match(label):
            return True
        return len(label) > 5 and bool(DIGIT.search(label)) and bool(re.search(r"[a-z]", label))
