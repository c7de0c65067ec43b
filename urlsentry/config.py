"""Configuration management for urlsentry."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Set

import yaml
from dotenv import load_dotenv

from .constants import RiskThresholds
from .utils.allowlist import read_allowlist

logger = logging.getLogger(__name__)


DEFAULT_RISK_THRESHOLDS = {"low": 25, "medium": 40, "high": 60, "critical": 85}

# Points contributed by each heuristic rule. Keyword rules are multiplied by
# the number of matched keywords.
DEFAULT_HEURISTIC_WEIGHTS: dict[str, int] = {
    "ip_url": 40,
    "suspicious_tld": 25,
    "punycode": 35,
    "long_url": 15,
    "excessive_url_length": 30,
    "excessive_subdomain": 20,
    "url_encoding": 25,
    "suspicious_keywords": 30,
    "brand_impersonation": 50,
    "no_https": 15,
    "consecutive_chars": 15,
    "url_shortener": 10,
    "hyphen_spam": 18,
    "dot_spam": 20,
    "path_depth": 12,
    "urgent_keywords": 25,
    "high_entropy": 25,
    "dga_domain": 35,
    "suspicious_subdomain": 30,
}

DEFAULT_SUSPICIOUS_TLDS: set[str] = {
    # Free domains
    "tk", "ml", "ga", "cf", "gq", "freenom",
    # Suspicious new gTLDs
    "zip", "mov", "loan", "click", "work", "party", "racing",
    "download", "stream", "trade", "webcam", "men",
    # Commonly abused
    "homes", "top", "xyz", "icu", "site", "online", "vip", "win",
    "bid", "date", "faith", "review", "science", "pro", "cfd",
    "sbs", "bond", "live", "shop", "club", "space", "fun", "buzz",
    "country", "kim", "pw", "cc", "ws", "gdn", "rest", "link",
}

# Large legitimate platforms where length/entropy rules produce false positives
DEFAULT_TRUSTED_INFRA_DOMAINS: set[str] = {
    # Google services
    "google.com",
    "googleapis.com",
    "googleusercontent.com",
    "gstatic.com",
    "gmail.com",
    "youtube.com",
    "googlevideo.com",
    "google-analytics.com",
    "doubleclick.net",
    # Cloud platforms
    "firebaseapp.com",
    "firebaseio.com",
    "appspot.com",
    "cloudfront.net",
    "amazonaws.com",
    "azureedge.net",
    "azure.com",
    # Microsoft services
    "microsoft.com",
    "microsoftonline.com",
    "office.com",
    "outlook.com",
    "live.com",
    "windows.net",
    # Development platforms
    "github.com",
    "github.io",
    "gitlab.com",
    "bitbucket.org",
    "sourceforge.net",
    "npmjs.com",
    "stackoverflow.com",
    # Other major services
    "apple.com",
    "icloud.com",
    "facebook.com",
    "fbcdn.net",
    "twitter.com",
    "twimg.com",
    "linkedin.com",
    "licdn.com",
    "amazon.com",
    "ssl-images-amazon.com",
    "cloudflare.com",
    "akamai.net",
    "fastly.net",
}

DEFAULT_PHISHING_KEYWORDS: list[str] = [
    "login", "signin", "verify", "account", "security", "update",
    "confirm", "banking", "paypal", "suspended", "limited",
    "unusual", "activity", "locked", "validate", "secure",
    "password", "credential", "verification", "authorize",
    "authenticate", "billing", "payment", "wallet", "invoice",
]

# Social engineering pressure language
DEFAULT_URGENT_KEYWORDS: list[str] = [
    "urgent", "immediate", "action required", "expire", "expires",
    "suspended", "locked", "unauthorized", "verify now", "click here",
    "act now", "limited time", "suspended account",
]

DEFAULT_TARGETED_BRANDS: list[str] = [
    "paypal", "google", "microsoft", "apple", "amazon", "facebook",
    "netflix", "instagram", "twitter", "linkedin", "dropbox",
    "bankofamerica", "chase", "wellsfargo", "citibank",
]

DEFAULT_URL_SHORTENERS: set[str] = {
    "bit.ly", "tinyurl.com", "goo.gl", "t.co", "ow.ly",
    "is.gd", "buff.ly", "adf.ly", "bit.do", "short.link",
    "cutt.ly", "rb.gy", "tiny.cc", "bc.vc",
}

# Latin letter -> look-alike glyphs (Cyrillic, accented, digit substitutes)
DEFAULT_HOMOGLYPHS: dict[str, list[str]] = {
    "a": ["а", "à", "á", "â", "ã", "ä"],
    "e": ["е", "è", "é", "ê", "ë"],
    "i": ["і", "ì", "í", "î", "ï"],
    "o": ["о", "ò", "ó", "ô", "õ", "ö", "0"],
    "l": ["1", "і", "|"],
}

# Used by Safe Browsing when no API key is configured
DEFAULT_LOCAL_BLOCKLIST_PATTERNS: list[str] = [
    r"phishing",
    r"malware",
    r"scam",
    r"fake.*login",
    r"secure.*verify",
    r"account.*suspend",
]

# service -> (requests per window, window seconds)
DEFAULT_RATE_LIMITS: dict[str, tuple[int, int]] = {
    "safe_browsing": (60, 60),
    "phishtank": (30, 60),
    "virustotal": (500, 86400),
}


@dataclass
class Config:
    """Application configuration loaded from environment."""

    # External intelligence API keys (optional; missing keys degrade gracefully)
    safe_browsing_api_key: str = ""
    virustotal_api_key: str = ""
    phishtank_api_key: str = ""
    intel_timeout: float = 10.0

    # Caching
    safe_url_ttl: int = 3600  # 1 hour
    malicious_url_ttl: int = 86400  # 24 hours
    max_cache_size: int = 10000
    cache_evict_fraction: float = 0.2

    # Verdict
    risk_thresholds: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_RISK_THRESHOLDS))
    ml_match_threshold: int = 45

    # Heuristics
    heuristic_weights: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_HEURISTIC_WEIGHTS))
    url_length_suspicious: int = 75
    url_length_very_suspicious: int = 150
    url_length_extreme: int = 250
    max_subdomains: int = 4
    max_path_depth: int = 8
    entropy_threshold: float = 4.0
    hyphen_spam_threshold: int = 3
    dot_spam_label_threshold: int = 5
    path_encoding_threshold: int = 5

    # Loaded lists
    suspicious_tlds: Set[str] = field(default_factory=lambda: set(DEFAULT_SUSPICIOUS_TLDS))
    trusted_infra_domains: Set[str] = field(
        default_factory=lambda: set(DEFAULT_TRUSTED_INFRA_DOMAINS)
    )
    phishing_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_PHISHING_KEYWORDS))
    urgent_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_URGENT_KEYWORDS))
    targeted_brands: list[str] = field(default_factory=lambda: list(DEFAULT_TARGETED_BRANDS))
    url_shorteners: Set[str] = field(default_factory=lambda: set(DEFAULT_URL_SHORTENERS))
    homoglyphs: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_HOMOGLYPHS.items()}
    )
    local_blocklist_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_LOCAL_BLOCKLIST_PATTERNS)
    )

    # Rate limiting per external service
    rate_limits: dict[str, tuple[int, int]] = field(default_factory=lambda: dict(DEFAULT_RATE_LIMITS))

    # Operational limits
    analysis_timeout: Optional[float] = None

    # Paths
    config_dir: Optional[Path] = None
    allowlist: Set[str] = field(default_factory=set)

    def __post_init__(self):
        """Normalize list values and load the allowlist file."""
        if self.config_dir is not None:
            self.config_dir = Path(self.config_dir)
            self.allowlist = set(self.allowlist) | read_allowlist(self.config_dir / "allowlist.txt")

        self.suspicious_tlds = {t.lower().lstrip(".") for t in self.suspicious_tlds}
        self.trusted_infra_domains = {d.lower() for d in self.trusted_infra_domains}
        self.url_shorteners = {d.lower() for d in self.url_shorteners}
        self.phishing_keywords = [k.lower() for k in self.phishing_keywords]
        self.urgent_keywords = [k.lower() for k in self.urgent_keywords]
        self.targeted_brands = [b.lower() for b in self.targeted_brands]

    @property
    def thresholds(self) -> RiskThresholds:
        merged = {**DEFAULT_RISK_THRESHOLDS, **(self.risk_thresholds or {})}
        return RiskThresholds(
            low=int(merged["low"]),
            medium=int(merged["medium"]),
            high=int(merged["high"]),
            critical=int(merged["critical"]),
        )

    def weight(self, name: str) -> int:
        """Return a heuristic weight, falling back to the built-in default."""
        if name in self.heuristic_weights:
            return int(self.heuristic_weights[name])
        return DEFAULT_HEURISTIC_WEIGHTS.get(name, 0)

    def rate_limit(self, service: str) -> tuple[int, int]:
        return self.rate_limits.get(service) or DEFAULT_RATE_LIMITS.get(service, (60, 60))


def _load_heuristics(config_dir: Optional[Path]) -> dict:
    """Load heuristic overrides from config/heuristics.yaml (optional)."""
    path = Path(config_dir or ".") / "heuristics.yaml"
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except Exception as exc:
        logger.warning("Failed to parse heuristics.yaml: %s", exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring heuristics.yaml: top level must be a mapping")
        return {}

    def _coerce_int_map(raw, default):
        items: dict[str, int] = {}
        for key, value in (raw or {}).items() if isinstance(raw, dict) else []:
            try:
                items[str(key)] = int(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring non-integer value for %s in heuristics.yaml", key)
        return {**default, **items}

    def _coerce_str_list(raw):
        if not isinstance(raw, (list, tuple, set)):
            return None
        items = [str(entry).strip().lower() for entry in raw if str(entry).strip()]
        return items or None

    def _coerce_homoglyphs(raw):
        if not isinstance(raw, dict):
            return None
        table: dict[str, list[str]] = {}
        for letter, glyphs in raw.items():
            if isinstance(glyphs, str):
                glyphs = list(glyphs)
            if not isinstance(glyphs, (list, tuple)):
                continue
            table[str(letter).lower()] = [str(g) for g in glyphs if str(g)]
        return table or None

    def _coerce_rate_limits(raw):
        limits: dict[str, tuple[int, int]] = {}
        for service, entry in (raw or {}).items() if isinstance(raw, dict) else []:
            if not isinstance(entry, dict):
                continue
            try:
                limits[str(service)] = (int(entry["limit"]), int(entry.get("window_seconds", 60)))
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring malformed rate limit for %s", service)
        return {**DEFAULT_RATE_LIMITS, **limits}

    heuristics_cfg = data.get("heuristics", {}) or {}
    lists_cfg = data.get("lists", {}) or {}
    verdict_cfg = data.get("verdict", {}) or {}

    overrides: dict = {
        "heuristic_weights": _coerce_int_map(heuristics_cfg.get("weights"), DEFAULT_HEURISTIC_WEIGHTS),
        "risk_thresholds": _coerce_int_map(verdict_cfg.get("thresholds"), DEFAULT_RISK_THRESHOLDS),
        "rate_limits": _coerce_rate_limits(data.get("rate_limits")),
    }
    if "ml_match_threshold" in verdict_cfg:
        try:
            overrides["ml_match_threshold"] = int(verdict_cfg["ml_match_threshold"])
        except (TypeError, ValueError):
            logger.warning("Ignoring non-integer ml_match_threshold in heuristics.yaml")

    for key in (
        "suspicious_tlds",
        "trusted_infra_domains",
        "phishing_keywords",
        "urgent_keywords",
        "targeted_brands",
        "url_shorteners",
    ):
        values = _coerce_str_list(lists_cfg.get(key))
        if values:
            overrides[key] = values

    patterns = lists_cfg.get("local_blocklist_patterns")
    if isinstance(patterns, list) and patterns:
        overrides["local_blocklist_patterns"] = [str(p) for p in patterns if str(p)]

    homoglyphs = _coerce_homoglyphs(lists_cfg.get("homoglyphs"))
    if homoglyphs:
        overrides["homoglyphs"] = homoglyphs

    return overrides


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    return float(raw)


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    config_dir = Path(os.getenv("CONFIG_DIR", "./config"))
    heuristics = _load_heuristics(config_dir)

    return Config(
        safe_browsing_api_key=os.getenv("SAFE_BROWSING_API_KEY", ""),
        virustotal_api_key=os.getenv("VIRUSTOTAL_API_KEY", ""),
        phishtank_api_key=os.getenv("PHISHTANK_API_KEY", ""),
        intel_timeout=float(os.getenv("INTEL_TIMEOUT", "10")),
        safe_url_ttl=int(os.getenv("CACHE_SAFE_URL_TTL", "3600")),
        malicious_url_ttl=int(os.getenv("CACHE_MALICIOUS_URL_TTL", "86400")),
        max_cache_size=int(os.getenv("CACHE_MAX_SIZE", "10000")),
        analysis_timeout=_env_float("ANALYSIS_TIMEOUT"),
        config_dir=config_dir,
        **heuristics,
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of error messages."""
    errors: list[str] = []

    if not config.thresholds.is_ascending():
        errors.append("Risk thresholds must be ascending within 0-100 (low < medium < high < critical)")

    for name, weight in config.heuristic_weights.items():
        if int(weight) < 0:
            errors.append(f"Heuristic weight '{name}' must not be negative")

    for service, (limit, window) in config.rate_limits.items():
        if limit <= 0 or window <= 0:
            errors.append(f"Rate limit for '{service}' must have a positive quota and window")

    if config.max_cache_size <= 0:
        errors.append("CACHE_MAX_SIZE must be positive")
    if not 0 < config.cache_evict_fraction <= 1:
        errors.append("Cache eviction fraction must be within (0, 1]")
    if config.safe_url_ttl <= 0 or config.malicious_url_ttl <= 0:
        errors.append("Cache TTLs must be positive")
    if not 0 <= config.ml_match_threshold <= 100:
        errors.append("ML match threshold must be within 0-100")

    if not (config.safe_browsing_api_key or config.virustotal_api_key or config.phishtank_api_key):
        # Gateway still runs: Safe Browsing falls back to the local blocklist.
        logger.info("No threat intelligence API keys configured; external checks will degrade")

    return errors
