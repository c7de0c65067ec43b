"""Tests for URL feature extraction."""

import json

import pytest

from urlsentry.analyzer.features import FeatureExtractor, is_ip_address, shannon_entropy
from urlsentry.analyzer.models import FeatureSet
from urlsentry.config import Config


@pytest.fixture
def extractor():
    return FeatureExtractor(Config())


class TestBasics:
    def test_plain_https_url(self, extractor):
        f = extractor.extract("https://google.com")
        assert f.length == 18
        assert f.domain_length == 10
        assert f.subdomain_count == 0
        assert f.uses_https
        assert not f.has_ip
        assert not f.has_port
        assert not f.has_punycode
        assert not f.has_suspicious_tld
        assert f.path_depth == 0
        assert f.query_length == 0
        assert f.brand_impersonation is None
        assert f.has_quality_domain
        assert not f.has_readable_params

    def test_trailing_dot_host_matches_plain_host(self, extractor):
        dotted = extractor.extract("https://google.com.")
        assert dotted.domain_length == 10
        assert dotted.brand_impersonation is None
        assert dotted.has_quality_domain

    def test_ip_literal(self, extractor):
        f = extractor.extract("http://192.168.1.1/login")
        assert f.has_ip
        assert not f.uses_https
        assert f.phishing_keyword_count == 1
        assert not f.dga_like
        assert not f.suspicious_subdomain
        assert not f.has_quality_domain

    def test_ipv6_literal(self):
        assert is_ip_address("[2001:db8::1]")
        assert is_ip_address("2001:db8::1")
        assert not is_ip_address("example.com")

    def test_suspicious_tld(self, extractor):
        assert extractor.extract("https://free-prizes.tk/").has_suspicious_tld
        assert not extractor.extract("https://example.org/").has_suspicious_tld

    def test_port_only_when_non_default(self, extractor):
        assert extractor.extract("http://example.com:8080/").has_port
        assert not extractor.extract("https://example.com:443/").has_port
        assert not extractor.extract("http://example.com:80/").has_port

    def test_path_and_query(self, extractor):
        f = extractor.extract("https://example.com/a/b//c?x=1")
        assert f.path_depth == 3
        assert f.path_slash_count == 4
        assert f.query_length == len("?x=1")


class TestEncoding:
    def test_heavy_path_encoding_is_suspicious(self, extractor):
        f = extractor.extract("https://example.com/a%20b%20c%20d%20e%20f%20g")
        assert f.path_encoding_count == 6
        assert f.suspicious_encoding

    def test_query_encoding_is_tolerated(self, extractor):
        f = extractor.extract("https://example.com/search?q=%20%20%20%20%20%20%20")
        assert f.query_encoding_count == 7
        assert f.path_encoding_count == 0
        assert not f.suspicious_encoding

    def test_host_encoding_is_suspicious(self, extractor):
        f = extractor.extract("https://ex%61mple.com/")
        assert f.host_encoding_count == 1
        assert f.suspicious_encoding


class TestKeywords:
    def test_phishing_keywords_counted_once_each(self, extractor):
        f = extractor.extract("https://secure-login.example.com/verify-account/login")
        assert f.phishing_keyword_count == 4  # secure, login, verify, account

    def test_urgent_keywords(self, extractor):
        f = extractor.extract("https://example.com/urgent-notice-expires")
        # "expire" and "expires" are separate entries
        assert f.urgent_keyword_count == 3


class TestBrandImpersonation:
    def test_brand_in_foreign_host(self, extractor):
        assert extractor.extract("https://paypal-secure.example.com/").brand_impersonation == "paypal"

    def test_official_domain_is_not_impersonation(self, extractor):
        assert extractor.extract("https://www.paypal.com/").brand_impersonation is None

    def test_typosquat_by_edit_distance(self, extractor):
        # "paypa1.com" is one edit from paypal.com and shares "payp"
        assert extractor.detect_brand_impersonation("paypa1.com") == "paypal"

    def test_cyrillic_homoglyph(self, extractor):
        # Cyrillic "а" stands in for the Latin letter in "amazon"
        assert extractor.detect_brand_impersonation("аmazon-shop.net") is not None

    def test_first_matching_brand_wins(self, extractor):
        assert extractor.detect_brand_impersonation("google-paypal.net") == "paypal"


class TestStructure:
    def test_shortener(self, extractor):
        assert extractor.extract("https://bit.ly/abc").is_shortener
        assert extractor.extract("https://go.bit.ly/abc").is_shortener
        assert not extractor.extract("https://notbit.ly/abc").is_shortener

    def test_hyphen_spam(self, extractor):
        assert extractor.extract("https://a-b-c-d-e.com/").has_hyphen_spam
        assert not extractor.extract("https://a-b-c.com/").has_hyphen_spam

    def test_dot_spam(self, extractor):
        f = extractor.extract("https://a.b.c.d.e.example.com/")
        assert f.has_dot_spam
        assert f.subdomain_count == 5

    def test_consecutive_chars(self, extractor):
        assert extractor.extract("https://aaaa.com/").has_consecutive_chars
        assert not extractor.extract("https://aaa.com/").has_consecutive_chars

    @pytest.mark.parametrize(
        "url",
        [
            "https://029ajjkz-05958z.cfd/",
            "https://abcdef123.com/",
            "https://deadbeef1234.com/",
        ],
    )
    def test_dga_like(self, extractor, url):
        assert extractor.extract(url).dga_like

    def test_regular_domain_not_dga_like(self, extractor):
        assert not extractor.extract("https://my-shop.com/").dga_like

    @pytest.mark.parametrize("url", ["https://a3f9c1.example.com/", "https://user123.example.com/"])
    def test_generated_subdomain(self, extractor, url):
        assert extractor.extract(url).suspicious_subdomain

    def test_plain_subdomain(self, extractor):
        assert not extractor.extract("https://login.example.com/").suspicious_subdomain

    def test_readable_and_random_params(self, extractor):
        readable = extractor.extract("https://example.com/search?query=shoes&page=2")
        assert readable.has_readable_params
        assert not readable.has_random_params

        random = extractor.extract("https://example.com/?t=abcdefghij0123456789xyz")
        assert random.has_random_params


class TestFailOpen:
    @pytest.mark.parametrize(
        "url",
        ["not a url", "", "http://[::1", "http://example.com:99999/", "mailto:someone@example.com"],
    )
    def test_unparseable_urls_get_benign_defaults(self, extractor, url):
        assert extractor.extract(url) == FeatureSet.benign_default()

    def test_benign_default_vector(self, extractor):
        v = extractor.extract_vector("not a url")
        assert v.uses_https == 1
        assert v.has_readable_params == 1
        assert v.has_quality_domain == 1
        assert v.url_length == 0
        assert v.digit_ratio == 0


def test_entropy():
    assert shannon_entropy("") == 0.0
    assert shannon_entropy("aaaa") == 0.0
    assert shannon_entropy("ab") == pytest.approx(1.0)


def test_vector_ratios(extractor):
    v = extractor.extract_vector("https://google.com")
    assert v.url_length == 18
    assert v.special_char_ratio == pytest.approx(4 / 18)
    assert v.consonant_ratio == pytest.approx(14 / 18)
    assert v.phishing_keyword_score == 0
    assert v.has_quality_domain == 1


def test_feature_set_is_json_serializable(extractor):
    f = extractor.extract("https://paypal-login.example.tk/verify")
    data = json.loads(json.dumps(f.to_dict()))
    assert data["brand_impersonation"] == "paypal"
    assert data["has_suspicious_tld"] is True
