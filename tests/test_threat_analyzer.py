"""Tests for the threat analyzer orchestration and verdicts."""

import pytest

from fakes import FakeClock, FakeIntelService, clean_services
from urlsentry.analyzer.external_intel import IntelligenceGateway
from urlsentry.analyzer.models import DetectionSignal
from urlsentry.analyzer.threat_analyzer import ThreatAnalyzer, Whitelist
from urlsentry.config import Config
from urlsentry.constants import DetectionLayer, IntelService, RiskLevel


def _analyzer(config=None, services=None, clock=None):
    config = config or Config()
    clock = clock or FakeClock()
    services = services if services is not None else clean_services()
    gateway = IntelligenceGateway(config, services=services, clock=clock)
    return ThreatAnalyzer(config, gateway=gateway, clock=clock)


def _with_flagging_virustotal():
    services = clean_services()
    services[2] = FakeIntelService(IntelService.VIRUSTOTAL, malicious=True, detections=7)
    return services


class TestVerdicts:
    @pytest.mark.asyncio
    async def test_clean_url_is_safe(self):
        result = await _analyzer().analyze("https://google.com")

        assert not result.is_malicious
        assert result.risk_level == RiskLevel.SAFE
        assert result.risk_score == 0
        assert result.details == "No threats detected | External threat intelligence: Clean"
        assert len(result.signals_for(DetectionLayer.SIGNATURE)) == 3
        assert len(result.signals_for(DetectionLayer.ML)) == 1

    @pytest.mark.asyncio
    async def test_ip_login_page(self):
        result = await _analyzer().analyze("http://192.168.1.1/login")

        assert result.risk_level != RiskLevel.SAFE
        signature = result.signals_for(DetectionLayer.SIGNATURE)
        assert signature and not any(s.matched for s in signature)
        heuristics = {s.method: s for s in result.signals_for(DetectionLayer.HEURISTIC)}
        assert heuristics["IP Address Detection"].matched
        assert result.details.startswith("Detected by: ")

    @pytest.mark.asyncio
    async def test_external_hit_forces_critical(self):
        result = await _analyzer(services=_with_flagging_virustotal()).analyze("https://google.com")

        assert result.is_malicious
        assert result.risk_level == RiskLevel.CRITICAL
        assert result.risk_score == 100
        assert result.details == "Flagged by external threat intelligence: VirusTotal"

    @pytest.mark.asyncio
    async def test_external_hit_lists_other_detections(self):
        analyzer = _analyzer(services=_with_flagging_virustotal())
        result = await analyzer.analyze("http://192.168.1.1/login")

        assert result.details.startswith("Flagged by external threat intelligence: VirusTotal | Also detected by: ")
        assert "IP Address Detection" in result.details

    @pytest.mark.asyncio
    async def test_punycode_brand_lookalike(self):
        result = await _analyzer().analyze("https://paypal.xn--80ak6aa92e.com/login/verify")

        matched = {s.method for s in result.matched_signals}
        assert {"Punycode/IDN Detection", "Brand Impersonation"} <= matched
        assert result.risk_score == 100
        assert result.risk_level == RiskLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_url_is_normalized(self):
        result = await _analyzer().analyze("HTTPS://Google.com/#top")
        assert result.url == "https://google.com"


class TestBoundaries:
    @pytest.mark.parametrize(
        "score,level,malicious",
        [
            (0, RiskLevel.SAFE, False),
            (24, RiskLevel.SAFE, False),
            (25, RiskLevel.LOW, False),
            (39, RiskLevel.LOW, False),
            (40, RiskLevel.MEDIUM, False),
            (59, RiskLevel.MEDIUM, False),
            (60, RiskLevel.HIGH, True),
            (84, RiskLevel.HIGH, True),
            (85, RiskLevel.CRITICAL, True),
            (100, RiskLevel.CRITICAL, True),
        ],
    )
    def test_level_thresholds(self, score, level, malicious):
        signals = [DetectionSignal(DetectionLayer.HEURISTIC, "Rule", score, True)]
        result = _analyzer().build_result("https://example.com", signals)

        assert result.risk_score == score
        assert result.risk_level == level
        assert result.is_malicious is malicious

    def test_level_from_string(self):
        assert RiskLevel.from_string(" HIGH ") == RiskLevel.HIGH
        assert RiskLevel.from_string("bogus") == RiskLevel.SAFE
        assert RiskLevel.from_string(None) == RiskLevel.SAFE

    def test_unmatched_scores_are_ignored(self):
        signals = [
            DetectionSignal(DetectionLayer.HEURISTIC, "A", 30, True),
            DetectionSignal(DetectionLayer.ML, "ML Model (70% confidence)", 40, False),
        ]
        result = _analyzer().build_result("https://example.com", signals)
        assert result.risk_score == 30
        assert result.details == "Detected by: A"

    def test_sum_is_capped(self):
        signals = [DetectionSignal(DetectionLayer.HEURISTIC, str(i), 40, True) for i in range(4)]
        assert _analyzer().build_result("https://example.com", signals).risk_score == 100

    def test_custom_thresholds(self):
        config = Config(risk_thresholds={"low": 10, "medium": 20, "high": 30, "critical": 90})
        signals = [DetectionSignal(DetectionLayer.HEURISTIC, "Rule", 30, True)]
        result = _analyzer(config=config).build_result("https://example.com", signals)
        assert result.risk_level == RiskLevel.HIGH


class TestWhitelist:
    def test_entries_are_canonical(self):
        whitelist = Whitelist()
        assert whitelist.add("https://Example.com:8443/path") == "example.com"
        assert whitelist.add("") == ""
        assert whitelist.list() == ["example.com"]

    def test_subdomains_are_covered(self):
        whitelist = Whitelist(["example.com"])
        assert whitelist.contains("example.com")
        assert whitelist.contains("login.example.com")
        assert not whitelist.contains("badexample.com")

    @pytest.mark.asyncio
    async def test_whitelisted_host_skips_all_layers(self):
        services = _with_flagging_virustotal()
        analyzer = _analyzer(services=services)
        analyzer.add_to_whitelist("example.com")

        result = await analyzer.analyze("http://login.example.com/verify-account")

        assert not result.is_malicious
        assert result.risk_level == RiskLevel.SAFE
        assert result.details == "Whitelisted domain"
        assert [s.method for s in result.signals] == ["Whitelist"]
        assert result.signals[0].details == "Domain is whitelisted"
        assert all(not s.calls for s in services)

    @pytest.mark.asyncio
    async def test_allowlist_from_config(self):
        analyzer = _analyzer(config=Config(allowlist={"trusted.example"}))
        assert analyzer.is_whitelisted("https://www.trusted.example/page")
        result = await analyzer.analyze("https://trusted.example/")
        assert result.details == "Whitelisted domain"

    def test_remove(self):
        analyzer = _analyzer()
        analyzer.add_to_whitelist("example.com")
        assert analyzer.remove_from_whitelist("EXAMPLE.com")
        assert not analyzer.remove_from_whitelist("example.com")
        assert analyzer.get_whitelist() == []


class TestCaching:
    @pytest.mark.asyncio
    async def test_repeat_lookup_returns_same_verdict(self):
        services = clean_services()
        analyzer = _analyzer(services=services)

        first = await analyzer.analyze("https://google.com")
        second = await analyzer.analyze("https://GOOGLE.com/")

        assert second is first
        assert all(len(s.calls) == 1 for s in services)

    @pytest.mark.asyncio
    async def test_malicious_verdicts_live_longer(self):
        clock = FakeClock()
        config = Config(safe_url_ttl=60, malicious_url_ttl=600)
        services = [
            FakeIntelService(IntelService.SAFE_BROWSING),
            FakeIntelService(IntelService.PHISHTANK, flag_urls={"https://evil.example"}),
        ]
        analyzer = _analyzer(config=config, services=services, clock=clock)

        bad = await analyzer.analyze("https://evil.example/")
        good = await analyzer.analyze("https://google.com")
        assert bad.is_malicious
        assert not good.is_malicious

        clock.advance(59)
        assert await analyzer.analyze("https://google.com") is good

        clock.advance(61)
        assert await analyzer.analyze("https://evil.example/") is bad
        assert await analyzer.analyze("https://google.com") is not good

    @pytest.mark.asyncio
    async def test_normalized_url_hits_the_same_cache_entry(self):
        services = clean_services()
        analyzer = _analyzer(services=services)

        first = await analyzer.analyze("http://a.com/?/")
        second = await analyzer.analyze(first.url)

        assert first.url == "http://a.com"
        assert second is first
        assert all(len(s.calls) == 1 for s in services)

    @pytest.mark.asyncio
    async def test_eviction_keeps_cache_bounded(self):
        analyzer = _analyzer(config=Config(max_cache_size=2))
        for url in ("https://a.example", "https://b.example", "https://c.example"):
            await analyzer.analyze(url)

        stats = analyzer.cache_stats()["results"]
        assert stats["memory_entries"] == 2
        assert stats["evictions"] == 1

    @pytest.mark.asyncio
    async def test_clear_cache_forces_fresh_lookups(self):
        services = clean_services()
        analyzer = _analyzer(services=services)

        first = await analyzer.analyze("https://google.com")
        analyzer.clear_cache()
        second = await analyzer.analyze("https://google.com")

        assert second is not first
        assert all(len(s.calls) == 2 for s in services)

    @pytest.mark.asyncio
    async def test_error_results_are_not_cached(self, monkeypatch):
        analyzer = _analyzer()
        real_build = analyzer.build_result

        def broken(url, signals):
            raise RuntimeError("boom")

        monkeypatch.setattr(analyzer, "build_result", broken)
        failed = await analyzer.analyze("https://google.com")
        monkeypatch.setattr(analyzer, "build_result", real_build)
        recovered = await analyzer.analyze("https://google.com")

        assert failed.details == "Error during analysis"
        assert recovered.details != "Error during analysis"


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_internal_error_yields_safe_verdict(self, monkeypatch):
        analyzer = _analyzer()

        def broken(url, signals):
            raise RuntimeError("boom")

        monkeypatch.setattr(analyzer, "build_result", broken)
        result = await analyzer.analyze("https://google.com")

        assert not result.is_malicious
        assert result.risk_level == RiskLevel.SAFE
        assert result.risk_score == 0
        assert result.details == "Error during analysis"
        assert [s.method for s in result.signals] == ["Error Handler"]
        assert result.signals[0].details == "Analysis error: boom"

    @pytest.mark.asyncio
    async def test_missing_host_is_an_error_verdict(self):
        result = await _analyzer().analyze("not a url")
        assert result.details == "Error during analysis"
        assert result.signals[0].method == "Error Handler"
        assert "Invalid URL" in result.signals[0].details

    @pytest.mark.asyncio
    async def test_failing_layer_does_not_abort_the_others(self, monkeypatch):
        analyzer = _analyzer(services=_with_flagging_virustotal())

        def broken(url, host):
            raise RuntimeError("rules unavailable")

        monkeypatch.setattr(analyzer.heuristics, "analyze", broken)
        result = await analyzer.analyze("https://google.com")

        assert result.risk_level == RiskLevel.CRITICAL
        failures = [s for s in result.signals if s.method == "Heuristic Engine"]
        assert len(failures) == 1
        assert not failures[0].matched
        assert failures[0].details == "Heuristic Engine failed: rules unavailable"

    @pytest.mark.asyncio
    async def test_deadline_fails_open(self):
        slow = [FakeIntelService(service, delay=1.0) for service in IntelService]
        analyzer = _analyzer(services=slow)

        result = await analyzer.analyze("https://google.com", timeout=0.01)

        assert not result.is_malicious
        assert result.details == "Error during analysis"
        assert result.signals[0].details == "Analysis error: timed out after 0.01s"

    @pytest.mark.asyncio
    async def test_configured_deadline(self):
        slow = [FakeIntelService(IntelService.PHISHTANK, delay=1.0)]
        analyzer = _analyzer(config=Config(analysis_timeout=0.01), services=slow)

        result = await analyzer.analyze("https://google.com")
        assert result.details == "Error during analysis"


class TestMetrics:
    @pytest.mark.asyncio
    async def test_counts_and_recent_blocks(self):
        analyzer = _analyzer(services=_with_flagging_virustotal())
        analyzer.add_to_whitelist("trusted.example")

        await analyzer.analyze("https://google.com")
        await analyzer.analyze("https://trusted.example/")

        summary = analyzer.metrics.get_summary()
        assert summary["total_checked"] == 2
        assert summary["total_blocked"] == 1
        assert summary["blocked_by_layer"]["signature"] == 1
        assert summary["risk_distribution"]["critical"] == 1
        assert summary["risk_distribution"]["safe"] == 1

        recent = analyzer.metrics.recent_blocked()
        assert recent[0].url == "https://google.com"
        assert recent[0].reason == "Flagged by external threat intelligence: VirusTotal"

    @pytest.mark.asyncio
    async def test_analyze_many_preserves_order(self):
        analyzer = _analyzer()
        results = await analyzer.analyze_many(["https://google.com", "http://192.168.1.1/login"])

        assert [r.url for r in results] == ["https://google.com", "http://192.168.1.1/login"]
        assert analyzer.metrics.total_checked == 2

    def test_reset(self):
        analyzer = _analyzer()
        analyzer.metrics.record(analyzer.whitelist_result("https://example.com"))
        analyzer.metrics.reset()
        assert analyzer.metrics.total_checked == 0
