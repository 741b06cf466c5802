"""Per-state validators."""

import time
from types import SimpleNamespace

import httpx
import pytest

from ui_explorer.browser import ConsoleEntry, NetworkEntry
from ui_explorer.config import ValidatorSettings
from ui_explorer.knowledge import Severity
from ui_explorer.validators import (
    AccessibilityValidator,
    BrokenLinksValidator,
    ConsoleValidator,
    NetworkValidator,
    ResponsiveValidator,
    build_validators,
)
from ui_explorer.validators.accessibility import PROBE_JS
from ui_explorer.validators.broken_links import EXTRACT_LINKS_JS, LinkInfo
from ui_explorer.validators.network import truncate_url
from ui_explorer.validators.responsive import OVERFLOW_JS, TOUCH_TARGETS_JS, TRUNCATION_JS

PAGE = "http://app.test/songs"


class ScriptedSession:
    """Answers ``evaluate`` from a table keyed by script source."""

    def __init__(self, answers, url=PAGE, width=375, height=667):
        self.answers = answers
        self.url = url
        self.size = {"width": width, "height": height}

    async def evaluate(self, script, arg=None):
        return self.answers[script]

    def viewport_size(self):
        return self.size


def entry(url, status=200, resource_type="fetch", method="GET", duration_ms=100.0, error=None):
    return NetworkEntry(url, method, resource_type, time.time(), status=status, error=error, duration_ms=duration_ms)


class CountingBackend:
    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        route = self.routes[request.url.path]
        return route(request) if callable(route) else httpx.Response(route)


class TestBrokenLinks:
    @pytest.mark.asyncio
    async def test_three_internal_links(self):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        backend = CountingBackend({"/missing": 404, "/slow": slow, "/ok": 200})
        validator = BrokenLinksValidator(transport=httpx.MockTransport(backend))
        links = [
            LinkInfo("http://app.test/missing", "Old page", "#missing"),
            LinkInfo("http://app.test/slow", "Reports", "#slow"),
            LinkInfo("http://app.test/ok", "Home", "#ok"),
        ]
        issues = await validator.check_links(links, "desktop")
        by_rule = {i.rule: i for i in issues}
        assert len(issues) == 2
        assert by_rule["broken-link-404"].severity == Severity.SERIOUS
        assert by_rule["broken-link-404"].elements == ("#missing",)
        assert by_rule["link-timeout"].severity == Severity.MODERATE
        assert by_rule["link-timeout"].description == 'Link timed out after 5000ms: "Reports"'

    @pytest.mark.asyncio
    async def test_head_refused_falls_back_to_get(self):
        def head_refused(request):
            return httpx.Response(405 if request.method == "HEAD" else 200)

        backend = CountingBackend({"/download": head_refused})
        validator = BrokenLinksValidator(transport=httpx.MockTransport(backend))
        issues = await validator.check_links([LinkInfo("http://app.test/download", "Download")], "desktop")
        assert issues == []
        assert backend.calls == [("HEAD", "/download"), ("GET", "/download")]

    @pytest.mark.asyncio
    async def test_results_are_cached_per_url(self):
        backend = CountingBackend({"/gone": 410})
        validator = BrokenLinksValidator(transport=httpx.MockTransport(backend))
        link = LinkInfo("http://app.test/gone", "Gone")
        first = await validator.check_links([link], "mobile")
        second = await validator.check_links([link], "desktop")
        assert len(backend.calls) == 1
        assert first[0].rule == second[0].rule == "broken-link-client-error"
        assert second[0].viewport == "desktop"
        validator.clear_cache()
        await validator.check_links([link], "desktop")
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_server_error_and_connection_failure(self):
        def refused(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend = CountingBackend({"/boom": 503, "/down": refused})
        validator = BrokenLinksValidator(transport=httpx.MockTransport(backend))
        issues = await validator.check_links(
            [LinkInfo("http://app.test/boom", "Boom"), LinkInfo("http://app.test/down", "Down")], "desktop"
        )
        severities = {i.rule: i.severity for i in issues}
        assert severities == {
            "broken-link-server-error": Severity.CRITICAL,
            "link-connection-error": Severity.SERIOUS,
        }

    @pytest.mark.asyncio
    async def test_request_errors_keep_other_results(self):
        def invalid(request):
            raise httpx.InvalidURL("Invalid URL component")

        def looping(request):
            raise httpx.TooManyRedirects("Exceeded maximum allowed redirects", request=request)

        backend = CountingBackend({"/bad": invalid, "/loop": looping, "/missing": 404, "/ok": 200})
        validator = BrokenLinksValidator(transport=httpx.MockTransport(backend))
        links = [LinkInfo(f"http://app.test/{path}", path.title()) for path in ("bad", "loop", "missing", "ok")]
        issues = await validator.check_links(links, "desktop")
        rules = sorted(i.rule for i in issues)
        assert rules == ["broken-link-404", "link-connection-error", "link-connection-error"]
        assert any("Exceeded maximum allowed redirects" in i.description for i in issues)

    def test_should_check(self):
        validator = BrokenLinksValidator(ignore_patterns=[r"/logout"])
        assert validator.should_check(LinkInfo("http://app.test/about"), PAGE)
        assert not validator.should_check(LinkInfo("https://elsewhere.test/", external=True), PAGE)
        assert not validator.should_check(LinkInfo("http://app.test/logout"), PAGE)
        assert not validator.should_check(LinkInfo(PAGE + "#top"), PAGE)
        assert not validator.should_check(LinkInfo("ftp://app.test/file"), PAGE)

    @pytest.mark.asyncio
    async def test_validate_extracts_links_from_page(self):
        backend = CountingBackend({"/about": 200, "/missing": 404})
        validator = BrokenLinksValidator(transport=httpx.MockTransport(backend))
        session = ScriptedSession(
            {
                EXTRACT_LINKS_JS: [
                    {"href": "http://app.test/about", "text": "About", "selector": "#about", "external": False},
                    {"href": "http://app.test/missing", "text": "Missing", "selector": "#missing", "external": False},
                    {"href": "https://cdn.test/x", "text": "CDN", "selector": "#cdn", "external": True},
                ]
            }
        )
        result = await validator.validate(session, "mobile")
        assert [i.rule for i in result.issues] == ["broken-link-404"]
        assert len(backend.calls) == 2


class TestNetwork:
    @pytest.mark.asyncio
    async def test_classifies_requests(self):
        session = SimpleNamespace(
            url="https://app.test/songs",
            network_log=[
                entry("https://app.test/api/songs", status=500),
                entry("https://app.test/api/me", status=401),
                entry("https://app.test/app.js", status=None, resource_type="script", error="net::ERR_ABORTED"),
                entry("https://app.test/api/slow", duration_ms=8000),
                entry("http://cdn.test/lib.js", resource_type="script"),
                entry("https://app.test/ok"),
            ],
        )
        result = await NetworkValidator().validate(session, "desktop")
        rules = {(i.rule, i.severity) for i in result.issues}
        assert rules == {
            ("network-server-error", Severity.CRITICAL),
            ("network-client-error", Severity.SERIOUS),
            ("network-request-failed", Severity.CRITICAL),
            ("network-slow-response", Severity.MINOR),
            ("mixed-content", Severity.SERIOUS),
        }

    @pytest.mark.asyncio
    async def test_ignored_and_untracked_requests(self):
        session = SimpleNamespace(
            url="http://app.test/",
            network_log=[
                entry("http://analytics.test/collect", status=500),
                entry("http://app.test/socket", status=500, resource_type="websocket"),
            ],
        )
        result = await NetworkValidator(ignore_patterns=[r"analytics\.test"]).validate(session, "desktop")
        assert result.issues == []

    def test_truncate_url(self):
        short = "http://app.test/a"
        assert truncate_url(short) == short
        long = "https://app.test/" + "segment/" * 20 + "end"
        truncated = truncate_url(long)
        assert truncated.startswith("https://app.test/...")
        assert truncated.endswith("end")


class TestConsole:
    @pytest.mark.asyncio
    async def test_dedupes_and_ignores(self):
        session = SimpleNamespace(
            console_errors=[
                ConsoleEntry("Uncaught TypeError: x is undefined", PAGE),
                ConsoleEntry("Uncaught TypeError: x is undefined", PAGE),
                ConsoleEntry("Failed to load favicon.ico", PAGE),
            ]
        )
        result = await ConsoleValidator(ignore_patterns=["favicon"]).validate(session, "mobile")
        [issue] = result.issues
        assert issue.rule == "console-error"
        assert issue.severity == Severity.SERIOUS

    @pytest.mark.asyncio
    async def test_fail_on_error_is_critical(self):
        session = SimpleNamespace(console_errors=[ConsoleEntry("boom", PAGE)])
        result = await ConsoleValidator(fail_on_error=True).validate(session, "mobile")
        assert result.issues[0].severity == Severity.CRITICAL


class TestResponsive:
    @pytest.mark.asyncio
    async def test_mobile_layout_problems(self):
        session = ScriptedSession(
            {
                OVERFLOW_JS: {"maxWidth": 520, "offenders": [{"selector": "table.songs", "overflow": 145}]},
                TOUCH_TARGETS_JS: [{"selector": "#play", "width": 24, "height": 24, "label": "Play"}],
                TRUNCATION_JS: ["#title"],
            }
        )
        result = await ResponsiveValidator().validate(session, "mobile")
        rules = [(i.rule, i.severity) for i in result.issues]
        assert rules == [
            ("no-horizontal-scroll", Severity.SERIOUS),
            ("touch-target-size", Severity.MODERATE),
            ("text-truncation", Severity.MINOR),
        ]
        assert result.issues[1].description == 'Touch target "Play" is 24x24px (minimum 44x44px)'

    @pytest.mark.asyncio
    async def test_touch_targets_only_on_mobile(self):
        session = ScriptedSession(
            {OVERFLOW_JS: {"maxWidth": 1280, "offenders": []}, TRUNCATION_JS: []}, width=1280, height=720
        )
        result = await ResponsiveValidator().validate(session, "desktop")
        assert result.issues == []


class TestAccessibility:
    @pytest.mark.asyncio
    async def test_reports_rules_and_page_level_checks(self):
        session = ScriptedSession(
            {
                PROBE_JS: {
                    "rules": {"image-alt": ["img"], "button-name": [], "link-name": ["#icon"], "label": []},
                    "lang": "",
                    "title": "Songs",
                }
            }
        )
        result = await AccessibilityValidator(ignored_rules=["link-name"]).validate(session, "desktop")
        assert sorted(i.rule for i in result.issues) == ["html-has-lang", "image-alt"]


class TestBuildValidators:
    def test_defaults(self):
        names = [v.name for v in build_validators(ValidatorSettings())]
        assert names == ["accessibility", "responsive", "console", "network"]

    def test_toggles_and_options(self):
        settings = ValidatorSettings.from_dict({"brokenLinks": {"enabled": True, "checkExternal": True}, "console": False})
        validators = {v.name: v for v in build_validators(settings)}
        assert "console" not in validators
        assert validators["broken_links"].check_external
