import asyncio
import base64

from playwright.async_api import Error as PlaywrightError

from conftest import csp_payload
from ttscanner import interceptor as interceptor_module
from ttscanner.collector import ViolationCollector
from ttscanner.config import ScanConfig
from ttscanner.console import quiet_logger
from ttscanner.interceptor import (
    POLICY_HEADER,
    ViolationInterceptor,
    build_fetch_patterns,
    capture,
    extract_post_data,
)


class FakeCDPSession:
    def __init__(self, body="<html></html>", base64_encoded=False, fail_on=()):
        self.sent = []
        self.handlers = {}
        self.body = body
        self.base64_encoded = base64_encoded
        self.fail_on = fail_on

    def on(self, event, handler):
        self.handlers[event] = handler

    async def send(self, method, params=None):
        self.sent.append((method, params))
        if method in self.fail_on:
            raise RuntimeError(f"{method} exploded")
        if method == "Fetch.getResponseBody":
            return {"body": self.body, "base64Encoded": self.base64_encoded}
        return {}


def _interceptor(client, **config):
    collector = ViolationCollector()
    return ViolationInterceptor(client, collector, ScanConfig(**config), quiet_logger()), collector


def test_fetch_patterns_follow_report_stage():
    assert build_fetch_patterns("request") == [
        {"requestStage": "Response", "resourceType": "Document"},
        {"requestStage": "Request", "resourceType": "CSPViolationReport"},
    ]
    assert build_fetch_patterns("response")[1]["requestStage"] == "Response"


def test_enable_registers_handler_and_patterns():
    client = FakeCDPSession()
    interceptor, _ = _interceptor(client, report_stage="response")
    asyncio.run(interceptor.enable())

    assert client.handlers["Fetch.requestPaused"] == interceptor.on_request_paused
    method, params = client.sent[0]
    assert method == "Fetch.enable"
    assert params["patterns"] == build_fetch_patterns("response")


def test_report_is_ingested_and_answered_locally():
    client = FakeCDPSession()
    interceptor, collector = _interceptor(client)
    event = {
        "requestId": "r1",
        "resourceType": "CSPViolationReport",
        "request": {"url": "http://127.0.0.1:8080/", "postData": csp_payload("app.js", 12, 3, "x")},
    }
    asyncio.run(interceptor.on_request_paused(event))
    asyncio.run(interceptor.on_request_paused(dict(event, requestId="r2")))

    assert collector.get("app.js", 12, 3).count == 2
    assert client.sent[-1] == (
        "Fetch.fulfillRequest",
        {"requestId": "r2", "responseCode": 204, "responseHeaders": []},
    )


def test_report_without_body_is_still_released():
    client = FakeCDPSession()
    interceptor, collector = _interceptor(client)
    event = {"requestId": "r1", "resourceType": "CSPViolationReport", "request": {"url": "http://x/"}}
    asyncio.run(interceptor.on_request_paused(event))
    assert len(collector) == 0
    assert client.sent[-1][0] == "Fetch.fulfillRequest"


def test_document_gets_report_only_policy():
    client = FakeCDPSession(body="<html>hi</html>")
    interceptor, _ = _interceptor(client, endpoint="http://127.0.0.1:9000")
    event = {
        "requestId": "d1",
        "resourceType": "Document",
        "request": {"url": "http://127.0.0.1:9000/"},
        "responseStatusCode": 200,
        "responseHeaders": [
            {"name": "Content-Type", "value": "text/html"},
            {"name": "content-security-policy-report-only", "value": "old"},
        ],
    }
    asyncio.run(interceptor.on_request_paused(event))

    method, params = client.sent[-1]
    assert method == "Fetch.fulfillRequest"
    assert params["responseCode"] == 200
    assert params["responseHeaders"] == [
        {"name": "Content-Type", "value": "text/html"},
        {
            "name": POLICY_HEADER,
            "value": "require-trusted-types-for 'script'; report-uri http://127.0.0.1:9000",
        },
    ]
    assert base64.b64decode(params["body"]).decode("utf-8") == "<html>hi</html>"
    assert interceptor.documents_patched == 1


def test_base64_body_is_passed_through():
    encoded = base64.b64encode(b"<html></html>").decode("ascii")
    client = FakeCDPSession(body=encoded, base64_encoded=True)
    interceptor, _ = _interceptor(client)
    event = {"requestId": "d1", "resourceType": "Document", "request": {}, "responseStatusCode": 404}
    asyncio.run(interceptor.on_request_paused(event))
    params = client.sent[-1][1]
    assert params["body"] == encoded
    assert params["responseCode"] == 404


def test_redirects_and_other_resources_continue():
    client = FakeCDPSession()
    interceptor, _ = _interceptor(client)
    asyncio.run(
        interceptor.on_request_paused(
            {"requestId": "d1", "resourceType": "Document", "request": {}, "responseStatusCode": 302}
        )
    )
    asyncio.run(interceptor.on_request_paused({"requestId": "s1", "resourceType": "Script", "request": {}}))
    assert client.sent == [
        ("Fetch.continueRequest", {"requestId": "d1"}),
        ("Fetch.continueRequest", {"requestId": "s1"}),
    ]


def test_handler_errors_are_logged_not_raised():
    client = FakeCDPSession(fail_on=("Fetch.getResponseBody",))
    interceptor, _ = _interceptor(client)
    asyncio.run(
        interceptor.on_request_paused(
            {"requestId": "d1", "resourceType": "Document", "request": {}, "responseStatusCode": 200}
        )
    )
    assert interceptor.documents_patched == 0
    assert client.sent[-1] == ("Fetch.continueRequest", {"requestId": "d1"})


def test_failed_release_is_swallowed():
    client = FakeCDPSession(fail_on=("Fetch.fulfillRequest", "Fetch.continueRequest"))
    interceptor, collector = _interceptor(client)
    event = {
        "requestId": "r1",
        "resourceType": "CSPViolationReport",
        "request": {"postData": csp_payload("app.js", 1, 1)},
    }
    asyncio.run(interceptor.on_request_paused(event))
    assert len(collector) == 1
    assert [m for m, _ in client.sent] == ["Fetch.fulfillRequest", "Fetch.continueRequest"]


def test_extract_post_data_from_entries():
    raw = csp_payload("a.js", 1, 1).encode("utf-8")
    half = len(raw) // 2
    request = {
        "postDataEntries": [
            {"bytes": base64.b64encode(raw[:half]).decode("ascii")},
            {"bytes": base64.b64encode(raw[half:]).decode("ascii")},
        ]
    }
    assert extract_post_data(request) == raw.decode("utf-8")
    assert extract_post_data({}) is None


REPORT_EVENT = {
    "requestId": "r1",
    "resourceType": "CSPViolationReport",
    "request": {"url": "http://127.0.0.1:8080/", "postData": csp_payload("app.js", 12, 3, "x")},
}


class FakePage:
    def __init__(self, cdp, goto_exc=None):
        self.cdp = cdp
        self.goto_exc = goto_exc
        self.visited = []

    async def goto(self, url, **kwargs):
        self.visited.append((url, kwargs))
        # Reports raised while the page loads reach the interceptor first.
        await self.cdp.handlers["Fetch.requestPaused"](REPORT_EVENT)
        if self.goto_exc is not None:
            raise self.goto_exc


class FakeContext:
    def __init__(self, page):
        self.page = page

    async def new_page(self):
        return self.page

    async def new_cdp_session(self, page):
        return self.page.cdp


class FakeBrowser:
    def __init__(self, context):
        self.context = context
        self.closed = False

    async def new_context(self):
        return self.context

    async def close(self):
        self.closed = True


class FakeChromium:
    def __init__(self, browser, launch_exc=None):
        self.browser = browser
        self.launch_exc = launch_exc

    async def launch(self, headless=True):
        if self.launch_exc is not None:
            raise self.launch_exc
        return self.browser


class FakePlaywright:
    def __init__(self, goto_exc=None, launch_exc=None):
        self.cdp = FakeCDPSession()
        self.page = FakePage(self.cdp, goto_exc=goto_exc)
        self.browser = FakeBrowser(FakeContext(self.page))
        self.chromium = FakeChromium(self.browser, launch_exc=launch_exc)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


def _capture_with(monkeypatch, pw, **config):
    monkeypatch.setattr(interceptor_module, "async_playwright", lambda: pw)
    collector = ViolationCollector()
    returned = asyncio.run(capture(ScanConfig(**config), collector, quiet_logger()))
    assert returned is collector
    return collector


def test_capture_collects_until_settled(monkeypatch):
    pw = FakePlaywright()
    collector = _capture_with(monkeypatch, pw, endpoint="http://127.0.0.1:9000", settle_seconds=0.01)

    assert collector.get("app.js", 12, 3).count == 1
    assert pw.page.visited[0][0] == "http://127.0.0.1:9000"
    assert pw.cdp.sent[0][0] == "Fetch.enable"
    assert pw.browser.closed


def test_navigation_failure_keeps_partial_results(monkeypatch):
    pw = FakePlaywright(goto_exc=PlaywrightError("net::ERR_CONNECTION_REFUSED"))
    collector = _capture_with(monkeypatch, pw, settle_seconds=0)

    assert len(collector) == 1
    assert pw.browser.closed


def test_interrupt_keeps_partial_results(monkeypatch):
    pw = FakePlaywright(goto_exc=asyncio.CancelledError())
    collector = _capture_with(monkeypatch, pw, settle_seconds=0)

    assert collector.get("app.js", 12, 3).count == 1
    assert pw.browser.closed


def test_launch_failure_returns_empty_collector(monkeypatch):
    pw = FakePlaywright(launch_exc=PlaywrightError("Executable doesn't exist"))
    collector = _capture_with(monkeypatch, pw)

    assert len(collector) == 0
    assert pw.page.visited == []
    assert not pw.browser.closed
