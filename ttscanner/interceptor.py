from __future__ import annotations

import asyncio
import base64
from typing import Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .collector import ViolationCollector
from .config import ScanConfig
from .console import RichLogger

POLICY_HEADER = "Content-Security-Policy-Report-Only"
DOCUMENT = "Document"
VIOLATION_REPORT = "CSPViolationReport"


class InterceptionError(RuntimeError):
    pass


def build_fetch_patterns(report_stage: str) -> List[Dict[str, str]]:
    return [
        {"requestStage": "Response", "resourceType": DOCUMENT},
        {"requestStage": report_stage.capitalize(), "resourceType": VIOLATION_REPORT},
    ]


def extract_post_data(request: Dict[str, object]) -> Optional[str]:
    post_data = request.get("postData")
    if isinstance(post_data, str):
        return post_data
    entries = request.get("postDataEntries")
    if not isinstance(entries, list):
        return None
    chunks = []
    for entry in entries:
        if isinstance(entry, dict) and isinstance(entry.get("bytes"), str):
            chunks.append(base64.b64decode(entry["bytes"]))
    if not chunks:
        return None
    return b"".join(chunks).decode("utf-8", errors="replace")


class ViolationInterceptor:
    """Drive a CDP ``Fetch`` session: inject the report-only policy into
    documents and hand every violation report to the collector."""

    def __init__(self, client, collector: ViolationCollector, config: ScanConfig, logger: RichLogger):
        self.client = client
        self.collector = collector
        self.config = config
        self.logger = logger
        self.reports_seen = 0
        self.documents_patched = 0

    async def enable(self) -> None:
        self.client.on("Fetch.requestPaused", self.on_request_paused)
        try:
            await self.client.send("Fetch.enable", {"patterns": build_fetch_patterns(self.config.report_stage)})
        except PlaywrightError as exc:
            raise InterceptionError(f"Failed to enable request interception: {exc}") from exc

    async def on_request_paused(self, event: Dict[str, object]) -> None:
        request_id = event.get("requestId")
        resource_type = event.get("resourceType")
        request = event.get("request") or {}
        self.logger.debug(f"Intercepted {request.get('url')} {{interception id: {request_id}}}")
        try:
            if resource_type == VIOLATION_REPORT:
                await self._handle_report(request_id, request)
            elif resource_type == DOCUMENT:
                await self._handle_document(request_id, event)
            else:
                await self.client.send("Fetch.continueRequest", {"requestId": request_id})
        except Exception as exc:
            self.logger.error(f"Interception of {request.get('url')} failed: {exc}")
            await self._release(request_id)

    async def _release(self, request_id) -> None:
        # A request left paused stalls the page until the navigation timeout.
        try:
            await self.client.send("Fetch.continueRequest", {"requestId": request_id})
        except Exception as exc:
            self.logger.debug(f"Could not release {request_id}: {exc}")

    async def _handle_report(self, request_id, request: Dict[str, object]) -> None:
        payload = extract_post_data(request)
        if payload is not None:
            self.reports_seen += 1
            self.collector.ingest(payload)
        await self.client.send(
            "Fetch.fulfillRequest",
            {"requestId": request_id, "responseCode": 204, "responseHeaders": []},
        )

    async def _handle_document(self, request_id, event: Dict[str, object]) -> None:
        status = int(event.get("responseStatusCode") or 200)
        if 300 <= status < 400:
            await self.client.send("Fetch.continueRequest", {"requestId": request_id})
            return

        headers = [
            h for h in (event.get("responseHeaders") or []) if str(h.get("name", "")).lower() != POLICY_HEADER.lower()
        ]
        headers.append({"name": POLICY_HEADER, "value": self.config.policy_header})

        response = await self.client.send("Fetch.getResponseBody", {"requestId": request_id})
        body = response.get("body", "")
        if not response.get("base64Encoded"):
            body = base64.b64encode(body.encode("utf-8")).decode("ascii")

        self.logger.debug(f"Continuing interception {request_id}")
        await self.client.send(
            "Fetch.fulfillRequest",
            {
                "requestId": request_id,
                "responseCode": status,
                "responseHeaders": headers,
                "body": body,
            },
        )
        self.documents_patched += 1


def _clear_cancellation() -> None:
    task = asyncio.current_task()
    if task is not None and getattr(task, "cancelling", None) and task.cancelling():
        task.uncancel()


async def capture(config: ScanConfig, collector: ViolationCollector, logger: RichLogger) -> ViolationCollector:
    """Navigate to the endpoint and collect violation reports until the page settles.

    Setup and navigation failures are logged, and so is an operator interrupt;
    whatever was captured up to that point is returned so the report can still
    be produced.
    """
    try:
        async with async_playwright() as pw:
            try:
                browser = await pw.chromium.launch(headless=config.headless)
            except PlaywrightError as exc:
                raise InterceptionError(f"Failed to launch browser: {exc}") from exc
            try:
                context = await browser.new_context()
                page = await context.new_page()
                client = await context.new_cdp_session(page)
                interceptor = ViolationInterceptor(client, collector, config, logger)
                await interceptor.enable()

                logger.info(f"Scanning {config.endpoint}")
                try:
                    await page.goto(
                        config.endpoint,
                        wait_until="networkidle",
                        timeout=config.navigation_timeout * 1000,
                    )
                    if config.settle_seconds:
                        await asyncio.sleep(config.settle_seconds)
                except PlaywrightError as exc:
                    logger.error(f"Navigation to {config.endpoint} failed: {exc}")
                except asyncio.CancelledError:
                    _clear_cancellation()
                    logger.warn("Scan interrupted, reporting what was captured")
                logger.debug(
                    f"Patched {interceptor.documents_patched} document(s), "
                    f"received {interceptor.reports_seen} report(s)"
                )
            finally:
                await browser.close()
    except InterceptionError as exc:
        logger.error(str(exc))
    except PlaywrightError as exc:
        logger.error(f"Browser session failed: {exc}")
    return collector
