from __future__ import annotations

from typing import Optional

import requests

from .console import RichLogger

DEFAULT_USER_AGENT = "ttscanner/1.0"
DEFAULT_PROBE_TIMEOUT = 10.0


class EndpointError(RuntimeError):
    pass


class EndpointProbe:
    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.user_agent = user_agent.strip() or DEFAULT_USER_AGENT
        self.timeout = timeout
        self.session = session or requests.Session()

    def check(self, endpoint: str) -> int:
        try:
            resp = self.session.get(
                endpoint,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            raise EndpointError(f"Network error contacting {endpoint}: {exc}") from exc
        if resp.status_code >= 500:
            raise EndpointError(f"{endpoint} answered {resp.status_code}")
        return resp.status_code


def probe_endpoint(endpoint: str, logger: RichLogger, probe: Optional[EndpointProbe] = None) -> bool:
    probe = probe or EndpointProbe()
    try:
        status = probe.check(endpoint)
    except EndpointError as exc:
        logger.warn(f"{exc}; scanning anyway")
        return False
    logger.debug(f"{endpoint} answered {status}")
    return True
