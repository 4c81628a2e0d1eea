from __future__ import annotations

import logging
from typing import Optional

import httpx


LOGGER = logging.getLogger("bizbox.probe")


class UrlProbe:
    """HEAD-request reachability check for asset URLs."""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._timeout = timeout
        self._transport = transport

    def is_reachable(self, url: str) -> bool:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport, follow_redirects=True) as client:
                response = client.head(url)
        except httpx.HTTPError as exc:
            LOGGER.warning("HEAD %s failed: %s", url, exc)
            return False
        return response.is_success
