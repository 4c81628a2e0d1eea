"""Client for the external site-generation and publish service."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from ..errors import SideEffectError


LOGGER = logging.getLogger("bizbox.deploy")

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert full-stack developer. Build a production-ready Next.js application "
    "based on the requirements provided. Use TypeScript and Tailwind CSS."
)


@dataclass
class DeployResult:
    chat_id: str
    preview_url: Optional[str]
    live_url: Optional[str]
    status: str


class SiteDeployClient:
    """Create a generation chat, then optionally poll until its latest version settles."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        max_polls: int = 20,
        poll_interval: float = 3.0,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._max_polls = max_polls
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._transport = transport
        self._sleep = sleep

    def deploy(self, brief: str, style_prompt: str, wait_for_completion: bool = True) -> DeployResult:
        if not self._api_key:
            raise SideEffectError("Deploy API key is not configured")
        if not brief or len(brief.strip()) < 20:
            raise SideEffectError("Deploy brief must be at least 20 characters long")

        system = f"{DEFAULT_SYSTEM_PROMPT}\n\n{style_prompt}" if style_prompt else DEFAULT_SYSTEM_PROMPT
        with self._client() as client:
            try:
                response = client.post(
                    "/chats",
                    json={
                        "message": brief,
                        "system": system,
                        "chatPrivacy": "private",
                        "responseMode": "sync",
                    },
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise SideEffectError(f"Deploy request failed: {exc}") from exc

            chat = response.json()
            chat_id = chat.get("id")
            if not chat_id:
                raise SideEffectError("Invalid response from deploy service - no chat id returned")
            LOGGER.info("Deploy chat created: %s", chat_id)

            result = DeployResult(
                chat_id=str(chat_id),
                preview_url=chat.get("webUrl"),
                live_url=_demo_url(chat),
                status=_version_status(chat) or "pending",
            )
            if wait_for_completion and result.status == "pending":
                settled = self._wait_for_completion(client, result.chat_id)
                if settled is not None:
                    result.status = _version_status(settled) or "completed"
                    result.live_url = _demo_url(settled) or result.live_url
                    result.preview_url = settled.get("webUrl") or result.preview_url
        if result.status == "failed":
            raise SideEffectError(f"Deploy generation failed for chat {result.chat_id}")
        return result

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    def _wait_for_completion(self, client: httpx.Client, chat_id: str) -> Optional[Dict[str, Any]]:
        for attempt in range(1, self._max_polls + 1):
            if attempt > 1:
                self._sleep(self._poll_interval)
            try:
                response = client.get(f"/chats/{chat_id}")
                response.raise_for_status()
            except httpx.HTTPError as exc:
                LOGGER.warning("Deploy status poll %d/%d failed: %s", attempt, self._max_polls, exc)
                continue
            chat = response.json()
            status = _version_status(chat)
            LOGGER.debug("Deploy status for %s: %s", chat_id, status)
            if status in ("completed", "failed"):
                return chat
        LOGGER.warning("Deploy chat %s still pending after %d polls", chat_id, self._max_polls)
        return None


def _version_status(chat: Dict[str, Any]) -> Optional[str]:
    version = chat.get("latestVersion") or {}
    return version.get("status")


def _demo_url(chat: Dict[str, Any]) -> Optional[str]:
    version = chat.get("latestVersion") or {}
    return version.get("demoUrl")
