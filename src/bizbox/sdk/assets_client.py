"""Image-generation service client used by the logo fan-out."""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

import httpx

from ..errors import SideEffectError


LOGGER = logging.getLogger("bizbox.assets")

MIN_BRIEF_LENGTH = 20


class ImageGenerationClient:
    """
    Request square PNG variants for a brief, one HTTP call per variant.

    Individual variant failures are logged and skipped. Only when every
    variant fails does :meth:`generate` raise :class:`SideEffectError`.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        model: str = "FLUX.1-schnell",
        timeout: float = 60.0,
        delay_between_requests: float = 0.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._delay = delay_between_requests
        self._transport = transport
        self._sleep = sleep

    def generate(self, brief: str, count: int) -> List[str]:
        if not self._api_key:
            raise SideEffectError("Image generation API key is not configured")
        if not brief or len(brief.strip()) < MIN_BRIEF_LENGTH:
            raise SideEffectError(f"Invalid image brief - must be at least {MIN_BRIEF_LENGTH} characters")

        LOGGER.info("Generating %d image variants", count)
        urls: List[str] = []
        errors: List[str] = []
        seed_base = int(time.time() * 1000)
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            for index in range(count):
                try:
                    urls.append(self._generate_one(client, brief, seed_base + index))
                except (httpx.HTTPError, SideEffectError, ValueError) as exc:
                    LOGGER.warning("Image variant %d/%d failed: %s", index + 1, count, exc)
                    errors.append(f"Variant {index + 1}: {exc}")
                if self._delay and index < count - 1:
                    self._sleep(self._delay)

        if not urls:
            raise SideEffectError("All image generation attempts failed: " + "; ".join(errors))
        if errors:
            LOGGER.warning("Generated %d/%d image variants", len(urls), count)
        return urls

    def _generate_one(self, client: httpx.Client, brief: str, seed: int) -> str:
        response = client.post(
            self._api_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "model": self._model,
                "input": {
                    "prompt": brief,
                    "aspect_ratio": "1:1",
                    "output_format": "png",
                    "output_quality": 95,
                    "num_outputs": 1,
                    "seed": seed,
                },
                "permanent": True,
            },
        )
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            raise SideEffectError(f"Image service error: {data['error']}")
        output = data.get("output") or []
        if not output:
            raise SideEffectError("No image URL in response")
        return str(output[0])
