from __future__ import annotations

import logging
import re
from typing import List, Optional

from ..errors import SideEffectError
from ..prompts import build_logo_brief_input
from ..schemas import DeploymentInfo, Tier, utcnow
from ..sdk.assets_client import MIN_BRIEF_LENGTH, ImageGenerationClient
from ..sdk.deploy_client import SiteDeployClient
from ..sdk.probe import UrlProbe
from .brand import extract_brand_profile, format_style_prompt
from .registry import SideEffectContext, SideEffectHandler, SideEffectRegistry, SideEffectResult, Trigger


LOGGER = logging.getLogger("bizbox.side_effects")

LOGO_ITEM_ID = "visual_identity_05"
SITE_ITEM_ID = "replit_site_16"
BRIEF_SYSTEM_INSTRUCTIONS = "You write image-generation prompts for logo designers."


class LogoFanOutHandler(SideEffectHandler):
    """Turn the visual identity output into logo variants."""

    name = "Logo Generation"

    def __init__(self, images: ImageGenerationClient, variations: int = 5, brief_max_tokens: int = 500) -> None:
        self._images = images
        self._variations = variations
        self._brief_max_tokens = brief_max_tokens

    def run(self, context: SideEffectContext) -> SideEffectResult:
        execution = context.execution
        completion = context.client.invoke(
            BRIEF_SYSTEM_INSTRUCTIONS,
            build_logo_brief_input(execution.output),
            max_tokens=self._brief_max_tokens,
        )
        brief = completion.text.strip()
        if len(brief) < MIN_BRIEF_LENGTH:
            raise SideEffectError("Failed to derive a usable image brief from the brand strategy")

        urls = self._images.generate(brief, self._variations)
        for index, url in enumerate(urls, start=1):
            context.store.record_artifact(
                run_id=context.run_id,
                item_id=execution.item_id,
                name=f"logo-variation-{index}.png",
                artifact_type="image",
                content_type="image/png",
                payload=url,
            )
        LOGGER.info("Generated %d logo variants for run %s", len(urls), context.run_id)
        return SideEffectResult(handler=self.name, succeeded=True, asset_urls=urls, annotation=_logo_section(urls))

    def failure_annotation(self, error: str) -> str:
        return (
            f"\n\n## Logo Generation\n\n⚠️ Logo generation failed: {error}\n\n"
            "Generate logos manually using the brand strategy above."
        )


def _logo_section(urls: List[str]) -> str:
    entries = [
        f"**Logo Variation {index}:**\n- Download: {url}\n- File: logo-variation-{index}.png\n"
        for index, url in enumerate(urls, start=1)
    ]
    return "\n\n## Generated Logo Files\n\n" + "\n".join(entries)


class SitePublishHandler(SideEffectHandler):
    """Publish the site brief to the deploy service, styled by the run's brand profile."""

    name = "Site Deployment"

    def __init__(self, deployer: SiteDeployClient, probe: UrlProbe, brand_item_id: str = LOGO_ITEM_ID) -> None:
        self._deployer = deployer
        self._probe = probe
        self._brand_item_id = brand_item_id

    def run(self, context: SideEffectContext) -> SideEffectResult:
        warnings: List[str] = []
        brand_execution = context.store.latest_execution(context.run_id, self._brand_item_id)
        profile = None
        if brand_execution is not None and brand_execution.succeeded:
            profile = extract_brand_profile(brand_execution.output)
            if profile.logos.primary and not self._probe.is_reachable(profile.logos.primary):
                warnings.append(f"⚠️ Primary logo URL was not reachable and was left out: {profile.logos.primary}")
                profile = profile.without_logos()
        else:
            LOGGER.info("No brand profile available for run %s; deploying with default styling", context.run_id)

        result = self._deployer.deploy(
            _clean_brief(context.execution.output),
            format_style_prompt(profile),
            wait_for_completion=True,
        )
        deployment = DeploymentInfo(
            chat_id=result.chat_id,
            preview_url=result.preview_url,
            live_url=result.live_url,
            deployed_at=utcnow(),
        )
        context.store.set_deployment(context.run_id, deployment)
        urls = [url for url in (result.preview_url, result.live_url) if url]
        for label, url in (("preview", result.preview_url), ("live", result.live_url)):
            if url:
                context.store.record_artifact(
                    run_id=context.run_id,
                    item_id=context.execution.item_id,
                    name=f"deployment-{label}",
                    artifact_type="deployment",
                    content_type="text/uri-list",
                    payload=url,
                )
        return SideEffectResult(
            handler=self.name,
            succeeded=True,
            asset_urls=urls,
            annotation=_deployment_section(result.chat_id, result.preview_url, result.live_url, result.status, warnings),
        )

    def failure_annotation(self, error: str) -> str:
        return (
            f"\n\n## Site Deployment\n\n⚠️ Automatic deployment failed: {error}\n\n"
            "The site brief above can still be used to build the application manually."
        )


def _clean_brief(output: str) -> str:
    text = re.sub(r"^```\w*\s*$", "", output.strip(), flags=re.MULTILINE)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    return f"Build a production-ready Next.js application with the following requirements:\n\n{text}"


def _deployment_section(
    chat_id: str,
    preview_url: Optional[str],
    live_url: Optional[str],
    status: str,
    warnings: List[str],
) -> str:
    lines = ["", "", "## Live Deployment", "", "**Preview & Edit:**"]
    lines.append(f"- URL: {preview_url or 'unavailable'}")
    lines.append(f"- Chat ID: {chat_id}")
    lines.append(f"- Status: {status}")
    if live_url:
        lines.extend(["", "**Live Demo:**", f"- URL: {live_url}"])
    if warnings:
        lines.append("")
        lines.extend(warnings)
    return "\n".join(lines)


def default_registry(
    store,
    images: ImageGenerationClient,
    deployer: SiteDeployClient,
    probe: UrlProbe,
    logo_variations: int = 5,
    brief_max_tokens: int = 500,
    max_attempts: int = 1,
) -> SideEffectRegistry:
    """The shipped trigger table: logo fan-out and site publish for paid tiers."""

    return SideEffectRegistry(
        store,
        triggers=[
            Trigger(
                LOGO_ITEM_ID,
                Tier.LAUNCH_BLUEPRINT,
                LogoFanOutHandler(images, variations=logo_variations, brief_max_tokens=brief_max_tokens),
            ),
            Trigger(SITE_ITEM_ID, Tier.LAUNCH_BLUEPRINT, SitePublishHandler(deployer, probe)),
        ],
        max_attempts=max_attempts,
    )
