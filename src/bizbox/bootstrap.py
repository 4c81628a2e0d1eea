"""Wire configuration into the engine, store, packager and side effects."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from typing import Optional

import httpx

from .catalog import WorkCatalog, load_catalog
from .config import AppConfig
from .orchestrator import ExecutionEngine
from .packaging import DeliveryPackager
from .persistence import RunStore
from .progress import ProgressBroadcaster, RecordingSink
from .runtime import CancellationToken, ConcurrencyBudget, RunContext
from .sdk import (
    GenerativeClient,
    ImageGenerationClient,
    OpenAIClientFactory,
    RetrievalProvider,
    SiteDeployClient,
    UrlProbe,
)
from .side_effects import SideEffectRegistry, default_registry
from .storage import LocalContentStore


LOGGER = logging.getLogger("bizbox.bootstrap")


@dataclass
class Services:
    """Long-lived collaborators shared by every run of one process."""

    config: AppConfig
    catalog: WorkCatalog
    store: RunStore
    content_store: LocalContentStore
    registry: SideEffectRegistry
    engine: ExecutionEngine
    packager: DeliveryPackager
    budget: ConcurrencyBudget
    client: GenerativeClient
    retrieval: Optional[RetrievalProvider] = None

    def new_context(
        self,
        broadcaster: Optional[ProgressBroadcaster] = None,
        cancellation: Optional[CancellationToken] = None,
        client: Optional[GenerativeClient] = None,
    ) -> RunContext:
        """Per-run context whose progress is always recorded to the event table."""

        broadcaster = broadcaster or ProgressBroadcaster()
        broadcaster.subscribe(RecordingSink(self.store))
        return RunContext(
            client=client or self.client,
            progress=broadcaster,
            cancellation=cancellation or CancellationToken(),
            budget=self.budget,
        )


def build_services(
    config: AppConfig,
    client: Optional[GenerativeClient] = None,
    retrieval: Optional[RetrievalProvider] = None,
    http_transport: Optional[httpx.BaseTransport] = None,
) -> Services:
    config.paths.data_dir.mkdir(parents=True, exist_ok=True)
    config.paths.content_dir.mkdir(parents=True, exist_ok=True)

    catalog = load_catalog(config.catalog_path)
    store = RunStore.from_url(config.database_url)
    services_cfg = config.services

    images = ImageGenerationClient(
        api_url=services_cfg.image_api_url,
        api_key=os.getenv(services_cfg.image_api_key_env),
        model=services_cfg.image_model,
        timeout=services_cfg.http_timeout,
        transport=http_transport,
    )
    deployer = SiteDeployClient(
        base_url=services_cfg.deploy_api_url,
        api_key=os.getenv(services_cfg.deploy_api_key_env),
        max_polls=services_cfg.deploy_max_polls,
        poll_interval=services_cfg.deploy_poll_interval,
        timeout=services_cfg.http_timeout,
        transport=http_transport,
    )
    registry = default_registry(
        store,
        images=images,
        deployer=deployer,
        probe=UrlProbe(transport=http_transport),
        logo_variations=services_cfg.logo_variations,
        brief_max_tokens=config.engine.brief_max_tokens,
        max_attempts=services_cfg.side_effect_max_attempts,
    )

    signing_key = os.getenv(config.delivery.signing_key_env)
    if not signing_key:
        LOGGER.warning(
            "%s not set - download links are signed with a per-process key and stop working after restart.",
            config.delivery.signing_key_env,
        )
        signing_key = secrets.token_hex(32)
    content_store = LocalContentStore(config.paths.content_dir, signing_key, config.delivery.public_base_url)

    engine = ExecutionEngine(
        catalog=catalog,
        store=store,
        registry=registry,
        max_parallel_items=config.engine.max_parallel_items,
    )
    packager = DeliveryPackager(
        store=store,
        content_store=content_store,
        catalog=catalog,
        delivery=config.delivery,
        http_transport=http_transport,
        asset_timeout=services_cfg.http_timeout,
    )
    return Services(
        config=config,
        catalog=catalog,
        store=store,
        content_store=content_store,
        registry=registry,
        engine=engine,
        packager=packager,
        budget=ConcurrencyBudget(config.engine.shared_concurrency),
        client=client or OpenAIClientFactory.create(config.openai, dry_run=config.dry_run),
        retrieval=retrieval,
    )
