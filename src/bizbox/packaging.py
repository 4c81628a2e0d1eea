from __future__ import annotations

import io
import logging
import re
import uuid
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import httpx

from .catalog.loader import WorkCatalog
from .config import DeliveryConfig
from .errors import PackagingError, StorageError
from .persistence.records import ItemExecution, RunRecord
from .persistence.store import RunStore
from .schemas import DeliveryPackage, PackageFormat, Tier, utcnow
from .side_effects.brand import DOWNLOAD_URL
from .storage import LocalContentStore


LOGGER = logging.getLogger("bizbox.packaging")

ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
HANDOFF_GUIDES = (
    ("1-repository-setup.md", "Repository Setup", [
        "Create a private repository for the generated site code.",
        "Invite collaborators and protect the main branch.",
        "Add the environment variables listed in each guide as repository secrets.",
    ]),
    ("2-hosting-deployment.md", "Hosting & Deployment", [
        "Import the repository into your hosting provider.",
        "Configure the production domain and HTTPS.",
        "Enable preview deployments for pull requests.",
    ]),
    ("3-database-setup.md", "Database Setup", [
        "Provision a managed Postgres database.",
        "Run the schema migrations shipped with the site code.",
        "Store the connection string as DATABASE_URL.",
    ]),
    ("4-payments-config.md", "Payments Configuration", [
        "Create products and prices matching the pricing strategy document.",
        "Configure the checkout success and cancel URLs.",
        "Register the payment webhook endpoint and store its signing secret.",
    ]),
    ("5-email-service.md", "Email Service", [
        "Verify your sending domain (SPF, DKIM).",
        "Create an API key for transactional email.",
        "Wire the welcome and receipt templates to the signup and checkout flows.",
    ]),
)


@dataclass
class SectionBundle:
    """Completed executions of one section, in reading order."""

    name: str
    order_index: int
    executions: List[ItemExecution] = field(default_factory=list)


def slugify(value: str) -> str:
    value = value.replace("&", " and ").lower()
    value = re.sub(r"[^a-z0-9]+", "-", value)
    return value.strip("-") or "untitled"


def group_by_section(executions: List[ItemExecution]) -> List[SectionBundle]:
    """Group successful executions by section; sections follow their first item's ``order_index``."""

    bundles: Dict[str, SectionBundle] = {}
    for execution in sorted(executions, key=lambda entry: (entry.order_index, entry.item_id)):
        if not execution.succeeded or execution.superseded:
            continue
        bundle = bundles.get(execution.section)
        if bundle is None:
            bundle = bundles[execution.section] = SectionBundle(execution.section, execution.order_index)
        bundle.executions.append(execution)
    return sorted(bundles.values(), key=lambda bundle: bundle.order_index)


class DeliveryPackager:
    """
    Turn a run's completed executions into the deliverable for its tier.

    The smallest tier gets a single markdown report; larger tiers get a zip
    archive with one folder per section plus brand assets, deployment details
    and, for the turnkey tier, handoff guides.
    """

    def __init__(
        self,
        store: RunStore,
        content_store: LocalContentStore,
        catalog: WorkCatalog,
        delivery: Optional[DeliveryConfig] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
        asset_timeout: float = 30.0,
    ) -> None:
        self._store = store
        self._content = content_store
        self._catalog = catalog
        self._delivery = delivery or DeliveryConfig()
        self._http_transport = http_transport
        self._asset_timeout = asset_timeout

    def package(self, run_id: str, tier: Optional[Tier] = None) -> DeliveryPackage:
        run = self._store.get_run(run_id)
        if run is None:
            raise PackagingError(f"Unknown run {run_id}")
        if not run.status.is_terminal:
            raise PackagingError(f"Run {run_id} is still {run.status.value}")
        executions = self._store.list_executions(run_id)
        if not executions:
            raise PackagingError(f"Run {run_id} has no executions to package")

        tier = tier or run.tier
        generated_at = utcnow()
        if tier == Tier.smallest():
            payload = self.build_document(run, executions, generated_at).encode("utf-8")
            fmt, extension, content_type = PackageFormat.DOCUMENT, "md", "text/markdown"
        else:
            payload = self.build_archive(run, executions, generated_at, tier=tier)
            fmt, extension, content_type = PackageFormat.ARCHIVE, "zip", "application/zip"

        path = f"{run.owner_id}/{run_id}/{int(generated_at.timestamp() * 1000)}.{extension}"
        ttl = int(self._delivery.link_ttl_seconds)
        try:
            stored = self._content.upload(path, payload, content_type)
            url = self._content.signed_url(stored, ttl, now=generated_at)
        except StorageError as exc:
            raise PackagingError(f"Could not store package for run {run_id}: {exc}") from exc

        package = DeliveryPackage(
            package_id=uuid.uuid4().hex,
            run_id=run_id,
            owner_id=run.owner_id,
            tier=tier,
            format=fmt,
            storage_location=stored,
            download_url=url,
            size_bytes=len(payload),
            created_at=generated_at,
            expires_at=_expiry(generated_at, ttl),
        )
        self._store.save_package(package)
        self._store.record_event(
            run_id=run_id,
            event_type="package_created",
            message=f"{fmt.value} package created ({len(payload)} bytes).",
            payload={"package_id": package.package_id, "storage_location": stored},
        )
        LOGGER.info("Packaged run %s as %s (%d bytes)", run_id, fmt.value, len(payload))
        return package

    def download_url(self, package_id: str) -> DeliveryPackage:
        """Return the package, re-signing its link when the old one has expired."""

        package = self._store.get_package(package_id)
        if package is None:
            raise PackagingError(f"Unknown package {package_id}")
        if not package.is_expired():
            return package

        now = utcnow()
        ttl = int(self._delivery.link_ttl_seconds)
        try:
            url = self._content.signed_url(package.storage_location, ttl, now=now)
        except StorageError as exc:
            raise PackagingError(f"Could not refresh link for package {package_id}: {exc}") from exc
        expires_at = _expiry(now, ttl)
        self._store.update_package_link(package_id, url, expires_at)
        LOGGER.info("Refreshed expired download link for package %s", package_id)
        return package.model_copy(update={"download_url": url, "expires_at": expires_at})

    # rendering

    def build_document(self, run: RunRecord, executions: List[ItemExecution], generated_at: datetime) -> str:
        sections = group_by_section(executions)
        total = sum(len(section.executions) for section in sections)
        lines = [
            "# Business Validation Report",
            "",
            f"**Run ID**: {run.run_id}",
            f"**Generated**: {generated_at.isoformat()}",
            f"**Tier**: {run.tier.label}",
            f"**Total Analyses**: {total}",
            "",
            "---",
            "",
            "## Executive Summary",
            "",
            f"This report contains {total} core analyses to help you validate the business idea before "
            "making significant investments. Each section below covers one part of the market, the "
            "customer or the business model.",
            "",
            "---",
            "",
        ]
        for section in sections:
            lines.extend([f"## {section.name}", ""])
            for execution in section.executions:
                lines.extend([f"### {execution.display_name}", "", execution.output.strip(), "", "---", ""])

        gaps = _known_gaps(executions)
        if gaps:
            lines.extend(["## Known Gaps", ""])
            lines.extend(f"- {name}: {error}" for name, error in gaps)
            lines.append("")

        lines.extend(
            [
                "## Next Steps",
                "",
                "1. **Review Key Findings**: start with the competitive analysis and target audience sections.",
                "2. **Validate Assumptions**: test the pricing strategy with potential customers.",
                "3. **Refine Your Model**: use the go-to-market plan to outline your first 90 days.",
                "4. **Consider Upgrading**: the Launch Blueprint adds branding, product and launch material.",
                "",
                "---",
                "",
                f"*Generated by {self._delivery.product_name}*",
                "",
            ]
        )
        return "\n".join(lines)

    def build_archive(
        self,
        run: RunRecord,
        executions: List[ItemExecution],
        generated_at: datetime,
        tier: Optional[Tier] = None,
    ) -> bytes:
        tier = tier or run.tier
        sections = group_by_section(executions)
        entries: Dict[str, bytes] = {}
        folders: List[Tuple[str, SectionBundle, List[str]]] = []

        for section_number, section in enumerate(sections, start=1):
            folder = f"{section_number:02d}-{slugify(section.name)}"
            filenames = []
            for item_number, execution in enumerate(section.executions, start=1):
                filename = f"{item_number:02d}-{slugify(execution.display_name)}.md"
                filenames.append(filename)
                entries[f"{folder}/{filename}"] = _text(self._render_item(execution))
            entries[f"{folder}/README.md"] = _text(self._render_section_readme(section, filenames))
            folders.append((folder, section, filenames))

        logo_urls = _logo_urls(executions)
        if logo_urls:
            entries.update(self._logo_entries(logo_urls))

        if run.deployment.has_url:
            entries["deployment/README.md"] = _text(self._render_deployment_readme(run))
            entries["deployment/DEPLOYMENT_URLS.txt"] = _text(_deployment_urls(run, generated_at))

        if tier.at_least(Tier.TURNKEY_SYSTEM):
            entries.update(self._handoff_entries())

        entries["README.md"] = _text(self._render_manifest(run, tier, folders, executions, generated_at))
        return _zip(entries)

    def _render_item(self, execution: ItemExecution) -> str:
        return (
            f"# {execution.display_name}\n\n---\n\n{execution.output.strip()}\n\n---\n\n"
            f"*Tokens used: {execution.tokens_used:,}*\n"
        )

    def _render_section_readme(self, section: SectionBundle, filenames: List[str]) -> str:
        definition = self._catalog.section(section.name)
        lines = [f"# {section.name}", ""]
        if definition.description:
            lines.extend([definition.description, ""])
        lines.extend(["## Reading Order", ""])
        for filename, execution in zip(filenames, section.executions):
            lines.append(f"1. `{filename}` - {execution.display_name}")
        if definition.reading_guide:
            lines.extend(["", "## How to Use", "", definition.reading_guide])
        return "\n".join(lines) + "\n"

    def _render_manifest(
        self,
        run: RunRecord,
        tier: Tier,
        folders: List[Tuple[str, SectionBundle, List[str]]],
        executions: List[ItemExecution],
        generated_at: datetime,
    ) -> str:
        total = sum(len(filenames) for _, _, filenames in folders)
        lines = [
            f"# {self._delivery.product_name} - {tier.label}",
            "",
            f"**Run ID**: {run.run_id}",
            f"**Tier**: {tier.label}",
            f"**Generated**: {generated_at.isoformat()}",
            f"**Total Documents**: {total}",
            "",
            "## Folder Structure",
            "",
        ]
        for number, (folder, section, filenames) in enumerate(folders, start=1):
            lines.extend([f"### {number}. {section.name}", "", f"`{folder}/`", ""])
            lines.extend(f"- {filename}" for filename in filenames)
            lines.append("")

        lines.extend(["## Recommended Reading Order", ""])
        for number, (_, section, filenames) in enumerate(folders, start=1):
            lines.append(f"{number}. {section.name} ({len(filenames)} documents)")
        lines.append("")

        if run.deployment.has_url:
            lines.extend(["## Live Deployment", ""])
            if run.deployment.preview_url:
                lines.append(f"**Preview & Edit:** {run.deployment.preview_url}")
            if run.deployment.live_url:
                lines.append(f"**Live Demo:** {run.deployment.live_url}")
            lines.extend(["", "See the `deployment/` folder for details.", ""])

        gaps = _known_gaps(executions)
        if gaps:
            lines.extend(["## Known Gaps", "", "These analyses could not be generated and are not included:", ""])
            lines.extend(f"- {name}: {error}" for name, error in gaps)
            lines.append("")

        lines.extend(["## Support", "", f"Questions: {self._delivery.support_email}", ""])
        return "\n".join(lines)

    def _render_deployment_readme(self, run: RunRecord) -> str:
        deployment = run.deployment
        lines = ["# Deployment Information", "", "## Live URLs", "", "**Preview & Edit:**"]
        lines.append(f"- URL: {deployment.preview_url or 'Not available'}")
        lines.append(f"- Chat ID: {deployment.chat_id or 'Not available'}")
        if deployment.live_url:
            lines.extend(["", "**Live Demo:**", f"- URL: {deployment.live_url}"])
        lines.extend(
            [
                "",
                "## Next Steps",
                "",
                "1. Open the preview URL to review the generated application.",
                "2. Request refinements in the generator's chat interface.",
                "3. Publish to production from the generator once you are happy with it.",
            ]
        )
        return "\n".join(lines) + "\n"

    def _logo_entries(self, urls: List[str]) -> Dict[str, bytes]:
        entries: Dict[str, bytes] = {}
        listing = "\n".join(f"{index}. logo-variation-{index}.png - {url}" for index, url in enumerate(urls, start=1))
        entries["brand-assets/logos/README.md"] = _text(
            f"# Logo Variations\n\nThis folder contains {len(urls)} generated logo variations.\n\n"
            f"## Logo Files\n\n{listing}\n"
        )
        with httpx.Client(timeout=self._asset_timeout, transport=self._http_transport, follow_redirects=True) as client:
            for index, url in enumerate(urls, start=1):
                try:
                    response = client.get(url)
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    LOGGER.warning("Skipping logo %s: %s", url, exc)
                    continue
                if response.content:
                    entries[f"brand-assets/logos/logo-variation-{index}.png"] = response.content
        return entries

    def _handoff_entries(self) -> Dict[str, bytes]:
        entries = {}
        for filename, title, steps in HANDOFF_GUIDES:
            body = "\n".join(f"{number}. {step}" for number, step in enumerate(steps, start=1))
            entries[f"handoff/{filename}"] = _text(f"# {title}\n\n{body}\n")
        guide_list = "\n".join(f"- `{filename}` - {title}" for filename, title, _ in HANDOFF_GUIDES)
        entries["handoff/README.md"] = _text(
            "# Handoff Documentation\n\nSetup guides for running the system yourself. "
            f"Work through them in order.\n\n{guide_list}\n"
        )
        return entries


def _known_gaps(executions: List[ItemExecution]) -> List[Tuple[str, str]]:
    gaps = []
    for execution in sorted(executions, key=lambda entry: entry.order_index):
        if execution.succeeded or execution.superseded:
            continue
        gaps.append((execution.display_name, execution.output.replace("ERROR:", "", 1).strip()))
    return gaps


def _logo_urls(executions: List[ItemExecution]) -> List[str]:
    urls: List[str] = []
    for execution in sorted(executions, key=lambda entry: entry.order_index):
        if not execution.succeeded:
            continue
        for match in DOWNLOAD_URL.finditer(execution.output):
            url = match.group(1)
            if url not in urls:
                urls.append(url)
    return urls


def _deployment_urls(run: RunRecord, generated_at: datetime) -> str:
    deployment = run.deployment
    lines = [
        f"Preview & Edit: {deployment.preview_url or 'Not available'}",
        f"Chat ID: {deployment.chat_id or 'Not available'}",
    ]
    if deployment.live_url:
        lines.append(f"Live Demo: {deployment.live_url}")
    lines.extend(["", f"Generated: {generated_at.isoformat()}", ""])
    return "\n".join(lines)


def _expiry(start: datetime, ttl_seconds: int) -> datetime:
    return start.replace(microsecond=0) + timedelta(seconds=ttl_seconds)


def _text(value: str) -> bytes:
    return value.encode("utf-8")


def _zip(entries: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name in sorted(entries):
            info = zipfile.ZipInfo(name, date_time=ZIP_TIMESTAMP)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            archive.writestr(info, entries[name])
    return buffer.getvalue()
