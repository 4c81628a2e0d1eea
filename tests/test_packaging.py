from __future__ import annotations

import io
import zipfile
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from bizbox.catalog import load_catalog
from bizbox.config import DeliveryConfig
from bizbox.errors import PackagingError
from bizbox.orchestrator import ExecutionEngine, RunRequest
from bizbox.packaging import DeliveryPackager, group_by_section, slugify
from bizbox.runtime import RunContext
from bizbox.schemas import DeploymentInfo, PackageFormat, Tier
from bizbox.storage import LocalContentStore

from conftest import FakeClient

GENERATED_AT = datetime(2025, 5, 1, 9, 30, tzinfo=timezone.utc)


def _packager(store, tmp_path, transport=None, ttl=3600):
    content = LocalContentStore(tmp_path / "content", "signing-secret", "https://files.test/downloads")
    return DeliveryPackager(
        store=store,
        content_store=content,
        catalog=load_catalog(),
        delivery=DeliveryConfig(link_ttl_seconds=ttl),
        http_transport=transport,
    )


def _run(store, tier, client=None, run_id="run-1"):
    engine = ExecutionEngine(load_catalog(), store)
    request = RunRequest(tier=tier, subject_text="a mobile dog grooming van", run_id=run_id, owner_id="owner-1")
    return engine.run(request, RunContext(client=client or FakeClient()))


def _names(payload):
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        return archive.namelist()


def _read(payload, name):
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        return archive.read(name).decode("utf-8")


def test_slugify():
    assert slugify("Business Model & Market Research") == "business-model-and-market-research"
    assert slugify("Go-To-Market Strategy & Growth") == "go-to-market-strategy-and-growth"
    assert slugify("!!!") == "untitled"


def test_validation_pack_is_a_single_document(store, tmp_path):
    _run(store, Tier.VALIDATION_PACK)
    packager = _packager(store, tmp_path)

    package = packager.package("run-1")

    assert package.format == PackageFormat.DOCUMENT
    assert package.storage_location.startswith("owner-1/run-1/")
    assert package.storage_location.endswith(".md")
    assert package.download_url.startswith("https://files.test/downloads/owner-1/run-1/")
    assert package.expires_at > package.created_at
    report = (tmp_path / "content" / package.storage_location).read_text(encoding="utf-8")
    assert report.startswith("# Business Validation Report")
    for name in (
        "Business Model Breakdown",
        "Competitive Analysis & Market Gaps",
        "Target Audience & Pain Points",
        "Product Pricing Strategy",
        "Go-To-Market Launch Plan",
    ):
        assert f"### {name}" in report
    assert "## Known Gaps" not in report
    assert store.get_package(package.package_id).download_url == package.download_url
    assert store.list_events("run-1", event_type="package_created")


def test_document_lists_failed_items_as_known_gaps(store, tmp_path):
    _run(store, Tier.VALIDATION_PACK, client=FakeClient(fail_on=["Define target audience"]))
    packager = _packager(store, tmp_path)
    run = store.get_run("run-1")

    report = packager.build_document(run, store.list_executions("run-1"), GENERATED_AT)

    assert "### Target Audience & Pain Points" not in report
    assert "## Known Gaps" in report
    assert "- Target Audience & Pain Points: service unavailable for Define target audience" in report


def test_archive_is_deterministic_for_fixed_timestamp(store, tmp_path):
    _run(store, Tier.LAUNCH_BLUEPRINT)
    packager = _packager(store, tmp_path)
    run = store.get_run("run-1")
    executions = store.list_executions("run-1")

    first = packager.build_archive(run, executions, GENERATED_AT)
    second = packager.build_archive(run, executions, GENERATED_AT)

    assert first == second
    names = _names(first)
    assert names == sorted(names)
    assert "README.md" in names
    assert "01-business-model-and-market-research/README.md" in names
    assert "01-business-model-and-market-research/01-business-model-breakdown.md" in names
    assert not any(name.startswith("handoff/") for name in names)
    assert not any(name.startswith("deployment/") for name in names)
    with zipfile.ZipFile(io.BytesIO(first)) as archive:
        assert {info.date_time for info in archive.infolist()} == {(1980, 1, 1, 0, 0, 0)}


def test_archive_manifest_and_section_readme(store, tmp_path):
    _run(store, Tier.LAUNCH_BLUEPRINT)
    packager = _packager(store, tmp_path)
    payload = packager.build_archive(store.get_run("run-1"), store.list_executions("run-1"), GENERATED_AT)

    manifest = _read(payload, "README.md")
    section = _read(payload, "01-business-model-and-market-research/README.md")

    assert manifest.startswith("# Business in a Box - Launch Blueprint")
    assert "**Total Documents**: 16" in manifest
    assert "## Recommended Reading Order" in manifest
    assert section.startswith("# Business Model & Market Research")
    assert "1. `01-business-model-breakdown.md` - Business Model Breakdown" in section
    assert "## How to Use" in section


def test_turnkey_archive_adds_handoff_guides(store, tmp_path):
    _run(store, Tier.TURNKEY_SYSTEM)
    packager = _packager(store, tmp_path)

    package = packager.package("run-1")

    payload = (tmp_path / "content" / package.storage_location).read_bytes()
    names = _names(payload)
    assert package.format == PackageFormat.ARCHIVE
    assert package.size_bytes == len(payload)
    assert "handoff/README.md" in names
    assert "handoff/1-repository-setup.md" in names
    assert "handoff/5-email-service.md" in names


def test_archive_includes_logos_and_deployment(store, tmp_path):
    _run(store, Tier.LAUNCH_BLUEPRINT)
    store.append_to_output(
        store.latest_execution("run-1", "visual_identity_05").id,
        "\n\n**Logo Variation 1:**\n- Download: https://img.test/1.png\n"
        "\n**Logo Variation 2:**\n- Download: https://img.test/2.png\n",
    )
    store.set_deployment(
        "run-1",
        DeploymentInfo(chat_id="chat-1", preview_url="https://deploy.test/chat-1", live_url="https://live.test"),
    )

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/1.png":
            return httpx.Response(200, content=b"\x89PNG-one")
        return httpx.Response(404)

    packager = _packager(store, tmp_path, transport=httpx.MockTransport(handler))
    payload = packager.build_archive(store.get_run("run-1"), store.list_executions("run-1"), GENERATED_AT)
    names = _names(payload)

    assert "brand-assets/logos/README.md" in names
    assert "brand-assets/logos/logo-variation-1.png" in names
    assert "brand-assets/logos/logo-variation-2.png" not in names
    assert "deployment/README.md" in names
    urls = _read(payload, "deployment/DEPLOYMENT_URLS.txt")
    assert "Preview & Edit: https://deploy.test/chat-1" in urls
    assert "Live Demo: https://live.test" in urls
    assert "**Live Demo:** https://live.test" in _read(payload, "README.md")


def test_tier_override_changes_format(store, tmp_path):
    _run(store, Tier.LAUNCH_BLUEPRINT)
    packager = _packager(store, tmp_path)

    package = packager.package("run-1", tier=Tier.VALIDATION_PACK)

    assert package.format == PackageFormat.DOCUMENT
    assert package.tier == Tier.VALIDATION_PACK


def test_expired_link_is_refreshed(store, tmp_path):
    _run(store, Tier.VALIDATION_PACK)
    packager = _packager(store, tmp_path)
    package = packager.package("run-1")
    past = datetime.now(timezone.utc) - timedelta(days=1)
    store.update_package_link(package.package_id, "https://files.test/stale", past)

    refreshed = packager.download_url(package.package_id)

    assert refreshed.download_url != "https://files.test/stale"
    assert not refreshed.is_expired()
    assert store.get_package(package.package_id).download_url == refreshed.download_url
    assert refreshed.storage_location == package.storage_location


def test_fresh_link_is_returned_unchanged(store, tmp_path):
    _run(store, Tier.VALIDATION_PACK)
    packager = _packager(store, tmp_path)
    package = packager.package("run-1")

    assert packager.download_url(package.package_id).download_url == package.download_url


def test_packaging_errors(store, tmp_path):
    packager = _packager(store, tmp_path)

    with pytest.raises(PackagingError, match="Unknown run"):
        packager.package("missing")

    store.create_run(run_id="empty", owner_id="owner-1", tier=Tier.VALIDATION_PACK, subject_text="x")
    with pytest.raises(PackagingError, match="still pending"):
        packager.package("empty")

    store.fail_run("empty", "aborted")
    with pytest.raises(PackagingError, match="no executions"):
        packager.package("empty")

    with pytest.raises(PackagingError, match="Unknown package"):
        packager.download_url("nope")


def test_in_progress_run_is_not_packaged(store, tmp_path):
    store.create_run(run_id="busy", owner_id="owner-1", tier=Tier.VALIDATION_PACK, subject_text="x")
    store.start_run("busy", 5)
    store.record_execution(
        run_id="busy",
        item_id="business_model_01",
        display_name="Business Model",
        section="Business Model & Market Research",
        order_index=1,
        resolved_input="input",
        output="Half done",
        status="completed",
        tokens_used=1,
        duration_ms=1,
    )

    with pytest.raises(PackagingError, match="still in_progress"):
        _packager(store, tmp_path).package("busy")
    assert store.latest_package("busy") is None


def test_group_by_section_skips_failures(store):
    _run(store, Tier.VALIDATION_PACK, client=FakeClient(fail_on=["Analyze business model"]))

    bundles = group_by_section(store.list_executions("run-1"))

    assert bundles[0].name == "Business Model & Market Research"
    assert [execution.item_id for execution in bundles[0].executions] == [
        "competitive_analysis_02",
        "target_audience_03",
    ]
