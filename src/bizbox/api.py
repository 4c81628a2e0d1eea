"""HTTP surface: start runs, stream progress, package and download deliverables."""
from __future__ import annotations

import logging
import mimetypes
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from . import __version__
from .bootstrap import Services, build_services
from .config import load_config
from .errors import ConfigurationError, PackagingError, StorageError
from .orchestrator import RunRequest
from .progress import poll_progress, to_ndjson
from .schemas import DeliveryPackage, DeploymentInfo, RunStatus, Tier
from .sdk import load_retrieved_context


LOGGER = logging.getLogger("bizbox.api")

router = APIRouter()


class RunCreateRequest(BaseModel):
    subject: str = Field(..., min_length=1, description="Natural-language business description")
    tier: str = Field(..., description="VALIDATION_PACK, LAUNCH_BLUEPRINT or TURNKEY_SYSTEM")
    owner_id: str = "anonymous"
    run_id: Optional[str] = None


class RunResponse(BaseModel):
    run_id: str
    owner_id: str
    tier: Tier
    status: RunStatus
    completed_count: int
    failed_count: int
    total_count: int
    tokens_used: int
    elapsed_ms: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    deployment: DeploymentInfo
    error: Optional[str] = None


class CatalogItemResponse(BaseModel):
    id: str
    display_name: str
    section: str
    order_index: int
    depends_on: List[str]


class RunLauncher:
    """Runs the engine on background threads so requests return immediately."""

    def __init__(self, services: Services) -> None:
        self._services = services
        self._threads: Dict[str, threading.Thread] = {}

    def launch(self, request: RunRequest) -> None:
        self._services.engine.prepare(request, config=self._services.config.to_dict())
        thread = threading.Thread(target=self._execute, args=(request,), name=f"run-{request.run_id}", daemon=True)
        self._threads[request.run_id] = thread
        thread.start()

    def join(self, run_id: str, timeout: Optional[float] = None) -> None:
        thread = self._threads.get(run_id)
        if thread is not None:
            thread.join(timeout)

    def _execute(self, request: RunRequest) -> None:
        services = self._services
        try:
            request.retrieved_context = load_retrieved_context(
                services.retrieval, request.owner_id, request.subject_text
            )
            services.engine.run(request, services.new_context())
        except ConfigurationError as exc:
            LOGGER.error("Run %s rejected: %s", request.run_id, exc)
        except Exception:
            LOGGER.exception("Background run %s crashed", request.run_id)
            services.store.fail_run(request.run_id, "Run crashed; see server logs")
        finally:
            self._threads.pop(request.run_id, None)

    @property
    def active_runs(self) -> List[str]:
        return list(self._threads)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_launcher(request: Request) -> RunLauncher:
    return request.app.state.launcher


@router.get("/health")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.post("/runs", status_code=202)
def create_run(
    payload: RunCreateRequest,
    services: Services = Depends(get_services),
    launcher: RunLauncher = Depends(get_launcher),
) -> Dict[str, str]:
    try:
        tier = Tier.parse(payload.tier)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    request = RunRequest(tier=tier, subject_text=payload.subject, owner_id=payload.owner_id)
    if payload.run_id:
        if services.store.get_run(payload.run_id) is not None:
            raise HTTPException(status_code=409, detail=f"Run {payload.run_id} already exists")
        request.run_id = payload.run_id
    launcher.launch(request)
    return {"run_id": request.run_id, "status": RunStatus.PENDING.value}


@router.get("/runs/{run_id}", response_model=RunResponse)
def get_run(run_id: str, services: Services = Depends(get_services)) -> RunResponse:
    run = services.store.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Unknown run {run_id}")
    return RunResponse(
        run_id=run.run_id,
        owner_id=run.owner_id,
        tier=run.tier,
        status=run.status,
        completed_count=run.completed_count,
        failed_count=run.failed_count,
        total_count=run.total_count,
        tokens_used=run.tokens_used,
        elapsed_ms=run.elapsed_ms,
        started_at=run.started_at,
        completed_at=run.completed_at,
        deployment=run.deployment,
        error=run.error,
    )


@router.get("/runs/{run_id}/progress")
def stream_progress(run_id: str, services: Services = Depends(get_services)) -> StreamingResponse:
    if services.store.get_run(run_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown run {run_id}")
    snapshots = poll_progress(services.store, run_id, interval=services.config.progress_poll_interval)
    return StreamingResponse(
        (to_ndjson(snapshot) for snapshot in snapshots),
        media_type="application/x-ndjson",
    )


@router.get("/runs/{run_id}/summary")
def run_summary(run_id: str, services: Services = Depends(get_services)) -> Dict:
    try:
        return services.engine.execution_summary(run_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown run {run_id}") from exc


@router.post("/runs/{run_id}/package", response_model=DeliveryPackage, status_code=201)
def package_run(run_id: str, services: Services = Depends(get_services)) -> DeliveryPackage:
    run = services.store.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Unknown run {run_id}")
    try:
        return services.packager.package(run_id)
    except PackagingError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get("/packages/{package_id}", response_model=DeliveryPackage)
def get_package(package_id: str, services: Services = Depends(get_services)) -> DeliveryPackage:
    if services.store.get_package(package_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown package {package_id}")
    try:
        return services.packager.download_url(package_id)
    except PackagingError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get("/downloads/{path:path}")
def download(path: str, expires: int, signature: str, services: Services = Depends(get_services)) -> Response:
    content = services.content_store
    try:
        valid = content.verify(path, expires, signature)
    except StorageError:
        valid = False
    if not valid:
        raise HTTPException(status_code=403, detail="Link is invalid or has expired")
    try:
        data = content.read(path)
    except StorageError as exc:
        raise HTTPException(status_code=404, detail="Package not found") from exc
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    filename = path.rsplit("/", 1)[-1]
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/catalog/{tier}", response_model=List[CatalogItemResponse])
def list_catalog(tier: str, services: Services = Depends(get_services)) -> List[CatalogItemResponse]:
    try:
        parsed = Tier.parse(tier)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return [
        CatalogItemResponse(
            id=item.id,
            display_name=item.display_name,
            section=item.section,
            order_index=item.order_index,
            depends_on=list(item.depends_on),
        )
        for item in services.catalog.items_for_tier(parsed)
    ]


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(title="Business in a Box Engine", version=__version__)
    app.state.services = services or build_services(load_config(None))
    app.state.launcher = RunLauncher(app.state.services)
    app.include_router(router)
    return app
