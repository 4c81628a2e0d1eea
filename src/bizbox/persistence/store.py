from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from ..schemas import DeliveryPackage, DeploymentInfo, PackageFormat, RunStatus, Tier, utcnow
from .models import (
    ArtifactRow,
    DeliveryPackageRow,
    ItemExecutionRow,
    RunEventRow,
    RunRow,
    create_session_factory,
    session_scope,
)
from .records import ArtifactRecord, ItemExecution, RunEvent, RunRecord


LOGGER = logging.getLogger("bizbox.store")


class RunStore:
    """
    SQLAlchemy-backed artifact store.

    Runs own their item executions, artifacts and events; deleting a run
    cascades to all of them. Delivery packages only reference a run by id.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "RunStore":
        return cls(create_session_factory(database_url, echo=echo))

    # runs

    def create_run(
        self,
        run_id: str,
        owner_id: str,
        tier: Tier,
        subject_text: str,
        config: Optional[Dict[str, Any]] = None,
    ) -> RunRecord:
        with session_scope(self._session_factory) as session:
            row = RunRow(
                run_id=run_id,
                owner_id=owner_id,
                tier=tier.value,
                subject_text=subject_text,
                status=RunStatus.PENDING.value,
                config=config or {},
                started_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _run_record(row)

    def start_run(self, run_id: str, total_count: int) -> None:
        self._update_run(run_id, status=RunStatus.IN_PROGRESS.value, total_count=total_count, started_at=utcnow())

    def update_counters(self, run_id: str, completed_count: int, failed_count: int, tokens_used: int) -> None:
        self._update_run(
            run_id,
            completed_count=completed_count,
            failed_count=failed_count,
            tokens_used=tokens_used,
        )

    def finalize_run(
        self,
        run_id: str,
        status: RunStatus,
        completed_count: int,
        failed_count: int,
        total_count: int,
        tokens_used: int,
        elapsed_ms: int,
        error: Optional[str] = None,
    ) -> None:
        self._update_run(
            run_id,
            status=status.value,
            completed_count=completed_count,
            failed_count=failed_count,
            total_count=total_count,
            tokens_used=tokens_used,
            elapsed_ms=elapsed_ms,
            error=error,
            completed_at=utcnow(),
        )

    def fail_run(self, run_id: str, error: str) -> None:
        self._update_run(run_id, status=RunStatus.FAILED.value, error=error, completed_at=utcnow())

    def set_deployment(self, run_id: str, deployment: DeploymentInfo) -> None:
        self._update_run(
            run_id,
            deploy_chat_id=deployment.chat_id,
            deploy_preview_url=deployment.preview_url,
            deploy_live_url=deployment.live_url,
            deployed_at=deployment.deployed_at or utcnow(),
        )

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        with session_scope(self._session_factory) as session:
            row = session.scalar(select(RunRow).where(RunRow.run_id == run_id))
            return _run_record(row) if row else None

    def delete_run(self, run_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            row = session.scalar(select(RunRow).where(RunRow.run_id == run_id))
            if row is None:
                return False
            session.delete(row)
            return True

    def _update_run(self, run_id: str, **values: Any) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(update(RunRow).where(RunRow.run_id == run_id).values(**values))

    # item executions

    def record_execution(
        self,
        run_id: str,
        item_id: str,
        display_name: str,
        section: str,
        order_index: int,
        resolved_input: str,
        output: str,
        status: str,
        tokens_used: int,
        duration_ms: int,
    ) -> ItemExecution:
        """Persist an execution, superseding any earlier one for the same item."""
        with session_scope(self._session_factory) as session:
            session.execute(
                update(ItemExecutionRow)
                .where(ItemExecutionRow.run_id == run_id, ItemExecutionRow.item_id == item_id)
                .values(superseded=True)
            )
            row = ItemExecutionRow(
                run_id=run_id,
                item_id=item_id,
                display_name=display_name,
                section=section,
                order_index=order_index,
                resolved_input=resolved_input,
                output=output,
                status=status,
                tokens_used=tokens_used,
                duration_ms=duration_ms,
                executed_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _execution_record(row)

    def append_to_output(self, execution_id: int, section_text: str) -> str:
        with session_scope(self._session_factory) as session:
            row = session.get(ItemExecutionRow, execution_id)
            if row is None:
                raise KeyError(f"Unknown execution id {execution_id}")
            row.output = f"{row.output}{section_text}"
            return row.output

    def get_execution(self, execution_id: int) -> Optional[ItemExecution]:
        with session_scope(self._session_factory) as session:
            row = session.get(ItemExecutionRow, execution_id)
            return _execution_record(row) if row else None

    def latest_execution(self, run_id: str, item_id: str) -> Optional[ItemExecution]:
        with session_scope(self._session_factory) as session:
            row = session.scalar(
                select(ItemExecutionRow)
                .where(
                    ItemExecutionRow.run_id == run_id,
                    ItemExecutionRow.item_id == item_id,
                    ItemExecutionRow.superseded.is_(False),
                )
                .order_by(ItemExecutionRow.id.desc())
            )
            return _execution_record(row) if row else None

    def list_executions(self, run_id: str, include_superseded: bool = False) -> List[ItemExecution]:
        """Executions for a run in creation order."""
        with session_scope(self._session_factory) as session:
            query = select(ItemExecutionRow).where(ItemExecutionRow.run_id == run_id)
            if not include_superseded:
                query = query.where(ItemExecutionRow.superseded.is_(False))
            rows = session.scalars(query.order_by(ItemExecutionRow.id)).all()
            return [_execution_record(row) for row in rows]

    # artifacts and events

    def record_artifact(
        self,
        run_id: str,
        name: str,
        artifact_type: str,
        payload: str,
        content_type: str = "text/markdown",
        item_id: Optional[str] = None,
    ) -> ArtifactRecord:
        with session_scope(self._session_factory) as session:
            row = ArtifactRow(
                run_id=run_id,
                item_id=item_id,
                name=name,
                artifact_type=artifact_type,
                content_type=content_type,
                payload=payload,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _artifact_record(row)

    def list_artifacts(self, run_id: str, artifact_type: Optional[str] = None) -> List[ArtifactRecord]:
        with session_scope(self._session_factory) as session:
            query = select(ArtifactRow).where(ArtifactRow.run_id == run_id)
            if artifact_type:
                query = query.where(ArtifactRow.artifact_type == artifact_type)
            rows = session.scalars(query.order_by(ArtifactRow.id)).all()
            return [_artifact_record(row) for row in rows]

    def record_event(
        self,
        run_id: str,
        event_type: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            session.add(
                RunEventRow(
                    run_id=run_id,
                    event_type=event_type,
                    message=message,
                    payload=payload or {},
                    created_at=utcnow(),
                )
            )

    def list_events(
        self,
        run_id: str,
        event_type: Optional[str] = None,
        after_id: int = 0,
    ) -> List[RunEvent]:
        with session_scope(self._session_factory) as session:
            query = select(RunEventRow).where(RunEventRow.run_id == run_id, RunEventRow.id > after_id)
            if event_type:
                query = query.where(RunEventRow.event_type == event_type)
            rows = session.scalars(query.order_by(RunEventRow.id)).all()
            return [
                RunEvent(
                    id=row.id,
                    run_id=row.run_id,
                    event_type=row.event_type,
                    message=row.message,
                    payload=dict(row.payload or {}),
                    created_at=row.created_at,
                )
                for row in rows
            ]

    # delivery packages

    def save_package(self, package: DeliveryPackage) -> None:
        with session_scope(self._session_factory) as session:
            session.add(
                DeliveryPackageRow(
                    package_id=package.package_id,
                    run_id=package.run_id,
                    owner_id=package.owner_id,
                    tier=package.tier.value,
                    format=package.format.value,
                    storage_location=package.storage_location,
                    download_url=package.download_url,
                    size_bytes=package.size_bytes,
                    created_at=package.created_at,
                    expires_at=package.expires_at,
                )
            )

    def get_package(self, package_id: str) -> Optional[DeliveryPackage]:
        with session_scope(self._session_factory) as session:
            row = session.scalar(select(DeliveryPackageRow).where(DeliveryPackageRow.package_id == package_id))
            return _package_record(row) if row else None

    def latest_package(self, run_id: str) -> Optional[DeliveryPackage]:
        with session_scope(self._session_factory) as session:
            row = session.scalar(
                select(DeliveryPackageRow)
                .where(DeliveryPackageRow.run_id == run_id)
                .order_by(DeliveryPackageRow.id.desc())
            )
            return _package_record(row) if row else None

    def update_package_link(self, package_id: str, download_url: str, expires_at: datetime) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                update(DeliveryPackageRow)
                .where(DeliveryPackageRow.package_id == package_id)
                .values(download_url=download_url, expires_at=expires_at)
            )


def _run_record(row: RunRow) -> RunRecord:
    return RunRecord(
        run_id=row.run_id,
        owner_id=row.owner_id,
        tier=Tier(row.tier),
        subject_text=row.subject_text,
        status=RunStatus(row.status),
        completed_count=row.completed_count or 0,
        failed_count=row.failed_count or 0,
        total_count=row.total_count or 0,
        tokens_used=row.tokens_used or 0,
        elapsed_ms=row.elapsed_ms or 0,
        started_at=row.started_at,
        completed_at=row.completed_at,
        deployment=DeploymentInfo(
            chat_id=row.deploy_chat_id,
            preview_url=row.deploy_preview_url,
            live_url=row.deploy_live_url,
            deployed_at=row.deployed_at,
        ),
        error=row.error,
    )


def _execution_record(row: ItemExecutionRow) -> ItemExecution:
    return ItemExecution(
        id=row.id,
        run_id=row.run_id,
        item_id=row.item_id,
        display_name=row.display_name,
        section=row.section,
        order_index=row.order_index,
        resolved_input=row.resolved_input,
        output=row.output,
        status=row.status,
        tokens_used=row.tokens_used,
        duration_ms=row.duration_ms,
        executed_at=row.executed_at,
        superseded=bool(row.superseded),
    )


def _artifact_record(row: ArtifactRow) -> ArtifactRecord:
    return ArtifactRecord(
        id=row.id,
        run_id=row.run_id,
        item_id=row.item_id,
        name=row.name,
        artifact_type=row.artifact_type,
        content_type=row.content_type,
        payload=row.payload,
        created_at=row.created_at,
    )


def _package_record(row: DeliveryPackageRow) -> DeliveryPackage:
    return DeliveryPackage(
        package_id=row.package_id,
        run_id=row.run_id,
        owner_id=row.owner_id,
        tier=Tier(row.tier),
        format=PackageFormat(row.format),
        storage_location=row.storage_location,
        download_url=row.download_url,
        size_bytes=row.size_bytes,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
