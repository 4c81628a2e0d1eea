"""Plain records returned by the run store."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..schemas import DeploymentInfo, RunStatus, Tier


@dataclass
class RunRecord:
    run_id: str
    owner_id: str
    tier: Tier
    subject_text: str
    status: RunStatus
    completed_count: int
    failed_count: int
    total_count: int
    tokens_used: int
    elapsed_ms: int
    started_at: datetime
    completed_at: Optional[datetime]
    deployment: DeploymentInfo = field(default_factory=DeploymentInfo)
    error: Optional[str] = None


@dataclass
class ItemExecution:
    id: int
    run_id: str
    item_id: str
    display_name: str
    section: str
    order_index: int
    resolved_input: str
    output: str
    status: str
    tokens_used: int
    duration_ms: int
    executed_at: datetime
    superseded: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"


@dataclass
class ArtifactRecord:
    id: int
    run_id: str
    item_id: Optional[str]
    name: str
    artifact_type: str
    content_type: str
    payload: str
    created_at: datetime


@dataclass
class RunEvent:
    id: int
    run_id: str
    event_type: str
    message: str
    payload: Dict[str, Any]
    created_at: datetime
