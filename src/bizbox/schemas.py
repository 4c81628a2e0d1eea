"""Shared data models for runs, progress events and delivery packages."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import ConfigurationError


class Tier(str, Enum):
    """Package levels; declaration order is the upgrade order."""

    VALIDATION_PACK = "VALIDATION_PACK"
    LAUNCH_BLUEPRINT = "LAUNCH_BLUEPRINT"
    TURNKEY_SYSTEM = "TURNKEY_SYSTEM"

    @property
    def rank(self) -> int:
        return list(Tier).index(self) + 1

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    def at_least(self, other: "Tier") -> bool:
        return self.rank >= other.rank

    @classmethod
    def smallest(cls) -> "Tier":
        return list(cls)[0]

    @classmethod
    def parse(cls, value: "str | Tier") -> "Tier":
        if isinstance(value, Tier):
            return value
        normalised = str(value).strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalised)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown tier: {value!r}") from exc


class RunStatus(str, Enum):
    """Lifecycle states tracked for a run."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}


class ItemStatus(str, Enum):
    """Status values carried by progress events and item executions."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PackageFormat(str, Enum):
    DOCUMENT = "document"
    ARCHIVE = "archive"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressEvent(BaseModel):
    """One status transition emitted by the engine."""

    run_id: str
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    section: Optional[str] = None
    status: str
    percentage: int = Field(ge=0, le=100)
    completed_count: int = 0
    total_count: int = 0
    emitted_at: datetime = Field(default_factory=utcnow)


class ProgressSnapshot(BaseModel):
    """Progress re-derived from persisted state for poll-based observers."""

    run_id: str
    status: RunStatus
    completed_count: int
    failed_count: int
    total_count: int
    percentage: int
    current_item: Optional[str] = None
    completed_items: List[Dict[str, Optional[str]]] = Field(default_factory=list)
    last_event: Optional[ProgressEvent] = None


class DeploymentInfo(BaseModel):
    """Run-level deployment metadata written by the publish side effect."""

    chat_id: Optional[str] = None
    preview_url: Optional[str] = None
    live_url: Optional[str] = None
    deployed_at: Optional[datetime] = None

    @property
    def has_url(self) -> bool:
        return bool(self.preview_url or self.live_url)


class DeliveryPackage(BaseModel):
    """Final user-facing bundle for a run."""

    package_id: str
    run_id: str
    owner_id: str
    tier: Tier
    format: PackageFormat
    storage_location: str
    download_url: str
    size_bytes: int
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        current = now or utcnow()
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return current >= expires
