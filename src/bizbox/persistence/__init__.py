from .models import create_session_factory, session_scope
from .records import ArtifactRecord, ItemExecution, RunEvent, RunRecord
from .store import RunStore

__all__ = [
    "ArtifactRecord",
    "ItemExecution",
    "RunEvent",
    "RunRecord",
    "RunStore",
    "create_session_factory",
    "session_scope",
]
