"""
Reconcile outcome and status report models.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class OutcomeKind(str, Enum):
    """Result of one reconcile pass."""
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient-failure"
    PERMANENT_FAILURE = "permanent-failure"


class ReconcileOutcome(BaseModel):
    """
    Outcome of one reconcile pass. Never persisted by the controller.
    """
    kind: OutcomeKind
    reason: Optional[str] = Field(None, description="Failure reason")
    operations_applied: int = Field(default=0, ge=0)
    collection_created: bool = False
    dropped: list[str] = Field(default_factory=list, description="Indexes dropped in this pass")
    created: list[str] = Field(default_factory=list, description="Indexes created in this pass")

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_transient(self) -> bool:
        return self.kind == OutcomeKind.TRANSIENT_FAILURE

    @property
    def is_permanent(self) -> bool:
        return self.kind == OutcomeKind.PERMANENT_FAILURE

    def message(self) -> str:
        """Human readable summary for the resource status."""
        changes = []
        if self.collection_created:
            changes.append("collection created")
        if self.dropped:
            changes.append(f"dropped {', '.join(self.dropped)}")
        if self.created:
            changes.append(f"created {', '.join(self.created)}")
        summary = "; ".join(changes) if changes else "no changes"

        if self.is_success:
            return f"In sync ({summary})"
        return f"{self.reason} ({summary})"


class StatusReport(BaseModel):
    """What the status writer receives after every pass."""
    namespace: str
    name: str
    generation: Optional[int] = None
    outcome: ReconcileOutcome
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
