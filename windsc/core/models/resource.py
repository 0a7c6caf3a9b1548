"""
ResourceRecord — the caller's view of one managed feature.

This is what the lifecycle adapter reads and writes: the connection and
desired state going in, the external identity and last observed state
coming out. It is mutable on purpose; the lifecycle adapter updates
``id`` and ``observed`` only when an operation succeeds.
"""

from __future__ import annotations

from pydantic import BaseModel

from windsc.core.models.connection import Connection
from windsc.core.models.feature import DesiredState, FeatureState


class ResourceRecord(BaseModel):
    """A managed feature as held by the lifecycle driver."""

    connection: Connection
    desired: DesiredState
    id: str | None = None
    observed: FeatureState | None = None

    @property
    def bound(self) -> bool:
        """Whether an external identity is bound to this record."""
        return bool(self.id)
