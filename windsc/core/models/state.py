"""
ProviderState — the root state model.

Captures which declarations are bound to which remote features, plus a
summary of the last operation. Serialized to .state/current.json and
loaded on every operation.

Only successful operations change a binding: a failed create leaves no
entry, a failed destroy leaves the entry in place.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class BoundFeature(BaseModel):
    """A declaration bound to a feature on a host."""

    id: str
    feature_name: str
    host: str
    ensure: str = "Present"
    include_all_sub_features: bool = False
    sub_features: list[str] = Field(default_factory=list)

    # ── Last observation ─────────────────────────────────────────
    installed: bool = False
    install_state: str = ""
    observed_sub_features: list[str] = Field(default_factory=list)
    updated_at: str = Field(default_factory=_now_iso)


class OperationRecord(BaseModel):
    """Summary of the last operation."""

    operation_id: str = ""
    operation: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""  # ok, partial, failed
    features_total: int = 0
    features_succeeded: int = 0
    features_failed: int = 0


class ProviderState(BaseModel):
    """Root state model — serialized to .state/current.json.

    Keyed by declaration address (the ``key`` of a feature in windsc.yml,
    or its name when no key is given).
    """

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Bindings ─────────────────────────────────────────────────
    resources: dict[str, BoundFeature] = Field(default_factory=dict)

    # ── Last operation ───────────────────────────────────────────
    last_operation: OperationRecord = Field(default_factory=OperationRecord)

    # ── Extensible metadata ──────────────────────────────────────
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def bind(self, address: str, entry: BoundFeature) -> None:
        """Record (or replace) the binding for an address."""
        self.resources[address] = entry

    def unbind(self, address: str) -> None:
        """Forget the binding for an address."""
        self.resources.pop(address, None)
