"""
Status use case — declarations from config joined with stored bindings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from windsc.core.config.loader import (
    ConfigError,
    WindscConfig,
    config_root,
    find_config_file,
    load_config,
)
from windsc.core.models.state import ProviderState
from windsc.core.persistence.audit import AuditEntry, AuditWriter
from windsc.core.persistence.state_file import default_state_path, load_state

# Audit entries shown by status
RECENT_OPERATIONS = 5


@dataclass
class FeatureStatus:
    """One row of the status table."""

    address: str
    feature_name: str
    host: str = ""
    ensure: str = "Present"
    bound: bool = False
    identity: str | None = None
    installed: bool | None = None
    install_state: str = ""
    updated_at: str = ""
    orphaned: bool = False

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "feature_name": self.feature_name,
            "host": self.host,
            "ensure": self.ensure,
            "bound": self.bound,
            "identity": self.identity,
            "installed": self.installed,
            "install_state": self.install_state,
            "updated_at": self.updated_at,
            "orphaned": self.orphaned,
        }


@dataclass
class StatusResult:
    """Aggregated status."""

    config: WindscConfig | None = None
    state: ProviderState | None = None
    config_path: Path | None = None
    features: list[FeatureStatus] = field(default_factory=list)
    recent_operations: list[AuditEntry] = field(default_factory=list)
    error: str | None = None

    @property
    def bound_count(self) -> int:
        return sum(1 for f in self.features if f.bound)

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["config_path"] = str(self.config_path) if self.config_path else None
        result["features"] = [f.to_dict() for f in self.features]

        if self.state:
            op = self.state.last_operation
            result["last_operation"] = {
                "operation_id": op.operation_id,
                "operation": op.operation,
                "status": op.status,
                "ended_at": op.ended_at,
                "features_total": op.features_total,
                "features_succeeded": op.features_succeeded,
                "features_failed": op.features_failed,
            }
        result["recent_operations"] = [
            {
                "operation_id": e.operation_id,
                "operation": e.operation_type,
                "status": e.status,
                "timestamp": e.timestamp,
                "features_total": e.features_total,
                "features_failed": e.features_failed,
            }
            for e in self.recent_operations
        ]
        return result


def get_status(
    config_path: Path | None = None,
    state_path: Path | None = None,
) -> StatusResult:
    """Read windsc.yml, .state/current.json and the audit ledger. Never connects."""
    result = StatusResult()

    try:
        if config_path is None:
            config_path = find_config_file()
        if config_path is None:
            result.error = "No windsc.yml found. Create one, or specify --config."
            return result
        config = load_config(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.config = config
    result.config_path = config_path
    state_path = state_path or default_state_path(config_root(config_path))
    state = load_state(state_path)
    result.state = state
    audit = AuditWriter(path=state_path.parent / "audit.ndjson")
    result.recent_operations = audit.read_recent(RECENT_OPERATIONS)

    for decl in config.features:
        row = FeatureStatus(
            address=decl.address,
            feature_name=decl.name,
            host=config.connection.merged(decl.connection).host or "",
            ensure=decl.ensure.value,
        )
        entry = state.resources.get(decl.address)
        if entry is not None:
            row.bound = True
            row.identity = entry.id
            row.host = entry.host
            row.installed = entry.installed
            row.install_state = entry.install_state
            row.updated_at = entry.updated_at
        result.features.append(row)

    declared = {d.address for d in config.features}
    for address, entry in state.resources.items():
        if address in declared:
            continue
        result.features.append(
            FeatureStatus(
                address=address,
                feature_name=entry.feature_name,
                host=entry.host,
                ensure=entry.ensure,
                bound=True,
                identity=entry.id,
                installed=entry.installed,
                install_state=entry.install_state,
                updated_at=entry.updated_at,
                orphaned=True,
            )
        )

    return result
