"""
Reconcile use cases — apply, refresh and destroy across windsc.yml.

These are the top-level orchestrators: load config, load bindings,
drive the lifecycle adapter once per declaration, persist the bindings
that changed and write one audit entry per operation.

Declarations are processed one after another. A failure is recorded on
that declaration's outcome and the loop moves on, so one broken host
never hides the state of the others. Bindings change only when the
lifecycle call for that declaration succeeded.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from windsc.adapters.base import ChannelOpener
from windsc.core.config.loader import (
    ConfigError,
    FeatureDeclaration,
    WindscConfig,
    config_root,
    find_config_file,
    load_config,
    resolve_connection,
)
from windsc.core.engine.lifecycle import FeatureLifecycle, derive_identity, parse_identity
from windsc.core.engine.reconciler import ReconciliationResult, Reconciler
from windsc.core.errors import IdentityConflictError, ReconcileError, WindscError
from windsc.core.models.connection import Connection
from windsc.core.models.feature import DesiredState, Presence
from windsc.core.models.resource import ResourceRecord
from windsc.core.models.state import BoundFeature, ProviderState
from windsc.core.persistence.audit import AuditEntry, AuditWriter
from windsc.core.persistence.state_file import default_state_path, load_state, save_state

logger = logging.getLogger(__name__)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"


@dataclass
class FeatureOutcome:
    """What happened to one declaration during an operation."""

    address: str
    feature_name: str
    host: str = ""
    status: str = "ok"  # ok, failed
    verb: str = ""  # create, update, replace, read, delete
    identity: str | None = None
    action: str = "none"
    applied: bool = False
    installed: bool | None = None
    install_state: str = ""
    diagnostics: list[dict] = field(default_factory=list)
    error: dict | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def error_message(self) -> str:
        if not self.error:
            return ""
        return self.error.get("detail") or self.error.get("message", "")

    def absorb(self, result: ReconciliationResult) -> None:
        state = result.final_state
        self.action = result.action.value
        self.applied = result.applied
        self.installed = state.installed
        self.install_state = state.install_state.value
        self.diagnostics = [d.to_dict() for d in result.diagnostics]

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "feature_name": self.feature_name,
            "host": self.host,
            "status": self.status,
            "verb": self.verb,
            "identity": self.identity,
            "action": self.action,
            "applied": self.applied,
            "installed": self.installed,
            "install_state": self.install_state,
            "diagnostics": self.diagnostics,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class OperationResult:
    """Result of apply, refresh or destroy."""

    operation: str
    operation_id: str = ""
    config_path: Path | None = None
    outcomes: list[FeatureOutcome] = field(default_factory=list)
    error: str | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def status(self) -> str:
        if self.error or (self.outcomes and self.succeeded == 0):
            return "failed"
        if self.failed:
            return "partial"
        return "ok"

    def to_dict(self) -> dict:
        result: dict = {"operation": self.operation}
        if self.error:
            result["error"] = self.error
            return result
        result.update(
            {
                "operation_id": self.operation_id,
                "config_path": str(self.config_path) if self.config_path else None,
                "status": self.status,
                "total": len(self.outcomes),
                "succeeded": self.succeeded,
                "failed": self.failed,
                "duration_ms": self.duration_ms,
                "features": [o.to_dict() for o in self.outcomes],
            }
        )
        return result


# ── Helpers ─────────────────────────────────────────────────────


def _error_dict(error: Exception) -> dict:
    if isinstance(error, ReconcileError):
        data = error.to_dict()
    else:
        data = {"type": error.__class__.__name__, "message": str(error)}
    data["detail"] = str(error)
    return data


def _bind(state: ProviderState, address: str, record: ResourceRecord) -> None:
    assert record.id is not None
    observed = record.observed
    state.bind(
        address,
        BoundFeature(
            id=record.id,
            feature_name=record.desired.feature_name,
            host=record.connection.host,
            ensure=record.desired.presence.value,
            include_all_sub_features=record.desired.include_all_sub_features,
            sub_features=list(record.desired.sub_features),
            installed=observed.installed if observed else False,
            install_state=observed.install_state.value if observed else "",
            observed_sub_features=list(observed.sub_features) if observed else [],
        ),
    )


def _bound_desired(entry: BoundFeature) -> DesiredState:
    """The desired state a binding was last applied with."""
    return DesiredState(
        feature_name=entry.feature_name,
        presence=Presence(entry.ensure),
        include_all_sub_features=entry.include_all_sub_features,
        sub_features=tuple(entry.sub_features),
    )


def _identity_holder(state: ProviderState, identity: str, exclude: str) -> str | None:
    """Address other than ``exclude`` whose binding is ``identity``, if any."""
    wanted = identity.lower()
    for address, entry in state.resources.items():
        if address != exclude and entry.id.lower() == wanted:
            return address
    return None


def _bound_connection(
    config: WindscConfig,
    connection: Connection | None,
    entry: BoundFeature,
) -> Connection:
    """Connection for the host a binding lives on.

    The declaration's credentials are reused when it still exists; an
    orphaned binding falls back to the provider-level defaults.
    """
    if connection is not None:
        if connection.host == entry.host:
            return connection
        return connection.model_copy(update={"host": entry.host})
    settings = config.connection.model_copy(update={"host": entry.host})
    return resolve_connection(settings, entry.id)


class _Operation:
    """Shared setup and bookkeeping for one use-case invocation."""

    def __init__(
        self,
        name: str,
        config_path: Path | None,
        opener: ChannelOpener | None,
        state_path: Path | None,
    ):
        self.result = OperationResult(operation=name, operation_id=generate_operation_id())
        self.config: WindscConfig | None = None
        self.state = ProviderState()
        self.state_path = state_path
        self.lifecycle = FeatureLifecycle(Reconciler(opener))
        self._config_path = config_path
        self._started = time.monotonic()
        self._started_at = datetime.now(UTC).isoformat()

    def load(self) -> bool:
        try:
            path = self._config_path or find_config_file()
            if path is None:
                raise ConfigError("No windsc.yml found. Create one, or specify --config.")
            self.config = load_config(path)
        except ConfigError as e:
            self.result.error = str(e)
            return False

        self.result.config_path = path
        if self.state_path is None:
            self.state_path = default_state_path(config_root(path))
        self.state = load_state(self.state_path)
        return True

    def select(self, only: list[str] | None) -> list[FeatureDeclaration] | None:
        assert self.config is not None
        if not only:
            return list(self.config.features)
        unknown = [a for a in only if self.config.get_feature(a) is None]
        if unknown:
            self.result.error = f"Unknown feature address(es): {', '.join(unknown)}"
            return None
        return [f for f in self.config.features if f.address in only]

    @contextmanager
    def running(self) -> Iterator[None]:
        """Persist whatever finished, even when the loop is interrupted."""
        try:
            yield
        except KeyboardInterrupt:
            logger.warning(
                "%s %s interrupted after %d feature(s); saving progress",
                self.result.operation,
                self.result.operation_id,
                len(self.result.outcomes),
            )
            raise
        finally:
            self.finish()

    def finish(self) -> OperationResult:
        result = self.result
        result.duration_ms = int((time.monotonic() - self._started) * 1000)
        if result.error:
            return result

        op = self.state.last_operation
        op.operation_id = result.operation_id
        op.operation = result.operation
        op.started_at = self._started_at
        op.ended_at = datetime.now(UTC).isoformat()
        op.status = result.status
        op.features_total = len(result.outcomes)
        op.features_succeeded = result.succeeded
        op.features_failed = result.failed

        assert self.state_path is not None
        save_state(self.state, self.state_path)

        audit = AuditWriter(self.state_path.parent / "audit.ndjson")
        audit.write(
            AuditEntry(
                operation_id=result.operation_id,
                operation_type=result.operation,
                features=[o.address for o in result.outcomes],
                hosts=sorted({o.host for o in result.outcomes if o.host}),
                status=result.status,
                features_total=len(result.outcomes),
                features_succeeded=result.succeeded,
                features_failed=result.failed,
                duration_ms=result.duration_ms,
                errors=[f"{o.address}: {o.error_message}" for o in result.outcomes if not o.ok],
                context={"outcomes": [o.to_dict() for o in result.outcomes]},
            )
        )

        logger.info(
            "%s %s: %d/%d succeeded",
            result.operation,
            result.operation_id,
            result.succeeded,
            len(result.outcomes),
        )
        return result


# ── Apply ───────────────────────────────────────────────────────


def apply_features(
    config_path: Path | None = None,
    features: list[str] | None = None,
    opener: ChannelOpener | None = None,
    state_path: Path | None = None,
    cancel: threading.Event | None = None,
) -> OperationResult:
    """Reconcile every declaration (or the selected ones) toward windsc.yml.

    Unbound declarations are created. Bound ones are updated, which
    becomes delete-then-create when the feature name or host changed.
    Without a selection, bindings whose declaration was removed from
    windsc.yml are destroyed. An identity is bound to one address only:
    a re-keyed declaration takes over the orphaned binding, and one that
    collides with another declaration's binding fails with
    IdentityConflictError.

    Args:
        config_path: Optional explicit path to windsc.yml.
        features: Optional list of addresses to target. None = all.
        opener: Channel opener. Defaults to SSH.
        state_path: Optional override for .state/current.json.
        cancel: Set to stop before the next phase of the current feature.
    """
    op = _Operation("apply", config_path, opener, state_path)
    if not op.load():
        return op.finish()

    selected = op.select(features)
    if selected is None:
        return op.finish()

    with op.running():
        for decl in selected:
            op.result.outcomes.append(_apply_one(op, decl, cancel))

        if not features:
            declared = {d.address for d in op.config.features}
            for address in [a for a in op.state.resources if a not in declared]:
                op.result.outcomes.append(_destroy_one(op, address, None, cancel))

    return op.result


def _apply_one(
    op: _Operation,
    decl: FeatureDeclaration,
    cancel: threading.Event | None,
) -> FeatureOutcome:
    assert op.config is not None
    outcome = FeatureOutcome(address=decl.address, feature_name=decl.name)
    started = time.monotonic()
    entry = op.state.resources.get(decl.address)
    prior: ResourceRecord | None = None
    adopted_from: str | None = None
    released: str | None = None

    try:
        connection = op.config.connection_for(decl)
        outcome.host = connection.host
        record = ResourceRecord(connection=connection, desired=decl.to_desired())

        identity = derive_identity(decl.name, connection.host)
        holder = _identity_holder(op.state, identity, exclude=decl.address)
        if holder is not None:
            if op.config.get_feature(holder) is not None:
                raise IdentityConflictError(
                    f"{identity} is already bound to feature '{holder}'"
                )
            # The orphaned binding now belongs to this declaration
            released = holder
            if entry is None:
                logger.info("apply %s: adopting binding of '%s'", decl.address, holder)
                entry = op.state.resources[holder]
                adopted_from = holder

        if entry is None:
            outcome.verb = "create"
            result = op.lifecycle.create(record, cancel=cancel)
        else:
            prior = ResourceRecord(
                connection=_bound_connection(op.config, connection, entry),
                desired=_bound_desired(entry),
                id=entry.id,
            )
            record.id = entry.id
            outcome.verb = "update"
            result = op.lifecycle.update(prior, record, cancel=cancel)
            if prior.id is None:
                outcome.verb = "replace"

        outcome.absorb(result)
        outcome.identity = record.id
        _bind(op.state, decl.address, record)
        if released is not None:
            op.state.unbind(released)

    except (ConfigError, WindscError, ValueError) as e:
        outcome.status = "failed"
        outcome.error = _error_dict(e)
        logger.warning("apply %s failed: %s", decl.address, e)
        # The old feature was removed before the new one failed to come up
        if prior is not None and prior.id is None:
            op.state.unbind(adopted_from or decl.address)

    outcome.duration_ms = int((time.monotonic() - started) * 1000)
    return outcome


# ── Refresh ─────────────────────────────────────────────────────


def refresh_features(
    config_path: Path | None = None,
    features: list[str] | None = None,
    opener: ChannelOpener | None = None,
    state_path: Path | None = None,
    cancel: threading.Event | None = None,
) -> OperationResult:
    """Read the current state of every declaration without changing hosts.

    Bound declarations are queried through their identity and the
    stored observation is updated. Unbound declarations read as absent
    without a network call.
    """
    op = _Operation("refresh", config_path, opener, state_path)
    if not op.load():
        return op.finish()

    selected = op.select(features)
    if selected is None:
        return op.finish()

    with op.running():
        for decl in selected:
            op.result.outcomes.append(_refresh_one(op, decl, cancel))

    return op.result


def _refresh_one(
    op: _Operation,
    decl: FeatureDeclaration,
    cancel: threading.Event | None,
) -> FeatureOutcome:
    assert op.config is not None
    outcome = FeatureOutcome(address=decl.address, feature_name=decl.name, verb="read")
    started = time.monotonic()
    entry = op.state.resources.get(decl.address)

    try:
        connection = op.config.connection_for(decl)
        if entry is not None:
            connection = _bound_connection(op.config, connection, entry)
        outcome.host = connection.host
        record = ResourceRecord(
            connection=connection,
            desired=_bound_desired(entry) if entry else decl.to_desired(),
            id=entry.id if entry else None,
        )
        result = op.lifecycle.read(record, cancel=cancel)
        outcome.absorb(result)
        outcome.identity = record.id
        if entry is not None:
            _bind(op.state, decl.address, record)

    except (ConfigError, WindscError, ValueError) as e:
        outcome.status = "failed"
        outcome.error = _error_dict(e)
        logger.warning("refresh %s failed: %s", decl.address, e)

    outcome.duration_ms = int((time.monotonic() - started) * 1000)
    return outcome


# ── Destroy ─────────────────────────────────────────────────────


def destroy_features(
    config_path: Path | None = None,
    features: list[str] | None = None,
    opener: ChannelOpener | None = None,
    state_path: Path | None = None,
    cancel: threading.Event | None = None,
) -> OperationResult:
    """Remove bound features from their hosts and clear the bindings.

    Only bound addresses are touched; a declaration that was never
    applied has nothing to destroy. Without a selection, orphaned
    bindings are destroyed too.
    """
    op = _Operation("destroy", config_path, opener, state_path)
    if not op.load():
        return op.finish()
    assert op.config is not None

    if features:
        if op.select(features) is None:
            return op.finish()
        addresses = [a for a in features if a in op.state.resources]
    else:
        addresses = list(op.state.resources)

    with op.running():
        for address in addresses:
            op.result.outcomes.append(
                _destroy_one(op, address, op.config.get_feature(address), cancel)
            )

    return op.result


def _destroy_one(
    op: _Operation,
    address: str,
    decl: FeatureDeclaration | None,
    cancel: threading.Event | None,
) -> FeatureOutcome:
    assert op.config is not None
    entry = op.state.resources[address]
    outcome = FeatureOutcome(
        address=address,
        feature_name=entry.feature_name,
        host=entry.host,
        verb="delete",
        identity=entry.id,
    )
    started = time.monotonic()

    try:
        parse_identity(entry.id)
        connection = op.config.connection_for(decl) if decl is not None else None
        record = ResourceRecord(
            connection=_bound_connection(op.config, connection, entry),
            desired=_bound_desired(entry),
            id=entry.id,
        )
        result = op.lifecycle.delete(record, cancel=cancel)
        outcome.absorb(result)
        outcome.identity = None
        op.state.unbind(address)

    except (ConfigError, WindscError, ValueError) as e:
        outcome.status = "failed"
        outcome.error = _error_dict(e)
        logger.warning("destroy %s failed: %s", address, e)

    outcome.duration_ms = int((time.monotonic() - started) * 1000)
    return outcome
